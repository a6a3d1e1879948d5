from datetime import date, datetime

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

import summaries
from database import Base
from models import Employee, Income, PayrollAdjustmentType
from periods import Period
from schemas import (
    EmployeeIn,
    EmployeeTransactionIn,
    EmployeeUpdate,
    ExpenseCategoryIn,
    ExpenseCategoryUpdate,
    ExpenseIn,
    IncomeIn,
)
from services import (
    EmployeeService,
    ExpenseCategoryService,
    ExpenseService,
    IncomeService,
    MonthlySummaryService,
    NotFoundError,
    OwnershipError,
    ValidationError,
)
from summaries import get_monthly_summary


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _march(session):
    return get_monthly_summary(session, 1, 2024, 3)


def test_every_mutation_keeps_the_march_summary_current() -> None:
    session = make_session()
    incomes = IncomeService(session, timezone="UTC")
    expenses = ExpenseService(session, timezone="UTC")
    employees = EmployeeService(session, timezone="UTC")
    buckets = ExpenseCategoryService(session, timezone="UTC")

    income = incomes.create(
        IncomeIn(title="Invoice 42", amount_cents=100_000, date=datetime(2024, 3, 15, 12))
    )
    assert _march(session).total_income_cents == 100_000

    expenses.create(
        ExpenseIn(
            title="Fuel", amount_cents=30_000, category="Fuel", date=datetime(2024, 3, 10)
        )
    )
    assert _march(session).total_expenses_cents == 30_000

    sara = employees.create(
        EmployeeIn(
            name="Sara",
            salary_cents=200_000,
            job_title="Technician",
            date_joined=date(2023, 1, 1),
        )
    )
    summary = _march(session)
    assert summary.total_salaries_cents == 200_000
    assert summary.profit_cents == -130_000

    bonus = employees.add_transaction(
        EmployeeTransactionIn(
            employee_id=sara.id,
            type=PayrollAdjustmentType.bonus,
            amount_cents=50_000,
            month=3,
            year=2024,
        )
    )
    summary = _march(session)
    assert summary.total_salaries_cents == 250_000
    assert summary.profit_cents == -180_000

    buckets.create(
        ExpenseCategoryIn(category="Repair", amount_cents=15_000, month=3, year=2024)
    )
    summary = _march(session)
    assert summary.total_expenses_cents == 45_000
    assert summary.expense_breakdown["Repair"] == 15_000
    assert summary.expense_breakdown["regularExpenses"] == 30_000
    assert summary.profit_cents == -195_000

    incomes.delete(income.id)
    summary = _march(session)
    assert summary is not None
    assert summary.total_income_cents == 0
    assert summary.profit_cents == -295_000

    employees.delete_transaction(bonus.id)
    assert _march(session).total_salaries_cents == 200_000


def test_expense_delete_recomputes_its_month() -> None:
    session = make_session()
    expenses = ExpenseService(session, timezone="UTC")
    fuel = expenses.create(
        ExpenseIn(
            title="Fuel", amount_cents=12_500, category="Fuel", date=datetime(2024, 3, 10)
        )
    )
    assert _march(session).total_expenses_cents == 12_500

    expenses.delete(fuel.id)
    assert _march(session).total_expenses_cents == 0


def test_moving_a_bucket_refreshes_both_months() -> None:
    session = make_session()
    buckets = ExpenseCategoryService(session, timezone="UTC")
    bucket = buckets.create(
        ExpenseCategoryIn(category="Repair", amount_cents=15_000, month=3, year=2024)
    )
    assert _march(session).expense_breakdown["Repair"] == 15_000

    buckets.update(bucket.id, ExpenseCategoryUpdate(month=4))

    assert _march(session).expense_breakdown["Repair"] == 0
    assert _march(session).total_expenses_cents == 0
    april = get_monthly_summary(session, 1, 2024, 4)
    assert april.expense_breakdown["Repair"] == 15_000

    buckets.delete(bucket.id)
    assert get_monthly_summary(session, 1, 2024, 4).total_expenses_cents == 0


def test_bucket_update_rejects_explicit_nulls() -> None:
    session = make_session()
    buckets = ExpenseCategoryService(session, timezone="UTC")
    bucket = buckets.create(
        ExpenseCategoryIn(category="Equipment", amount_cents=100, month=3, year=2024)
    )
    with pytest.raises(ValidationError):
        buckets.update(bucket.id, ExpenseCategoryUpdate(month=None))


def test_soft_deleted_employee_drops_out_of_salaries() -> None:
    session = make_session()
    employees = EmployeeService(session, timezone="UTC")
    sara = employees.create(
        EmployeeIn(name="Sara", salary_cents=200_000, job_title="Technician")
    )
    MonthlySummaryService(session, timezone="UTC").get(Period(2024, 3))
    assert _march(session).total_salaries_cents == 200_000

    employees.delete(sara.id)

    assert session.get(Employee, sara.id).is_active is False
    assert _march(session).total_salaries_cents == 0
    assert [e.id for e in employees.active()] == []

    # Deleting an inactive employee again changes nothing.
    employees.delete(sara.id)
    assert session.get(Employee, sara.id) is not None


def test_payroll_changes_only_recompute_cached_months(monkeypatch) -> None:
    session = make_session()
    employees = EmployeeService(session, timezone="UTC")
    sara = employees.create(
        EmployeeIn(name="Sara", salary_cents=200_000, job_title="Technician")
    )
    IncomeService(session, timezone="UTC").create(
        IncomeIn(title="Invoice", amount_cents=1_000, date=datetime(2024, 3, 5))
    )

    employees.update(sara.id, EmployeeUpdate(salary_cents=220_000))
    assert _march(session).total_salaries_cents == 220_000
    assert get_monthly_summary(session, 1, 2024, 4) is None

    def fail(*_args, **_kwargs):
        raise AssertionError("no recalculation expected")

    monkeypatch.setattr(summaries, "compute_monthly_summary", fail)
    renamed = employees.update(sara.id, EmployeeUpdate(name="Sara K."))
    assert renamed.name == "Sara K."
    # Unchanged salary values do not count as a payroll change either.
    employees.update(sara.id, EmployeeUpdate(salary_cents=220_000))


def test_employee_update_rejects_explicit_nulls() -> None:
    session = make_session()
    employees = EmployeeService(session, timezone="UTC")
    sara = employees.create(
        EmployeeIn(name="Sara", salary_cents=200_000, job_title="Technician")
    )
    with pytest.raises(ValidationError):
        employees.update(sara.id, EmployeeUpdate(name=None))
    with pytest.raises(ValidationError):
        employees.update(sara.id, EmployeeUpdate(salary_cents=None))


def test_trigger_period_follows_local_time_while_totals_use_utc() -> None:
    session = make_session()
    incomes = IncomeService(session, timezone="Asia/Tokyo")

    # 05:00 on April 1st in Tokyo, still March in UTC.
    incomes.create(
        IncomeIn(title="Late invoice", amount_cents=7_000, date=datetime(2024, 3, 31, 20))
    )

    assert _march(session) is None
    april = get_monthly_summary(session, 1, 2024, 4)
    assert april is not None
    assert april.total_income_cents == 0

    march = MonthlySummaryService(session, timezone="Asia/Tokyo").get(Period(2024, 3))
    assert march.total_income_cents == 7_000


def test_recalculation_failure_keeps_the_committed_record(monkeypatch) -> None:
    session = make_session()

    def boom(*_args, **_kwargs):
        raise RuntimeError("aggregation failed")

    monkeypatch.setattr(summaries, "compute_monthly_summary", boom)

    with pytest.raises(RuntimeError):
        IncomeService(session, timezone="UTC").create(
            IncomeIn(title="Invoice", amount_cents=5_000, date=datetime(2024, 3, 2))
        )

    count = session.execute(select(func.count(Income.id))).scalar_one()
    assert count == 1
    assert _march(session) is None


def test_records_of_other_users_are_protected() -> None:
    session = make_session()
    theirs = IncomeService(session, user_id=2, timezone="UTC").create(
        IncomeIn(title="Theirs", amount_cents=500, date=datetime(2024, 3, 2))
    )
    mine = IncomeService(session, timezone="UTC")

    with pytest.raises(OwnershipError):
        mine.delete(theirs.id)
    with pytest.raises(NotFoundError):
        mine.delete(9_999)
    with pytest.raises(NotFoundError):
        EmployeeService(session, timezone="UTC").add_transaction(
            EmployeeTransactionIn(
                employee_id=404,
                type=PayrollAdjustmentType.deduction,
                amount_cents=100,
                month=3,
                year=2024,
            )
        )

    assert get_monthly_summary(session, 2, 2024, 3).total_income_cents == 500
    assert _march(session) is None


def test_rebuild_and_refresh_restore_stale_rows() -> None:
    session = make_session()
    IncomeService(session, timezone="UTC").create(
        IncomeIn(title="Invoice", amount_cents=1_000, date=datetime(2024, 3, 5))
    )
    # Written behind the services' back, so no trigger fires.
    session.add(
        Employee(
            user_id=1,
            name="Omar",
            salary_cents=50_000,
            job_title="Driver",
            date_joined=date(2024, 1, 1),
        )
    )
    session.commit()
    assert _march(session).total_salaries_cents == 0

    refreshed = summaries.SummaryRecalculator(session).refresh_all()
    assert refreshed == 1
    assert _march(session).total_salaries_cents == 50_000

    rebuilt = MonthlySummaryService(session, timezone="UTC").rebuild()
    assert [(s.year, s.month) for s in rebuilt] == [(2024, 3)]
