from __future__ import annotations

import calendar
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from models import (
    Customer,
    Employee,
    EmployeeTransaction,
    Expense,
    ExpenseCategory,
    Income,
    MonthlySummary,
    PayrollAdjustmentType,
)
from periods import (
    Period,
    local_midnight_utc,
    local_now,
    period_of,
    to_utc_naive,
    within,
)
from schemas import (
    CustomerIn,
    CustomerUpdate,
    EmployeeIn,
    EmployeeTransactionIn,
    EmployeeUpdate,
    ExpenseCategoryIn,
    ExpenseCategoryUpdate,
    ExpenseIn,
    IncomeIn,
    PaymentPeriodIn,
)
from summaries import (
    LEGACY_BREAKDOWN_KEYS,
    PayrollChanged,
    PeriodsTouched,
    SummaryRecalculator,
    list_monthly_summaries,
)


class ServiceError(ValueError):
    pass


class NotFoundError(ServiceError):
    pass


class OwnershipError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


def get_current_user_id() -> int:
    return 1


@dataclass(frozen=True)
class PageRequest:
    page: int = 1
    limit: int = 10

    @classmethod
    def build(cls, page: Optional[int] = None, limit: Optional[int] = None) -> PageRequest:
        page = page or 1
        limit = limit or 10
        if page < 1:
            page = 1
        if limit < 1:
            limit = 10
        elif limit > 100:
            limit = 100
        return cls(page=page, limit=limit)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

    def meta(self, total_items: int) -> dict[str, object]:
        total_pages = math.ceil(total_items / self.limit)
        return {
            "current_page": self.page,
            "total_pages": total_pages,
            "total_items": total_items,
            "items_per_page": self.limit,
            "has_next_page": self.page < total_pages,
            "has_previous_page": self.page > 1,
        }


class _UserScopedService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        timezone: Optional[str] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.timezone = timezone or get_settings().timezone
        self.recalculator = SummaryRecalculator(session)

    def _owned(self, model, record_id: int, label: str):
        record = self.session.get(model, record_id)
        if record is None:
            raise NotFoundError(f"{label} not found")
        if record.user_id != self.user_id:
            raise OwnershipError("Not authorized")
        return record

    def _touch(self, *periods: Period, reason: str) -> None:
        self.recalculator.handle(
            PeriodsTouched.of(self.user_id, *periods, reason=reason)
        )


class IncomeService(_UserScopedService):
    def create(self, data: IncomeIn) -> Income:
        if data.customer_id is not None:
            self._owned(Customer, data.customer_id, "Customer")
        income = Income(
            user_id=self.user_id,
            title=data.title,
            amount_cents=data.amount_cents,
            category=data.category,
            date=to_utc_naive(data.date or datetime.utcnow()),
            description=data.description,
            customer_id=data.customer_id,
        )
        self.session.add(income)
        self.session.commit()
        self._touch(period_of(income.date, self.timezone), reason="income_created")
        self.session.refresh(income)
        return income

    def get(self, income_id: int) -> Income:
        return self._owned(Income, income_id, "Income")

    def list(
        self, period: Optional[Period], page: PageRequest
    ) -> tuple[list[Income], dict[str, object]]:
        return _list_dated(self.session, Income, self.user_id, period, page)

    def delete(self, income_id: int) -> None:
        income = self.get(income_id)
        period = period_of(income.date, self.timezone)
        self.session.delete(income)
        self.session.commit()
        self._touch(period, reason="income_deleted")


class ExpenseService(_UserScopedService):
    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            amount_cents=data.amount_cents,
            category=data.category,
            date=to_utc_naive(data.date or datetime.utcnow()),
            description=data.description,
        )
        self.session.add(expense)
        self.session.commit()
        self._touch(period_of(expense.date, self.timezone), reason="expense_created")
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        return self._owned(Expense, expense_id, "Expense")

    def list(
        self, period: Optional[Period], page: PageRequest
    ) -> tuple[list[Expense], dict[str, object]]:
        return _list_dated(self.session, Expense, self.user_id, period, page)

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        period = period_of(expense.date, self.timezone)
        self.session.delete(expense)
        self.session.commit()
        self._touch(period, reason="expense_deleted")


def _list_dated(session: Session, model, user_id: int, period, page: PageRequest):
    conditions = [model.user_id == user_id]
    if period is not None:
        conditions.extend(within(model.date, period))
    total = int(
        session.execute(select(func.count(model.id)).where(*conditions)).scalar_one()
        or 0
    )
    items = session.scalars(
        select(model)
        .where(*conditions)
        .order_by(model.date.desc(), model.id.desc())
        .offset(page.offset)
        .limit(page.limit)
    ).all()
    return items, page.meta(total)


class ExpenseCategoryService(_UserScopedService):
    def create(self, data: ExpenseCategoryIn) -> ExpenseCategory:
        bucket = ExpenseCategory(
            user_id=self.user_id,
            category=data.category.strip(),
            amount_cents=data.amount_cents,
            year=data.year,
            month=data.month,
            description=data.description,
        )
        self.session.add(bucket)
        self.session.commit()
        self._touch(Period(data.year, data.month), reason="expense_category_created")
        self.session.refresh(bucket)
        return bucket

    def get(self, bucket_id: int) -> ExpenseCategory:
        return self._owned(ExpenseCategory, bucket_id, "Expense category")

    def list(
        self, year: Optional[int] = None, month: Optional[int] = None
    ) -> list[dict[str, object]]:
        stmt = select(ExpenseCategory).where(ExpenseCategory.user_id == self.user_id)
        if month:
            stmt = stmt.where(ExpenseCategory.month == month)
        if year:
            stmt = stmt.where(ExpenseCategory.year == year)
        buckets = self.session.scalars(
            stmt.order_by(ExpenseCategory.category.asc(), ExpenseCategory.id.asc())
        ).all()

        rows: list[dict[str, object]] = [
            {
                "id": b.id,
                "category": b.category,
                "amount_cents": b.amount_cents,
                "month": b.month,
                "year": b.year,
                "description": b.description,
            }
            for b in buckets
        ]
        if not (month and year):
            return rows

        expenses = self.session.scalars(
            select(Expense)
            .where(
                Expense.user_id == self.user_id,
                *within(Expense.date, Period(year, month)),
            )
            .order_by(Expense.date.asc(), Expense.id.asc())
        ).all()
        by_category: dict[str, list[Expense]] = defaultdict(list)
        for expense in expenses:
            by_category[expense.category].append(expense)

        for row in rows:
            matching = by_category.get(row["category"], [])
            row["actual_expenses"] = matching
            row["expenses_total"] = sum(e.amount_cents for e in matching)
            row["is_virtual"] = False

        bucket_names = {b.category for b in buckets}
        for name, matching in by_category.items():
            if name in bucket_names:
                continue
            rows.append(
                {
                    "id": None,
                    "category": name,
                    "amount_cents": 0,
                    "month": month,
                    "year": year,
                    "description": None,
                    "actual_expenses": matching,
                    "expenses_total": sum(e.amount_cents for e in matching),
                    "is_virtual": True,
                }
            )
        return rows

    def breakdown(self, year: int, month: int) -> dict[str, object]:
        buckets = self.session.scalars(
            select(ExpenseCategory).where(
                ExpenseCategory.user_id == self.user_id,
                ExpenseCategory.year == year,
                ExpenseCategory.month == month,
            )
        ).all()
        breakdown: dict[str, int] = {key: 0 for key in LEGACY_BREAKDOWN_KEYS}
        total = 0
        for bucket in buckets:
            if bucket.category in breakdown:
                breakdown[bucket.category] += bucket.amount_cents
            total += bucket.amount_cents
        breakdown["total"] = total
        return {"month": month, "year": year, "breakdown": breakdown, "details": buckets}

    def unique_names(self) -> list[str]:
        return self.session.scalars(
            select(ExpenseCategory.category)
            .where(ExpenseCategory.user_id == self.user_id)
            .distinct()
            .order_by(ExpenseCategory.category.asc())
        ).all()

    def update(self, bucket_id: int, data: ExpenseCategoryUpdate) -> ExpenseCategory:
        bucket = self.get(bucket_id)
        old_period = Period(bucket.year, bucket.month)

        changes = data.model_dump(exclude_unset=True)
        for key in ("category", "amount_cents", "month", "year"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be empty")
        if "category" in changes:
            bucket.category = changes["category"].strip()
        if "amount_cents" in changes:
            bucket.amount_cents = changes["amount_cents"]
        if "month" in changes:
            bucket.month = changes["month"]
        if "year" in changes:
            bucket.year = changes["year"]
        if "description" in changes:
            bucket.description = changes["description"]
        self.session.commit()

        new_period = Period(bucket.year, bucket.month)
        # A moved bucket leaves a stale total behind in its old month.
        self._touch(new_period, old_period, reason="expense_category_updated")
        self.session.refresh(bucket)
        return bucket

    def delete(self, bucket_id: int) -> None:
        bucket = self.get(bucket_id)
        period = Period(bucket.year, bucket.month)
        self.session.delete(bucket)
        self.session.commit()
        self._touch(period, reason="expense_category_deleted")


class EmployeeService(_UserScopedService):
    def create(self, data: EmployeeIn) -> Employee:
        employee = Employee(
            user_id=self.user_id,
            name=data.name,
            salary_cents=data.salary_cents,
            job_title=data.job_title,
            phone_number=data.phone_number,
            date_joined=data.date_joined or date.today(),
            is_active=True,
        )
        self.session.add(employee)
        self.session.commit()
        self.recalculator.handle(PayrollChanged(self.user_id, reason="employee_created"))
        self.session.refresh(employee)
        return employee

    def list(self, page: PageRequest) -> tuple[list[Employee], dict[str, object]]:
        total = int(
            self.session.execute(
                select(func.count(Employee.id)).where(Employee.user_id == self.user_id)
            ).scalar_one()
            or 0
        )
        items = self.session.scalars(
            select(Employee)
            .where(Employee.user_id == self.user_id)
            .order_by(Employee.created_at.desc(), Employee.id.desc())
            .offset(page.offset)
            .limit(page.limit)
        ).all()
        return items, page.meta(total)

    def active(self) -> list[Employee]:
        return self.session.scalars(
            select(Employee)
            .where(Employee.user_id == self.user_id, Employee.is_active.is_(True))
            .order_by(Employee.created_at.desc(), Employee.id.desc())
        ).all()

    def get(self, employee_id: int) -> Employee:
        return self._owned(Employee, employee_id, "Employee")

    def update(self, employee_id: int, data: EmployeeUpdate) -> Employee:
        employee = self.get(employee_id)
        changes = data.model_dump(exclude_unset=True)
        for key in ("name", "salary_cents", "job_title", "date_joined", "is_active"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be empty")

        payroll_changed = False
        if "salary_cents" in changes and changes["salary_cents"] != employee.salary_cents:
            payroll_changed = True
        if "is_active" in changes and changes["is_active"] != employee.is_active:
            payroll_changed = True
        for key, value in changes.items():
            setattr(employee, key, value)
        self.session.commit()

        if payroll_changed:
            self.recalculator.handle(
                PayrollChanged(self.user_id, reason="employee_updated")
            )
        self.session.refresh(employee)
        return employee

    def delete(self, employee_id: int) -> None:
        employee = self.get(employee_id)
        if not employee.is_active:
            return
        employee.is_active = False
        self.session.commit()
        self.recalculator.handle(
            PayrollChanged(self.user_id, reason="employee_deactivated")
        )

    def add_transaction(self, data: EmployeeTransactionIn) -> EmployeeTransaction:
        self.get(data.employee_id)
        adjustment = EmployeeTransaction(
            user_id=self.user_id,
            employee_id=data.employee_id,
            type=data.type,
            amount_cents=data.amount_cents,
            year=data.year,
            month=data.month,
            description=data.description,
        )
        self.session.add(adjustment)
        self.session.commit()
        self._touch(Period(data.year, data.month), reason="payroll_adjustment_created")
        self.session.refresh(adjustment)
        return adjustment

    def transactions_for(self, year: int, month: int) -> list[EmployeeTransaction]:
        return self.session.scalars(
            select(EmployeeTransaction)
            .options(joinedload(EmployeeTransaction.employee))
            .where(
                EmployeeTransaction.user_id == self.user_id,
                EmployeeTransaction.year == year,
                EmployeeTransaction.month == month,
            )
            .order_by(EmployeeTransaction.id.asc())
        ).all()

    def delete_transaction(self, transaction_id: int) -> None:
        adjustment = self._owned(EmployeeTransaction, transaction_id, "Adjustment")
        period = Period(adjustment.year, adjustment.month)
        self.session.delete(adjustment)
        self.session.commit()
        self._touch(period, reason="payroll_adjustment_deleted")


class CustomerService(_UserScopedService):
    PAYMENT_CATEGORY = "customer payment"

    def create(self, data: CustomerIn) -> Customer:
        customer = Customer(
            user_id=self.user_id,
            name=data.name,
            brand_name=data.brand_name,
            phone_number=data.phone_number,
            monthly_amount_cents=data.monthly_amount_cents,
            payment_deadline=(
                to_utc_naive(data.payment_deadline) if data.payment_deadline else None
            ),
        )
        self.session.add(customer)
        self.session.commit()
        self.session.refresh(customer)
        return customer

    def get(self, customer_id: int) -> Customer:
        return self._owned(Customer, customer_id, "Customer")

    def list(
        self, period: Optional[Period], page: PageRequest
    ) -> tuple[list[dict[str, object]], dict[str, object]]:
        total = int(
            self.session.execute(
                select(func.count(Customer.id)).where(Customer.user_id == self.user_id)
            ).scalar_one()
            or 0
        )
        customers = self.session.scalars(
            select(Customer)
            .where(Customer.user_id == self.user_id)
            .order_by(Customer.created_at.desc(), Customer.id.desc())
            .offset(page.offset)
            .limit(page.limit)
        ).all()
        rows: list[dict[str, object]] = [{"customer": c} for c in customers]
        if period is None or not customers:
            return rows, page.meta(total)

        payments = self.session.scalars(
            select(Income).where(
                Income.user_id == self.user_id,
                Income.customer_id.in_([c.id for c in customers]),
                *within(Income.date, period),
            )
            .order_by(Income.date.desc(), Income.id.desc())
        ).all()
        payment_by_customer: dict[int, int] = {}
        for payment in payments:
            payment_by_customer.setdefault(payment.customer_id, payment.id)
        for row in rows:
            payment_id = payment_by_customer.get(row["customer"].id)
            row["is_paid"] = payment_id is not None
            row["payment_id"] = payment_id
        return rows, page.meta(total)

    def update(self, customer_id: int, data: CustomerUpdate) -> Customer:
        customer = self.get(customer_id)
        changes = data.model_dump(exclude_unset=True)
        for key in ("name", "phone_number", "monthly_amount_cents"):
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be empty")
        if changes.get("payment_deadline") is not None:
            changes["payment_deadline"] = to_utc_naive(changes["payment_deadline"])
        for key, value in changes.items():
            setattr(customer, key, value)
        self.session.commit()
        self.session.refresh(customer)
        return customer

    def delete(self, customer_id: int) -> None:
        customer = self.get(customer_id)
        self.session.delete(customer)
        self.session.commit()

    def _payment_date(self, period: Period, now: Optional[datetime]) -> datetime:
        current = local_now(self.timezone, now)
        if (current.year, current.month) == (period.year, period.month):
            paid_at = to_utc_naive(current)
            # Keep the income inside the same UTC range unpay searches.
            if period.start <= paid_at < period.next_start:
                return paid_at
        return local_midnight_utc(period.year, period.month, 15, self.timezone)

    def pay(
        self, customer_id: int, data: PaymentPeriodIn, *, now: Optional[datetime] = None
    ) -> tuple[Customer, Income]:
        customer = self.get(customer_id)
        period = Period(data.year, data.month)
        paid_at = self._payment_date(period, now)

        if customer.last_paid_date is None or paid_at > customer.last_paid_date:
            customer.last_paid_date = paid_at

        title = f"Monthly payment from {customer.name}"
        if customer.brand_name:
            title += f" ({customer.brand_name})"
        income = Income(
            user_id=self.user_id,
            customer_id=customer.id,
            title=title,
            amount_cents=customer.monthly_amount_cents,
            category=self.PAYMENT_CATEGORY,
            date=paid_at,
            description=f"Monthly payment for {data.month}/{data.year}",
        )
        self.session.add(income)
        self.session.commit()
        self._touch(period, reason="customer_paid")
        self.session.refresh(customer)
        self.session.refresh(income)
        return customer, income

    def unpay(self, customer_id: int, data: PaymentPeriodIn) -> None:
        customer = self.get(customer_id)
        period = Period(data.year, data.month)
        income = self.session.scalar(
            select(Income)
            .where(
                Income.user_id == self.user_id,
                Income.customer_id == customer.id,
                *within(Income.date, period),
            )
            .order_by(Income.date.desc(), Income.id.desc())
        )
        if income is None:
            raise NotFoundError("Payment record not found")
        self.session.delete(income)
        self.session.flush()

        customer.last_paid_date = self.session.scalar(
            select(Income.date)
            .where(Income.user_id == self.user_id, Income.customer_id == customer.id)
            .order_by(Income.date.desc())
            .limit(1)
        )
        self.session.commit()
        self._touch(period, reason="customer_unpaid")


class MonthlySummaryService(_UserScopedService):
    def get(self, period: Period) -> MonthlySummary:
        return self.recalculator.get_or_compute(self.user_id, period)

    def recalculate(self, period: Period) -> MonthlySummary:
        return self.recalculator.recalculate(self.user_id, period)

    def list_all(self) -> list[MonthlySummary]:
        return list_monthly_summaries(self.session, self.user_id)

    def rebuild(self) -> list[MonthlySummary]:
        return self.recalculator.rebuild(self.user_id)


def _month_label(period: Period) -> str:
    return f"{calendar.month_abbr[period.month]} {period.year}"


def _day_label(moment: datetime) -> str:
    return f"{calendar.month_abbr[moment.month]} {moment.day}"


class DashboardService(_UserScopedService):
    def _sum_and_count(self, model, period: Optional[Period]) -> tuple[int, int]:
        stmt = select(
            func.coalesce(func.sum(model.amount_cents), 0), func.count(model.id)
        ).where(model.user_id == self.user_id)
        if period is not None:
            stmt = stmt.where(*within(model.date, period))
        total, count = self.session.execute(stmt).one()
        return int(total or 0), int(count or 0)

    def _net_salaries(self, period: Period) -> int:
        base = int(
            self.session.execute(
                select(func.coalesce(func.sum(Employee.salary_cents), 0)).where(
                    Employee.user_id == self.user_id, Employee.is_active.is_(True)
                )
            ).scalar_one()
            or 0
        )
        adjustments = self.session.execute(
            select(EmployeeTransaction.type, EmployeeTransaction.amount_cents).where(
                EmployeeTransaction.user_id == self.user_id,
                EmployeeTransaction.year == period.year,
                EmployeeTransaction.month == period.month,
            )
        ).all()
        for kind, amount in adjustments:
            if kind == PayrollAdjustmentType.bonus:
                base += amount
            else:
                base -= amount
        return base

    def _buckets(self, period: Period) -> list[ExpenseCategory]:
        return self.session.scalars(
            select(ExpenseCategory).where(
                ExpenseCategory.user_id == self.user_id,
                ExpenseCategory.year == period.year,
                ExpenseCategory.month == period.month,
            )
        ).all()

    def stats(self, period: Optional[Period] = None) -> dict[str, int]:
        total_income, income_count = self._sum_and_count(Income, period)
        total_expense, expense_count = self._sum_and_count(Expense, period)
        if period is not None:
            total_expense += sum(b.amount_cents for b in self._buckets(period))
            total_expense += self._net_salaries(period)
        return {
            "total_income": total_income,
            "total_expense": total_expense,
            "balance": total_income - total_expense,
            "income_count": income_count,
            "expense_count": expense_count,
        }

    def _dated(self, model, start: Optional[datetime], stop: Optional[datetime]):
        stmt = select(model).where(model.user_id == self.user_id)
        if start is not None and stop is not None:
            stmt = stmt.where(model.date >= start, model.date < stop)
        return self.session.scalars(stmt.order_by(model.date.asc(), model.id.asc())).all()

    def chart_data(self, period: Optional[Period] = None) -> dict[str, list]:
        if period is None:
            return self._all_time_chart_data()
        return self._monthly_chart_data(period)

    def _monthly_chart_data(self, period: Period) -> dict[str, list]:
        incomes = self._dated(Income, period.start, period.next_start)
        expenses = self._dated(Expense, period.start, period.next_start)

        days_in_month = calendar.monthrange(period.year, period.month)[1]
        daily_income: dict[int, int] = defaultdict(int)
        daily_expense: dict[int, int] = defaultdict(int)
        for income in incomes:
            daily_income[income.date.day] += income.amount_cents
        for expense in expenses:
            daily_expense[expense.date.day] += expense.amount_cents
        line = [
            {
                "date": _day_label(datetime(period.year, period.month, day)),
                "income": daily_income[day],
                "expense": daily_expense[day],
            }
            for day in range(1, days_in_month + 1)
        ]

        first = period.shift(-5)
        window = self._dated(Income, first.start, period.next_start), self._dated(
            Expense, first.start, period.next_start
        )
        months = [first.shift(i) for i in range(6)]
        bars = {p: {"month": _month_label(p), "income": 0, "expense": 0} for p in months}
        for key, records in zip(("income", "expense"), window):
            for record in records:
                bucket = bars.get(Period(record.date.year, record.date.month))
                if bucket is not None:
                    bucket[key] += record.amount_cents

        pie: dict[str, int] = {}
        salaries = self._net_salaries(period)
        if salaries > 0:
            pie["Salaries (Net)"] = salaries
        for bucket in self._buckets(period):
            pie[bucket.category] = pie.get(bucket.category, 0) + bucket.amount_cents
        for expense in expenses:
            pie[expense.category] = pie.get(expense.category, 0) + expense.amount_cents

        return {
            "bar_chart_data": [bars[p] for p in months],
            "pie_chart_data": [
                {"name": name, "value": value}
                for name, value in pie.items()
                if value > 0
            ],
            "line_chart_data": line,
        }

    def _all_time_chart_data(self) -> dict[str, list]:
        incomes = self._dated(Income, None, None)
        expenses = self._dated(Expense, None, None)

        bars: dict[Period, dict[str, object]] = {}
        timeline: dict[date, dict[str, object]] = {}
        categories: dict[str, int] = defaultdict(int)
        for key, records in (("income", incomes), ("expense", expenses)):
            for record in records:
                p = Period(record.date.year, record.date.month)
                bar = bars.setdefault(
                    p, {"month": _month_label(p), "income": 0, "expense": 0}
                )
                bar[key] += record.amount_cents
                day = timeline.setdefault(
                    record.date.date(),
                    {"date": _day_label(record.date), "income": 0, "expense": 0},
                )
                day[key] += record.amount_cents
        for expense in expenses:
            categories[expense.category] += expense.amount_cents

        return {
            "bar_chart_data": [bars[p] for p in sorted(bars)],
            "pie_chart_data": [
                {"name": name, "value": value} for name, value in categories.items()
            ],
            "line_chart_data": [timeline[d] for d in sorted(timeline)],
        }

    def recent(
        self, period: Optional[Period] = None, limit: int = 5
    ) -> list[tuple[str, object]]:
        found: list[tuple[str, object]] = []
        for kind, model in (("income", Income), ("expense", Expense)):
            stmt = select(model).where(model.user_id == self.user_id)
            if period is not None:
                stmt = stmt.where(*within(model.date, period))
            stmt = stmt.order_by(model.created_at.desc(), model.id.desc()).limit(10)
            found.extend((kind, record) for record in self.session.scalars(stmt))
        found.sort(key=lambda item: item[1].created_at, reverse=True)
        return found[:limit]
