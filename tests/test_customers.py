from datetime import datetime

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Income
from periods import Period
from schemas import CustomerIn, CustomerUpdate, PaymentPeriodIn
from services import (
    CustomerService,
    NotFoundError,
    OwnershipError,
    PageRequest,
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


def _customer(service: CustomerService, **overrides):
    data = {
        "name": "Lina",
        "brand_name": "Lina's Bakery",
        "phone_number": "+961 70 000 000",
        "monthly_amount_cents": 25_000,
    }
    data.update(overrides)
    return service.create(CustomerIn(**data))


def test_paying_a_past_month_books_income_on_the_fifteenth() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)

    customer, income = customers.pay(
        lina.id, PaymentPeriodIn(month=3, year=2024), now=datetime(2024, 6, 10, 8, 30)
    )

    assert income.date == datetime(2024, 3, 15, 0, 0)
    assert income.amount_cents == 25_000
    assert income.category == "customer payment"
    assert income.title == "Monthly payment from Lina (Lina's Bakery)"
    assert income.description == "Monthly payment for 3/2024"
    assert customer.last_paid_date == datetime(2024, 3, 15, 0, 0)
    assert get_monthly_summary(session, 1, 2024, 3).total_income_cents == 25_000


def test_paying_the_current_month_uses_now() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers, brand_name=None)

    _, income = customers.pay(
        lina.id, PaymentPeriodIn(month=6, year=2024), now=datetime(2024, 6, 10, 8, 30)
    )

    assert income.date == datetime(2024, 6, 10, 8, 30)
    assert income.title == "Monthly payment from Lina"


def test_local_fifteenth_stays_inside_the_paid_month() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="Asia/Tokyo")
    lina = _customer(customers)

    _, income = customers.pay(
        lina.id, PaymentPeriodIn(month=3, year=2024), now=datetime(2024, 6, 1)
    )

    assert income.date == datetime(2024, 3, 14, 15, 0)
    assert get_monthly_summary(session, 1, 2024, 3).total_income_cents == 25_000

    customers.unpay(lina.id, PaymentPeriodIn(month=3, year=2024))
    assert get_monthly_summary(session, 1, 2024, 3).total_income_cents == 0


def test_last_paid_date_never_moves_backwards_and_unpay_resets_it() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)
    now = datetime(2024, 6, 10, 8, 30)

    customers.pay(lina.id, PaymentPeriodIn(month=6, year=2024), now=now)
    customer, _ = customers.pay(lina.id, PaymentPeriodIn(month=3, year=2024), now=now)
    assert customer.last_paid_date == now

    customers.unpay(lina.id, PaymentPeriodIn(month=6, year=2024))
    assert customers.get(lina.id).last_paid_date == datetime(2024, 3, 15)
    assert get_monthly_summary(session, 1, 2024, 6).total_income_cents == 0

    customers.unpay(lina.id, PaymentPeriodIn(month=3, year=2024))
    assert customers.get(lina.id).last_paid_date is None
    assert session.scalars(select(Income)).all() == []

    with pytest.raises(NotFoundError):
        customers.unpay(lina.id, PaymentPeriodIn(month=3, year=2024))


def test_other_users_cannot_pay_or_edit_a_customer() -> None:
    session = make_session()
    lina = _customer(CustomerService(session, timezone="UTC"))
    intruder = CustomerService(session, user_id=2, timezone="UTC")

    with pytest.raises(OwnershipError):
        intruder.pay(lina.id, PaymentPeriodIn(month=3, year=2024))
    with pytest.raises(OwnershipError):
        intruder.update(lina.id, CustomerUpdate(name="Mine now"))
    with pytest.raises(NotFoundError):
        intruder.pay(12_345, PaymentPeriodIn(month=3, year=2024))


def test_update_rejects_explicit_nulls_for_required_fields() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)

    updated = customers.update(lina.id, CustomerUpdate(monthly_amount_cents=30_000))
    assert updated.monthly_amount_cents == 30_000
    with pytest.raises(ValidationError):
        customers.update(lina.id, CustomerUpdate(phone_number=None))


def test_list_flags_customers_paid_in_the_period() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)
    omar = _customer(customers, name="Omar", brand_name=None)
    _, income = customers.pay(
        lina.id, PaymentPeriodIn(month=3, year=2024), now=datetime(2024, 6, 1)
    )

    rows, meta = customers.list(Period(2024, 3), PageRequest.build())
    flags = {row["customer"].id: (row["is_paid"], row["payment_id"]) for row in rows}

    assert flags == {lina.id: (True, income.id), omar.id: (False, None)}
    assert meta["total_items"] == 2
    assert meta["has_next_page"] is False

    rows, _ = customers.list(None, PageRequest.build())
    assert all("is_paid" not in row for row in rows)


def test_deleting_a_customer_keeps_its_income() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)
    _, income = customers.pay(
        lina.id, PaymentPeriodIn(month=3, year=2024), now=datetime(2024, 6, 1)
    )

    customers.delete(lina.id)
    session.expire_all()

    kept = session.get(Income, income.id)
    assert kept is not None
    assert kept.customer_id is None


def test_listed_payment_is_the_one_unpay_removes() -> None:
    session = make_session()
    customers = CustomerService(session, timezone="UTC")
    lina = _customer(customers)
    march = PaymentPeriodIn(month=3, year=2024)
    _, first = customers.pay(lina.id, march, now=datetime(2024, 6, 1))
    _, second = customers.pay(lina.id, march, now=datetime(2024, 6, 1))

    rows, _ = customers.list(Period(2024, 3), PageRequest.build())
    assert rows[0]["payment_id"] == second.id

    customers.unpay(lina.id, march)
    rows, _ = customers.list(Period(2024, 3), PageRequest.build())
    assert rows[0]["payment_id"] == first.id
    assert get_monthly_summary(session, 1, 2024, 3).total_income_cents == 25_000
