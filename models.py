from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class PayrollAdjustmentType(str, Enum):
    bonus = "BONUS"
    deduction = "DEDUCTION"


PAYROLL_ADJUSTMENT_ENUM = SAEnum(
    PayrollAdjustmentType,
    name="payrolladjustmenttype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Customer(Base, TimestampMixin):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    brand_name: Mapped[Optional[str]] = mapped_column(String(120))
    phone_number: Mapped[str] = mapped_column(String(40), nullable=False)
    monthly_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    last_paid_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    payment_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime)

    payments: Mapped[list["Income"]] = relationship(
        "Income", back_populates="customer"
    )

    __table_args__ = (
        Index("ix_customers_user_created", "user_id", "created_at"),
        CheckConstraint(
            "monthly_amount_cents >= 0", name="ck_customers_amount_positive"
        ),
    )


class Income(Base, TimestampMixin):
    __tablename__ = "incomes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="Other")
    # Stored as a naive UTC instant.
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    customer_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("customers.id", ondelete="SET NULL")
    )

    customer: Mapped[Optional["Customer"]] = relationship(
        "Customer", back_populates="payments"
    )

    __table_args__ = (
        Index("ix_incomes_user_date", "user_id", "date"),
        Index("ix_incomes_user_customer_date", "user_id", "customer_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_incomes_amount_positive"),
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )


class ExpenseCategory(Base, TimestampMixin):
    """A manually entered expense bucket for one month."""

    __tablename__ = "expense_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_expense_categories_user_month", "user_id", "year", "month"),
        CheckConstraint(
            "amount_cents >= 0", name="ck_expense_categories_amount_positive"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_expense_categories_month"),
    )


class Employee(Base, TimestampMixin):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    salary_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    job_title: Mapped[str] = mapped_column(String(120), nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(String(40))
    date_joined: Mapped[date] = mapped_column(Date, default=date.today, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    adjustments: Mapped[list["EmployeeTransaction"]] = relationship(
        "EmployeeTransaction", back_populates="employee"
    )

    __table_args__ = (
        Index("ix_employees_user_active", "user_id", "is_active"),
        CheckConstraint("salary_cents >= 0", name="ck_employees_salary_positive"),
    )


class EmployeeTransaction(Base, TimestampMixin):
    """A one-off bonus or deduction booked against one employee and month."""

    __tablename__ = "employee_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id"), nullable=False
    )
    type: Mapped[PayrollAdjustmentType] = mapped_column(
        PAYROLL_ADJUSTMENT_ENUM, nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    employee: Mapped["Employee"] = relationship(
        "Employee", back_populates="adjustments"
    )

    __table_args__ = (
        Index("ix_employee_transactions_user_month", "user_id", "year", "month"),
        CheckConstraint(
            "amount_cents >= 0", name="ck_employee_transactions_amount_positive"
        ),
        CheckConstraint(
            "month BETWEEN 1 AND 12", name="ck_employee_transactions_month"
        ),
    )


class MonthlySummary(Base, TimestampMixin):
    """Derived per-user monthly rollup; always regenerable from source records."""

    __tablename__ = "monthly_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_summary_user_month"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_summary_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    total_income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_expenses_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    total_salaries_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    profit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expense_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    income_breakdown: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    category_totals: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
