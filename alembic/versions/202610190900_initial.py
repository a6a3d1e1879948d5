"""initial schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "customers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("brand_name", sa.String(120)),
        sa.Column("phone_number", sa.String(40), nullable=False),
        sa.Column("monthly_amount_cents", sa.Integer(), nullable=False),
        sa.Column("last_paid_date", sa.DateTime()),
        sa.Column("payment_deadline", sa.DateTime()),
        *_timestamps(),
        sa.CheckConstraint(
            "monthly_amount_cents >= 0", name="ck_customers_amount_positive"
        ),
    )
    op.create_index(
        "ix_customers_user_created", "customers", ["user_id", "created_at"]
    )

    op.create_table(
        "incomes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False, server_default="Other"),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "customer_id",
            sa.Integer(),
            sa.ForeignKey("customers.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_incomes_amount_positive"),
    )
    op.create_index("ix_incomes_user_date", "incomes", ["user_id", "date"])
    op.create_index(
        "ix_incomes_user_customer_date", "incomes", ["user_id", "customer_id", "date"]
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])

    op.create_table(
        "expense_categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_expense_categories_amount_positive"
        ),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_expense_categories_month"),
    )
    op.create_index(
        "ix_expense_categories_user_month",
        "expense_categories",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("salary_cents", sa.Integer(), nullable=False),
        sa.Column("job_title", sa.String(120), nullable=False),
        sa.Column("phone_number", sa.String(40)),
        sa.Column("date_joined", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("salary_cents >= 0", name="ck_employees_salary_positive"),
    )
    op.create_index("ix_employees_user_active", "employees", ["user_id", "is_active"])

    op.create_table(
        "employee_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False
        ),
        sa.Column(
            "type",
            sa.Enum("BONUS", "DEDUCTION", name="payrolladjustmenttype"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_employee_transactions_amount_positive"
        ),
        sa.CheckConstraint(
            "month BETWEEN 1 AND 12", name="ck_employee_transactions_month"
        ),
    )
    op.create_index(
        "ix_employee_transactions_user_month",
        "employee_transactions",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "monthly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("total_income_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "total_expenses_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "total_salaries_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("profit_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expense_breakdown", sa.JSON(), nullable=False),
        sa.Column("income_breakdown", sa.JSON(), nullable=False),
        sa.Column("category_totals", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_summary_user_month"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_summary_month"),
    )


def downgrade() -> None:
    op.drop_table("monthly_summaries")
    op.drop_index("ix_employee_transactions_user_month", table_name="employee_transactions")
    op.drop_table("employee_transactions")
    op.drop_index("ix_employees_user_active", table_name="employees")
    op.drop_table("employees")
    op.drop_index("ix_expense_categories_user_month", table_name="expense_categories")
    op.drop_table("expense_categories")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_index("ix_incomes_user_customer_date", table_name="incomes")
    op.drop_index("ix_incomes_user_date", table_name="incomes")
    op.drop_table("incomes")
    op.drop_index("ix_customers_user_created", table_name="customers")
    op.drop_table("customers")
