from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import MonthlySummary, PayrollAdjustmentType
from periods import MIN_YEAR


class IncomeIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(default="Other", min_length=1, max_length=100)
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)
    customer_id: Optional[int] = None


class ExpenseIn(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., ge=0)
    category: str = Field(..., min_length=1, max_length=100)
    date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=500)


class ExpenseCategoryIn(BaseModel):
    category: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., ge=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=MIN_YEAR)
    description: Optional[str] = Field(default=None, max_length=500)


class ExpenseCategoryUpdate(BaseModel):
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, ge=0)
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=MIN_YEAR)
    description: Optional[str] = Field(default=None, max_length=500)


class EmployeeIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    salary_cents: int = Field(..., ge=0)
    job_title: str = Field(..., min_length=1, max_length=120)
    phone_number: Optional[str] = Field(default=None, max_length=40)
    date_joined: Optional[date] = None


class EmployeeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    salary_cents: Optional[int] = Field(default=None, ge=0)
    job_title: Optional[str] = Field(default=None, min_length=1, max_length=120)
    phone_number: Optional[str] = Field(default=None, max_length=40)
    date_joined: Optional[date] = None
    is_active: Optional[bool] = None


class EmployeeTransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    employee_id: int
    type: PayrollAdjustmentType
    amount_cents: int = Field(..., ge=0)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=MIN_YEAR)
    description: Optional[str] = Field(default=None, max_length=500)


class CustomerIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    brand_name: Optional[str] = Field(default=None, max_length=120)
    phone_number: str = Field(..., min_length=1, max_length=40)
    monthly_amount_cents: int = Field(..., ge=0)
    payment_deadline: Optional[datetime] = None


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    brand_name: Optional[str] = Field(default=None, max_length=120)
    phone_number: Optional[str] = Field(default=None, min_length=1, max_length=40)
    monthly_amount_cents: Optional[int] = Field(default=None, ge=0)
    payment_deadline: Optional[datetime] = None


class PaymentPeriodIn(BaseModel):
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=MIN_YEAR)


class IncomeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    amount_cents: int
    category: str
    date: datetime
    description: Optional[str]
    customer_id: Optional[int]
    created_at: datetime


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    amount_cents: int
    category: str
    date: datetime
    description: Optional[str]
    created_at: datetime


class ExpenseCategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: str
    amount_cents: int
    month: int
    year: int
    description: Optional[str]


class EmployeeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    salary_cents: int
    job_title: str
    phone_number: Optional[str]
    date_joined: date
    is_active: bool


class EmployeeTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    employee_name: Optional[str] = None
    type: PayrollAdjustmentType
    amount_cents: int
    month: int
    year: int
    description: Optional[str]


class CustomerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    brand_name: Optional[str]
    phone_number: str
    monthly_amount_cents: int
    last_paid_date: Optional[datetime]
    payment_deadline: Optional[datetime]
    created_at: datetime


class ExpenseBreakdownOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transportation: int = Field(0, alias="Transportation")
    repair: int = Field(0, alias="Repair")
    equipment: int = Field(0, alias="Equipment")
    regular_expenses: int = Field(0, alias="regularExpenses")


class IncomeBreakdownOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    monthly_collections: int = Field(0, alias="monthlyCollections")
    advertising_expenses: int = Field(0, alias="advertisingExpenses")


class MonthlySummaryOut(BaseModel):
    """External shape of a summary row. Money values are integer cents."""

    model_config = ConfigDict(populate_by_name=True)

    user: int
    month: int
    year: int
    total_income: int = Field(alias="totalIncome")
    total_expenses: int = Field(alias="totalExpenses")
    total_salaries: int = Field(alias="totalSalaries")
    profit: int
    expense_breakdown: ExpenseBreakdownOut = Field(alias="expenseBreakdown")
    income_breakdown: IncomeBreakdownOut = Field(alias="incomeBreakdown")
    category_breakdown: dict[str, int] = Field(alias="categoryBreakdown")
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    @classmethod
    def from_model(cls, summary: MonthlySummary) -> "MonthlySummaryOut":
        return cls(
            user=summary.user_id,
            month=summary.month,
            year=summary.year,
            total_income=summary.total_income_cents,
            total_expenses=summary.total_expenses_cents,
            total_salaries=summary.total_salaries_cents,
            profit=summary.profit_cents,
            expense_breakdown=ExpenseBreakdownOut.model_validate(
                summary.expense_breakdown or {}
            ),
            income_breakdown=IncomeBreakdownOut.model_validate(
                summary.income_breakdown or {}
            ),
            category_breakdown=dict(summary.category_totals or {}),
            created_at=summary.created_at,
            updated_at=summary.updated_at,
        )

    def to_json(self) -> dict[str, object]:
        return self.model_dump(mode="json", by_alias=True)
