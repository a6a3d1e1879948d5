import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, Path, Query, Request
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionLocal, create_all
from periods import MIN_YEAR, Period, validate_period
from scheduler import SchedulerManager
from schemas import (
    CustomerIn,
    CustomerOut,
    CustomerUpdate,
    EmployeeIn,
    EmployeeOut,
    EmployeeTransactionIn,
    EmployeeTransactionOut,
    EmployeeUpdate,
    ExpenseCategoryIn,
    ExpenseCategoryOut,
    ExpenseCategoryUpdate,
    ExpenseIn,
    ExpenseOut,
    IncomeIn,
    IncomeOut,
    MonthlySummaryOut,
    PaymentPeriodIn,
)
from services import (
    CustomerService,
    DashboardService,
    EmployeeService,
    ExpenseCategoryService,
    ExpenseService,
    IncomeService,
    MonthlySummaryService,
    NotFoundError,
    OwnershipError,
    PageRequest,
    ServiceError,
    get_current_user_id,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Small Business Tracker")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_current_user_id()


scheduler_manager = SchedulerManager(session_factory=SessionLocal)


@app.on_event("startup")
def startup_event():
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    create_all()
    if settings.scheduler_enabled:
        scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(NotFoundError)
def not_found_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(OwnershipError)
def ownership_handler(_request: Request, exc: OwnershipError) -> JSONResponse:
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(ServiceError)
def service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Exception)
def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def period_from_query(
    month: Optional[int] = Query(default=None),
    year: Optional[int] = Query(default=None),
) -> Optional[Period]:
    if month is None and year is None:
        return None
    if month is None or year is None:
        raise ServiceError("month and year must be given together")
    try:
        return validate_period(year, month)
    except ValueError as exc:
        raise ServiceError(str(exc)) from exc


def page_from_query(
    page: Optional[int] = Query(default=None),
    limit: Optional[int] = Query(default=None),
) -> PageRequest:
    return PageRequest.build(page, limit)


# Monthly summaries


@app.get("/api/monthly-summaries")
def list_summaries(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    summaries = MonthlySummaryService(db, user_id).list_all()
    return [MonthlySummaryOut.from_model(s).to_json() for s in summaries]


@app.post("/api/monthly-summaries/rebuild")
def rebuild_summaries(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    rebuilt = MonthlySummaryService(db, user_id).rebuild()
    return {"rebuilt": len(rebuilt)}


@app.get("/api/monthly-summaries/{month}/{year}")
def get_summary(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=MIN_YEAR),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    summary = MonthlySummaryService(db, user_id).get(Period(year, month))
    return MonthlySummaryOut.from_model(summary).to_json()


@app.post("/api/monthly-summaries/{month}/{year}/recalculate")
def recalculate_summary(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=MIN_YEAR),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    summary = MonthlySummaryService(db, user_id).recalculate(Period(year, month))
    return MonthlySummaryOut.from_model(summary).to_json()


# Incomes and expenses


@app.post("/api/incomes", status_code=201)
def create_income(
    data: IncomeIn, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    income = IncomeService(db, user_id).create(data)
    return IncomeOut.model_validate(income).model_dump(mode="json")


@app.get("/api/incomes")
def list_incomes(
    period: Optional[Period] = Depends(period_from_query),
    page: PageRequest = Depends(page_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items, meta = IncomeService(db, user_id).list(period, page)
    return {
        "items": [IncomeOut.model_validate(i).model_dump(mode="json") for i in items],
        "pagination": meta,
    }


@app.delete("/api/incomes/{income_id}", status_code=204)
def delete_income(
    income_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    IncomeService(db, user_id).delete(income_id)
    return Response(status_code=204)


@app.post("/api/expenses", status_code=201)
def create_expense(
    data: ExpenseIn, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    expense = ExpenseService(db, user_id).create(data)
    return ExpenseOut.model_validate(expense).model_dump(mode="json")


@app.get("/api/expenses")
def list_expenses(
    period: Optional[Period] = Depends(period_from_query),
    page: PageRequest = Depends(page_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items, meta = ExpenseService(db, user_id).list(period, page)
    return {
        "items": [ExpenseOut.model_validate(e).model_dump(mode="json") for e in items],
        "pagination": meta,
    }


@app.delete("/api/expenses/{expense_id}", status_code=204)
def delete_expense(
    expense_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    ExpenseService(db, user_id).delete(expense_id)
    return Response(status_code=204)


# Expense categories


@app.post("/api/expense-categories", status_code=201)
def create_expense_category(
    data: ExpenseCategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    bucket = ExpenseCategoryService(db, user_id).create(data)
    return ExpenseCategoryOut.model_validate(bucket).model_dump(mode="json")


@app.get("/api/expense-categories")
def list_expense_categories(
    month: Optional[int] = Query(default=None, ge=1, le=12),
    year: Optional[int] = Query(default=None, ge=MIN_YEAR),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows = ExpenseCategoryService(db, user_id).list(year=year, month=month)
    for row in rows:
        if "actual_expenses" in row:
            row["actual_expenses"] = [
                ExpenseOut.model_validate(e).model_dump(mode="json")
                for e in row["actual_expenses"]
            ]
    return rows


@app.get("/api/expense-categories/breakdown/{month}/{year}")
def expense_category_breakdown(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=MIN_YEAR),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    data = ExpenseCategoryService(db, user_id).breakdown(year, month)
    data["details"] = [
        ExpenseCategoryOut.model_validate(b).model_dump(mode="json")
        for b in data["details"]
    ]
    return data


@app.get("/api/expense-categories/unique")
def unique_expense_categories(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    return ExpenseCategoryService(db, user_id).unique_names()


@app.put("/api/expense-categories/{bucket_id}")
def update_expense_category(
    bucket_id: int,
    data: ExpenseCategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    bucket = ExpenseCategoryService(db, user_id).update(bucket_id, data)
    return ExpenseCategoryOut.model_validate(bucket).model_dump(mode="json")


@app.delete("/api/expense-categories/{bucket_id}", status_code=204)
def delete_expense_category(
    bucket_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    ExpenseCategoryService(db, user_id).delete(bucket_id)
    return Response(status_code=204)


# Employees and payroll adjustments


def _adjustment_json(adjustment) -> dict[str, object]:
    out = EmployeeTransactionOut.model_validate(adjustment)
    if adjustment.employee is not None:
        out = out.model_copy(update={"employee_name": adjustment.employee.name})
    return out.model_dump(mode="json")


@app.get("/api/employees")
def list_employees(
    page: PageRequest = Depends(page_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    items, meta = EmployeeService(db, user_id).list(page)
    return {
        "items": [EmployeeOut.model_validate(e).model_dump(mode="json") for e in items],
        "pagination": meta,
    }


@app.get("/api/employees/active")
def list_active_employees(
    db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    employees = EmployeeService(db, user_id).active()
    return [EmployeeOut.model_validate(e).model_dump(mode="json") for e in employees]


@app.post("/api/employees/transaction", status_code=201)
def create_payroll_adjustment(
    data: EmployeeTransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    adjustment = EmployeeService(db, user_id).add_transaction(data)
    return _adjustment_json(adjustment)


@app.get("/api/employees/transaction/{month}/{year}")
def list_payroll_adjustments(
    month: int = Path(..., ge=1, le=12),
    year: int = Path(..., ge=MIN_YEAR),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    adjustments = EmployeeService(db, user_id).transactions_for(year, month)
    return [_adjustment_json(a) for a in adjustments]


@app.delete("/api/employees/transaction/{transaction_id}", status_code=204)
def delete_payroll_adjustment(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    EmployeeService(db, user_id).delete_transaction(transaction_id)
    return Response(status_code=204)


@app.get("/api/employees/{employee_id}")
def get_employee(
    employee_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    employee = EmployeeService(db, user_id).get(employee_id)
    return EmployeeOut.model_validate(employee).model_dump(mode="json")


@app.post("/api/employees", status_code=201)
def create_employee(
    data: EmployeeIn, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    employee = EmployeeService(db, user_id).create(data)
    return EmployeeOut.model_validate(employee).model_dump(mode="json")


@app.put("/api/employees/{employee_id}")
def update_employee(
    employee_id: int,
    data: EmployeeUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    employee = EmployeeService(db, user_id).update(employee_id, data)
    return EmployeeOut.model_validate(employee).model_dump(mode="json")


@app.delete("/api/employees/{employee_id}", status_code=204)
def delete_employee(
    employee_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    EmployeeService(db, user_id).delete(employee_id)
    return Response(status_code=204)


# Customers


@app.post("/api/customers", status_code=201)
def create_customer(
    data: CustomerIn, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    customer = CustomerService(db, user_id).create(data)
    return CustomerOut.model_validate(customer).model_dump(mode="json")


@app.get("/api/customers")
def list_customers(
    period: Optional[Period] = Depends(period_from_query),
    page: PageRequest = Depends(page_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    rows, meta = CustomerService(db, user_id).list(period, page)
    items = []
    for row in rows:
        item = CustomerOut.model_validate(row["customer"]).model_dump(mode="json")
        if "is_paid" in row:
            item["is_paid"] = row["is_paid"]
            item["payment_id"] = row["payment_id"]
        items.append(item)
    return {"items": items, "pagination": meta}


@app.post("/api/customers/pay/{customer_id}")
def pay_customer(
    customer_id: int,
    data: PaymentPeriodIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    customer, income = CustomerService(db, user_id).pay(customer_id, data)
    return {
        "message": "Payment processed successfully",
        "customer": CustomerOut.model_validate(customer).model_dump(mode="json"),
        "income": IncomeOut.model_validate(income).model_dump(mode="json"),
    }


@app.post("/api/customers/unpay/{customer_id}")
def unpay_customer(
    customer_id: int,
    data: PaymentPeriodIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    CustomerService(db, user_id).unpay(customer_id, data)
    return {"message": "Payment removed successfully"}


@app.put("/api/customers/{customer_id}")
def update_customer(
    customer_id: int,
    data: CustomerUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    customer = CustomerService(db, user_id).update(customer_id, data)
    return CustomerOut.model_validate(customer).model_dump(mode="json")


@app.delete("/api/customers/{customer_id}", status_code=204)
def delete_customer(
    customer_id: int, db: Session = Depends(get_db), user_id: int = Depends(current_user_id)
):
    CustomerService(db, user_id).delete(customer_id)
    return Response(status_code=204)


# Dashboard


@app.get("/api/dashboard/stats")
def dashboard_stats(
    period: Optional[Period] = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return DashboardService(db, user_id).stats(period)


@app.get("/api/dashboard/chart-data")
def dashboard_chart_data(
    period: Optional[Period] = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    return DashboardService(db, user_id).chart_data(period)


@app.get("/api/dashboard/recent")
def dashboard_recent(
    period: Optional[Period] = Depends(period_from_query),
    db: Session = Depends(get_db),
    user_id: int = Depends(current_user_id),
):
    recent = DashboardService(db, user_id).recent(period)
    items = []
    for kind, record in recent:
        schema = IncomeOut if kind == "income" else ExpenseOut
        item = schema.model_validate(record).model_dump(mode="json")
        item["type"] = kind
        items.append(item)
    return items
