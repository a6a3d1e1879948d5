"""Monthly summary aggregation and its materialised cache.

``compute_monthly_summary`` is a pure read over the source records of one
user-period. ``upsert_monthly_summary`` stores the result as the single
``MonthlySummary`` row for that period. Mutations never call either directly;
they hand a ``PeriodsTouched`` or ``PayrollChanged`` event to
``SummaryRecalculator``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from sqlalchemy import func, select, union
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    Employee,
    EmployeeTransaction,
    Expense,
    ExpenseCategory,
    Income,
    MonthlySummary,
    PayrollAdjustmentType,
)
from periods import Period, within

logger = logging.getLogger(__name__)

LEGACY_BREAKDOWN_KEYS = ("Transportation", "Repair", "Equipment")


@dataclass(frozen=True)
class SummaryResult:
    year: int
    month: int
    total_income_cents: int
    regular_expenses_cents: int
    category_expenses_cents: int
    base_salary_cents: int
    bonuses_cents: int
    deductions_cents: int
    category_totals: dict[str, int] = field(default_factory=dict)

    @property
    def total_expenses_cents(self) -> int:
        return self.regular_expenses_cents + self.category_expenses_cents

    @property
    def total_salaries_cents(self) -> int:
        return self.base_salary_cents + self.bonuses_cents - self.deductions_cents

    @property
    def profit_cents(self) -> int:
        # Negative profit is a loss, not an error.
        return (
            self.total_income_cents
            - self.total_expenses_cents
            - self.total_salaries_cents
        )

    @property
    def expense_breakdown(self) -> dict[str, int]:
        breakdown = {key: 0 for key in LEGACY_BREAKDOWN_KEYS}
        # Buckets outside the legacy names only count towards the total.
        for name, amount in self.category_totals.items():
            if name in breakdown:
                breakdown[name] += amount
        breakdown["regularExpenses"] = self.regular_expenses_cents
        return breakdown

    @property
    def income_breakdown(self) -> dict[str, int]:
        return {
            "monthlyCollections": self.total_income_cents,
            "advertisingExpenses": 0,
        }

    def as_columns(self) -> dict[str, object]:
        return {
            "total_income_cents": self.total_income_cents,
            "total_expenses_cents": self.total_expenses_cents,
            "total_salaries_cents": self.total_salaries_cents,
            "profit_cents": self.profit_cents,
            "expense_breakdown": self.expense_breakdown,
            "income_breakdown": self.income_breakdown,
            "category_totals": dict(sorted(self.category_totals.items())),
        }


def _sum_dated(session: Session, model, user_id: int, year: int, month: int) -> int:
    return int(
        session.execute(
            select(func.coalesce(func.sum(model.amount_cents), 0)).where(
                model.user_id == user_id,
                *within(model.date, Period(year, month)),
            )
        ).scalar_one()
        or 0
    )


def compute_monthly_summary(
    session: Session, user_id: int, year: int, month: int
) -> SummaryResult:
    total_income = _sum_dated(session, Income, user_id, year, month)
    regular_expenses = _sum_dated(session, Expense, user_id, year, month)

    category_rows = session.execute(
        select(ExpenseCategory.category, func.sum(ExpenseCategory.amount_cents))
        .where(
            ExpenseCategory.user_id == user_id,
            ExpenseCategory.year == year,
            ExpenseCategory.month == month,
        )
        .group_by(ExpenseCategory.category)
    ).all()
    category_totals = {name: int(amount or 0) for name, amount in category_rows}

    base_salary = int(
        session.execute(
            select(func.coalesce(func.sum(Employee.salary_cents), 0)).where(
                Employee.user_id == user_id,
                Employee.is_active.is_(True),
            )
        ).scalar_one()
        or 0
    )

    adjustments = dict(
        session.execute(
            select(
                EmployeeTransaction.type, func.sum(EmployeeTransaction.amount_cents)
            )
            .where(
                EmployeeTransaction.user_id == user_id,
                EmployeeTransaction.year == year,
                EmployeeTransaction.month == month,
            )
            .group_by(EmployeeTransaction.type)
        ).all()
    )

    return SummaryResult(
        year=year,
        month=month,
        total_income_cents=total_income,
        regular_expenses_cents=regular_expenses,
        category_expenses_cents=sum(category_totals.values()),
        base_salary_cents=base_salary,
        bonuses_cents=int(adjustments.get(PayrollAdjustmentType.bonus) or 0),
        deductions_cents=int(adjustments.get(PayrollAdjustmentType.deduction) or 0),
        category_totals=category_totals,
    )


def get_monthly_summary(
    session: Session, user_id: int, year: int, month: int
) -> Optional[MonthlySummary]:
    return session.scalar(
        select(MonthlySummary).where(
            MonthlySummary.user_id == user_id,
            MonthlySummary.year == year,
            MonthlySummary.month == month,
        )
    )


def list_monthly_summaries(session: Session, user_id: int) -> list[MonthlySummary]:
    return session.scalars(
        select(MonthlySummary)
        .where(MonthlySummary.user_id == user_id)
        .order_by(MonthlySummary.year.desc(), MonthlySummary.month.desc())
    ).all()


def cached_periods(session: Session, user_id: int) -> list[Period]:
    rows = session.execute(
        select(MonthlySummary.year, MonthlySummary.month).where(
            MonthlySummary.user_id == user_id
        )
    ).all()
    return sorted(Period(y, m) for y, m in rows)


def upsert_monthly_summary(
    session: Session, user_id: int, result: SummaryResult
) -> MonthlySummary:
    """Create or overwrite the summary row of ``result``'s period.

    The unique constraint on (user, year, month) decides concurrent inserts;
    the loser overwrites the winner's row instead.
    """
    summary = get_monthly_summary(session, user_id, result.year, result.month)
    if summary is None:
        summary = MonthlySummary(
            user_id=user_id,
            year=result.year,
            month=result.month,
            **result.as_columns(),
        )
        session.add(summary)
        try:
            session.flush()
            return summary
        except IntegrityError:
            session.rollback()
            summary = get_monthly_summary(session, user_id, result.year, result.month)
            if summary is None:
                raise

    for key, value in result.as_columns().items():
        setattr(summary, key, value)
    session.flush()
    return summary


@dataclass(frozen=True)
class PeriodsTouched:
    user_id: int
    periods: frozenset[Period]
    reason: str

    @classmethod
    def of(cls, user_id: int, *periods: Period, reason: str) -> "PeriodsTouched":
        return cls(user_id, frozenset(periods), reason)


@dataclass(frozen=True)
class PayrollChanged:
    """Employee salaries or activity changed; every cached period is stale."""

    user_id: int
    reason: str


SummaryEvent = Union[PeriodsTouched, PayrollChanged]


class SummaryRecalculator:
    def __init__(self, session: Session) -> None:
        self.session = session

    def recalculate(self, user_id: int, period: Period) -> MonthlySummary:
        result = compute_monthly_summary(
            self.session, user_id, period.year, period.month
        )
        try:
            summary = upsert_monthly_summary(self.session, user_id, result)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        logger.info(
            f"summary_recalculated: user={user_id} period={period.year}-{period.month:02d} "
            f"profit_cents={result.profit_cents}"
        )
        return summary

    def get_or_compute(self, user_id: int, period: Period) -> MonthlySummary:
        summary = get_monthly_summary(self.session, user_id, period.year, period.month)
        if summary is not None:
            return summary
        return self.recalculate(user_id, period)

    def recalculate_many(
        self, user_id: int, periods: Iterable[Period]
    ) -> list[MonthlySummary]:
        return [self.recalculate(user_id, period) for period in sorted(set(periods))]

    def handle(self, event: SummaryEvent) -> list[MonthlySummary]:
        if isinstance(event, PayrollChanged):
            periods = cached_periods(self.session, event.user_id)
        else:
            periods = sorted(event.periods)
        logger.info(
            f"summary_event: user={event.user_id} reason={event.reason} periods={len(periods)}"
        )
        return self.recalculate_many(event.user_id, periods)

    def rebuild(self, user_id: int) -> list[MonthlySummary]:
        """Recompute every period with source records or an existing row."""
        periods = set(cached_periods(self.session, user_id))
        for model in (Income, Expense):
            for moment in self.session.scalars(
                select(model.date).where(model.user_id == user_id)
            ):
                periods.add(Period(moment.year, moment.month))
        explicit = union(
            select(ExpenseCategory.year, ExpenseCategory.month).where(
                ExpenseCategory.user_id == user_id
            ),
            select(EmployeeTransaction.year, EmployeeTransaction.month).where(
                EmployeeTransaction.user_id == user_id
            ),
        )
        for y, m in self.session.execute(explicit).all():
            periods.add(Period(y, m))
        return self.recalculate_many(user_id, periods)

    def refresh_all(self) -> int:
        user_ids = self.session.scalars(
            select(MonthlySummary.user_id).distinct()
        ).all()
        count = 0
        for user_id in user_ids:
            count += len(
                self.handle(PayrollChanged(user_id, reason="scheduled_refresh"))
            )
        return count
