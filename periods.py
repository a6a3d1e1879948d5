"""Calendar periods used for monthly summaries.

Range queries always use UTC month boundaries (``month_range``), while the
period a stored record belongs to is read from its local calendar fields
(``period_of``). The two can disagree for records stored within a few hours
of a month boundary; callers rely on that distinction.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

MIN_YEAR = 2000


@dataclass(frozen=True, order=True)
class Period:
    year: int
    month: int

    @property
    def start(self) -> datetime:
        return month_range(self.year, self.month)[0]

    @property
    def end(self) -> datetime:
        return month_range(self.year, self.month)[1]

    @property
    def next_start(self) -> datetime:
        return self.shift(1).start

    def shift(self, months: int) -> "Period":
        index = self.year * 12 + (self.month - 1) + months
        return Period(index // 12, index % 12 + 1)


def validate_period(year: int, month: int) -> Period:
    if not 1 <= month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if year < MIN_YEAR:
        raise ValueError(f"Year must be {MIN_YEAR} or later")
    return Period(year, month)


def month_range(year: int, month: int) -> tuple[datetime, datetime]:
    """Return the first and last instant of a month, as naive UTC datetimes."""
    start = datetime(year, month, 1)
    if month == 12:
        next_month = datetime(year + 1, 1, 1)
    else:
        next_month = datetime(year, month + 1, 1)
    end = next_month - timedelta(milliseconds=1)
    return start, end


def within(column, period: Period) -> tuple:
    """Conditions keeping ``column`` inside ``[period.start, period.next_start)``.

    Stored instants keep microseconds, so the inclusive ``end`` of
    ``month_range`` is not used as a query bound.
    """
    return column >= period.start, column < period.next_start


def to_utc_naive(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def period_of(moment: datetime, tz_name: str) -> Period:
    aware = moment.replace(tzinfo=timezone.utc) if moment.tzinfo is None else moment
    local = aware.astimezone(ZoneInfo(tz_name))
    return Period(local.year, local.month)


def local_now(tz_name: str, now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(ZoneInfo(tz_name))
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(ZoneInfo(tz_name))


def local_midnight_utc(year: int, month: int, day: int, tz_name: str) -> datetime:
    """Local midnight of ``day`` in the given month, returned as naive UTC."""
    local = datetime(year, month, day, tzinfo=ZoneInfo(tz_name))
    return to_utc_naive(local)
