from datetime import datetime, timedelta, timezone

import pytest

from periods import (
    Period,
    local_midnight_utc,
    local_now,
    month_range,
    period_of,
    to_utc_naive,
    validate_period,
    within,
)


def test_month_range_covers_whole_month_in_utc():
    start, end = month_range(2024, 2)
    assert start == datetime(2024, 2, 1, 0, 0)
    assert end == datetime(2024, 2, 29, 23, 59, 59, 999000)


def test_month_range_rolls_december_into_next_year():
    start, end = month_range(2023, 12)
    assert start == datetime(2023, 12, 1)
    assert end == datetime(2023, 12, 31, 23, 59, 59, 999000)
    assert end + timedelta(milliseconds=1) == datetime(2024, 1, 1)


def test_period_shift_crosses_year_boundaries():
    assert Period(2024, 3).shift(-5) == Period(2023, 10)
    assert Period(2024, 12).shift(1) == Period(2025, 1)
    assert Period(2024, 1).shift(-1) == Period(2023, 12)
    assert sorted([Period(2024, 1), Period(2023, 12)]) == [
        Period(2023, 12),
        Period(2024, 1),
    ]


def test_period_of_uses_local_calendar_fields():
    late_utc = datetime(2024, 3, 31, 20, 0)
    assert period_of(late_utc, "UTC") == Period(2024, 3)
    # 05:00 on April 1st in Tokyo.
    assert period_of(late_utc, "Asia/Tokyo") == Period(2024, 4)
    assert period_of(datetime(2024, 4, 1, 2, 0), "America/New_York") == Period(
        2024, 3
    )


def test_validate_period_rejects_out_of_range_values():
    assert validate_period(2024, 12) == Period(2024, 12)
    with pytest.raises(ValueError):
        validate_period(2024, 13)
    with pytest.raises(ValueError):
        validate_period(2024, 0)
    with pytest.raises(ValueError):
        validate_period(1999, 5)


def test_to_utc_naive_normalises_aware_datetimes():
    aware = datetime(2024, 3, 15, 12, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_utc_naive(aware) == datetime(2024, 3, 15, 10, 0)
    naive = datetime(2024, 3, 15, 12, 0)
    assert to_utc_naive(naive) is naive


def test_local_helpers_convert_between_zones():
    now = local_now("Asia/Tokyo", datetime(2024, 3, 31, 20, 0))
    assert (now.year, now.month, now.day, now.hour) == (2024, 4, 1, 5)
    assert local_midnight_utc(2024, 3, 15, "Asia/Tokyo") == datetime(2024, 3, 14, 15, 0)
    assert local_midnight_utc(2024, 3, 15, "UTC") == datetime(2024, 3, 15, 0, 0)


def test_within_is_half_open_at_the_next_month():
    march = Period(2024, 3)
    assert march.next_start == datetime(2024, 4, 1)
    assert Period(2024, 12).next_start == datetime(2025, 1, 1)
    assert all(within(datetime(2024, 3, 31, 23, 59, 59, 999_999), march))
    assert all(within(datetime(2024, 3, 1), march))
    assert not all(within(datetime(2024, 4, 1), march))
    assert not all(within(datetime(2024, 2, 29, 23, 59, 59, 999_999), march))
