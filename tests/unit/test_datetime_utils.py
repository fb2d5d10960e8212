from __future__ import annotations

from datetime import UTC, date, datetime, time

import pytest

from app.core.datetime_utils import (
    add_months,
    date_in_week,
    ensure_utc,
    local_today,
    next_occurrence,
    normalize_day,
    parse_time_slot_start,
    session_start_utc,
    upcoming_sundays,
)


def test_ensure_utc_on_naive_datetime() -> None:
    naive = datetime(2026, 1, 1, 12, 0)

    utc_dt = ensure_utc(naive)

    assert utc_dt.tzinfo == UTC


@pytest.mark.parametrize(
    ("label", "expected"),
    [
        ("4:30-5:30 PM", time(16, 30)),
        ("7:30-8:30 AM", time(7, 30)),
        ("11:30-12:30 PM", time(11, 30)),
        ("5:45 PM", time(17, 45)),
        ("17:45", time(17, 45)),
        ("8-9", time(8, 0)),
        ("14-15", time(14, 0)),
    ],
)
def test_parse_time_slot_start(label: str, expected: time) -> None:
    assert parse_time_slot_start(label) == expected


def test_parse_time_slot_start_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_time_slot_start("after school")


def test_session_start_uses_academy_timezone() -> None:
    # 2026-03-03 is a Tuesday, Eastern Standard Time is UTC-5
    start = session_start_utc(date(2026, 3, 3), "4:30-5:30 PM", "America/New_York")

    assert start == datetime(2026, 3, 3, 21, 30, tzinfo=UTC)


def test_local_today_crosses_midnight() -> None:
    now = datetime(2026, 3, 4, 2, 0, tzinfo=UTC)

    assert local_today("America/New_York", now) == date(2026, 3, 3)


def test_upcoming_sundays_includes_today_when_sunday() -> None:
    assert upcoming_sundays(date(2026, 3, 1), 2) == [date(2026, 3, 1), date(2026, 3, 8)]
    assert upcoming_sundays(date(2026, 3, 2), 1) == [date(2026, 3, 8)]


def test_add_months_clamps_month_end() -> None:
    assert add_months(datetime(2026, 1, 31, tzinfo=UTC), 1) == datetime(2026, 2, 28, tzinfo=UTC)


def test_day_helpers() -> None:
    assert normalize_day(" Tuesday ") == "tuesday"
    assert date_in_week(date(2026, 3, 4), "friday") == date(2026, 3, 6)
    assert next_occurrence("tuesday", date(2026, 3, 1)) == date(2026, 3, 3)
    assert next_occurrence("tuesday", date(2026, 3, 3)) == date(2026, 3, 3)
    assert next_occurrence("sunday", date(2026, 3, 2)) == date(2026, 3, 8)
    with pytest.raises(ValueError):
        normalize_day("funday")
