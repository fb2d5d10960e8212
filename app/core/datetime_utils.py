from __future__ import annotations

import re
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_CLOCK_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*(AM|PM)?\s*$", re.IGNORECASE)
_RANGE_RE = re.compile(
    r"^\s*(\d{1,2})(?::(\d{2}))?\s*(AM|PM)?\s*-\s*(\d{1,2})(?::(\d{2}))?\s*(AM|PM)?\s*$",
    re.IGNORECASE,
)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _to_24h(hour: int, minute: int, period: str | None) -> time:
    if period:
        period = period.upper()
        if not 1 <= hour <= 12:
            msg = f"Invalid 12-hour clock value: {hour}"
            raise ValueError(msg)
        if period == "PM" and hour != 12:
            hour += 12
        elif period == "AM" and hour == 12:
            hour = 0
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        msg = f"Invalid clock value: {hour}:{minute:02d}"
        raise ValueError(msg)
    return time(hour=hour, minute=minute)


def parse_time_slot_start(label: str) -> time:
    """Start time of a slot label.

    Accepts "5:45 PM", "17:45", "4:30-5:30 PM", "7:30-8:30 AM" and the hourly
    windows "8-9" / "14-15" used for private training.
    """
    match = _RANGE_RE.match(label)
    if match:
        start_h, start_m, start_p, end_h, end_m, end_p = match.groups()
        period = start_p or end_p
        start = _to_24h(int(start_h), int(start_m or 0), period)
        if start_p is None and end_p is not None:
            end = _to_24h(int(end_h), int(end_m or 0), end_p)
            if start > end:
                # "11:30-12:30 PM" starts in the morning
                start = time(hour=start.hour - 12, minute=start.minute)
        return start

    match = _CLOCK_RE.match(label)
    if match:
        hour, minute, period = match.groups()
        return _to_24h(int(hour), int(minute or 0), period)

    msg = f"Unrecognised time slot: {label!r}"
    raise ValueError(msg)


def session_start_utc(session_date: date, time_slot: str, timezone: str) -> datetime:
    local = datetime.combine(session_date, parse_time_slot_start(time_slot), tzinfo=ZoneInfo(timezone))
    return local.astimezone(UTC)


def local_today(timezone: str, now_utc: datetime | None = None) -> date:
    now = now_utc or utc_now()
    return ensure_utc(now).astimezone(ZoneInfo(timezone)).date()


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def normalize_day(value: str) -> str:
    day = value.strip().lower()
    if day not in WEEKDAYS:
        msg = f"Unsupported weekday: {value}"
        raise ValueError(msg)
    return day


def add_months(dt: datetime, months: int) -> datetime:
    return dt + relativedelta(months=months)


def week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def date_in_week(anchor: date, weekday: str) -> date:
    return week_start(anchor) + timedelta(days=WEEKDAYS.index(normalize_day(weekday)))


def upcoming_sundays(today: date, count: int) -> list[date]:
    days_ahead = (6 - today.weekday()) % 7
    first = today + timedelta(days=days_ahead)
    return [first + timedelta(weeks=offset) for offset in range(max(0, count))]


def next_occurrence(weekday: str, start: date) -> date:
    """First date on or after start that falls on weekday."""
    offset = (WEEKDAYS.index(normalize_day(weekday)) - start.weekday()) % 7
    return start + timedelta(days=offset)
