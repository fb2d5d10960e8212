"""Static training catalog: time slots, capacities, availability windows and prices.

Everything here is a pure lookup. Sunday practice is restricted to two
category bands; categories outside them get no slot at all.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import time

from app.core.datetime_utils import WEEKDAYS, parse_time_slot_start
from app.domain.enums import PackageType, ProgramType, SessionType

GROUP_CAPACITY = 6
PRIVATE_CAPACITY = 1
SEMI_PRIVATE_CAPACITY = 2

GROUP_TRAINING_DAYS = ("tuesday", "friday")
PRIVATE_TRAINING_DAYS = WEEKDAYS
HOURLY_WINDOWS = ("8-9", "9-10", "10-11", "11-12", "12-13", "13-14", "14-15")

_CATEGORY_RE = re.compile(r"^M(\d{1,2})(?:\s+Elite)?$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class TimeSlot:
    label: str
    categories: frozenset[str]
    capacity: int

    @property
    def start(self) -> time:
        return parse_time_slot_start(self.label)


@dataclass(frozen=True, slots=True)
class SundayBand:
    label: str
    start: time
    end: time
    min_category: str
    max_category: str
    capacity: int

    def includes(self, category: str) -> bool:
        return category_in_range(category, self.min_category, self.max_category)


@dataclass(frozen=True, slots=True)
class CreditPackage:
    package_type: PackageType
    credits: int
    price_cents: int
    validity_months: int
    description: str


GROUP_TIME_SLOTS: tuple[TimeSlot, ...] = (
    TimeSlot("4:30-5:30 PM", frozenset({"M7", "M9", "M11"}), GROUP_CAPACITY),
    TimeSlot("5:45-6:45 PM", frozenset({"M13", "M13 Elite"}), GROUP_CAPACITY),
    TimeSlot("7:00-8:00 PM", frozenset({"M15", "M15 Elite"}), GROUP_CAPACITY),
    TimeSlot("8:15-9:15 PM", frozenset({"M18", "Junior"}), GROUP_CAPACITY),
)

SUNDAY_BANDS: tuple[SundayBand, ...] = (
    SundayBand("7:30-8:30 AM", time(7, 30), time(8, 30), "M7", "M11", 12),
    SundayBand("8:30-9:30 AM", time(8, 30), time(9, 30), "M13", "M15", 10),
)

CREDIT_PACKAGES: dict[PackageType, CreditPackage] = {
    PackageType.SINGLE: CreditPackage(PackageType.SINGLE, 1, 4500, 12, "Single Session"),
    PackageType.PACK_10: CreditPackage(PackageType.PACK_10, 10, 35000, 12, "10-Session Package"),
    PackageType.PACK_20: CreditPackage(PackageType.PACK_20, 20, 50000, 12, "20-Session Package"),
    PackageType.PACK_50: CreditPackage(PackageType.PACK_50, 50, 100000, 12, "50-Session Package"),
}

CREDITS_PER_SESSION: dict[SessionType, int] = {
    SessionType.GROUP: 1,
    SessionType.SUNDAY: 0,
    SessionType.PRIVATE: 0,
    SessionType.SEMI_PRIVATE: 0,
}


def category_number(category: str) -> int | None:
    match = _CATEGORY_RE.match(category.strip())
    if match is None:
        return None
    return int(match.group(1))


def assigned_slot(category: str) -> TimeSlot | None:
    for slot in GROUP_TIME_SLOTS:
        if category in slot.categories:
            return slot
    return None


def sunday_slot(category: str) -> SundayBand | None:
    for band in SUNDAY_BANDS:
        if band.includes(category):
            return band
    return None


def sunday_band_for_label(label: str) -> SundayBand | None:
    start = parse_time_slot_start(label)
    for band in SUNDAY_BANDS:
        if band.label == label or band.start == start:
            return band
    return None


def max_capacity(session_type: SessionType, time_slot: str, category: str | None = None) -> int:
    match session_type:
        case SessionType.GROUP:
            return GROUP_CAPACITY
        case SessionType.PRIVATE:
            return PRIVATE_CAPACITY
        case SessionType.SEMI_PRIVATE:
            return SEMI_PRIVATE_CAPACITY
        case SessionType.SUNDAY:
            band = sunday_slot(category) if category is not None else sunday_band_for_label(time_slot)
            if band is None:
                return 0
            return band.capacity


def program_days(program_type: ProgramType) -> tuple[str, ...]:
    match program_type:
        case ProgramType.GROUP:
            return GROUP_TRAINING_DAYS
        case ProgramType.PRIVATE | ProgramType.SEMI_PRIVATE:
            return PRIVATE_TRAINING_DAYS


def credit_package(package_type: PackageType) -> CreditPackage | None:
    return CREDIT_PACKAGES.get(package_type)


def category_in_range(category: str, min_category: str, max_category: str) -> bool:
    number = category_number(category)
    low = category_number(min_category)
    high = category_number(max_category)
    if number is None or low is None or high is None:
        return False
    return low <= number <= high
