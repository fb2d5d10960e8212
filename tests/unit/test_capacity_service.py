from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.enums import SessionType
from app.repositories.booking_repository import BookingRepository
from app.repositories.capacity_repository import CapacityRepository
from app.services.capacity_service import CapacityService, ReserveOutcome

SESSION_DATE = date(2026, 3, 3)
SLOT = "4:30-5:30 PM"


def _service(db_session: AsyncSession) -> CapacityService:
    return CapacityService(CapacityRepository(db_session), BookingRepository(db_session))


@pytest.mark.asyncio
async def test_reserve_stops_at_capacity(db_session: AsyncSession) -> None:
    service = _service(db_session)

    outcomes = [await service.reserve(SessionType.GROUP, SESSION_DATE, SLOT, 6) for _ in range(7)]

    assert outcomes.count(ReserveOutcome.RESERVED) == 6
    assert outcomes[-1] is ReserveOutcome.FULL
    snapshot = await service.snapshot(SessionType.GROUP, SESSION_DATE, SLOT, 6)
    assert snapshot.occupancy == 6
    assert snapshot.is_full


@pytest.mark.asyncio
async def test_release_frees_a_spot_and_never_goes_negative(db_session: AsyncSession) -> None:
    service = _service(db_session)
    await service.reserve(SessionType.PRIVATE, SESSION_DATE, "9-10", 1)
    assert await service.reserve(SessionType.PRIVATE, SESSION_DATE, "9-10", 1) is ReserveOutcome.FULL

    assert await service.release(SessionType.PRIVATE, SESSION_DATE, "9-10") is True
    assert await service.release(SessionType.PRIVATE, SESSION_DATE, "9-10") is False

    snapshot = await service.snapshot(SessionType.PRIVATE, SESSION_DATE, "9-10", 1)
    assert snapshot.occupancy == 0
    assert snapshot.spots_remaining == 1


@pytest.mark.asyncio
async def test_zero_capacity_is_always_full(db_session: AsyncSession) -> None:
    outcome = await _service(db_session).reserve(SessionType.SUNDAY, SESSION_DATE, "7:30-8:30 AM", 0)

    assert outcome is ReserveOutcome.FULL


@pytest.mark.asyncio
async def test_reconcile_rewrites_counter_from_bookings(db_session: AsyncSession) -> None:
    service = _service(db_session)
    for _ in range(3):
        await service.reserve(SessionType.GROUP, SESSION_DATE, SLOT, 6)

    counted = await service.reconcile(SessionType.GROUP, SESSION_DATE, SLOT, 6)

    assert counted == 0
    snapshot = await service.snapshot(SessionType.GROUP, SESSION_DATE, SLOT, 6)
    assert snapshot.occupancy == 0


@pytest.mark.asyncio
async def test_snapshot_of_unknown_slot_is_empty(db_session: AsyncSession) -> None:
    snapshot = await _service(db_session).snapshot(SessionType.SEMI_PRIVATE, SESSION_DATE, "8-9", 2)

    assert snapshot.occupancy == 0
    assert snapshot.spots_remaining == 2
