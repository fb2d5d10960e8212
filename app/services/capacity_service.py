from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import StrEnum

import structlog

from app.domain.enums import SessionType
from app.repositories.booking_repository import BookingRepository
from app.repositories.capacity_repository import CapacityRepository

logger = structlog.get_logger(__name__)


class ReserveOutcome(StrEnum):
    RESERVED = "reserved"
    FULL = "full"


@dataclass(frozen=True, slots=True)
class CapacitySnapshot:
    session_type: SessionType
    session_date: date
    time_slot: str
    occupancy: int
    capacity: int

    @property
    def spots_remaining(self) -> int:
        return max(0, self.capacity - self.occupancy)

    @property
    def is_full(self) -> bool:
        return self.spots_remaining == 0


class CapacityService:
    """Occupancy counters keyed by (session type, date, time slot).

    Reservation is one conditional UPDATE, so concurrent callers can never push
    occupancy past the ceiling. Callers pair every counter change with the
    booking row change inside the same transaction.
    """

    def __init__(self, capacity_repository: CapacityRepository, booking_repository: BookingRepository) -> None:
        self._slots = capacity_repository
        self._bookings = booking_repository

    async def reserve(
        self,
        session_type: SessionType,
        session_date: date,
        time_slot: str,
        capacity: int,
    ) -> ReserveOutcome:
        if capacity <= 0:
            return ReserveOutcome.FULL
        await self._slots.ensure(session_type.value, session_date, time_slot, capacity)
        if await self._slots.try_increment(session_type.value, session_date, time_slot):
            return ReserveOutcome.RESERVED
        logger.info(
            "capacity.full",
            session_type=session_type.value,
            session_date=session_date.isoformat(),
            time_slot=time_slot,
        )
        return ReserveOutcome.FULL

    async def release(self, session_type: SessionType, session_date: date, time_slot: str) -> bool:
        released = await self._slots.try_decrement(session_type.value, session_date, time_slot)
        if not released:
            logger.warning(
                "capacity.release_at_zero",
                session_type=session_type.value,
                session_date=session_date.isoformat(),
                time_slot=time_slot,
            )
        return released

    async def reconcile(
        self,
        session_type: SessionType,
        session_date: date,
        time_slot: str,
        capacity: int,
    ) -> int:
        count = await self._bookings.count_active(session_type.value, session_date, time_slot)
        slot = await self._slots.ensure(session_type.value, session_date, time_slot, capacity)
        if slot.occupancy != count:
            logger.warning(
                "capacity.reconciled",
                session_type=session_type.value,
                session_date=session_date.isoformat(),
                time_slot=time_slot,
                stored=slot.occupancy,
                counted=count,
            )
            await self._slots.set_occupancy(session_type.value, session_date, time_slot, count)
        return count

    async def snapshot(
        self,
        session_type: SessionType,
        session_date: date,
        time_slot: str,
        capacity: int,
    ) -> CapacitySnapshot:
        slot = await self._slots.get(session_type.value, session_date, time_slot)
        return CapacitySnapshot(
            session_type=session_type,
            session_date=session_date,
            time_slot=time_slot,
            occupancy=slot.occupancy if slot is not None else 0,
            capacity=capacity,
        )
