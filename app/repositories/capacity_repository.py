from __future__ import annotations

from datetime import date

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import CapacitySlot


class CapacityRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _key(self, session_type: str, session_date: date, time_slot: str) -> tuple[ColumnElement[bool], ...]:
        return (
            CapacitySlot.session_type == session_type,
            CapacitySlot.session_date == session_date,
            CapacitySlot.time_slot == time_slot,
        )

    async def get(self, session_type: str, session_date: date, time_slot: str) -> CapacitySlot | None:
        stmt = (
            select(CapacitySlot)
            .where(*self._key(session_type, session_date, time_slot))
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def ensure(self, session_type: str, session_date: date, time_slot: str, capacity: int) -> CapacitySlot:
        existing = await self.get(session_type, session_date, time_slot)
        if existing is not None:
            if existing.capacity != capacity:
                existing.capacity = capacity
                await self._session.flush()
            return existing

        slot = CapacitySlot(
            session_type=session_type,
            session_date=session_date,
            time_slot=time_slot,
            occupancy=0,
            capacity=capacity,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(slot)
                await self._session.flush()
            return slot
        except IntegrityError:
            existing = await self.get(session_type, session_date, time_slot)
            if existing is None:
                raise
            return existing

    async def try_increment(self, session_type: str, session_date: date, time_slot: str) -> bool:
        stmt = (
            update(CapacitySlot)
            .where(
                *self._key(session_type, session_date, time_slot),
                CapacitySlot.occupancy < CapacitySlot.capacity,
            )
            .values(occupancy=CapacitySlot.occupancy + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def try_decrement(self, session_type: str, session_date: date, time_slot: str) -> bool:
        stmt = (
            update(CapacitySlot)
            .where(
                *self._key(session_type, session_date, time_slot),
                CapacitySlot.occupancy > 0,
            )
            .values(occupancy=CapacitySlot.occupancy - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def set_occupancy(self, session_type: str, session_date: date, time_slot: str, occupancy: int) -> None:
        stmt = (
            update(CapacitySlot)
            .where(*self._key(session_type, session_date, time_slot))
            .values(occupancy=occupancy)
            .execution_options(synchronize_session=False)
        )
        await self._session.execute(stmt)
