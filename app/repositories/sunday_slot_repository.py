from __future__ import annotations

from datetime import date, time
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import SundayPracticeSlot


class SundaySlotRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, slot_id: UUID) -> SundayPracticeSlot | None:
        stmt = (
            select(SundayPracticeSlot)
            .where(SundayPracticeSlot.id == slot_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def lock(self, slot_id: UUID) -> SundayPracticeSlot | None:
        # Row lock on PostgreSQL; SQLite serialises writers instead.
        stmt = (
            select(SundayPracticeSlot)
            .where(SundayPracticeSlot.id == slot_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_date_start(self, practice_date: date, start_time: time) -> SundayPracticeSlot | None:
        stmt = select(SundayPracticeSlot).where(
            SundayPracticeSlot.practice_date == practice_date,
            SundayPracticeSlot.start_time == start_time,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_or_create(self, item: SundayPracticeSlot) -> tuple[SundayPracticeSlot, bool]:
        existing = await self.get_by_date_start(item.practice_date, item.start_time)
        if existing is not None:
            return existing, False
        try:
            async with self._session.begin_nested():
                self._session.add(item)
                await self._session.flush()
            return item, True
        except IntegrityError:
            existing = await self.get_by_date_start(item.practice_date, item.start_time)
            if existing is None:
                raise
            return existing, False

    async def try_increment(self, slot_id: UUID) -> bool:
        stmt = (
            update(SundayPracticeSlot)
            .where(
                SundayPracticeSlot.id == slot_id,
                SundayPracticeSlot.current_bookings < SundayPracticeSlot.max_capacity,
            )
            .values(current_bookings=SundayPracticeSlot.current_bookings + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def try_decrement(self, slot_id: UUID) -> bool:
        stmt = (
            update(SundayPracticeSlot)
            .where(SundayPracticeSlot.id == slot_id, SundayPracticeSlot.current_bookings > 0)
            .values(current_bookings=SundayPracticeSlot.current_bookings - 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_between(
        self,
        from_date: date,
        to_date: date,
        active_only: bool = True,
    ) -> list[SundayPracticeSlot]:
        stmt = select(SundayPracticeSlot).where(
            SundayPracticeSlot.practice_date >= from_date,
            SundayPracticeSlot.practice_date <= to_date,
        )
        if active_only:
            stmt = stmt.where(SundayPracticeSlot.is_active.is_(True))
        result = await self._session.execute(
            stmt.order_by(SundayPracticeSlot.practice_date, SundayPracticeSlot.start_time).execution_options(
                populate_existing=True
            )
        )
        return list(result.scalars())
