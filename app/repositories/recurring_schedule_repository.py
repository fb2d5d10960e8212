from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import RecurringSchedule


class RecurringScheduleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: RecurringSchedule) -> RecurringSchedule:
        self._session.add(item)
        await self._session.flush()
        return item

    async def update(self, item: RecurringSchedule) -> RecurringSchedule:
        await self._session.flush()
        return item

    async def delete(self, item: RecurringSchedule) -> None:
        await self._session.delete(item)
        await self._session.flush()

    async def get_by_id(self, schedule_id: UUID) -> RecurringSchedule | None:
        stmt = (
            select(RecurringSchedule)
            .where(RecurringSchedule.id == schedule_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_for_slot(self, registration_id: UUID, day_of_week: str, time_slot: str) -> RecurringSchedule | None:
        stmt = select(RecurringSchedule).where(
            RecurringSchedule.registration_id == registration_id,
            RecurringSchedule.day_of_week == day_of_week,
            RecurringSchedule.time_slot == time_slot,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str) -> list[RecurringSchedule]:
        stmt = (
            select(RecurringSchedule)
            .where(RecurringSchedule.owner_id == owner_id)
            .order_by(RecurringSchedule.next_booking_date, RecurringSchedule.created_at)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_due(self, through_date: date, limit: int = 200) -> list[RecurringSchedule]:
        stmt = (
            select(RecurringSchedule)
            .where(RecurringSchedule.is_active.is_(True), RecurringSchedule.next_booking_date <= through_date)
            .order_by(RecurringSchedule.next_booking_date)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def advance(
        self,
        schedule_id: UUID,
        due_date: date,
        next_date: date,
        booked_date: date | None = None,
    ) -> bool:
        values: dict[str, object] = {"next_booking_date": next_date}
        if booked_date is not None:
            values["last_booked_date"] = booked_date
        stmt = (
            update(RecurringSchedule)
            .where(RecurringSchedule.id == schedule_id, RecurringSchedule.next_booking_date == due_date)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def pause(self, schedule_id: UUID, reason: str) -> bool:
        stmt = (
            update(RecurringSchedule)
            .where(RecurringSchedule.id == schedule_id, RecurringSchedule.is_active.is_(True))
            .values(is_active=False, paused_reason=reason)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1
