from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import ScheduleChange, ScheduleException


class ScheduleRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_change(self, item: ScheduleChange) -> ScheduleChange:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_changes(self, registration_id: UUID, limit: int = 50) -> list[ScheduleChange]:
        stmt = (
            select(ScheduleChange)
            .where(ScheduleChange.registration_id == registration_id)
            .order_by(ScheduleChange.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def get_exception(self, registration_id: UUID, exception_date: date) -> ScheduleException | None:
        stmt = select(ScheduleException).where(
            ScheduleException.registration_id == registration_id,
            ScheduleException.exception_date == exception_date,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_exception(self, item: ScheduleException) -> ScheduleException:
        existing = await self.get_exception(item.registration_id, item.exception_date)
        if existing is None:
            self._session.add(item)
            await self._session.flush()
            return item

        existing.schedule_change_id = item.schedule_change_id
        existing.exception_type = item.exception_type
        existing.original_day = item.original_day
        existing.replacement_day = item.replacement_day
        existing.replacement_time = item.replacement_time
        existing.status = item.status
        existing.reason = item.reason
        existing.created_by = item.created_by
        existing.applied_at = item.applied_at
        await self._session.flush()
        return existing

    async def list_exceptions(
        self,
        registration_id: UUID,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[ScheduleException]:
        stmt = select(ScheduleException).where(ScheduleException.registration_id == registration_id)
        if from_date is not None:
            stmt = stmt.where(ScheduleException.exception_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(ScheduleException.exception_date <= to_date)
        result = await self._session.execute(stmt.order_by(ScheduleException.exception_date))
        return list(result.scalars())
