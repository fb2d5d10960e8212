from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import SessionBooking
from app.domain.enums import BookingStatus, SessionType


class BookingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: SessionBooking) -> SessionBooking:
        self._session.add(item)
        await self._session.flush()
        return item

    async def get_by_id(self, booking_id: UUID) -> SessionBooking | None:
        stmt = (
            select(SessionBooking)
            .where(SessionBooking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_active(
        self,
        registration_id: UUID,
        session_date: date,
        time_slot: str,
        session_type: str,
    ) -> SessionBooking | None:
        stmt = select(SessionBooking).where(
            SessionBooking.registration_id == registration_id,
            SessionBooking.session_date == session_date,
            SessionBooking.time_slot == time_slot,
            SessionBooking.session_type == session_type,
            SessionBooking.status != BookingStatus.CANCELLED.value,
        )
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def find_active_on_date(
        self,
        registration_id: UUID,
        session_date: date,
        session_type: str,
    ) -> SessionBooking | None:
        stmt = select(SessionBooking).where(
            SessionBooking.registration_id == registration_id,
            SessionBooking.session_date == session_date,
            SessionBooking.session_type == session_type,
            SessionBooking.status != BookingStatus.CANCELLED.value,
        )
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def count_active(self, session_type: str, session_date: date, time_slot: str) -> int:
        stmt = select(func.count(SessionBooking.id)).where(
            SessionBooking.session_type == session_type,
            SessionBooking.session_date == session_date,
            SessionBooking.time_slot == time_slot,
            SessionBooking.status != BookingStatus.CANCELLED.value,
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def transition(
        self,
        booking_id: UUID,
        from_status: BookingStatus,
        to_status: BookingStatus,
        **values: Any,
    ) -> bool:
        stmt = (
            update(SessionBooking)
            .where(SessionBooking.id == booking_id, SessionBooking.status == from_status.value)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def update(self, item: SessionBooking) -> SessionBooking:
        await self._session.flush()
        return item

    async def list_for_owner(
        self,
        owner_id: str,
        status: BookingStatus | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
        limit: int = 200,
    ) -> list[SessionBooking]:
        stmt = select(SessionBooking).where(SessionBooking.owner_id == owner_id)
        if status is not None:
            stmt = stmt.where(SessionBooking.status == status.value)
        if from_date is not None:
            stmt = stmt.where(SessionBooking.session_date >= from_date)
        if to_date is not None:
            stmt = stmt.where(SessionBooking.session_date <= to_date)
        result = await self._session.execute(
            stmt.order_by(SessionBooking.session_date, SessionBooking.time_slot)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars())

    async def list_for_sunday_slot(self, slot_id: UUID) -> list[SessionBooking]:
        stmt = (
            select(SessionBooking)
            .where(
                SessionBooking.sunday_slot_id == slot_id,
                SessionBooking.status != BookingStatus.CANCELLED.value,
            )
            .order_by(SessionBooking.created_at)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_sunday_for_registration(
        self,
        registration_id: UUID,
        from_date: date,
    ) -> list[SessionBooking]:
        stmt = select(SessionBooking).where(
            SessionBooking.registration_id == registration_id,
            SessionBooking.session_type == SessionType.SUNDAY.value,
            SessionBooking.session_date >= from_date,
            SessionBooking.status != BookingStatus.CANCELLED.value,
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def get_by_payment_session_id(self, payment_session_id: str) -> SessionBooking | None:
        stmt = select(SessionBooking).where(SessionBooking.payment_session_id == payment_session_id)
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()
