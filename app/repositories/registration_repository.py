from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Registration


class RegistrationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: Registration) -> Registration:
        self._session.add(item)
        await self._session.flush()
        return item

    async def get_by_id(self, registration_id: UUID) -> Registration | None:
        stmt = select(Registration).where(Registration.id == registration_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_subscription_id(self, subscription_id: str) -> Registration | None:
        stmt = select(Registration).where(Registration.subscription_id == subscription_id)
        result = await self._session.execute(stmt.limit(1))
        return result.scalar_one_or_none()

    async def list_for_owner(self, owner_id: str) -> list[Registration]:
        stmt = select(Registration).where(Registration.owner_id == owner_id).order_by(Registration.created_at)
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_active_by_program(
        self,
        program_types: Iterable[str],
        exclude_id: UUID | None = None,
    ) -> list[Registration]:
        stmt = select(Registration).where(
            Registration.program_type.in_(list(program_types)),
            Registration.is_active.is_(True),
        )
        if exclude_id is not None:
            stmt = stmt.where(Registration.id != exclude_id)
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def update(self, item: Registration) -> Registration:
        await self._session.flush()
        return item
