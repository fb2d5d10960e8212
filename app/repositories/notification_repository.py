from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import Notification


class NotificationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, item: Notification) -> Notification:
        self._session.add(item)
        await self._session.flush()
        return item

    async def list_for_owner(self, owner_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
        stmt = select(Notification).where(Notification.owner_id == owner_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        result = await self._session.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))
        return list(result.scalars())

    async def list_for_admins(self, limit: int = 50) -> list[Notification]:
        stmt = (
            select(Notification)
            .where(Notification.audience == "all_admins")
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())
