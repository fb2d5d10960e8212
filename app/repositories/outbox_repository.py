from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models import OutboxMessage

PENDING = "pending"
SENT = "sent"
DEAD_LETTER = "dead_letter"


class OutboxRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def enqueue(
        self,
        payload: dict[str, Any],
        available_at: datetime,
        notification_id: UUID | None = None,
        dedupe_key: str | None = None,
        channel: str = "webhook",
    ) -> OutboxMessage:
        if dedupe_key:
            stmt = select(OutboxMessage).where(OutboxMessage.dedupe_key == dedupe_key)
            existing = (await self._session.execute(stmt)).scalar_one_or_none()
            if existing is not None:
                return existing

        message = OutboxMessage(
            notification_id=notification_id,
            channel=channel,
            payload=payload,
            status=PENDING,
            attempts=0,
            available_at=available_at,
            dedupe_key=dedupe_key,
        )
        self._session.add(message)
        await self._session.flush()
        return message

    async def get_by_id(self, outbox_id: UUID) -> OutboxMessage | None:
        return await self._session.get(OutboxMessage, outbox_id)

    async def list_ready(self, now_utc: datetime, limit: int = 200) -> list[OutboxMessage]:
        # Row locks keep two beat workers from sending the same message.
        stmt = (
            select(OutboxMessage)
            .where(OutboxMessage.status == PENDING, OutboxMessage.available_at <= now_utc)
            .order_by(OutboxMessage.available_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def list_dead_letters(self, limit: int = 50) -> list[OutboxMessage]:
        stmt = (
            select(OutboxMessage)
            .where(OutboxMessage.status == DEAD_LETTER)
            .order_by(OutboxMessage.updated_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars())

    async def record_attempt(self, message: OutboxMessage) -> int:
        message.attempts += 1
        await self._session.flush()
        return message.attempts

    async def mark_sent(self, message: OutboxMessage) -> None:
        message.status = SENT
        message.last_error = None
        await self._session.flush()

    async def retry_at(self, message: OutboxMessage, available_at: datetime, error: str) -> None:
        message.status = PENDING
        message.available_at = available_at
        message.last_error = error
        await self._session.flush()

    async def mark_dead_letter(self, message: OutboxMessage, error: str) -> None:
        message.status = DEAD_LETTER
        message.last_error = error
        await self._session.flush()

    async def requeue(self, message: OutboxMessage, available_at: datetime) -> None:
        """Give a dead-lettered message a fresh set of attempts."""
        message.status = PENDING
        message.attempts = 0
        message.available_at = available_at
        await self._session.flush()
