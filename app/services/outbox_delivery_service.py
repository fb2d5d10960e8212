from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from redis.asyncio import Redis
from structlog.contextvars import bound_contextvars

from app.db.models import OutboxMessage
from app.integrations.notifications.base import Notifier
from app.repositories.outbox_repository import OutboxRepository

logger = structlog.get_logger(__name__)

DELIVERED_KEY = "outbox:delivered:{}"


class OutboxDeliveryService:
    """Pushes ready outbox messages to the notifier.

    A failed send is retried with exponential backoff until ``max_attempts``,
    after which the message is parked as a dead letter for an admin to requeue.
    Redis remembers delivered ids so a crash between send and commit does not
    notify twice.
    """

    def __init__(
        self,
        outbox_repository: OutboxRepository,
        notifier: Notifier,
        redis: Redis | None = None,
        max_attempts: int = 5,
        backoff_base_seconds: int = 30,
        backoff_max_seconds: int = 1800,
        dedupe_ttl_seconds: int = 86400,
    ) -> None:
        self._outbox = outbox_repository
        self._notifier = notifier
        self._redis = redis
        self._max_attempts = max(1, max_attempts)
        self._backoff_base = max(1, backoff_base_seconds)
        self._backoff_max = max(self._backoff_base, backoff_max_seconds)
        self._dedupe_ttl = max(60, dedupe_ttl_seconds)

    async def deliver_ready(self, now_utc: datetime, limit: int = 200) -> int:
        messages = await self._outbox.list_ready(now_utc, limit=limit)
        sent = 0
        for message in messages:
            with bound_contextvars(outbox_id=str(message.id)):
                if await self._deliver(message, now_utc):
                    sent += 1
        logger.info("outbox.deliver.completed", ready=len(messages), sent=sent)
        return sent

    async def _deliver(self, message: OutboxMessage, now_utc: datetime) -> bool:
        attempts = await self._outbox.record_attempt(message)
        key = DELIVERED_KEY.format(message.id.hex)
        try:
            if self._redis is None or await self._redis.get(key) is None:
                await self._notifier.send({**message.payload, "outbox_id": str(message.id)})
                if self._redis is not None:
                    await self._redis.set(key, "1", ex=self._dedupe_ttl)
        except Exception as exc:
            if attempts >= self._max_attempts:
                logger.warning("outbox.dead_letter", attempts=attempts, error=str(exc))
                await self._outbox.mark_dead_letter(message, str(exc))
            else:
                delay = min(self._backoff_base * 2 ** (attempts - 1), self._backoff_max)
                logger.info("outbox.retry_scheduled", attempts=attempts, delay_seconds=delay, error=str(exc))
                await self._outbox.retry_at(message, now_utc + timedelta(seconds=delay), str(exc))
            return False
        await self._outbox.mark_sent(message)
        return True
