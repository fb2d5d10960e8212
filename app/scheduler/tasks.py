from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from celery import shared_task
from redis.asyncio import Redis

from app.core.config import get_settings
from app.core.container import AppContainer
from app.core.datetime_utils import utc_now
from app.db.session import create_engine, create_session_factory
from app.integrations.notifications.webhook import WebhookNotifier

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _task_container() -> AsyncIterator[AppContainer]:
    settings = get_settings()
    engine = create_engine(settings)
    redis = Redis.from_url(settings.redis_url, decode_responses=False)
    notifier = WebhookNotifier(url=settings.notify_webhook_url, token=settings.notify_webhook_token)
    container = AppContainer(
        settings=settings,
        session_factory=create_session_factory(engine),
        redis=redis,
        notifier=notifier,
    )
    try:
        yield container
    finally:
        await notifier.close()
        await redis.aclose()
        await engine.dispose()


async def _deliver_outbox_async() -> int:
    async with _task_container() as container:
        async with container.session_factory() as session:
            service = container.create_outbox_delivery_service(session)
            sent = await service.deliver_ready(now_utc=utc_now())
            await session.commit()
            return sent


async def _expire_credits_async() -> int:
    async with _task_container() as container:
        async with container.session_factory() as session:
            ledger = container.create_ledger_service(session)
            expired = await ledger.expire_due(now_utc=utc_now())
            await session.commit()
            return expired


async def _process_recurring_bookings_async() -> int:
    async with _task_container() as container:
        async with container.session_factory() as session:
            service = container.create_recurring_service(session)
            stats = await service.process_due(now_utc=utc_now())
            await session.commit()
            return stats.booked


async def _generate_sunday_slots_async() -> int:
    async with _task_container() as container:
        async with container.session_factory() as session:
            service = container.create_sunday_service(session)
            created = await service.generate_slots(weeks_ahead=container.settings.sunday_weeks_ahead)
            await session.commit()
            return created


@shared_task(name="app.scheduler.tasks.deliver_outbox")  # type: ignore[untyped-decorator]
def deliver_outbox() -> int:
    sent = asyncio.run(_deliver_outbox_async())
    logger.info("task.deliver_outbox", sent=sent)
    return sent


@shared_task(name="app.scheduler.tasks.expire_credits")  # type: ignore[untyped-decorator]
def expire_credits() -> int:
    expired = asyncio.run(_expire_credits_async())
    logger.info("task.expire_credits", expired=expired)
    return expired


@shared_task(name="app.scheduler.tasks.process_recurring_bookings")  # type: ignore[untyped-decorator]
def process_recurring_bookings() -> int:
    booked = asyncio.run(_process_recurring_bookings_async())
    logger.info("task.process_recurring_bookings", booked=booked)
    return booked


@shared_task(name="app.scheduler.tasks.generate_sunday_slots")  # type: ignore[untyped-decorator]
def generate_sunday_slots() -> int:
    created = asyncio.run(_generate_sunday_slots_async())
    logger.info("task.generate_sunday_slots", created=created)
    return created
