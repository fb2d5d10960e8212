from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from redis.asyncio import Redis

from app.api.errors import register_exception_handlers
from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.container import AppContainer
from app.core.logging import setup_logging
from app.db.session import create_engine, create_session_factory
from app.integrations.notifications.webhook import WebhookNotifier


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(settings.log_level)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    redis = Redis.from_url(settings.redis_url, decode_responses=False)
    notifier = WebhookNotifier(url=settings.notify_webhook_url, token=settings.notify_webhook_token)

    container = AppContainer(
        settings=settings,
        session_factory=session_factory,
        redis=redis,
        notifier=notifier,
    )

    app.state.engine = engine
    app.state.container = container

    try:
        yield
    finally:
        await container.notifier.close()
        await redis.aclose()
        await engine.dispose()


def create_app() -> FastAPI:
    application = FastAPI(title="RinkSlot", lifespan=lifespan)
    register_exception_handlers(application)
    application.include_router(api_router)
    return application


app = create_app()
