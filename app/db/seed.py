from __future__ import annotations

import asyncio

from redis.asyncio import Redis

from app.core.config import get_settings
from app.core.container import AppContainer
from app.core.logging import setup_logging
from app.db.models import Registration
from app.db.session import create_engine, create_session_factory, transaction_scope
from app.domain.enums import PackageType, PaymentStatus, ProgramType
from app.domain.programs import GroupProgram, PrivateProgram, dump_program
from app.integrations.notifications.webhook import WebhookNotifier
from app.repositories.registration_repository import RegistrationRepository

DEMO_OWNER_ID = "demo-parent"


async def seed() -> None:
    settings = get_settings()
    setup_logging(settings.log_level)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    redis = Redis.from_url(settings.redis_url, decode_responses=False)
    notifier = WebhookNotifier(url=settings.notify_webhook_url)
    container = AppContainer(settings=settings, session_factory=session_factory, redis=redis, notifier=notifier)

    async with transaction_scope(session_factory) as session:
        registrations = RegistrationRepository(session)
        if not await registrations.list_for_owner(DEMO_OWNER_ID):
            await registrations.create(
                Registration(
                    owner_id=DEMO_OWNER_ID,
                    player_name="Demo Skater",
                    player_category="M11",
                    program_type=ProgramType.GROUP.value,
                    payment_status=PaymentStatus.SUCCEEDED.value,
                    program=dump_program(GroupProgram(frequency="2x", selected_days=["tuesday", "friday"])),
                )
            )
            await registrations.create(
                Registration(
                    owner_id=DEMO_OWNER_ID,
                    player_name="Demo Goalie",
                    player_category="M15",
                    program_type=ProgramType.PRIVATE.value,
                    payment_status=PaymentStatus.ACTIVE.value,
                    program=dump_program(PrivateProgram(selected_days=["monday"], time_slot="9-10")),
                )
            )
        await container.create_ledger_service(session).credit(
            DEMO_OWNER_ID,
            package_type=PackageType.PACK_10,
            credits=10,
            price_paid=35000,
            payment_session_id="seed-demo-10-pack",
        )
        await container.create_sunday_service(session).generate_slots(settings.sunday_weeks_ahead)

    await notifier.close()
    await redis.aclose()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed())
