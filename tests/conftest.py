from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import Settings
from app.core.container import AppContainer
from app.db.base import Base
from app.db.models import Registration
from app.domain.enums import PaymentStatus
from app.domain.programs import GroupProgram, PrivateProgram, SemiPrivateProgram, dump_program
from app.repositories.registration_repository import RegistrationRepository
from tests.support import OWNER_ID, FakeNotifier, FakeRedis, RegistrationFactory


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN, which breaks SAVEPOINT; emit it ourselves.
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    yield factory
    await engine.dispose()


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ADMIN_API_TOKEN="admin-token",
        PAYMENT_WEBHOOK_SECRET="whsec",
        ACADEMY_TIMEZONE="America/New_York",
    )


@pytest.fixture
def container(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: FakeRedis,
    fake_notifier: FakeNotifier,
) -> AppContainer:
    return AppContainer(
        settings=settings,
        session_factory=session_factory,
        redis=fake_redis,  # type: ignore[arg-type]
        notifier=fake_notifier,
    )


@pytest.fixture
def make_registration(db_session: AsyncSession) -> RegistrationFactory:
    async def _make(
        owner_id: str = OWNER_ID,
        category: str = "M11",
        program: GroupProgram | PrivateProgram | SemiPrivateProgram | None = None,
        payment_status: PaymentStatus = PaymentStatus.SUCCEEDED,
        player_name: str = "Alex",
        subscription_id: str | None = None,
    ) -> Registration:
        details = program or GroupProgram(frequency="2x", selected_days=["tuesday", "friday"])
        registration = Registration(
            owner_id=owner_id,
            player_name=player_name,
            player_category=category,
            program_type=details.program_type,
            payment_status=payment_status.value,
            program=dump_program(details),
            subscription_id=subscription_id,
            is_active=True,
        )
        await RegistrationRepository(db_session).create(registration)
        await db_session.commit()
        return registration

    return _make
