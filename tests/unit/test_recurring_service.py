from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import UUID

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import AppContainer
from app.db.models import ScheduleException
from app.domain.commands import BookSessionCommand, RecurringScheduleCommand
from app.domain.enums import NotificationType, PackageType, PausedReason, SessionType
from app.domain.errors import Forbidden, InvalidProgramType, ValidationFailed
from app.domain.programs import PrivateProgram
from app.repositories.notification_repository import NotificationRepository
from app.repositories.schedule_repository import ScheduleRepository
from tests.support import OWNER_ID, RegistrationFactory

# Sunday noon UTC; everything through the next Sunday is inside the 7-day lead window.
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
TUESDAY = date(2026, 3, 3)
FRIDAY = date(2026, 3, 6)
NEXT_TUESDAY = date(2026, 3, 10)
M11_SLOT = "4:30-5:30 PM"


async def _fund(container: AppContainer, db_session: AsyncSession, credits: int) -> None:
    await container.create_ledger_service(db_session).credit(OWNER_ID, PackageType.PACK_10, credits, now_utc=NOW)
    await db_session.commit()


async def _tuesday_schedule(container: AppContainer, db_session: AsyncSession, registration_id: UUID) -> None:
    service = container.create_recurring_service(db_session)
    cmd = RecurringScheduleCommand(owner_id=OWNER_ID, registration_id=registration_id, day_of_week="Tuesday")
    await service.create_schedule(cmd, now_utc=NOW)
    await db_session.commit()


@pytest.mark.asyncio
async def test_create_schedule_targets_next_group_day(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    service = container.create_recurring_service(db_session)
    cmd = RecurringScheduleCommand(owner_id=OWNER_ID, registration_id=registration.id, day_of_week="tuesday")

    schedule = await service.create_schedule(cmd, now_utc=NOW)
    assert schedule.next_booking_date == TUESDAY
    assert schedule.time_slot == M11_SLOT
    assert schedule.is_active

    # Once Tuesday's session has started the first bookable one is a week out.
    again = await service.create_schedule(cmd, now_utc=datetime(2026, 3, 3, 22, 0, tzinfo=UTC))
    assert again.id == schedule.id
    assert again.next_booking_date == NEXT_TUESDAY
    assert len(await service.list_for_owner(OWNER_ID)) == 1


@pytest.mark.asyncio
async def test_create_schedule_guards(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    group = await make_registration()
    private = await make_registration(program=PrivateProgram(selected_days=["monday"], time_slot="9-10"))
    service = container.create_recurring_service(db_session)

    with pytest.raises(Forbidden):
        await service.create_schedule(
            RecurringScheduleCommand(owner_id="someone-else", registration_id=group.id, day_of_week="tuesday"),
            now_utc=NOW,
        )
    with pytest.raises(ValidationFailed):
        await service.create_schedule(
            RecurringScheduleCommand(owner_id=OWNER_ID, registration_id=group.id, day_of_week="wednesday"),
            now_utc=NOW,
        )
    with pytest.raises(InvalidProgramType):
        await service.create_schedule(
            RecurringScheduleCommand(owner_id=OWNER_ID, registration_id=private.id, day_of_week="tuesday"),
            now_utc=NOW,
        )


@pytest.mark.asyncio
async def test_process_due_books_with_credits_and_advances(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _fund(container, db_session, 10)
    await _tuesday_schedule(container, db_session, registration.id)
    service = container.create_recurring_service(db_session)

    stats = await service.process_due(now_utc=NOW)
    await db_session.commit()

    assert stats.processed == 1
    assert stats.booked == 1
    bookings = await container.create_booking_service(db_session).list_for_owner(OWNER_ID)
    assert [(item.session_date, item.is_recurring) for item in bookings] == [(TUESDAY, True)]
    (schedule,) = await service.list_for_owner(OWNER_ID)
    assert bookings[0].recurring_schedule_id == schedule.id
    assert schedule.next_booking_date == NEXT_TUESDAY
    assert schedule.last_booked_date == TUESDAY
    assert await container.create_ledger_service(db_session).balance(OWNER_ID, now_utc=NOW) == 9
    snapshot = await container.create_capacity_service(db_session).snapshot(
        SessionType.GROUP, TUESDAY, M11_SLOT, 6
    )
    assert snapshot.occupancy == 1

    # The next week is outside the lead window until Tuesday comes around.
    assert (await service.process_due(now_utc=NOW)).processed == 0


@pytest.mark.asyncio
async def test_process_due_pauses_when_credits_run_out(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _tuesday_schedule(container, db_session, registration.id)
    service = container.create_recurring_service(db_session)

    stats = await service.process_due(now_utc=NOW)
    await db_session.commit()

    assert stats.paused_insufficient_credits == 1
    (schedule,) = await service.list_for_owner(OWNER_ID)
    assert not schedule.is_active
    assert schedule.paused_reason == PausedReason.INSUFFICIENT_CREDITS.value
    assert schedule.next_booking_date == TUESDAY
    assert await container.create_booking_service(db_session).list_for_owner(OWNER_ID) == []
    snapshot = await container.create_capacity_service(db_session).snapshot(
        SessionType.GROUP, TUESDAY, M11_SLOT, 6
    )
    assert snapshot.occupancy == 0
    notifications = await NotificationRepository(db_session).list_for_owner(OWNER_ID)
    assert NotificationType.RECURRING_PAUSED.value in {item.notification_type for item in notifications}

    # Paused schedules are no longer picked up.
    assert (await service.process_due(now_utc=NOW)).processed == 0


@pytest.mark.asyncio
async def test_process_due_pauses_on_full_slot_without_spending(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _fund(container, db_session, 10)
    await _tuesday_schedule(container, db_session, registration.id)
    capacity = container.create_capacity_service(db_session)
    for _ in range(6):
        await capacity.reserve(SessionType.GROUP, TUESDAY, M11_SLOT, 6)
    await db_session.commit()
    service = container.create_recurring_service(db_session)

    stats = await service.process_due(now_utc=NOW)
    await db_session.commit()

    assert stats.paused_slot_unavailable == 1
    (schedule,) = await service.list_for_owner(OWNER_ID)
    assert schedule.paused_reason == PausedReason.SLOT_UNAVAILABLE.value
    assert await container.create_ledger_service(db_session).balance(OWNER_ID, now_utc=NOW) == 10
    assert (await capacity.snapshot(SessionType.GROUP, TUESDAY, M11_SLOT, 6)).occupancy == 6


@pytest.mark.asyncio
async def test_existing_booking_advances_without_second_debit(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _fund(container, db_session, 10)
    await container.create_booking_service(db_session).book(
        BookSessionCommand(
            owner_id=OWNER_ID,
            registration_id=registration.id,
            session_type=SessionType.GROUP,
            session_date=TUESDAY,
            time_slot=M11_SLOT,
        ),
        now_utc=NOW,
    )
    await db_session.commit()
    await _tuesday_schedule(container, db_session, registration.id)
    service = container.create_recurring_service(db_session)

    stats = await service.process_due(now_utc=NOW)
    await db_session.commit()

    assert stats.already_booked == 1
    (schedule,) = await service.list_for_owner(OWNER_ID)
    assert schedule.is_active
    assert schedule.next_booking_date == NEXT_TUESDAY
    assert schedule.last_booked_date is None
    assert await container.create_ledger_service(db_session).balance(OWNER_ID, now_utc=NOW) == 9


@pytest.mark.asyncio
async def test_one_time_swap_moves_the_recurring_booking(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _fund(container, db_session, 10)
    await _tuesday_schedule(container, db_session, registration.id)
    await ScheduleRepository(db_session).upsert_exception(
        ScheduleException(
            registration_id=registration.id,
            exception_date=TUESDAY,
            exception_type="swap",
            original_day="tuesday",
            replacement_day="friday",
            status="applied",
            created_by=OWNER_ID,
            applied_at=NOW,
        )
    )
    await db_session.commit()
    service = container.create_recurring_service(db_session)

    stats = await service.process_due(now_utc=NOW)
    await db_session.commit()

    assert stats.booked == 1
    bookings = await container.create_booking_service(db_session).list_for_owner(OWNER_ID)
    assert [item.session_date for item in bookings] == [FRIDAY]
    (schedule,) = await service.list_for_owner(OWNER_ID)
    assert schedule.next_booking_date == NEXT_TUESDAY
    assert schedule.last_booked_date == FRIDAY


@pytest.mark.asyncio
async def test_pause_resume_and_delete(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await _fund(container, db_session, 10)
    await _tuesday_schedule(container, db_session, registration.id)
    service = container.create_recurring_service(db_session)
    (schedule,) = await service.list_for_owner(OWNER_ID)

    with pytest.raises(Forbidden):
        await service.pause(schedule.id, "someone-else")
    paused = await service.pause(schedule.id, OWNER_ID)
    await db_session.commit()
    assert paused.paused_reason == PausedReason.USER_PAUSED.value
    assert (await service.process_due(now_utc=NOW)).processed == 0

    resumed = await service.resume(schedule.id, OWNER_ID, now_utc=datetime(2026, 3, 4, 12, 0, tzinfo=UTC))
    await db_session.commit()
    assert resumed.is_active
    assert resumed.paused_reason is None
    assert resumed.next_booking_date == NEXT_TUESDAY

    await service.delete_schedule(schedule.id, OWNER_ID)
    await db_session.commit()
    assert await service.list_for_owner(OWNER_ID) == []
