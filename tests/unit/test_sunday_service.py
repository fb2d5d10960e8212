from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import AppContainer
from app.db.models import SundayPracticeSlot
from app.domain.enums import BookingStatus, PaymentStatus
from app.domain.errors import (
    AlreadyCancelled,
    DuplicateBooking,
    IneligibleCategory,
    InvalidProgramType,
    PaymentRequired,
    SessionAlreadyOccurred,
    SlotFull,
    SlotPast,
)
from app.domain.programs import PrivateProgram
from app.repositories.sunday_slot_repository import SundaySlotRepository
from app.services.sunday_service import SundayService
from tests.support import OWNER_ID, RegistrationFactory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)
NEXT_SUNDAY = date(2026, 3, 8)


async def _slots(db_session: AsyncSession, service: SundayService) -> dict[str, SundayPracticeSlot]:
    await service.generate_slots(weeks_ahead=2, today=TODAY)
    await db_session.commit()
    slots = await SundaySlotRepository(db_session).list_between(NEXT_SUNDAY, NEXT_SUNDAY)
    return {slot.min_category: slot for slot in slots}


@pytest.mark.asyncio
async def test_generate_slots_is_idempotent(db_session: AsyncSession, container: AppContainer) -> None:
    service = container.create_sunday_service(db_session)

    created = await service.generate_slots(weeks_ahead=2, today=TODAY)
    again = await service.generate_slots(weeks_ahead=2, today=TODAY)

    assert created == 4
    assert again == 0
    slots = await SundaySlotRepository(db_session).list_between(TODAY, NEXT_SUNDAY)
    assert [(slot.practice_date, slot.max_capacity) for slot in slots] == [
        (TODAY, 12),
        (TODAY, 10),
        (NEXT_SUNDAY, 12),
        (NEXT_SUNDAY, 10),
    ]


@pytest.mark.asyncio
async def test_thirteenth_request_gets_slot_full(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    early = (await _slots(db_session, service))["M7"]

    for index in range(12):
        registration = await make_registration(owner_id=f"parent-{index}", category="M9")
        result = await service.book_sunday_slot(early.id, registration.id, registration.owner_id, now_utc=NOW)
        await db_session.commit()
        assert result.spots_remaining == 11 - index

    late_comer = await make_registration(owner_id="parent-13", category="M11")
    with pytest.raises(SlotFull):
        await service.book_sunday_slot(early.id, late_comer.id, late_comer.owner_id, now_utc=NOW)

    refreshed = await SundaySlotRepository(db_session).get_by_id(early.id)
    assert refreshed is not None
    assert refreshed.current_bookings == 12


@pytest.mark.asyncio
@pytest.mark.parametrize(("category", "band"), [("M18", "M7"), ("M18", "M13"), ("M13", "M7")])
async def test_ineligible_categories(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
    category: str,
    band: str,
) -> None:
    service = container.create_sunday_service(db_session)
    slot = (await _slots(db_session, service))[band]
    registration = await make_registration(category=category)

    with pytest.raises(IneligibleCategory):
        await service.book_sunday_slot(slot.id, registration.id, OWNER_ID, now_utc=NOW)


@pytest.mark.asyncio
async def test_program_and_payment_gates(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    slot = (await _slots(db_session, service))["M7"]
    private = await make_registration(program=PrivateProgram(selected_days=["monday"], time_slot="9-10"))
    unpaid = await make_registration(payment_status=PaymentStatus.PENDING)
    lapsed = await make_registration(payment_status=PaymentStatus.PAST_DUE)

    with pytest.raises(InvalidProgramType):
        await service.book_sunday_slot(slot.id, private.id, OWNER_ID, now_utc=NOW)
    with pytest.raises(PaymentRequired):
        await service.book_sunday_slot(slot.id, unpaid.id, OWNER_ID, now_utc=NOW)
    with pytest.raises(PaymentRequired):
        await service.book_sunday_slot(slot.id, lapsed.id, OWNER_ID, now_utc=NOW)

    refreshed = await SundaySlotRepository(db_session).get_by_id(slot.id)
    assert refreshed is not None
    assert refreshed.current_bookings == 0


@pytest.mark.asyncio
async def test_one_sunday_booking_per_player_per_date(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    slot = (await _slots(db_session, service))["M7"]
    registration = await make_registration()
    await service.book_sunday_slot(slot.id, registration.id, OWNER_ID, now_utc=NOW)

    with pytest.raises(DuplicateBooking):
        await service.book_sunday_slot(slot.id, registration.id, OWNER_ID, now_utc=NOW)

    refreshed = await SundaySlotRepository(db_session).get_by_id(slot.id)
    assert refreshed is not None
    assert refreshed.current_bookings == 1


@pytest.mark.asyncio
async def test_slot_that_already_started_cannot_be_booked(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    await service.generate_slots(weeks_ahead=1, today=TODAY)
    today_slots = await SundaySlotRepository(db_session).list_between(TODAY, TODAY)
    registration = await make_registration()

    # 7:30 AM Eastern is 12:30 UTC on 2026-03-01
    with pytest.raises(SlotPast):
        await service.book_sunday_slot(
            today_slots[0].id, registration.id, OWNER_ID, now_utc=datetime(2026, 3, 1, 13, 0, tzinfo=UTC)
        )


@pytest.mark.asyncio
async def test_cancel_frees_the_spot(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    slot = (await _slots(db_session, service))["M7"]
    registration = await make_registration()
    booked = await service.book_sunday_slot(slot.id, registration.id, OWNER_ID, now_utc=NOW)

    with pytest.raises(SessionAlreadyOccurred):
        await service.cancel_sunday_booking(
            booked.booking.id, OWNER_ID, now_utc=datetime(2026, 3, 8, 12, 0, tzinfo=UTC)
        )

    cancelled = await service.cancel_sunday_booking(booked.booking.id, OWNER_ID, now_utc=NOW)
    await db_session.commit()

    assert cancelled.status == BookingStatus.CANCELLED.value
    refreshed = await SundaySlotRepository(db_session).get_by_id(slot.id)
    assert refreshed is not None
    assert refreshed.current_bookings == 0
    with pytest.raises(AlreadyCancelled):
        await service.cancel_sunday_booking(booked.booking.id, OWNER_ID, now_utc=NOW)

    rebooked = await service.book_sunday_slot(slot.id, registration.id, OWNER_ID, now_utc=NOW)
    assert rebooked.spots_remaining == 11


@pytest.mark.asyncio
async def test_upcoming_slots_show_only_the_players_band(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    slots = await _slots(db_session, service)
    registration = await make_registration(category="M15")
    booked = await service.book_sunday_slot(slots["M13"].id, registration.id, OWNER_ID, now_utc=NOW)

    views = await service.upcoming_slots(registration.id, OWNER_ID, weeks=2, now_utc=NOW)

    assert [(view.slot.practice_date, view.slot.min_category) for view in views] == [
        (TODAY, "M13"),
        (NEXT_SUNDAY, "M13"),
    ]
    today_view, next_view = views
    assert today_view.can_book is True
    assert next_view.is_booked is True
    assert next_view.booking_id == booked.booking.id
    assert next_view.can_book is False
    assert next_view.spots_remaining == 9


@pytest.mark.asyncio
async def test_roster_lists_active_bookings(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    service = container.create_sunday_service(db_session)
    slot = (await _slots(db_session, service))["M7"]
    first = await make_registration(owner_id="a", player_name="Sam")
    second = await make_registration(owner_id="b", player_name="Kim")
    await service.book_sunday_slot(slot.id, first.id, "a", now_utc=NOW)
    cancelled = await service.book_sunday_slot(slot.id, second.id, "b", now_utc=NOW)
    await service.cancel_sunday_booking(cancelled.booking.id, "b", now_utc=NOW)

    roster = await service.roster(NEXT_SUNDAY)

    by_band = {entry.slot.min_category: entry for entry in roster}
    assert [item.registration_id for item in by_band["M7"].bookings] == [first.id]
    assert by_band["M13"].bookings == []
