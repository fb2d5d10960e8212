from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import ensure_utc, local_today, upcoming_sundays, utc_now
from app.db.models import Registration, SessionBooking, SundayPracticeSlot
from app.domain.catalog import SUNDAY_BANDS, category_in_range, sunday_slot
from app.domain.enums import (
    PAID_PAYMENT_STATUSES,
    BookingStatus,
    NotificationType,
    PaymentStatus,
    ProgramType,
    SessionType,
)
from app.domain.errors import (
    AlreadyCancelled,
    DuplicateBooking,
    Forbidden,
    IneligibleCategory,
    InvalidProgramType,
    NotFound,
    PaymentRequired,
    SessionAlreadyOccurred,
    SlotFull,
    SlotPast,
)
from app.repositories.booking_repository import BookingRepository
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.sunday_slot_repository import SundaySlotRepository
from app.services.notification_service import NotificationService, ParentAudience

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SundayBookingResult:
    booking: SessionBooking
    spots_remaining: int


@dataclass(frozen=True, slots=True)
class SundaySlotView:
    slot: SundayPracticeSlot
    spots_remaining: int
    is_booked: bool
    booking_id: UUID | None
    can_book: bool


@dataclass(frozen=True, slots=True)
class RosterEntry:
    slot: SundayPracticeSlot
    bookings: list[SessionBooking]


class SundayService:
    """Sunday practice: a scarce weekly slot gated by program, category and payment.

    Booking and cancelling each run inside one savepoint that starts by locking
    the slot row, so every check and the counter change see the same state.
    """

    def __init__(
        self,
        session: AsyncSession,
        sunday_slot_repository: SundaySlotRepository,
        booking_repository: BookingRepository,
        registration_repository: RegistrationRepository,
        notification_service: NotificationService | None = None,
        timezone: str = "America/New_York",
    ) -> None:
        self._session = session
        self._slots = sunday_slot_repository
        self._bookings = booking_repository
        self._registrations = registration_repository
        self._notifications = notification_service
        self._timezone = timezone

    async def book_sunday_slot(
        self,
        slot_id: UUID,
        registration_id: UUID,
        owner_id: str,
        now_utc: datetime | None = None,
    ) -> SundayBookingResult:
        now = ensure_utc(now_utc or utc_now())
        try:
            async with self._session.begin_nested():
                slot = await self._slots.lock(slot_id)
                if slot is None or not slot.is_active:
                    raise NotFound("Sunday practice slot not found")
                if self._starts_at(slot) <= now:
                    raise SlotPast("This Sunday practice has already taken place")

                registration = await self._registrations.get_by_id(registration_id)
                if registration is None or registration.owner_id != owner_id or not registration.is_active:
                    raise NotFound("Registration not found")
                self._check_eligibility(registration, slot)

                if await self._bookings.find_active_on_date(
                    registration.id, slot.practice_date, SessionType.SUNDAY.value
                ):
                    raise DuplicateBooking("This player is already booked for that Sunday")
                if not await self._slots.try_increment(slot.id):
                    raise SlotFull(capacity=slot.max_capacity)

                booking = await self._bookings.create(
                    SessionBooking(
                        owner_id=owner_id,
                        registration_id=registration.id,
                        session_type=SessionType.SUNDAY.value,
                        session_date=slot.practice_date,
                        time_slot=slot.time_slot,
                        credits_used=0,
                        sunday_slot_id=slot.id,
                        status=BookingStatus.BOOKED.value,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateBooking("This player is already booked for that Sunday") from exc

        refreshed = await self._slots.get_by_id(slot_id)
        spots = refreshed.available_spots if refreshed is not None else 0
        logger.info(
            "sunday.booked",
            booking_id=str(booking.id),
            slot_id=str(slot_id),
            registration_id=str(registration_id),
            spots_remaining=spots,
        )
        if self._notifications is not None:
            await self._notifications.publish(
                ParentAudience(owner_id),
                NotificationType.SUNDAY_BOOKING,
                "Sunday practice booked",
                f"{registration.player_name} is booked for Sunday practice on "
                f"{booking.session_date.isoformat()} at {booking.time_slot}.",
                data={"booking_id": str(booking.id), "slot_id": str(slot_id)},
                dedupe_key=f"sunday_booking:{booking.id}",
                now_utc=now,
            )
        return SundayBookingResult(booking=booking, spots_remaining=spots)

    async def cancel_sunday_booking(
        self,
        booking_id: UUID,
        owner_id: str,
        now_utc: datetime | None = None,
    ) -> SessionBooking:
        now = ensure_utc(now_utc or utc_now())
        async with self._session.begin_nested():
            booking = await self._bookings.get_by_id(booking_id)
            if booking is None or booking.session_type != SessionType.SUNDAY.value:
                raise NotFound("Sunday booking not found")
            if booking.owner_id != owner_id:
                raise Forbidden("This booking belongs to another account")
            if booking.status == BookingStatus.CANCELLED.value:
                raise AlreadyCancelled()
            if booking.status != BookingStatus.BOOKED.value:
                raise SessionAlreadyOccurred()

            slot = await self._slots.lock(booking.sunday_slot_id) if booking.sunday_slot_id else None
            if slot is not None and self._starts_at(slot) <= now:
                raise SessionAlreadyOccurred("Cannot cancel a practice that has already started")

            cancelled = await self._bookings.transition(
                booking.id,
                BookingStatus.BOOKED,
                BookingStatus.CANCELLED,
                cancelled_at=now,
                cancellation_reason="Cancelled by parent",
            )
            if not cancelled:
                raise AlreadyCancelled()
            if slot is not None:
                await self._slots.try_decrement(slot.id)

        logger.info("sunday.cancelled", booking_id=str(booking_id), owner_id=owner_id)
        if self._notifications is not None:
            await self._notifications.publish(
                ParentAudience(owner_id),
                NotificationType.BOOKING_CANCELLED,
                "Sunday practice cancelled",
                f"Your Sunday practice booking on {booking.session_date.isoformat()} was cancelled.",
                data={"booking_id": str(booking_id)},
                now_utc=now,
            )
        return await self._bookings.get_by_id(booking_id) or booking

    async def generate_slots(self, weeks_ahead: int, today: date | None = None) -> int:
        start = today or local_today(self._timezone)
        created = 0
        for practice_date in upcoming_sundays(start, weeks_ahead):
            for band in SUNDAY_BANDS:
                _slot, was_created = await self._slots.get_or_create(
                    SundayPracticeSlot(
                        practice_date=practice_date,
                        start_time=band.start,
                        end_time=band.end,
                        time_slot=band.label,
                        min_category=band.min_category,
                        max_category=band.max_category,
                        max_capacity=band.capacity,
                        current_bookings=0,
                        is_active=True,
                    )
                )
                created += int(was_created)
        logger.info("sunday.slots_generated", weeks_ahead=weeks_ahead, created=created)
        return created

    async def upcoming_slots(
        self,
        registration_id: UUID,
        owner_id: str,
        weeks: int = 2,
        now_utc: datetime | None = None,
    ) -> list[SundaySlotView]:
        now = ensure_utc(now_utc or utc_now())
        registration = await self._registrations.get_by_id(registration_id)
        if registration is None or registration.owner_id != owner_id:
            raise NotFound("Registration not found")

        today = local_today(self._timezone, now)
        slots = await self._slots.list_between(today, today + timedelta(weeks=max(1, weeks)))
        own = await self._bookings.list_sunday_for_registration(registration.id, today)
        booked = {item.sunday_slot_id: item.id for item in own}
        booked_dates = {item.session_date for item in own}
        eligible_program = registration.program_type == ProgramType.GROUP.value
        paid = registration.payment_status in PAID_PAYMENT_STATUSES

        views: list[SundaySlotView] = []
        for slot in slots:
            if not category_in_range(registration.player_category, slot.min_category, slot.max_category):
                continue
            booking_id = booked.get(slot.id)
            views.append(
                SundaySlotView(
                    slot=slot,
                    spots_remaining=slot.available_spots,
                    is_booked=booking_id is not None,
                    booking_id=booking_id,
                    can_book=(
                        eligible_program
                        and paid
                        and slot.practice_date not in booked_dates
                        and slot.available_spots > 0
                        and self._starts_at(slot) > now
                    ),
                )
            )
        return views

    async def roster(self, practice_date: date) -> list[RosterEntry]:
        slots = await self._slots.list_between(practice_date, practice_date, active_only=False)
        return [RosterEntry(slot=slot, bookings=await self._bookings.list_for_sunday_slot(slot.id)) for slot in slots]

    def _check_eligibility(self, registration: Registration, slot: SundayPracticeSlot) -> None:
        if registration.program_type != ProgramType.GROUP.value:
            raise InvalidProgramType("Sunday practice is only available to group training players")
        if sunday_slot(registration.player_category) is None or not category_in_range(
            registration.player_category, slot.min_category, slot.max_category
        ):
            raise IneligibleCategory(
                f"{registration.player_category} is not eligible for the {slot.time_slot} Sunday practice",
                category=registration.player_category,
            )
        if registration.payment_status not in PAID_PAYMENT_STATUSES:
            raise PaymentRequired(payment_status=registration.payment_status or PaymentStatus.PENDING.value)

    def _starts_at(self, slot: SundayPracticeSlot) -> datetime:
        local = datetime.combine(slot.practice_date, slot.start_time, tzinfo=ZoneInfo(self._timezone))
        return local.astimezone(UTC)
