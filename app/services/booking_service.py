from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import ensure_utc, parse_time_slot_start, session_start_utc, utc_now, weekday_name
from app.db.models import Registration, SessionBooking
from app.domain.catalog import CREDITS_PER_SESSION, assigned_slot, max_capacity, program_days, sunday_band_for_label
from app.domain.commands import BookSessionCommand
from app.domain.enums import BookingStatus, NotificationType, ProgramType, SessionType
from app.domain.errors import (
    AlreadyCancelled,
    DuplicateBooking,
    Forbidden,
    IneligibleCategory,
    InsufficientCredits,
    InvalidProgramType,
    NotFound,
    SessionAlreadyOccurred,
    SlotFull,
    SlotPast,
    ValidationFailed,
)
from app.repositories.booking_repository import BookingRepository
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.sunday_slot_repository import SundaySlotRepository
from app.services.capacity_service import CapacityService, ReserveOutcome
from app.services.ledger_service import LedgerService
from app.services.notification_service import NotificationService, ParentAudience

logger = structlog.get_logger(__name__)

@dataclass(frozen=True, slots=True)
class BookingResult:
    booking: SessionBooking
    credits_remaining: int


@dataclass(frozen=True, slots=True)
class CancellationResult:
    booking: SessionBooking
    credits_refunded: int
    credits_remaining: int


class BookingService:
    def __init__(
        self,
        session: AsyncSession,
        booking_repository: BookingRepository,
        registration_repository: RegistrationRepository,
        sunday_slot_repository: SundaySlotRepository,
        capacity_service: CapacityService,
        ledger_service: LedgerService,
        notification_service: NotificationService | None = None,
        timezone: str = "America/New_York",
        refund_window_hours: int = 24,
        low_credit_threshold: int = 3,
    ) -> None:
        self._session = session
        self._bookings = booking_repository
        self._registrations = registration_repository
        self._sunday_slots = sunday_slot_repository
        self._capacity = capacity_service
        self._ledger = ledger_service
        self._notifications = notification_service
        self._timezone = timezone
        self._refund_window = timedelta(hours=refund_window_hours)
        self._low_credit_threshold = low_credit_threshold

    async def book(
        self,
        cmd: BookSessionCommand,
        now_utc: datetime | None = None,
        recurring_schedule_id: UUID | None = None,
    ) -> BookingResult:
        now = ensure_utc(now_utc or utc_now())
        credits_needed = CREDITS_PER_SESSION[cmd.session_type]
        if credits_needed == 0:
            msg = f"{cmd.session_type.value} sessions are paid at checkout, not with credits"
            raise ValidationFailed(msg, session_type=cmd.session_type.value)

        registration = await self._owned_registration(cmd.registration_id, cmd.owner_id)
        time_slot = self._validate_group_request(registration, cmd, now)

        if await self._bookings.find_active(
            registration.id, cmd.session_date, time_slot, cmd.session_type.value
        ):
            raise DuplicateBooking()

        capacity = max_capacity(cmd.session_type, time_slot, registration.player_category)
        outcome = await self._capacity.reserve(cmd.session_type, cmd.session_date, time_slot, capacity)
        if outcome is ReserveOutcome.FULL:
            raise SlotFull(capacity=capacity)

        try:
            debit = await self._ledger.debit(cmd.owner_id, credits_needed, now_utc=now)
        except InsufficientCredits:
            await self._capacity.release(cmd.session_type, cmd.session_date, time_slot)
            raise

        booking = SessionBooking(
            owner_id=cmd.owner_id,
            registration_id=registration.id,
            session_type=cmd.session_type.value,
            session_date=cmd.session_date,
            time_slot=time_slot,
            credits_used=credits_needed,
            credit_purchase_id=debit.primary_purchase_id,
            is_recurring=recurring_schedule_id is not None,
            recurring_schedule_id=recurring_schedule_id,
            status=BookingStatus.BOOKED.value,
        )
        try:
            async with self._session.begin_nested():
                await self._bookings.create(booking)
        except IntegrityError as exc:
            await self._ledger.refund(cmd.owner_id, credits_needed, debit.primary_purchase_id, now_utc=now)
            await self._capacity.release(cmd.session_type, cmd.session_date, time_slot)
            raise DuplicateBooking() from exc

        logger.info(
            "booking.created",
            booking_id=str(booking.id),
            owner_id=cmd.owner_id,
            session_type=cmd.session_type.value,
            session_date=cmd.session_date.isoformat(),
            time_slot=time_slot,
            credits_remaining=debit.balance,
        )
        await self._notify_booked(booking, registration, debit.balance)
        return BookingResult(booking=booking, credits_remaining=debit.balance)

    async def cancel(
        self,
        booking_id: UUID,
        owner_id: str,
        reason: str | None = None,
        now_utc: datetime | None = None,
    ) -> CancellationResult:
        now = ensure_utc(now_utc or utc_now())
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        if booking.owner_id != owner_id:
            raise Forbidden("This booking belongs to another account")
        self._guard_not_terminal(booking)

        # Cancelling after the start still frees the spot, with no refund.
        starts_at = session_start_utc(booking.session_date, booking.time_slot, self._timezone)
        session_type = SessionType(booking.session_type)
        refunded = 0
        async with self._session.begin_nested():
            cancelled = await self._bookings.transition(
                booking.id,
                BookingStatus.BOOKED,
                BookingStatus.CANCELLED,
                cancelled_at=now,
                cancellation_reason=reason,
            )
            if not cancelled:
                raise AlreadyCancelled()
            if booking.sunday_slot_id is not None:
                await self._sunday_slots.try_decrement(booking.sunday_slot_id)
            else:
                await self._capacity.release(session_type, booking.session_date, booking.time_slot)
            if booking.credits_used > 0 and starts_at - now >= self._refund_window:
                refund = await self._ledger.refund(
                    owner_id,
                    booking.credits_used,
                    booking.credit_purchase_id,
                    now_utc=now,
                )
                refunded = refund.refunded

        booking = await self._bookings.get_by_id(booking_id) or booking
        balance = await self._ledger.balance(owner_id, now_utc=now)
        logger.info(
            "booking.cancelled",
            booking_id=str(booking.id),
            owner_id=owner_id,
            credits_refunded=refunded,
            hours_before_start=round((starts_at - now).total_seconds() / 3600, 1),
        )
        if self._notifications is not None:
            message = f"Your {session_type.value} session on {booking.session_date.isoformat()} was cancelled."
            if refunded:
                message = f"{message} {refunded} credit(s) refunded."
            await self._notifications.publish(
                ParentAudience(owner_id),
                NotificationType.BOOKING_CANCELLED,
                "Booking cancelled",
                message,
                data={"booking_id": str(booking.id), "credits_refunded": refunded},
                now_utc=now,
            )
        return CancellationResult(booking=booking, credits_refunded=refunded, credits_remaining=balance)

    async def mark_attended(self, booking_id: UUID) -> SessionBooking:
        return await self._close(booking_id, BookingStatus.ATTENDED)

    async def mark_no_show(self, booking_id: UUID) -> SessionBooking:
        return await self._close(booking_id, BookingStatus.NO_SHOW)

    async def confirm_paid_session(
        self,
        owner_id: str,
        registration_id: UUID,
        session_type: SessionType,
        session_date: date,
        time_slot: str,
        price_paid: int,
        payment_session_id: str | None,
    ) -> tuple[SessionBooking, bool]:
        if payment_session_id:
            paid = await self._bookings.get_by_payment_session_id(payment_session_id)
            if paid is not None:
                return paid, False

        registration = await self._owned_registration(registration_id, owner_id)
        existing = await self._bookings.find_active(registration.id, session_date, time_slot, session_type.value)
        if existing is not None:
            existing.price_paid = price_paid
            existing.payment_session_id = payment_session_id
            await self._bookings.update(existing)
            return existing, False

        booking = SessionBooking(
            owner_id=owner_id,
            registration_id=registration.id,
            session_type=session_type.value,
            session_date=session_date,
            time_slot=time_slot,
            credits_used=0,
            price_paid=price_paid,
            payment_session_id=payment_session_id,
            status=BookingStatus.BOOKED.value,
        )
        async with self._session.begin_nested():
            if session_type is SessionType.SUNDAY:
                band = sunday_band_for_label(time_slot)
                slot = await self._sunday_slots.get_by_date_start(session_date, band.start) if band else None
                if slot is None:
                    msg = f"No Sunday practice is scheduled for {session_date.isoformat()} at {time_slot}"
                    raise NotFound(msg)
                if not await self._sunday_slots.try_increment(slot.id):
                    raise SlotFull(capacity=slot.max_capacity)
                booking.sunday_slot_id = slot.id
            else:
                capacity = max_capacity(session_type, time_slot, registration.player_category)
                outcome = await self._capacity.reserve(session_type, session_date, time_slot, capacity)
                if outcome is ReserveOutcome.FULL:
                    raise SlotFull(capacity=capacity)
            await self._bookings.create(booking)

        logger.info(
            "booking.paid_session_confirmed",
            booking_id=str(booking.id),
            owner_id=owner_id,
            session_type=session_type.value,
            session_date=session_date.isoformat(),
        )
        await self._notify_booked(booking, registration, None)
        return booking, True

    async def list_for_owner(
        self,
        owner_id: str,
        status: BookingStatus | None = None,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[SessionBooking]:
        return await self._bookings.list_for_owner(owner_id, status=status, from_date=from_date, to_date=to_date)

    async def _owned_registration(self, registration_id: UUID, owner_id: str) -> Registration:
        registration = await self._registrations.get_by_id(registration_id)
        if registration is None or not registration.is_active:
            raise NotFound("Registration not found")
        if registration.owner_id != owner_id:
            raise Forbidden("This registration belongs to another account")
        return registration

    def _validate_group_request(self, registration: Registration, cmd: BookSessionCommand, now: datetime) -> str:
        if registration.program_type != ProgramType.GROUP.value:
            raise InvalidProgramType(
                f"A {registration.program_type} registration cannot book {cmd.session_type.value} sessions"
            )

        slot = assigned_slot(registration.player_category)
        if slot is None:
            raise IneligibleCategory(f"No group time slot for category {registration.player_category}")
        if parse_time_slot_start(cmd.time_slot) != slot.start:
            raise ValidationFailed(
                f"{registration.player_category} trains at {slot.label}",
                assigned_time_slot=slot.label,
            )

        allowed_days = program_days(ProgramType(registration.program_type))
        if weekday_name(cmd.session_date) not in allowed_days:
            raise ValidationFailed(f"Group training runs on {', '.join(allowed_days)} only")

        if session_start_utc(cmd.session_date, slot.label, self._timezone) <= now:
            raise SlotPast()
        return slot.label

    def _guard_not_terminal(self, booking: SessionBooking) -> None:
        match BookingStatus(booking.status):
            case BookingStatus.CANCELLED:
                raise AlreadyCancelled()
            case BookingStatus.ATTENDED | BookingStatus.NO_SHOW:
                raise SessionAlreadyOccurred()
            case BookingStatus.BOOKED:
                return

    async def _close(self, booking_id: UUID, status: BookingStatus) -> SessionBooking:
        booking = await self._bookings.get_by_id(booking_id)
        if booking is None:
            raise NotFound("Booking not found")
        self._guard_not_terminal(booking)
        if not await self._bookings.transition(booking.id, BookingStatus.BOOKED, status):
            current = await self._bookings.get_by_id(booking_id)
            self._guard_not_terminal(current or booking)
        logger.info("booking.closed", booking_id=str(booking_id), status=status.value)
        return await self._bookings.get_by_id(booking_id) or booking

    async def _notify_booked(self, booking: SessionBooking, registration: Registration, balance: int | None) -> None:
        if self._notifications is None:
            return
        audience = ParentAudience(booking.owner_id)
        await self._notifications.publish(
            audience,
            NotificationType.BOOKING_CONFIRMED,
            "Booking confirmed",
            f"{registration.player_name} is booked for {booking.session_type} training on "
            f"{booking.session_date.isoformat()} at {booking.time_slot}.",
            data={"booking_id": str(booking.id), "registration_id": str(registration.id)},
            dedupe_key=f"booking_confirmed:{booking.id}",
        )
        if balance is not None and balance < self._low_credit_threshold:
            await self._notifications.publish(
                audience,
                NotificationType.CREDITS_LOW,
                "Running low on credits",
                f"You have {balance} credit(s) left.",
                data={"credits_remaining": balance},
            )
