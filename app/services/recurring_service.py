from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.contextvars import bound_contextvars

from app.core.datetime_utils import date_in_week, ensure_utc, local_today, next_occurrence, session_start_utc, utc_now
from app.db.models import RecurringSchedule, Registration
from app.domain.catalog import assigned_slot, program_days
from app.domain.commands import BookSessionCommand, RecurringScheduleCommand
from app.domain.enums import NotificationType, PausedReason, ProgramType, SessionType
from app.domain.errors import (
    BookingError,
    Conflict,
    DuplicateBooking,
    Forbidden,
    IneligibleCategory,
    InsufficientCredits,
    InvalidProgramType,
    NotFound,
    SlotFull,
    SlotPast,
    ValidationFailed,
)
from app.repositories.recurring_schedule_repository import RecurringScheduleRepository
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.schedule_repository import ScheduleRepository
from app.services.booking_service import BookingService
from app.services.notification_service import NotificationService, ParentAudience

logger = structlog.get_logger(__name__)

_WEEK = timedelta(days=7)


@dataclass(slots=True)
class RecurringRunStats:
    processed: int = 0
    booked: int = 0
    already_booked: int = 0
    skipped: int = 0
    paused_insufficient_credits: int = 0
    paused_slot_unavailable: int = 0
    errors: int = 0


class RecurringService:
    """Weekly auto-booking of group sessions paid from the credit ledger.

    Each due schedule is booked through BookingService.book inside its own
    savepoint, so a failed week rolls back its reserve and debit without
    touching the rest of the batch.
    """

    def __init__(
        self,
        session: AsyncSession,
        recurring_schedule_repository: RecurringScheduleRepository,
        registration_repository: RegistrationRepository,
        schedule_repository: ScheduleRepository,
        booking_service: BookingService,
        notification_service: NotificationService | None = None,
        timezone: str = "America/New_York",
        lead_days: int = 7,
    ) -> None:
        self._session = session
        self._schedules = recurring_schedule_repository
        self._registrations = registration_repository
        self._exceptions = schedule_repository
        self._booking = booking_service
        self._notifications = notification_service
        self._timezone = timezone
        self._lead = timedelta(days=max(0, lead_days))

    async def create_schedule(
        self,
        cmd: RecurringScheduleCommand,
        now_utc: datetime | None = None,
    ) -> RecurringSchedule:
        now = ensure_utc(now_utc or utc_now())
        registration = await self._owned_registration(cmd.registration_id, cmd.owner_id)
        if registration.program_type != ProgramType.GROUP.value:
            raise InvalidProgramType("Only group registrations can book recurring sessions")
        slot = assigned_slot(registration.player_category)
        if slot is None:
            raise IneligibleCategory(f"No group time slot for category {registration.player_category}")
        allowed_days = program_days(ProgramType.GROUP)
        if cmd.day_of_week not in allowed_days:
            raise ValidationFailed(f"Group training runs on {', '.join(allowed_days)} only")

        next_date = self._first_bookable(cmd.day_of_week, slot.label, now)
        schedule = await self._schedules.get_for_slot(registration.id, cmd.day_of_week, slot.label)
        if schedule is not None:
            schedule.is_active = True
            schedule.paused_reason = None
            schedule.next_booking_date = next_date
            await self._schedules.update(schedule)
        else:
            schedule = RecurringSchedule(
                owner_id=cmd.owner_id,
                registration_id=registration.id,
                session_type=SessionType.GROUP.value,
                day_of_week=cmd.day_of_week,
                time_slot=slot.label,
                is_active=True,
                next_booking_date=next_date,
            )
            try:
                async with self._session.begin_nested():
                    await self._schedules.create(schedule)
            except IntegrityError as exc:
                raise Conflict("A recurring schedule for this day already exists") from exc

        logger.info(
            "recurring.schedule_saved",
            schedule_id=str(schedule.id),
            owner_id=cmd.owner_id,
            day_of_week=cmd.day_of_week,
            next_booking_date=next_date.isoformat(),
        )
        return schedule

    async def list_for_owner(self, owner_id: str) -> list[RecurringSchedule]:
        return await self._schedules.list_for_owner(owner_id)

    async def pause(self, schedule_id: UUID, owner_id: str) -> RecurringSchedule:
        schedule = await self._owned_schedule(schedule_id, owner_id)
        if schedule.is_active:
            schedule.is_active = False
            schedule.paused_reason = PausedReason.USER_PAUSED.value
            await self._schedules.update(schedule)
            logger.info("recurring.paused", schedule_id=str(schedule_id), reason=PausedReason.USER_PAUSED.value)
        return schedule

    async def resume(self, schedule_id: UUID, owner_id: str, now_utc: datetime | None = None) -> RecurringSchedule:
        now = ensure_utc(now_utc or utc_now())
        schedule = await self._owned_schedule(schedule_id, owner_id)
        schedule.is_active = True
        schedule.paused_reason = None
        schedule.next_booking_date = self._first_bookable(schedule.day_of_week, schedule.time_slot, now)
        await self._schedules.update(schedule)
        logger.info(
            "recurring.resumed",
            schedule_id=str(schedule_id),
            next_booking_date=schedule.next_booking_date.isoformat(),
        )
        return schedule

    async def delete_schedule(self, schedule_id: UUID, owner_id: str) -> None:
        schedule = await self._owned_schedule(schedule_id, owner_id)
        await self._schedules.delete(schedule)
        logger.info("recurring.deleted", schedule_id=str(schedule_id), owner_id=owner_id)

    async def process_due(self, now_utc: datetime | None = None, limit: int = 200) -> RecurringRunStats:
        """Book every active schedule whose next date falls inside the lead window."""
        now = ensure_utc(now_utc or utc_now())
        through = local_today(self._timezone, now) + self._lead
        stats = RecurringRunStats()
        for schedule in await self._schedules.list_due(through, limit=limit):
            stats.processed += 1
            schedule_id = schedule.id
            owner_id = schedule.owner_id
            registration_id = schedule.registration_id
            day = schedule.day_of_week
            time_slot = schedule.time_slot
            due_date = schedule.next_booking_date
            next_date = max(due_date + _WEEK, self._first_bookable(day, time_slot, now))

            with bound_contextvars(recurring_schedule_id=str(schedule_id), owner_id=owner_id):
                session_date = await self._session_date(registration_id, due_date)
                cmd = BookSessionCommand(
                    owner_id=owner_id,
                    registration_id=registration_id,
                    session_type=SessionType.GROUP,
                    session_date=session_date,
                    time_slot=time_slot,
                )
                try:
                    async with self._session.begin_nested():
                        await self._booking.book(cmd, now_utc=now, recurring_schedule_id=schedule_id)
                except InsufficientCredits:
                    await self._pause(schedule_id, owner_id, session_date, PausedReason.INSUFFICIENT_CREDITS, now)
                    stats.paused_insufficient_credits += 1
                    continue
                except SlotFull:
                    await self._pause(schedule_id, owner_id, session_date, PausedReason.SLOT_UNAVAILABLE, now)
                    stats.paused_slot_unavailable += 1
                    continue
                except DuplicateBooking:
                    await self._schedules.advance(schedule_id, due_date, next_date)
                    stats.already_booked += 1
                    continue
                except (SlotPast, ValidationFailed) as exc:
                    await self._schedules.advance(schedule_id, due_date, next_date)
                    logger.info("recurring.week_skipped", session_date=session_date.isoformat(), code=exc.code.value)
                    stats.skipped += 1
                    continue
                except BookingError as exc:
                    logger.warning("recurring.booking_failed", code=exc.code.value, error=exc.message)
                    stats.errors += 1
                    continue

                await self._schedules.advance(schedule_id, due_date, next_date, booked_date=session_date)
                stats.booked += 1
                logger.info(
                    "recurring.booked",
                    session_date=session_date.isoformat(),
                    next_booking_date=next_date.isoformat(),
                )

        logger.info(
            "recurring.run_finished",
            processed=stats.processed,
            booked=stats.booked,
            paused=stats.paused_insufficient_credits + stats.paused_slot_unavailable,
            errors=stats.errors,
        )
        return stats

    async def _session_date(self, registration_id: UUID, due_date: date) -> date:
        exception = await self._exceptions.get_exception(registration_id, due_date)
        if exception is not None and exception.exception_type == "swap":
            return date_in_week(due_date, exception.replacement_day)
        return due_date

    async def _pause(
        self,
        schedule_id: UUID,
        owner_id: str,
        session_date: date,
        reason: PausedReason,
        now: datetime,
    ) -> None:
        if not await self._schedules.pause(schedule_id, reason.value):
            return
        logger.warning("recurring.paused", reason=reason.value, session_date=session_date.isoformat())
        if self._notifications is None:
            return
        if reason is PausedReason.INSUFFICIENT_CREDITS:
            message = (
                f"We could not book {session_date.isoformat()} because your credit balance is empty. "
                "Buy more credits and resume the schedule."
            )
        else:
            message = f"The session on {session_date.isoformat()} is full, so your recurring booking was paused."
        await self._notifications.publish(
            ParentAudience(owner_id),
            NotificationType.RECURRING_PAUSED,
            "Recurring booking paused",
            message,
            data={"recurring_schedule_id": str(schedule_id), "reason": reason.value},
            dedupe_key=f"recurring-paused:{schedule_id}:{session_date.isoformat()}",
            now_utc=now,
        )

    def _first_bookable(self, day: str, time_slot: str, now: datetime) -> date:
        candidate = next_occurrence(day, local_today(self._timezone, now))
        if session_start_utc(candidate, time_slot, self._timezone) <= now:
            candidate += _WEEK
        return candidate

    async def _owned_registration(self, registration_id: UUID, owner_id: str) -> Registration:
        registration = await self._registrations.get_by_id(registration_id)
        if registration is None or not registration.is_active:
            raise NotFound("Registration not found")
        if registration.owner_id != owner_id:
            raise Forbidden("This registration belongs to another account")
        return registration

    async def _owned_schedule(self, schedule_id: UUID, owner_id: str) -> RecurringSchedule:
        schedule = await self._schedules.get_by_id(schedule_id)
        if schedule is None:
            raise NotFound("Recurring schedule not found")
        if schedule.owner_id != owner_id:
            raise Forbidden("This recurring schedule belongs to another account")
        return schedule
