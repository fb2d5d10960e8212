from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import (
    date_in_week,
    ensure_utc,
    local_today,
    parse_time_slot_start,
    utc_now,
    week_start,
    weekday_name,
)
from app.db.models import Registration, ScheduleChange, ScheduleException
from app.domain.catalog import GROUP_CAPACITY, HOURLY_WINDOWS, program_days
from app.domain.commands import ScheduleChangeCommand
from app.domain.enums import ChangeType, NotificationType, ProgramType
from app.domain.errors import Conflict, Forbidden, NotFound, SlotFull, ValidationFailed
from app.domain.programs import (
    GroupProgram,
    PrivateProgram,
    SemiPrivateProgram,
    dump_program,
    recurring_pattern,
    with_pattern,
)
from app.repositories.registration_repository import RegistrationRepository
from app.repositories.schedule_repository import ScheduleRepository
from app.services.notification_service import AllAdmins, NotificationService, ParentAudience

logger = structlog.get_logger(__name__)

Program = GroupProgram | PrivateProgram | SemiPrivateProgram


@dataclass(frozen=True, slots=True)
class DayMapping:
    original_date: date
    original_day: str
    replacement_day: str


@dataclass(slots=True)
class ScheduleChangeResult:
    schedule_change_id: UUID
    new_schedule: dict[str, Any]
    needs_review: bool = False
    exceptions: list[ScheduleException] = field(default_factory=list)


class ScheduleService:
    """Permanent and one-time changes to a player's weekly training pattern.

    Permanent changes rewrite the pattern stored on the registration. One-time
    changes only write per-date exceptions; the stored pattern stays as is.
    Both are checked against the patterns of every other active registration
    before anything is written.
    """

    def __init__(
        self,
        session: AsyncSession,
        registration_repository: RegistrationRepository,
        schedule_repository: ScheduleRepository,
        notification_service: NotificationService | None = None,
        timezone: str = "America/New_York",
    ) -> None:
        self._session = session
        self._registrations = registration_repository
        self._schedules = schedule_repository
        self._notifications = notification_service
        self._timezone = timezone

    async def change_schedule(
        self,
        registration_id: UUID,
        cmd: ScheduleChangeCommand,
        now_utc: datetime | None = None,
    ) -> ScheduleChangeResult:
        now = ensure_utc(now_utc or utc_now())
        registration = await self._owned_registration(registration_id, cmd.owner_id)
        program = self._program_of(registration)
        current_days, current_time = recurring_pattern(program, registration.player_category)

        target_days = cmd.target_days
        allowed = program_days(ProgramType(registration.program_type))
        outside = [day for day in target_days if day not in allowed]
        if outside:
            raise ValidationFailed(
                f"{registration.program_type} training is available on {', '.join(allowed)} only",
                invalid_days=outside,
            )
        new_time = self._target_time(program, cmd, current_time)
        if cmd.change_type is ChangeType.PERMANENT and isinstance(program, GroupProgram):
            if len(target_days) != program.days_per_week:
                raise ValidationFailed(
                    f"A {program.frequency} group player trains on exactly {program.days_per_week} day(s)"
                )

        await self._check_conflicts(registration, program, target_days, new_time)

        if cmd.change_type is ChangeType.PERMANENT:
            result = await self._apply_permanent(registration, program, cmd, current_days, current_time, new_time, now)
        else:
            result = await self._apply_one_time(registration, cmd, current_days, current_time, new_time, now)

        await self._notify(registration, result, now)
        return result

    async def list_exceptions(
        self,
        registration_id: UUID,
        owner_id: str,
        from_date: date | None = None,
        to_date: date | None = None,
    ) -> list[ScheduleException]:
        await self._owned_registration(registration_id, owner_id)
        return await self._schedules.list_exceptions(registration_id, from_date=from_date, to_date=to_date)

    async def effective_days_for_week(self, registration_id: UUID, anchor: date) -> list[date]:
        registration = await self._registrations.get_by_id(registration_id)
        if registration is None:
            raise NotFound("Registration not found")
        days, _time_slot = recurring_pattern(self._program_of(registration), registration.player_category)
        dates = {date_in_week(anchor, day) for day in days}

        start = week_start(anchor)
        end = date_in_week(anchor, "sunday")
        for item in await self._schedules.list_exceptions(registration_id, from_date=start, to_date=end):
            dates.discard(item.exception_date)
            dates.add(date_in_week(anchor, item.replacement_day))
        return sorted(dates)

    async def _apply_permanent(
        self,
        registration: Registration,
        program: Program,
        cmd: ScheduleChangeCommand,
        current_days: list[str],
        current_time: str | None,
        new_time: str | None,
        now: datetime,
    ) -> ScheduleChangeResult:
        try:
            updated = with_pattern(program, cmd.target_days, new_time)
        except ValidationError as exc:
            raise ValidationFailed(_first_error(exc)) from exc

        change = ScheduleChange(
            registration_id=registration.id,
            change_type=ChangeType.PERMANENT.value,
            program_type=registration.program_type,
            original_days=current_days,
            original_time=current_time,
            new_days=cmd.target_days,
            new_time=new_time,
            effective_date=cmd.effective_date,
            status="applied",
            reason=cmd.reason,
            created_by=cmd.owner_id,
            applied_at=now,
        )
        async with self._session.begin_nested():
            await self._schedules.add_change(change)
            registration.program = dump_program(updated)
            await self._registrations.update(registration)

        logger.info(
            "schedule.permanent_applied",
            registration_id=str(registration.id),
            days=cmd.target_days,
            time_slot=new_time,
        )
        return ScheduleChangeResult(
            schedule_change_id=change.id,
            new_schedule={"days": cmd.target_days, "time": new_time},
        )

    async def _apply_one_time(
        self,
        registration: Registration,
        cmd: ScheduleChangeCommand,
        current_days: list[str],
        current_time: str | None,
        new_time: str | None,
        now: datetime,
    ) -> ScheduleChangeResult:
        mappings, needs_review = self._mappings(cmd, current_days)
        today = local_today(self._timezone, now)
        for mapping in mappings:
            if mapping.original_date < today:
                raise ValidationFailed(f"{mapping.original_date.isoformat()} is in the past")

        change = ScheduleChange(
            registration_id=registration.id,
            change_type=ChangeType.ONE_TIME.value,
            program_type=registration.program_type,
            original_days=current_days,
            original_time=current_time,
            new_days=[mapping.replacement_day for mapping in mappings],
            new_time=new_time,
            specific_date=cmd.specific_date,
            status="applied",
            needs_review=needs_review,
            reason=cmd.reason,
            created_by=cmd.owner_id,
            applied_at=now,
        )
        exceptions: list[ScheduleException] = []
        async with self._session.begin_nested():
            await self._schedules.add_change(change)
            for mapping in mappings:
                exceptions.append(
                    await self._schedules.upsert_exception(
                        ScheduleException(
                            registration_id=registration.id,
                            schedule_change_id=change.id,
                            exception_date=mapping.original_date,
                            exception_type="swap",
                            original_day=mapping.original_day,
                            replacement_day=mapping.replacement_day,
                            replacement_time=new_time,
                            status="applied",
                            reason=cmd.reason,
                            created_by=cmd.owner_id,
                            applied_at=now,
                        )
                    )
                )

        logger.info(
            "schedule.one_time_applied",
            registration_id=str(registration.id),
            exceptions=len(exceptions),
            needs_review=needs_review,
        )
        return ScheduleChangeResult(
            schedule_change_id=change.id,
            new_schedule={
                "days": current_days,
                "time": current_time,
                "exceptions": [
                    {
                        "date": item.exception_date.isoformat(),
                        "original_day": item.original_day,
                        "replacement_day": item.replacement_day,
                        "time": item.replacement_time,
                    }
                    for item in exceptions
                ],
            },
            needs_review=needs_review,
            exceptions=exceptions,
        )

    def _mappings(self, cmd: ScheduleChangeCommand, current_days: list[str]) -> tuple[list[DayMapping], bool]:
        if cmd.day_swaps:
            mappings = [
                DayMapping(swap.original_date, swap.original_day, swap.new_day) for swap in cmd.day_swaps
            ]
            unknown = [item.original_day for item in mappings if item.original_day not in current_days]
            if unknown:
                raise ValidationFailed(
                    "Swapped days must be part of the current schedule",
                    invalid_days=unknown,
                )
            return mappings, False

        # Legacy form: the same date is applied to every supplied day.
        if cmd.specific_date is None:
            raise ValidationFailed("A one-time change requires day_swaps or specific_date")
        original_day = weekday_name(cmd.specific_date)
        mappings = [DayMapping(cmd.specific_date, original_day, day) for day in cmd.new_days]
        needs_review = len(mappings) > 1
        logger.warning(
            "schedule.legacy_one_time_change",
            specific_date=cmd.specific_date.isoformat(),
            days=cmd.new_days,
            needs_review=needs_review,
        )
        return mappings, needs_review

    def _target_time(self, program: Program, cmd: ScheduleChangeCommand, current_time: str | None) -> str | None:
        match program:
            case GroupProgram():
                if cmd.new_time and current_time:
                    if parse_time_slot_start(cmd.new_time) != parse_time_slot_start(current_time):
                        raise ValidationFailed(f"Group time is fixed by category at {current_time}")
                return current_time
            case SemiPrivateProgram() | PrivateProgram():
                new_time = cmd.new_time or current_time
                if new_time is None:
                    raise ValidationFailed("A training time is required")
                if new_time not in HOURLY_WINDOWS:
                    raise ValidationFailed(f"Invalid time. Must be one of: {', '.join(HOURLY_WINDOWS)}")
                return new_time

    async def _check_conflicts(
        self,
        registration: Registration,
        program: Program,
        days: list[str],
        time_slot: str | None,
    ) -> None:
        match program:
            case GroupProgram():
                others = await self._registrations.list_active_by_program(
                    [ProgramType.GROUP.value],
                    exclude_id=registration.id,
                )
                per_day: Counter[str] = Counter()
                for other in others:
                    other_days, other_time = self._pattern_or_none(other)
                    if other_time == time_slot:
                        per_day.update(day for day in other_days if day in days)
                full = [day for day in days if per_day[day] >= GROUP_CAPACITY]
                if full:
                    raise SlotFull(
                        f"Group training at {time_slot} is full on {', '.join(full)}",
                        days=full,
                    )
            case SemiPrivateProgram() | PrivateProgram():
                others = await self._registrations.list_active_by_program(
                    [ProgramType.PRIVATE.value, ProgramType.SEMI_PRIVATE.value],
                    exclude_id=registration.id,
                )
                for other in others:
                    other_days, other_time = self._pattern_or_none(other)
                    taken = sorted(set(other_days) & set(days))
                    if other_time == time_slot and taken:
                        logger.info(
                            "schedule.conflict",
                            registration_id=str(registration.id),
                            other_registration_id=str(other.id),
                            days=taken,
                            time_slot=time_slot,
                        )
                        raise Conflict(
                            f"{', '.join(taken)} at {time_slot} is already taken by another player",
                            days=taken,
                        )

    def _pattern_or_none(self, registration: Registration) -> tuple[list[str], str | None]:
        try:
            return recurring_pattern(registration.program_details, registration.player_category)
        except ValidationError:
            logger.warning("schedule.unreadable_program", registration_id=str(registration.id))
            return [], None

    def _program_of(self, registration: Registration) -> Program:
        try:
            return registration.program_details
        except ValidationError as exc:
            raise ValidationFailed(_first_error(exc)) from exc

    async def _owned_registration(self, registration_id: UUID, owner_id: str) -> Registration:
        registration = await self._registrations.get_by_id(registration_id)
        if registration is None or not registration.is_active:
            raise NotFound("Registration not found")
        if registration.owner_id != owner_id:
            raise Forbidden("This registration belongs to another account")
        return registration

    async def _notify(self, registration: Registration, result: ScheduleChangeResult, now: datetime) -> None:
        if self._notifications is None:
            return
        await self._notifications.publish(
            ParentAudience(registration.owner_id),
            NotificationType.SCHEDULE_CHANGED,
            "Schedule updated",
            f"{registration.player_name}'s training schedule was updated.",
            data={"schedule_change_id": str(result.schedule_change_id), "new_schedule": result.new_schedule},
            now_utc=now,
        )
        if result.needs_review:
            await self._notifications.publish(
                AllAdmins(),
                NotificationType.SCHEDULE_CHANGED,
                "Schedule change needs review",
                f"A single-date change for {registration.player_name} was applied to several days.",
                data={"schedule_change_id": str(result.schedule_change_id), "registration_id": str(registration.id)},
                now_utc=now,
            )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid program details"
    return str(errors[0].get("msg", "Invalid program details"))
