from __future__ import annotations

import inspect
from datetime import date, timedelta
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.contextvars import bound_contextvars

from app.api.deps import get_container, get_db_session, require_admin
from app.core.container import AppContainer
from app.core.datetime_utils import utc_now
from app.core.security import IdempotencyGuard, tokens_match
from app.db.models import CreditPurchase, RecurringSchedule, ScheduleException, SessionBooking
from app.domain.catalog import max_capacity
from app.domain.commands import (
    AdminAdjustCreditsCommand,
    AttendanceCommand,
    BookSessionCommand,
    CancelBookingCommand,
    PaymentEvent,
    RecurringScheduleCommand,
    RecurringScheduleOwnerCommand,
    ScheduleChangeCommand,
    SundayBookCommand,
    SundayCancelCommand,
)
from app.domain.enums import BookingStatus, SessionType
from app.domain.errors import BookingError, NotFound
from app.repositories.outbox_repository import OutboxRepository

logger = structlog.get_logger(__name__)
router = APIRouter()


def _booking_payload(booking: SessionBooking) -> dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "registration_id": str(booking.registration_id),
        "session_type": booking.session_type,
        "session_date": booking.session_date.isoformat(),
        "time_slot": booking.time_slot,
        "credits_used": booking.credits_used,
        "is_recurring": booking.is_recurring,
        "recurring_schedule_id": str(booking.recurring_schedule_id) if booking.recurring_schedule_id else None,
        "status": booking.status,
    }


def _purchase_payload(purchase: CreditPurchase) -> dict[str, Any]:
    return {
        "purchase_id": str(purchase.id),
        "package_type": purchase.package_type,
        "credits_purchased": purchase.credits_purchased,
        "credits_remaining": purchase.credits_remaining,
        "status": purchase.status,
        "purchased_at": purchase.purchased_at.isoformat(),
        "expires_at": purchase.expires_at.isoformat(),
    }


def _recurring_payload(schedule: RecurringSchedule) -> dict[str, Any]:
    return {
        "schedule_id": str(schedule.id),
        "registration_id": str(schedule.registration_id),
        "day_of_week": schedule.day_of_week,
        "time_slot": schedule.time_slot,
        "is_active": schedule.is_active,
        "paused_reason": schedule.paused_reason,
        "next_booking_date": schedule.next_booking_date.isoformat(),
        "last_booked_date": schedule.last_booked_date.isoformat() if schedule.last_booked_date else None,
    }


def _exception_payload(item: ScheduleException) -> dict[str, Any]:
    return {
        "exception_id": str(item.id),
        "date": item.exception_date.isoformat(),
        "original_day": item.original_day,
        "replacement_day": item.replacement_day,
        "replacement_time": item.replacement_time,
        "status": item.status,
    }


@router.get("/health/live")
async def health_live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
async def health_ready(
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    try:
        await session.execute(text("SELECT 1"))
        ping_result = container.redis.ping()
        if inspect.isawaitable(ping_result):
            await ping_result
    except Exception as exc:
        logger.exception("health.ready_failed", error=str(exc))
        raise HTTPException(status_code=503, detail="dependencies unavailable") from exc
    return {"status": "ready"}


@router.post("/bookings", status_code=201)
async def book_session(
    cmd: BookSessionCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, registration_id=str(cmd.registration_id)):
        service = container.create_booking_service(session)
        result = await service.book(cmd)
        await session.commit()
    return {
        "booking_id": str(result.booking.id),
        "credits_remaining": result.credits_remaining,
        "booking": _booking_payload(result.booking),
    }


@router.get("/bookings")
async def list_bookings(
    owner_id: str,
    status: BookingStatus | None = None,
    from_date: date | None = None,
    to_date: date | None = None,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_booking_service(session)
    items = await service.list_for_owner(owner_id, status=status, from_date=from_date, to_date=to_date)
    return {"owner_id": owner_id, "bookings": [_booking_payload(item) for item in items]}


@router.post("/bookings/{booking_id}/cancel")
async def cancel_booking(
    booking_id: UUID,
    cmd: CancelBookingCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, booking_id=str(booking_id)):
        service = container.create_booking_service(session)
        result = await service.cancel(booking_id, cmd.owner_id, reason=cmd.reason)
        await session.commit()
    return {
        "booking_id": str(booking_id),
        "status": BookingStatus.CANCELLED.value,
        "credits_refunded": result.credits_refunded,
        "credits_remaining": result.credits_remaining,
    }


@router.post("/bookings/{booking_id}/attendance", dependencies=[Depends(require_admin)])
async def mark_attendance(
    booking_id: UUID,
    cmd: AttendanceCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    service = container.create_booking_service(session)
    if cmd.status is BookingStatus.ATTENDED:
        booking = await service.mark_attended(booking_id)
    else:
        booking = await service.mark_no_show(booking_id)
    await session.commit()
    return {"booking_id": str(booking.id), "status": cmd.status.value}


@router.get("/credits/{owner_id}")
async def get_credits(
    owner_id: str,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_ledger_service(session)
    history = await service.history(owner_id)
    await session.commit()
    return {
        "owner_id": owner_id,
        "total_credits": history.balance,
        "purchases": [_purchase_payload(item) for item in history.purchases],
        "adjustments": [
            {
                "adjustment": item.adjustment,
                "balance_before": item.balance_before,
                "balance_after": item.balance_after,
                "reason": item.reason,
                "admin_id": item.admin_id,
            }
            for item in history.adjustments
        ],
    }


@router.post("/admin/credits/adjust", dependencies=[Depends(require_admin)])
async def adjust_credits(
    cmd: AdminAdjustCreditsCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, admin_id=cmd.admin_id):
        service = container.create_ledger_service(session)
        record = await service.admin_adjust(cmd.owner_id, cmd.adjustment, cmd.reason, cmd.admin_id)
        await session.commit()
    return {
        "owner_id": cmd.owner_id,
        "adjustment": record.adjustment,
        "balance_before": record.balance_before,
        "total_credits": record.balance_after,
    }


@router.post("/registrations/{registration_id}/schedule-changes")
async def change_schedule(
    registration_id: UUID,
    cmd: ScheduleChangeCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, registration_id=str(registration_id)):
        service = container.create_schedule_service(session)
        result = await service.change_schedule(registration_id, cmd)
        await session.commit()
    return {
        "schedule_change_id": str(result.schedule_change_id),
        "new_schedule": result.new_schedule,
        "needs_review": result.needs_review,
    }


@router.get("/registrations/{registration_id}/schedule-exceptions")
async def list_schedule_exceptions(
    registration_id: UUID,
    owner_id: str,
    from_date: date | None = None,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_schedule_service(session)
    items = await service.list_exceptions(registration_id, owner_id, from_date=from_date)
    return {"registration_id": str(registration_id), "exceptions": [_exception_payload(item) for item in items]}


@router.post("/recurring-schedules", status_code=201)
async def create_recurring_schedule(
    cmd: RecurringScheduleCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, registration_id=str(cmd.registration_id)):
        service = container.create_recurring_service(session)
        schedule = await service.create_schedule(cmd)
        await session.commit()
    return _recurring_payload(schedule)


@router.get("/recurring-schedules")
async def list_recurring_schedules(
    owner_id: str,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_recurring_service(session)
    items = await service.list_for_owner(owner_id)
    return {"owner_id": owner_id, "schedules": [_recurring_payload(item) for item in items]}


@router.post("/recurring-schedules/{schedule_id}/pause")
async def pause_recurring_schedule(
    schedule_id: UUID,
    cmd: RecurringScheduleOwnerCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_recurring_service(session)
    schedule = await service.pause(schedule_id, cmd.owner_id)
    await session.commit()
    return _recurring_payload(schedule)


@router.post("/recurring-schedules/{schedule_id}/resume")
async def resume_recurring_schedule(
    schedule_id: UUID,
    cmd: RecurringScheduleOwnerCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_recurring_service(session)
    schedule = await service.resume(schedule_id, cmd.owner_id)
    await session.commit()
    return _recurring_payload(schedule)


@router.delete("/recurring-schedules/{schedule_id}")
async def delete_recurring_schedule(
    schedule_id: UUID,
    owner_id: str,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, str]:
    service = container.create_recurring_service(session)
    await service.delete_schedule(schedule_id, owner_id)
    await session.commit()
    return {"status": "deleted", "schedule_id": str(schedule_id)}


@router.get("/capacity")
async def capacity_snapshot(
    session_type: SessionType,
    session_date: date,
    time_slot: str,
    category: str | None = None,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_capacity_service(session)
    snapshot = await service.snapshot(
        session_type,
        session_date,
        time_slot,
        max_capacity(session_type, time_slot, category),
    )
    return {
        "session_type": snapshot.session_type.value,
        "session_date": snapshot.session_date.isoformat(),
        "time_slot": snapshot.time_slot,
        "occupancy": snapshot.occupancy,
        "capacity": snapshot.capacity,
        "spots_remaining": snapshot.spots_remaining,
    }


@router.post("/sunday/slots/{slot_id}/book", status_code=201)
async def book_sunday_slot(
    slot_id: UUID,
    cmd: SundayBookCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, slot_id=str(slot_id)):
        service = container.create_sunday_service(session)
        result = await service.book_sunday_slot(slot_id, cmd.registration_id, cmd.owner_id)
        await session.commit()
    return {
        "booking_id": str(result.booking.id),
        "spots_remaining": result.spots_remaining,
        "booking": _booking_payload(result.booking),
    }


@router.post("/sunday/bookings/{booking_id}/cancel")
async def cancel_sunday_booking(
    booking_id: UUID,
    cmd: SundayCancelCommand,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    with bound_contextvars(owner_id=cmd.owner_id, booking_id=str(booking_id)):
        service = container.create_sunday_service(session)
        booking = await service.cancel_sunday_booking(booking_id, cmd.owner_id)
        await session.commit()
    return _booking_payload(booking)


@router.get("/sunday/upcoming")
async def upcoming_sunday_slots(
    registration_id: UUID,
    owner_id: str,
    weeks: int = Query(default=0, ge=0, le=12),
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_sunday_service(session)
    views = await service.upcoming_slots(
        registration_id,
        owner_id,
        weeks=weeks or container.settings.sunday_weeks_ahead,
    )
    return {
        "registration_id": str(registration_id),
        "slots": [
            {
                "slot_id": str(view.slot.id),
                "practice_date": view.slot.practice_date.isoformat(),
                "time_slot": view.slot.time_slot,
                "spots_remaining": view.spots_remaining,
                "is_booked": view.is_booked,
                "booking_id": str(view.booking_id) if view.booking_id else None,
                "can_book": view.can_book,
            }
            for view in views
        ],
    }


@router.get("/admin/sunday/roster", dependencies=[Depends(require_admin)])
async def sunday_roster(
    practice_date: date,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    service = container.create_sunday_service(session)
    entries = await service.roster(practice_date)
    return {
        "practice_date": practice_date.isoformat(),
        "slots": [
            {
                "slot_id": str(entry.slot.id),
                "time_slot": entry.slot.time_slot,
                "current_bookings": entry.slot.current_bookings,
                "max_capacity": entry.slot.max_capacity,
                "bookings": [_booking_payload(item) for item in entry.bookings],
            }
            for entry in entries
        ],
    }


@router.post("/webhook/payments")
async def payment_webhook(
    event: PaymentEvent,
    container: AppContainer = Depends(get_container),
    session: AsyncSession = Depends(get_db_session),
    x_webhook_secret: str | None = Header(default=None),
) -> dict[str, str]:
    if not tokens_match(x_webhook_secret, container.settings.payment_webhook_secret):
        raise HTTPException(status_code=401, detail="invalid webhook secret")

    guard = IdempotencyGuard(container.redis, ttl_seconds=container.settings.webhook_dedupe_ttl_seconds)
    key = f"payment_event:{event.event_id}"
    with bound_contextvars(payment_event_id=event.event_id, payment_event_type=event.event_type):
        try:
            if await guard.seen(key):
                logger.info("webhook.duplicate_cached")
                return {"status": "ok", "outcome": "duplicate"}
        except RedisError as exc:
            logger.warning("webhook.dedupe_cache_unavailable", error=str(exc))

        try:
            service = container.create_payment_event_service(session)
            result = await service.handle(event)
            await session.commit()
        except BookingError:
            await session.rollback()
            raise
        except Exception as exc:
            await session.rollback()
            logger.exception("webhook.payment_failed", error=str(exc))
            raise HTTPException(status_code=500, detail="event processing failed") from exc

        try:
            await guard.check_and_set(key)
        except RedisError as exc:
            logger.warning("webhook.dedupe_cache_unavailable", error=str(exc))
    return {"status": "ok", "outcome": result.outcome.value}


@router.post("/admin/outbox/{outbox_id}/requeue", dependencies=[Depends(require_admin)])
async def requeue_outbox(
    outbox_id: UUID,
    available_in_seconds: int = 0,
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, object]:
    repo = OutboxRepository(session)
    item = await repo.get_by_id(outbox_id)
    if item is None:
        raise NotFound("Outbox item not found")
    available_at = utc_now() + timedelta(seconds=max(0, available_in_seconds))
    await repo.requeue(item, available_at=available_at)
    await session.commit()
    return {"status": "ok", "outbox_id": str(outbox_id), "available_at": available_at.isoformat()}


@router.get("/admin/outbox/dead-letters", dependencies=[Depends(require_admin)])
async def list_dead_letters(
    limit: int = Query(default=50, ge=1, le=200),
    session: AsyncSession = Depends(get_db_session),
) -> dict[str, Any]:
    items = await OutboxRepository(session).list_dead_letters(limit=limit)
    return {
        "items": [
            {
                "outbox_id": str(item.id),
                "type": item.payload.get("type"),
                "attempts": item.attempts,
                "last_error": item.last_error,
            }
            for item in items
        ]
    }
