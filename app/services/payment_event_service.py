from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from uuid import UUID

import structlog
from pydantic import TypeAdapter, ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import ensure_utc, utc_now
from app.db.models import Registration
from app.domain.catalog import credit_package
from app.domain.commands import CreditPurchaseMetadata, PaymentEvent, PurchaseMetadata, SessionPurchaseMetadata
from app.domain.enums import NotificationType, PaymentStatus
from app.domain.errors import BookingError, ValidationFailed
from app.repositories.payment_event_repository import PaymentEventRepository
from app.repositories.registration_repository import RegistrationRepository
from app.services.booking_service import BookingService
from app.services.ledger_service import LedgerService
from app.services.notification_service import AllAdmins, NotificationService, ParentAudience

logger = structlog.get_logger(__name__)

_metadata_adapter: TypeAdapter[PurchaseMetadata] = TypeAdapter(PurchaseMetadata)

SUBSCRIPTION_STATUS_MAP: dict[str, PaymentStatus] = {
    "active": PaymentStatus.SUCCEEDED,
    "trialing": PaymentStatus.SUCCEEDED,
    "past_due": PaymentStatus.PENDING,
    "unpaid": PaymentStatus.PENDING,
    "incomplete": PaymentStatus.PENDING,
    "canceled": PaymentStatus.CANCELED,
    "incomplete_expired": PaymentStatus.CANCELED,
}


class PaymentOutcome(StrEnum):
    CREDITED = "credited"
    SESSION_CONFIRMED = "session_confirmed"
    STATUS_UPDATED = "status_updated"
    NEEDS_ATTENTION = "needs_attention"
    IGNORED = "ignored"
    DUPLICATE = "duplicate"


@dataclass(slots=True)
class PaymentEventResult:
    outcome: PaymentOutcome
    details: dict[str, Any] = field(default_factory=dict)


class PaymentEventService:
    """Applies verified payment-processor events exactly once.

    The event id is stored in the same savepoint as the effect, so a retried
    delivery either finds the record and short-circuits or loses the insert
    race and is reported as a duplicate.
    """

    def __init__(
        self,
        session: AsyncSession,
        payment_event_repository: PaymentEventRepository,
        registration_repository: RegistrationRepository,
        ledger_service: LedgerService,
        booking_service: BookingService,
        notification_service: NotificationService | None = None,
    ) -> None:
        self._session = session
        self._events = payment_event_repository
        self._registrations = registration_repository
        self._ledger = ledger_service
        self._bookings = booking_service
        self._notifications = notification_service

    async def handle(self, event: PaymentEvent, now_utc: datetime | None = None) -> PaymentEventResult:
        now = ensure_utc(now_utc or utc_now())
        if await self._events.get_by_event_id(event.event_id) is not None:
            logger.info("webhook.duplicate", event_id=event.event_id, event_type=event.event_type)
            return PaymentEventResult(PaymentOutcome.DUPLICATE)

        try:
            async with self._session.begin_nested():
                result = await self._dispatch(event, now)
                await self._events.record(event.event_id, event.event_type, result.outcome.value)
        except IntegrityError:
            if await self._events.get_by_event_id(event.event_id) is None:
                raise
            logger.info("webhook.duplicate", event_id=event.event_id, event_type=event.event_type)
            return PaymentEventResult(PaymentOutcome.DUPLICATE)

        logger.info(
            "webhook.processed",
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=result.outcome.value,
        )
        return result

    async def _dispatch(self, event: PaymentEvent, now: datetime) -> PaymentEventResult:
        match event.event_type:
            case "checkout.session.completed":
                return await self._checkout_completed(event, now)
            case "payment_intent.succeeded" | "invoice.payment_succeeded":
                return await self._set_status(event, PaymentStatus.SUCCEEDED)
            case "payment_intent.payment_failed":
                return await self._set_status(event, PaymentStatus.FAILED)
            case "invoice.payment_failed":
                return await self._set_status(event, PaymentStatus.PAST_DUE)
            case "customer.subscription.deleted":
                return await self._set_status(event, PaymentStatus.CANCELED)
            case "customer.subscription.created" | "customer.subscription.updated":
                status = SUBSCRIPTION_STATUS_MAP.get(event.subscription_status or "")
                if status is None:
                    return PaymentEventResult(
                        PaymentOutcome.IGNORED,
                        {"subscription_status": event.subscription_status},
                    )
                return await self._set_status(event, status)
            case _:
                return PaymentEventResult(PaymentOutcome.IGNORED, {"event_type": event.event_type})

    async def _checkout_completed(self, event: PaymentEvent, now: datetime) -> PaymentEventResult:
        if "type" not in event.metadata:
            # Registration checkout: the subscription payment itself.
            return await self._set_status(event, PaymentStatus.SUCCEEDED)
        try:
            metadata = _metadata_adapter.validate_python(event.metadata)
        except ValidationError as exc:
            msg = f"Invalid checkout metadata: {exc.errors()[0].get('msg', 'unknown error')}"
            raise ValidationFailed(msg) from exc

        match metadata:
            case CreditPurchaseMetadata():
                return await self._credit_purchase(event, metadata, now)
            case SessionPurchaseMetadata():
                return await self._session_purchase(event, metadata, now)

    async def _credit_purchase(
        self,
        event: PaymentEvent,
        metadata: CreditPurchaseMetadata,
        now: datetime,
    ) -> PaymentEventResult:
        package = credit_package(metadata.package_type)
        credits = package.credits if package is not None else metadata.credits
        purchase, created = await self._ledger.credit(
            metadata.owner_id,
            metadata.package_type,
            credits,
            price_paid=event.amount_paid,
            currency=event.currency,
            payment_session_id=event.session_id,
            payment_intent_id=event.payment_intent_id,
            now_utc=now,
        )
        if not created:
            return PaymentEventResult(PaymentOutcome.DUPLICATE, {"purchase_id": str(purchase.id)})

        balance = await self._ledger.balance(metadata.owner_id, now_utc=now)
        if self._notifications is not None:
            await self._notifications.publish(
                ParentAudience(metadata.owner_id),
                NotificationType.CREDITS_PURCHASED,
                "Credits added",
                f"{credits} credit(s) were added to your account. Balance: {balance}.",
                data={"purchase_id": str(purchase.id), "credits": credits, "balance": balance},
                dedupe_key=f"credits_purchased:{purchase.id}",
                now_utc=now,
            )
        return PaymentEventResult(
            PaymentOutcome.CREDITED,
            {"purchase_id": str(purchase.id), "credits": credits, "balance": balance},
        )

    async def _session_purchase(
        self,
        event: PaymentEvent,
        metadata: SessionPurchaseMetadata,
        now: datetime,
    ) -> PaymentEventResult:
        try:
            booking, created = await self._bookings.confirm_paid_session(
                owner_id=metadata.owner_id,
                registration_id=metadata.registration_id,
                session_type=metadata.session_type,
                session_date=metadata.session_date,
                time_slot=metadata.time_slot,
                price_paid=event.amount_paid,
                payment_session_id=event.session_id,
            )
        except BookingError as exc:
            # Money was taken but no seat could be given; an admin refunds by hand.
            logger.warning(
                "webhook.session_purchase_unfulfilled",
                event_id=event.event_id,
                code=exc.code.value,
                error=exc.message,
            )
            if self._notifications is not None:
                await self._notifications.publish(
                    AllAdmins(),
                    NotificationType.PAYMENT_RECEIVED,
                    "Paid session could not be booked",
                    f"Payment {event.session_id or event.event_id} could not be turned into a booking: {exc.message}",
                    data={
                        "event_id": event.event_id,
                        "owner_id": metadata.owner_id,
                        "error_code": exc.code.value,
                    },
                    now_utc=now,
                )
            return PaymentEventResult(PaymentOutcome.NEEDS_ATTENTION, {"error_code": exc.code.value})

        outcome = PaymentOutcome.SESSION_CONFIRMED if created else PaymentOutcome.DUPLICATE
        return PaymentEventResult(outcome, {"booking_id": str(booking.id)})

    async def _set_status(self, event: PaymentEvent, status: PaymentStatus) -> PaymentEventResult:
        registration = await self._find_registration(event)
        if registration is None:
            logger.warning("webhook.registration_not_found", event_id=event.event_id, event_type=event.event_type)
            return PaymentEventResult(PaymentOutcome.IGNORED, {"reason": "registration_not_found"})

        previous = registration.payment_status
        registration.payment_status = status.value
        if event.subscription_id and not registration.subscription_id:
            registration.subscription_id = event.subscription_id
        await self._registrations.update(registration)
        logger.info(
            "registration.payment_status_changed",
            registration_id=str(registration.id),
            previous=previous,
            current=status.value,
        )
        return PaymentEventResult(
            PaymentOutcome.STATUS_UPDATED,
            {"registration_id": str(registration.id), "payment_status": status.value},
        )

    async def _find_registration(self, event: PaymentEvent) -> Registration | None:
        registration_id = event.registration_id
        raw_id = event.metadata.get("registration_id")
        if registration_id is None and raw_id:
            try:
                registration_id = UUID(raw_id)
            except ValueError:
                registration_id = None
        if registration_id is not None:
            registration = await self._registrations.get_by_id(registration_id)
            if registration is not None:
                return registration
        if event.subscription_id:
            return await self._registrations.get_by_subscription_id(event.subscription_id)
        return None
