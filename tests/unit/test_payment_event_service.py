from __future__ import annotations

from datetime import UTC, date, datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import AppContainer
from app.domain.commands import PaymentEvent
from app.domain.enums import PaymentStatus
from app.repositories.booking_repository import BookingRepository
from app.repositories.notification_repository import NotificationRepository
from app.repositories.payment_event_repository import PaymentEventRepository
from app.repositories.registration_repository import RegistrationRepository
from app.services.payment_event_service import PaymentOutcome
from tests.support import OWNER_ID, RegistrationFactory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def _credit_event(event_id: str, session_id: str = "cs_credit_1") -> PaymentEvent:
    return PaymentEvent(
        event_id=event_id,
        event_type="checkout.session.completed",
        session_id=session_id,
        payment_intent_id="pi_1",
        amount_paid=35000,
        metadata={"type": "credit_purchase", "owner_id": OWNER_ID, "package_type": "10_pack", "credits": "10"},
    )


@pytest.mark.asyncio
async def test_credit_purchase_is_applied_once(db_session: AsyncSession, container: AppContainer) -> None:
    service = container.create_payment_event_service(db_session)

    first = await service.handle(_credit_event("evt_1"), now_utc=NOW)
    await db_session.commit()
    replay = await service.handle(_credit_event("evt_1"), now_utc=NOW)
    other_delivery = await service.handle(_credit_event("evt_2"), now_utc=NOW)
    await db_session.commit()

    assert first.outcome is PaymentOutcome.CREDITED
    assert first.details["balance"] == 10
    assert replay.outcome is PaymentOutcome.DUPLICATE
    assert other_delivery.outcome is PaymentOutcome.DUPLICATE
    assert await container.create_ledger_service(db_session).balance(OWNER_ID, now_utc=NOW) == 10
    recorded = await PaymentEventRepository(db_session).get_by_event_id("evt_1")
    assert recorded is not None
    assert recorded.outcome == PaymentOutcome.CREDITED.value
    notifications = await NotificationRepository(db_session).list_for_owner(OWNER_ID)
    assert len(notifications) == 1


@pytest.mark.asyncio
async def test_registration_checkout_marks_payment_succeeded(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration(payment_status=PaymentStatus.PENDING)
    event = PaymentEvent(
        event_id="evt_reg",
        event_type="checkout.session.completed",
        session_id="cs_reg",
        subscription_id="sub_1",
        metadata={"registration_id": str(registration.id)},
    )

    result = await container.create_payment_event_service(db_session).handle(event, now_utc=NOW)
    await db_session.commit()

    assert result.outcome is PaymentOutcome.STATUS_UPDATED
    stored = await RegistrationRepository(db_session).get_by_id(registration.id)
    assert stored is not None
    assert stored.payment_status == PaymentStatus.SUCCEEDED.value
    assert stored.subscription_id == "sub_1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("event_type", "subscription_status", "expected"),
    [
        ("customer.subscription.updated", "active", PaymentStatus.SUCCEEDED),
        ("customer.subscription.updated", "past_due", PaymentStatus.PENDING),
        ("customer.subscription.deleted", None, PaymentStatus.CANCELED),
        ("invoice.payment_failed", None, PaymentStatus.PAST_DUE),
        ("payment_intent.payment_failed", None, PaymentStatus.FAILED),
    ],
)
async def test_subscription_events_update_status(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
    event_type: str,
    subscription_status: str | None,
    expected: PaymentStatus,
) -> None:
    registration = await make_registration(subscription_id="sub_42")
    event = PaymentEvent(
        event_id=f"evt_{event_type}",
        event_type=event_type,
        subscription_id="sub_42",
        subscription_status=subscription_status,
    )

    result = await container.create_payment_event_service(db_session).handle(event, now_utc=NOW)
    await db_session.commit()

    assert result.outcome is PaymentOutcome.STATUS_UPDATED
    stored = await RegistrationRepository(db_session).get_by_id(registration.id)
    assert stored is not None
    assert stored.payment_status == expected.value


@pytest.mark.asyncio
async def test_unknown_events_are_recorded_and_ignored(db_session: AsyncSession, container: AppContainer) -> None:
    service = container.create_payment_event_service(db_session)

    result = await service.handle(PaymentEvent(event_id="evt_x", event_type="charge.refunded"), now_utc=NOW)
    paused = await service.handle(
        PaymentEvent(
            event_id="evt_paused",
            event_type="customer.subscription.updated",
            subscription_id="sub_missing",
            subscription_status="paused",
        ),
        now_utc=NOW,
    )

    assert result.outcome is PaymentOutcome.IGNORED
    assert paused.outcome is PaymentOutcome.IGNORED
    assert await PaymentEventRepository(db_session).get_by_event_id("evt_x") is not None


@pytest.mark.asyncio
async def test_paid_sunday_session_is_booked(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    await container.create_sunday_service(db_session).generate_slots(weeks_ahead=2, today=date(2026, 3, 1))
    event = PaymentEvent(
        event_id="evt_sunday",
        event_type="checkout.session.completed",
        session_id="cs_sunday",
        amount_paid=5000,
        metadata={
            "type": "session_purchase",
            "owner_id": OWNER_ID,
            "registration_id": str(registration.id),
            "session_type": "sunday",
            "session_date": "2026-03-08",
            "time_slot": "7:30-8:30 AM",
        },
    )

    result = await container.create_payment_event_service(db_session).handle(event, now_utc=NOW)
    await db_session.commit()

    assert result.outcome is PaymentOutcome.SESSION_CONFIRMED
    booking = await BookingRepository(db_session).get_by_payment_session_id("cs_sunday")
    assert booking is not None
    assert booking.price_paid == 5000
    assert booking.credits_used == 0
    assert booking.sunday_slot_id is not None


@pytest.mark.asyncio
async def test_unfulfillable_paid_session_alerts_admins(
    db_session: AsyncSession,
    container: AppContainer,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()
    event = PaymentEvent(
        event_id="evt_nowhere",
        event_type="checkout.session.completed",
        session_id="cs_nowhere",
        amount_paid=5000,
        metadata={
            "type": "session_purchase",
            "owner_id": OWNER_ID,
            "registration_id": str(registration.id),
            "session_type": "sunday",
            "session_date": "2026-03-08",
            "time_slot": "7:30-8:30 AM",
        },
    )

    result = await container.create_payment_event_service(db_session).handle(event, now_utc=NOW)
    await db_session.commit()

    assert result.outcome is PaymentOutcome.NEEDS_ATTENTION
    assert result.details["error_code"] == "NOT_FOUND"
    admin_notes = await NotificationRepository(db_session).list_for_admins()
    assert len(admin_notes) == 1
    assert await PaymentEventRepository(db_session).get_by_event_id("evt_nowhere") is not None
