from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, timedelta
from uuid import uuid4

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.api.errors import register_exception_handlers
from app.api.routes import router
from app.core.container import AppContainer
from app.core.datetime_utils import utc_now
from app.domain.programs import GroupProgram
from app.repositories.outbox_repository import OutboxRepository
from tests.support import OWNER_ID, FakeRedis, RegistrationFactory, next_weekday

ADMIN = {"X-Admin-Token": "admin-token"}


@pytest.fixture
async def client(container: AppContainer) -> AsyncGenerator[AsyncClient, None]:
    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(router)
    app.state.container = container

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as http:
        yield http


async def _grant(client: AsyncClient, credits: int, owner_id: str = OWNER_ID) -> None:
    response = await client.post(
        "/admin/credits/adjust",
        json={"owner_id": owner_id, "adjustment": credits, "reason": "Starter credits", "admin_id": "coach"},
        headers=ADMIN,
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_endpoints(client: AsyncClient) -> None:
    live = await client.get("/health/live")
    ready = await client.get("/health/ready")

    assert live.json() == {"status": "ok"}
    assert ready.status_code == 200
    assert ready.json() == {"status": "ready"}


@pytest.mark.asyncio
async def test_book_and_cancel_flow(client: AsyncClient, make_registration: RegistrationFactory) -> None:
    registration = await make_registration()
    await _grant(client, 10)
    tuesday = next_weekday(1)

    booked = await client.post(
        "/bookings",
        json={
            "owner_id": OWNER_ID,
            "registration_id": str(registration.id),
            "session_type": "group",
            "session_date": tuesday.isoformat(),
            "time_slot": "4:30-5:30 PM",
        },
    )
    assert booked.status_code == 201
    body = booked.json()
    assert body["credits_remaining"] == 9

    credits = await client.get(f"/credits/{OWNER_ID}")
    assert credits.json()["total_credits"] == 9

    capacity = await client.get(
        "/capacity",
        params={"session_type": "group", "session_date": tuesday.isoformat(), "time_slot": "4:30-5:30 PM"},
    )
    assert capacity.json()["occupancy"] == 1
    assert capacity.json()["spots_remaining"] == 5

    cancelled = await client.post(f"/bookings/{body['booking_id']}/cancel", json={"owner_id": OWNER_ID})
    assert cancelled.status_code == 200
    assert cancelled.json()["credits_refunded"] == 1
    assert cancelled.json()["credits_remaining"] == 10

    listed = await client.get("/bookings", params={"owner_id": OWNER_ID, "status": "cancelled"})
    assert [item["booking_id"] for item in listed.json()["bookings"]] == [body["booking_id"]]


@pytest.mark.asyncio
async def test_business_errors_use_error_envelope(
    client: AsyncClient,
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration()

    response = await client.post(
        "/bookings",
        json={
            "owner_id": OWNER_ID,
            "registration_id": str(registration.id),
            "session_type": "group",
            "session_date": next_weekday(4).isoformat(),
            "time_slot": "4:30-5:30 PM",
        },
    )

    assert response.status_code == 402
    error = response.json()["error"]
    assert error["code"] == "INSUFFICIENT_CREDITS"
    assert error["details"] == {"available": 0, "required": 1}


@pytest.mark.asyncio
async def test_request_validation_errors(client: AsyncClient) -> None:
    response = await client.post(
        "/bookings",
        json={
            "owner_id": OWNER_ID,
            "registration_id": "not-a-uuid",
            "session_type": "group",
            "session_date": "2026-03-03",
            "time_slot": "4:30-5:30 PM",
        },
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"
    assert "body.registration_id" in response.json()["error"]["details"]["fields"]


@pytest.mark.asyncio
async def test_admin_routes_require_token(client: AsyncClient) -> None:
    response = await client.post(
        "/admin/credits/adjust",
        json={"owner_id": OWNER_ID, "adjustment": 5, "reason": "Starter credits", "admin_id": "coach"},
        headers={"X-Admin-Token": "wrong"},
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.asyncio
async def test_payment_webhook_is_idempotent(client: AsyncClient, fake_redis: FakeRedis) -> None:
    event = {
        "event_id": "evt_api_1",
        "event_type": "checkout.session.completed",
        "session_id": "cs_api_1",
        "amount_paid": 35000,
        "metadata": {"type": "credit_purchase", "owner_id": OWNER_ID, "package_type": "10_pack", "credits": "10"},
    }

    rejected = await client.post("/webhook/payments", json=event, headers={"X-Webhook-Secret": "nope"})
    first = await client.post("/webhook/payments", json=event, headers={"X-Webhook-Secret": "whsec"})
    replay = await client.post("/webhook/payments", json=event, headers={"X-Webhook-Secret": "whsec"})

    assert rejected.status_code == 401
    assert first.json() == {"status": "ok", "outcome": "credited"}
    assert replay.json() == {"status": "ok", "outcome": "duplicate"}
    assert await fake_redis.get("payment_event:evt_api_1") is not None

    # Cache miss still dedupes through the processed-event table.
    await fake_redis.delete("payment_event:evt_api_1")
    again = await client.post("/webhook/payments", json=event, headers={"X-Webhook-Secret": "whsec"})
    assert again.json()["outcome"] == "duplicate"

    credits = await client.get(f"/credits/{OWNER_ID}")
    assert credits.json()["total_credits"] == 10


@pytest.mark.asyncio
async def test_payment_webhook_rejects_malformed_metadata(client: AsyncClient) -> None:
    event = {
        "event_id": "evt_bad",
        "event_type": "checkout.session.completed",
        "metadata": {"type": "credit_purchase", "owner_id": OWNER_ID, "package_type": "mystery", "credits": "1"},
    }

    response = await client.post("/webhook/payments", json=event, headers={"X-Webhook-Secret": "whsec"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_sunday_booking_over_http(
    client: AsyncClient,
    container: AppContainer,
    session_factory: async_sessionmaker[AsyncSession],
    make_registration: RegistrationFactory,
) -> None:
    registration = await make_registration(category="M9")
    async with session_factory() as session:
        await container.create_sunday_service(session).generate_slots(weeks_ahead=2, today=date.today())
        await session.commit()

    upcoming = await client.get(
        "/sunday/upcoming",
        params={"registration_id": str(registration.id), "owner_id": OWNER_ID, "weeks": 3},
    )
    bookable = [slot for slot in upcoming.json()["slots"] if slot["can_book"]]
    assert bookable
    target = bookable[-1]

    booked = await client.post(
        f"/sunday/slots/{target['slot_id']}/book",
        json={"owner_id": OWNER_ID, "registration_id": str(registration.id)},
    )
    assert booked.status_code == 201
    assert booked.json()["spots_remaining"] == 11

    duplicate = await client.post(
        f"/sunday/slots/{target['slot_id']}/book",
        json={"owner_id": OWNER_ID, "registration_id": str(registration.id)},
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "DUPLICATE_BOOKING"

    roster = await client.get("/admin/sunday/roster", params={"practice_date": target["practice_date"]}, headers=ADMIN)
    counts = {slot["time_slot"]: slot["current_bookings"] for slot in roster.json()["slots"]}
    assert counts[target["time_slot"]] == 1

    cancelled = await client.post(
        f"/sunday/bookings/{booked.json()['booking_id']}/cancel",
        json={"owner_id": OWNER_ID},
    )
    assert cancelled.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_schedule_change_over_http(client: AsyncClient, make_registration: RegistrationFactory) -> None:
    registration = await make_registration(program=GroupProgram(frequency="1x", selected_days=["tuesday"]))
    tuesday = next_weekday(1)

    response = await client.post(
        f"/registrations/{registration.id}/schedule-changes",
        json={
            "owner_id": OWNER_ID,
            "change_type": "one_time",
            "day_swaps": [{"original_day": "tuesday", "original_date": tuesday.isoformat(), "new_day": "friday"}],
        },
    )
    assert response.status_code == 200
    assert response.json()["needs_review"] is False

    exceptions = await client.get(
        f"/registrations/{registration.id}/schedule-exceptions",
        params={"owner_id": OWNER_ID, "from_date": (tuesday - timedelta(days=1)).isoformat()},
    )
    assert [item["date"] for item in exceptions.json()["exceptions"]] == [tuesday.isoformat()]


@pytest.mark.asyncio
async def test_admin_can_requeue_dead_letters(
    client: AsyncClient,
    session_factory: async_sessionmaker[AsyncSession],
) -> None:
    async with session_factory() as session:
        outbox = OutboxRepository(session)
        message = await outbox.enqueue(payload={"type": "credits_low"}, available_at=utc_now())
        await outbox.mark_dead_letter(message, "webhook unavailable")
        await session.commit()

    listed = await client.get("/admin/outbox/dead-letters", headers=ADMIN)
    assert listed.json()["items"] == [
        {"outbox_id": str(message.id), "type": "credits_low", "attempts": 0, "last_error": "webhook unavailable"}
    ]

    requeued = await client.post(f"/admin/outbox/{message.id}/requeue", headers=ADMIN)
    assert requeued.status_code == 200
    assert (await client.get("/admin/outbox/dead-letters", headers=ADMIN)).json()["items"] == []

    missing = await client.post(f"/admin/outbox/{uuid4()}/requeue", headers=ADMIN)
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_recurring_schedule_over_http(client: AsyncClient, make_registration: RegistrationFactory) -> None:
    registration = await make_registration()

    created = await client.post(
        "/recurring-schedules",
        json={"owner_id": OWNER_ID, "registration_id": str(registration.id), "day_of_week": "Friday"},
    )
    assert created.status_code == 201
    schedule = created.json()
    assert schedule["day_of_week"] == "friday"
    assert schedule["time_slot"] == "4:30-5:30 PM"
    assert date.fromisoformat(schedule["next_booking_date"]).weekday() == 4

    forbidden = await client.post(
        f"/recurring-schedules/{schedule['schedule_id']}/pause",
        json={"owner_id": "someone-else"},
    )
    assert forbidden.status_code == 403
    assert forbidden.json()["error"]["code"] == "FORBIDDEN"

    paused = await client.post(f"/recurring-schedules/{schedule['schedule_id']}/pause", json={"owner_id": OWNER_ID})
    assert paused.json()["is_active"] is False
    assert paused.json()["paused_reason"] == "user_paused"

    resumed = await client.post(f"/recurring-schedules/{schedule['schedule_id']}/resume", json={"owner_id": OWNER_ID})
    assert resumed.json()["is_active"] is True

    listed = await client.get("/recurring-schedules", params={"owner_id": OWNER_ID})
    assert [item["schedule_id"] for item in listed.json()["schedules"]] == [schedule["schedule_id"]]

    deleted = await client.delete(f"/recurring-schedules/{schedule['schedule_id']}", params={"owner_id": OWNER_ID})
    assert deleted.json() == {"status": "deleted", "schedule_id": schedule["schedule_id"]}
    listed = await client.get("/recurring-schedules", params={"owner_id": OWNER_ID})
    assert listed.json()["schedules"] == []
