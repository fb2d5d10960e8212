from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest
from pydantic import TypeAdapter, ValidationError

from app.domain.commands import (
    AdminAdjustCreditsCommand,
    AttendanceCommand,
    BookSessionCommand,
    CreditPurchaseMetadata,
    PurchaseMetadata,
    ScheduleChangeCommand,
    SessionPurchaseMetadata,
)
from app.domain.enums import BookingStatus, ChangeType, SessionType
from app.domain.programs import GroupProgram, PrivateProgram, SemiPrivateProgram, parse_program, recurring_pattern


def test_book_command_strips_time_slot() -> None:
    cmd = BookSessionCommand(
        owner_id="p1",
        registration_id=uuid4(),
        session_type="group",
        session_date=date(2026, 3, 3),
        time_slot=" 4:30-5:30 PM ",
    )

    assert cmd.time_slot == "4:30-5:30 PM"
    assert cmd.session_type is SessionType.GROUP


def test_book_command_rejects_bad_time_slot() -> None:
    with pytest.raises(ValidationError):
        BookSessionCommand(
            owner_id="p1",
            registration_id=uuid4(),
            session_type="group",
            session_date=date(2026, 3, 3),
            time_slot="whenever",
        )


def test_attendance_only_accepts_closing_statuses() -> None:
    assert AttendanceCommand(status="no_show").status is BookingStatus.NO_SHOW
    with pytest.raises(ValidationError):
        AttendanceCommand(status="cancelled")


def test_admin_adjust_requires_reason_and_non_zero() -> None:
    with pytest.raises(ValidationError):
        AdminAdjustCreditsCommand(owner_id="p1", adjustment=0, reason="goodwill", admin_id="a1")
    with pytest.raises(ValidationError):
        AdminAdjustCreditsCommand(owner_id="p1", adjustment=2, reason="ok", admin_id="a1")


def test_one_time_change_needs_swaps_or_date() -> None:
    with pytest.raises(ValidationError):
        ScheduleChangeCommand(owner_id="p1", change_type=ChangeType.ONE_TIME, new_days=["friday"])


def test_day_swap_date_must_match_day() -> None:
    with pytest.raises(ValidationError):
        ScheduleChangeCommand(
            owner_id="p1",
            change_type=ChangeType.ONE_TIME,
            day_swaps=[{"original_day": "tuesday", "original_date": "2026-03-04", "new_day": "friday"}],
        )


def test_purchase_metadata_discriminates_on_type() -> None:
    adapter: TypeAdapter[PurchaseMetadata] = TypeAdapter(PurchaseMetadata)

    credit = adapter.validate_python(
        {"type": "credit_purchase", "owner_id": "p1", "package_type": "10_pack", "credits": "10"}
    )
    session = adapter.validate_python(
        {
            "type": "session_purchase",
            "owner_id": "p1",
            "registration_id": str(uuid4()),
            "session_type": "sunday",
            "session_date": "2026-03-08",
            "time_slot": "7:30-8:30 AM",
        }
    )

    assert isinstance(credit, CreditPurchaseMetadata)
    assert credit.credits == 10
    assert isinstance(session, SessionPurchaseMetadata)
    with pytest.raises(ValidationError):
        adapter.validate_python({**session.model_dump(mode="json"), "session_type": "group"})


def test_program_details_round_trip_through_discriminator() -> None:
    group = parse_program({"program_type": "group", "frequency": "1x", "selected_days": ["Tuesday"]})
    semi = parse_program({"program_type": "semi_private", "selected_days": ["monday"], "time_slot": "9-10"})

    assert isinstance(group, GroupProgram)
    assert recurring_pattern(group, "M15") == (["tuesday"], "7:00-8:00 PM")
    assert isinstance(semi, SemiPrivateProgram)
    assert recurring_pattern(semi, "M15") == (["monday"], "9-10")


def test_program_validation() -> None:
    with pytest.raises(ValidationError):
        GroupProgram(frequency="1x", selected_days=["tuesday", "friday"])
    with pytest.raises(ValidationError):
        GroupProgram(frequency="2x", selected_days=["monday"])
    with pytest.raises(ValidationError):
        PrivateProgram(selected_days=["monday"], time_slot="15-16")
