from __future__ import annotations

from datetime import date, datetime, time
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import Uuid

from app.db.base import Base
from app.domain.programs import GroupProgram, PrivateProgram, SemiPrivateProgram, parse_program


class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    player_name: Mapped[str] = mapped_column(String(255))
    player_category: Mapped[str] = mapped_column(String(32))
    program_type: Mapped[str] = mapped_column(String(16), index=True)
    payment_status: Mapped[str] = mapped_column(String(16), default="pending")
    program: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    payment_customer_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def program_details(self) -> GroupProgram | PrivateProgram | SemiPrivateProgram:
        return parse_program({"program_type": self.program_type, **(self.program or {})})


class ParentCreditAccount(Base):
    __tablename__ = "parent_credit_accounts"
    __table_args__ = (CheckConstraint("total_credits >= 0", name="ck_account_total_non_negative"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(128), unique=True, index=True)
    total_credits: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CreditPurchase(Base):
    __tablename__ = "credit_purchases"
    __table_args__ = (
        CheckConstraint("credits_purchased > 0", name="ck_purchase_positive"),
        CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= credits_purchased",
            name="ck_purchase_remaining_bounds",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("parent_credit_accounts.owner_id", ondelete="RESTRICT"),
        index=True,
    )
    package_type: Mapped[str] = mapped_column(String(32))
    credits_purchased: Mapped[int] = mapped_column(Integer)
    credits_remaining: Mapped[int] = mapped_column(Integer)
    price_paid: Mapped[int] = mapped_column(Integer, default=0)
    currency: Mapped[str] = mapped_column(String(8), default="cad")
    payment_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    purchased_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    status: Mapped[str] = mapped_column(String(16), default="active", index=True)


class CreditAdjustment(Base):
    __tablename__ = "credit_adjustments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(
        ForeignKey("parent_credit_accounts.owner_id", ondelete="RESTRICT"),
        index=True,
    )
    adjustment: Mapped[int] = mapped_column(Integer)
    balance_before: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    reason: Mapped[str] = mapped_column(Text)
    admin_id: Mapped[str] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class SundayPracticeSlot(Base):
    __tablename__ = "sunday_practice_slots"
    __table_args__ = (
        UniqueConstraint("practice_date", "start_time", name="uq_sunday_slot_date_start"),
        CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= max_capacity",
            name="ck_sunday_slot_capacity",
        ),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    practice_date: Mapped[date] = mapped_column(Date, index=True)
    start_time: Mapped[time] = mapped_column(Time)
    end_time: Mapped[time] = mapped_column(Time)
    time_slot: Mapped[str] = mapped_column(String(32))
    min_category: Mapped[str] = mapped_column(String(16))
    max_category: Mapped[str] = mapped_column(String(16))
    max_capacity: Mapped[int] = mapped_column(Integer)
    current_bookings: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    @property
    def available_spots(self) -> int:
        return max(0, self.max_capacity - self.current_bookings)


class SessionBooking(Base):
    __tablename__ = "session_bookings"
    __table_args__ = (CheckConstraint("credits_used >= 0", name="ck_booking_credits_non_negative"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    registration_id: Mapped[UUID] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"),
        index=True,
    )
    session_type: Mapped[str] = mapped_column(String(16))
    session_date: Mapped[date] = mapped_column(Date)
    time_slot: Mapped[str] = mapped_column(String(32))
    credits_used: Mapped[int] = mapped_column(Integer, default=0)
    credit_purchase_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("credit_purchases.id", ondelete="SET NULL"),
        nullable=True,
    )
    sunday_slot_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("sunday_practice_slots.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    price_paid: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payment_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
    recurring_schedule_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("recurring_schedules.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(16), default="booked", index=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class RecurringSchedule(Base):
    """Weekly auto-booking of a group session, paid from credits."""

    __tablename__ = "recurring_schedules"
    __table_args__ = (
        UniqueConstraint("registration_id", "day_of_week", "time_slot", name="uq_recurring_schedule"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[str] = mapped_column(String(128), index=True)
    registration_id: Mapped[UUID] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"),
        index=True,
    )
    session_type: Mapped[str] = mapped_column(String(16), default="group")
    day_of_week: Mapped[str] = mapped_column(String(16))
    time_slot: Mapped[str] = mapped_column(String(32))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    paused_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    last_booked_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    next_booking_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CapacitySlot(Base):
    __tablename__ = "capacity_slots"
    __table_args__ = (
        UniqueConstraint("session_type", "session_date", "time_slot", name="uq_capacity_key"),
        CheckConstraint("occupancy >= 0", name="ck_capacity_occupancy_non_negative"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_type: Mapped[str] = mapped_column(String(16))
    session_date: Mapped[date] = mapped_column(Date)
    time_slot: Mapped[str] = mapped_column(String(32))
    occupancy: Mapped[int] = mapped_column(Integer, default=0)
    capacity: Mapped[int] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class ScheduleChange(Base):
    __tablename__ = "schedule_changes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    registration_id: Mapped[UUID] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"),
        index=True,
    )
    change_type: Mapped[str] = mapped_column(String(16))
    program_type: Mapped[str] = mapped_column(String(16))
    original_days: Mapped[list[str]] = mapped_column(JSON, default=list)
    original_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    new_days: Mapped[list[str]] = mapped_column(JSON, default=list)
    new_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    specific_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    effective_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="applied")
    needs_review: Mapped[bool] = mapped_column(Boolean, default=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class ScheduleException(Base):
    __tablename__ = "schedule_exceptions"
    __table_args__ = (
        UniqueConstraint("registration_id", "exception_date", name="uq_schedule_exception_date"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    registration_id: Mapped[UUID] = mapped_column(
        ForeignKey("registrations.id", ondelete="CASCADE"),
        index=True,
    )
    schedule_change_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("schedule_changes.id", ondelete="SET NULL"),
        nullable=True,
    )
    exception_date: Mapped[date] = mapped_column(Date)
    exception_type: Mapped[str] = mapped_column(String(16), default="swap")
    original_day: Mapped[str | None] = mapped_column(String(16), nullable=True)
    replacement_day: Mapped[str] = mapped_column(String(16))
    replacement_time: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(16), default="applied")
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(128))
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ProcessedPaymentEvent(Base):
    __tablename__ = "processed_payment_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64))
    outcome: Mapped[str] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    audience: Mapped[str] = mapped_column(String(16))
    owner_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    notification_type: Mapped[str] = mapped_column(String(32))
    title: Mapped[str] = mapped_column(String(255))
    message: Mapped[str] = mapped_column(Text)
    data: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    notification_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("notifications.id", ondelete="SET NULL"),
        nullable=True,
    )
    channel: Mapped[str] = mapped_column(String(32), default="webhook")
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), default="pending", index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    available_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    dedupe_key: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


Index(
    "uq_active_session_booking",
    SessionBooking.registration_id,
    SessionBooking.session_date,
    SessionBooking.time_slot,
    SessionBooking.session_type,
    unique=True,
    postgresql_where=text("status <> 'cancelled'"),
    sqlite_where=text("status <> 'cancelled'"),
)
Index("ix_bookings_key_status", SessionBooking.session_type, SessionBooking.session_date, SessionBooking.time_slot)
Index("ix_bookings_owner_date", SessionBooking.owner_id, SessionBooking.session_date)
Index("ix_purchases_owner_spendable", CreditPurchase.owner_id, CreditPurchase.status, CreditPurchase.expires_at)
Index("ix_registrations_program_status", Registration.program_type, Registration.payment_status)
Index("ix_recurring_active_next", RecurringSchedule.is_active, RecurringSchedule.next_booking_date)
Index("ix_outbox_status_available", OutboxMessage.status, OutboxMessage.available_at)
Index("ix_notifications_audience_created", Notification.audience, Notification.created_at)
