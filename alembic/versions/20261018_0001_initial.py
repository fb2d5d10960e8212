"""initial booking schema

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "registrations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("player_name", sa.String(length=255), nullable=False),
        sa.Column("player_category", sa.String(length=32), nullable=False),
        sa.Column("program_type", sa.String(length=16), nullable=False),
        sa.Column("payment_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("program", sa.JSON(), nullable=False),
        sa.Column("payment_customer_id", sa.String(length=128), nullable=True),
        sa.Column("subscription_id", sa.String(length=128), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_registrations_owner_id", "registrations", ["owner_id"])
    op.create_index("ix_registrations_program_type", "registrations", ["program_type"])
    op.create_index("ix_registrations_subscription_id", "registrations", ["subscription_id"])
    op.create_index("ix_registrations_program_status", "registrations", ["program_type", "payment_status"])

    op.create_table(
        "parent_credit_accounts",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("total_credits", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("total_credits >= 0", name="ck_account_total_non_negative"),
    )
    op.create_index("ix_parent_credit_accounts_owner_id", "parent_credit_accounts", ["owner_id"], unique=True)

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("package_type", sa.String(length=32), nullable=False),
        sa.Column("credits_purchased", sa.Integer(), nullable=False),
        sa.Column("credits_remaining", sa.Integer(), nullable=False),
        sa.Column("price_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="cad"),
        sa.Column("payment_session_id", sa.String(length=255), nullable=True),
        sa.Column("payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.ForeignKeyConstraint(["owner_id"], ["parent_credit_accounts.owner_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_session_id"),
        sa.CheckConstraint("credits_purchased > 0", name="ck_purchase_positive"),
        sa.CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= credits_purchased",
            name="ck_purchase_remaining_bounds",
        ),
    )
    op.create_index("ix_credit_purchases_owner_id", "credit_purchases", ["owner_id"])
    op.create_index("ix_credit_purchases_expires_at", "credit_purchases", ["expires_at"])
    op.create_index("ix_credit_purchases_status", "credit_purchases", ["status"])
    op.create_index("ix_purchases_owner_spendable", "credit_purchases", ["owner_id", "status", "expires_at"])

    op.create_table(
        "credit_adjustments",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("adjustment", sa.Integer(), nullable=False),
        sa.Column("balance_before", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("admin_id", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["owner_id"], ["parent_credit_accounts.owner_id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_credit_adjustments_owner_id", "credit_adjustments", ["owner_id"])

    op.create_table(
        "sunday_practice_slots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("practice_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("time_slot", sa.String(length=32), nullable=False),
        sa.Column("min_category", sa.String(length=16), nullable=False),
        sa.Column("max_category", sa.String(length=16), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("current_bookings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("practice_date", "start_time", name="uq_sunday_slot_date_start"),
        sa.CheckConstraint(
            "current_bookings >= 0 AND current_bookings <= max_capacity",
            name="ck_sunday_slot_capacity",
        ),
    )
    op.create_index("ix_sunday_practice_slots_practice_date", "sunday_practice_slots", ["practice_date"])

    op.create_table(
        "session_bookings",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("registration_id", sa.Uuid(), nullable=False),
        sa.Column("session_type", sa.String(length=16), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("time_slot", sa.String(length=32), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("credit_purchase_id", sa.Uuid(), nullable=True),
        sa.Column("sunday_slot_id", sa.Uuid(), nullable=True),
        sa.Column("price_paid", sa.Integer(), nullable=True),
        sa.Column("payment_session_id", sa.String(length=255), nullable=True),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="booked"),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["registration_id"], ["registrations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["credit_purchase_id"], ["credit_purchases.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["sunday_slot_id"], ["sunday_practice_slots.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("credits_used >= 0", name="ck_booking_credits_non_negative"),
    )
    op.create_index("ix_session_bookings_owner_id", "session_bookings", ["owner_id"])
    op.create_index("ix_session_bookings_registration_id", "session_bookings", ["registration_id"])
    op.create_index("ix_session_bookings_sunday_slot_id", "session_bookings", ["sunday_slot_id"])
    op.create_index("ix_session_bookings_status", "session_bookings", ["status"])
    op.create_index("ix_bookings_key_status", "session_bookings", ["session_type", "session_date", "time_slot"])
    op.create_index("ix_bookings_owner_date", "session_bookings", ["owner_id", "session_date"])
    op.create_index(
        "uq_active_session_booking",
        "session_bookings",
        ["registration_id", "session_date", "time_slot", "session_type"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        "capacity_slots",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("session_type", sa.String(length=16), nullable=False),
        sa.Column("session_date", sa.Date(), nullable=False),
        sa.Column("time_slot", sa.String(length=32), nullable=False),
        sa.Column("occupancy", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("session_type", "session_date", "time_slot", name="uq_capacity_key"),
        sa.CheckConstraint("occupancy >= 0", name="ck_capacity_occupancy_non_negative"),
    )

    op.create_table(
        "schedule_changes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("registration_id", sa.Uuid(), nullable=False),
        sa.Column("change_type", sa.String(length=16), nullable=False),
        sa.Column("program_type", sa.String(length=16), nullable=False),
        sa.Column("original_days", sa.JSON(), nullable=False),
        sa.Column("original_time", sa.String(length=32), nullable=True),
        sa.Column("new_days", sa.JSON(), nullable=False),
        sa.Column("new_time", sa.String(length=32), nullable=True),
        sa.Column("specific_date", sa.Date(), nullable=True),
        sa.Column("effective_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="applied"),
        sa.Column("needs_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["registration_id"], ["registrations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedule_changes_registration_id", "schedule_changes", ["registration_id"])

    op.create_table(
        "schedule_exceptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("registration_id", sa.Uuid(), nullable=False),
        sa.Column("schedule_change_id", sa.Uuid(), nullable=True),
        sa.Column("exception_date", sa.Date(), nullable=False),
        sa.Column("exception_type", sa.String(length=16), nullable=False, server_default="swap"),
        sa.Column("original_day", sa.String(length=16), nullable=True),
        sa.Column("replacement_day", sa.String(length=16), nullable=False),
        sa.Column("replacement_time", sa.String(length=32), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="applied"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=128), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["registration_id"], ["registrations.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["schedule_change_id"], ["schedule_changes.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_id", "exception_date", name="uq_schedule_exception_date"),
    )
    op.create_index("ix_schedule_exceptions_registration_id", "schedule_exceptions", ["registration_id"])

    op.create_table(
        "processed_payment_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("outcome", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_processed_payment_events_event_id", "processed_payment_events", ["event_id"], unique=True)

    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("audience", sa.String(length=16), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=True),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_owner_id", "notifications", ["owner_id"])
    op.create_index("ix_notifications_audience_created", "notifications", ["audience", "created_at"])

    op.create_table(
        "outbox_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("notification_id", sa.Uuid(), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False, server_default="webhook"),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("dedupe_key", sa.String(length=128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["notification_id"], ["notifications.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index("ix_outbox_messages_status", "outbox_messages", ["status"])
    op.create_index("ix_outbox_messages_available_at", "outbox_messages", ["available_at"])
    op.create_index("ix_outbox_status_available", "outbox_messages", ["status", "available_at"])


def downgrade() -> None:
    op.drop_table("outbox_messages")
    op.drop_table("notifications")
    op.drop_table("processed_payment_events")
    op.drop_table("schedule_exceptions")
    op.drop_table("schedule_changes")
    op.drop_table("capacity_slots")
    op.drop_index("uq_active_session_booking", table_name="session_bookings")
    op.drop_table("session_bookings")
    op.drop_table("sunday_practice_slots")
    op.drop_table("credit_adjustments")
    op.drop_table("credit_purchases")
    op.drop_table("parent_credit_accounts")
    op.drop_table("registrations")
