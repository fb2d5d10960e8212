"""recurring group schedules

Revision ID: 20261018_0002
Revises: 20261018_0001
Create Date: 2026-10-18 00:00:00.000000
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "20261018_0002"
down_revision: str | None = "20261018_0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "recurring_schedules",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("owner_id", sa.String(length=128), nullable=False),
        sa.Column("registration_id", sa.Uuid(), nullable=False),
        sa.Column("session_type", sa.String(length=16), nullable=False, server_default="group"),
        sa.Column("day_of_week", sa.String(length=16), nullable=False),
        sa.Column("time_slot", sa.String(length=32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("paused_reason", sa.String(length=32), nullable=True),
        sa.Column("last_booked_date", sa.Date(), nullable=True),
        sa.Column("next_booking_date", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["registration_id"], ["registrations.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("registration_id", "day_of_week", "time_slot", name="uq_recurring_schedule"),
    )
    op.create_index("ix_recurring_schedules_owner_id", "recurring_schedules", ["owner_id"])
    op.create_index("ix_recurring_schedules_registration_id", "recurring_schedules", ["registration_id"])
    op.create_index("ix_recurring_active_next", "recurring_schedules", ["is_active", "next_booking_date"])

    op.add_column("session_bookings", sa.Column("recurring_schedule_id", sa.Uuid(), nullable=True))
    op.create_foreign_key(
        "fk_session_bookings_recurring_schedule",
        "session_bookings",
        "recurring_schedules",
        ["recurring_schedule_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index(
        "ix_session_bookings_recurring_schedule_id",
        "session_bookings",
        ["recurring_schedule_id"],
    )


def downgrade() -> None:
    op.drop_index("ix_session_bookings_recurring_schedule_id", table_name="session_bookings")
    op.drop_constraint("fk_session_bookings_recurring_schedule", "session_bookings", type_="foreignkey")
    op.drop_column("session_bookings", "recurring_schedule_id")
    op.drop_table("recurring_schedules")
