"""Initial shift attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

punch_event_type = postgresql.ENUM(
    "IN",
    "OUT",
    name="punch_event_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    punch_event_type.create(bind, checkfirst=True)

    op.create_table(
        "schedule_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("date", sa.Date(), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("shifts", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("valid_from", sa.Date(), nullable=True),
        sa.Column("valid_to", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_schedule_records_user_id"), "schedule_records", ["user_id"], unique=False)
    op.create_index(op.f("ix_schedule_records_date"), "schedule_records", ["date"], unique=False)

    op.create_table(
        "punch_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("type", punch_event_type, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("local_day", sa.Date(), nullable=False),
        sa.Column("client_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_suspicious", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("flags", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("shift_index", sa.Integer(), nullable=True),
        sa.Column("override_used", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_punch_events_user_id"), "punch_events", ["user_id"], unique=False)
    op.create_index(op.f("ix_punch_events_ts_utc"), "punch_events", ["ts_utc"], unique=False)
    op.create_index(op.f("ix_punch_events_local_day"), "punch_events", ["local_day"], unique=False)

    op.create_table(
        "override_grants",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("granted_by", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_override_grants_user_id"), "override_grants", ["user_id"], unique=False)

    op.create_table(
        "leave_actions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("leave_type", sa.String(length=64), nullable=False),
        sa.Column("from_date", sa.Date(), nullable=False),
        sa.Column("to_date", sa.Date(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_leave_actions_user_id"), "leave_actions", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_leave_actions_user_id"), table_name="leave_actions")
    op.drop_table("leave_actions")
    op.drop_index(op.f("ix_override_grants_user_id"), table_name="override_grants")
    op.drop_table("override_grants")
    op.drop_index(op.f("ix_punch_events_local_day"), table_name="punch_events")
    op.drop_index(op.f("ix_punch_events_ts_utc"), table_name="punch_events")
    op.drop_index(op.f("ix_punch_events_user_id"), table_name="punch_events")
    op.drop_table("punch_events")
    op.drop_index(op.f("ix_schedule_records_date"), table_name="schedule_records")
    op.drop_index(op.f("ix_schedule_records_user_id"), table_name="schedule_records")
    op.drop_table("schedule_records")

    bind = op.get_bind()
    punch_event_type.drop(bind, checkfirst=True)
