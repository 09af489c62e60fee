"""initial_schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Creates all tables for Callboard:
users, groups, group_members, availability_requests,
availability_responses, events, event_assignments, job_locks.
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users ---
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("timezone", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- groups ---
    op.create_table(
        "groups",
        sa.Column("group_id", sa.String(36), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("created_by", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- group_members ---
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.group_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.Enum("admin", "member", name="grouprole"), nullable=False),
        sa.Column("notification_preferences", sa.JSON, nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- availability_requests ---
    op.create_table(
        "availability_requests",
        sa.Column("request_id", sa.String(36), primary_key=True),
        sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.group_id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("date_range_start", sa.Date, nullable=False),
        sa.Column("date_range_end", sa.Date, nullable=False),
        sa.Column("requested_dates", sa.JSON, nullable=False),
        sa.Column("requested_start_time", sa.String(5), nullable=True),
        sa.Column("requested_end_time", sa.String(5), nullable=True),
        sa.Column("status", sa.Enum("open", "closed", name="requeststatus"), nullable=False),
        sa.Column("created_by_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )

    # --- availability_responses ---
    op.create_table(
        "availability_responses",
        sa.Column("response_id", sa.String(36), primary_key=True),
        sa.Column(
            "request_id", sa.String(36),
            sa.ForeignKey("availability_requests.request_id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False),
        sa.Column("responses", sa.JSON, nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("request_id", "user_id", name="uq_availability_responses_request_user"),
    )

    # --- events ---
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(36), primary_key=True),
        sa.Column("group_id", sa.String(36), sa.ForeignKey("groups.group_id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("event_type", sa.Enum("rehearsal", "show", "other", name="eventtype"), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(500), nullable=True),
        sa.Column("call_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by_id", sa.String(36), sa.ForeignKey("users.user_id"), nullable=False),
        sa.Column(
            "created_from_request_id", sa.String(36),
            sa.ForeignKey("availability_requests.request_id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    # The reminder job scans for unreminded events by start time
    op.create_index("ix_events_reminder_pending", "events", ["reminder_sent_at", "start_time"])

    # --- event_assignments ---
    op.create_table(
        "event_assignments",
        sa.Column("event_id", sa.String(36), sa.ForeignKey("events.event_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.String(36), sa.ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", sa.String(100), nullable=True),
        sa.Column(
            "status", sa.Enum("pending", "confirmed", "declined", name="assignmentstatus"), nullable=False,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- job_locks ---
    op.create_table(
        "job_locks",
        sa.Column("name", sa.String(100), primary_key=True),
        sa.Column("holder", sa.String(36), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("job_locks")
    op.drop_table("event_assignments")
    op.drop_index("ix_events_reminder_pending", table_name="events")
    op.drop_table("events")
    op.drop_table("availability_responses")
    op.drop_table("availability_requests")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
    for enum_name in ("assignmentstatus", "eventtype", "requeststatus", "grouprole"):
        sa.Enum(name=enum_name).drop(op.get_bind(), checkfirst=True)
