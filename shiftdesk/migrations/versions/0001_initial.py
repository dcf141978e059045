"""Initial shiftdesk schema

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

work_type = postgresql.ENUM("OFFICE", "WFH", "ON_SITE", "LEAVE", name="work_type", create_type=False)
attendance_status = postgresql.ENUM(
    "WORKING",
    "PENDING_VERIFY",
    "COMPLETED",
    "EARLY_LEAVE",
    "ACTION_REQUIRED",
    "LEAVE",
    name="attendance_status",
    create_type=False,
)
leave_type = postgresql.ENUM(
    "SICK",
    "VACATION",
    "PERSONAL",
    "EMERGENCY",
    "LATE_ENTRY",
    "OVERTIME",
    "FORGOT_CHECKIN",
    "FORGOT_CHECKOUT",
    "WFH",
    name="leave_type",
    create_type=False,
)
request_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="request_status", create_type=False)
penalty_status = postgresql.ENUM(
    "NONE",
    "AWAITING_TRIBUNAL",
    "LATE_COMPLETED",
    "ACCEPTED_FAULT",
    "ABANDONED",
    "EXCUSED",
    "UNDER_REVIEW",
    name="penalty_status",
    create_type=False,
)
calendar_exception_kind = postgresql.ENUM("WORK_DAY", "HOLIDAY", name="calendar_exception_kind", create_type=False)
audit_actor_type = postgresql.ENUM("MEMBER", "ADMIN", "SYSTEM", name="audit_actor_type", create_type=False)

ALL_ENUMS = (
    work_type,
    attendance_status,
    leave_type,
    request_status,
    penalty_status,
    calendar_exception_kind,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "members",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False, server_default=sa.text("''")),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
        sa.UniqueConstraint("username", name="uq_members_username"),
    )

    op.create_table(
        "location_zones",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lng", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Float(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("name", name="uq_location_zones_name"),
    )

    op.create_table(
        "work_config_options",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(length=64), nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("key", name="uq_work_config_options_key"),
    )

    op.create_table(
        "annual_holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("day", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("month", "day", name="uq_annual_holidays_month_day"),
    )

    op.create_table(
        "calendar_exceptions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("day_date", sa.Date(), nullable=False),
        sa.Column("kind", calendar_exception_kind, nullable=False),
        sa.Column("note", sa.String(length=500), nullable=True),
        sa.UniqueConstraint("day_date", name="uq_calendar_exceptions_day_date"),
    )

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=1000), nullable=False),
        sa.Column("target_time", sa.Time(), nullable=True),
        sa.Column("overtime_hours", sa.Float(), nullable=True),
        sa.Column("attachment_url", sa.String(length=1000), nullable=True),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("approver_id", sa.Integer(), nullable=True),
        sa.Column("rejection_reason", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["approver_id"], ["members.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_leave_requests_user_id", "leave_requests", ["user_id"])
    op.create_index(
        "uq_leave_requests_active_user_type_start",
        "leave_requests",
        ["user_id", "type", "start_date"],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'APPROVED')"),
    )

    op.create_table(
        "attendance_days",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("shift_date", sa.Date(), nullable=False),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("work_type", work_type, nullable=False),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("is_late", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_correction", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("wfh_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("proof_url", sa.String(length=1000), nullable=True),
        sa.Column("check_in_lat", sa.Float(), nullable=True),
        sa.Column("check_in_lng", sa.Float(), nullable=True),
        sa.Column("check_in_location_name", sa.String(length=255), nullable=True),
        sa.Column("check_out_lat", sa.Float(), nullable=True),
        sa.Column("check_out_lng", sa.Float(), nullable=True),
        sa.Column("check_out_location_name", sa.String(length=255), nullable=True),
        sa.Column("early_leave_reason", sa.String(length=1000), nullable=True),
        sa.Column("missing_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("leave_request_id", sa.Integer(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["user_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["leave_request_id"], ["leave_requests.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("user_id", "shift_date", name="uq_attendance_days_user_shift_date"),
    )
    op.create_index("ix_attendance_days_user_id", "attendance_days", ["user_id"])
    op.create_index("ix_attendance_days_shift_date", "attendance_days", ["shift_date"])
    op.create_index(
        "uq_attendance_days_open_session",
        "attendance_days",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("check_in_at IS NOT NULL AND check_out_at IS NULL"),
    )

    op.create_table(
        "duties",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("assignee_id", sa.Integer(), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("is_done", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("proof_image_url", sa.String(length=1000), nullable=True),
        sa.Column("is_penalized", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("penalty_status", penalty_status, nullable=False, server_default=sa.text("'NONE'")),
        sa.Column("appeal_reason", sa.String(length=1000), nullable=True),
        sa.Column("appeal_proof_url", sa.String(length=1000), nullable=True),
        sa.Column("abandoned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cleared_by_system", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["assignee_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_duties_assignee_id", "duties", ["assignee_id"])
    op.create_index("ix_duties_date", "duties", ["date"])

    op.create_table(
        "duty_configs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("required_people", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column(
            "task_titles",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.UniqueConstraint("day_of_week", name="uq_duty_configs_day_of_week"),
    )

    op.create_table(
        "duty_swaps",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("requestor_id", sa.Integer(), nullable=False),
        sa.Column("own_duty_id", sa.Integer(), nullable=False),
        sa.Column("target_duty_id", sa.Integer(), nullable=False),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'PENDING'")),
        _created_at(),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["requestor_id"], ["members.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["own_duty_id"], ["duties.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["target_duty_id"], ["duties.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_duty_swaps_requestor_id", "duty_swaps", ["requestor_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.String(length=2000), nullable=False),
        sa.Column("link_target", sa.String(length=255), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notifications_member_id", "notifications", ["member_id"])

    op.create_table(
        "game_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("member_id", sa.Integer(), nullable=False),
        sa.Column("event_kind", sa.String(length=64), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        sa.ForeignKeyConstraint(["member_id"], ["members.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_game_events_member_id", "game_events", ["member_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=100), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_game_events_member_id", table_name="game_events")
    op.drop_table("game_events")
    op.drop_index("ix_notifications_member_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_duty_swaps_requestor_id", table_name="duty_swaps")
    op.drop_table("duty_swaps")
    op.drop_table("duty_configs")
    op.drop_index("ix_duties_date", table_name="duties")
    op.drop_index("ix_duties_assignee_id", table_name="duties")
    op.drop_table("duties")
    op.drop_index("uq_attendance_days_open_session", table_name="attendance_days")
    op.drop_index("ix_attendance_days_shift_date", table_name="attendance_days")
    op.drop_index("ix_attendance_days_user_id", table_name="attendance_days")
    op.drop_table("attendance_days")
    op.drop_index("uq_leave_requests_active_user_type_start", table_name="leave_requests")
    op.drop_index("ix_leave_requests_user_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_table("calendar_exceptions")
    op.drop_table("annual_holidays")
    op.drop_table("work_config_options")
    op.drop_table("location_zones")
    op.drop_table("members")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
