from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shiftdesk.db import Base

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class WorkType(str, enum.Enum):
    OFFICE = "OFFICE"
    WFH = "WFH"
    ON_SITE = "ON_SITE"
    LEAVE = "LEAVE"


class AttendanceStatus(str, enum.Enum):
    WORKING = "WORKING"
    PENDING_VERIFY = "PENDING_VERIFY"
    COMPLETED = "COMPLETED"
    EARLY_LEAVE = "EARLY_LEAVE"
    ACTION_REQUIRED = "ACTION_REQUIRED"
    LEAVE = "LEAVE"


class LeaveType(str, enum.Enum):
    SICK = "SICK"
    VACATION = "VACATION"
    PERSONAL = "PERSONAL"
    EMERGENCY = "EMERGENCY"
    LATE_ENTRY = "LATE_ENTRY"
    OVERTIME = "OVERTIME"
    FORGOT_CHECKIN = "FORGOT_CHECKIN"
    FORGOT_CHECKOUT = "FORGOT_CHECKOUT"
    WFH = "WFH"


DAY_LEAVE_TYPES = frozenset(
    {LeaveType.SICK, LeaveType.VACATION, LeaveType.PERSONAL, LeaveType.EMERGENCY, LeaveType.WFH}
)
INCIDENT_LEAVE_TYPES = frozenset(
    {LeaveType.LATE_ENTRY, LeaveType.OVERTIME, LeaveType.FORGOT_CHECKIN, LeaveType.FORGOT_CHECKOUT}
)
TIMED_LEAVE_TYPES = frozenset({LeaveType.LATE_ENTRY, LeaveType.FORGOT_CHECKIN, LeaveType.FORGOT_CHECKOUT})


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class PenaltyStatus(str, enum.Enum):
    NONE = "NONE"
    AWAITING_TRIBUNAL = "AWAITING_TRIBUNAL"
    LATE_COMPLETED = "LATE_COMPLETED"
    ACCEPTED_FAULT = "ACCEPTED_FAULT"
    ABANDONED = "ABANDONED"
    EXCUSED = "EXCUSED"
    UNDER_REVIEW = "UNDER_REVIEW"


RESOLVED_PENALTY_STATUSES = frozenset(
    {
        PenaltyStatus.ABANDONED,
        PenaltyStatus.ACCEPTED_FAULT,
        PenaltyStatus.LATE_COMPLETED,
        PenaltyStatus.EXCUSED,
        PenaltyStatus.UNDER_REVIEW,
    }
)


class CalendarExceptionKind(str, enum.Enum):
    WORK_DAY = "WORK_DAY"
    HOLIDAY = "HOLIDAY"


class AuditActorType(str, enum.Enum):
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Member(Base):
    __tablename__ = "members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False, default="", server_default=text("''"))
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    attendance_days: Mapped[list[AttendanceDay]] = relationship(back_populates="member")
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="member",
        foreign_keys="LeaveRequest.user_id",
    )
    duties: Mapped[list[Duty]] = relationship(back_populates="assignee")


class LocationZone(Base):
    __tablename__ = "location_zones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lng: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float] = mapped_column(Float, nullable=False, default=100, server_default=text("100"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class WorkConfigOption(Base):
    __tablename__ = "work_config_options"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AnnualHoliday(Base):
    __tablename__ = "annual_holidays"
    __table_args__ = (UniqueConstraint("month", "day", name="uq_annual_holidays_month_day"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    day: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class CalendarException(Base):
    __tablename__ = "calendar_exceptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day_date: Mapped[date] = mapped_column(Date, nullable=False, unique=True)
    kind: Mapped[CalendarExceptionKind] = mapped_column(
        Enum(CalendarExceptionKind, name="calendar_exception_kind"),
        nullable=False,
    )
    note: Mapped[str | None] = mapped_column(String(500), nullable=True)


class AttendanceDay(Base):
    __tablename__ = "attendance_days"
    __table_args__ = (
        UniqueConstraint("user_id", "shift_date", name="uq_attendance_days_user_shift_date"),
        Index(
            "uq_attendance_days_open_session",
            "user_id",
            unique=True,
            postgresql_where=text("check_in_at IS NOT NULL AND check_out_at IS NULL"),
            sqlite_where=text("check_in_at IS NOT NULL AND check_out_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    shift_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    work_type: Mapped[WorkType] = mapped_column(Enum(WorkType, name="work_type"), nullable=False)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
    )
    is_late: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_correction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    wfh_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    proof_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_location_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    early_leave_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    missing_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    leave_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("leave_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    member: Mapped[Member] = relationship(back_populates="attendance_days")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        Index(
            "uq_leave_requests_active_user_type_start",
            "user_id",
            "type",
            "start_date",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED')"),
            sqlite_where=text("status IN ('PENDING', 'APPROVED')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    target_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    overtime_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    attachment_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    approver_id: Mapped[int | None] = mapped_column(ForeignKey("members.id", ondelete="SET NULL"), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    member: Mapped[Member] = relationship(back_populates="leave_requests", foreign_keys=[user_id])


class Duty(Base):
    __tablename__ = "duties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    assignee_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    duty_date: Mapped[date] = mapped_column("date", Date, nullable=False, index=True)
    is_done: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    proof_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_penalized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    penalty_status: Mapped[PenaltyStatus] = mapped_column(
        Enum(PenaltyStatus, name="penalty_status"),
        nullable=False,
        default=PenaltyStatus.NONE,
        server_default=text("'NONE'"),
    )
    appeal_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    appeal_proof_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    abandoned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cleared_by_system: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignee: Mapped[Member] = relationship(back_populates="duties")


class DutyConfig(Base):
    __tablename__ = "duty_configs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    required_people: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    task_titles: Mapped[list[str]] = mapped_column(
        JsonDocument,
        nullable=False,
        default=list,
        server_default=text("'[]'"),
    )


class DutySwap(Base):
    __tablename__ = "duty_swaps"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    requestor_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    own_duty_id: Mapped[int] = mapped_column(ForeignKey("duties.id", ondelete="CASCADE"), nullable=False)
    target_duty_id: Mapped[int] = mapped_column(ForeignKey("duties.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    own_duty: Mapped[Duty] = relationship(foreign_keys=[own_duty_id])
    target_duty: Mapped[Duty] = relationship(foreign_keys=[target_duty_id])


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int | None] = mapped_column(
        ForeignKey("members.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(String(2000), nullable=False)
    link_target: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )


class GameEvent(Base):
    __tablename__ = "game_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    member_id: Mapped[int] = mapped_column(ForeignKey("members.id", ondelete="CASCADE"), nullable=False, index=True)
    event_kind: Mapped[str] = mapped_column(String(64), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument,
        nullable=False,
        default=dict,
        server_default=text("'{}'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(100), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument,
        nullable=False,
        default=dict,
        server_default=text("'{}'"),
    )
