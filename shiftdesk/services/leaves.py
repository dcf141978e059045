from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiftdesk.errors import conflict, invalid, not_found
from shiftdesk.models import (
    DAY_LEAVE_TYPES,
    INCIDENT_LEAVE_TYPES,
    TIMED_LEAVE_TYPES,
    AttendanceDay,
    AttendanceStatus,
    LeaveRequest,
    LeaveType,
    RequestStatus,
    WorkType,
)
from shiftdesk.services.attendance import calculate_check_out_status, get_day_record, is_late_check_in
from shiftdesk.services.collaborators import GameEventKind, ProofFile, member_display_name
from shiftdesk.services.context import ServiceContext
from shiftdesk.services.quota import QuotaLine, is_over_quota, quota_snapshot, requested_units
from shiftdesk.services.timekeeping import combine_utc, normalize_ts, parse_hhmm

logger = logging.getLogger("shiftdesk.leaves")


@dataclass
class SubmissionOutcome:
    request: LeaveRequest
    quota: list[QuotaLine]
    requested_units: int
    over_quota: bool


def _find_active_duplicate(db: Session, *, user_id: int, leave_type: LeaveType, start_date: date) -> LeaveRequest | None:
    return db.scalar(
        select(LeaveRequest)
        .where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.type == leave_type,
            LeaveRequest.start_date == start_date,
            LeaveRequest.status.in_([RequestStatus.PENDING, RequestStatus.APPROVED]),
        )
        .limit(1)
    )


def _raise_duplicate(existing: LeaveRequest) -> None:
    if existing.status == RequestStatus.APPROVED:
        raise conflict("LEAVE_ALREADY_APPROVED", "A request for this date was already approved.")
    raise conflict("LEAVE_ALREADY_PENDING", "A request for this date is already pending.")


def submit_leave_request(
    ctx: ServiceContext,
    *,
    user_id: int,
    leave_type: LeaveType,
    start_date: date,
    end_date: date | None,
    reason: str,
    target_time: str | None = None,
    overtime_hours: float | None = None,
    attachment: ProofFile | None = None,
) -> SubmissionOutcome:
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise invalid("REASON_REQUIRED", "A reason is required.")

    if leave_type in INCIDENT_LEAVE_TYPES:
        end_date = start_date
    elif end_date is None:
        end_date = start_date
    if end_date < start_date:
        raise invalid("INVALID_DATE_RANGE", "end_date must be on or after start_date.")

    parsed_time = None
    if leave_type in TIMED_LEAVE_TYPES:
        if not target_time:
            raise invalid("TARGET_TIME_REQUIRED", f"{leave_type.value} requests need a target time.")
        parsed_time = parse_hhmm(target_time)
    if leave_type == LeaveType.OVERTIME and (overtime_hours is None or overtime_hours <= 0):
        raise invalid("OVERTIME_HOURS_REQUIRED", "Overtime requests need a positive number of hours.")

    existing = _find_active_duplicate(ctx.db, user_id=user_id, leave_type=leave_type, start_date=start_date)
    if existing is not None:
        _raise_duplicate(existing)

    attachment_url = None
    if attachment is not None:
        attachment_url = ctx.upload_proof(attachment, f"leave/{user_id}")

    request = LeaveRequest(
        user_id=user_id,
        type=leave_type,
        start_date=start_date,
        end_date=end_date,
        reason=cleaned_reason,
        target_time=parsed_time,
        overtime_hours=overtime_hours if leave_type == LeaveType.OVERTIME else None,
        attachment_url=attachment_url,
        status=RequestStatus.PENDING,
        created_at=ctx.now(),
    )
    ctx.db.add(request)
    try:
        ctx.db.commit()
    except IntegrityError as exc:
        ctx.db.rollback()
        existing = _find_active_duplicate(ctx.db, user_id=user_id, leave_type=leave_type, start_date=start_date)
        if existing is not None:
            _raise_duplicate(existing)
        raise conflict("LEAVE_ALREADY_PENDING", "A request for this date is already pending.") from exc
    ctx.db.refresh(request)

    units = requested_units(leave_type, start_date, end_date)
    snapshot = quota_snapshot(ctx.db, ctx.settings, user_id=user_id, period_year=start_date.year)
    over_quota = is_over_quota(snapshot, leave_type, units)
    logger.info(
        "leave_request_submitted",
        extra={
            "user_id": user_id,
            "leave_request_id": request.id,
            "leave_type": leave_type.value,
            "requested_units": units,
            "over_quota": over_quota,
        },
    )
    ctx.broadcast(
        "New leave request",
        f"{member_display_name(ctx.db, user_id)} requested {leave_type.value} from {start_date.isoformat()}"
        + (f" to {end_date.isoformat()}" if end_date != start_date else ""),
        "leave-requests",
    )
    return SubmissionOutcome(request=request, quota=snapshot, requested_units=units, over_quota=over_quota)


def _get_pending_request(ctx: ServiceContext, request_id: int) -> LeaveRequest:
    request = ctx.db.get(LeaveRequest, request_id)
    if request is None:
        raise not_found("LEAVE_NOT_FOUND", "Leave request not found.")
    if request.status != RequestStatus.PENDING:
        raise conflict("LEAVE_NOT_PENDING", f"Request is already {request.status.value}.")
    return request


def _apply_day_leave(ctx: ServiceContext, request: LeaveRequest) -> int:
    days = 0
    cursor = request.start_date
    while cursor <= request.end_date:
        day = get_day_record(ctx.db, request.user_id, cursor)
        if day is None:
            day = AttendanceDay(user_id=request.user_id, shift_date=cursor)
            ctx.db.add(day)
        day.work_type = WorkType.LEAVE
        day.status = AttendanceStatus.LEAVE
        day.check_in_at = None
        day.check_out_at = None
        day.is_late = False
        day.missing_minutes = 0
        day.early_leave_reason = None
        day.leave_request_id = request.id
        days += 1
        cursor += timedelta(days=1)
    return days


def _apply_forgot_check_in(ctx: ServiceContext, request: LeaveRequest) -> AttendanceDay:
    check_in_at = combine_utc(request.start_date, request.target_time, ctx.tz)
    day = get_day_record(ctx.db, request.user_id, request.start_date)
    if day is None:
        day = AttendanceDay(user_id=request.user_id, shift_date=request.start_date, work_type=WorkType.OFFICE)
        ctx.db.add(day)
    elif day.work_type == WorkType.LEAVE:
        day.work_type = WorkType.OFFICE

    check_out_at = normalize_ts(day.check_out_at)
    if check_out_at is not None and (day.status == AttendanceStatus.ACTION_REQUIRED or check_out_at <= check_in_at):
        check_out_at = None
    day.check_in_at = check_in_at
    day.check_out_at = check_out_at
    day.is_correction = True
    day.is_late = is_late_check_in(ctx, check_in_at, request.start_date)
    day.leave_request_id = request.id
    if check_out_at is None:
        day.status = AttendanceStatus.WORKING
        day.missing_minutes = 0
    else:
        status = calculate_check_out_status(check_in_at, check_out_at, ctx.policy.min_hours)
        day.status = AttendanceStatus.COMPLETED if status.is_duration_met else AttendanceStatus.EARLY_LEAVE
        day.missing_minutes = status.missing_minutes
    return day


def forgot_checkout_timestamp(ctx: ServiceContext, shift_date: date, target: time) -> datetime:
    """Times before the overnight cutoff belong to the morning after the shift date."""
    cutoff = parse_hhmm(ctx.settings.overnight_checkout_cutoff)
    checkout_date = shift_date + timedelta(days=1) if target < cutoff else shift_date
    return combine_utc(checkout_date, target, ctx.tz)


def _apply_forgot_check_out(ctx: ServiceContext, request: LeaveRequest) -> AttendanceDay:
    check_out_at = forgot_checkout_timestamp(ctx, request.start_date, request.target_time)
    day = get_day_record(ctx.db, request.user_id, request.start_date)
    if day is not None and day.status == AttendanceStatus.LEAVE:
        raise conflict("DAY_IS_LEAVE", "The requested day is recorded as leave.")
    if day is None:
        day = AttendanceDay(
            user_id=request.user_id,
            shift_date=request.start_date,
            work_type=WorkType.OFFICE,
            check_in_at=combine_utc(request.start_date, ctx.policy.start_time, ctx.tz),
        )
        ctx.db.add(day)

    check_in_at = normalize_ts(day.check_in_at)
    if check_in_at is None or check_out_at < check_in_at:
        raise invalid("CHECKOUT_BEFORE_CHECKIN", "Corrected check-out precedes the check-in.")

    status = calculate_check_out_status(check_in_at, check_out_at, ctx.policy.min_hours)
    day.check_out_at = check_out_at
    day.missing_minutes = status.missing_minutes
    day.is_correction = True
    day.leave_request_id = request.id
    if day.status != AttendanceStatus.PENDING_VERIFY:
        day.status = AttendanceStatus.COMPLETED if status.is_duration_met else AttendanceStatus.EARLY_LEAVE
    return day


def _apply_late_entry(ctx: ServiceContext, request: LeaveRequest) -> AttendanceDay | None:
    day = get_day_record(ctx.db, request.user_id, request.start_date)
    if day is None or day.status == AttendanceStatus.LEAVE:
        return None
    day.is_late = False
    day.is_correction = True
    day.leave_request_id = request.id
    return day


def approve_leave_request(ctx: ServiceContext, *, request_id: int, approver_id: int) -> LeaveRequest:
    request = _get_pending_request(ctx, request_id)

    event: tuple[str, dict] | None = None
    if request.type in DAY_LEAVE_TYPES:
        days = _apply_day_leave(ctx, request)
        event = (
            GameEventKind.ATTENDANCE_LEAVE,
            {
                "leave_type": request.type.value,
                "start_date": request.start_date.isoformat(),
                "end_date": request.end_date.isoformat(),
                "days": days,
            },
        )
    elif request.type == LeaveType.FORGOT_CHECKIN:
        _apply_forgot_check_in(ctx, request)
        event = (GameEventKind.ATTENDANCE_CHECK_IN, {"status": "APPEAL", "date": request.start_date.isoformat()})
    elif request.type == LeaveType.FORGOT_CHECKOUT:
        day = _apply_forgot_check_out(ctx, request)
        event = (
            GameEventKind.DUTY_COMPLETE,
            {"date": request.start_date.isoformat(), "missing_minutes": day.missing_minutes},
        )
    elif request.type == LeaveType.LATE_ENTRY:
        if _apply_late_entry(ctx, request) is not None:
            event = (
                GameEventKind.ATTENDANCE_CHECK_IN,
                {"status": "APPEAL", "date": request.start_date.isoformat()},
            )

    request.status = RequestStatus.APPROVED
    request.approver_id = approver_id
    request.decided_at = ctx.now()
    try:
        ctx.db.commit()
    except IntegrityError as exc:
        ctx.db.rollback()
        raise conflict(
            "ATTENDANCE_CONFLICT",
            "Approval would create a second open session for this member.",
        ) from exc
    ctx.db.refresh(request)

    logger.info(
        "leave_request_approved",
        extra={
            "leave_request_id": request.id,
            "user_id": request.user_id,
            "leave_type": request.type.value,
            "approver_id": approver_id,
        },
    )
    if event is not None:
        ctx.emit(request.user_id, event[0], event[1])
    ctx.notify(
        request.user_id,
        "Request approved",
        f"Your {request.type.value} request for {request.start_date.isoformat()} was approved.",
        "leave-requests",
    )
    return request


def reject_leave_request(ctx: ServiceContext, *, request_id: int, approver_id: int, reason: str | None) -> LeaveRequest:
    request = _get_pending_request(ctx, request_id)
    request.status = RequestStatus.REJECTED
    request.approver_id = approver_id
    request.rejection_reason = (reason or "").strip() or None
    request.decided_at = ctx.now()
    ctx.db.commit()
    ctx.db.refresh(request)

    logger.info(
        "leave_request_rejected",
        extra={"leave_request_id": request.id, "user_id": request.user_id, "approver_id": approver_id},
    )
    ctx.notify(
        request.user_id,
        "Request rejected",
        f"Your {request.type.value} request for {request.start_date.isoformat()} was rejected."
        + (f" Reason: {request.rejection_reason}" if request.rejection_reason else ""),
        "leave-requests",
    )
    return request


def list_leave_requests(
    db: Session,
    *,
    user_id: int | None = None,
    status: RequestStatus | None = None,
    leave_type: LeaveType | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    if user_id is not None:
        stmt = stmt.where(LeaveRequest.user_id == user_id)
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if leave_type is not None:
        stmt = stmt.where(LeaveRequest.type == leave_type)
    return list(db.scalars(stmt).all())
