from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiftdesk.errors import ApiError, conflict, invalid, not_found
from shiftdesk.models import (
    AttendanceDay,
    AttendanceStatus,
    LeaveRequest,
    LeaveType,
    RequestStatus,
    WorkType,
)
from shiftdesk.services.collaborators import GameEventKind, ProofFile
from shiftdesk.services.context import ServiceContext
from shiftdesk.services.location import GeofenceResult, load_active_zones, resolve_geofence
from shiftdesk.services.timekeeping import as_utc, combine_utc, local_date, normalize_ts
from shiftdesk.services.work_config import WorkPolicy

logger = logging.getLogger("shiftdesk.attendance")

MANUAL_ENTRY_LOCATION = "Manual Entry"
STREAK_LOOKBACK = 20


@dataclass(frozen=True)
class CheckOutStatus:
    is_duration_met: bool
    missing_minutes: int
    hours_worked: float
    required_end_at: datetime


@dataclass
class CheckInOutcome:
    day: AttendanceDay
    game_status: str
    geofence: GeofenceResult | None = None


@dataclass
class TodayStatus:
    today: AttendanceDay | None
    open_session: AttendanceDay | None
    open_session_outdated: bool
    action_required: AttendanceDay | None
    policy: WorkPolicy


@dataclass
class HistoryPage:
    items: list[AttendanceDay]
    total: int
    page: int
    page_size: int
    superseded: bool = False


def calculate_check_out_status(check_in_at: datetime, now: datetime, min_hours: float) -> CheckOutStatus:
    check_in_utc = as_utc(check_in_at)
    now_utc = as_utc(now)
    required_end = check_in_utc + timedelta(minutes=min_hours * 60)
    is_met = now_utc >= required_end
    missing = 0 if is_met else int((required_end - now_utc).total_seconds() // 60)
    hours_worked = max(0.0, (now_utc - check_in_utc).total_seconds() / 3600)
    return CheckOutStatus(
        is_duration_met=is_met,
        missing_minutes=missing,
        hours_worked=round(hours_worked, 2),
        required_end_at=required_end,
    )


def is_late_check_in(ctx: ServiceContext, check_in_at: datetime, shift_date: date) -> bool:
    policy = ctx.policy
    deadline = combine_utc(shift_date, policy.start_time, ctx.tz) + timedelta(minutes=policy.late_buffer_minutes)
    return as_utc(check_in_at) > deadline


def find_open_session(db: Session, user_id: int) -> AttendanceDay | None:
    return db.scalar(
        select(AttendanceDay)
        .where(
            AttendanceDay.user_id == user_id,
            AttendanceDay.check_in_at.is_not(None),
            AttendanceDay.check_out_at.is_(None),
        )
        .order_by(AttendanceDay.shift_date.desc())
        .limit(1)
    )


def get_day_record(db: Session, user_id: int, shift_date: date) -> AttendanceDay | None:
    return db.scalar(
        select(AttendanceDay).where(
            AttendanceDay.user_id == user_id,
            AttendanceDay.shift_date == shift_date,
        )
    )


def is_outdated_session(ctx: ServiceContext, day: AttendanceDay) -> bool:
    check_in_at = normalize_ts(day.check_in_at)
    if check_in_at is None or day.check_out_at is not None:
        return False
    if day.shift_date == ctx.today():
        return False
    return ctx.now() - check_in_at > timedelta(hours=ctx.settings.stale_session_hours)


def _approved_wfh_placeholder(ctx: ServiceContext, day: AttendanceDay) -> bool:
    if day.status != AttendanceStatus.LEAVE or day.leave_request_id is None:
        return False
    request = ctx.db.get(LeaveRequest, day.leave_request_id)
    return request is not None and request.type == LeaveType.WFH


def _ensure_can_open_session(
    ctx: ServiceContext,
    user_id: int,
    shift_date: date,
    work_type: WorkType | None = None,
) -> AttendanceDay | None:
    """Raise unless a session may start; returns an approved WFH day to check in on, if any."""
    open_session = find_open_session(ctx.db, user_id)
    if open_session is not None:
        if is_outdated_session(ctx, open_session):
            raise conflict(
                "OUTDATED_SESSION",
                f"Session from {open_session.shift_date.isoformat()} was never closed. "
                "Request a forgot-checkout correction first.",
            )
        raise conflict("ALREADY_CHECKED_IN", "You are already checked in.")

    existing = get_day_record(ctx.db, user_id, shift_date)
    if existing is None:
        return None
    if work_type == WorkType.WFH and _approved_wfh_placeholder(ctx, existing):
        return existing
    if existing.status == AttendanceStatus.LEAVE:
        raise conflict("ALREADY_CHECKED_IN", "This day is recorded as leave.")
    raise conflict("ALREADY_CHECKED_IN", "Attendance for this day already exists.")


def _has_approved_request(db: Session, user_id: int, leave_type: LeaveType, day: date) -> bool:
    return (
        db.scalar(
            select(LeaveRequest.id).where(
                LeaveRequest.user_id == user_id,
                LeaveRequest.type == leave_type,
                LeaveRequest.status == RequestStatus.APPROVED,
                LeaveRequest.start_date <= day,
                LeaveRequest.end_date >= day,
            ).limit(1)
        )
        is not None
    )


def _commit_new_day(ctx: ServiceContext, day: AttendanceDay) -> None:
    ctx.db.add(day)
    try:
        ctx.db.commit()
    except IntegrityError as exc:
        ctx.db.rollback()
        raise conflict("ALREADY_CHECKED_IN", "Attendance for this day already exists.") from exc
    ctx.db.refresh(day)


def check_in(
    ctx: ServiceContext,
    *,
    user_id: int,
    work_type: WorkType,
    lat: float | None,
    lng: float | None,
    location_name: str | None = None,
    proof: ProofFile | None = None,
    is_correction: bool = False,
    note: str | None = None,
) -> CheckInOutcome:
    if work_type == WorkType.LEAVE:
        raise invalid("INVALID_WORK_TYPE", "Leave days are recorded through leave requests.")

    now = ctx.now()
    shift_date = local_date(now, ctx.tz)
    wfh_day = _ensure_can_open_session(ctx, user_id, shift_date, work_type)

    geofence: GeofenceResult | None = None
    if work_type == WorkType.OFFICE:
        if lat is None or lng is None:
            raise invalid("LOCATION_REQUIRED", "Office check-in requires coordinates.")
        geofence = resolve_geofence(lat, lng, load_active_zones(ctx.db))
        if not geofence.is_match:
            distance_hint = f" Nearest zone is {round(geofence.distance_m)} m away." if geofence.distance_m is not None else ""
            raise ApiError(
                status_code=403,
                code="OUT_OF_GEOFENCE",
                message=f"You are outside every office zone.{distance_hint}",
            )
        location_name = geofence.zone_name

    if proof is None:
        raise invalid("PROOF_REQUIRED", "A check-in photo is required.")
    proof_url = ctx.upload_proof(proof, f"attendance/{user_id}/{shift_date.isoformat()}")

    is_late = is_late_check_in(ctx, now, shift_date)
    fields = {
        "check_in_at": now,
        "work_type": work_type,
        "status": AttendanceStatus.WORKING,
        "is_late": is_late,
        "is_correction": is_correction,
        "wfh_approved": wfh_day is not None
        or (work_type == WorkType.WFH and _has_approved_request(ctx.db, user_id, LeaveType.WFH, shift_date)),
        "proof_url": proof_url,
        "check_in_lat": lat,
        "check_in_lng": lng,
        "check_in_location_name": location_name,
        "note": note,
    }
    if wfh_day is None:
        day = AttendanceDay(user_id=user_id, shift_date=shift_date, **fields)
    else:
        day = wfh_day
        for key, value in fields.items():
            setattr(day, key, value)
    try:
        _commit_new_day(ctx, day)
    except ApiError:
        ctx.discard_proof(proof_url)
        raise

    game_status = "APPEAL" if is_correction else ("LATE" if is_late else "ON_TIME")
    logger.info(
        "attendance_check_in",
        extra={"user_id": user_id, "day_id": day.id, "work_type": work_type.value, "game_status": game_status},
    )
    ctx.emit(
        user_id,
        GameEventKind.ATTENDANCE_CHECK_IN,
        {
            "status": game_status,
            "date": shift_date.isoformat(),
            "time": now.astimezone(ctx.tz).strftime("%H:%M"),
        },
    )
    return CheckInOutcome(day=day, game_status=game_status, geofence=geofence)


def manual_check_in(
    ctx: ServiceContext,
    *,
    user_id: int,
    check_in_time: time,
    reason: str,
    work_type: WorkType = WorkType.OFFICE,
    proof: ProofFile | None = None,
) -> AttendanceDay:
    if not reason.strip():
        raise invalid("REASON_REQUIRED", "Explain why the check-in is entered manually.")
    if work_type == WorkType.LEAVE:
        raise invalid("INVALID_WORK_TYPE", "Leave days are recorded through leave requests.")

    shift_date = ctx.today()
    check_in_at = combine_utc(shift_date, check_in_time, ctx.tz)
    if check_in_at > ctx.now():
        raise invalid("CHECKIN_IN_FUTURE", "Manual check-in time cannot be in the future.")
    _ensure_can_open_session(ctx, user_id, shift_date)

    proof_url = None
    if proof is not None:
        proof_url = ctx.upload_proof(proof, f"attendance/{user_id}/{shift_date.isoformat()}")

    day = AttendanceDay(
        user_id=user_id,
        shift_date=shift_date,
        check_in_at=check_in_at,
        work_type=work_type,
        status=AttendanceStatus.PENDING_VERIFY,
        is_late=is_late_check_in(ctx, check_in_at, shift_date),
        is_correction=True,
        proof_url=proof_url,
        check_in_location_name=MANUAL_ENTRY_LOCATION,
        note=reason.strip(),
    )
    _commit_new_day(ctx, day)
    logger.info("attendance_manual_check_in", extra={"user_id": user_id, "day_id": day.id})
    return day


def check_out(
    ctx: ServiceContext,
    *,
    user_id: int,
    lat: float | None = None,
    lng: float | None = None,
    location_name: str | None = None,
    reason: str | None = None,
) -> tuple[AttendanceDay, CheckOutStatus]:
    day = find_open_session(ctx.db, user_id)
    if day is None:
        raise conflict("CHECKIN_REQUIRED", "No open session to check out from.")
    if is_outdated_session(ctx, day):
        raise conflict(
            "OUTDATED_SESSION",
            f"Session from {day.shift_date.isoformat()} is outdated. Request a forgot-checkout correction.",
        )

    now = ctx.now()
    status = calculate_check_out_status(day.check_in_at, now, ctx.policy.min_hours)
    cleaned_reason = (reason or "").strip() or None
    if not status.is_duration_met and cleaned_reason is None:
        raise invalid(
            "EARLY_LEAVE_REASON_REQUIRED",
            f"You are leaving {status.missing_minutes} minutes early; a reason is required.",
        )

    if lat is not None and lng is not None:
        geofence = resolve_geofence(lat, lng, load_active_zones(ctx.db))
        if geofence.is_match:
            location_name = geofence.zone_name

    day.check_out_at = now
    day.check_out_lat = lat
    day.check_out_lng = lng
    day.check_out_location_name = location_name
    day.missing_minutes = status.missing_minutes
    if not status.is_duration_met:
        day.early_leave_reason = cleaned_reason
    if day.status != AttendanceStatus.PENDING_VERIFY:
        day.status = AttendanceStatus.COMPLETED if status.is_duration_met else AttendanceStatus.EARLY_LEAVE
    ctx.db.commit()
    ctx.db.refresh(day)

    logger.info(
        "attendance_check_out",
        extra={
            "user_id": user_id,
            "day_id": day.id,
            "attendance_status": day.status.value,
            "missing_minutes": status.missing_minutes,
        },
    )
    if status.is_duration_met:
        ctx.emit(
            user_id,
            GameEventKind.DUTY_COMPLETE,
            {"date": day.shift_date.isoformat(), "hours_worked": status.hours_worked},
        )
    else:
        ctx.emit(
            user_id,
            GameEventKind.ATTENDANCE_EARLY_LEAVE,
            {"date": day.shift_date.isoformat(), "missing_minutes": status.missing_minutes},
        )
    return day, status


def override_check_out(ctx: ServiceContext, *, day_id: int, check_out_at: datetime, note: str | None = None) -> AttendanceDay:
    day = ctx.db.get(AttendanceDay, day_id)
    if day is None:
        raise not_found("ATTENDANCE_NOT_FOUND", "Attendance record not found.")
    if day.check_in_at is None or day.check_out_at is not None:
        raise conflict("SESSION_NOT_OPEN", "Only an open session can be closed by override.")

    check_out_utc = as_utc(check_out_at)
    if check_out_utc < as_utc(day.check_in_at):
        raise invalid("CHECKOUT_BEFORE_CHECKIN", "Check-out cannot precede check-in.")

    status = calculate_check_out_status(day.check_in_at, check_out_utc, ctx.policy.min_hours)
    day.check_out_at = check_out_utc
    day.missing_minutes = status.missing_minutes
    if day.status != AttendanceStatus.PENDING_VERIFY:
        day.status = AttendanceStatus.COMPLETED if status.is_duration_met else AttendanceStatus.EARLY_LEAVE
    if note:
        day.note = note
    ctx.db.commit()
    ctx.db.refresh(day)
    logger.info("attendance_check_out_override", extra={"day_id": day.id, "attendance_status": day.status.value})
    return day


def verify_manual_entry(ctx: ServiceContext, *, day_id: int, accept: bool) -> AttendanceDay:
    day = ctx.db.get(AttendanceDay, day_id)
    if day is None:
        raise not_found("ATTENDANCE_NOT_FOUND", "Attendance record not found.")
    if day.status != AttendanceStatus.PENDING_VERIFY:
        raise conflict("NOT_PENDING_VERIFY", "Record is not awaiting verification.")

    if accept:
        if day.check_out_at is None:
            day.status = AttendanceStatus.WORKING
        else:
            met = day.missing_minutes == 0
            day.status = AttendanceStatus.COMPLETED if met else AttendanceStatus.EARLY_LEAVE
    else:
        # A rejected entry must not keep holding the open-session slot.
        if day.check_out_at is None:
            day.check_out_at = day.check_in_at
        day.status = AttendanceStatus.ACTION_REQUIRED
    ctx.db.commit()
    ctx.db.refresh(day)

    logger.info("attendance_manual_entry_verified", extra={"day_id": day.id, "accepted": accept})
    if accept:
        ctx.emit(
            day.user_id,
            GameEventKind.ATTENDANCE_CHECK_IN,
            {"status": "APPEAL", "date": day.shift_date.isoformat()},
        )
    else:
        ctx.notify(
            day.user_id,
            "Manual check-in rejected",
            f"Your manual entry for {day.shift_date.isoformat()} needs a correction request.",
            "attendance",
        )
    return day


def get_today_status(ctx: ServiceContext, *, user_id: int) -> TodayStatus:
    today = ctx.today()
    open_session = find_open_session(ctx.db, user_id)
    if open_session is not None and open_session.shift_date == today:
        open_session = None
    action_required = ctx.db.scalar(
        select(AttendanceDay)
        .where(
            AttendanceDay.user_id == user_id,
            AttendanceDay.status == AttendanceStatus.ACTION_REQUIRED,
        )
        .order_by(AttendanceDay.shift_date.desc())
        .limit(1)
    )
    return TodayStatus(
        today=get_day_record(ctx.db, user_id, today),
        open_session=open_session,
        open_session_outdated=open_session is not None and is_outdated_session(ctx, open_session),
        action_required=action_required,
        policy=ctx.policy,
    )


def _worked_hours(day: AttendanceDay) -> float:
    check_in_at = normalize_ts(day.check_in_at)
    check_out_at = normalize_ts(day.check_out_at)
    if check_in_at is None or check_out_at is None:
        return 0.0
    return max(0.0, (check_out_at - check_in_at).total_seconds() / 3600)


def get_attendance_stats(ctx: ServiceContext, *, user_id: int, year: int, month: int) -> dict[str, float | int]:
    start_date = date(year, month, 1)
    end_date = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    rows = list(
        ctx.db.scalars(
            select(AttendanceDay).where(
                AttendanceDay.user_id == user_id,
                AttendanceDay.shift_date >= start_date,
                AttendanceDay.shift_date < end_date,
            )
        ).all()
    )
    worked = [row for row in rows if row.status != AttendanceStatus.LEAVE]
    late_count = sum(1 for row in worked if row.is_late)

    recent = ctx.db.scalars(
        select(AttendanceDay)
        .where(AttendanceDay.user_id == user_id)
        .order_by(AttendanceDay.shift_date.desc())
        .limit(STREAK_LOOKBACK)
    ).all()
    streak = 0
    for row in recent:
        if row.status == AttendanceStatus.LEAVE:
            continue
        if row.is_late or row.status == AttendanceStatus.ACTION_REQUIRED:
            break
        streak += 1

    return {
        "days_present": len(worked),
        "leave_days": len(rows) - len(worked),
        "late_count": late_count,
        "on_time_count": len(worked) - late_count,
        "total_hours": round(sum(_worked_hours(row) for row in worked), 2),
        "on_time_streak": streak,
    }


def list_attendance_history(
    db: Session,
    *,
    user_id: int | None,
    page: int = 1,
    page_size: int = 20,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AttendanceStatus | None = None,
    work_type: WorkType | None = None,
    is_current: Callable[[], bool] | None = None,
) -> HistoryPage:
    """``is_current`` is polled after the query; a stale generation gets an empty superseded page."""
    if start_date is not None and end_date is not None and end_date < start_date:
        raise invalid("INVALID_DATE_RANGE", "end_date must be on or after start_date.")

    filters = []
    if user_id is not None:
        filters.append(AttendanceDay.user_id == user_id)
    if start_date is not None:
        filters.append(AttendanceDay.shift_date >= start_date)
    if end_date is not None:
        filters.append(AttendanceDay.shift_date <= end_date)
    if status is not None:
        filters.append(AttendanceDay.status == status)
    if work_type is not None:
        filters.append(AttendanceDay.work_type == work_type)

    page = max(1, page)
    total = db.scalar(select(func.count(AttendanceDay.id)).where(*filters)) or 0
    items = list(
        db.scalars(
            select(AttendanceDay)
            .where(*filters)
            .order_by(AttendanceDay.shift_date.desc(), AttendanceDay.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        ).all()
    )
    if is_current is not None and not is_current():
        return HistoryPage(items=[], total=0, page=page, page_size=page_size, superseded=True)
    return HistoryPage(items=items, total=total, page=page, page_size=page_size)


def cleanup_attendance(ctx: ServiceContext) -> int:
    cutoff = ctx.today() - timedelta(days=ctx.settings.attendance_retention_days)
    result = ctx.db.execute(delete(AttendanceDay).where(AttendanceDay.shift_date < cutoff))
    ctx.db.commit()
    deleted = int(result.rowcount or 0)
    logger.info("attendance_retention_cleanup", extra={"cutoff": cutoff.isoformat(), "deleted": deleted})
    return deleted
