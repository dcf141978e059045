from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status

from shiftdesk.audit import audit_request
from shiftdesk.errors import ApiError
from shiftdesk.models import AttendanceStatus, WorkType
from shiftdesk.schemas import (
    AttendanceDayActionResponse,
    AttendanceDayRead,
    AttendanceHistoryResponse,
    AttendanceStatsResponse,
    CheckInRequest,
    CheckInResponse,
    CheckOutRequest,
    CheckOutResponse,
    ManualCheckInRequest,
    TodayStatusResponse,
    WorkPolicyRead,
)
from shiftdesk.security import SessionContext, require_member
from shiftdesk.services.attendance import (
    check_in,
    check_out,
    get_attendance_stats,
    get_today_status,
    list_attendance_history,
    manual_check_in,
)
from shiftdesk.services.change_feed import QueryGenerations, publish_change
from shiftdesk.services.context import ServiceContext, get_service_context
from shiftdesk.services.timekeeping import parse_hhmm

router = APIRouter(tags=["attendance"])


def _day_or_none(day) -> AttendanceDayRead | None:
    if day is None:
        return None
    return AttendanceDayRead.model_validate(day)


@router.post("/api/attendance/check-in", response_model=CheckInResponse)
def attendance_check_in(
    payload: CheckInRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> CheckInResponse:
    outcome = check_in(
        ctx,
        user_id=session.member_id,
        work_type=payload.work_type,
        lat=payload.lat,
        lng=payload.lng,
        location_name=payload.location_name,
        proof=payload.proof.to_proof_file() if payload.proof is not None else None,
        is_correction=payload.is_correction,
        note=payload.note,
    )
    day = outcome.day
    audit_request(
        ctx.db,
        request,
        action="ATTENDANCE_CHECK_IN",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"work_type": day.work_type.value, "game_status": outcome.game_status},
    )
    publish_change(request, "attendance", "check_in", entity_id=day.id, user_id=session.member_id)
    return CheckInResponse(
        day=AttendanceDayRead.model_validate(day),
        game_status=outcome.game_status,
        zone_name=outcome.geofence.zone_name if outcome.geofence else None,
        distance_m=outcome.geofence.distance_m if outcome.geofence else None,
        warnings=ctx.warnings,
    )


@router.post(
    "/api/attendance/manual-check-in",
    response_model=AttendanceDayActionResponse,
    status_code=status.HTTP_201_CREATED,
)
def attendance_manual_check_in(
    payload: ManualCheckInRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> AttendanceDayActionResponse:
    day = manual_check_in(
        ctx,
        user_id=session.member_id,
        check_in_time=parse_hhmm(payload.check_in_time),
        reason=payload.reason,
        work_type=payload.work_type,
        proof=payload.proof.to_proof_file() if payload.proof is not None else None,
    )
    audit_request(ctx.db, request, action="ATTENDANCE_MANUAL_CHECK_IN", entity_type="attendance_day", entity_id=day.id)
    publish_change(request, "attendance", "manual_check_in", entity_id=day.id, user_id=session.member_id)
    return AttendanceDayActionResponse(day=AttendanceDayRead.model_validate(day), warnings=ctx.warnings)


@router.post("/api/attendance/check-out", response_model=CheckOutResponse)
def attendance_check_out(
    payload: CheckOutRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> CheckOutResponse:
    day, checkout_status = check_out(
        ctx,
        user_id=session.member_id,
        lat=payload.lat,
        lng=payload.lng,
        location_name=payload.location_name,
        reason=payload.reason,
    )
    audit_request(
        ctx.db,
        request,
        action="ATTENDANCE_CHECK_OUT",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"status": day.status.value, "missing_minutes": checkout_status.missing_minutes},
    )
    publish_change(request, "attendance", "check_out", entity_id=day.id, user_id=session.member_id)
    return CheckOutResponse(
        day=AttendanceDayRead.model_validate(day),
        is_duration_met=checkout_status.is_duration_met,
        missing_minutes=checkout_status.missing_minutes,
        hours_worked=checkout_status.hours_worked,
        required_end_at=checkout_status.required_end_at,
        warnings=ctx.warnings,
    )


@router.get("/api/attendance/today", response_model=TodayStatusResponse)
def attendance_today(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> TodayStatusResponse:
    today = get_today_status(ctx, user_id=session.member_id)
    return TodayStatusResponse(
        today=_day_or_none(today.today),
        open_session=_day_or_none(today.open_session),
        open_session_outdated=today.open_session_outdated,
        action_required=_day_or_none(today.action_required),
        policy=WorkPolicyRead(
            start_time=today.policy.start_time,
            late_buffer_minutes=today.policy.late_buffer_minutes,
            min_hours=today.policy.min_hours,
        ),
    )


@router.get("/api/attendance/stats", response_model=AttendanceStatsResponse)
def attendance_stats(
    year: int | None = Query(default=None, ge=2000, le=2100),
    month: int | None = Query(default=None, ge=1, le=12),
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> AttendanceStatsResponse:
    today = ctx.today()
    year = year or today.year
    month = month or today.month
    stats = get_attendance_stats(ctx, user_id=session.member_id, year=year, month=month)
    return AttendanceStatsResponse(year=year, month=month, **stats)


@router.get("/api/attendance/history", response_model=AttendanceHistoryResponse)
def attendance_history(
    request: Request,
    page: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1, le=200),
    start_date: date | None = None,
    end_date: date | None = None,
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    work_type: WorkType | None = None,
    user_id: int | None = Query(default=None, ge=1),
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> AttendanceHistoryResponse:
    if user_id is not None and user_id != session.member_id and not session.is_admin:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Only admins can read other members' history.")
    target_user_id = user_id or session.member_id

    generations: QueryGenerations | None = getattr(request.app.state, "query_generations", None)
    is_current = generations.begin(f"attendance-history:{session.member_id}") if generations else None
    history = list_attendance_history(
        ctx.db,
        user_id=target_user_id,
        page=page,
        page_size=page_size or ctx.settings.history_page_size,
        start_date=start_date,
        end_date=end_date,
        status=status_filter,
        work_type=work_type,
        is_current=is_current,
    )
    return AttendanceHistoryResponse(
        items=[AttendanceDayRead.model_validate(item) for item in history.items],
        total=history.total,
        page=history.page,
        page_size=history.page_size,
        superseded=history.superseded,
    )
