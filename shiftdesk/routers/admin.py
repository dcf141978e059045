from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shiftdesk.audit import audit_request
from shiftdesk.db import get_db
from shiftdesk.models import AnnualHoliday, CalendarException, LocationZone, Member
from shiftdesk.schemas import (
    AnnualHolidayCreate,
    AnnualHolidayRead,
    AttendanceDayActionResponse,
    AttendanceDayRead,
    CalendarExceptionCreate,
    CalendarExceptionRead,
    CheckOutOverrideRequest,
    DecisionRequest,
    LocationZoneCreate,
    LocationZoneRead,
    MemberCreate,
    MemberRead,
    MemberUpdate,
    RetentionCleanupResponse,
    WorkConfigUpdate,
)
from shiftdesk.security import hash_password, require_admin
from shiftdesk.services.attendance import cleanup_attendance, override_check_out, verify_manual_entry
from shiftdesk.services.change_feed import publish_change
from shiftdesk.services.context import ServiceContext, get_service_context
from shiftdesk.services.duties import cleanup_duties
from shiftdesk.services.work_config import load_work_policy, save_work_config
from shiftdesk.settings import get_settings

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/api/admin/members", response_model=list[MemberRead])
def list_members(
    include_inactive: bool = Query(default=True),
    db: Session = Depends(get_db),
) -> list[MemberRead]:
    stmt = select(Member).order_by(Member.id.asc())
    if not include_inactive:
        stmt = stmt.where(Member.is_active.is_(True))
    return list(db.scalars(stmt).all())


@router.post("/api/admin/members", response_model=MemberRead, status_code=status.HTTP_201_CREATED)
def create_member(
    payload: MemberCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> MemberRead:
    member = Member(
        username=payload.username.strip(),
        full_name=payload.full_name.strip(),
        password_hash=hash_password(payload.password),
        is_admin=payload.is_admin,
    )
    db.add(member)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Username already exists")
    db.refresh(member)
    audit_request(
        db,
        request,
        action="MEMBER_CREATED",
        entity_type="member",
        entity_id=member.id,
        details={"username": member.username, "is_admin": member.is_admin},
    )
    return member


@router.patch("/api/admin/members/{member_id}", response_model=MemberRead)
def update_member(
    member_id: int,
    payload: MemberUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> MemberRead:
    member = db.get(Member, member_id)
    if member is None:
        raise HTTPException(status_code=404, detail="Member not found")
    changes = payload.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(member, key, value)
    db.commit()
    db.refresh(member)
    audit_request(db, request, action="MEMBER_UPDATED", entity_type="member", entity_id=member.id, details=changes)
    return member


@router.get("/api/admin/work-config")
def get_work_config(db: Session = Depends(get_db)) -> dict[str, str]:
    return load_work_policy(db, get_settings()).as_dict()


@router.put("/api/admin/work-config")
def update_work_config(
    payload: WorkConfigUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> dict[str, str]:
    policy = save_work_config(db, get_settings(), payload.values)
    audit_request(db, request, action="WORK_CONFIG_UPDATED", entity_type="work_config", entity_id=None, details=payload.values)
    publish_change(request, "work_config", "updated")
    return policy.as_dict()


@router.get("/api/admin/zones", response_model=list[LocationZoneRead])
def list_zones(db: Session = Depends(get_db)) -> list[LocationZoneRead]:
    return list(db.scalars(select(LocationZone).order_by(LocationZone.id.asc())).all())


@router.post("/api/admin/zones", response_model=LocationZoneRead, status_code=status.HTTP_201_CREATED)
def create_zone(
    payload: LocationZoneCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> LocationZoneRead:
    zone = LocationZone(**payload.model_dump())
    zone.name = zone.name.strip()
    db.add(zone)
    db.commit()
    db.refresh(zone)
    audit_request(
        db,
        request,
        action="LOCATION_ZONE_CREATED",
        entity_type="location_zone",
        entity_id=zone.id,
        details={"name": zone.name, "radius_m": zone.radius_m},
    )
    return zone


@router.put("/api/admin/zones/{zone_id}", response_model=LocationZoneRead)
def update_zone(
    zone_id: int,
    payload: LocationZoneCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> LocationZoneRead:
    zone = db.get(LocationZone, zone_id)
    if zone is None:
        raise HTTPException(status_code=404, detail="Zone not found")
    for key, value in payload.model_dump().items():
        setattr(zone, key, value)
    db.commit()
    db.refresh(zone)
    audit_request(db, request, action="LOCATION_ZONE_UPDATED", entity_type="location_zone", entity_id=zone.id)
    return zone


@router.delete("/api/admin/zones/{zone_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_zone(zone_id: int, request: Request, db: Session = Depends(get_db)) -> Response:
    zone = db.get(LocationZone, zone_id)
    if zone is None:
        raise HTTPException(status_code=404, detail="Zone not found")
    db.delete(zone)
    db.commit()
    audit_request(db, request, action="LOCATION_ZONE_DELETED", entity_type="location_zone", entity_id=zone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/admin/holidays", response_model=list[AnnualHolidayRead])
def list_holidays(db: Session = Depends(get_db)) -> list[AnnualHolidayRead]:
    return list(db.scalars(select(AnnualHoliday).order_by(AnnualHoliday.month.asc(), AnnualHoliday.day.asc())).all())


@router.post("/api/admin/holidays", response_model=AnnualHolidayRead, status_code=status.HTTP_201_CREATED)
def create_holiday(
    payload: AnnualHolidayCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> AnnualHolidayRead:
    holiday = AnnualHoliday(name=payload.name.strip(), month=payload.month, day=payload.day, is_active=payload.is_active)
    db.add(holiday)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="A holiday already exists on that day")
    db.refresh(holiday)
    audit_request(
        db,
        request,
        action="HOLIDAY_CREATED",
        entity_type="annual_holiday",
        entity_id=holiday.id,
        details={"month": holiday.month, "day": holiday.day},
    )
    publish_change(request, "calendar", "holiday_created", entity_id=holiday.id)
    return holiday


@router.delete("/api/admin/holidays/{holiday_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_holiday(holiday_id: int, request: Request, db: Session = Depends(get_db)) -> Response:
    holiday = db.get(AnnualHoliday, holiday_id)
    if holiday is None:
        raise HTTPException(status_code=404, detail="Holiday not found")
    db.delete(holiday)
    db.commit()
    audit_request(db, request, action="HOLIDAY_DELETED", entity_type="annual_holiday", entity_id=holiday_id)
    publish_change(request, "calendar", "holiday_deleted", entity_id=holiday_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/admin/calendar-exceptions", response_model=list[CalendarExceptionRead])
def list_calendar_exceptions(db: Session = Depends(get_db)) -> list[CalendarExceptionRead]:
    return list(db.scalars(select(CalendarException).order_by(CalendarException.day_date.asc())).all())


@router.put("/api/admin/calendar-exceptions", response_model=CalendarExceptionRead)
def upsert_calendar_exception(
    payload: CalendarExceptionCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> CalendarExceptionRead:
    exception = db.scalar(select(CalendarException).where(CalendarException.day_date == payload.day_date))
    if exception is None:
        exception = CalendarException(day_date=payload.day_date)
        db.add(exception)
    exception.kind = payload.kind
    exception.note = payload.note
    db.commit()
    db.refresh(exception)
    audit_request(
        db,
        request,
        action="CALENDAR_EXCEPTION_SAVED",
        entity_type="calendar_exception",
        entity_id=exception.id,
        details={"day_date": exception.day_date.isoformat(), "kind": exception.kind.value},
    )
    publish_change(request, "calendar", "exception_saved", entity_id=exception.id)
    return exception


@router.delete("/api/admin/calendar-exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_calendar_exception(exception_id: int, request: Request, db: Session = Depends(get_db)) -> Response:
    exception = db.get(CalendarException, exception_id)
    if exception is None:
        raise HTTPException(status_code=404, detail="Calendar exception not found")
    db.delete(exception)
    db.commit()
    audit_request(db, request, action="CALENDAR_EXCEPTION_DELETED", entity_type="calendar_exception", entity_id=exception_id)
    publish_change(request, "calendar", "exception_deleted", entity_id=exception_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/admin/attendance/{day_id}/check-out", response_model=AttendanceDayActionResponse)
def admin_override_check_out(
    day_id: int,
    payload: CheckOutOverrideRequest,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
) -> AttendanceDayActionResponse:
    day = override_check_out(ctx, day_id=day_id, check_out_at=payload.check_out_at, note=payload.note)
    audit_request(
        ctx.db,
        request,
        action="ATTENDANCE_CHECK_OUT_OVERRIDE",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"user_id": day.user_id, "status": day.status.value},
    )
    publish_change(request, "attendance", "check_out_override", entity_id=day.id, user_id=day.user_id)
    return AttendanceDayActionResponse(day=AttendanceDayRead.model_validate(day), warnings=ctx.warnings)


@router.post("/api/admin/attendance/{day_id}/verify", response_model=AttendanceDayActionResponse)
def admin_verify_manual_entry(
    day_id: int,
    payload: DecisionRequest,
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
) -> AttendanceDayActionResponse:
    day = verify_manual_entry(ctx, day_id=day_id, accept=payload.accept)
    audit_request(
        ctx.db,
        request,
        action="ATTENDANCE_MANUAL_ENTRY_VERIFIED",
        entity_type="attendance_day",
        entity_id=day.id,
        details={"user_id": day.user_id, "accepted": payload.accept},
    )
    publish_change(request, "attendance", "verified", entity_id=day.id, user_id=day.user_id)
    return AttendanceDayActionResponse(day=AttendanceDayRead.model_validate(day), warnings=ctx.warnings)


@router.post("/api/admin/retention/cleanup", response_model=RetentionCleanupResponse)
def run_retention_cleanup(
    request: Request,
    ctx: ServiceContext = Depends(get_service_context),
) -> RetentionCleanupResponse:
    result = RetentionCleanupResponse(
        attendance_deleted=cleanup_attendance(ctx),
        duties_deleted=cleanup_duties(ctx),
    )
    audit_request(
        ctx.db,
        request,
        action="RETENTION_CLEANUP",
        entity_type="retention",
        entity_id=None,
        details=result.model_dump(),
    )
    return result
