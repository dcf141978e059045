from fastapi import APIRouter, Depends, Query, Request, status

from shiftdesk.audit import audit_request
from shiftdesk.errors import ApiError
from shiftdesk.models import LeaveType, RequestStatus
from shiftdesk.schemas import (
    LeaveActionResponse,
    LeaveRejectRequest,
    LeaveRequestCreate,
    LeaveRequestRead,
    LeaveSubmissionResponse,
    QuotaLineRead,
    QuotaResponse,
)
from shiftdesk.security import SessionContext, require_admin, require_member
from shiftdesk.services.change_feed import publish_change
from shiftdesk.services.context import ServiceContext, get_service_context
from shiftdesk.services.leaves import (
    approve_leave_request,
    list_leave_requests,
    reject_leave_request,
    submit_leave_request,
)
from shiftdesk.services.quota import quota_snapshot

router = APIRouter(tags=["leave-requests"])


@router.post(
    "/api/leave-requests",
    response_model=LeaveSubmissionResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_leave_request(
    payload: LeaveRequestCreate,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> LeaveSubmissionResponse:
    outcome = submit_leave_request(
        ctx,
        user_id=session.member_id,
        leave_type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        target_time=payload.target_time,
        overtime_hours=payload.overtime_hours,
        attachment=payload.attachment.to_proof_file() if payload.attachment is not None else None,
    )
    leave = outcome.request
    audit_request(
        ctx.db,
        request,
        action="LEAVE_REQUEST_SUBMITTED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"type": leave.type.value, "over_quota": outcome.over_quota},
    )
    publish_change(request, "leave_requests", "submitted", entity_id=leave.id, user_id=session.member_id)
    return LeaveSubmissionResponse(
        request=LeaveRequestRead.model_validate(leave),
        quota=[QuotaLineRead.model_validate(line) for line in outcome.quota],
        requested_units=outcome.requested_units,
        over_quota=outcome.over_quota,
        warnings=ctx.warnings,
    )


@router.get("/api/leave-requests", response_model=list[LeaveRequestRead])
def get_leave_requests(
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    leave_type: LeaveType | None = Query(default=None, alias="type"),
    all_members: bool = False,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[LeaveRequestRead]:
    if all_members and not session.is_admin:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Only admins can list every request.")
    rows = list_leave_requests(
        ctx.db,
        user_id=None if all_members else session.member_id,
        status=status_filter,
        leave_type=leave_type,
    )
    return [LeaveRequestRead.model_validate(row) for row in rows]


@router.get("/api/leave-requests/quota", response_model=QuotaResponse)
def get_leave_quota(
    year: int | None = Query(default=None, ge=2000, le=2100),
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> QuotaResponse:
    period_year = year or ctx.today().year
    lines = quota_snapshot(ctx.db, ctx.settings, user_id=session.member_id, period_year=period_year)
    return QuotaResponse(period_year=period_year, lines=[QuotaLineRead.model_validate(line) for line in lines])


@router.post("/api/leave-requests/{request_id}/approve", response_model=LeaveActionResponse)
def approve_request(
    request_id: int,
    request: Request,
    session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> LeaveActionResponse:
    leave = approve_leave_request(ctx, request_id=request_id, approver_id=session.member_id)
    audit_request(
        ctx.db,
        request,
        action="LEAVE_REQUEST_APPROVED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"type": leave.type.value, "user_id": leave.user_id},
    )
    publish_change(request, "leave_requests", "approved", entity_id=leave.id, user_id=leave.user_id)
    publish_change(request, "attendance", "corrected", user_id=leave.user_id)
    return LeaveActionResponse(request=LeaveRequestRead.model_validate(leave), warnings=ctx.warnings)


@router.post("/api/leave-requests/{request_id}/reject", response_model=LeaveActionResponse)
def reject_request(
    request_id: int,
    payload: LeaveRejectRequest,
    request: Request,
    session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> LeaveActionResponse:
    leave = reject_leave_request(ctx, request_id=request_id, approver_id=session.member_id, reason=payload.reason)
    audit_request(
        ctx.db,
        request,
        action="LEAVE_REQUEST_REJECTED",
        entity_type="leave_request",
        entity_id=leave.id,
        details={"type": leave.type.value, "user_id": leave.user_id},
    )
    publish_change(request, "leave_requests", "rejected", entity_id=leave.id, user_id=leave.user_id)
    return LeaveActionResponse(request=LeaveRequestRead.model_validate(leave), warnings=ctx.warnings)
