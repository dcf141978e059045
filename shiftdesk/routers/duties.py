from datetime import date

from fastapi import APIRouter, Depends, Request, Response, status

from shiftdesk.audit import audit_request
from shiftdesk.schemas import (
    DecisionRequest,
    DutyAcknowledgeResponse,
    DutyActionResponse,
    DutyAppealRequest,
    DutyConfigRead,
    DutyConfigUpsert,
    DutyCreate,
    DutyProofRequest,
    DutyRead,
    DutyRedeemRequest,
    DutyToggleRequest,
    MyDutiesResponse,
    NegligenceChangeRead,
    RotationRequest,
)
from shiftdesk.security import SessionContext, require_admin, require_member
from shiftdesk.services.change_feed import publish_change
from shiftdesk.services.context import ServiceContext, get_service_context
from shiftdesk.services.duties import (
    accept_penalty,
    acknowledge_abandoned,
    appeal_duty,
    create_duty,
    delete_duty,
    evaluate_negligence,
    generate_rotation,
    list_duties,
    list_duty_history,
    list_neglected_duties,
    load_duty_configs,
    redeem_duty,
    review_appeal,
    save_duty_config,
    submit_duty_proof,
    toggle_duty,
)

router = APIRouter(tags=["duties"])


def _action(ctx: ServiceContext, duty) -> DutyActionResponse:
    return DutyActionResponse(duty=DutyRead.model_validate(duty), warnings=ctx.warnings)


def _audit_duty(ctx: ServiceContext, request: Request, action: str, duty, **details) -> None:
    audit_request(
        ctx.db,
        request,
        action=action,
        entity_type="duty",
        entity_id=duty.id,
        details={"assignee_id": duty.assignee_id, "penalty_status": duty.penalty_status.value, **details},
    )
    publish_change(request, "duties", action.lower(), entity_id=duty.id, user_id=duty.assignee_id)


@router.get("/api/duties", response_model=list[DutyRead])
def get_duties(
    start_date: date | None = None,
    end_date: date | None = None,
    _session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[DutyRead]:
    return [DutyRead.model_validate(duty) for duty in list_duties(ctx.db, start_date=start_date, end_date=end_date)]


@router.get("/api/duties/mine", response_model=MyDutiesResponse)
def get_my_duties(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> MyDutiesResponse:
    changes = evaluate_negligence(ctx, user_id=session.member_id)
    return MyDutiesResponse(
        duties=[DutyRead.model_validate(duty) for duty in list_duty_history(ctx.db, user_id=session.member_id)],
        neglected=[DutyRead.model_validate(duty) for duty in list_neglected_duties(ctx.db, user_id=session.member_id)],
        changes=[NegligenceChangeRead.model_validate(change) for change in changes],
        negligence_lock_seconds=ctx.settings.negligence_lock_seconds,
        warnings=ctx.warnings,
    )


@router.get("/api/duties/neglected", response_model=list[DutyRead])
def get_neglected_duties(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[DutyRead]:
    evaluate_negligence(ctx, user_id=session.member_id)
    return [DutyRead.model_validate(duty) for duty in list_neglected_duties(ctx.db, user_id=session.member_id)]


@router.get("/api/duties/history", response_model=list[DutyRead])
def get_duty_history(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[DutyRead]:
    return [DutyRead.model_validate(duty) for duty in list_duty_history(ctx.db, user_id=session.member_id)]


@router.post("/api/duties/{duty_id}/toggle", response_model=DutyActionResponse)
def toggle(
    duty_id: int,
    payload: DutyToggleRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    duty = toggle_duty(ctx, duty_id=duty_id, session=session, expected_is_done=payload.expected_is_done)
    _audit_duty(ctx, request, "DUTY_TOGGLED", duty, is_done=duty.is_done)
    return _action(ctx, duty)


@router.post("/api/duties/{duty_id}/proof", response_model=DutyActionResponse)
def submit_proof(
    duty_id: int,
    payload: DutyProofRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    duty = submit_duty_proof(ctx, duty_id=duty_id, session=session, proof=payload.proof.to_proof_file())
    _audit_duty(ctx, request, "DUTY_PROOF_SUBMITTED", duty, submitted_by=session.member_id)
    return _action(ctx, duty)


@router.post("/api/duties/{duty_id}/accept-penalty", response_model=DutyActionResponse)
def accept(
    duty_id: int,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    duty = accept_penalty(ctx, duty_id=duty_id, session=session)
    _audit_duty(ctx, request, "DUTY_PENALTY_ACCEPTED", duty)
    return _action(ctx, duty)


@router.post("/api/duties/{duty_id}/redeem", response_model=DutyActionResponse)
def redeem(
    duty_id: int,
    payload: DutyRedeemRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    proof = payload.proof.to_proof_file() if payload.proof is not None else None
    duty = redeem_duty(ctx, duty_id=duty_id, session=session, proof=proof)
    _audit_duty(ctx, request, "DUTY_REDEEMED", duty)
    return _action(ctx, duty)


@router.post("/api/duties/{duty_id}/appeal", response_model=DutyActionResponse)
def appeal(
    duty_id: int,
    payload: DutyAppealRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    proof = payload.proof.to_proof_file() if payload.proof is not None else None
    duty = appeal_duty(ctx, duty_id=duty_id, session=session, reason=payload.reason, proof=proof)
    _audit_duty(ctx, request, "DUTY_APPEALED", duty)
    return _action(ctx, duty)


@router.post("/api/duties/{duty_id}/acknowledge", response_model=DutyAcknowledgeResponse)
def acknowledge(
    duty_id: int,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyAcknowledgeResponse:
    duty = acknowledge_abandoned(ctx, duty_id=duty_id, session=session)
    _audit_duty(ctx, request, "DUTY_ABANDON_ACKNOWLEDGED", duty)
    return DutyAcknowledgeResponse(
        duty=DutyRead.model_validate(duty),
        warnings=ctx.warnings,
        negligence_lock_seconds=ctx.settings.negligence_lock_seconds,
    )


@router.post("/api/admin/duties", response_model=DutyRead, status_code=status.HTTP_201_CREATED)
def admin_create_duty(
    payload: DutyCreate,
    request: Request,
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyRead:
    duty = create_duty(ctx.db, title=payload.title, assignee_id=payload.assignee_id, duty_date=payload.duty_date)
    _audit_duty(ctx, request, "DUTY_CREATED", duty)
    return DutyRead.model_validate(duty)


@router.delete("/api/admin/duties/{duty_id}", status_code=status.HTTP_204_NO_CONTENT)
def admin_delete_duty(
    duty_id: int,
    request: Request,
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> Response:
    delete_duty(ctx.db, duty_id)
    audit_request(ctx.db, request, action="DUTY_DELETED", entity_type="duty", entity_id=duty_id)
    publish_change(request, "duties", "duty_deleted", entity_id=duty_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/admin/duties/generate", response_model=list[DutyRead])
def admin_generate_rotation(
    payload: RotationRequest,
    request: Request,
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[DutyRead]:
    duties = generate_rotation(
        ctx,
        start_date=payload.start_date,
        mode=payload.mode,
        weeks=payload.weeks,
        member_ids=payload.member_ids,
    )
    audit_request(
        ctx.db,
        request,
        action="DUTY_ROTATION_GENERATED",
        entity_type="duty",
        entity_id=None,
        details={"start_date": payload.start_date.isoformat(), "mode": payload.mode, "count": len(duties)},
    )
    publish_change(request, "duties", "rotation_generated")
    return [DutyRead.model_validate(duty) for duty in duties]


@router.post("/api/admin/duties/{duty_id}/review-appeal", response_model=DutyActionResponse)
def admin_review_appeal(
    duty_id: int,
    payload: DecisionRequest,
    request: Request,
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyActionResponse:
    duty = review_appeal(ctx, duty_id=duty_id, accept=payload.accept)
    _audit_duty(ctx, request, "DUTY_APPEAL_REVIEWED", duty, accepted=payload.accept)
    return _action(ctx, duty)


@router.get("/api/admin/duty-configs", response_model=list[DutyConfigRead])
def admin_get_duty_configs(
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[DutyConfigRead]:
    configs = load_duty_configs(ctx.db)
    return [
        DutyConfigRead(day_of_week=day_of_week, required_people=people, task_titles=titles)
        for day_of_week, (people, titles) in sorted(configs.items())
    ]


@router.put("/api/admin/duty-configs/{day_of_week}", response_model=DutyConfigRead)
def admin_save_duty_config(
    day_of_week: int,
    payload: DutyConfigUpsert,
    request: Request,
    _session: SessionContext = Depends(require_admin),
    ctx: ServiceContext = Depends(get_service_context),
) -> DutyConfigRead:
    config = save_duty_config(
        ctx.db,
        day_of_week=day_of_week,
        required_people=payload.required_people,
        task_titles=payload.task_titles,
    )
    audit_request(
        ctx.db,
        request,
        action="DUTY_CONFIG_SAVED",
        entity_type="duty_config",
        entity_id=config.day_of_week,
        details={"required_people": config.required_people},
    )
    return DutyConfigRead(
        day_of_week=config.day_of_week,
        required_people=config.required_people,
        task_titles=list(config.task_titles or []),
    )
