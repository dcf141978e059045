from fastapi import APIRouter, Depends, Request, status

from shiftdesk.audit import audit_request
from shiftdesk.schemas import DecisionRequest, SwapActionResponse, SwapCreate, SwapRead
from shiftdesk.security import SessionContext, require_member
from shiftdesk.services.change_feed import publish_change
from shiftdesk.services.context import ServiceContext, get_service_context
from shiftdesk.services.swaps import list_sent_swaps, list_swap_inbox, propose_swap, respond_to_swap

router = APIRouter(tags=["duty-swaps"])


@router.post("/api/duty-swaps", response_model=SwapActionResponse, status_code=status.HTTP_201_CREATED)
def create_swap(
    payload: SwapCreate,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> SwapActionResponse:
    swap = propose_swap(ctx, session=session, own_duty_id=payload.own_duty_id, target_duty_id=payload.target_duty_id)
    audit_request(
        ctx.db,
        request,
        action="DUTY_SWAP_PROPOSED",
        entity_type="duty_swap",
        entity_id=swap.id,
        details={"own_duty_id": swap.own_duty_id, "target_duty_id": swap.target_duty_id},
    )
    publish_change(request, "duty_swaps", "proposed", entity_id=swap.id, user_id=session.member_id)
    return SwapActionResponse(swap=SwapRead.model_validate(swap), warnings=ctx.warnings)


@router.post("/api/duty-swaps/{swap_id}/respond", response_model=SwapActionResponse)
def respond_swap(
    swap_id: int,
    payload: DecisionRequest,
    request: Request,
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> SwapActionResponse:
    swap = respond_to_swap(ctx, session=session, swap_id=swap_id, accept=payload.accept)
    audit_request(
        ctx.db,
        request,
        action="DUTY_SWAP_ANSWERED",
        entity_type="duty_swap",
        entity_id=swap.id,
        details={"status": swap.status.value},
    )
    publish_change(request, "duty_swaps", swap.status.value.lower(), entity_id=swap.id, user_id=swap.requestor_id)
    if payload.accept:
        publish_change(request, "duties", "swapped", entity_id=swap.own_duty_id)
    return SwapActionResponse(swap=SwapRead.model_validate(swap), warnings=ctx.warnings)


@router.get("/api/duty-swaps/inbox", response_model=list[SwapRead])
def swap_inbox(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[SwapRead]:
    return [SwapRead.model_validate(swap) for swap in list_swap_inbox(ctx.db, user_id=session.member_id)]


@router.get("/api/duty-swaps/sent", response_model=list[SwapRead])
def swaps_sent(
    session: SessionContext = Depends(require_member),
    ctx: ServiceContext = Depends(get_service_context),
) -> list[SwapRead]:
    return [SwapRead.model_validate(swap) for swap in list_sent_swaps(ctx.db, user_id=session.member_id)]
