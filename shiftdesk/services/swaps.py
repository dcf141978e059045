from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.errors import ApiError, conflict, invalid, not_found
from shiftdesk.models import Duty, DutySwap, RequestStatus
from shiftdesk.security import SessionContext
from shiftdesk.services.collaborators import member_display_name
from shiftdesk.services.context import ServiceContext

logger = logging.getLogger("shiftdesk.swaps")


def _validate_pair(ctx: ServiceContext, own: Duty | None, target: Duty | None) -> tuple[Duty, Duty]:
    if own is None or target is None:
        raise not_found("DUTY_NOT_FOUND", "Both duties must exist.")
    if own.is_done or target.is_done:
        raise invalid("SWAP_INVALID", "Completed duties cannot be swapped.")
    if own.assignee_id == target.assignee_id:
        raise invalid("SWAP_INVALID", "Both duties belong to the same member.")
    today = ctx.today()
    if own.duty_date < today or target.duty_date < today:
        raise invalid("SWAP_INVALID", "Past duties cannot be swapped.")
    return own, target


def propose_swap(ctx: ServiceContext, *, session: SessionContext, own_duty_id: int, target_duty_id: int) -> DutySwap:
    own, target = _validate_pair(ctx, ctx.db.get(Duty, own_duty_id), ctx.db.get(Duty, target_duty_id))
    if own.assignee_id != session.member_id:
        raise ApiError(status_code=403, code="NOT_DUTY_OWNER", message="You can only offer your own duty.")

    pending = ctx.db.scalar(
        select(DutySwap.id).where(
            DutySwap.own_duty_id == own.id,
            DutySwap.target_duty_id == target.id,
            DutySwap.status == RequestStatus.PENDING,
        )
    )
    if pending is not None:
        raise conflict("SWAP_ALREADY_PENDING", "This swap is already waiting for an answer.")

    swap = DutySwap(
        requestor_id=session.member_id,
        own_duty_id=own.id,
        target_duty_id=target.id,
        status=RequestStatus.PENDING,
        created_at=ctx.now(),
    )
    ctx.db.add(swap)
    ctx.db.commit()
    ctx.db.refresh(swap)

    logger.info(
        "duty_swap_proposed",
        extra={"swap_id": swap.id, "requestor_id": session.member_id, "target_assignee_id": target.assignee_id},
    )
    ctx.notify(
        target.assignee_id,
        "Duty swap request",
        f"{member_display_name(ctx.db, session.member_id)} wants to trade \"{own.title}\" "
        f"({own.duty_date.isoformat()}) for your \"{target.title}\" ({target.duty_date.isoformat()}).",
        "duty-swaps",
    )
    return swap


def respond_to_swap(ctx: ServiceContext, *, session: SessionContext, swap_id: int, accept: bool) -> DutySwap:
    """Accepting exchanges both assignees and closes the swap in a single transaction."""
    swap = ctx.db.scalar(select(DutySwap).where(DutySwap.id == swap_id).with_for_update())
    if swap is None:
        raise not_found("SWAP_NOT_FOUND", "Swap request not found.")
    if swap.status != RequestStatus.PENDING:
        raise conflict("SWAP_NOT_PENDING", f"Swap is already {swap.status.value}.")

    duties = {
        duty.id: duty
        for duty in ctx.db.scalars(
            select(Duty)
            .where(Duty.id.in_([swap.own_duty_id, swap.target_duty_id]))
            .order_by(Duty.id.asc())
            .with_for_update()
        ).all()
    }
    own = duties.get(swap.own_duty_id)
    target = duties.get(swap.target_duty_id)
    if target is not None and target.assignee_id != session.member_id and not session.is_admin:
        ctx.db.rollback()
        raise ApiError(status_code=403, code="NOT_SWAP_TARGET", message="Only the target assignee can answer.")

    if accept:
        try:
            own, target = _validate_pair(ctx, own, target)
        except ApiError:
            ctx.db.rollback()
            raise
        if own.assignee_id != swap.requestor_id:
            ctx.db.rollback()
            raise conflict("SWAP_INVALID", "The offered duty changed hands since the request.")
        own.assignee_id, target.assignee_id = target.assignee_id, own.assignee_id
        swap.status = RequestStatus.APPROVED
    else:
        swap.status = RequestStatus.REJECTED
    swap.decided_at = ctx.now()
    ctx.db.commit()
    ctx.db.refresh(swap)

    logger.info("duty_swap_answered", extra={"swap_id": swap.id, "swap_status": swap.status.value})
    ctx.notify(
        swap.requestor_id,
        "Duty swap accepted" if accept else "Duty swap declined",
        f"Your swap request #{swap.id} was {'accepted' if accept else 'declined'}.",
        "duty-swaps",
    )
    return swap


def list_swap_inbox(db: Session, *, user_id: int) -> list[DutySwap]:
    return list(
        db.scalars(
            select(DutySwap)
            .join(Duty, Duty.id == DutySwap.target_duty_id)
            .where(DutySwap.status == RequestStatus.PENDING, Duty.assignee_id == user_id)
            .order_by(DutySwap.created_at.desc())
        ).all()
    )


def list_sent_swaps(db: Session, *, user_id: int) -> list[DutySwap]:
    return list(
        db.scalars(
            select(DutySwap).where(DutySwap.requestor_id == user_id).order_by(DutySwap.created_at.desc())
        ).all()
    )
