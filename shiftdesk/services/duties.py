from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from shiftdesk.errors import ApiError, conflict, invalid, not_found
from shiftdesk.models import (
    DAY_LEAVE_TYPES,
    RESOLVED_PENALTY_STATUSES,
    Duty,
    DutyConfig,
    LeaveRequest,
    Member,
    PenaltyStatus,
    RequestStatus,
)
from shiftdesk.security import SessionContext
from shiftdesk.services.collaborators import GameEventKind, ProofFile, member_display_name
from shiftdesk.services.context import ServiceContext
from shiftdesk.services.workdays import MAX_SCAN_DAYS, WorkingDayCalendar, load_calendar

logger = logging.getLogger("shiftdesk.duties")

DEFAULT_DUTY_TITLE = "General duty"
DEFAULT_DUTY_CONFIGS: dict[int, tuple[int, list[str]]] = {
    1: (1, [DEFAULT_DUTY_TITLE]),
    2: (1, [DEFAULT_DUTY_TITLE]),
    3: (1, [DEFAULT_DUTY_TITLE]),
    4: (1, [DEFAULT_DUTY_TITLE]),
    5: (2, ["Clear the trash", "Mop the floor"]),
}
ROTATION_MODE = "ROTATION"
DURATION_MODE = "DURATION"
LEAVE_LOOKBACK_DAYS = 60


@dataclass(frozen=True)
class NegligenceChange:
    duty_id: int
    previous: PenaltyStatus
    current: PenaltyStatus


def _get_duty(db: Session, duty_id: int) -> Duty:
    duty = db.get(Duty, duty_id)
    if duty is None:
        raise not_found("DUTY_NOT_FOUND", "Duty not found.")
    return duty


def _require_owner(duty: Duty, session: SessionContext) -> None:
    if duty.assignee_id != session.member_id:
        raise ApiError(status_code=403, code="NOT_DUTY_OWNER", message="Only the assignee can do this.")


def load_duty_configs(db: Session) -> dict[int, tuple[int, list[str]]]:
    configs = dict(DEFAULT_DUTY_CONFIGS)
    for row in db.scalars(select(DutyConfig)).all():
        configs[row.day_of_week] = (row.required_people, list(row.task_titles or []))
    return configs


def save_duty_config(db: Session, *, day_of_week: int, required_people: int, task_titles: list[str]) -> DutyConfig:
    if day_of_week < 1 or day_of_week > 5:
        raise invalid("INVALID_DAY_OF_WEEK", "day_of_week must be 1 (Monday) to 5 (Friday).")
    if required_people < 1:
        raise invalid("INVALID_REQUIRED_PEOPLE", "At least one person is required.")

    titles = [title.strip() for title in task_titles if title and title.strip()]
    config = db.scalar(select(DutyConfig).where(DutyConfig.day_of_week == day_of_week))
    if config is None:
        config = DutyConfig(day_of_week=day_of_week, required_people=required_people, task_titles=titles)
        db.add(config)
    else:
        config.required_people = required_people
        config.task_titles = titles
    db.commit()
    db.refresh(config)
    return config


def create_duty(db: Session, *, title: str, assignee_id: int, duty_date: date) -> Duty:
    if db.get(Member, assignee_id) is None:
        raise not_found("MEMBER_NOT_FOUND", "Assignee not found.")
    duty = Duty(title=title.strip() or DEFAULT_DUTY_TITLE, assignee_id=assignee_id, duty_date=duty_date)
    db.add(duty)
    db.commit()
    db.refresh(duty)
    return duty


def delete_duty(db: Session, duty_id: int) -> None:
    duty = _get_duty(db, duty_id)
    db.delete(duty)
    db.commit()


def list_duties(db: Session, *, start_date: date | None = None, end_date: date | None = None) -> list[Duty]:
    stmt = select(Duty).order_by(Duty.duty_date.asc(), Duty.id.asc())
    if start_date is not None:
        stmt = stmt.where(Duty.duty_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(Duty.duty_date <= end_date)
    return list(db.scalars(stmt).all())


def _duty_title(titles: list[str], index: int, people_needed: int) -> str:
    if index < len(titles) and titles[index].strip():
        return titles[index]
    title = titles[0] if titles else DEFAULT_DUTY_TITLE
    if people_needed > 1:
        title = f"{title} ({index + 1})"
    return title


def generate_rotation(
    ctx: ServiceContext,
    *,
    start_date: date,
    mode: str,
    weeks: int,
    member_ids: list[int] | None = None,
    rng: random.Random | None = None,
) -> list[Duty]:
    """Assign duties from a shuffled member queue over working days.

    ``ROTATION`` stops once every member has been assigned at least once;
    ``DURATION`` fills ``weeks`` * 5 working days. Existing duties in the
    generated range are replaced.
    """
    if mode not in (ROTATION_MODE, DURATION_MODE):
        raise invalid("INVALID_ROTATION_MODE", "mode must be ROTATION or DURATION.")
    if mode == DURATION_MODE and weeks < 1:
        raise invalid("INVALID_WEEKS", "weeks must be at least 1.")

    if member_ids is None:
        member_ids = list(
            ctx.db.scalars(select(Member.id).where(Member.is_active.is_(True)).order_by(Member.id.asc())).all()
        )
    if not member_ids:
        raise invalid("NO_ACTIVE_MEMBERS", "No active members to assign.")

    rng = rng or random.Random()
    configs = load_duty_configs(ctx.db)
    calendar = load_calendar(ctx.db)

    queue: list[int] = []
    assigned: set[int] = set()

    def next_members(count: int) -> list[int]:
        nonlocal queue
        selected: list[int] = []
        for _ in range(count):
            if not queue:
                queue = list(member_ids)
                rng.shuffle(queue)
                if len(member_ids) > 1 and selected and queue[0] == selected[-1]:
                    queue.append(queue.pop(0))
            member_id = queue.pop(0)
            selected.append(member_id)
            assigned.add(member_id)
        return selected

    payload: list[Duty] = []
    days_generated = 0
    last_day = start_date
    for day in calendar.iter_working_days(start_date, max_days=MAX_SCAN_DAYS + max(weeks, 0) * 7):
        if mode == DURATION_MODE and days_generated >= weeks * 5:
            break
        if mode == ROTATION_MODE and (len(assigned) >= len(member_ids) or days_generated > len(member_ids) * 5):
            break
        # Exceptional work days on a weekend fall back to the default single-person config.
        people_needed, titles = configs.get(day.isoweekday(), (1, [DEFAULT_DUTY_TITLE]))
        for index, member_id in enumerate(next_members(people_needed)):
            payload.append(
                Duty(
                    title=_duty_title(titles, index, people_needed),
                    assignee_id=member_id,
                    duty_date=day,
                )
            )
        days_generated += 1
        last_day = day

    if days_generated == 0:
        raise invalid("NO_WORKING_DAYS", "No working days found after start_date.")

    ctx.db.execute(delete(Duty).where(Duty.duty_date >= start_date, Duty.duty_date <= last_day))
    ctx.db.add_all(payload)
    ctx.db.commit()
    logger.info(
        "duty_rotation_generated",
        extra={
            "mode": mode,
            "start_date": start_date.isoformat(),
            "end_date": last_day.isoformat(),
            "days_generated": days_generated,
            "duties_created": len(payload),
        },
    )
    return payload


def toggle_duty(ctx: ServiceContext, *, duty_id: int, session: SessionContext, expected_is_done: bool) -> Duty:
    """Flip ``is_done`` only if it still equals what the caller saw."""
    duty = _get_duty(ctx.db, duty_id)
    if duty.assignee_id != session.member_id and not session.is_admin:
        raise ApiError(status_code=403, code="NOT_DUTY_OWNER", message="Only the assignee can do this.")

    if duty.penalty_status == PenaltyStatus.AWAITING_TRIBUNAL:
        raise conflict("DUTY_IN_TRIBUNAL", "A missed duty can only be redeemed with proof.")
    if duty.penalty_status in RESOLVED_PENALTY_STATUSES:
        raise conflict("DUTY_ALREADY_RESOLVED", f"Duty is {duty.penalty_status.value}.")
    if duty.duty_date < ctx.today():
        raise conflict("DUTY_PAST_DUE", "Past duties can only be completed with proof.")

    result = ctx.db.execute(
        update(Duty)
        .where(Duty.id == duty_id, Duty.is_done.is_(expected_is_done), Duty.penalty_status == PenaltyStatus.NONE)
        .values(is_done=not expected_is_done)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        ctx.db.rollback()
        raise conflict("DUTY_STATE_CONFLICT", "Duty changed since it was loaded; refresh and retry.")
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_toggled", extra={"duty_id": duty_id, "is_done": duty.is_done})
    return duty


def _attach_proof(ctx: ServiceContext, duty: Duty, proof: ProofFile) -> None:
    duty.proof_image_url = ctx.upload_proof(proof, f"duties/{duty.id}")
    duty.is_done = True


def submit_duty_proof(ctx: ServiceContext, *, duty_id: int, session: SessionContext, proof: ProofFile) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    if not duty.is_done and duty.penalty_status == PenaltyStatus.NONE and duty.duty_date < ctx.today():
        # The assignee's list may not have loaded since the duty lapsed.
        evaluate_negligence(ctx, user_id=duty.assignee_id)
    if duty.penalty_status == PenaltyStatus.AWAITING_TRIBUNAL:
        return redeem_duty(ctx, duty_id=duty_id, session=session, proof=proof)
    if duty.penalty_status in RESOLVED_PENALTY_STATUSES:
        raise conflict("DUTY_ALREADY_RESOLVED", f"Duty is {duty.penalty_status.value}.")
    if duty.is_done and duty.proof_image_url:
        raise conflict("DUTY_ALREADY_DONE", "Proof was already submitted.")

    _attach_proof(ctx, duty, proof)
    ctx.db.commit()
    ctx.db.refresh(duty)

    logger.info("duty_proof_submitted", extra={"duty_id": duty.id, "submitted_by": session.member_id})
    ctx.emit(duty.assignee_id, GameEventKind.DUTY_COMPLETE, {"duty_id": duty.id, "title": duty.title})
    if session.member_id != duty.assignee_id:
        ctx.emit(session.member_id, GameEventKind.DUTY_ASSIST, {"duty_id": duty.id, "title": duty.title})
    ctx.broadcast(
        "Duty done",
        f"{member_display_name(ctx.db, session.member_id)} finished \"{duty.title}\".",
        duty.proof_image_url,
    )
    return duty


def _excused_days(db: Session, user_id: int, since: date) -> list[tuple[date, date]]:
    rows = db.scalars(
        select(LeaveRequest).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status == RequestStatus.APPROVED,
            LeaveRequest.type.in_(list(DAY_LEAVE_TYPES)),
            LeaveRequest.end_date >= since,
        )
    ).all()
    return [(row.start_date, row.end_date) for row in rows]


def evaluate_negligence(
    ctx: ServiceContext,
    *,
    user_id: int,
    calendar: WorkingDayCalendar | None = None,
) -> list[NegligenceChange]:
    """Advance the member's missed duties; runs whenever their duty list loads."""
    today = ctx.today()
    missed = list(
        ctx.db.scalars(
            select(Duty).where(
                Duty.assignee_id == user_id,
                Duty.duty_date < today,
                Duty.is_done.is_(False),
                Duty.penalty_status.not_in(list(RESOLVED_PENALTY_STATUSES)),
            )
        ).all()
    )
    if not missed:
        return []

    calendar = calendar or load_calendar(ctx.db)
    leave_ranges = _excused_days(ctx.db, user_id, today - timedelta(days=LEAVE_LOOKBACK_DAYS))
    changes: list[NegligenceChange] = []
    abandoned: list[Duty] = []

    for duty in missed:
        previous = duty.penalty_status
        if any(start <= duty.duty_date <= end for start, end in leave_ranges):
            duty.penalty_status = PenaltyStatus.EXCUSED
            duty.is_done = True
        elif calendar.working_days_between(duty.duty_date, today) == 0:
            if previous == PenaltyStatus.NONE:
                duty.penalty_status = PenaltyStatus.AWAITING_TRIBUNAL
        else:
            duty.penalty_status = PenaltyStatus.ABANDONED
            duty.is_penalized = True
            duty.abandoned_at = ctx.now()
            abandoned.append(duty)
        if duty.penalty_status != previous:
            changes.append(NegligenceChange(duty_id=duty.id, previous=previous, current=duty.penalty_status))

    if changes:
        ctx.db.commit()
        logger.info(
            "duty_negligence_evaluated",
            extra={"user_id": user_id, "changes": [(c.duty_id, c.current.value) for c in changes]},
        )
    for duty in abandoned:
        ctx.emit(
            user_id,
            GameEventKind.DUTY_MISSED,
            {"duty_id": duty.id, "title": duty.title, "date": duty.duty_date.isoformat(), "reason": "ABANDONED_DUTY"},
        )
    return changes


def accept_penalty(ctx: ServiceContext, *, duty_id: int, session: SessionContext) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    _require_owner(duty, session)
    if duty.penalty_status != PenaltyStatus.AWAITING_TRIBUNAL:
        raise conflict("DUTY_NOT_IN_TRIBUNAL", "Duty is not awaiting a decision.")

    duty.is_penalized = True
    duty.penalty_status = PenaltyStatus.ACCEPTED_FAULT
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_penalty_accepted", extra={"duty_id": duty.id, "user_id": session.member_id})
    ctx.emit(
        duty.assignee_id,
        GameEventKind.DUTY_MISSED,
        {"duty_id": duty.id, "title": duty.title, "date": duty.duty_date.isoformat(), "reason": "ACCEPTED_FAULT"},
    )
    return duty


def redeem_duty(ctx: ServiceContext, *, duty_id: int, session: SessionContext, proof: ProofFile | None) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    _require_owner(duty, session)
    if duty.penalty_status != PenaltyStatus.AWAITING_TRIBUNAL:
        raise conflict("DUTY_NOT_IN_TRIBUNAL", "Duty is not awaiting a decision.")
    if proof is None:
        raise invalid("PROOF_REQUIRED", "Late completion needs a proof photo.")

    _attach_proof(ctx, duty, proof)
    duty.penalty_status = PenaltyStatus.LATE_COMPLETED
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_redeemed", extra={"duty_id": duty.id, "user_id": session.member_id})
    ctx.emit(duty.assignee_id, GameEventKind.DUTY_LATE_SUBMIT, {"duty_id": duty.id, "title": duty.title})
    return duty


def appeal_duty(
    ctx: ServiceContext,
    *,
    duty_id: int,
    session: SessionContext,
    reason: str,
    proof: ProofFile | None = None,
) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    _require_owner(duty, session)
    if duty.penalty_status != PenaltyStatus.AWAITING_TRIBUNAL:
        raise conflict("DUTY_NOT_IN_TRIBUNAL", "Duty is not awaiting a decision.")
    if not (reason or "").strip():
        raise invalid("REASON_REQUIRED", "An appeal needs a reason.")

    if proof is not None:
        duty.appeal_proof_url = ctx.upload_proof(proof, f"duties/{duty.id}/appeal")
    duty.appeal_reason = reason.strip()
    duty.penalty_status = PenaltyStatus.UNDER_REVIEW
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_appealed", extra={"duty_id": duty.id, "user_id": session.member_id})
    ctx.broadcast(
        "Duty appeal",
        f"{member_display_name(ctx.db, duty.assignee_id)} appealed \"{duty.title}\" ({duty.duty_date.isoformat()}).",
        "duties",
    )
    return duty


def review_appeal(ctx: ServiceContext, *, duty_id: int, accept: bool) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    if duty.penalty_status != PenaltyStatus.UNDER_REVIEW:
        raise conflict("DUTY_NOT_UNDER_REVIEW", "Duty has no open appeal.")

    if accept:
        duty.penalty_status = PenaltyStatus.EXCUSED
        duty.is_penalized = False
        duty.is_done = True
    else:
        duty.penalty_status = PenaltyStatus.ACCEPTED_FAULT
        duty.is_penalized = True
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_appeal_reviewed", extra={"duty_id": duty.id, "accepted": accept})
    if not accept:
        ctx.emit(
            duty.assignee_id,
            GameEventKind.DUTY_MISSED,
            {"duty_id": duty.id, "title": duty.title, "date": duty.duty_date.isoformat(), "reason": "APPEAL_REJECTED"},
        )
    ctx.notify(
        duty.assignee_id,
        "Appeal accepted" if accept else "Appeal rejected",
        f"Your appeal for \"{duty.title}\" was {'accepted' if accept else 'rejected'}.",
        "duties",
    )
    return duty


def acknowledge_abandoned(ctx: ServiceContext, *, duty_id: int, session: SessionContext) -> Duty:
    duty = _get_duty(ctx.db, duty_id)
    _require_owner(duty, session)
    if duty.penalty_status != PenaltyStatus.ABANDONED:
        raise conflict("DUTY_NOT_ABANDONED", "Only abandoned duties can be acknowledged.")

    duty.cleared_by_system = True
    ctx.db.commit()
    ctx.db.refresh(duty)
    logger.info("duty_abandon_acknowledged", extra={"duty_id": duty.id, "user_id": session.member_id})
    return duty


def list_neglected_duties(db: Session, *, user_id: int) -> list[Duty]:
    return list(
        db.scalars(
            select(Duty)
            .where(
                Duty.assignee_id == user_id,
                Duty.penalty_status == PenaltyStatus.ABANDONED,
                Duty.cleared_by_system.is_(False),
            )
            .order_by(Duty.duty_date.asc(), Duty.id.asc())
        ).all()
    )


def list_duty_history(db: Session, *, user_id: int) -> list[Duty]:
    return list(
        db.scalars(
            select(Duty).where(Duty.assignee_id == user_id).order_by(Duty.duty_date.desc(), Duty.id.desc())
        ).all()
    )


def cleanup_duties(ctx: ServiceContext) -> int:
    cutoff = ctx.today() - timedelta(days=ctx.settings.duty_retention_days)
    result = ctx.db.execute(delete(Duty).where(Duty.duty_date < cutoff))
    ctx.db.commit()
    deleted = int(result.rowcount or 0)
    logger.info("duty_retention_cleanup", extra={"cutoff": cutoff.isoformat(), "deleted": deleted})
    return deleted
