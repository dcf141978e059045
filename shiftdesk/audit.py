from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from shiftdesk.models import AuditActorType, AuditLog

logger = logging.getLogger("shiftdesk.audit")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    entity_ref = str(entity_id) if entity_id is not None else None
    db.add(
        AuditLog(
            ts_utc=datetime.now(timezone.utc),
            actor_type=actor_type,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_ref,
            ip=ip,
            user_agent=user_agent,
            success=success,
            details=details or {},
        )
    )
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": actor_id},
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_ref,
            "success": success,
            "details": details or {},
        },
    )


def audit_request(
    db: Session,
    request: Request,
    *,
    action: str,
    entity_type: str,
    entity_id: str | int | None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """Audit an endpoint action using the caller recorded on ``request.state``."""
    session = getattr(request.state, "session", None)
    if session is None:
        actor_type, actor_id = AuditActorType.SYSTEM, "system"
    else:
        actor_type = AuditActorType.ADMIN if session.is_admin else AuditActorType.MEMBER
        actor_id = str(session.member_id)
    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
