from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from shiftdesk.audit import audit_request, client_ip
from shiftdesk.db import get_db
from shiftdesk.errors import ApiError
from shiftdesk.models import Member
from shiftdesk.schemas import LoginRequest, MemberRead, TokenResponse
from shiftdesk.security import (
    SessionContext,
    authenticate_member,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_member,
)

router = APIRouter(tags=["auth"])


@router.post("/api/auth/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    ip = client_ip(request) or "unknown"
    ensure_login_attempt_allowed(ip)

    member = authenticate_member(db, username=payload.username, password=payload.password)
    if member is None:
        register_login_failure(ip)
        audit_request(
            db,
            request,
            action="MEMBER_LOGIN",
            entity_type="member",
            entity_id=None,
            details={"username": payload.username.strip()},
            success=False,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid username or password.")

    register_login_success(ip)
    request.state.actor = "admin" if member.is_admin else "member"
    request.state.actor_id = str(member.id)
    audit_request(db, request, action="MEMBER_LOGIN", entity_type="member", entity_id=member.id)
    token, expires_in = create_access_token(member)
    return TokenResponse(
        access_token=token,
        expires_in=expires_in,
        member=MemberRead.model_validate(member),
    )


@router.get("/api/auth/me", response_model=MemberRead)
def me(
    session: SessionContext = Depends(require_member),
    db: Session = Depends(get_db),
) -> MemberRead:
    member = db.get(Member, session.member_id)
    return MemberRead.model_validate(member)
