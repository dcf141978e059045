from __future__ import annotations

import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError
from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.db import get_db
from shiftdesk.errors import ApiError
from shiftdesk.models import Member
from shiftdesk.settings import get_settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)


@dataclass(frozen=True)
class SessionContext:
    """Authenticated caller, resolved once per request from the bearer token."""

    member_id: int
    username: str
    is_admin: bool = False

    def require_admin(self) -> None:
        if not self.is_admin:
            raise ApiError(status_code=403, code="FORBIDDEN", message="Admin role required.")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(ip: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[ip]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(ip, None)


def ensure_login_attempt_allowed(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        if len(_FAILED_ATTEMPTS.get(ip, ())) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(ip: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(ip, now)
        _FAILED_ATTEMPTS[ip].append(now)


def register_login_success(ip: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(ip, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        return False


def create_access_token(member: Member) -> tuple[str, int]:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": str(member.id),
        "username": member.username,
        "role": "admin" if member.is_admin else "member",
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=settings.access_token_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, settings.access_token_minutes * 60


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject.isdigit():
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def authenticate_member(db: Session, *, username: str, password: str) -> Member | None:
    member = db.scalar(select(Member).where(Member.username == username.strip()))
    if member is None or not member.is_active:
        return None
    if not member.password_hash or not verify_password(password, member.password_hash):
        return None
    return member


def require_member(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> SessionContext:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    member = db.get(Member, int(payload["sub"]))
    if member is None or not member.is_active:
        raise ApiError(status_code=403, code="MEMBER_INACTIVE", message="Member is inactive or missing.")

    session = SessionContext(member_id=member.id, username=member.username, is_admin=bool(member.is_admin))
    request.state.session = session
    request.state.actor = "admin" if session.is_admin else "member"
    request.state.actor_id = str(session.member_id)
    return session


def require_admin(session: SessionContext = Depends(require_member)) -> SessionContext:
    session.require_admin()
    return session
