from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shiftdesk.db import Base
from shiftdesk.models import Member
from shiftdesk.services.collaborators import ProofFile
from shiftdesk.services.context import ServiceContext
from shiftdesk.settings import Settings

# 2026-03-10 is a Tuesday.
DEFAULT_NOW = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


class RecordingGamification:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[tuple[int, str, dict[str, Any]]] = []

    def process_action(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("gamification offline")
        self.events.append((user_id, event_kind, payload))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.events]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.notices: list[tuple[int, str, str, str | None]] = []
        self.broadcasts: list[tuple[str, str, str | None]] = []

    def notify(self, user_id: int, title: str, message: str, link_target: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("notifier offline")
        self.notices.append((user_id, title, message, link_target))

    def broadcast(self, title: str, message: str, link_target: str | None = None) -> None:
        if self.fail:
            raise RuntimeError("notifier offline")
        self.broadcasts.append((title, message, link_target))


class MemoryProofStorage:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.uploads: list[tuple[str, str]] = []
        self.discarded: list[str] = []

    def upload(self, proof: ProofFile, folder_path: str) -> str:
        if self.fail:
            raise OSError("disk full")
        self.uploads.append((folder_path, proof.filename))
        return f"memory://{folder_path}/{proof.filename}"

    def discard(self, url: str) -> None:
        self.discarded.append(url)


def make_session() -> Session:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory()


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "attendance_timezone": "UTC",
        "jwt_secret": "test-secret",
        "database_url": "sqlite+pysqlite:///:memory:",
    }
    values.update(overrides)
    return Settings(**values)


def make_context(
    db: Session,
    clock: FixedClock | None = None,
    *,
    gamification: RecordingGamification | None = None,
    notifier: RecordingNotifier | None = None,
    storage: MemoryProofStorage | None = None,
    **settings_overrides: Any,
) -> ServiceContext:
    return ServiceContext(
        db=db,
        settings=make_settings(**settings_overrides),
        gamification=gamification or RecordingGamification(),
        notifier=notifier or RecordingNotifier(),
        storage=storage or MemoryProofStorage(),
        clock=clock or FixedClock(),
    )


def add_member(db: Session, username: str, *, full_name: str | None = None, is_admin: bool = False) -> Member:
    member = Member(username=username, full_name=full_name or username.title(), is_admin=is_admin)
    db.add(member)
    db.commit()
    db.refresh(member)
    return member


def photo(name: str = "proof.jpg") -> ProofFile:
    return ProofFile(filename=name, content=b"\xff\xd8\xff-test-image", content_type="image/jpeg")
