from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy.orm import Session

from shiftdesk.models import GameEvent, Member, Notification
from shiftdesk.settings import Settings

logger = logging.getLogger("shiftdesk.collaborators")


class GameEventKind:
    ATTENDANCE_CHECK_IN = "ATTENDANCE_CHECK_IN"
    ATTENDANCE_LEAVE = "ATTENDANCE_LEAVE"
    ATTENDANCE_EARLY_LEAVE = "ATTENDANCE_EARLY_LEAVE"
    DUTY_COMPLETE = "DUTY_COMPLETE"
    DUTY_ASSIST = "DUTY_ASSIST"
    DUTY_MISSED = "DUTY_MISSED"
    DUTY_LATE_SUBMIT = "DUTY_LATE_SUBMIT"


@dataclass(frozen=True)
class ProofFile:
    filename: str
    content: bytes
    content_type: str | None = None


class GamificationGateway(Protocol):
    def process_action(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None: ...


class ProofStorage(Protocol):
    def upload(self, proof: ProofFile, folder_path: str) -> str: ...

    def discard(self, url: str) -> None: ...


class Notifier(Protocol):
    def notify(self, user_id: int, title: str, message: str, link_target: str | None = None) -> None: ...

    def broadcast(self, title: str, message: str, link_target: str | None = None) -> None: ...


class JournalGamification:
    """Records events in ``game_events``; scoring happens elsewhere."""

    def __init__(self, db: Session):
        self.db = db

    def process_action(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None:
        self.db.add(GameEvent(member_id=user_id, event_kind=event_kind, payload=payload))
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class DatabaseNotifier:
    def __init__(self, db: Session):
        self.db = db

    def notify(self, user_id: int, title: str, message: str, link_target: str | None = None) -> None:
        self.db.add(Notification(member_id=user_id, title=title, message=message, link_target=link_target))
        self._commit()

    def broadcast(self, title: str, message: str, link_target: str | None = None) -> None:
        self.db.add(Notification(member_id=None, title=title, message=message, link_target=link_target))
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise


class LocalProofStorage:
    def __init__(self, root_dir: str | Path, public_base_url: str):
        self.root_dir = Path(root_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def upload(self, proof: ProofFile, folder_path: str) -> str:
        suffix = Path(proof.filename).suffix
        if not suffix and proof.content_type:
            suffix = mimetypes.guess_extension(proof.content_type) or ""
        relative = Path(folder_path.strip("/")) / f"{uuid4().hex}{suffix.lower()}"
        target = self.root_dir / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(proof.content)
        return f"{self.public_base_url}/{relative.as_posix()}"

    def discard(self, url: str) -> None:
        prefix = f"{self.public_base_url}/"
        if url.startswith(prefix):
            (self.root_dir / url[len(prefix):]).unlink(missing_ok=True)


class FallbackProofStorage:
    """Try the primary uploader, then the fallback; the fallback's error propagates."""

    def __init__(self, primary: ProofStorage, fallback: ProofStorage):
        self.primary = primary
        self.fallback = fallback

    def upload(self, proof: ProofFile, folder_path: str) -> str:
        try:
            return self.primary.upload(proof, folder_path)
        except Exception:
            logger.warning(
                "proof_primary_upload_failed",
                exc_info=True,
                extra={"folder_path": folder_path, "proof_filename": proof.filename},
            )
        return self.fallback.upload(proof, folder_path)

    def discard(self, url: str) -> None:
        self.primary.discard(url)
        self.fallback.discard(url)


def member_display_name(db: Session, user_id: int) -> str:
    member = db.get(Member, user_id)
    if member is None:
        return f"member #{user_id}"
    return member.full_name


def build_proof_storage(settings: Settings) -> ProofStorage:
    return FallbackProofStorage(
        LocalProofStorage(settings.proof_storage_dir, settings.proof_public_base_url),
        LocalProofStorage(settings.proof_fallback_dir, settings.proof_fallback_base_url),
    )
