from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from shiftdesk.db import get_db
from shiftdesk.errors import ApiError
from shiftdesk.services.collaborators import (
    DatabaseNotifier,
    GamificationGateway,
    JournalGamification,
    Notifier,
    ProofFile,
    ProofStorage,
    build_proof_storage,
)
from shiftdesk.services.timekeeping import as_utc, local_date, utcnow, zone_for
from shiftdesk.services.work_config import WorkPolicy, load_work_policy
from shiftdesk.settings import Settings, get_settings

logger = logging.getLogger("shiftdesk.context")


@dataclass
class ServiceContext:
    """Everything an engine call needs: session, settings, collaborators and a clock.

    Collaborator failures after a committed transition are recorded in
    ``warnings`` instead of propagating.
    """

    db: Session
    settings: Settings
    gamification: GamificationGateway
    notifier: Notifier
    storage: ProofStorage
    clock: Callable[[], datetime] = utcnow
    warnings: list[str] = field(default_factory=list)
    _policy: WorkPolicy | None = field(default=None, repr=False)

    @property
    def tz(self) -> ZoneInfo:
        return zone_for(self.settings.attendance_timezone)

    @property
    def policy(self) -> WorkPolicy:
        if self._policy is None:
            self._policy = load_work_policy(self.db, self.settings)
        return self._policy

    def now(self) -> datetime:
        return as_utc(self.clock())

    def today(self) -> date:
        return local_date(self.now(), self.tz)

    def emit(self, user_id: int, event_kind: str, payload: dict[str, Any]) -> None:
        try:
            self.gamification.process_action(user_id, event_kind, payload)
        except Exception:
            logger.warning(
                "gamification_dispatch_failed",
                exc_info=True,
                extra={"user_id": user_id, "event_kind": event_kind},
            )
            self.warnings.append(f"GAMIFICATION_FAILED:{event_kind}")

    def notify(self, user_id: int, title: str, body: str, link_target: str | None = None) -> None:
        try:
            self.notifier.notify(user_id, title, body, link_target)
        except Exception:
            logger.warning("notification_failed", exc_info=True, extra={"user_id": user_id, "title": title})
            self.warnings.append("NOTIFICATION_FAILED")

    def broadcast(self, title: str, body: str, link_target: str | None = None) -> None:
        try:
            self.notifier.broadcast(title, body, link_target)
        except Exception:
            logger.warning("broadcast_failed", exc_info=True, extra={"title": title})
            self.warnings.append("NOTIFICATION_FAILED")

    def upload_proof(self, proof: ProofFile, folder_path: str) -> str:
        try:
            return self.storage.upload(proof, folder_path)
        except Exception as exc:
            logger.error("proof_upload_failed", exc_info=True, extra={"folder_path": folder_path})
            raise ApiError(status_code=502, code="PROOF_UPLOAD_FAILED", message="Proof upload failed.") from exc

    def discard_proof(self, url: str) -> None:
        try:
            self.storage.discard(url)
        except Exception:
            logger.warning("proof_discard_failed", exc_info=True, extra={"proof_url": url})


def build_service_context(
    db: Session,
    *,
    settings: Settings | None = None,
    storage: ProofStorage | None = None,
    gamification: GamificationGateway | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ServiceContext:
    settings = settings or get_settings()
    return ServiceContext(
        db=db,
        settings=settings,
        gamification=gamification or JournalGamification(db),
        notifier=notifier or DatabaseNotifier(db),
        storage=storage or build_proof_storage(settings),
        clock=clock,
    )


def get_service_context(request: Request, db: Session = Depends(get_db)) -> ServiceContext:
    return build_service_context(db, storage=getattr(request.app.state, "proof_storage", None))
