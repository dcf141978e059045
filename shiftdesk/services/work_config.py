from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import time

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.errors import ApiError, invalid
from shiftdesk.models import WorkConfigOption
from shiftdesk.services.timekeeping import parse_hhmm
from shiftdesk.settings import Settings

logger = logging.getLogger("shiftdesk.work_config")

START_TIME_KEY = "START_TIME"
LATE_BUFFER_KEY = "LATE_BUFFER"
MIN_HOURS_KEY = "MIN_HOURS"
WORK_CONFIG_KEYS = (START_TIME_KEY, LATE_BUFFER_KEY, MIN_HOURS_KEY)


@dataclass(frozen=True)
class WorkPolicy:
    start_time: time
    late_buffer_minutes: int
    min_hours: float

    def as_dict(self) -> dict[str, str]:
        return {
            START_TIME_KEY: self.start_time.strftime("%H:%M"),
            LATE_BUFFER_KEY: str(self.late_buffer_minutes),
            MIN_HOURS_KEY: f"{self.min_hours:g}",
        }


def _coerce_start_time(raw: str) -> time:
    return parse_hhmm(raw)


def _coerce_late_buffer(raw: str) -> int:
    value = int(raw)
    if value < 0 or value > 240:
        raise ValueError("late buffer out of range")
    return value


def _coerce_min_hours(raw: str) -> float:
    value = float(raw)
    if value <= 0 or value > 24:
        raise ValueError("minimum hours out of range")
    return value


_COERCERS = {
    START_TIME_KEY: _coerce_start_time,
    LATE_BUFFER_KEY: _coerce_late_buffer,
    MIN_HOURS_KEY: _coerce_min_hours,
}


def default_work_policy(settings: Settings) -> WorkPolicy:
    return WorkPolicy(
        start_time=parse_hhmm(settings.work_start_time),
        late_buffer_minutes=settings.late_buffer_minutes,
        min_hours=settings.min_work_hours,
    )


def load_work_policy(db: Session, settings: Settings) -> WorkPolicy:
    defaults = default_work_policy(settings)
    values: dict[str, object] = {
        START_TIME_KEY: defaults.start_time,
        LATE_BUFFER_KEY: defaults.late_buffer_minutes,
        MIN_HOURS_KEY: defaults.min_hours,
    }
    rows = db.scalars(select(WorkConfigOption).where(WorkConfigOption.key.in_(WORK_CONFIG_KEYS))).all()
    for row in rows:
        try:
            values[row.key] = _COERCERS[row.key](row.value)
        except (ApiError, ValueError):
            logger.warning("work_config_value_ignored", extra={"key": row.key, "value": row.value})

    return WorkPolicy(
        start_time=values[START_TIME_KEY],  # type: ignore[arg-type]
        late_buffer_minutes=values[LATE_BUFFER_KEY],  # type: ignore[arg-type]
        min_hours=values[MIN_HOURS_KEY],  # type: ignore[arg-type]
    )


def save_work_config(db: Session, settings: Settings, updates: dict[str, str]) -> WorkPolicy:
    for key, raw_value in updates.items():
        if key not in _COERCERS:
            raise invalid("UNKNOWN_WORK_CONFIG_KEY", f"Unknown work config key: {key}")
        try:
            _COERCERS[key](raw_value)
        except (ApiError, ValueError) as exc:
            raise invalid("INVALID_WORK_CONFIG_VALUE", f"Invalid value for {key}.") from exc

        option = db.scalar(select(WorkConfigOption).where(WorkConfigOption.key == key))
        if option is None:
            db.add(WorkConfigOption(key=key, value=raw_value.strip()))
        else:
            option.value = raw_value.strip()

    db.commit()
    return load_work_policy(db, settings)
