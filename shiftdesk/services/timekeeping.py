from __future__ import annotations

from datetime import date, datetime, time, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shiftdesk.errors import invalid

DEFAULT_TIMEZONE = "Asia/Bangkok"


@lru_cache
def zone_for(raw_name: str | None) -> ZoneInfo:
    name = (raw_name or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_ts(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return as_utc(value)


def local_date(value: datetime, tz: ZoneInfo) -> date:
    return as_utc(value).astimezone(tz).date()


def parse_hhmm(value: str) -> time:
    try:
        hour_str, minute_str = value.strip().split(":")
        hour = int(hour_str)
        minute = int(minute_str)
    except (AttributeError, ValueError) as exc:
        raise invalid("INVALID_TIME", f"Time must be HH:mm, got {value!r}.") from exc
    if hour < 0 or hour > 23 or minute < 0 or minute > 59:
        raise invalid("INVALID_TIME", f"Time must be HH:mm, got {value!r}.")
    return time(hour=hour, minute=minute)


def combine_utc(day_date: date, local_time: time, tz: ZoneInfo) -> datetime:
    local_dt = datetime.combine(day_date, local_time, tzinfo=tz)
    return local_dt.astimezone(timezone.utc)
