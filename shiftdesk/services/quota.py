from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.models import DAY_LEAVE_TYPES, LeaveRequest, LeaveType, RequestStatus
from shiftdesk.settings import Settings, get_leave_quotas


@dataclass(frozen=True)
class QuotaLine:
    leave_type: LeaveType
    quota: int | None
    used: int

    @property
    def remaining(self) -> int | None:
        if self.quota is None:
            return None
        return self.quota - self.used


def requested_units(leave_type: LeaveType, start_date: date, end_date: date) -> int:
    """Days for day-based types; incident types consume no day quota."""
    if leave_type not in DAY_LEAVE_TYPES:
        return 0
    return (end_date - start_date).days + 1


def compute_leave_usage(db: Session, *, user_id: int, period_year: int) -> dict[LeaveType, int]:
    usage = {leave_type: 0 for leave_type in LeaveType}
    rows = db.scalars(
        select(LeaveRequest).where(
            LeaveRequest.user_id == user_id,
            LeaveRequest.status == RequestStatus.APPROVED,
            LeaveRequest.start_date >= date(period_year, 1, 1),
            LeaveRequest.start_date <= date(period_year, 12, 31),
        )
    ).all()
    for row in rows:
        if row.type in DAY_LEAVE_TYPES:
            usage[row.type] += (row.end_date - row.start_date).days + 1
        else:
            usage[row.type] += 1
    return usage


def quota_snapshot(db: Session, settings: Settings, *, user_id: int, period_year: int) -> list[QuotaLine]:
    quotas = get_leave_quotas(settings)
    usage = compute_leave_usage(db, user_id=user_id, period_year=period_year)
    return [
        QuotaLine(leave_type=leave_type, quota=quotas.get(leave_type.value), used=used)
        for leave_type, used in usage.items()
    ]


def is_over_quota(snapshot: list[QuotaLine], leave_type: LeaveType, units: int) -> bool:
    for line in snapshot:
        if line.leave_type is leave_type and line.remaining is not None:
            return units > line.remaining
    return False
