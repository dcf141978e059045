from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from shiftdesk.models import AnnualHoliday, CalendarException, CalendarExceptionKind

MAX_SCAN_DAYS = 366


@dataclass
class WorkingDayCalendar:
    """Exceptions win over annual holidays, which win over weekends."""

    holidays: set[tuple[int, int]] = field(default_factory=set)
    exceptions: dict[date, CalendarExceptionKind] = field(default_factory=dict)

    def is_working_day(self, day: date) -> bool:
        kind = self.exceptions.get(day)
        if kind is CalendarExceptionKind.WORK_DAY:
            return True
        if kind is CalendarExceptionKind.HOLIDAY:
            return False
        if (day.month, day.day) in self.holidays:
            return False
        return day.weekday() < 5

    def working_days_between(self, start: date, end: date) -> int:
        """Working days strictly after ``start`` and strictly before ``end``."""
        count = 0
        cursor = start + timedelta(days=1)
        while cursor < end:
            if self.is_working_day(cursor):
                count += 1
            cursor += timedelta(days=1)
        return count

    def iter_working_days(self, start: date, *, max_days: int = MAX_SCAN_DAYS):
        """Yield working days from ``start``, scanning at most ``max_days`` calendar days."""
        for offset in range(max_days):
            cursor = start + timedelta(days=offset)
            if self.is_working_day(cursor):
                yield cursor


def load_calendar(db: Session) -> WorkingDayCalendar:
    holidays = {
        (row.month, row.day)
        for row in db.scalars(select(AnnualHoliday).where(AnnualHoliday.is_active.is_(True))).all()
    }
    exceptions = {row.day_date: row.kind for row in db.scalars(select(CalendarException)).all()}
    return WorkingDayCalendar(holidays=holidays, exceptions=exceptions)
