from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone

from sqlalchemy import func, select

from service_harness import (
    FixedClock,
    RecordingGamification,
    RecordingNotifier,
    add_member,
    make_context,
    make_session,
    photo,
)
from shiftdesk.errors import ApiError
from shiftdesk.models import AttendanceDay, AttendanceStatus, LeaveType, LocationZone, RequestStatus, WorkType
from shiftdesk.services.attendance import check_in, get_day_record
from shiftdesk.services.leaves import (
    approve_leave_request,
    forgot_checkout_timestamp,
    list_leave_requests,
    reject_leave_request,
    submit_leave_request,
)

SHIFT_DATE = date(2026, 3, 10)


def _utc(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=timezone.utc)


class LeaveRequestTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.db.add(LocationZone(name="HQ", lat=13.70, lng=100.50, radius_m=150))
        self.db.commit()
        self.member = add_member(self.db, "niran")
        self.admin = add_member(self.db, "boss", is_admin=True)
        self.clock = FixedClock(_utc(SHIFT_DATE, 9))
        self.gamification = RecordingGamification()
        self.notifier = RecordingNotifier()
        self.ctx = make_context(self.db, self.clock, gamification=self.gamification, notifier=self.notifier)

    def tearDown(self) -> None:
        self.db.close()

    def _submit(self, leave_type: LeaveType, start: date, end: date | None = None, **kwargs):
        return submit_leave_request(
            self.ctx,
            user_id=self.member.id,
            leave_type=leave_type,
            start_date=start,
            end_date=end,
            reason=kwargs.pop("reason", "Family matter"),
            **kwargs,
        )

    def _approve(self, request_id: int):
        return approve_leave_request(self.ctx, request_id=request_id, approver_id=self.admin.id)

    def test_duplicate_pending_request_is_rejected(self) -> None:
        first = self._submit(LeaveType.SICK, date(2026, 3, 12))

        with self.assertRaises(ApiError) as ctx:
            self._submit(LeaveType.SICK, date(2026, 3, 12))

        self.assertEqual(ctx.exception.code, "LEAVE_ALREADY_PENDING")
        self.assertEqual(first.request.status, RequestStatus.PENDING)
        self.assertEqual(len(list_leave_requests(self.db, user_id=self.member.id)), 1)

    def test_resubmission_allowed_after_rejection(self) -> None:
        first = self._submit(LeaveType.SICK, date(2026, 3, 12))
        reject_leave_request(self.ctx, request_id=first.request.id, approver_id=self.admin.id, reason="No certificate")

        second = self._submit(LeaveType.SICK, date(2026, 3, 12))

        self.assertNotEqual(first.request.id, second.request.id)
        self.assertEqual(self.notifier.notices[-1][1], "Request rejected")
        statuses = sorted(row.status.value for row in list_leave_requests(self.db, user_id=self.member.id))
        self.assertEqual(statuses, ["PENDING", "REJECTED"])

    def test_duplicate_of_approved_request(self) -> None:
        first = self._submit(LeaveType.PERSONAL, date(2026, 3, 12))
        self._approve(first.request.id)

        with self.assertRaises(ApiError) as ctx:
            self._submit(LeaveType.PERSONAL, date(2026, 3, 12))
        self.assertEqual(ctx.exception.code, "LEAVE_ALREADY_APPROVED")

    def test_submission_validation(self) -> None:
        cases = [
            ({"leave_type": LeaveType.SICK, "reason": "  "}, "REASON_REQUIRED"),
            ({"leave_type": LeaveType.LATE_ENTRY}, "TARGET_TIME_REQUIRED"),
            ({"leave_type": LeaveType.FORGOT_CHECKOUT, "target_time": "25:00"}, "INVALID_TIME"),
            ({"leave_type": LeaveType.OVERTIME, "overtime_hours": 0}, "OVERTIME_HOURS_REQUIRED"),
            ({"leave_type": LeaveType.VACATION, "end_date": date(2026, 3, 1)}, "INVALID_DATE_RANGE"),
        ]
        for kwargs, code in cases:
            with self.subTest(code=code):
                leave_type = kwargs.pop("leave_type")
                end = kwargs.pop("end_date", None)
                with self.assertRaises(ApiError) as ctx:
                    self._submit(leave_type, date(2026, 3, 12), end, **kwargs)
                self.assertEqual(ctx.exception.code, code)

    def test_submission_broadcasts_and_uploads_attachment(self) -> None:
        outcome = self._submit(LeaveType.SICK, date(2026, 3, 12), date(2026, 3, 13), attachment=photo("note.pdf"))

        self.assertEqual(outcome.requested_units, 2)
        self.assertFalse(outcome.over_quota)
        self.assertTrue(outcome.request.attachment_url.endswith("note.pdf"))
        self.assertEqual(self.notifier.broadcasts[-1][0], "New leave request")

    def test_forgot_checkout_before_cutoff_lands_next_morning(self) -> None:
        self.assertEqual(forgot_checkout_timestamp(self.ctx, SHIFT_DATE, time(2, 0)), _utc(date(2026, 3, 11), 2))
        self.assertEqual(forgot_checkout_timestamp(self.ctx, SHIFT_DATE, time(18, 30)), _utc(SHIFT_DATE, 18, 30))
        self.assertEqual(forgot_checkout_timestamp(self.ctx, SHIFT_DATE, time(5, 0)), _utc(SHIFT_DATE, 5))

    def test_approved_forgot_checkout_closes_overnight_session(self) -> None:
        check_in(self.ctx, user_id=self.member.id, work_type=WorkType.OFFICE, lat=13.70, lng=100.50, proof=photo())
        self.clock.set(_utc(date(2026, 3, 11), 9))
        outcome = self._submit(LeaveType.FORGOT_CHECKOUT, SHIFT_DATE, target_time="02:00", reason="Left in a hurry")

        self._approve(outcome.request.id)

        day = get_day_record(self.db, self.member.id, SHIFT_DATE)
        self.assertEqual(day.check_out_at.replace(tzinfo=timezone.utc), _utc(date(2026, 3, 11), 2))
        self.assertEqual(day.status, AttendanceStatus.COMPLETED)
        self.assertTrue(day.is_correction)
        self.assertEqual(self.gamification.kinds()[-1], "DUTY_COMPLETE")

    def test_day_leave_upserts_attendance_rows(self) -> None:
        self.db.add(
            AttendanceDay(
                user_id=self.member.id,
                shift_date=date(2026, 3, 12),
                work_type=WorkType.OFFICE,
                status=AttendanceStatus.ACTION_REQUIRED,
                check_in_at=_utc(date(2026, 3, 12), 9),
                check_out_at=_utc(date(2026, 3, 12), 9),
            )
        )
        self.db.commit()
        outcome = self._submit(LeaveType.VACATION, date(2026, 3, 12), date(2026, 3, 13))

        approved = self._approve(outcome.request.id)

        rows = list(
            self.db.scalars(
                select(AttendanceDay).where(AttendanceDay.user_id == self.member.id).order_by(AttendanceDay.shift_date)
            ).all()
        )
        self.assertEqual(approved.status, RequestStatus.APPROVED)
        self.assertEqual([row.shift_date.day for row in rows], [12, 13])
        self.assertTrue(all(row.status == AttendanceStatus.LEAVE for row in rows))
        self.assertTrue(all(row.check_in_at is None for row in rows))
        self.assertEqual(self.gamification.events[-1][2]["days"], 2)

    def test_forgot_checkin_approval_opens_corrected_session(self) -> None:
        outcome = self._submit(LeaveType.FORGOT_CHECKIN, SHIFT_DATE, target_time="09:45")

        self._approve(outcome.request.id)

        day = get_day_record(self.db, self.member.id, SHIFT_DATE)
        self.assertEqual(day.status, AttendanceStatus.WORKING)
        self.assertEqual(day.check_in_at.replace(tzinfo=timezone.utc), _utc(SHIFT_DATE, 9, 45))
        self.assertTrue(day.is_correction)
        self.assertFalse(day.is_late)

    def test_late_entry_approval_clears_late_flag(self) -> None:
        self.clock.set(_utc(SHIFT_DATE, 10, 40))
        check_in(self.ctx, user_id=self.member.id, work_type=WorkType.OFFICE, lat=13.70, lng=100.50, proof=photo())
        outcome = self._submit(LeaveType.LATE_ENTRY, SHIFT_DATE, target_time="10:40", reason="Train delay")

        self._approve(outcome.request.id)

        day = get_day_record(self.db, self.member.id, SHIFT_DATE)
        self.assertFalse(day.is_late)
        self.assertTrue(day.is_correction)

    def test_wfh_check_in_reuses_approved_placeholder(self) -> None:
        outcome = self._submit(LeaveType.WFH, SHIFT_DATE, reason="Plumber visit")
        self._approve(outcome.request.id)
        placeholder = get_day_record(self.db, self.member.id, SHIFT_DATE)

        checked_in = check_in(self.ctx, user_id=self.member.id, work_type=WorkType.WFH, lat=None, lng=None, proof=photo())

        self.assertEqual(checked_in.day.id, placeholder.id)
        self.assertEqual(checked_in.day.status, AttendanceStatus.WORKING)
        self.assertEqual(checked_in.day.work_type, WorkType.WFH)
        self.assertTrue(checked_in.day.wfh_approved)
        count = self.db.scalar(select(func.count(AttendanceDay.id)).where(AttendanceDay.user_id == self.member.id))
        self.assertEqual(count, 1)

    def test_decided_request_cannot_be_decided_again(self) -> None:
        outcome = self._submit(LeaveType.OVERTIME, SHIFT_DATE, overtime_hours=2.5)
        self._approve(outcome.request.id)

        with self.assertRaises(ApiError) as ctx:
            reject_leave_request(self.ctx, request_id=outcome.request.id, approver_id=self.admin.id, reason=None)
        self.assertEqual(ctx.exception.code, "LEAVE_NOT_PENDING")

    def test_list_filters_by_status_and_type(self) -> None:
        self._submit(LeaveType.SICK, date(2026, 3, 12))
        vacation = self._submit(LeaveType.VACATION, date(2026, 3, 16))
        self._approve(vacation.request.id)

        approved = list_leave_requests(self.db, user_id=self.member.id, status=RequestStatus.APPROVED)
        sick = list_leave_requests(self.db, leave_type=LeaveType.SICK)

        self.assertEqual([row.type for row in approved], [LeaveType.VACATION])
        self.assertEqual(len(sick), 1)


if __name__ == "__main__":
    unittest.main()
