from __future__ import annotations

import unittest
from datetime import date

from service_harness import add_member, make_context, make_session, make_settings
from shiftdesk.models import LeaveRequest, LeaveType, RequestStatus
from shiftdesk.services.leaves import submit_leave_request
from shiftdesk.services.quota import compute_leave_usage, is_over_quota, quota_snapshot, requested_units


class LeaveQuotaTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.member = add_member(self.db, "malee")

    def tearDown(self) -> None:
        self.db.close()

    def _add_request(self, leave_type: LeaveType, start: date, end: date, status: RequestStatus) -> None:
        self.db.add(
            LeaveRequest(
                user_id=self.member.id,
                type=leave_type,
                start_date=start,
                end_date=end,
                reason="seed",
                status=status,
            )
        )
        self.db.commit()

    def test_usage_counts_only_approved_days_in_year(self) -> None:
        self._add_request(LeaveType.SICK, date(2026, 2, 2), date(2026, 2, 2), RequestStatus.APPROVED)
        self._add_request(LeaveType.SICK, date(2026, 3, 4), date(2026, 3, 6), RequestStatus.APPROVED)
        self._add_request(LeaveType.SICK, date(2026, 4, 1), date(2026, 4, 1), RequestStatus.PENDING)
        self._add_request(LeaveType.VACATION, date(2026, 5, 1), date(2026, 5, 3), RequestStatus.REJECTED)
        self._add_request(LeaveType.SICK, date(2025, 12, 30), date(2025, 12, 31), RequestStatus.APPROVED)

        usage = compute_leave_usage(self.db, user_id=self.member.id, period_year=2026)

        self.assertEqual(usage[LeaveType.SICK], 4)
        for leave_type in LeaveType:
            if leave_type is not LeaveType.SICK:
                self.assertEqual(usage[leave_type], 0, leave_type)

    def test_snapshot_reports_remaining(self) -> None:
        self._add_request(LeaveType.VACATION, date(2026, 6, 1), date(2026, 6, 4), RequestStatus.APPROVED)

        snapshot = quota_snapshot(self.db, make_settings(), user_id=self.member.id, period_year=2026)
        lines = {line.leave_type: line for line in snapshot}

        self.assertEqual(lines[LeaveType.VACATION].quota, 6)
        self.assertEqual(lines[LeaveType.VACATION].used, 4)
        self.assertEqual(lines[LeaveType.VACATION].remaining, 2)
        self.assertIsNone(lines[LeaveType.EMERGENCY].quota)
        self.assertIsNone(lines[LeaveType.EMERGENCY].remaining)
        self.assertTrue(is_over_quota(snapshot, LeaveType.VACATION, 3))
        self.assertFalse(is_over_quota(snapshot, LeaveType.VACATION, 2))
        self.assertFalse(is_over_quota(snapshot, LeaveType.EMERGENCY, 30))

    def test_requested_units_by_type(self) -> None:
        self.assertEqual(requested_units(LeaveType.SICK, date(2026, 3, 2), date(2026, 3, 6)), 5)
        self.assertEqual(requested_units(LeaveType.LATE_ENTRY, date(2026, 3, 2), date(2026, 3, 2)), 0)

    def test_over_quota_submission_is_accepted_with_flag(self) -> None:
        ctx = make_context(self.db, leave_quota_personal=2)

        outcome = submit_leave_request(
            ctx,
            user_id=self.member.id,
            leave_type=LeaveType.PERSONAL,
            start_date=date(2026, 3, 16),
            end_date=date(2026, 3, 18),
            reason="Moving house",
        )

        self.assertTrue(outcome.over_quota)
        self.assertEqual(outcome.requested_units, 3)
        self.assertEqual(outcome.request.status, RequestStatus.PENDING)


if __name__ == "__main__":
    unittest.main()
