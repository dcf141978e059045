from __future__ import annotations

import random
import unittest
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import select

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
from shiftdesk.models import (
    AnnualHoliday,
    CalendarException,
    CalendarExceptionKind,
    Duty,
    LeaveRequest,
    LeaveType,
    PenaltyStatus,
    RequestStatus,
)
from shiftdesk.security import SessionContext
from shiftdesk.services.duties import (
    accept_penalty,
    acknowledge_abandoned,
    appeal_duty,
    create_duty,
    evaluate_negligence,
    generate_rotation,
    list_duty_history,
    list_neglected_duties,
    redeem_duty,
    review_appeal,
    save_duty_config,
    submit_duty_proof,
    toggle_duty,
)
from shiftdesk.services.workdays import WorkingDayCalendar

# Tuesday.
TODAY = date(2026, 3, 10)


class DutyNegligenceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.member = add_member(self.db, "kanya")
        self.helper = add_member(self.db, "preecha")
        self.session = SessionContext(member_id=self.member.id, username=self.member.username)
        self.clock = FixedClock(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc))
        self.gamification = RecordingGamification()
        self.notifier = RecordingNotifier()
        self.ctx = make_context(self.db, self.clock, gamification=self.gamification, notifier=self.notifier)

    def tearDown(self) -> None:
        self.db.close()

    def _duty(self, day: date, title: str = "Water the plants", assignee_id: int | None = None) -> Duty:
        return create_duty(self.db, title=title, assignee_id=assignee_id or self.member.id, duty_date=day)

    def _tribunal_duty(self) -> Duty:
        duty = self._duty(date(2026, 3, 9))
        evaluate_negligence(self.ctx, user_id=self.member.id)
        self.assertEqual(duty.penalty_status, PenaltyStatus.AWAITING_TRIBUNAL)
        return duty

    def test_missed_yesterday_awaits_tribunal(self) -> None:
        duty = self._duty(date(2026, 3, 9))

        changes = evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(len(changes), 1)
        self.assertEqual(changes[0].previous, PenaltyStatus.NONE)
        self.assertEqual(changes[0].current, PenaltyStatus.AWAITING_TRIBUNAL)
        self.assertFalse(duty.is_penalized)
        self.assertEqual(self.gamification.events, [])

    def test_weekend_does_not_count_toward_escalation(self) -> None:
        friday_duty = self._duty(date(2026, 3, 6))
        self.clock.set(datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc))

        evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(friday_duty.penalty_status, PenaltyStatus.AWAITING_TRIBUNAL)

    def test_working_day_gap_abandons_duty(self) -> None:
        duty = self._duty(date(2026, 3, 6))

        changes = evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(changes[0].current, PenaltyStatus.ABANDONED)
        self.assertTrue(duty.is_penalized)
        self.assertIsNotNone(duty.abandoned_at)
        self.assertEqual(self.gamification.kinds(), ["DUTY_MISSED"])
        self.assertEqual(self.gamification.events[0][2]["reason"], "ABANDONED_DUTY")

    def test_holiday_exception_keeps_duty_in_tribunal(self) -> None:
        duty = self._duty(date(2026, 3, 6))
        calendar = WorkingDayCalendar(exceptions={date(2026, 3, 9): CalendarExceptionKind.HOLIDAY})

        evaluate_negligence(self.ctx, user_id=self.member.id, calendar=calendar)

        self.assertEqual(duty.penalty_status, PenaltyStatus.AWAITING_TRIBUNAL)

    def test_tribunal_escalates_once_a_working_day_passes(self) -> None:
        duty = self._tribunal_duty()
        self.clock.set(datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc))

        changes = evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(changes[0].previous, PenaltyStatus.AWAITING_TRIBUNAL)
        self.assertEqual(duty.penalty_status, PenaltyStatus.ABANDONED)

    def test_approved_leave_excuses_missed_duty(self) -> None:
        duty = self._duty(date(2026, 3, 5))
        self.db.add(
            LeaveRequest(
                user_id=self.member.id,
                type=LeaveType.SICK,
                start_date=date(2026, 3, 5),
                end_date=date(2026, 3, 6),
                reason="Flu",
                status=RequestStatus.APPROVED,
            )
        )
        self.db.commit()

        evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(duty.penalty_status, PenaltyStatus.EXCUSED)
        self.assertTrue(duty.is_done)
        self.assertFalse(duty.is_penalized)

    def test_acknowledge_only_hides_from_neglected_view(self) -> None:
        duty = self._duty(date(2026, 3, 2))
        evaluate_negligence(self.ctx, user_id=self.member.id)
        self.assertEqual([row.id for row in list_neglected_duties(self.db, user_id=self.member.id)], [duty.id])

        acknowledged = acknowledge_abandoned(self.ctx, duty_id=duty.id, session=self.session)

        self.assertEqual(acknowledged.penalty_status, PenaltyStatus.ABANDONED)
        self.assertFalse(acknowledged.is_done)
        self.assertTrue(acknowledged.is_penalized)
        self.assertEqual(list_neglected_duties(self.db, user_id=self.member.id), [])
        self.assertIn(duty.id, [row.id for row in list_duty_history(self.db, user_id=self.member.id)])

    def test_acknowledge_requires_abandoned_duty(self) -> None:
        duty = self._tribunal_duty()
        with self.assertRaises(ApiError) as ctx:
            acknowledge_abandoned(self.ctx, duty_id=duty.id, session=self.session)
        self.assertEqual(ctx.exception.code, "DUTY_NOT_ABANDONED")

    def test_accept_penalty_resolves_tribunal(self) -> None:
        duty = self._tribunal_duty()

        accepted = accept_penalty(self.ctx, duty_id=duty.id, session=self.session)

        self.assertEqual(accepted.penalty_status, PenaltyStatus.ACCEPTED_FAULT)
        self.assertTrue(accepted.is_penalized)
        self.clock.set(datetime(2026, 3, 20, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(evaluate_negligence(self.ctx, user_id=self.member.id), [])

    def test_redeem_needs_proof_and_marks_late_completion(self) -> None:
        duty = self._tribunal_duty()

        with self.assertRaises(ApiError) as ctx:
            redeem_duty(self.ctx, duty_id=duty.id, session=self.session, proof=None)
        self.assertEqual(ctx.exception.code, "PROOF_REQUIRED")

        redeemed = redeem_duty(self.ctx, duty_id=duty.id, session=self.session, proof=photo())
        self.assertEqual(redeemed.penalty_status, PenaltyStatus.LATE_COMPLETED)
        self.assertTrue(redeemed.is_done)
        self.assertFalse(redeemed.is_penalized)
        self.assertEqual(self.gamification.kinds(), ["DUTY_LATE_SUBMIT"])

    def test_proof_on_tribunal_duty_counts_as_redeem(self) -> None:
        duty = self._tribunal_duty()

        updated = submit_duty_proof(self.ctx, duty_id=duty.id, session=self.session, proof=photo())

        self.assertEqual(updated.penalty_status, PenaltyStatus.LATE_COMPLETED)

    def test_only_assignee_may_settle_tribunal(self) -> None:
        duty = self._tribunal_duty()
        stranger = SessionContext(member_id=self.helper.id, username=self.helper.username)

        with self.assertRaises(ApiError) as ctx:
            accept_penalty(self.ctx, duty_id=duty.id, session=stranger)
        self.assertEqual(ctx.exception.status_code, 403)

    def test_appeal_freezes_escalation_until_reviewed(self) -> None:
        duty = self._tribunal_duty()

        appealed = appeal_duty(self.ctx, duty_id=duty.id, session=self.session, reason="I was at the client site")
        self.clock.set(datetime(2026, 3, 20, 9, 0, tzinfo=timezone.utc))
        evaluate_negligence(self.ctx, user_id=self.member.id)

        self.assertEqual(appealed.penalty_status, PenaltyStatus.UNDER_REVIEW)
        self.assertEqual(self.notifier.broadcasts[-1][0], "Duty appeal")

        reviewed = review_appeal(self.ctx, duty_id=duty.id, accept=True)
        self.assertEqual(reviewed.penalty_status, PenaltyStatus.EXCUSED)
        self.assertTrue(reviewed.is_done)
        self.assertFalse(reviewed.is_penalized)

    def test_rejected_appeal_becomes_accepted_fault(self) -> None:
        duty = self._tribunal_duty()
        appeal_duty(self.ctx, duty_id=duty.id, session=self.session, reason="Busy", proof=photo("chat.png"))

        reviewed = review_appeal(self.ctx, duty_id=duty.id, accept=False)

        self.assertEqual(reviewed.penalty_status, PenaltyStatus.ACCEPTED_FAULT)
        self.assertTrue(reviewed.is_penalized)
        self.assertIsNotNone(reviewed.appeal_proof_url)
        self.assertEqual(self.gamification.events[-1][2]["reason"], "APPEAL_REJECTED")
        with self.assertRaises(ApiError) as ctx:
            review_appeal(self.ctx, duty_id=duty.id, accept=True)
        self.assertEqual(ctx.exception.code, "DUTY_NOT_UNDER_REVIEW")

    def test_toggle_with_stale_state_conflicts(self) -> None:
        duty = self._duty(TODAY)

        toggled = toggle_duty(self.ctx, duty_id=duty.id, session=self.session, expected_is_done=False)
        self.assertTrue(toggled.is_done)

        with self.assertRaises(ApiError) as ctx:
            toggle_duty(self.ctx, duty_id=duty.id, session=self.session, expected_is_done=False)
        self.assertEqual(ctx.exception.code, "DUTY_STATE_CONFLICT")
        self.assertTrue(self.db.get(Duty, duty.id).is_done)

    def test_tribunal_duty_cannot_be_toggled_done(self) -> None:
        duty = self._tribunal_duty()

        with self.assertRaises(ApiError) as ctx:
            toggle_duty(self.ctx, duty_id=duty.id, session=self.session, expected_is_done=False)
        self.assertEqual(ctx.exception.code, "DUTY_IN_TRIBUNAL")
        self.assertEqual(ctx.exception.status_code, 409)

        self.clock.set(datetime(2026, 3, 17, 9, 0, tzinfo=timezone.utc))
        evaluate_negligence(self.ctx, user_id=self.member.id)
        self.assertEqual(duty.penalty_status, PenaltyStatus.ABANDONED)
        self.assertFalse(duty.is_done)
        self.assertTrue(duty.is_penalized)
        self.assertEqual(self.gamification.kinds(), ["DUTY_MISSED"])

    def test_abandoned_duty_history_is_not_rewritten_by_toggle(self) -> None:
        duty = self._duty(date(2026, 3, 2))
        evaluate_negligence(self.ctx, user_id=self.member.id)
        acknowledge_abandoned(self.ctx, duty_id=duty.id, session=self.session)

        with self.assertRaises(ApiError) as ctx:
            toggle_duty(self.ctx, duty_id=duty.id, session=self.session, expected_is_done=False)

        self.assertEqual(ctx.exception.code, "DUTY_ALREADY_RESOLVED")
        stored = self.db.get(Duty, duty.id)
        self.assertEqual(stored.penalty_status, PenaltyStatus.ABANDONED)
        self.assertFalse(stored.is_done)

    def test_past_duty_toggle_needs_proof(self) -> None:
        duty = self._duty(date(2026, 3, 9))
        duty.is_done = True
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            toggle_duty(self.ctx, duty_id=duty.id, session=self.session, expected_is_done=True)

        self.assertEqual(ctx.exception.code, "DUTY_PAST_DUE")
        self.assertTrue(self.db.get(Duty, duty.id).is_done)

    def test_proof_for_stale_overdue_duty_is_not_full_credit(self) -> None:
        duty = self._duty(date(2026, 3, 2))

        with self.assertRaises(ApiError) as ctx:
            submit_duty_proof(self.ctx, duty_id=duty.id, session=self.session, proof=photo())

        self.assertEqual(ctx.exception.code, "DUTY_ALREADY_RESOLVED")
        stored = self.db.get(Duty, duty.id)
        self.assertEqual(stored.penalty_status, PenaltyStatus.ABANDONED)
        self.assertFalse(stored.is_done)
        self.assertIsNone(stored.proof_image_url)
        self.assertEqual(self.gamification.kinds(), ["DUTY_MISSED"])

    def test_proof_for_unevaluated_missed_duty_is_a_late_submission(self) -> None:
        duty = self._duty(date(2026, 3, 9))

        updated = submit_duty_proof(self.ctx, duty_id=duty.id, session=self.session, proof=photo())

        self.assertEqual(updated.penalty_status, PenaltyStatus.LATE_COMPLETED)
        self.assertEqual(self.gamification.kinds(), ["DUTY_LATE_SUBMIT"])

    def test_helper_proof_awards_assist(self) -> None:
        duty = self._duty(TODAY)
        helper_session = SessionContext(member_id=self.helper.id, username=self.helper.username)

        done = submit_duty_proof(self.ctx, duty_id=duty.id, session=helper_session, proof=photo())

        self.assertTrue(done.is_done)
        self.assertEqual(self.gamification.kinds(), ["DUTY_COMPLETE", "DUTY_ASSIST"])
        self.assertEqual(self.gamification.events[0][0], self.member.id)
        self.assertEqual(self.gamification.events[1][0], self.helper.id)
        with self.assertRaises(ApiError) as ctx:
            submit_duty_proof(self.ctx, duty_id=duty.id, session=self.session, proof=photo())
        self.assertEqual(ctx.exception.code, "DUTY_ALREADY_DONE")


class DutyRotationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.members = [add_member(self.db, name) for name in ("arthit", "busaba", "chai")]
        self.ctx = make_context(self.db, FixedClock(datetime(2026, 3, 12, 9, 0, tzinfo=timezone.utc)))

    def tearDown(self) -> None:
        self.db.close()

    def _duties(self) -> list[Duty]:
        return list(self.db.scalars(select(Duty).order_by(Duty.duty_date, Duty.id)).all())

    def test_rotation_mode_covers_every_member_once(self) -> None:
        generate_rotation(self.ctx, start_date=date(2026, 3, 16), mode="ROTATION", weeks=1, rng=random.Random(7))

        duties = self._duties()
        self.assertEqual({duty.assignee_id for duty in duties}, {member.id for member in self.members})
        self.assertEqual([duty.duty_date.day for duty in duties], [16, 17, 18])

    def test_duration_mode_fills_working_days_and_skips_holidays(self) -> None:
        self.db.add(CalendarException(day_date=date(2026, 3, 17), kind=CalendarExceptionKind.HOLIDAY))
        self.db.commit()
        member_ids = [self.members[0].id, self.members[1].id]

        generate_rotation(
            self.ctx,
            start_date=date(2026, 3, 16),
            mode="DURATION",
            weeks=1,
            member_ids=member_ids,
            rng=random.Random(3),
        )

        duties = self._duties()
        days = sorted({duty.duty_date for duty in duties})
        self.assertEqual([day.day for day in days], [16, 18, 19, 20, 23])
        friday = [duty for duty in duties if duty.duty_date == date(2026, 3, 20)]
        self.assertEqual([duty.title for duty in friday], ["Clear the trash", "Mop the floor"])
        self.assertEqual(len({duty.assignee_id for duty in friday}), 2)

    def test_regeneration_replaces_range(self) -> None:
        create_duty(self.db, title="Old", assignee_id=self.members[0].id, duty_date=date(2026, 3, 17))

        generate_rotation(self.ctx, start_date=date(2026, 3, 16), mode="ROTATION", weeks=1, rng=random.Random(1))

        self.assertNotIn("Old", [duty.title for duty in self._duties()])

    def test_custom_config_controls_titles(self) -> None:
        save_duty_config(self.db, day_of_week=1, required_people=2, task_titles=["Dishes", " "])

        generate_rotation(self.ctx, start_date=date(2026, 3, 16), mode="DURATION", weeks=1, rng=random.Random(5))

        monday = [duty.title for duty in self._duties() if duty.duty_date == date(2026, 3, 16)]
        self.assertEqual(monday, ["Dishes", "Dishes (2)"])

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(ApiError) as mode_error:
            generate_rotation(self.ctx, start_date=date(2026, 3, 16), mode="RANDOM", weeks=1)
        with self.assertRaises(ApiError) as config_error:
            save_duty_config(self.db, day_of_week=6, required_people=1, task_titles=[])

        self.assertEqual(mode_error.exception.code, "INVALID_ROTATION_MODE")
        self.assertEqual(config_error.exception.code, "INVALID_DAY_OF_WEEK")

    def test_calendar_without_working_days_stops_scanning(self) -> None:
        every_day = {(day.month, day.day) for day in (date(2024, 1, 1) + timedelta(days=n) for n in range(366))}
        self.db.add_all(AnnualHoliday(name="Closed", month=month, day=day) for month, day in sorted(every_day))
        self.db.commit()

        self.assertEqual(list(WorkingDayCalendar(holidays=every_day).iter_working_days(date(2026, 3, 16))), [])
        with self.assertRaises(ApiError) as ctx:
            generate_rotation(self.ctx, start_date=date(2026, 3, 16), mode="DURATION", weeks=2)
        self.assertEqual(ctx.exception.code, "NO_WORKING_DAYS")
        self.assertEqual(self._duties(), [])


if __name__ == "__main__":
    unittest.main()
