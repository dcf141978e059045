from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from service_harness import FixedClock, RecordingNotifier, add_member, make_context, make_session
from shiftdesk.errors import ApiError
from shiftdesk.models import Duty, RequestStatus
from shiftdesk.security import SessionContext
from shiftdesk.services.duties import create_duty
from shiftdesk.services.swaps import list_sent_swaps, list_swap_inbox, propose_swap, respond_to_swap


class DutySwapTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.alice = add_member(self.db, "alice")
        self.bob = add_member(self.db, "bob")
        self.carol = add_member(self.db, "carol")
        self.alice_session = SessionContext(member_id=self.alice.id, username="alice")
        self.bob_session = SessionContext(member_id=self.bob.id, username="bob")
        self.carol_session = SessionContext(member_id=self.carol.id, username="carol")
        self.notifier = RecordingNotifier()
        self.ctx = make_context(
            self.db,
            FixedClock(datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)),
            notifier=self.notifier,
        )
        self.alice_duty = create_duty(self.db, title="Trash", assignee_id=self.alice.id, duty_date=date(2026, 3, 12))
        self.bob_duty = create_duty(self.db, title="Mop", assignee_id=self.bob.id, duty_date=date(2026, 3, 13))

    def tearDown(self) -> None:
        self.db.close()

    def _propose(self):
        return propose_swap(
            self.ctx,
            session=self.alice_session,
            own_duty_id=self.alice_duty.id,
            target_duty_id=self.bob_duty.id,
        )

    def test_accepted_swap_exchanges_assignees(self) -> None:
        swap = self._propose()
        self.assertEqual(swap.status, RequestStatus.PENDING)
        self.assertEqual(self.notifier.notices[-1][0], self.bob.id)

        answered = respond_to_swap(self.ctx, session=self.bob_session, swap_id=swap.id, accept=True)

        self.assertEqual(answered.status, RequestStatus.APPROVED)
        self.assertEqual(self.db.get(Duty, self.alice_duty.id).assignee_id, self.bob.id)
        self.assertEqual(self.db.get(Duty, self.bob_duty.id).assignee_id, self.alice.id)
        self.assertEqual(self.notifier.notices[-1][0], self.alice.id)

    def test_rejected_swap_leaves_duties_untouched(self) -> None:
        swap = self._propose()

        answered = respond_to_swap(self.ctx, session=self.bob_session, swap_id=swap.id, accept=False)

        self.assertEqual(answered.status, RequestStatus.REJECTED)
        self.assertEqual(self.db.get(Duty, self.alice_duty.id).assignee_id, self.alice.id)
        self.assertEqual(self.db.get(Duty, self.bob_duty.id).assignee_id, self.bob.id)
        with self.assertRaises(ApiError) as ctx:
            respond_to_swap(self.ctx, session=self.bob_session, swap_id=swap.id, accept=True)
        self.assertEqual(ctx.exception.code, "SWAP_NOT_PENDING")

    def test_only_target_assignee_may_answer(self) -> None:
        swap = self._propose()

        with self.assertRaises(ApiError) as ctx:
            respond_to_swap(self.ctx, session=self.carol_session, swap_id=swap.id, accept=True)

        self.assertEqual(ctx.exception.code, "NOT_SWAP_TARGET")
        self.assertEqual(self.db.get(Duty, self.alice_duty.id).assignee_id, self.alice.id)

    def test_cannot_offer_someone_elses_duty(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            propose_swap(
                self.ctx,
                session=self.carol_session,
                own_duty_id=self.alice_duty.id,
                target_duty_id=self.bob_duty.id,
            )
        self.assertEqual(ctx.exception.code, "NOT_DUTY_OWNER")

    def test_invalid_pairs(self) -> None:
        second_alice = create_duty(self.db, title="Dishes", assignee_id=self.alice.id, duty_date=date(2026, 3, 16))
        past_bob = create_duty(self.db, title="Plants", assignee_id=self.bob.id, duty_date=date(2026, 3, 9))
        done_bob = create_duty(self.db, title="Windows", assignee_id=self.bob.id, duty_date=date(2026, 3, 17))
        done_bob.is_done = True
        self.db.commit()

        for target in (second_alice, past_bob, done_bob):
            with self.subTest(target=target.title):
                with self.assertRaises(ApiError) as ctx:
                    propose_swap(
                        self.ctx,
                        session=self.alice_session,
                        own_duty_id=self.alice_duty.id,
                        target_duty_id=target.id,
                    )
                self.assertEqual(ctx.exception.code, "SWAP_INVALID")

        with self.assertRaises(ApiError) as missing:
            propose_swap(self.ctx, session=self.alice_session, own_duty_id=self.alice_duty.id, target_duty_id=9999)
        self.assertEqual(missing.exception.code, "DUTY_NOT_FOUND")

    def test_duplicate_pending_swap(self) -> None:
        self._propose()
        with self.assertRaises(ApiError) as ctx:
            self._propose()
        self.assertEqual(ctx.exception.code, "SWAP_ALREADY_PENDING")

    def test_inbox_and_sent_lists(self) -> None:
        swap = self._propose()

        self.assertEqual([row.id for row in list_swap_inbox(self.db, user_id=self.bob.id)], [swap.id])
        self.assertEqual(list_swap_inbox(self.db, user_id=self.alice.id), [])
        self.assertEqual([row.id for row in list_sent_swaps(self.db, user_id=self.alice.id)], [swap.id])

        respond_to_swap(self.ctx, session=self.bob_session, swap_id=swap.id, accept=False)
        self.assertEqual(list_swap_inbox(self.db, user_id=self.bob.id), [])


if __name__ == "__main__":
    unittest.main()
