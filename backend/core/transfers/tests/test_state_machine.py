from datetime import timedelta

from django.test import TestCase
from django.utils import timezone

from fulfillment.errors import ConflictError
from fulfillment.tests.fixtures import create_event, create_ticket_type, issue_paid_order
from transfers.models import Transfer
from transfers.state_machine import TERMINAL_STATUSES, apply_transition, can_transition, ensure_transition


class TransitionTableTests(TestCase):
    def test_pending_moves_to_every_terminal_state(self):
        for target in TERMINAL_STATUSES:
            self.assertTrue(can_transition(Transfer.Status.PENDING, target))

    def test_terminal_states_are_final(self):
        for current in TERMINAL_STATUSES:
            for target in Transfer.Status.values:
                self.assertFalse(can_transition(current, target), (current, target))


class ApplyTransitionTests(TestCase):
    def setUp(self):
        event = create_event()
        ticket_type = create_ticket_type(event, capacity=1)
        _order, result = issue_paid_order(event, [(ticket_type, 1)])
        now = timezone.now()
        self.transfer = Transfer.objects.create(
            ticket_id=result.tickets[0].ticket_id,
            to_email="friend@example.com",
            token_hash="a" * 64,
            initiated_at=now,
            expires_at=now + timedelta(hours=1),
        )

    def test_repeat_request_is_a_noop(self):
        self.assertTrue(apply_transition(self.transfer, Transfer.Status.REJECTED))
        self.assertEqual(self.transfer.status, Transfer.Status.REJECTED)
        self.assertIsNotNone(self.transfer.rejected_at)
        self.assertFalse(ensure_transition(self.transfer, Transfer.Status.REJECTED))

    def test_illegal_move_raises_conflict(self):
        apply_transition(self.transfer, Transfer.Status.CANCELLED, cancel_reason="changed mind")
        with self.assertRaises(ConflictError) as ctx:
            ensure_transition(self.transfer, Transfer.Status.ACCEPTED)
        self.assertEqual(ctx.exception.code, "TRANSFER_NOT_PENDING")

    def test_compare_and_swap_loses_to_concurrent_writer(self):
        Transfer.objects.filter(id=self.transfer.id).update(status=Transfer.Status.EXPIRED)

        self.assertFalse(apply_transition(self.transfer, Transfer.Status.ACCEPTED))
        self.assertEqual(self.transfer.status, Transfer.Status.PENDING)
        self.transfer.refresh_from_db()
        self.assertEqual(self.transfer.status, Transfer.Status.EXPIRED)
        self.assertIsNone(self.transfer.accepted_at)
