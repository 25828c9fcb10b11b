from django.test import TestCase, override_settings

from fulfillment.tests.fixtures import (
    RecordingDispatcher,
    create_event,
    create_ticket_type,
    issue_paid_order,
)


class NotificationDispatchTests(TestCase):
    def setUp(self):
        RecordingDispatcher.calls = []
        self.event = create_event()
        self.ticket_type = create_ticket_type(self.event, capacity=10)

    @override_settings(NOTIFICATION_DISPATCHER="fulfillment.tests.fixtures.RecordingDispatcher")
    def test_tickets_issued_is_sent_after_commit(self):
        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            order, _result = issue_paid_order(self.event, [(self.ticket_type, 2)])
        self.assertEqual(RecordingDispatcher.calls, [])

        for callback in callbacks:
            callback()
        self.assertEqual(RecordingDispatcher.calls, [("tickets_issued", order.id, "ada@example.com", 2)])

    @override_settings(NOTIFICATION_DISPATCHER="fulfillment.tests.fixtures.FailingDispatcher")
    def test_dispatch_failure_does_not_break_issuance(self):
        with self.assertLogs("fulfillment.notifications", level="ERROR"):
            with self.captureOnCommitCallbacks(execute=True):
                order, result = issue_paid_order(self.event, [(self.ticket_type, 1)])
        self.assertEqual(result.created, 1)
        self.assertEqual(order.ticket_instances.count(), 1)
