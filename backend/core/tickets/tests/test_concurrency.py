import threading
from concurrent.futures import ThreadPoolExecutor

from django.db import connection
from django.test import TransactionTestCase, skipUnlessDBFeature

from checkin.models import CheckinRecord, ScanRecord
from checkin.services import scan
from fulfillment.actors import Actor
from fulfillment.rbac import ROLE_SCANNER
from fulfillment.tests.fixtures import (
    create_event,
    create_member,
    create_order,
    create_ticket_type,
    issue_paid_order,
)
from payments.models import Order
from payments.services import apply_payment_event
from tickets.models import TicketInstance

WORKERS = 8


def run_concurrently(func, arguments):
    barrier = threading.Barrier(len(arguments))

    def worker(argument):
        try:
            barrier.wait(timeout=10)
            return func(argument)
        finally:
            connection.close()

    with ThreadPoolExecutor(max_workers=len(arguments)) as executor:
        return list(executor.map(worker, arguments))


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentIssuanceTests(TransactionTestCase):
    def test_capacity_is_never_exceeded(self):
        event = create_event()
        ticket_type = create_ticket_type(event, capacity=3)
        orders = [create_order(event, [(ticket_type, 1)]) for _ in range(WORKERS)]

        results = run_concurrently(
            lambda order: apply_payment_event(
                provider="mockpay",
                event_id=f"evt_{order.id}",
                payment_ref=order.payment_ref,
                status="paid",
            ),
            orders,
        )

        self.assertEqual(sum(1 for result in results if result["paid"]), 3)
        self.assertEqual(sum(1 for result in results if result["overbooked"]), WORKERS - 3)
        self.assertEqual(TicketInstance.objects.filter(ticket_type=ticket_type).count(), 3)
        self.assertEqual(Order.objects.filter(status=Order.Status.CANCELLED).count(), WORKERS - 3)

    def test_duplicate_deliveries_apply_once(self):
        event = create_event()
        ticket_type = create_ticket_type(event, capacity=10)
        order = create_order(event, [(ticket_type, 2)])

        results = run_concurrently(
            lambda _index: apply_payment_event(
                provider="mockpay",
                event_id="evt_same",
                payment_ref=order.payment_ref,
                status="paid",
            ),
            list(range(WORKERS)),
        )

        self.assertTrue(all(result["order_id"] == order.id for result in results))
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 2)


@skipUnlessDBFeature("has_select_for_update")
class ConcurrentScanTests(TransactionTestCase):
    def test_single_admission(self):
        event = create_event()
        ticket_type = create_ticket_type(event, capacity=1)
        scanners = [create_member(event.organization, f"door-{index}", ROLE_SCANNER) for index in range(WORKERS)]
        _order, result = issue_paid_order(event, [(ticket_type, 1)])
        token = result.tickets[0].raw_token

        outcomes = run_concurrently(
            lambda scanner: scan(event.id, token, actor=Actor.for_user(scanner)),
            scanners,
        )

        self.assertEqual(sum(1 for outcome in outcomes if outcome.result == ScanRecord.Result.VALID), 1)
        self.assertEqual(CheckinRecord.objects.filter(ticket_id=result.tickets[0].ticket_id).count(), 1)
        self.assertEqual(ScanRecord.objects.filter(event=event).count(), WORKERS)
