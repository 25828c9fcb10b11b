from django.test import TestCase

from audit.models import AuditEntry
from fulfillment.actors import Actor
from fulfillment.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from fulfillment.rbac import ROLE_FINANCE, ROLE_SCANNER
from fulfillment.tests.fixtures import (
    create_event,
    create_member,
    create_order,
    create_ticket_type,
    issue_paid_order,
)
from payments.models import Order, PaymentEvent
from payments.services import apply_payment_event, build_provider_event_id, normalize_payment_status, refund_order
from tickets.models import TicketInstance


class NormalizePaymentStatusTests(TestCase):
    def test_aliases(self):
        self.assertEqual(normalize_payment_status("Succeeded"), "paid")
        self.assertEqual(normalize_payment_status("declined"), "failed")
        self.assertEqual(normalize_payment_status("canceled"), "cancelled")
        self.assertEqual(normalize_payment_status("expired"), "cancelled")
        self.assertEqual(normalize_payment_status("charged-back"), "refunded")

    def test_unknown_statuses_are_ignored(self):
        self.assertEqual(normalize_payment_status("open"), "ignored")
        self.assertEqual(normalize_payment_status(None), "ignored")

    def test_fallback_event_id(self):
        self.assertEqual(build_provider_event_id("tr_1", " PAID "), "tr_1:paid")


class ApplyPaymentEventTests(TestCase):
    def setUp(self):
        self.event = create_event()
        self.general = create_ticket_type(self.event, capacity=10)
        self.vip = create_ticket_type(self.event, capacity=2, name="VIP")

    def pay(self, order, status="paid", event_id="evt_1", **kwargs):
        return apply_payment_event(
            provider="mockpay",
            event_id=event_id,
            payment_ref=order.payment_ref,
            status=status,
            **kwargs,
        )

    def test_paid_issues_tickets(self):
        order = create_order(self.event, [(self.general, 2), (self.vip, 1)])

        result = self.pay(order, amount="75.00", currency="eur")

        self.assertEqual(result["status"], "PAID")
        self.assertTrue(result["paid"])
        self.assertEqual(result["tickets_issued"], 3)
        self.assertFalse(result["overbooked"])
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.PAID)
        self.assertIsNotNone(order.paid_at)
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 3)
        entry = AuditEntry.objects.get(event_type="orders.paid")
        self.assertEqual(entry.actor_label, "system:payments:mockpay")
        self.assertNotIn("amount_mismatch", entry.metadata)

    def test_duplicate_event_returns_stored_result(self):
        order = create_order(self.event, [(self.general, 2)])
        first = self.pay(order)
        second = self.pay(order)

        self.assertEqual(second, first)
        self.assertEqual(PaymentEvent.objects.count(), 1)
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 2)

    def test_new_event_id_for_paid_order_does_not_duplicate_tickets(self):
        order = create_order(self.event, [(self.general, 2)])
        self.pay(order, event_id="evt_1")
        result = self.pay(order, event_id="evt_2")

        self.assertEqual(result["tickets_issued"], 2)
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 2)
        self.assertEqual(PaymentEvent.objects.count(), 2)
        self.assertFalse(AuditEntry.objects.filter(event_type="tickets.issued").exists())

    def test_paid_order_without_tickets_is_backfilled_and_audited(self):
        order = create_order(self.event, [(self.general, 2)], status=Order.Status.PAID)

        result = self.pay(order)

        self.assertEqual(result["tickets_issued"], 2)
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 2)
        entry = AuditEntry.objects.get(event_type="tickets.issued")
        self.assertEqual(entry.outcome, AuditEntry.Outcome.SUCCESS)
        self.assertEqual(entry.resource_pk, str(order.id))
        self.assertEqual(entry.metadata["created"], 2)
        self.assertEqual(entry.metadata["event_id"], "evt_1")

    def test_blocked_backfill_is_audited_as_failure(self):
        issue_paid_order(self.event, [(self.vip, 1)])
        order = create_order(self.event, [(self.vip, 2)], status=Order.Status.PAID)

        result = self.pay(order)

        self.assertEqual(result["reason"], "CAPACITY_EXCEEDED")
        self.assertEqual(result["tickets_issued"], 0)
        self.assertFalse(TicketInstance.objects.filter(order=order).exists())
        entry = AuditEntry.objects.get(event_type="tickets.issued", resource_pk=str(order.id))
        self.assertEqual(entry.outcome, AuditEntry.Outcome.FAILURE)
        self.assertEqual(entry.reason_code, "CAPACITY_EXCEEDED")
        self.assertEqual(entry.metadata["shortfall"]["requested"], 2)

    def test_missing_event_id_falls_back_to_ref_and_status(self):
        order = create_order(self.event, [(self.general, 1)])
        self.pay(order, event_id="")
        self.pay(order, event_id="")
        event = PaymentEvent.objects.get()
        self.assertEqual(event.provider_event_id, f"{order.payment_ref}:paid")

    def test_overbooking_is_all_or_nothing(self):
        issue_paid_order(self.event, [(self.vip, 1)])
        order = create_order(self.event, [(self.general, 3), (self.vip, 2)])

        result = self.pay(order)

        self.assertTrue(result["overbooked"])
        self.assertFalse(result["paid"])
        self.assertEqual(result["status"], "CANCELLED")
        self.assertEqual(result["ticket_type"], "VIP")
        self.assertEqual(result["available"], 1)
        self.assertEqual(result["requested"], 2)
        order.refresh_from_db()
        self.assertEqual(order.status, Order.Status.CANCELLED)
        self.assertEqual(order.failure_reason, Order.FAILURE_OVERBOOKED)
        self.assertFalse(TicketInstance.objects.filter(order=order).exists())
        self.assertTrue(AuditEntry.objects.filter(event_type="orders.overbooked").exists())

    def test_exact_capacity_is_not_overbooked(self):
        order = create_order(self.event, [(self.vip, 2)])
        result = self.pay(order)
        self.assertTrue(result["paid"])
        self.assertEqual(result["tickets_issued"], 2)

    def test_failed_payment(self):
        order = create_order(self.event, [(self.general, 1)])
        result = self.pay(order, status="failed")

        self.assertEqual(result["status"], "FAILED")
        order.refresh_from_db()
        self.assertEqual(order.failure_reason, Order.FAILURE_PAYMENT_FAILED)

        # A late success for a failed order changes nothing.
        late = self.pay(order, status="paid", event_id="evt_2")
        self.assertEqual(late["status"], "FAILED")
        self.assertEqual(late["reason"], "ORDER_NOT_PENDING")
        self.assertFalse(TicketInstance.objects.filter(order=order).exists())

    def test_failed_draft_is_cancelled(self):
        order = create_order(self.event, [(self.general, 1)], status=Order.Status.DRAFT)
        result = self.pay(order, status="declined")
        self.assertEqual(result["status"], "CANCELLED")

    def test_expired_payment_cancels_order(self):
        order = create_order(self.event, [(self.general, 1)])
        result = self.pay(order, status="expired")
        self.assertEqual(result["status"], "CANCELLED")
        order.refresh_from_db()
        self.assertEqual(order.failure_reason, Order.FAILURE_PAYMENT_EXPIRED)

    def test_refund_event_voids_tickets(self):
        order = create_order(self.event, [(self.general, 2)])
        self.pay(order)
        result = self.pay(order, status="refunded", event_id="evt_refund")

        self.assertEqual(result["status"], "REFUNDED")
        self.assertEqual(result["voided_tickets"], 2)
        self.assertEqual(
            set(TicketInstance.objects.filter(order=order).values_list("status", flat=True)),
            {TicketInstance.Status.VOID},
        )

    def test_unknown_status_is_recorded_but_ignored(self):
        order = create_order(self.event, [(self.general, 1)])
        result = self.pay(order, status="open")
        self.assertEqual(result["reason"], "STATUS_IGNORED")
        self.assertEqual(result["status"], "PENDING")
        self.assertEqual(PaymentEvent.objects.get().normalized_status, "ignored")

    def test_amount_mismatch_is_flagged_not_blocking(self):
        order = create_order(self.event, [(self.general, 1)])
        result = self.pay(order, amount="1.00")

        self.assertTrue(result["paid"])
        entry = AuditEntry.objects.get(event_type="orders.paid")
        self.assertEqual(entry.metadata["amount_mismatch"], {"reported": "1.00", "expected": "25.00"})

    def test_unknown_payment_reference(self):
        with self.assertRaises(NotFoundError) as ctx:
            apply_payment_event(provider="mockpay", event_id="evt_x", payment_ref="nope", status="paid")
        self.assertEqual(ctx.exception.code, "ORDER_NOT_FOUND")
        self.assertFalse(PaymentEvent.objects.exists())
        failure = AuditEntry.objects.get(event_type="payments.event")
        self.assertEqual(failure.chain_id, "platform")
        self.assertEqual(failure.reason_code, "ORDER_NOT_FOUND")

    def test_invalid_amount(self):
        order = create_order(self.event, [(self.general, 1)])
        with self.assertRaises(ValidationError) as ctx:
            self.pay(order, amount="lots")
        self.assertEqual(ctx.exception.code, "INVALID_AMOUNT")


class RefundOrderTests(TestCase):
    def setUp(self):
        self.event = create_event()
        ticket_type = create_ticket_type(self.event, capacity=5)
        self.order, _result = issue_paid_order(self.event, [(ticket_type, 2)])
        self.finance = create_member(self.event.organization, "books", ROLE_FINANCE)

    def test_finance_refunds_and_tickets_are_voided(self):
        result = refund_order(self.order.id, actor=Actor.for_user(self.finance), reason="customer request")

        self.assertEqual(result["status"], "REFUNDED")
        self.assertEqual(result["voided_tickets"], 2)
        self.order.refresh_from_db()
        self.assertIsNotNone(self.order.refunded_at)
        entry = AuditEntry.objects.get(event_type="orders.refunded")
        self.assertEqual(entry.actor, self.finance)
        self.assertEqual(entry.metadata["reason"], "customer request")

        again = refund_order(self.order.id, actor=Actor.for_user(self.finance))
        self.assertEqual(again["reason"], "ALREADY_REFUNDED")

    def test_scanner_cannot_refund(self):
        scanner = create_member(self.event.organization, "door", ROLE_SCANNER)
        with self.assertRaises(AuthorizationError):
            refund_order(self.order.id, actor=Actor.for_user(scanner))
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, Order.Status.PAID)

    def test_pending_order_cannot_be_refunded(self):
        pending = create_order(self.event, [(create_ticket_type(self.event, capacity=1, name="Late"), 1)])
        with self.assertRaises(ConflictError) as ctx:
            refund_order(pending.id, actor=Actor.for_user(self.finance))
        self.assertEqual(ctx.exception.code, "ORDER_NOT_PAID")

    def test_refund_endpoint(self):
        self.client.force_login(self.finance)
        response = self.client.post(
            f"/api/orders/{self.order.id}/refund/",
            data={"reason": "duplicate"},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "REFUNDED")

    def test_refund_endpoint_unknown_order(self):
        self.client.force_login(self.finance)
        response = self.client.post("/api/orders/999999/refund/", data={}, content_type="application/json")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "ORDER_NOT_FOUND")
