from django.test import TestCase

from audit.models import AuditEntry
from fulfillment.actors import Actor
from fulfillment.errors import AuthorizationError, ConflictError, NotFoundError
from fulfillment.rbac import ROLE_ADMIN, ROLE_SUPPORT
from fulfillment.tests.fixtures import (
    create_event,
    create_member,
    create_order,
    create_ticket_type,
    issue_paid_order,
)
from fulfillment.tokens import hash_token
from payments.models import Order
from tickets.issuance import CapacityGate, IssuanceEngine, issue_tickets_for_order
from tickets.models import TicketInstance


class CapacityGateTests(TestCase):
    def setUp(self):
        self.event = create_event()
        self.ticket_type = create_ticket_type(self.event, capacity=3)

    def test_counts_issued_and_checked_in_but_not_void(self):
        _order, result = issue_paid_order(self.event, [(self.ticket_type, 3)])
        first, second, _third = [ticket.ticket_id for ticket in result.tickets]
        TicketInstance.objects.filter(id=first).update(status=TicketInstance.Status.VOID)
        TicketInstance.objects.filter(id=second).update(status=TicketInstance.Status.CHECKED_IN)

        gate = CapacityGate()
        self.assertEqual(gate.sold_counts([self.ticket_type.id]), {self.ticket_type.id: 2})
        self.assertIsNone(gate.check({self.ticket_type.id: 1}))

        shortfall = gate.check({self.ticket_type.id: 2})
        self.assertEqual(shortfall.available, 1)
        self.assertEqual(shortfall.requested, 2)
        self.assertEqual(shortfall.ticket_type_name, "General Admission")

    def test_empty_demand_always_fits(self):
        self.assertIsNone(CapacityGate().check({}))


class IssuanceEngineTests(TestCase):
    def setUp(self):
        self.event = create_event()
        self.general = create_ticket_type(self.event, capacity=5)
        self.vip = create_ticket_type(self.event, capacity=2, name="VIP")

    def test_issues_one_instance_per_unit_with_unique_tokens(self):
        order, result = issue_paid_order(self.event, [(self.general, 3), (self.vip, 2)])

        self.assertEqual(result.created, 5)
        self.assertFalse(result.overbooked)
        instances = TicketInstance.objects.filter(order=order)
        self.assertEqual(instances.count(), 5)
        self.assertEqual(
            sorted(instances.filter(ticket_type=self.general).values_list("sequence_no", flat=True)),
            [1, 2, 3],
        )
        tokens = [ticket.raw_token for ticket in result.tickets]
        self.assertEqual(len(set(tokens)), 5)
        for ticket in result.tickets:
            instance = instances.get(id=ticket.ticket_id)
            self.assertEqual(instance.token_hash, hash_token(ticket.raw_token))
            self.assertEqual(instance.owner_email, "ada@example.com")
            self.assertEqual(instance.status, TicketInstance.Status.ISSUED)

    def test_exact_capacity_is_allowed(self):
        _order, result = issue_paid_order(self.event, [(self.vip, 2)])
        self.assertEqual(result.created, 2)
        self.assertEqual(CapacityGate().check({self.vip.id: 1}).available, 0)

    def test_reissue_is_idempotent(self):
        order, first = issue_paid_order(self.event, [(self.general, 2)])
        second = issue_tickets_for_order(order.id, actor=Actor.system("tests"))

        self.assertEqual(second.created, 0)
        self.assertEqual(TicketInstance.objects.filter(order=order).count(), 2)
        self.assertEqual(
            [ticket.ticket_id for ticket in second.tickets],
            [ticket.ticket_id for ticket in first.tickets],
        )
        # Tokens are only revealed once.
        self.assertTrue(all(ticket.raw_token is None for ticket in second.tickets))
        self.assertEqual(
            AuditEntry.objects.filter(event_type="tickets.issued", resource_pk=str(order.id)).count(),
            1,
        )

    def test_backfill_creates_only_missing_sequences(self):
        order, result = issue_paid_order(self.event, [(self.general, 3)])
        missing = result.tickets[1]
        TicketInstance.objects.filter(id=missing.ticket_id).delete()

        backfill = issue_tickets_for_order(order.id)
        self.assertEqual(backfill.created, 1)
        self.assertEqual(
            sorted(TicketInstance.objects.filter(order=order).values_list("sequence_no", flat=True)),
            [1, 2, 3],
        )

    def test_shortfall_issues_nothing(self):
        issue_paid_order(self.event, [(self.vip, 1)])
        order = create_order(self.event, [(self.general, 1), (self.vip, 2)], status=Order.Status.PAID)

        with self.assertRaises(ConflictError) as ctx:
            issue_tickets_for_order(order.id)
        self.assertEqual(ctx.exception.code, "CAPACITY_EXCEEDED")
        self.assertEqual(ctx.exception.details["ticket_type_id"], self.vip.id)
        self.assertFalse(TicketInstance.objects.filter(order=order).exists())
        self.assertTrue(
            AuditEntry.objects.filter(
                event_type="tickets.issued",
                outcome=AuditEntry.Outcome.FAILURE,
                reason_code="CAPACITY_EXCEEDED",
            ).exists()
        )

    def test_plan_reports_shortfall_without_writing(self):
        order = create_order(self.event, [(self.vip, 3)], status=Order.Status.PAID)
        plan = IssuanceEngine().plan(order)
        self.assertEqual(plan.missing_total, 3)
        self.assertEqual(plan.shortfall.available, 2)
        self.assertFalse(TicketInstance.objects.exists())

    def test_requires_paid_order(self):
        order = create_order(self.event, [(self.general, 1)])
        with self.assertRaises(ConflictError) as ctx:
            issue_tickets_for_order(order.id)
        self.assertEqual(ctx.exception.code, "ORDER_NOT_PAID")

    def test_unknown_order(self):
        with self.assertRaises(NotFoundError):
            issue_tickets_for_order(999999)


class IssueTicketsAPITests(TestCase):
    def setUp(self):
        self.event = create_event()
        self.ticket_type = create_ticket_type(self.event, capacity=5)
        self.admin = create_member(self.event.organization, "box-office", ROLE_ADMIN)
        self.support = create_member(self.event.organization, "helpdesk", ROLE_SUPPORT)
        self.order = create_order(self.event, [(self.ticket_type, 2)], status=Order.Status.PAID)

    def test_admin_issues_then_reissue_returns_existing(self):
        self.client.force_login(self.admin)
        url = f"/api/orders/{self.order.id}/issue/"

        response = self.client.post(url)
        self.assertEqual(response.status_code, 201)
        payload = response.json()
        self.assertEqual(payload["created"], 2)
        self.assertTrue(all("token" in ticket for ticket in payload["tickets"]))

        response = self.client.post(url)
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["created"], 0)
        self.assertTrue(all("token" not in ticket for ticket in payload["tickets"]))

    def test_support_role_is_forbidden(self):
        self.client.force_login(self.support)
        response = self.client.post(f"/api/orders/{self.order.id}/issue/")
        self.assertEqual(response.status_code, 403)
        self.assertFalse(TicketInstance.objects.exists())

    def test_service_rejects_support_role(self):
        with self.assertRaises(AuthorizationError):
            issue_tickets_for_order(self.order.id, actor=Actor.for_user(self.support))
