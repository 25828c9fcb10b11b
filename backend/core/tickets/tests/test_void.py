from django.test import TestCase

from audit.models import AuditEntry
from fulfillment.actors import Actor
from fulfillment.errors import AuthorizationError, ConflictError
from fulfillment.rbac import ROLE_ADMIN, ROLE_SCANNER
from fulfillment.tests.fixtures import create_event, create_member, create_ticket_type, issue_paid_order
from tickets.models import TicketInstance
from tickets.services import void_ticket
from transfers.models import Transfer
from transfers.services import initiate_transfer


class VoidTicketTests(TestCase):
    def setUp(self):
        self.event = create_event()
        self.ticket_type = create_ticket_type(self.event, capacity=5)
        self.admin = create_member(self.event.organization, "admin", ROLE_ADMIN)
        self.scanner = create_member(self.event.organization, "scanner", ROLE_SCANNER)
        _order, result = issue_paid_order(self.event, [(self.ticket_type, 1)])
        self.ticket_id = result.tickets[0].ticket_id

    def test_void_marks_ticket_and_audits(self):
        ticket = void_ticket(self.ticket_id, actor=Actor.for_user(self.admin), reason="duplicate purchase")

        self.assertEqual(ticket.status, TicketInstance.Status.VOID)
        ticket.refresh_from_db()
        self.assertEqual(ticket.void_reason, "duplicate purchase")
        self.assertEqual(ticket.voided_by, self.admin)
        self.assertIsNotNone(ticket.voided_at)
        entry = AuditEntry.objects.get(event_type="tickets.voided", resource_pk=str(self.ticket_id))
        self.assertEqual(entry.data_before["status"], "ISSUED")
        self.assertEqual(entry.data_after["status"], "VOID")

    def test_void_is_idempotent(self):
        void_ticket(self.ticket_id, actor=Actor.for_user(self.admin))
        void_ticket(self.ticket_id, actor=Actor.for_user(self.admin))
        self.assertEqual(AuditEntry.objects.filter(event_type="tickets.voided").count(), 1)

    def test_checked_in_ticket_cannot_be_voided(self):
        TicketInstance.objects.filter(id=self.ticket_id).update(status=TicketInstance.Status.CHECKED_IN)
        with self.assertRaises(ConflictError) as ctx:
            void_ticket(self.ticket_id, actor=Actor.for_user(self.admin))
        self.assertEqual(ctx.exception.code, "TICKET_NOT_ISSUED")

    def test_void_cancels_pending_transfer(self):
        initiation = initiate_transfer(self.ticket_id, "friend@example.com", actor=Actor.for_user(self.admin))
        void_ticket(self.ticket_id, actor=Actor.for_user(self.admin))

        transfer = Transfer.objects.get(id=initiation.transfer_id)
        self.assertEqual(transfer.status, Transfer.Status.CANCELLED)
        self.assertEqual(transfer.cancel_reason, "TICKET_VOIDED")

    def test_scanner_cannot_void(self):
        with self.assertRaises(AuthorizationError):
            void_ticket(self.ticket_id, actor=Actor.for_user(self.scanner))
        self.assertEqual(TicketInstance.objects.get(id=self.ticket_id).status, TicketInstance.Status.ISSUED)
        self.assertTrue(
            AuditEntry.objects.filter(
                event_type="tickets.voided",
                outcome=AuditEntry.Outcome.FAILURE,
                reason_code="ROLE_NOT_ALLOWED",
            ).exists()
        )

    def test_void_endpoint(self):
        self.client.force_login(self.admin)
        response = self.client.post(
            f"/api/tickets/{self.ticket_id}/void/",
            data={"reason": "chargeback"},
            content_type="application/json",
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "VOID")
        self.assertEqual(payload["void_reason"], "chargeback")
