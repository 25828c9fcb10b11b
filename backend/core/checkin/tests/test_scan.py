from unittest.mock import patch

from django.test import TestCase

from audit.models import AuditEntry
from checkin.models import CheckinRecord, ScanRecord
from checkin.services import scan
from fulfillment.actors import Actor
from fulfillment.errors import AuthorizationError, ConflictError, ValidationError
from fulfillment.rbac import ROLE_ADMIN, ROLE_FINANCE, ROLE_SCANNER
from fulfillment.tests.fixtures import (
    create_event,
    create_member,
    create_ticket_type,
    issue_paid_order,
    set_event_settings,
)
from tickets.models import TicketInstance


class ScanTestMixin:
    def setUp(self):
        self.event = create_event()
        self.ticket_type = create_ticket_type(self.event, capacity=10)
        self.scanner = create_member(self.event.organization, "door-1", ROLE_SCANNER)
        self.admin = create_member(self.event.organization, "admin", ROLE_ADMIN)
        _order, result = issue_paid_order(self.event, [(self.ticket_type, 3)])
        self.tickets = result.tickets
        self.token = self.tickets[0].raw_token
        self.scanner_actor = Actor.for_user(self.scanner)


class ScanOutcomeTests(ScanTestMixin, TestCase):
    def test_valid_then_already_used(self):
        first = scan(self.event.id, self.token, actor=self.scanner_actor, device_id="gate-a")

        self.assertEqual(first.result, ScanRecord.Result.VALID)
        self.assertEqual(first.reason, "")
        self.assertEqual(first.ticket["id"], self.tickets[0].ticket_id)
        ticket = TicketInstance.objects.get(id=self.tickets[0].ticket_id)
        self.assertEqual(ticket.status, TicketInstance.Status.CHECKED_IN)
        self.assertEqual(ticket.checked_in_by, self.scanner)
        checkin = CheckinRecord.objects.get(ticket=ticket)
        self.assertEqual(checkin.scan_id, first.scan_id)
        self.assertEqual(checkin.device_id, "gate-a")

        second = scan(self.event.id, self.token, actor=self.scanner_actor, device_id="gate-b")
        self.assertEqual(second.result, ScanRecord.Result.ALREADY_USED)
        self.assertEqual(second.reason, "STATUS_CHECKED_IN")
        self.assertIsNotNone(second.ticket["checked_in_at"])
        self.assertEqual(CheckinRecord.objects.filter(ticket=ticket).count(), 1)
        self.assertEqual(ScanRecord.objects.filter(ticket=ticket).count(), 2)

    def test_unknown_token(self):
        outcome = scan(self.event.id, "not-a-ticket", actor=self.scanner_actor)
        self.assertEqual(outcome.result, ScanRecord.Result.INVALID)
        self.assertEqual(outcome.reason, "TOKEN_NOT_FOUND")
        self.assertIsNone(outcome.ticket)
        record = ScanRecord.objects.get(id=outcome.scan_id)
        self.assertIsNone(record.ticket)
        self.assertEqual(len(record.token_hash), 64)

    def test_ticket_for_another_event(self):
        other_event = create_event(organization=self.event.organization)
        outcome = scan(other_event.id, self.token, actor=self.scanner_actor)

        self.assertEqual(outcome.result, ScanRecord.Result.NOT_IN_EVENT)
        self.assertEqual(outcome.reason, "EVENT_MISMATCH")
        self.assertEqual(
            TicketInstance.objects.get(id=self.tickets[0].ticket_id).status,
            TicketInstance.Status.ISSUED,
        )

    def test_void_ticket(self):
        TicketInstance.objects.filter(id=self.tickets[0].ticket_id).update(status=TicketInstance.Status.VOID)
        outcome = scan(self.event.id, self.token, actor=self.scanner_actor)
        self.assertEqual(outcome.result, ScanRecord.Result.CANCELLED)
        self.assertEqual(outcome.reason, "STATUS_VOID")

    def test_scans_are_not_hash_chained(self):
        scan(self.event.id, self.token, actor=self.scanner_actor)
        self.assertFalse(AuditEntry.objects.filter(event_type__startswith="checkin").exists())

    def test_finance_cannot_scan(self):
        finance = create_member(self.event.organization, "books", ROLE_FINANCE)
        with self.assertRaises(AuthorizationError):
            scan(self.event.id, self.token, actor=Actor.for_user(finance))
        self.assertFalse(ScanRecord.objects.exists())

    def test_blank_token(self):
        with self.assertRaises(ValidationError) as ctx:
            scan(self.event.id, "   ", actor=self.scanner_actor)
        self.assertEqual(ctx.exception.code, "TOKEN_REQUIRED")


class ScanPolicyTests(ScanTestMixin, TestCase):
    def test_user_rate_limit(self):
        set_event_settings(self.event, "scanning", {"rate_limit": {"per_minute": 2}})

        results = [scan(self.event.id, "unknown", actor=self.scanner_actor).result for _ in range(3)]

        self.assertEqual(results[:2], [ScanRecord.Result.INVALID, ScanRecord.Result.INVALID])
        self.assertEqual(results[2], ScanRecord.Result.RATE_LIMIT_EXCEEDED)
        limited = ScanRecord.objects.get(result=ScanRecord.Result.RATE_LIMIT_EXCEEDED)
        self.assertEqual(limited.reason, "USER_LIMIT")

        # A limited attempt never admits the ticket.
        outcome = scan(self.event.id, self.token, actor=self.scanner_actor)
        self.assertEqual(outcome.result, ScanRecord.Result.RATE_LIMIT_EXCEEDED)
        self.assertEqual(
            TicketInstance.objects.get(id=self.tickets[0].ticket_id).status,
            TicketInstance.Status.ISSUED,
        )

    def test_device_rate_limit_spans_users(self):
        set_event_settings(self.event, "scanning", {"rate_limit": {"per_device_per_minute": 1}})
        other = create_member(self.event.organization, "door-2", ROLE_SCANNER)

        scan(self.event.id, "unknown", actor=self.scanner_actor, device_id="gate-a")
        outcome = scan(self.event.id, "unknown", actor=Actor.for_user(other), device_id="gate-a")
        self.assertEqual(outcome.result, ScanRecord.Result.RATE_LIMIT_EXCEEDED)
        self.assertEqual(outcome.reason, "DEVICE_LIMIT")

        outcome = scan(self.event.id, "unknown", actor=Actor.for_user(other), device_id="gate-b")
        self.assertEqual(outcome.result, ScanRecord.Result.INVALID)

    def test_scanning_disabled(self):
        set_event_settings(self.event, "scanning", {"enabled": False})
        with self.assertRaises(ConflictError) as ctx:
            scan(self.event.id, self.token, actor=self.scanner_actor)
        self.assertEqual(ctx.exception.code, "SCANNING_DISABLED")
        self.assertTrue(
            AuditEntry.objects.filter(event_type="checkin.scan", reason_code="SCANNING_DISABLED").exists()
        )

    def test_device_id_required(self):
        set_event_settings(self.event, "scanning", {"require_device_id": True})
        with self.assertRaises(ValidationError) as ctx:
            scan(self.event.id, self.token, actor=self.scanner_actor)
        self.assertEqual(ctx.exception.code, "DEVICE_ID_REQUIRED")

        outcome = scan(self.event.id, self.token, actor=self.scanner_actor, device_id="gate-a")
        self.assertEqual(outcome.result, ScanRecord.Result.VALID)


class HolderMaskingTests(ScanTestMixin, TestCase):
    def holder(self, actor, token):
        return scan(self.event.id, token, actor=actor).ticket

    def test_masked_by_default(self):
        ticket = self.holder(self.scanner_actor, self.token)
        self.assertEqual(ticket["holder_name"], "A. L***")
        self.assertEqual(ticket["holder_email"], "a***@example.com")

    def test_none_hides_holder(self):
        set_event_settings(self.event, "scanning", {"response": {"pii_level": "none"}})
        ticket = self.holder(self.scanner_actor, self.token)
        self.assertNotIn("holder_name", ticket)
        self.assertNotIn("holder_email", ticket)

    def test_full_for_admin_only_reveals_to_admins(self):
        set_event_settings(self.event, "scanning", {"response": {"pii_level": "full-for-admin"}})

        ticket = self.holder(Actor.for_user(self.admin), self.token)
        self.assertEqual(ticket["holder_name"], "Ada Lovelace")
        self.assertEqual(ticket["holder_email"], "ada@example.com")

        ticket = self.holder(self.scanner_actor, self.tickets[1].raw_token)
        self.assertEqual(ticket["holder_email"], "a***@example.com")

    def test_unknown_level_falls_back_to_masked(self):
        set_event_settings(self.event, "scanning", {"response": {"pii_level": "everything"}})
        ticket = self.holder(Actor.for_user(self.admin), self.token)
        self.assertEqual(ticket["holder_name"], "A. L***")

    def test_stored_holder_data_is_untouched(self):
        self.holder(self.scanner_actor, self.token)
        ticket = TicketInstance.objects.get(id=self.tickets[0].ticket_id)
        self.assertEqual(ticket.owner_email, "ada@example.com")


class LockedTicketTests(ScanTestMixin, TestCase):
    def test_concurrently_locked_ticket_is_retryable_miss(self):
        with patch("checkin.services.skip_locked_supported", return_value=True), patch(
            "checkin.services.lock_rows",
            side_effect=lambda queryset, **kwargs: queryset.none(),
        ):
            outcome = scan(self.event.id, self.token, actor=self.scanner_actor)

        self.assertEqual(outcome.result, ScanRecord.Result.INVALID)
        self.assertEqual(outcome.reason, "LOCKED")
        self.assertTrue(outcome.as_dict()["retryable"])
        self.assertEqual(
            TicketInstance.objects.get(id=self.tickets[0].ticket_id).status,
            TicketInstance.Status.ISSUED,
        )
