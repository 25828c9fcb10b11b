from __future__ import annotations

import logging

from django.db import transaction
from django.utils import timezone

from audit.services import append_audit_entry, record_failure
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.db import lock_rows
from fulfillment.errors import ConflictError, FulfillmentError, NotFoundError
from fulfillment.rbac import ACTION_TICKETS_VOID
from tickets.models import TicketInstance
from transfers.services import cancel_pending_transfer_for_ticket

logger = logging.getLogger(__name__)


def lock_ticket(ticket_id) -> TicketInstance:
    ticket = (
        lock_rows(TicketInstance.objects.select_related("event", "event__organization", "ticket_type"))
        .filter(id=ticket_id)
        .first()
    )
    if ticket is None:
        raise NotFoundError(
            "Ticket not found.",
            code="TICKET_NOT_FOUND",
            details={"ticket_id": ticket_id},
        )
    return ticket


def void_locked_ticket(ticket: TicketInstance, *, actor: Actor, reason: str = "") -> bool:
    """Void an issued ticket the caller already holds a lock on.

    Returns False when the ticket is already void. Any pending transfer of the
    ticket is cancelled in the same transaction.
    """

    if ticket.status == TicketInstance.Status.VOID:
        return False
    if not ticket.can_transition_to(TicketInstance.Status.VOID):
        raise ConflictError(
            "Only issued tickets can be voided.",
            code="TICKET_NOT_ISSUED",
            details={"ticket_id": ticket.id, "status": ticket.status},
        )

    before = ticket.snapshot()
    now = timezone.now()
    ticket.status = TicketInstance.Status.VOID
    ticket.voided_at = now
    ticket.voided_by = actor.user if actor.is_authenticated else None
    ticket.void_reason = (reason or "")[:255]
    ticket.save(update_fields=["status", "voided_at", "voided_by", "void_reason", "updated_at"])

    cancel_pending_transfer_for_ticket(ticket, actor=actor, reason="TICKET_VOIDED")

    append_audit_entry(
        organization=ticket.event.organization,
        actor=actor,
        event_type="tickets.voided",
        resource_label="tickets.TicketInstance",
        resource_pk=ticket.id,
        data_before=before,
        data_after=ticket.snapshot(),
        metadata={"reason": ticket.void_reason, "order_id": ticket.order_id},
    )
    logger.info("tickets.voided ticket_id=%s order_id=%s", ticket.id, ticket.order_id)
    return True


def void_ticket(ticket_id, *, actor: Actor, reason: str = "") -> TicketInstance:
    organization = None
    try:
        with transaction.atomic():
            ticket = lock_ticket(ticket_id)
            organization = ticket.event.organization
            authorize(actor, organization, ACTION_TICKETS_VOID)
            void_locked_ticket(ticket, actor=actor, reason=reason)
            return ticket
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="tickets.voided",
            resource_label="tickets.TicketInstance",
            resource_pk=ticket_id,
            error=exc,
        )
        raise
