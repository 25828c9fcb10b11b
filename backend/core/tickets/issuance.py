"""Capacity-safe ticket issuance.

`CapacityGate` owns the inventory arithmetic under row locks; `IssuanceEngine`
turns a locked order into ticket instances in two steps (`plan` then
`execute`) so the payment ledger can decide the order's fate between them.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass, field

from django.db import transaction
from django.db.models import Count

from audit.services import append_audit_entry, record_failure
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.db import lock_rows
from fulfillment.errors import ConflictError, FulfillmentError, NotFoundError
from fulfillment.notifications import notify_on_commit
from fulfillment.rbac import ACTION_ORDERS_ISSUE
from fulfillment.tokens import issue_token
from payments.models import Order
from tickets.models import TicketInstance, TicketType

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CapacityShortfall:
    ticket_type_id: int
    ticket_type_name: str
    available: int
    requested: int

    def as_dict(self) -> dict:
        return {
            "ticket_type_id": self.ticket_type_id,
            "ticket_type": self.ticket_type_name,
            "available": self.available,
            "requested": self.requested,
        }


@dataclass(frozen=True, slots=True)
class IssuedTicket:
    ticket_id: int
    ticket_type_id: int
    order_line_id: int
    sequence_no: int
    # Only set for instances created by this call.
    raw_token: str | None = None

    def as_dict(self) -> dict:
        payload = {
            "ticket_id": self.ticket_id,
            "ticket_type_id": self.ticket_type_id,
            "order_line_id": self.order_line_id,
            "sequence_no": self.sequence_no,
        }
        if self.raw_token is not None:
            payload["token"] = self.raw_token
        return payload


@dataclass(slots=True)
class LinePlan:
    line: object
    existing_sequences: set = field(default_factory=set)

    @property
    def missing(self) -> int:
        return max(self.line.quantity - len(self.existing_sequences), 0)


@dataclass(slots=True)
class IssuancePlan:
    order: Order
    lines: list
    shortfall: CapacityShortfall | None = None

    @property
    def missing_total(self) -> int:
        return sum(line_plan.missing for line_plan in self.lines)


@dataclass(frozen=True, slots=True)
class IssuanceResult:
    order_id: int
    tickets: tuple
    created: int
    shortfall: CapacityShortfall | None = None

    @property
    def overbooked(self) -> bool:
        return self.shortfall is not None

    def as_dict(self) -> dict:
        payload = {
            "order_id": self.order_id,
            "created": self.created,
            "overbooked": self.overbooked,
            "tickets": [ticket.as_dict() for ticket in self.tickets],
        }
        if self.shortfall is not None:
            payload["shortfall"] = self.shortfall.as_dict()
        return payload


class CapacityGate:
    """Counts sold inventory under locks.

    Ticket-type rows are always locked in ascending id order so concurrent
    orders touching overlapping types cannot deadlock.
    """

    def lock_ticket_types(self, ticket_type_ids) -> "OrderedDict[int, TicketType]":
        queryset = lock_rows(TicketType.objects.filter(id__in=set(ticket_type_ids)).order_by("id"))
        return OrderedDict((ticket_type.id, ticket_type) for ticket_type in queryset)

    def sold_counts(self, ticket_type_ids) -> dict:
        rows = (
            TicketInstance.objects.filter(
                ticket_type_id__in=set(ticket_type_ids),
                status__in=TicketInstance.SOLD_STATUSES,
            )
            .values("ticket_type_id")
            .annotate(sold=Count("id"))
        )
        return {row["ticket_type_id"]: row["sold"] for row in rows}

    def check(self, demand: dict) -> CapacityShortfall | None:
        """Return the first shortfall for `{ticket_type_id: quantity}`, or None."""

        if not demand:
            return None
        ticket_types = self.lock_ticket_types(demand.keys())
        sold = self.sold_counts(ticket_types.keys())
        for ticket_type_id, ticket_type in ticket_types.items():
            requested = demand[ticket_type_id]
            available = max(ticket_type.capacity_total - sold.get(ticket_type_id, 0), 0)
            if requested > available:
                return CapacityShortfall(
                    ticket_type_id=ticket_type_id,
                    ticket_type_name=ticket_type.name,
                    available=available,
                    requested=requested,
                )
        return None


class IssuanceEngine:
    def __init__(self, gate: CapacityGate | None = None):
        self.gate = gate or CapacityGate()

    def plan(self, order: Order) -> IssuancePlan:
        """Compute missing instances per line and consult the capacity gate.

        The caller must hold the order row lock.
        """

        lines = list(order.lines.select_related("ticket_type").order_by("id"))
        existing = {}
        for line_id, sequence_no in TicketInstance.objects.filter(
            order_line__in=lines
        ).values_list("order_line_id", "sequence_no"):
            existing.setdefault(line_id, set()).add(sequence_no)

        line_plans = [LinePlan(line=line, existing_sequences=existing.get(line.id, set())) for line in lines]

        demand = {}
        for line_plan in line_plans:
            if line_plan.missing:
                type_id = line_plan.line.ticket_type_id
                demand[type_id] = demand.get(type_id, 0) + line_plan.missing

        return IssuancePlan(order=order, lines=line_plans, shortfall=self.gate.check(demand))

    def execute(self, plan: IssuancePlan) -> IssuanceResult:
        if plan.shortfall is not None:
            raise ConflictError(
                "Not enough capacity left for this order.",
                code="CAPACITY_EXCEEDED",
                details=plan.shortfall.as_dict(),
            )

        order = plan.order
        created = []
        for line_plan in plan.lines:
            line = line_plan.line
            for sequence_no in range(1, line.quantity + 1):
                if sequence_no in line_plan.existing_sequences:
                    continue
                raw_token, token_hash = issue_token()
                instance = TicketInstance.objects.create(
                    ticket_type_id=line.ticket_type_id,
                    event_id=order.event_id,
                    order=order,
                    order_line=line,
                    sequence_no=sequence_no,
                    owner_user_id=order.purchaser_user_id,
                    owner_email=order.purchaser_email,
                    owner_name=order.purchaser_name,
                    token_hash=token_hash,
                    status=TicketInstance.Status.ISSUED,
                )
                created.append(
                    IssuedTicket(
                        ticket_id=instance.id,
                        ticket_type_id=line.ticket_type_id,
                        order_line_id=line.id,
                        sequence_no=sequence_no,
                        raw_token=raw_token,
                    )
                )

        created_ids = {ticket.ticket_id for ticket in created}
        existing = [
            IssuedTicket(
                ticket_id=instance.id,
                ticket_type_id=instance.ticket_type_id,
                order_line_id=instance.order_line_id,
                sequence_no=instance.sequence_no,
            )
            for instance in TicketInstance.objects.filter(order=order).exclude(id__in=created_ids)
        ]
        tickets = sorted(existing + created, key=lambda t: (t.order_line_id, t.sequence_no))

        if created:
            notify_on_commit(
                "tickets_issued",
                order_id=order.id,
                recipient_email=order.purchaser_email,
                tickets=list(created),
            )

        logger.info(
            "tickets.issuance.executed order_id=%s created=%s total=%s",
            order.id,
            len(created),
            len(tickets),
        )
        return IssuanceResult(order_id=order.id, tickets=tuple(tickets), created=len(created))

    def issue(self, order: Order) -> IssuanceResult:
        return self.execute(self.plan(order))


def lock_order(order_id) -> Order:
    order = (
        lock_rows(Order.objects.select_related("event", "event__organization"))
        .filter(id=order_id)
        .first()
    )
    if order is None:
        raise NotFoundError(
            "Order not found.",
            code="ORDER_NOT_FOUND",
            details={"order_id": order_id},
        )
    return order


def issue_tickets_for_order(order_id, *, actor: Actor | None = None) -> IssuanceResult:
    """Issue every missing ticket for a paid order (backfill / re-issue).

    Re-invoking this for an order whose tickets already exist inserts nothing
    and returns the existing instances. A paid order cannot be cancelled, so
    a capacity shortfall here raises `ConflictError(CAPACITY_EXCEEDED)` and
    changes nothing.
    """

    actor = actor or Actor.system("issuance")
    organization = None
    try:
        with transaction.atomic():
            order = lock_order(order_id)
            organization = order.event.organization
            authorize(actor, organization, ACTION_ORDERS_ISSUE)

            if order.status != Order.Status.PAID:
                raise ConflictError(
                    "Tickets can only be issued for paid orders.",
                    code="ORDER_NOT_PAID",
                    details={"order_id": order.id, "status": order.status},
                )

            result = IssuanceEngine().issue(order)
            if result.created:
                append_audit_entry(
                    organization=organization,
                    actor=actor,
                    event_type="tickets.issued",
                    resource_label="payments.Order",
                    resource_pk=order.id,
                    data_after={"tickets": [ticket.ticket_id for ticket in result.tickets]},
                    metadata={"created": result.created},
                )
            return result
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="tickets.issued",
            resource_label="payments.Order",
            resource_pk=order_id,
            error=exc,
        )
        raise
