"""Builders shared by the fulfillment test suites."""

import itertools
from decimal import Decimal

from django.contrib.auth import get_user_model

from fulfillment.actors import Actor
from fulfillment.notifications import NotificationDispatcher
from organizations.models import Event, EventSetting, Organization, OrganizationMembership
from payments.models import Order, OrderLine
from tickets.issuance import issue_tickets_for_order
from tickets.models import TicketType

_sequence = itertools.count(1)


def create_user(username: str, **kwargs):
    kwargs.setdefault("email", f"{username}@example.com")
    kwargs.setdefault("password", "test-pass-123")
    return get_user_model().objects.create_user(username=username, **kwargs)


def create_member(organization, username: str, role: str, **kwargs):
    user = create_user(username, **kwargs)
    OrganizationMembership.objects.create(organization=organization, user=user, role=role)
    return user


def create_organization(slug: str = "", **kwargs):
    slug = slug or f"org-{next(_sequence)}"
    kwargs.setdefault("name", slug.replace("-", " ").title())
    return Organization.objects.create(slug=slug, **kwargs)


def create_event(organization=None, slug: str = ""):
    organization = organization or create_organization()
    slug = slug or f"event-{next(_sequence)}"
    return Event.objects.create(organization=organization, name=slug.title(), slug=slug)


def set_event_settings(event, domain: str, values: dict):
    EventSetting.objects.update_or_create(event=event, domain=domain, defaults={"values": values})


def create_ticket_type(event, *, capacity: int, name: str = "General Admission", price=Decimal("25.00")):
    return TicketType.objects.create(
        event=event,
        name=name,
        capacity_total=capacity,
        price=price,
        status=TicketType.Status.ON_SALE,
    )


def create_order(
    event,
    items,
    *,
    status=Order.Status.PENDING,
    provider: str = "mockpay",
    payment_ref: str = "",
    purchaser=None,
    purchaser_email: str = "ada@example.com",
    purchaser_name: str = "Ada Lovelace",
):
    """Create an order with one line per `(ticket_type, quantity)` item."""

    subtotal = sum((ticket_type.price * quantity for ticket_type, quantity in items), Decimal("0.00"))
    order = Order.objects.create(
        event=event,
        status=status,
        subtotal=subtotal,
        total=subtotal,
        purchaser_user=purchaser,
        purchaser_email=purchaser_email,
        purchaser_name=purchaser_name,
        payment_provider=provider,
        payment_ref=payment_ref or f"pay_{next(_sequence)}",
    )
    for ticket_type, quantity in items:
        OrderLine.objects.create(
            order=order,
            ticket_type=ticket_type,
            quantity=quantity,
            unit_price=ticket_type.price,
        )
    return order


def issue_paid_order(event, items, **kwargs):
    """Create a PAID order and issue its tickets; returns `(order, IssuanceResult)`."""

    order = create_order(event, items, status=Order.Status.PAID, **kwargs)
    result = issue_tickets_for_order(order.id, actor=Actor.system("tests"))
    return order, result


class RecordingDispatcher(NotificationDispatcher):
    calls = []

    def tickets_issued(self, *, order_id, recipient_email, tickets):
        self.calls.append(("tickets_issued", order_id, recipient_email, len(tickets)))

    def transfer_initiated(self, *, transfer_id, to_email, raw_token, expires_at):
        self.calls.append(("transfer_initiated", transfer_id, to_email, raw_token))

    def transfer_accepted(self, *, transfer_id, from_email, to_email, raw_token):
        self.calls.append(("transfer_accepted", transfer_id, from_email, to_email, raw_token))


class FailingDispatcher(RecordingDispatcher):
    def tickets_issued(self, *, order_id, recipient_email, tickets):
        raise ConnectionError("mail relay unavailable")
