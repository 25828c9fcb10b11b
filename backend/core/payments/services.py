from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEntry
from audit.services import append_audit_entry, record_failure
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.db import lock_rows
from fulfillment.errors import ConflictError, FulfillmentError, NotFoundError, ValidationError
from fulfillment.rbac import ACTION_ORDERS_REFUND
from payments.models import Order, PaymentEvent
from tickets.issuance import IssuanceEngine, lock_order
from tickets.models import TicketInstance
from tickets.services import void_locked_ticket

logger = logging.getLogger(__name__)

PAYMENT_STATUS_PAID = "paid"
PAYMENT_STATUS_FAILED = "failed"
PAYMENT_STATUS_CANCELLED = "cancelled"
PAYMENT_STATUS_REFUNDED = "refunded"
PAYMENT_STATUS_IGNORED = "ignored"

PAYMENT_STATUS_ALIASES = {
    "paid": PAYMENT_STATUS_PAID,
    "succeeded": PAYMENT_STATUS_PAID,
    "success": PAYMENT_STATUS_PAID,
    "completed": PAYMENT_STATUS_PAID,
    "authorized": PAYMENT_STATUS_PAID,
    "failed": PAYMENT_STATUS_FAILED,
    "declined": PAYMENT_STATUS_FAILED,
    "expired": PAYMENT_STATUS_CANCELLED,
    "canceled": PAYMENT_STATUS_CANCELLED,
    "cancelled": PAYMENT_STATUS_CANCELLED,
    "refunded": PAYMENT_STATUS_REFUNDED,
    "charged_back": PAYMENT_STATUS_REFUNDED,
}


def normalize_payment_status(value) -> str:
    """Map provider status strings into the small set the ledger acts upon.

    Unknown statuses (ex: `open`, `pending`) normalize to `ignored` and never
    mutate an order.
    """

    raw = str(value or "").strip().lower().replace("-", "_")
    return PAYMENT_STATUS_ALIASES.get(raw, PAYMENT_STATUS_IGNORED)


def build_provider_event_id(payment_ref: str, status: str) -> str:
    """Fallback idempotency key for providers that do not send event ids."""

    return f"{payment_ref}:{str(status or '').strip().lower()}"


def _parse_amount(amount) -> Decimal | None:
    if amount in (None, ""):
        return None
    try:
        return Decimal(str(amount)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(
            "amount must be a decimal number.",
            code="INVALID_AMOUNT",
            details={"amount": str(amount)},
        ) from exc


def _result(order: Order, **extra) -> dict:
    payload = {
        "order_id": order.id,
        "status": order.status,
        "paid": order.status == Order.Status.PAID,
        "tickets_issued": 0,
        "overbooked": False,
    }
    payload.update(extra)
    return payload


def _audit_order(order: Order, *, actor: Actor, event_type: str, before_status: str, metadata=None):
    append_audit_entry(
        organization=order.event.organization,
        actor=actor,
        event_type=event_type,
        resource_label="payments.Order",
        resource_pk=order.id,
        data_before={"status": before_status},
        data_after={"status": order.status, "failure_reason": order.failure_reason},
        metadata=metadata or {},
    )


def _transition(order: Order, target: str, **fields) -> bool:
    """Compare-and-swap the order status from its current value to `target`."""

    if not order.can_transition_to(target):
        return False
    now = timezone.now()
    updated = Order.objects.filter(id=order.id, status=order.status).update(
        status=target,
        updated_at=now,
        **fields,
    )
    if updated:
        order.status = target
        for key, value in fields.items():
            setattr(order, key, value)
    return bool(updated)


def _void_order_tickets(order: Order, *, actor: Actor, reason: str) -> int:
    voided = 0
    tickets = lock_rows(
        TicketInstance.objects.select_related("event", "event__organization").filter(
            order=order,
            status=TicketInstance.Status.ISSUED,
        ).order_by("id")
    )
    for ticket in tickets:
        if void_locked_ticket(ticket, actor=actor, reason=reason):
            voided += 1
    return voided


def _apply_paid(order: Order, *, actor: Actor, metadata: dict) -> dict:
    engine = IssuanceEngine()

    if order.status == Order.Status.PAID:
        # Duplicate success notification with a fresh event id: re-issue is idempotent.
        plan = engine.plan(order)
        if plan.shortfall is not None:
            logger.error(
                "payments.order.backfill_blocked order_id=%s ticket_type_id=%s available=%s requested=%s",
                order.id,
                plan.shortfall.ticket_type_id,
                plan.shortfall.available,
                plan.shortfall.requested,
            )
            append_audit_entry(
                organization=order.event.organization,
                actor=actor,
                event_type="tickets.issued",
                resource_label="payments.Order",
                resource_pk=order.id,
                outcome=AuditEntry.Outcome.FAILURE,
                reason_code="CAPACITY_EXCEEDED",
                metadata={**metadata, "shortfall": plan.shortfall.as_dict()},
            )
            existing = TicketInstance.objects.filter(order=order).count()
            return _result(
                order,
                tickets_issued=existing,
                reason="CAPACITY_EXCEEDED",
                shortfall=plan.shortfall.as_dict(),
            )
        issuance = engine.execute(plan)
        if issuance.created:
            append_audit_entry(
                organization=order.event.organization,
                actor=actor,
                event_type="tickets.issued",
                resource_label="payments.Order",
                resource_pk=order.id,
                data_after={"tickets": [ticket.ticket_id for ticket in issuance.tickets]},
                metadata={**metadata, "created": issuance.created},
            )
        return _result(order, tickets_issued=len(issuance.tickets))

    if order.status not in (Order.Status.PENDING, Order.Status.DRAFT):
        logger.warning(
            "payments.order.paid_ignored order_id=%s status=%s",
            order.id,
            order.status,
        )
        return _result(order, reason="ORDER_NOT_PENDING")

    before_status = order.status
    plan = engine.plan(order)
    if plan.shortfall is not None:
        now = timezone.now()
        _transition(
            order,
            Order.Status.CANCELLED,
            failure_reason=Order.FAILURE_OVERBOOKED,
            cancelled_at=now,
        )
        _void_order_tickets(order, actor=actor, reason=Order.FAILURE_OVERBOOKED)
        _audit_order(
            order,
            actor=actor,
            event_type="orders.overbooked",
            before_status=before_status,
            metadata={**metadata, "shortfall": plan.shortfall.as_dict()},
        )
        logger.warning(
            "payments.order.overbooked order_id=%s ticket_type_id=%s available=%s requested=%s",
            order.id,
            plan.shortfall.ticket_type_id,
            plan.shortfall.available,
            plan.shortfall.requested,
        )
        return _result(
            order,
            overbooked=True,
            ticket_type=plan.shortfall.ticket_type_name,
            ticket_type_id=plan.shortfall.ticket_type_id,
            available=plan.shortfall.available,
            requested=plan.shortfall.requested,
        )

    if order.status == Order.Status.DRAFT:
        _transition(order, Order.Status.PENDING)
    if not _transition(order, Order.Status.PAID, paid_at=timezone.now(), failure_reason=""):
        raise ConflictError(
            "Order changed state while being settled.",
            code="ORDER_STATE_CHANGED",
            details={"order_id": order.id},
        )

    issuance = engine.execute(plan)
    _audit_order(
        order,
        actor=actor,
        event_type="orders.paid",
        before_status=before_status,
        metadata={**metadata, "tickets_issued": issuance.created},
    )
    return _result(order, tickets_issued=len(issuance.tickets))


def _apply_failure(order: Order, normalized: str, *, actor: Actor, metadata: dict) -> dict:
    if order.status not in (Order.Status.PENDING, Order.Status.DRAFT):
        logger.info(
            "payments.order.failure_ignored order_id=%s status=%s payment_status=%s",
            order.id,
            order.status,
            normalized,
        )
        return _result(order, reason="ORDER_NOT_PENDING")

    before_status = order.status
    if normalized == PAYMENT_STATUS_FAILED:
        reason = Order.FAILURE_PAYMENT_FAILED
        target = Order.Status.FAILED if order.status == Order.Status.PENDING else Order.Status.CANCELLED
    else:
        target, reason = Order.Status.CANCELLED, Order.FAILURE_PAYMENT_EXPIRED
    _transition(order, target, failure_reason=reason, cancelled_at=timezone.now())

    # A racing retry may have created instances; they must not stay valid.
    voided = _void_order_tickets(order, actor=actor, reason=reason)
    _audit_order(
        order,
        actor=actor,
        event_type="orders.payment_failed",
        before_status=before_status,
        metadata={**metadata, "voided_tickets": voided},
    )
    return _result(order)


def refund_locked_order(order: Order, *, actor: Actor, reason: str = "", metadata=None) -> dict:
    if order.status == Order.Status.REFUNDED:
        return _result(order, reason="ALREADY_REFUNDED")
    if order.status != Order.Status.PAID:
        raise ConflictError(
            "Only paid orders can be refunded.",
            code="ORDER_NOT_PAID",
            details={"order_id": order.id, "status": order.status},
        )

    before_status = order.status
    _transition(order, Order.Status.REFUNDED, refunded_at=timezone.now())
    voided = _void_order_tickets(order, actor=actor, reason=reason or "REFUNDED")
    _audit_order(
        order,
        actor=actor,
        event_type="orders.refunded",
        before_status=before_status,
        metadata={**(metadata or {}), "voided_tickets": voided, "reason": reason},
    )
    logger.info("payments.order.refunded order_id=%s voided=%s", order.id, voided)
    return _result(order, voided_tickets=voided)


def apply_payment_event(
    *,
    provider: str,
    event_id: str,
    payment_ref: str,
    status: str,
    amount=None,
    currency: str = "",
    payload: dict | None = None,
    actor: Actor | None = None,
) -> dict:
    """Apply a payment provider notification to its order exactly once.

    Args:
        provider: Provider identifier (ex: `mollie`).
        event_id: Provider event id; with `provider` it forms the idempotency key.
        payment_ref: Provider payment reference stored on the order.
        status: Raw provider status; see `normalize_payment_status`.
        amount/currency: Reported amount; mismatches are flagged, never blocking.

    Returns:
        `{order_id, status, paid, tickets_issued, overbooked, ...}`. Repeated
        deliveries of the same event return the stored result unchanged.
    """

    provider = (provider or "").strip().lower()
    event_id = (event_id or "").strip()
    payment_ref = (payment_ref or "").strip()
    if not provider or not payment_ref:
        raise ValidationError(
            "provider and payment_ref are required.",
            code="INVALID_PAYMENT_EVENT",
        )
    if not event_id:
        event_id = build_provider_event_id(payment_ref, status)

    actor = actor or Actor.system(f"payments:{provider}")
    normalized = normalize_payment_status(status)
    reported_amount = _parse_amount(amount)
    currency = (currency or "").strip().upper()[:3]
    organization = None

    existing = PaymentEvent.objects.filter(provider=provider, provider_event_id=event_id).first()
    if existing is not None:
        logger.info(
            "payments.event.duplicate provider=%s event_id=%s order_id=%s",
            provider,
            event_id,
            existing.order_id,
        )
        return existing.result

    try:
        with transaction.atomic():
            order = (
                lock_rows(Order.objects.select_related("event", "event__organization"))
                .filter(payment_provider=provider, payment_ref=payment_ref)
                .first()
            )
            if order is None:
                raise NotFoundError(
                    "No order for this payment reference.",
                    code="ORDER_NOT_FOUND",
                    details={"provider": provider, "payment_ref": payment_ref},
                )
            organization = order.event.organization

            metadata = {"provider": provider, "event_id": event_id, "payment_status": normalized}
            if reported_amount is not None and reported_amount != order.total:
                metadata["amount_mismatch"] = {"reported": reported_amount, "expected": order.total}
            if currency and currency != order.currency:
                metadata["currency_mismatch"] = {"reported": currency, "expected": order.currency}
            if "amount_mismatch" in metadata or "currency_mismatch" in metadata:
                logger.warning(
                    "payments.event.amount_mismatch order_id=%s provider=%s event_id=%s",
                    order.id,
                    provider,
                    event_id,
                )

            if normalized == PAYMENT_STATUS_PAID:
                result = _apply_paid(order, actor=actor, metadata=metadata)
            elif normalized in (PAYMENT_STATUS_FAILED, PAYMENT_STATUS_CANCELLED):
                result = _apply_failure(order, normalized, actor=actor, metadata=metadata)
            elif normalized == PAYMENT_STATUS_REFUNDED:
                if order.status == Order.Status.PAID:
                    result = refund_locked_order(order, actor=actor, reason="REFUNDED", metadata=metadata)
                else:
                    result = _result(order, reason="ORDER_NOT_PAID")
            else:
                result = _result(order, reason="STATUS_IGNORED")

            PaymentEvent.objects.create(
                provider=provider,
                provider_event_id=event_id,
                payment_ref=payment_ref,
                status_raw=str(status or "")[:40],
                normalized_status=normalized,
                amount=reported_amount,
                currency=currency,
                order=order,
                payload=payload or {},
                result=result,
            )
    except IntegrityError:
        # A concurrent delivery of the same event committed first.
        duplicate = PaymentEvent.objects.filter(provider=provider, provider_event_id=event_id).first()
        if duplicate is None:
            raise
        logger.info(
            "payments.event.duplicate provider=%s event_id=%s order_id=%s",
            provider,
            event_id,
            duplicate.order_id,
        )
        return duplicate.result
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="payments.event",
            resource_label="payments.PaymentEvent",
            resource_pk=f"{provider}:{event_id}"[:64],
            error=exc,
        )
        raise

    logger.info(
        "payments.event.applied provider=%s event_id=%s order_id=%s payment_status=%s order_status=%s tickets=%s",
        provider,
        event_id,
        result["order_id"],
        normalized,
        result["status"],
        result["tickets_issued"],
    )
    return result


def refund_order(order_id, *, actor: Actor, reason: str = "") -> dict:
    organization = None
    try:
        with transaction.atomic():
            order = lock_order(order_id)
            organization = order.event.organization
            authorize(actor, organization, ACTION_ORDERS_REFUND)
            return refund_locked_order(order, actor=actor, reason=reason)
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="orders.refunded",
            resource_label="payments.Order",
            resource_pk=order_id,
            error=exc,
        )
        raise
