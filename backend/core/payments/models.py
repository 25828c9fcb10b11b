from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class Order(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        PENDING = "PENDING", "Pending payment"
        PAID = "PAID", "Paid"
        FAILED = "FAILED", "Failed"
        CANCELLED = "CANCELLED", "Cancelled"
        REFUNDED = "REFUNDED", "Refunded"

    TRANSITIONS = {
        Status.DRAFT: frozenset((Status.PENDING, Status.CANCELLED)),
        Status.PENDING: frozenset((Status.PAID, Status.FAILED, Status.CANCELLED)),
        # Once paid, the only way forward is a refund.
        Status.PAID: frozenset((Status.REFUNDED,)),
        Status.FAILED: frozenset(),
        Status.CANCELLED: frozenset(),
        Status.REFUNDED: frozenset(),
    }

    FAILURE_OVERBOOKED = "OVERBOOKED"
    FAILURE_PAYMENT_FAILED = "PAYMENT_FAILED"
    FAILURE_PAYMENT_EXPIRED = "PAYMENT_EXPIRED"

    event = models.ForeignKey(
        "organizations.Event",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    currency = models.CharField(max_length=3, default="EUR")
    subtotal = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    discount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    total = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    purchaser_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="ticket_orders",
        null=True,
        blank=True,
    )
    purchaser_email = models.EmailField()
    purchaser_name = models.CharField(max_length=200, blank=True)

    payment_provider = models.CharField(max_length=40, blank=True)
    payment_ref = models.CharField(max_length=120, blank=True)
    failure_reason = models.CharField(max_length=40, blank=True)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    paid_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    refunded_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at", "-id")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total=models.F("subtotal") - models.F("discount")),
                name="ck_order_total_matches",
            ),
            models.CheckConstraint(
                condition=models.Q(discount__lte=models.F("subtotal")),
                name="ck_order_discount_lte_subtotal",
            ),
            models.UniqueConstraint(
                fields=("payment_provider", "payment_ref"),
                condition=~models.Q(payment_ref=""),
                name="uq_order_payment_ref_per_provider",
            ),
        ]
        indexes = [
            models.Index(
                fields=("event", "status"),
                name="idx_order_event_status",
            ),
        ]
        verbose_name = "Order"
        verbose_name_plural = "Orders"

    def __str__(self) -> str:
        return f"Order #{self.id} ({self.status})"

    def can_transition_to(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self.status, frozenset())

    def clean(self):
        super().clean()
        if self.subtotal is not None and self.discount is not None:
            if self.discount > self.subtotal:
                raise ValidationError({"discount": "Discount cannot exceed subtotal."})
            self.total = self.subtotal - self.discount


class OrderLine(models.Model):
    order = models.ForeignKey(
        Order,
        on_delete=models.CASCADE,
        related_name="lines",
    )
    ticket_type = models.ForeignKey(
        "tickets.TicketType",
        on_delete=models.PROTECT,
        related_name="order_lines",
    )
    quantity = models.PositiveIntegerField()
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0.00"))

    class Meta:
        ordering = ("order_id", "id")
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="ck_order_line_quantity_positive",
            ),
        ]
        verbose_name = "Order Line"
        verbose_name_plural = "Order Lines"

    def __str__(self) -> str:
        return f"{self.quantity} x {self.ticket_type_id}"


class PaymentEvent(models.Model):
    """Append-only record of every distinct payment notification.

    `(provider, provider_event_id)` is the idempotency key; `result` is the
    outcome computed on first delivery and replayed for duplicates.
    """

    provider = models.CharField(max_length=40)
    provider_event_id = models.CharField(max_length=200)
    payment_ref = models.CharField(max_length=120)
    status_raw = models.CharField(max_length=40)
    normalized_status = models.CharField(max_length=20, blank=True)
    amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    currency = models.CharField(max_length=3, blank=True)
    order = models.ForeignKey(
        Order,
        on_delete=models.PROTECT,
        related_name="payment_events",
        null=True,
        blank=True,
    )
    payload = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    result = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)
    received_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ("-received_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("provider", "provider_event_id"),
                name="uq_payment_event_provider_event",
            ),
        ]
        indexes = [
            models.Index(
                fields=("provider", "payment_ref"),
                name="idx_payment_event_ref",
            ),
        ]
        verbose_name = "Payment Event"
        verbose_name_plural = "Payment Events"

    def __str__(self) -> str:
        return f"{self.provider}:{self.provider_event_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError("Payment events are immutable; updates are not allowed.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Payment events are immutable; deletes are not allowed.")
