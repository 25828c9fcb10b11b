from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone


class TicketType(models.Model):
    class Status(models.TextChoices):
        DRAFT = "DRAFT", "Draft"
        ON_SALE = "ON_SALE", "On sale"
        PAUSED = "PAUSED", "Paused"
        CLOSED = "CLOSED", "Closed"

    event = models.ForeignKey(
        "organizations.Event",
        on_delete=models.PROTECT,
        related_name="ticket_types",
    )
    name = models.CharField(max_length=120)
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    capacity_total = models.PositiveIntegerField()
    sales_start = models.DateTimeField(null=True, blank=True)
    sales_end = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.DRAFT,
        db_index=True,
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("event_id", "id")
        verbose_name = "Ticket Type"
        verbose_name_plural = "Ticket Types"

    def __str__(self) -> str:
        return f"{self.name} ({self.capacity_total})"


class TicketInstance(models.Model):
    """A single admission, created only by the issuance engine.

    Lifecycle: ISSUED -> CHECKED_IN (scan), ISSUED -> VOID (void/refund),
    CHECKED_IN -> ISSUED (admin undo, when the event allows it).
    """

    class Status(models.TextChoices):
        ISSUED = "ISSUED", "Issued"
        VOID = "VOID", "Void"
        CHECKED_IN = "CHECKED_IN", "Checked in"

    TRANSITIONS = {
        Status.ISSUED: frozenset((Status.CHECKED_IN, Status.VOID)),
        Status.CHECKED_IN: frozenset((Status.ISSUED,)),
        Status.VOID: frozenset(),
    }

    # Statuses that consume capacity.
    SOLD_STATUSES = (Status.ISSUED, Status.CHECKED_IN)

    ticket_type = models.ForeignKey(
        TicketType,
        on_delete=models.PROTECT,
        related_name="instances",
    )
    event = models.ForeignKey(
        "organizations.Event",
        on_delete=models.PROTECT,
        related_name="ticket_instances",
    )
    order = models.ForeignKey(
        "payments.Order",
        on_delete=models.PROTECT,
        related_name="ticket_instances",
    )
    order_line = models.ForeignKey(
        "payments.OrderLine",
        on_delete=models.PROTECT,
        related_name="ticket_instances",
    )
    sequence_no = models.PositiveIntegerField()

    owner_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="owned_tickets",
        null=True,
        blank=True,
    )
    owner_email = models.EmailField(blank=True)
    owner_name = models.CharField(max_length=200, blank=True)

    token_hash = models.CharField(max_length=64, unique=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.ISSUED,
    )
    issued_at = models.DateTimeField(default=timezone.now)

    checked_in_at = models.DateTimeField(null=True, blank=True)
    checked_in_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="checked_in_tickets",
        null=True,
        blank=True,
    )

    voided_at = models.DateTimeField(null=True, blank=True)
    voided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="voided_tickets",
        null=True,
        blank=True,
    )
    void_reason = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("order_id", "order_line_id", "sequence_no")
        constraints = [
            models.UniqueConstraint(
                fields=("order_line", "sequence_no"),
                name="uq_ticket_instance_line_sequence",
            ),
            models.CheckConstraint(
                condition=models.Q(sequence_no__gte=1),
                name="ck_ticket_instance_sequence_positive",
            ),
        ]
        indexes = [
            models.Index(
                fields=("ticket_type", "status"),
                name="idx_ticket_type_status",
            ),
            models.Index(
                fields=("event", "status"),
                name="idx_ticket_event_status",
            ),
        ]
        verbose_name = "Ticket"
        verbose_name_plural = "Tickets"

    def __str__(self) -> str:
        return f"Ticket #{self.id} ({self.status})"

    def can_transition_to(self, target: str) -> bool:
        return target in self.TRANSITIONS.get(self.status, frozenset())

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "status": self.status,
            "owner_user_id": self.owner_user_id,
            "checked_in_at": self.checked_in_at,
        }
