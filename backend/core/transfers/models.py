from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone


class Transfer(models.Model):
    """Offer to move a ticket to another person, redeemable with a one-time token."""

    class Status(models.TextChoices):
        PENDING = "PENDING", "Pending"
        ACCEPTED = "ACCEPTED", "Accepted"
        REJECTED = "REJECTED", "Rejected"
        CANCELLED = "CANCELLED", "Cancelled"
        EXPIRED = "EXPIRED", "Expired"

    ticket = models.ForeignKey(
        "tickets.TicketInstance",
        on_delete=models.PROTECT,
        related_name="transfers",
    )
    from_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="transfers_sent",
        null=True,
        blank=True,
    )
    from_email = models.EmailField(blank=True)
    from_name = models.CharField(max_length=200, blank=True)

    to_email = models.EmailField()
    to_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="transfers_received",
        null=True,
        blank=True,
        help_text="Explicit recipient account linked when the transfer was initiated.",
    )

    token_hash = models.CharField(max_length=64, unique=True)
    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    expires_at = models.DateTimeField()

    initiated_at = models.DateTimeField(default=timezone.now)
    initiated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    accepted_at = models.DateTimeField(null=True, blank=True)
    accepted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    rejected_at = models.DateTimeField(null=True, blank=True)
    rejected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancelled_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    cancel_reason = models.CharField(max_length=255, blank=True)
    expired_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-initiated_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("ticket",),
                condition=models.Q(status="PENDING"),
                name="uq_transfer_single_pending_per_ticket",
            ),
            models.CheckConstraint(
                condition=models.Q(expires_at__gt=models.F("initiated_at")),
                name="ck_transfer_expires_after_initiated",
            ),
        ]
        indexes = [
            models.Index(
                fields=("status", "expires_at"),
                name="idx_transfer_status_expiry",
            ),
        ]
        verbose_name = "Transfer"
        verbose_name_plural = "Transfers"

    def __str__(self) -> str:
        return f"Transfer #{self.id} ticket={self.ticket_id} ({self.status})"

    def is_expired(self, now=None) -> bool:
        return (now or timezone.now()) >= self.expires_at
