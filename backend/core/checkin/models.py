from __future__ import annotations

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone


class ScanRecord(models.Model):
    """Append-only log of every scan attempt, including rejections and undos.

    Rate limits and scan statistics are derived from these rows.
    """

    class Result(models.TextChoices):
        VALID = "VALID", "Valid"
        INVALID = "INVALID", "Invalid"
        ALREADY_USED = "ALREADY_USED", "Already used"
        NOT_IN_EVENT = "NOT_IN_EVENT", "Not in event"
        CANCELLED = "CANCELLED", "Cancelled"
        RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED", "Rate limit exceeded"
        UNDO = "UNDO", "Undo"

    event = models.ForeignKey(
        "organizations.Event",
        on_delete=models.PROTECT,
        related_name="scan_records",
    )
    ticket = models.ForeignKey(
        "tickets.TicketInstance",
        on_delete=models.PROTECT,
        related_name="scan_records",
        null=True,
        blank=True,
    )
    scanned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="scan_records",
        null=True,
        blank=True,
    )
    device_id = models.CharField(max_length=120, blank=True)
    token_hash = models.CharField(max_length=64, blank=True)
    result = models.CharField(max_length=30, choices=Result.choices)
    reason = models.CharField(max_length=40, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)
    correlation_id = models.CharField(max_length=64, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    scanned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ("-scanned_at", "-id")
        indexes = [
            models.Index(fields=("event", "scanned_at"), name="idx_scan_event_time"),
            models.Index(fields=("scanned_by", "scanned_at"), name="idx_scan_actor_time"),
            models.Index(fields=("device_id", "scanned_at"), name="idx_scan_device_time"),
        ]
        verbose_name = "Scan Record"
        verbose_name_plural = "Scan Records"

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.scanned_at:%Y-%m-%d %H:%M:%S} {self.result}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError("Scan records are immutable; updates are not allowed.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Scan records are immutable; deletes are not allowed.")


class CheckinRecord(models.Model):
    """Permanent fact that a ticket was admitted.

    Rows are never edited except for the one-time undo stamp; at most one
    standing (not undone) record exists per ticket.
    """

    UNDO_FIELDS = frozenset(("undone_at", "undone_by", "undo_reason"))

    ticket = models.ForeignKey(
        "tickets.TicketInstance",
        on_delete=models.PROTECT,
        related_name="checkin_records",
    )
    event = models.ForeignKey(
        "organizations.Event",
        on_delete=models.PROTECT,
        related_name="checkin_records",
    )
    scan = models.OneToOneField(
        ScanRecord,
        on_delete=models.PROTECT,
        related_name="checkin_record",
    )
    checked_in_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    device_id = models.CharField(max_length=120, blank=True)
    checked_in_at = models.DateTimeField(default=timezone.now)

    undone_at = models.DateTimeField(null=True, blank=True)
    undone_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="+",
        null=True,
        blank=True,
    )
    undo_reason = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ("-checked_in_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("ticket",),
                condition=models.Q(undone_at__isnull=True),
                name="uq_checkin_standing_per_ticket",
            ),
        ]
        verbose_name = "Check-in Record"
        verbose_name_plural = "Check-in Records"

    def __str__(self) -> str:  # pragma: no cover
        return f"Check-in ticket={self.ticket_id} at {self.checked_in_at:%Y-%m-%d %H:%M:%S}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            update_fields = kwargs.get("update_fields")
            if not update_fields or not set(update_fields) <= self.UNDO_FIELDS:
                raise ValidationError(
                    "Check-in records are immutable; only the undo stamp may be set."
                )
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Check-in records are immutable; deletes are not allowed.")
