from __future__ import annotations

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils import timezone


class AuditEntry(models.Model):
    """Append-only (immutable) audit entry.

    Entries are tamper-evident through a hash chain per `chain_id`
    (`org:<id>` for organization events, `platform` otherwise). This is an
    application-level guarantee: DB superusers can still mutate rows, and
    `audit.services.verify_audit_chain` is how tampering gets detected.
    """

    class Outcome(models.TextChoices):
        SUCCESS = "SUCCESS", "Success"
        FAILURE = "FAILURE", "Failure"

    organization = models.ForeignKey(
        "organizations.Organization",
        on_delete=models.PROTECT,
        related_name="audit_entries",
        null=True,
        blank=True,
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        related_name="audit_entries",
        null=True,
        blank=True,
    )
    actor_username = models.CharField(max_length=150, blank=True)
    actor_label = models.CharField(max_length=120, blank=True)

    event_type = models.CharField(max_length=120)
    outcome = models.CharField(
        max_length=20,
        choices=Outcome.choices,
        default=Outcome.SUCCESS,
    )
    reason_code = models.CharField(max_length=60, blank=True)
    resource_label = models.CharField(max_length=200)
    resource_pk = models.CharField(max_length=64, blank=True)

    occurred_at = models.DateTimeField(default=timezone.now)
    correlation_id = models.CharField(max_length=64, blank=True)
    ip_address = models.GenericIPAddressField(null=True, blank=True)
    user_agent = models.TextField(blank=True)

    # Hash chain fields (per chain_id).
    chain_id = models.CharField(max_length=80, db_index=True)
    prev_hash = models.CharField(max_length=64, blank=True, default="")
    entry_hash = models.CharField(max_length=64, unique=True)

    data_before = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    data_after = models.JSONField(null=True, blank=True, encoder=DjangoJSONEncoder)
    metadata = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    class Meta:
        ordering = ("-occurred_at", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("chain_id", "prev_hash"),
                name="uq_audit_prev_hash_per_chain",
            ),
            models.UniqueConstraint(
                fields=("chain_id", "entry_hash"),
                name="uq_audit_entry_hash_per_chain",
            ),
        ]
        indexes = [
            models.Index(
                fields=("chain_id", "occurred_at"),
                name="idx_audit_chain_occurred",
            ),
            models.Index(
                fields=("resource_label", "resource_pk"),
                name="idx_audit_resource",
            ),
        ]
        verbose_name = "Audit Entry"
        verbose_name_plural = "Audit Entries"

    def __str__(self) -> str:  # pragma: no cover - admin/debug helper
        return f"{self.occurred_at:%Y-%m-%d %H:%M:%S} [{self.chain_id}] {self.event_type}:{self.outcome}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValidationError("Audit entries are immutable; updates are not allowed.")

        expected_chain = f"org:{self.organization_id}" if self.organization_id else "platform"
        if not self.chain_id:
            self.chain_id = expected_chain
        elif self.chain_id != expected_chain:
            raise ValidationError("chain_id does not match the entry organization.")

        if not self.entry_hash:
            raise ValidationError(
                "entry_hash is required. Use audit.services.append_audit_entry()."
            )

        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Audit entries are immutable; deletes are not allowed.")
