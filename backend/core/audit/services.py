from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass

from django.core.serializers.json import DjangoJSONEncoder
from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.models import AuditEntry
from fulfillment.actors import Actor
from fulfillment.errors import FulfillmentError

logger = logging.getLogger(__name__)

CHAIN_RETRY_ATTEMPTS = 5

# Postgres reports the constraint name, SQLite the constrained columns.
CHAIN_CONFLICT_MARKERS = (
    "uq_audit_prev_hash_per_chain",
    "uq_audit_entry_hash_per_chain",
    "audit_auditentry_entry_hash",
    "audit_auditentry.prev_hash",
    "audit_auditentry.entry_hash",
)


def _canonical_json(value) -> str:
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def _as_stored(value):
    """Return `value` exactly as the JSONField will read it back."""

    if value is None:
        return None
    return json.loads(json.dumps(value, cls=DjangoJSONEncoder))


def _build_entry_hash(payload: dict, prev_hash: str) -> str:
    payload_json = _canonical_json(payload)
    material = f"{prev_hash}{payload_json}".encode("utf-8")
    return hashlib.sha256(material).hexdigest()


def _hash_payload(entry: AuditEntry) -> dict:
    return {
        "chain_id": entry.chain_id,
        "organization_id": entry.organization_id,
        "actor_id": entry.actor_id,
        "actor_username": entry.actor_username,
        "actor_label": entry.actor_label,
        "event_type": entry.event_type,
        "outcome": entry.outcome,
        "reason_code": entry.reason_code,
        "resource_label": entry.resource_label,
        "resource_pk": entry.resource_pk,
        "occurred_at": entry.occurred_at.isoformat(),
        "correlation_id": entry.correlation_id,
        "ip_address": entry.ip_address or "",
        "user_agent": entry.user_agent,
        "data_before": entry.data_before,
        "data_after": entry.data_after,
        "metadata": entry.metadata,
    }


def chain_id_for(organization) -> str:
    organization_id = getattr(organization, "id", None)
    return f"org:{organization_id}" if organization_id else "platform"


def append_audit_entry(
    *,
    organization,
    actor: Actor | None,
    event_type: str,
    resource_label: str,
    resource_pk="",
    outcome: str = AuditEntry.Outcome.SUCCESS,
    reason_code: str = "",
    data_before: dict | None = None,
    data_after: dict | None = None,
    metadata: dict | None = None,
) -> AuditEntry:
    """Append a new immutable audit entry.

    Uses a per-chain hash chain and retries on concurrent writers to keep the
    chain linear.
    """

    actor = actor or Actor.system()
    chain_id = chain_id_for(organization)
    occurred_at = timezone.now()

    data_before = _as_stored(data_before)
    data_after = _as_stored(data_after)
    metadata_payload = _as_stored(metadata if isinstance(metadata, dict) else {})

    for attempt in range(CHAIN_RETRY_ATTEMPTS):
        prev_hash = (
            AuditEntry.objects.filter(chain_id=chain_id)
            .order_by("-id")
            .values_list("entry_hash", flat=True)
            .first()
            or ""
        )

        entry = AuditEntry(
            organization=organization,
            actor=actor.user if actor.is_authenticated else None,
            actor_username=actor.username,
            actor_label="" if actor.is_authenticated else actor.display,
            event_type=event_type,
            outcome=outcome,
            reason_code=reason_code or "",
            resource_label=resource_label,
            resource_pk=str(resource_pk or ""),
            occurred_at=occurred_at,
            correlation_id=(actor.correlation_id or "")[:64],
            ip_address=actor.ip_address or None,
            user_agent=actor.user_agent,
            chain_id=chain_id,
            prev_hash=prev_hash,
            data_before=data_before,
            data_after=data_after,
            metadata=metadata_payload,
        )
        entry.entry_hash = _build_entry_hash(_hash_payload(entry), prev_hash)

        try:
            with transaction.atomic():
                entry.save(force_insert=True)
            return entry
        except IntegrityError as exc:
            msg = str(exc)
            if not any(marker in msg for marker in CHAIN_CONFLICT_MARKERS):
                raise
            # Concurrent writers may race on the chain head. Retry with a new prev_hash.
            logger.info(
                "audit.chain.conflict chain_id=%s event_type=%s attempt=%s",
                chain_id,
                event_type,
                attempt + 1,
            )
            continue

    raise RuntimeError("Failed to append audit entry (concurrency retries exhausted).")


def record_failure(
    *,
    organization,
    actor: Actor | None,
    event_type: str,
    resource_label: str,
    resource_pk="",
    error: FulfillmentError,
    metadata: dict | None = None,
) -> AuditEntry:
    """Audit a rejected mutation after its transaction rolled back."""

    payload = dict(metadata or {})
    payload["message"] = error.message
    if error.details:
        payload["details"] = error.details
    return append_audit_entry(
        organization=organization,
        actor=actor,
        event_type=event_type,
        resource_label=resource_label,
        resource_pk=resource_pk,
        outcome=AuditEntry.Outcome.FAILURE,
        reason_code=error.code,
        metadata=payload,
    )


@dataclass(frozen=True, slots=True)
class AuditChainReport:
    chain_id: str
    checked: int
    ok: bool
    broken_entry_id: int | None = None
    problem: str = ""


def verify_audit_chain(chain_id: str) -> AuditChainReport:
    """Walk a chain in insertion order and recompute every link."""

    prev_hash = ""
    checked = 0
    for entry in AuditEntry.objects.filter(chain_id=chain_id).order_by("id").iterator():
        checked += 1
        if entry.prev_hash != prev_hash:
            return AuditChainReport(chain_id, checked, False, entry.id, "prev_hash mismatch")
        expected = _build_entry_hash(_hash_payload(entry), prev_hash)
        if expected != entry.entry_hash:
            return AuditChainReport(chain_id, checked, False, entry.id, "entry_hash mismatch")
        prev_hash = entry.entry_hash
    return AuditChainReport(chain_id, checked, True)
