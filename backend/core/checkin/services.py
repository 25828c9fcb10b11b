from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from django.db import transaction
from django.db.models import Count, Q
from django.utils import timezone

from audit.services import append_audit_entry, record_failure
from checkin.models import CheckinRecord, ScanRecord
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.db import lock_rows, skip_locked_supported
from fulfillment.errors import ConflictError, FulfillmentError, NotFoundError, ValidationError
from fulfillment.logging import mask_email, mask_name
from fulfillment.rbac import (
    ACTION_CHECKIN_SCAN,
    ACTION_CHECKIN_STATS,
    ACTION_CHECKIN_UNDO,
    ACTION_CHECKIN_VIEW_PII,
    role_can,
)
from fulfillment.tokens import hash_token
from organizations.models import Event
from organizations.settings_store import (
    PII_LEVEL_FULL_FOR_ADMIN,
    PII_LEVEL_NONE,
    get_scanning_policy,
)
from tickets.models import TicketInstance

logger = logging.getLogger(__name__)

RATE_LIMIT_WINDOW = timedelta(seconds=60)
RECENT_SCANS_DEFAULT_LIMIT = 50
RECENT_SCANS_MAX_LIMIT = 200

REASON_USER_LIMIT = "USER_LIMIT"
REASON_DEVICE_LIMIT = "DEVICE_LIMIT"
REASON_TOKEN_NOT_FOUND = "TOKEN_NOT_FOUND"
REASON_LOCKED = "LOCKED"
REASON_EVENT_MISMATCH = "EVENT_MISMATCH"
REASON_STATUS_VOID = "STATUS_VOID"
REASON_STATUS_CHECKED_IN = "STATUS_CHECKED_IN"
REASON_ADMIN_UNDO = "ADMIN_UNDO"


@dataclass(frozen=True, slots=True)
class ScanOutcome:
    result: str
    reason: str
    scan_id: int
    ticket: dict | None = None

    @property
    def retryable(self) -> bool:
        return self.reason == REASON_LOCKED

    def as_dict(self) -> dict:
        payload = {
            "result": self.result,
            "reason": self.reason,
            "scan_id": self.scan_id,
        }
        if self.ticket is not None:
            payload["ticket"] = self.ticket
        if self.retryable:
            payload["retryable"] = True
        return payload


def _get_event(event_id) -> Event:
    event = Event.objects.select_related("organization").filter(id=event_id).first()
    if event is None:
        raise NotFoundError(
            "Event not found.",
            code="EVENT_NOT_FOUND",
            details={"event_id": event_id},
        )
    return event


def present_ticket(ticket: TicketInstance, *, pii_level: str, reveal_full: bool) -> dict:
    """Shape ticket data for a scanner response.

    Masking happens only here; stored holder data is never altered.
    """

    payload = {
        "id": ticket.id,
        "ticket_type": ticket.ticket_type.name,
        "status": ticket.status,
        "sequence_no": ticket.sequence_no,
        "checked_in_at": ticket.checked_in_at,
    }
    if pii_level == PII_LEVEL_NONE:
        return payload

    if pii_level == PII_LEVEL_FULL_FOR_ADMIN and reveal_full:
        payload["holder_name"] = ticket.owner_name
        payload["holder_email"] = ticket.owner_email
    else:
        payload["holder_name"] = mask_name(ticket.owner_name)
        payload["holder_email"] = mask_email(ticket.owner_email)
    return payload


def _record_scan(
    *,
    event: Event,
    actor: Actor,
    result: str,
    reason: str = "",
    ticket: TicketInstance | None = None,
    device_id: str = "",
    token_hash: str = "",
    ip_address: str = "",
    user_agent: str = "",
    metadata: dict | None = None,
    now=None,
) -> ScanRecord:
    return ScanRecord.objects.create(
        event=event,
        ticket=ticket,
        scanned_by=actor.user if actor.is_authenticated else None,
        device_id=device_id,
        token_hash=token_hash,
        result=result,
        reason=reason,
        ip_address=ip_address or None,
        user_agent=user_agent,
        correlation_id=(actor.correlation_id or "")[:64],
        metadata=metadata or {},
        scanned_at=now or timezone.now(),
    )


def _rate_limit_reason(*, actor: Actor, device_id: str, policy, now) -> str:
    since = now - RATE_LIMIT_WINDOW
    # Admin undo rows are history, not scan attempts.
    recent = ScanRecord.objects.filter(scanned_at__gt=since).exclude(result=ScanRecord.Result.UNDO)
    if actor.is_authenticated:
        actor_scans = recent.filter(scanned_by=actor.user).count()
        if actor_scans >= policy.per_minute:
            return REASON_USER_LIMIT
    if device_id:
        device_scans = recent.filter(device_id=device_id).count()
        if device_scans >= policy.per_device_per_minute:
            return REASON_DEVICE_LIMIT
    return ""


def scan(
    event_id,
    raw_token: str,
    *,
    actor: Actor,
    device_id: str = "",
    ip: str | None = None,
    user_agent: str | None = None,
) -> ScanOutcome:
    """Validate a ticket token at the door and admit it at most once.

    Every attempt, including rate-limited ones, appends a `ScanRecord`.
    Concurrent scans of the same ticket skip each other's row lock: exactly
    one can succeed, the others see an INVALID/LOCKED miss they may retry.
    """

    device_id = (device_id or "").strip()[:120]
    ip_address = (ip if ip is not None else actor.ip_address) or ""
    user_agent = ((user_agent if user_agent is not None else actor.user_agent) or "")[:512]
    organization = None
    try:
        event = _get_event(event_id)
        organization = event.organization
        role = authorize(actor, organization, ACTION_CHECKIN_SCAN)
        policy = get_scanning_policy(event)

        if not policy.enabled:
            raise ConflictError(
                "Scanning is disabled for this event.",
                code="SCANNING_DISABLED",
                details={"event_id": event.id},
            )
        if policy.require_device_id and not device_id:
            raise ValidationError("device_id is required for this event.", code="DEVICE_ID_REQUIRED")
        raw_token = (raw_token or "").strip()
        if not raw_token:
            raise ValidationError("A ticket token is required.", code="TOKEN_REQUIRED")
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="checkin.scan",
            resource_label="organizations.Event",
            resource_pk=event_id,
            error=exc,
        )
        raise

    token_hash = hash_token(raw_token)
    reveal_full = role_can(role, ACTION_CHECKIN_VIEW_PII, organization)
    common = {
        "event": event,
        "actor": actor,
        "device_id": device_id,
        "token_hash": token_hash,
        "ip_address": ip_address,
        "user_agent": user_agent,
    }

    with transaction.atomic():
        now = timezone.now()
        limited = _rate_limit_reason(actor=actor, device_id=device_id, policy=policy, now=now)
        if limited:
            record = _record_scan(result=ScanRecord.Result.RATE_LIMIT_EXCEEDED, reason=limited, now=now, **common)
            logger.warning(
                "checkin.scan.rate_limited event_id=%s user_id=%s device_id=%s reason=%s",
                event.id,
                actor.user_id,
                device_id,
                limited,
            )
            return ScanOutcome(record.result, limited, record.id)

        ticket = (
            lock_rows(TicketInstance.objects.select_related("ticket_type"), skip_locked=True)
            .filter(token_hash=token_hash)
            .first()
        )

        if ticket is None:
            reason = REASON_TOKEN_NOT_FOUND
            if skip_locked_supported() and TicketInstance.objects.filter(token_hash=token_hash).exists():
                # Row is locked by a concurrent scan of the same ticket.
                reason = REASON_LOCKED
            record = _record_scan(result=ScanRecord.Result.INVALID, reason=reason, now=now, **common)
            outcome = ScanOutcome(record.result, reason, record.id)
        elif ticket.event_id != event.id:
            record = _record_scan(
                result=ScanRecord.Result.NOT_IN_EVENT,
                reason=REASON_EVENT_MISMATCH,
                ticket=ticket,
                now=now,
                **common,
            )
            outcome = ScanOutcome(record.result, REASON_EVENT_MISMATCH, record.id)
        elif ticket.status == TicketInstance.Status.VOID:
            record = _record_scan(
                result=ScanRecord.Result.CANCELLED,
                reason=REASON_STATUS_VOID,
                ticket=ticket,
                now=now,
                **common,
            )
            outcome = ScanOutcome(record.result, REASON_STATUS_VOID, record.id)
        else:
            admitted = False
            if ticket.status == TicketInstance.Status.ISSUED:
                admitted = bool(
                    TicketInstance.objects.filter(
                        id=ticket.id,
                        status=TicketInstance.Status.ISSUED,
                    ).update(
                        status=TicketInstance.Status.CHECKED_IN,
                        checked_in_at=now,
                        checked_in_by=actor.user if actor.is_authenticated else None,
                        updated_at=now,
                    )
                )
            if admitted:
                ticket.status = TicketInstance.Status.CHECKED_IN
                ticket.checked_in_at = now
                record = _record_scan(result=ScanRecord.Result.VALID, ticket=ticket, now=now, **common)
                CheckinRecord.objects.create(
                    ticket=ticket,
                    event=event,
                    scan=record,
                    checked_in_by=actor.user if actor.is_authenticated else None,
                    device_id=device_id,
                    checked_in_at=now,
                )
                outcome = ScanOutcome(
                    record.result,
                    "",
                    record.id,
                    present_ticket(ticket, pii_level=policy.pii_level, reveal_full=reveal_full),
                )
            else:
                ticket.refresh_from_db(fields=["status", "checked_in_at"])
                record = _record_scan(
                    result=ScanRecord.Result.ALREADY_USED,
                    reason=REASON_STATUS_CHECKED_IN,
                    ticket=ticket,
                    now=now,
                    **common,
                )
                outcome = ScanOutcome(
                    record.result,
                    REASON_STATUS_CHECKED_IN,
                    record.id,
                    present_ticket(ticket, pii_level=policy.pii_level, reveal_full=reveal_full),
                )

    logger.info(
        "checkin.scan event_id=%s result=%s reason=%s ticket_id=%s device_id=%s",
        event.id,
        outcome.result,
        outcome.reason,
        outcome.ticket["id"] if outcome.ticket else "",
        device_id,
    )
    return outcome


def undo_check_in(ticket_id, *, actor: Actor, reason: str = "") -> dict:
    """Revert an admitted ticket to ISSUED.

    History is kept: the standing `CheckinRecord` receives its undo stamp and
    an UNDO scan record is appended.
    """

    organization = None
    try:
        with transaction.atomic():
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
            event = ticket.event
            organization = event.organization
            authorize(actor, organization, ACTION_CHECKIN_UNDO)

            policy = get_scanning_policy(event)
            if not policy.allow_undo_checkin:
                raise ConflictError(
                    "Undoing check-ins is not allowed for this event.",
                    code="UNDO_NOT_ALLOWED",
                    details={"event_id": event.id},
                )
            if not ticket.can_transition_to(TicketInstance.Status.ISSUED):
                raise ConflictError(
                    "Ticket is not checked in.",
                    code="TICKET_NOT_CHECKED_IN",
                    details={"ticket_id": ticket.id, "status": ticket.status},
                )

            before = ticket.snapshot()
            previous_checked_in_by = ticket.checked_in_by_id
            now = timezone.now()
            ticket.status = TicketInstance.Status.ISSUED
            ticket.checked_in_at = None
            ticket.checked_in_by = None
            ticket.save(update_fields=["status", "checked_in_at", "checked_in_by", "updated_at"])

            standing = (
                CheckinRecord.objects.filter(ticket=ticket, undone_at__isnull=True)
                .order_by("-id")
                .first()
            )
            if standing is not None:
                standing.undone_at = now
                standing.undone_by = actor.user if actor.is_authenticated else None
                standing.undo_reason = (reason or "")[:255]
                standing.save(update_fields=["undone_at", "undone_by", "undo_reason"])

            record = _record_scan(
                event=event,
                actor=actor,
                result=ScanRecord.Result.UNDO,
                reason=REASON_ADMIN_UNDO,
                ticket=ticket,
                ip_address=actor.ip_address,
                user_agent=actor.user_agent,
                metadata={"reason": reason, "previous_checked_in_by": previous_checked_in_by},
                now=now,
            )
            append_audit_entry(
                organization=organization,
                actor=actor,
                event_type="checkin.undone",
                resource_label="tickets.TicketInstance",
                resource_pk=ticket.id,
                data_before=before,
                data_after=ticket.snapshot(),
                metadata={"reason": reason, "scan_id": record.id},
            )
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="checkin.undone",
            resource_label="tickets.TicketInstance",
            resource_pk=ticket_id,
            error=exc,
        )
        raise

    logger.info("checkin.undone ticket_id=%s scan_id=%s", ticket.id, record.id)
    return {"ticket_id": ticket.id, "status": ticket.status, "scan_id": record.id}


def get_scan_stats(event_id, *, actor: Actor, window_seconds: int = 60) -> dict:
    event = _get_event(event_id)
    authorize(actor, event.organization, ACTION_CHECKIN_STATS)

    window_seconds = max(int(window_seconds or 60), 1)
    since = timezone.now() - timedelta(seconds=window_seconds)
    Result = ScanRecord.Result

    scans = ScanRecord.objects.filter(event=event).aggregate(
        total=Count("id"),
        valid=Count("id", filter=Q(result=Result.VALID)),
        invalid=Count("id", filter=Q(result__in=(Result.INVALID, Result.NOT_IN_EVENT))),
        already_used=Count("id", filter=Q(result=Result.ALREADY_USED)),
        cancelled=Count("id", filter=Q(result=Result.CANCELLED)),
        rate_limited=Count("id", filter=Q(result=Result.RATE_LIMIT_EXCEEDED)),
        in_window=Count("id", filter=Q(scanned_at__gte=since)),
        unique_scanners=Count("scanned_by", distinct=True),
    )
    tickets = TicketInstance.objects.filter(event=event).aggregate(
        total=Count("id", filter=~Q(status=TicketInstance.Status.VOID)),
        checked_in=Count("id", filter=Q(status=TicketInstance.Status.CHECKED_IN)),
    )

    total_tickets = tickets["total"] or 0
    checked_in = tickets["checked_in"] or 0
    return {
        "event_id": event.id,
        "window_seconds": window_seconds,
        "total_scans": scans["total"],
        "valid_scans": scans["valid"],
        "invalid_scans": scans["invalid"],
        "already_used_scans": scans["already_used"],
        "cancelled_scans": scans["cancelled"],
        "rate_limited_scans": scans["rate_limited"],
        "scans_in_window": scans["in_window"],
        "scans_per_minute": round(scans["in_window"] * 60 / window_seconds, 2),
        "unique_scanners": scans["unique_scanners"],
        "total_tickets": total_tickets,
        "checked_in_tickets": checked_in,
        "checkin_percentage": round(checked_in * 100 / total_tickets, 1) if total_tickets else 0.0,
    }


def get_recent_scans(event_id, *, actor: Actor, limit: int = RECENT_SCANS_DEFAULT_LIMIT) -> list:
    event = _get_event(event_id)
    authorize(actor, event.organization, ACTION_CHECKIN_STATS)

    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = RECENT_SCANS_DEFAULT_LIMIT
    limit = max(1, min(limit, RECENT_SCANS_MAX_LIMIT))

    records = (
        ScanRecord.objects.filter(event=event)
        .select_related("scanned_by")
        .order_by("-scanned_at", "-id")[:limit]
    )
    return [
        {
            "id": record.id,
            "result": record.result,
            "reason": record.reason,
            "ticket_id": record.ticket_id,
            "device_id": record.device_id,
            "scanned_by": record.scanned_by.get_username() if record.scanned_by else "",
            "scanned_at": record.scanned_at,
        }
        for record in records
    ]
