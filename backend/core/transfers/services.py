from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import validate_email
from django.db import IntegrityError, transaction
from django.utils import timezone

from audit.services import append_audit_entry, record_failure
from fulfillment.actors import Actor
from fulfillment.authz import authorize
from fulfillment.db import lock_rows
from fulfillment.errors import (
    ConflictError,
    FulfillmentError,
    NotFoundError,
    ValidationError,
)
from fulfillment.notifications import notify_on_commit
from fulfillment.rbac import ACTION_TRANSFERS_CANCEL, ACTION_TRANSFERS_INITIATE
from fulfillment.tokens import issue_token, token_matches
from organizations.models import Organization
from organizations.settings_store import get_transfer_ttl_hours
from tickets.models import TicketInstance
from transfers.models import Transfer
from transfers.state_machine import apply_transition, ensure_transition

logger = logging.getLogger(__name__)

RESOURCE_LABEL = "transfers.Transfer"


@dataclass(frozen=True, slots=True)
class TransferInitiation:
    transfer_id: int
    raw_token: str
    expires_at: object

    def as_dict(self) -> dict:
        return {
            "transfer_id": self.transfer_id,
            "token": self.raw_token,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True, slots=True)
class Recipient:
    user: object
    email: str
    name: str
    # explicit_link | authenticated_caller | account_lookup | email_only
    source: str


@dataclass(frozen=True, slots=True)
class TransferOutcome:
    transfer_id: int
    ticket_id: int
    status: str
    updated: bool
    new_owner: dict | None = None
    ticket_token: str | None = None

    def as_dict(self) -> dict:
        payload = {
            "success": True,
            "transfer_id": self.transfer_id,
            "ticket_id": self.ticket_id,
            "status": self.status,
            "updated": self.updated,
        }
        if self.new_owner is not None:
            payload["new_owner"] = self.new_owner
        if self.ticket_token is not None:
            payload["ticket_token"] = self.ticket_token
        return payload


def _snapshot(transfer: Transfer) -> dict:
    return {"id": transfer.id, "status": transfer.status, "ticket_id": transfer.ticket_id}


def _audit_transition(transfer: Transfer, *, actor: Actor, event_type: str, before_status, metadata=None):
    append_audit_entry(
        organization=transfer.ticket.event.organization,
        actor=actor,
        event_type=event_type,
        resource_label=RESOURCE_LABEL,
        resource_pk=transfer.id,
        data_before={"status": before_status} if before_status else None,
        data_after=_snapshot(transfer),
        metadata=metadata or {},
    )


def _normalize_email(value: str) -> str:
    email = (value or "").strip().lower()
    try:
        validate_email(email)
    except DjangoValidationError as exc:
        raise ValidationError(
            "A valid recipient e-mail is required.",
            code="INVALID_EMAIL",
        ) from exc
    return email


def _find_account(email: str):
    User = get_user_model()
    return User.objects.filter(email__iexact=email, is_active=True).order_by("id").first()


def _lock_transfer(transfer_id) -> Transfer:
    transfer = (
        lock_rows(
            Transfer.objects.select_related(
                "ticket",
                "ticket__event",
                "ticket__event__organization",
                "to_user",
            )
        )
        .filter(id=transfer_id)
        .first()
    )
    if transfer is None:
        raise NotFoundError(
            "Transfer not found.",
            code="TRANSFER_NOT_FOUND",
            details={"transfer_id": transfer_id},
        )
    return transfer


def _lock_ticket(ticket_id) -> TicketInstance:
    ticket = (
        lock_rows(TicketInstance.objects.select_related("event", "event__organization"))
        .filter(id=ticket_id)
        .first()
    )
    if ticket is None:
        raise NotFoundError(
            "Ticket not found.",
            code="TICKET_NOT_FOUND",
            details={"ticket_id": ticket_id},
        )
    return ticket


def _check_token(transfer: Transfer, raw_token: str) -> None:
    if not token_matches((raw_token or "").strip(), transfer.token_hash):
        raise ValidationError(
            "Invalid transfer token.",
            code="INVALID_TOKEN",
            details={"transfer_id": transfer.id},
        )


def _record_transfer_failure(*, transfer_id, actor, event_type, error, organization=None):
    if organization is None:
        organization = Organization.objects.filter(
            events__ticket_instances__transfers__id=transfer_id
        ).first()
    record_failure(
        organization=organization,
        actor=actor,
        event_type=event_type,
        resource_label=RESOURCE_LABEL,
        resource_pk=transfer_id or "",
        error=error,
    )


def resolve_recipient(transfer: Transfer, actor: Actor) -> Recipient:
    """Decide who becomes the owner when a transfer is accepted.

    Precedence: the account linked at initiation, then the authenticated
    caller when their e-mail matches the target, then any active account with
    the target e-mail, and finally an e-mail-only identity.
    """

    if transfer.to_user_id is not None and transfer.to_user is not None:
        user = transfer.to_user
        return Recipient(user, transfer.to_email, user.get_full_name(), "explicit_link")

    if actor.is_authenticated and actor.email.lower() == transfer.to_email.lower():
        return Recipient(actor.user, transfer.to_email, actor.user.get_full_name(), "authenticated_caller")

    account = _find_account(transfer.to_email)
    if account is not None:
        return Recipient(account, transfer.to_email, account.get_full_name(), "account_lookup")

    return Recipient(None, transfer.to_email, "", "email_only")


def initiate_transfer(ticket_id, to_email: str, *, actor: Actor, ttl: timedelta | None = None) -> TransferInitiation:
    """Offer a ticket to `to_email`.

    The raw token in the result is shown exactly once; only its digest is
    stored.
    """

    organization = None
    try:
        to_email = _normalize_email(to_email)
        if ttl is not None and ttl <= timedelta(0):
            raise ValidationError("ttl must be positive.", code="INVALID_TTL")

        with transaction.atomic():
            ticket = _lock_ticket(ticket_id)
            organization = ticket.event.organization
            authorize(
                actor,
                organization,
                ACTION_TRANSFERS_INITIATE,
                owner_user_id=ticket.owner_user_id,
            )

            if ticket.status != TicketInstance.Status.ISSUED:
                raise ConflictError(
                    "Only issued tickets can be transferred.",
                    code="TICKET_NOT_TRANSFERABLE",
                    details={"ticket_id": ticket.id, "status": ticket.status},
                )
            if ticket.owner_email and ticket.owner_email.lower() == to_email:
                raise ValidationError(
                    "Ticket already belongs to this recipient.",
                    code="SELF_TRANSFER",
                )
            if Transfer.objects.filter(ticket=ticket, status=Transfer.Status.PENDING).exists():
                raise ConflictError(
                    "Ticket already has a pending transfer.",
                    code="TRANSFER_ALREADY_PENDING",
                    details={"ticket_id": ticket.id},
                )

            now = timezone.now()
            if ttl is None:
                ttl = timedelta(hours=get_transfer_ttl_hours(ticket.event))
            raw_token, token_hash = issue_token()
            try:
                with transaction.atomic():
                    transfer = Transfer.objects.create(
                        ticket=ticket,
                        from_user_id=ticket.owner_user_id,
                        from_email=ticket.owner_email,
                        from_name=ticket.owner_name,
                        to_email=to_email,
                        to_user=_find_account(to_email),
                        token_hash=token_hash,
                        status=Transfer.Status.PENDING,
                        expires_at=now + ttl,
                        initiated_at=now,
                        initiated_by=actor.user if actor.is_authenticated else None,
                    )
            except IntegrityError as exc:
                raise ConflictError(
                    "Ticket already has a pending transfer.",
                    code="TRANSFER_ALREADY_PENDING",
                    details={"ticket_id": ticket.id},
                ) from exc

            _audit_transition(
                transfer,
                actor=actor,
                event_type="transfers.initiated",
                before_status=None,
                metadata={"expires_at": transfer.expires_at, "to_user_id": transfer.to_user_id},
            )
            notify_on_commit(
                "transfer_initiated",
                transfer_id=transfer.id,
                to_email=transfer.to_email,
                raw_token=raw_token,
                expires_at=transfer.expires_at,
            )
    except FulfillmentError as exc:
        record_failure(
            organization=organization,
            actor=actor,
            event_type="transfers.initiated",
            resource_label="tickets.TicketInstance",
            resource_pk=ticket_id,
            error=exc,
        )
        raise

    logger.info(
        "transfers.initiated transfer_id=%s ticket_id=%s expires_at=%s",
        transfer.id,
        transfer.ticket_id,
        transfer.expires_at.isoformat(),
    )
    return TransferInitiation(transfer.id, raw_token, transfer.expires_at)


def _expire_locked(transfer: Transfer, *, actor: Actor, now) -> bool:
    before_status = transfer.status
    if not apply_transition(transfer, Transfer.Status.EXPIRED, now=now):
        return False
    _audit_transition(transfer, actor=actor, event_type="transfers.expired", before_status=before_status)
    logger.info("transfers.expired transfer_id=%s ticket_id=%s", transfer.id, transfer.ticket_id)
    return True


def _owner_of(ticket: TicketInstance) -> dict:
    return {"user_id": ticket.owner_user_id, "email": ticket.owner_email, "name": ticket.owner_name}


def _expired_error(transfer: Transfer) -> ConflictError:
    return ConflictError(
        "Transfer has expired.",
        code="TRANSFER_EXPIRED",
        details={"transfer_id": transfer.id, "expires_at": transfer.expires_at.isoformat()},
    )


def accept_transfer(transfer_id, raw_token: str, *, actor: Actor) -> TransferOutcome:
    """Accept a pending transfer and move ticket ownership.

    Accepting an already accepted transfer is a no-op success. An expired
    transfer is marked EXPIRED (and that change is committed) before the call
    is rejected.
    """

    organization = None
    expired = None
    try:
        with transaction.atomic():
            transfer = _lock_transfer(transfer_id)
            organization = transfer.ticket.event.organization
            _check_token(transfer, raw_token)

            if not ensure_transition(transfer, Transfer.Status.ACCEPTED):
                return TransferOutcome(
                    transfer.id,
                    transfer.ticket_id,
                    transfer.status,
                    updated=False,
                    new_owner=_owner_of(transfer.ticket),
                )

            now = timezone.now()
            if transfer.is_expired(now):
                _expire_locked(transfer, actor=actor, now=now)
                expired = transfer
            else:
                ticket = _lock_ticket(transfer.ticket_id)
                if ticket.status != TicketInstance.Status.ISSUED:
                    raise ConflictError(
                        "Ticket can no longer be transferred.",
                        code="TICKET_NOT_TRANSFERABLE",
                        details={"ticket_id": ticket.id, "status": ticket.status},
                    )

                recipient = resolve_recipient(transfer, actor)
                before_status = transfer.status
                if not apply_transition(
                    transfer,
                    Transfer.Status.ACCEPTED,
                    user=actor.user if actor.is_authenticated else None,
                    now=now,
                ):
                    raise ConflictError(
                        "Transfer changed state concurrently.",
                        code="TRANSFER_NOT_PENDING",
                        details={"transfer_id": transfer.id},
                    )

                previous_owner = {"user_id": ticket.owner_user_id}
                # The sender's token stops admitting; the recipient gets a fresh one.
                ticket_token, ticket.token_hash = issue_token()
                ticket.owner_user = recipient.user
                ticket.owner_email = recipient.email
                ticket.owner_name = recipient.name
                ticket.save(update_fields=["owner_user", "owner_email", "owner_name", "token_hash", "updated_at"])

                _audit_transition(
                    transfer,
                    actor=actor,
                    event_type="transfers.accepted",
                    before_status=before_status,
                    metadata={
                        "recipient_source": recipient.source,
                        "previous_owner": previous_owner,
                        "new_owner": {"user_id": ticket.owner_user_id},
                    },
                )
                notify_on_commit(
                    "transfer_accepted",
                    transfer_id=transfer.id,
                    from_email=transfer.from_email,
                    to_email=transfer.to_email,
                    raw_token=ticket_token,
                )
                logger.info(
                    "transfers.accepted transfer_id=%s ticket_id=%s recipient_source=%s",
                    transfer.id,
                    ticket.id,
                    recipient.source,
                )
                return TransferOutcome(
                    transfer.id,
                    ticket.id,
                    transfer.status,
                    updated=True,
                    new_owner=_owner_of(ticket),
                    ticket_token=ticket_token,
                )
    except FulfillmentError as exc:
        _record_transfer_failure(
            transfer_id=transfer_id,
            actor=actor,
            event_type="transfers.accepted",
            error=exc,
            organization=organization,
        )
        raise

    error = _expired_error(expired)
    _record_transfer_failure(
        transfer_id=transfer_id,
        actor=actor,
        event_type="transfers.accepted",
        error=error,
        organization=organization,
    )
    raise error


def reject_transfer(transfer_id, raw_token: str, *, actor: Actor) -> TransferOutcome:
    organization = None
    expired = None
    try:
        with transaction.atomic():
            transfer = _lock_transfer(transfer_id)
            organization = transfer.ticket.event.organization
            _check_token(transfer, raw_token)

            if not ensure_transition(transfer, Transfer.Status.REJECTED):
                return TransferOutcome(transfer.id, transfer.ticket_id, transfer.status, updated=False)

            now = timezone.now()
            if transfer.is_expired(now):
                _expire_locked(transfer, actor=actor, now=now)
                expired = transfer
            else:
                before_status = transfer.status
                apply_transition(
                    transfer,
                    Transfer.Status.REJECTED,
                    user=actor.user if actor.is_authenticated else None,
                    now=now,
                )
                _audit_transition(
                    transfer,
                    actor=actor,
                    event_type="transfers.rejected",
                    before_status=before_status,
                )
                logger.info("transfers.rejected transfer_id=%s ticket_id=%s", transfer.id, transfer.ticket_id)
                return TransferOutcome(transfer.id, transfer.ticket_id, transfer.status, updated=True)
    except FulfillmentError as exc:
        _record_transfer_failure(
            transfer_id=transfer_id,
            actor=actor,
            event_type="transfers.rejected",
            error=exc,
            organization=organization,
        )
        raise

    error = _expired_error(expired)
    _record_transfer_failure(
        transfer_id=transfer_id,
        actor=actor,
        event_type="transfers.rejected",
        error=error,
        organization=organization,
    )
    raise error


def cancel_transfer(transfer_id, *, actor: Actor, reason: str = "") -> TransferOutcome:
    organization = None
    try:
        with transaction.atomic():
            transfer = _lock_transfer(transfer_id)
            organization = transfer.ticket.event.organization
            authorize(
                actor,
                organization,
                ACTION_TRANSFERS_CANCEL,
                owner_user_id=transfer.from_user_id,
            )

            if not ensure_transition(transfer, Transfer.Status.CANCELLED):
                return TransferOutcome(transfer.id, transfer.ticket_id, transfer.status, updated=False)

            before_status = transfer.status
            apply_transition(
                transfer,
                Transfer.Status.CANCELLED,
                user=actor.user if actor.is_authenticated else None,
                cancel_reason=(reason or "")[:255],
            )
            _audit_transition(
                transfer,
                actor=actor,
                event_type="transfers.cancelled",
                before_status=before_status,
                metadata={"reason": reason},
            )
    except FulfillmentError as exc:
        _record_transfer_failure(
            transfer_id=transfer_id,
            actor=actor,
            event_type="transfers.cancelled",
            error=exc,
            organization=organization,
        )
        raise

    logger.info("transfers.cancelled transfer_id=%s ticket_id=%s", transfer.id, transfer.ticket_id)
    return TransferOutcome(transfer.id, transfer.ticket_id, transfer.status, updated=True)


def cancel_pending_transfer_for_ticket(ticket: TicketInstance, *, actor: Actor, reason: str) -> Transfer | None:
    """Cancel the pending transfer of a ticket being voided or refunded.

    The caller owns the transaction and the ticket lock.
    """

    transfer = (
        lock_rows(Transfer.objects.select_related("ticket__event__organization"))
        .filter(ticket=ticket, status=Transfer.Status.PENDING)
        .first()
    )
    if transfer is None:
        return None

    apply_transition(
        transfer,
        Transfer.Status.CANCELLED,
        user=actor.user if actor.is_authenticated else None,
        cancel_reason=reason[:255],
    )
    _audit_transition(
        transfer,
        actor=actor,
        event_type="transfers.cancelled",
        before_status=Transfer.Status.PENDING,
        metadata={"reason": reason},
    )
    return transfer


def expire_stale_transfers(*, now=None, apply_changes: bool = True, actor: Actor | None = None) -> dict:
    """Sweep pending transfers past their expiry to EXPIRED."""

    actor = actor or Actor.system("transfers:expire")
    now = now or timezone.now()
    candidate_ids = list(
        Transfer.objects.filter(status=Transfer.Status.PENDING, expires_at__lte=now)
        .order_by("id")
        .values_list("id", flat=True)
    )
    if not apply_changes:
        return {"scanned": len(candidate_ids), "expired": 0}

    expired = 0
    for transfer_id in candidate_ids:
        with transaction.atomic():
            transfer = (
                lock_rows(Transfer.objects.select_related("ticket__event__organization"))
                .filter(id=transfer_id, status=Transfer.Status.PENDING)
                .first()
            )
            if transfer is None or not transfer.is_expired(now):
                continue
            if _expire_locked(transfer, actor=actor, now=now):
                expired += 1
    return {"scanned": len(candidate_ids), "expired": expired}
