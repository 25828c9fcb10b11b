from __future__ import annotations

from django.utils import timezone

from fulfillment.errors import ConflictError
from transfers.models import Transfer

TRANSITIONS = {
    Transfer.Status.PENDING: frozenset(
        (
            Transfer.Status.ACCEPTED,
            Transfer.Status.REJECTED,
            Transfer.Status.CANCELLED,
            Transfer.Status.EXPIRED,
        )
    ),
}

TERMINAL_STATUSES = frozenset(
    (
        Transfer.Status.ACCEPTED,
        Transfer.Status.REJECTED,
        Transfer.Status.CANCELLED,
        Transfer.Status.EXPIRED,
    )
)

# Columns stamped by each transition: (timestamp, actor).
TRANSITION_FIELDS = {
    Transfer.Status.ACCEPTED: ("accepted_at", "accepted_by"),
    Transfer.Status.REJECTED: ("rejected_at", "rejected_by"),
    Transfer.Status.CANCELLED: ("cancelled_at", "cancelled_by"),
    Transfer.Status.EXPIRED: ("expired_at", None),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def ensure_transition(transfer: Transfer, target: str) -> bool:
    """Validate a transition request.

    Returns False when the transfer already sits in `target` (repeat request,
    nothing to do) and raises `ConflictError` for any other illegal move.
    """

    if transfer.status == target:
        return False
    if not can_transition(transfer.status, target):
        raise ConflictError(
            f"Transfer is {transfer.status.lower()}, not pending.",
            code="TRANSFER_NOT_PENDING",
            details={"transfer_id": transfer.id, "status": transfer.status},
        )
    return True


def apply_transition(transfer: Transfer, target: str, *, user=None, now=None, **extra) -> bool:
    """Move a pending transfer to `target` with a compare-and-swap update.

    Returns False if another writer changed the status first.
    """

    now = now or timezone.now()
    at_field, by_field = TRANSITION_FIELDS[target]
    changes = {"status": target, at_field: now, "updated_at": now}
    if by_field is not None:
        changes[by_field] = user
    changes.update(extra)

    updated = Transfer.objects.filter(id=transfer.id, status=Transfer.Status.PENDING).update(**changes)
    if updated:
        for key, value in changes.items():
            setattr(transfer, key, value)
    return bool(updated)
