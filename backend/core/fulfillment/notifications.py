from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Sequence

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class NotificationDispatcher(ABC):
    """Outbound notifications (e-mail, push) for fulfillment events.

    Notes:
    - Called only after the owning transaction commits.
    - Implementations receive raw tokens where the recipient needs them; they
      must never log them.
    """

    @abstractmethod
    def tickets_issued(self, *, order_id: int, recipient_email: str, tickets: Sequence) -> None:
        """Deliver freshly issued tickets (each carries its one-time raw token)."""

    @abstractmethod
    def transfer_initiated(
        self,
        *,
        transfer_id: int,
        to_email: str,
        raw_token: str,
        expires_at,
    ) -> None:
        """Invite the recipient to accept a ticket transfer."""

    @abstractmethod
    def transfer_accepted(
        self,
        *,
        transfer_id: int,
        from_email: str,
        to_email: str,
        raw_token: str,
    ) -> None:
        """Tell the previous owner that their ticket moved and hand the new owner its rotated token."""


class LoggingDispatcher(NotificationDispatcher):
    """Default dispatcher: records that a notification would be sent."""

    def tickets_issued(self, *, order_id, recipient_email, tickets):
        logger.info(
            "notifications.tickets_issued order_id=%s tickets=%s",
            order_id,
            len(tickets),
        )

    def transfer_initiated(self, *, transfer_id, to_email, raw_token, expires_at):
        logger.info(
            "notifications.transfer_initiated transfer_id=%s expires_at=%s",
            transfer_id,
            expires_at.isoformat() if expires_at else "",
        )

    def transfer_accepted(self, *, transfer_id, from_email, to_email, raw_token):
        logger.info("notifications.transfer_accepted transfer_id=%s", transfer_id)


def get_dispatcher() -> NotificationDispatcher:
    dotted_path = getattr(
        settings,
        "NOTIFICATION_DISPATCHER",
        "fulfillment.notifications.LoggingDispatcher",
    )
    return import_string(dotted_path)()


def _deliver(method_name: str, kwargs: dict) -> None:
    try:
        dispatcher = get_dispatcher()
        getattr(dispatcher, method_name)(**kwargs)
    except Exception:
        # Delivery is fire-and-forget; the committed state stays authoritative.
        logger.exception("notifications.dispatch_failed method=%s", method_name)


def notify_on_commit(method_name: str, **kwargs) -> None:
    transaction.on_commit(lambda: _deliver(method_name, kwargs))
