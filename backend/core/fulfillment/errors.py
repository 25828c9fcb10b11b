from __future__ import annotations

from typing import Any, Mapping


class FulfillmentError(RuntimeError):
    """Base exception for fulfillment failures.

    `code` is a stable machine-readable reason (ex: CAPACITY_EXCEEDED) and
    `details` carries structured context for API clients and the audit trail.
    """

    default_code = "FULFILLMENT_ERROR"
    http_status = 400
    retryable = False

    def __init__(
        self,
        message: str = "",
        *,
        code: str | None = None,
        details: Mapping[str, Any] | None = None,
    ):
        self.code = code or self.default_code
        self.message = message or self.code
        self.details = dict(details) if details else {}
        super().__init__(self.message)

    def as_dict(self) -> dict:
        payload = {"detail": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(FulfillmentError):
    """Malformed input, rejected before any mutation."""

    default_code = "INVALID_INPUT"
    http_status = 400


class AuthorizationError(FulfillmentError):
    """Actor is not allowed to perform the action."""

    default_code = "FORBIDDEN"
    http_status = 403


class NotFoundError(FulfillmentError):
    default_code = "NOT_FOUND"
    http_status = 404


class ConflictError(FulfillmentError):
    """Operation is not legal for the current state (capacity, lifecycle, policy)."""

    default_code = "CONFLICT"
    http_status = 409


class TransientError(FulfillmentError):
    """Contention on a shared row; the caller may retry."""

    default_code = "TRY_AGAIN"
    http_status = 503
    retryable = True
