from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any


def extract_ip(request) -> str:
    if request is None:
        return ""
    # Behind a LB, X-Forwarded-For may contain a chain. Keep the left-most.
    forwarded_for = (request.META.get("HTTP_X_FORWARDED_FOR") or "").strip()
    if forwarded_for:
        return forwarded_for.split(",", 1)[0].strip()
    return (request.META.get("REMOTE_ADDR") or "").strip()


def resolve_correlation_id(request) -> str:
    if request is None:
        return str(uuid.uuid4())
    existing = getattr(request, "correlation_id", "")
    if existing:
        return existing
    header_value = (request.headers.get("X-Correlation-ID") or "").strip()
    if not header_value:
        header_value = (request.headers.get("X-Request-ID") or "").strip()
    return header_value or str(uuid.uuid4())


@dataclass(frozen=True)
class Actor:
    """The caller of a fulfillment operation.

    Every service receives the actor explicitly; nothing reads an ambient
    "current user". System actors (payment webhooks, sweeps) carry no user and
    bypass role checks.
    """

    user: Any = None
    ip_address: str = ""
    user_agent: str = ""
    correlation_id: str = ""
    is_system: bool = False
    label: str = ""

    @classmethod
    def from_request(cls, request) -> "Actor":
        user = getattr(request, "user", None)
        if not getattr(user, "is_authenticated", False):
            user = None
        return cls(
            user=user,
            ip_address=extract_ip(request),
            user_agent=(request.META.get("HTTP_USER_AGENT") or "").strip()[:512],
            correlation_id=resolve_correlation_id(request),
        )

    @classmethod
    def for_user(cls, user, **kwargs) -> "Actor":
        kwargs.setdefault("correlation_id", str(uuid.uuid4()))
        return cls(user=user, **kwargs)

    @classmethod
    def system(cls, label: str = "system", *, correlation_id: str = "") -> "Actor":
        return cls(
            is_system=True,
            label=label,
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None and getattr(self.user, "is_authenticated", False)

    @property
    def user_id(self):
        return getattr(self.user, "id", None) if self.is_authenticated else None

    @property
    def email(self) -> str:
        if not self.is_authenticated:
            return ""
        return (getattr(self.user, "email", "") or "").strip()

    @property
    def username(self) -> str:
        if not self.is_authenticated:
            return ""
        return (getattr(self.user, "username", "") or "").strip()

    @property
    def display(self) -> str:
        if self.is_system:
            return f"system:{self.label}"
        return self.username or "anonymous"
