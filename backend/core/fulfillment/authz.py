from __future__ import annotations

import logging

from fulfillment.actors import Actor
from fulfillment.errors import AuthorizationError
from fulfillment.rbac import ROLE_OWNER, roles_for_action
from organizations.models import OrganizationMembership

logger = logging.getLogger(__name__)


def get_membership(user, organization) -> OrganizationMembership | None:
    if user is None or organization is None:
        return None
    return (
        OrganizationMembership.objects.filter(
            organization=organization,
            user=user,
            is_active=True,
        )
        .only("id", "role")
        .first()
    )


def authorize(
    actor: Actor,
    organization,
    action: str,
    *,
    owner_user_id=None,
) -> str | None:
    """Check that `actor` may perform `action` inside `organization`.

    Returns the effective role (system actors and superusers act as OWNER; a
    ticket owner acting on their own ticket may have no role at all). Raises
    `AuthorizationError` otherwise; the caller audits the rejection.
    """

    if actor.is_system:
        return ROLE_OWNER

    if not actor.is_authenticated:
        logger.warning(
            "authz.denied action=%s organization_id=%s reason=AUTHENTICATION_REQUIRED",
            action,
            getattr(organization, "id", None),
        )
        raise AuthorizationError(
            "Authentication is required.",
            code="AUTHENTICATION_REQUIRED",
            details={"action": action},
        )

    if actor.user.is_superuser:
        return ROLE_OWNER

    membership = get_membership(actor.user, organization)
    role = membership.role if membership is not None else None

    if owner_user_id is not None and owner_user_id == actor.user_id:
        return role

    if role is None:
        reason = "NOT_A_MEMBER"
    elif role not in roles_for_action(action, organization=organization):
        reason = "ROLE_NOT_ALLOWED"
    else:
        return role

    logger.warning(
        "authz.denied action=%s organization_id=%s user_id=%s role=%s reason=%s",
        action,
        getattr(organization, "id", None),
        actor.user_id,
        role or "",
        reason,
    )
    raise AuthorizationError(
        "User role is not allowed for this action.",
        code=reason,
        details={"action": action, "role": role or ""},
    )
