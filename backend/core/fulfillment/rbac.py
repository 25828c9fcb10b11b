from copy import deepcopy
from typing import Iterable

from django.conf import settings
from django.core.exceptions import ValidationError

ROLE_OWNER = "OWNER"
ROLE_ADMIN = "ADMIN"
ROLE_SUPPORT = "SUPPORT"
ROLE_FINANCE = "FINANCE"
ROLE_SCANNER = "SCANNER"

VALID_ROLES = frozenset((ROLE_OWNER, ROLE_ADMIN, ROLE_SUPPORT, ROLE_FINANCE, ROLE_SCANNER))

PRIVILEGED_ROLES = frozenset((ROLE_OWNER, ROLE_ADMIN))
SUPPORT_ROLES = frozenset((ROLE_OWNER, ROLE_ADMIN, ROLE_SUPPORT))
SCAN_ROLES = frozenset((ROLE_OWNER, ROLE_ADMIN, ROLE_SUPPORT, ROLE_SCANNER))
FINANCE_ROLES = frozenset((ROLE_OWNER, ROLE_ADMIN, ROLE_FINANCE))
NO_ROLES = frozenset()

ACTION_ORDERS_ISSUE = "orders.issue"
ACTION_ORDERS_REFUND = "orders.refund"
ACTION_TICKETS_VOID = "tickets.void"
ACTION_TRANSFERS_INITIATE = "transfers.initiate"
ACTION_TRANSFERS_CANCEL = "transfers.cancel"
ACTION_CHECKIN_SCAN = "checkin.scan"
ACTION_CHECKIN_UNDO = "checkin.undo"
ACTION_CHECKIN_STATS = "checkin.stats"
ACTION_CHECKIN_VIEW_PII = "checkin.view_pii"
ACTION_AUDIT_READ = "audit.read"

DEFAULT_ACTION_ROLES = {
    ACTION_ORDERS_ISSUE: PRIVILEGED_ROLES,
    ACTION_ORDERS_REFUND: FINANCE_ROLES,
    ACTION_TICKETS_VOID: PRIVILEGED_ROLES,
    # Finance staff may look at orders but never move tickets between people.
    ACTION_TRANSFERS_INITIATE: SUPPORT_ROLES,
    ACTION_TRANSFERS_CANCEL: SUPPORT_ROLES,
    ACTION_CHECKIN_SCAN: SCAN_ROLES,
    ACTION_CHECKIN_UNDO: PRIVILEGED_ROLES,
    ACTION_CHECKIN_STATS: SCAN_ROLES,
    ACTION_CHECKIN_VIEW_PII: PRIVILEGED_ROLES,
    ACTION_AUDIT_READ: FINANCE_ROLES,
}

KNOWN_ACTIONS = frozenset(DEFAULT_ACTION_ROLES.keys())


def _normalize_roles(raw_roles: Iterable[str]) -> frozenset[str]:
    if not isinstance(raw_roles, (list, tuple, set, frozenset)):
        return frozenset()
    normalized = {str(role).upper() for role in raw_roles}
    return frozenset(role for role in normalized if role in VALID_ROLES)


def validate_role_overrides_schema(overrides, *, allow_unknown_actions=False) -> None:
    """Validate `{"<action>": ["ROLE", ...]}` overrides.

    Used both as a model field validator (organization overrides) and for the
    deployment-wide `ORGANIZATION_ROLE_MATRICES` setting.
    """

    if overrides in (None, {}):
        return

    if not isinstance(overrides, dict):
        raise ValidationError("role_overrides must be a JSON object (dictionary).")

    errors = {}
    for action_key, raw_roles in overrides.items():
        action_name = str(action_key)
        action_errors = []

        if not allow_unknown_actions and action_name not in KNOWN_ACTIONS:
            action_errors.append(
                f"Unknown action '{action_name}'. Allowed: {sorted(KNOWN_ACTIONS)}"
            )

        if not isinstance(raw_roles, list):
            action_errors.append("Action value must be a list of roles.")
        else:
            normalized_roles = _normalize_roles(raw_roles)
            if len(normalized_roles) != len(set(str(r).upper() for r in raw_roles)):
                action_errors.append(
                    f"Action '{action_name}' contains invalid roles. "
                    f"Allowed roles: {sorted(VALID_ROLES)}"
                )

        if action_errors:
            errors[action_name] = action_errors

    if errors:
        raise ValidationError(errors)


def _apply_overrides(matrix: dict, overrides: dict | None) -> dict:
    if not isinstance(overrides, dict):
        return matrix

    for action_key, raw_roles in overrides.items():
        if not isinstance(raw_roles, list):
            continue
        # An empty list is a deliberate lock-down of the action.
        matrix[str(action_key)] = _normalize_roles(raw_roles)
    return matrix


def get_action_role_matrix(organization=None) -> dict:
    matrix = deepcopy(DEFAULT_ACTION_ROLES)

    global_overrides = getattr(settings, "ORGANIZATION_ROLE_MATRICES", {})
    try:
        validate_role_overrides_schema(global_overrides)
        _apply_overrides(matrix, global_overrides)
    except ValidationError:
        pass

    if organization is not None:
        organization_overrides = getattr(organization, "role_overrides", {})
        try:
            validate_role_overrides_schema(organization_overrides)
            _apply_overrides(matrix, organization_overrides)
        except ValidationError:
            pass

    return matrix


def roles_for_action(action: str, organization=None) -> frozenset:
    return get_action_role_matrix(organization=organization).get(action, NO_ROLES)


def role_can(role, action, organization=None) -> bool:
    if not role:
        return False
    return role in roles_for_action(action, organization=organization)


def serialize_role_matrix(matrix: dict) -> dict:
    return {action: sorted(roles) for action, roles in matrix.items()}
