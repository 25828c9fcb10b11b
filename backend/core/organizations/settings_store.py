from __future__ import annotations

import logging
from copy import deepcopy
from dataclasses import dataclass

from django.conf import settings

from organizations.models import EventSetting

logger = logging.getLogger(__name__)

PII_LEVEL_NONE = "none"
PII_LEVEL_MASKED = "masked"
PII_LEVEL_FULL_FOR_ADMIN = "full-for-admin"
PII_LEVELS = frozenset((PII_LEVEL_NONE, PII_LEVEL_MASKED, PII_LEVEL_FULL_FOR_ADMIN))

DEFAULT_DOMAIN_SETTINGS = {
    EventSetting.DOMAIN_SCANNING: {
        "enabled": True,
        "rate_limit": {
            "per_minute": 60,
            "per_device_per_minute": 30,
        },
        "require_device_id": False,
        "allow_undo_checkin": False,
        "response": {
            "pii_level": PII_LEVEL_MASKED,
        },
    },
    # `ttl_hours` falls back to TRANSFER_DEFAULT_TTL_HOURS.
    EventSetting.DOMAIN_TRANSFERS: {},
}


def _deep_merge(base: dict, overrides: dict) -> dict:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def get_event_settings(event, domain: str) -> dict:
    """Return the merged settings document for an event and domain.

    Precedence: built-in defaults < `EVENT_SETTING_DEFAULTS` setting < stored
    `EventSetting.values`.
    """

    merged = deepcopy(DEFAULT_DOMAIN_SETTINGS.get(domain, {}))

    deployment_overrides = getattr(settings, "EVENT_SETTING_DEFAULTS", {}) or {}
    if isinstance(deployment_overrides.get(domain), dict):
        _deep_merge(merged, deepcopy(deployment_overrides[domain]))

    stored = (
        EventSetting.objects.filter(event=event, domain=domain)
        .values_list("values", flat=True)
        .first()
    )
    if isinstance(stored, dict):
        _deep_merge(merged, deepcopy(stored))
    return merged


def _positive_int(value, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


@dataclass(frozen=True, slots=True)
class ScanningPolicy:
    enabled: bool
    per_minute: int
    per_device_per_minute: int
    require_device_id: bool
    allow_undo_checkin: bool
    pii_level: str


def get_scanning_policy(event) -> ScanningPolicy:
    values = get_event_settings(event, EventSetting.DOMAIN_SCANNING)
    defaults = DEFAULT_DOMAIN_SETTINGS[EventSetting.DOMAIN_SCANNING]
    rate_limit = values.get("rate_limit") or {}
    response = values.get("response") or {}

    pii_level = str(response.get("pii_level") or PII_LEVEL_MASKED).strip().lower()
    if pii_level not in PII_LEVELS:
        logger.warning(
            "organizations.settings.invalid_pii_level event_id=%s value=%s",
            getattr(event, "id", None),
            pii_level,
        )
        pii_level = PII_LEVEL_MASKED

    return ScanningPolicy(
        enabled=bool(values.get("enabled", True)),
        per_minute=_positive_int(
            rate_limit.get("per_minute"),
            defaults["rate_limit"]["per_minute"],
        ),
        per_device_per_minute=_positive_int(
            rate_limit.get("per_device_per_minute"),
            defaults["rate_limit"]["per_device_per_minute"],
        ),
        require_device_id=bool(values.get("require_device_id", False)),
        allow_undo_checkin=bool(values.get("allow_undo_checkin", False)),
        pii_level=pii_level,
    )


def get_transfer_ttl_hours(event) -> int:
    values = get_event_settings(event, EventSetting.DOMAIN_TRANSFERS)
    fallback = getattr(settings, "TRANSFER_DEFAULT_TTL_HOURS", 48)
    return _positive_int(values.get("ttl_hours"), fallback)
