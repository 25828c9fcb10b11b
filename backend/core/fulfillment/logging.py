from __future__ import annotations

import logging
import re
from typing import Any

_EMAIL_RE = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*@([A-Za-z0-9.-]+\.[A-Za-z]{2,})")
# Raw tokens and their digests are both 64 hex chars.
_TOKEN_RE = re.compile(r"(?<![0-9a-fA-F])[0-9a-fA-F]{64}(?![0-9a-fA-F])")


def mask_email(value: str) -> str:
    """Mask an e-mail address: `john@example.com` -> `j***@example.com`."""

    email = (value or "").strip()
    if not email:
        return ""
    local, sep, domain = email.partition("@")
    if not sep or not local or not domain:
        return "***"
    return f"{local[0]}***@{domain}"


def mask_name(value: str) -> str:
    """Mask a person name: `John Doe` -> `J. D***`, `John` -> `J***`."""

    parts = (value or "").split()
    if not parts:
        return ""
    if len(parts) == 1:
        return f"{parts[0][0]}***"
    return f"{parts[0][0]}. {parts[-1][0]}***"


def mask_pii(text: str) -> str:
    """Mask e-mail addresses and token-like hex strings in free text."""

    if not text:
        return text

    text = _EMAIL_RE.sub(r"\1***@\2", text)
    text = _TOKEN_RE.sub("***TOKEN***", text)
    return text


class MaskPIIFilter(logging.Filter):
    """Logging filter to mask e-mails and tokens in log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:  # pragma: no cover
            message = str(getattr(record, "msg", ""))

        masked = mask_pii(str(message))

        # Replace the formatted message and clear args to avoid double formatting.
        record.msg = masked
        record.args = ()

        for key in ("email", "to_email", "token"):
            if hasattr(record, key):
                value: Any = getattr(record, key)
                if isinstance(value, str):
                    setattr(record, key, mask_pii(value))

        return True
