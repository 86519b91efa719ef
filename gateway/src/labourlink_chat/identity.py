"""Email identity helpers shared by every per-pair table."""

from __future__ import annotations

import re

from .errors import ValidationError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def normalize_email(value: object) -> str:
    return str(value or "").strip().lower()


def require_email(value: object, field: str = "email") -> str:
    """Normalize ``value`` and reject anything that is not shaped like an email."""

    email = normalize_email(value)
    if not email:
        raise ValidationError(f"{field} is required")
    if not _EMAIL_RE.match(email):
        raise ValidationError(f"{field} is not a valid email")
    return email


def thread_id(a: str, b: str) -> str:
    """Return the order-independent key for the pair ``(a, b)``."""

    return "__".join(sorted((normalize_email(a), normalize_email(b))))


def peer_of(viewer: str, from_email: str, to_email: str) -> str:
    return to_email if from_email == viewer else from_email
