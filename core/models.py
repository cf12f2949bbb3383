"""
core/models.py -- Domain constants shared by every TeamGate package.

Two independent privilege dimensions live here as two separate enums:

  PlatformRole  system-wide (USER, ADMIN). ADMIN bypasses team ownership checks.
  TeamRole      scoped to one team (OWNER, MEMBER). Never grants platform rights.

Keeping them as distinct types means a team role can never be compared to,
or stored as, a platform role by accident.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

# Canonical formats. Domain rules -- not an API contract.
EMAIL_PATTERN = r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
SLUG_PATTERN = r"^[a-z0-9-]+$"


class PlatformRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class TeamRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


def now_iso() -> str:
    """Current UTC time as ISO 8601 with fixed microsecond precision.

    Fixed precision keeps stored timestamps lexicographically ordered, so
    "expires_at > now" can be evaluated in SQL on the text column.
    """
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    """Parse a stored timestamp; naive values are treated as UTC."""
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def mask_email(email: str) -> str:
    """Return a log-safe form of an email address: 'a***@example.com'."""
    local, sep, domain = email.partition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def normalize_email(email: str) -> str:
    """Canonical stored form: surrounding whitespace stripped, lowercased."""
    return (email or "").strip().lower()
