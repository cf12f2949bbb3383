"""
invitations/models.py -- Domain dataclasses for team invitations.

Security design:
- The raw token is secrets.token_urlsafe(32): 256 bits of entropy, opaque,
  with no embedded claims.
- Only token_hash (HMAC-SHA256 keyed with SECRET_KEY) is persisted. The raw
  token is set on the Invitation returned by invite() and nowhere else --
  lists and lookups always leave it None.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from auth.models import Account, Credentials
from core.models import PlatformRole


@dataclass
class Invitation:
    email: str
    team_id: int
    invited_by_id: int
    expires_at: str
    role: PlatformRole = PlatformRole.USER
    token_hash: str = field(default="", repr=False)
    token: Optional[str] = field(default=None, repr=False)  # raw value, issue time only
    message: Optional[str] = None
    id: Optional[int] = None
    used_at: Optional[str] = None
    created_at: str = ""


@dataclass(frozen=True)
class TokenValidation:
    """Result of a read-only token pre-check.

    reason is one of "not_found", "used", "expired" when valid is False.
    Nothing here reveals whether an account exists for the email.
    """

    valid: bool
    email: Optional[str] = None
    team_name: Optional[str] = None
    expires_at: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class AcceptedInvitation:
    account: Account
    credentials: Credentials
