"""
auth/models.py -- Domain dataclasses for accounts and issued credentials.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from core.models import PlatformRole


@dataclass
class Account:
    """An identity that can authenticate against TeamGate.

    primary_team_id is the team the account currently works in. Team-level
    privileges never come from this pointer -- only from Membership rows.

    deleted_at is the soft-delete marker. Repositories filter deleted rows
    out of every lookup unless include_deleted=True is passed, so a deleted
    account can neither authenticate nor be found as a target.
    """

    email: str
    platform_role: PlatformRole = PlatformRole.USER
    id: int | None = None
    password_hash: str | None = field(default=None, repr=False)
    primary_team_id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login_at: str | None = None
    deleted_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


@dataclass
class Profile:
    """Optional personal details supplied at signup or invitation acceptance."""

    first_name: str | None = None
    last_name: str | None = None


@dataclass
class Credentials:
    """A signed access/refresh pair returned by login, refresh, and acceptance."""

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    expires_in: int
    token_type: str = "bearer"  # noqa: S105 # nosec B105 -- OAuth token type, not a password
