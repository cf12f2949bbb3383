"""
teams/models.py -- Domain dataclasses for tenants and their memberships.

A Team is the unit of data isolation. Membership is the single source of
truth for team-level roles; there is no separate "team admin" pointer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core.models import TeamRole


@dataclass
class Team:
    """A tenant.

    Teams are never hard-deleted. deleted_at hides the team from active
    queries while keeping it joinable from audit entries.
    """

    name: str
    slug: str
    description: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
    deleted_at: Optional[str] = None


@dataclass
class Membership:
    """One (account, team) pair. The pair is unique."""

    account_id: int
    team_id: int
    role: TeamRole = TeamRole.MEMBER
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class RoleChange:
    """Before/after pair returned by role-changing operations for audit."""

    account_id: int
    old_role: str
    new_role: str
    team_id: Optional[int] = None
