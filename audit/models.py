"""
audit/models.py -- Append-only audit trail entries.

Entries are never updated or deleted -- only inserted. metadata carries the
before/after values needed to reconstruct what changed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class AuditAction(str, Enum):
    # Accounts
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_DELETED = "ACCOUNT_DELETED"
    ACCOUNT_ROLE_CHANGED = "ACCOUNT_ROLE_CHANGED"
    ACCOUNT_LOGIN = "ACCOUNT_LOGIN"

    # Teams
    TEAM_CREATED = "TEAM_CREATED"
    TEAM_DELETED = "TEAM_DELETED"
    TEAM_MEMBER_ADDED = "TEAM_MEMBER_ADDED"
    TEAM_MEMBER_REMOVED = "TEAM_MEMBER_REMOVED"
    TEAM_MEMBER_ROLE_CHANGED = "TEAM_MEMBER_ROLE_CHANGED"

    # Invitations
    INVITATION_CREATED = "INVITATION_CREATED"
    INVITATION_ACCEPTED = "INVITATION_ACCEPTED"

    # Team-scoped resources (projects, tasks, ...)
    RESOURCE_ASSIGNED = "RESOURCE_ASSIGNED"
    RESOURCE_UNASSIGNED = "RESOURCE_UNASSIGNED"
    RESOURCE_DELETED = "RESOURCE_DELETED"


@dataclass
class AuditEntry:
    action: AuditAction
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    actor_id: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None
    created_at: str = ""
