"""
auth/authority.py -- RoleAuthority: the single "may P do A on R" decision point.

Pure function, no I/O. Services load the principal's memberships and the
resource's attributes, then ask decide() (or enforce(), which raises). Keeping
every rule in one table-driven function means escalation logic is testable
without a database and cannot drift between services.

Inputs:
  principal.platform_role  ADMIN bypasses team ownership checks
  principal.memberships    {team_id: TeamRole} for the principal's active teams
  resource                 team_id plus whatever the action needs (creator,
                           target account, current/new team role)

Denials come in two flavours:
  NOT_FOUND  the resource's team is not one of the principal's teams, or the
             resource is soft-deleted. The caller sees "not found", exactly as
             if the resource did not exist, so tenants cannot probe each
             other's IDs.
  FORBIDDEN  same-tenant caller lacking privilege (e.g. a MEMBER changing
             roles). Only issued once membership is established.

A soft-deleted principal is UNAUTHENTICATED: it is treated as absent.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from core.errors import AuthError, ForbiddenError, NotFoundError
from core.models import PlatformRole, TeamRole


class Action(str, Enum):
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE_MEMBERS = "manage_members"
    REMOVE_MEMBER = "remove_member"
    CHANGE_MEMBER_ROLE = "change_member_role"
    INVITE = "invite"
    LIST_INVITATIONS = "list_invitations"
    PROMOTE_PLATFORM_ADMIN = "promote_platform_admin"
    CHANGE_PLATFORM_ROLE = "change_platform_role"


class Decision(str, Enum):
    ALLOW = "allow"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"

    @property
    def allowed(self) -> bool:
        return self is Decision.ALLOW


@dataclass(frozen=True)
class Principal:
    account_id: int
    platform_role: PlatformRole
    memberships: Mapping[int, TeamRole] = field(default_factory=dict)
    deleted: bool = False

    @property
    def is_admin(self) -> bool:
        return self.platform_role == PlatformRole.ADMIN

    def role_in(self, team_id: Optional[int]) -> Optional[TeamRole]:
        if team_id is None:
            return None
        return self.memberships.get(team_id)


@dataclass(frozen=True)
class Resource:
    """What is being acted on. Only the fields an action needs are set."""

    team_id: Optional[int] = None
    created_by_id: Optional[int] = None
    target_account_id: Optional[int] = None
    current_role: Optional[TeamRole] = None
    new_role: Optional[TeamRole] = None
    deleted: bool = False


# Actions that only an ADMIN or an OWNER of the resource's team may perform.
_OWNER_ACTIONS = frozenset({Action.CREATE, Action.MANAGE_MEMBERS, Action.INVITE, Action.LIST_INVITATIONS})
_PLATFORM_ACTIONS = frozenset({Action.PROMOTE_PLATFORM_ADMIN, Action.CHANGE_PLATFORM_ROLE})


def decide(principal: Optional[Principal], action: Action, resource: Resource) -> Decision:
    """Return the decision for principal performing action on resource."""
    if principal is None or principal.deleted:
        return Decision.UNAUTHENTICATED

    if action in _PLATFORM_ACTIONS:
        if resource.deleted:
            return Decision.NOT_FOUND
        return Decision.ALLOW if principal.is_admin else Decision.FORBIDDEN

    if resource.deleted:
        return Decision.NOT_FOUND

    team_role = principal.role_in(resource.team_id)
    is_owner = team_role == TeamRole.OWNER

    if action == Action.READ:
        if principal.is_admin or team_role is not None:
            return Decision.ALLOW
        return Decision.NOT_FOUND

    if action in (Action.UPDATE, Action.DELETE):
        if principal.is_admin or is_owner:
            return Decision.ALLOW
        if resource.created_by_id is not None and resource.created_by_id == principal.account_id:
            return Decision.ALLOW
        return Decision.FORBIDDEN if team_role is not None else Decision.NOT_FOUND

    if action == Action.CHANGE_MEMBER_ROLE:
        return _decide_member_role_change(principal, resource, team_role)

    if action == Action.REMOVE_MEMBER:
        if principal.is_admin or is_owner:
            return Decision.ALLOW
        if team_role is None:
            return Decision.NOT_FOUND
        return Decision.ALLOW if resource.target_account_id == principal.account_id else Decision.FORBIDDEN

    if action in _OWNER_ACTIONS:
        if principal.is_admin or is_owner:
            return Decision.ALLOW
        return Decision.FORBIDDEN if team_role is not None else Decision.NOT_FOUND

    return Decision.FORBIDDEN


def _decide_member_role_change(
    principal: Principal, resource: Resource, team_role: Optional[TeamRole]
) -> Decision:
    if not principal.is_admin and team_role is None:
        return Decision.NOT_FOUND

    # Ownership must be transferred, not dropped. Applies to admins too.
    if (
        resource.target_account_id == principal.account_id
        and resource.current_role == TeamRole.OWNER
        and resource.new_role == TeamRole.MEMBER
    ):
        return Decision.FORBIDDEN

    if principal.is_admin or team_role == TeamRole.OWNER:
        return Decision.ALLOW

    # A MEMBER may not change roles at all; promotion to OWNER is the
    # escalation this guards against.
    return Decision.FORBIDDEN


_MESSAGES = {
    Action.CHANGE_MEMBER_ROLE: "Only team owners or system administrators can change team member roles.",
    Action.PROMOTE_PLATFORM_ADMIN: "Only system administrators can grant the ADMIN role.",
    Action.CHANGE_PLATFORM_ROLE: "Only system administrators can change platform roles.",
    Action.INVITE: "Only team owners or system administrators can invite users.",
    Action.LIST_INVITATIONS: "Only team owners or system administrators can view team invitations.",
    Action.MANAGE_MEMBERS: "Only team owners or system administrators can add members.",
    Action.REMOVE_MEMBER: "Only team owners or system administrators can remove other members.",
}


def enforce(
    principal: Optional[Principal],
    action: Action,
    resource: Resource,
    entity: str = "Resource",
) -> None:
    """Raise the error matching decide()'s verdict; return None on ALLOW.

    entity names the thing in the NotFoundError message ("Team not found").
    """
    decision = decide(principal, action, resource)
    if decision is Decision.ALLOW:
        return
    if decision is Decision.NOT_FOUND:
        raise NotFoundError(f"{entity} not found.")
    if decision is Decision.UNAUTHENTICATED:
        raise AuthError("Authentication required.")
    if (
        action == Action.CHANGE_MEMBER_ROLE
        and principal is not None
        and resource.target_account_id == principal.account_id
        and resource.current_role == TeamRole.OWNER
        and resource.new_role == TeamRole.MEMBER
    ):
        raise ForbiddenError("Team owners cannot demote themselves. Transfer ownership first.")
    raise ForbiddenError(_MESSAGES.get(action, "You do not have permission to perform this action."))
