"""
teams/service.py -- MembershipService: team lifecycle and membership changes.

Every mutation follows the same shape:

    with translate_errors(...):                 # map failures to TeamGateError
        with db.transaction() as conn:          # one ACID unit
            actor, principal = load_principal(conn, actor)
            enforce(principal, Action..., Resource(...))
            ...repository calls...
    audit.record(...)                           # after commit, best effort

Authorization lives entirely in auth.authority; this module only gathers the
facts (team, memberships, current role) the decision needs. A team the actor
cannot see reads as "not found", whether it exists or not.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from audit.models import AuditAction
from audit.recorder import AuditRecorder
from auth.authority import Action, Resource, enforce
from auth.models import Account
from auth.principal import load_principal
from core.errors import ConflictError, NotFoundError, ValidationError
from core.models import SLUG_PATTERN, TeamRole
from store.db import Database, lock_table, translate_errors
from store.repositories import AccountRepository, MembershipRepository, TeamRepository
from teams.models import Membership, RoleChange, Team

logger = logging.getLogger("teamgate.teams")

_SLUG_RE = re.compile(SLUG_PATTERN)

DUPLICATE_SLUG = "A team with this slug already exists."


def validate_team_fields(name: str, slug: str) -> tuple[str, str]:
    name = (name or "").strip()
    slug = (slug or "").strip()
    if not name:
        raise ValidationError("Team name must not be blank.")
    if len(name) > 255:
        raise ValidationError("Team name must be at most 255 characters.")
    if not slug or len(slug) > 255 or not _SLUG_RE.match(slug):
        raise ValidationError("Slug may contain only lowercase letters, digits, and hyphens.")
    return name, slug


class MembershipService:
    def __init__(self, db: Database, audit: AuditRecorder) -> None:
        self.db = db
        self.audit = audit

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_team(self, principal: Account, team_id: int) -> Team:
        with self.db.connect() as conn:
            _, who = load_principal(conn, principal)
            team = TeamRepository(conn).get(team_id)
            enforce(who, Action.READ, Resource(team_id=team_id, deleted=team is None), entity="Team")
            return team

    def list_members(self, principal: Account, team_id: int) -> list[Membership]:
        with self.db.connect() as conn:
            _, who = load_principal(conn, principal)
            team = TeamRepository(conn).get(team_id)
            enforce(who, Action.READ, Resource(team_id=team_id, deleted=team is None), entity="Team")
            return MembershipRepository(conn).list_for_team(team_id)

    def list_teams(self, principal: Account) -> list[Team]:
        """Active teams visible to principal: all of them for an ADMIN."""
        with self.db.connect() as conn:
            _, who = load_principal(conn, principal)
            teams = TeamRepository(conn).list_active()
        if who.is_admin:
            return teams
        return [t for t in teams if t.id in who.memberships]

    # ------------------------------------------------------------------
    # Team lifecycle
    # ------------------------------------------------------------------

    def create_team(self, creator: Account, name: str, slug: str, description: Optional[str] = None) -> Team:
        """Create a team with creator as its single OWNER.

        Creating a team never touches the creator's platform role.
        """
        name, slug = validate_team_fields(name, slug)

        with translate_errors(logger, "create_team", DUPLICATE_SLUG):
            with self.db.transaction() as conn:
                creator, _ = load_principal(conn, creator)
                repo = TeamRepository(conn)
                if repo.slug_exists(slug):
                    raise ConflictError(DUPLICATE_SLUG)
                team = repo.create(Team(name=name, slug=slug, description=description))
                MembershipRepository(conn).create(Membership(creator.id, team.id, TeamRole.OWNER))

        logger.info("Team created: id=%d slug=%s owner=%d", team.id, team.slug, creator.id)
        self.audit.record(
            AuditAction.TEAM_CREATED,
            actor_id=creator.id,
            entity_type="team",
            entity_id=team.id,
            metadata={"name": team.name, "slug": team.slug},
        )
        return team

    def delete_team(self, team_id: int, actor: Optional[Account] = None) -> Team:
        """Soft-delete a team that has no active members.

        actor is optional so maintenance code can call this without a
        principal; when given, it must pass RoleAuthority DELETE.
        """
        with translate_errors(logger, "delete_team"):
            with self.db.transaction() as conn:
                repo = TeamRepository(conn)
                team = repo.get(team_id)
                if actor is not None:
                    _, who = load_principal(conn, actor)
                    enforce(who, Action.DELETE, Resource(team_id=team_id, deleted=team is None), entity="Team")
                if team is None:
                    raise NotFoundError("Team not found.")
                lock_table(conn, "memberships")
                member_count = repo.count_active_members(team_id)
                if member_count > 0:
                    raise ConflictError(
                        f"Cannot delete team with {member_count} active member(s). Remove all members first.",
                        member_count=member_count,
                    )
                repo.soft_delete(team_id)
                deleted = repo.get(team_id, include_deleted=True)

        logger.info("Team soft-deleted: id=%d slug=%s", team_id, team.slug)
        self.audit.record_deletion(actor.id if actor is not None else None, "team", team_id, team.name)
        return deleted

    # ------------------------------------------------------------------
    # Membership changes
    # ------------------------------------------------------------------

    def add_member(self, actor: Account, team_id: int, target_id: int) -> Membership:
        """Make target a MEMBER of team_id and point its primary team there.

        An account whose primary team is another active team has to leave it
        first; an existing membership row for this team is a conflict.
        """
        with translate_errors(logger, "add_member", "Account is already a member of this team."):
            with self.db.transaction() as conn:
                _, who = load_principal(conn, actor)
                teams = TeamRepository(conn)
                team = teams.get(team_id)
                enforce(who, Action.MANAGE_MEMBERS, Resource(team_id=team_id, deleted=team is None), entity="Team")

                accounts = AccountRepository(conn)
                target = accounts.get(target_id)
                if target is None:
                    raise NotFoundError("Account not found.")

                members = MembershipRepository(conn)
                if members.get(target_id, team_id) is not None:
                    raise ConflictError("Account is already a member of this team.")
                if (
                    target.primary_team_id is not None
                    and target.primary_team_id != team_id
                    and teams.get(target.primary_team_id) is not None
                ):
                    raise ConflictError("Account belongs to another team. It must leave its current team first.")

                accounts.update(target_id, primary_team_id=team_id)
                membership = members.create(Membership(target_id, team_id, TeamRole.MEMBER))

        logger.info("Member added: team=%d account=%d by=%d", team_id, target_id, actor.id)
        self.audit.record(
            AuditAction.TEAM_MEMBER_ADDED,
            actor_id=actor.id,
            entity_type="team",
            entity_id=team_id,
            metadata={"account_id": target_id, "role": membership.role.value},
        )
        return membership

    def remove_member(self, actor: Account, team_id: int, target_id: int) -> None:
        """Remove target from team_id (an account may always remove itself).

        The last OWNER may leave only when nobody else is left in the team.
        """
        with translate_errors(logger, "remove_member"):
            with self.db.transaction() as conn:
                _, who = load_principal(conn, actor)
                teams = TeamRepository(conn)
                team = teams.get(team_id)
                enforce(
                    who,
                    Action.REMOVE_MEMBER,
                    Resource(team_id=team_id, target_account_id=target_id, deleted=team is None),
                    entity="Team",
                )

                members = MembershipRepository(conn)
                membership = members.get(target_id, team_id)
                if membership is None:
                    raise NotFoundError("Membership not found.")
                if membership.role == TeamRole.OWNER:
                    lock_table(conn, "memberships")
                    if members.count_owners(team_id) <= 1 and teams.count_active_members(team_id) > 1:
                        raise ConflictError("Cannot remove the last owner of a team. Transfer ownership first.")

                members.delete(target_id, team_id)
                accounts = AccountRepository(conn)
                target = accounts.get(target_id)
                if target is not None and target.primary_team_id == team_id:
                    accounts.update(target_id, primary_team_id=None)

        logger.info("Member removed: team=%d account=%d by=%d", team_id, target_id, actor.id)
        self.audit.record(
            AuditAction.TEAM_MEMBER_REMOVED,
            actor_id=actor.id,
            entity_type="team",
            entity_id=team_id,
            metadata={"account_id": target_id, "role": membership.role.value},
        )

    def change_member_role(self, actor: Account, team_id: int, target_id: int, new_role: TeamRole) -> RoleChange:
        new_role = TeamRole(new_role)

        with translate_errors(logger, "change_member_role"):
            with self.db.transaction() as conn:
                _, who = load_principal(conn, actor)
                team = TeamRepository(conn).get(team_id)
                members = MembershipRepository(conn)
                membership = members.get(target_id, team_id) if team is not None else None
                enforce(
                    who,
                    Action.CHANGE_MEMBER_ROLE,
                    Resource(
                        team_id=team_id,
                        target_account_id=target_id,
                        current_role=membership.role if membership is not None else None,
                        new_role=new_role,
                        deleted=team is None,
                    ),
                    entity="Team",
                )
                if membership is None:
                    raise NotFoundError("Membership not found.")

                old_role = membership.role
                if old_role == TeamRole.OWNER and new_role == TeamRole.MEMBER:
                    lock_table(conn, "memberships")
                    if members.count_owners(team_id) <= 1:
                        raise ConflictError("A team must keep at least one owner.")
                if old_role != new_role:
                    members.update_role(membership.id, new_role)

        change = RoleChange(account_id=target_id, old_role=old_role.value, new_role=new_role.value, team_id=team_id)
        if old_role != new_role:
            logger.info(
                "Member role changed: team=%d account=%d %s -> %s", team_id, target_id, change.old_role, change.new_role
            )
            self.audit.record_member_role_change(actor.id, team_id, target_id, change.old_role, change.new_role)
        return change
