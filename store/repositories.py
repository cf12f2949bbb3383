"""
store/repositories.py -- Repositories for every persisted TeamGate entity.

Pattern: Repository + Data Mapper. Each repository is bound to one
Connection -- usually the one yielded by Database.transaction() -- and holds
no state beyond it, so several repositories can share a single transaction:

    with db.transaction() as conn:
        team = TeamRepository(conn).create(Team(name="Core", slug="core"))
        MembershipRepository(conn).create(Membership(account.id, team.id, TeamRole.OWNER))

The _row_to_* functions are the mappers. Service code never touches SQL.

Soft delete: every lookup on accounts and teams filters deleted_at IS NULL
unless include_deleted=True is passed explicitly.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from sqlalchemy import func, select, true
from sqlalchemy.engine import Connection

from audit.models import AuditAction, AuditEntry
from auth.models import Account
from core.models import PlatformRole, TeamRole, now_iso
from invitations.models import Invitation
from store.schema import accounts, audit_entries, invitations, memberships, teams
from teams.models import Membership, Team

# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _active(self, include_deleted: bool):
        return true() if include_deleted else accounts.c.deleted_at.is_(None)

    def get(self, account_id: int, include_deleted: bool = False) -> Optional[Account]:
        row = self.conn.execute(
            accounts.select().where((accounts.c.id == account_id) & self._active(include_deleted))
        ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_email(self, email: str, include_deleted: bool = False) -> Optional[Account]:
        """Exact match. Callers normalize emails (strip + lowercase) before lookup."""
        row = self.conn.execute(
            accounts.select()
            .where((accounts.c.email == email) & self._active(include_deleted))
            .order_by(accounts.c.id.desc())
        ).first()
        return _row_to_account(row) if row is not None else None

    def email_exists(self, email: str) -> bool:
        return self.get_by_email(email) is not None

    def count_active(self) -> int:
        result = self.conn.execute(
            select(func.count()).select_from(accounts).where(accounts.c.deleted_at.is_(None))
        ).scalar()
        return result or 0

    def count_active_admins(self) -> int:
        result = self.conn.execute(
            select(func.count())
            .select_from(accounts)
            .where(accounts.c.deleted_at.is_(None) & (accounts.c.platform_role == PlatformRole.ADMIN.value))
        ).scalar()
        return result or 0

    def create(self, account: Account) -> Account:
        """Insert and return the stored record.

        Raises sqlalchemy.exc.IntegrityError if an active account already uses
        the email -- the partial unique index is the last line of defence when
        two writers race past the application-level check.
        """
        now = now_iso()
        result = self.conn.execute(
            accounts.insert().values(
                email=account.email,
                password_hash=account.password_hash,
                platform_role=PlatformRole(account.platform_role).value,
                primary_team_id=account.primary_team_id,
                first_name=account.first_name,
                last_name=account.last_name,
                created_at=now,
                updated_at=now,
            )
        )
        return self.get(result.inserted_primary_key[0])

    def update(self, account_id: int, **fields: Any) -> bool:
        """Update mutable fields on an active account.

        Accepted fields: platform_role, primary_team_id, first_name, last_name,
        password_hash. Returns False if the account was not found.
        """
        if "platform_role" in fields:
            fields["platform_role"] = PlatformRole(fields["platform_role"]).value
        fields["updated_at"] = now_iso()
        result = self.conn.execute(
            accounts.update().where((accounts.c.id == account_id) & accounts.c.deleted_at.is_(None)).values(**fields)
        )
        return result.rowcount > 0

    def update_last_login(self, account_id: int) -> None:
        self.conn.execute(accounts.update().where(accounts.c.id == account_id).values(last_login_at=now_iso()))

    def soft_delete(self, account_id: int) -> bool:
        now = now_iso()
        result = self.conn.execute(
            accounts.update()
            .where((accounts.c.id == account_id) & accounts.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get(self, team_id: int, include_deleted: bool = False) -> Optional[Team]:
        """Fetch a team by ID. include_deleted=True is for audit joins."""
        condition = teams.c.id == team_id
        if not include_deleted:
            condition = condition & teams.c.deleted_at.is_(None)
        row = self.conn.execute(teams.select().where(condition)).fetchone()
        return _row_to_team(row) if row is not None else None

    def get_by_slug(self, slug: str) -> Optional[Team]:
        row = self.conn.execute(
            teams.select().where((teams.c.slug == slug) & teams.c.deleted_at.is_(None))
        ).fetchone()
        return _row_to_team(row) if row is not None else None

    def slug_exists(self, slug: str) -> bool:
        return self.get_by_slug(slug) is not None

    def list_active(self) -> list[Team]:
        rows = self.conn.execute(teams.select().where(teams.c.deleted_at.is_(None)).order_by(teams.c.name)).fetchall()
        return [_row_to_team(r) for r in rows]

    def create(self, team: Team) -> Team:
        """Insert and return the stored team. IntegrityError on a duplicate active slug."""
        now = now_iso()
        result = self.conn.execute(
            teams.insert().values(
                name=team.name,
                slug=team.slug,
                description=team.description,
                created_at=now,
                updated_at=now,
            )
        )
        return self.get(result.inserted_primary_key[0])

    def count_active_members(self, team_id: int) -> int:
        """Memberships of this team whose account is not soft-deleted."""
        stmt = (
            select(func.count())
            .select_from(memberships.join(accounts, memberships.c.account_id == accounts.c.id))
            .where((memberships.c.team_id == team_id) & accounts.c.deleted_at.is_(None))
        )
        return self.conn.execute(stmt).scalar() or 0

    def soft_delete(self, team_id: int) -> bool:
        now = now_iso()
        result = self.conn.execute(
            teams.update()
            .where((teams.c.id == team_id) & teams.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


class MembershipRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def get(self, account_id: int, team_id: int) -> Optional[Membership]:
        row = self.conn.execute(
            memberships.select().where((memberships.c.account_id == account_id) & (memberships.c.team_id == team_id))
        ).fetchone()
        return _row_to_membership(row) if row is not None else None

    def create(self, membership: Membership) -> Membership:
        """Insert a membership. IntegrityError if the (account, team) pair exists."""
        now = now_iso()
        self.conn.execute(
            memberships.insert().values(
                account_id=membership.account_id,
                team_id=membership.team_id,
                role=TeamRole(membership.role).value,
                created_at=now,
                updated_at=now,
            )
        )
        return self.get(membership.account_id, membership.team_id)

    def update_role(self, membership_id: int, role: TeamRole) -> bool:
        result = self.conn.execute(
            memberships.update()
            .where(memberships.c.id == membership_id)
            .values(role=TeamRole(role).value, updated_at=now_iso())
        )
        return result.rowcount > 0

    def delete(self, account_id: int, team_id: int) -> bool:
        result = self.conn.execute(
            memberships.delete().where((memberships.c.account_id == account_id) & (memberships.c.team_id == team_id))
        )
        return result.rowcount > 0

    def delete_for_account(self, account_id: int) -> int:
        result = self.conn.execute(memberships.delete().where(memberships.c.account_id == account_id))
        return result.rowcount

    def roles_for_account(self, account_id: int) -> dict[int, TeamRole]:
        """Return {team_id: TeamRole} for every active team the account belongs to."""
        stmt = (
            select(memberships.c.team_id, memberships.c.role)
            .select_from(memberships.join(teams, memberships.c.team_id == teams.c.id))
            .where((memberships.c.account_id == account_id) & teams.c.deleted_at.is_(None))
        )
        return {row.team_id: TeamRole(row.role) for row in self.conn.execute(stmt)}

    def list_for_team(self, team_id: int) -> list[Membership]:
        """Memberships of active accounts, owners first."""
        stmt = (
            select(memberships)
            .select_from(memberships.join(accounts, memberships.c.account_id == accounts.c.id))
            .where((memberships.c.team_id == team_id) & accounts.c.deleted_at.is_(None))
            .order_by(memberships.c.role.desc(), memberships.c.id)
        )
        return [_row_to_membership(r) for r in self.conn.execute(stmt)]

    def count_owners(self, team_id: int) -> int:
        stmt = (
            select(func.count())
            .select_from(memberships.join(accounts, memberships.c.account_id == accounts.c.id))
            .where(
                (memberships.c.team_id == team_id)
                & (memberships.c.role == TeamRole.OWNER.value)
                & accounts.c.deleted_at.is_(None)
            )
        )
        return self.conn.execute(stmt).scalar() or 0


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


class InvitationRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def create(self, invitation: Invitation) -> Invitation:
        result = self.conn.execute(
            invitations.insert().values(
                email=invitation.email,
                token_hash=invitation.token_hash,
                role=PlatformRole(invitation.role).value,
                team_id=invitation.team_id,
                invited_by_id=invitation.invited_by_id,
                message=invitation.message,
                expires_at=invitation.expires_at,
                created_at=now_iso(),
            )
        )
        row = self.conn.execute(invitations.select().where(invitations.c.id == result.inserted_primary_key[0])).one()
        return _row_to_invitation(row)

    def get_by_token_hash(self, token_hash: str, for_update: bool = False) -> Optional[Invitation]:
        """Look up by digest. O(1) via the UNIQUE index.

        for_update=True adds FOR UPDATE on PostgreSQL (ignored by SQLite, whose
        write transactions already hold the database lock).
        """
        stmt = invitations.select().where(invitations.c.token_hash == token_hash)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.conn.execute(stmt).fetchone()
        return _row_to_invitation(row) if row is not None else None

    def has_active(self, email: str, team_id: int) -> bool:
        """True if an unused, unexpired invitation exists for (email, team)."""
        stmt = (
            select(func.count())
            .select_from(invitations)
            .where(
                (invitations.c.email == email)
                & (invitations.c.team_id == team_id)
                & invitations.c.used_at.is_(None)
                & (invitations.c.expires_at > now_iso())
            )
        )
        return (self.conn.execute(stmt).scalar() or 0) > 0

    def mark_used(self, invitation_id: int) -> bool:
        """Stamp used_at. Conditional on used_at IS NULL so only one caller can win."""
        result = self.conn.execute(
            invitations.update()
            .where((invitations.c.id == invitation_id) & invitations.c.used_at.is_(None))
            .values(used_at=now_iso())
        )
        return result.rowcount > 0

    def list_for_team(self, team_id: int) -> list[Invitation]:
        """All invitations for a team, newest first. token_hash is blanked."""
        rows = self.conn.execute(
            invitations.select()
            .where(invitations.c.team_id == team_id)
            .order_by(invitations.c.created_at.desc(), invitations.c.id.desc())
        ).fetchall()
        return [_row_to_invitation(r, include_hash=False) for r in rows]

    def purge_expired(self) -> int:
        """Delete expired, unused invitations. Called by the external maintenance job."""
        result = self.conn.execute(
            invitations.delete().where(invitations.c.used_at.is_(None) & (invitations.c.expires_at <= now_iso()))
        )
        return result.rowcount


# ---------------------------------------------------------------------------
# Audit entries
# ---------------------------------------------------------------------------


class AuditRepository:
    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def append(self, entry: AuditEntry) -> int:
        result = self.conn.execute(
            audit_entries.insert().values(
                action=AuditAction(entry.action).value,
                actor_id=entry.actor_id,
                entity_type=entry.entity_type,
                entity_id=entry.entity_id,
                metadata=json.dumps(entry.metadata, default=str),
                created_at=now_iso(),
            )
        )
        return result.inserted_primary_key[0]

    def list_entries(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        action: Optional[AuditAction] = None,
    ) -> list[AuditEntry]:
        """Return entries oldest first, optionally filtered."""
        stmt = audit_entries.select().order_by(audit_entries.c.id)
        if entity_type is not None:
            stmt = stmt.where(audit_entries.c.entity_type == entity_type)
        if entity_id is not None:
            stmt = stmt.where(audit_entries.c.entity_id == entity_id)
        if action is not None:
            stmt = stmt.where(audit_entries.c.action == AuditAction(action).value)
        return [_row_to_audit_entry(r) for r in self.conn.execute(stmt)]


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        platform_role=PlatformRole(row.platform_role),
        primary_team_id=row.primary_team_id,
        first_name=row.first_name,
        last_name=row.last_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login_at=row.last_login_at,
        deleted_at=row.deleted_at,
    )


def _row_to_team(row) -> Team:
    return Team(
        id=row.id,
        name=row.name,
        slug=row.slug,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
        deleted_at=row.deleted_at,
    )


def _row_to_membership(row) -> Membership:
    return Membership(
        id=row.id,
        account_id=row.account_id,
        team_id=row.team_id,
        role=TeamRole(row.role),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_invitation(row, include_hash: bool = True) -> Invitation:
    return Invitation(
        id=row.id,
        email=row.email,
        token_hash=row.token_hash if include_hash else "",
        role=PlatformRole(row.role),
        team_id=row.team_id,
        invited_by_id=row.invited_by_id,
        message=row.message,
        expires_at=row.expires_at,
        used_at=row.used_at,
        created_at=row.created_at,
    )


def _row_to_audit_entry(row) -> AuditEntry:
    # Row attribute access is avoided for a column named "metadata".
    raw = row._mapping["metadata"]
    return AuditEntry(
        id=row.id,
        action=AuditAction(row.action),
        actor_id=row.actor_id,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        metadata=json.loads(raw) if raw else {},
        created_at=row.created_at,
    )
