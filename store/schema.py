"""
store/schema.py -- SQLAlchemy Core table definitions.

"Unique among active rows" is expressed as a partial unique index filtered on
deleted_at IS NULL (sqlite_where / postgresql_where), so a soft-deleted
account or team frees its email or slug for reuse.

Timestamps are ISO 8601 UTC text (see core.models.now_iso). Booleans are not
needed: every lifecycle flag here is a nullable timestamp.
"""

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, UniqueConstraint

metadata = MetaData()

accounts = Table(
    "accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("password_hash", Text, nullable=False),
    Column("platform_role", String(10), nullable=False, server_default="USER"),
    Column("primary_team_id", Integer),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
    Column("deleted_at", String(32)),  # soft delete
)

teams = Table(
    "teams",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(255), nullable=False),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("deleted_at", String(32)),  # soft delete
)

memberships = Table(
    "memberships",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", Integer, nullable=False),
    Column("team_id", Integer, nullable=False),
    Column("role", String(10), nullable=False, server_default="MEMBER"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("account_id", "team_id", name="uq_membership_account_team"),
)

invitations = Table(
    "invitations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("role", String(10), nullable=False, server_default="USER"),
    Column("team_id", Integer, nullable=False),
    Column("invited_by_id", Integer, nullable=False),
    Column("message", Text),
    Column("expires_at", String(32), nullable=False),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

audit_entries = Table(
    "audit_entries",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("action", String(50), nullable=False),
    Column("actor_id", Integer),
    Column("entity_type", String(50)),
    Column("entity_id", String(100)),
    Column("metadata", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False),
)

Index(
    "uq_accounts_email_active",
    accounts.c.email,
    unique=True,
    sqlite_where=accounts.c.deleted_at.is_(None),
    postgresql_where=accounts.c.deleted_at.is_(None),
)
Index(
    "uq_teams_slug_active",
    teams.c.slug,
    unique=True,
    sqlite_where=teams.c.deleted_at.is_(None),
    postgresql_where=teams.c.deleted_at.is_(None),
)
Index("ix_memberships_team_role", memberships.c.team_id, memberships.c.role)
Index("ix_invitations_email_team", invitations.c.email, invitations.c.team_id)
Index("ix_audit_entity", audit_entries.c.entity_type, audit_entries.c.entity_id)
