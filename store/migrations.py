"""
store/migrations.py -- One-time schema migrations run at Database startup.

metadata.create_all() only creates missing tables; it never reshapes existing
ones. The functions here fill that gap. Every step is idempotent, so running
them on every startup is safe.

Legacy team-admin pointer:
  Older databases authorized team management through a teams.admin_user_id
  column AND a membership table. Two coexisting sources of truth meant one
  code path could grant what the other denied. _fold_legacy_team_admins()
  turns each non-null pointer into an OWNER membership (promoting an existing
  MEMBER row if needed) and then clears the pointer. After it runs,
  memberships are the only thing RoleAuthority consults.
"""

from __future__ import annotations

import logging

from sqlalchemy import inspect, select, text
from sqlalchemy.engine import Connection

from core.models import TeamRole, now_iso
from store.schema import memberships

logger = logging.getLogger("teamgate.store.migrations")


def _fold_legacy_team_admins(conn: Connection) -> int:
    """Convert teams.admin_user_id pointers into OWNER memberships.

    Returns the number of teams migrated. A no-op when the column is absent
    (fresh databases never have it) or already cleared.
    """
    columns = {col["name"] for col in inspect(conn).get_columns("teams")}
    if "admin_user_id" not in columns:
        return 0
    # The column is not part of the current schema, so it is addressed with
    # text(); the name is a constant, never user input.
    rows = conn.execute(text("SELECT id, admin_user_id FROM teams WHERE admin_user_id IS NOT NULL")).fetchall()
    now = now_iso()
    for team_id, account_id in rows:
        existing = conn.execute(
            select(memberships.c.id, memberships.c.role).where(
                (memberships.c.account_id == account_id) & (memberships.c.team_id == team_id)
            )
        ).fetchone()
        if existing is None:
            conn.execute(
                memberships.insert().values(
                    account_id=account_id,
                    team_id=team_id,
                    role=TeamRole.OWNER.value,
                    created_at=now,
                    updated_at=now,
                )
            )
        elif existing.role != TeamRole.OWNER.value:
            conn.execute(
                memberships.update()
                .where(memberships.c.id == existing.id)
                .values(role=TeamRole.OWNER.value, updated_at=now)
            )
    if rows:
        conn.execute(text("UPDATE teams SET admin_user_id = NULL WHERE admin_user_id IS NOT NULL"))
        logger.info("Folded %d legacy team admin pointer(s) into OWNER memberships", len(rows))
    return len(rows)


def run_migrations(conn: Connection) -> None:
    """Apply every migration step. Called inside the startup transaction."""
    _fold_legacy_team_admins(conn)
