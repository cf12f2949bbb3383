"""Tests for store/ -- transactions, table lock, partial unique indexes, and the legacy migration.

Covers:
- Database.transaction() commits on success and rolls back on any exception
- lock_table() refuses tables outside the whitelist
- "unique among active" email enforced by the partial index
- teams.admin_user_id pointers are folded into OWNER memberships, idempotently
- audit metadata round-trips as JSON
"""

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import IntegrityError

from audit.models import AuditAction, AuditEntry
from auth.models import Account
from core.models import TeamRole
from store.db import Database, lock_table
from store.repositories import AccountRepository, AuditRepository, MembershipRepository, TeamRepository
from teams.models import Team


def test_transaction_commits(db):
    with db.transaction() as conn:
        TeamRepository(conn).create(Team(name="Kept", slug="kept"))
    with db.connect() as conn:
        assert TeamRepository(conn).get_by_slug("kept") is not None


def test_transaction_rolls_back_on_exception(db):
    with pytest.raises(RuntimeError):
        with db.transaction() as conn:
            TeamRepository(conn).create(Team(name="Lost", slug="lost"))
            raise RuntimeError("abort")
    with db.connect() as conn:
        assert TeamRepository(conn).get_by_slug("lost") is None


def test_transaction_rolls_back_on_keyboard_interrupt(db):
    with pytest.raises(KeyboardInterrupt):
        with db.transaction() as conn:
            TeamRepository(conn).create(Team(name="Cancelled", slug="cancelled"))
            raise KeyboardInterrupt
    with db.connect() as conn:
        assert TeamRepository(conn).get_by_slug("cancelled") is None
    # The connection went back to the pool; a new write transaction still works.
    with db.transaction() as conn:
        TeamRepository(conn).create(Team(name="After", slug="after"))


def test_lock_table_whitelist(db):
    with db.transaction() as conn:
        lock_table(conn, "accounts")
        with pytest.raises(ValueError):
            lock_table(conn, "accounts; DROP TABLE accounts")


def test_active_email_unique_index(db):
    with db.transaction() as conn:
        AccountRepository(conn).create(Account(email="x@example.com", password_hash="h"))
    with pytest.raises(IntegrityError):
        with db.transaction() as conn:
            AccountRepository(conn).create(Account(email="x@example.com", password_hash="h"))


def test_audit_metadata_round_trip(db):
    with db.transaction() as conn:
        AuditRepository(conn).append(
            AuditEntry(
                action=AuditAction.RESOURCE_ASSIGNED,
                entity_type="task",
                entity_id="7",
                actor_id=1,
                metadata={"old_assignee_id": None, "new_assignee_id": 3},
            )
        )
    with db.connect() as conn:
        (entry,) = AuditRepository(conn).list_entries(entity_type="task")
    assert entry.metadata == {"old_assignee_id": None, "new_assignee_id": 3}
    assert entry.created_at


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------


def _legacy_database(url: str) -> None:
    """Create a teams table in the old shape (with admin_user_id) plus memberships."""
    engine = create_engine(url)
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE teams ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " name VARCHAR(255) NOT NULL,"
                " slug VARCHAR(255) NOT NULL,"
                " description TEXT,"
                " admin_user_id INTEGER,"
                " created_at VARCHAR(32) NOT NULL,"
                " updated_at VARCHAR(32) NOT NULL,"
                " deleted_at VARCHAR(32))"
            )
        )
        conn.execute(
            text(
                "CREATE TABLE memberships ("
                " id INTEGER PRIMARY KEY AUTOINCREMENT,"
                " account_id INTEGER NOT NULL,"
                " team_id INTEGER NOT NULL,"
                " role VARCHAR(10) NOT NULL DEFAULT 'MEMBER',"
                " created_at VARCHAR(32) NOT NULL,"
                " updated_at VARCHAR(32) NOT NULL,"
                " UNIQUE (account_id, team_id))"
            )
        )
        ts = "2024-01-01T00:00:00.000000+00:00"
        conn.execute(
            text(
                "INSERT INTO teams (id, name, slug, admin_user_id, created_at, updated_at) VALUES "
                "(1, 'Alpha', 'alpha', 5, :ts, :ts), (2, 'Beta', 'beta', 6, :ts, :ts), (3, 'Gamma', 'gamma', NULL, :ts, :ts)"
            ),
            {"ts": ts},
        )
        conn.execute(
            text(
                "INSERT INTO memberships (account_id, team_id, role, created_at, updated_at) "
                "VALUES (6, 2, 'MEMBER', :ts, :ts)"
            ),
            {"ts": ts},
        )
    engine.dispose()


def test_legacy_team_admins_folded_into_owner_memberships(tmp_path):
    url = f"sqlite:///{tmp_path / 'legacy.db'}"
    _legacy_database(url)

    database = Database(url)
    try:
        with database.connect() as conn:
            repo = MembershipRepository(conn)
            assert repo.get(5, 1).role == TeamRole.OWNER
            assert repo.get(6, 2).role == TeamRole.OWNER
            assert repo.get(5, 3) is None
            pointers = conn.execute(text("SELECT COUNT(*) FROM teams WHERE admin_user_id IS NOT NULL")).scalar()
        assert pointers == 0
    finally:
        database.close()

    # Second startup is a no-op.
    again = Database(url)
    try:
        with again.connect() as conn:
            total = conn.execute(text("SELECT COUNT(*) FROM memberships")).scalar()
        assert total == 2
    finally:
        again.close()
