"""
store/db.py -- Engine ownership, transaction scope, and the table-lock primitive.

Uses SQLAlchemy Core so swapping SQLite for PostgreSQL is a connection-string
change, not a rewrite.

Transaction scope:
  Database.transaction() is the one way to run a multi-step mutation. It
  checks out a connection, begins a transaction, yields the connection, and
  commits on normal exit. ANY exception -- including KeyboardInterrupt or a
  cancelled request unwinding through the block -- rolls the transaction back
  and the connection is always returned to the pool. There is no path that
  leaves an open transaction behind.

Table lock:
  lock_table(conn, name) serializes concurrent writers around a decision
  such as "is this the first account ever".
    PostgreSQL: LOCK TABLE <name> IN SHARE ROW EXCLUSIVE MODE, held until the
                transaction ends. Concurrent lockers queue; readers proceed.
    SQLite:     lock granularity is the whole database. Write transactions are
                opened with BEGIN IMMEDIATE (see _sqlite_begin), which takes the
                RESERVED lock up front, so by the time lock_table() runs the
                exclusion is already in place and the call is a no-op.

  pysqlite's own transaction handling emits BEGIN lazily and cannot express
  IMMEDIATE, so it is switched off on connect and BEGIN is emitted from the
  "begin" event instead (the recipe from the SQLAlchemy SQLite dialect docs).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from core.config import get_settings
from core.errors import ConflictError, InternalError, TeamGateError
from store.migrations import run_migrations
from store.schema import metadata

logger = logging.getLogger("teamgate.store")

# Only these names may be interpolated into LOCK TABLE. Table names cannot be
# bound as parameters, so the whitelist is what keeps the statement safe.
_LOCKABLE_TABLES = frozenset({"accounts", "teams", "memberships", "invitations"})


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _sqlite_on_connect(dbapi_conn, connection_record) -> None:
    """Disable pysqlite's implicit BEGIN and enable WAL journal mode.

    WAL lets readers proceed while a writer holds the reserved lock. Set
    per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.isolation_level = None
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _sqlite_begin(conn: Connection) -> None:
    mode = "IMMEDIATE" if conn.get_execution_options().get("write_lock") else "DEFERRED"
    conn.exec_driver_sql(f"BEGIN {mode}")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and hands out connections and transactions.

    Usage:
        db = Database("sqlite:///teamgate.db")
        with db.transaction() as conn:
            AccountRepository(conn).create(account)
        with db.connect() as conn:        # read-only work
            AccountRepository(conn).get(account_id)
        db.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        self.is_sqlite = db_url.startswith("sqlite")
        if self.is_sqlite:
            # Services may be called from a thread pool (FastAPI sync routes).
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 30
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if self.is_sqlite:
            event.listen(self.engine, "connect", _sqlite_on_connect)
            event.listen(self.engine, "begin", _sqlite_begin)
        metadata.create_all(self.engine)
        with self.transaction() as conn:
            run_migrations(conn)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside one ACID transaction.

        Commit on normal exit; rollback and re-raise on any exception.
        """
        with self.engine.connect() as conn:
            conn.execution_options(write_lock=True)
            with conn.begin():
                yield conn

    @contextmanager
    def connect(self) -> Iterator[Connection]:
        """Yield a connection for read-only work (deferred transaction, rolled back on close)."""
        with self.engine.connect() as conn:
            yield conn

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception:
            logger.exception("Database ping failed")
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def lock_table(conn: Connection, table_name: str) -> None:
    """Take an exclusive lock on table_name for the rest of conn's transaction.

    Must be called inside Database.transaction(). Raises ValueError for a
    table outside the whitelist.
    """
    if table_name not in _LOCKABLE_TABLES:
        raise ValueError(f"Refusing to lock unknown table {table_name!r}")
    if conn.dialect.name == "postgresql":
        conn.execute(text(f"LOCK TABLE {table_name} IN SHARE ROW EXCLUSIVE MODE"))  # nosemgrep
    elif conn.dialect.name == "sqlite":
        # Already exclusive: the transaction was opened with BEGIN IMMEDIATE.
        return
    else:
        logger.warning("lock_table: no table lock available for dialect %s", conn.dialect.name)


@contextmanager
def translate_errors(
    log: logging.Logger,
    operation: str,
    conflict_message: str = "Resource already exists.",
) -> Iterator[None]:
    """Map failures escaping a service block onto the TeamGateError taxonomy.

    Wrap it around Database.transaction() so the rollback has already
    happened by the time an error is translated:

        with translate_errors(logger, "create_team", "Slug already in use."):
            with db.transaction() as conn:
                ...

    TeamGateError passes through unchanged. IntegrityError (a unique index
    lost a race) becomes ConflictError. Anything else is logged with its
    traceback and re-raised as InternalError carrying a generic message.
    """
    try:
        yield
    except TeamGateError:
        raise
    except IntegrityError as exc:
        raise ConflictError(conflict_message) from exc
    except Exception as exc:
        log.exception("%s failed", operation)
        raise InternalError("An unexpected error occurred. Please try again.") from exc
