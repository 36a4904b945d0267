"""
datastore_link/core/db.py

Unified interface for the relational store behind the sync engine.

Two backends:
  - SqliteDatabase   — local dev + tests
  - PostgresDatabase — production (psycopg2 pool, row-level locks)

Factory function `create_database()` auto-selects based on config.

All SQL handed to a Session is written with `?` placeholders; the session
rewrites them for its driver. Rows always come back as plain dicts.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional, Sequence

from datastore_link.core.credentials import (
    CredentialProvider,
    HttpSecretSource,
    StaticDsnSource,
)
from datastore_link.core.schema import ENTITIES, Entity, schema_ddl

logger = logging.getLogger(__name__)

Row = dict[str, Any]


# ── Abstract interface ───────────────────────────────────────────────

class Session(ABC):
    """One checked-out connection. Obtain via Database.connection()."""

    dialect: str
    lock_clause: str = ""

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a statement, return affected row count."""
        ...

    @abstractmethod
    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        ...

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Row]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    @abstractmethod
    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run an INSERT into a table keyed by `id`, return the new key."""
        ...

    @abstractmethod
    @contextmanager
    def transaction(self) -> Iterator["Session"]:
        """Commit on clean exit, roll back on any exception."""
        ...

    @abstractmethod
    def ts(self, dt: datetime) -> Any:
        """Convert an aware datetime into this store's timestamp value."""
        ...


class Database(ABC):
    kind: str

    @abstractmethod
    @contextmanager
    def connection(self) -> Iterator[Session]:
        """Acquire a session; release is guaranteed on every exit path."""
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def ensure_schema(self, entities: Iterable[Entity] = ENTITIES) -> None:
        with self.connection() as s:
            with s.transaction():
                for entity in entities:
                    for stmt in schema_ddl(entity, s.dialect):
                        s.execute(stmt)

    def ping(self) -> bool:
        with self.connection() as s:
            return s.fetch_one("SELECT 1 AS ok") is not None


def _log_sql(sql: str, params: Sequence[Any]) -> None:
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug("execute sql=%s values=%r", " ".join(sql.split()), tuple(params))


# ── SQLite backend (local dev) ───────────────────────────────────────

_SQLITE_TS_FORMAT = "%Y-%m-%d %H:%M:%S.%f"


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> Row:
    return {d[0]: row[i] for i, d in enumerate(cursor.description)}


class SqliteSession(Session):
    dialect = "sqlite"

    def __init__(self, conn: sqlite3.Connection):
        self._conn = conn
        self._in_tx = False

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        _log_sql(sql, params)
        return self._conn.execute(sql, tuple(params)).rowcount

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        _log_sql(sql, params)
        return self._conn.execute(sql, tuple(params)).fetchall()

    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        _log_sql(sql, params)
        return int(self._conn.execute(sql, tuple(params)).lastrowid)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        if self._in_tx:
            yield self
            return
        # IMMEDIATE takes the write lock up front: stands in for row locks.
        self._conn.execute("BEGIN IMMEDIATE")
        self._in_tx = True
        try:
            yield self
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")
        finally:
            self._in_tx = False

    def ts(self, dt: datetime) -> str:
        # Fixed width so text comparison matches time order.
        return dt.astimezone(timezone.utc).strftime(_SQLITE_TS_FORMAT)


class SqliteDatabase(Database):
    """
    Opens a fresh connection per scope. Autocommit mode, explicit
    transactions. WAL so readers don't block on the single writer.
    """

    kind = "sqlite"

    def __init__(self, db_path: str, *, busy_timeout_s: float = 5.0):
        if db_path == ":memory:":
            raise ValueError("SqliteDatabase needs a file path; each scope opens its own connection")
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._path = db_path
        self._timeout = busy_timeout_s
        with self.connection() as s:
            s.execute("PRAGMA journal_mode=WAL;")
        logger.info("db_opened kind=sqlite path=%s", db_path)

    @contextmanager
    def connection(self) -> Iterator[Session]:
        conn = sqlite3.connect(
            self._path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = _dict_factory
        try:
            yield SqliteSession(conn)
        finally:
            conn.close()

    def close(self) -> None:
        pass


# ── Postgres backend (production) ────────────────────────────────────

class PostgresSession(Session):
    dialect = "postgres"

    def __init__(self, conn, *, lock_mode: str = "update"):
        from psycopg2.extras import RealDictCursor

        self._conn = conn
        self._cursor_factory = RealDictCursor
        self._in_tx = False
        self.lock_clause = f" FOR {lock_mode.upper()}"

    @staticmethod
    def _sql(sql: str) -> str:
        return sql.replace("?", "%s")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        _log_sql(sql, params)
        with self._conn.cursor() as cur:
            cur.execute(self._sql(sql), tuple(params))
            n = cur.rowcount
        if not self._in_tx:
            self._conn.commit()
        return n

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[Row]:
        _log_sql(sql, params)
        with self._conn.cursor(cursor_factory=self._cursor_factory) as cur:
            cur.execute(self._sql(sql), tuple(params))
            rows = [dict(r) for r in cur.fetchall()]
        if not self._in_tx:
            self._conn.commit()
        return rows

    def insert(self, sql: str, params: Sequence[Any] = ()) -> int:
        _log_sql(sql, params)
        with self._conn.cursor() as cur:
            cur.execute(self._sql(sql) + " RETURNING id", tuple(params))
            new_id = cur.fetchone()[0]
        if not self._in_tx:
            self._conn.commit()
        return int(new_id)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        if self._in_tx:
            yield self
            return
        # psycopg2 opens the transaction implicitly on first statement.
        self._in_tx = True
        try:
            yield self
        except BaseException:
            self._conn.rollback()
            raise
        else:
            self._conn.commit()
        finally:
            self._in_tx = False

    def ts(self, dt: datetime) -> datetime:
        return dt


class PostgresDatabase(Database):
    """
    psycopg2 ThreadedConnectionPool, rebuilt whenever the credential
    provider hands out a different DSN (password rotation).

    A replaced pool is retired, not closed: connections still checked out
    from it are returned there, and it is closed once the last one is back.
    """

    kind = "postgres"

    def __init__(
        self,
        credentials: CredentialProvider,
        *,
        min_conn: int = 1,
        max_conn: int = 5,
        lock_mode: str = "update",
    ):
        try:
            import psycopg2
            import psycopg2.pool
        except ImportError:
            raise RuntimeError(
                "psycopg2-binary is required for the Postgres backend. "
                "Install: pip install psycopg2-binary"
            )

        self._psycopg2 = psycopg2
        self._credentials = credentials
        self._min_conn = min_conn
        self._max_conn = max_conn
        self._lock_mode = lock_mode
        self._pool = None
        self._pool_dsn: str | None = None
        self._pool_lock = threading.Lock()
        self._leases: dict[Any, int] = {}
        logger.info("db_opened kind=postgres pool=%d-%d lock=%s", min_conn, max_conn, lock_mode)

    def _lease_pool(self):
        dsn = self._credentials.get()
        with self._pool_lock:
            if self._pool is None or dsn != self._pool_dsn:
                if self._pool is not None:
                    old = self._pool
                    logger.info("db_pool_rebuild reason=credentials_changed in_use=%d", self._leases.get(old, 0))
                    if not self._leases.get(old):
                        old.closeall()
                self._pool = self._psycopg2.pool.ThreadedConnectionPool(self._min_conn, self._max_conn, dsn)
                self._pool_dsn = dsn
            pool = self._pool
            self._leases[pool] = self._leases.get(pool, 0) + 1
            return pool

    def _release_pool(self, pool, conn=None) -> None:
        with self._pool_lock:
            if conn is not None:
                if pool.closed:
                    conn.close()
                else:
                    pool.putconn(conn)
            self._leases[pool] -= 1
            if self._leases[pool] == 0:
                del self._leases[pool]
                if pool is not self._pool and not pool.closed:
                    pool.closeall()
                    logger.info("db_pool_retired")

    @contextmanager
    def connection(self) -> Iterator[Session]:
        pool = self._lease_pool()
        try:
            conn = pool.getconn()
        except self._psycopg2.OperationalError:
            self._release_pool(pool)
            # Possibly rotated credentials; refetch next time.
            self._credentials.invalidate()
            raise
        except BaseException:
            self._release_pool(pool)
            raise

        try:
            yield PostgresSession(conn, lock_mode=self._lock_mode)
        finally:
            try:
                if not conn.closed:
                    conn.rollback()
            finally:
                self._release_pool(pool, conn)

    def close(self) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.closeall()
                self._pool = None
                self._pool_dsn = None
            for retired in self._leases:
                if not retired.closed:
                    retired.closeall()


# ── Factory ──────────────────────────────────────────────────────────

def create_database(settings) -> Database:
    """
    Auto-select the backend.

    Priority:
      1. db_secret_url → Postgres, credentials from the secret endpoint
      2. database_url  → Postgres, static DSN
      3. sqlite_path   → local SQLite
    """
    if settings.db_secret_url:
        source = HttpSecretSource(
            settings.db_secret_url,
            token=settings.db_secret_token,
            host=settings.db_host,
            timeout_s=settings.db_secret_timeout_s,
        )
    elif settings.database_url:
        source = StaticDsnSource(settings.database_url)
    else:
        logger.info("db_backend kind=sqlite path=%s", settings.sqlite_path)
        return SqliteDatabase(settings.sqlite_path, busy_timeout_s=settings.sqlite_busy_timeout_s)

    logger.info("db_backend kind=postgres source=%s", type(source).__name__)
    return PostgresDatabase(
        CredentialProvider(source, ttl_s=settings.db_credentials_ttl_s),
        min_conn=settings.db_pool_min,
        max_conn=settings.db_pool_max,
        lock_mode=settings.row_lock_mode,
    )
