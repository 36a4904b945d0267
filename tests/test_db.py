"""Tests for the storage layer: schema, sessions, backend selection."""

from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
import threading

import pytest

from datastore_link.core.credentials import CredentialProvider, CredentialSource
from datastore_link.core.db import PostgresDatabase, SqliteDatabase, create_database
from datastore_link.core.schema import COMMENTS, schema_ddl
from datastore_link.core.settings import Settings
from tests.conftest import T0, fetch_all


class TestSchema:
    def test_tables_created(self, db):
        names = {
            r["name"]
            for r in fetch_all(db, "SELECT name FROM sqlite_master WHERE type = 'table'")
        }
        assert {"posts", "posts_changelog", "comments", "comments_changelog"} <= names

    def test_ensure_schema_idempotent(self, db):
        db.ensure_schema()
        db.ensure_schema()

    def test_changelog_has_no_primary_key_copy(self, db):
        cols = {r["name"] for r in fetch_all(db, "PRAGMA table_info(comments_changelog)")}
        assert "id" not in cols
        assert {"log_id", "source_id", "external_id", "version", "deleted",
                "last_changed_at", "expires_at", "content", "post_id"} <= cols

    def test_postgres_ddl(self):
        ddl = "\n".join(schema_ddl(COMMENTS, "postgres"))
        assert "id BIGSERIAL PRIMARY KEY" in ddl
        assert "deleted BOOLEAN NOT NULL DEFAULT FALSE" in ddl
        assert "last_changed_at TIMESTAMPTZ NOT NULL" in ddl
        assert "CREATE UNIQUE INDEX IF NOT EXISTS idx_comments_external_id" in ddl


class TestSqliteSession:
    def test_transaction_rolls_back_on_error(self, db):
        with pytest.raises(RuntimeError):
            with db.connection() as s:
                with s.transaction():
                    s.insert(
                        "INSERT INTO posts (external_id, title, last_changed_at) VALUES (?, ?, ?)",
                        ("x", "t", s.ts(T0)),
                    )
                    raise RuntimeError("boom")

        assert fetch_all(db, "SELECT * FROM posts") == []

    def test_timestamps_fixed_width(self, db):
        with db.connection() as s:
            assert s.ts(T0) == "2026-10-19 12:00:00.000000"

    def test_memory_path_rejected(self):
        with pytest.raises(ValueError):
            SqliteDatabase(":memory:")

    def test_ping(self, db):
        assert db.ping() is True


class TestFactory:
    def test_sqlite_by_default(self, tmp_path):
        s = Settings(SQLITE_PATH=str(tmp_path / "x.db"))
        db = create_database(s)
        assert isinstance(db, SqliteDatabase)

    def test_database_url_selects_postgres(self, tmp_path):
        s = Settings(DATABASE_URL="postgresql://u:p@localhost:1/none", SQLITE_PATH=str(tmp_path / "x.db"))
        db = create_database(s)
        assert isinstance(db, PostgresDatabase)
        assert db.kind == "postgres"
        db.close()


class _FakeConn:
    def __init__(self):
        self.closed = 0

    def rollback(self):
        pass

    def close(self):
        self.closed = 1


class _FakePool:
    def __init__(self, minconn, maxconn, dsn):
        self.dsn = dsn
        self.closed = False
        self.returned = []

    def getconn(self):
        return _FakeConn()

    def putconn(self, conn):
        assert not self.closed, "connection returned to a closed pool"
        self.returned.append(conn)

    def closeall(self):
        self.closed = True


class _RotatingSource(CredentialSource):
    def __init__(self):
        self.dsn = "password=one"

    def fetch(self):
        return self.dsn


class TestPostgresPoolRotation:
    @pytest.fixture
    def pools(self):
        return []

    @pytest.fixture
    def pg(self, pools):
        def make_pool(minconn, maxconn, dsn):
            pool = _FakePool(minconn, maxconn, dsn)
            pools.append(pool)
            return pool

        source = _RotatingSource()
        provider = CredentialProvider(source, ttl_s=0)
        database = PostgresDatabase(provider)
        database._psycopg2 = SimpleNamespace(
            pool=SimpleNamespace(ThreadedConnectionPool=make_pool),
            OperationalError=RuntimeError,
        )
        database.source = source
        return database

    def test_rotation_keeps_busy_pool_open(self, pg, pools):
        with pg.connection():
            pg.source.dsn = "password=two"
            with pg.connection():
                assert len(pools) == 2
                assert not pools[0].closed
            assert not pools[0].closed

        assert pools[0].closed
        assert len(pools[0].returned) == 1
        assert not pools[1].closed
        assert len(pools[1].returned) == 1

    def test_idle_pool_closed_on_rotation(self, pg, pools):
        with pg.connection():
            pass
        pg.source.dsn = "password=two"
        with pg.connection():
            assert pools[0].closed

    def test_same_dsn_reuses_pool(self, pg, pools):
        with pg.connection():
            pass
        with pg.connection():
            pass
        assert len(pools) == 1

    def test_concurrent_rotation_builds_one_pool(self, pg, pools):
        pg.source.dsn = "password=two"
        barrier = threading.Barrier(8)

        def use():
            barrier.wait()
            with pg.connection():
                pass

        with ThreadPoolExecutor(max_workers=8) as ex:
            list(ex.map(lambda _: use(), range(8)))

        assert len(pools) == 1
        assert len(pools[0].returned) == 8

    def test_release_after_close_does_not_raise(self, pg, pools):
        with pg.connection():
            pg.close()
        assert pools[0].closed
