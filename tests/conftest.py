"""
Shared fixtures: a temp-file SQLite store with the sync schema, and a
frozen clock so every written timestamp is predictable.
"""

from datetime import datetime, timedelta, timezone

import pytest

from datastore_link.core.db import SqliteDatabase
from datastore_link.services.changelog import ChangeLog
from datastore_link.services.dispatcher import Dispatcher
from datastore_link.services.mutations import Mutations
from datastore_link.services.scan import Retention, Scanner

T0 = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock(T0)


@pytest.fixture
def db(tmp_path):
    database = SqliteDatabase(str(tmp_path / "sync.db"))
    database.ensure_schema()
    yield database
    database.close()


@pytest.fixture
def retention():
    return Retention(changelog=timedelta(minutes=30), base_table=timedelta(minutes=43200))


@pytest.fixture
def changelog(retention, clock):
    return ChangeLog(retention=retention.changelog, clock=clock)


@pytest.fixture
def scanner(db, retention, clock):
    return Scanner(db=db, retention=retention, clock=clock)


@pytest.fixture
def mutations(db, changelog, retention, clock):
    return Mutations(
        db=db,
        changelog=changelog,
        base_table_retention=retention.base_table,
        clock=clock,
    )


@pytest.fixture
def dispatcher(scanner, mutations):
    return Dispatcher(scanner=scanner, mutations=mutations)


def fetch_all(db, sql, params=()):
    with db.connection() as s:
        return s.fetch_all(sql, params)
