"""
datastore_link/services/scan.py

Incremental sync ("list changes") for one entity.

A request's recency marker decides where rows are read from:

  no marker                        → full scan of the primary table
  marker <  now - changelog window → primary table, last_changed_at > marker
  marker >= now - changelog window → change-log table, last_changed_at > marker

Change-log entries older than the window have expired, so an old marker
can only be served from the primary table. The parent side of a join is
always the parent's primary table.

Tombstoned rows are never filtered out; clients need them to reconcile.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional

from datastore_link.core.contracts import ScanArgs
from datastore_link.core.cursor import decode_cursor, encode_cursor
from datastore_link.core.db import Database, Session
from datastore_link.core.schema import Entity
from datastore_link.core.time import Clock, from_epoch_ms, to_epoch_ms, utc_now
from datastore_link.services.normalizer import normalize

logger = logging.getLogger(__name__)


class ScanSource(Enum):
    FULL = "full"
    PRIMARY_DELTA = "primary_delta"
    CHANGELOG_DELTA = "changelog_delta"


@dataclass(frozen=True)
class Retention:
    changelog: timedelta = timedelta(minutes=30)
    base_table: timedelta = timedelta(minutes=43200)

    @classmethod
    def from_settings(cls, s) -> "Retention":
        return cls(
            changelog=timedelta(minutes=s.changelog_retention_min),
            base_table=timedelta(minutes=s.base_table_retention_min),
        )


@dataclass(frozen=True)
class QueryPlan:
    source: ScanSource
    sql: str
    params: tuple
    offset: int
    limit: int


# ──────────────────────────────────────────────────────────────
# Row lookup building blocks (shared with mutations)
# ──────────────────────────────────────────────────────────────

def select_from(entity: Entity, table: str, *, join: str = "JOIN") -> str:
    """SELECT over `table` aliased `t`, plus the parent columns if related."""
    rel = entity.relation
    if rel is None:
        return f"SELECT t.* FROM {table} t"
    return (
        f"SELECT t.*, p.external_id AS {rel.id_alias}, p.deleted AS {rel.deleted_alias} "
        f"FROM {table} t {join} {rel.parent_table} p ON t.{rel.column} = p.external_id"
    )


def lookup_sql(entity: Entity, key_column: str) -> str:
    # LEFT JOIN: a single-row read must not lose an orphaned child.
    return select_from(entity, entity.table, join="LEFT JOIN") + f" WHERE t.{key_column} = ?"


def fetch_by_key(session: Session, entity: Entity, key_column: str, value: Any) -> Optional[dict[str, Any]]:
    return session.fetch_one(lookup_sql(entity, key_column), (value,))


# ──────────────────────────────────────────────────────────────
# Planning
# ──────────────────────────────────────────────────────────────

def choose_source(recency_marker: Optional[int], window_start_ms: int) -> ScanSource:
    if recency_marker is None:
        return ScanSource.FULL
    if recency_marker < window_start_ms:
        return ScanSource.PRIMARY_DELTA
    return ScanSource.CHANGELOG_DELTA


def plan_scan(
    entity: Entity,
    *,
    session: Session,
    now: datetime,
    changelog_window: timedelta,
    recency_marker: Optional[int] = None,
    cursor: Optional[str] = None,
    limit: int = 1000,
) -> QueryPlan:
    offset = decode_cursor(cursor)
    window_start_ms = to_epoch_ms(now - changelog_window)
    source = choose_source(recency_marker, window_start_ms)

    if source is ScanSource.CHANGELOG_DELTA:
        table, order_key = entity.changelog_table, "log_id"
    else:
        table, order_key = entity.table, "id"

    sql = select_from(entity, table)
    params: list[Any] = []
    if source is not ScanSource.FULL:
        sql += " WHERE t.last_changed_at > ?"
        params.append(session.ts(from_epoch_ms(recency_marker)))
    if source is ScanSource.CHANGELOG_DELTA:
        # Expired entries may linger until an external purge removes them.
        sql += " AND t.expires_at > ?"
        params.append(session.ts(now))
    sql += f" ORDER BY t.{order_key} LIMIT ? OFFSET ?"
    params.extend([limit, offset])

    return QueryPlan(source=source, sql=sql, params=tuple(params), offset=offset, limit=limit)


# ──────────────────────────────────────────────────────────────
# Service
# ──────────────────────────────────────────────────────────────

class Scanner:
    def __init__(
        self,
        *,
        db: Database,
        retention: Retention,
        clock: Clock = utc_now,
        default_limit: int = 1000,
        max_limit: int = 10000,
    ):
        self.db = db
        self.retention = retention
        self.clock = clock
        self.default_limit = default_limit
        self.max_limit = max_limit

    def sync(self, entity: Entity, args: ScanArgs) -> dict[str, Any]:
        now = self.clock()
        started_at = to_epoch_ms(now)
        limit = min(args.limit or self.default_limit, self.max_limit)

        with self.db.connection() as s:
            plan = plan_scan(
                entity,
                session=s,
                now=now,
                changelog_window=self.retention.changelog,
                recency_marker=args.recency_marker,
                cursor=args.cursor,
                limit=limit,
            )
            rows = s.fetch_all(plan.sql, plan.params)

        logger.info(
            "scan table=%s source=%s offset=%d rows=%d",
            entity.table, plan.source.value, plan.offset, len(rows),
        )

        next_cursor = encode_cursor(plan.offset + len(rows)) if len(rows) >= limit else None
        return {
            "data": {
                "items": [normalize(r, entity.relation) for r in rows],
                "started_at": started_at,
                "next_cursor": next_cursor,
            }
        }
