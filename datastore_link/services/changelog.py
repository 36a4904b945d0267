from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from datastore_link.core.db import Session
from datastore_link.core.schema import Entity
from datastore_link.core.time import Clock, utc_now
from datastore_link.services.normalizer import synthesized_external_id

logger = logging.getLogger(__name__)

_COPIED_SYNC_COLUMNS = ("external_id", "version", "deleted", "last_changed_at")


class ChangeLog:
    """
    Mirrors mutated rows into `<table>_changelog` so short-horizon syncs can
    read a small table instead of the primary one.

    Runs synchronously after the mutation commits, in its own transaction.
    A failure here is logged and swallowed: the primary table is the record.
    """

    def __init__(self, *, retention: timedelta, clock: Clock = utc_now):
        self.retention = retention
        self.clock = clock

    def entry_for(self, session: Session, row: dict[str, Any], entity: Entity) -> dict[str, Any]:
        entry: dict[str, Any] = {"source_id": row["id"]}
        for col in (*_COPIED_SYNC_COLUMNS, *entity.domain_columns):
            entry[col] = row.get(col)
        if not entry["external_id"]:
            entry["external_id"] = synthesized_external_id(row["id"])
        entry["expires_at"] = session.ts(self.clock() + self.retention)
        return entry

    def mirror(self, session: Session, row: dict[str, Any], entity: Entity) -> bool:
        try:
            entry = self.entry_for(session, row, entity)
            cols = list(entry)
            sql = (
                f"INSERT INTO {entity.changelog_table} ({', '.join(cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)})"
            )
            with session.transaction():
                session.execute(sql, [entry[c] for c in cols])
        except Exception as e:
            logger.warning(
                "changelog_mirror_failed table=%s external_id=%s err=%r",
                entity.table, row.get("external_id"), e,
            )
            return False
        return True
