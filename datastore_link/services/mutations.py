"""
datastore_link/services/mutations.py

create / update / delete against a primary table with optimistic
concurrency control.

Update and delete run as a locked read-check-write:

  lock row by external_id
  stamp last_changed_at
  UPDATE ... SET ..., version = version + 1
         WHERE external_id = ? AND version = ?
  re-read (joined to parent)
  commit

  1 row affected → success, mirrored to the change log
  0 rows affected → Conflict, current stored state returned, not mirrored
  no row at all  → {"data": None}
"""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, Optional

from datastore_link.core.contracts import (
    CreateInput,
    MutationArgs,
    VersionedInput,
    conflict,
    ok,
)
from datastore_link.core.db import Database, Session
from datastore_link.core.errors import UnknownField
from datastore_link.core.schema import Entity
from datastore_link.core.time import Clock, utc_now
from datastore_link.services.changelog import ChangeLog
from datastore_link.services.normalizer import normalize
from datastore_link.services.scan import fetch_by_key

logger = logging.getLogger(__name__)

# Derived or engine-managed; silently dropped from client input.
_IGNORED_INPUT = frozenset(
    {"id", "internal_id", "version", "deleted", "last_changed_at", "expires_at"}
)


@contextmanager
def with_locked_row(session: Session, entity: Entity, external_id: str) -> Iterator[Optional[dict[str, Any]]]:
    """
    Transaction holding a row lock on `external_id` for the body's
    duration. Yields the locked pre-image (None if there is no such row).
    Commits on clean exit, rolls back if the body raises.
    """
    with session.transaction():
        row = session.fetch_one(
            f"SELECT * FROM {entity.table} WHERE external_id = ?{session.lock_clause}",
            (external_id,),
        )
        yield row


def writable_fields(entity: Entity, data: Optional[dict[str, Any]]) -> dict[str, Any]:
    fields = {}
    unknown = []
    allowed = set(entity.domain_columns)
    relation_key = entity.relation.name if entity.relation else None

    for k, v in (data or {}).items():
        if k in _IGNORED_INPUT or k == relation_key:
            continue
        if k not in allowed:
            unknown.append(k)
            continue
        fields[k] = v

    if unknown:
        raise UnknownField(entity.table, sorted(unknown))
    return fields


class Mutations:
    def __init__(
        self,
        *,
        db: Database,
        changelog: ChangeLog,
        base_table_retention: timedelta,
        clock: Clock = utc_now,
    ):
        self.db = db
        self.changelog = changelog
        self.base_table_retention = base_table_retention
        self.clock = clock

    # ──────────────────────────────────────────────────────────
    # create
    # ──────────────────────────────────────────────────────────

    def create(self, entity: Entity, args: MutationArgs) -> dict[str, Any]:
        inp = CreateInput.model_validate(args.input)
        fields = writable_fields(entity, inp.model_extra)
        external_id = inp.external_id or str(uuid.uuid4())

        with self.db.connection() as s:
            with s.transaction():
                item = {
                    **fields,
                    "external_id": external_id,
                    "version": 1,
                    "deleted": False,
                    "last_changed_at": s.ts(self.clock()),
                }
                cols = list(item)
                sql = (
                    f"INSERT INTO {entity.table} ({', '.join(cols)}) "
                    f"VALUES ({', '.join('?' for _ in cols)})"
                )
                new_id = s.insert(sql, [item[c] for c in cols])
                row = fetch_by_key(s, entity, "id", new_id)

            logger.info("created table=%s id=%s external_id=%s", entity.table, new_id, external_id)
            self.changelog.mirror(s, row, entity)

        return ok(normalize(row, entity.relation))

    # ──────────────────────────────────────────────────────────
    # update / delete
    # ──────────────────────────────────────────────────────────

    def update(self, entity: Entity, args: MutationArgs) -> dict[str, Any]:
        inp = VersionedInput.model_validate(args.input)
        fields = writable_fields(entity, inp.model_extra)

        def assignments(s: Session, now: datetime) -> dict[str, Any]:
            return {**fields, "last_changed_at": s.ts(now)}

        return self._conditional_write(entity, inp, assignments, op="update")

    def delete(self, entity: Entity, args: MutationArgs) -> dict[str, Any]:
        inp = VersionedInput.model_validate(args.input)

        def assignments(s: Session, now: datetime) -> dict[str, Any]:
            return {
                "deleted": True,
                "expires_at": s.ts(now + self.base_table_retention),
                "last_changed_at": s.ts(now),
            }

        return self._conditional_write(entity, inp, assignments, op="delete")

    def _conditional_write(
        self,
        entity: Entity,
        inp: VersionedInput,
        assignments: Callable[[Session, datetime], dict[str, Any]],
        *,
        op: str,
    ) -> dict[str, Any]:
        with self.db.connection() as s:
            with with_locked_row(s, entity, inp.external_id) as current:
                if current is None:
                    logger.info("%s_not_found table=%s external_id=%s", op, entity.table, inp.external_id)
                    return ok(None)

                # Stamp only once the lock is held.
                sets = assignments(s, self.clock())
                set_sql = ", ".join(f"{c} = ?" for c in sets)
                affected = s.execute(
                    f"UPDATE {entity.table} SET {set_sql}, version = version + 1 "
                    f"WHERE external_id = ? AND version = ?",
                    [*sets.values(), inp.external_id, inp.version],
                )
                row = fetch_by_key(s, entity, "external_id", inp.external_id)

            if affected != 1:
                logger.info(
                    "%s_conflict table=%s external_id=%s submitted=%d stored=%s",
                    op, entity.table, inp.external_id, inp.version, row.get("version"),
                )
                return conflict(normalize(row, entity.relation))

            logger.info(
                "%s table=%s external_id=%s version=%s",
                op, entity.table, inp.external_id, row.get("version"),
            )
            self.changelog.mirror(s, row, entity)

        return ok(normalize(row, entity.relation))
