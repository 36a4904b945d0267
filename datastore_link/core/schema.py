"""
datastore_link/core/schema.py

Entity definitions for the synced tables.

Every primary table carries:
  id               internal numeric key (never accepted as input)
  external_id      stable identifier shared with the client
  version          OCC counter, +1 per accepted mutation
  deleted          tombstone flag (rows are never hard-deleted here)
  last_changed_at  stamped on every write
  expires_at       storage-engine TTL, NULL until tombstoned

Each primary table has a sibling `<table>_changelog` holding recent
copies of mutated rows; see services/changelog.py.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


SYNC_COLUMNS = ("external_id", "version", "deleted", "last_changed_at", "expires_at")


@dataclass(frozen=True)
class Column:
    name: str
    sql_type: str = "TEXT"
    nullable: bool = True


@dataclass(frozen=True)
class Relation:
    """belongsTo: child.<name>_id references parent.external_id."""
    name: str
    parent_table: str

    @property
    def column(self) -> str:
        return f"{self.name}_id"

    @property
    def id_alias(self) -> str:
        return f"{self.name}__id"

    @property
    def deleted_alias(self) -> str:
        return f"{self.name}__deleted"


@dataclass(frozen=True)
class Entity:
    table: str
    columns: tuple[Column, ...]
    relation: Optional[Relation] = None

    @property
    def changelog_table(self) -> str:
        return f"{self.table}_changelog"

    @property
    def domain_columns(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)


POSTS = Entity(
    table="posts",
    columns=(Column("title", nullable=False),),
)

COMMENTS = Entity(
    table="comments",
    columns=(
        Column("content", nullable=False),
        Column("post_id", nullable=False),
    ),
    relation=Relation(name="post", parent_table="posts"),
)

ENTITIES: tuple[Entity, ...] = (POSTS, COMMENTS)


# ──────────────────────────────────────────────────────────────
# DDL
# ──────────────────────────────────────────────────────────────

_TYPES = {
    "sqlite": {
        "pk": "INTEGER PRIMARY KEY AUTOINCREMENT",
        "bigint": "INTEGER",
        "bool": "INTEGER",
        "ts": "TEXT",
    },
    "postgres": {
        "pk": "BIGSERIAL PRIMARY KEY",
        "bigint": "BIGINT",
        "bool": "BOOLEAN",
        "ts": "TIMESTAMPTZ",
    },
}


def _domain_ddl(entity: Entity) -> list[str]:
    out = []
    for c in entity.columns:
        null = "" if c.nullable else " NOT NULL"
        out.append(f"{c.name} {c.sql_type}{null}")
    return out


def schema_ddl(entity: Entity, dialect: str) -> list[str]:
    t = _TYPES[dialect]
    false = "0" if dialect == "sqlite" else "FALSE"

    sync_cols = [
        "external_id TEXT NOT NULL",
        "version INTEGER NOT NULL DEFAULT 1",
        f"deleted {t['bool']} NOT NULL DEFAULT {false}",
        f"last_changed_at {t['ts']} NOT NULL",
        f"expires_at {t['ts']}",
    ]

    primary = ",\n  ".join([f"id {t['pk']}", *sync_cols, *_domain_ddl(entity)])
    changelog = ",\n  ".join(
        [f"log_id {t['pk']}", f"source_id {t['bigint']}", *sync_cols, *_domain_ddl(entity)]
    )

    tbl = entity.table
    log = entity.changelog_table
    return [
        f"CREATE TABLE IF NOT EXISTS {tbl} (\n  {primary}\n)",
        f"CREATE UNIQUE INDEX IF NOT EXISTS idx_{tbl}_external_id ON {tbl}(external_id)",
        f"CREATE INDEX IF NOT EXISTS idx_{tbl}_last_changed_at ON {tbl}(last_changed_at)",
        f"CREATE TABLE IF NOT EXISTS {log} (\n  {changelog}\n)",
        f"CREATE INDEX IF NOT EXISTS idx_{log}_last_changed_at ON {log}(last_changed_at)",
        f"CREATE INDEX IF NOT EXISTS idx_{log}_external_id ON {log}(external_id)",
    ]
