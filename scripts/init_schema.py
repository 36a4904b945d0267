#!/usr/bin/env python3
"""
scripts/init_schema.py

Create the synced primary tables and their change-log siblings.

Targets the database selected by the usual settings (DB_SECRET_URL,
DATABASE_URL, SQLITE_PATH) unless --database-url or --sqlite is given.
Idempotent: every statement is CREATE ... IF NOT EXISTS.
"""

from __future__ import annotations

import argparse
import logging
import sys

from datastore_link.core.db import create_database
from datastore_link.core.schema import ENTITIES, schema_ddl
from datastore_link.core.settings import Settings


def main():
    parser = argparse.ArgumentParser(description="Create sync tables + change-log tables")
    parser.add_argument("--database-url", help="Postgres connection string")
    parser.add_argument("--sqlite", help="Path to a SQLite database")
    parser.add_argument("--print", dest="print_only", action="store_true", help="Print DDL, don't execute")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    overrides = {}
    if args.database_url:
        overrides["DATABASE_URL"] = args.database_url
        overrides["DB_SECRET_URL"] = None
    if args.sqlite:
        overrides["SQLITE_PATH"] = args.sqlite
        overrides["DATABASE_URL"] = None
        overrides["DB_SECRET_URL"] = None
    s = Settings(**overrides)

    if args.print_only:
        dialect = "postgres" if (s.database_url or s.db_secret_url) else "sqlite"
        for entity in ENTITIES:
            for stmt in schema_ddl(entity, dialect):
                print(stmt + ";\n")
        return

    db = create_database(s)
    try:
        db.ensure_schema()
    except Exception as e:
        print(f"[init_schema] FAILED: {e}")
        sys.exit(1)
    finally:
        db.close()

    tables = ", ".join(f"{e.table}+{e.changelog_table}" for e in ENTITIES)
    print(f"[init_schema] ✅ Done ({db.kind}): {tables}")


if __name__ == "__main__":
    main()
