from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from datastore_link.core.db import Database
from datastore_link.core.errors import service_unavailable

logger = logging.getLogger(__name__)

router = APIRouter()


def get_database() -> Database:
    raise RuntimeError("Database must be provided by app dependency override")


@router.get("/health")
def health(db: Database = Depends(get_database)) -> dict:
    try:
        db.ping()
    except Exception as e:
        logger.warning("health_db_unreachable kind=%s err=%r", db.kind, e)
        service_unavailable("db_unreachable", f"{db.kind} database not reachable")
    return {"ok": True, "db": db.kind}
