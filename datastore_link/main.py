# datastore_link/main.py
from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from starlette.middleware.gzip import GZipMiddleware

# Load <repo>/.env (main.py is <repo>/datastore_link/main.py)
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(BASE_DIR / ".env")

from datastore_link.core.settings import settings
from datastore_link.core.db import create_database
from datastore_link.api import api_router

from datastore_link.services.changelog import ChangeLog
from datastore_link.services.dispatcher import Dispatcher
from datastore_link.services.mutations import Mutations
from datastore_link.services.scan import Retention, Scanner

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Datastore Link", version="1.0.0")

app.add_middleware(GZipMiddleware, minimum_size=1000)

# ──────────────────────────────────────────────────────────────
# DB
# ──────────────────────────────────────────────────────────────

# Postgres in production, SQLite for local dev
# Priority: DB_SECRET_URL → DATABASE_URL → SQLITE_PATH
_db = create_database(settings)
_db.ensure_schema()

_retention = Retention.from_settings(settings)

# ──────────────────────────────────────────────────────────────
# Dependency providers
# ──────────────────────────────────────────────────────────────

def provide_database():
    return _db


def provide_dispatcher() -> Dispatcher:
    scanner = Scanner(
        db=_db,
        retention=_retention,
        default_limit=settings.sync_default_limit,
        max_limit=settings.sync_max_limit,
    )
    mutations = Mutations(
        db=_db,
        changelog=ChangeLog(retention=_retention.changelog),
        base_table_retention=_retention.base_table,
    )
    return Dispatcher(scanner=scanner, mutations=mutations)


# ──────────────────────────────────────────────────────────────
# Dependency overrides
# ──────────────────────────────────────────────────────────────

from datastore_link.api import health as health_api
from datastore_link.api import sync as sync_api

app.dependency_overrides[health_api.get_database] = provide_database
app.dependency_overrides[sync_api.get_dispatcher] = provide_dispatcher

# Routes
app.include_router(api_router)

# ──────────────────────────────────────────────────────────────
# Shutdown
# ──────────────────────────────────────────────────────────────

@app.on_event("shutdown")
def shutdown():
    logger.info("[app] Shutting down — closing connections")
    try:
        _db.close()
    except Exception as e:
        logger.warning(f"[app] Error closing database: {e}")
