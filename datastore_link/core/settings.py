from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Primary store — Postgres (production). Takes priority over sqlite_path.
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    # Secret endpoint returning {username, password, port, dbname, host?}.
    # Takes priority over database_url.
    db_secret_url: str | None = Field(default=None, alias="DB_SECRET_URL")
    db_secret_token: str = Field(default="", alias="DB_SECRET_TOKEN")
    db_host: str | None = Field(default=None, alias="DB_HOST")
    db_credentials_ttl_s: int = Field(default=900, alias="DB_CREDENTIALS_TTL_S")
    db_secret_timeout_s: float = Field(default=10.0, alias="DB_SECRET_TIMEOUT_S")

    db_pool_min: int = Field(default=1, alias="DB_POOL_MIN")
    db_pool_max: int = Field(default=5, alias="DB_POOL_MAX")

    # Primary store — SQLite fallback (local dev)
    sqlite_path: str = Field(default="data/datastore.db", alias="SQLITE_PATH")
    sqlite_busy_timeout_s: float = Field(default=5.0, alias="SQLITE_BUSY_TIMEOUT_S")

    # ──────────────────────────────────────────────────────────────
    # Sync protocol
    # ──────────────────────────────────────────────────────────────

    # How long change-log entries stay queryable (minutes)
    changelog_retention_min: int = Field(default=30, alias="DELTA_SYNC_TABLE_TTL_MIN")
    # How long tombstones stay in the primary table (minutes, 30d)
    base_table_retention_min: int = Field(default=43200, alias="BASE_TABLE_TTL_MIN")

    sync_default_limit: int = Field(default=1000, alias="SYNC_DEFAULT_LIMIT")
    sync_max_limit: int = Field(default=10000, alias="SYNC_MAX_LIMIT")

    # Postgres row lock taken around update/delete
    row_lock_mode: Literal["update", "share"] = Field(default="update", alias="ROW_LOCK_MODE")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


settings = Settings()
