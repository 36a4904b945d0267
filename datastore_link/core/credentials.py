"""
datastore_link/core/credentials.py

Where the Postgres backend gets its connection string from.

  - StaticDsnSource  — DATABASE_URL as-is
  - HttpSecretSource — JSON secret fetched from a secrets endpoint

CredentialProvider wraps a source with a lazily-filled, expiring cache so
rotated passwords are picked up without a restart.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional

import httpx

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DbCredentials:
    host: str
    port: int
    username: str
    password: str
    dbname: str

    @classmethod
    def from_secret(cls, secret: dict[str, Any], *, host: str | None = None) -> "DbCredentials":
        missing = [k for k in ("username", "password", "dbname") if not secret.get(k)]
        if missing:
            raise RuntimeError(f"db secret missing keys: {', '.join(missing)}")
        resolved_host = host or secret.get("host")
        if not resolved_host:
            raise RuntimeError("db secret has no host and DB_HOST is not set")
        return cls(
            host=str(resolved_host),
            port=int(secret.get("port") or 5432),
            username=str(secret["username"]),
            password=str(secret["password"]),
            dbname=str(secret["dbname"]),
        )

    def dsn(self) -> str:
        def q(v: str) -> str:
            return "'" + v.replace("\\", "\\\\").replace("'", "\\'") + "'"

        return (
            f"host={q(self.host)} port={self.port} user={q(self.username)} "
            f"password={q(self.password)} dbname={q(self.dbname)}"
        )


class CredentialSource(ABC):
    @abstractmethod
    def fetch(self) -> str:
        """Return a libpq connection string."""
        ...


class StaticDsnSource(CredentialSource):
    def __init__(self, dsn: str):
        self._dsn = dsn

    def fetch(self) -> str:
        return self._dsn


class HttpSecretSource(CredentialSource):
    """
    GET a JSON secret over HTTPS (bearer token auth).

    Expected body: {"username", "password", "dbname", "port"?, "host"?}
    `host` overrides whatever the secret says, e.g. a connection proxy.
    """

    def __init__(
        self,
        url: str,
        *,
        token: str = "",
        host: str | None = None,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.token = token
        self.host = host
        self.timeout_s = timeout_s
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch(self) -> str:
        with httpx.Client(timeout=self.timeout_s, transport=self._transport) as client:
            try:
                resp = client.get(self.url, headers=self._headers())
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise RuntimeError(f"db_secret_fetch_failed status={e.response.status_code}") from e
            secret = resp.json()

        if not isinstance(secret, dict):
            raise RuntimeError("db_secret_fetch_failed body is not an object")
        creds = DbCredentials.from_secret(secret, host=self.host)
        logger.info("db_secret_fetched host=%s dbname=%s user=%s", creds.host, creds.dbname, creds.username)
        return creds.dsn()


class CredentialProvider:
    def __init__(
        self,
        source: CredentialSource,
        *,
        ttl_s: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._source = source
        self._ttl_s = ttl_s
        self._clock = clock
        self._lock = threading.Lock()
        self._dsn: Optional[str] = None
        self._expires_at = 0.0

    def get(self) -> str:
        with self._lock:
            now = self._clock()
            if self._dsn is None or now >= self._expires_at:
                self._dsn = self._source.fetch()
                self._expires_at = now + self._ttl_s
            return self._dsn

    def invalidate(self) -> None:
        with self._lock:
            self._dsn = None
            self._expires_at = 0.0
