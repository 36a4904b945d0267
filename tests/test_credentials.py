"""Tests for database credential sources and the caching provider."""

import httpx
import pytest

from datastore_link.core.credentials import (
    CredentialProvider,
    CredentialSource,
    DbCredentials,
    HttpSecretSource,
    StaticDsnSource,
)


class CountingSource(CredentialSource):
    def __init__(self):
        self.calls = 0

    def fetch(self) -> str:
        self.calls += 1
        return f"dsn-{self.calls}"


class FakeMonotonic:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class TestCredentialProvider:
    def test_lazy_and_cached(self):
        source = CountingSource()
        provider = CredentialProvider(source, ttl_s=60, clock=FakeMonotonic())
        assert source.calls == 0
        assert provider.get() == "dsn-1"
        assert provider.get() == "dsn-1"
        assert source.calls == 1

    def test_refreshes_after_expiry(self):
        source = CountingSource()
        clock = FakeMonotonic()
        provider = CredentialProvider(source, ttl_s=60, clock=clock)
        provider.get()
        clock.t = 59.9
        assert provider.get() == "dsn-1"
        clock.t = 60.0
        assert provider.get() == "dsn-2"

    def test_invalidate_forces_refetch(self):
        source = CountingSource()
        provider = CredentialProvider(source, ttl_s=60, clock=FakeMonotonic())
        provider.get()
        provider.invalidate()
        assert provider.get() == "dsn-2"

    def test_static_source(self):
        assert StaticDsnSource("postgresql://x").fetch() == "postgresql://x"


class TestDbCredentials:
    def test_host_override(self):
        creds = DbCredentials.from_secret(
            {"username": "u", "password": "p", "dbname": "d", "host": "db.internal", "port": 6543},
            host="proxy.internal",
        )
        assert creds.host == "proxy.internal"
        assert creds.port == 6543

    def test_missing_keys(self):
        with pytest.raises(RuntimeError, match="password"):
            DbCredentials.from_secret({"username": "u", "dbname": "d", "host": "h"})

    def test_missing_host(self):
        with pytest.raises(RuntimeError, match="host"):
            DbCredentials.from_secret({"username": "u", "password": "p", "dbname": "d"})

    def test_dsn_quotes_values(self):
        creds = DbCredentials(host="h", port=5432, username="u", password="it's", dbname="d")
        assert creds.dsn() == "host='h' port=5432 user='u' password='it\\'s' dbname='d'"


class TestHttpSecretSource:
    def test_fetch(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(
                200,
                json={"username": "app", "password": "pw", "dbname": "sync", "port": 5432},
            )

        source = HttpSecretSource(
            "https://secrets.example/db",
            token="tok",
            host="proxy",
            transport=httpx.MockTransport(handler),
        )
        dsn = source.fetch()
        assert seen["auth"] == "Bearer tok"
        assert "host='proxy'" in dsn
        assert "dbname='sync'" in dsn

    def test_http_error(self):
        source = HttpSecretSource(
            "https://secrets.example/db",
            host="proxy",
            transport=httpx.MockTransport(lambda r: httpx.Response(403)),
        )
        with pytest.raises(RuntimeError, match="status=403"):
            source.fetch()
