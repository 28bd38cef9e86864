"""Shared test fixtures."""

from __future__ import annotations

import time
from collections.abc import Callable

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine

from servicegrid.config.settings import get_settings
from servicegrid.storage.database import get_db_engine, init_db
from servicegrid.web.app import create_app

TEST_JWT_SECRET = "servicegrid-test-secret-0123456789"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    """Deterministic settings for every test; the cache is rebuilt around each one."""
    monkeypatch.setenv("JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("AUTH_MODE", "supabase")
    monkeypatch.setenv("AUTH_PROVIDER", "supabase")
    monkeypatch.setenv("SUPABASE_URL", "http://test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-test-key")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite://")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def mint_token() -> Callable[..., str]:
    """Factory for HS256 backend tokens signed with the test secret."""

    def _mint(
        sub: str = "user-1",
        email: str = "owner@example.com",
        name: str = "Olivia Owner",
        expires_in: int = 3600,
        secret: str = TEST_JWT_SECRET,
    ) -> str:
        payload = {
            "sub": sub,
            "email": email,
            "user_metadata": {"full_name": name},
            "exp": int(time.time()) + expires_in,
        }
        return jwt.encode(payload, secret, algorithm="HS256")

    return _mint


@pytest.fixture()
def bearer(mint_token: Callable[..., str]) -> Callable[..., dict[str, str]]:
    """Factory for ``Authorization`` headers; extra kwargs go to ``mint_token``."""

    def _headers(business_id: str | None = None, **claims: object) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {mint_token(**claims)}"}
        if business_id:
            headers["X-Business-Id"] = business_id
        return headers

    return _headers


@pytest.fixture()
async def async_engine(tmp_path):
    """File-backed SQLite engine with all tables created and foreign keys enforced."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'servicegrid.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def app(async_engine):
    """A fresh functions app bound to the test database."""
    application = create_app()
    application.dependency_overrides[get_db_engine] = lambda: async_engine
    return application


@pytest.fixture()
async def http(app):
    """An AsyncClient talking to the functions app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
