"""Fixtures for HTTP-level tests.

The app runs in-process over httpx's ASGI transport. Its dependencies are
overridden to use the test database, settings, and the mocked gateway.
Each request gets its own session, so tests commit their fixtures first.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pay2start.api.deps import get_app_settings, get_db_session, get_payment_gateway
from pay2start.config import Settings
from pay2start.main import create_app

# Matches the api_key_hash of the `contractor` fixture.
TEST_API_KEY = "p2s_test_api_key"


@pytest.fixture
def app(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    gateway,
):
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session
    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    return app


@pytest.fixture
async def api(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}
