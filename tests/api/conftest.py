"""Shared fixtures for API route tests.

Provides:
- A configured FastAPI test app wired to the in-memory engine from the root conftest
- An httpx AsyncClient pointed at the test app
- Pre-configured auth headers
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from kidsnet.api.app import create_app
from kidsnet.config import Settings

TEST_API_KEY = "test-api-key-12345-abcdefghijklmnop"


@pytest.fixture
def test_settings() -> Settings:
    """Test Settings with rate limiting off and a known API key."""
    return Settings(
        pfsense_url="https://10.0.0.1",
        pfsense_api_key="pf-test-key",
        kidsnet_api_key=TEST_API_KEY,
        database_url="sqlite+aiosqlite:///:memory:",
        log_level="WARNING",
        log_format="console",
        cors_allowed_origins="http://localhost:3030",
        rate_limit_enabled=False,
        notifications_enabled=False,
    )


@pytest.fixture
async def test_app(test_settings: Settings, engine, db_engine, session_factory) -> AsyncGenerator[FastAPI, None]:
    """Create a test FastAPI app with app.state populated (lifespan does not run)."""
    app = create_app(settings=test_settings)
    app.state.db_engine = db_engine
    app.state.session_factory = session_factory
    app.state.engine = engine
    app.state.settings = test_settings
    yield app


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient for the test app."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}
