"""HTTP client fixtures for the API tests.

The app runs in-process over ASGITransport (no lifespan), with the database
session, gateway, event bus and settings swapped for the test doubles.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from marketplace_escrow.api.deps import (
    get_app_settings,
    get_db_session,
    get_event_bus,
    get_gateway,
)
from marketplace_escrow.main import create_app


@pytest.fixture
def app(session_factory, gateway, events, settings):
    app = create_app()

    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_event_bus] = lambda: events
    app.dependency_overrides[get_app_settings] = lambda: settings
    return app


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def as_user(parties):
    """Build the identity headers the upstream auth layer would forward."""

    def _headers(name: str, role: str | None = None) -> dict[str, str]:
        return {
            "X-Actor-Id": str(parties[name]),
            "X-Actor-Role": role or ("admin" if name == "admin" else name),
        }

    return _headers
