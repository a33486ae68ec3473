"""
Fixtures for API route tests.

The app is exercised through httpx.ASGITransport, which does not run the
lifespan, so Redis, the DB pool and the task registry are injected as mocks
on app.state.
"""

import os
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

# Ensure test env vars before any app imports
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("SENTRY_DSN", "")
os.environ.setdefault("ONBOARDING_SERVICE_TOKEN", "")

from services.climate_api.onboarding.tasks import OnboardingHandle, OnboardingTaskRegistry  # noqa: E402


@pytest.fixture
def mock_redis():
    """Mock Redis client; the sliding window starts empty."""
    redis = AsyncMock()
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[0, 0])
    redis.pipeline = MagicMock(return_value=pipe)
    redis.ping = AsyncMock()
    return redis


@pytest.fixture
def mock_db():
    """Mock asyncpg pool. Route tests patch the store/writer built on top of it."""
    db = AsyncMock()
    db.fetchval = AsyncMock(return_value=1)
    db.fetch = AsyncMock(return_value=[])
    db.fetchrow = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_registry():
    registry = MagicMock(spec=OnboardingTaskRegistry)
    registry.is_running_for_city.return_value = False
    registry.get.return_value = None
    registry.running.return_value = []

    def _start(request, **_):
        return OnboardingHandle(run_id="run-123", city_id=request.city_id, task=MagicMock())

    registry.start.side_effect = _start
    return registry


@pytest.fixture
async def app(mock_redis, mock_db, mock_registry):
    """The FastAPI app with mocked dependencies on app.state."""
    from services.climate_api.config import settings
    from services.climate_api.main import app as _app

    _app.state.redis = mock_redis
    _app.state.db = mock_db
    _app.state.settings = settings
    _app.state.onboarding_tasks = mock_registry
    return _app


@pytest.fixture
async def client(app):
    """Async HTTP client bound to the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
