"""
AsyncEngine factory.

The API and the onboarding pipeline talk to PostgreSQL through asyncpg; the
engine is used for schema management (scripts/init_db.py).
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from services.climate_api.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an asyncpg-backed engine. NullPool: callers are short-lived scripts."""
    url = (database_url or settings.database_url).replace(
        "postgresql://", "postgresql+asyncpg://", 1
    )
    return create_async_engine(
        url,
        poolclass=NullPool,
        echo=settings.debug and settings.environment == "development",
    )
