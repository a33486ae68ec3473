#!/usr/bin/env python3
"""
Create the onboarding schema and seed the module catalog.

Usage:
    python3 scripts/init_db.py                      # create tables + seed modules
    python3 scripts/init_db.py --skip-schema        # seed modules only
    python3 scripts/init_db.py --database-url postgresql://...

Onboarding fails a module with "module not registered" when its row is
missing from the modules table, so run this once per environment. Safe to
re-run: existing tables and module rows are left alone.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.dialects.postgresql import insert  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from services.climate_api.config import settings  # noqa: E402
from services.climate_api.db.engine import create_engine  # noqa: E402
from services.climate_api.db.models import Base, Module  # noqa: E402
from services.climate_api.onboarding.catalog import MODULE_CATALOG  # noqa: E402

logger = logging.getLogger("init_db")


async def init_db(database_url: str, *, create_schema: bool = True) -> int:
    """Returns the number of module rows inserted."""
    engine = create_engine(database_url)
    try:
        if create_schema:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Schema ready (%d tables)", len(Base.metadata.tables))

        now = datetime.now(timezone.utc)
        rows = [
            {
                "slug": spec.slug,
                "name": spec.name,
                "description": spec.description,
                "category": spec.category,
                "isActive": True,
                "sortOrder": index,
                "createdAt": now,
            }
            for index, spec in enumerate(MODULE_CATALOG)
        ]

        factory = async_sessionmaker(engine, expire_on_commit=False)
        async with factory() as session:
            inserted = 0
            for row in rows:
                result = await session.execute(
                    insert(Module).values(**row).on_conflict_do_nothing(index_elements=["slug"])
                )
                inserted += result.rowcount or 0
            await session.commit()
    finally:
        await engine.dispose()

    logger.info("Seeded %d/%d modules", inserted, len(rows))
    return inserted


def main():
    parser = argparse.ArgumentParser(description="Create tables and seed onboarding modules")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument("--skip-schema", action="store_true", help="Only seed module rows")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(init_db(args.database_url, create_schema=not args.skip_schema))


if __name__ == "__main__":
    main()
