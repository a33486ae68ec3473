"""
Record writer: persists sanitized hotspots and quick wins, and keeps the
city's aggregate stats in sync.

Each module's batch is written in a single transaction with executemany.
There is no dedup: re-running onboarding for a city appends a second set of
records. recompute_city_stats reads what is actually in the tables, so it is
safe to call any number of times.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

import asyncpg

from services.climate_api.onboarding.errors import CityExistsError, PersistenceError
from services.climate_api.onboarding.sanitizer import SanitizedHotspot, SanitizedQuickWin
from services.climate_api.onboarding.types import Coordinates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleRow:
    id: str
    slug: str
    name: str


@dataclass(frozen=True)
class CityRow:
    id: str
    slug: str
    name: str
    country: str
    coordinates: Coordinates
    population: int


@dataclass
class CityStats:
    totalHotspots: int = 0
    totalQuickWins: int = 0
    activeModules: int = 0
    completedQuickWins: int = 0
    activeActionPlans: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def slugify(name: str) -> str:
    """'São Paulo' -> 's-o-paulo'. Lowercase ASCII words joined by hyphens."""
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


def _load_stats(value: Any) -> dict[str, Any]:
    if isinstance(value, str):
        value = json.loads(value)
    return value if isinstance(value, dict) else {}


class RecordWriter:
    """asyncpg-backed writer for cities, hotspots and quick wins."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_module_by_slug(self, slug: str) -> Optional[ModuleRow]:
        row = await self.pool.fetchrow(
            'SELECT id, slug, name FROM modules WHERE slug = $1 AND "isActive" = true',
            slug,
        )
        if row is None:
            return None
        return ModuleRow(id=row["id"], slug=row["slug"], name=row["name"])

    # ------------------------------------------------------------------
    # Cities
    # ------------------------------------------------------------------

    async def get_city(self, city_id: str) -> Optional[CityRow]:
        row = await self.pool.fetchrow(
            """SELECT id, slug, name, country, latitude, longitude, population
               FROM cities WHERE id = $1""",
            city_id,
        )
        if row is None:
            return None
        return CityRow(
            id=row["id"],
            slug=row["slug"],
            name=row["name"],
            country=row["country"],
            coordinates=Coordinates(lat=row["latitude"], lng=row["longitude"]),
            population=row["population"],
        )

    async def create_city(
        self,
        name: str,
        country: str,
        coordinates: Coordinates,
        population: int,
        *,
        slug: Optional[str] = None,
        region: Optional[str] = None,
    ) -> str:
        """Insert a city with zeroed stats. Raises CityExistsError on a taken slug."""
        slug = slug or slugify(name)
        city_id = str(uuid.uuid4())
        now = _now()

        try:
            existing = await self.pool.fetchval(
                "SELECT id FROM cities WHERE slug = $1", slug,
            )
            if existing:
                raise CityExistsError(slug)

            await self.pool.execute(
                """
                INSERT INTO cities (
                    id, slug, name, country, region, latitude, longitude,
                    population, stats, "isActive", "createdAt", "updatedAt"
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, true, $10, $10)
                """,
                city_id,
                slug,
                name,
                country,
                region,
                coordinates.lat,
                coordinates.lng,
                population,
                json.dumps(CityStats().to_dict()),
                now,
            )
        except asyncpg.UniqueViolationError as exc:
            raise CityExistsError(slug) from exc
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to create city {slug}: {exc}") from exc

        logger.info("Created city %s (%s)", slug, city_id)
        return city_id

    # ------------------------------------------------------------------
    # Generated records
    # ------------------------------------------------------------------

    async def write_hotspots(
        self,
        city_id: str,
        module_id: str,
        items: Sequence[SanitizedHotspot],
        *,
        center: Coordinates,
    ) -> list[str]:
        """Insert hotspots positioned at center + offsets. Returns the new ids."""
        if not items:
            return []

        now = _now()
        ids: list[str] = []
        rows = []
        for item in items:
            hotspot_id = str(uuid.uuid4())
            ids.append(hotspot_id)
            position = item.position(center)
            rows.append((
                hotspot_id,
                city_id,
                module_id,
                item.name,
                item.description,
                position.lat,
                position.lng,
                item.address,
                item.neighborhood,
                item.severity,
                json.dumps([m.to_dict() for m in item.metrics]),
                item.display_value,
                now,
            ))

        await self._insert_many(
            """
            INSERT INTO hotspots (
                id, "cityId", "moduleId", name, description, latitude, longitude,
                address, neighborhood, severity, status, metrics, "displayValue",
                "detectedAt", "lastUpdated", "createdAt"
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, 'active', $11::jsonb, $12,
                $13, $13, $13
            )
            """,
            rows,
            "hotspots",
        )
        logger.info("Wrote %d hotspots for city=%s module=%s", len(ids), city_id, module_id)
        return ids

    async def write_quick_wins(
        self,
        city_id: str,
        module_id: str,
        items: Sequence[SanitizedQuickWin],
    ) -> list[str]:
        """Insert quick wins in order (sortOrder = index). Returns the new ids."""
        if not items:
            return []

        now = _now()
        ids: list[str] = []
        rows = []
        for index, item in enumerate(items):
            quick_win_id = str(uuid.uuid4())
            ids.append(quick_win_id)
            rows.append((
                quick_win_id,
                city_id,
                module_id,
                item.title,
                item.description,
                item.impact,
                item.effort,
                item.estimated_days,
                item.co2_reduction_tons,
                list(item.tags),
                list(item.steps) if item.steps is not None else None,
                index,
                now,
            ))

        await self._insert_many(
            """
            INSERT INTO quick_wins (
                id, "cityId", "moduleId", title, description, impact, effort,
                "estimatedDays", "co2ReductionTons", tags, steps, "sortOrder",
                "isActive", "createdAt", "updatedAt"
            ) VALUES (
                $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, true, $13, $13
            )
            """,
            rows,
            "quick wins",
        )
        logger.info("Wrote %d quick wins for city=%s module=%s", len(ids), city_id, module_id)
        return ids

    async def _insert_many(self, query: str, rows: list[tuple], what: str) -> None:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(query, rows)
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to write {what}: {exc}") from exc

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def recompute_city_stats(self, city_id: str) -> CityStats:
        """
        Recount hotspots, active quick wins and modules with hotspots, and
        store them on the city. completedQuickWins and activeActionPlans are
        carried over from the existing stats.
        """
        try:
            async with self.pool.acquire() as conn:
                hotspot_rows = await conn.fetch(
                    'SELECT "moduleId" FROM hotspots WHERE "cityId" = $1',
                    city_id,
                )
                quick_win_count = await conn.fetchval(
                    'SELECT count(*) FROM quick_wins WHERE "cityId" = $1 AND "isActive" = true',
                    city_id,
                )
                current = _load_stats(await conn.fetchval(
                    "SELECT stats FROM cities WHERE id = $1",
                    city_id,
                ))

                stats = CityStats(
                    totalHotspots=len(hotspot_rows),
                    totalQuickWins=int(quick_win_count or 0),
                    activeModules=len({r["moduleId"] for r in hotspot_rows}),
                    completedQuickWins=int(current.get("completedQuickWins", 0)),
                    activeActionPlans=int(current.get("activeActionPlans", 0)),
                )

                await conn.execute(
                    """
                    UPDATE cities
                    SET stats = $2::jsonb, "updatedAt" = $3
                    WHERE id = $1
                    """,
                    city_id,
                    json.dumps(stats.to_dict(), sort_keys=True),
                    _now(),
                )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to recompute stats for city {city_id}: {exc}") from exc

        logger.info(
            "City %s stats: hotspots=%d quick_wins=%d modules=%d",
            city_id, stats.totalHotspots, stats.totalQuickWins, stats.activeModules,
        )
        return stats
