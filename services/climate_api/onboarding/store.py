"""
Persistence for onboarding runs (city_onboarding table).

The orchestrator writes a full snapshot of the run after every transition;
polling readers (the dashboard, GET /onboarding/...) only ever see those
snapshots. moduleProgress is stored as a JSONB array of camelCase entries.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

import asyncpg

from services.climate_api.onboarding.errors import PersistenceError
from services.climate_api.onboarding.state import (
    ModuleProgress,
    OnboardingRun,
    RunStatus,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    'id, "cityId", status, "currentStage", "currentStageLabel", progress, '
    '"moduleProgress", "initiatedBy", error, "startedAt", "completedAt"'
)


def _decode_module_progress(value: Any) -> list[ModuleProgress]:
    # asyncpg hands JSONB back as text unless a codec is registered
    if isinstance(value, str):
        value = json.loads(value)
    return [ModuleProgress.from_dict(entry) for entry in value or []]


def _row_to_run(row: Any) -> OnboardingRun:
    return OnboardingRun(
        id=row["id"],
        city_id=row["cityId"],
        status=RunStatus(row["status"]),
        current_stage=row["currentStage"],
        current_stage_label=row["currentStageLabel"],
        progress=row["progress"],
        module_progress=_decode_module_progress(row["moduleProgress"]),
        initiated_by=row["initiatedBy"],
        error=row["error"],
        started_at=row["startedAt"],
        completed_at=row["completedAt"],
    )


class OnboardingStateStore:
    """asyncpg-backed store for OnboardingRun snapshots."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create(self, run: OnboardingRun) -> str:
        try:
            await self.pool.execute(
                f"""
                INSERT INTO city_onboarding ({_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10, $11)
                """,
                run.id,
                run.city_id,
                run.status.value,
                run.current_stage,
                run.current_stage_label,
                run.progress,
                json.dumps(run.module_progress_json()),
                run.initiated_by,
                run.error,
                run.started_at,
                run.completed_at,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to create onboarding run: {exc}") from exc
        return run.id

    async def save(self, run: OnboardingRun) -> None:
        """Overwrite the stored snapshot with the run's current state."""
        try:
            await self.pool.execute(
                """
                UPDATE city_onboarding
                SET status = $2,
                    "currentStage" = $3,
                    "currentStageLabel" = $4,
                    progress = $5,
                    "moduleProgress" = $6::jsonb,
                    error = $7,
                    "completedAt" = $8
                WHERE id = $1
                """,
                run.id,
                run.status.value,
                run.current_stage,
                run.current_stage_label,
                run.progress,
                json.dumps(run.module_progress_json()),
                run.error,
                run.completed_at,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise PersistenceError(f"failed to save onboarding run {run.id}: {exc}") from exc

    async def get(self, run_id: str) -> Optional[OnboardingRun]:
        row = await self.pool.fetchrow(
            f"SELECT {_COLUMNS} FROM city_onboarding WHERE id = $1",
            run_id,
        )
        return _row_to_run(row) if row else None

    async def get_by_city(self, city_id: str) -> Optional[OnboardingRun]:
        """Latest run for the city, by startedAt."""
        row = await self.pool.fetchrow(
            f"""SELECT {_COLUMNS} FROM city_onboarding
                WHERE "cityId" = $1
                ORDER BY "startedAt" DESC
                LIMIT 1""",
            city_id,
        )
        return _row_to_run(row) if row else None

    async def list_active(self) -> list[OnboardingRun]:
        rows = await self.pool.fetch(
            f"""SELECT {_COLUMNS} FROM city_onboarding
                WHERE status = 'generating'
                ORDER BY "startedAt"
            """,
        )
        return [_row_to_run(r) for r in rows]

    async def is_complete(self, city_id: str) -> bool:
        run = await self.get_by_city(city_id)
        return run is not None and run.status is RunStatus.COMPLETED

    async def delete(self, run_id: str) -> bool:
        """Remove a run record so the city can be onboarded again."""
        result = await self.pool.execute(
            "DELETE FROM city_onboarding WHERE id = $1",
            run_id,
        )
        deleted = result.endswith(" 1")
        if deleted:
            logger.info("Deleted onboarding run %s", run_id)
        return deleted
