"""
City onboarding orchestrator.

Generates the starter dataset for a newly added city: for each of the six
topic modules, asks the completion service for hotspots, then quick wins,
sanitizes and persists them, and reports progress on the run record as it
goes.

Pipeline (strictly sequential):
  0. Create the run record (pending), then mark it generating.   0 -> 5
  1-6. One module at a time, catalog order.                      5 -> 95
       Module lookup -> hotspots -> write -> quick wins -> write.
       Any error fails that module only; the loop continues.
  7. Recompute city stats (stage "insights").                    95
  8. Mark the run completed.                                     100

A module that yields zero items (unparseable or empty completion) is still
completed, with zero counts.

Usage:
    pool = await asyncpg.create_pool(DATABASE_URL)
    outcome = await run_city_onboarding(request, pool=pool)

CLI:
    python -m services.climate_api.onboarding.orchestrator <city-id> [--unit fahrenheit]
"""

import logging
import random
import time
from dataclasses import dataclass
from typing import Optional, Sequence

import asyncpg

from services.climate_api.config import settings
from services.climate_api.onboarding.catalog import MODULE_CATALOG, ModuleSpec
from services.climate_api.onboarding.completion import (
    CompletionClient,
    generate_hotspots,
    generate_quick_wins,
)
from services.climate_api.onboarding.errors import ConfigurationError, ModuleNotRegisteredError
from services.climate_api.onboarding.state import (
    FINALIZE_PROGRESS,
    STAGE_INSIGHTS,
    OnboardingRun,
    module_progress_bounds,
)
from services.climate_api.onboarding.store import OnboardingStateStore
from services.climate_api.onboarding.types import OnboardingRequest
from services.climate_api.onboarding.writer import RecordWriter

logger = logging.getLogger(__name__)

MISSING_KEY_ERROR = "OpenAI API key not configured"
MISSING_KEY_DETAIL = (
    "OpenAI API key not configured. "
    "Set OPENAI_API_KEY in the service environment."
)


@dataclass
class RunOutcome:
    """Summary handed back to the caller once the run is terminal."""
    run_id: str
    success: bool
    error: Optional[str] = None
    modules_completed: int = 0
    modules_failed: int = 0
    hotspots_created: int = 0
    quick_wins_created: int = 0
    duration_s: float = 0.0


async def _record_run_failure(
    store: OnboardingStateStore,
    run: OnboardingRun,
    message: str,
) -> None:
    """Best effort: the failure write itself may fail."""
    if run.is_terminal:
        return
    run.fail(message)
    try:
        await store.save(run)
    except Exception:
        logger.exception("Could not record failure for onboarding run %s", run.id)


async def _run_module(
    run: OnboardingRun,
    index: int,
    module: ModuleSpec,
    request: OnboardingRequest,
    *,
    client: CompletionClient,
    store: OnboardingStateStore,
    writer: RecordWriter,
    module_count: int,
    rng: Optional[random.Random],
) -> bool:
    """Generate and persist one module. Returns False if the module failed."""
    start, end = module_progress_bounds(index, module_count)
    run.start_module(module.slug, start, f"Analyzing {module.label} patterns...")
    await store.save(run)
    logger.info(
        "[%d/%d] %s for %s...", index + 1, module_count, module.name, request.city_name,
    )

    try:
        module_row = await writer.get_module_by_slug(module.slug)
        if module_row is None:
            raise ModuleNotRegisteredError(module.slug)

        hotspots = await generate_hotspots(client, module, request, rng)
        hotspot_ids = await writer.write_hotspots(
            request.city_id, module_row.id, hotspots, center=request.coordinates,
        )

        quick_wins = await generate_quick_wins(client, module, request)
        quick_win_ids = await writer.write_quick_wins(
            request.city_id, module_row.id, quick_wins,
        )
    except ModuleNotRegisteredError as exc:
        logger.error(
            "Module %s has no row in the modules table; run scripts/init_db.py",
            module.slug,
        )
        run.fail_module(
            module.slug, str(exc), progress=end, label=f"Module {module.slug} not registered",
        )
        await store.save(run)
        return False
    except Exception as exc:
        logger.exception("Module %s failed for %s", module.slug, request.city_name)
        run.fail_module(
            module.slug, str(exc), progress=end, label=f"{module.name} analysis failed",
        )
        await store.save(run)
        return False

    run.complete_module(
        module.slug,
        hotspots_created=len(hotspot_ids),
        quick_wins_created=len(quick_win_ids),
        progress=end,
        label=f"{module.name} analysis complete",
    )
    await store.save(run)
    logger.info(
        "[%d/%d] %s done: %d hotspots, %d quick wins",
        index + 1, module_count, module.name, len(hotspot_ids), len(quick_win_ids),
    )
    return True


async def run_city_onboarding(
    request: OnboardingRequest,
    *,
    pool: Optional[asyncpg.Pool] = None,
    store: Optional[OnboardingStateStore] = None,
    writer: Optional[RecordWriter] = None,
    client: Optional[CompletionClient] = None,
    api_key: Optional[str] = None,
    run_id: Optional[str] = None,
    modules: Sequence[ModuleSpec] = MODULE_CATALOG,
    rng: Optional[random.Random] = None,
) -> RunOutcome:
    """
    Onboard one city end-to-end.

    Args:
        request: City identity, location, population and unit preference.
        pool: asyncpg pool. Used to build the store and writer when they
            are not passed explicitly.
        store: Run-record store. Every transition is saved through it.
        writer: Record writer for hotspots, quick wins and city stats.
        client: Completion client. If None, one is created from api_key.
        api_key: Completion-service credential. Falls back to
            settings.openai_api_key. Without a credential (and without a
            client) the run is recorded as failed and nothing is generated.
        run_id: Pre-assigned run id, so a caller can hand it out before
            the run record exists.
        modules: Catalog entries to process, in order.
        rng: Random source for hotspot jitter. Tests pass a seeded one.

    Returns:
        RunOutcome. Module failures do not make the run unsuccessful; only
        a missing credential or an error outside the per-module boundary
        does.

    Raises:
        PersistenceError: the initial run record could not be created.
    """
    if store is None or writer is None:
        if pool is None:
            raise ValueError("run_city_onboarding needs a pool or both store and writer")
        store = store or OnboardingStateStore(pool)
        writer = writer or RecordWriter(pool)

    t0 = time.monotonic()
    run = OnboardingRun.new(
        request.city_id,
        [m.slug for m in modules],
        run_id=run_id,
        initiated_by=request.initiated_by,
    )
    await store.create(run)

    owns_client = client is None
    if client is None:
        key = api_key if api_key is not None else settings.openai_api_key
        try:
            client = CompletionClient(key)
        except ConfigurationError:
            logger.error("OPENAI_API_KEY not set; onboarding run %s for %s failed", run.id, request.city_name)
            await _record_run_failure(store, run, MISSING_KEY_DETAIL)
            return RunOutcome(run_id=run.id, success=False, error=MISSING_KEY_ERROR)

    logger.info(
        "=== City onboarding: %s, %s (city=%s run=%s) ===",
        request.city_name, request.country, request.city_id, run.id,
    )

    outcome = RunOutcome(run_id=run.id, success=False)
    try:
        run.start()
        await store.save(run)

        for index, module in enumerate(modules):
            ok = await _run_module(
                run,
                index,
                module,
                request,
                client=client,
                store=store,
                writer=writer,
                module_count=len(modules),
                rng=rng,
            )
            if ok:
                outcome.modules_completed += 1
            else:
                outcome.modules_failed += 1

        run.advance(FINALIZE_PROGRESS, STAGE_INSIGHTS, "Finalizing city data...")
        await store.save(run)
        await writer.recompute_city_stats(request.city_id)

        run.complete()
        await store.save(run)
        outcome.success = True
    except Exception as exc:
        logger.exception("Onboarding run %s failed for %s", run.id, request.city_name)
        await _record_run_failure(store, run, str(exc))
        outcome.error = str(exc)
    finally:
        if owns_client:
            await client.aclose()

    outcome.hotspots_created = sum(mp.hotspots_created for mp in run.module_progress)
    outcome.quick_wins_created = sum(mp.quick_wins_created for mp in run.module_progress)
    outcome.duration_s = round(time.monotonic() - t0, 2)

    logger.info(
        "Onboarding %s for %s: %d modules ok, %d failed, %d hotspots, %d quick wins (%.1fs)",
        "complete" if outcome.success else "FAILED",
        request.city_name,
        outcome.modules_completed,
        outcome.modules_failed,
        outcome.hotspots_created,
        outcome.quick_wins_created,
        outcome.duration_s,
    )
    return outcome


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

async def main() -> None:
    """CLI entry point: onboard an existing city synchronously."""
    import argparse
    import sys

    from services.climate_api.onboarding.types import TemperatureUnit

    parser = argparse.ArgumentParser(description="Generate starter climate data for a city")
    parser.add_argument("city_id", help="Id of an existing row in the cities table")
    parser.add_argument("--database-url", default=settings.database_url)
    parser.add_argument(
        "--unit",
        choices=[u.value for u in TemperatureUnit],
        default=TemperatureUnit.CELSIUS.value,
        help="Temperature unit used in urban-heat prompts",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    pool = await asyncpg.create_pool(args.database_url)
    try:
        writer = RecordWriter(pool)
        city = await writer.get_city(args.city_id)
        if city is None:
            logger.error("City %s not found", args.city_id)
            sys.exit(1)

        request = OnboardingRequest(
            city_id=city.id,
            city_name=city.name,
            country=city.country,
            coordinates=city.coordinates,
            population=city.population,
            unit=TemperatureUnit(args.unit),
        )
        outcome = await run_city_onboarding(request, pool=pool, writer=writer)

        if not outcome.success:
            logger.error("Onboarding failed: %s", outcome.error)
            sys.exit(1)

        logger.info("Onboarding complete: %s", outcome)
    finally:
        await pool.close()


if __name__ == "__main__":
    import asyncio
    asyncio.run(main())
