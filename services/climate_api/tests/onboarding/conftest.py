"""
Shared fixtures for the onboarding test suite.

Provides a fake asyncpg pool for store/writer SQL tests, in-memory doubles
of the store and writer for orchestrator tests, a scripted completion
client, and factory helpers for completion payloads.
"""

import copy
import json
import os
import random
import uuid
from typing import Any, Callable, Optional

import pytest

os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("OPENAI_API_KEY", "")
os.environ.setdefault("SENTRY_DSN", "")

from services.climate_api.onboarding.catalog import MODULE_CATALOG, ModuleSpec  # noqa: E402
from services.climate_api.onboarding.errors import GenerationError  # noqa: E402
from services.climate_api.onboarding.state import OnboardingRun  # noqa: E402
from services.climate_api.onboarding.types import Coordinates, OnboardingRequest  # noqa: E402
from services.climate_api.onboarding.writer import CityStats, ModuleRow  # noqa: E402


# ---------------------------------------------------------------------------
# ID helpers
# ---------------------------------------------------------------------------

def make_id() -> str:
    """Generate a random UUID string."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Fake asyncpg pool / connection
# ---------------------------------------------------------------------------

class FakeRecord(dict):
    """Dict subclass standing in for asyncpg.Record."""
    def __getitem__(self, key):
        return super().__getitem__(key)


def _lookup(results: dict[str, Any], query: str, default: Any) -> Any:
    """Results are keyed by a SQL fragment; the first fragment found in the query wins."""
    for fragment, value in results.items():
        if fragment in query:
            return value
    return default


class FakeConnection:
    """In-memory fake asyncpg connection for testing."""

    def __init__(self, pool: "FakePool"):
        self._pool = pool

    def _maybe_fail(self) -> None:
        if self._pool.fail_with is not None:
            raise self._pool.fail_with

    async def fetch(self, query: str, *args) -> list:
        self._maybe_fail()
        self._pool._queries.append((query, args))
        return _lookup(self._pool._fetch_results, query, [])

    async def fetchrow(self, query: str, *args) -> Optional[FakeRecord]:
        self._maybe_fail()
        self._pool._queries.append((query, args))
        return _lookup(self._pool._fetchrow_results, query, None)

    async def fetchval(self, query: str, *args):
        self._maybe_fail()
        self._pool._queries.append((query, args))
        return _lookup(self._pool._fetchval_results, query, None)

    async def execute(self, query: str, *args) -> str:
        self._maybe_fail()
        self._pool._executed.append((query, args))
        return _lookup(self._pool._execute_status, query, "UPDATE 1")

    async def executemany(self, query: str, args_list) -> None:
        self._maybe_fail()
        for args in args_list:
            self._pool._executed.append((query, args))

    def transaction(self):
        return _FakeTransaction(self._pool)


class _FakeTransaction:
    def __init__(self, pool: "FakePool"):
        self._pool = pool

    async def __aenter__(self):
        self._pool.transactions += 1
        return self

    async def __aexit__(self, *exc):
        pass


class FakePool:
    """In-memory fake asyncpg pool for testing."""

    def __init__(self):
        self._fetch_results: dict[str, list] = {}
        self._fetchrow_results: dict[str, Optional[FakeRecord]] = {}
        self._fetchval_results: dict[str, Any] = {}
        self._execute_status: dict[str, str] = {}
        self._executed: list[tuple] = []
        self._queries: list[tuple] = []
        self.transactions = 0
        self.fail_with: Optional[Exception] = None

    def acquire(self):
        return _FakePoolAcquire(self)

    async def fetch(self, query: str, *args) -> list:
        return await FakeConnection(self).fetch(query, *args)

    async def fetchrow(self, query: str, *args):
        return await FakeConnection(self).fetchrow(query, *args)

    async def fetchval(self, query: str, *args):
        return await FakeConnection(self).fetchval(query, *args)

    async def execute(self, query: str, *args) -> str:
        return await FakeConnection(self).execute(query, *args)

    async def executemany(self, query: str, args_list) -> None:
        return await FakeConnection(self).executemany(query, args_list)

    async def close(self):
        pass


class _FakePoolAcquire:
    def __init__(self, pool: FakePool):
        self._pool = pool

    async def __aenter__(self) -> FakeConnection:
        return FakeConnection(self._pool)

    async def __aexit__(self, *exc):
        pass


@pytest.fixture
def fake_pool():
    """Provide a fresh FakePool for each test."""
    return FakePool()


# ---------------------------------------------------------------------------
# In-memory store / writer doubles
# ---------------------------------------------------------------------------

class MemoryStore:
    """
    OnboardingStateStore stand-in. Keeps every saved snapshot so tests can
    assert on the sequence a polling reader would have seen.
    """

    def __init__(self):
        self.runs: dict[str, OnboardingRun] = {}
        self.snapshots: list[dict[str, Any]] = []
        self.fail_saves_after: Optional[int] = None

    async def create(self, run: OnboardingRun) -> str:
        self.runs[run.id] = copy.deepcopy(run)
        self.snapshots.append(run.to_dict())
        return run.id

    async def save(self, run: OnboardingRun) -> None:
        if self.fail_saves_after is not None and len(self.snapshots) >= self.fail_saves_after:
            from services.climate_api.onboarding.errors import PersistenceError
            raise PersistenceError("database unavailable")
        self.runs[run.id] = copy.deepcopy(run)
        self.snapshots.append(run.to_dict())

    async def get(self, run_id: str) -> Optional[OnboardingRun]:
        return self.runs.get(run_id)

    async def get_by_city(self, city_id: str) -> Optional[OnboardingRun]:
        runs = [r for r in self.runs.values() if r.city_id == city_id]
        return max(runs, key=lambda r: r.started_at) if runs else None

    async def list_active(self) -> list[OnboardingRun]:
        return [r for r in self.runs.values() if r.status.value == "generating"]

    async def is_complete(self, city_id: str) -> bool:
        run = await self.get_by_city(city_id)
        return run is not None and run.status.value == "completed"

    async def delete(self, run_id: str) -> bool:
        return self.runs.pop(run_id, None) is not None


class MemoryWriter:
    """RecordWriter stand-in backed by plain lists."""

    def __init__(self, registered: Optional[list[str]] = None):
        slugs = registered if registered is not None else [m.slug for m in MODULE_CATALOG]
        self.modules = {slug: ModuleRow(id=f"mod-{slug}", slug=slug, name=slug) for slug in slugs}
        self.hotspots: list[dict[str, Any]] = []
        self.quick_wins: list[dict[str, Any]] = []
        self.stats: dict[str, CityStats] = {}
        self.stats_calls = 0
        self.fail_quick_wins_for: set[str] = set()
        self.fail_stats = False

    async def get_module_by_slug(self, slug: str) -> Optional[ModuleRow]:
        return self.modules.get(slug)

    async def write_hotspots(self, city_id, module_id, items, *, center) -> list[str]:
        ids = []
        for item in items:
            position = item.position(center)
            ids.append(make_id())
            self.hotspots.append({
                "id": ids[-1], "cityId": city_id, "moduleId": module_id,
                "name": item.name, "lat": position.lat, "lng": position.lng,
            })
        return ids

    async def write_quick_wins(self, city_id, module_id, items) -> list[str]:
        if module_id in self.fail_quick_wins_for:
            from services.climate_api.onboarding.errors import PersistenceError
            raise PersistenceError("failed to write quick wins: disk full")
        ids = []
        for index, item in enumerate(items):
            ids.append(make_id())
            self.quick_wins.append({
                "id": ids[-1], "cityId": city_id, "moduleId": module_id,
                "title": item.title, "tags": item.tags, "sortOrder": index,
            })
        return ids

    async def recompute_city_stats(self, city_id: str) -> CityStats:
        self.stats_calls += 1
        if self.fail_stats:
            from services.climate_api.onboarding.errors import PersistenceError
            raise PersistenceError("failed to recompute stats")
        hotspots = [h for h in self.hotspots if h["cityId"] == city_id]
        stats = CityStats(
            totalHotspots=len(hotspots),
            totalQuickWins=len([q for q in self.quick_wins if q["cityId"] == city_id]),
            activeModules=len({h["moduleId"] for h in hotspots}),
        )
        self.stats[city_id] = stats
        return stats


# ---------------------------------------------------------------------------
# Scripted completion client
# ---------------------------------------------------------------------------

def hotspots_payload(count: int, prefix: str = "Hotspot") -> str:
    return json.dumps({"hotspots": [
        {
            "name": f"{prefix} {i}",
            "description": "Dense asphalt with little shade.",
            "neighborhood": "Downtown",
            "latOffset": 0.01 * i,
            "lngOffset": -0.01 * i,
            "severity": "high",
            "displayValue": "+4.1°C",
            "metrics": [{"key": "tempAnomaly", "value": 4.1, "unit": "°C", "trend": "up"}],
        }
        for i in range(count)
    ]})


def quick_wins_payload(count: int, prefix: str = "Action") -> str:
    return json.dumps({"quickWins": [
        {
            "title": f"{prefix} {i}",
            "description": "Plant street trees along the corridor.",
            "impact": "high",
            "effort": "low",
            "estimatedDays": 45,
            "tags": ["trees"],
            "steps": ["Survey", "Plant", "Water"],
        }
        for i in range(count)
    ]})


Responder = Callable[[ModuleSpec, str], str]


class ScriptedCompletionClient:
    """
    CompletionClient stand-in. Identifies the module and call kind from the
    system prompt and answers with `responder(module, kind)`, where kind is
    "hotspots" or "quick_wins". A responder may raise to simulate API errors.
    """

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder or (
            lambda module, kind: hotspots_payload(5) if kind == "hotspots" else quick_wins_payload(4)
        )
        self.calls: list[tuple[str, str]] = []
        self._by_system: dict[str, tuple[ModuleSpec, str]] = {}
        for module in MODULE_CATALOG:
            self._by_system[module.hotspot_system_prompt] = (module, "hotspots")
            self._by_system[module.quick_win_system_prompt] = (module, "quick_wins")
        self.closed = False

    async def complete(self, system: str, user: str, *, temperature: float, max_tokens: int) -> str:
        module, kind = self._by_system[system]
        self.calls.append((module.slug, kind))
        return self.responder(module, kind)

    async def aclose(self) -> None:
        self.closed = True


def failing_responder(slug: str, kind: str, status: int = 500) -> Responder:
    """Default payloads everywhere except (slug, kind), which raises GenerationError."""
    def respond(module: ModuleSpec, call_kind: str) -> str:
        if module.slug == slug and call_kind == kind:
            raise GenerationError(
                f"OpenAI API error ({status}): Internal Server Error", status_code=status,
            )
        return hotspots_payload(5) if call_kind == "hotspots" else quick_wins_payload(4)
    return respond


# ---------------------------------------------------------------------------
# Request factory
# ---------------------------------------------------------------------------

def make_request(**overrides: Any) -> OnboardingRequest:
    base: dict[str, Any] = {
        "city_id": make_id(),
        "city_name": "Lisbon",
        "country": "Portugal",
        "coordinates": Coordinates(lat=38.7223, lng=-9.1393),
        "population": 545_000,
    }
    base.update(overrides)
    return OnboardingRequest(**base)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def memory_writer():
    return MemoryWriter()


@pytest.fixture
def scripted_client():
    return ScriptedCompletionClient()


@pytest.fixture
def seeded_rng():
    return random.Random(1234)
