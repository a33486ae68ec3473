"""
City onboarding endpoints.

  POST   /onboarding/cities                    create a city and start onboarding
  POST   /onboarding/cities/{city_id}/runs     start onboarding for an existing city
  GET    /onboarding/cities/{city_id}          latest run for the city (or null)
  GET    /onboarding/cities/{city_id}/complete whether the latest run completed
  GET    /onboarding/active                    runs currently generating
  DELETE /onboarding/runs/{run_id}             remove a finished run (retry)

Auth model: service-to-service.
  - X-Service-Token header validated against ONBOARDING_SERVICE_TOKEN
    (skipped with a warning in development when unset)
  - X-User-Id header, when present, is recorded as the run's initiatedBy

Starts are rate limited with a Redis sliding window, since each run makes
twelve completion calls. Runs execute as background tasks; callers poll the
GET endpoints for progress.
"""

from __future__ import annotations

import hmac
import logging
import time
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, field_validator

from services.climate_api.config import settings
from services.climate_api.onboarding.errors import CityExistsError, PersistenceError
from services.climate_api.onboarding.state import RunStatus
from services.climate_api.onboarding.store import OnboardingStateStore
from services.climate_api.onboarding.tasks import OnboardingTaskRegistry
from services.climate_api.onboarding.types import (
    Coordinates,
    OnboardingRequest,
    TemperatureUnit,
)
from services.climate_api.onboarding.writer import RecordWriter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])

RATE_LIMIT_KEY = "onboarding:start_rate_limit"
RATE_LIMIT_WINDOW_S = 60


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class CoordinatesIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CreateCityRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    country: str = Field(..., min_length=1, max_length=200)
    region: str | None = Field(default=None, max_length=200)
    slug: str | None = Field(default=None, pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$")
    coordinates: CoordinatesIn
    population: int | None = Field(default=None, gt=0)
    temperature_unit: TemperatureUnit = Field(
        default=TemperatureUnit.CELSIUS, alias="temperatureUnit",
    )

    model_config = {"populate_by_name": True}

    @field_validator("name", "country")
    @classmethod
    def not_whitespace(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must contain non-whitespace content")
        return v.strip()


class StartRunRequest(BaseModel):
    temperature_unit: TemperatureUnit = Field(
        default=TemperatureUnit.CELSIUS, alias="temperatureUnit",
    )

    model_config = {"populate_by_name": True}


class StartRunResponse(BaseModel):
    run_id: str = Field(alias="runId")
    city_id: str = Field(alias="cityId")
    status: str

    model_config = {"populate_by_name": True}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def _verify_service_token(request: Request) -> Optional[str]:
    """
    Validate X-Service-Token against ONBOARDING_SERVICE_TOKEN.
    Returns the X-User-Id header value, or None when absent.
    Raises 401 on a missing/invalid token.
    """
    expected_token = settings.onboarding_service_token
    if not expected_token:
        if settings.environment != "development":
            raise HTTPException(
                status_code=500,
                detail={
                    "code": "MISCONFIGURED",
                    "message": "Service token not configured.",
                },
            )
        logger.warning("ONBOARDING_SERVICE_TOKEN not set, skipping auth (dev mode)")
    else:
        provided = request.headers.get("X-Service-Token", "")
        if not hmac.compare_digest(provided.encode(), expected_token.encode()):
            raise HTTPException(
                status_code=401,
                detail={
                    "code": "UNAUTHORIZED",
                    "message": "Invalid or missing service token.",
                },
            )

    user_id = request.headers.get("X-User-Id", "").strip()
    return user_id or None


async def _check_rate_limit(redis) -> None:
    """Sliding window over onboarding starts via a Redis sorted set. Fails open."""
    if redis is None:
        return

    limit = settings.rate_limit_onboarding_per_min
    now = time.time()
    cutoff = now - RATE_LIMIT_WINDOW_S

    try:
        pipe = redis.pipeline()
        pipe.zremrangebyscore(RATE_LIMIT_KEY, "-inf", cutoff)
        pipe.zcard(RATE_LIMIT_KEY)
        results = await pipe.execute()
        current_count = results[1]
    except Exception:
        logger.warning("Rate limit check failed, allowing request", exc_info=True)
        return

    if current_count >= limit:
        raise HTTPException(
            status_code=429,
            detail={
                "code": "RATE_LIMITED",
                "message": (
                    f"Rate limit exceeded: max {limit} onboarding starts "
                    f"per {RATE_LIMIT_WINDOW_S}s. Try again shortly."
                ),
            },
        )

    try:
        await redis.zadd(RATE_LIMIT_KEY, {str(now): now})
        await redis.expire(RATE_LIMIT_KEY, RATE_LIMIT_WINDOW_S + 10)
    except Exception:
        logger.warning("Could not record onboarding start in rate limit window", exc_info=True)


def _pool(request: Request):
    pool = getattr(request.app.state, "db", None)
    if pool is None:
        raise HTTPException(
            status_code=503,
            detail={"code": "DB_UNAVAILABLE", "message": "Database is not available."},
        )
    return pool


def _registry(request: Request) -> OnboardingTaskRegistry:
    return request.app.state.onboarding_tasks


def _envelope(request: Request, data) -> dict:
    return {
        "success": True,
        "data": data,
        "requestId": request.state.request_id,
    }


def _persistence_unavailable(exc: PersistenceError) -> HTTPException:
    logger.error("Onboarding persistence error: %s", exc)
    return HTTPException(
        status_code=503,
        detail={"code": "PERSISTENCE_ERROR", "message": "Could not reach onboarding storage."},
    )


def _in_progress() -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={
            "code": "ONBOARDING_IN_PROGRESS",
            "message": "An onboarding run for this city is already generating.",
        },
    )


async def _ensure_not_running(
    registry: OnboardingTaskRegistry,
    store: OnboardingStateStore,
    city_id: str,
) -> None:
    if registry.is_running_for_city(city_id):
        running = True
    else:
        latest = await store.get_by_city(city_id)
        running = latest is not None and latest.status is RunStatus.GENERATING
    if running:
        raise _in_progress()


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/cities", status_code=202, response_model=StartRunResponse)
async def create_city_and_onboard(body: CreateCityRequest, request: Request):
    """Create the city row, then start onboarding it in the background."""
    user_id = _verify_service_token(request)
    await _check_rate_limit(getattr(request.app.state, "redis", None))

    writer = RecordWriter(_pool(request))
    coordinates = Coordinates(lat=body.coordinates.lat, lng=body.coordinates.lng)
    population = body.population or settings.default_city_population

    try:
        city_id = await writer.create_city(
            body.name,
            body.country,
            coordinates,
            population,
            slug=body.slug,
            region=body.region,
        )
    except CityExistsError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "CITY_EXISTS", "message": str(exc)},
        )
    except PersistenceError as exc:
        raise _persistence_unavailable(exc)

    handle = _registry(request).start(OnboardingRequest(
        city_id=city_id,
        city_name=body.name,
        country=body.country,
        coordinates=coordinates,
        population=population,
        unit=body.temperature_unit,
        initiated_by=user_id,
    ))
    return StartRunResponse(
        run_id=handle.run_id, city_id=city_id, status=RunStatus.PENDING.value,
    )


@router.post("/cities/{city_id}/runs", status_code=202, response_model=StartRunResponse)
async def start_onboarding(city_id: str, request: Request, body: StartRunRequest | None = None):
    """Start onboarding for an existing city. 409 while a run is generating."""
    user_id = _verify_service_token(request)
    pool = _pool(request)
    registry = _registry(request)
    body = body or StartRunRequest()

    city = await RecordWriter(pool).get_city(city_id)
    if city is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "CITY_NOT_FOUND", "message": f"City {city_id} not found."},
        )

    await _ensure_not_running(registry, OnboardingStateStore(pool), city_id)
    await _check_rate_limit(getattr(request.app.state, "redis", None))

    # A concurrent request may have started a run during the awaits above.
    # No await between this check and registry.start.
    if registry.is_running_for_city(city.id):
        raise _in_progress()

    handle = registry.start(OnboardingRequest(
        city_id=city.id,
        city_name=city.name,
        country=city.country,
        coordinates=city.coordinates,
        population=city.population,
        unit=body.temperature_unit,
        initiated_by=user_id,
    ))
    return StartRunResponse(
        run_id=handle.run_id, city_id=city.id, status=RunStatus.PENDING.value,
    )


@router.get("/cities/{city_id}")
async def get_onboarding(city_id: str, request: Request) -> dict:
    run = await OnboardingStateStore(_pool(request)).get_by_city(city_id)
    return _envelope(request, run.to_dict() if run else None)


@router.get("/cities/{city_id}/complete")
async def is_onboarding_complete(city_id: str, request: Request) -> dict:
    complete = await OnboardingStateStore(_pool(request)).is_complete(city_id)
    return _envelope(request, {"cityId": city_id, "complete": complete})


@router.get("/active")
async def list_active_onboardings(request: Request) -> dict:
    runs = await OnboardingStateStore(_pool(request)).list_active()
    return _envelope(request, [r.to_dict() for r in runs])


@router.delete("/runs/{run_id}")
async def delete_onboarding_run(run_id: str, request: Request) -> dict:
    """Remove a finished run so the city can be onboarded from scratch."""
    _verify_service_token(request)
    store = OnboardingStateStore(_pool(request))

    if _registry(request).get(run_id) is not None:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "ONBOARDING_IN_PROGRESS",
                "message": "Run is still executing and cannot be deleted.",
            },
        )

    run = await store.get(run_id)
    if run is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "RUN_NOT_FOUND", "message": f"Onboarding run {run_id} not found."},
        )
    if run.status is RunStatus.GENERATING:
        raise HTTPException(
            status_code=409,
            detail={
                "code": "ONBOARDING_IN_PROGRESS",
                "message": "Run is still generating and cannot be deleted.",
            },
        )

    await store.delete(run_id)
    return _envelope(request, {"runId": run_id, "deleted": True})
