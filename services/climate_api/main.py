"""
Climate dashboard API: city onboarding and run progress.

Entrypoint: uvicorn services.climate_api.main:app --host 0.0.0.0 --port 8000
"""

import logging
import uuid
from contextlib import asynccontextmanager

import asyncpg
import redis.asyncio as aioredis
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import JSONResponse

from services.climate_api.config import settings
from services.climate_api.middleware.cors import setup_cors
from services.climate_api.middleware.sentry import setup_sentry
from services.climate_api.onboarding.tasks import OnboardingTaskRegistry
from services.climate_api.routers import health, onboarding

logger = logging.getLogger(__name__)

_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    404: "NOT_FOUND",
    409: "CONFLICT",
    429: "RATE_LIMITED",
    503: "UNAVAILABLE",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    setup_sentry()

    # Redis for rate limiting
    redis_client = None
    if settings.redis_url:
        try:
            redis_client = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await redis_client.ping()
        except Exception as e:
            # Rate limiting degrades gracefully: starts pass through
            logger.warning("Redis unavailable, onboarding rate limit disabled: %s", e)
            redis_client = None

    app.state.redis = redis_client
    app.state.settings = settings

    db_pool = None
    if settings.database_url:
        try:
            db_pool = await asyncpg.create_pool(
                settings.database_url,
                min_size=2,
                max_size=10,
                command_timeout=30,
            )
        except Exception as e:
            logger.warning("DB pool failed to connect: %s", e)

    app.state.db = db_pool
    app.state.onboarding_tasks = OnboardingTaskRegistry(pool=db_pool)

    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY not set; onboarding runs will fail immediately")

    yield

    # Let in-flight runs reach a terminal state before the pool goes away
    await app.state.onboarding_tasks.drain()
    if db_pool:
        await db_pool.close()
    if redis_client:
        await redis_client.aclose()


app = FastAPI(
    title="Climate Dashboard API",
    version=settings.app_version,
    docs_url="/docs" if settings.environment == "development" else None,
    redoc_url=None,
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(onboarding.router)

# CORS (needs to be outermost to handle preflight)
setup_cors(app)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _error_response(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message},
            "requestId": getattr(request.state, "request_id", str(uuid.uuid4())),
        },
    )


# -- Exception Handlers --

@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "code" in detail:
        code, message = detail["code"], detail.get("message", "")
    else:
        code = _ERROR_CODES.get(exc.status_code, "ERROR")
        message = str(detail) if detail else "Request failed."
    return _error_response(request, exc.status_code, code, message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "; ".join(
        f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', 'invalid')}"
        for e in errors
    ) or "Validation error."
    return _error_response(request, 422, "VALIDATION_ERROR", message)


@app.exception_handler(500)
async def internal_error_handler(request: Request, exc) -> JSONResponse:
    return _error_response(request, 500, "INTERNAL_ERROR", "An unexpected error occurred.")
