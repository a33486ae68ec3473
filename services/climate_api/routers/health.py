"""Health check endpoint. Reports database and Redis reachability."""

import logging

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter()


async def _database_ok(pool) -> bool:
    if pool is None:
        return False
    try:
        await pool.fetchval("SELECT 1")
        return True
    except Exception:
        logger.warning("Health check: database unreachable", exc_info=True)
        return False


@router.get("/health")
async def health_check(request: Request) -> dict:
    state = request.app.state
    database = await _database_ok(getattr(state, "db", None))
    tasks = getattr(state, "onboarding_tasks", None)
    return {
        "success": True,
        "data": {
            "status": "healthy" if database else "degraded",
            "version": state.settings.app_version,
            "database": database,
            "redis": getattr(state, "redis", None) is not None,
            "runningOnboardings": len(tasks.running()) if tasks else 0,
        },
        "requestId": request.state.request_id,
    }
