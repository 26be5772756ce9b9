"""Health check endpoint.

Verifies connectivity to PostgreSQL and Redis, returns structured status.
Redis is optional: without it events go to the log, so it never makes the
service unhealthy on its own.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from marketplace_escrow.infrastructure.database.engine import _get_engine
from marketplace_escrow.infrastructure.redis_client import get_redis
from marketplace_escrow.logging_config import get_logger
from marketplace_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to PostgreSQL and Redis."""
    try:
        async with _get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis = get_redis()
    if redis is None:
        redis_status = "disabled"
    else:
        try:
            await redis.ping()
            redis_status = "healthy"
        except Exception as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    if db_status != "healthy":
        overall = "unhealthy"
    elif redis_status == "healthy":
        overall = "ok"
    else:
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
    )
