"""Health check endpoint.

Verifies connectivity to the database and Redis, returns structured status.
Redis is optional, so its absence degrades the status without failing it.
"""

from __future__ import annotations

from fastapi import APIRouter
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from pay2start.infrastructure.database.engine import check_database
from pay2start.infrastructure.redis_client import get_redis
from pay2start.logging_config import get_logger
from pay2start.schemas.common import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to the database and Redis."""
    db_status = "unknown"
    redis_status = "unknown"

    try:
        await check_database()
        db_status = "healthy"
    except (SQLAlchemyError, OSError) as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    redis = get_redis()
    if redis is None:
        redis_status = "disabled"
    else:
        try:
            await redis.ping()
            redis_status = "healthy"
        except (RedisError, OSError) as exc:
            redis_status = f"unhealthy: {exc}"
            logger.error("health.redis_check_failed", error=str(exc))

    overall = "ok" if db_status == "healthy" and redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
    )
