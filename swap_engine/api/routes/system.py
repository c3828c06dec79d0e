"""
System API routes.
"""
from datetime import datetime, timezone
from fastapi import APIRouter

from swap_engine.api.dependencies import get_queue, get_redis, get_relay, get_store
from swap_engine.api.models import HealthResponse
from swap_engine.logging import logger

router = APIRouter(prefix="/api", tags=["System"])


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Redis, database and queue status."""
    redis_ok = await get_redis().health_check()
    database_ok = await get_store().health_check()

    queue_counts = {}
    if redis_ok:
        try:
            queue_counts = await get_queue().counts()
        except Exception as e:
            logger.warning(f"Could not read queue counts: {e}")

    return HealthResponse(
        status="ok" if redis_ok and database_ok else "degraded",
        redis=redis_ok,
        database=database_ok,
        queue=queue_counts,
        subscribers=get_relay().get_subscriber_count(),
        timestamp=datetime.now(timezone.utc),
    )
