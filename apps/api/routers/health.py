"""
Health check endpoints.
"""

from fastapi import APIRouter
from sqlalchemy import text
import redis.asyncio as redis

from config import settings, stripe_configured
from database import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """
    Report database and Redis reachability.
    Either being down marks the service degraded, not failed.
    """
    health_status = {
        "status": "healthy",
        "api": "up",
        "database": "unknown",
        "redis": "unknown",
        "stripe": "configured" if stripe_configured() else "missing",
        "ai": "configured" if settings.AI_API_KEY else "missing",
    }

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["database"] = "up"
    except Exception as e:
        health_status["database"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    try:
        r = redis.from_url(settings.REDIS_URL)
        try:
            await r.ping()
        finally:
            await r.aclose()
        health_status["redis"] = "up"
    except Exception as e:
        health_status["redis"] = f"down: {str(e)}"
        health_status["status"] = "degraded"

    return health_status


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}
