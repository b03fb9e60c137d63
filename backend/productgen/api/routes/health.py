"""Health check endpoints."""

import logging

from fastapi import APIRouter
from sqlalchemy import text

from productgen import __version__
from productgen.api.deps import DbSession
from productgen.services.generator import detect_provider, get_available_providers

logger = logging.getLogger(__name__)

router = APIRouter()


async def database_ok(db) -> bool:
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True


@router.get("/health")
async def health_check(db: DbSession) -> dict:
    """Basic health check endpoint."""
    db_healthy = await database_ok(db)
    return {
        "status": "healthy" if db_healthy else "degraded",
        "database": "connected" if db_healthy else "disconnected",
        "version": __version__,
    }


@router.get("/health/ready")
async def readiness_check(db: DbSession) -> dict:
    """Readiness check for load balancers."""
    providers = get_available_providers()
    checks = {
        "database": await database_ok(db),
        "ai_provider": providers.get(detect_provider(), False),
    }
    return {
        "ready": all(checks.values()),
        "checks": checks,
        "provider": detect_provider(),
    }
