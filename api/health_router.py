"""
Health and Monitoring Router.

Public, unauthenticated endpoints for health checks and monitoring.

Endpoints Provided:
- `/healthcheck`: A lightweight check that the service is running.
- `/monitoring/ping`: Connectivity test.
- `/monitoring/detailed`: Checks the gateway store, object storage and the
  change feed, reporting "degraded" when one of them is unhealthy.
"""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter

from core.config import settings
from core.database import get_database_info
from core.logging_config import get_logger
from .dependencies import get_services

logger = get_logger(__name__)

SERVICE_NAME = "PinPrompt API"
VERSION = "1.0.0"

# Create router without dependencies - no prefix to avoid conflicts
health_router = APIRouter(tags=["Health & Monitoring"])

# Separate monitoring router for additional endpoints
monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint (no authentication required)

    Returns:
        Dict with status, timestamp, and version info
    """
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    logger.debug("Ping requested")
    return {"message": "pong", "timestamp": _now(), "version": VERSION}


@monitoring_router.get("/detailed")
async def detailed_health_check() -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status = {
        "status": "healthy",
        "timestamp": _now(),
        "version": VERSION,
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "components": {},
    }

    # Check database
    db_info = await get_database_info()
    health_status["components"]["database"] = {
        "status": "healthy" if db_info["connection_healthy"] else "unhealthy",
        "info": db_info,
    }
    if not db_info["connection_healthy"]:
        health_status["status"] = "degraded"

    # Check object storage
    storage_dir = settings.storage_dir
    storage_ok = not storage_dir.exists() or storage_dir.is_dir()
    health_status["components"]["storage"] = {
        "status": "healthy" if storage_ok else "unhealthy",
        "root": str(storage_dir),
    }
    if not storage_ok:
        health_status["status"] = "degraded"

    # Check change feed
    try:
        change_feed = get_services().gateway.change_feed
        health_status["components"]["change_feed"] = {
            "status": "healthy",
            "subscribers": change_feed.subscriber_count,
        }
    except (RuntimeError, AttributeError) as e:
        logger.warning(f"Change feed check failed (non-critical): {e}")
        health_status["components"]["change_feed"] = {
            "status": "unavailable",
            "error": str(e),
        }

    return health_status
