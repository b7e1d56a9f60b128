"""
Health check endpoint: database round-trip, broker type and error counters.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from poi_share.core.dependencies import ServiceContainer, get_service_container
from poi_share.core.error_handlers import error_handler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(container: ServiceContainer = Depends(get_service_container)):
    """Health check with database status; ``degraded`` when the database is unreachable."""
    details = {
        "database": {"status": "unknown"},
        "realtime": {"broker": type(container.get_notifier().broker).__name__},
    }

    try:
        async with container.session_factory() as db:
            await db.execute(text("SELECT 1"))
        details["database"] = {"status": "healthy", "connection": "ok"}
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        details["database"] = {"status": "unhealthy", "error": str(e)}

    overall = "healthy" if details["database"]["status"] == "healthy" else "degraded"
    return {
        "status": overall,
        "version": container.settings.app_version,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "details": details,
        "error_statistics": error_handler.get_error_statistics(),
    }
