"""
FastAPI application setup.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from poi_share.config.settings import settings
from poi_share.core.db import dispose_engine
from poi_share.core.dependencies import ServiceContainer
from poi_share.core.error_handlers import setup_error_handlers
from poi_share.core.logging import configure_logging
from poi_share.middleware import RequestContextMiddleware
from poi_share.services.device_storage import DeviceStorage
from poi_share.services.realtime_notifier import ImportEventBroker

configure_logging(settings.log_level.value, settings.log_file, settings.log_format)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start the service container (device storage, realtime broker) and
    release it together with the database engine on shutdown.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    container: ServiceContainer = app.state.service_container

    try:
        await container.initialize_services()
        logger.info("Application startup complete")
        yield
    except Exception as e:
        logger.error(f"Application startup failed: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down application")
        await container.cleanup_services()
        if app.state.owns_engine:
            await dispose_engine()
        logger.info("Application shutdown complete")


def create_app(
    session_factory: Optional[async_sessionmaker] = None,
    device_storage: Optional[DeviceStorage] = None,
    broker: Optional[ImportEventBroker] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        session_factory: Session factory to use instead of the configured engine
        device_storage: Anonymous favorites storage; JSON files by default
        broker: Realtime broker; built from ``REALTIME_BROKER`` by default

    Returns:
        FastAPI: Configured application instance
    """
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        lifespan=lifespan
    )
    app.state.service_container = ServiceContainer(
        session_factory=session_factory,
        device_storage=device_storage,
        broker=broker,
    )
    app.state.owns_engine = session_factory is None

    app.add_middleware(
        CORSMiddleware,
        **settings.get_cors_config()
    )
    app.add_middleware(RequestContextMiddleware)

    setup_error_handlers(app)

    from poi_share.api.favorites_endpoints import router as favorites_router
    from poi_share.api.shared_links_endpoints import router as shared_links_router
    from poi_share.api.health_endpoints import router as health_router
    app.include_router(favorites_router)
    app.include_router(shared_links_router)
    app.include_router(health_router)

    @app.get("/")
    async def root():
        return {
            "message": f"Welcome to {settings.app_name}",
            "version": settings.app_version,
            "status": "running"
        }

    return app


app = create_app()
