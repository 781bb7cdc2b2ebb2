"""FastAPI application for the CivicMap spatial query API.

Serves the viewport, parcel/address, search and proximity endpoints the
map viewer calls, plus health checks.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from civicmap.core.config import Settings
from civicmap.core.errors import CivicMapError
from civicmap.core.log import configure_logging
from civicmap.core.types import HealthStatus
from civicmap.gis.crossref import CrossReferenceAggregator
from civicmap.gis.service import SpatialQueryService
from civicmap.web.parcels_router import router as parcels_router
from civicmap.web.proximity_router import router as proximity_router

logger = logging.getLogger(__name__)


# --- Response models ---


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str
    version: str = "0.1.0"
    backend: HealthStatus | None = None


# --- Application factory ---


def _build_query_service(app: FastAPI, settings: Settings) -> SpatialQueryService:
    """PostGIS when a database URL is configured, fixture data otherwise."""
    if settings.db.database_url:
        from civicmap.db.engine import DatabaseManager
        from civicmap.gis.service import PostGISQueryService

        db_manager = DatabaseManager(
            database_url=settings.db.database_url,
            echo=settings.db.echo,
            pool_size=settings.db.pool_size,
        )
        app.state.db_manager = db_manager
        logger.info("Using PostGIS query service")
        return PostGISQueryService(db_manager, config=settings.query, db_config=settings.db)

    from civicmap.gis.mock import MockSpatialQueryService

    logger.info("No database URL configured, using fixture query service")
    return MockSpatialQueryService(config=settings.query)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    db_manager = getattr(app.state, "db_manager", None)
    if db_manager is not None:
        await db_manager.close()


def create_app(
    settings: Settings | None = None,
    query_service: SpatialQueryService | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Uses the factory pattern so tests can create isolated app instances
    with a fake query service.

    Args:
        settings: Application settings. Defaults to Settings().
        query_service: Optional pre-built spatial query service.

    Returns:
        A configured FastAPI instance.
    """
    if settings is None:
        settings = Settings()

    configure_logging(settings.log_level)

    app = FastAPI(
        title="CivicMap",
        description="Spatial query API for the municipal parcel viewer",
        version="0.1.0",
        debug=settings.debug,
        lifespan=_lifespan,
    )
    logger.info("Creating CivicMap app (environment=%s)", settings.environment)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    if query_service is None:
        query_service = _build_query_service(app, settings)

    app.state.settings = settings
    app.state.query_service = query_service
    app.state.crossref = CrossReferenceAggregator(query_service, radius_m=settings.query.proximity_radius_m)

    @app.exception_handler(CivicMapError)
    async def civicmap_error_handler(request: Request, exc: CivicMapError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    app.include_router(parcels_router)
    app.include_router(proximity_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        backend = await app.state.query_service.health()
        return HealthResponse(
            status="healthy" if backend.healthy else "degraded",
            service="civicmap",
            backend=backend,
        )

    @app.get("/api/db")
    async def db_check() -> JSONResponse:
        """Round-trip the geometry store."""
        status = await app.state.query_service.health()
        if not status.healthy:
            return JSONResponse(status_code=500, content={"ok": False, "error": "Database connection failed"})
        return JSONResponse(content={"ok": True, "dbTimeMs": status.latency_ms})

    return app
