"""Geocode Tool API — FastAPI application factory.

Invariants:
    - Pipeline order fixed by api/pipeline.py (body → log → CORS → fault isolation)
    - API routes registered explicitly under settings.api_prefix
    - Static files mounted AFTER API routes, so the prefix takes precedence
    - Every app owns exactly one WorkerLifecycle (app.state.lifecycle)

Design Decisions:
    - create_app() factory over a bare module global: the worker runner and
      tests inject their own lifecycle, supervisor and provider client
    - Lifespan over @app.on_event: FastAPI recommended pattern, cleaner cleanup
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from geocode_tool.api.error_handlers import register_error_handlers
from geocode_tool.api.pipeline import build_pipeline
from geocode_tool.api.responses import EnvelopeJSONResponse
from geocode_tool.api.routes import geocode, health
from geocode_tool.config import Settings, get_settings
from geocode_tool.core.stats import GeocodeStats
from geocode_tool.infrastructure.geocode_client import ResilientGeocodeClient
from geocode_tool.infrastructure.observability import setup_logging
from geocode_tool.runtime.lifecycle import WorkerLifecycle

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle."""
    settings: Settings = app.state.settings
    setup_logging(settings.log_level, settings.log_format)
    logger.info(
        f"Geocode tool worker started on "
        f"{settings.get('server:hostname')}:{settings.get('server:port')}",
    )
    yield
    await app.state.geocode_client.aclose()
    logger.info(
        "Geocode tool worker shutting down",
        extra={"worker_state": app.state.lifecycle.state.value},
    )


def build_geocode_client(settings: Settings) -> ResilientGeocodeClient:
    geocoder = settings.geocoder
    return ResilientGeocodeClient(
        base_url=geocoder.base_url,
        api_key=geocoder.api_key,
        lang=geocoder.lang,
        max_retries=geocoder.max_retries,
        base_delay_ms=geocoder.base_delay_ms,
        max_delay_ms=geocoder.max_delay_ms,
        timeout_seconds=geocoder.timeout_seconds,
        concurrency=geocoder.concurrency,
    )


def create_app(
    settings: Settings | None = None,
    lifecycle: WorkerLifecycle | None = None,
    geocode_client: ResilientGeocodeClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    lifecycle = lifecycle or WorkerLifecycle(
        shutdown_timeout=settings.server.shutdown_timeout_seconds,
    )

    app = FastAPI(
        title="Geocode Tool API",
        version=VERSION,
        lifespan=lifespan,
        default_response_class=EnvelopeJSONResponse,
        middleware=build_pipeline(lifecycle, settings.server.body_limit_bytes),
    )
    app.state.settings = settings
    app.state.lifecycle = lifecycle
    app.state.stats = GeocodeStats()
    app.state.geocode_client = geocode_client or build_geocode_client(settings)

    register_error_handlers(app)

    # Routes — explicit registration
    app.include_router(health.router, prefix=settings.api_prefix)
    app.include_router(geocode.router, prefix=settings.api_prefix)

    # html=True serves index.html for directory requests
    if os.path.isdir(settings.static_dir):
        app.mount(
            "/", StaticFiles(directory=settings.static_dir, html=True),
            name="static",
        )
    return app


app = create_app()
