"""Application factory and CLI entry point.

``create_app()`` builds the FastAPI application with:
  - Lifespan handler that loads the flow cache and builds the engine once
  - CORS middleware
  - Global exception handlers (SDK errors → 404/409/422/503)
  - All API routes mounted under ``/api/v1``
  - A ``/health`` endpoint for readiness probes

The ``cli()`` function is the ``surveyor-server`` console-script entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from surveyor_db.engine import create_schema, dispose_engine, get_engine, get_session_factory
from surveyor_db.store import SqlRunStore
from surveyor_flows.engine import FlowEngine, OrgContext
from surveyor_flows.errors import FlowEngineError
from surveyor_flows.flows import FlowStore
from surveyor_flows.legacy import LegacySubmissionReader

from surveyor_server.config import ServerSettings, load_settings
from surveyor_server.errors import flow_error_handler, generic_error_handler
from surveyor_server.routes import register_routes

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# Lifespan — runs once at startup/shutdown
# ------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Initialise shared resources at startup, tear down on shutdown.

    Startup:
      1. Load cached flow definitions into a ``FlowStore``
      2. Create missing tables (unless disabled)
      3. Build ``FlowEngine`` over a ``SqlRunStore``
      4. Stash them on ``app.state`` for dependency injection

    Shutdown:
      1. Dispose the database engine's connection pool
    """
    settings: ServerSettings = app.state.settings

    # --- Load flows ---
    flows = FlowStore(flow_dir=settings.flow_dir)
    flows.load()

    # --- Database ---
    if settings.create_schema:
        await create_schema()
    store = SqlRunStore(get_session_factory())

    # --- Build engine ---
    legacy = LegacySubmissionReader(settings.legacy_dir) if settings.legacy_dir else None
    engine = FlowEngine(
        flows,
        store,
        org=OrgContext(
            date_style=settings.date_style,
            decimal_separator=settings.decimal_separator,
        ),
        legacy=legacy,
    )

    app.state.flows = flows
    app.state.engine = engine
    logger.info("Flow engine ready (%d flows cached)", len(flows.flow_uuids()))

    yield

    # --- Shutdown ---
    await dispose_engine()
    logger.info("Database engine disposed")


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def create_app(settings: ServerSettings | None = None) -> FastAPI:
    """Build and return the configured FastAPI application."""
    if settings is None:
        settings = load_settings()

    # --- Configure logging ---
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    app = FastAPI(
        title="Surveyor Flow Engine",
        description="Local API for offline survey flow execution",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store settings so the lifespan handler can read them
    app.state.settings = settings

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Exception handlers ---
    app.add_exception_handler(FlowEngineError, flow_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)

    # --- Health check (outside /api/v1 prefix) ---
    @app.get("/health")
    async def health() -> dict:
        """Readiness probe — verifies DB connectivity."""
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "ok"}
        except SQLAlchemyError as exc:
            logger.error("Health check failed: %s", exc)
            return {"status": "error", "detail": "database unavailable"}

    # --- Mount all API routes ---
    register_routes(app)

    return app


# ------------------------------------------------------------------
# Module-level ASGI export (for uvicorn surveyor_server.app:app)
# ------------------------------------------------------------------
app = create_app()


# ------------------------------------------------------------------
# CLI entry point
# ------------------------------------------------------------------

def cli() -> None:
    """Console-script entry point: ``surveyor-server``."""
    import uvicorn

    settings = load_settings()
    uvicorn.run(
        "surveyor_server.app:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
