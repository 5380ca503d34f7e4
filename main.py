# ============================================================================
# CLUSTER JOB ORCHESTRATOR - MAIN APPLICATION
# ============================================================================
# STATUS: Core - FastAPI application entry point
# PURPOSE: Wire the store, backend, listeners and orchestrator behind HTTP
# CREATED: 17 MAR 2026
# ============================================================================
"""
Cluster Job Orchestrator Main Application

FastAPI application that:
1. Accepts cluster job submissions
2. Receives started/ended callbacks from job scripts
3. Cancels and deletes jobs per owner

Jobs are stored in PostgreSQL when DATABASE_URL or POSTGRES_HOST is set,
otherwise in memory.

Usage:
    uvicorn main:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI

from __version__ import __version__, BUILD_DATE
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_defaults
from repositories import (
    MemoryClusterJobStore,
    PostgresClusterJobStore,
    close_pool,
    ensure_schema,
    init_pool,
    is_database_configured,
)
from backends import create_backend
from services import ListenerRegistry, LoggingListener, LoggingStreamLog
from orchestrator import ClusterOrchestrator
from api.routes import router, set_services

# Logging is configured before any service module logs
from core.logging import configure_logging

configure_logging(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    json_output=os.environ.get("LOG_FORMAT", "").lower() == "json",
)
logger = logging.getLogger(__name__)

_orchestrator: ClusterOrchestrator = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the store, backend and orchestrator for the life of the app."""
    global _orchestrator

    defaults = get_defaults()
    logger.info(f"Starting Cluster Job Orchestrator v{__version__} (Build {BUILD_DATE}, mode {defaults.mode.value})")

    # Storage
    use_database = is_database_configured()
    if use_database:
        pool = await init_pool()
        await ensure_schema(pool)
        store = PostgresClusterJobStore(pool)
        logger.info("Database pool initialized, using PostgreSQL store")
    else:
        store = MemoryClusterJobStore()
        logger.warning("No database configured, cluster jobs are kept in memory only")

    # Backend and listeners
    backend = create_backend(defaults, store)
    registry = ListenerRegistry()
    registry.add_listener(LoggingListener())

    _orchestrator = ClusterOrchestrator(store, backend, registry, LoggingStreamLog())

    # Routes resolve the orchestrator through set_services()
    set_services(orchestrator=_orchestrator, callback_token=defaults.web.callback_token)

    app.state.orchestrator = _orchestrator
    app.state.registry = registry

    yield

    logger.info("Shutting down Cluster Job Orchestrator...")

    # Let pending cleanup and load-test callback tasks finish
    await _orchestrator.drain()
    if use_database:
        await close_pool()

    logger.info("Cluster Job Orchestrator stopped")


app = FastAPI(
    title="Cluster Job Orchestrator",
    description="Submits, tracks and cancels batch jobs on SLURM or a local pseudo-cluster",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)
app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    """Root endpoint."""
    backend = _orchestrator.backend if _orchestrator is not None else None
    return {
        "service": "Cluster Job Orchestrator",
        "version": __version__,
        "build_date": BUILD_DATE,
        "mode": backend.cluster_mode.value if backend is not None else None,
        "status": "running",
        "docs": "/docs",
    }


@app.get("/health")
async def health():
    """Liveness check."""
    if _orchestrator is None:
        return {"status": "starting"}
    queues = _orchestrator.backend.queues
    return {
        "status": "healthy",
        "mode": _orchestrator.backend.cluster_mode.value,
        "queues": {"cpu": queues.cpu, "gpu": queues.gpu},
    }


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8000"))

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=os.environ.get("RELOAD", "false").lower() == "true",
    )
