"""
FastAPI application entry point.

Serves the city intelligence router and runs the periodic sweep that
drops idle sessions from the in-memory store.
"""

import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from city_intelligence.orchestration.intelligence_api import get_orchestrator
from city_intelligence.orchestration.intelligence_api import router as intelligence_router
from city_intelligence.shared.logging import setup_logging


# ============================================================================
# Logging configuration (single source of truth for all agents)
# ============================================================================
setup_logging(
    level=getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO),
    json_format=os.getenv("LOG_FORMAT", "").lower() == "json",
)

logger = logging.getLogger(__name__)


async def sweep_stale_sessions(interval_seconds: float) -> None:
    """Drop idle sessions every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        removed = get_orchestrator().cleanup_stale_sessions()
        if removed:
            logger.info(f"[graph=orchestrator] Swept stale sessions | count={len(removed)}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    interval = get_orchestrator().config.cleanup_interval_seconds
    sweeper = asyncio.create_task(sweep_stale_sessions(interval))
    logger.info(f"[graph=orchestrator] Session sweep started | interval={interval}s")
    yield
    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper


app = FastAPI(
    title="City Intelligence",
    description="Multi-agent city intelligence for road trips, built with LangGraph",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(intelligence_router)


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "name": "City Intelligence",
        "version": "0.1.0",
        "endpoints": {
            "start": "POST /api/intelligence/start",
            "status": "GET /api/intelligence/session/{session_id}/status",
            "city": "GET /api/intelligence/session/{session_id}/city/{city_id}",
            "insights": "GET /api/intelligence/session/{session_id}/insights",
            "cancel": "DELETE /api/intelligence/session/{session_id}",
            "health": "GET /api/intelligence/health",
        },
    }


@app.get("/health")
async def health():
    """Liveness check; agent wiring is reported by /api/intelligence/health."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
