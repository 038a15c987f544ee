"""
FastAPI endpoints for city intelligence.

POST /start streams the run as Server-Sent Events; the remaining routes
query or cancel a session while (or after) it runs.
"""

import logging
import os
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import StreamingResponse

from city_intelligence.agents.registry import build_default_registry
from city_intelligence.orchestration.config import load_config_from_env
from city_intelligence.orchestration.orchestrator import (
    CityIntelligenceOrchestrator,
    IntelligenceStream,
)
from city_intelligence.orchestration.schemas import (
    KEEPALIVE_FRAME,
    CancelResponse,
    SessionStatusResponse,
    StartIntelligenceRequest,
)
from city_intelligence.shared.errors import (
    CityNotFoundError,
    SessionConflictError,
    SessionNotFoundError,
)
from city_intelligence.shared.llm import OpenAIBackend, get_api_key
from city_intelligence.shared.services import GooglePlacesClient, get_weather_client


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/intelligence", tags=["intelligence"])

# Shared orchestrator instance (sessions live in its in-memory store)
_orchestrator: Optional[CityIntelligenceOrchestrator] = None


def create_orchestrator() -> CityIntelligenceOrchestrator:
    """Build an orchestrator from the environment, wiring whichever backends are configured."""
    config = load_config_from_env()

    llm = OpenAIBackend(model=config.model) if get_api_key() else None
    places = GooglePlacesClient() if os.getenv("GOOGLE_PLACES_API_KEY") else None
    registry = build_default_registry(llm=llm, places=places, weather=get_weather_client())

    return CityIntelligenceOrchestrator(registry=registry, config=config)


def get_orchestrator() -> CityIntelligenceOrchestrator:
    """Get or create the shared orchestrator instance."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = create_orchestrator()
    return _orchestrator


def set_orchestrator(orchestrator: Optional[CityIntelligenceOrchestrator]) -> None:
    """Replace the shared orchestrator (None resets to lazy creation)."""
    global _orchestrator
    _orchestrator = orchestrator


async def _sse_frames(stream: IntelligenceStream) -> AsyncIterator[str]:
    async for event in stream.events():
        if event is None:
            yield KEEPALIVE_FRAME
        else:
            yield event.to_sse()


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/start")
async def start_intelligence(request: StartIntelligenceRequest) -> StreamingResponse:
    """
    Start gathering intelligence for every city and stream progress.

    The session id is returned in the ``X-Session-Id`` header and in the
    first (``connected``) event.
    """
    orchestrator = get_orchestrator()
    _log = f"[session={request.session_id or 'new'}] [graph=orchestrator] [api=start] "

    logger.info(
        f"{_log}Starting | cities={[c.id for c in request.cities]}, "
        f"nights={request.nights}, user={request.user_id}"
    )

    try:
        stream = await orchestrator.stream(request)
    except SessionConflictError as e:
        logger.warning(f"{_log}Rejected: {e}")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except Exception as e:
        logger.exception(f"{_log}Failed to start session: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start intelligence session: {str(e)}",
        )

    return StreamingResponse(
        _sse_frames(stream),
        media_type="text/event-stream",
        headers={
            "X-Session-Id": stream.session_id,
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/session/{session_id}/status", response_model=SessionStatusResponse)
async def get_session_status(session_id: str) -> SessionStatusResponse:
    """
    Get the progress of a session.

    Unknown and cancelled sessions report ``exists=False``.
    """
    return get_orchestrator().get_status(session_id)


@router.get("/session/{session_id}/city/{city_id}")
async def get_city_intelligence(session_id: str, city_id: str) -> Dict[str, Any]:
    """Get the intelligence gathered so far for one city."""
    try:
        return get_orchestrator().get_city_intelligence(session_id, city_id)
    except (SessionNotFoundError, CityNotFoundError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.delete("/session/{session_id}", response_model=CancelResponse)
async def cancel_session(session_id: str) -> CancelResponse:
    """Cancel a running session and discard its state."""
    result = get_orchestrator().cancel(session_id)
    if not result.cancelled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    return result


@router.get("/session/{session_id}/insights")
async def get_cross_city_insights(session_id: str) -> Dict[str, Any]:
    """Get route-level insights. ``insights`` is null until every city is done."""
    try:
        insights = get_orchestrator().get_cross_city_insights(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return {
        "session_id": session_id,
        "insights": insights.model_dump(mode="json") if insights else None,
    }


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status and which agents run on placeholder output
    """
    registry = get_orchestrator().registry
    return {
        "status": "healthy",
        "service": "city-intelligence",
        "placeholder_agents": [n for n in registry.names() if registry.is_null(n)],
    }
