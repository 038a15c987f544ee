"""
Routing logic for the per-city loop.

Decides what follows execute and reflect based on the cancellation flag,
the latest quality, the verdict and the remaining iteration budget.
"""

import logging
from typing import Literal

from city_intelligence.orchestration.graph.state import CityLoopState


logger = logging.getLogger(__name__)


def route_after_execute(state: CityLoopState) -> Literal["reflect", "cancelled"]:
    """
    Skip reflection once the session has been cancelled.

    Args:
        state: Current loop state

    Returns:
        Name of the next node, or "cancelled" to end the loop
    """
    _log = (
        f"[session={state.get('session_id', 'unknown')}] [graph=city_loop] "
        f"[router=route_after_execute] [city={state.get('city_id')}] "
    )
    if state.get("cancelled"):
        logger.info(f"{_log}Routing to END | cancelled")
        return "cancelled"

    logger.info(f"{_log}Routing to 'reflect' | iteration={state.get('iteration')}")
    return "reflect"


def route_after_reflect(
    state: CityLoopState,
) -> Literal["complete", "refine", "plan", "cancelled"]:
    """
    Decide whether the city is done.

    Routing logic:
    1. Cancelled -> END
    2. Quality >= threshold or verdict 'complete' -> complete
    3. Iterations exhausted -> complete (best effort)
    4. Verdict 'needs_refinement' -> refine
    5. Verdict 'critical_gaps' -> plan (full re-run)

    Args:
        state: Current loop state

    Returns:
        Name of the next node
    """
    session_id = state.get("session_id", "unknown")
    iteration = state.get("iteration", 0)
    max_iterations = state.get("max_iterations", 1)
    quality = state.get("quality", 0)
    verdict = state.get("verdict")
    _log = (
        f"[session={session_id}] [graph=city_loop] [router=route_after_reflect] "
        f"[city={state.get('city_id')}] "
    )
    summary = f"quality={quality}, verdict={verdict}, iteration={iteration}/{max_iterations}"

    if state.get("cancelled"):
        logger.info(f"{_log}Routing to END | cancelled")
        return "cancelled"

    if quality >= state.get("quality_threshold", 85) or verdict == "complete":
        logger.info(f"{_log}Routing to 'complete' | {summary}")
        return "complete"

    if iteration >= max_iterations:
        logger.info(f"{_log}Routing to 'complete' (iterations exhausted) | {summary}")
        return "complete"

    if verdict == "needs_refinement":
        logger.info(f"{_log}Routing to 'refine' | {summary}")
        return "refine"

    logger.info(f"{_log}Routing to 'plan' (full re-run) | {summary}")
    return "plan"
