"""
Per-city loop state schema.

Carries the iteration counters and the latest plan, reflection and
refinement between the plan/execute/reflect/refine nodes. Agent outputs
themselves live in the state store, not in the graph state.
"""

from typing import TypedDict, List, Optional, Annotated
import operator


class CityLoopState(TypedDict):
    """
    State schema for one city's quality loop.

    Plans, reflections and refinements are stored as plain dicts
    (``model_dump`` of their pydantic models).
    """

    # Identity
    session_id: str
    city_id: str
    nights: int

    # Loop bounds
    iteration: int
    max_iterations: int
    quality_threshold: int

    # Latest artefacts
    plan: Optional[dict]
    reflection: Optional[dict]
    refinement: Optional[dict]

    # Outcome
    quality: int
    verdict: Optional[str]
    cancelled: bool

    # Tracking
    messages: Annotated[List[dict], operator.add]
