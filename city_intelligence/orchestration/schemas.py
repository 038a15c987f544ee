"""
Orchestration schemas.

Plans, refinement decisions, events, and the request/response models of
the intelligence API.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from city_intelligence.memory.schemas import utc_now
from city_intelligence.shared.contracts import CityInput, TravelPreferences, TripContext


# =============================================================================
# Plans
# =============================================================================


class Phase(BaseModel):
    """A barrier-delimited group of agents."""

    model_config = ConfigDict(frozen=True)

    phase_number: int = Field(ge=1)
    agents: List[str]
    parallel: bool = True
    description: str = ""


class ExecutionPlan(BaseModel):
    """
    Phases to run for one iteration of one city.

    The phase structure is fixed by the dependency graph; only ``steering``
    and ``rerun`` change between iterations.
    """

    model_config = ConfigDict(frozen=True)

    city_id: str
    iteration: int = Field(ge=1)
    phases: List[Phase]
    steering: Dict[str, str] = Field(
        default_factory=dict, description="Agent name -> refinement instruction"
    )
    rerun: Optional[List[str]] = Field(
        default=None, description="Agents to run this iteration; None means all"
    )
    max_iterations: int = 3
    quality_threshold: int = 85

    def should_run(self, agent_name: str) -> bool:
        return self.rerun is None or agent_name in self.rerun


class RefinementPlan(BaseModel):
    """Which agents to re-run next iteration, and with what steering."""

    iteration: int = Field(ge=1, description="Iteration the plan applies to")
    agents_to_rerun: List[str] = Field(default_factory=list)
    instructions: Dict[str, str] = Field(default_factory=dict)
    focus_areas: List[str] = Field(default_factory=list)
    unmatched_gaps: List[str] = Field(default_factory=list)


# =============================================================================
# Events
# =============================================================================


EventType = Literal[
    "connected",
    "orchestrator_goal",
    "orchestrator_plan",
    "agent_started",
    "agent_progress",
    "agent_complete",
    "agent_error",
    "reflection",
    "refinement_started",
    "city_complete",
    "all_complete",
    "error",
    "cancelled",
    "done",
]

TERMINAL_EVENTS = frozenset({"done", "error", "cancelled"})

KEEPALIVE_FRAME = ": keep-alive\n\n"


class OrchestratorEvent(BaseModel):
    """A single progress event emitted to observers."""

    type: EventType
    session_id: str
    city_id: Optional[str] = None
    agent: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_sse(self) -> str:
        """Encode as a Server-Sent Events data frame."""
        payload = self.model_dump(mode="json")
        return f"data: {json.dumps(payload)}\n\n"


# =============================================================================
# API models
# =============================================================================


class StartIntelligenceRequest(BaseModel):
    """Request to start a city intelligence run."""

    cities: List[CityInput] = Field(min_length=1, description="Cities on the route, in order")
    nights: Dict[str, int] = Field(
        ..., description="City id -> nights (cities missing from the map default to 1)"
    )
    preferences: TravelPreferences = Field(default_factory=TravelPreferences)
    trip: TripContext = Field(..., description="Route-level trip context")
    session_id: Optional[str] = Field(default=None, description="Client-chosen session id")
    user_id: Optional[str] = None

    @field_validator("nights")
    @classmethod
    def _nights_non_negative(cls, value: Dict[str, int]) -> Dict[str, int]:
        for city_id, nights in value.items():
            if nights < 0:
                raise ValueError(f"nights for '{city_id}' must be >= 0")
        return value

    @model_validator(mode="after")
    def _unique_city_ids(self) -> "StartIntelligenceRequest":
        ids = [c.id for c in self.cities]
        if len(ids) != len(set(ids)):
            raise ValueError("city ids must be unique")
        return self

    def nights_for(self, city_id: str) -> int:
        return self.nights.get(city_id, 1)


class TaskStatusView(BaseModel):
    agent: str
    status: str
    progress: int
    error: Optional[str] = None


class CityStatusView(BaseModel):
    city_id: str
    status: str
    quality: int
    iterations: int
    tasks: List[TaskStatusView] = Field(default_factory=list)


class SessionStatusResponse(BaseModel):
    """Response for session status query."""

    session_id: str
    exists: bool
    phase: Optional[str] = None
    current_city_id: Optional[str] = None
    per_city: List[CityStatusView] = Field(default_factory=list)
    overall_progress: int = 0
    cancelled_at: Optional[datetime] = None


class CancelResponse(BaseModel):
    session_id: str
    cancelled: bool
    message: str
