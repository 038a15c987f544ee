"""
Session state schemas.

Everything a run accumulates lives in one Session record: trip context,
preferences, one CityIntelligence per city, and the orchestrator's own
bookkeeping. Reflections are frozen once written.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from city_intelligence.agents.schemas import TaskOutput
from city_intelligence.shared.contracts import OUTPUT_SLOTS, CityInput, TripContext


TaskStatus = Literal["pending", "running", "completed", "failed"]
CityStatus = Literal["pending", "processing", "complete"]
OrchestratorPhase = Literal[
    "idle", "planning", "executing", "reflecting", "refining", "complete"
]
Verdict = Literal["complete", "needs_refinement", "critical_gaps"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TaskState(BaseModel):
    """Lifecycle of one agent for one city."""

    agent_name: str
    status: TaskStatus = "pending"
    progress: int = Field(default=0, ge=0, le=100)
    output: Optional[TaskOutput] = None
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ReflectionGap(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str = Field(description="Scoring category or cross-check tag")
    description: str
    remediation: Optional[str] = None


class Reflection(BaseModel):
    """Quality verdict for one iteration of one city."""

    model_config = ConfigDict(frozen=True)

    iteration: int = Field(ge=1)
    quality_score: int = Field(ge=0, le=100)
    category_scores: Dict[str, int] = Field(default_factory=dict)
    strengths: List[str] = Field(default_factory=list)
    gaps: List[ReflectionGap] = Field(default_factory=list)
    verdict: Verdict
    suggestions: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)


class CityIntelligence(BaseModel):
    """Accumulated intelligence for a single city."""

    city_id: str
    city: CityInput
    nights: int = Field(default=1, ge=0)
    status: CityStatus = "pending"
    quality: int = Field(default=0, ge=0, le=100)
    iterations: int = Field(default=0, ge=0)
    task_states: Dict[str, TaskState] = Field(default_factory=dict)
    outputs: Dict[str, Any] = Field(default_factory=dict)
    reflections: List[Reflection] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    last_updated_at: datetime = Field(default_factory=utc_now)

    def serialize(self) -> Dict[str, Any]:
        """Client-facing view: metadata plus every output slot."""
        payload: Dict[str, Any] = {
            "city_id": self.city_id,
            "city": self.city.model_dump(),
            "nights": self.nights,
            "quality": self.quality,
            "iterations": self.iterations,
            "status": self.status,
        }
        for slot in OUTPUT_SLOTS:
            payload[slot] = self.outputs.get(slot)
        payload["generated_at"] = self.created_at.isoformat()
        payload["last_updated_at"] = self.last_updated_at.isoformat()
        return payload


class ExecutionLogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=utc_now)
    event: str
    city_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class AgentMessage(BaseModel):
    """A suggestion one agent leaves for another."""

    from_agent: str
    to_agent: str
    city_id: Optional[str] = None
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class OrchestratorRecord(BaseModel):
    current_phase: OrchestratorPhase = "idle"
    current_city_id: Optional[str] = None
    current_plan: Optional[Dict[str, Any]] = None
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list)
    reflections: List[Dict[str, Any]] = Field(default_factory=list)


class PreferenceSet(BaseModel):
    """Explicit preferences win over inferred ones on conflict."""

    explicit: Dict[str, Any] = Field(default_factory=dict)
    inferred: Dict[str, Any] = Field(default_factory=dict)

    @property
    def combined(self) -> Dict[str, Any]:
        merged = dict(self.inferred)
        merged.update({k: v for k, v in self.explicit.items() if v is not None})
        return merged


class CrossCityInsights(BaseModel):
    themes: List[str] = Field(default_factory=list)
    variety_score: int = Field(default=0, ge=0, le=100)
    pace_score: int = Field(default=0, ge=0, le=100)
    recommendations: List[str] = Field(default_factory=list)
    generated_at: datetime = Field(default_factory=utc_now)


class Session(BaseModel):
    id: str
    user_id: Optional[str] = None
    trip: Optional[TripContext] = None
    preferences: PreferenceSet = Field(default_factory=PreferenceSet)
    started_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    orchestrator: OrchestratorRecord = Field(default_factory=OrchestratorRecord)
    agent_messages: List[AgentMessage] = Field(default_factory=list)
    cross_city_insights: Optional[CrossCityInsights] = None
    cities: Dict[str, CityIntelligence] = Field(default_factory=dict)
