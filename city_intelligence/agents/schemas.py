"""
Agent contract types.

TaskOutput is the only thing an agent hands back to the orchestrator;
AgentContext carries the per-invocation plumbing (ids, progress sink,
timeout) so agent instances can be shared across cities and sessions.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from city_intelligence.shared.logging.debug_logger import DebugLogger


ProgressCallback = Callable[[int, str], Optional[Awaitable[None]]]


class TaskOutput(BaseModel):
    """Result of one agent execution."""

    agent_name: str = Field(description="Agent that produced this output")
    success: bool = Field(description="Whether the run produced usable data")
    data: Dict[str, Any] = Field(
        default_factory=dict, description="Payload keyed by declared output slots"
    )
    confidence: int = Field(default=0, ge=0, le=100)
    gaps: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(
        default_factory=list,
        description="Hints addressed to other agents as '<agent_name>: <text>'",
    )
    execution_time_ms: Optional[float] = Field(default=None, ge=0)
    error: Optional[str] = None


class InputValidation(BaseModel):
    valid: bool
    missing_fields: List[str] = Field(default_factory=list)


@dataclass
class AgentContext:
    """Per-invocation context handed to ``BaseAgent.execute``."""

    session_id: str
    city_id: str
    iteration: int = 1
    timeout_seconds: Optional[float] = None
    on_progress: Optional[ProgressCallback] = None
    debug_logger: Optional["DebugLogger"] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    async def report_progress(self, progress: int, message: str = "") -> None:
        """Forward a progress update to the orchestrator, if it listens."""
        if self.on_progress is None:
            return
        result = self.on_progress(max(0, min(100, int(progress))), message)
        if result is not None:
            await result
