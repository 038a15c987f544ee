"""
Error taxonomy for the city intelligence pipeline.

Agent-level errors are converted into failed TaskOutputs at the
BaseAgent.execute boundary and never escape a phase. Scheduler-level
errors abort the whole run and surface as a terminal ``error`` event.
"""

from typing import List, Optional


class CityIntelligenceError(Exception):
    """Base class for all errors raised by this package."""

    pass


# =============================================================================
# Agent-level errors (isolated to a single agent)
# =============================================================================


class InputValidationError(CityIntelligenceError):
    """Raised when an agent is invoked without its required inputs."""

    def __init__(self, agent_name: str, missing_fields: List[str]):
        self.agent_name = agent_name
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"{agent_name} missing required inputs: {', '.join(self.missing_fields)}"
        )


class UnitExecutionError(CityIntelligenceError):
    """Raised by an agent's own logic when it cannot produce output."""

    def __init__(self, agent_name: str, message: str):
        self.agent_name = agent_name
        super().__init__(f"{agent_name}: {message}")


class DependencyUnavailableError(CityIntelligenceError):
    """Raised when an upstream agent's output is absent or failed."""

    def __init__(self, agent_name: str, dependency: str):
        self.agent_name = agent_name
        self.dependency = dependency
        super().__init__(f"{agent_name} dependency unavailable: {dependency}")


class RefinementNotSupportedError(CityIntelligenceError):
    """Raised when refine() is called on an agent that cannot refine."""

    def __init__(self, agent_name: str):
        self.agent_name = agent_name
        super().__init__(f"{agent_name} does not support refinement")


# =============================================================================
# Request-level errors (rejected before any state is created)
# =============================================================================


class SessionConflictError(CityIntelligenceError):
    """Raised when a run is started with a session id that is still in use."""

    def __init__(self, session_id: str, reason: str):
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Session {session_id} cannot be started: {reason}")


# =============================================================================
# Scheduler-level errors (abort the run)
# =============================================================================


class SchedulerFatalError(CityIntelligenceError):
    """Raised when the orchestrator cannot continue the run."""

    pass


class SchedulerError(SchedulerFatalError):
    """Raised when the agent dependency graph cannot be layered."""

    pass


class StateStoreError(SchedulerFatalError):
    """Raised when the session state store rejects an operation."""

    pass


class SessionNotFoundError(StateStoreError, KeyError):
    """Raised when a session id is not present in the store."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")

    def __str__(self) -> str:
        return self.args[0]


class CityNotFoundError(StateStoreError, KeyError):
    """Raised when a city has not been initialized for a session."""

    def __init__(self, session_id: str, city_id: str, detail: Optional[str] = None):
        self.session_id = session_id
        self.city_id = city_id
        message = f"City {city_id} not initialized for session {session_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    def __str__(self) -> str:
        return self.args[0]
