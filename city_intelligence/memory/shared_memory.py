"""
In-memory session state store.

SharedMemory is the only mutable state shared between concurrently
running agents. Every operation is keyed by session id (and city id);
unknown keys raise instead of being created on the fly, except through
the explicit create/initialize operations.

Locking: one re-entrant lock guards the session map, plus one lock per
(session, city) for record writes. Sessions never share a lock.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from city_intelligence.agents.schemas import TaskOutput
from city_intelligence.memory.schemas import (
    AgentMessage,
    CityIntelligence,
    CrossCityInsights,
    ExecutionLogEntry,
    OrchestratorPhase,
    Reflection,
    Session,
    TaskState,
    utc_now,
)
from city_intelligence.shared.contracts import OUTPUT_SLOTS, CityInput, TripContext
from city_intelligence.shared.errors import (
    CityNotFoundError,
    SessionNotFoundError,
    StateStoreError,
)


logger = logging.getLogger(__name__)

TASK_STATE_FIELDS = {"status", "progress", "output", "error"}


class SharedMemory:
    """Per-session state for city intelligence runs."""

    def __init__(
        self,
        session_timeout_seconds: float = 30 * 60,
        max_execution_log: int = 100,
        max_agent_messages: int = 50,
    ):
        self.session_timeout = timedelta(seconds=session_timeout_seconds)
        self.max_execution_log = max_execution_log
        self.max_agent_messages = max_agent_messages

        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()
        self._city_locks: Dict[Tuple[str, str], threading.RLock] = {}

    # =========================================================================
    # Sessions
    # =========================================================================

    def create_session(
        self, user_id: Optional[str] = None, session_id: Optional[str] = None
    ) -> str:
        """Create a fresh session, replacing any session with the same id."""
        session_id = session_id or str(uuid.uuid4())
        with self._lock:
            self._drop_city_locks(session_id)
            self._sessions[session_id] = Session(id=session_id, user_id=user_id)
        logger.info(f"[session={session_id}] Session created | user={user_id}")
        return session_id

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def delete_session(self, session_id: str) -> bool:
        """Remove a session. Returns False if it did not exist."""
        with self._lock:
            existed = self._sessions.pop(session_id, None) is not None
            self._drop_city_locks(session_id)
        if existed:
            logger.info(f"[session={session_id}] Session deleted")
        return existed

    def cleanup_stale_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Delete sessions idle for longer than the retention window."""
        now = now or utc_now()
        with self._lock:
            stale = [
                sid
                for sid, session in self._sessions.items()
                if now - session.last_activity_at > self.session_timeout
            ]
            for sid in stale:
                del self._sessions[sid]
                self._drop_city_locks(sid)
        if stale:
            logger.info(f"Cleaned up {len(stale)} stale session(s)")
        return stale

    def _drop_city_locks(self, session_id: str) -> None:
        for key in [k for k in self._city_locks if k[0] == session_id]:
            del self._city_locks[key]

    def _city_lock(self, session_id: str, city_id: str) -> threading.RLock:
        with self._lock:
            key = (session_id, city_id)
            if key not in self._city_locks:
                self._city_locks[key] = threading.RLock()
            return self._city_locks[key]

    def _touch(self, session: Session) -> None:
        session.last_activity_at = utc_now()

    # =========================================================================
    # Trip context and preferences
    # =========================================================================

    def set_trip_context(self, session_id: str, trip: TripContext) -> None:
        session = self.get_session(session_id)
        with self._lock:
            session.trip = trip.model_copy()
            self._touch(session)

    def get_trip_context(self, session_id: str) -> Optional[TripContext]:
        return self.get_session(session_id).trip

    def set_explicit_preferences(self, session_id: str, preferences: Dict[str, Any]) -> None:
        session = self.get_session(session_id)
        with self._lock:
            session.preferences.explicit = dict(preferences)
            self._touch(session)

    def update_inferred_preferences(self, session_id: str, inferred: Dict[str, Any]) -> None:
        """Merge inferred preferences. Explicit values still win on read."""
        session = self.get_session(session_id)
        with self._lock:
            session.preferences.inferred.update(inferred)
            self._touch(session)

    def get_preferences(self, session_id: str) -> Dict[str, Any]:
        return self.get_session(session_id).preferences.combined

    # =========================================================================
    # City intelligence
    # =========================================================================

    def initialize_city_intelligence(
        self, session_id: str, city: CityInput, nights: int
    ) -> CityIntelligence:
        """Create (or replace) the record for a city. Never merges."""
        session = self.get_session(session_id)
        record = CityIntelligence(city_id=city.id, city=city.model_copy(), nights=nights)
        with self._city_lock(session_id, city.id):
            session.cities[city.id] = record
            self._touch(session)
        return record

    def get_city_intelligence(self, session_id: str, city_id: str) -> CityIntelligence:
        session = self.get_session(session_id)
        record = session.cities.get(city_id)
        if record is None:
            raise CityNotFoundError(session_id, city_id)
        return record

    def get_all_city_intelligence(self, session_id: str) -> List[CityIntelligence]:
        return list(self.get_session(session_id).cities.values())

    def update_city_status(self, session_id: str, city_id: str, status: str) -> None:
        record = self.get_city_intelligence(session_id, city_id)
        with self._city_lock(session_id, city_id):
            record.status = status
            record.last_updated_at = utc_now()

    def update_city_quality(
        self, session_id: str, city_id: str, quality: int, iterations: int
    ) -> None:
        record = self.get_city_intelligence(session_id, city_id)
        with self._city_lock(session_id, city_id):
            record.quality = max(0, min(100, int(quality)))
            record.iterations = iterations
            record.last_updated_at = utc_now()

    def add_reflection(self, session_id: str, city_id: str, reflection: Reflection) -> None:
        """Append a reflection to the city and the orchestrator history."""
        session = self.get_session(session_id)
        record = self.get_city_intelligence(session_id, city_id)
        with self._city_lock(session_id, city_id):
            record.reflections.append(reflection)
            record.last_updated_at = utc_now()
        with self._lock:
            session.orchestrator.reflections.append(
                {"city_id": city_id, **reflection.model_dump(mode="json")}
            )
            self._touch(session)

    # =========================================================================
    # Task states and outputs
    # =========================================================================

    def initialize_task_state(
        self, session_id: str, city_id: str, agent_name: str
    ) -> TaskState:
        """Reset an agent's task state to pending for a new execution."""
        record = self.get_city_intelligence(session_id, city_id)
        state = TaskState(agent_name=agent_name)
        with self._city_lock(session_id, city_id):
            record.task_states[agent_name] = state
            record.last_updated_at = utc_now()
        return state

    def update_task_state(
        self, session_id: str, city_id: str, agent_name: str, **updates: Any
    ) -> TaskState:
        """
        Shallow-merge ``updates`` into an existing task state.

        Progress never decreases within an execution. Entering ``running``
        stamps ``started_at``; entering ``completed`` or ``failed`` stamps
        ``finished_at``.

        Raises:
            StateStoreError: On unknown fields or an uninitialized task
        """
        unknown = set(updates) - TASK_STATE_FIELDS
        if unknown:
            raise StateStoreError(f"Unknown task state fields: {sorted(unknown)}")

        record = self.get_city_intelligence(session_id, city_id)
        with self._city_lock(session_id, city_id):
            state = record.task_states.get(agent_name)
            if state is None:
                raise CityNotFoundError(
                    session_id, city_id, f"task {agent_name} not initialized"
                )

            progress = updates.pop("progress", None)
            if progress is not None:
                state.progress = max(state.progress, max(0, min(100, int(progress))))
            for key, value in updates.items():
                setattr(state, key, value)

            now = utc_now()
            if state.status == "running" and state.started_at is None:
                state.started_at = now
            if state.status in ("completed", "failed") and "status" in updates:
                state.finished_at = now
            record.last_updated_at = now
            return state

    def get_task_state(self, session_id: str, city_id: str, agent_name: str) -> Optional[TaskState]:
        return self.get_city_intelligence(session_id, city_id).task_states.get(agent_name)

    def get_all_task_states(self, session_id: str, city_id: str) -> Dict[str, TaskState]:
        return dict(self.get_city_intelligence(session_id, city_id).task_states)

    def set_task_output(
        self,
        session_id: str,
        city_id: str,
        agent_name: str,
        output: TaskOutput,
        slots: Sequence[str],
    ) -> List[str]:
        """
        Copy a successful output's declared slots into the city record.

        Failed outputs are ignored so a failure never overwrites the last
        accepted value of a slot.

        Returns:
            The slot names that were written
        """
        if not output.success:
            return []

        record = self.get_city_intelligence(session_id, city_id)
        written = []
        with self._city_lock(session_id, city_id):
            for slot in slots:
                if slot not in OUTPUT_SLOTS:
                    logger.warning(
                        f"[session={session_id}] {agent_name} declared unknown slot '{slot}'"
                    )
                    continue
                if slot in output.data:
                    record.outputs[slot] = output.data[slot]
                    written.append(slot)
            record.last_updated_at = utc_now()
        return written

    def calculate_overall_progress(self, session_id: str) -> int:
        """Equal-weight average of every task's progress across all cities."""
        session = self.get_session(session_id)
        progresses = []
        for record in list(session.cities.values()):
            for state in list(record.task_states.values()):
                progresses.append(100 if state.status == "completed" else state.progress)
        if not progresses:
            return 0
        return round(sum(progresses) / len(progresses))

    # =========================================================================
    # Orchestrator bookkeeping
    # =========================================================================

    def set_orchestrator_phase(
        self,
        session_id: str,
        phase: OrchestratorPhase,
        city_id: Optional[str] = None,
    ) -> None:
        session = self.get_session(session_id)
        with self._lock:
            session.orchestrator.current_phase = phase
            if city_id is not None:
                session.orchestrator.current_city_id = city_id
            self._touch(session)
        self.add_execution_log(session_id, f"phase:{phase}", city_id=city_id)

    def set_execution_plan(self, session_id: str, plan: Dict[str, Any]) -> None:
        session = self.get_session(session_id)
        with self._lock:
            session.orchestrator.current_plan = plan
            self._touch(session)

    def add_execution_log(
        self,
        session_id: str,
        event: str,
        city_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        session = self.get_session(session_id)
        with self._lock:
            log = session.orchestrator.execution_log
            log.append(ExecutionLogEntry(event=event, city_id=city_id, details=details or {}))
            if len(log) > self.max_execution_log:
                del log[: len(log) - self.max_execution_log]
            self._touch(session)

    def get_orchestrator_state(self, session_id: str) -> Dict[str, Any]:
        return self.get_session(session_id).orchestrator.model_dump(mode="json")

    # =========================================================================
    # Inter-agent messages
    # =========================================================================

    def send_agent_message(
        self,
        session_id: str,
        from_agent: str,
        to_agent: str,
        content: str,
        city_id: Optional[str] = None,
    ) -> None:
        session = self.get_session(session_id)
        with self._lock:
            messages = session.agent_messages
            messages.append(
                AgentMessage(
                    from_agent=from_agent, to_agent=to_agent, city_id=city_id, content=content
                )
            )
            if len(messages) > self.max_agent_messages:
                del messages[: len(messages) - self.max_agent_messages]
            self._touch(session)

    def get_messages_for_agent(
        self, session_id: str, agent_name: str, city_id: Optional[str] = None
    ) -> List[AgentMessage]:
        session = self.get_session(session_id)
        with self._lock:
            return [
                m
                for m in session.agent_messages
                if m.to_agent == agent_name and (city_id is None or m.city_id in (None, city_id))
            ]

    # =========================================================================
    # Cross-city insights and snapshots
    # =========================================================================

    def update_cross_city_insights(self, session_id: str, insights: CrossCityInsights) -> None:
        session = self.get_session(session_id)
        with self._lock:
            session.cross_city_insights = insights
            self._touch(session)

    def get_cross_city_insights(self, session_id: str) -> Optional[CrossCityInsights]:
        return self.get_session(session_id).cross_city_insights

    def get_session_snapshot(self, session_id: str) -> Dict[str, Any]:
        """Summary view of a session for debugging and status endpoints."""
        session = self.get_session(session_id)
        return {
            "session_id": session.id,
            "user_id": session.user_id,
            "started_at": session.started_at.isoformat(),
            "last_activity_at": session.last_activity_at.isoformat(),
            "trip": session.trip.model_dump() if session.trip else None,
            "preferences": session.preferences.combined,
            "phase": session.orchestrator.current_phase,
            "current_city_id": session.orchestrator.current_city_id,
            "cities": {
                city_id: {
                    "status": record.status,
                    "quality": record.quality,
                    "iterations": record.iterations,
                    "slots": sorted(record.outputs),
                }
                for city_id, record in session.cities.items()
            },
            "overall_progress": self.calculate_overall_progress(session_id),
            "message_count": len(session.agent_messages),
        }
