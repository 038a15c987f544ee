"""
City intelligence orchestrator.

Runs the per-city plan -> execute -> reflect -> refine loop for every
city of a request, streams progress events to one observer, and answers
status, result and cancellation queries for running sessions.

Cancellation is cooperative: ``cancel`` records a tombstone, emits the
terminal ``cancelled`` event and deletes the session. The running loop
notices the tombstone between phases and cities; anything an in-flight
agent produces afterwards is discarded, and no further events go out.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from city_intelligence.agents.registry import AgentRegistry, build_default_registry
from city_intelligence.agents.schemas import TaskOutput
from city_intelligence.memory import SharedMemory
from city_intelligence.memory.schemas import CrossCityInsights, Reflection, utc_now
from city_intelligence.orchestration.config import DEFAULT_CONFIG, OrchestratorConfig
from city_intelligence.orchestration.events import EventChannel
from city_intelligence.orchestration.executor import PhaseExecutor
from city_intelligence.orchestration.graph import CityLoopState, create_city_graph
from city_intelligence.orchestration.insights import compute_cross_city_insights
from city_intelligence.orchestration.reflection import QualityConfig, ReflectionEngine
from city_intelligence.orchestration.refinement import plan_refinement
from city_intelligence.orchestration.scheduler import PhaseScheduler
from city_intelligence.orchestration.schemas import (
    CancelResponse,
    CityStatusView,
    ExecutionPlan,
    OrchestratorEvent,
    RefinementPlan,
    SessionStatusResponse,
    StartIntelligenceRequest,
    TaskStatusView,
)
from city_intelligence.shared.contracts import CityInput
from city_intelligence.shared.errors import SessionConflictError, SessionNotFoundError
from city_intelligence.shared.logging import log_state_transition
from city_intelligence.shared.logging.debug_logger import (
    DebugLogger,
    get_or_create_logger,
    remove_logger,
)


logger = logging.getLogger(__name__)

EventCallback = Callable[[OrchestratorEvent], Any]


@dataclass
class IntelligenceStream:
    """Handle on a streamed run."""

    session_id: str
    channel: EventChannel
    keepalive_interval: Optional[float] = None

    def events(self) -> AsyncIterator[Optional[OrchestratorEvent]]:
        """Events until the terminal one; None marks a keep-alive tick."""
        return self.channel.iter_events(self.keepalive_interval)


class CityRun:
    """
    One city's loop. Its ``*_node`` methods are the LangGraph nodes.

    Agent outputs from the previous iteration are kept here so agents
    that are not re-run carry their results forward.
    """

    def __init__(
        self,
        orchestrator: "CityIntelligenceOrchestrator",
        session_id: str,
        city: CityInput,
        nights: int,
        base_input: Dict[str, Any],
        emit: Callable[[OrchestratorEvent], None],
        debug_logger: Optional[DebugLogger] = None,
    ):
        self.orchestrator = orchestrator
        self.memory = orchestrator.memory
        self.registry = orchestrator.registry
        self.session_id = session_id
        self.city = city
        self.nights = nights
        self.base_input = base_input
        self.emit = emit
        self.debug_logger = debug_logger

        self.executor = PhaseExecutor(
            registry=orchestrator.registry,
            memory=orchestrator.memory,
            emit=emit,
            is_cancelled=orchestrator.is_cancelled,
            agent_timeout_seconds=orchestrator.config.agent_timeout_seconds,
            debug_logger=debug_logger,
        )

        self.last_outputs: Dict[str, TaskOutput] = {}
        self.last_reflection: Optional[Reflection] = None
        self.pending_refinement: Optional[RefinementPlan] = None

    @property
    def cancelled(self) -> bool:
        return self.orchestrator.is_cancelled(self.session_id)

    def _log(self, node: str) -> str:
        return f"[session={self.session_id}] [graph=city_loop] [node={node}] [city={self.city.id}] "

    def _message(self, content: str) -> List[dict]:
        return [{"role": "system", "agent": "orchestrator", "content": content}]

    # =========================================================================
    # Nodes
    # =========================================================================

    async def plan_node(self, state: CityLoopState) -> Dict[str, Any]:
        _log = self._log("plan")
        if self.cancelled:
            return {"cancelled": True}

        iteration = state["iteration"] + 1
        refinement = self.pending_refinement
        self.pending_refinement = None
        rerun = None

        if refinement is not None:
            failed = [name for name, out in self.last_outputs.items() if not out.success]
            selected = list(dict.fromkeys(refinement.agents_to_rerun + failed))
            if selected:
                rerun = sorted(self.registry.dependents_of(selected))
        elif self.last_reflection is not None:
            # Critical gaps: full re-run, still steered by the gaps
            refinement = plan_refinement(self.last_reflection, iteration, self.registry.names())

        self.memory.set_orchestrator_phase(self.session_id, "planning", self.city.id)
        log_state_transition(
            "planning", self.session_id, self.city.id, iteration, logger=logger
        )

        plan = self.orchestrator.scheduler.create_plan(
            self.city.id, iteration, refinement=refinement, rerun=rerun
        )
        plan_dump = plan.model_dump()
        self.memory.set_execution_plan(self.session_id, plan_dump)

        logger.info(
            f"{_log}Plan ready | iteration={iteration}, "
            f"steering={sorted(plan.steering)}, rerun={plan.rerun or 'all'}"
        )
        self.emit(
            OrchestratorEvent(
                type="orchestrator_plan",
                session_id=self.session_id,
                city_id=self.city.id,
                data={
                    "iteration": iteration,
                    "phases": [p.model_dump() for p in plan.phases],
                    "steering": plan.steering,
                    "rerun": plan.rerun,
                },
            )
        )

        return {
            "iteration": iteration,
            "plan": plan_dump,
            "messages": self._message(f"Iteration {iteration} planned for {self.city.name}"),
        }

    async def execute_node(self, state: CityLoopState) -> Dict[str, Any]:
        _log = self._log("execute")
        if self.cancelled:
            return {"cancelled": True}

        self.memory.set_orchestrator_phase(self.session_id, "executing", self.city.id)
        plan = ExecutionPlan.model_validate(state["plan"])

        logger.info(f"{_log}Executing {len(plan.phases)} phases | iteration={plan.iteration}")
        self.last_outputs = await self.executor.execute_plan(
            self.session_id, plan, self.base_input, self.last_outputs
        )

        if self.cancelled:
            logger.info(f"{_log}Cancelled during execution")
            return {"cancelled": True}

        failed = sorted(n for n, o in self.last_outputs.items() if not o.success)
        return {
            "cancelled": False,
            "messages": self._message(
                f"Iteration {plan.iteration} executed | failed agents: {failed or 'none'}"
            ),
        }

    async def reflect_node(self, state: CityLoopState) -> Dict[str, Any]:
        _log = self._log("reflect")
        if self.cancelled:
            return {"cancelled": True}

        iteration = state["iteration"]
        self.memory.set_orchestrator_phase(self.session_id, "reflecting", self.city.id)

        record = self.memory.get_city_intelligence(self.session_id, self.city.id)
        reflection = self.orchestrator.reflection.reflect(
            record.outputs, self.memory.get_preferences(self.session_id), iteration
        )
        self.last_reflection = reflection

        self.memory.add_reflection(self.session_id, self.city.id, reflection)
        self.memory.update_city_quality(
            self.session_id, self.city.id, reflection.quality_score, iteration
        )

        reflection_dump = reflection.model_dump(mode="json")
        if self.debug_logger is not None:
            self.debug_logger.log_reflection(self.city.id, reflection_dump)

        logger.info(
            f"{_log}Quality={reflection.quality_score} | verdict={reflection.verdict}, "
            f"gaps={[g.category for g in reflection.gaps]}"
        )
        self.emit(
            OrchestratorEvent(
                type="reflection",
                session_id=self.session_id,
                city_id=self.city.id,
                data=reflection_dump,
            )
        )

        return {
            "reflection": reflection_dump,
            "quality": reflection.quality_score,
            "verdict": reflection.verdict,
        }

    async def refine_node(self, state: CityLoopState) -> Dict[str, Any]:
        _log = self._log("refine")
        if self.cancelled:
            return {"cancelled": True}

        self.memory.set_orchestrator_phase(self.session_id, "refining", self.city.id)
        log_state_transition(
            "refining",
            self.session_id,
            self.city.id,
            state["iteration"],
            logger=logger,
            quality=state.get("quality"),
        )
        refinement = plan_refinement(
            self.last_reflection, state["iteration"] + 1, self.registry.names()
        )
        self.pending_refinement = refinement

        logger.info(
            f"{_log}Refinement planned | agents={refinement.agents_to_rerun}, "
            f"unmatched={len(refinement.unmatched_gaps)}"
        )
        self.emit(
            OrchestratorEvent(
                type="refinement_started",
                session_id=self.session_id,
                city_id=self.city.id,
                data=refinement.model_dump(),
            )
        )

        return {
            "refinement": refinement.model_dump(),
            "messages": self._message(
                f"Refining {', '.join(refinement.agents_to_rerun) or 'all agents'}"
            ),
        }

    async def complete_node(self, state: CityLoopState) -> Dict[str, Any]:
        _log = self._log("complete")
        if self.cancelled:
            return {"cancelled": True}

        self.memory.update_city_status(self.session_id, self.city.id, "complete")
        record = self.memory.get_city_intelligence(self.session_id, self.city.id)

        logger.info(
            f"{_log}City complete | quality={record.quality}, iterations={record.iterations} -> END"
        )
        self.emit(
            OrchestratorEvent(
                type="city_complete",
                session_id=self.session_id,
                city_id=self.city.id,
                data={
                    "quality": record.quality,
                    "iterations": record.iterations,
                    "intelligence": record.serialize(),
                },
            )
        )

        return {"messages": self._message(f"{self.city.name} complete at {record.quality}%")}


class CityIntelligenceOrchestrator:
    """Coordinates agents across the cities of a route."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        memory: Optional[SharedMemory] = None,
        config: Optional[OrchestratorConfig] = None,
    ):
        self.config = config or DEFAULT_CONFIG
        self.registry = registry or build_default_registry()
        self.memory = memory or SharedMemory(
            session_timeout_seconds=self.config.session_timeout_seconds
        )
        self.scheduler = PhaseScheduler(
            self.registry.specs(),
            max_iterations=self.config.max_iterations,
            quality_threshold=self.config.quality_threshold,
        )
        self.reflection = ReflectionEngine(QualityConfig(gap_threshold=self.config.gap_threshold))

        self._cancelled: Dict[str, datetime] = {}
        self._observers: Dict[str, EventCallback] = {}
        self._tasks: Dict[str, "asyncio.Task"] = {}
        self._active: set = set()

    # =========================================================================
    # Runs
    # =========================================================================

    async def run(
        self,
        request: StartIntelligenceRequest,
        on_event: Optional[EventCallback] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Run a request to completion.

        Args:
            request: Validated start request
            on_event: Synchronous callback receiving every event

        Returns:
            Final result, or None if the session was cancelled

        Raises:
            SchedulerFatalError: On scheduler or state-store faults (after
                the ``error`` event has been emitted)
            SessionConflictError: If the session id is running or was cancelled
        """
        session_id = self._start_session(request)
        try:
            emit = self._register_observer(session_id, on_event)
            return await self._run_session(session_id, request, emit, raise_errors=True)
        finally:
            self._active.discard(session_id)

    async def stream(self, request: StartIntelligenceRequest) -> IntelligenceStream:
        """
        Start a run in the background and return its event stream.

        The first event is ``connected``; the last is one of ``done``,
        ``error`` or ``cancelled``.
        """
        session_id = self._start_session(request)
        channel = EventChannel(session_id)
        channel.emit(
            OrchestratorEvent(
                type="connected",
                session_id=session_id,
                data={"cities": [c.id for c in request.cities]},
            )
        )

        emit = self._register_observer(session_id, channel.emit)
        task = asyncio.create_task(
            self._run_session(session_id, request, emit, raise_errors=False)
        )
        self._tasks[session_id] = task
        task.add_done_callback(lambda _t: self._finish_stream(session_id))

        return IntelligenceStream(
            session_id=session_id,
            channel=channel,
            keepalive_interval=self.config.keepalive_interval_seconds,
        )

    def _finish_stream(self, session_id: str) -> None:
        self._tasks.pop(session_id, None)
        self._active.discard(session_id)

    def _start_session(self, request: StartIntelligenceRequest) -> str:
        """
        Create the session for a new run.

        An id that is still running, or whose cancellation tombstone is still
        held, is rejected before any state is touched; the earlier run owns it
        until it winds down.
        """
        self.cleanup_stale_sessions()

        session_id = request.session_id or str(uuid.uuid4())
        if session_id in self._active:
            raise SessionConflictError(session_id, "a run is already in progress")
        if session_id in self._cancelled:
            raise SessionConflictError(session_id, "it was cancelled")

        self.memory.create_session(user_id=request.user_id, session_id=session_id)
        self.memory.set_trip_context(session_id, request.trip)
        self.memory.set_explicit_preferences(
            session_id, request.preferences.model_dump(exclude_none=True)
        )
        if request.trip.traveller_type:
            self.memory.update_inferred_preferences(
                session_id, {"traveller_type": request.trip.traveller_type}
            )
        self._active.add(session_id)
        return session_id

    async def _run_session(
        self,
        session_id: str,
        request: StartIntelligenceRequest,
        emit: Callable[[OrchestratorEvent], None],
        raise_errors: bool = True,
    ) -> Optional[Dict[str, Any]]:
        _log = f"[session={session_id}] [graph=orchestrator] "
        start = time.perf_counter()

        debug_logger = None
        if self.config.debug_logs_dir:
            debug_logger = get_or_create_logger(session_id, self.config.debug_logs_dir)

        logger.info(
            f"{_log}Run starting | cities={[c.id for c in request.cities]}, "
            f"parallel_cities={self.config.parallel_cities}"
        )

        try:
            emit(
                OrchestratorEvent(
                    type="orchestrator_goal",
                    session_id=session_id,
                    data={
                        "goal": "Build complete intelligence for every city on the route",
                        "cities": [c.name for c in request.cities],
                        "quality_threshold": self.config.quality_threshold,
                        "max_iterations": self.config.max_iterations,
                    },
                )
            )

            if self.config.parallel_cities:
                await asyncio.gather(
                    *(
                        self._run_city(session_id, request, city, emit, debug_logger)
                        for city in request.cities
                    )
                )
            else:
                for city in request.cities:
                    if self.is_cancelled(session_id):
                        break
                    await self._run_city(session_id, request, city, emit, debug_logger)

            if self.is_cancelled(session_id):
                logger.info(f"{_log}Run stopped after cancellation")
                return None

            records = self.memory.get_all_city_intelligence(session_id)
            insights = compute_cross_city_insights(records)
            self.memory.update_cross_city_insights(session_id, insights)
            self.memory.set_orchestrator_phase(session_id, "complete")

            total = len(records)
            average = round(sum(r.quality for r in records) / total, 1) if total else 0.0
            summary = {
                "total_cities": total,
                "average_quality": average,
                "total_iterations": sum(r.iterations for r in records),
                "processing_time_ms": round((time.perf_counter() - start) * 1000, 2),
            }
            if debug_logger is not None:
                summary["usage"] = debug_logger.log_session_summary(total, average)

            cities = {r.city_id: r.serialize() for r in records}
            insights_dump = insights.model_dump(mode="json")

            logger.info(
                f"{_log}Run complete | cities={total}, average_quality={average}, "
                f"iterations={summary['total_iterations']}, "
                f"time_ms={summary['processing_time_ms']}"
            )
            emit(
                OrchestratorEvent(
                    type="all_complete",
                    session_id=session_id,
                    data={"summary": summary, "insights": insights_dump, "cities": cities},
                )
            )
            emit(OrchestratorEvent(type="done", session_id=session_id))

            return {
                "session_id": session_id,
                "summary": summary,
                "insights": insights_dump,
                "cities": cities,
            }

        except Exception as e:
            if self.is_cancelled(session_id):
                logger.info(f"{_log}Run ended after cancellation: {e}")
                return None
            logger.exception(f"{_log}Run failed: {e}")
            emit(
                OrchestratorEvent(
                    type="error",
                    session_id=session_id,
                    data={"message": str(e), "error_type": type(e).__name__},
                )
            )
            if raise_errors:
                raise
            return None

        finally:
            self._observers.pop(session_id, None)
            if debug_logger is not None:
                remove_logger(session_id)

    async def _run_city(
        self,
        session_id: str,
        request: StartIntelligenceRequest,
        city: CityInput,
        emit: Callable[[OrchestratorEvent], None],
        debug_logger: Optional[DebugLogger],
    ) -> Optional[CityLoopState]:
        if self.is_cancelled(session_id):
            return None

        nights = request.nights_for(city.id)
        self.memory.initialize_city_intelligence(session_id, city, nights)
        self.memory.update_city_status(session_id, city.id, "processing")

        trip = self.memory.get_trip_context(session_id)
        base_input = {
            "city": city.model_dump(),
            "nights": nights,
            "preferences": self.memory.get_preferences(session_id),
            "trip_context": trip.model_dump() if trip else {},
        }

        runner = CityRun(self, session_id, city, nights, base_input, emit, debug_logger)
        graph = create_city_graph(runner)

        initial_state: CityLoopState = {
            "session_id": session_id,
            "city_id": city.id,
            "nights": nights,
            "iteration": 0,
            "max_iterations": self.config.max_iterations,
            "quality_threshold": self.config.quality_threshold,
            "plan": None,
            "reflection": None,
            "refinement": None,
            "quality": 0,
            "verdict": None,
            "cancelled": False,
            "messages": [
                {
                    "role": "system",
                    "agent": "orchestrator",
                    "content": f"Intelligence loop started for {city.name} ({nights} nights)",
                }
            ],
        }

        logger.info(
            f"[session={session_id}] [graph=city_loop] [city={city.id}] "
            f"Invoking city graph | entry=plan, nights={nights}"
        )
        return await graph.ainvoke(
            initial_state, config={"recursion_limit": self.config.recursion_limit}
        )

    def _register_observer(
        self, session_id: str, on_event: Optional[EventCallback]
    ) -> Callable[[OrchestratorEvent], None]:
        if on_event is not None:
            self._observers[session_id] = on_event

        def emit(event: OrchestratorEvent) -> None:
            if self.is_cancelled(session_id):
                return
            self._deliver(session_id, on_event, event)

        return emit

    def _deliver(
        self, session_id: str, on_event: Optional[EventCallback], event: OrchestratorEvent
    ) -> None:
        if on_event is None:
            return
        try:
            on_event(event)
        except Exception as e:
            logger.warning(f"[session={session_id}] Event observer failed on '{event.type}': {e}")

    # =========================================================================
    # Queries and control
    # =========================================================================

    def is_cancelled(self, session_id: str) -> bool:
        return session_id in self._cancelled

    def cancel(self, session_id: str) -> CancelResponse:
        """
        Cancel a session and discard its state.

        Idempotent: a second cancel reports the original cancellation.
        """
        if session_id in self._cancelled:
            return CancelResponse(
                session_id=session_id, cancelled=True, message="Session already cancelled"
            )
        if not self.memory.has_session(session_id):
            return CancelResponse(
                session_id=session_id, cancelled=False, message="Session not found"
            )

        self._cancelled[session_id] = utc_now()
        observer = self._observers.pop(session_id, None)
        self._deliver(
            session_id,
            observer,
            OrchestratorEvent(type="cancelled", session_id=session_id),
        )
        self.memory.delete_session(session_id)
        remove_logger(session_id)

        logger.info(f"[session={session_id}] [graph=orchestrator] Session cancelled")
        return CancelResponse(session_id=session_id, cancelled=True, message="Session cancelled")

    def get_status(self, session_id: str) -> SessionStatusResponse:
        cancelled_at = self._cancelled.get(session_id)
        if cancelled_at is not None or not self.memory.has_session(session_id):
            return SessionStatusResponse(
                session_id=session_id, exists=False, cancelled_at=cancelled_at
            )

        session = self.memory.get_session(session_id)
        per_city = [
            CityStatusView(
                city_id=record.city_id,
                status=record.status,
                quality=record.quality,
                iterations=record.iterations,
                tasks=[
                    TaskStatusView(
                        agent=state.agent_name,
                        status=state.status,
                        progress=state.progress,
                        error=state.error,
                    )
                    for state in record.task_states.values()
                ],
            )
            for record in list(session.cities.values())
        ]
        return SessionStatusResponse(
            session_id=session_id,
            exists=True,
            phase=session.orchestrator.current_phase,
            current_city_id=session.orchestrator.current_city_id,
            per_city=per_city,
            overall_progress=self.memory.calculate_overall_progress(session_id),
        )

    def get_city_intelligence(self, session_id: str, city_id: str) -> Dict[str, Any]:
        """
        Raises:
            SessionNotFoundError: Unknown or cancelled session
            CityNotFoundError: City not (yet) part of the session
        """
        if self.is_cancelled(session_id):
            raise SessionNotFoundError(session_id)
        return self.memory.get_city_intelligence(session_id, city_id).serialize()

    def get_cross_city_insights(self, session_id: str) -> Optional[CrossCityInsights]:
        """None until every city has finished."""
        if self.is_cancelled(session_id):
            raise SessionNotFoundError(session_id)
        return self.memory.get_cross_city_insights(session_id)

    def cleanup_stale_sessions(self) -> List[str]:
        """Sweep idle sessions and forget old cancellation tombstones."""
        removed = self.memory.cleanup_stale_sessions()
        for session_id in removed:
            remove_logger(session_id)
        horizon = utc_now() - timedelta(seconds=self.config.session_timeout_seconds)
        for session_id, cancelled_at in list(self._cancelled.items()):
            if cancelled_at < horizon:
                del self._cancelled[session_id]
        return removed
