"""
Phase executor.

Runs one ExecutionPlan for one city: phases in order with a barrier
between them, agents inside a parallel phase concurrently. Each agent's
result is recorded in the state store and handed to later phases as a
read-only ``previous_outputs`` mapping. A failed agent never stops its
siblings or the phases after it.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional

from city_intelligence.agents.registry import AgentRegistry
from city_intelligence.agents.schemas import AgentContext, TaskOutput
from city_intelligence.memory import SharedMemory
from city_intelligence.orchestration.schemas import ExecutionPlan, OrchestratorEvent, Phase
from city_intelligence.shared.logging.debug_logger import DebugLogger


logger = logging.getLogger(__name__)

EmitFn = Callable[[OrchestratorEvent], None]
CancelCheck = Callable[[str], bool]


def parse_suggestion(suggestion: str, known_agents: List[str]) -> Optional[tuple]:
    """Split ``"<agent_name>: <text>"`` into (agent_name, text)."""
    target, sep, text = suggestion.partition(":")
    target = target.strip()
    if not sep or target not in known_agents or not text.strip():
        return None
    return target, text.strip()


class PhaseExecutor:
    """Fan-out / fan-in over the phases of a plan."""

    def __init__(
        self,
        registry: AgentRegistry,
        memory: SharedMemory,
        emit: EmitFn,
        is_cancelled: CancelCheck,
        agent_timeout_seconds: Optional[float] = None,
        debug_logger: Optional[DebugLogger] = None,
    ):
        self.registry = registry
        self.memory = memory
        self.emit = emit
        self.is_cancelled = is_cancelled
        self.agent_timeout_seconds = agent_timeout_seconds
        self.debug_logger = debug_logger

    async def execute_plan(
        self,
        session_id: str,
        plan: ExecutionPlan,
        base_input: Mapping[str, Any],
        last_outputs: Mapping[str, TaskOutput],
    ) -> Dict[str, TaskOutput]:
        """
        Run every phase of ``plan``.

        Agents outside ``plan.rerun`` keep their entry from ``last_outputs``.
        Stops before the next phase once the session is cancelled.

        Returns:
            Agent name -> latest TaskOutput
        """
        _log = f"[session={session_id}] [city={plan.city_id}] [iteration={plan.iteration}] "
        outputs: Dict[str, TaskOutput] = dict(last_outputs)

        for phase in plan.phases:
            if self.is_cancelled(session_id):
                logger.info(f"{_log}Cancelled before phase {phase.phase_number}")
                break

            to_run = [name for name in phase.agents if plan.should_run(name)]
            if not to_run:
                logger.info(f"{_log}Phase {phase.phase_number} skipped | nothing to re-run")
                continue

            logger.info(
                f"{_log}Phase {phase.phase_number} starting | agents={to_run}, "
                f"parallel={phase.parallel}"
            )
            for name in to_run:
                self.memory.initialize_task_state(session_id, plan.city_id, name)

            results = await self._run_phase(session_id, plan, phase, to_run, base_input, outputs)
            for name, output in results.items():
                if output is not None:
                    outputs[name] = output

            failed = [n for n, o in results.items() if o is not None and not o.success]
            logger.info(
                f"{_log}Phase {phase.phase_number} finished | "
                f"ok={len(results) - len(failed)}, failed={failed}"
            )

        return outputs

    async def _run_phase(
        self,
        session_id: str,
        plan: ExecutionPlan,
        phase: Phase,
        to_run: List[str],
        base_input: Mapping[str, Any],
        outputs: Dict[str, TaskOutput],
    ) -> Dict[str, Optional[TaskOutput]]:
        if phase.parallel:
            phase_input = self._phase_input(base_input, outputs)
            results = await asyncio.gather(
                *(
                    self.run_agent(session_id, plan, name, phase_input, outputs.get(name))
                    for name in to_run
                )
            )
            return dict(zip(to_run, results))

        # Sequential phases see each earlier agent's output
        results: Dict[str, Optional[TaskOutput]] = {}
        for name in to_run:
            if self.is_cancelled(session_id):
                break
            phase_input = self._phase_input(base_input, outputs)
            output = await self.run_agent(session_id, plan, name, phase_input, outputs.get(name))
            results[name] = output
            if output is not None:
                outputs[name] = output
        return results

    def _phase_input(
        self, base_input: Mapping[str, Any], outputs: Dict[str, TaskOutput]
    ) -> Dict[str, Any]:
        phase_input = dict(base_input)
        phase_input["previous_outputs"] = MappingProxyType(dict(outputs))
        return phase_input

    async def run_agent(
        self,
        session_id: str,
        plan: ExecutionPlan,
        agent_name: str,
        phase_input: Mapping[str, Any],
        last_output: Optional[TaskOutput] = None,
    ) -> Optional[TaskOutput]:
        """
        Run one agent and record its result.

        Returns:
            The agent's TaskOutput, or None when the session was cancelled
            (the result is discarded unrecorded)
        """
        city_id = plan.city_id
        _log = f"[session={session_id}] [city={city_id}] [agent={agent_name}] "

        if self.is_cancelled(session_id):
            return None

        agent = self.registry.get(agent_name)
        steering = plan.steering.get(agent_name)
        refining = bool(steering) and agent.supports_refinement and last_output is not None

        self.memory.update_task_state(session_id, city_id, agent_name, status="running")
        self.emit(
            OrchestratorEvent(
                type="agent_started",
                session_id=session_id,
                city_id=city_id,
                agent=agent_name,
                data={
                    "iteration": plan.iteration,
                    "refining": refining,
                    "placeholder": self.registry.is_null(agent_name),
                },
            )
        )

        agent_input = dict(phase_input)
        agent_input["agent_messages"] = [
            m.content
            for m in self.memory.get_messages_for_agent(session_id, agent_name, city_id)
        ]

        async def on_progress(progress: int, message: str) -> None:
            if self.is_cancelled(session_id):
                return
            self.memory.update_task_state(session_id, city_id, agent_name, progress=progress)
            self.emit(
                OrchestratorEvent(
                    type="agent_progress",
                    session_id=session_id,
                    city_id=city_id,
                    agent=agent_name,
                    data={"progress": progress, "message": message},
                )
            )

        context = AgentContext(
            session_id=session_id,
            city_id=city_id,
            iteration=plan.iteration,
            timeout_seconds=self.agent_timeout_seconds,
            on_progress=on_progress,
            debug_logger=self.debug_logger,
        )

        if refining:
            logger.info(f"{_log}Refining | instructions={steering!r}")
            output = await agent.refine(steering, last_output, agent_input, context)
        else:
            output = await agent.execute(agent_input, context)

        # No await between this check and the writes below
        if self.is_cancelled(session_id):
            logger.info(f"{_log}Result discarded after cancellation")
            return None

        self.memory.update_task_state(
            session_id,
            city_id,
            agent_name,
            status="completed" if output.success else "failed",
            progress=100,
            output=output,
            error=output.error,
        )
        written = self.memory.set_task_output(
            session_id, city_id, agent_name, output, agent.outputs
        )
        self._route_suggestions(session_id, city_id, agent_name, output)

        if output.success:
            logger.info(
                f"{_log}Complete | confidence={output.confidence}, "
                f"slots={written}, time_ms={output.execution_time_ms}"
            )
            self.emit(
                OrchestratorEvent(
                    type="agent_complete",
                    session_id=session_id,
                    city_id=city_id,
                    agent=agent_name,
                    data={
                        "confidence": output.confidence,
                        "gaps": output.gaps,
                        "slots": written,
                        "execution_time_ms": output.execution_time_ms,
                    },
                )
            )
        else:
            logger.warning(f"{_log}Failed | error={output.error}")
            self.emit(
                OrchestratorEvent(
                    type="agent_error",
                    session_id=session_id,
                    city_id=city_id,
                    agent=agent_name,
                    data={
                        "error": output.error,
                        "gaps": output.gaps,
                        "execution_time_ms": output.execution_time_ms,
                    },
                )
            )

        return output

    def _route_suggestions(
        self, session_id: str, city_id: str, agent_name: str, output: TaskOutput
    ) -> None:
        known = self.registry.names()
        for suggestion in output.suggestions:
            parsed = parse_suggestion(suggestion, known)
            if parsed is None:
                continue
            target, text = parsed
            self.memory.send_agent_message(session_id, agent_name, target, text, city_id=city_id)
