"""
Base class for city intelligence agents.

Subclasses implement ``run``; the orchestrator only ever calls
``execute`` (or ``refine``), which validates inputs, enforces the
timeout, reports progress, and turns every failure into a failed
TaskOutput. ``execute`` never raises.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Tuple

from city_intelligence.agents.schemas import AgentContext, InputValidation, TaskOutput
from city_intelligence.shared.errors import (
    DependencyUnavailableError,
    InputValidationError,
    RefinementNotSupportedError,
    UnitExecutionError,
)
from city_intelligence.shared.llm.backend import LLMBackend
from city_intelligence.shared.llm.parsing import parse_json_object


logger = logging.getLogger(__name__)

DEPENDENCY_PREFIX = "dependency:"


class BaseAgent(ABC):
    """
    Contract shared by every agent.

    Class attributes declare the agent to the registry and scheduler:
        name: Unique agent name
        description: One-line purpose
        required_inputs: Input keys that must be present; ``dependency:<name>``
            entries require a successful upstream output
        optional_inputs: Input keys used when present
        outputs: Output slot names this agent writes
        depends_on: Agents whose outputs must exist before this one runs
        supports_refinement: Whether ``refine`` is allowed
        min_phase: Earliest phase the scheduler may place this agent in
        terminal: Run alone in a final phase after everything else
    """

    name: str = ""
    description: str = ""
    required_inputs: Tuple[str, ...] = ("city",)
    optional_inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    supports_refinement: bool = True
    min_phase: int = 1
    terminal: bool = False

    def __init__(self, llm: Optional[LLMBackend] = None):
        self.llm = llm

    # =========================================================================
    # Contract
    # =========================================================================

    def validate_inputs(self, input: Mapping[str, Any]) -> InputValidation:
        """Check that every required input is present."""
        missing = []
        previous = input.get("previous_outputs") or {}
        for field in self.required_inputs:
            if field.startswith(DEPENDENCY_PREFIX):
                dep = field[len(DEPENDENCY_PREFIX):]
                output = previous.get(dep)
                if output is None or not output.success:
                    missing.append(field)
            elif input.get(field) is None:
                missing.append(field)
        return InputValidation(valid=not missing, missing_fields=missing)

    async def execute(self, input: Mapping[str, Any], context: AgentContext) -> TaskOutput:
        """
        Run the agent with validation, timeout, and failure isolation.

        Args:
            input: Shared phase input (city, nights, preferences, previous_outputs, ...)
            context: Per-invocation context

        Returns:
            TaskOutput with ``execution_time_ms`` always set
        """
        _log = f"[session={context.session_id}] [city={context.city_id}] [agent={self.name}] "
        start = time.perf_counter()
        timeout = context.timeout_seconds

        await self._report(context, 0, "Starting")

        try:
            validation = self.validate_inputs(input)
            if not validation.valid:
                raise InputValidationError(self.name, validation.missing_fields)

            if timeout:
                result = await asyncio.wait_for(self.run(input, context), timeout)
            else:
                result = await self.run(input, context)
            output = self._build_output(result)

        except asyncio.TimeoutError:
            logger.warning(f"{_log}Timed out after {timeout}s")
            output = self._failed_output(f"{self.name} timed out after {timeout}s")
        except InputValidationError as e:
            logger.warning(f"{_log}Validation failed: {e}")
            output = self._failed_output(str(e))
        except Exception as e:
            logger.exception(f"{_log}Execution failed: {e}")
            output = self._failed_output(f"{self.name} failed: {e}")

        output.execution_time_ms = round((time.perf_counter() - start) * 1000, 2)

        await self._report(context, 100, "Complete" if output.success else "Failed")

        if context.debug_logger is not None:
            context.debug_logger.log_agent_run(
                agent_name=self.name,
                city_id=context.city_id,
                iteration=context.iteration,
                success=output.success,
                confidence=output.confidence,
                duration_ms=output.execution_time_ms,
                gaps=output.gaps,
                error=output.error,
            )

        return output

    async def refine(
        self,
        feedback: str,
        previous_output: Optional[TaskOutput],
        input: Mapping[str, Any],
        context: AgentContext,
    ) -> TaskOutput:
        """
        Re-run with steering feedback merged into the input.

        Raises:
            RefinementNotSupportedError: If this agent cannot refine
        """
        if not self.supports_refinement:
            raise RefinementNotSupportedError(self.name)

        refined_input = dict(input)
        refined_input["refinement_instructions"] = feedback
        refined_input["previous_output"] = previous_output.data if previous_output else None
        return await self.execute(refined_input, context)

    @abstractmethod
    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        """
        Produce this agent's output.

        Returns:
            Dict with ``data`` (keyed by output slot), ``confidence`` and
            optionally ``gaps`` and ``suggestions``
        """

    # =========================================================================
    # Helpers for subclasses
    # =========================================================================

    def get_dependency_data(self, input: Mapping[str, Any], agent_name: str) -> Optional[Dict[str, Any]]:
        """Return an upstream agent's data, or None if missing or failed."""
        output = (input.get("previous_outputs") or {}).get(agent_name)
        if output is None or not output.success:
            return None
        return output.data

    def require_dependency(self, input: Mapping[str, Any], agent_name: str) -> Dict[str, Any]:
        """
        Return an upstream agent's data.

        Raises:
            DependencyUnavailableError: If the upstream output is missing or failed
        """
        data = self.get_dependency_data(input, agent_name)
        if data is None:
            raise DependencyUnavailableError(self.name, agent_name)
        return data

    async def call_llm_json(
        self,
        system_prompt: str,
        user_prompt: str,
        context: AgentContext,
        max_tokens: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Send a prompt pair to the LLM backend and parse a JSON object reply.

        Raises:
            UnitExecutionError: If no backend is configured
            ParseError: If the reply is not a JSON object
        """
        if self.llm is None:
            raise UnitExecutionError(self.name, "no LLM backend configured")

        response = await self.llm.complete(system_prompt, user_prompt, max_tokens=max_tokens)

        if context.debug_logger is not None:
            context.debug_logger.log_llm_call(
                agent_name=self.name,
                city_id=context.city_id,
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                response=response.content,
                duration_ms=response.duration_ms,
                input_tokens=response.usage.get("input_tokens", 0),
                output_tokens=response.usage.get("output_tokens", 0),
                model=response.model,
            )

        return parse_json_object(response.content)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _report(self, context: AgentContext, progress: int, message: str) -> None:
        try:
            await context.report_progress(progress, message)
        except Exception as e:
            logger.warning(
                f"[session={context.session_id}] [agent={self.name}] "
                f"Progress callback failed at {progress}%: {e}"
            )

    def _build_output(self, result: Any) -> TaskOutput:
        if not isinstance(result, dict) or not isinstance(result.get("data"), dict):
            raise UnitExecutionError(self.name, "run() must return a dict with a 'data' dict")

        return TaskOutput(
            agent_name=self.name,
            success=True,
            data=result["data"],
            confidence=max(0, min(100, int(result.get("confidence", 50)))),
            gaps=list(result.get("gaps") or []),
            suggestions=list(result.get("suggestions") or []),
        )

    def _failed_output(self, message: str) -> TaskOutput:
        return TaskOutput(
            agent_name=self.name,
            success=False,
            data={},
            confidence=0,
            gaps=[message],
            error=message,
        )
