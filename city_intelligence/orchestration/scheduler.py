"""
Phase scheduler.

Layers agents by their declared dependencies so every agent runs in a
phase strictly after all of its dependencies:

    layer(a) = max(a.min_phase, 1 + max(layer(d) for d in a.depends_on))

Terminal agents are pulled out into one final sequential phase.
"""

import logging
from typing import Dict, List, Optional, Sequence

from city_intelligence.agents.registry import AGENT_SPECS, AgentSpec
from city_intelligence.orchestration.schemas import ExecutionPlan, Phase, RefinementPlan
from city_intelligence.shared.errors import SchedulerError


logger = logging.getLogger(__name__)

PHASE_DESCRIPTIONS = {
    1: "Foundation - Time blocks, narrative, preference matching",
    2: "Discovery - Geographic clusters and hidden gems",
    3: "Enhancement - Practical tips, weather and media",
}
TERMINAL_DESCRIPTION = "Synthesis - Combine all intelligence"


class PhaseScheduler:
    """Builds execution plans from agent declarations."""

    def __init__(
        self,
        specs: Sequence[AgentSpec] = AGENT_SPECS,
        max_iterations: int = 3,
        quality_threshold: int = 85,
    ):
        self.specs = list(specs)
        self.max_iterations = max_iterations
        self.quality_threshold = quality_threshold
        self.phases = self._build_phases()

    def _build_phases(self) -> List[Phase]:
        by_name = {s.name: s for s in self.specs}
        for spec in self.specs:
            for dep in spec.depends_on:
                if dep not in by_name:
                    raise SchedulerError(f"Agent '{spec.name}' depends on unknown agent '{dep}'")

        layers: Dict[str, int] = {}
        visiting = set()

        def layer_of(name: str) -> int:
            if name in layers:
                return layers[name]
            if name in visiting:
                raise SchedulerError(f"Dependency cycle through '{name}'")
            visiting.add(name)
            spec = by_name[name]
            dep_layers = [layer_of(d) for d in spec.depends_on]
            layers[name] = max([spec.min_phase] + [d + 1 for d in dep_layers])
            visiting.discard(name)
            return layers[name]

        for spec in self.specs:
            layer_of(spec.name)

        regular = [s for s in self.specs if not s.terminal]
        terminal = [s for s in self.specs if s.terminal]

        # Empty layers are dropped; numbering stays contiguous
        phases: List[Phase] = []
        for layer in sorted({layers[s.name] for s in regular}):
            number = len(phases) + 1
            phases.append(
                Phase(
                    phase_number=number,
                    agents=[s.name for s in regular if layers[s.name] == layer],
                    parallel=True,
                    description=PHASE_DESCRIPTIONS.get(number, f"Phase {number}"),
                )
            )

        if terminal:
            seen = set()
            for spec in terminal:
                late = [d for d in spec.depends_on if by_name[d].terminal and d not in seen]
                if late:
                    raise SchedulerError(
                        f"Terminal agent '{spec.name}' depends on later terminal agent(s) {late}"
                    )
                seen.add(spec.name)
            phases.append(
                Phase(
                    phase_number=len(phases) + 1,
                    agents=[s.name for s in terminal],
                    parallel=False,
                    description=TERMINAL_DESCRIPTION,
                )
            )

        return phases

    def create_plan(
        self,
        city_id: str,
        iteration: int = 1,
        refinement: Optional[RefinementPlan] = None,
        rerun: Optional[Sequence[str]] = None,
    ) -> ExecutionPlan:
        """
        Build the plan for one iteration of one city.

        Args:
            city_id: City the plan is for
            iteration: 1-based iteration number
            refinement: Pending refinement whose instructions steer agents
            rerun: Agents to run this iteration (None runs every agent)

        Returns:
            ExecutionPlan with the fixed phase structure
        """
        plan = ExecutionPlan(
            city_id=city_id,
            iteration=iteration,
            phases=self.phases,
            steering=dict(refinement.instructions) if refinement else {},
            rerun=sorted(rerun, key=self._order) if rerun is not None else None,
            max_iterations=self.max_iterations,
            quality_threshold=self.quality_threshold,
        )
        logger.info(
            f"[city={city_id}] Plan created | iteration={iteration}, "
            f"phases={len(plan.phases)}, rerun={plan.rerun if plan.rerun is not None else 'all'}"
        )
        return plan

    def _order(self, name: str) -> int:
        for i, spec in enumerate(self.specs):
            if spec.name == name:
                return i
        return len(self.specs)
