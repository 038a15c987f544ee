"""
Agent registry.

AGENT_SPECS is the static declaration of every agent the orchestrator
knows about. An AgentRegistry maps each declared name to a concrete
agent, or to that name's NullAgent when no implementation (or no
backend for it) was registered.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Type

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.cluster_agent import ClusterAgent
from city_intelligence.agents.gems_agent import GemsAgent
from city_intelligence.agents.logistics_agent import LogisticsAgent
from city_intelligence.agents.mock_data import generate_mock_output
from city_intelligence.agents.photo_agent import PhotoAgent
from city_intelligence.agents.preference_agent import PreferenceAgent
from city_intelligence.agents.schemas import AgentContext
from city_intelligence.agents.story_agent import StoryAgent
from city_intelligence.agents.synthesis_agent import SynthesisAgent
from city_intelligence.agents.time_agent import TimeAgent
from city_intelligence.agents.weather_agent import WeatherAgent
from city_intelligence.shared.errors import SchedulerError
from city_intelligence.shared.llm.backend import LLMBackend
from city_intelligence.shared.services.places import PlacesClient
from city_intelligence.shared.services.weather import WeatherClient


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AgentSpec:
    """Static declaration of an agent, independent of its implementation."""

    name: str
    depends_on: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    supports_refinement: bool = True
    min_phase: int = 1
    terminal: bool = False
    description: str = ""

    @classmethod
    def from_agent(cls, agent_cls: Type[BaseAgent]) -> "AgentSpec":
        return cls(
            name=agent_cls.name,
            depends_on=tuple(agent_cls.depends_on),
            outputs=tuple(agent_cls.outputs),
            supports_refinement=agent_cls.supports_refinement,
            min_phase=agent_cls.min_phase,
            terminal=agent_cls.terminal,
            description=agent_cls.description,
        )


# Declaration order is the within-phase order
AGENT_CLASSES: Tuple[Type[BaseAgent], ...] = (
    TimeAgent,
    StoryAgent,
    PreferenceAgent,
    ClusterAgent,
    GemsAgent,
    LogisticsAgent,
    WeatherAgent,
    PhotoAgent,
    SynthesisAgent,
)

AGENT_SPECS: Tuple[AgentSpec, ...] = tuple(AgentSpec.from_agent(c) for c in AGENT_CLASSES)


class NullAgent(BaseAgent):
    """Stand-in for a declared agent that returns placeholder output."""

    required_inputs = ("city", "nights")

    def __init__(self, spec: AgentSpec):
        super().__init__(llm=None)
        self.spec = spec
        self.name = spec.name
        self.description = f"Placeholder for {spec.name}"
        self.outputs = spec.outputs
        self.depends_on = spec.depends_on
        self.supports_refinement = spec.supports_refinement
        self.min_phase = spec.min_phase
        self.terminal = spec.terminal

    async def run(self, input: Mapping[str, Any], context: AgentContext) -> Dict[str, Any]:
        return generate_mock_output(self.outputs, input["city"], int(input["nights"]))


class AgentRegistry:
    """Resolves declared agent names to agent instances."""

    def __init__(self, specs: Sequence[AgentSpec] = AGENT_SPECS):
        self._specs: Dict[str, AgentSpec] = {}
        for spec in specs:
            if spec.name in self._specs:
                raise SchedulerError(f"Duplicate agent declaration: {spec.name}")
            self._specs[spec.name] = spec
        self._agents: Dict[str, BaseAgent] = {}
        self._nulls: Dict[str, NullAgent] = {s.name: NullAgent(s) for s in specs}

    def register(self, agent: BaseAgent) -> None:
        """
        Register a concrete agent for a declared name.

        Raises:
            SchedulerError: If the name is undeclared or its dependencies
                differ from the declaration
        """
        spec = self._specs.get(agent.name)
        if spec is None:
            raise SchedulerError(f"Agent '{agent.name}' is not declared")
        if tuple(agent.depends_on) != spec.depends_on:
            raise SchedulerError(
                f"Agent '{agent.name}' depends_on {tuple(agent.depends_on)} "
                f"does not match declaration {spec.depends_on}"
            )
        self._agents[agent.name] = agent

    def get(self, name: str) -> BaseAgent:
        if name in self._agents:
            return self._agents[name]
        if name in self._nulls:
            return self._nulls[name]
        raise SchedulerError(f"Unknown agent: {name}")

    def is_null(self, name: str) -> bool:
        return name not in self._agents

    def spec(self, name: str) -> AgentSpec:
        return self._specs[name]

    def specs(self) -> List[AgentSpec]:
        return list(self._specs.values())

    def names(self) -> List[str]:
        return list(self._specs)

    def dependents_of(self, names: Iterable[str]) -> Set[str]:
        """Transitive downstream closure of ``names`` (inclusive)."""
        selected = set(names)
        changed = True
        while changed:
            changed = False
            for spec in self._specs.values():
                if spec.name not in selected and selected.intersection(spec.depends_on):
                    selected.add(spec.name)
                    changed = True
        return selected


def build_default_registry(
    llm: Optional[LLMBackend] = None,
    places: Optional[PlacesClient] = None,
    weather: Optional[WeatherClient] = None,
) -> AgentRegistry:
    """
    Register every agent whose external collaborators are available.

    Agents with a missing backend resolve to their NullAgent.
    """
    registry = AgentRegistry()
    registry.register(TimeAgent())
    registry.register(SynthesisAgent())

    if llm is not None:
        for agent_cls in (StoryAgent, PreferenceAgent, GemsAgent, LogisticsAgent, PhotoAgent):
            registry.register(agent_cls(llm=llm))
    if places is not None:
        registry.register(ClusterAgent(places))
    if weather is not None:
        registry.register(WeatherAgent(weather))

    nulls = [n for n in registry.names() if registry.is_null(n)]
    if nulls:
        logger.info(f"Agents running with placeholder output: {', '.join(nulls)}")
    return registry
