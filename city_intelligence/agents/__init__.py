"""
City intelligence agents.

Each agent implements the BaseAgent contract and writes one output slot:
- time_agent: time_blocks
- story_agent: story
- preference_agent: match_score
- cluster_agent: clusters
- gems_agent: hidden_gems
- logistics_agent: logistics
- weather_agent: weather
- photo_agent: photo_spots
- synthesis_agent: synthesis
"""

from city_intelligence.agents.base import BaseAgent
from city_intelligence.agents.schemas import AgentContext, InputValidation, TaskOutput
from city_intelligence.agents.registry import (
    AGENT_SPECS,
    AgentRegistry,
    AgentSpec,
    NullAgent,
    build_default_registry,
)

__all__ = [
    "BaseAgent",
    "AgentContext",
    "InputValidation",
    "TaskOutput",
    "AGENT_SPECS",
    "AgentRegistry",
    "AgentSpec",
    "NullAgent",
    "build_default_registry",
]
