"""Scheduling, quality loop and event surface for city intelligence runs."""

from city_intelligence.orchestration.config import (
    DEFAULT_CONFIG,
    OrchestratorConfig,
    get_config,
    load_config_from_env,
)
from city_intelligence.orchestration.orchestrator import (
    CityIntelligenceOrchestrator,
    IntelligenceStream,
)
from city_intelligence.orchestration.reflection import QualityConfig, ReflectionEngine
from city_intelligence.orchestration.refinement import plan_refinement
from city_intelligence.orchestration.scheduler import PhaseScheduler
from city_intelligence.orchestration.schemas import (
    ExecutionPlan,
    OrchestratorEvent,
    Phase,
    RefinementPlan,
    StartIntelligenceRequest,
)

__all__ = [
    "DEFAULT_CONFIG",
    "OrchestratorConfig",
    "get_config",
    "load_config_from_env",
    "CityIntelligenceOrchestrator",
    "IntelligenceStream",
    "QualityConfig",
    "ReflectionEngine",
    "plan_refinement",
    "PhaseScheduler",
    "ExecutionPlan",
    "OrchestratorEvent",
    "Phase",
    "RefinementPlan",
    "StartIntelligenceRequest",
]
