"""
City intelligence for road trip routes.

This package contains:
- shared/: Common infrastructure (LLM backend, external services, logging, contracts, errors)
- agents/: The nine city agents, their contract and the agent registry
- memory/: Per-session state store
- orchestration/: Phase scheduler, per-city quality loop (LangGraph), events and API
"""

from city_intelligence.agents.registry import build_default_registry
from city_intelligence.orchestration.orchestrator import CityIntelligenceOrchestrator

__all__ = ["build_default_registry", "CityIntelligenceOrchestrator"]
