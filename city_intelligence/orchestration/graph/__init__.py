"""Per-city plan/execute/reflect/refine loop."""

from city_intelligence.orchestration.graph.build import create_city_graph
from city_intelligence.orchestration.graph.router import route_after_execute, route_after_reflect
from city_intelligence.orchestration.graph.state import CityLoopState

__all__ = [
    "create_city_graph",
    "route_after_execute",
    "route_after_reflect",
    "CityLoopState",
]
