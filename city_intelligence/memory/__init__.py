"""Per-session state store for city intelligence runs."""

from city_intelligence.memory.shared_memory import SharedMemory
from city_intelligence.memory.schemas import (
    CityIntelligence,
    CrossCityInsights,
    Reflection,
    ReflectionGap,
    Session,
    TaskState,
)

__all__ = [
    "SharedMemory",
    "CityIntelligence",
    "CrossCityInsights",
    "Reflection",
    "ReflectionGap",
    "Session",
    "TaskState",
]
