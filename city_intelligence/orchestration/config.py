"""
Configuration for the city intelligence orchestrator.

Centralizes the tunables of the per-city loop and the event stream so
they can be adjusted without touching the graph wiring.
"""

import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv


@dataclass
class OrchestratorConfig:
    """
    Configuration for an orchestrator instance.

    Attributes:
        quality_threshold: Quality at or above which a city is complete
        max_iterations: Maximum plan/execute/reflect iterations per city
        gap_threshold: Category score below which a gap is reported
        agent_timeout_seconds: Timeout applied to each agent run
        keepalive_interval_seconds: Silence before an SSE keep-alive frame
        parallel_cities: Run each city's loop concurrently
        session_timeout_seconds: Idle time before a session is swept
        cleanup_interval_seconds: Period of the background stale-session sweep
        model: LLM model used by the default backend
        debug_logs_dir: Directory for per-session debug logs (disabled if None)
    """

    # Quality loop
    quality_threshold: int = 85
    max_iterations: int = 3
    gap_threshold: int = 70

    # Execution
    agent_timeout_seconds: float = 60.0
    parallel_cities: bool = False

    # Streaming
    keepalive_interval_seconds: float = 15.0

    # Session retention
    session_timeout_seconds: float = 30 * 60
    cleanup_interval_seconds: float = 60.0

    # LLM configuration
    model: str = "gpt-4.1-mini"

    # Debugging
    debug_logs_dir: Optional[str] = None

    @property
    def recursion_limit(self) -> int:
        """LangGraph step limit for one city loop (4 nodes per iteration)."""
        return self.max_iterations * 4 + 5


# Default configuration instance
DEFAULT_CONFIG = OrchestratorConfig()


def get_config(
    quality_threshold: Optional[int] = None,
    max_iterations: Optional[int] = None,
    gap_threshold: Optional[int] = None,
    agent_timeout_seconds: Optional[float] = None,
    parallel_cities: Optional[bool] = None,
    keepalive_interval_seconds: Optional[float] = None,
    session_timeout_seconds: Optional[float] = None,
    cleanup_interval_seconds: Optional[float] = None,
    model: Optional[str] = None,
    debug_logs_dir: Optional[str] = None,
) -> OrchestratorConfig:
    """
    Create a configuration with optional overrides.

    Returns:
        OrchestratorConfig with specified overrides applied
    """
    return OrchestratorConfig(
        quality_threshold=quality_threshold
        if quality_threshold is not None
        else DEFAULT_CONFIG.quality_threshold,
        max_iterations=max_iterations
        if max_iterations is not None
        else DEFAULT_CONFIG.max_iterations,
        gap_threshold=gap_threshold
        if gap_threshold is not None
        else DEFAULT_CONFIG.gap_threshold,
        agent_timeout_seconds=agent_timeout_seconds
        if agent_timeout_seconds is not None
        else DEFAULT_CONFIG.agent_timeout_seconds,
        parallel_cities=parallel_cities
        if parallel_cities is not None
        else DEFAULT_CONFIG.parallel_cities,
        keepalive_interval_seconds=keepalive_interval_seconds
        if keepalive_interval_seconds is not None
        else DEFAULT_CONFIG.keepalive_interval_seconds,
        session_timeout_seconds=session_timeout_seconds
        if session_timeout_seconds is not None
        else DEFAULT_CONFIG.session_timeout_seconds,
        cleanup_interval_seconds=cleanup_interval_seconds
        if cleanup_interval_seconds is not None
        else DEFAULT_CONFIG.cleanup_interval_seconds,
        model=model if model is not None else DEFAULT_CONFIG.model,
        debug_logs_dir=debug_logs_dir
        if debug_logs_dir is not None
        else DEFAULT_CONFIG.debug_logs_dir,
    )


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env(prefix: str = "CITY_INTEL_") -> OrchestratorConfig:
    """
    Build a configuration from ``CITY_INTEL_*`` environment variables.

    ``CITY_INTEL_MAX_ITERATIONS=5`` overrides ``max_iterations`` and so on.
    Unset variables keep their defaults.

    Raises:
        ValueError: If a variable cannot be converted to its field's type
    """
    load_dotenv()

    overrides = {}
    for f in fields(OrchestratorConfig):
        raw = os.getenv(prefix + f.name.upper())
        if raw is None or raw == "":
            continue
        default = getattr(DEFAULT_CONFIG, f.name)
        if isinstance(default, bool):
            overrides[f.name] = _parse_bool(raw)
        elif isinstance(default, int):
            overrides[f.name] = int(raw)
        elif isinstance(default, float):
            overrides[f.name] = float(raw)
        else:
            overrides[f.name] = raw

    return OrchestratorConfig(**overrides)
