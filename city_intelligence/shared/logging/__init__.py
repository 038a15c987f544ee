"""Logging configuration and utilities."""

from city_intelligence.shared.logging.config import (
    LOG_FORMAT,
    StructuredFormatter,
    setup_logging,
    log_state_transition,
)
from city_intelligence.shared.logging.debug_logger import (
    DebugLogger,
    get_or_create_logger,
    remove_logger,
    calculate_cost,
)

__all__ = [
    "LOG_FORMAT",
    "StructuredFormatter",
    "setup_logging",
    "log_state_transition",
    "DebugLogger",
    "get_or_create_logger",
    "remove_logger",
    "calculate_cost",
]
