"""
Shared infrastructure for all agents.

Modules:
- llm: OpenAI client with retry logic, backend protocol, JSON parsing
- logging: Structured JSON logging and per-session debug logs
- contracts: Trip input and per-slot output contracts
- services: Places and weather lookups
- errors: Error taxonomy
"""

from city_intelligence.shared.llm.client import get_cached_client, call_llm_with_usage
from city_intelligence.shared.logging.config import setup_logging, log_state_transition

__all__ = [
    "get_cached_client",
    "call_llm_with_usage",
    "setup_logging",
    "log_state_transition",
]
