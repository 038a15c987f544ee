"""LLM client utilities."""

from city_intelligence.shared.llm.client import get_api_key, get_cached_client, call_llm_with_usage
from city_intelligence.shared.llm.backend import LLMBackend, LLMResponse, OpenAIBackend
from city_intelligence.shared.llm.parsing import (
    ParseError,
    extract_json_from_response,
    parse_json_object,
)

__all__ = [
    "get_api_key",
    "get_cached_client",
    "call_llm_with_usage",
    "LLMBackend",
    "LLMResponse",
    "OpenAIBackend",
    "ParseError",
    "extract_json_from_response",
    "parse_json_object",
]
