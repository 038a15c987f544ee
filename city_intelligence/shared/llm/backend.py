"""
LLM backend abstraction used by the agents.

Agents depend on the ``LLMBackend`` protocol rather than on the OpenAI
SDK so the orchestrator can run against a fake in tests, or without any
model at all (agents then resolve to their null variants).
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI

from city_intelligence.shared.llm.client import DEFAULT_MODEL, call_llm_with_usage


logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Text completion plus the bookkeeping needed for cost tracking."""

    content: str
    model: str = DEFAULT_MODEL
    usage: Dict[str, int] = field(default_factory=dict)
    duration_ms: float = 0.0


@runtime_checkable
class LLMBackend(Protocol):
    """Anything that can turn a system/user prompt pair into text."""

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        ...


class OpenAIBackend:
    """LLMBackend backed by the OpenAI chat completions API."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self._client = client

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        start = time.perf_counter()
        content, usage = await call_llm_with_usage(
            messages, model=self.model, client=self._client, max_tokens=max_tokens
        )
        duration_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            "LLM call complete | model=%s, tokens=%s, duration=%.0fms",
            self.model,
            usage.get("total_tokens"),
            duration_ms,
        )

        return LLMResponse(
            content=content,
            model=self.model,
            usage=usage,
            duration_ms=duration_ms,
        )
