"""
Async OpenAI client with retry logic.

Agents reach the model through ``OpenAIBackend``, which calls
``call_llm_with_usage`` here. Transient API failures (connection drops,
timeouts, rate limits, 5xx) are retried with exponential backoff; anything
else surfaces immediately so the agent can fall back.
"""

import logging
import os
from typing import Dict, List, Optional, Tuple

import openai
from openai import AsyncOpenAI
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from dotenv import load_dotenv
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1-mini"

TRANSIENT_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)

_client: Optional[AsyncOpenAI] = None


def get_api_key() -> Optional[str]:
    """Return the configured OpenAI key, preferring OPENAI_API_KEY_1."""
    return os.environ.get("OPENAI_API_KEY_1") or os.environ.get("OPENAI_API_KEY")


def get_cached_client() -> AsyncOpenAI:
    """
    Return the process-wide AsyncOpenAI client, creating it on first use.

    Raises:
        ValueError: If neither OPENAI_API_KEY_1 nor OPENAI_API_KEY is set
    """
    global _client
    if _client is None:
        api_key = get_api_key()
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY_1 environment variable is not set. "
                "Please set it to your OpenAI API key."
            )
        _client = AsyncOpenAI(api_key=api_key)
    return _client


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
async def call_llm_with_usage(
    messages: List[Dict[str, str]],
    model: str = DEFAULT_MODEL,
    client: Optional[AsyncOpenAI] = None,
    max_tokens: Optional[int] = None,
) -> Tuple[str, Dict[str, int]]:
    """
    Run one chat completion and return its text with token usage.

    Args:
        messages: Chat messages with 'role' and 'content' keys
        model: Model identifier
        client: Client to use instead of the cached one
        max_tokens: Optional completion token cap

    Returns:
        Tuple of (stripped reply text, usage dict with input/output/total tokens)
    """
    if client is None:
        client = get_cached_client()

    kwargs = {"model": model, "messages": messages}
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens

    response = await client.chat.completions.create(**kwargs)

    content = (response.choices[0].message.content or "").strip()
    usage = response.usage
    return content, {
        "input_tokens": usage.prompt_tokens if usage else 0,
        "output_tokens": usage.completion_tokens if usage else 0,
        "total_tokens": usage.total_tokens if usage else 0,
    }
