"""
AI Provider Interface

Structured extraction through forced tool use: the model must answer by
calling the one tool it is given, and the provider returns that call's input.
All providers include exponential backoff with jitter for transient failures.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
import asyncio
import json
import logging
import random

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

logger = logging.getLogger(__name__)

# ─── Retry Configuration ───────────────────────────────────────────

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0       # seconds
DEFAULT_MAX_DELAY = 30.0       # seconds
DEFAULT_BACKOFF_FACTOR = 2.0
DEFAULT_JITTER = 0.5           # ±50% jitter

DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"
DEFAULT_OPENAI_MODEL = "gpt-4o"

# Exceptions worth retrying (transient / rate-limit)
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 529}


def _is_retryable(exc: Exception) -> bool:
    """Return True if the exception is a transient failure worth retrying."""
    if getattr(exc, "status_code", None) in _RETRYABLE_STATUS_CODES:
        return True
    # Generic HTTP status via response attribute
    response = getattr(exc, "response", None)
    if getattr(response, "status_code", None) in _RETRYABLE_STATUS_CODES:
        return True
    # Connection-level errors
    err_name = type(exc).__name__.lower()
    if any(kw in err_name for kw in ("timeout", "connection", "overloaded", "ratelimit")):
        return True
    return False


async def _retry_with_backoff(
    fn,
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR,
    jitter: float = DEFAULT_JITTER,
):
    """
    Execute `fn` (an async callable returning a value) with exponential backoff.
    Retries only on transient / rate-limit errors.
    """
    last_exc: Optional[Exception] = None
    for attempt in range(max_retries + 1):
        try:
            return await fn()
        except Exception as exc:
            last_exc = exc
            if attempt >= max_retries or not _is_retryable(exc):
                raise
            delay = min(base_delay * (backoff_factor ** attempt), max_delay)
            delay *= 1.0 + random.uniform(-jitter, jitter)
            delay = max(0.1, delay)
            logger.warning(
                "API call failed (attempt %d/%d): %s; retrying in %.1fs",
                attempt + 1, max_retries + 1, exc, delay,
            )
            await asyncio.sleep(delay)
    raise last_exc  # type: ignore[misc]


class AIProvider(ABC):
    """Abstract base class for AI providers"""

    @abstractmethod
    async def generate_with_tool(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        tool: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """
        Run the conversation with `tool` forced and return the tool call's
        input, or None when the model did not call it.

        `tool` uses the Anthropic shape: {name, description, input_schema}.
        """
        pass


class OpenAIProvider(AIProvider):
    """OpenAI chat-completions provider using forced function calling"""

    def __init__(self, api_key: str, model: str = DEFAULT_OPENAI_MODEL):
        self.client = AsyncOpenAI(api_key=api_key)
        self.model = model

    async def generate_with_tool(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        tool: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        function = {
            "name": tool["name"],
            "description": tool.get("description", ""),
            "parameters": tool["input_schema"],
        }

        async def _call():
            return await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "system", "content": system_prompt}, *messages],
                tools=[{"type": "function", "function": function}],
                tool_choice={"type": "function", "function": {"name": tool["name"]}},
            )

        response = await _retry_with_backoff(_call)
        tool_calls = response.choices[0].message.tool_calls or []
        for call in tool_calls:
            if call.function.name == tool["name"]:
                # Malformed arguments raise ValueError to the caller
                return json.loads(call.function.arguments)
        return None


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider using tool_choice"""

    def __init__(self, api_key: str, model: str = DEFAULT_ANTHROPIC_MODEL):
        self.client = AsyncAnthropic(api_key=api_key)
        self.model = model

    async def generate_with_tool(
        self,
        system_prompt: str,
        messages: List[Dict[str, str]],
        tool: Dict[str, Any],
    ) -> Optional[Dict[str, Any]]:
        """Forced tool use. The system prompt is cached since it is identical on every turn."""
        system_blocks = [
            {"type": "text", "text": system_prompt, "cache_control": {"type": "ephemeral"}}
        ]

        async def _call():
            return await self.client.messages.create(
                model=self.model,
                max_tokens=1024,
                system=system_blocks,
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
                messages=messages,
            )

        response = await _retry_with_backoff(_call)
        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == tool["name"]:
                return block.input
        return None


def get_provider(api_key: str, model: Optional[str] = None, provider: str = "anthropic") -> AIProvider:
    """Factory function to get AI provider

    Args:
        api_key: API key for the provider
        model: Model name (optional, uses default for provider)
        provider: Provider name ('openai' or 'anthropic')
    """

    if provider.lower() == "anthropic":
        return AnthropicProvider(
            api_key=api_key,
            model=model or DEFAULT_ANTHROPIC_MODEL
        )
    else:
        return OpenAIProvider(
            api_key=api_key,
            model=model or DEFAULT_OPENAI_MODEL
        )
