"""
History-replaying extraction through forced tool use.

Every call sends the whole conversation, so values stated in earlier turns
survive a follow-up like "20 ticks". Any failure (timeout, cancellation,
provider error, missing or malformed tool payload) fails closed: empty
components with both critical fields reported missing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import ValidationError

from ai_providers import AIProvider
from extraction_prompts import EXTRACT_STRATEGY_TOOL, EXTRACTION_REQUEST, EXTRACTION_SYSTEM_PROMPT
from strategy_models import ConversationMessage, ExtractedComponents, ExtractionResult

logger = logging.getLogger(__name__)

DEFAULT_EXTRACTION_TIMEOUT = 20.0

# Priority order: stop loss gates risk, so it is asked about first.
CRITICAL_FIELDS = ("stopLoss", "instrument")


def fail_closed(reason: str) -> ExtractionResult:
    return ExtractionResult(
        components=ExtractedComponents(),
        missing_critical=list(CRITICAL_FIELDS),
        is_complete=False,
        failure_reason=reason,
    )


def missing_critical_fields(components: ExtractedComponents) -> List[str]:
    values = components.model_dump(by_alias=True)
    return [name for name in CRITICAL_FIELDS if not values.get(name)]


class ToolChoiceExtractor:
    """Extracts ExtractedComponents from a full conversation using the configured AI provider."""

    def __init__(self, ai_provider: AIProvider, timeout: float = DEFAULT_EXTRACTION_TIMEOUT):
        self.ai_provider = ai_provider
        self.timeout = timeout

    def _build_messages(self, history: Iterable[Union[ConversationMessage, Dict[str, Any]]]) -> List[Dict[str, str]]:
        messages = []
        for message in history:
            if not isinstance(message, ConversationMessage):
                message = ConversationMessage.model_validate(message)
            messages.append({"role": message.role, "content": message.content})
        messages.append({"role": "user", "content": EXTRACTION_REQUEST})
        return messages

    async def extract(self, history: Iterable[Union[ConversationMessage, Dict[str, Any]]]) -> ExtractionResult:
        try:
            messages = self._build_messages(history)
        except ValidationError as exc:
            logger.warning("Conversation history rejected: %s", exc)
            return fail_closed("invalid conversation history")

        try:
            payload: Optional[Dict[str, Any]] = await asyncio.wait_for(
                self.ai_provider.generate_with_tool(
                    system_prompt=EXTRACTION_SYSTEM_PROMPT,
                    messages=messages,
                    tool=EXTRACT_STRATEGY_TOOL,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Extraction timed out after %.1fs", self.timeout)
            return fail_closed("timeout")
        except asyncio.CancelledError:
            # Cancelled extractions report nothing rather than partial data.
            logger.warning("Extraction cancelled")
            return fail_closed("cancelled")
        except Exception as exc:
            logger.error("Extraction provider call failed: %s", exc)
            return fail_closed(f"provider error: {type(exc).__name__}")

        if not isinstance(payload, dict):
            logger.error("Extraction response carried no tool call")
            return fail_closed("missing tool call")

        try:
            components = ExtractedComponents.model_validate(payload)
        except ValidationError as exc:
            logger.error("Extraction tool payload failed validation: %s", exc)
            return fail_closed("malformed tool payload")

        missing = missing_critical_fields(components)
        logger.info(
            "Extracted components from %d message(s); missing critical: %s",
            len(messages) - 1,
            missing or "none",
        )
        return ExtractionResult(components=components, missing_critical=missing, is_complete=not missing)
