"""
Strategy build pipeline.

One call per inbound chat message. The result is one of four tagged
responses: the first message may come back as `pattern_detected` for the
client to confirm, missing critical fields come back as a single
`critical_question`, and a complete rule set comes back as
`strategy_complete` with its canonical form and chart coordinates.
Persistence, auth and broker actions are the caller's job.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from canonicalizer import build_canonical_strategy
from control_registry import controls_for_rules
from defaults_engine import apply_defaults
from gap_detector import (
    answer_to_rule,
    clarifying_question,
    detect_missing_critical,
    has_committed_stop,
    next_question,
    validate_input_quality,
)
from pattern_extractor import detect_pattern, extract_rules
from phase_tracker import detect_current_focus, detect_phase
from rule_accumulator import components_to_rules, find_rule, merge_rules
from session_store import ActivityTracker, ConversationState, ConversationStore
from strategy_models import (
    PATTERN_DISPLAY_NAMES,
    AnswerOption,
    CanonicalStrategy,
    ConversationMessage,
    PatternType,
    QuestionType,
    Rule,
    VisualCoordinates,
)
from tool_choice_extractor import ToolChoiceExtractor
from visual_coordinates import derive_coordinates, parameters_from_canonical

logger = logging.getLogger(__name__)

PATTERN_FIELD_COUNTS = {
    "opening_range_breakout": 7,
    "ema_pullback": 8,
    "breakout": 8,
}


# ─── Request / response models ─────────────────────────────────────


class CriticalAnswer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_type: QuestionType = Field(alias="questionType")
    value: str


class PatternConfirmation(BaseModel):
    confirmed: bool
    pattern: Optional[PatternType] = None


class PartialStrategy(BaseModel):
    rules: List[Rule] = Field(default_factory=list)
    pattern: Optional[str] = None
    instrument: Optional[str] = None


class BuildRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    critical_answer: Optional[CriticalAnswer] = Field(default=None, alias="criticalAnswer")
    pattern_confirmation: Optional[PatternConfirmation] = Field(default=None, alias="patternConfirmation")
    partial_strategy: Optional[PartialStrategy] = Field(default=None, alias="partialStrategy")
    conversation_history: List[ConversationMessage] = Field(default_factory=list, alias="conversationHistory")


class PatternDetectedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["pattern_detected"] = "pattern_detected"
    pattern: PatternType
    pattern_name: str = Field(alias="patternName")
    field_count: int = Field(alias="fieldCount")
    conversation_id: str = Field(alias="conversationId")
    original_message: str = Field(alias="originalMessage")


class CriticalQuestionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["critical_question"] = "critical_question"
    question: str
    question_type: QuestionType = Field(alias="questionType")
    options: List[AnswerOption]
    partial_strategy: PartialStrategy = Field(alias="partialStrategy")
    conversation_id: str = Field(alias="conversationId")
    phase: str = "initial"


class CompletedStrategy(BaseModel):
    name: str
    natural_language: str
    parsed_rules: List[Rule]
    pattern: Optional[str] = None
    instrument: Optional[str] = None
    canonical: Optional[CanonicalStrategy] = None
    warnings: List[str] = Field(default_factory=list)


class StrategyCompleteResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["strategy_complete"] = "strategy_complete"
    strategy: CompletedStrategy
    conversation_id: str = Field(alias="conversationId")
    defaults_applied: List[str] = Field(default_factory=list, alias="defaultsApplied")
    phase: str = "complete"
    coordinates: Optional[VisualCoordinates] = None
    controls: Dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["error"] = "error"
    error: str
    validation_errors: List[Dict[str, str]] = Field(default_factory=list, alias="validationErrors")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


BuildResponse = Union[PatternDetectedResponse, CriticalQuestionResponse, StrategyCompleteResponse, ErrorResponse]


def strategy_name(pattern: Optional[str], instrument: Optional[str], rules: List[Rule]) -> str:
    """'ES Opening Range Breakout', or 'NQ 20 EMA' when only the entry names an indicator."""
    base = PATTERN_DISPLAY_NAMES.get(pattern or "")
    if not base:
        entry = find_rule(rules, "entry", "pattern", "trigger")
        indicator = re.search(r"(\d+\s*(?:ema|sma|vwap))", entry.value, re.IGNORECASE) if entry else None
        base = indicator.group(1).upper() if indicator else "Strategy"
    return f"{instrument} {base}" if instrument else base


class StrategyBuilder:
    """Runs one chat message through extraction, gap detection, defaults and canonicalization."""

    def __init__(
        self,
        extractor: Optional[ToolChoiceExtractor] = None,
        conversations: Optional[ConversationStore] = None,
        activity: Optional[ActivityTracker] = None,
    ):
        self.extractor = extractor
        self.conversations = conversations
        self.activity = activity

    async def build(self, request: Union[BuildRequest, Dict[str, Any]]) -> BuildResponse:
        try:
            if not isinstance(request, BuildRequest):
                request = BuildRequest.model_validate(request)
            return await self._build(request)
        except Exception as exc:
            logger.exception("Strategy build failed")
            return ErrorResponse(error=str(exc) or "Strategy build failed")

    async def _build(self, request: BuildRequest) -> BuildResponse:
        message = request.message.strip()
        conversation_id = request.conversation_id or ConversationStore.new_id()

        if self.activity and request.user_id:
            self.activity.record_activity(request.user_id)

        state = None
        if self.conversations and request.conversation_id:
            state = self.conversations.load(request.conversation_id)

        answering = request.critical_answer is not None or request.pattern_confirmation is not None
        if message or not answering:
            quality = validate_input_quality(message, is_answering_question=answering)
            if not quality.can_proceed:
                logger.info("Input rejected before extraction: %s", quality.issues)
                question = quality.question
                return CriticalQuestionResponse(
                    question=question.question,
                    question_type=question.question_type,
                    options=question.options,
                    partial_strategy=request.partial_strategy or PartialStrategy(),
                    conversation_id=conversation_id,
                )

        partial = request.partial_strategy
        prior_rules: List[Rule] = list(partial.rules) if partial else list(state.rules) if state else []
        confirmed_pattern = (partial.pattern if partial else None) or (state.pattern if state else None)
        instrument = (partial.instrument if partial else None) or (state.instrument if state else None)
        history = list(request.conversation_history) or (list(state.history) if state else [])
        is_follow_up = answering or state is not None or bool(history)

        logger.debug("Message focus: %s", detect_current_focus(message))

        extracted_missing: Optional[List[str]] = None
        if is_follow_up and history and message and self.extractor is not None:
            result = await self.extractor.extract([*history, ConversationMessage(role="user", content=message)])
            rules = merge_rules(prior_rules, components_to_rules(result.components))
            confirmed_pattern = result.components.pattern or confirmed_pattern
            instrument = result.components.instrument or instrument
            extracted_missing = list(result.missing_critical)
            if "stopLoss" not in extracted_missing and not has_committed_stop(result.components.stop_loss):
                extracted_missing.insert(0, "stopLoss")
        else:
            rules = extract_rules(message, prior_rules) if message else prior_rules

        clarification = clarifying_question(message) if message and not answering else None
        if clarification:
            self._save(conversation_id, rules, confirmed_pattern, instrument, history, message)
            logger.info("Asking for clarification: %s", clarification.question_type)
            return CriticalQuestionResponse(
                question=clarification.question,
                question_type=clarification.question_type,
                options=clarification.options,
                partial_strategy=PartialStrategy(rules=rules, pattern=confirmed_pattern, instrument=instrument),
                conversation_id=conversation_id,
                phase=detect_phase(rules),
            )

        detected_pattern, confidence = detect_pattern(message)
        if not is_follow_up and detected_pattern and confidence in ("high", "medium"):
            self._save(conversation_id, rules, None, instrument, history, message)
            logger.info("Pattern detected on first message: %s (%s)", detected_pattern, confidence)
            return PatternDetectedResponse(
                pattern=detected_pattern,
                pattern_name=PATTERN_DISPLAY_NAMES[detected_pattern],
                field_count=PATTERN_FIELD_COUNTS.get(detected_pattern, 8),
                conversation_id=conversation_id,
                original_message=message,
            )

        confirmation = request.pattern_confirmation
        if confirmation and confirmation.confirmed and confirmation.pattern:
            confirmed_pattern = confirmation.pattern

        answered: Optional[str] = None
        if request.critical_answer:
            answer_rule = answer_to_rule(request.critical_answer.question_type, request.critical_answer.value)
            if answer_rule:
                rules = merge_rules(rules, [answer_rule])
                answered = request.critical_answer.question_type
                if answered == "instrument":
                    instrument = answer_rule.value

        instrument_rule = find_rule(rules, "instrument", "symbol")
        instrument = instrument or (instrument_rule.value if instrument_rule else None)

        if extracted_missing is not None:
            still_missing = set(detect_missing_critical(rules))
            missing = [f for f in extracted_missing if f != answered or f in still_missing]
        else:
            missing = detect_missing_critical(rules)

        phase = detect_phase(rules)
        question = next_question(missing, confirmed_pattern or detected_pattern)
        if question:
            self._save(conversation_id, rules, confirmed_pattern, instrument, history, message)
            logger.info("Asking critical question: %s (phase %s)", question.question_type, phase)
            return CriticalQuestionResponse(
                question=question.question,
                question_type=question.question_type,
                options=question.options,
                partial_strategy=PartialStrategy(rules=rules, pattern=confirmed_pattern, instrument=instrument),
                conversation_id=conversation_id,
                phase=phase,
            )

        context = " ".join([*(m.content for m in history if m.role == "user"), message])
        defaults = apply_defaults(rules, context, pattern=confirmed_pattern)
        pattern = confirmed_pattern or defaults.pattern
        canonical = build_canonical_strategy(defaults.rules, confirmed_pattern)
        self._save(conversation_id, defaults.rules, pattern, instrument, history, message)

        if not canonical.success:
            logger.warning("Strategy failed validation: %s", canonical.errors)
            return ErrorResponse(
                error="Strategy failed validation",
                validation_errors=canonical.errors,
                conversation_id=conversation_id,
            )

        params = parameters_from_canonical(canonical.canonical)
        coordinates = derive_coordinates(params) if params else None

        logger.info(
            "Strategy complete: pattern=%s instrument=%s defaults=%s",
            pattern, instrument, defaults.defaults_applied,
        )
        return StrategyCompleteResponse(
            strategy=CompletedStrategy(
                name=strategy_name(pattern, instrument, defaults.rules),
                natural_language=message,
                parsed_rules=defaults.rules,
                pattern=pattern,
                instrument=instrument,
                canonical=canonical.canonical,
                warnings=canonical.warnings,
            ),
            conversation_id=conversation_id,
            defaults_applied=defaults.defaults_applied,
            phase=detect_phase(defaults.rules),
            coordinates=coordinates,
            controls=controls_for_rules(defaults.rules),
        )

    def _save(
        self,
        conversation_id: str,
        rules: List[Rule],
        pattern: Optional[str],
        instrument: Optional[str],
        history: List[ConversationMessage],
        message: str,
    ) -> None:
        if self.conversations is None:
            return
        if message:
            history = [*history, ConversationMessage(role="user", content=message)]
        self.conversations.save(
            ConversationState(
                conversation_id=conversation_id,
                rules=rules,
                pattern=pattern,
                instrument=instrument,
                history=history,
            )
        )
