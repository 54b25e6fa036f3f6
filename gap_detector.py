"""
Gap detection and critical question selection.

Only stop loss and instrument block completion. When either is missing the
pipeline asks exactly one multiple-choice question, stop loss first.
"""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from canonical_schema import lookup_instrument
from canonicalizer import NON_COMMITTAL_STOP, is_stop_label
from pattern_extractor import detect_instrument, detect_instruments, detect_pattern
from rule_accumulator import find_rule
from rule_table import TableRule, constant, first_match
from strategy_models import PATTERN_DISPLAY_NAMES, AnswerOption, CriticalQuestion, Rule

STOP_QUESTION = "How do you set your stop loss?"
INSTRUMENT_QUESTION = "Which instrument do you trade?"

ORB_STOP_OPTIONS = (
    AnswerOption(value="below_range", label="Below opening range low", default=True),
    AnswerOption(value="range_50", label="Middle of range (50%)"),
    AnswerOption(value="fixed_15", label="15 ticks"),
    AnswerOption(value="fixed_20", label="20 ticks"),
)

EMA_PULLBACK_STOP_OPTIONS = (
    AnswerOption(value="structure", label="Below recent swing low", default=True),
    AnswerOption(value="fixed_15", label="15 ticks"),
    AnswerOption(value="atr_1", label="1 ATR from entry"),
)

GENERIC_STOP_OPTIONS = (
    AnswerOption(value="structure", label="Below recent structure", default=True),
    AnswerOption(value="fixed_10", label="10 ticks"),
    AnswerOption(value="fixed_20", label="20 ticks"),
    AnswerOption(value="atr_1", label="1 ATR from entry"),
)

INSTRUMENT_OPTIONS = (
    AnswerOption(value="ES", label="ES (E-mini S&P 500)", default=True),
    AnswerOption(value="NQ", label="NQ (E-mini Nasdaq)"),
    AnswerOption(value="MES", label="MES (Micro E-mini S&P)"),
    AnswerOption(value="MNQ", label="MNQ (Micro E-mini Nasdaq)"),
)

PATTERN_OPTIONS = (
    AnswerOption(value="orb", label="Opening range breakout", default=True),
    AnswerOption(value="pullback", label="Pullback/retracement"),
    AnswerOption(value="breakout", label="Breakout strategy"),
    AnswerOption(value="other", label="Let me describe it"),
)

# Matched against the pattern key; no match falls back to GENERIC_STOP_OPTIONS.
STOP_OPTIONS_TABLE = (
    TableRule("opening_range_breakout", r"^opening_range_breakout$", constant(ORB_STOP_OPTIONS)),
    TableRule("ema_pullback", r"^ema_pullback$", constant(EMA_PULLBACK_STOP_OPTIONS)),
)


def stop_options_for(pattern: Optional[str]) -> Sequence[AnswerOption]:
    hit = first_match(STOP_OPTIONS_TABLE, pattern or "")
    return hit[1] if hit else GENERIC_STOP_OPTIONS


def next_question(missing_critical: Iterable[str], pattern: Optional[str] = None) -> Optional[CriticalQuestion]:
    """
    The single question to ask next, or None when nothing critical is
    missing. None is the signal that the pipeline may canonicalize.
    """
    missing = set(missing_critical)
    if "stopLoss" in missing:
        return CriticalQuestion(
            question=STOP_QUESTION,
            question_type="stopLoss",
            options=[option.model_copy() for option in stop_options_for(pattern)],
        )
    if "instrument" in missing:
        return CriticalQuestion(
            question=INSTRUMENT_QUESTION,
            question_type="instrument",
            options=[option.model_copy() for option in INSTRUMENT_OPTIONS],
        )
    return None


def has_committed_stop(text: Optional[str]) -> bool:
    """A stated stop that actually commits to a placement."""
    return bool(text and text.strip()) and not NON_COMMITTAL_STOP.search(text)


def detect_missing_critical(rules: Iterable[Rule]) -> List[str]:
    """Critical fields still missing from accumulated rules, in asking order."""
    rules = list(rules)
    missing: List[str] = []

    stop_rule = next((r for r in reversed(rules) if is_stop_label(r.label)), None)
    if not (stop_rule and has_committed_stop(stop_rule.value)):
        missing.append("stopLoss")

    if not find_rule(rules, "instrument", "symbol"):
        missing.append("instrument")
    return missing


# ─── Clarifications ────────────────────────────────────────────────

ContradictionType = Literal["conditional", "uncertain", "conflicting"]

CONDITIONAL_WORDS = re.compile(
    r"\b(?:if|when|whichever|depending|based\s+on|unless|alternatively|either)\b", re.IGNORECASE
)
UNCERTAINTY_WORDS = re.compile(
    r"\b(?:maybe|actually|perhaps|not\s+sure|thinking\s+about|could\s+be|might\s+be|idk|i\s+don'?t\s+know|hmm)\b",
    re.IGNORECASE,
)

_CLAUSE_BREAK = re.compile(r"[,;!?…]|\.(?!\d)|\b(?:and|but|or|then)\b", re.IGNORECASE)
_SENTENCE_END = re.compile(r"[.!?](?!\d)")
# "1:2" reads as a ratio; "1:30" is a clock time
_RATIO = r"\b1\s*:\s*(?!\d{2})\d(?:\.\d+)?(?!\d)(?!\s*(?:am|pm)\b)"
_TARGET_CLAUSE = re.compile(r"\b(?:target|tp|profit|reward|r:r|rr)\b|" + _RATIO + r"|\b\d+(?:\.\d+)?\s*R\b", re.IGNORECASE)
_SIZING_CLAUSE = re.compile(r"\b(?:contracts?|lots?|buffer|offset|padding)\b|%", re.IGNORECASE)
_STOP_CLAUSE = re.compile(r"\b(?:stop|sl|stopped|risking)\b", re.IGNORECASE)
_OTHER_CLAUSE = re.compile(
    r"(?<!below )(?<!above )(?<!from )\b(?:enter|entry|trigger|buy|sell|long|short|breaks?|pull\s?backs?|session)\b",
    re.IGNORECASE,
)
_STOP_DISTANCE = re.compile(r"\b\d+(?:\.\d+)?\s*(?:ticks?|points?|pts?)\b|\b\d+(?:\.\d+)?\s*x?\s*atr\b", re.IGNORECASE)
_STOP_STRUCTURE = re.compile(r"\b(?:structure|swing\s+(?:low|high)|support|resistance)\b", re.IGNORECASE)
_TARGET_VALUE = re.compile(
    _RATIO + r"|\b\d+(?:\.\d+)?\s*R\b|\b\d+(?:\.\d+)?\s*(?:ticks?|points?|pts?)\b",
    re.IGNORECASE,
)

CONTRADICTION_QUESTION_TYPES = {"Stop Loss": "stopLoss", "Profit Target": "profitTarget"}


class Contradiction(BaseModel):
    component: str
    values: List[str]
    type: ContradictionType

    @property
    def needs_clarification(self) -> bool:
        return self.type != "conditional"


def _clauses(text: str) -> List[Tuple[int, int]]:
    spans: List[Tuple[int, int]] = []
    start = 0
    for brk in _CLAUSE_BREAK.finditer(text):
        spans.append((start, brk.start()))
        start = brk.end()
    spans.append((start, len(text)))
    return [(s, e) for s, e in spans if text[s:e].strip()]


def _classify(text: str, first: int, last: int) -> ContradictionType:
    # Read qualifiers from the first candidate to the end of its sentence
    end = _SENTENCE_END.search(text, last)
    region = text[first : end.start() if end else len(text)]
    if CONDITIONAL_WORDS.search(region):
        return "conditional"
    if UNCERTAINTY_WORDS.search(region):
        return "uncertain"
    return "conflicting"


def detect_text_contradictions(message: str) -> List[Contradiction]:
    """
    Stop or target values that compete inside one message, such as
    "stop 20 ticks... maybe structure". Each clause contributes at most one
    value per component, so "20 ticks below the swing low" is a single stop.
    """
    text = message or ""
    found: Dict[str, List[Tuple[int, int, str]]] = {"Stop Loss": [], "Profit Target": []}

    # A clause with no topic word of its own continues the previous topic
    topic: Optional[str] = None
    for start, end in _clauses(text):
        clause = text[start:end]
        if _TARGET_CLAUSE.search(clause):
            topic = "Profit Target"
        elif _SIZING_CLAUSE.search(clause):
            topic = None
        elif _STOP_CLAUSE.search(clause):
            topic = "Stop Loss"
        elif _OTHER_CLAUSE.search(clause):
            topic = None

        if topic == "Profit Target":
            hit = _TARGET_VALUE.search(clause)
        elif topic == "Stop Loss":
            hit = _STOP_DISTANCE.search(clause) or _STOP_STRUCTURE.search(clause)
        else:
            continue
        if hit:
            found[topic].append((start, end, re.sub(r"\s+", " ", hit.group(0).strip())))

    contradictions: List[Contradiction] = []
    for component, hits in found.items():
        values: List[str] = []
        for _start, _end, value in hits:
            if value.lower() not in {v.lower() for v in values}:
                values.append(value)
        if len(values) < 2:
            continue
        contradictions.append(
            Contradiction(component=component, values=values, type=_classify(text, hits[0][0], hits[-1][1]))
        )
    return contradictions


def contradiction_question(contradiction: Contradiction) -> CriticalQuestion:
    values = " vs ".join(f'"{value}"' for value in contradiction.values)
    if contradiction.type == "uncertain":
        question = f"You're deciding between options for your {contradiction.component.lower()}: {values}. Which should I use?"
    else:
        question = f"I noticed more than one {contradiction.component.lower()}: {values}. Which one should I use?"
    return CriticalQuestion(
        question=question,
        question_type=CONTRADICTION_QUESTION_TYPES[contradiction.component],
        options=[
            AnswerOption(value=value, label=value, default=index == 0 or None)
            for index, value in enumerate(contradiction.values)
        ],
    )


def multi_instrument_question(message: str) -> Optional[CriticalQuestion]:
    """Ask which contract to build for when one message names several."""
    instruments = detect_instruments(message or "")
    if len(instruments) < 2:
        return None
    options = []
    for index, symbol in enumerate(instruments):
        spec = lookup_instrument(symbol)
        label = f"{symbol} ({spec['full_name']})" if spec else symbol
        options.append(AnswerOption(value=symbol, label=label, default=index == 0 or None))
    return CriticalQuestion(
        question=f"I see {' and '.join(instruments)}. Each gets its own strategy; which should we build first?",
        question_type="instrument",
        options=options,
    )


def clarifying_question(message: str) -> Optional[CriticalQuestion]:
    """
    The question a single message needs answered before its rules can be
    trusted: competing stop or target values first, then several instruments.
    Conditional logic ("20 ticks or structure, whichever is smaller") is kept
    as stated.
    """
    for contradiction in detect_text_contradictions(message):
        if contradiction.needs_clarification:
            return contradiction_question(contradiction)
    return multi_instrument_question(message)


# ─── Input quality ─────────────────────────────────────────────────

EXTREMELY_VAGUE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(buy|sell|trade|go)(\s+(up|down|long|short))?$",
        r"^(make|get|earn)\s*(money|profit)$",
        r"^(when|if)\s*it\s*(goes|moves)$",
        r"^i\s*trade$",
        r"^trading$",
    )
)

VAGUE_INPUT_QUESTION = (
    "I need more details. Can you describe a specific setup? "
    "For example: 'ES opening range breakout' or 'NQ pullback to 20 EMA'"
)


class InputQualityResult(BaseModel):
    can_proceed: bool
    issues: List[str] = Field(default_factory=list)
    question: Optional[CriticalQuestion] = None


def _blocked(issue: str) -> InputQualityResult:
    return InputQualityResult(
        can_proceed=False,
        issues=[issue],
        question=CriticalQuestion(
            question=VAGUE_INPUT_QUESTION,
            question_type="pattern",
            options=[option.model_copy() for option in PATTERN_OPTIONS],
        ),
    )


def validate_input_quality(message: str, is_answering_question: bool = False) -> InputQualityResult:
    """
    Gate run before any extraction. Blocked input comes back with a
    clarifying question instead of an error.
    """
    trimmed = (message or "").strip()

    if not trimmed:
        return _blocked("Please describe your trading strategy")

    # Short answers ("ES", "20") are expected when replying to a question
    if is_answering_question:
        return InputQualityResult(can_proceed=True)

    if len(trimmed) < 3:
        return _blocked("Please describe your trading strategy")

    if not re.search(r"\w", trimmed):
        return _blocked("Please describe your trading strategy in words")

    if any(pattern.search(trimmed) for pattern in EXTREMELY_VAGUE_PATTERNS):
        return _blocked("Please describe a specific trading setup")

    issues: List[str] = []
    if len(trimmed.split()) < 3 and not (detect_pattern(trimmed)[0] or detect_instrument(trimmed)):
        issues.append("Input may be too brief")
    return InputQualityResult(can_proceed=True, issues=issues)


# ─── Answers to questions ──────────────────────────────────────────

STOP_ANSWER_LABELS = {
    "below_range": "Below opening range low",
    "range_50": "50% of opening range",
    "structure": "Below recent structure",
    "atr_1": "1 ATR from entry",
}

ENTRY_ANSWER_LABELS = {
    "orb": "Opening range breakout",
    "pullback": "Pullback to support/MA",
    "vwap": "VWAP cross",
    "breakout": "Breakout of structure",
    "momentum": "Momentum / New highs",
}

PATTERN_ANSWERS = {
    "orb": "opening_range_breakout",
    "pullback": "ema_pullback",
    "breakout": "breakout",
}


def answer_to_rule(question_type: str, value: str) -> Optional[Rule]:
    """
    Turn a selected option (or free-text answer) into a user rule.

    Returns None for answers that carry no rule, such as "Let me describe it".
    """
    value = (value or "").strip()
    if not value:
        return None

    if question_type == "stopLoss":
        fixed = re.fullmatch(r"fixed_(\d+)", value)
        if fixed:
            text = f"{fixed.group(1)} ticks"
        else:
            text = STOP_ANSWER_LABELS.get(value, value)
        return Rule(category="exit", label="Stop Loss", value=text)

    if question_type == "instrument":
        return Rule(category="setup", label="Instrument", value=value.upper())

    if question_type == "pattern":
        pattern = PATTERN_ANSWERS.get(value.lower())
        if not pattern:
            return None
        return Rule(category="entry", label="Pattern", value=PATTERN_DISPLAY_NAMES[pattern])

    if question_type == "direction":
        lowered = value.lower()
        direction = "Long" if "long" in lowered else "Short" if "short" in lowered else "Both"
        return Rule(category="entry", label="Direction", value=direction)
    if question_type == "profitTarget":
        return Rule(category="exit", label="Profit Target", value=value)
    if question_type == "positionSizing":
        return Rule(category="risk", label="Position Sizing", value=value)
    if question_type == "entryTrigger":
        return Rule(category="entry", label="Entry Trigger", value=ENTRY_ANSWER_LABELS.get(value, value))
    return None
