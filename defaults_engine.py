"""
Defaulting of non-critical strategy fields.

Runs after user-stated and extracted rules are merged. Stop loss and
instrument are never defaulted; every rule added here is marked
`is_defaulted=True, source="default"` and named in `defaults_applied`.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional

from pydantic import BaseModel, Field

from rule_accumulator import normalize_label
from rule_table import TableRule, constant, first_match
from strategy_models import PATTERN_DISPLAY_NAMES, SUPPORTED_PATTERNS, Rule

logger = logging.getLogger(__name__)


class DefaultRule(NamedTuple):
    category: str
    label: str
    value: str
    explanation: str


class DefaultsResult(BaseModel):
    rules: List[Rule]
    defaults_applied: List[str] = Field(default_factory=list)
    pattern: Optional[str] = None


UNIVERSAL_DEFAULTS: Dict[str, DefaultRule] = {
    "target": DefaultRule(
        "exit", "Profit Target", "1:2 risk:reward",
        "Standard 1:2 risk:reward ratio.",
    ),
    "sizing": DefaultRule(
        "risk", "Position Sizing", "1% risk per trade",
        "Conservative sizing: no more than 1% of the account at risk per trade.",
    ),
    "direction": DefaultRule(
        "entry", "Direction", "Both",
        "No directional bias stated, so both long and short setups are taken.",
    ),
    "session": DefaultRule(
        "timeframe", "Session", "NY Session (9:30 AM - 4:00 PM ET)",
        "Most liquid hours for US index futures.",
    ),
}

PATTERN_DEFAULTS: Dict[str, Dict[str, DefaultRule]] = {
    "opening_range_breakout": {
        "range_period": DefaultRule(
            "setup", "Range Period", "15 minutes",
            "Standard opening range: the first 15 minutes after the open (9:30-9:45 AM ET).",
        ),
    },
}

# Trading styles layered on top of whichever pattern is confirmed.
STYLE_DEFAULTS: Dict[str, Dict[str, DefaultRule]] = {
    "vwap": {
        "session": DefaultRule(
            "timeframe", "Session", "NY Morning (9:30 AM - 12:00 PM ET)",
            "VWAP setups are most reliable in the high-volume morning session.",
        ),
    },
    "scalp": {
        "target": DefaultRule(
            "exit", "Profit Target", "1:1 R:R",
            "Scalps trade a higher win rate for a 1:1 reward.",
        ),
    },
}

# Reads the setup out of the message context; first match wins.
CONTEXT_PATTERN_TABLE = (
    TableRule("opening_range_breakout", r"\b(?:ORB|opening\s?range|open\s?range)\b", constant("opening_range_breakout")),
    TableRule("ema_pullback", r"\b(?:\d+\s?EMA\s?(?:pullback|bounce|retrace)|pullback|pull\s?back|retrace)", constant("ema_pullback")),
    TableRule("breakout", r"\b(?:breakout|break\s?out|level\s?break)", constant("breakout")),
)

STYLE_TABLE = (
    TableRule("vwap", r"\bVWAP\b", constant("vwap")),
    TableRule("scalp", r"\b(?:scalp|scalping)", constant("scalp")),
)

ENTRY_DESCRIPTIONS = {
    "opening_range_breakout": "Opening Range Breakout",
    "ema_pullback": "EMA Pullback",
    "breakout": "Breakout",
}


def detect_context_pattern(message: str) -> Optional[str]:
    hit = first_match(CONTEXT_PATTERN_TABLE, message or "")
    return hit[1] if hit else None


def detect_styles(message: str) -> List[str]:
    """Every style named in `message`, in table order."""
    return [row.name for row in STYLE_TABLE if row.pattern.search(message or "")]


def _has_target(rule: Rule) -> bool:
    label, value = normalize_label(rule.label), rule.value.lower()
    if any(word in label for word in ("target", "profit", "reward")):
        return True
    return bool(re.search(r"\b\d+:\d+\b", value)) and not re.search(r"am|pm|\d{2}:\d{2}", value)


def _has_sizing(rule: Rule) -> bool:
    label, value = normalize_label(rule.label), rule.value.lower()
    if any(word in label for word in ("size", "sizing", "position", "contract")):
        return True
    return "risk" in label and ("%" in value or "contract" in value)


def _has_direction(rule: Rule) -> bool:
    return "direction" in normalize_label(rule.label)


def _has_session(rule: Rule) -> bool:
    label = normalize_label(rule.label)
    return any(word in label for word in ("session", "hours", "window")) or (
        "time" in label and "stop" not in label
    )


def _has_range_period(rule: Rule) -> bool:
    label = normalize_label(rule.label)
    return "range" in label and any(word in label for word in ("period", "time", "duration"))


PRESENCE_CHECKS: Dict[str, Callable[[Rule], bool]] = {
    "target": _has_target,
    "sizing": _has_sizing,
    "direction": _has_direction,
    "session": _has_session,
    "range_period": _has_range_period,
}


def has_component(rules: Iterable[Rule], component: str) -> bool:
    check = PRESENCE_CHECKS[component]
    return any(check(rule) for rule in rules)


def _as_rule(default: DefaultRule) -> Rule:
    return Rule(
        category=default.category,
        label=default.label,
        value=default.value,
        is_defaulted=True,
        source="default",
        explanation=default.explanation,
    )


def apply_defaults(rules: Iterable[Rule], message_context: str = "", pattern: Optional[str] = None) -> DefaultsResult:
    """
    Fill non-critical gaps in `rules`.

    `pattern` is a confirmed pattern key; when given it selects the
    pattern-specific defaults and lets an entry trigger be defaulted.
    Otherwise the setup style is read from `message_context` and no entry
    trigger is invented.
    """
    rules = list(rules)
    context_pattern = pattern or detect_context_pattern(message_context)

    defaults = dict(UNIVERSAL_DEFAULTS)
    defaults.update(PATTERN_DEFAULTS.get(context_pattern or "", {}))
    for style in detect_styles(message_context):
        defaults.update(STYLE_DEFAULTS[style])

    applied: List[str] = []
    result = list(rules)
    for component, default in defaults.items():
        if has_component(rules, component):
            continue
        result.append(_as_rule(default))
        applied.append(default.label)

    if pattern in SUPPORTED_PATTERNS and not any(
        r.category == "entry" and normalize_label(r.label) != "direction" for r in rules
    ):
        result.append(
            Rule(
                category="entry",
                label="Entry Trigger",
                value=ENTRY_DESCRIPTIONS[pattern],
                is_defaulted=True,
                source="default",
                explanation=f"Entry taken from the confirmed {PATTERN_DISPLAY_NAMES[pattern]} pattern.",
            )
        )
        applied.append("Entry Trigger")

    if applied:
        logger.info("Applied defaults: %s", ", ".join(applied))
    return DefaultsResult(rules=result, defaults_applied=applied, pattern=context_pattern)
