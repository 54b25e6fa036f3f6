"""
Conversation phase detection.

The phase is a pure function of the accumulated rules: it names the first
required component (entry, stop, target, sizing) that is still missing.
"""

from __future__ import annotations

import re
from typing import Iterable, List

from strategy_models import Rule

PHASES = (
    "initial",
    "entry_definition",
    "stop_definition",
    "target_definition",
    "sizing_definition",
    "complete",
)

_INSTRUMENT_VALUE = re.compile(r"\b(es|nq|mes|mnq|ym|rty|cl|gc)\b", re.IGNORECASE)


def _has_instrument(rules: List[Rule]) -> bool:
    for rule in rules:
        label = rule.label.lower()
        if "instrument" in label or "symbol" in label:
            return True
        if rule.category == "setup" and _INSTRUMENT_VALUE.search(rule.value):
            return True
    return False


def _has_entry(rules: List[Rule]) -> bool:
    return any(
        r.category == "entry" or "entry" in r.label.lower() or "trigger" in r.label.lower()
        for r in rules
    )


def _has_stop(rules: List[Rule]) -> bool:
    for rule in rules:
        label = rule.label.lower()
        if "stop" in label and "time" not in label:
            return True
        if re.search(r"\bsl\b", label):
            return True
    return False


def _has_target(rules: List[Rule]) -> bool:
    for rule in rules:
        label = rule.label.lower()
        if "target" in label or "profit" in label or re.search(r"\btp\b", label):
            return True
    return False


def _has_sizing(rules: List[Rule]) -> bool:
    for rule in rules:
        label = rule.label.lower()
        if "position" in label or "size" in label or "sizing" in label:
            return True
        if "risk" in label and "%" in rule.value:
            return True
    return False


def detect_phase(rules: Iterable[Rule]) -> str:
    """
    Return the conversation phase for `rules`.

    Without any instrument/setup context a single stray rule keeps the
    conversation in 'initial'.
    """
    rules = list(rules)
    if not rules:
        return "initial"
    if not _has_instrument(rules) and len(rules) < 2:
        return "initial"
    if not _has_entry(rules):
        return "entry_definition"
    if not _has_stop(rules):
        return "stop_definition"
    if not _has_target(rules):
        return "target_definition"
    if not _has_sizing(rules):
        return "sizing_definition"
    return "complete"


_FOCUS_KEYWORDS = (
    ("entry", ("entry", "trigger", "signal", "enter")),
    ("stop", ("stop", " sl ")),
    ("target", ("target", "profit", "take profit", " tp ")),
    ("sizing", ("size", "position", "contracts", "risk")),
    ("timeframe", ("timeframe", "chart", "min")),
    ("session", ("session", "hours", "rth")),
    ("filters", ("filter", "condition", "only")),
)


def detect_current_focus(message: str) -> str:
    """Which component the user appears to be talking about in `message`."""
    lowered = f" {message.lower()} "
    for focus, keywords in _FOCUS_KEYWORDS:
        if focus == "stop" and "stop" in lowered and "time" in lowered:
            continue
        if any(keyword in lowered for keyword in keywords):
            return focus
    return "general"
