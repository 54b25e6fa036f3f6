"""
Rule accumulation across conversation turns.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Tuple

from strategy_models import PATTERN_DISPLAY_NAMES, ExtractedComponents, Rule

logger = logging.getLogger(__name__)


def normalize_label(label: str) -> str:
    """'Stop-Loss' -> 'stop loss'"""
    lowered = label.lower()
    lowered = re.sub(r"[-_]", " ", lowered)
    lowered = re.sub(r"[^a-z0-9\s]", "", lowered)
    return re.sub(r"\s+", " ", lowered).strip()


def rule_key(rule: Rule) -> Tuple[str, str]:
    return rule.category, normalize_label(rule.label)


def merge_rules(existing: Iterable[Rule], incoming: Iterable[Rule]) -> List[Rule]:
    """
    Merge `incoming` into `existing` with last-write-wins per
    (category, label) key.

    Each incoming rule evicts any rule with the same key and is appended at
    the end, so merging the same batch twice gives the same sequence.
    """
    merged: List[Rule] = list(existing)
    incoming = list(incoming)
    for rule in incoming:
        key = rule_key(rule)
        merged = [r for r in merged if rule_key(r) != key]
        merged.append(rule)

    if incoming:
        logger.debug("Merged %d incoming rule(s); %d total", len(incoming), len(merged))
    return merged


def find_rule(rules: Iterable[Rule], *label_fragments: str) -> Optional[Rule]:
    """Last rule whose normalized label contains any of the fragments."""
    found: Optional[Rule] = None
    for rule in rules:
        label = normalize_label(rule.label)
        if any(fragment in label for fragment in label_fragments):
            found = rule
    return found


def strip_defaults(rules: Iterable[Rule]) -> List[Rule]:
    return [rule for rule in rules if not rule.is_defaulted]


def replace_default(rules: Iterable[Rule], label: str, new_value: str) -> List[Rule]:
    """Overwrite the value of the rule labelled `label` and mark it user-stated."""
    target = normalize_label(label)
    updated: List[Rule] = []
    for rule in rules:
        if normalize_label(rule.label) == target:
            rule = rule.model_copy(
                update={
                    "value": new_value,
                    "is_defaulted": False,
                    "source": "user",
                    "explanation": None,
                }
            )
        updated.append(rule)
    return updated


def components_to_rules(components: ExtractedComponents) -> List[Rule]:
    """Convert a set of extracted components into user rules (non-null slots only)."""
    rules: List[Rule] = []

    if components.instrument:
        rules.append(Rule(category="setup", label="Instrument", value=components.instrument.upper()))

    if components.pattern:
        rules.append(
            Rule(
                category="entry",
                label="Pattern",
                value=PATTERN_DISPLAY_NAMES.get(components.pattern, components.pattern),
            )
        )

    if components.entry_trigger:
        rules.append(Rule(category="entry", label="Entry Trigger", value=components.entry_trigger))

    if components.stop_loss:
        rules.append(Rule(category="exit", label="Stop Loss", value=components.stop_loss))

    if components.profit_target:
        rules.append(Rule(category="exit", label="Profit Target", value=components.profit_target))

    if components.direction:
        rules.append(Rule(category="entry", label="Direction", value=components.direction.capitalize()))

    if components.position_sizing:
        rules.append(Rule(category="risk", label="Position Sizing", value=components.position_sizing))

    if components.session:
        rules.append(Rule(category="timeframe", label="Session", value=components.session))

    return rules
