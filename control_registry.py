"""
Registry mapping a rule label to the kind of edit control that fits it.

Entries are tried in order and the first match wins. The last entry must be
a catch-all; the registry is checked when this module is imported so a bad
table fails at startup rather than on some request.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from rule_table import TableRule, constant, first_match
from strategy_models import Rule

CONTROL_KINDS = ("stop_loss", "profit_target", "position_sizing", "session", "generic")

CATCH_ALL = r"[\s\S]*"


class ControlRegistryError(RuntimeError):
    """The label → control registry is misconfigured."""


CONTROL_REGISTRY: Tuple[TableRule, ...] = (
    # "Time Stop" is a session window, not a stop loss
    TableRule("stop_loss", r"^(?!.*\btime\b).*(?:stop|loss)|\bsl\b", constant("stop_loss")),
    TableRule("profit_target", r"target|profit|reward", constant("profit_target")),
    TableRule("position_sizing", r"position|sizing|risk", constant("position_sizing")),
    TableRule("session", r"session|time|hours", constant("session")),
    TableRule("generic", CATCH_ALL, constant("generic")),
)


def validate_registry(registry: Iterable[TableRule]) -> None:
    registry = list(registry)
    errors: List[str] = []

    if not registry:
        raise ControlRegistryError("control registry is empty")

    names = [entry.name for entry in registry]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        errors.append(f"duplicate entries: {duplicates}")

    for entry in registry:
        kind = entry.build(None)
        if kind not in CONTROL_KINDS:
            errors.append(f"entry {entry.name!r} maps to unknown control kind {kind!r}")

    last = registry[-1]
    if last.pattern.pattern != CATCH_ALL:
        errors.append("last entry must be the catch-all so every label resolves")
    for entry in registry[:-1]:
        if entry.pattern.pattern == CATCH_ALL:
            errors.append(f"catch-all entry {entry.name!r} shadows the entries after it")

    if errors:
        raise ControlRegistryError("; ".join(errors))


validate_registry(CONTROL_REGISTRY)


def control_for_label(label: str) -> str:
    hit = first_match(CONTROL_REGISTRY, label.lower())
    # Unreachable while the catch-all is in place.
    if hit is None:
        raise ControlRegistryError(f"no control registered for label {label!r}")
    return hit[1]


def controls_for_rules(rules: Iterable[Rule]) -> Dict[str, str]:
    """Control kind for each rule label."""
    return {rule.label: control_for_label(rule.label) for rule in rules}