"""
Priority-ordered rule tables.

Several stages of the pipeline map free text onto a closed vocabulary by
trying regexes top to bottom and stopping at the first hit. Each of them
declares an ordered tuple of TableRule entries and calls `first_match` (or
`claim_matches` when every non-overlapping hit is wanted), so the tie-break
policy lives in the table order and nowhere else.
"""

from __future__ import annotations

import re
from typing import Any, Callable, Dict, List, Optional, Pattern, Sequence, Tuple, Union

# Builder receives the regex match and returns the table's payload for it.
Builder = Callable[["re.Match[str]"], Any]


class TableRule:
    """
    One row of an ordered rule table.

    `scope` groups rows that compete for the same words: a span claimed by
    one row can only be claimed again by a row in a different scope.
    """

    __slots__ = ("name", "pattern", "build", "scope")

    def __init__(
        self,
        name: str,
        pattern: Union[str, Pattern[str]],
        build: Builder,
        scope: str = "default",
    ):
        self.name = name
        self.pattern = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        self.build = build
        self.scope = scope

    def __repr__(self) -> str:
        return f"TableRule({self.name!r}, {self.pattern.pattern!r})"


def constant(value: Any) -> Builder:
    """Builder that ignores the match and returns `value`."""
    return lambda _match: value


def first_match(table: Sequence[TableRule], text: str) -> Optional[Tuple[TableRule, Any]]:
    """
    Return (rule, payload) for the first rule in `table` whose pattern
    matches anywhere in `text`, or None when no rule matches.
    """
    for rule in table:
        match = rule.pattern.search(text)
        if match:
            return rule, rule.build(match)
    return None


def _overlaps(span: Tuple[int, int], claimed: List[Tuple[int, int]]) -> bool:
    start, end = span
    return any(start < c_end and c_start < end for c_start, c_end in claimed)


def claim_spans(table: Sequence[TableRule], text: str) -> List[Tuple[Tuple[int, int], TableRule, Any]]:
    """
    Walk the table in order and collect every non-overlapping match with
    its span.

    Within a scope, a span claimed by an earlier row cannot be claimed by a
    later one, so when two rows could read the same words the first-listed
    row wins. Results are returned in table order.
    """
    claimed: Dict[str, List[Tuple[int, int]]] = {}
    results: List[Tuple[Tuple[int, int], TableRule, Any]] = []
    for rule in table:
        spans = claimed.setdefault(rule.scope, [])
        for match in rule.pattern.finditer(text):
            span = match.span()
            if span[0] == span[1] or _overlaps(span, spans):
                continue
            spans.append(span)
            results.append((span, rule, rule.build(match)))
    return results


def claim_matches(table: Sequence[TableRule], text: str) -> List[Tuple[TableRule, Any]]:
    """`claim_spans` without the spans."""
    return [(rule, payload) for _span, rule, payload in claim_spans(table, text)]
