"""
Deterministic single-message extraction.

A fast path with no network call: ordered regex tables read the supported
vocabulary (instruments, pattern keywords, entry triggers, stop, target,
sizing, direction, session and filter phrasing) out of one message. It keeps
no state, so the caller passes in the rules accumulated so far.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Tuple

from rule_accumulator import merge_rules
from rule_table import TableRule, claim_matches, claim_spans, constant, first_match
from strategy_models import PATTERN_DISPLAY_NAMES, Rule

logger = logging.getLogger(__name__)

# A free-text value runs until punctuation or the start of the next clause.
_VALUE_END = (
    r"(?=\s*(?:[,;!?]|\.(?!\d)|\band\b|\bwith\b|\bstop\b|\btarget\b"
    r"|\btake\s+profit\b|\bprofit\b|\bsize\b|\bsizing\b|$))"
)
_CONNECTIVE = r"\s*(?:(?:is|at|of|will\s+be|would\s+be|goes|=|:)\s*)?"
_NUMBER = r"\d+(?:\.\d+)?"
# A clock time needs minutes or am/pm so "10-20 ticks" is not a session.
_TIME = r"\d{1,2}(?::\d{2}\s*(?:am|pm)?|\s*(?:am|pm))"

ORB_REGEX = r"\b(?:ORB|opening\s?range(?:\s?break\s?out)?|open\s?range)\b"
EMA_PULLBACK_REGEX = (
    r"\b(?:\d+\s*-?\s*(?:period\s+)?ema\s+(?:pull\s?back|bounce|retrace)\w*"
    r"|pull\s?backs?\s+(?:in)?to\s+(?:the\s+)?\d*\s*-?\s*ema"
    r"|ema\s+pull\s?backs?)\b"
)
PULLBACK_REGEX = r"\b(?:pull\s?backs?|retrace(?:ment)?s?)\b"
BREAKOUT_REGEX = r"\b(?:break\s?outs?|level\s?break)\b"

# Micros are listed before their full-size contracts.
INSTRUMENT_TABLE: Tuple[TableRule, ...] = (
    TableRule("mes", r"\b(?:MES|micro\s+(?:e-?mini\s+)?s&?p(?:\s?500)?)\b", constant("MES")),
    TableRule("mnq", r"\b(?:MNQ|micro\s+(?:e-?mini\s+)?(?:nasdaq|nq))\b", constant("MNQ")),
    TableRule("mym", r"\bMYM\b", constant("MYM")),
    TableRule("m2k", r"\bM2K\b", constant("M2K")),
    TableRule("mcl", r"\bMCL\b", constant("MCL")),
    TableRule("mgc", r"\bMGC\b", constant("MGC")),
    TableRule("es", r"\b(?:e-?mini\s+)?(?:ES|s&p(?:\s?500)?|spx)(?![\w&])", constant("ES")),
    TableRule("nq", r"\b(?:e-?mini\s+)?(?:NQ|nasdaq(?:\s?100)?)\b", constant("NQ")),
    TableRule("ym", r"\b(?:YM|dow(?:\s+jones)?)\b", constant("YM")),
    TableRule("rty", r"\b(?:RTY|russell(?:\s?2000)?)\b", constant("RTY")),
    TableRule("cl", r"\b(?:CL|crude(?:\s+oil)?)\b", constant("CL")),
    TableRule("gc", r"\b(?:GC|gold)\b", constant("GC")),
    # case-sensitive: lowercase "si" is a common word
    TableRule("si", re.compile(r"\bSI\b|\b[Ss]ilver\b"), constant("SI")),
)

# (pattern, confidence); specific phrasings before generic keywords
PATTERN_TABLE: Tuple[TableRule, ...] = (
    TableRule("opening_range_breakout", ORB_REGEX, constant(("opening_range_breakout", "high"))),
    TableRule("ema_pullback", EMA_PULLBACK_REGEX, constant(("ema_pullback", "high"))),
    TableRule("pullback", PULLBACK_REGEX, constant(("ema_pullback", "medium"))),
    TableRule("breakout", BREAKOUT_REGEX, constant(("breakout", "medium"))),
)

DIRECTION_TABLE: Tuple[TableRule, ...] = (
    TableRule(
        "both",
        r"\b(?:longs?\s*(?:and|or|&|/)\s*shorts?|shorts?\s*(?:and|or|&|/)\s*longs?"
        r"|both\s+(?:directions?|ways|sides)|either\s+direction)\b",
        constant("both"),
    ),
    TableRule("long", r"\b(?:longs?\s+only|only\s+longs?|go(?:ing)?\s+long|buy(?:s|ing)?|bullish)\b", constant("long")),
    TableRule("short", r"\b(?:shorts?\s+only|only\s+shorts?|go(?:ing)?\s+short|sell(?:s|ing)?|bearish)\b", constant("short")),
)


def _render(template: str, match: "re.Match[str]") -> str:
    groups = {key: (value or "").strip() for key, value in match.groupdict().items()}
    return re.sub(r"\s+", " ", template.format(match.group(0).strip(), **groups)).strip()


def _rule(category: str, label: str, template: str = "{value}"):
    def build(match: "re.Match[str]") -> Rule:
        return Rule(category=category, label=label, value=_render(template, match))

    return build


PHRASE_TABLE: Tuple[TableRule, ...] = (
    # Entry triggers
    TableRule(
        "entry_break",
        r"\b(?:breaks?|breaking|break\s?out)\s+(?:out\s+)?(?:above|below|of)\s+(?:the\s+)?"
        r"(?:[\w-]+\s+){0,4}?(?:high|low|range|level|resistance|support)\b",
        _rule("entry", "Entry Trigger", "{0}"),
    ),
    TableRule(
        "entry_pullback",
        r"\bpull\s?backs?\s+(?:in)?to\s+(?:the\s+)?\d+\s*-?\s*(?:period\s+)?(?:ema|sma|ma|vwap)\b",
        _rule("entry", "Entry Trigger", "{0}"),
    ),
    TableRule(
        "entry_bounce",
        r"\b(?:bounces?|rejection)\s+(?:off|from|of)\s+(?:the\s+)?(?:[\w-]+\s+){0,3}?"
        r"(?:ema|sma|vwap|support|resistance|level)\b",
        _rule("entry", "Entry Trigger", "{0}"),
    ),
    TableRule(
        "entry_explicit",
        r"\b(?:enter|entry|get\s+in)\s+(?:on|when|at|if)\s+(?P<value>.+?)" + _VALUE_END,
        _rule("entry", "Entry Trigger"),
    ),
    # ORB range window
    TableRule(
        "range_period",
        r"\b(?:first\s+)?(?P<value>\d+)\s*-?\s*min(?:ute)?s?\s+(?:opening\s+)?(?:range|orb)\b",
        _rule("setup", "Range Period", "{value} minutes"),
    ),
    # Stop loss
    TableRule(
        "stop_size_first",
        r"\b(?P<value>" + _NUMBER + r"\s*(?:ticks?|points?|pts?|atr))\s*-?\s*stop(?:\s*-?\s*loss)?\b",
        _rule("exit", "Stop Loss"),
    ),
    TableRule(
        "stop_phrase",
        r"\b(?:stop(?:\s*-?\s*loss)?|sl)(?!\s+trading)" + _CONNECTIVE + r"(?P<value>(?!target\b).+?)" + _VALUE_END,
        _rule("exit", "Stop Loss"),
    ),
    TableRule(
        "stop_risking",
        r"\brisk(?:ing)?\s+(?P<value>" + _NUMBER + r"\s*(?:ticks?|points?|pts?))\b",
        _rule("exit", "Stop Loss"),
    ),
    # Profit target
    TableRule(
        "target_phrase",
        r"\b(?:profit\s*target|take\s*profit|target|tp)" + _CONNECTIVE + r"(?P<value>.+?)" + _VALUE_END,
        _rule("exit", "Profit Target"),
    ),
    TableRule(
        "target_ratio",
        r"\b1\s*:\s*" + _NUMBER + r"(?!\s*(?:am|pm))(?:\s*(?:r:r|rr|risk\s*(?::|to)\s*reward))?",
        _rule("exit", "Profit Target", "{0}"),
    ),
    TableRule(
        "target_r_multiple",
        r"\b(?P<value>" + _NUMBER + r")\s*R\b(?!:)",
        _rule("exit", "Profit Target", "{value}R"),
    ),
    # Position sizing
    TableRule(
        "sizing_percent",
        r"\b(?:risk(?:ing)?\s+)?(?P<value>" + _NUMBER + r"\s*%)\s*(?:risk|of\s+(?:my\s+)?account|per\s+trade)"
        r"(?:\s+per\s+trade)?",
        _rule("risk", "Position Sizing", "{value} risk per trade"),
    ),
    TableRule(
        "sizing_risk_percent",
        r"\brisk(?:ing)?\s+(?P<value>" + _NUMBER + r"\s*%)",
        _rule("risk", "Position Sizing", "{value} risk per trade"),
    ),
    TableRule(
        "sizing_contracts",
        r"\b(?:max(?:imum)?\s+)?\d+\s*(?:contracts?|lots?)\b",
        _rule("risk", "Position Sizing", "{0}"),
    ),
    # Session
    TableRule(
        "session_time_range",
        r"\b" + _TIME + r"\s*(?:-|to|until)\s*" + _TIME + r"(?:\s*(?:ET|EST|EDT|CT|CST|PT|PST|UTC)\b)?",
        _rule("timeframe", "Session", "{0}"),
    ),
    TableRule(
        "session_named",
        r"\b(?P<value>(?:NY|new\s?york|london|asian?|tokyo|RTH|globex|overnight)(?:\s+(?:session|hours|open))?)\b",
        _rule("timeframe", "Session"),
    ),
    TableRule(
        "session_window",
        r"\b(?P<value>(?:first|last)\s+(?:hour|\d+\s*min(?:ute)?s?)(?:\s+of\s+(?:the\s+)?(?:session|day|open))?)\b",
        _rule("timeframe", "Session"),
    ),
    # Filters
    TableRule(
        "filter_indicator",
        r"\b(?P<value>(?:RSI|ADX|VWAP|volume)\s*(?:is\s+)?(?:above|below|over|under|>|<)\s*(?:\d+(?:\.\d+)?)?)",
        _rule("filters", "Indicator Filter"),
    ),
    TableRule(
        "filter_conditional",
        r"\bonly\s+(?:trade\s+)?(?P<value>(?:when|if)\s+.+?)" + _VALUE_END,
        _rule("filters", "Trade Filter"),
    ),
)


def detect_instrument(message: str) -> Optional[str]:
    hit = first_match(INSTRUMENT_TABLE, message)
    return hit[1] if hit else None


def detect_instruments(message: str) -> List[str]:
    """Every distinct instrument named in `message`, in order of mention."""
    found: List[str] = []
    for _span, _row, symbol in sorted(claim_spans(INSTRUMENT_TABLE, message), key=lambda hit: hit[0]):
        if symbol not in found:
            found.append(symbol)
    return found


def detect_pattern(message: str) -> Tuple[Optional[str], Optional[str]]:
    """Return (pattern, confidence) for the first pattern phrasing found, or (None, None)."""
    hit = first_match(PATTERN_TABLE, message)
    if not hit:
        return None, None
    return hit[1]


def detect_direction(message: str) -> Optional[str]:
    hit = first_match(DIRECTION_TABLE, message)
    return hit[1] if hit else None


def extract_message_rules(message: str) -> List[Rule]:
    """Every rule the tables can read out of `message`, in table order."""
    rules: List[Rule] = []

    instrument = detect_instrument(message)
    if instrument:
        rules.append(Rule(category="setup", label="Instrument", value=instrument))

    pattern, _confidence = detect_pattern(message)
    if pattern:
        rules.append(Rule(category="entry", label="Pattern", value=PATTERN_DISPLAY_NAMES[pattern]))

    direction = detect_direction(message)
    if direction:
        rules.append(Rule(category="entry", label="Direction", value=direction.capitalize()))

    rules.extend(payload for _row, payload in claim_matches(PHRASE_TABLE, message))
    return rules


def extract_rules(message: str, existing_rules: Iterable[Rule]) -> List[Rule]:
    """
    Extract rules from one user message and merge them into the rules
    accumulated so far. Earlier turns cannot be recovered from here; the
    caller owns `existing_rules`.
    """
    incoming = extract_message_rules(message)
    logger.debug("Pattern extractor read %d rule(s) from message", len(incoming))
    return merge_rules(existing_rules, incoming)
