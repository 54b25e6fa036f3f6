"""
Validation utilities for the canonical strategy contract consumed by the
execution and visualization layers.
"""

from __future__ import annotations

import math
import re
from typing import Any, Dict, List, Optional, Tuple

SUPPORTED_PATTERNS = {"opening_range_breakout", "ema_pullback", "breakout"}
DIRECTIONS = {"long", "short", "both"}
STOP_LOSS_TYPES = {"structure", "percentage", "atr_multiple", "fixed_distance", "opposite_side"}
TAKE_PROFIT_TYPES = {"r_multiple", "percentage", "fixed_distance", "structure", "extension"}
POSITION_SIZING_METHODS = {"risk_percent", "fixed_contracts"}
SESSIONS = {"ny", "london", "asia", "all", "custom"}

MAX_RISK_PERCENT = 5.0
MAX_CONTRACTS = 20
ORB_PERIOD_BOUNDS = (5, 120)
EMA_PERIOD_BOUNDS = (5, 200)
BREAKOUT_LOOKBACK_BOUNDS = (5, 100)
MAX_ATR_MULTIPLE = 10.0
MAX_R_MULTIPLE = 20.0

# CME contract specifications: tick size, dollar value per tick, dollar value per point
INSTRUMENT_SPECS: Dict[str, Dict[str, Any]] = {
    "ES": {"symbol": "ES", "full_name": "E-mini S&P 500", "tick_size": 0.25, "tick_value": 12.50, "point_value": 50},
    "MES": {"symbol": "MES", "full_name": "Micro E-mini S&P 500", "tick_size": 0.25, "tick_value": 1.25, "point_value": 5},
    "NQ": {"symbol": "NQ", "full_name": "E-mini Nasdaq-100", "tick_size": 0.25, "tick_value": 5.00, "point_value": 20},
    "MNQ": {"symbol": "MNQ", "full_name": "Micro E-mini Nasdaq-100", "tick_size": 0.25, "tick_value": 0.50, "point_value": 2},
    "YM": {"symbol": "YM", "full_name": "E-mini Dow", "tick_size": 1.0, "tick_value": 5.00, "point_value": 5},
    "MYM": {"symbol": "MYM", "full_name": "Micro E-mini Dow", "tick_size": 1.0, "tick_value": 0.50, "point_value": 0.5},
    "RTY": {"symbol": "RTY", "full_name": "E-mini Russell 2000", "tick_size": 0.10, "tick_value": 5.00, "point_value": 50},
    "M2K": {"symbol": "M2K", "full_name": "Micro E-mini Russell 2000", "tick_size": 0.10, "tick_value": 0.50, "point_value": 5},
    "CL": {"symbol": "CL", "full_name": "Crude Oil", "tick_size": 0.01, "tick_value": 10.00, "point_value": 1000},
    "MCL": {"symbol": "MCL", "full_name": "Micro Crude Oil", "tick_size": 0.01, "tick_value": 1.00, "point_value": 100},
    "GC": {"symbol": "GC", "full_name": "Gold", "tick_size": 0.10, "tick_value": 10.00, "point_value": 100},
    "MGC": {"symbol": "MGC", "full_name": "Micro Gold", "tick_size": 0.10, "tick_value": 1.00, "point_value": 10},
    "SI": {"symbol": "SI", "full_name": "Silver", "tick_size": 0.005, "tick_value": 25.00, "point_value": 5000},
}

INSTRUMENT_ALIASES = {
    "E-MINI": "ES",
    "E-MINI S&P": "ES",
    "S&P": "ES",
    "S&P 500": "ES",
    "SP500": "ES",
    "SPX": "ES",
    "MICRO S&P": "MES",
    "NASDAQ": "NQ",
    "NASDAQ 100": "NQ",
    "MICRO NASDAQ": "MNQ",
    "DOW": "YM",
    "DOW JONES": "YM",
    "RUSSELL": "RTY",
    "RUSSELL 2000": "RTY",
    "CRUDE": "CL",
    "CRUDE OIL": "CL",
    "OIL": "CL",
    "GOLD": "GC",
    "SILVER": "SI",
}

_TIME_OF_DAY = re.compile(r"^\d{2}:\d{2}$")


class StrategyValidationError(ValueError):
    """Raised when a canonical strategy fails validation; `errors` lists every violation."""

    def __init__(self, errors: List[Dict[str, str]]):
        self.errors = errors
        detail = "; ".join(f"{item['path']}: {item['message']}" for item in errors)
        super().__init__(f"Invalid canonical strategy: {detail}")


def lookup_instrument(symbol: Optional[str]) -> Optional[Dict[str, Any]]:
    """Resolve a symbol or common alias ('nasdaq', 'crude oil') to its contract spec."""
    if not symbol:
        return None
    normalized = re.sub(r"\s+", " ", symbol.upper().strip())
    if normalized in INSTRUMENT_SPECS:
        return dict(INSTRUMENT_SPECS[normalized])
    alias = INSTRUMENT_ALIASES.get(normalized)
    if alias:
        return dict(INSTRUMENT_SPECS[alias])
    return None


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _add_error(errors: List[Dict[str, str]], path: str, message: str) -> None:
    errors.append({"path": path, "message": message})


def _require_in_range(
    container: Dict[str, Any],
    key: str,
    bounds: Tuple[float, float],
    path: str,
    errors: List[Dict[str, str]],
    integer: bool = False,
) -> None:
    value = container.get(key)
    low, high = bounds
    if not _is_number(value):
        _add_error(errors, path, "must be a finite number")
    elif integer and float(value) != int(value):
        _add_error(errors, path, "must be an integer")
    elif not low <= value <= high:
        _add_error(errors, path, f"must be between {low} and {high}")


def _validate_instrument(instrument: Any, errors: List[Dict[str, str]]) -> None:
    if instrument is None:
        _add_error(errors, "instrument", "is required")
        return
    if not _is_dict(instrument):
        _add_error(errors, "instrument", "must be an object")
        return
    if instrument.get("symbol") not in INSTRUMENT_SPECS:
        _add_error(errors, "instrument.symbol", f"must be one of: {sorted(INSTRUMENT_SPECS)}")
    for key in ("tick_size", "tick_value", "point_value"):
        value = instrument.get(key)
        if not _is_number(value) or value <= 0:
            _add_error(errors, f"instrument.{key}", "must be a positive number")


def _validate_stop_loss(stop: Any, errors: List[Dict[str, str]]) -> None:
    path = "exit.stop_loss"
    if stop is None:
        _add_error(errors, path, "is required")
        return
    if not _is_dict(stop):
        _add_error(errors, path, "must be an object")
        return

    stop_type = stop.get("type")
    if stop_type not in STOP_LOSS_TYPES:
        _add_error(errors, f"{path}.type", f"must be one of: {sorted(STOP_LOSS_TYPES)}")
        return

    value = stop.get("value")
    if not _is_number(value):
        _add_error(errors, f"{path}.value", "must be a finite number")
        return

    if stop_type == "percentage" and not 0 < value <= 1:
        _add_error(errors, f"{path}.value", "percentage of range must be in (0, 1]")
    if stop_type == "fixed_distance" and value <= 0:
        _add_error(errors, f"{path}.value", "distance must be positive")
    if stop_type == "atr_multiple" and not 0 < value <= MAX_ATR_MULTIPLE:
        _add_error(errors, f"{path}.value", f"ATR multiple must be in (0, {MAX_ATR_MULTIPLE}]")
    if stop_type in {"structure", "opposite_side"} and value < 0:
        _add_error(errors, f"{path}.value", "buffer ticks must be >= 0")

    if stop.get("committed") is False:
        _add_error(errors, path, "stop loss does not commit to a placement; state it in ticks, points, ATR or range terms")


def _validate_take_profit(target: Any, errors: List[Dict[str, str]]) -> None:
    path = "exit.take_profit"
    if not _is_dict(target):
        _add_error(errors, path, "must be an object")
        return

    target_type = target.get("type")
    if target_type not in TAKE_PROFIT_TYPES:
        _add_error(errors, f"{path}.type", f"must be one of: {sorted(TAKE_PROFIT_TYPES)}")
        return

    value = target.get("value")
    if not _is_number(value):
        _add_error(errors, f"{path}.value", "must be a finite number")
    elif target_type == "r_multiple" and not 0 < value <= MAX_R_MULTIPLE:
        _add_error(errors, f"{path}.value", f"R multiple must be in (0, {MAX_R_MULTIPLE}]")
    elif target_type != "structure" and value <= 0:
        _add_error(errors, f"{path}.value", "must be positive")


def _validate_risk(risk: Any, errors: List[Dict[str, str]]) -> None:
    if not _is_dict(risk):
        _add_error(errors, "risk", "must be an object")
        return

    method = risk.get("position_sizing")
    if method not in POSITION_SIZING_METHODS:
        _add_error(errors, "risk.position_sizing", f"must be one of: {sorted(POSITION_SIZING_METHODS)}")

    if method == "risk_percent" or risk.get("risk_percent") is not None:
        value = risk.get("risk_percent")
        if not _is_number(value) or not 0 < value <= MAX_RISK_PERCENT:
            _add_error(errors, "risk.risk_percent", f"must be > 0 and <= {MAX_RISK_PERCENT}")

    _require_in_range(risk, "max_contracts", (1, MAX_CONTRACTS), "risk.max_contracts", errors, integer=True)


def _validate_time(time_config: Any, errors: List[Dict[str, str]]) -> None:
    if not _is_dict(time_config):
        _add_error(errors, "time", "must be an object")
        return
    session = time_config.get("session")
    if session not in SESSIONS:
        _add_error(errors, "time.session", f"must be one of: {sorted(SESSIONS)}")
    for key in ("custom_start", "custom_end"):
        value = time_config.get(key)
        if value is not None and (not isinstance(value, str) or not _TIME_OF_DAY.match(value)):
            _add_error(errors, f"time.{key}", "must be HH:MM")
    if session == "custom" and not (time_config.get("custom_start") and time_config.get("custom_end")):
        _add_error(errors, "time", "custom session requires custom_start and custom_end")


def _validate_entry(pattern: Any, entry: Any, errors: List[Dict[str, str]]) -> None:
    if not _is_dict(entry):
        _add_error(errors, "entry", "must be an object")
        return

    if pattern == "opening_range_breakout":
        orb = entry.get("opening_range")
        if not _is_dict(orb):
            _add_error(errors, "entry.opening_range", "is required for opening_range_breakout")
            return
        _require_in_range(orb, "period_minutes", ORB_PERIOD_BOUNDS, "entry.opening_range.period_minutes", errors, integer=True)
        if orb.get("entry_on") not in {"break_high", "break_low", "both"}:
            _add_error(errors, "entry.opening_range.entry_on", "must be one of: ['both', 'break_high', 'break_low']")

    elif pattern == "ema_pullback":
        ema = entry.get("ema_pullback")
        if not _is_dict(ema):
            _add_error(errors, "entry.ema_pullback", "is required for ema_pullback")
            return
        _require_in_range(ema, "ema_period", EMA_PERIOD_BOUNDS, "entry.ema_pullback.ema_period", errors, integer=True)
        if ema.get("pullback_confirmation") not in {"touch", "close_above", "bounce"}:
            _add_error(
                errors,
                "entry.ema_pullback.pullback_confirmation",
                "must be one of: ['bounce', 'close_above', 'touch']",
            )

    elif pattern == "breakout":
        breakout = entry.get("breakout")
        if not _is_dict(breakout):
            _add_error(errors, "entry.breakout", "is required for breakout")
            return
        _require_in_range(breakout, "lookback_period", BREAKOUT_LOOKBACK_BOUNDS, "entry.breakout.lookback_period", errors, integer=True)
        if breakout.get("level_type") not in {"resistance", "support", "both"}:
            _add_error(errors, "entry.breakout.level_type", "must be one of: ['both', 'resistance', 'support']")
        if breakout.get("confirmation") not in {"close", "volume", "none"}:
            _add_error(errors, "entry.breakout.confirmation", "must be one of: ['close', 'none', 'volume']")


def validate_canonical_strategy(strategy: Any) -> Tuple[bool, List[Dict[str, str]]]:
    """
    Validate a canonical strategy payload (snake_case keys).

    Returns (valid, errors) where each error is {path, message}; every
    violation is reported, not just the first.
    """
    errors: List[Dict[str, str]] = []

    if not _is_dict(strategy):
        return False, [{"path": "root", "message": "canonical strategy must be an object"}]

    pattern = strategy.get("pattern")
    if pattern not in SUPPORTED_PATTERNS:
        _add_error(errors, "pattern", f"must be one of: {sorted(SUPPORTED_PATTERNS)}")

    if strategy.get("direction") not in DIRECTIONS:
        _add_error(errors, "direction", f"must be one of: {sorted(DIRECTIONS)}")

    _validate_instrument(strategy.get("instrument"), errors)
    _validate_entry(pattern, strategy.get("entry"), errors)

    exit_config = strategy.get("exit")
    if not _is_dict(exit_config):
        _add_error(errors, "exit", "must be an object")
    else:
        _validate_stop_loss(exit_config.get("stop_loss"), errors)
        _validate_take_profit(exit_config.get("take_profit"), errors)

    _validate_risk(strategy.get("risk"), errors)
    _validate_time(strategy.get("time"), errors)

    return len(errors) == 0, errors


def assert_valid_canonical_strategy(strategy: Dict[str, Any]) -> Dict[str, Any]:
    valid, errors = validate_canonical_strategy(strategy)
    if not valid:
        raise StrategyValidationError(errors)
    return strategy
