import unittest

from canonicalizer import (
    build_canonical_strategy,
    canonicalize,
    canonicalize_stop_loss,
    canonicalize_take_profit,
    normalize_risk,
    normalize_session,
    parse_time_range,
)
from defaults_engine import apply_defaults
from pattern_extractor import extract_rules
from strategy_models import Rule


def rule(category, label, value):
    return Rule(category=category, label=label, value=value)


def orb_rules(stop="20 ticks", extra=()):
    rules = [
        rule("setup", "Instrument", "ES"),
        rule("entry", "Pattern", "Opening Range Breakout"),
        rule("exit", "Stop Loss", stop),
    ]
    rules.extend(rule(*item) for item in extra)
    return rules


class StopLossCanonicalizationTests(unittest.TestCase):
    def test_half_of_range(self):
        config = canonicalize_stop_loss("50% of range")
        self.assertEqual(config.type, "percentage")
        self.assertAlmostEqual(config.value, 0.5)
        self.assertTrue(config.matched)

    def test_ticks_below_entry(self):
        config = canonicalize_stop_loss("20 ticks below entry")
        self.assertEqual((config.type, config.value, config.unit), ("fixed_distance", 20, "ticks"))

    def test_atr_multiple(self):
        config = canonicalize_stop_loss("2x ATR")
        self.assertEqual((config.type, config.value), ("atr_multiple", 2))

    def test_points_and_dollars(self):
        self.assertEqual(canonicalize_stop_loss("8 points").unit, "points")
        dollars = canonicalize_stop_loss("$200 max loss")
        self.assertEqual((dollars.type, dollars.value, dollars.unit), ("fixed_distance", 200, "dollars"))

    def test_range_sides(self):
        low = canonicalize_stop_loss("opposite side of the range")
        self.assertEqual((low.type, low.relative_to), ("opposite_side", "range_low"))
        high = canonicalize_stop_loss("above the range high")
        self.assertEqual((high.type, high.relative_to), ("opposite_side", "range_high"))

    def test_swing_low_is_structure(self):
        config = canonicalize_stop_loss("below swing low")
        self.assertEqual((config.type, config.relative_to), ("structure", "swing_point"))
        self.assertTrue(config.matched)

    def test_first_listed_row_wins(self):
        self.assertEqual(canonicalize_stop_loss("50% below the swing low").type, "percentage")

    def test_structure_ignores_unrelated_numbers(self):
        config = canonicalize_stop_loss("below the 20 EMA swing low")
        self.assertEqual((config.type, config.value), ("structure", 0))

    def test_non_committal_stop_is_uncommitted(self):
        config = canonicalize_stop_loss("stop is mental, I'll decide")
        self.assertFalse(config.matched)
        self.assertFalse(config.committed)
        self.assertEqual(config.type, "structure")

    def test_unrecognized_stop_falls_back_to_structure(self):
        config = canonicalize_stop_loss("below the prior candle low")
        self.assertEqual((config.type, config.value, config.relative_to), ("structure", 0, "swing_point"))
        self.assertFalse(config.matched)
        self.assertTrue(config.committed)


class TakeProfitCanonicalizationTests(unittest.TestCase):
    def test_ratios_and_r_multiples(self):
        self.assertEqual(canonicalize_take_profit("1:3").value, 3)
        self.assertEqual(canonicalize_take_profit("1:2 risk:reward").value, 2)
        config = canonicalize_take_profit("2R")
        self.assertEqual((config.type, config.value, config.relative_to), ("r_multiple", 2, "stop_distance"))

    def test_range_extensions(self):
        self.assertEqual(canonicalize_take_profit("2x range").type, "extension")
        self.assertEqual(canonicalize_take_profit("double the range").value, 2)
        self.assertAlmostEqual(canonicalize_take_profit("150% extension").value, 1.5)

    def test_fixed_distance(self):
        config = canonicalize_take_profit("40 points")
        self.assertEqual((config.type, config.value, config.unit), ("fixed_distance", 40, "points"))

    def test_unrecognized_target_falls_back_to_2r(self):
        config = canonicalize_take_profit("as much as possible")
        self.assertEqual((config.type, config.value), ("r_multiple", 2))
        self.assertFalse(config.matched)

    def test_canonicalize_dispatches_on_label(self):
        self.assertEqual(canonicalize(rule("exit", "Stop Loss", "10 ticks")).field, "stop_loss")
        self.assertEqual(canonicalize(rule("exit", "Profit Target", "2R")).field, "take_profit")
        self.assertIsNone(canonicalize(rule("exit", "Time Stop", "11:00")))
        self.assertIsNone(canonicalize(rule("filters", "Indicator Filter", "RSI above 50")))


class NormalizerTests(unittest.TestCase):
    def test_parse_time_range(self):
        self.assertEqual(parse_time_range("9:30 AM - 4:00 PM ET"), ("09:30", "16:00"))
        self.assertEqual(parse_time_range("9:30-11:00 AM"), ("09:30", "11:00"))
        self.assertEqual(parse_time_range("9:30-4:00 PM"), ("09:30", "16:00"))
        self.assertEqual(parse_time_range("12:00 PM - 2:00 PM"), ("12:00", "14:00"))
        self.assertIsNone(parse_time_range("the open"))

    def test_named_sessions(self):
        london = normalize_session([rule("timeframe", "Session", "London session")])
        self.assertEqual((london["session"], london["timezone"]), ("london", "Europe/London"))

        first_hour = normalize_session([rule("timeframe", "Session", "first hour")])
        self.assertEqual((first_hour["custom_start"], first_hour["custom_end"]), ("09:30", "10:30"))

        ny = normalize_session([rule("timeframe", "Session", "NY Session (9:30 AM - 4:00 PM ET)")])
        self.assertEqual(ny["session"], "ny")

    def test_custom_time_window(self):
        config = normalize_session([rule("timeframe", "Session", "9:30-11:00 AM CT")])
        self.assertEqual(config["session"], "custom")
        self.assertEqual(config["timezone"], "America/Chicago")

    def test_risk(self):
        self.assertEqual(normalize_risk([rule("risk", "Position Sizing", "2% risk per trade")])["risk_percent"], 2.0)
        contracts = normalize_risk([rule("risk", "Position Sizing", "3 contracts")])
        self.assertEqual((contracts["position_sizing"], contracts["max_contracts"]), ("fixed_contracts", 3))
        self.assertEqual(normalize_risk([])["risk_percent"], 1.0)


class BuildCanonicalStrategyTests(unittest.TestCase):
    def test_single_message_pullback_strategy(self):
        rules = extract_rules("I trade pullbacks to the 20 EMA on NQ, stop below swing low, target 2R", [])
        result = build_canonical_strategy(apply_defaults(rules).rules)

        self.assertTrue(result.success, msg=result.errors)
        canonical = result.canonical
        self.assertEqual(canonical.pattern, "ema_pullback")
        self.assertEqual(canonical.instrument.symbol, "NQ")
        self.assertEqual(canonical.exit.stop_loss.type, "structure")
        self.assertEqual((canonical.exit.take_profit.type, canonical.exit.take_profit.value), ("r_multiple", 2))
        self.assertEqual(canonical.entry["ema_pullback"]["ema_period"], 20)

    def test_orb_defaults(self):
        result = build_canonical_strategy(orb_rules(), "opening_range_breakout")

        self.assertTrue(result.success, msg=result.errors)
        self.assertEqual(result.canonical.entry["opening_range"], {"period_minutes": 15, "entry_on": "both"})
        self.assertEqual(result.canonical.risk.risk_percent, 1.0)
        self.assertIn("No profit target stated; using 2R", result.warnings)

    def test_out_of_bounds_period_is_clamped_with_warning(self):
        rules = orb_rules(extra=[("setup", "Range Period", "200 minutes")])
        result = build_canonical_strategy(rules)

        self.assertTrue(result.success, msg=result.errors)
        self.assertEqual(result.canonical.entry["opening_range"]["period_minutes"], 120)
        self.assertTrue(any("clamped to 120" in warning for warning in result.warnings))

    def test_non_committal_stop_is_rejected(self):
        result = build_canonical_strategy(orb_rules(stop="stop is mental, I'll decide"))

        self.assertFalse(result.success)
        self.assertIsNone(result.canonical)
        self.assertIn("exit.stop_loss", [error["path"] for error in result.errors])

    def test_unrecognized_stop_is_accepted_with_warning(self):
        result = build_canonical_strategy(orb_rules(stop="below the prior candle low"))

        self.assertTrue(result.success, msg=result.errors)
        self.assertEqual(result.canonical.exit.stop_loss.type, "structure")
        self.assertTrue(any("below the prior candle low" in warning for warning in result.warnings))

    def test_missing_stop_and_unknown_pattern_are_itemized(self):
        result = build_canonical_strategy([rule("setup", "Instrument", "ES")])
        paths = [error["path"] for error in result.errors]

        self.assertFalse(result.success)
        self.assertIn("pattern", paths)
        self.assertIn("exit.stop_loss", paths)

    def test_unknown_instrument_is_named(self):
        rules = orb_rules()
        rules[0] = rule("setup", "Instrument", "ZB")
        result = build_canonical_strategy(rules)
        self.assertIn("instrument.symbol", [error["path"] for error in result.errors])


if __name__ == "__main__":
    unittest.main()
