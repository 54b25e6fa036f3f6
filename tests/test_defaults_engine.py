import unittest

from canonicalizer import build_canonical_strategy
from defaults_engine import apply_defaults, detect_context_pattern, detect_styles, has_component
from strategy_models import Rule


def rule(category, label, value):
    return Rule(category=category, label=label, value=value)


BASE_RULES = [rule("setup", "Instrument", "ES"), rule("exit", "Stop Loss", "20 ticks")]


class DefaultsEngineTests(unittest.TestCase):
    def test_universal_defaults(self):
        result = apply_defaults(BASE_RULES)

        self.assertEqual(result.defaults_applied, ["Profit Target", "Position Sizing", "Direction", "Session"])
        added = result.rules[len(BASE_RULES):]
        self.assertTrue(all(r.is_defaulted and r.source == "default" for r in added))
        self.assertTrue(all(r.explanation for r in added))
        self.assertEqual(result.rules[:2], BASE_RULES)

    def test_critical_fields_are_never_defaulted(self):
        result = apply_defaults([])
        labels = {r.label for r in result.rules}
        self.assertNotIn("Stop Loss", labels)
        self.assertNotIn("Instrument", labels)

    def test_stated_values_are_kept(self):
        rules = BASE_RULES + [rule("exit", "Profit Target", "3R"), rule("timeframe", "Session", "9:30 - 11:00 AM")]
        result = apply_defaults(rules)

        self.assertNotIn("Profit Target", result.defaults_applied)
        self.assertNotIn("Session", result.defaults_applied)
        self.assertEqual([r.value for r in result.rules if r.label == "Profit Target"], ["3R"])

    def test_orb_context_adds_range_period(self):
        result = apply_defaults(BASE_RULES, "ES opening range breakout")

        self.assertEqual(result.pattern, "opening_range_breakout")
        self.assertIn("Range Period", result.defaults_applied)
        self.assertNotIn("Entry Trigger", result.defaults_applied)

    def test_style_overrides(self):
        scalp = apply_defaults(BASE_RULES, "I scalp ES")
        self.assertEqual([r.value for r in scalp.rules if r.label == "Profit Target"], ["1:1 R:R"])

        vwap = apply_defaults(BASE_RULES, "VWAP reclaim on ES")
        self.assertEqual([r.value for r in vwap.rules if r.label == "Session"], ["NY Morning (9:30 AM - 12:00 PM ET)"])

    def test_scalp_style_on_a_confirmed_pattern_is_valid(self):
        result = apply_defaults(BASE_RULES, "scalping the opening range on ES", pattern="opening_range_breakout")
        canonical = build_canonical_strategy(result.rules, result.pattern)

        self.assertTrue(canonical.success, msg=canonical.errors)
        self.assertEqual(canonical.canonical.exit.take_profit.value, 1)
        self.assertIn("Range Period", result.defaults_applied)

    def test_confirmed_pattern_defaults_entry_trigger(self):
        result = apply_defaults(BASE_RULES, pattern="breakout")

        entry = [r for r in result.rules if r.label == "Entry Trigger"]
        self.assertEqual(len(entry), 1)
        self.assertEqual(entry[0].value, "Breakout")
        self.assertTrue(entry[0].is_defaulted)

    def test_stated_entry_is_not_replaced(self):
        rules = BASE_RULES + [rule("entry", "Entry Trigger", "break above the high")]
        result = apply_defaults(rules, pattern="breakout")
        self.assertNotIn("Entry Trigger", result.defaults_applied)

    def test_context_and_presence_checks(self):
        self.assertEqual(detect_context_pattern("pullback to the 20 EMA"), "ema_pullback")
        self.assertEqual(detect_context_pattern("20 EMA bounce"), "ema_pullback")
        self.assertIsNone(detect_context_pattern("no idea"))
        self.assertIsNone(detect_context_pattern("I scalp ES"))
        self.assertEqual(detect_styles("VWAP scalps"), ["vwap", "scalp"])

        self.assertTrue(has_component([rule("risk", "Risk", "2%")], "sizing"))
        self.assertFalse(has_component([rule("risk", "Risk", "tight")], "sizing"))
        self.assertFalse(has_component([rule("exit", "Time Stop", "11:00")], "session"))


if __name__ == "__main__":
    unittest.main()
