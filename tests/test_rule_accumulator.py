import unittest

from rule_accumulator import (
    components_to_rules,
    find_rule,
    merge_rules,
    normalize_label,
    replace_default,
    strip_defaults,
)
from strategy_models import ExtractedComponents, Rule


def rule(category, label, value, **kwargs):
    return Rule(category=category, label=label, value=value, **kwargs)


class RuleAccumulatorTests(unittest.TestCase):
    def test_normalize_label(self):
        self.assertEqual(normalize_label("Stop-Loss"), "stop loss")
        self.assertEqual(normalize_label("  Profit_Target! "), "profit target")

    def test_merge_is_idempotent(self):
        existing = [rule("setup", "Instrument", "ES")]
        incoming = [rule("exit", "Stop Loss", "20 ticks"), rule("exit", "Profit Target", "2R")]

        once = merge_rules(existing, incoming)
        twice = merge_rules(once, incoming)

        self.assertEqual(once, twice)
        self.assertEqual(len(twice), 3)

    def test_last_write_wins_per_normalized_label(self):
        existing = [rule("exit", "Stop Loss", "10 ticks"), rule("setup", "Instrument", "ES")]
        merged = merge_rules(existing, [rule("exit", "stop-loss", "20 ticks")])

        stops = [r for r in merged if normalize_label(r.label) == "stop loss"]
        self.assertEqual(len(stops), 1)
        self.assertEqual(stops[0].value, "20 ticks")
        self.assertEqual(merged[-1].value, "20 ticks")

    def test_same_label_in_different_categories_are_kept(self):
        merged = merge_rules(
            [rule("entry", "Level", "range high")],
            [rule("exit", "Level", "range low")],
        )
        self.assertEqual(len(merged), 2)

    def test_merge_does_not_mutate_inputs(self):
        existing = [rule("setup", "Instrument", "ES")]
        merge_rules(existing, [rule("setup", "Instrument", "NQ")])
        self.assertEqual(existing[0].value, "ES")

    def test_find_rule_returns_last_match(self):
        rules = [rule("exit", "Stop Loss", "10 ticks"), rule("exit", "Trailing Stop", "5 ticks")]
        self.assertEqual(find_rule(rules, "stop").value, "5 ticks")
        self.assertIsNone(find_rule(rules, "session"))

    def test_strip_and_replace_defaults(self):
        rules = [
            rule("setup", "Instrument", "ES"),
            rule("exit", "Profit Target", "1:2 risk:reward", is_defaulted=True, source="default"),
        ]
        self.assertEqual([r.label for r in strip_defaults(rules)], ["Instrument"])

        replaced = replace_default(rules, "profit target", "3R")
        self.assertEqual(replaced[1].value, "3R")
        self.assertFalse(replaced[1].is_defaulted)
        self.assertEqual(replaced[1].source, "user")

    def test_components_to_rules_skips_null_slots(self):
        components = ExtractedComponents(
            instrument="es",
            pattern="opening_range_breakout",
            stop_loss="20 ticks",
            direction="long",
        )
        rules = components_to_rules(components)

        self.assertEqual(
            [(r.label, r.value) for r in rules],
            [
                ("Instrument", "ES"),
                ("Pattern", "Opening Range Breakout"),
                ("Stop Loss", "20 ticks"),
                ("Direction", "Long"),
            ],
        )


if __name__ == "__main__":
    unittest.main()
