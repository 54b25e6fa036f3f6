import unittest

from phase_tracker import PHASES, detect_current_focus, detect_phase
from strategy_models import Rule


def rule(category, label, value):
    return Rule(category=category, label=label, value=value)


class PhaseTrackerTests(unittest.TestCase):
    def test_empty_rules_are_initial(self):
        self.assertEqual(detect_phase([]), "initial")

    def test_single_stray_rule_stays_initial(self):
        self.assertEqual(detect_phase([rule("filters", "Trade Filter", "only when VIX is low")]), "initial")

    def test_phases_advance_with_each_component(self):
        rules = [rule("setup", "Instrument", "ES")]
        self.assertEqual(detect_phase(rules), "entry_definition")

        rules.append(rule("entry", "Entry Trigger", "break above range high"))
        self.assertEqual(detect_phase(rules), "stop_definition")

        rules.append(rule("exit", "Stop Loss", "20 ticks"))
        self.assertEqual(detect_phase(rules), "target_definition")

        rules.append(rule("exit", "Profit Target", "2R"))
        self.assertEqual(detect_phase(rules), "sizing_definition")

        rules.append(rule("risk", "Position Sizing", "1% risk per trade"))
        self.assertEqual(detect_phase(rules), "complete")

    def test_phases_are_reported_in_order(self):
        rules = [rule("setup", "Instrument", "ES")]
        seen = [detect_phase([]), detect_phase(rules)]
        for extra in (
            rule("entry", "Entry Trigger", "break above range high"),
            rule("exit", "Stop Loss", "20 ticks"),
            rule("exit", "Profit Target", "2R"),
            rule("risk", "Position Sizing", "1% risk per trade"),
        ):
            rules.append(extra)
            seen.append(detect_phase(rules))
        self.assertEqual(tuple(seen), PHASES)

    def test_time_stop_is_not_a_stop_loss(self):
        rules = [
            rule("setup", "Instrument", "NQ"),
            rule("entry", "Entry Trigger", "pullback to 20 EMA"),
            rule("exit", "Time Stop", "flat by 11:00"),
        ]
        self.assertEqual(detect_phase(rules), "stop_definition")

    def test_detect_phase_is_pure(self):
        rules = [rule("setup", "Instrument", "ES"), rule("exit", "Stop Loss", "20 ticks")]
        snapshot = [r.model_copy() for r in rules]

        self.assertEqual(detect_phase(rules), detect_phase(rules))
        self.assertEqual(rules, snapshot)

    def test_current_focus(self):
        self.assertEqual(detect_current_focus("my stop is 10 ticks"), "stop")
        self.assertEqual(detect_current_focus("target 2R"), "target")
        self.assertEqual(detect_current_focus("enter on the break"), "entry")
        self.assertEqual(detect_current_focus("hello"), "general")


if __name__ == "__main__":
    unittest.main()
