import unittest

from pattern_extractor import (
    detect_direction,
    detect_instrument,
    detect_instruments,
    detect_pattern,
    extract_message_rules,
    extract_rules,
)
from strategy_models import Rule


def values_by_label(rules):
    return {r.label: r.value for r in rules}


class InstrumentDetectionTests(unittest.TestCase):
    def test_symbols_and_names(self):
        self.assertEqual(detect_instrument("ES opening range breakout"), "ES")
        self.assertEqual(detect_instrument("I trade the nasdaq"), "NQ")
        self.assertEqual(detect_instrument("gold pullbacks"), "GC")
        self.assertEqual(detect_instrument("crude oil breakouts"), "CL")

    def test_micros_win_over_full_size(self):
        self.assertEqual(detect_instrument("MES opening range"), "MES")
        self.assertEqual(detect_instrument("micro nasdaq scalps"), "MNQ")

    def test_all_instruments_in_order_of_mention(self):
        self.assertEqual(detect_instruments("works on NQ, ES and MNQ"), ["NQ", "ES", "MNQ"])
        self.assertEqual(detect_instruments("ES, the S&P 500"), ["ES"])
        self.assertEqual(detect_instruments("no contract here"), [])

    def test_silver_symbol_is_case_sensitive(self):
        self.assertEqual(detect_instrument("SI breakout"), "SI")
        self.assertIsNone(detect_instrument("si no stop"))

    def test_no_instrument(self):
        self.assertIsNone(detect_instrument("I trade breakouts"))


class PatternDetectionTests(unittest.TestCase):
    def test_specific_phrasings_are_high_confidence(self):
        self.assertEqual(detect_pattern("ES ORB"), ("opening_range_breakout", "high"))
        self.assertEqual(detect_pattern("pullbacks to the 20 EMA"), ("ema_pullback", "high"))

    def test_generic_keywords_are_medium_confidence(self):
        self.assertEqual(detect_pattern("I trade pullbacks"), ("ema_pullback", "medium"))
        self.assertEqual(detect_pattern("breakout of yesterday's high"), ("breakout", "medium"))

    def test_opening_range_wins_over_breakout(self):
        self.assertEqual(detect_pattern("opening range breakout")[0], "opening_range_breakout")

    def test_unknown_pattern(self):
        self.assertEqual(detect_pattern("scalping the open"), (None, None))

    def test_direction(self):
        self.assertEqual(detect_direction("longs and shorts"), "both")
        self.assertEqual(detect_direction("longs only"), "long")
        self.assertEqual(detect_direction("I go short"), "short")
        self.assertIsNone(detect_direction("ES ORB"))


class ExtractRulesTests(unittest.TestCase):
    def test_full_single_message(self):
        rules = extract_message_rules("I trade pullbacks to the 20 EMA on NQ, stop below swing low, target 2R")
        values = values_by_label(rules)

        self.assertEqual(values["Instrument"], "NQ")
        self.assertEqual(values["Pattern"], "EMA Pullback")
        self.assertEqual(values["Entry Trigger"], "pullbacks to the 20 EMA")
        self.assertEqual(values["Stop Loss"], "below swing low")
        self.assertEqual(values["Profit Target"], "2R")

    def test_sizing_session_and_range_period(self):
        rules = extract_message_rules("5 minute opening range on ES, risk 1% per trade, trade 9:30-11:00 AM ET")
        values = values_by_label(rules)

        self.assertEqual(values["Range Period"], "5 minutes")
        self.assertEqual(values["Position Sizing"], "1% risk per trade")
        self.assertEqual(values["Session"], "9:30-11:00 AM ET")

    def test_stop_size_before_keyword(self):
        rules = extract_message_rules("ES breakout with a 12 tick stop")
        stops = [r for r in rules if r.label == "Stop Loss"]
        self.assertEqual([r.value for r in stops], ["12 tick"])

    def test_tick_ranges_are_not_sessions(self):
        rules = extract_message_rules("stop 10-20 ticks")
        self.assertNotIn("Session", values_by_label(rules))

    def test_bare_follow_up_yields_nothing(self):
        self.assertEqual(extract_message_rules("20 ticks"), [])

    def test_extract_rules_merges_into_existing(self):
        existing = [
            Rule(category="setup", label="Instrument", value="ES"),
            Rule(category="exit", label="Stop Loss", value="10 ticks"),
        ]
        merged = extract_rules("actually stop 20 ticks", existing)
        values = values_by_label(merged)

        self.assertEqual(values["Instrument"], "ES")
        self.assertEqual(values["Stop Loss"], "20 ticks")
        self.assertEqual(len(merged), 2)


if __name__ == "__main__":
    unittest.main()
