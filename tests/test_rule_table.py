import unittest

from rule_table import TableRule, claim_matches, constant, first_match


class RuleTableTests(unittest.TestCase):
    def test_first_match_respects_table_order(self):
        table = (
            TableRule("half", r"\b50%", constant("percentage")),
            TableRule("swing", r"\bswing\b", constant("structure")),
        )
        rule, payload = first_match(table, "50% below the swing low")
        self.assertEqual(rule.name, "half")
        self.assertEqual(payload, "percentage")

    def test_first_match_returns_none_without_a_hit(self):
        table = (TableRule("ticks", r"\d+\s*ticks", constant("ticks")),)
        self.assertIsNone(first_match(table, "below the low"))

    def test_patterns_are_case_insensitive_by_default(self):
        table = (TableRule("orb", r"\borb\b", constant(True)),)
        self.assertIsNotNone(first_match(table, "ES ORB"))

    def test_claim_matches_skips_spans_claimed_earlier_in_scope(self):
        table = (
            TableRule("size_first", r"\d+ ticks stop", lambda m: ("size_first", m.group(0))),
            TableRule("ticks", r"\d+ ticks", lambda m: ("ticks", m.group(0))),
        )
        hits = [payload for _rule, payload in claim_matches(table, "20 ticks stop, target 40 ticks")]
        self.assertEqual(hits, [("size_first", "20 ticks stop"), ("ticks", "40 ticks")])

    def test_claim_matches_lets_other_scopes_reuse_a_span(self):
        table = (
            TableRule("stop", r"\d+ ticks", constant("stop"), scope="exit"),
            TableRule("distance", r"\d+ ticks", constant("distance"), scope="geometry"),
        )
        hits = [payload for _rule, payload in claim_matches(table, "20 ticks")]
        self.assertEqual(hits, ["stop", "distance"])


if __name__ == "__main__":
    unittest.main()
