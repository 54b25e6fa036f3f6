import copy
import unittest

from canonical_schema import (
    StrategyValidationError,
    assert_valid_canonical_strategy,
    lookup_instrument,
    validate_canonical_strategy,
)


def build_valid_strategy():
    return {
        "pattern": "opening_range_breakout",
        "direction": "long",
        "instrument": lookup_instrument("ES"),
        "entry": {"opening_range": {"period_minutes": 15, "entry_on": "break_high"}},
        "exit": {
            "stop_loss": {"type": "percentage", "value": 0.5, "unit": "percentage", "relative_to": "range_low"},
            "take_profit": {"type": "r_multiple", "value": 2, "unit": "r", "relative_to": "stop_distance"},
        },
        "risk": {"position_sizing": "risk_percent", "risk_percent": 1.0, "max_contracts": 10},
        "time": {"session": "ny", "timezone": "America/New_York", "custom_start": None, "custom_end": None},
    }


class CanonicalSchemaTests(unittest.TestCase):
    def test_valid_strategy_passes(self):
        valid, errors = validate_canonical_strategy(build_valid_strategy())
        self.assertTrue(valid)
        self.assertEqual(errors, [])

    def test_non_object_fails(self):
        valid, errors = validate_canonical_strategy(["not", "a", "strategy"])
        self.assertFalse(valid)
        self.assertEqual(errors[0]["path"], "root")

    def test_every_violation_is_reported(self):
        strategy = build_valid_strategy()
        strategy["direction"] = "sideways"
        strategy["risk"]["risk_percent"] = 10
        strategy["entry"]["opening_range"]["period_minutes"] = 1

        valid, errors = validate_canonical_strategy(strategy)
        paths = {error["path"] for error in errors}

        self.assertFalse(valid)
        self.assertEqual(
            paths,
            {"direction", "risk.risk_percent", "entry.opening_range.period_minutes"},
        )

    def test_percentage_stop_must_be_a_fraction(self):
        strategy = build_valid_strategy()
        strategy["exit"]["stop_loss"]["value"] = 50
        valid, errors = validate_canonical_strategy(strategy)
        self.assertFalse(valid)
        self.assertEqual(errors[0]["path"], "exit.stop_loss.value")

    def test_r_multiple_upper_bound(self):
        strategy = build_valid_strategy()
        strategy["exit"]["take_profit"]["value"] = 25
        valid, errors = validate_canonical_strategy(strategy)
        self.assertFalse(valid)
        self.assertEqual(errors[0]["path"], "exit.take_profit.value")

    def test_custom_session_requires_times(self):
        strategy = build_valid_strategy()
        strategy["time"]["session"] = "custom"
        strategy["time"]["custom_start"] = "9:30"
        valid, errors = validate_canonical_strategy(strategy)
        paths = [error["path"] for error in errors]

        self.assertFalse(valid)
        self.assertIn("time.custom_start", paths)
        self.assertIn("time", paths)

    def test_unmatched_stop_passes(self):
        strategy = build_valid_strategy()
        strategy["exit"]["stop_loss"] = {"type": "structure", "value": 0, "relative_to": "swing_point", "matched": False}
        valid, errors = validate_canonical_strategy(strategy)
        self.assertTrue(valid, msg=errors)

    def test_uncommitted_stop_fails(self):
        strategy = build_valid_strategy()
        strategy["exit"]["stop_loss"] = {
            "type": "structure",
            "value": 0,
            "relative_to": "swing_point",
            "matched": False,
            "committed": False,
        }
        valid, errors = validate_canonical_strategy(strategy)
        self.assertFalse(valid)
        self.assertEqual([error["path"] for error in errors], ["exit.stop_loss"])

    def test_assert_raises_for_invalid_strategy(self):
        strategy = copy.deepcopy(build_valid_strategy())
        strategy["instrument"] = None

        with self.assertRaises(StrategyValidationError) as ctx:
            assert_valid_canonical_strategy(strategy)
        self.assertEqual(ctx.exception.errors[0]["path"], "instrument")
        self.assertIsInstance(ctx.exception, ValueError)

    def test_lookup_instrument_aliases(self):
        self.assertEqual(lookup_instrument("nasdaq")["symbol"], "NQ")
        self.assertEqual(lookup_instrument("Crude  Oil")["symbol"], "CL")
        self.assertEqual(lookup_instrument("mes")["tick_value"], 1.25)
        self.assertIsNone(lookup_instrument("ZB"))
        self.assertIsNone(lookup_instrument(None))


if __name__ == "__main__":
    unittest.main()
