import os
import unittest

# server.py reads its provider configuration at import time
os.environ["AI_PROVIDER"] = "anthropic"
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")

from fastapi.testclient import TestClient

import server


class ServerTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(server.app)

    def test_status(self):
        with TestClient(server.app) as client:
            response = client.get("/status")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "running")
        self.assertEqual(body["provider"], "anthropic")
        self.assertEqual(body["extraction_timeout"], server.EXTRACTION_TIMEOUT)

    def test_build_returns_tagged_response(self):
        response = self.client.post("/strategy/build", json={"message": "ES opening range breakout"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["type"], "pattern_detected")
        self.assertEqual(body["pattern"], "opening_range_breakout")
        self.assertTrue(body["conversationId"])

    def test_build_blocks_vague_input(self):
        body = self.client.post("/strategy/build", json={"message": "buy"}).json()

        self.assertEqual(body["type"], "critical_question")
        self.assertEqual(body["questionType"], "pattern")

    def test_canonicalize(self):
        response = self.client.post(
            "/strategy/canonicalize",
            json={
                "rules": [
                    {"category": "setup", "label": "Instrument", "value": "ES"},
                    {"category": "exit", "label": "Stop Loss", "value": "50% of range"},
                ],
                "pattern": "opening_range_breakout",
            },
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"], msg=body["errors"])
        self.assertEqual(body["canonical"]["exit"]["stopLoss"]["type"], "percentage")
        self.assertEqual(body["canonical"]["instrument"]["tickValue"], 12.5)

    def test_canonicalize_reports_errors(self):
        body = self.client.post(
            "/strategy/canonicalize",
            json={"rules": [{"category": "setup", "label": "Instrument", "value": "ES"}]},
        ).json()

        self.assertFalse(body["success"])
        self.assertIn("exit.stop_loss", [error["path"] for error in body["errors"]])

    def test_coordinates_from_rules(self):
        response = self.client.post(
            "/strategy/coordinates",
            json={"rules": [{"category": "exit", "label": "Stop Loss", "value": "20 ticks"}]},
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["risk_reward_ratio"], "1:2.0")

    def test_coordinates_need_a_stop(self):
        response = self.client.post(
            "/strategy/coordinates",
            json={"rules": [{"category": "setup", "label": "Instrument", "value": "ES"}]},
        )
        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
