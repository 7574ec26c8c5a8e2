from __future__ import annotations

import unittest

from fastapi.testclient import TestClient

from bfvm.webui import SessionStore, create_app
from bfvm.webui.app import MAX_TAPE_SIZE, TOTAL_STEPS_CAP


class WebUISessionApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = SessionStore()
        self.client = TestClient(create_app(self.store))

    def _create_session(self, *, code: str = ".", **payload):
        body = {"code": code}
        body.update(payload)
        response = self.client.post("/api/session", json=body)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    def test_create_session_returns_initial_state(self) -> None:
        data = self._create_session(input="A")
        self.assertIn("session_id", data)
        self.assertEqual(len(data["history"]), data["history_size"])
        self.assertEqual(data["state"]["step"], 0)
        self.assertEqual(data["history"][0]["pc"], 0)
        self.assertFalse(data["finished"])
        self.assertEqual(data["total_steps"], 1)
        self.assertFalse(data["total_steps_capped"])
        self.assertEqual(len(self.store), 1)

    def test_code_is_normalized(self) -> None:
        data = self._create_session(code="plus one + then print .")
        self.assertEqual(data["code"], "+.")
        self.assertEqual(data["state"]["code_length"], 2)

    def test_unmatched_bracket_rejected(self) -> None:
        response = self.client.post("/api/session", json={"code": "+]"})
        self.assertEqual(response.status_code, 422, response.text)
        self.assertIn("Unmatched", response.json()["detail"])

    def test_non_latin1_input_rejected(self) -> None:
        response = self.client.post("/api/session", json={"code": ",", "input": "あ"})
        self.assertEqual(response.status_code, 422, response.text)

    def test_step_advances_state(self) -> None:
        data = self._create_session(code="++.")
        session_id = data["session_id"]

        response = self.client.post(
            f"/api/session/{session_id}/step", json={"count": 2}
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(len(payload["states"]), 2)
        self.assertEqual(payload["states"][0]["step"], 1)
        self.assertEqual(payload["states"][1]["step"], 2)
        self.assertEqual(payload["states"][1]["tape"][0], 2)
        self.assertEqual(len(payload["history"]), payload["history_size"])
        self.assertEqual(payload["history"][-1]["step"], payload["states"][-1]["step"])
        self.assertFalse(payload["finished"])

    def test_output_rendered_as_text(self) -> None:
        data = self._create_session(code=",.", input="Q")
        session_id = data["session_id"]
        response = self.client.post(
            f"/api/session/{session_id}/run", json={"ignore_breakpoints": True}
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["finished"])
        self.assertEqual(payload["states"][-1]["output"], "Q")

    def test_reset_restores_initial_state(self) -> None:
        data = self._create_session(code="+.")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/step", json={"count": 1})

        response = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(response.status_code, 200, response.text)
        reset_payload = response.json()
        self.assertEqual(reset_payload["state"]["step"], 0)
        self.assertEqual(len(reset_payload["history"]), 1)
        self.assertFalse(reset_payload["finished"])

    def test_reset_clears_breakpoints(self) -> None:
        data = self._create_session(code="+++")
        session_id = data["session_id"]

        add = self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})
        self.assertEqual(add.status_code, 200, add.text)

        reset = self.client.post(f"/api/session/{session_id}/reset")
        self.assertEqual(reset.status_code, 200, reset.text)
        self.assertEqual(reset.json()["breakpoints"], [])

    def test_step_limit_conflict(self) -> None:
        data = self._create_session(code="++", max_steps=1)
        session_id = data["session_id"]

        ok = self.client.post(f"/api/session/{session_id}/step", json={"count": 1})
        self.assertEqual(ok.status_code, 200, ok.text)

        conflict = self.client.post(
            f"/api/session/{session_id}/step",
            json={"count": 1},
        )
        self.assertEqual(conflict.status_code, 409, conflict.text)
        self.assertIn("detail", conflict.json())

    def test_bounds_error_conflict(self) -> None:
        data = self._create_session(code="<")
        session_id = data["session_id"]
        response = self.client.post(f"/api/session/{session_id}/step", json={"count": 1})
        self.assertEqual(response.status_code, 409, response.text)
        self.assertIn("before start of tape", response.json()["detail"])

    def test_oversized_tape_rejected(self) -> None:
        response = self.client.post(
            "/api/session", json={"code": "+", "tape_size": MAX_TAPE_SIZE + 1}
        )
        self.assertEqual(response.status_code, 422, response.text)
        self.assertEqual(len(self.store), 0)

        data = self._create_session(code=">+", tape_size=MAX_TAPE_SIZE)
        self.assertEqual(data["total_steps"], 2)

    def test_run_without_limit_stops_at_cap(self) -> None:
        data = self._create_session(code="+[]", tape_window=0)
        session_id = data["session_id"]
        response = self.client.post(f"/api/session/{session_id}/run", json={})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(len(payload["states"]), TOTAL_STEPS_CAP)
        self.assertFalse(payload["finished"])

    def test_run_without_limit_uses_session_step_limit(self) -> None:
        data = self._create_session(code="+[]", max_steps=50)
        session_id = data["session_id"]
        response = self.client.post(f"/api/session/{session_id}/run", json={})
        self.assertEqual(response.status_code, 409, response.text)

    def test_infinite_loop_total_steps_capped(self) -> None:
        data = self._create_session(code="+[]")
        self.assertTrue(data["total_steps_capped"])
        self.assertEqual(data["total_steps"], 10000)

    def test_add_and_remove_breakpoint(self) -> None:
        data = self._create_session(code="+++")
        session_id = data["session_id"]

        added = self.client.post(
            f"/api/session/{session_id}/breakpoints",
            json={"pc": 1},
        )
        self.assertEqual(added.status_code, 200, added.text)
        self.assertIn(1, added.json()["breakpoints"])

        removed = self.client.delete(f"/api/session/{session_id}/breakpoints/1")
        self.assertEqual(removed.status_code, 200, removed.text)
        self.assertNotIn(1, removed.json()["breakpoints"])

        missing = self.client.delete(f"/api/session/{session_id}/breakpoints/1")
        self.assertEqual(missing.status_code, 404, missing.text)

    def test_run_until_break_hits_breakpoint(self) -> None:
        data = self._create_session(code="+.+")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})

        response = self.client.post(f"/api/session/{session_id}/run", json={"limit": 10})
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertEqual(payload["hit_breakpoint"], 1)
        self.assertFalse(payload["finished"])

    def test_run_to_completion_ignore_breakpoints(self) -> None:
        data = self._create_session(code="+.+")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/breakpoints", json={"pc": 1})

        response = self.client.post(
            f"/api/session/{session_id}/run",
            json={"limit": 10000, "ignore_breakpoints": True},
        )
        self.assertEqual(response.status_code, 200, response.text)
        payload = response.json()
        self.assertTrue(payload["finished"])
        self.assertEqual(payload["breakpoints"], [1])
        self.assertGreaterEqual(payload["total_steps"], payload["history"][-1]["step"])

    def test_history_matches_history_size(self) -> None:
        data = self._create_session(code="+++.>.")
        session_id = data["session_id"]
        self.client.post(f"/api/session/{session_id}/step", json={"count": 3})
        response = self.client.get(f"/api/session/{session_id}")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(len(payload["history"]), payload["history_size"])

    def test_unknown_session(self) -> None:
        self.assertEqual(self.client.get("/api/session/nope").status_code, 404)
        self.assertEqual(
            self.client.post("/api/session/nope/step", json={"count": 1}).status_code,
            404,
        )

    def test_delete_session(self) -> None:
        data = self._create_session(code="+")
        session_id = data["session_id"]
        response = self.client.delete(f"/api/session/{session_id}")
        self.assertEqual(response.status_code, 204)
        self.assertEqual(self.client.get(f"/api/session/{session_id}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/session/{session_id}").status_code, 404)


if __name__ == "__main__":
    unittest.main()
