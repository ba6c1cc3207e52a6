from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Any

from fake_gateway import FakeGateway

from spawnrelay.announce import AnnounceFlow, AnnounceRequest
from spawnrelay.config import SpawnConfig
from spawnrelay.gateway import GatewayError
from spawnrelay.usage import UsageResolver

CHILD_KEY = "agent:main:subagent:child"


class AnnounceFlowTests(unittest.TestCase):
    def _flow(self, gateway: FakeGateway) -> AnnounceFlow:
        temp = tempfile.TemporaryDirectory()
        self.addCleanup(temp.cleanup)
        config = SpawnConfig(session_store=str(Path(temp.name) / "{agentId}" / "sessions.json"))
        return AnnounceFlow(gateway, config, usage=UsageResolver(config, sleep=lambda _s: None))

    def _request(self, **overrides: Any) -> AnnounceRequest:
        fields: dict[str, Any] = {
            "child_session_key": CHILD_KEY,
            "run_id": "run-0",
            "requester_session_key": "discord:group:req",
            "requester_display_key": "discord:group:req",
            "requester_provider": "discord",
            "task": "do thing",
            "timeout_ms": 30_000,
            "cleanup": "delete",
        }
        fields.update(overrides)
        return AnnounceRequest(**fields)

    def test_sentinel_suppresses_send_but_cleanup_runs(self) -> None:
        gateway = FakeGateway(announce_reply="  ANNOUNCE_SKIP \n")

        self._flow(gateway).run(self._request(round_one_reply="result"))

        self.assertEqual(gateway.calls_for("send"), [])
        self.assertEqual(len(gateway.calls_for("sessions.delete")), 1)

    def test_empty_announce_reply_suppresses_send(self) -> None:
        gateway = FakeGateway(announce_reply="   ")

        self._flow(gateway).run(self._request(round_one_reply="result", cleanup="keep"))

        self.assertEqual(gateway.calls_for("send"), [])
        self.assertEqual(gateway.calls_for("sessions.delete"), [])

    def test_announce_prompt_carries_task_and_result(self) -> None:
        gateway = FakeGateway()

        self._flow(gateway).run(self._request(round_one_reply="42 files changed"))

        step = gateway.calls_for("agent")[0]["params"]
        self.assertEqual(step["sessionKey"], CHILD_KEY)
        self.assertEqual(step["lane"], "nested")
        self.assertIs(step["deliver"], False)
        prompt = step["extraSystemPrompt"]
        self.assertIn("Original task: do thing", prompt)
        self.assertIn("Sub-agent result: 42 files changed", prompt)
        self.assertIn("Post target provider: discord.", prompt)
        self.assertIn('"ANNOUNCE_SKIP"', prompt)

    def test_waits_for_completion_when_reply_unknown(self) -> None:
        gateway = FakeGateway(task_reply="late result")
        gateway.set_reply("run-0", "late result")

        self._flow(gateway).run(self._request())

        first_wait = gateway.calls_for("agent.wait")[0]["params"]
        self.assertEqual(first_wait, {"runId": "run-0", "timeoutMs": 30_000})
        prompt = gateway.calls_for("agent")[0]["params"]["extraSystemPrompt"]
        self.assertIn("Sub-agent result: late result", prompt)
        self.assertEqual(len(gateway.calls_for("send")), 1)

    def test_completion_wait_is_capped_at_sixty_seconds(self) -> None:
        gateway = FakeGateway(handlers={"agent.wait": lambda p: {"status": "timeout"}})

        self._flow(gateway).run(self._request(timeout_ms=300_000))

        wait = gateway.calls_for("agent.wait")[0]
        self.assertEqual(wait["params"]["timeoutMs"], 60_000)
        self.assertEqual(wait["timeout_ms"], 62_000)

    def test_incomplete_run_is_not_announced(self) -> None:
        gateway = FakeGateway(handlers={"agent.wait": lambda p: {"status": "timeout"}})

        self._flow(gateway).run(self._request())

        self.assertEqual(gateway.calls_for("agent"), [])
        self.assertEqual(gateway.calls_for("send"), [])
        self.assertEqual(len(gateway.calls_for("sessions.delete")), 1)

    def test_no_target_skips_announce(self) -> None:
        gateway = FakeGateway(sessions=[])

        self._flow(gateway).run(
            self._request(requester_session_key="main", requester_display_key="main", round_one_reply="x")
        )

        self.assertEqual(gateway.calls_for("agent"), [])
        self.assertEqual(gateway.calls_for("send"), [])
        self.assertEqual(len(gateway.calls_for("sessions.delete")), 1)

    def test_account_id_is_forwarded(self) -> None:
        gateway = FakeGateway(
            sessions=[{"key": "main", "lastProvider": "telegram", "lastTo": "42", "lastAccountId": "bot-2"}]
        )

        self._flow(gateway).run(
            self._request(requester_session_key="main", requester_display_key="main", round_one_reply="x")
        )

        send = gateway.calls_for("send")[0]["params"]
        self.assertEqual((send["provider"], send["to"], send["accountId"]), ("telegram", "42", "bot-2"))

    def test_failures_never_escape_and_cleanup_failure_is_swallowed(self) -> None:
        def boom(_params: dict[str, Any]) -> Any:
            raise GatewayError("gateway unavailable")

        gateway = FakeGateway(handlers={"agent": boom, "sessions.delete": boom})

        self._flow(gateway).run(self._request(round_one_reply="x"))

        self.assertEqual(len(gateway.calls_for("sessions.delete")), 1)
        self.assertEqual(gateway.calls_for("send"), [])

    def test_each_delivery_gets_a_fresh_idempotency_key(self) -> None:
        gateway = FakeGateway()
        flow = self._flow(gateway)

        flow.run(self._request(round_one_reply="x", cleanup="keep"))
        flow.run(self._request(round_one_reply="x", cleanup="keep"))

        keys = [c["params"]["idempotencyKey"] for c in gateway.calls_for("send")]
        self.assertEqual(len(keys), 2)
        self.assertNotEqual(keys[0], keys[1])


if __name__ == "__main__":
    unittest.main()
