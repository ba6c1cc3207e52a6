from __future__ import annotations

import itertools
import json
import tempfile
import threading
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]

import sys

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from spawnrelay.announce import ANNOUNCE_STEP_MESSAGE, AnnounceFlow
from spawnrelay.config import SpawnConfig
from spawnrelay.spawn import SpawnOrchestrator
from spawnrelay.tools import execute_tool
from spawnrelay.usage import UsageResolver


class InMemoryGateway:
    """Pretends to be the gateway: runs finish instantly and usage lands in the store."""

    def __init__(self, store_path: Path) -> None:
        self.store_path = store_path
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._replies: dict[str, str] = {}
        self._session_by_run: dict[str, str] = {}
        self._last_reply: dict[str, str] = {}

    def call(self, method: str, params: dict[str, Any], *, timeout_ms: int) -> Any:
        print(f"[gateway] {method} {json.dumps(params, ensure_ascii=False)[:120]}")
        with self._lock:
            if method == "agent":
                run_id = f"run-{next(self._ids)}"
                session_key = params["sessionKey"]
                if params.get("message") == ANNOUNCE_STEP_MESSAGE:
                    reply = "Done: the release notes are summarized (3 breaking changes)."
                else:
                    reply = "Summary: 3 breaking changes, 12 fixes."
                self._replies[run_id] = reply
                self._session_by_run[run_id] = session_key
                return {"runId": run_id, "status": "accepted"}
            if method == "agent.wait":
                run_id = params["runId"]
                session_key = self._session_by_run.get(run_id, "")
                self._last_reply[session_key] = self._replies.get(run_id, "")
                self._record_usage(session_key)
                return {"runId": run_id, "status": "ok", "startedAt": 1_000, "endedAt": 48_000}
            if method == "chat.history":
                text = self._last_reply.get(params["sessionKey"], "")
                return {"messages": [{"role": "assistant", "content": text}]}
            if method == "sessions.list":
                return {"sessions": []}
            if method == "send":
                print(f"\n[chat:{params['provider']} -> {params['to']}]\n{params['message']}\n")
                return {"messageId": "m-1"}
        return {"ok": True}

    def _record_usage(self, session_key: str) -> None:
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        data = json.loads(self.store_path.read_text(encoding="utf-8")) if self.store_path.is_file() else {}
        data[session_key] = {
            "sessionId": "demo-session",
            "inputTokens": 1_800,
            "outputTokens": 420,
            "totalTokens": 2_220,
            "model": "gpt-4o",
            "modelProvider": "openai",
        }
        self.store_path.write_text(json.dumps(data), encoding="utf-8")


def main() -> None:
    print("=== SpawnRelay Mock Demo (no gateway needed) ===")
    print("Shows: spawn, wait, announce step, stats line, cleanup")

    temp = tempfile.TemporaryDirectory()
    try:
        store_template = str(Path(temp.name) / "{agentId}" / "sessions.json")
        config = SpawnConfig(session_store=store_template)
        gateway = InMemoryGateway(config.resolve_store_path("main"))
        flow = AnnounceFlow(gateway, config, usage=UsageResolver(config, sleep=lambda _s: None))
        orchestrator = SpawnOrchestrator(gateway, config, announce_flow=flow)

        print("\n--- Demo 1: wait for the result, then announce ---")
        result = execute_tool(
            "sessions_spawn",
            json.dumps({"task": "Summarize the release notes", "timeoutSeconds": 30, "cleanup": "delete"}),
            orchestrator,
            agent_session_key="discord:group:release-room",
            agent_provider="discord",
        )
        print(f"[tool result] {result}")
        orchestrator.runtime.wait_idle(timeout=10)

        print("\n--- Demo 2: nested spawn is refused ---")
        child_key = json.loads(result).get("childSessionKey", "agent:main:subagent:x")
        nested = execute_tool("sessions_spawn", json.dumps({"task": "again"}), orchestrator, agent_session_key=child_key)
        print(f"[tool result] {nested}")

        print("\n--- Demo 3: fire-and-forget ---")
        print(
            "[tool result] "
            + execute_tool(
                "sessions_spawn",
                json.dumps({"task": "Check the nightly build", "label": "nightly"}),
                orchestrator,
                agent_session_key="signal:group:ops",
                agent_provider="signal",
            )
        )
        orchestrator.runtime.shutdown(wait=True)
        print("Demo complete.")
    finally:
        temp.cleanup()


if __name__ == "__main__":
    main()
