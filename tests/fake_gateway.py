"""In-memory gateway used by the tests; records every call."""

from __future__ import annotations

import threading
from typing import Any, Callable

from spawnrelay.announce import ANNOUNCE_STEP_MESSAGE

Handler = Callable[[dict[str, Any]], Any]


class FakeGateway:
    """
    Default behaviour mirrors a healthy gateway:
    - agent: returns run-<n>; the task step replies `task_reply`, the announce
      step replies `announce_reply`
    - agent.wait: status ok
    - chat.history: the reply of the last waited run
    Any method can be overridden through `handlers`.
    """

    def __init__(
        self,
        *,
        task_reply: str = "result",
        announce_reply: str = "announce now",
        sessions: list[dict[str, Any]] | None = None,
        handlers: dict[str, Handler] | None = None,
    ) -> None:
        self.task_reply = task_reply
        self.announce_reply = announce_reply
        self.sessions = sessions or []
        self.handlers = dict(handlers or {})
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._agent_count = 0
        self._reply_by_run: dict[str, str] = {}
        self._last_waited: str | None = None

    def call(self, method: str, params: dict[str, Any], *, timeout_ms: int) -> Any:
        with self._lock:
            self.calls.append({"method": method, "params": dict(params), "timeout_ms": timeout_ms})
        handler = self.handlers.get(method)
        if handler is not None:
            return handler(params)
        if method == "agent":
            with self._lock:
                self._agent_count += 1
                run_id = f"run-{self._agent_count}"
                is_announce = params.get("message") == ANNOUNCE_STEP_MESSAGE
                self._reply_by_run[run_id] = self.announce_reply if is_announce else self.task_reply
            return {"runId": run_id, "status": "accepted", "acceptedAt": 1000 + self._agent_count}
        if method == "agent.wait":
            with self._lock:
                self._last_waited = params.get("runId")
            return {"runId": params.get("runId"), "status": "ok"}
        if method == "chat.history":
            with self._lock:
                text = self._reply_by_run.get(self._last_waited or "", "")
            return {"messages": [{"role": "assistant", "content": [{"type": "text", "text": text}]}]}
        if method == "sessions.list":
            return {"sessions": self.sessions}
        if method == "send":
            return {"messageId": "m-announce"}
        return {"ok": True}

    def set_reply(self, run_id: str, text: str) -> None:
        with self._lock:
            self._reply_by_run[run_id] = text

    def calls_for(self, method: str) -> list[dict[str, Any]]:
        with self._lock:
            return [c for c in self.calls if c["method"] == method]

    def methods(self) -> list[str]:
        with self._lock:
            return [c["method"] for c in self.calls]
