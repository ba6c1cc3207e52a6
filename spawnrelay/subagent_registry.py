from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Literal

Cleanup = Literal["delete", "keep"]


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SubagentRun:
    run_id: str
    child_session_key: str
    requester_session_key: str
    requester_display_key: str
    task: str
    cleanup: Cleanup = "keep"
    requester_provider: str | None = None
    label: str | None = None
    created_at: str = field(default_factory=_now)
    announce_claimed: bool = False


class SubagentRegistry:
    """
    In-memory map of in-flight sub-agent runs.

    claim_announce() is the exactly-once gate for the announce step: the first
    caller for a run id wins, every later caller (any thread) gets False.
    Nothing is persisted; a restart forgets in-flight runs.

    Runs stay registered until released: after their announce, on a timeout or
    error result, or never for an `accepted` run nobody reports as completed.
    A spent claim outlives its run by `claim_ttl_seconds` so a late completion
    report cannot announce twice; after that it is pruned.
    """

    def __init__(
        self,
        *,
        claim_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._runs: dict[str, SubagentRun] = {}
        self._claimed: dict[str, float] = {}
        self._released_at: dict[str, float] = {}
        self.claim_ttl_seconds = claim_ttl_seconds
        self._clock = clock

    def register(self, run: SubagentRun) -> None:
        with self._lock:
            run.announce_claimed = run.run_id in self._claimed
            self._released_at.pop(run.run_id, None)
            self._runs[run.run_id] = run

    def claim_announce(self, run_id: str) -> bool:
        with self._lock:
            self._prune_claims()
            if run_id in self._claimed:
                return False
            self._claimed[run_id] = self._clock()
            run = self._runs.get(run_id)
            if run is not None:
                run.announce_claimed = True
            return True

    def get(self, run_id: str) -> SubagentRun | None:
        with self._lock:
            run = self._runs.get(run_id)
            return replace(run) if run is not None else None

    def list(self, *, requester_session_key: str | None = None) -> list[SubagentRun]:
        with self._lock:
            rows = [replace(r) for r in self._runs.values()]
        if requester_session_key is not None:
            rows = [r for r in rows if r.requester_session_key == requester_session_key]
        rows.sort(key=lambda r: r.created_at)
        return rows

    def release(self, run_id: str) -> SubagentRun | None:
        """Forget run metadata; a spent claim stays spent for claim_ttl_seconds."""
        with self._lock:
            run = self._runs.pop(run_id, None)
            if run_id in self._claimed:
                self._released_at[run_id] = self._clock()
            return run

    def _prune_claims(self) -> None:
        cutoff = self._clock() - self.claim_ttl_seconds
        for run_id, released_at in list(self._released_at.items()):
            if released_at <= cutoff and run_id not in self._runs:
                self._claimed.pop(run_id, None)
                del self._released_at[run_id]
