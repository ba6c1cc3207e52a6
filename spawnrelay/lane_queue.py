from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class _Lane:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0
    retired: bool = False


class LaneQueue:
    """
    Serializes agent steps that target the same child session.

    - same lane (child session key) -> one step at a time
    - different lanes -> run in parallel, bounded by `max_concurrent`
    - forget() retires a lane; it is dropped once its last holder leaves
    """

    def __init__(self, *, max_concurrent: int = 4) -> None:
        self._lanes: dict[str, _Lane] = {}
        self._guard = threading.Lock()
        self._global = threading.BoundedSemaphore(max(1, max_concurrent))

    def _checkout(self, lane_id: str) -> _Lane:
        with self._guard:
            lane = self._lanes.get(lane_id)
            if lane is None:
                lane = self._lanes[lane_id] = _Lane()
            lane.holders += 1
            lane.retired = False
            return lane

    def _checkin(self, lane_id: str, lane: _Lane) -> None:
        with self._guard:
            lane.holders -= 1
            if lane.retired and lane.holders == 0 and self._lanes.get(lane_id) is lane:
                del self._lanes[lane_id]

    @contextmanager
    def lane(self, lane_id: str) -> Iterator[None]:
        lane = self._checkout(lane_id)
        try:
            with self._global, lane.lock:
                yield
        finally:
            self._checkin(lane_id, lane)

    def run(
        self,
        lane_id: str,
        fn: Callable[[], T],
        on_metrics: Callable[[float, float], None] | None = None,
    ) -> T:
        queued_at = time.monotonic()
        with self.lane(lane_id):
            started_at = time.monotonic()
            result = fn()
            ended_at = time.monotonic()
        wait_ms = max(0.0, (started_at - queued_at) * 1000.0)
        run_ms = max(0.0, (ended_at - started_at) * 1000.0)
        logger.debug("lane %s: waited %.0fms, ran %.0fms", lane_id, wait_ms, run_ms)
        if on_metrics is not None:
            on_metrics(wait_ms, run_ms)
        return result

    def forget(self, lane_id: str) -> None:
        with self._guard:
            lane = self._lanes.get(lane_id)
            if lane is None:
                return
            if lane.holders == 0:
                del self._lanes[lane_id]
            else:
                lane.retired = True
