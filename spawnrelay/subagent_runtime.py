from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class BackgroundJob:
    name: str
    future: Future[None]


class SubagentRuntime:
    """
    Supervisor for detached background work (announce flows).

    Jobs are fire-and-forget: a failing job is logged and dropped, it never
    reaches whoever submitted it.
    """

    def __init__(self, *, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="announce")
        self._jobs: dict[str, BackgroundJob] = {}
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[[], None]) -> Future[None]:
        future = self._executor.submit(fn)
        with self._lock:
            self._jobs[name] = BackgroundJob(name=name, future=future)

        def _done(fut: Future[None]) -> None:
            with self._lock:
                job = self._jobs.get(name)
                if job is not None and job.future is fut:
                    self._jobs.pop(name, None)
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.error("background job %s failed: %s", name, exc, exc_info=exc)

        future.add_done_callback(_done)
        return future

    def is_running(self, name: str) -> bool:
        with self._lock:
            job = self._jobs.get(name)
        if job is None:
            return False
        return not job.future.done()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until all submitted jobs finish; False if the timeout elapsed first."""
        with self._lock:
            pending = [job.future for job in self._jobs.values()]
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, *, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)
