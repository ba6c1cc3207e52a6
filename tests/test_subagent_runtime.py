from __future__ import annotations

import threading
import time
import unittest

from spawnrelay.lane_queue import LaneQueue
from spawnrelay.subagent_runtime import SubagentRuntime


class SubagentRuntimeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.runtime = SubagentRuntime(max_workers=2)
        self.addCleanup(self.runtime.shutdown, wait=True)

    def test_failing_job_is_logged_not_raised(self) -> None:
        def boom() -> None:
            raise RuntimeError("announce exploded")

        with self.assertLogs("spawnrelay.subagent_runtime", level="ERROR") as logs:
            future = self.runtime.submit("announce:bad", boom)
            self.assertTrue(self.runtime.wait_idle(timeout=5))
            future.exception(timeout=5)
            # Done-callbacks run on the worker; give the logger a moment.
            deadline = time.monotonic() + 2
            while not logs.records and time.monotonic() < deadline:
                time.sleep(0.01)
        self.assertIn("announce:bad", logs.output[0])
        self.assertFalse(self.runtime.is_running("announce:bad"))

    def test_wait_idle_times_out_while_job_blocked(self) -> None:
        release = threading.Event()
        self.runtime.submit("announce:slow", lambda: release.wait(5) and None)

        self.assertTrue(self.runtime.is_running("announce:slow"))
        self.assertFalse(self.runtime.wait_idle(timeout=0.05))
        release.set()
        self.assertTrue(self.runtime.wait_idle(timeout=5))

    def test_wait_idle_with_no_jobs(self) -> None:
        self.assertTrue(self.runtime.wait_idle(timeout=0))


class LaneQueueTests(unittest.TestCase):
    def test_same_lane_is_serialized(self) -> None:
        lanes = LaneQueue(max_concurrent=4)
        active = 0
        peak = 0
        lock = threading.Lock()

        def step() -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.02)
            with lock:
                active -= 1

        threads = [threading.Thread(target=lanes.run, args=("child", step)) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        self.assertEqual(peak, 1)

    def test_run_returns_result_and_reports_metrics(self) -> None:
        lanes = LaneQueue()
        metrics: list[tuple[float, float]] = []

        result = lanes.run("child", lambda: "done", on_metrics=lambda w, r: metrics.append((w, r)))

        self.assertEqual(result, "done")
        self.assertEqual(len(metrics), 1)
        self.assertGreaterEqual(metrics[0][0], 0.0)

    def test_forget_drops_idle_lane(self) -> None:
        lanes = LaneQueue()
        lanes.run("child", lambda: None)
        self.assertEqual(sorted(lanes._lanes), ["child"])
        lanes.forget("child")
        lanes.forget("never-used")
        self.assertEqual(sorted(lanes._lanes), [])
        self.assertEqual(lanes.run("child", lambda: 7), 7)

    def test_forget_while_busy_waits_for_last_holder(self) -> None:
        lanes = LaneQueue()
        entered = threading.Event()
        release = threading.Event()

        def hold() -> None:
            entered.set()
            release.wait(5)

        worker = threading.Thread(target=lanes.run, args=("child", hold))
        worker.start()
        self.assertTrue(entered.wait(5))

        lanes.forget("child")
        self.assertEqual(sorted(lanes._lanes), ["child"])

        release.set()
        worker.join(5)
        self.assertEqual(sorted(lanes._lanes), [])


if __name__ == "__main__":
    unittest.main()
