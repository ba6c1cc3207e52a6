from __future__ import annotations

import time
from typing import Callable, TypeVar

T = TypeVar("T")


def poll_until(
    fetch: Callable[[], T],
    done: Callable[[T], bool],
    *,
    attempts: int,
    interval_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Fetch once, then re-fetch up to `attempts` times (sleeping `interval_seconds`
    before each) until `done(value)` holds. Returns the last value either way.
    """
    value = fetch()
    attempt = 0
    while not done(value) and attempt < max(0, attempts):
        sleep(interval_seconds)
        value = fetch()
        attempt += 1
    return value
