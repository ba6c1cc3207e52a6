"""
Usage/cost summary for a finished sub-agent session.

The gateway writes token usage into the session store asynchronously, so the
entry may be missing (or lack token fields) right after a run completes.
summarize() polls a few times before settling on "n/a".
"""

from __future__ import annotations

import logging
import math
import time
from pathlib import Path
from typing import Callable

from .config import SpawnConfig
from .retry import poll_until
from .session_store import SessionStoreReader, SessionUsageEntry

logger = logging.getLogger(__name__)

USAGE_POLL_ATTEMPTS = 4
USAGE_POLL_INTERVAL_SECONDS = 0.2
STATS_SEPARATOR = " • "


def format_duration_short(value_ms: float | None) -> str | None:
    if value_ms is None or not math.isfinite(value_ms) or value_ms <= 0:
        return None
    total_seconds = round(value_ms / 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    if hours > 0:
        return f"{hours}h{minutes}m"
    if minutes > 0:
        return f"{minutes}m{seconds}s"
    return f"{seconds}s"


def format_token_count(value: float | None) -> str:
    if not value or not math.isfinite(value):
        return "0"
    if value >= 1_000_000:
        return f"{value / 1_000_000:.1f}m"
    if value >= 1_000:
        return f"{value / 1_000:.1f}k"
    return str(round(value))


def format_usd(value: float | None) -> str | None:
    if value is None or not math.isfinite(value):
        return None
    if value >= 0.01:
        return f"${value:.2f}"
    return f"${value:.4f}"


class UsageResolver:
    def __init__(
        self,
        config: SpawnConfig,
        *,
        store: SessionStoreReader | None = None,
        attempts: int = USAGE_POLL_ATTEMPTS,
        interval_seconds: float = USAGE_POLL_INTERVAL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.store = store or SessionStoreReader(config)
        self.attempts = attempts
        self.interval_seconds = interval_seconds
        self.sleep = sleep

    def wait_for_usage(self, session_key: str) -> SessionUsageEntry | None:
        def fetch() -> SessionUsageEntry | None:
            try:
                return self.store.get_entry(session_key)
            except OSError as exc:
                logger.debug("session store read failed for %s: %s", session_key, exc)
                return None

        return poll_until(
            fetch,
            lambda entry: entry is not None and entry.has_tokens(),
            attempts=self.attempts,
            interval_seconds=self.interval_seconds,
            sleep=self.sleep,
        )

    def summarize(self, session_key: str, started_at: float | None = None, ended_at: float | None = None) -> str:
        try:
            entry = self.wait_for_usage(session_key)
            store_path: Path | None = self.store.store_path(session_key)
        except Exception:
            logger.exception("usage lookup failed for %s", session_key)
            entry, store_path = None, None
        return self._format(session_key, entry, store_path, started_at, ended_at)

    def _format(
        self,
        session_key: str,
        entry: SessionUsageEntry | None,
        store_path: Path | None,
        started_at: float | None,
        ended_at: float | None,
    ) -> str:
        session_id = entry.session_id if entry else None
        transcript = store_path.parent / f"{session_id}.jsonl" if session_id and store_path else None

        input_tokens = entry.input_tokens if entry else None
        output_tokens = entry.output_tokens if entry else None
        total = entry.total_tokens if entry else None
        if total is None and input_tokens is not None and output_tokens is not None:
            total = input_tokens + output_tokens

        runtime_ms = None
        if started_at is not None and ended_at is not None:
            runtime_ms = max(0.0, float(ended_at) - float(started_at))

        cost = None
        rate = self.config.model_cost(entry.model_provider, entry.model) if entry else None
        if rate is not None and input_tokens is not None and output_tokens is not None:
            cost = (input_tokens * rate.input + output_tokens * rate.output) / 1_000_000

        parts = [f"runtime {format_duration_short(runtime_ms) or 'n/a'}"]
        if total is not None:
            in_text = format_token_count(input_tokens) if input_tokens is not None else "n/a"
            out_text = format_token_count(output_tokens) if output_tokens is not None else "n/a"
            parts.append(f"tokens {format_token_count(total)} (in {in_text} / out {out_text})")
        else:
            parts.append("tokens n/a")
        cost_text = format_usd(cost)
        if cost_text:
            parts.append(f"est {cost_text}")
        parts.append(f"sessionKey {session_key}")
        if session_id:
            parts.append(f"sessionId {session_id}")
        if transcript:
            parts.append(f"transcript {transcript}")
        return "Stats: " + STATS_SEPARATOR.join(parts)
