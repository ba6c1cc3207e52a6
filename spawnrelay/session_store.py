"""
Read-only view of the gateway's session store.

The gateway owns sessions.json (one object keyed by session key) and writes
usage into it after each run. This module only reads; fields may be missing
while the gateway is still flushing.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import SpawnConfig
from .session_key import resolve_agent_id_from_session_key


@dataclass
class SessionUsageEntry:
    session_id: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    model: str | None = None
    model_provider: str | None = None
    last_provider: str | None = None
    last_to: str | None = None
    last_account_id: str | None = None

    def has_tokens(self) -> bool:
        return self.total_tokens is not None or self.input_tokens is not None or self.output_tokens is not None


class SessionStoreReader:
    def __init__(self, config: SpawnConfig) -> None:
        self.config = config

    def store_path(self, session_key: str) -> Path:
        return self.config.resolve_store_path(resolve_agent_id_from_session_key(session_key))

    def load(self, store_path: Path) -> dict[str, dict[str, Any]]:
        try:
            raw = store_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError:
            # Cut off inside a multibyte character mid-write.
            return {}
        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            # The gateway may be mid-write; treat as not there yet.
            return {}
        return data if isinstance(data, dict) else {}

    def get_entry(self, session_key: str) -> SessionUsageEntry | None:
        row = self.load(self.store_path(session_key)).get(session_key)
        if not isinstance(row, dict):
            return None
        return SessionUsageEntry(
            session_id=_opt_str(row.get("sessionId")),
            input_tokens=_opt_int(row.get("inputTokens")),
            output_tokens=_opt_int(row.get("outputTokens")),
            total_tokens=_opt_int(row.get("totalTokens")),
            model=_opt_str(row.get("model")),
            model_provider=_opt_str(row.get("modelProvider")),
            last_provider=_opt_str(row.get("lastProvider")),
            last_to=_opt_str(row.get("lastTo")),
            last_account_id=_opt_str(row.get("lastAccountId")),
        )


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _opt_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None
