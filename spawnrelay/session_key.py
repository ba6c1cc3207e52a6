"""
Session key parsing and construction.

Keys look like:
  - "agent:<agentId>:main"                  agent-scoped main session
  - "agent:<agentId>:subagent:<runToken>"   isolated sub-agent session
  - "main" / "global"                       main session alias
  - "discord:group:<id>"                    provider-scoped conversation (opaque here)
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal
from uuid import uuid4

if TYPE_CHECKING:
    from .config import SpawnConfig

DEFAULT_AGENT_ID = "main"
DEFAULT_MAIN_KEY = "main"

SessionKind = Literal["main", "subagent"]

_INVALID_AGENT_CHARS = re.compile(r"[^a-z0-9_-]+")


@dataclass(frozen=True)
class ParsedSessionKey:
    agent_id: str
    rest: str
    kind: SessionKind
    run_token: str | None = None


@dataclass(frozen=True)
class MainSessionAlias:
    main_key: str
    alias: str


def normalize_agent_id(value: str | None) -> str:
    candidate = (value or "").strip().lower()
    if not candidate:
        return DEFAULT_AGENT_ID
    candidate = _INVALID_AGENT_CHARS.sub("-", candidate).strip("-")
    return candidate or DEFAULT_AGENT_ID


def parse_agent_session_key(key: str | None) -> ParsedSessionKey | None:
    """Split an ``agent:<id>:<rest>`` key; anything else is not parseable."""
    raw = (key or "").strip()
    if not raw:
        return None
    parts = [p for p in raw.split(":") if p]
    if len(parts) < 3 or parts[0] != "agent":
        return None
    agent_id = parts[1].strip()
    rest = ":".join(parts[2:])
    if not agent_id or not rest:
        return None
    if parts[2].lower() == "subagent":
        token = ":".join(parts[3:]) or None
        return ParsedSessionKey(agent_id=agent_id, rest=rest, kind="subagent", run_token=token)
    return ParsedSessionKey(agent_id=agent_id, rest=rest, kind="main")


def is_subagent_session_key(key: str | None) -> bool:
    raw = (key or "").strip()
    if not raw:
        return False
    if raw.lower().startswith("subagent:"):
        return True
    parsed = parse_agent_session_key(raw)
    return parsed is not None and parsed.kind == "subagent"


def resolve_agent_id_from_session_key(key: str | None) -> str:
    parsed = parse_agent_session_key(key)
    return normalize_agent_id(parsed.agent_id if parsed else None)


def subagent_session_key(agent_id: str | None) -> str:
    return f"agent:{normalize_agent_id(agent_id)}:subagent:{uuid4()}"


# -- main session alias ---------------------------------------------------------


def resolve_main_session_alias(config: SpawnConfig) -> MainSessionAlias:
    main_key = (config.main_key or "").strip() or DEFAULT_MAIN_KEY
    alias = "global" if config.session_scope == "global" else main_key
    return MainSessionAlias(main_key=main_key, alias=alias)


def resolve_internal_session_key(key: str, *, alias: str, main_key: str) -> str:
    if key == "main":
        return alias
    return key


def resolve_display_session_key(key: str, *, alias: str, main_key: str) -> str:
    if key == alias:
        return "main"
    if key == main_key:
        return "main"
    return key
