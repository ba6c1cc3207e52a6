"""
Runtime configuration.

A JSON file (path argument or SPAWNRELAY_CONFIG) provides session, gateway and
model pricing settings; a few environment variables override the file so a
`.env` loaded by the CLI can point at a different gateway or store.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_GATEWAY_URL = "http://127.0.0.1:18789"
DEFAULT_SESSION_STORE = "~/.spawnrelay/agents/{agentId}/sessions/sessions.json"


class ConfigError(Exception):
    pass


@dataclass
class ModelCost:
    """USD per million tokens."""

    input: float
    output: float
    cache_read: float = 0.0
    cache_write: float = 0.0


@dataclass
class SpawnConfig:
    main_key: str = "main"
    session_scope: str = "per-sender"
    session_store: str = DEFAULT_SESSION_STORE
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_token: str | None = None
    sandboxed: bool = False
    model_costs: dict[str, dict[str, ModelCost]] = field(default_factory=dict)

    def model_cost(self, provider: str | None, model: str | None) -> ModelCost | None:
        p = (provider or "").strip()
        m = (model or "").strip()
        if not p or not m:
            return None
        return self.model_costs.get(p, {}).get(m)

    def resolve_store_path(self, agent_id: str) -> Path:
        raw = self.session_store.replace("{agentId}", agent_id)
        return Path(raw).expanduser()


def load_config(path: str | None = None) -> SpawnConfig:
    config_path = path or os.getenv("SPAWNRELAY_CONFIG")
    data: dict[str, Any] = {}
    if config_path:
        resolved = Path(config_path).expanduser()
        if resolved.is_file():
            try:
                loaded = json.loads(resolved.read_text(encoding="utf-8") or "{}")
            except json.JSONDecodeError as exc:
                raise ConfigError(f"invalid config file {resolved}: {exc}") from exc
            if not isinstance(loaded, dict):
                raise ConfigError(f"config root must be an object: {resolved}")
            data = loaded

    session = _section(data, "session")
    gateway = _section(data, "gateway")
    cfg = SpawnConfig(
        main_key=str(session.get("mainKey") or "main").strip() or "main",
        session_scope=str(session.get("scope") or "per-sender").strip().lower(),
        session_store=str(session.get("store") or DEFAULT_SESSION_STORE),
        gateway_url=str(gateway.get("url") or DEFAULT_GATEWAY_URL),
        gateway_token=str(gateway["token"]) if gateway.get("token") else None,
        sandboxed=bool(data.get("sandboxed", False)),
        model_costs=_parse_model_costs(data),
    )

    env_url = (os.getenv("SPAWNRELAY_GATEWAY_URL") or "").strip()
    if env_url:
        cfg.gateway_url = env_url
    env_token = (os.getenv("SPAWNRELAY_GATEWAY_TOKEN") or "").strip()
    if env_token:
        cfg.gateway_token = env_token
    env_store = (os.getenv("SPAWNRELAY_SESSION_STORE") or "").strip()
    if env_store:
        cfg.session_store = env_store
    return cfg


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _parse_model_costs(data: dict[str, Any]) -> dict[str, dict[str, ModelCost]]:
    providers = _section(_section(data, "models"), "providers")
    out: dict[str, dict[str, ModelCost]] = {}
    for provider, entry in providers.items():
        if not isinstance(entry, dict):
            continue
        models = entry.get("models")
        if not isinstance(models, list):
            continue
        for model in models:
            if not isinstance(model, dict) or not model.get("id"):
                continue
            cost = model.get("cost")
            if not isinstance(cost, dict):
                continue
            try:
                parsed = ModelCost(
                    input=float(cost.get("input", 0) or 0),
                    output=float(cost.get("output", 0) or 0),
                    cache_read=float(cost.get("cacheRead", 0) or 0),
                    cache_write=float(cost.get("cacheWrite", 0) or 0),
                )
            except (TypeError, ValueError):
                continue
            out.setdefault(str(provider), {})[str(model["id"])] = parsed
    return out
