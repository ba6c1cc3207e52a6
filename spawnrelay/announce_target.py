from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from .gateway import GatewayClient, GatewayError

logger = logging.getLogger(__name__)

_CONVERSATION_KINDS = {"group", "channel"}


@dataclass(frozen=True)
class AnnounceTarget:
    provider: str
    to: str
    account_id: str | None = None


def announce_target_from_key(session_key: str) -> AnnounceTarget | None:
    """Derive a target from provider-scoped keys like ``discord:group:<id>``."""
    parts = [p for p in (session_key or "").split(":") if p]
    if len(parts) < 3:
        return None
    provider, kind = parts[0].strip().lower(), parts[1].strip().lower()
    if kind not in _CONVERSATION_KINDS or provider == "agent":
        return None
    conversation_id = ":".join(parts[2:]).strip()
    if not provider or not conversation_id:
        return None
    if provider == "discord":
        return AnnounceTarget(provider=provider, to=f"channel:{conversation_id}")
    if provider == "signal":
        return AnnounceTarget(provider=provider, to=f"group:{conversation_id}")
    return AnnounceTarget(provider=provider, to=conversation_id)


def resolve_announce_target(
    gateway: GatewayClient,
    *,
    session_key: str,
    display_key: str,
) -> AnnounceTarget | None:
    direct = announce_target_from_key(session_key)
    if direct is not None:
        return direct

    try:
        listing = gateway.call(
            "sessions.list",
            {"includeGlobal": True, "limit": 200},
            timeout_ms=10_000,
        )
    except GatewayError as exc:
        logger.debug("sessions.list failed while resolving announce target: %s", exc)
        return None
    sessions = listing.get("sessions") if isinstance(listing, dict) else None
    if not isinstance(sessions, list):
        return None

    match: dict[str, Any] | None = None
    for row in sessions:
        if isinstance(row, dict) and row.get("key") in (session_key, display_key):
            match = row
            break
    if match is None:
        return None

    provider = _field(match, "lastProvider", "last_provider")
    to = _field(match, "lastTo", "last_to")
    if not provider or not to:
        return None
    return AnnounceTarget(provider=provider, to=to, account_id=_field(match, "lastAccountId", "last_account_id"))


def _field(row: dict[str, Any], *names: str) -> str | None:
    for name in names:
        value = row.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
