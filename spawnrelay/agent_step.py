from __future__ import annotations

from typing import Any
from uuid import uuid4

from .gateway import GatewayClient

ANNOUNCE_SKIP_TOKEN = "ANNOUNCE_SKIP"

# Transport slack added on top of a wait budget.
WAIT_TRANSPORT_SLACK_MS = 2_000


def is_announce_skip(text: str | None) -> bool:
    return (text or "").strip() == ANNOUNCE_SKIP_TOKEN


def extract_message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text" and isinstance(block.get("text"), str):
            parts.append(block["text"])
        elif isinstance(block, str):
            parts.append(block)
    return "".join(parts).strip()


def read_latest_assistant_reply(gateway: GatewayClient, *, session_key: str, limit: int = 50) -> str | None:
    history = gateway.call(
        "chat.history",
        {"sessionKey": session_key, "limit": limit},
        timeout_ms=10_000,
    )
    messages = history.get("messages") if isinstance(history, dict) else None
    if not isinstance(messages, list):
        return None
    for message in reversed(messages):
        if not isinstance(message, dict) or message.get("role") != "assistant":
            continue
        text = extract_message_text(message)
        if text:
            return text
    return None


def run_agent_step(
    gateway: GatewayClient,
    *,
    session_key: str,
    message: str,
    extra_system_prompt: str,
    timeout_ms: int,
    lane: str | None = None,
) -> str | None:
    """Run one more turn on an existing session and return its reply (None unless it finished ok)."""
    idempotency_key = str(uuid4())
    params: dict[str, Any] = {
        "message": message,
        "sessionKey": session_key,
        "idempotencyKey": idempotency_key,
        "deliver": False,
        "extraSystemPrompt": extra_system_prompt,
    }
    if lane:
        params["lane"] = lane
    response = gateway.call("agent", params, timeout_ms=10_000)
    run_id = idempotency_key
    if isinstance(response, dict) and isinstance(response.get("runId"), str) and response["runId"]:
        run_id = response["runId"]

    wait = gateway.call(
        "agent.wait",
        {"runId": run_id, "timeoutMs": timeout_ms},
        timeout_ms=timeout_ms + WAIT_TRANSPORT_SLACK_MS,
    )
    if not isinstance(wait, dict) or wait.get("status") != "ok":
        return None
    return read_latest_assistant_reply(gateway, session_key=session_key)
