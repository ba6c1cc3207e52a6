"""
Tool surface exposed to the requesting agent.

Each tool has:
  - An OpenAI-compatible function schema (for the LLM).
  - A handler that receives parsed arguments and returns a JSON string result.
"""

from __future__ import annotations

import json
import math
from typing import Any

from .spawn import SpawnOptions, SpawnOrchestrator, SpawnResult

SESSIONS_SPAWN_TOOL_DEFINITION: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "sessions_spawn",
        "description": (
            "Spawn a background sub-agent run in an isolated session and announce the result "
            "back to the requester chat."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "task": {"type": "string", "description": "Instruction for the sub-agent."},
                "label": {"type": "string", "description": "Optional short label for the run."},
                "model": {"type": "string", "description": "Optional model override for the child session."},
                "timeoutSeconds": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Seconds to wait for the result; 0 returns immediately.",
                },
                "cleanup": {
                    "type": "string",
                    "enum": ["delete", "keep"],
                    "description": "Delete the child session after announcing, or keep it. Default keep.",
                },
            },
            "required": ["task"],
        },
    },
}

TOOL_DEFINITIONS: list[dict[str, Any]] = [SESSIONS_SPAWN_TOOL_DEFINITION]


def _error(message: str) -> str:
    return json.dumps({"status": "error", "error": message}, ensure_ascii=False)


def _read_timeout_seconds(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or not math.isfinite(raw):
        return 0
    return max(0, math.floor(raw))


def parse_spawn_arguments(args: dict[str, Any]) -> tuple[str, SpawnOptions]:
    task = args.get("task")
    if not isinstance(task, str) or not task.strip():
        raise ValueError("task required")
    label = args.get("label").strip() if isinstance(args.get("label"), str) else ""
    model = args.get("model").strip() if isinstance(args.get("model"), str) else ""
    cleanup = args.get("cleanup") if args.get("cleanup") in ("delete", "keep") else "keep"
    return task.strip(), SpawnOptions(
        label=label or None,
        model=model or None,
        timeout_seconds=_read_timeout_seconds(args.get("timeoutSeconds")),
        cleanup=cleanup,
    )


def sessions_spawn(
    orchestrator: SpawnOrchestrator,
    args: dict[str, Any],
    *,
    agent_session_key: str | None = None,
    agent_provider: str | None = None,
) -> SpawnResult:
    task, options = parse_spawn_arguments(args)
    return orchestrator.spawn(agent_session_key, agent_provider, task, options)


def execute_tool(
    name: str,
    arguments_json: str,
    orchestrator: SpawnOrchestrator,
    *,
    agent_session_key: str | None = None,
    agent_provider: str | None = None,
) -> str:
    """
    Look up a tool by name, parse its JSON arguments, and run it.
    Always returns a JSON string; failures come back as {"status": "error"}.
    """
    if name != "sessions_spawn":
        return _error(f"unknown tool '{name}'")
    try:
        args = json.loads(arguments_json) if arguments_json else {}
    except json.JSONDecodeError as exc:
        return _error(f"failed to parse tool arguments: {exc}")
    if not isinstance(args, dict):
        return _error("tool arguments must be a JSON object")
    try:
        result = sessions_spawn(
            orchestrator,
            args,
            agent_session_key=agent_session_key,
            agent_provider=agent_provider,
        )
    except ValueError as exc:
        return _error(str(exc))
    return json.dumps(result.to_dict(), ensure_ascii=False)

