"""
Spawn orchestrator behind the sessions_spawn tool.

spawn() creates an isolated child session, optionally applies a model
override, starts the run on the gateway and, with a positive timeout, waits
for it. Every outcome is returned as a SpawnResult; gateway failures never
escape as exceptions. On a successful wait the announce flow is handed to the
background runtime, guarded by the registry's exactly-once claim.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from .agent_step import WAIT_TRANSPORT_SLACK_MS, read_latest_assistant_reply
from .announce import AnnounceFlow, AnnounceRequest
from .config import SpawnConfig
from .gateway import GatewayClient
from .prompt_builder import PromptBuilder
from .session_key import (
    is_subagent_session_key,
    normalize_agent_id,
    parse_agent_session_key,
    resolve_display_session_key,
    resolve_internal_session_key,
    resolve_main_session_alias,
    subagent_session_key,
)
from .subagent_registry import Cleanup, SubagentRegistry, SubagentRun
from .subagent_runtime import SubagentRuntime

logger = logging.getLogger(__name__)

SpawnStatus = Literal["ok", "accepted", "timeout", "error", "forbidden"]

SUBAGENT_LANE = "subagent"
ANNOUNCE_TIMEOUT_MS = 30_000
PATCH_TIMEOUT_MS = 10_000
START_TIMEOUT_MS = 10_000
ABORT_TIMEOUT_MS = 5_000

_RECOVERABLE_MODEL_CODES = {"INVALID_MODEL", "MODEL_NOT_ALLOWED"}
_RECOVERABLE_MODEL_MARKERS = ("invalid model", "model not allowed")


@dataclass
class SpawnOptions:
    label: str | None = None
    model: str | None = None
    timeout_seconds: int = 0
    cleanup: Cleanup = "keep"


@dataclass
class SpawnResult:
    status: SpawnStatus
    child_session_key: str | None = None
    run_id: str | None = None
    reply: str | None = None
    error: str | None = None
    model_applied: bool | None = None
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": self.status,
            "error": self.error,
            "childSessionKey": self.child_session_key,
            "runId": self.run_id,
            "reply": self.reply,
            "modelApplied": self.model_applied,
            "warning": self.warning,
        }
        return {k: v for k, v in payload.items() if v is not None}


def is_recoverable_model_error(exc: BaseException) -> bool:
    """True when a model-override patch failed only because the model was rejected."""
    code = getattr(exc, "code", None)
    if code and str(code).upper() in _RECOVERABLE_MODEL_CODES:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _RECOVERABLE_MODEL_MARKERS)


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class SpawnOrchestrator:
    def __init__(
        self,
        gateway: GatewayClient,
        config: SpawnConfig,
        *,
        registry: SubagentRegistry | None = None,
        runtime: SubagentRuntime | None = None,
        announce_flow: AnnounceFlow | None = None,
        prompts: PromptBuilder | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.registry = registry or SubagentRegistry()
        self.runtime = runtime or SubagentRuntime()
        self.prompts = prompts or PromptBuilder()
        self.announce_flow = announce_flow or AnnounceFlow(gateway, config, prompts=self.prompts)

    def spawn(
        self,
        requester_session_key: str | None,
        requester_provider: str | None,
        task: str,
        options: SpawnOptions | None = None,
    ) -> SpawnResult:
        opts = options or SpawnOptions()
        if requester_session_key and is_subagent_session_key(requester_session_key):
            return SpawnResult(status="forbidden", error="sessions_spawn is not allowed from sub-agent sessions")

        timeout_seconds = max(0, int(opts.timeout_seconds or 0))
        timeout_ms = timeout_seconds * 1000
        model = (opts.model or "").strip() or None
        label = (opts.label or "").strip() or None

        main = resolve_main_session_alias(self.config)
        if requester_session_key:
            requester_internal_key = resolve_internal_session_key(
                requester_session_key, alias=main.alias, main_key=main.main_key
            )
        else:
            requester_internal_key = main.alias
        requester_display_key = resolve_display_session_key(
            requester_internal_key, alias=main.alias, main_key=main.main_key
        )

        parsed = parse_agent_session_key(requester_internal_key)
        requester_agent_id = normalize_agent_id(parsed.agent_id if parsed else None)
        child_session_key = subagent_session_key(requester_agent_id)

        if self.config.sandboxed:
            try:
                self.gateway.call(
                    "sessions.patch",
                    {"key": child_session_key, "spawnedBy": requester_internal_key},
                    timeout_ms=PATCH_TIMEOUT_MS,
                )
            except Exception as exc:
                logger.debug("spawnedBy patch failed for %s: %s", child_session_key, exc)

        model_applied = False
        model_warning: str | None = None
        if model:
            try:
                self.gateway.call(
                    "sessions.patch",
                    {"key": child_session_key, "model": model},
                    timeout_ms=PATCH_TIMEOUT_MS,
                )
                model_applied = True
            except Exception as exc:
                if not is_recoverable_model_error(exc):
                    return SpawnResult(status="error", error=_error_text(exc), child_session_key=child_session_key)
                model_warning = _error_text(exc)
                logger.warning("model override %r rejected for %s: %s", model, child_session_key, model_warning)
        model_status = model_applied if model else None

        system_prompt = self.prompts.build_subagent_prompt(
            child_session_key=child_session_key,
            requester_session_key=requester_session_key,
            requester_provider=requester_provider,
            label=label,
        )
        idempotency_key = str(uuid4())
        run_id = idempotency_key
        try:
            response = self.gateway.call(
                "agent",
                {
                    "message": task,
                    "sessionKey": child_session_key,
                    "idempotencyKey": idempotency_key,
                    "deliver": False,
                    "lane": SUBAGENT_LANE,
                    "extraSystemPrompt": system_prompt,
                },
                timeout_ms=START_TIMEOUT_MS,
            )
        except Exception as exc:
            return SpawnResult(
                status="error",
                error=_error_text(exc),
                child_session_key=child_session_key,
                run_id=run_id,
            )
        if isinstance(response, dict) and isinstance(response.get("runId"), str) and response["runId"]:
            run_id = response["runId"]

        self.registry.register(
            SubagentRun(
                run_id=run_id,
                child_session_key=child_session_key,
                requester_session_key=requester_internal_key,
                requester_display_key=requester_display_key,
                requester_provider=requester_provider,
                task=task,
                cleanup=opts.cleanup,
                label=label,
            )
        )
        logger.info("spawned sub-agent run=%s child=%s for %s", run_id, child_session_key, requester_display_key)

        if timeout_seconds == 0:
            # Fire-and-forget: announce only happens if notify_run_completed() is called later.
            return SpawnResult(
                status="accepted",
                child_session_key=child_session_key,
                run_id=run_id,
                model_applied=model_status,
                warning=model_warning,
            )

        try:
            wait = self.gateway.call(
                "agent.wait",
                {"runId": run_id, "timeoutMs": timeout_ms},
                timeout_ms=timeout_ms + WAIT_TRANSPORT_SLACK_MS,
            )
        except Exception as exc:
            message = _error_text(exc)
            timed_out = "gateway timeout" in message
            if timed_out:
                self._abort(child_session_key, run_id)
            self.registry.release(run_id)
            return SpawnResult(
                status="timeout" if timed_out else "error",
                error=message,
                child_session_key=child_session_key,
                run_id=run_id,
                model_applied=model_status,
                warning=model_warning,
            )
        wait = wait if isinstance(wait, dict) else {}
        wait_status = wait.get("status") if isinstance(wait.get("status"), str) else None
        wait_error = wait.get("error") if isinstance(wait.get("error"), str) else None

        if wait_status == "timeout":
            self._abort(child_session_key, run_id)
            self.registry.release(run_id)
            return SpawnResult(
                status="timeout",
                error=wait_error,
                child_session_key=child_session_key,
                run_id=run_id,
                model_applied=model_status,
                warning=model_warning,
            )
        if wait_status == "error":
            self.registry.release(run_id)
            return SpawnResult(
                status="error",
                error=wait_error or "agent error",
                child_session_key=child_session_key,
                run_id=run_id,
                model_applied=model_status,
                warning=model_warning,
            )

        try:
            reply = read_latest_assistant_reply(self.gateway, session_key=child_session_key)
        except Exception as exc:
            logger.warning("could not read reply for run=%s: %s", run_id, exc)
            reply = None
        if self.registry.claim_announce(run_id):
            self._launch_announce(
                run_id,
                round_one_reply=reply,
                started_at=_as_number(wait.get("startedAt")),
                ended_at=_as_number(wait.get("endedAt")),
            )

        return SpawnResult(
            status="ok",
            child_session_key=child_session_key,
            run_id=run_id,
            reply=reply,
            model_applied=model_status,
            warning=model_warning,
        )

    def notify_run_completed(
        self,
        run_id: str,
        *,
        started_at: float | None = None,
        ended_at: float | None = None,
    ) -> bool:
        """Out-of-band completion path; announces a registered run unless it was already claimed."""
        if self.registry.get(run_id) is None:
            return False
        if not self.registry.claim_announce(run_id):
            return False
        return self._launch_announce(
            run_id,
            wait_for_completion=False,
            started_at=started_at,
            ended_at=ended_at,
        )

    def _launch_announce(
        self,
        run_id: str,
        *,
        round_one_reply: str | None = None,
        wait_for_completion: bool | None = None,
        started_at: float | None = None,
        ended_at: float | None = None,
    ) -> bool:
        run = self.registry.get(run_id)
        if run is None:
            return False
        request = AnnounceRequest(
            child_session_key=run.child_session_key,
            run_id=run.run_id,
            requester_session_key=run.requester_session_key,
            requester_display_key=run.requester_display_key,
            requester_provider=run.requester_provider,
            task=run.task,
            timeout_ms=ANNOUNCE_TIMEOUT_MS,
            cleanup=run.cleanup,
            round_one_reply=round_one_reply,
            wait_for_completion=wait_for_completion,
            started_at=started_at,
            ended_at=ended_at,
        )

        def _job() -> None:
            try:
                self.announce_flow.run(request)
            finally:
                self.registry.release(run_id)

        try:
            self.runtime.submit(f"announce:{run_id}", _job)
        except RuntimeError as exc:
            logger.error("could not schedule announce for run=%s: %s", run_id, exc)
            self.registry.release(run_id)
            return False
        return True

    def _abort(self, child_session_key: str, run_id: str) -> None:
        try:
            self.gateway.call(
                "chat.abort",
                {"sessionKey": child_session_key, "runId": run_id},
                timeout_ms=ABORT_TIMEOUT_MS,
            )
        except Exception as exc:
            logger.debug("abort of run=%s failed: %s", run_id, exc)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    return None
