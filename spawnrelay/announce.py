"""
Announce flow: post a finished sub-agent's result back to the requester chat.

Runs detached from the spawn call. The sub-agent is asked (in its own child
session) to turn its result into a short announcement, or to answer
ANNOUNCE_SKIP to stay silent. The announcement is sent with a usage/stats line
appended, then the child session is optionally deleted.

Nothing in here may raise to the caller: by the time this runs the spawn tool
has already returned its result, and a broken announcement must not look like
a broken task.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal
from uuid import uuid4

from .agent_step import WAIT_TRANSPORT_SLACK_MS, is_announce_skip, read_latest_assistant_reply, run_agent_step
from .announce_target import resolve_announce_target
from .config import SpawnConfig
from .gateway import GatewayClient
from .lane_queue import LaneQueue
from .prompt_builder import PromptBuilder
from .usage import UsageResolver

logger = logging.getLogger(__name__)

ANNOUNCE_STEP_MESSAGE = "Sub-agent announce step."
ANNOUNCE_LANE = "nested"
MAX_COMPLETION_WAIT_MS = 60_000
SEND_TIMEOUT_MS = 10_000
DELETE_TIMEOUT_MS = 10_000


@dataclass
class AnnounceRequest:
    child_session_key: str
    run_id: str
    requester_session_key: str
    requester_display_key: str
    task: str
    timeout_ms: int
    cleanup: Literal["delete", "keep"] = "keep"
    requester_provider: str | None = None
    round_one_reply: str | None = None
    wait_for_completion: bool | None = None
    started_at: float | None = None
    ended_at: float | None = None


class AnnounceFlow:
    def __init__(
        self,
        gateway: GatewayClient,
        config: SpawnConfig,
        *,
        usage: UsageResolver | None = None,
        prompts: PromptBuilder | None = None,
        lanes: LaneQueue | None = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.usage = usage or UsageResolver(config)
        self.prompts = prompts or PromptBuilder()
        self.lanes = lanes or LaneQueue()

    def run(self, request: AnnounceRequest) -> None:
        try:
            self._announce(request)
        except Exception:
            logger.exception("announce failed for run=%s child=%s", request.run_id, request.child_session_key)
        finally:
            if request.cleanup == "delete":
                self._delete_child(request.child_session_key)
            self.lanes.forget(request.child_session_key)

    def _announce(self, request: AnnounceRequest) -> None:
        reply = request.round_one_reply
        if not reply and request.wait_for_completion is not False:
            wait_ms = min(request.timeout_ms, MAX_COMPLETION_WAIT_MS)
            wait = self.gateway.call(
                "agent.wait",
                {"runId": request.run_id, "timeoutMs": wait_ms},
                timeout_ms=wait_ms + WAIT_TRANSPORT_SLACK_MS,
            )
            status = wait.get("status") if isinstance(wait, dict) else None
            if status != "ok":
                logger.info("run=%s not complete (status=%s); skipping announce", request.run_id, status)
                return
            reply = read_latest_assistant_reply(self.gateway, session_key=request.child_session_key)
        if not reply:
            reply = read_latest_assistant_reply(self.gateway, session_key=request.child_session_key)

        target = resolve_announce_target(
            self.gateway,
            session_key=request.requester_session_key,
            display_key=request.requester_display_key,
        )
        if target is None:
            logger.info("no announce target for requester %s; staying silent", request.requester_display_key)
            return

        prompt = self.prompts.build_announce_prompt(
            announce_provider=target.provider,
            task=request.task,
            subagent_reply=reply,
            requester_session_key=request.requester_session_key,
            requester_provider=request.requester_provider,
        )
        announce_reply = self.lanes.run(
            request.child_session_key,
            lambda: run_agent_step(
                self.gateway,
                session_key=request.child_session_key,
                message=ANNOUNCE_STEP_MESSAGE,
                extra_system_prompt=prompt,
                timeout_ms=request.timeout_ms,
                lane=ANNOUNCE_LANE,
            ),
        )
        if not announce_reply or not announce_reply.strip() or is_announce_skip(announce_reply):
            logger.info("sub-agent run=%s chose not to announce", request.run_id)
            return

        stats = self.usage.summarize(request.child_session_key, request.started_at, request.ended_at)
        message = f"{announce_reply.strip()}\n\n{stats}" if stats else announce_reply.strip()
        self.gateway.call(
            "send",
            {
                "to": target.to,
                "message": message,
                "provider": target.provider,
                "accountId": target.account_id,
                "idempotencyKey": str(uuid4()),
            },
            timeout_ms=SEND_TIMEOUT_MS,
        )
        logger.info("announced run=%s to %s:%s", request.run_id, target.provider, target.to)

    def _delete_child(self, child_session_key: str) -> None:
        try:
            self.gateway.call(
                "sessions.delete",
                {"key": child_session_key, "deleteTranscript": True},
                timeout_ms=DELETE_TIMEOUT_MS,
            )
        except Exception as exc:
            logger.debug("cleanup of %s failed: %s", child_session_key, exc)
