from __future__ import annotations

from .agent_step import ANNOUNCE_SKIP_TOKEN


class PromptBuilder:
    """Extra system prompts for the sub-agent's task step and its announce step."""

    def __init__(self, *, max_result_chars: int = 8000) -> None:
        self.max_result_chars = max_result_chars

    def build_subagent_prompt(
        self,
        *,
        child_session_key: str,
        requester_session_key: str | None = None,
        requester_provider: str | None = None,
        label: str | None = None,
    ) -> str:
        lines = ["Sub-agent context:"]
        if label:
            lines.append(f"Label: {label}")
        lines.extend(self._requester_section(requester_session_key, requester_provider))
        lines.append(f"Your session: {child_session_key}.")
        lines.append("Run the task. Provide a clear final answer (plain text).")
        lines.append(
            'After you finish, you may be asked to produce an "announce" message to post back to the requester chat.'
        )
        return "\n".join(lines)

    def build_announce_prompt(
        self,
        *,
        announce_provider: str,
        task: str,
        subagent_reply: str | None,
        requester_session_key: str | None = None,
        requester_provider: str | None = None,
    ) -> str:
        lines = ["Sub-agent announce step:"]
        lines.extend(self._requester_section(requester_session_key, requester_provider))
        lines.append(f"Post target provider: {announce_provider}.")
        lines.append(f"Original task: {task}")
        if subagent_reply:
            lines.append(f"Sub-agent result: {self._clip(subagent_reply)}")
        else:
            lines.append("Sub-agent result: (not available).")
        lines.append(f'Reply exactly "{ANNOUNCE_SKIP_TOKEN}" to stay silent.')
        lines.append("Any other reply will be posted to the requester chat provider.")
        return "\n".join(lines)

    def _requester_section(self, session_key: str | None, provider: str | None) -> list[str]:
        lines: list[str] = []
        if session_key:
            lines.append(f"Requester session: {session_key}.")
        if provider:
            lines.append(f"Requester provider: {provider}.")
        return lines

    def _clip(self, text: str) -> str:
        if len(text) <= self.max_result_chars:
            return text
        return text[: self.max_result_chars - 3] + "..."
