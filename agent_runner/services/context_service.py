"""Context assembly for a run, with long-session compaction.

The model sees ``[system prompt, summary?, recent tail, group lines?, user message]``.
When the session history since the agent's context reset exceeds the
character ceiling, everything but a recent tail (a tenth of the ceiling) is
folded into a deterministic digest stored as the session's SessionSummary.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..core.skills import load_skill_prompt
from ..errors import ContextAssemblyError
from ..models.agent import Agent
from ..models.run import Run
from ..models.session import Message, SessionSummary
from ..repositories.session_repository import SessionRepository

logger = logging.getLogger("agent_runner.services.context_service")

_ERROR_RE = re.compile(r"\b(error|exception|traceback|failed|failure|bug|crash)\b", re.IGNORECASE)
_TODO_RE = re.compile(r"\b(todo|fixme|next step|follow[- ]up)\b", re.IGNORECASE)
_WS_RE = re.compile(r"\s+")

_MAX_INTENTS = 8
_MAX_OUTPUTS = 5
_MAX_FLAGS = 5


@dataclass
class AssembledContext:
    system_prompt: str
    user_message: str
    prior_messages: List[dict] = field(default_factory=list)
    summary: Optional[SessionSummary] = None
    tail_message_ids: List[str] = field(default_factory=list)


@dataclass
class CompactionResult:
    tail: List[Message]
    summary: Optional[SessionSummary]


def _snippet(text: str, limit: int) -> str:
    text = _WS_RE.sub(" ", text or "").strip()
    return text if len(text) <= limit else text[: limit - 3] + "..."


def summarize_messages(messages: List[Message], max_chars: int) -> str:
    """Deterministic digest: recent user intents, recent assistant outputs, error/TODO flags."""
    users = [m for m in messages if m.role == "user"]
    assistants = [m for m in messages if m.role == "assistant"]
    errors = [m for m in messages if _ERROR_RE.search(m.content or "")]
    todos = [m for m in messages if _TODO_RE.search(m.content or "")]

    lines = [f"## Conversation summary ({len(messages)} earlier messages)", ""]
    lines.append("### Recent user intents")
    lines.extend(f"- {_snippet(m.content, 200)}" for m in users[-_MAX_INTENTS:])
    if not users:
        lines.append("- (none)")
    lines.append("")
    lines.append("### Recent assistant outputs")
    lines.extend(f"- {_snippet(m.content, 300)}" for m in assistants[-_MAX_OUTPUTS:])
    if not assistants:
        lines.append("- (none)")
    if errors or todos:
        lines.append("")
        lines.append("### Flags")
        lines.extend(f"- [error] {_snippet(m.content, 160)}" for m in errors[-_MAX_FLAGS:])
        lines.extend(f"- [todo] {_snippet(m.content, 160)}" for m in todos[-_MAX_FLAGS:])

    digest = "\n".join(lines)
    if len(digest) > max_chars:
        digest = digest[: max_chars - len("\n[...truncated...]")] + "\n[...truncated...]"
    return digest


def split_recent_tail(messages: List[Message], budget: int) -> tuple[List[Message], List[Message]]:
    """Split into (older, tail). The tail keeps the newest messages within ``budget`` chars, at least one."""
    used = 0
    cut = len(messages)
    for i in range(len(messages) - 1, -1, -1):
        size = len(messages[i].content or "")
        if cut < len(messages) and used + size > budget:
            break
        used += size
        cut = i
    return messages[:cut], messages[cut:]


class ContextService:
    def __init__(
        self,
        db: Session,
        max_chars: Optional[int] = None,
        summary_max_chars: Optional[int] = None,
    ):
        self.db = db
        self.repo = SessionRepository(db)
        self.max_chars = max_chars or settings.CONTEXT_MAX_CHARS
        self.summary_max_chars = summary_max_chars or settings.SUMMARY_MAX_CHARS

    def build_system_prompt(self, agent: Agent) -> str:
        parts = [agent.system_prompt or ""]
        for ref in agent.skill_paths or []:
            section = load_skill_prompt(str(ref), settings.SKILL_PROMPT_MAX_CHARS)
            if section:
                parts.append(section)
            else:
                logger.debug("Skipping unreadable skill %s for agent %s", ref, agent.id)
        return "\n\n".join(p for p in parts if p)

    def compact(self, session_id: str, messages: List[Message]) -> CompactionResult:
        """Fold history beyond the ceiling into the session summary.

        The summary is rewritten only when the boundary moves, so compacting
        the same history twice leaves it untouched.
        """
        total = sum(len(m.content or "") for m in messages)
        if total <= self.max_chars or len(messages) < 2:
            return CompactionResult(tail=messages, summary=None)

        older, tail = split_recent_tail(messages, self.max_chars // 10)
        if not older:
            return CompactionResult(tail=tail, summary=None)

        up_to = older[-1].id
        summary = self.repo.get_summary(session_id)
        if summary is None or summary.up_to_message_id != up_to:
            digest = summarize_messages(older, self.summary_max_chars)
            summary = self.repo.replace_summary(session_id, up_to, digest)
            logger.info("Compacted session %s: %d messages summarized up to %s", session_id, len(older), up_to)
        return CompactionResult(tail=tail, summary=summary)

    def assemble(self, run: Run, agent: Agent) -> AssembledContext:
        payload = run.input or {}
        user_message = str(payload.get("userMessage") or payload.get("content") or "")
        ctx = AssembledContext(system_prompt=self.build_system_prompt(agent), user_message=user_message)

        if run.session_id:
            if self.repo.get_session(run.session_id) is None:
                raise ContextAssemblyError(f"session {run.session_id} not found", code="session_not_found")
            history = self.repo.list_messages(run.session_id, since=agent.context_reset_at)
            # The API stores the triggering user turn before enqueueing the run.
            if history and history[-1].role == "user" and history[-1].content == user_message:
                history = history[:-1]
            if not user_message and history:
                last_user = next((m for m in reversed(history) if m.role == "user"), None)
                user_message = last_user.content if last_user else ""
                ctx.user_message = user_message

            result = self.compact(run.session_id, history)
            if result.summary is not None:
                ctx.summary = result.summary
                ctx.prior_messages.append({
                    "role": "system",
                    "content": f"[Summary of earlier conversation]\n{result.summary.summary_markdown}",
                })
            ctx.prior_messages.extend(message_to_dict(m) for m in result.tail)
            ctx.tail_message_ids = [m.id for m in result.tail]

        group = payload.get("groupContext")
        if isinstance(group, dict):
            ctx.prior_messages.extend(group_context_messages(group))
        return ctx


def message_to_dict(message: Message) -> dict:
    if message.role == "tool":
        # History keeps tool output without the assistant call that produced it; show it as a note.
        return {
            "role": "system",
            "content": f"[Tool result from {message.tool_name} ({message.tool_call_id})]\n{message.content}",
        }
    return {"role": message.role, "content": message.content}


def group_context_messages(group: dict) -> List[dict]:
    """Other participants' group lines, as attributed system entries rather than user turns."""
    name = group.get("groupName") or group.get("groupId") or "group"
    out = []
    for line in group.get("messages") or []:
        sender = line.get("sender") or line.get("senderName") or "unknown"
        kind = line.get("senderType") or "participant"
        out.append({
            "role": "system",
            "content": f"[Group '{name}'] {kind} {sender} said:\n{line.get('content', '')}",
        })
    return out
