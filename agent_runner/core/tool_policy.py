"""Per-run tool sandbox: which tool names an agent may call this run.

The permitted set is a pure function of an :class:`AgentSnapshot` taken when
the run starts. Each role predicate contributes a fixed list of tools; the
agent's explicitly granted tools are always included.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from ..repositories.agent_repository import AgentRepository

GROUP_TOOLS = ("group_get_info", "group_get_members", "group_get_messages")
SKILL_TOOLS = ("read_file_lines", "linux_command", "skill_rate", "skill_get_ratings")
SESSION_MEMORY_TOOLS = ("agent_list_sessions", "agent_get_session_messages", "agent_search_messages")
SUPERVISOR_TOOLS = (
    "agent_dispatch_run",
    "email_send",
    "agent_send_mail",
    "agent_wake_agent",
    "project_create",
    "project_assign_lead",
)
GUARDIAN_TOOLS = ("system_logs_recent", "propose_patch")
PROJECT_LEAD_TOOLS = ("group_create", "group_set_owner")


@dataclass(frozen=True)
class AgentSnapshot:
    agent_id: str
    granted_tools: frozenset[str] = field(default_factory=frozenset)
    group_count: int = 0
    skill_count: int = 0
    session_count: int = 0
    is_supervisor: bool = False
    is_guardian: bool = False
    is_project_lead: bool = False


def in_any_group(s: AgentSnapshot) -> bool:
    return s.group_count > 0


def has_skills(s: AgentSnapshot) -> bool:
    return s.skill_count > 0


def has_sessions(s: AgentSnapshot) -> bool:
    return s.session_count > 0


def is_supervisor(s: AgentSnapshot) -> bool:
    return s.is_supervisor


def is_guardian(s: AgentSnapshot) -> bool:
    return s.is_guardian


def is_project_lead(s: AgentSnapshot) -> bool:
    return s.is_project_lead


ROLE_POLICIES: list[tuple[Callable[[AgentSnapshot], bool], tuple[str, ...]]] = [
    (in_any_group, GROUP_TOOLS),
    (has_skills, SKILL_TOOLS),
    (has_sessions, SESSION_MEMORY_TOOLS),
    (is_supervisor, SUPERVISOR_TOOLS),
    (is_guardian, GUARDIAN_TOOLS),
    (is_project_lead, PROJECT_LEAD_TOOLS),
]


def resolve_tools(snapshot: AgentSnapshot) -> frozenset[str]:
    permitted = set(snapshot.granted_tools)
    for predicate, tools in ROLE_POLICIES:
        if predicate(snapshot):
            permitted.update(tools)
    return frozenset(permitted)


def take_snapshot(db: Session, agent) -> AgentSnapshot:
    """Read the agent's current role state. Called once per run, never cached."""
    repo = AgentRepository(db)
    return AgentSnapshot(
        agent_id=agent.id,
        granted_tools=frozenset(str(t) for t in (agent.tool_names or [])),
        group_count=1 if repo.is_in_any_group(agent.id) else 0,
        skill_count=len(agent.skill_paths or []),
        session_count=1 if repo.has_sessions(agent.id) else 0,
        is_supervisor=repo.is_supervisor(agent),
        is_guardian=repo.is_guardian(agent),
        is_project_lead=repo.is_project_lead(agent.id),
    )
