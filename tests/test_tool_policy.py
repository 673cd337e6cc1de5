from agent_runner.core.tool_policy import (
    GROUP_TOOLS,
    GUARDIAN_TOOLS,
    PROJECT_LEAD_TOOLS,
    SESSION_MEMORY_TOOLS,
    SKILL_TOOLS,
    SUPERVISOR_TOOLS,
    AgentSnapshot,
    resolve_tools,
    take_snapshot,
)
from agent_runner.models import GroupMember
from agent_runner.repositories.agent_repository import AgentRepository
from agent_runner.tools import builtin_registry


def test_bare_agent_gets_only_granted_tools():
    snapshot = AgentSnapshot(agent_id="a1", granted_tools=frozenset({"custom_tool"}))
    assert resolve_tools(snapshot) == frozenset({"custom_tool"})


def test_each_role_contributes_its_fixed_list():
    cases = [
        (AgentSnapshot(agent_id="a", group_count=2), GROUP_TOOLS),
        (AgentSnapshot(agent_id="a", skill_count=1), SKILL_TOOLS),
        (AgentSnapshot(agent_id="a", session_count=5), SESSION_MEMORY_TOOLS),
        (AgentSnapshot(agent_id="a", is_supervisor=True), SUPERVISOR_TOOLS),
        (AgentSnapshot(agent_id="a", is_guardian=True), GUARDIAN_TOOLS),
        (AgentSnapshot(agent_id="a", is_project_lead=True), PROJECT_LEAD_TOOLS),
    ]
    for snapshot, expected in cases:
        assert resolve_tools(snapshot) == frozenset(expected)


def test_roles_compose_and_resolution_is_pure():
    snapshot = AgentSnapshot(agent_id="a", group_count=1, is_guardian=True, is_project_lead=True)
    first = resolve_tools(snapshot)
    assert first == frozenset(GROUP_TOOLS + GUARDIAN_TOOLS + PROJECT_LEAD_TOOLS)
    assert resolve_tools(snapshot) == first
    assert "agent_dispatch_run" not in first


def test_every_role_tool_has_a_builtin_implementation():
    registered = set(builtin_registry().names())
    for tools in (GROUP_TOOLS, SKILL_TOOLS, SESSION_MEMORY_TOOLS, SUPERVISOR_TOOLS, GUARDIAN_TOOLS, PROJECT_LEAD_TOOLS):
        assert set(tools) <= registered


def test_snapshot_reads_current_role_state(db, owner, project, make_agent):
    worker = make_agent("worker", skill_paths=["0:demo"])
    supervisor = make_agent("boss")
    owner.supervisor_agent_id = supervisor.id
    project.lead_agent_id = worker.id
    db.commit()
    group = AgentRepository(db).create_group(project.id, "ops", owner_agent_id=supervisor.id)
    db.add(GroupMember(group_id=group.id, agent_id=worker.id))
    db.commit()

    worker_tools = resolve_tools(take_snapshot(db, worker))
    assert set(GROUP_TOOLS) <= worker_tools
    assert set(SKILL_TOOLS) <= worker_tools
    assert set(PROJECT_LEAD_TOOLS) <= worker_tools
    assert not set(SUPERVISOR_TOOLS) & worker_tools

    boss_tools = resolve_tools(take_snapshot(db, supervisor))
    assert set(SUPERVISOR_TOOLS) <= boss_tools
    assert set(GROUP_TOOLS) <= boss_tools  # group owners are members


def test_session_memory_tools_follow_session_history(db, agent, chat_session):
    assert set(SESSION_MEMORY_TOOLS) <= resolve_tools(take_snapshot(db, agent))
