import json

import pytest
from pydantic import Field

from agent_runner.models import GroupMember, PatchProposal, Run, SystemLog
from agent_runner.repositories.agent_repository import AgentRepository
from agent_runner.repositories.ops_repository import OpsRepository
from agent_runner.tools import ToolContext, ToolError, ToolRegistry, ToolRunner, builtin_registry
from agent_runner.tools.registry import ToolArgs, ToolSpec


class EchoArgs(ToolArgs):
    text: str = Field(min_length=1)
    times: int = Field(1, ge=1, le=3)


class NoArgs(ToolArgs):
    pass


async def echo(ctx, args):
    return {"echo": args.text * args.times}


async def refuse(ctx, args):
    raise ToolError("quota_exceeded", "daily quota used up", limit=3)


async def explode(ctx, args):
    raise RuntimeError("disk on fire")


@pytest.fixture
def ctx(db, owner, agent):
    return ToolContext(db=db, user_id=owner.id, agent_id=agent.id, project_id=agent.project_id, run_id="run-1")


@pytest.fixture
def registry():
    return ToolRegistry([
        ToolSpec("echo", "Echo text.", EchoArgs, echo),
        ToolSpec("refuse", "Always refuses.", NoArgs, refuse),
        ToolSpec("explode", "Always crashes.", NoArgs, explode),
    ])


async def call(runner, name, args):
    return json.loads(await runner.run(name, args if isinstance(args, str) else json.dumps(args)))


# ── Runner boundary ─────────────────────────────────────────────────────────────

async def test_permitted_tool_returns_ok_wire_result(registry, ctx):
    runner = ToolRunner(registry, {"echo"}, ctx)
    assert await call(runner, "echo", {"text": "ab", "times": 2}) == {"ok": True, "echo": "abab"}


async def test_tool_outside_permitted_set_is_rejected(registry, ctx):
    runner = ToolRunner(registry, {"refuse"}, ctx)
    result = await call(runner, "echo", {"text": "x"})
    assert result == {"ok": False, "error": "tool_not_permitted", "detail": {"toolName": "echo"}}


async def test_permitted_but_unregistered_tool_is_unknown(registry, ctx):
    runner = ToolRunner(registry, {"ghost"}, ctx)
    result = await call(runner, "ghost", {})
    assert result["error"] == "unknown_tool"


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"text": ""}', '{"text": "a", "extra": 1}'])
async def test_bad_arguments_are_invalid_arguments(registry, ctx, raw):
    runner = ToolRunner(registry, {"echo"}, ctx)
    result = await call(runner, "echo", raw)
    assert result["ok"] is False
    assert result["error"] == "invalid_arguments"


async def test_handler_tool_error_keeps_its_code(registry, ctx):
    runner = ToolRunner(registry, {"refuse"}, ctx)
    result = await call(runner, "refuse", {})
    assert result == {
        "ok": False,
        "error": "quota_exceeded",
        "detail": {"limit": 3, "message": "daily quota used up"},
    }


async def test_handler_crash_becomes_tool_failed(registry, ctx):
    runner = ToolRunner(registry, {"explode"}, ctx)
    result = await call(runner, "explode", {})
    assert result == {"ok": False, "error": "tool_failed", "detail": "disk on fire"}


def test_schemas_only_cover_registered_names_in_order(registry):
    schemas = registry.schemas({"refuse", "echo", "missing"})
    assert [s["function"]["name"] for s in schemas] == ["echo", "refuse"]
    params = schemas[0]["function"]["parameters"]
    assert params["required"] == ["text"]
    assert "title" not in params


# ── Built-in tools ──────────────────────────────────────────────────────────────

async def test_group_tools_require_membership(db, ctx, project, make_agent):
    other = make_agent("other")
    group = AgentRepository(db).create_group(project.id, "private", owner_agent_id=other.id)
    runner = ToolRunner(builtin_registry(), {"group_get_info"}, ctx)

    result = await call(runner, "group_get_info", {"groupId": group.id})
    assert result["error"] == "not_group_member"

    db.add(GroupMember(group_id=group.id, agent_id=ctx.agent_id))
    db.commit()
    result = await call(runner, "group_get_info", {"groupId": group.id})
    assert result["ok"] is True
    assert result["group"]["memberCount"] == 2


async def test_read_file_lines_is_confined_to_skill_roots(ctx, skill_dirs, tmp_path):
    installed, _ = skill_dirs
    (installed / "notes.md").write_text("one\ntwo\nthree\n", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("nope", encoding="utf-8")
    runner = ToolRunner(builtin_registry(), {"read_file_lines"}, ctx)

    result = await call(runner, "read_file_lines", {"filepath": "0:notes.md", "offset": 2, "limit": 5})
    assert result["lines"] == ["two", "three"]
    assert result["totalLines"] == 3
    assert result["eof"] is True

    escaped = await call(runner, "read_file_lines", {"filepath": "0:../secret.txt"})
    assert escaped["error"] == "forbidden_path"
    outside = await call(runner, "read_file_lines", {"filepath": str(tmp_path / "secret.txt")})
    assert outside["error"] == "forbidden_path"


async def test_linux_command_allows_only_read_only_binaries(ctx, skill_dirs):
    _, generated = skill_dirs
    (generated / "a.md").write_text("x", encoding="utf-8")
    runner = ToolRunner(builtin_registry(), {"linux_command"}, ctx)

    listed = await call(runner, "linux_command", {"argv": ["ls"]})
    assert listed["exitCode"] == 0
    assert "a.md" in listed["stdout"]

    denied = await call(runner, "linux_command", {"argv": ["rm", "-rf", "a.md"]})
    assert denied["error"] == "command_not_allowed"
    assert (generated / "a.md").exists()

    escaped = await call(runner, "linux_command", {"argv": ["cat", "/etc/passwd"]})
    assert escaped["error"] == "forbidden_path"


@pytest.mark.parametrize(
    "argv, error",
    [
        (["wc", "--files0-from=/etc/passwd"], "option_not_allowed"),
        (["wc", "--files0-from", "names.txt"], "option_not_allowed"),
        (["file", "-f/etc/passwd"], "option_not_allowed"),
        (["grep", "-rf", "patterns.txt", "."], "option_not_allowed"),
        (["ls", "--color=/etc/passwd"], "forbidden_path"),
        (["head", "-n1", "-c/../../etc/passwd"], "forbidden_path"),
        (["cat", "../../etc/passwd"], "forbidden_path"),
        (["tail", "sub/../../../etc/passwd"], "forbidden_path"),
    ],
)
async def test_linux_command_rejects_paths_smuggled_outside_the_roots(ctx, skill_dirs, argv, error):
    runner = ToolRunner(builtin_registry(), {"linux_command"}, ctx)

    result = await call(runner, "linux_command", {"argv": argv})

    assert result["ok"] is False
    assert result["error"] == error
    assert "root:" not in json.dumps(result)


async def test_linux_command_accepts_relative_paths_inside_the_cwd(ctx, skill_dirs):
    _, generated = skill_dirs
    (generated / "agents").mkdir()
    (generated / "agents" / "SKILL.md").write_text("alpha\nbeta\n", encoding="utf-8")
    runner = ToolRunner(builtin_registry(), {"linux_command"}, ctx)

    result = await call(runner, "linux_command", {"argv": ["grep", "-n", "beta", "agents/SKILL.md"]})

    assert result["exitCode"] == 0
    assert result["stdout"].strip() == "2:beta"


async def test_skill_rating_tools_aggregate_scores(ctx):
    runner = ToolRunner(builtin_registry(), {"skill_rate", "skill_get_ratings"}, ctx)
    await call(runner, "skill_rate", {"skillPath": "1:agents/x/SKILL.md", "score": 2})
    rated = await call(runner, "skill_rate", {"skillPath": "1:agents/x/SKILL.md", "score": 5, "note": "great"})
    assert rated["count"] == 2
    assert rated["avgScore"] == 3.5

    ratings = await call(runner, "skill_get_ratings", {"skillPath": "1:agents/x/SKILL.md"})
    assert ratings["count"] == 2
    assert {r["score"] for r in ratings["recent"]} == {2, 5}


async def test_dispatch_run_creates_session_run_and_enqueues(db, owner, agent, make_agent):
    worker = make_agent("delegate")
    queued = []
    ctx = ToolContext(
        db=db, user_id=owner.id, agent_id=agent.id, project_id=agent.project_id, enqueue_run=lambda r, u: queued.append((r, u)),
    )
    runner = ToolRunner(builtin_registry(), {"agent_dispatch_run"}, ctx)

    result = await call(runner, "agent_dispatch_run", {"agentId": worker.id, "message": "Summarize the logs"})

    assert result["ok"] is True
    assert queued == [(result["runId"], owner.id)]
    run = db.get(Run, result["runId"])
    assert run.status == "queued"
    assert run.agent_id == worker.id
    assert run.session_id == result["sessionId"]


async def test_dispatch_run_refuses_sleeping_and_foreign_agents(db, owner, agent, make_agent):
    sleeper = make_agent("sleeper", is_sleeping=True)
    ctx = ToolContext(db=db, user_id=owner.id, agent_id=agent.id, project_id=agent.project_id, enqueue_run=lambda r, u: None)
    runner = ToolRunner(builtin_registry(), {"agent_dispatch_run"}, ctx)

    slept = await call(runner, "agent_dispatch_run", {"agentId": sleeper.id, "message": "wake up"})
    assert slept["error"] == "agent_sleeping"

    foreign = ToolContext(db=db, user_id="someone-else", agent_id=agent.id, project_id=agent.project_id,
                          enqueue_run=lambda r, u: None)
    result = await call(ToolRunner(builtin_registry(), {"agent_dispatch_run"}, foreign),
                        "agent_dispatch_run", {"agentId": agent.id, "message": "hi"})
    assert result["error"] == "forbidden"


async def test_email_send_stores_in_outbox_without_smtp(ctx, owner):
    runner = ToolRunner(builtin_registry(), {"email_send"}, ctx)
    result = await call(runner, "email_send", {"subject": "Status", "bodyMarkdown": "All good"})
    assert result["ok"] is True
    assert result["sent"] is False
    assert result["outboxId"]


async def test_guardian_tools_filter_logs_and_store_patches(db, ctx, owner):
    ops = OpsRepository(db)
    ops.add_system_log("worker", "error", "mine", user_id=owner.id)
    ops.add_system_log("worker", "error", "global")
    ops.add_system_log("worker", "error", "foreign", user_id="another-user")
    runner = ToolRunner(builtin_registry(), {"system_logs_recent", "propose_patch"}, ctx)

    logs = await call(runner, "system_logs_recent", {"minutes": 5, "levels": ["error"]})
    assert {log["message"] for log in logs["logs"]} == {"mine", "global"}

    proposal = await call(runner, "propose_patch", {"title": "Fix", "patchText": "--- a\n+++ b\n"})
    assert proposal["status"] == "proposed"
    assert db.get(PatchProposal, proposal["proposalId"]).agent_id == ctx.agent_id
    assert db.query(SystemLog).count() == 3
