import json

import pytest
import redis
from pydantic import Field
from sqlalchemy.exc import OperationalError

from agent_runner.clients.provider_client import ErrorEvent, TextDelta
from agent_runner.core.cancellation import cancel_key
from agent_runner.errors import RetryableError
from agent_runner.models import Message, RunEvent, SystemLog
from agent_runner.repositories.run_repository import RunRepository
from agent_runner.repositories.session_repository import SessionRepository
from agent_runner.services.run_processor import RunProcessor
from agent_runner.tools import ToolRegistry
from agent_runner.tools.registry import ToolArgs, ToolSpec

from .fakes import FakeRedis, ScriptedProvider, text_round, tool_round


class LookupArgs(ToolArgs):
    q: str = Field(min_length=1)


async def lookup(ctx, args):
    return {"answer": f"result for {args.q}"}


@pytest.fixture
def lookup_registry():
    return ToolRegistry([ToolSpec("lookup", "Look something up.", LookupArgs, lookup)])


@pytest.fixture
def queue_run(db, chat_session):
    def _queue(text="hi", agent_id=None):
        SessionRepository(db).add_message(chat_session.id, "user", text)
        return RunRepository(db).create_run(
            chat_session.project_id, agent_id or chat_session.agent_id, {"userMessage": text}, chat_session.id,
        )
    return _queue


def processor_for(session_factory, redis_client, provider, **kwargs):
    return RunProcessor(session_factory, redis_client, provider_factory=lambda account: provider, **kwargs)


def events_of(db, run_id):
    return RunRepository(db).list_events(run_id)


def assistant_messages(db, session_id):
    return [m for m in SessionRepository(db).list_messages(session_id) if m.role == "assistant"]


async def test_hi_streams_and_persists_the_answer(db, session_factory, fake_redis, owner, chat_session, queue_run):
    run = queue_run("hi")
    provider = ScriptedProvider([text_round("Hello", " there")])

    status = await processor_for(session_factory, fake_redis, provider).process(run.id, owner.id)

    assert status == "succeeded"
    events = events_of(db, run.id)
    assert [e.type for e in events] == [
        "run_started", "assistant_delta", "assistant_delta", "usage", "assistant_message", "run_finished", "status",
    ]
    assert [e.seq for e in events] == [1, 2, 3, 4, 5, 6, 7]
    assert events[-1].payload == {"status": "succeeded"}

    stored = RunRepository(db).get_run(run.id)
    assert stored.status == "succeeded"
    assert stored.started_at is not None and stored.finished_at is not None
    assert stored.output_json["assistant"] == "Hello there"

    [answer] = assistant_messages(db, chat_session.id)
    assert answer.content == "Hello there"
    assert (answer.token_input, answer.token_output, answer.token_total) == (10, 4, 14)
    assert answer.token_input_uncached == 10

    published = [json.loads(message) for channel, message in fake_redis.published]
    assert {channel for channel, _ in fake_redis.published} == {f"run:{run.id}"}
    assert [p["seq"] for p in published] == [1, 2, 3, 4, 5, 6, 7]
    assert published[0]["runId"] == run.id
    assert published[0]["createdAt"].endswith("Z")


async def test_agent_without_provider_account_uses_mock(db, session_factory, fake_redis, owner, chat_session, queue_run):
    run = queue_run("ping")

    status = await RunProcessor(session_factory, fake_redis).process(run.id, owner.id)

    assert status == "succeeded"
    [answer] = assistant_messages(db, chat_session.id)
    assert answer.content.strip() == "(mock:mock-1) ping"


async def test_each_event_is_durable_before_it_is_published(session_factory, owner, queue_run):
    run = queue_run("hi")
    seen_in_db = []

    class CheckingRedis(FakeRedis):
        def publish(self, channel, message):
            seq = json.loads(message)["seq"]
            check = session_factory()
            try:
                seen_in_db.append(check.query(RunEvent).filter_by(run_id=run.id, seq=seq).count() == 1)
            finally:
                check.close()
            return super().publish(channel, message)

    await processor_for(session_factory, CheckingRedis(), ScriptedProvider([text_round("ok")])).process(run.id, owner.id)

    assert seen_in_db and all(seen_in_db)


async def test_tool_round_runs_inside_the_sandbox(
    db, session_factory, fake_redis, owner, agent, chat_session, queue_run, lookup_registry,
):
    agent.tool_names = ["lookup"]
    db.commit()
    run = queue_run("what is x?")
    provider = ScriptedProvider([
        tool_round(("c1", "lookup", '{"q": "x"}'), ("c2", "email_send", '{"subject": "s", "bodyMarkdown": "b"}')),
        text_round("x is 42"),
    ])

    status = await processor_for(session_factory, fake_redis, provider, registry=lookup_registry).process(run.id, owner.id)

    assert status == "succeeded"
    assert [t["function"]["name"] for t in provider.calls[0]["tools"]] == ["lookup"]
    results = {e.payload["toolCallId"]: json.loads(e.payload["content"]) for e in events_of(db, run.id) if e.type == "tool_result"}
    assert results["c1"] == {"ok": True, "answer": "result for x"}
    assert results["c2"]["error"] == "tool_not_permitted"
    assert RunRepository(db).get_run(run.id).output_json["assistant"] == "x is 42"


async def test_provider_error_fails_the_run_without_an_answer(db, session_factory, fake_redis, owner, chat_session, queue_run):
    run = queue_run("hi")
    provider = ScriptedProvider([[TextDelta("partial"), ErrorEvent("upstream down")]])

    status = await processor_for(session_factory, fake_redis, provider).process(run.id, owner.id)

    assert status == "failed"
    events = events_of(db, run.id)
    types = [e.type for e in events]
    assert "assistant_message" not in types
    assert types[-3:] == ["error", "run_finished", "status"]
    assert events[-1].payload == {"status": "failed"}
    stored = RunRepository(db).get_run(run.id)
    assert stored.status == "failed"
    assert stored.error == "upstream down"
    assert assistant_messages(db, chat_session.id) == []
    log = db.query(SystemLog).filter_by(service="worker").one()
    assert log.meta_json["runId"] == run.id


async def test_cancel_before_start_emits_no_deltas(db, session_factory, fake_redis, owner, queue_run):
    run = queue_run("hi")
    fake_redis.set(cancel_key(run.id), "1")
    provider = ScriptedProvider([text_round("never")])

    status = await processor_for(session_factory, fake_redis, provider).process(run.id, owner.id)

    assert status == "canceled"
    assert provider.calls == []
    assert [(e.type, e.payload) for e in events_of(db, run.id)] == [("status", {"status": "canceled"})]
    assert RunRepository(db).get_run(run.id).status == "canceled"


async def test_cancel_mid_turn_stops_at_the_next_round(
    db, session_factory, fake_redis, owner, agent, chat_session, queue_run, lookup_registry,
):
    agent.tool_names = ["lookup"]
    db.commit()
    run = queue_run("dig deep")

    def cancel_during_first_round(index):
        if index == 0:
            fake_redis.set(cancel_key(run.id), "1")

    provider = ScriptedProvider(
        [tool_round(("c1", "lookup", '{"q": "a"}')), text_round("too late")],
        on_round=cancel_during_first_round,
    )

    status = await processor_for(session_factory, fake_redis, provider, registry=lookup_registry).process(run.id, owner.id)

    assert status == "canceled"
    assert len(provider.calls) == 1
    types = [e.type for e in events_of(db, run.id)]
    assert types == ["run_started", "tool_call", "tool_result", "status"]
    assert RunRepository(db).get_run(run.id).status == "canceled"
    assert assistant_messages(db, chat_session.id) == []


async def test_sleeping_agent_never_executes(db, session_factory, fake_redis, owner, agent, queue_run):
    agent.is_sleeping = True
    db.commit()
    run = queue_run("hi")
    provider = ScriptedProvider([text_round("no")])

    status = await processor_for(session_factory, fake_redis, provider).process(run.id, owner.id)

    assert status == "failed"
    assert provider.calls == []
    events = events_of(db, run.id)
    assert [e.type for e in events] == ["error", "status"]
    assert events[0].payload["code"] == "agent_sleeping"
    assert "sleeping" in RunRepository(db).get_run(run.id).error


async def test_terminal_run_is_not_executed_again(db, session_factory, fake_redis, owner, queue_run):
    run = queue_run("hi")
    processor = processor_for(session_factory, fake_redis, ScriptedProvider([text_round("once"), text_round("twice")]))

    assert await processor.process(run.id, owner.id) == "succeeded"
    count = len(events_of(db, run.id))
    assert await processor.process(run.id, owner.id) == "succeeded"

    assert len(events_of(db, run.id)) == count
    assert len(processor.provider_factory(None).calls) == 1


async def test_missing_run_is_recorded_not_raised(db, session_factory, fake_redis, owner):
    status = await processor_for(session_factory, fake_redis, ScriptedProvider([])).process("no-such-run", owner.id)

    assert status == "failed"
    log = db.query(SystemLog).one()
    assert log.meta_json["code"] == "run_not_found"


class FlakyRedis(FakeRedis):
    def get(self, key):
        raise redis.ConnectionError("redis unavailable")


async def test_infrastructure_error_is_retryable_and_leaves_run_queued(db, session_factory, owner, queue_run):
    run = queue_run("hi")

    with pytest.raises(RetryableError):
        await processor_for(session_factory, FlakyRedis(), ScriptedProvider([])).process(run.id, owner.id, final_attempt=False)

    assert RunRepository(db).get_run(run.id).status == "queued"


async def test_final_attempt_infrastructure_error_fails_the_run(db, session_factory, owner, queue_run):
    run = queue_run("hi")

    with pytest.raises(RetryableError):
        await processor_for(session_factory, FlakyRedis(), ScriptedProvider([])).process(run.id, owner.id, final_attempt=True)

    stored = RunRepository(db).get_run(run.id)
    assert stored.status == "failed"
    assert stored.error.startswith("infrastructure error")


async def test_unexpected_error_fails_the_run_and_propagates(db, session_factory, fake_redis, owner, queue_run):
    run = queue_run("hi")

    def broken_factory(account):
        raise RuntimeError("adapter exploded")

    with pytest.raises(RuntimeError):
        await RunProcessor(session_factory, fake_redis, provider_factory=broken_factory).process(run.id, owner.id)

    events = events_of(db, run.id)
    assert events[0].payload == {"message": "adapter exploded", "code": "internal_error"}
    assert RunRepository(db).get_run(run.id).status == "failed"
    assert db.query(SystemLog).one().stack


async def test_finalization_failure_never_reports_success(db, session_factory, fake_redis, owner, queue_run, monkeypatch):
    run = queue_run("hi")

    def disk_full(self, *args, **kwargs):
        raise OperationalError("INSERT INTO messages", {}, Exception("disk full"))

    monkeypatch.setattr(SessionRepository, "add_message", disk_full)

    with pytest.raises(RetryableError):
        await processor_for(session_factory, fake_redis, ScriptedProvider([text_round("done")])).process(
            run.id, owner.id, final_attempt=True,
        )

    events = events_of(db, run.id)
    statuses = [e.payload["status"] for e in events if e.type == "status"]
    assert statuses == ["failed"]
    assert events[-1].payload == {"status": "failed"}
    assert RunRepository(db).get_run(run.id).status == "failed"
