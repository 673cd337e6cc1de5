import json

import pytest

from agent_runner.clients.provider_client import DoneEvent, ErrorEvent, MessageEvent, TextDelta
from agent_runner.core.cancellation import CancellationToken
from agent_runner.core.runtime import run_turn
from agent_runner.errors import RunCancelled

from .fakes import ScriptedProvider, text_round, tool_round


async def collect(agen):
    return [event async for event in agen]


def types(events):
    return [e.type for e in events]


async def test_plain_answer_streams_deltas_then_finishes():
    provider = ScriptedProvider([text_round("Hel", "lo")])

    events = await collect(run_turn(provider, system_prompt="sys", model="m-1", user_message="hi"))

    assert types(events) == [
        "run_started", "assistant_delta", "assistant_delta", "usage", "assistant_message", "run_finished",
    ]
    assert [e.seq for e in events] == list(range(1, len(events) + 1))
    assert events[0].payload == {"model": "m-1"}
    assert events[-2].payload == {"content": "Hello"}
    assert events[-1].payload["ok"] is True
    assert events[-1].payload["usage"] == {"inputTokens": 10, "outputTokens": 4, "cachedInputTokens": 0}


async def test_prompt_is_system_then_prior_then_user():
    provider = ScriptedProvider([text_round("ok")])
    prior = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "answer"}]

    await collect(run_turn(provider, system_prompt="sys", model="m", user_message="now", prior_messages=prior))

    sent = provider.calls[0]["messages"]
    assert sent[0] == {"role": "system", "content": "sys"}
    assert sent[1:3] == prior
    assert sent[-1] == {"role": "user", "content": "now"}


async def test_full_message_used_when_no_deltas_arrive():
    provider = ScriptedProvider([[MessageEvent("whole answer"), DoneEvent()]])

    events = await collect(run_turn(provider, system_prompt="", model="m", user_message="hi"))

    assert "assistant_delta" not in types(events)
    assert events[-2].payload == {"content": "whole answer"}


async def test_tool_round_feeds_result_back_to_the_model():
    provider = ScriptedProvider([
        tool_round(("call_1", "lookup", '{"q": "weather"}')),
        text_round("It is sunny."),
    ])
    seen = []

    async def runner(name, call_id, arguments):
        seen.append((name, call_id, arguments))
        return json.dumps({"ok": True, "forecast": "sun"})

    events = await collect(run_turn(
        provider, system_prompt="sys", model="m", user_message="weather?",
        tools=[{"type": "function", "function": {"name": "lookup"}}], tool_runner=runner,
    ))

    assert seen == [("lookup", "call_1", '{"q": "weather"}')]
    assert types(events)[:3] == ["run_started", "tool_call", "tool_result"]
    assert events[1].payload == {"toolCallId": "call_1", "toolName": "lookup", "argumentsJson": '{"q": "weather"}'}
    assert events[-2].payload == {"content": "It is sunny."}

    second = provider.calls[1]["messages"]
    assert second[-2]["role"] == "assistant"
    assert second[-2]["tool_calls"] == [{"id": "call_1", "name": "lookup", "arguments": '{"q": "weather"}'}]
    assert second[-1] == {
        "role": "tool", "name": "lookup", "tool_call_id": "call_1", "content": '{"ok": true, "forecast": "sun"}',
    }


async def test_tool_calls_run_serially_in_receipt_order():
    provider = ScriptedProvider([
        tool_round(("a", "first", "{}"), ("b", "second", "{}"), ("c", "third", "{}")),
        text_round("done"),
    ])
    order = []

    async def runner(name, call_id, arguments):
        order.append(call_id)
        return "{}"

    events = await collect(run_turn(provider, system_prompt="", model="m", user_message="go", tool_runner=runner))

    assert order == ["a", "b", "c"]
    results = [e.payload["toolCallId"] for e in events if e.type == "tool_result"]
    assert results == ["a", "b", "c"]


async def test_provider_error_ends_turn_without_assistant_message():
    provider = ScriptedProvider([[TextDelta("par"), ErrorEvent("upstream 500", raw={"status": 500})]])

    events = await collect(run_turn(provider, system_prompt="", model="m", user_message="hi"))

    assert types(events) == ["run_started", "assistant_delta", "error", "run_finished"]
    assert events[2].payload == {"message": "upstream 500", "raw": {"status": 500}}
    assert events[3].payload["ok"] is False


async def test_provider_stream_is_closed_when_an_error_ends_the_turn():
    closed = []

    class HoldingProvider(ScriptedProvider):
        async def stream_chat(self, model, messages, tools=None):
            try:
                yield ErrorEvent("upstream 503", raw={"status": 503})
                yield TextDelta("never sent")
            finally:
                closed.append(True)

    provider = HoldingProvider([])
    turn = run_turn(provider, system_prompt="", model="m", user_message="hi")

    events = await collect(turn)

    assert types(events) == ["run_started", "error", "run_finished"]
    assert closed == [True]


async def test_tool_calls_without_runner_finish_best_effort():
    provider = ScriptedProvider([[TextDelta("let me check"), *tool_round(("x1", "lookup", "{}"))]])

    events = await collect(run_turn(provider, system_prompt="", model="m", user_message="hi"))

    assert types(events)[-2:] == ["assistant_message", "run_finished"]
    assert events[-2].payload == {"content": "let me check"}
    assert events[-1].payload["ok"] is True
    assert events[-1].payload["toolCalls"] == [{"id": "x1", "name": "lookup"}]
    assert len(provider.calls) == 1


async def test_round_cap_reports_max_tool_rounds_exceeded():
    provider = ScriptedProvider([tool_round((f"c{i}", "loop", "{}")) for i in range(3)])

    async def runner(name, call_id, arguments):
        return "{}"

    events = await collect(run_turn(
        provider, system_prompt="", model="m", user_message="hi", tool_runner=runner, max_tool_rounds=2,
    ))

    assert len(provider.calls) == 3
    assert events[-2].payload == {"content": ""}
    assert events[-1].payload["ok"] is True
    assert events[-1].payload["note"] == "max_tool_rounds_exceeded"


async def test_cancellation_is_checked_between_rounds():
    flag = {"set": False}
    provider = ScriptedProvider([
        tool_round(("c1", "slow", "{}")),
        text_round("never reached"),
    ])

    async def runner(name, call_id, arguments):
        flag["set"] = True
        return "{}"

    events = []
    with pytest.raises(RunCancelled):
        async for event in run_turn(
            provider, system_prompt="", model="m", user_message="hi",
            tool_runner=runner, cancel_token=CancellationToken(lambda: flag["set"]),
        ):
            events.append(event)

    assert len(provider.calls) == 1
    assert types(events) == ["run_started", "tool_call", "tool_result"]


async def test_set_token_does_not_interrupt_the_first_round():
    provider = ScriptedProvider([text_round("still answered")])

    events = await collect(run_turn(
        provider, system_prompt="", model="m", user_message="hi", cancel_token=CancellationToken(lambda: True),
    ))

    assert events[-2].payload == {"content": "still answered"}
