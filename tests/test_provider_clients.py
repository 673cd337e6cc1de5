import json

import httpx
import pytest

from agent_runner.clients.factory import build_provider
from agent_runner.clients.mock_client import MockProviderClient
from agent_runner.clients.openai_compat_client import OpenAICompatClient
from agent_runner.clients.provider_client import DoneEvent, ErrorEvent, TextDelta, ToolCallEvent, UsageEvent
from agent_runner.errors import ProviderConfigError
from agent_runner.models import ProviderAccount


def sse(*chunks):
    lines = [f"data: {json.dumps(c)}\n\n" for c in chunks] + ["data: [DONE]\n\n"]
    return "".join(lines).encode("utf-8")


async def collect(client, messages=None, tools=None):
    return [e async for e in client.stream_chat("gpt-test", messages or [{"role": "user", "content": "hi"}], tools)]


async def test_streams_text_and_usage_with_cached_tokens():
    captured = {}

    def handler(request: httpx.Request):
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, content=sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
            {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 3,
                                      "prompt_tokens_details": {"cached_tokens": 8}}},
        ))

    client = OpenAICompatClient("https://llm.example/v1/", "sk-test", transport=httpx.MockTransport(handler))
    events = await collect(client)

    assert events == [TextDelta("Hel"), TextDelta("lo"), UsageEvent(12, 3, 8), DoneEvent()]
    assert captured["auth"] == "Bearer sk-test"
    assert captured["body"]["stream"] is True
    assert captured["body"]["stream_options"] == {"include_usage": True}
    assert "tools" not in captured["body"]


async def test_tool_call_fragments_are_assembled_by_index():
    def handler(request):
        return httpx.Response(200, content=sse(
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_a", "function": {"name": "lookup", "arguments": '{"q":'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 1, "id": "call_b", "function": {"name": "other"}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": ' "x"}'}}]}}]},
        ))

    client = OpenAICompatClient("https://llm.example/v1", "k", transport=httpx.MockTransport(handler))
    events = await collect(client, tools=[{"type": "function", "function": {"name": "lookup"}}])

    assert events == [
        ToolCallEvent("call_a", "lookup", '{"q": "x"}'),
        ToolCallEvent("call_b", "other", "{}"),
        DoneEvent(),
    ]


async def test_http_error_becomes_error_event():
    client = OpenAICompatClient(
        "https://llm.example/v1", "k",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, text="bad key")),
    )
    [event] = await collect(client)
    assert event == ErrorEvent("provider_http_401", "bad key")


async def test_transport_failure_becomes_error_event():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    client = OpenAICompatClient("https://llm.example/v1", "k", transport=httpx.MockTransport(handler))
    [event] = await collect(client)
    assert isinstance(event, ErrorEvent)
    assert event.message == "provider_transport_error: ConnectError"


def test_internal_tool_messages_map_to_wire_shape():
    wire = OpenAICompatClient.to_wire_messages([
        {"role": "assistant", "content": "", "tool_calls": [{"id": "c1", "name": "lookup", "arguments": "{}"}]},
        {"role": "tool", "name": "lookup", "tool_call_id": "c1", "content": "{\"ok\": true}"},
    ])
    assert wire[0] == {
        "role": "assistant",
        "content": None,
        "tool_calls": [{"id": "c1", "type": "function", "function": {"name": "lookup", "arguments": "{}"}}],
    }
    assert wire[1] == {"role": "tool", "tool_call_id": "c1", "content": "{\"ok\": true}"}


def test_factory_picks_adapter_from_account():
    assert isinstance(build_provider(None), MockProviderClient)
    assert isinstance(build_provider(ProviderAccount(type="mock", name="m")), MockProviderClient)
    client = build_provider(ProviderAccount(type="openai_compat", name="o", api_key="k", config_json={"baseUrl": "http://x/v1"}))
    assert isinstance(client, OpenAICompatClient)
    assert client.base_url == "http://x/v1"

    with pytest.raises(ProviderConfigError) as missing:
        build_provider(ProviderAccount(type="openai_compat", name="o", config_json={}))
    assert missing.value.code == "missing_api_key"
    with pytest.raises(ProviderConfigError) as unsupported:
        build_provider(ProviderAccount(type="carrier_pigeon", name="p"))
    assert unsupported.value.code == "unsupported_provider"
