"""Turn state machine: drives one conversational turn against a provider.

A turn is one or more rounds. Each round streams a model response; if the
model asks for tools, they are executed serially in the order received, their
results are appended to the conversation and another round starts. The turn
ends with either ``assistant_message`` + ``run_finished{ok: true}`` or
``error`` + ``run_finished{ok: false}``.
"""

from __future__ import annotations

from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from ..clients.provider_client import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    ProviderClient,
    TextDelta,
    ToolCallEvent,
    UsageEvent,
)
from .cancellation import CancellationToken

ToolRunnerFn = Callable[[str, str, str], Awaitable[str]]  # (tool_name, tool_call_id, arguments_json) -> json str

DEFAULT_MAX_TOOL_ROUNDS = 3


@dataclass(frozen=True)
class TurnEvent:
    seq: int
    type: str
    payload: dict = field(default_factory=dict)


async def run_turn(
    provider: ProviderClient,
    *,
    system_prompt: str,
    model: str,
    user_message: str,
    prior_messages: Optional[List[dict]] = None,
    tools: Optional[List[dict]] = None,
    tool_runner: Optional[ToolRunnerFn] = None,
    max_tool_rounds: int = DEFAULT_MAX_TOOL_ROUNDS,
    cancel_token: Optional[CancellationToken] = None,
) -> AsyncIterator[TurnEvent]:
    """Yield the turn's events with a gap-free sequence starting at 1.

    ``cancel_token`` is checked between rounds, never inside a provider
    stream; a set token raises :class:`RunCancelled` out of the generator.
    """
    seq = 0

    def emit(type_: str, payload: dict) -> TurnEvent:
        nonlocal seq
        seq += 1
        return TurnEvent(seq=seq, type=type_, payload=payload)

    yield emit("run_started", {"model": model})

    messages: List[dict] = [{"role": "system", "content": system_prompt}]
    messages.extend(prior_messages or [])
    messages.append({"role": "user", "content": user_message})

    max_rounds = max(0, max_tool_rounds)
    last_usage: Optional[dict] = None

    for round_index in range(max_rounds + 1):
        if round_index > 0 and cancel_token is not None:
            cancel_token.raise_if_cancelled()

        round_text = ""
        full_message: Optional[str] = None
        tool_calls: List[ToolCallEvent] = []

        async with aclosing(provider.stream_chat(model, messages, tools or None)) as stream:
            async for event in stream:
                if isinstance(event, TextDelta):
                    round_text += event.text
                    yield emit("assistant_delta", {"delta": event.text})
                elif isinstance(event, MessageEvent):
                    full_message = event.content
                elif isinstance(event, ToolCallEvent):
                    tool_calls.append(event)
                    yield emit("tool_call", {
                        "toolCallId": event.id,
                        "toolName": event.name,
                        "argumentsJson": event.arguments,
                    })
                elif isinstance(event, UsageEvent):
                    last_usage = {
                        "inputTokens": event.input_tokens,
                        "outputTokens": event.output_tokens,
                        "cachedInputTokens": event.cached_input_tokens,
                    }
                    yield emit("usage", dict(last_usage))
                elif isinstance(event, ErrorEvent):
                    yield emit("error", {"message": event.message, "raw": event.raw})
                    yield emit("run_finished", {"ok": False, "usage": last_usage})
                    return
                elif isinstance(event, DoneEvent):
                    break

        if not round_text and full_message:
            round_text = full_message

        if not tool_calls:
            yield emit("assistant_message", {"content": round_text})
            yield emit("run_finished", {"ok": True, "usage": last_usage})
            return

        if tool_runner is None:
            # Tools were requested but nothing can run them; stop with what we have.
            yield emit("assistant_message", {"content": round_text})
            yield emit("run_finished", {
                "ok": True,
                "usage": last_usage,
                "toolCalls": [{"id": c.id, "name": c.name} for c in tool_calls],
            })
            return

        messages.append({
            "role": "assistant",
            "content": round_text,
            "tool_calls": [{"id": c.id, "name": c.name, "arguments": c.arguments} for c in tool_calls],
        })
        for call in tool_calls:
            output = await tool_runner(call.name, call.id, call.arguments)
            yield emit("tool_result", {"toolCallId": call.id, "toolName": call.name, "content": output})
            messages.append({"role": "tool", "name": call.name, "tool_call_id": call.id, "content": output})

    yield emit("assistant_message", {"content": ""})
    yield emit("run_finished", {"ok": True, "usage": last_usage, "note": "max_tool_rounds_exceeded"})
