"""Test doubles for redis and the provider adapter."""

from typing import Callable, List, Optional

from agent_runner.clients.provider_client import (
    DoneEvent,
    ProviderClient,
    TextDelta,
    ToolCallEvent,
    UsageEvent,
)


class FakeRedis:
    """Just the commands the engine uses: get/set(nx, ex)/delete/publish/ping."""

    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.published = []

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    def ping(self):
        return True


class ScriptedProvider(ProviderClient):
    """Replays one scripted event list per round and records what it was sent."""

    def __init__(self, rounds: List[list], on_round: Optional[Callable[[int], None]] = None):
        self.rounds = list(rounds)
        self.on_round = on_round
        self.calls = []

    async def stream_chat(self, model, messages, tools=None):
        index = len(self.calls)
        self.calls.append({"model": model, "messages": [dict(m) for m in messages], "tools": tools})
        if self.on_round is not None:
            self.on_round(index)
        for event in self.rounds[index]:
            yield event


def text_round(*chunks: str, input_tokens: int = 10, output_tokens: int = 4) -> list:
    return [TextDelta(c) for c in chunks] + [UsageEvent(input_tokens, output_tokens), DoneEvent()]


def tool_round(*calls) -> list:
    """``calls`` are ``(id, name, arguments_json)`` tuples."""
    return [ToolCallEvent(*c) for c in calls] + [DoneEvent()]


class FakePubSub:
    """Async pub/sub whose ``get_message`` plays back scripted steps.

    Each step is a callable returning a message dict (``{"data": ...}``) or
    None for a quiet period; once the script runs out every call is quiet.
    """

    def __init__(self, steps):
        self.steps = list(steps)
        self.channels = []
        self.closed = False

    async def subscribe(self, channel):
        self.channels.append(channel)

    async def unsubscribe(self, channel):
        self.channels.remove(channel)

    async def get_message(self, ignore_subscribe_messages=True, timeout=None):
        if not self.steps:
            return None
        return self.steps.pop(0)()

    async def aclose(self):
        self.closed = True


class FakeAsyncRedis:
    def __init__(self, steps=()):
        self.pubsub_instance = FakePubSub(steps)
        self.closed = False

    def pubsub(self):
        return self.pubsub_instance

    async def aclose(self):
        self.closed = True
