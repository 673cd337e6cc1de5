"""Deterministic provider used when an agent has no provider account."""

from __future__ import annotations

from typing import AsyncIterator, List, Optional

from .provider_client import DoneEvent, ProviderClient, ProviderEvent, TextDelta, UsageEvent


class MockProviderClient(ProviderClient):
    async def stream_chat(
        self,
        model: str,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> AsyncIterator[ProviderEvent]:
        last_user = next((m.get("content") or "" for m in reversed(messages) if m.get("role") == "user"), "")
        reply = f"(mock:{model}) {last_user}".strip()
        for word in reply.split(" "):
            yield TextDelta(text=word + " ")
        prompt_chars = sum(len(m.get("content") or "") for m in messages)
        yield UsageEvent(input_tokens=max(1, prompt_chars // 4), output_tokens=max(1, len(reply) // 4))
        yield DoneEvent()
