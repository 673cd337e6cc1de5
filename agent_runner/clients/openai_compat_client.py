"""OpenAI-compatible /chat/completions streaming adapter."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator, Dict, List, Optional

import httpx

from .provider_client import (
    DoneEvent,
    ErrorEvent,
    MessageEvent,
    ProviderClient,
    ProviderEvent,
    TextDelta,
    ToolCallEvent,
    UsageEvent,
)

logger = logging.getLogger("agent_runner.clients.openai_compat_client")


class OpenAICompatClient(ProviderClient):
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 300.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._transport = transport
        # Streaming reads may idle for a long time between tokens.
        self._timeout = httpx.Timeout(connect=10.0, read=timeout, write=10.0, pool=10.0)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @staticmethod
    def to_wire_messages(messages: List[dict]) -> List[dict]:
        """Convert internal messages (tool calls as ``{id, name, arguments}``) to the wire shape."""
        wire = []
        for m in messages:
            if m["role"] == "assistant" and m.get("tool_calls"):
                wire.append({
                    "role": "assistant",
                    "content": m.get("content") or None,
                    "tool_calls": [
                        {
                            "id": c["id"],
                            "type": "function",
                            "function": {"name": c["name"], "arguments": c["arguments"]},
                        }
                        for c in m["tool_calls"]
                    ],
                })
            elif m["role"] == "tool":
                wire.append({"role": "tool", "tool_call_id": m["tool_call_id"], "content": m["content"]})
            else:
                wire.append({"role": m["role"], "content": m["content"]})
        return wire

    async def stream_chat(
        self,
        model: str,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> AsyncIterator[ProviderEvent]:
        body = {
            "model": model,
            "messages": self.to_wire_messages(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            body["tools"] = tools

        # index -> {id, name, arguments}; tool-call fragments arrive spread over chunks
        pending: Dict[int, dict] = {}
        saw_text = False

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", f"{self.base_url}/chat/completions", json=body, headers=self._headers()
                ) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", errors="replace")
                        yield ErrorEvent(message=f"provider_http_{resp.status_code}", raw=detail[:2000])
                        return

                    async for line in resp.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        try:
                            chunk = json.loads(data)
                        except json.JSONDecodeError:
                            logger.warning("Skipping malformed stream chunk: %s", data[:200])
                            continue

                        usage = chunk.get("usage")
                        if usage:
                            details = usage.get("prompt_tokens_details") or {}
                            yield UsageEvent(
                                input_tokens=int(usage.get("prompt_tokens") or 0),
                                output_tokens=int(usage.get("completion_tokens") or 0),
                                cached_input_tokens=int(details.get("cached_tokens") or 0),
                            )

                        for choice in chunk.get("choices") or []:
                            delta = choice.get("delta") or {}
                            if delta.get("content"):
                                saw_text = True
                                yield TextDelta(text=delta["content"])
                            for tc in delta.get("tool_calls") or []:
                                slot = pending.setdefault(tc.get("index", 0), {"id": "", "name": "", "arguments": ""})
                                if tc.get("id"):
                                    slot["id"] = tc["id"]
                                fn = tc.get("function") or {}
                                if fn.get("name"):
                                    slot["name"] = fn["name"]
                                if fn.get("arguments"):
                                    slot["arguments"] += fn["arguments"]
                            message = choice.get("message")
                            if message and message.get("content") and not saw_text:
                                yield MessageEvent(content=message["content"])
        except httpx.HTTPError as exc:
            yield ErrorEvent(message=f"provider_transport_error: {exc.__class__.__name__}", raw=str(exc))
            return

        for index in sorted(pending):
            slot = pending[index]
            yield ToolCallEvent(id=slot["id"] or f"call_{index}", name=slot["name"], arguments=slot["arguments"] or "{}")
        yield DoneEvent()
