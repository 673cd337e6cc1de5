from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, List, Optional, Union


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class MessageEvent:
    """A complete message, for backends that do not stream fragments."""
    content: str


@dataclass(frozen=True)
class ToolCallEvent:
    id: str
    name: str
    arguments: str  # raw JSON text, exactly as the model produced it


@dataclass(frozen=True)
class UsageEvent:
    input_tokens: int
    output_tokens: int
    cached_input_tokens: int = 0


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    raw: Any = None


@dataclass(frozen=True)
class DoneEvent:
    pass


ProviderEvent = Union[TextDelta, MessageEvent, ToolCallEvent, UsageEvent, ErrorEvent, DoneEvent]


class ProviderClient(ABC):
    """Streaming chat backend. Every stream is finite and ends with Done or Error."""

    @abstractmethod
    def stream_chat(
        self,
        model: str,
        messages: List[dict],
        tools: Optional[List[dict]] = None,
    ) -> AsyncIterator[ProviderEvent]:
        pass
