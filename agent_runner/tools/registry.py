"""Tool registry and the sandboxed runner the turn state machine calls.

Handlers receive validated pydantic arguments and return a plain dict (or
raise :class:`ToolError`). Results stay typed (:class:`ToolOk` /
:class:`ToolFailure`) until :meth:`ToolRunner.run` serializes them to the JSON
string the model sees.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

logger = logging.getLogger("agent_runner.tools.registry")


class ToolError(Exception):
    """Structured rejection raised by a tool handler."""

    def __init__(self, code: str, message: Optional[str] = None, **detail: Any):
        super().__init__(message or code)
        self.code = code
        self.message = message
        self.detail = detail


@dataclass(frozen=True)
class ToolOk:
    data: Dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> str:
        return json.dumps({"ok": True, **self.data}, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class ToolFailure:
    error: str
    detail: Any = None

    def to_wire(self) -> str:
        body: Dict[str, Any] = {"ok": False, "error": self.error}
        if self.detail is not None:
            body["detail"] = self.detail
        return json.dumps(body, ensure_ascii=False, default=str)


ToolResult = Union[ToolOk, ToolFailure]


@dataclass
class ToolContext:
    """Run-scoped identity and collaborators handed to every handler."""
    db: Session
    user_id: str
    agent_id: str
    project_id: str
    run_id: Optional[str] = None
    enqueue_run: Optional[Callable[[str, str], None]] = None


Handler = Callable[[ToolContext, Any], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Handler

    def schema(self) -> dict:
        params = self.args_model.model_json_schema()
        params.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": params,
            },
        }


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec] = ()):
        self._specs: Dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._specs:
            raise ValueError(f"tool already registered: {spec.name}")
        self._specs[spec.name] = spec

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._specs.get(name)

    def names(self) -> List[str]:
        return sorted(self._specs)

    def schemas(self, names: Iterable[str]) -> List[dict]:
        """OpenAI function schemas for the registered subset of ``names``, sorted by name."""
        return [self._specs[n].schema() for n in sorted(set(names)) if n in self._specs]


class ToolRunner:
    """Executes tool calls for one run, restricted to the permitted set.

    Never raises: every rejection or handler failure becomes a ToolFailure.
    """

    def __init__(self, registry: ToolRegistry, permitted: Iterable[str], ctx: ToolContext):
        self.registry = registry
        self.permitted = frozenset(permitted)
        self.ctx = ctx

    async def execute(self, tool_name: str, arguments_json: str) -> ToolResult:
        if tool_name not in self.permitted:
            return ToolFailure("tool_not_permitted", {"toolName": tool_name})
        spec = self.registry.get(tool_name)
        if spec is None:
            return ToolFailure("unknown_tool", {"toolName": tool_name})

        try:
            raw = json.loads(arguments_json or "{}")
        except json.JSONDecodeError as exc:
            return ToolFailure("invalid_arguments", f"arguments are not valid JSON: {exc.msg}")
        if not isinstance(raw, dict):
            return ToolFailure("invalid_arguments", "arguments must be a JSON object")
        try:
            args = spec.args_model.model_validate(raw)
        except ValidationError as exc:
            return ToolFailure("invalid_arguments", exc.errors(include_url=False, include_context=False))

        try:
            data = await spec.handler(self.ctx, args)
        except ToolError as exc:
            detail = dict(exc.detail)
            if exc.message:
                detail["message"] = exc.message
            return ToolFailure(exc.code, detail or None)
        except Exception as exc:
            logger.exception("Tool %s failed for agent %s", tool_name, self.ctx.agent_id)
            try:
                self.ctx.db.rollback()
            except Exception:
                logger.exception("Rollback after tool failure also failed")
            return ToolFailure("tool_failed", str(exc) or exc.__class__.__name__)
        return ToolOk(data or {})

    async def run(self, tool_name: str, arguments_json: str) -> str:
        result = await self.execute(tool_name, arguments_json)
        return result.to_wire()


class ToolArgs(BaseModel):
    """Base for tool argument models: camelCase on the wire, unknown keys rejected."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")
