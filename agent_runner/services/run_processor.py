"""Job orchestrator: executes one queued run end to end.

Per run: preflight (cancel flag, sleeping agent), per-run tool sandbox,
context assembly, the turn state machine under a cancellation token,
write-then-publish events, and finalization. Infrastructure failures are
raised as RetryableError for the queue; everything else settles the run.
"""

from __future__ import annotations

import logging
import traceback
from typing import Callable, Optional

import redis
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..clients.factory import build_provider
from ..config import settings
from ..core.cancellation import CancellationToken
from ..core.runtime import run_turn
from ..core.tool_policy import resolve_tools, take_snapshot
from ..errors import (
    AgentNotFound,
    AgentSleeping,
    OrchestrationError,
    ProviderConfigError,
    RetryableError,
    RunCancelled,
    RunNotFound,
)
from ..models.run import TERMINAL_STATUSES
from ..repositories.agent_repository import AgentRepository
from ..repositories.ops_repository import OpsRepository
from ..repositories.run_repository import RunRepository
from ..repositories.session_repository import SessionRepository
from ..tools import ToolContext, ToolRegistry, ToolRunner, builtin_registry
from .context_service import ContextService
from .event_bus import EventWriter

logger = logging.getLogger("agent_runner.services.run_processor")

INFRASTRUCTURE_ERRORS = (SQLAlchemyError, redis.RedisError)


class RunProcessor:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        redis_client,
        registry: Optional[ToolRegistry] = None,
        provider_factory=build_provider,
        enqueue_run: Optional[Callable[[str, str], None]] = None,
        max_tool_rounds: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.redis = redis_client
        self.registry = registry if registry is not None else builtin_registry()
        self.provider_factory = provider_factory
        self.enqueue_run = enqueue_run
        self.max_tool_rounds = max_tool_rounds if max_tool_rounds is not None else settings.MAX_TOOL_ROUNDS

    async def process(self, run_id: str, user_id: str, final_attempt: bool = True) -> str:
        """Execute a run and return its resulting status.

        Raises RetryableError on database or redis failures; on the final
        attempt the run is also marked failed so it does not stay "running".
        """
        db = self.session_factory()
        try:
            return await self._process(db, run_id, user_id)
        except OrchestrationError as exc:
            db.rollback()
            logger.warning("Run %s failed: %s (%s)", run_id, exc, exc.code)
            self._fail(db, run_id, user_id, str(exc), code=exc.code)
            return "failed"
        except INFRASTRUCTURE_ERRORS as exc:
            db.rollback()
            logger.error("Infrastructure error while processing run %s: %s", run_id, exc)
            if final_attempt:
                try:
                    self._fail(db, run_id, user_id, f"infrastructure error: {exc}", code="infrastructure_error")
                except INFRASTRUCTURE_ERRORS:
                    logger.exception("Could not record failure for run %s", run_id)
            raise RetryableError(str(exc)) from exc
        except Exception as exc:
            db.rollback()
            logger.exception("Unexpected error while processing run %s", run_id)
            self._fail(db, run_id, user_id, str(exc) or exc.__class__.__name__, code="internal_error",
                       stack=traceback.format_exc())
            raise
        finally:
            db.close()

    async def _process(self, db: Session, run_id: str, user_id: str) -> str:
        runs = RunRepository(db)
        run = runs.get_run(run_id)
        if run is None:
            raise RunNotFound(f"run {run_id} not found")
        if run.status in TERMINAL_STATUSES:
            logger.info("Run %s already %s; skipping redelivery", run_id, run.status)
            return run.status

        token = CancellationToken.from_redis(self.redis, run_id)
        if token.cancelled:
            if runs.mark_canceled(run_id):
                EventWriter(db, self.redis, run_id).emit("status", {"status": "canceled"})
            logger.info("Run %s canceled before start", run_id)
            return "canceled"

        agents = AgentRepository(db)
        agent = agents.get_agent(run.agent_id)
        if agent is None:
            raise AgentNotFound(f"agent {run.agent_id} not found")
        if agent.is_sleeping:
            raise AgentSleeping(f"agent {agent.name} is sleeping")

        account = None
        if agent.provider_account_id:
            account = agents.get_provider_account(agent.provider_account_id)
            if account is None:
                raise ProviderConfigError(f"provider account {agent.provider_account_id} not found")
        provider = self.provider_factory(account)

        permitted = resolve_tools(take_snapshot(db, agent))
        tool_schemas = self.registry.schemas(permitted)
        context = ContextService(db).assemble(run, agent)

        if not runs.mark_running(run_id):
            current = runs.get_run(run_id)
            logger.info("Run %s moved to %s before it started", run_id, current.status if current else "?")
            return current.status if current else "failed"

        writer = EventWriter(db, self.redis, run_id)
        tool_runner = None
        if tool_schemas:
            runner = ToolRunner(
                self.registry,
                permitted,
                ToolContext(
                    db=db,
                    user_id=user_id,
                    agent_id=agent.id,
                    project_id=run.project_id,
                    run_id=run_id,
                    enqueue_run=self.enqueue_run,
                ),
            )

            async def tool_runner(tool_name: str, tool_call_id: str, arguments_json: str) -> str:
                return await runner.run(tool_name, arguments_json)

        final_text = ""
        usage = None
        finished: dict = {}
        error: Optional[dict] = None
        try:
            async for event in run_turn(
                provider,
                system_prompt=context.system_prompt,
                model=agent.default_model or settings.DEFAULT_MODEL,
                user_message=context.user_message,
                prior_messages=context.prior_messages,
                tools=tool_schemas or None,
                tool_runner=tool_runner,
                max_tool_rounds=self.max_tool_rounds,
                cancel_token=token,
            ):
                writer.emit(event.type, event.payload)
                if event.type == "assistant_message":
                    final_text = event.payload.get("content", "")
                elif event.type == "usage":
                    usage = event.payload
                elif event.type == "error":
                    error = event.payload
                elif event.type == "run_finished":
                    finished = event.payload
        except RunCancelled:
            runs.mark_canceled(run_id)
            writer.emit("status", {"status": "canceled"})
            logger.info("Run %s canceled between rounds", run_id)
            return "canceled"

        if error is not None or not finished.get("ok", False):
            message = (error or {}).get("message") or "run finished without success"
            runs.mark_failed(run_id, message)
            writer.emit("status", {"status": "failed"})
            self._diagnose(db, run_id, user_id, agent.id, message, code="provider_error")
            return "failed"

        if run.session_id:
            sessions = SessionRepository(db)
            sessions.add_message(run.session_id, "assistant", final_text, **_token_fields(usage))
            sessions.touch_session(run.session_id)

        output = {"assistant": final_text, "usage": usage}
        if finished.get("note"):
            output["note"] = finished["note"]
        if finished.get("toolCalls"):
            output["toolCalls"] = finished["toolCalls"]
        runs.mark_succeeded(run_id, output)
        # Subscribers close on this event, so it follows the row update.
        writer.emit("status", {"status": "succeeded"})
        logger.info("Run %s succeeded (%d chars)", run_id, len(final_text))
        return "succeeded"

    # ── Failure handling ────────────────────────────────────────────────────────

    def _fail(self, db: Session, run_id: str, user_id: str, message: str, code: str, stack: Optional[str] = None) -> None:
        runs = RunRepository(db)
        run = runs.get_run(run_id)
        if run is None:
            self._diagnose(db, run_id, user_id, None, message, code=code, stack=stack)
            return
        if runs.mark_failed(run_id, message):
            writer = EventWriter(db, self.redis, run_id)
            writer.emit("error", {"message": message, "code": code})
            writer.emit("status", {"status": "failed"})
        self._diagnose(db, run_id, user_id, run.agent_id, message, code=code, stack=stack)

    @staticmethod
    def _diagnose(
        db: Session,
        run_id: str,
        user_id: str,
        agent_id: Optional[str],
        message: str,
        code: str,
        stack: Optional[str] = None,
    ) -> None:
        OpsRepository(db).add_system_log(
            service="worker",
            level="error",
            message=f"run {run_id} failed: {message}",
            user_id=user_id,
            stack=stack,
            meta={"runId": run_id, "agentId": agent_id, "code": code},
        )


def _token_fields(usage: Optional[dict]) -> dict:
    if not usage:
        return {}
    input_tokens = usage.get("inputTokens")
    output_tokens = usage.get("outputTokens")
    cached = usage.get("cachedInputTokens") or 0
    fields = {"token_input": input_tokens, "token_output": output_tokens}
    if input_tokens is not None:
        fields["token_input_cached"] = cached
        fields["token_input_uncached"] = max(0, input_tokens - cached)
    if input_tokens is not None and output_tokens is not None:
        fields["token_total"] = input_tokens + output_tokens
    return fields
