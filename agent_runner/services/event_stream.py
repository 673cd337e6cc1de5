"""Replay-then-live event streaming for one run.

Subscribers attach to the live channel first, replay persisted events, then
forward live messages. A cursor on ``seq`` drops anything already sent and
backfills from the database if the live channel skipped ahead.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import AsyncIterator, Callable, List

from sqlalchemy.orm import Session

from ..models.run import TERMINAL_STATUSES
from ..repositories.run_repository import RunRepository
from .event_bus import event_to_dict, run_channel

logger = logging.getLogger("agent_runner.services.event_stream")

KEEPALIVE_SECONDS = 15.0


def is_terminal_event(event: dict) -> bool:
    """Only a terminal ``status`` event ends a stream; it is emitted after the run row is settled."""
    return event["type"] == "status" and (event.get("payload") or {}).get("status") in TERMINAL_STATUSES


class EventCursor:
    """Tracks the last delivered seq for one run and de-duplicates by it."""

    def __init__(self, after_seq: int = 0):
        self.last_seq = after_seq

    def accept(self, event: dict) -> bool:
        if event["seq"] <= self.last_seq:
            return False
        self.last_seq = event["seq"]
        return True

    def has_gap(self, event: dict) -> bool:
        return event["seq"] > self.last_seq + 1


def format_sse(event: dict) -> str:
    return f"id: {event['seq']}\nevent: {event['type']}\ndata: {json.dumps(event, ensure_ascii=False)}\n\n"


async def stream_run_events(
    run_id: str,
    session_factory: Callable[[], Session],
    async_redis,
    after_seq: int = 0,
) -> AsyncIterator[str]:
    cursor = EventCursor(after_seq)

    def load(since: int) -> tuple[List[dict], str | None]:
        db = session_factory()
        try:
            repo = RunRepository(db)
            run = repo.get_run(run_id)
            events = [event_to_dict(e) for e in repo.list_events(run_id, after_seq=since)]
            return events, run.status if run else None
        finally:
            db.close()

    pubsub = async_redis.pubsub()
    await pubsub.subscribe(run_channel(run_id))
    try:
        events, status = load(cursor.last_seq)
        for event in events:
            if cursor.accept(event):
                yield format_sse(event)
        if status is None or status in TERMINAL_STATUSES:
            return

        while True:
            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=KEEPALIVE_SECONDS)
            if message is None:
                # Quiet channel: the run may have settled without a final live event reaching us.
                events, status = load(cursor.last_seq)
                for event in events:
                    if cursor.accept(event):
                        yield format_sse(event)
                if status in TERMINAL_STATUSES:
                    return
                yield ": keepalive\n\n"
                continue

            event = json.loads(message["data"])
            if cursor.has_gap(event):
                missed, _ = load(cursor.last_seq)
                for backfill in missed:
                    if backfill["seq"] < event["seq"] and cursor.accept(backfill):
                        yield format_sse(backfill)
            if cursor.accept(event):
                yield format_sse(event)
            if is_terminal_event(event):
                return
    except asyncio.CancelledError:
        logger.debug("Event stream for run %s closed by client", run_id)
        raise
    finally:
        await pubsub.unsubscribe(run_channel(run_id))
        await pubsub.aclose()
        await async_redis.aclose()
