"""Run event log: durable append, then live publish.

Each event is committed to ``run_events`` before it is published on the
``run:{runId}`` channel, so a subscriber that replays history and then
switches to the live channel never misses an event it could have seen live.
Both paths carry the same JSON shape: ``{runId, seq, type, createdAt, payload}``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models.run import RunEvent
from ..repositories.run_repository import RunRepository

logger = logging.getLogger("agent_runner.services.event_bus")

_SEQ_CONFLICT_RETRIES = 3


def run_channel(run_id: str) -> str:
    return f"run:{run_id}"


def format_timestamp(value: datetime) -> str:
    """ISO-8601 in UTC with a trailing Z. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def event_to_dict(event: RunEvent) -> dict:
    return {
        "runId": event.run_id,
        "seq": event.seq,
        "type": event.type,
        "createdAt": format_timestamp(event.created_at),
        "payload": event.payload,
    }


class EventWriter:
    """Appends events for one run with a contiguous sequence."""

    def __init__(self, db: Session, redis_client, run_id: str):
        self.db = db
        self.redis = redis_client
        self.run_id = run_id
        self.repo = RunRepository(db)
        self._next_seq = self.repo.next_seq(run_id)

    @property
    def next_seq(self) -> int:
        return self._next_seq

    def emit(self, type_: str, payload: dict) -> dict:
        created_at = datetime.now(timezone.utc)
        for attempt in range(_SEQ_CONFLICT_RETRIES):
            try:
                event = self.repo.add_event(self.run_id, self._next_seq, type_, payload, created_at)
                break
            except IntegrityError:
                # Another writer took this seq (e.g. a redelivered job); resync and retry.
                self.db.rollback()
                if attempt == _SEQ_CONFLICT_RETRIES - 1:
                    raise
                self._next_seq = self.repo.next_seq(self.run_id)
        self._next_seq += 1

        message = event_to_dict(event)
        self.redis.publish(run_channel(self.run_id), json.dumps(message, ensure_ascii=False, default=str))
        return message
