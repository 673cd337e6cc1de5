"""Cooperative cancellation tokens checked at explicit checkpoints."""

from __future__ import annotations

from typing import Callable

from ..errors import RunCancelled


def cancel_key(run_id: str) -> str:
    return f"cancel:{run_id}"


class CancellationToken:
    """Wraps a cancel-flag probe. Polled, never pushed: a set flag takes
    effect the next time a checkpoint calls :meth:`raise_if_cancelled`.
    """

    def __init__(self, probe: Callable[[], bool]):
        self._probe = probe
        self._cancelled = False

    @classmethod
    def never(cls) -> "CancellationToken":
        return cls(lambda: False)

    @classmethod
    def from_redis(cls, redis_client, run_id: str) -> "CancellationToken":
        key = cancel_key(run_id)
        return cls(lambda: bool(redis_client.get(key)))

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self._probe():
            self._cancelled = True
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelled()
