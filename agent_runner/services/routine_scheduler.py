"""Routine scheduler: a standalone ticking process that fires per-agent routines.

Run with ``python -m agent_runner.services.routine_scheduler``.

Every tick evaluates all enabled routines against "now" in each routine's
own time zone. A match claims ``routine:fire:{routineId}:{YYYYMMDDHHMM}`` in
the idempotence store before the action runs, so a routine fires at most once
per local minute no matter how many ticks or replicas see that minute.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..core.cron import cron_mismatch, local_parts
from ..core.idempotence import IdempotenceStore
from ..errors import ScheduleError
from ..models.routine import AgentRoutine
from ..repositories.routine_repository import RoutineRepository
from .routine_actions import ActionContext, ActionResult, execute_action

logger = logging.getLogger("agent_runner.services.routine_scheduler")

FIRE_LOCK_TTL_SECONDS = 3600
MIN_TICK_SECONDS = 5.0


def fire_key(routine_id: str, minute_bucket: str) -> str:
    return f"routine:fire:{routine_id}:{minute_bucket}"


def invalid_key(routine_id: str) -> str:
    return f"routine:invalid:{routine_id}"


class RoutineScheduler:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        idempotence: IdempotenceStore,
        enqueue_run: Optional[Callable[[str, str], None]] = None,
        tick_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.idempotence = idempotence
        self.enqueue_run = enqueue_run
        self.tick_seconds = max(MIN_TICK_SECONDS, tick_seconds or settings.ROUTINE_TICK_SECONDS)
        self.clock = clock
        self._running = threading.Lock()
        self._stopped = asyncio.Event()

    def provision_defaults(self) -> int:
        db = self.session_factory()
        try:
            created = RoutineRepository(db).ensure_default_routines()
        finally:
            db.close()
        if created:
            logger.info("Provisioned %d default routine(s)", created)
        return created

    def tick(self) -> bool:
        """Evaluate every enabled routine once. Returns False if a tick was already running."""
        if not self._running.acquire(blocking=False):
            logger.debug("Previous tick still running; skipping")
            return False
        try:
            now = self.clock()
            db = self.session_factory()
            try:
                repo = RoutineRepository(db)
                for routine in repo.list_enabled():
                    try:
                        self._evaluate(db, repo, routine, now)
                    except Exception:
                        db.rollback()
                        logger.exception("Routine %s (%s) failed during tick", routine.id, routine.name)
            finally:
                db.close()
        except Exception:
            logger.exception("Routine tick failed")
        finally:
            self._running.release()
        return True

    def _evaluate(self, db: Session, repo: RoutineRepository, routine: AgentRoutine, now: datetime) -> None:
        try:
            lp = local_parts(now, routine.timezone or "UTC")
            mismatch = cron_mismatch(routine.cron or "", lp)
        except ScheduleError as exc:
            logger.warning("Routine %s (%s) skipped: %s", routine.id, routine.name, exc)
            if self.idempotence.try_acquire(invalid_key(routine.id), FIRE_LOCK_TTL_SECONDS):
                repo.add_log(routine, "error", exc.reason)
            return
        if mismatch:
            return

        if not self.idempotence.try_acquire(fire_key(routine.id, lp.minute_bucket()), FIRE_LOCK_TTL_SECONDS):
            return

        ctx = ActionContext(now=now, local=lp, enqueue_run=self.enqueue_run)
        try:
            result = execute_action(db, routine, ctx)
        except Exception as exc:
            db.rollback()
            logger.exception("Routine %s action %s raised", routine.id, routine.action)
            result = ActionResult("error", str(exc) or exc.__class__.__name__)
        repo.add_log(routine, result.status, result.message)
        logger.info("Routine %s fired %s: %s %s", routine.id, routine.action, result.status, result.message or "")

    async def run_forever(self) -> None:
        """Tick on a fixed interval until :meth:`stop`. Ticks run in a worker thread."""
        self.provision_defaults()
        logger.info("Routine scheduler started (every %.0fs)", self.tick_seconds)
        pending: set[asyncio.Task] = set()
        while not self._stopped.is_set():
            task = asyncio.create_task(asyncio.to_thread(self.tick))
            pending.add(task)
            task.add_done_callback(pending.discard)
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        if pending:
            await asyncio.gather(*pending)
        logger.info("Routine scheduler stopped")

    def stop(self) -> None:
        self._stopped.set()


def main() -> None:
    from ..core.idempotence import RedisIdempotenceStore
    from ..database import SessionLocal
    from ..redis_client import get_redis_client
    from ..tasks import enqueue_run

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    )
    scheduler = RoutineScheduler(
        SessionLocal,
        RedisIdempotenceStore(get_redis_client()),
        enqueue_run=enqueue_run,
    )
    try:
        asyncio.run(scheduler.run_forever())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
