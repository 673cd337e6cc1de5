"""Celery application and the durable job queues.

Workers (one pool per queue, sized from settings)::

    python -m agent_runner.tasks runs
    python -m agent_runner.tasks ingest
"""

import asyncio
import logging
import sys

from celery import Celery, Task
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import SessionLocal
from .errors import OrchestrationError, RetryableError
from .redis_client import get_redis_client
from .repositories.ops_repository import OpsRepository
from .services.ingest_processor import ingest_document as ingest
from .services.run_processor import RunProcessor

logger = logging.getLogger("agent_runner.tasks")

RUNS_QUEUE = "runs"
INGEST_QUEUE = "ingest"

QUEUE_CONCURRENCY = {
    RUNS_QUEUE: settings.CONCURRENCY_RUNS,
    INGEST_QUEUE: settings.CONCURRENCY_INGEST,
}

app = Celery("agent_runner", broker=settings.REDIS_URL)
app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue=RUNS_QUEUE,
    task_routes={
        "agent_runner.tasks.process_run": {"queue": RUNS_QUEUE},
        "agent_runner.tasks.ingest_document": {"queue": INGEST_QUEUE},
    },
)


class DeadLetterTask(Task):
    """Records exhausted or permanently failed jobs as ``queue`` system logs."""

    abstract = True

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error("Task %s[%s] dead-lettered: %s", self.name, task_id, exc)
        db = SessionLocal()
        try:
            OpsRepository(db).add_system_log(
                service="queue",
                level="error",
                message=f"{self.name} dead-lettered after {self.request.retries + 1} attempt(s): {exc}",
                user_id=kwargs.get("user_id"),
                stack=str(einfo),
                meta={"taskId": task_id, "args": list(args), "kwargs": kwargs},
            )
        except SQLAlchemyError:
            logger.exception("Could not record dead letter for task %s", task_id)
        finally:
            db.close()


@app.task(
    bind=True,
    base=DeadLetterTask,
    name="agent_runner.tasks.process_run",
    autoretry_for=(RetryableError,),
    retry_backoff=1,
    retry_backoff_max=settings.RUN_RETRY_BACKOFF_MAX,
    max_retries=settings.RUN_MAX_ATTEMPTS - 1,
)
def process_run(self, run_id: str, user_id: str) -> str:
    processor = RunProcessor(SessionLocal, get_redis_client(), enqueue_run=enqueue_run)
    final_attempt = self.request.retries >= self.max_retries
    return asyncio.run(processor.process(run_id, user_id, final_attempt=final_attempt))


@app.task(
    bind=True,
    base=DeadLetterTask,
    name="agent_runner.tasks.ingest_document",
    autoretry_for=(RetryableError,),
    retry_backoff=1,
    retry_backoff_max=settings.RUN_RETRY_BACKOFF_MAX,
    max_retries=settings.RUN_MAX_ATTEMPTS - 1,
)
def ingest_document(self, document_id: str, user_id: str | None = None) -> int:
    db = SessionLocal()
    try:
        return ingest(db, document_id)
    except OrchestrationError as exc:
        logger.warning("Ingest of document %s failed: %s", document_id, exc)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        raise RetryableError(str(exc)) from exc
    finally:
        db.close()


def enqueue_run(run_id: str, user_id: str) -> None:
    """Queue contract: a job message carries only ``run_id`` and ``user_id``."""
    process_run.apply_async(kwargs={"run_id": run_id, "user_id": user_id}, queue=RUNS_QUEUE)


def enqueue_ingest(document_id: str, user_id: str) -> None:
    ingest_document.apply_async(kwargs={"document_id": document_id, "user_id": user_id}, queue=INGEST_QUEUE)


def main(argv=None) -> None:
    argv = list(sys.argv[1:] if argv is None else argv)
    queue = argv[0] if argv else RUNS_QUEUE
    if queue not in QUEUE_CONCURRENCY:
        raise SystemExit(f"unknown queue {queue!r}; expected one of {sorted(QUEUE_CONCURRENCY)}")
    app.worker_main([
        "worker",
        "-Q", queue,
        "--concurrency", str(QUEUE_CONCURRENCY[queue]),
        "--loglevel", "INFO",
        "--hostname", f"{queue}@%h",
    ])


if __name__ == "__main__":
    main()
