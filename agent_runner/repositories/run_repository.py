from datetime import datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..models.run import Run, RunEvent


class RunRepository:
    def __init__(self, db: Session):
        self.db = db

    def create_run(
        self,
        project_id: str,
        agent_id: str,
        input: dict,
        session_id: Optional[str] = None,
    ) -> Run:
        run = Run(project_id=project_id, agent_id=agent_id, session_id=session_id, input=input, status="queued")
        self.db.add(run)
        self.db.commit()
        self.db.refresh(run)
        return run

    def get_run(self, run_id: str) -> Optional[Run]:
        # populate_existing: status may have been changed by a conditional UPDATE
        return self.db.execute(
            select(Run).where(Run.id == run_id).execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def transition(self, run_id: str, from_statuses: Iterable[str], to_status: str, **fields) -> bool:
        """Move a run to ``to_status`` only if it is currently in one of ``from_statuses``.

        Issued as a single conditional UPDATE so a concurrent cancel or a
        redelivered job cannot move a terminal run backwards.
        """
        stmt = (
            update(Run)
            .where(Run.id == run_id, Run.status.in_(list(from_statuses)))
            .values(status=to_status, **fields)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        return result.rowcount == 1

    def mark_running(self, run_id: str) -> bool:
        # A stale "running" run belongs to a worker that died mid-job; it may be resumed.
        return self.transition(run_id, ("queued", "running"), "running", started_at=_utcnow())

    def mark_succeeded(self, run_id: str, output: dict) -> bool:
        return self.transition(run_id, ("running",), "succeeded", output_json=output, finished_at=_utcnow())

    def mark_failed(self, run_id: str, error: str) -> bool:
        return self.transition(run_id, ("queued", "running"), "failed", error=error, finished_at=_utcnow())

    def mark_canceled(self, run_id: str) -> bool:
        return self.transition(run_id, ("queued", "running"), "canceled", finished_at=_utcnow())

    # ── Events ──────────────────────────────────────────────────────────────────

    def next_seq(self, run_id: str) -> int:
        current = self.db.execute(
            select(func.max(RunEvent.seq)).where(RunEvent.run_id == run_id)
        ).scalar()
        return (current or 0) + 1

    def add_event(self, run_id: str, seq: int, type: str, payload: dict, created_at: datetime) -> RunEvent:
        event = RunEvent(run_id=run_id, seq=seq, type=type, payload=payload, created_at=created_at)
        self.db.add(event)
        self.db.commit()
        return event

    def list_events(self, run_id: str, after_seq: int = 0, limit: Optional[int] = None) -> List[RunEvent]:
        stmt = (
            select(RunEvent)
            .where(RunEvent.run_id == run_id, RunEvent.seq > after_seq)
            .order_by(RunEvent.seq.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
