"""API-side run operations: create and enqueue, read, cancel."""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ..config import settings
from ..core.cancellation import cancel_key
from ..models.run import Run, TERMINAL_STATUSES
from ..repositories.agent_repository import AgentRepository
from ..repositories.run_repository import RunRepository
from ..repositories.session_repository import SessionRepository
from ..schemas.run import CreateRunRequest
from .event_bus import EventWriter, event_to_dict

logger = logging.getLogger("agent_runner.services.run_service")


class RunService:
    def __init__(self, db: Session, redis_client, enqueue_run: Callable[[str, str], None]):
        self.db = db
        self.redis = redis_client
        self.enqueue_run = enqueue_run
        self.runs = RunRepository(db)

    def create_run(self, req: CreateRunRequest) -> Run:
        agents = AgentRepository(self.db)
        agent = agents.get_agent(req.agent_id)
        if agent is None:
            raise HTTPException(status_code=404, detail="Agent not found.")
        project = agents.get_project(agent.project_id)
        if project is None or project.user_id != req.user_id:
            raise HTTPException(status_code=403, detail="Agent does not belong to this user.")

        sessions = SessionRepository(self.db)
        session_id: Optional[str] = None
        if req.session_id:
            session = sessions.get_session(req.session_id)
            if session is None or session.agent_id != agent.id:
                raise HTTPException(status_code=404, detail="Session not found.")
            session_id = session.id
        elif req.new_session:
            title = req.session_title or req.user_message[:60]
            session_id = sessions.create_session(agent.project_id, agent.id, title).id

        if session_id:
            sessions.add_message(session_id, "user", req.user_message)
            sessions.touch_session(session_id)

        run = self.runs.create_run(
            project_id=agent.project_id,
            agent_id=agent.id,
            session_id=session_id,
            input={"userMessage": req.user_message},
        )
        self.enqueue_run(run.id, req.user_id)
        logger.info("Queued run %s for agent %s", run.id, agent.id)
        return run

    def get_run(self, run_id: str) -> Run:
        run = self.runs.get_run(run_id)
        if run is None:
            raise HTTPException(status_code=404, detail="Run not found.")
        return run

    def list_events(self, run_id: str, after_seq: int = 0, limit: int = 200) -> List[dict]:
        self.get_run(run_id)
        return [event_to_dict(e) for e in self.runs.list_events(run_id, after_seq=after_seq, limit=limit)]

    def cancel_run(self, run_id: str) -> Run:
        """Set the cancel flag; a run that has not started yet is settled immediately."""
        run = self.get_run(run_id)
        if run.status in TERMINAL_STATUSES:
            return run
        self.redis.set(cancel_key(run_id), "1", ex=settings.CANCEL_FLAG_TTL_SECONDS)
        if run.status == "queued" and self.runs.transition(
            run_id, ("queued",), "canceled", finished_at=datetime.now(timezone.utc)
        ):
            EventWriter(self.db, self.redis, run_id).emit("status", {"status": "canceled"})
        return self.runs.get_run(run_id)
