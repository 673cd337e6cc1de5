from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.agent import Agent
from ..models.routine import AgentRoutine, AgentRoutineLog

DEFAULT_ROUTINES = [
    {
        "name": "daily-reflection",
        "action": "daily_generate_skill",
        "cron": "0 23 * * *",
        "timezone": "UTC",
    },
]


class RoutineRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_enabled(self) -> List[AgentRoutine]:
        stmt = select(AgentRoutine).where(AgentRoutine.enabled.is_(True)).order_by(AgentRoutine.created_at.asc())
        return list(self.db.execute(stmt).scalars().all())

    def get_by_name(self, agent_id: str, name: str) -> Optional[AgentRoutine]:
        return self.db.execute(
            select(AgentRoutine).where(AgentRoutine.agent_id == agent_id, AgentRoutine.name == name)
        ).scalar_one_or_none()

    def create_routine(
        self,
        agent_id: str,
        name: str,
        action: str,
        cron: str,
        timezone: str = "UTC",
        enabled: bool = True,
        payload: Optional[dict] = None,
    ) -> AgentRoutine:
        routine = AgentRoutine(
            agent_id=agent_id, name=name, action=action, cron=cron,
            timezone=timezone, enabled=enabled, payload=payload,
        )
        self.db.add(routine)
        self.db.commit()
        self.db.refresh(routine)
        return routine

    def ensure_default_routines(self) -> int:
        """Give every agent the default routines it is missing. Returns how many were created."""
        created = 0
        agents = self.db.execute(select(Agent.id)).scalars().all()
        for agent_id in agents:
            for spec in DEFAULT_ROUTINES:
                if self.get_by_name(agent_id, spec["name"]):
                    continue
                self.db.add(AgentRoutine(agent_id=agent_id, enabled=True, **spec))
                created += 1
        if created:
            self.db.commit()
        return created

    def add_log(
        self,
        routine: AgentRoutine,
        status: str,
        message: Optional[str] = None,
    ) -> AgentRoutineLog:
        log = AgentRoutineLog(
            routine_id=routine.id,
            agent_id=routine.agent_id,
            action=routine.action,
            status=status,
            message=message,
        )
        self.db.add(log)
        self.db.commit()
        return log

    def list_logs(self, routine_id: str) -> List[AgentRoutineLog]:
        stmt = (
            select(AgentRoutineLog)
            .where(AgentRoutineLog.routine_id == routine_id)
            .order_by(AgentRoutineLog.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())
