from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.agent import Agent, Group, GroupMessage, Project
from ..models.routine import AgentRoutineLog
from ..models.run import Run
from ..models.session import ChatSession, Message
from ..models.skill import GeneratedSkill


class ReportRepository:
    """Read-only queries behind the scheduled status reports."""

    def __init__(self, db: Session):
        self.db = db

    def _user_project_ids(self, user_id: str):
        return select(Project.id).where(Project.user_id == user_id)

    def runs_since(
        self,
        since: datetime,
        user_id: Optional[str] = None,
        project_id: Optional[str] = None,
        agent_ids: Optional[List[str]] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Run]:
        stmt = select(Run).where(Run.created_at >= since)
        if user_id is not None:
            stmt = stmt.where(Run.project_id.in_(self._user_project_ids(user_id)))
        if project_id is not None:
            stmt = stmt.where(Run.project_id == project_id)
        if agent_ids is not None:
            stmt = stmt.where(Run.agent_id.in_(agent_ids))
        if status is not None:
            stmt = stmt.where(Run.status == status)
        stmt = stmt.order_by(Run.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def active_session_count(self, user_id: str, since: datetime) -> int:
        return int(self.db.execute(
            select(func.count(ChatSession.id)).where(
                ChatSession.updated_at >= since,
                ChatSession.project_id.in_(self._user_project_ids(user_id)),
            )
        ).scalar() or 0)

    def group_messages_since(
        self,
        since: datetime,
        user_id: Optional[str] = None,
        group_id: Optional[str] = None,
        sender_agent_id: Optional[str] = None,
        limit: int = 500,
    ) -> List[tuple[GroupMessage, str]]:
        """(message, group name) pairs, newest first."""
        stmt = (
            select(GroupMessage, Group.name)
            .join(Group, Group.id == GroupMessage.group_id)
            .where(GroupMessage.created_at >= since)
        )
        if user_id is not None:
            stmt = stmt.where(Group.project_id.in_(self._user_project_ids(user_id)))
        if group_id is not None:
            stmt = stmt.where(GroupMessage.group_id == group_id)
        if sender_agent_id is not None:
            stmt = stmt.where(GroupMessage.sender_agent_id == sender_agent_id)
        stmt = stmt.order_by(GroupMessage.created_at.desc()).limit(limit)
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def generated_skills_since(self, user_id: str, since: datetime) -> List[tuple[GeneratedSkill, str]]:
        stmt = (
            select(GeneratedSkill, Agent.name)
            .join(Agent, Agent.id == GeneratedSkill.agent_id)
            .where(GeneratedSkill.created_at >= since, Agent.project_id.in_(self._user_project_ids(user_id)))
            .order_by(GeneratedSkill.created_at.desc())
        )
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def routine_logs_since(
        self, user_id: str, since: datetime, status: Optional[str] = None, limit: int = 30
    ) -> List[tuple[AgentRoutineLog, str]]:
        stmt = (
            select(AgentRoutineLog, Agent.name)
            .join(Agent, Agent.id == AgentRoutineLog.agent_id)
            .where(AgentRoutineLog.created_at >= since, Agent.project_id.in_(self._user_project_ids(user_id)))
        )
        if status is not None:
            stmt = stmt.where(AgentRoutineLog.status == status)
        stmt = stmt.order_by(AgentRoutineLog.created_at.desc()).limit(limit)
        return [(row[0], row[1]) for row in self.db.execute(stmt).all()]

    def agent_messages_since(self, agent_id: str, since: datetime, limit: int = 40) -> List[Message]:
        """User and assistant messages across the agent's sessions, newest first."""
        stmt = (
            select(Message)
            .join(ChatSession, ChatSession.id == Message.session_id)
            .where(
                ChatSession.agent_id == agent_id,
                Message.role.in_(("user", "assistant")),
                Message.created_at >= since,
            )
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def project_groups(self, project_id: str) -> List[Group]:
        return list(self.db.execute(
            select(Group).where(Group.project_id == project_id).order_by(Group.created_at.asc())
        ).scalars().all())
