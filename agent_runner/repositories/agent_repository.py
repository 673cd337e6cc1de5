from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from ..models.agent import Agent, Group, GroupMember, GroupMessage, Project, ProviderAccount, User
from ..models.session import ChatSession


class AgentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self.db.execute(select(Agent).where(Agent.id == agent_id)).scalar_one_or_none()

    def list_agents(self) -> List[Agent]:
        return list(self.db.execute(select(Agent).order_by(Agent.created_at.asc())).scalars().all())

    def list_project_agents(self, project_id: str) -> List[Agent]:
        return list(self.db.execute(select(Agent).where(Agent.project_id == project_id)).scalars().all())

    def get_project(self, project_id: str) -> Optional[Project]:
        return self.db.execute(select(Project).where(Project.id == project_id)).scalar_one_or_none()

    def list_user_projects(self, user_id: str) -> List[Project]:
        return list(self.db.execute(select(Project).where(Project.user_id == user_id)).scalars().all())

    def get_user(self, user_id: str) -> Optional[User]:
        return self.db.execute(select(User).where(User.id == user_id)).scalar_one_or_none()

    def get_owner(self, agent: Agent) -> Optional[User]:
        return self.db.execute(
            select(User).join(Project, Project.user_id == User.id).where(Project.id == agent.project_id)
        ).scalar_one_or_none()

    def get_provider_account(self, account_id: str) -> Optional[ProviderAccount]:
        return self.db.execute(select(ProviderAccount).where(ProviderAccount.id == account_id)).scalar_one_or_none()

    # ── Role predicates ─────────────────────────────────────────────────────────

    def is_in_any_group(self, agent_id: str) -> bool:
        return bool(self.db.execute(select(exists().where(GroupMember.agent_id == agent_id))).scalar())

    def has_sessions(self, agent_id: str) -> bool:
        return bool(self.db.execute(select(exists().where(ChatSession.agent_id == agent_id))).scalar())

    def is_project_lead(self, agent_id: str) -> bool:
        return bool(self.db.execute(select(exists().where(Project.lead_agent_id == agent_id))).scalar())

    def is_supervisor(self, agent: Agent) -> bool:
        if agent.is_supervisor:
            return True
        return bool(self.db.execute(select(exists().where(User.supervisor_agent_id == agent.id))).scalar())

    def is_guardian(self, agent: Agent) -> bool:
        if agent.is_guardian:
            return True
        return bool(self.db.execute(select(exists().where(User.guardian_agent_id == agent.id))).scalar())

    # ── State mutations ─────────────────────────────────────────────────────────

    def set_sleeping(self, agent: Agent, sleeping: bool, reset_context: bool = False) -> Agent:
        now = datetime.now(timezone.utc)
        agent.is_sleeping = sleeping
        agent.sleeping_since = now if sleeping else None
        if reset_context:
            agent.context_reset_at = now
        self.db.commit()
        self.db.refresh(agent)
        return agent

    def set_skill_paths(self, agent: Agent, skill_paths: List[str]) -> Agent:
        agent.skill_paths = list(skill_paths)
        self.db.commit()
        self.db.refresh(agent)
        return agent

    # ── Groups ──────────────────────────────────────────────────────────────────

    def get_group(self, group_id: str) -> Optional[Group]:
        return self.db.execute(select(Group).where(Group.id == group_id)).scalar_one_or_none()

    def list_agent_groups(self, agent_id: str) -> List[Group]:
        stmt = (
            select(Group)
            .join(GroupMember, GroupMember.group_id == Group.id)
            .where(GroupMember.agent_id == agent_id)
            .order_by(Group.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def is_group_member(self, group_id: str, agent_id: str) -> bool:
        return bool(self.db.execute(
            select(exists().where(GroupMember.group_id == group_id, GroupMember.agent_id == agent_id))
        ).scalar())

    def list_group_members(self, group_id: str) -> List[GroupMember]:
        return list(self.db.execute(select(GroupMember).where(GroupMember.group_id == group_id)).scalars().all())

    def list_group_messages(self, group_id: str, limit: int = 50) -> List[GroupMessage]:
        stmt = (
            select(GroupMessage)
            .where(GroupMessage.group_id == group_id)
            .order_by(GroupMessage.created_at.desc())
            .limit(limit)
        )
        return list(reversed(self.db.execute(stmt).scalars().all()))

    def create_group(self, project_id: str, name: str, owner_agent_id: Optional[str], description: Optional[str] = None) -> Group:
        group = Group(project_id=project_id, name=name, owner_agent_id=owner_agent_id, description=description)
        self.db.add(group)
        self.db.flush()
        if owner_agent_id:
            self.db.add(GroupMember(group_id=group.id, agent_id=owner_agent_id, role="owner"))
        self.db.commit()
        self.db.refresh(group)
        return group

    def set_group_owner(self, group: Group, agent_id: str) -> Group:
        group.owner_agent_id = agent_id
        if not self.is_group_member(group.id, agent_id):
            self.db.add(GroupMember(group_id=group.id, agent_id=agent_id, role="owner"))
        self.db.commit()
        self.db.refresh(group)
        return group

    # ── Projects ────────────────────────────────────────────────────────────────

    def create_project(self, user_id: str, name: str) -> Project:
        project = Project(user_id=user_id, name=name)
        self.db.add(project)
        self.db.commit()
        self.db.refresh(project)
        return project

    def set_project_lead(self, project: Project, agent_id: Optional[str]) -> Project:
        project.lead_agent_id = agent_id
        self.db.commit()
        self.db.refresh(project)
        return project
