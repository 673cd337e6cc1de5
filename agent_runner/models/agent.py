"""Ownership graph: users, projects, provider accounts, agents and groups."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, Text, UniqueConstraint

from ..database import Base
from ._common import new_id, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, nullable=True)
    supervisor_agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL", use_alter=True), nullable=True, unique=True)
    guardian_agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL", use_alter=True), nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Project(Base):
    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    lead_agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL", use_alter=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ProviderAccount(Base):
    __tablename__ = "provider_accounts"

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String, nullable=False)            # openai_compat | mock
    name = Column(String, nullable=False)
    api_key = Column(Text, nullable=True)
    config_json = Column(JSON, nullable=False, default=dict)  # {baseUrl}
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Agent(Base):
    __tablename__ = "agents"

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    system_prompt = Column(Text, nullable=False, default="")
    default_model = Column(String, nullable=False)
    provider_account_id = Column(String, ForeignKey("provider_accounts.id", ondelete="SET NULL"), nullable=True)

    # Explicitly granted tool names; role-based tools are added per run.
    tool_names = Column(JSON, nullable=False, default=list)
    # Equipped skill refs ("<root index>:<relative path>")
    skill_paths = Column(JSON, nullable=False, default=list)

    is_sleeping = Column(Boolean, nullable=False, default=False)
    sleeping_since = Column(DateTime(timezone=True), nullable=True)
    context_reset_at = Column(DateTime(timezone=True), nullable=True)
    is_supervisor = Column(Boolean, nullable=False, default=False)
    is_guardian = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)


class Group(Base):
    __tablename__ = "groups"
    __table_args__ = (UniqueConstraint("project_id", "name"),)

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    notice = Column(Text, nullable=True)
    owner_agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), primary_key=True, index=True)
    role = Column(String, nullable=False, default="member")
    created_at = Column(DateTime(timezone=True), default=utcnow)


class GroupMessage(Base):
    __tablename__ = "group_messages"

    id = Column(String, primary_key=True, default=new_id)
    group_id = Column(String, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_type = Column(String, nullable=False)     # user | agent
    sender_user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    sender_agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
