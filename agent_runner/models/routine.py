"""Per-agent cron-like routines and their fire log."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, JSON, String, Text, UniqueConstraint

from ..database import Base
from ._common import new_id, utcnow


class AgentRoutine(Base):
    __tablename__ = "agent_routines"
    __table_args__ = (UniqueConstraint("agent_id", "name", name="uq_agent_routines_agent_name"),)

    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    action = Column(String, nullable=False)
    cron = Column(String, nullable=False)
    timezone = Column(String, nullable=False, default="UTC")
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class AgentRoutineLog(Base):
    __tablename__ = "agent_routine_logs"

    id = Column(String, primary_key=True, default=new_id)
    routine_id = Column(String, ForeignKey("agent_routines.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    action = Column(String, nullable=False)
    status = Column(String, nullable=False)          # ok | rejected | error
    message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
