"""Operational records: agent mail, email outbox, system logs, patch proposals."""

from sqlalchemy import Column, DateTime, ForeignKey, JSON, String, Text

from ..database import Base
from ._common import new_id, utcnow


class AgentMail(Base):
    __tablename__ = "agent_mail"

    id = Column(String, primary_key=True, default=new_id)
    from_agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    to_agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    subject = Column(String, nullable=False)
    body_markdown = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    read_at = Column(DateTime(timezone=True), nullable=True)


class EmailOutbox(Base):
    __tablename__ = "email_outbox"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True, index=True)
    to = Column(String, nullable=False)
    subject = Column(String, nullable=False)
    body_markdown = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="stored")  # stored | sent | failed
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    sent_at = Column(DateTime(timezone=True), nullable=True)


class SystemLog(Base):
    __tablename__ = "system_logs"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    service = Column(String, nullable=False)
    level = Column(String, nullable=False)           # info | warn | error | fatal
    message = Column(Text, nullable=False)
    stack = Column(Text, nullable=True)
    meta_json = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class PatchProposal(Base):
    __tablename__ = "patch_proposals"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="SET NULL"), nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    patch_text = Column(Text, nullable=False)
    status = Column(String, nullable=False, default="proposed")
    created_at = Column(DateTime(timezone=True), default=utcnow)
