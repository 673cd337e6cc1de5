"""Conversation sessions, their messages and the compacted summary."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import validates

from ..database import Base
from ._common import new_id, utcnow

MESSAGE_ROLES = ("system", "user", "assistant", "tool")


class ChatSession(Base):
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=new_id)
    project_id = Column(String, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        CheckConstraint(
            "role <> 'tool' OR (tool_name IS NOT NULL AND tool_call_id IS NOT NULL)",
            name="ck_messages_tool_linkage",
        ),
    )

    id = Column(String, primary_key=True, default=new_id)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    tool_name = Column(String, nullable=True)
    tool_call_id = Column(String, nullable=True)

    token_input = Column(Integer, nullable=True)
    token_input_cached = Column(Integer, nullable=True)
    token_input_uncached = Column(Integer, nullable=True)
    token_output = Column(Integer, nullable=True)
    token_total = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)

    @validates("role")
    def _validate_role(self, key, value):
        if value not in MESSAGE_ROLES:
            raise ValueError(f"invalid message role: {value!r}")
        return value


class SessionSummary(Base):
    __tablename__ = "session_summaries"

    id = Column(String, primary_key=True, default=new_id)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, unique=True)
    up_to_message_id = Column(String, nullable=True)
    summary_markdown = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
