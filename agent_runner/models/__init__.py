"""SQLAlchemy models. Everything is imported here so Alembic can discover it."""

from .agent import User, Project, ProviderAccount, Agent, Group, GroupMember, GroupMessage
from .session import ChatSession, Message, SessionSummary
from .run import Run, RunEvent
from .routine import AgentRoutine, AgentRoutineLog
from .skill import GeneratedSkill, SkillRating
from .ops import AgentMail, EmailOutbox, SystemLog, PatchProposal
from .document import Document, DocumentChunk

__all__ = [
    "User", "Project", "ProviderAccount", "Agent", "Group", "GroupMember", "GroupMessage",
    "ChatSession", "Message", "SessionSummary",
    "Run", "RunEvent",
    "AgentRoutine", "AgentRoutineLog",
    "GeneratedSkill", "SkillRating",
    "AgentMail", "EmailOutbox", "SystemLog", "PatchProposal",
    "Document", "DocumentChunk",
]
