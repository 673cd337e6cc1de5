from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.session import ChatSession, Message, SessionSummary


class SessionRepository:
    def __init__(self, db: Session):
        self.db = db

    def create_session(self, project_id: str, agent_id: str, title: str) -> ChatSession:
        session = ChatSession(project_id=project_id, agent_id=agent_id, title=title)
        self.db.add(session)
        self.db.commit()
        self.db.refresh(session)
        return session

    def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.db.execute(select(ChatSession).where(ChatSession.id == session_id)).scalar_one_or_none()

    def find_session_by_title(self, agent_id: str, title: str) -> Optional[ChatSession]:
        return self.db.execute(
            select(ChatSession)
            .where(ChatSession.agent_id == agent_id, ChatSession.title == title)
            .order_by(ChatSession.created_at.asc())
            .limit(1)
        ).scalar_one_or_none()

    def list_sessions_for_agent(self, agent_id: str, limit: int = 20) -> List[ChatSession]:
        stmt = (
            select(ChatSession)
            .where(ChatSession.agent_id == agent_id)
            .order_by(ChatSession.updated_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    def touch_session(self, session_id: str) -> None:
        session = self.get_session(session_id)
        if session:
            session.updated_at = datetime.now(timezone.utc)
            self.db.commit()

    # ── Messages ────────────────────────────────────────────────────────────────

    def add_message(self, session_id: str, role: str, content: str, **fields) -> Message:
        message = Message(session_id=session_id, role=role, content=content, **fields)
        self.db.add(message)
        self.db.commit()
        self.db.refresh(message)
        return message

    def list_messages(
        self,
        session_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Message]:
        """Messages of a session in conversation order, optionally after a cutoff."""
        stmt = select(Message).where(Message.session_id == session_id)
        if since is not None:
            stmt = stmt.where(Message.created_at >= since)
        stmt = stmt.order_by(Message.created_at.asc(), Message.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def search_messages(self, agent_id: str, query: str, limit: int = 20) -> List[Message]:
        stmt = (
            select(Message)
            .join(ChatSession, ChatSession.id == Message.session_id)
            .where(ChatSession.agent_id == agent_id, Message.content.ilike(f"%{query}%"))
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars().all())

    # ── Summary ─────────────────────────────────────────────────────────────────

    def get_summary(self, session_id: str) -> Optional[SessionSummary]:
        return self.db.execute(
            select(SessionSummary).where(SessionSummary.session_id == session_id)
        ).scalar_one_or_none()

    def replace_summary(self, session_id: str, up_to_message_id: str, summary_markdown: str) -> SessionSummary:
        """Replace the session's single summary wholesale."""
        summary = self.get_summary(session_id)
        if summary is None:
            summary = SessionSummary(session_id=session_id)
            self.db.add(summary)
        summary.up_to_message_id = up_to_message_id
        summary.summary_markdown = summary_markdown
        self.db.commit()
        self.db.refresh(summary)
        return summary
