"""Cross-session memory tools: an agent can look back over its own sessions."""

from pydantic import Field

from ..repositories.session_repository import SessionRepository
from .registry import ToolArgs, ToolContext, ToolError, ToolSpec


class ListSessionsArgs(ToolArgs):
    limit: int = Field(20, ge=1, le=100)


class SessionMessagesArgs(ToolArgs):
    session_id: str = Field(alias="sessionId")
    limit: int = Field(50, ge=1, le=200)


class SearchMessagesArgs(ToolArgs):
    query: str = Field(min_length=1, max_length=200)
    limit: int = Field(20, ge=1, le=100)


def _message_dict(m) -> dict:
    return {
        "id": m.id,
        "sessionId": m.session_id,
        "role": m.role,
        "content": m.content,
        "createdAt": m.created_at,
    }


async def agent_list_sessions(ctx: ToolContext, args: ListSessionsArgs) -> dict:
    sessions = SessionRepository(ctx.db).list_sessions_for_agent(ctx.agent_id, limit=args.limit)
    return {
        "sessions": [
            {"id": s.id, "title": s.title, "createdAt": s.created_at, "updatedAt": s.updated_at}
            for s in sessions
        ]
    }


async def agent_get_session_messages(ctx: ToolContext, args: SessionMessagesArgs) -> dict:
    repo = SessionRepository(ctx.db)
    session = repo.get_session(args.session_id)
    if session is None or session.agent_id != ctx.agent_id:
        raise ToolError("session_not_found", sessionId=args.session_id)
    messages = repo.list_messages(session.id)
    return {"messages": [_message_dict(m) for m in messages[-args.limit:]]}


async def agent_search_messages(ctx: ToolContext, args: SearchMessagesArgs) -> dict:
    hits = SessionRepository(ctx.db).search_messages(ctx.agent_id, args.query, limit=args.limit)
    return {"messages": [_message_dict(m) for m in hits]}


TOOLS = [
    ToolSpec("agent_list_sessions", "List this agent's sessions, most recently active first.", ListSessionsArgs, agent_list_sessions),
    ToolSpec(
        "agent_get_session_messages",
        "Read the latest messages of one of this agent's sessions.",
        SessionMessagesArgs,
        agent_get_session_messages,
    ),
    ToolSpec(
        "agent_search_messages",
        "Case-insensitive substring search over this agent's session messages.",
        SearchMessagesArgs,
        agent_search_messages,
    ),
]
