"""Read-only group tools for agents that belong to at least one group."""

from typing import Optional

from pydantic import Field

from ..repositories.agent_repository import AgentRepository
from .registry import ToolArgs, ToolContext, ToolError, ToolSpec


class GroupArgs(ToolArgs):
    group_id: str = Field(alias="groupId", description="Group id.")


class GroupMessagesArgs(GroupArgs):
    before_message_id: Optional[str] = Field(None, alias="beforeMessageId", description="Return messages older than this id.")
    limit: int = Field(30, ge=1, le=100)


def _member_group(ctx: ToolContext, group_id: str):
    repo = AgentRepository(ctx.db)
    group = repo.get_group(group_id)
    if group is None:
        raise ToolError("group_not_found", groupId=group_id)
    if not repo.is_group_member(group_id, ctx.agent_id):
        raise ToolError("not_group_member", groupId=group_id)
    return repo, group


async def group_get_info(ctx: ToolContext, args: GroupArgs) -> dict:
    repo, group = _member_group(ctx, args.group_id)
    return {
        "group": {
            "id": group.id,
            "name": group.name,
            "description": group.description,
            "notice": group.notice,
            "ownerAgentId": group.owner_agent_id,
            "memberCount": len(repo.list_group_members(group.id)),
        }
    }


async def group_get_members(ctx: ToolContext, args: GroupArgs) -> dict:
    repo, group = _member_group(ctx, args.group_id)
    members = []
    for m in repo.list_group_members(group.id):
        agent = repo.get_agent(m.agent_id)
        members.append({"agentId": m.agent_id, "name": agent.name if agent else None, "role": m.role})
    return {"members": members}


async def group_get_messages(ctx: ToolContext, args: GroupMessagesArgs) -> dict:
    repo, group = _member_group(ctx, args.group_id)
    # Small groups; filter in memory to keep the cursor logic obvious.
    messages = repo.list_group_messages(group.id, limit=1000)
    if args.before_message_id:
        ids = [m.id for m in messages]
        if args.before_message_id not in ids:
            raise ToolError("message_not_found", beforeMessageId=args.before_message_id)
        messages = messages[: ids.index(args.before_message_id)]
    page = messages[-args.limit:]
    return {
        "messages": [
            {
                "id": m.id,
                "senderType": m.sender_type,
                "senderAgentId": m.sender_agent_id,
                "senderUserId": m.sender_user_id,
                "content": m.content,
                "createdAt": m.created_at,
            }
            for m in page
        ],
        "hasMore": len(messages) > len(page),
    }


TOOLS = [
    ToolSpec(
        "group_get_info",
        "Get group basic info (name, description, notice, member count). Only for groups the agent belongs to.",
        GroupArgs,
        group_get_info,
    ),
    ToolSpec(
        "group_get_members",
        "List group members (agent id, name, role). Only for groups the agent belongs to.",
        GroupArgs,
        group_get_members,
    ),
    ToolSpec(
        "group_get_messages",
        "Fetch group messages, most recent first page; pass beforeMessageId to page backwards.",
        GroupMessagesArgs,
        group_get_messages,
    ),
]
