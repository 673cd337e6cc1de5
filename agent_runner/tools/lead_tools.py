"""Project-lead tools: organize the project's agents into groups."""

from typing import Optional

from pydantic import Field

from ..repositories.agent_repository import AgentRepository
from ._access import owned_agent, owned_project
from .registry import ToolArgs, ToolContext, ToolError, ToolSpec


class GroupCreateArgs(ToolArgs):
    project_id: str = Field(alias="projectId")
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    owner_agent_id: Optional[str] = Field(None, alias="ownerAgentId")


class GroupSetOwnerArgs(ToolArgs):
    group_id: str = Field(alias="groupId")
    agent_id: str = Field(alias="agentId")


def _require_lead(ctx: ToolContext, project_id: str):
    project = owned_project(ctx, project_id)
    if project.lead_agent_id != ctx.agent_id:
        raise ToolError("not_project_lead", projectId=project_id)
    return project


async def group_create(ctx: ToolContext, args: GroupCreateArgs) -> dict:
    project = _require_lead(ctx, args.project_id)
    owner_id = args.owner_agent_id or ctx.agent_id
    owner = owned_agent(ctx, owner_id)
    if owner.project_id != project.id:
        raise ToolError("agent_not_in_project", agentId=owner.id)
    group = AgentRepository(ctx.db).create_group(project.id, args.name, owner.id, args.description)
    return {"groupId": group.id, "ownerAgentId": group.owner_agent_id}


async def group_set_owner(ctx: ToolContext, args: GroupSetOwnerArgs) -> dict:
    repo = AgentRepository(ctx.db)
    group = repo.get_group(args.group_id)
    if group is None:
        raise ToolError("group_not_found", groupId=args.group_id)
    _require_lead(ctx, group.project_id)
    owner = owned_agent(ctx, args.agent_id)
    if owner.project_id != group.project_id:
        raise ToolError("agent_not_in_project", agentId=owner.id)
    group = repo.set_group_owner(group, owner.id)
    return {"groupId": group.id, "ownerAgentId": group.owner_agent_id}


TOOLS = [
    ToolSpec("group_create", "Create a group in a project you lead.", GroupCreateArgs, group_create),
    ToolSpec("group_set_owner", "Change the owner of a group in a project you lead.", GroupSetOwnerArgs, group_set_owner),
]
