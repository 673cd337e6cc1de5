"""Ownership checks shared by the built-in tools."""

from ..models.agent import Agent, Project
from ..repositories.agent_repository import AgentRepository
from .registry import ToolContext, ToolError


def owned_agent(ctx: ToolContext, agent_id: str) -> Agent:
    repo = AgentRepository(ctx.db)
    agent = repo.get_agent(agent_id)
    if agent is None:
        raise ToolError("agent_not_found", agentId=agent_id)
    project = repo.get_project(agent.project_id)
    if project is None or project.user_id != ctx.user_id:
        raise ToolError("forbidden", agentId=agent_id)
    return agent


def owned_project(ctx: ToolContext, project_id: str) -> Project:
    project = AgentRepository(ctx.db).get_project(project_id)
    if project is None:
        raise ToolError("project_not_found", projectId=project_id)
    if project.user_id != ctx.user_id:
        raise ToolError("forbidden", projectId=project_id)
    return project
