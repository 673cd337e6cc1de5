"""Supervisor tools: dispatch work, mail, wake agents and manage projects."""

from typing import Optional

from pydantic import Field

from ..repositories.agent_repository import AgentRepository
from ..repositories.ops_repository import OpsRepository
from ..repositories.run_repository import RunRepository
from ..repositories.session_repository import SessionRepository
from ..services.email_service import send_email_via_outbox
from ._access import owned_agent, owned_project
from .registry import ToolArgs, ToolContext, ToolError, ToolSpec


class DispatchRunArgs(ToolArgs):
    agent_id: str = Field(alias="agentId", description="Agent that should do the work.")
    message: str = Field(min_length=1, description="Instruction for the agent.")
    session_id: Optional[str] = Field(None, alias="sessionId", description="Existing session to continue.")
    session_title: Optional[str] = Field(None, alias="sessionTitle", description="Title for a new session.")


class EmailSendArgs(ToolArgs):
    to: Optional[str] = Field(None, description="Recipient; defaults to the owning user's address.")
    subject: str = Field(min_length=1, max_length=300)
    body_markdown: str = Field(alias="bodyMarkdown", min_length=1)


class AgentMailArgs(ToolArgs):
    to_agent_id: str = Field(alias="toAgentId")
    subject: str = Field(min_length=1, max_length=300)
    body_markdown: str = Field(alias="bodyMarkdown", min_length=1)


class WakeAgentArgs(ToolArgs):
    agent_id: str = Field(alias="agentId")


class ProjectCreateArgs(ToolArgs):
    name: str = Field(min_length=1, max_length=200)


class AssignLeadArgs(ToolArgs):
    project_id: str = Field(alias="projectId")
    agent_id: Optional[str] = Field(None, alias="agentId", description="New lead; null clears it.")


async def agent_dispatch_run(ctx: ToolContext, args: DispatchRunArgs) -> dict:
    if ctx.enqueue_run is None:
        raise ToolError("queue_unavailable")
    target = owned_agent(ctx, args.agent_id)
    if target.is_sleeping:
        raise ToolError("agent_sleeping", agentId=target.id)

    sessions = SessionRepository(ctx.db)
    if args.session_id:
        session = sessions.get_session(args.session_id)
        if session is None or session.agent_id != target.id:
            raise ToolError("session_not_found", sessionId=args.session_id)
    else:
        session = sessions.create_session(target.project_id, target.id, args.session_title or "Dispatched task")
    sessions.add_message(session.id, "user", args.message)
    sessions.touch_session(session.id)

    run = RunRepository(ctx.db).create_run(
        project_id=target.project_id,
        agent_id=target.id,
        session_id=session.id,
        input={"userMessage": args.message, "dispatchedBy": ctx.agent_id},
    )
    ctx.enqueue_run(run.id, ctx.user_id)
    return {"runId": run.id, "sessionId": session.id, "status": run.status}


async def email_send(ctx: ToolContext, args: EmailSendArgs) -> dict:
    to = args.to
    if not to:
        user = AgentRepository(ctx.db).get_user(ctx.user_id)
        to = user.email if user else None
    if not to:
        raise ToolError("missing_recipient")
    result = send_email_via_outbox(
        ctx.db, user_id=ctx.user_id, to=to, subject=args.subject,
        body_markdown=args.body_markdown, agent_id=ctx.agent_id,
    )
    if not result.get("ok"):
        raise ToolError(result.get("error", "email_failed"), outboxId=result.get("outboxId"))
    return {"outboxId": result["outboxId"], "sent": result["sent"]}


async def agent_send_mail(ctx: ToolContext, args: AgentMailArgs) -> dict:
    target = owned_agent(ctx, args.to_agent_id)
    mail = OpsRepository(ctx.db).add_agent_mail(ctx.agent_id, target.id, args.subject, args.body_markdown)
    return {"mailId": mail.id}


async def agent_wake_agent(ctx: ToolContext, args: WakeAgentArgs) -> dict:
    target = owned_agent(ctx, args.agent_id)
    was_sleeping = bool(target.is_sleeping)
    AgentRepository(ctx.db).set_sleeping(target, False)
    return {"agentId": target.id, "wasSleeping": was_sleeping}


async def project_create(ctx: ToolContext, args: ProjectCreateArgs) -> dict:
    project = AgentRepository(ctx.db).create_project(ctx.user_id, args.name)
    return {"projectId": project.id, "name": project.name}


async def project_assign_lead(ctx: ToolContext, args: AssignLeadArgs) -> dict:
    project = owned_project(ctx, args.project_id)
    if args.agent_id:
        lead = owned_agent(ctx, args.agent_id)
        if lead.project_id != project.id:
            raise ToolError("agent_not_in_project", agentId=lead.id, projectId=project.id)
    project = AgentRepository(ctx.db).set_project_lead(project, args.agent_id)
    return {"projectId": project.id, "leadAgentId": project.lead_agent_id}


TOOLS = [
    ToolSpec(
        "agent_dispatch_run",
        "Queue a run for another agent of the same user, in a new or existing session.",
        DispatchRunArgs,
        agent_dispatch_run,
    ),
    ToolSpec("email_send", "Send an email (stored in the outbox; delivered when SMTP is configured).", EmailSendArgs, email_send),
    ToolSpec("agent_send_mail", "Leave an internal mail for another agent.", AgentMailArgs, agent_send_mail),
    ToolSpec("agent_wake_agent", "Wake a sleeping agent so it can take runs again.", WakeAgentArgs, agent_wake_agent),
    ToolSpec("project_create", "Create a new project for the owning user.", ProjectCreateArgs, project_create),
    ToolSpec("project_assign_lead", "Set or clear the lead agent of a project.", AssignLeadArgs, project_assign_lead),
]
