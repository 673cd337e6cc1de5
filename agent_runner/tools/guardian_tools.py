"""Guardian tools: read system logs and file patch proposals for human review."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import Field

from ..repositories.ops_repository import OpsRepository
from .registry import ToolArgs, ToolContext, ToolSpec


class SystemLogsArgs(ToolArgs):
    minutes: int = Field(60, ge=1, le=7 * 24 * 60, description="Look-back window.")
    levels: Optional[List[str]] = Field(None, description="Filter, e.g. ['error', 'fatal'].")
    limit: int = Field(50, ge=1, le=200)


class ProposePatchArgs(ToolArgs):
    title: str = Field(min_length=1, max_length=300)
    patch_text: str = Field(alias="patchText", min_length=1, description="Unified diff.")
    description: Optional[str] = None


async def system_logs_recent(ctx: ToolContext, args: SystemLogsArgs) -> dict:
    since = datetime.now(timezone.utc) - timedelta(minutes=args.minutes)
    logs = OpsRepository(ctx.db).recent_system_logs(since=since, levels=args.levels, limit=args.limit)
    return {
        "logs": [
            {
                "id": log.id,
                "service": log.service,
                "level": log.level,
                "message": log.message,
                "meta": log.meta_json,
                "createdAt": log.created_at,
            }
            for log in logs
            if log.user_id in (None, ctx.user_id)
        ]
    }


async def propose_patch(ctx: ToolContext, args: ProposePatchArgs) -> dict:
    # Stored only; applying a patch is an operator decision.
    proposal = OpsRepository(ctx.db).add_patch_proposal(
        user_id=ctx.user_id,
        agent_id=ctx.agent_id,
        title=args.title,
        patch_text=args.patch_text,
        description=args.description,
    )
    return {"proposalId": proposal.id, "status": proposal.status}


TOOLS = [
    ToolSpec("system_logs_recent", "Recent system log records for the owning user.", SystemLogsArgs, system_logs_recent),
    ToolSpec("propose_patch", "Submit a unified diff as a patch proposal for operator review.", ProposePatchArgs, propose_patch),
]
