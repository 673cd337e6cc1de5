"""The closed set of actions a routine can fire.

Each handler returns an :class:`ActionResult`; anything outside the set is
``rejected`` so a misconfigured routine shows up in its log instead of
silently doing nothing.
"""

from __future__ import annotations

import logging
import re
import shutil
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..core.cron import LocalParts
from ..core.skills import SkillRefError, generated_ref, resolve_ref
from ..models.routine import AgentRoutine
from ..repositories.agent_repository import AgentRepository
from ..repositories.ops_repository import OpsRepository
from ..repositories.report_repository import ReportRepository
from ..repositories.run_repository import RunRepository
from ..repositories.session_repository import SessionRepository
from .email_service import send_email_via_outbox
from .event_bus import format_timestamp

logger = logging.getLogger("agent_runner.services.routine_actions")

GUARDIAN_SESSION_TITLE = "Guardian Auto-Fix"
GUARDIAN_WINDOW = timedelta(minutes=10)
REPORT_WINDOW = timedelta(hours=24)

# Recognised but needing integrations this deployment does not have.
UNWIRED_ACTIONS = frozenset({"web_surf", "check_email", "check_stocks", "search_install_skills"})


@dataclass(frozen=True)
class ActionResult:
    status: str  # ok | rejected | error
    message: Optional[str] = None


@dataclass
class ActionContext:
    now: datetime
    local: LocalParts
    enqueue_run: Optional[Callable[[str, str], None]] = None


def _ok(message: Optional[str] = None) -> ActionResult:
    return ActionResult("ok", message)


def _rejected(message: str) -> ActionResult:
    return ActionResult("rejected", message)


def _error(message: str) -> ActionResult:
    return ActionResult("error", message)


def _status_counts(rows) -> str:
    counts = Counter(str(r.status) for r in rows)
    return ", ".join(f"{k}={v}" for k, v in sorted(counts.items())) or "none"


def _one_line(text: str, limit: int) -> str:
    return re.sub(r"\s+", " ", text or "").strip()[:limit]


# ── State toggles ──────────────────────────────────────────────────────────────

def sleep(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    repo = AgentRepository(db)
    agent = repo.get_agent(routine.agent_id)
    if agent is None:
        return _error("agent_not_found")
    repo.set_sleeping(agent, True, reset_context=True)
    return _ok()


def wake(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    repo = AgentRepository(db)
    agent = repo.get_agent(routine.agent_id)
    if agent is None:
        return _error("agent_not_found")
    repo.set_sleeping(agent, False)
    return _ok()


def equip_skills(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    payload = routine.payload or {}
    refs = [str(p) for p in payload.get("skillPaths") or [] if p]
    if not refs:
        return _rejected("missing_skillPaths")
    for ref in refs:
        try:
            if not resolve_ref(ref).exists():
                return _rejected("invalid_skill_path")
        except SkillRefError:
            return _rejected("invalid_skill_path")

    repo = AgentRepository(db)
    agent = repo.get_agent(routine.agent_id)
    if agent is None:
        return _error("agent_not_found")
    merged = list(agent.skill_paths or [])
    for ref in refs:
        if ref not in merged:
            merged.append(ref)
    repo.set_skill_paths(agent, merged)
    return _ok()


# ── Generated skills ───────────────────────────────────────────────────────────

def _reflection_lesson(text: str) -> str:
    if re.search(r"failed|error|exception|stack|bug", text):
        return ("When something breaks, narrow it down first: reproduce it, record the key inputs, "
                "reduce it to a minimal example, then locate and fix the cause.")
    if re.search(r"design|architecture|schema|api", text):
        return ("When designing, pin down boundaries and interfaces first and refine the "
                "implementation step by step instead of coupling everything up front.")
    return "Capture at least one reusable lesson a day: turn one thing that went right into executable steps."


def daily_generate_skill(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    agents = AgentRepository(db)
    agent = agents.get_agent(routine.agent_id)
    if agent is None:
        return _error("agent_not_found")

    messages = ReportRepository(db).agent_messages_since(agent.id, ctx.now - REPORT_WINDOW, limit=40)
    last_assistant = next((m.content for m in messages if m.role == "assistant"), "")
    lesson = _reflection_lesson("\n".join(m.content for m in messages).lower())

    date = ctx.local.date_str()
    body = ["# Lessons of the day", "", f"- Key lesson: {lesson}", "", "## Excerpts"]
    body += [f"- {format_timestamp(m.created_at)}: {_one_line(m.content, 160)}" for m in reversed(messages[:12])]
    if not messages:
        body.append("- (no conversations in the last 24 hours)")
    body += [
        "",
        "## Steps",
        "- State the problem or goal in one sentence",
        "- Collect evidence (logs, reproduction, minimal example)",
        "- Form a hypothesis and verify it",
        "- Record the conclusion and review it",
    ]
    if last_assistant:
        body += ["", "## Reference output", "```", last_assistant[:1200], "```"]

    rel_path = f"agents/{agent.id}/{date}/daily-{ctx.local.minute_bucket()}/SKILL.md"
    target = Path(settings.GENERATED_SKILLS_DIR).resolve() / rel_path
    target.parent.mkdir(parents=True, exist_ok=True)
    front = "\n".join([
        "---",
        f"name: Daily Reflection ({date})",
        f"description: Auto-generated daily skill by {agent.name}",
        "---",
        "",
    ])
    target.write_text(front + "\n".join(body).strip() + "\n", encoding="utf-8")

    ref = generated_ref(rel_path)
    OpsRepository(db).upsert_generated_skill(agent.id, rel_path, ref)
    current = list(agent.skill_paths or [])
    if ref not in current:
        agents.set_skill_paths(agent, current + [ref])
    return _ok(ref)


def cleanup_low_score_skills(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    payload = routine.payload or {}
    min_avg = float(payload.get("minAvgScore", 2.5))
    min_ratings = int(payload.get("minRatings", 3))

    ops = OpsRepository(db)
    agents = AgentRepository(db)
    root = Path(settings.GENERATED_SKILLS_DIR).resolve()
    removed = []
    for skill in ops.list_generated_skills(routine.agent_id):
        count, avg = ops.rating_stats(skill.skill_ref)
        if count < min_ratings or avg >= min_avg:
            continue
        skill_dir = (root / skill.rel_path).resolve().parent
        if skill_dir.is_relative_to(root) and skill_dir != root:
            shutil.rmtree(skill_dir, ignore_errors=True)
        removed.append(skill.skill_ref)
        ops.delete_generated_skill(skill)

    if removed:
        agent = agents.get_agent(routine.agent_id)
        if agent is not None:
            agents.set_skill_paths(agent, [p for p in agent.skill_paths or [] if p not in removed])
    return _ok(f"deleted={len(removed)}")


# ── Reports ────────────────────────────────────────────────────────────────────

def daily_supervisor_report(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    agents = AgentRepository(db)
    supervisor = agents.get_agent(routine.agent_id)
    if supervisor is None:
        return _error("agent_not_found")
    if not agents.is_supervisor(supervisor):
        return _rejected("not_supervisor")
    user = agents.get_owner(supervisor)
    if user is None:
        return _error("user_not_found")
    if not user.email:
        return _rejected("missing_user_email")

    reports = ReportRepository(db)
    since = ctx.now - REPORT_WINDOW
    runs = reports.runs_since(since, user_id=user.id, limit=1000)
    group_msgs = reports.group_messages_since(since, user_id=user.id)
    skills = reports.generated_skills_since(user.id, since)
    logs = reports.routine_logs_since(user.id, since)
    top_groups = Counter(name for _, name in group_msgs).most_common(5)

    date = ctx.local.date_str()
    lines = [
        f"# Supervisor daily report ({date})",
        "",
        f"To: {user.full_name or user.email}",
        f"Window: {format_timestamp(since)} ~ {format_timestamp(ctx.now)}",
        "",
        "## Overview",
        f"- Runs: {len(runs)} ({_status_counts(runs)})",
        f"- Active sessions: {reports.active_session_count(user.id, since)}",
        f"- Group messages: {len(group_msgs)}",
        f"- New generated skills: {len(skills)}",
        "",
        "## Most active groups",
    ]
    lines += [f"- {name}: {n} messages" for name, n in top_groups] or ["- (no group messages)"]
    lines += ["", "## New skills"]
    lines += [f"- {agent_name}: {s.rel_path}" for s, agent_name in skills[:10]] or ["- (none)"]
    lines += ["", "## Recent routine logs"]
    lines += [
        f"- {format_timestamp(log.created_at)} [{log.status}] {agent_name}: {log.action}"
        + (f" ({log.message})" if log.message else "")
        for log, agent_name in logs
    ] or ["- (none)"]

    result = send_email_via_outbox(
        db,
        user_id=user.id,
        agent_id=supervisor.id,
        to=user.email,
        subject=f"Supervisor daily report {date}",
        body_markdown="\n".join(lines),
    )
    if not result.get("ok"):
        return _error(result.get("error", "email_failed"))
    return _ok(f"outbox={result['outboxId']}")


def guardian_check_logs(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    agents = AgentRepository(db)
    guardian = agents.get_agent(routine.agent_id)
    if guardian is None:
        return _error("agent_not_found")
    if not agents.is_guardian(guardian):
        return _rejected("not_guardian")
    user = agents.get_owner(guardian)
    if user is None:
        return _error("user_not_found")

    since = ctx.now - GUARDIAN_WINDOW
    sys_logs = [
        log for log in OpsRepository(db).recent_system_logs(since=since, levels=["error", "fatal"], limit=30)
        if log.user_id in (None, user.id)
    ]
    reports = ReportRepository(db)
    failed_runs = reports.runs_since(since, user_id=user.id, status="failed", limit=30)
    routine_errors = reports.routine_logs_since(user.id, since, status="error")
    if not sys_logs and not failed_runs and not routine_errors:
        return _ok("no_issues")
    if ctx.enqueue_run is None:
        return _error("queue_unavailable")

    prompt = "\n".join(
        [
            "The system check found problems. Analyse them and propose a fix.",
            "",
            "Requirements:",
            "- Keep the fix minimal; no large refactors.",
            "- Gather evidence with system_logs_recent, read_file_lines and linux_command.",
            "- Submit a unified diff with propose_patch; it will be reviewed before it is applied.",
            "",
            "## Recent system logs (error/fatal)",
        ]
        + [f"- {format_timestamp(log.created_at)} [{log.service}] {log.message}" for log in sys_logs]
        + ["", "## Recent failed runs"]
        + [f"- {format_timestamp(r.created_at)} runId={r.id} error={r.error or ''}" for r in failed_runs]
        + ["", "## Recent routine errors"]
        + [
            f"- {format_timestamp(log.created_at)} [{agent_name}] {log.action}: {log.message or ''}"
            for log, agent_name in routine_errors
        ]
    )

    sessions = SessionRepository(db)
    session = sessions.find_session_by_title(guardian.id, GUARDIAN_SESSION_TITLE)
    if session is None:
        session = sessions.create_session(guardian.project_id, guardian.id, GUARDIAN_SESSION_TITLE)
    sessions.add_message(session.id, "user", prompt)
    sessions.touch_session(session.id)

    run = RunRepository(db).create_run(
        project_id=session.project_id,
        agent_id=guardian.id,
        session_id=session.id,
        input={"userMessage": prompt},
    )
    ctx.enqueue_run(run.id, user.id)
    return _ok(f"enqueued_run={run.id}")


def report_to_group_owner(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    group_id = str((routine.payload or {}).get("groupId") or "")
    if not group_id:
        return _rejected("missing_groupId")
    agents = AgentRepository(db)
    agent = agents.get_agent(routine.agent_id)
    if agent is None:
        return _error("agent_not_found")
    user = agents.get_owner(agent)
    if user is None:
        return _error("user_not_found")
    group = agents.get_group(group_id)
    if group is None:
        return _rejected("group_not_found")
    project = agents.get_project(group.project_id)
    if project is None or project.user_id != user.id:
        return _rejected("forbidden")
    if not group.owner_agent_id:
        return _rejected("missing_group_owner")
    if group.owner_agent_id == agent.id:
        return _ok("self_owner")

    reports = ReportRepository(db)
    since = ctx.now - REPORT_WINDOW
    runs = reports.runs_since(since, agent_ids=[agent.id], limit=20)
    my_msgs = reports.group_messages_since(since, group_id=group.id, sender_agent_id=agent.id, limit=20)
    date = ctx.local.date_str()
    lines = [
        "# Group work report",
        "",
        f"- Group: {group.name} ({group.id})",
        f"- Reporter: {agent.name} ({agent.id})",
        f"- Window: {format_timestamp(since)} ~ {format_timestamp(ctx.now)}",
        "",
        "## Overview",
        f"- Runs: {len(runs)} ({_status_counts(runs)})",
        f"- Group messages sent: {len(my_msgs)}",
        "",
        "## Recent group messages",
    ]
    lines += [
        f"- {format_timestamp(m.created_at)}: {_one_line(m.content, 220)}" for m, _ in reversed(my_msgs[:10])
    ] or ["- (none)"]
    lines += ["", "## Recent runs"]
    lines += [
        f"- {format_timestamp(r.created_at)}: {r.status} runId={r.id}" + (f" error={r.error[:200]}" if r.error else "")
        for r in runs[:10]
    ] or ["- (none)"]

    OpsRepository(db).add_agent_mail(
        agent.id, group.owner_agent_id, f"Group work report: {group.name} - {agent.name} - {date}", "\n".join(lines)
    )
    return _ok()


def report_group_owner_to_project_lead(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    group_id = str((routine.payload or {}).get("groupId") or "")
    if not group_id:
        return _rejected("missing_groupId")
    agents = AgentRepository(db)
    owner = agents.get_agent(routine.agent_id)
    if owner is None:
        return _error("agent_not_found")
    user = agents.get_owner(owner)
    if user is None:
        return _error("user_not_found")
    group = agents.get_group(group_id)
    if group is None:
        return _rejected("group_not_found")
    if group.owner_agent_id != owner.id:
        return _rejected("not_group_owner")
    project = agents.get_project(group.project_id)
    if project is None or project.user_id != user.id:
        return _rejected("forbidden")
    if not project.lead_agent_id:
        return _rejected("missing_project_lead")

    since = ctx.now - REPORT_WINDOW
    members = agents.list_group_members(group.id)
    reports = ReportRepository(db)
    msg_count = len(reports.group_messages_since(since, group_id=group.id))
    failed = reports.runs_since(since, agent_ids=[m.agent_id for m in members], status="failed", limit=20)
    date = ctx.local.date_str()
    lines = [
        "# Group owner report",
        "",
        f"- Project: {project.name} ({project.id})",
        f"- Group: {group.name} ({group.id})",
        f"- Owner: {owner.name} ({owner.id})",
        f"- Window: {format_timestamp(since)} ~ {format_timestamp(ctx.now)}",
        "",
        "## Group overview",
        f"- Members: {len(members)}",
        f"- Group messages: {msg_count}",
        f"- Failed runs: {len(failed)}",
        "",
        "## Members",
    ]
    lines += [f"- {m.agent_id} ({m.role})" for m in members]
    lines += ["", "## Failed runs"]
    lines += [
        f"- {format_timestamp(r.created_at)} [{r.agent_id}] runId={r.id}" + (f" error={r.error[:200]}" if r.error else "")
        for r in failed[:10]
    ] or ["- (none)"]

    OpsRepository(db).add_agent_mail(
        owner.id, project.lead_agent_id, f"Group owner report: {project.name} / {group.name} - {date}", "\n".join(lines)
    )
    return _ok()


def report_project_lead_to_supervisor(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    project_id = str((routine.payload or {}).get("projectId") or "")
    if not project_id:
        return _rejected("missing_projectId")
    agents = AgentRepository(db)
    lead = agents.get_agent(routine.agent_id)
    if lead is None:
        return _error("agent_not_found")
    user = agents.get_owner(lead)
    if user is None:
        return _error("user_not_found")
    project = agents.get_project(project_id)
    if project is None or project.user_id != user.id:
        return _rejected("forbidden")
    if project.lead_agent_id != lead.id:
        return _rejected("not_project_lead")
    if not user.supervisor_agent_id:
        return _rejected("missing_supervisor")

    reports = ReportRepository(db)
    since = ctx.now - REPORT_WINDOW
    groups = reports.project_groups(project.id)
    runs = reports.runs_since(since, project_id=project.id, limit=50)
    date = ctx.local.date_str()
    lines = [
        "# Project lead report",
        "",
        f"- Project: {project.name} ({project.id})",
        f"- Lead: {lead.name} ({lead.id})",
        f"- Window: {format_timestamp(since)} ~ {format_timestamp(ctx.now)}",
        "",
        "## Project overview",
        f"- Groups: {len(groups)}",
        f"- Runs: {len(runs)} ({_status_counts(runs)})",
        "",
        "## Groups",
    ]
    lines += [f"- {g.name} ({g.id}) owner={g.owner_agent_id or '(unset)'}" for g in groups] or ["- (none)"]
    lines += ["", "## Recent runs"]
    lines += [f"- {format_timestamp(r.created_at)}: {r.status} runId={r.id}" for r in runs[:10]] or ["- (none)"]

    OpsRepository(db).add_agent_mail(
        lead.id, user.supervisor_agent_id, f"Project lead report: {project.name} - {date}", "\n".join(lines)
    )
    return _ok()


ACTIONS: Dict[str, Callable[[Session, AgentRoutine, ActionContext], ActionResult]] = {
    "sleep": sleep,
    "wake": wake,
    "equip_skills": equip_skills,
    "daily_generate_skill": daily_generate_skill,
    "cleanup_low_score_skills": cleanup_low_score_skills,
    "daily_supervisor_report": daily_supervisor_report,
    "guardian_check_logs": guardian_check_logs,
    "report_to_group_owner": report_to_group_owner,
    "report_group_owner_to_project_lead": report_group_owner_to_project_lead,
    "report_project_lead_to_supervisor": report_project_lead_to_supervisor,
}


def execute_action(db: Session, routine: AgentRoutine, ctx: ActionContext) -> ActionResult:
    handler = ACTIONS.get(routine.action)
    if handler is None:
        if routine.action in UNWIRED_ACTIONS:
            return _rejected("action_not_supported_in_env")
        return _rejected("unknown_action")
    return handler(db, routine, ctx)
