"""File inspection, restricted shell and rating tools for agents with equipped skills."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import Field

from ..config import settings
from ..core.skills import SkillRefError, resolve_in_roots
from ..repositories.ops_repository import OpsRepository
from .registry import ToolArgs, ToolContext, ToolError, ToolSpec

logger = logging.getLogger("agent_runner.tools.skill_tools")

# Read-only binaries only; the command runs without a shell.
ALLOWED_COMMANDS = frozenset({"ls", "cat", "head", "tail", "wc", "grep", "stat", "pwd", "du", "file"})
# Options that make a binary read file names or patterns from another file.
DENIED_OPTIONS = {
    "wc": ("--files0-from",),
    "du": ("--files0-from", "-X", "--exclude-from"),
    "grep": ("-f", "--file", "--exclude-from", "--exclude-dir"),
    "file": ("-f", "--files-from", "-m", "--magic-file"),
}
COMMAND_TIMEOUT_SECONDS = 15.0
MAX_OUTPUT_CHARS = 20_000


class ReadFileLinesArgs(ToolArgs):
    filepath: str = Field(description="Skill ref ('<root>:<path>') or absolute path inside a skill root.")
    offset: int = Field(1, ge=1, description="1-based start line number.")
    limit: int = Field(200, ge=1, le=500, description="Number of lines to read.")


class LinuxCommandArgs(ToolArgs):
    argv: List[str] = Field(min_length=1, description="Command argv array, e.g. ['ls', '-la'].")
    cwd: Optional[str] = Field(None, description="Working directory inside a skill root.")


class SkillRateArgs(ToolArgs):
    skill_path: str = Field(alias="skillPath", description="Skill ref being rated.")
    score: int = Field(ge=1, le=5)
    note: Optional[str] = Field(None, max_length=2000)


class SkillRatingsArgs(ToolArgs):
    skill_path: str = Field(alias="skillPath")
    limit: int = Field(20, ge=1, le=100)


def _confined(path: str) -> Path:
    try:
        return resolve_in_roots(path)
    except SkillRefError as exc:
        raise ToolError(str(exc), path=path)


async def read_file_lines(ctx: ToolContext, args: ReadFileLinesArgs) -> dict:
    target = _confined(args.filepath)
    if not target.is_file():
        raise ToolError("file_not_found", filepath=args.filepath)
    lines = target.read_text(encoding="utf-8", errors="replace").splitlines()
    start = args.offset - 1
    chunk = lines[start:start + args.limit]
    return {
        "filepath": args.filepath,
        "offset": args.offset,
        "lines": chunk,
        "totalLines": len(lines),
        "eof": start + len(chunk) >= len(lines),
    }


def _denied_option(command: str, arg: str) -> bool:
    for opt in DENIED_OPTIONS.get(command, ()):
        if arg == opt or (opt.startswith("--") and arg.startswith(opt + "=")):
            return True
        if not opt.startswith("--") and arg.startswith("-") and not arg.startswith("--") and opt[1] in arg[1:]:
            return True
    return False


def _check_argv(argv: List[str], cwd: Path) -> None:
    command = argv[0]
    if command not in ALLOWED_COMMANDS:
        raise ToolError("command_not_allowed", command=command, allowed=sorted(ALLOWED_COMMANDS))
    for arg in argv[1:]:
        if _denied_option(command, arg):
            raise ToolError("option_not_allowed", command=command, option=arg)
        if arg.startswith("-"):
            # Paths must be passed as separate arguments so they can be confined.
            if "/" in arg or "~" in arg or ".." in arg:
                raise ToolError("forbidden_path", path=arg)
            continue
        if "/" in arg or ".." in Path(arg).parts:
            _confined(str(cwd / arg))


async def linux_command(ctx: ToolContext, args: LinuxCommandArgs) -> dict:
    if args.cwd:
        cwd = _confined(args.cwd)
    else:
        cwd = Path(settings.GENERATED_SKILLS_DIR).resolve()
        cwd.mkdir(parents=True, exist_ok=True)
    if not cwd.is_dir():
        raise ToolError("cwd_not_found", cwd=args.cwd)
    _check_argv(args.argv, cwd)

    proc = await asyncio.create_subprocess_exec(
        *args.argv,
        cwd=str(cwd),
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=COMMAND_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolError("command_timeout", timeoutSeconds=COMMAND_TIMEOUT_SECONDS)

    logger.info("linux_command agent=%s argv=%s exit=%s", ctx.agent_id, args.argv, proc.returncode)
    return {
        "exitCode": proc.returncode,
        "stdout": stdout.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
        "stderr": stderr.decode("utf-8", errors="replace")[:MAX_OUTPUT_CHARS],
    }


async def skill_rate(ctx: ToolContext, args: SkillRateArgs) -> dict:
    repo = OpsRepository(ctx.db)
    rating = repo.add_rating(ctx.agent_id, args.skill_path, args.score, args.note)
    count, avg = repo.rating_stats(args.skill_path)
    return {"ratingId": rating.id, "count": count, "avgScore": round(avg, 2)}


async def skill_get_ratings(ctx: ToolContext, args: SkillRatingsArgs) -> dict:
    repo = OpsRepository(ctx.db)
    count, avg = repo.rating_stats(args.skill_path)
    return {
        "skillPath": args.skill_path,
        "count": count,
        "avgScore": round(avg, 2),
        "recent": [
            {"agentId": r.agent_id, "score": r.score, "note": r.note, "createdAt": r.created_at}
            for r in repo.list_ratings(args.skill_path, limit=args.limit)
        ],
    }


TOOLS = [
    ToolSpec(
        "read_file_lines",
        "Read a range of lines from a skill document. Paths are confined to the skill roots.",
        ReadFileLinesArgs,
        read_file_lines,
    ),
    ToolSpec(
        "linux_command",
        "Run a read-only command (ls, cat, head, tail, wc, grep, stat, pwd, du, file) inside the skill roots. No shell.",
        LinuxCommandArgs,
        linux_command,
    ),
    ToolSpec("skill_rate", "Rate a skill from 1 to 5 with an optional note.", SkillRateArgs, skill_rate),
    ToolSpec("skill_get_ratings", "Get the average score and recent ratings of a skill.", SkillRatingsArgs, skill_get_ratings),
]
