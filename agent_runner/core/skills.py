"""Skill document refs of the form ``<root index>:<relative path>``."""

from __future__ import annotations

import re
from pathlib import Path

from ..config import settings

_REF_RE = re.compile(r"^(\d+):(.+)$")


class SkillRefError(ValueError):
    pass


def resolve_ref(ref: str, roots: list[Path] | None = None) -> Path:
    """Map a skill ref to an absolute path, refusing anything outside its root."""
    roots = roots if roots is not None else settings.skill_roots()
    m = _REF_RE.match(ref.strip())
    if not m:
        raise SkillRefError("invalid_ref")
    idx, rel = int(m.group(1)), m.group(2).lstrip("/\\")
    if idx >= len(roots):
        raise SkillRefError("invalid_ref")
    root = roots[idx]
    target = (root / rel).resolve()
    if not target.is_relative_to(root):
        raise SkillRefError("forbidden_path")
    return target


def resolve_in_roots(path: str, roots: list[Path] | None = None) -> Path:
    """Accept either a skill ref or an absolute path under one of the roots."""
    roots = roots if roots is not None else settings.skill_roots()
    if _REF_RE.match(path.strip()):
        return resolve_ref(path, roots)
    target = Path(path).resolve()
    if not any(target.is_relative_to(root) for root in roots):
        raise SkillRefError("forbidden_path")
    return target


def generated_ref(rel_path: str, roots: list[Path] | None = None) -> str:
    roots = roots if roots is not None else settings.skill_roots()
    generated = Path(settings.GENERATED_SKILLS_DIR).resolve()
    idx = roots.index(generated)
    return f"{idx}:{rel_path.lstrip('/')}"


def _split_front_matter(raw: str) -> tuple[dict, str]:
    if not raw.startswith("---"):
        return {}, raw
    end = raw.find("\n---", 3)
    if end < 0:
        return {}, raw
    front: dict[str, str] = {}
    for line in raw[3:end].strip().splitlines():
        key, sep, value = line.partition(":")
        if sep:
            front[key.strip()] = value.strip()
    body = raw[end + len("\n---"):].lstrip("\r\n")
    return front, body


def load_skill_prompt(ref: str, max_chars: int, roots: list[Path] | None = None) -> str | None:
    """Render one equipped skill as a system-prompt section, or None if unreadable."""
    try:
        path = resolve_ref(ref, roots)
        if path.is_dir():
            path = next((c for c in (path / "SKILL.md", path / "README.md") if c.is_file()), None)
            if path is None:
                return None
        raw = path.read_text(encoding="utf-8")
    except (SkillRefError, OSError, UnicodeDecodeError):
        return None

    front, body = _split_front_matter(raw)
    body = body.strip()
    if not body:
        return None
    if len(body) > max_chars:
        body = f"{body[:max_chars]}\n\n[...truncated...]"
    title = f"# Skill: {front.get('name') or path.parent.name}"
    parts = [title]
    if front.get("description"):
        parts.append(f"> {front['description']}")
    parts.append(body)
    return "\n".join(parts)
