from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ..models.ops import AgentMail, EmailOutbox, PatchProposal, SystemLog
from ..models.skill import GeneratedSkill, SkillRating


class OpsRepository:
    """System logs, mail, patch proposals and generated-skill bookkeeping."""

    def __init__(self, db: Session):
        self.db = db

    # ── System logs ─────────────────────────────────────────────────────────────

    def add_system_log(
        self,
        service: str,
        level: str,
        message: str,
        user_id: Optional[str] = None,
        stack: Optional[str] = None,
        meta: Optional[dict] = None,
    ) -> SystemLog:
        log = SystemLog(service=service, level=level, message=message, user_id=user_id, stack=stack, meta_json=meta)
        self.db.add(log)
        self.db.commit()
        return log

    def recent_system_logs(
        self,
        user_id: Optional[str] = None,
        since: Optional[datetime] = None,
        levels: Optional[List[str]] = None,
        limit: int = 50,
    ) -> List[SystemLog]:
        stmt = select(SystemLog)
        if user_id is not None:
            stmt = stmt.where(SystemLog.user_id == user_id)
        if since is not None:
            stmt = stmt.where(SystemLog.created_at >= since)
        if levels:
            stmt = stmt.where(SystemLog.level.in_(levels))
        stmt = stmt.order_by(SystemLog.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    # ── Mail ────────────────────────────────────────────────────────────────────

    def add_agent_mail(self, from_agent_id: str, to_agent_id: str, subject: str, body_markdown: str) -> AgentMail:
        mail = AgentMail(from_agent_id=from_agent_id, to_agent_id=to_agent_id, subject=subject, body_markdown=body_markdown)
        self.db.add(mail)
        self.db.commit()
        self.db.refresh(mail)
        return mail

    def add_outbox(self, user_id: str, to: str, subject: str, body_markdown: str, agent_id: Optional[str] = None) -> EmailOutbox:
        row = EmailOutbox(user_id=user_id, agent_id=agent_id, to=to, subject=subject, body_markdown=body_markdown)
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)
        return row

    def update_outbox(self, row: EmailOutbox, status: str, error: Optional[str] = None, sent_at: Optional[datetime] = None) -> EmailOutbox:
        row.status = status
        row.error = error
        row.sent_at = sent_at
        self.db.commit()
        return row

    # ── Patch proposals ─────────────────────────────────────────────────────────

    def add_patch_proposal(
        self, user_id: str, agent_id: Optional[str], title: str, patch_text: str, description: Optional[str] = None
    ) -> PatchProposal:
        proposal = PatchProposal(
            user_id=user_id, agent_id=agent_id, title=title, description=description, patch_text=patch_text
        )
        self.db.add(proposal)
        self.db.commit()
        self.db.refresh(proposal)
        return proposal

    # ── Generated skills and ratings ────────────────────────────────────────────

    def get_generated_skill(self, agent_id: str, rel_path: str) -> Optional[GeneratedSkill]:
        return self.db.execute(
            select(GeneratedSkill).where(GeneratedSkill.agent_id == agent_id, GeneratedSkill.rel_path == rel_path)
        ).scalar_one_or_none()

    def upsert_generated_skill(self, agent_id: str, rel_path: str, skill_ref: str) -> GeneratedSkill:
        skill = self.get_generated_skill(agent_id, rel_path)
        if skill is None:
            skill = GeneratedSkill(agent_id=agent_id, rel_path=rel_path, skill_ref=skill_ref)
            self.db.add(skill)
        else:
            skill.skill_ref = skill_ref
        self.db.commit()
        self.db.refresh(skill)
        return skill

    def list_generated_skills(self, agent_id: str) -> List[GeneratedSkill]:
        return list(self.db.execute(
            select(GeneratedSkill).where(GeneratedSkill.agent_id == agent_id).order_by(GeneratedSkill.created_at.asc())
        ).scalars().all())

    def delete_generated_skill(self, skill: GeneratedSkill) -> None:
        self.db.delete(skill)
        self.db.commit()

    def add_rating(self, agent_id: str, skill_path: str, score: int, note: Optional[str] = None) -> SkillRating:
        generated = self.db.execute(
            select(GeneratedSkill).where(GeneratedSkill.agent_id == agent_id, GeneratedSkill.skill_ref == skill_path)
        ).scalar_one_or_none()
        rating = SkillRating(
            agent_id=agent_id,
            skill_path=skill_path,
            score=score,
            note=note,
            generated_skill_id=generated.id if generated else None,
        )
        self.db.add(rating)
        self.db.commit()
        self.db.refresh(rating)
        return rating

    def rating_stats(self, skill_path: str) -> tuple[int, float]:
        """(count, average score) across all agents for one skill ref."""
        count, avg = self.db.execute(
            select(func.count(SkillRating.id), func.avg(SkillRating.score)).where(SkillRating.skill_path == skill_path)
        ).one()
        return int(count or 0), float(avg or 0.0)

    def list_ratings(self, skill_path: str, limit: int = 20) -> List[SkillRating]:
        return list(self.db.execute(
            select(SkillRating)
            .where(SkillRating.skill_path == skill_path)
            .order_by(SkillRating.created_at.desc())
            .limit(limit)
        ).scalars().all())
