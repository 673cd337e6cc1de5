"""Generated skill documents and their ratings."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from ..database import Base
from ._common import new_id, utcnow


class GeneratedSkill(Base):
    __tablename__ = "generated_skills"
    __table_args__ = (UniqueConstraint("agent_id", "rel_path"),)

    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    rel_path = Column(String, nullable=False)
    skill_ref = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class SkillRating(Base):
    __tablename__ = "skill_ratings"

    id = Column(String, primary_key=True, default=new_id)
    agent_id = Column(String, ForeignKey("agents.id", ondelete="CASCADE"), nullable=False, index=True)
    generated_skill_id = Column(String, ForeignKey("generated_skills.id", ondelete="SET NULL"), nullable=True, index=True)
    skill_path = Column(String, nullable=False, index=True)
    score = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
