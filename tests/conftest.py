from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from agent_runner.config import settings
from agent_runner.database import Base
from agent_runner.models import Agent, Message, Project, User
from agent_runner.repositories.session_repository import SessionRepository

from .fakes import FakeRedis

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture(autouse=True)
def skill_dirs(tmp_path, monkeypatch):
    """Point the skill roots at a temp dir: index 0 = installed skills, 1 = generated."""
    installed = tmp_path / "skills"
    generated = tmp_path / "generated"
    installed.mkdir()
    generated.mkdir()
    monkeypatch.setattr(settings, "SKILLS_ROOTS", str(installed))
    monkeypatch.setattr(settings, "GENERATED_SKILLS_DIR", str(generated))
    return installed, generated


@pytest.fixture(autouse=True)
def no_smtp(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_URL", "")


# ── Factories ───────────────────────────────────────────────────────────────────

@pytest.fixture
def owner(db):
    user = User(email="owner@example.com", full_name="Ada Owner")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def project(db, owner):
    project = Project(user_id=owner.id, name="Demo")
    db.add(project)
    db.commit()
    return project


@pytest.fixture
def make_agent(db, project):
    def _make(name="worker", **fields):
        fields.setdefault("system_prompt", "You are a helpful agent.")
        fields.setdefault("default_model", "mock-1")
        agent = Agent(project_id=fields.pop("project_id", project.id), name=name, **fields)
        db.add(agent)
        db.commit()
        return agent
    return _make


@pytest.fixture
def agent(make_agent):
    return make_agent()


@pytest.fixture
def chat_session(db, agent):
    return SessionRepository(db).create_session(agent.project_id, agent.id, "Chat")


@pytest.fixture
def add_messages(db):
    """Insert ``(role, content)`` pairs one minute apart so ordering is explicit."""
    def _add(session_id, pairs, start=T0):
        rows = []
        for i, (role, content) in enumerate(pairs):
            row = Message(session_id=session_id, role=role, content=content, created_at=start + timedelta(minutes=i))
            db.add(row)
            rows.append(row)
        db.commit()
        return rows
    return _add
