import pytest

from agent_runner.core.cancellation import CancellationToken, cancel_key
from agent_runner.core.idempotence import InMemoryIdempotenceStore, RedisIdempotenceStore
from agent_runner.core.skills import SkillRefError, generated_ref, load_skill_prompt, resolve_in_roots, resolve_ref
from agent_runner.errors import RunCancelled

from .fakes import FakeRedis


def test_in_memory_lock_expires():
    now = [100.0]
    store = InMemoryIdempotenceStore(clock=lambda: now[0])
    assert store.try_acquire("k", 60) is True
    assert store.try_acquire("k", 60) is False
    now[0] += 61
    assert store.try_acquire("k", 60) is True


def test_redis_lock_uses_set_nx_ex():
    redis_client = FakeRedis()
    store = RedisIdempotenceStore(redis_client)
    assert store.try_acquire("routine:fire:r1:202603022300", 3600) is True
    assert store.try_acquire("routine:fire:r1:202603022300", 3600) is False
    assert redis_client.ttls["routine:fire:r1:202603022300"] == 3600


def test_cancellation_token_latches_once_set():
    redis_client = FakeRedis()
    token = CancellationToken.from_redis(redis_client, "run-1")
    assert token.cancelled is False
    token.raise_if_cancelled()

    redis_client.set(cancel_key("run-1"), "1")
    redis_client.delete(cancel_key("run-1"))
    assert token.cancelled is False

    redis_client.set(cancel_key("run-1"), "1")
    assert token.cancelled is True
    redis_client.delete(cancel_key("run-1"))
    with pytest.raises(RunCancelled):
        token.raise_if_cancelled()
    assert CancellationToken.never().cancelled is False


def test_skill_refs_stay_inside_their_root(skill_dirs):
    installed, generated = (p.resolve() for p in skill_dirs)
    assert resolve_ref("0:a/b.md") == installed / "a" / "b.md"
    assert resolve_ref("1:/x.md") == generated / "x.md"
    for bad in ("a/b.md", "7:x.md", "0:../../etc/passwd"):
        with pytest.raises(SkillRefError):
            resolve_ref(bad)
    assert resolve_in_roots(str(installed / "a.md")) == installed / "a.md"
    with pytest.raises(SkillRefError):
        resolve_in_roots("/etc/passwd")
    assert generated_ref("agents/a1/SKILL.md") == "1:agents/a1/SKILL.md"


def test_load_skill_prompt_clips_long_bodies(skill_dirs):
    installed, _ = skill_dirs
    (installed / "big").mkdir()
    (installed / "big" / "README.md").write_text("y" * 50, encoding="utf-8")

    section = load_skill_prompt("0:big", max_chars=10)

    assert section == "# Skill: big\n" + "y" * 10 + "\n\n[...truncated...]"
    assert load_skill_prompt("0:absent", max_chars=10) is None
