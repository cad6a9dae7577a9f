"""Tests for conclave/store.py."""

import json

import pytest

from conclave.errors import SessionClosedError
from conclave.models import DebateOutcome, DebateSession, OutcomeStatus, TokenUsage
from conclave.store import FileDebateStore


@pytest.fixture
def session(sample_debate_config) -> DebateSession:
    return DebateSession(id="debate-abc", workflow_id="wf-1", config=sample_debate_config)


async def test_save_and_get(tmp_path, session):
    store = FileDebateStore(tmp_path / "sessions")
    await store.save(session)

    path = store.path_for("debate-abc")
    assert path.exists()
    assert json.loads(path.read_text(encoding="utf-8"))["workflow_id"] == "wf-1"

    loaded = await store.get("debate-abc")
    assert loaded == session


async def test_get_missing_returns_none(tmp_path):
    assert await FileDebateStore(tmp_path).get("debate-missing") is None


async def test_update_turns_then_complete(tmp_path, session, sample_turn):
    store = FileDebateStore(tmp_path)
    await store.save(session)

    await store.update_turns(session.id, [sample_turn], TokenUsage(120, 80), 0.0042)
    loaded = await store.get(session.id)
    assert loaded.turns == [sample_turn]
    assert loaded.total_cost_usd == pytest.approx(0.0042)
    assert loaded.outcome is None

    await store.complete(session.id, DebateOutcome(OutcomeStatus.CONSENSUS, "Ship it"), 12.5)
    loaded = await store.get(session.id)
    assert loaded.outcome.status == OutcomeStatus.CONSENSUS
    assert loaded.duration_sec == 12.5
    assert loaded.completed_at is not None


async def test_update_unknown_session_logs_and_raises(tmp_path, caplog):
    store = FileDebateStore(tmp_path)
    with pytest.raises(KeyError):
        await store.update_turns("debate-nope", [], TokenUsage(), 0.0)
    assert "Failed to update turns" in caplog.text


async def test_complete_twice_raises(tmp_path, session):
    store = FileDebateStore(tmp_path)
    await store.save(session)
    await store.complete(session.id, DebateOutcome(OutcomeStatus.ERROR, "failed", error="boom"), 1.0)
    with pytest.raises(SessionClosedError):
        await store.complete(session.id, DebateOutcome(OutcomeStatus.CONSENSUS, "ok"), 2.0)


async def test_get_by_workflow_returns_matching_sessions_oldest_first(tmp_path, sample_debate_config):
    store = FileDebateStore(tmp_path)
    first = DebateSession(
        id="debate-1", workflow_id="wf-7", config=sample_debate_config, created_at="2026-01-01T10:00:00+00:00"
    )
    second = DebateSession(
        id="debate-0", workflow_id="wf-7", config=sample_debate_config, created_at="2026-01-01T11:00:00+00:00"
    )
    other = DebateSession(id="debate-2", workflow_id="wf-8", config=sample_debate_config)
    for session in (second, other, first):
        await store.save(session)

    found = await store.get_by_workflow("wf-7")

    assert [s.id for s in found] == ["debate-1", "debate-0"]


async def test_get_by_workflow_empty(tmp_path):
    assert await FileDebateStore(tmp_path / "missing").get_by_workflow("wf-7") == []
