from __future__ import annotations

import pytest
from sqlalchemy import select

from playbook.core.errors import ConcurrentTurnError, SessionNotFoundError
from playbook.models import ChatMessage, ChatSession
from playbook.pipeline.context import ChatMode, CompletionResult, PipelineContext, TokenUsage
from playbook.pipeline.session_store import (
    SessionPersister, SessionState, SessionStore, archive_session, get_message_history,
)

from tests.fakes import FakeProvider


def _ctx(message: str = "hi", **kwargs) -> PipelineContext:
    return PipelineContext(user_id="user-1", mode=ChatMode.WORKFLOW, message=message, **kwargs)


def _result(token: str, input_tokens: int = 10, output_tokens: int = 4, **kwargs) -> CompletionResult:
    return CompletionResult(text="ok", usage=TokenUsage(input_tokens, output_tokens), continuation_token=token, **kwargs)


async def _commit(db, ctx, state, result, message_id="m-1"):
    session = await SessionPersister().commit(db, ctx, state, result, [], message_id)
    await db.commit()
    return session


@pytest.mark.asyncio
async def test_first_commit_creates_session_and_messages(db):
    session = await _commit(db, _ctx(workflow_id="wf-1"), SessionState(), _result("resp-1"))

    assert session.continuation_token == "resp-1"
    assert (session.total_input_tokens, session.total_output_tokens) == (10, 4)
    messages = await get_message_history(db, session.id)
    assert [(m.role, m.sequence_number) for m in messages] == [("user", 0), ("assistant", 1)]
    assert messages[1].id == "m-1"
    assert messages[1].response_id == "resp-1"


@pytest.mark.asyncio
async def test_counters_accumulate_and_token_is_replaced(db):
    store = SessionStore()
    first = await _commit(db, _ctx(workflow_id="wf-1"), SessionState(), _result("resp-1"), "m-1")

    found = await store.find(db, "user-1", ChatMode.WORKFLOW, workflow_id="wf-1")
    assert found.id == first.id
    state = await store.load_state(db, found)
    assert state.continuation_token == "resp-1"

    second = await _commit(db, _ctx(workflow_id="wf-1"), state, _result("resp-2", 7, 3), "m-2")
    assert second.id == first.id
    assert second.continuation_token == "resp-2"
    assert (second.total_input_tokens, second.total_output_tokens) == (17, 7)
    assert [m.sequence_number for m in await get_message_history(db, first.id)] == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_find_keys_by_mode_and_document(db):
    store = SessionStore()
    await _commit(db, _ctx(workflow_id="wf-1"), SessionState(), _result("resp-1"))
    assert await store.find(db, "user-1", ChatMode.WORKFLOW, workflow_id="wf-2") is None
    assert await store.find(db, "user-2", ChatMode.WORKFLOW, workflow_id="wf-1") is None
    assert await store.find(db, "user-1", ChatMode.MINI_PROMPT) is None


@pytest.mark.asyncio
async def test_pending_outputs_loaded_from_last_assistant_message(db):
    pending = [{"type": "function_call_output", "call_id": "c9", "output": "{}"}]
    session = await _commit(db, _ctx(), SessionState(), _result("resp-1", pending_tool_outputs=pending))
    state = await SessionStore().load_state(db, session)
    assert state.pending_tool_outputs == pending


@pytest.mark.asyncio
async def test_stale_state_is_rejected(db):
    store = SessionStore()
    session = await _commit(db, _ctx(), SessionState(), _result("resp-1"))
    state_a = await store.load_state(db, session)
    state_b = await store.load_state(db, session)

    await _commit(db, _ctx(), state_a, _result("resp-2"), "m-2")
    with pytest.raises(ConcurrentTurnError):
        await SessionPersister().commit(db, _ctx(), state_b, _result("resp-3"), [], "m-3")


@pytest.mark.asyncio
async def test_degraded_turn_keeps_prior_token_and_records_zero_usage(db):
    session = await _commit(db, _ctx(), SessionState(), _result("resp-1"))
    state = await SessionStore().load_state(db, session)
    degraded = CompletionResult(text="validation error", usage=TokenUsage(), continuation_token="resp-1", degraded=True)

    session = await _commit(db, _ctx(), state, degraded, "m-2")
    assert session.continuation_token == "resp-1"
    assert session.total_tokens == 14
    last = (await get_message_history(db, session.id))[-1]
    assert last.response_id is None
    assert (last.input_tokens, last.output_tokens) == (0, 0)


@pytest.mark.asyncio
async def test_auto_reset_archives_and_starts_summarized_session(db, monkeypatch):
    monkeypatch.setattr("playbook.pipeline.session_store.get_settings", lambda: _Settings(threshold=10))
    store = SessionStore(provider=FakeProvider(summary="We drafted three stages."))
    old = await _commit(db, _ctx(), SessionState(), _result("resp-1", 8, 4))

    state = await store.load_state(db, old)
    assert state.needs_reset is True
    ctx = _ctx("next")
    ctx.reset_summary = await store.summarize(db, old)
    assert ctx.reset_summary == "We drafted three stages."

    new = await _commit(db, ctx, state, _result("resp-9", 5, 5), "m-2")
    assert new.id != old.id
    assert new.summary == "We drafted three stages."
    assert (new.total_input_tokens, new.total_output_tokens) == (5, 5)
    assert old.archived_at is not None

    roles = [m.role for m in await get_message_history(db, new.id)]
    assert roles == ["system", "user", "assistant"]
    assert await store.find(db, "user-1", ChatMode.WORKFLOW) == new


@pytest.mark.asyncio
async def test_archive_and_lookup_errors(db):
    session = await _commit(db, _ctx(), SessionState(), _result("resp-1"))
    await archive_session(db, "user-1", session.id)
    with pytest.raises(SessionNotFoundError):
        await SessionStore().find(db, "user-1", ChatMode.WORKFLOW, session_id=session.id)
    with pytest.raises(SessionNotFoundError):
        await archive_session(db, "user-2", session.id)


@pytest.mark.asyncio
async def test_history_limit_returns_latest_oldest_first(db):
    session = await _commit(db, _ctx("one"), SessionState(), _result("resp-1"))
    for i in range(2, 5):
        state = await SessionStore().load_state(db, session)
        session = await _commit(db, _ctx(f"msg {i}"), state, _result(f"resp-{i}"), f"m-{i}")
    history = await get_message_history(db, session.id, limit=3)
    assert [m.sequence_number for m in history] == [5, 6, 7]
    rows = (await db.execute(select(ChatMessage).where(ChatMessage.session_id == session.id))).scalars().all()
    assert len(rows) == 8
    assert (await db.get(ChatSession, session.id)).version >= 4


class _Settings:
    def __init__(self, threshold: int) -> None:
        self.auto_reset_token_threshold = threshold
        self.history_limit = 50
        self.summary_model = "gpt-4o-mini"
