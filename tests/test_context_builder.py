from __future__ import annotations

import pytest

from playbook.pipeline.context import ChatMode, PipelineContext
from playbook.pipeline.context_builder import ContextBuilder
from playbook.pipeline.prompts import MINI_PROMPT_INSTRUCTIONS, WORKFLOW_INSTRUCTIONS


def _ctx(mode: ChatMode = ChatMode.WORKFLOW, **kwargs) -> PipelineContext:
    return PipelineContext(user_id="user-1", mode=mode, message="Hello", **kwargs)


def test_first_turn_has_exactly_the_user_message():
    ctx = ContextBuilder().build(_ctx())
    assert ctx.messages == [{"role": "user", "content": "Hello"}]
    assert ctx.continuation_token is None


def test_pending_tool_outputs_precede_user_message():
    pending = [{"type": "function_call_output", "call_id": "c1", "output": "{}"}]
    ctx = ContextBuilder().build(_ctx(), continuation_token="resp-9", pending_tool_outputs=pending)
    assert ctx.messages == pending + [{"role": "user", "content": "Hello"}]
    assert ctx.continuation_token == "resp-9"


def test_pending_outputs_dropped_without_continuation_token():
    pending = [{"type": "function_call_output", "call_id": "c1", "output": "{}"}]
    ctx = ContextBuilder().build(_ctx(), pending_tool_outputs=pending)
    assert ctx.messages == [{"role": "user", "content": "Hello"}]


def test_mode_selects_instructions_and_tools():
    workflow = ContextBuilder().build(_ctx(ChatMode.WORKFLOW))
    mini = ContextBuilder().build(_ctx(ChatMode.MINI_PROMPT))
    assert workflow.instructions.startswith(WORKFLOW_INSTRUCTIONS)
    assert mini.instructions.startswith(MINI_PROMPT_INSTRUCTIONS)
    assert "add_stage" in {t["name"] for t in workflow.tools}
    assert "add_stage" not in {t["name"] for t in mini.tools}
    assert [t["name"] for t in workflow.tools] == list(workflow.tool_names)


def test_summary_and_snapshot_sections():
    ctx = ContextBuilder().build(_ctx(), summary="We renamed the workflow.", snapshot="## Current Workflow Context")
    assert "## Previous Conversation Summary\nWe renamed the workflow." in ctx.instructions
    assert ctx.instructions.endswith("## Current Workflow Context")


@pytest.mark.asyncio
async def test_snapshot_from_request_payload_wins(db, workflow_factory):
    workflow = await workflow_factory(db)
    ctx = _ctx(workflow_id=workflow.id)
    snapshot = await ContextBuilder().load_snapshot(db, ctx, workflow_context={
        "id": workflow.id, "name": "Unsaved edit", "stages": [{"name": "Only", "withReview": True}],
    })
    assert "- Name: Unsaved edit" in snapshot
    assert "0. Only (id: unsaved) [review]" in snapshot
    assert "(no mini-prompts)" in snapshot


@pytest.mark.asyncio
async def test_snapshot_loaded_from_saved_workflow(db, workflow_factory):
    workflow = await workflow_factory(db, include_multi_agent_chat=True)
    snapshot = await ContextBuilder().load_snapshot(db, _ctx(workflow_id=workflow.id))
    assert snapshot.startswith("## Current Workflow Context")
    assert "- Multi-agent chat: enabled" in snapshot
    assert "### Stages (2)" in snapshot
    assert "   - Plan step 2 (id: " in snapshot


@pytest.mark.asyncio
async def test_mini_prompt_snapshot(db, workflow_factory):
    workflow = await workflow_factory(db, stages=[("Solo", 1, True)])
    item_id = workflow.stages[0].items[0].mini_prompt.id
    snapshot = await ContextBuilder().load_snapshot(db, _ctx(ChatMode.MINI_PROMPT, mini_prompt_id=item_id))
    assert snapshot.startswith("## Currently Viewing Mini-Prompt")
    assert f"- ID: {item_id}" in snapshot
    assert "Do Solo 1" in snapshot


@pytest.mark.asyncio
async def test_no_snapshot_without_document(db):
    assert await ContextBuilder().load_snapshot(db, _ctx()) is None
