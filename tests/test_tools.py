from __future__ import annotations

import pytest
from pydantic import BaseModel

from playbook.core.errors import ConfigurationError, ToolArgumentValidationError
from playbook.pipeline.context import ChatMode
from playbook.pipeline.context_builder import MINI_PROMPT_TOOLS, WORKFLOW_TOOLS, ModeProfile, get_mode_profile
from playbook.tools.registry import ToolRisk, get_tool, get_tools_for_mode


def test_mode_profiles_expose_their_tool_subsets():
    workflow = get_mode_profile(ChatMode.WORKFLOW)
    mini = get_mode_profile(ChatMode.MINI_PROMPT)
    assert workflow.tool_names == WORKFLOW_TOOLS
    assert mini.tool_names[: len(MINI_PROMPT_TOOLS)] == MINI_PROMPT_TOOLS
    assert "translate_mini_prompt" in mini.tool_names
    assert "remove_stage" not in mini.tool_names


def test_profile_rejects_tool_not_permitted_for_mode():
    with pytest.raises(ConfigurationError, match="not permitted"):
        ModeProfile(mode=ChatMode.MINI_PROMPT, instructions="x", tool_names=("add_stage",))


def test_profile_rejects_unknown_tool():
    with pytest.raises(ConfigurationError, match="not registered"):
        ModeProfile(mode=ChatMode.WORKFLOW, instructions="x", tool_names=("drop_database",))


def test_schema_is_a_responses_function_tool():
    schema = get_tool("add_stage").schema()
    assert schema["type"] == "function"
    assert schema["name"] == "add_stage"
    assert schema["parameters"]["type"] == "object"
    assert "name" in schema["parameters"]["properties"]
    assert "name" in schema["parameters"]["required"]


def test_risk_classes():
    assert get_tool("get_current_workflow").risk == ToolRisk.READ
    assert get_tool("create_workflow").risk == ToolRisk.PROPOSE
    assert get_tool("translate_mini_prompt").risk == ToolRisk.EXTERNAL
    assert {t.name for t in get_tools_for_mode(ChatMode.MINI_PROMPT)} >= set(MINI_PROMPT_TOOLS)


def test_parse_args_validates_with_pydantic():
    spec = get_tool("modify_stage")
    parsed = spec.parse_args('{"stage_position": 2, "updates": {"name": "QA"}}')
    assert isinstance(parsed, BaseModel)
    assert parsed.stage_position == 2

    with pytest.raises(ToolArgumentValidationError, match="stage_id or stage_position"):
        spec.parse_args({"updates": {"name": "QA"}})
    with pytest.raises(ToolArgumentValidationError):
        spec.parse_args({"stage_position": -4, "updates": {}})
    with pytest.raises(ToolArgumentValidationError, match="JSON object"):
        spec.parse_args("[1, 2]")


@pytest.mark.asyncio
async def test_create_workflow_only_proposes(db):
    spec = get_tool("create_workflow")
    args = spec.parse_args({"name": "Launch", "stages": [{"name": "Plan"}, {"name": "Build", "with_review": False}]})
    record = await spec.handler(args, db=db, user_id="user-1")

    assert record["success"] is True
    assert record["action"] == "create_workflow"
    assert record["workflow"]["stages"][0]["with_review"] is True
    assert record["message"] == 'Workflow "Launch" created with 2 stage(s). Review and save when ready.'


@pytest.mark.asyncio
async def test_add_stage_messages():
    spec = get_tool("add_stage")
    at_end = await spec.handler(spec.parse_args({"name": "QA"}))
    at_pos = await spec.handler(spec.parse_args({"name": "QA", "position": 1}))
    assert at_end["message"] == 'Stage "QA" will be added at end.'
    assert at_pos["message"] == 'Stage "QA" will be added at position 1.'
    assert "position" not in at_pos["stage"]


@pytest.mark.asyncio
async def test_get_current_workflow_unsaved_and_saved(db, workflow_factory):
    spec = get_tool("get_current_workflow")
    unsaved = await spec.handler(spec.parse_args({"workflow_id": "temp-123"}), db=db, user_id="user-1")
    assert set(unsaved) == {"error", "message"}

    workflow = await workflow_factory(db)
    saved = await spec.handler(spec.parse_args({"workflow_id": workflow.id}), db=db, user_id="user-1")
    stages = saved["workflow"]["stages"]
    assert [s["name"] for s in stages] == ["Plan", "Ship"]
    assert [s["position"] for s in stages] == [0, 1]
    assert len(stages[0]["mini_prompts"]) == 2


@pytest.mark.asyncio
async def test_available_mini_prompts_filters_by_owner_and_search(db, workflow_factory):
    await workflow_factory(db, user_id="user-1")
    await workflow_factory(db, user_id="user-2", stages=[("Other", 1, True)])
    spec = get_tool("get_available_mini_prompts")

    everything = await spec.handler(spec.parse_args({}), db=db, user_id="user-1")
    assert everything["count"] == 3

    ship = await spec.handler(spec.parse_args({"search": "Ship"}), db=db, user_id="user-1")
    assert [mp["name"] for mp in ship["mini_prompts"]] == ["Ship step 1"]


@pytest.mark.asyncio
async def test_modify_mini_prompt_defaults_to_open_item():
    spec = get_tool("modify_mini_prompt")
    record = await spec.handler(spec.parse_args({"updates": {"content": "new"}}), mini_prompt_id="mp-9")
    assert record["mini_prompt_id"] == "mp-9"
    assert record["updates"] == {"content": "new"}


@pytest.mark.asyncio
async def test_translate_proposes_modification(monkeypatch):
    calls = []

    async def fake_complete_text(prompt, system="", model=None, temperature=None):
        calls.append(model)
        return "# Hallo"

    monkeypatch.setattr("playbook.tools.translation.llm.complete_text", fake_complete_text)
    spec = get_tool("translate_mini_prompt")
    record = await spec.handler(
        spec.parse_args({"target_language": "German", "content": "# Hello"}), mini_prompt_id="mp-1",
    )
    assert record["action"] == "modify_mini_prompt"
    assert record["updates"] == {"content": "# Hallo"}
    assert calls == ["gpt-4o"]
