from __future__ import annotations

from playbook.pipeline.context import InvocationState, ToolInvocation
from playbook.pipeline.plan_builder import build_review_plan, describe


def _inv(call_id: str, tool_name: str, output: dict) -> ToolInvocation:
    return ToolInvocation(tool_call_id=call_id, tool_name=tool_name, output=output, state=InvocationState.RESULT)


def test_one_item_per_proposal_with_stable_keys():
    plan = build_review_plan([
        _inv("c1", "create_workflow", {
            "success": True, "action": "create_workflow",
            "workflow": {"name": "Launch", "stages": [{"name": "A"}, {"name": "B"}]},
        }),
        _inv("c2", "modify_stage", {
            "success": True, "action": "modify_stage", "stage_position": 1, "updates": {"name": "QA"},
        }),
    ], message_id="m1")

    assert [i.key for i in plan.items] == ["m1:c1", "m1:c2"]
    assert plan.items[0].description == "Create workflow 'Launch' with 2 stages"
    assert plan.items[1].description == "Modify stage at position 1: name"
    assert plan.summary.startswith("2 proposed changes: ")


def test_reads_and_failures_are_not_plan_items():
    plan = build_review_plan([
        _inv("c1", "get_current_workflow", {"success": True, "workflow": {"name": "Saved"}}),
        _inv("c2", "add_stage", {"success": False, "error": "boom", "message": "boom"}),
        _inv("c3", "get_available_mini_prompts", {"success": True, "mini_prompts": []}),
    ], message_id="m1")
    assert plan is None


def test_bare_record_action_is_inferred():
    plan = build_review_plan([
        _inv("c1", "", {"success": True, "stage": {"name": "Deploy"}, "position": -1}),
    ], message_id="m2")
    [item] = plan.items
    assert item.action == "add_stage"
    assert item.description == "Add stage 'Deploy' at the end"
    assert plan.summary == "1 proposed change: Add stage 'Deploy' at the end"


def test_translation_counts_as_mini_prompt_modification():
    plan = build_review_plan([
        _inv("c1", "translate_mini_prompt", {
            "success": True, "action": "modify_mini_prompt", "mini_prompt_id": "mp-1", "updates": {"content": "x"},
        }),
    ], message_id="m3")
    assert plan.items[0].tool_name == "translate_mini_prompt"
    assert plan.items[0].description == "Modify mini-prompt mp-1: content"


def test_descriptions():
    assert describe("add_stage", {"stage": {"name": "QA"}, "position": 2}) == "Add stage 'QA' at position 2"
    assert describe("remove_stage", {"stage_position": 0}) == "Remove stage at position 0"
    assert describe("remove_stage", {"stage_id": "st-1"}) == "Remove stage st-1"
    assert describe("update_workflow_settings", {"updates": {"name": "x", "complexity": "M"}}) == (
        "Update workflow settings: complexity, name"
    )
    assert describe("create_mini_prompt", {"mini_prompt": {"name": "Lint"}}) == "Create mini-prompt 'Lint'"
    assert describe("create_workflow", {"workflow": {"name": "Solo", "stages": [{}]}}) == (
        "Create workflow 'Solo' with 1 stage"
    )
