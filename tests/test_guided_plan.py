from __future__ import annotations

import pytest

from playbook.pipeline.documents import (
    ContentItemSnapshot, StageSnapshot, WorkflowDocument, document_from_payload,
)
from playbook.pipeline.plan_builder import (
    COORDINATION, HANDOFF_MEMORY_BOARD, INTERNAL_AGENTS_CHAT, REVIEW,
    AutomaticPrompt, GuidedExecutionStep, StepLookupError,
    build_guided_plan, format_execution_plan, format_step, get_execution_plan, get_step, lookup_step,
)


def _items(stage: str, n: int) -> tuple[ContentItemSnapshot, ...]:
    return tuple(
        ContentItemSnapshot(id=f"{stage}-{i}", name=f"{stage} {i}", content=f"body {stage} {i}", order=i)
        for i in range(n)
    )


def _doc(counts: list[int], multi_agent: bool = True, with_review: bool = True) -> WorkflowDocument:
    return WorkflowDocument(
        id="wf-1",
        name="Release",
        include_multi_agent_chat=multi_agent,
        stages=tuple(
            StageSnapshot(id=f"s{i}", name=f"Stage {i}", order=i, with_review=with_review, items=_items(f"s{i}", n))
            for i, n in enumerate(counts)
        ),
    )


@pytest.mark.parametrize("counts", [[0], [1], [2, 3], [0, 4, 1], [5, 0, 0, 2]])
def test_length_with_coordination_and_review_everywhere(counts):
    plan = build_guided_plan(_doc(counts))
    assert plan.total_steps == sum(n * 2 for n in counts) + len(counts)
    assert [s.global_index for s in plan.steps] == list(range(plan.total_steps))


def test_each_item_followed_by_coordination_then_stage_review():
    plan = build_guided_plan(_doc([2]))
    kinds = [(s.type, s.automatic_kind) for s in plan.steps]
    assert kinds == [
        ("content", None), ("automatic", COORDINATION),
        ("content", None), ("automatic", COORDINATION),
        ("automatic", REVIEW),
    ]
    assert plan.steps[1].name == INTERNAL_AGENTS_CHAT
    assert plan.steps[-1].name == HANDOFF_MEMORY_BOARD


def test_review_for_empty_stage_and_no_review_when_disabled():
    doc = WorkflowDocument(
        id="wf-2",
        name="Mixed",
        stages=(
            StageSnapshot(id="a", name="A", order=0, with_review=True, items=_items("a", 1)),
            StageSnapshot(id="b", name="B", order=1, with_review=False, items=()),
        ),
    )
    plan = build_guided_plan(doc)
    assert plan.total_steps == 2
    assert plan.steps[0].type == "content"
    assert plan.steps[1].automatic_kind == REVIEW
    assert plan.steps[1].stage_name == "A"


def test_empty_stage_with_review_still_gets_review_step():
    plan = build_guided_plan(_doc([0, 0], multi_agent=False))
    assert [s.automatic_kind for s in plan.steps] == [REVIEW, REVIEW]


def test_stage_level_multi_agent_chat():
    doc = WorkflowDocument(
        id="wf-3",
        name="Stage scoped",
        include_multi_agent_chat=False,
        stages=(
            StageSnapshot(id="a", name="A", order=0, with_review=False, include_multi_agent_chat=True, items=_items("a", 2)),
            StageSnapshot(id="b", name="B", order=1, with_review=False, items=_items("b", 1)),
        ),
    )
    plan = build_guided_plan(doc)
    assert [s.automatic_kind for s in plan.steps] == [None, COORDINATION, None, COORDINATION, None]


def test_stages_and_items_follow_stored_order():
    doc = WorkflowDocument(
        id="wf-4",
        name="Unordered",
        stages=(
            StageSnapshot(id="late", name="Late", order=2, with_review=False, items=_items("late", 1)),
            StageSnapshot(id="early", name="Early", order=0, with_review=False, items=(
                ContentItemSnapshot(id="x2", name="second", order=1),
                ContentItemSnapshot(id="x1", name="first", order=0),
            )),
        ),
    )
    plan = build_guided_plan(doc)
    assert [s.name for s in plan.steps] == ["first", "second", "late 0"]
    assert [s.stage_index for s in plan.steps] == [0, 0, 1]


def test_seeded_automatic_prompt_overrides_default():
    custom = AutomaticPrompt(kind=REVIEW, name=HANDOFF_MEMORY_BOARD, description="custom", content="Seeded body")
    plan = build_guided_plan(_doc([1], multi_agent=False), {REVIEW: custom})
    assert plan.steps[-1].content == "Seeded body"


@pytest.mark.parametrize("index", [-1, 5, 99])
def test_out_of_range_returns_bounded_error(index):
    plan = build_guided_plan(_doc([2]))
    result = lookup_step(plan, index)
    assert isinstance(result, StepLookupError)
    assert result.message == f"Step {index} not found. This workflow has 5 steps (0-4)."
    assert result.total_steps == 5


def test_lookup_is_repeatable():
    plan = build_guided_plan(_doc([2, 1]))
    assert lookup_step(plan, 3) == lookup_step(build_guided_plan(_doc([2, 1])), 3)


def test_format_step_next_and_final():
    plan = build_guided_plan(_doc([1], multi_agent=False))
    first = format_step(plan, plan.steps[0])
    assert first.startswith("# Step 1/2")
    assert "**Type:** Mini-prompt" in first
    assert "Strictly follow" in first
    assert "`index=1`" in first

    last = format_step(plan, plan.steps[1])
    assert "[REVIEW]" in last
    assert "Workflow Complete" in last
    assert "Strictly follow" not in last


def test_format_execution_plan_has_stage_headers_and_badges():
    text = format_execution_plan(build_guided_plan(_doc([1, 1])))
    assert "# Execution Plan: Release" in text
    assert "**Total Steps:** 6" in text
    assert "## Stage 1: Stage 0" in text
    assert "## Stage 2: Stage 1" in text
    assert text.count("[AUTO]") == 2
    assert text.count("[REVIEW]") == 2


def test_document_from_constructor_payload():
    doc = document_from_payload({
        "id": "temp-1",
        "name": "Draft",
        "includeMultiAgentChat": True,
        "stages": [
            {"name": "One", "withReview": False, "miniPrompts": [{"miniPrompt": {"id": "m1", "name": "Spec"}, "order": 0}]},
        ],
    })
    assert doc.include_multi_agent_chat is True
    assert doc.stages[0].with_review is False
    assert doc.stages[0].items[0].name == "Spec"


@pytest.mark.asyncio
async def test_saved_document_plan_and_step(db, workflow_factory):
    workflow = await workflow_factory(db, stages=[("A", 1, True), ("B", 0, False)])

    plan = await get_execution_plan(db, workflow.id)
    assert plan.total_steps == 2
    assert plan.steps[0].name == "A step 1"
    assert plan.steps[1].name == HANDOFF_MEMORY_BOARD

    step = await get_step(db, workflow.id, 0)
    assert isinstance(step, GuidedExecutionStep)
    assert step.content == "Do A 1"

    missing = await get_step(db, workflow.id, 2)
    assert isinstance(missing, StepLookupError)
    assert "(0-1)" in missing.message

    unknown = await get_step(db, "no-such-workflow", 0)
    assert isinstance(unknown, StepLookupError)
    assert "not found" in unknown.message
