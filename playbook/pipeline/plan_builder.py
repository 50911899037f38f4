"""
Execution plans.

Two unrelated outputs share this module:

  Review plan:  the proposals of one chat turn, described for a human who
                approves them before anything touches the stored document.
  Guided plan:  a saved workflow document flattened into numbered steps,
                with automatic prompts interleaved, for step-by-step
                execution by an external client.

Both are plain values built by pure functions. Loading documents and
automatic prompts from the database lives in services.workflow_repository.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from .context import ToolInvocation
from .documents import WorkflowDocument, ordered_items
from .normalizer import PROPOSAL_ACTIONS, infer_action

logger = logging.getLogger(__name__)


# ── Review plan ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExecutionPlanItem:
    key: str              # "<message_id>:<tool_call_id>", stable across re-submits
    tool_name: str
    action: str
    description: str
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "tool_name": self.tool_name,
            "action": self.action,
            "description": self.description,
            "data": self.data,
        }


@dataclass(frozen=True)
class ExecutionPlan:
    items: tuple[ExecutionPlanItem, ...]
    summary: str

    def to_dict(self) -> dict:
        return {"items": [i.to_dict() for i in self.items], "summary": self.summary}


def _position_phrase(position) -> str:
    if position is None or position == -1:
        return "at the end"
    return f"at position {position}"


def _stage_ref(record: dict) -> str:
    if record.get("stage_position") is not None:
        return f"at position {record['stage_position']}"
    if record.get("stage_id"):
        return record["stage_id"]
    return "(unspecified)"


def describe(action: str, record: dict) -> str:
    """Human-readable one-liner for a proposal record."""
    if action == "create_workflow":
        wf = record.get("workflow") or {}
        n = len(wf.get("stages") or [])
        return f"Create workflow '{wf.get('name', 'Untitled')}' with {n} stage{'s' if n != 1 else ''}"

    if action == "add_stage":
        stage = record.get("stage") or {}
        return f"Add stage '{stage.get('name', 'Untitled')}' {_position_phrase(record.get('position'))}"

    if action == "modify_stage":
        fields = ", ".join(sorted((record.get("updates") or {}).keys()))
        base = f"Modify stage {_stage_ref(record)}"
        return f"{base}: {fields}" if fields else base

    if action == "remove_stage":
        return f"Remove stage {_stage_ref(record)}"

    if action == "update_workflow_settings":
        fields = ", ".join(sorted((record.get("updates") or {}).keys()))
        return f"Update workflow settings: {fields or 'no changes'}"

    if action == "create_mini_prompt":
        mp = record.get("mini_prompt") or record.get("miniPrompt") or {}
        return f"Create mini-prompt '{mp.get('name', 'Untitled')}'"

    if action == "modify_mini_prompt":
        fields = ", ".join(sorted((record.get("updates") or {}).keys()))
        base = f"Modify mini-prompt {record.get('mini_prompt_id') or '(current)'}"
        return f"{base}: {fields}" if fields else base

    return record.get("message") or f"Apply {action}"


def build_review_plan(
    invocations: Sequence[ToolInvocation],
    message_id: str,
) -> Optional[ExecutionPlan]:
    """
    One plan item per successful proposal. Returns None when the turn
    proposed nothing (read-only lookups, failed tool calls).
    """
    items = []
    for pos, inv in enumerate(invocations):
        record = inv.output or {}
        if record.get("success") is not True:
            continue
        action = infer_action(inv.tool_name, record)
        if action not in PROPOSAL_ACTIONS:
            continue
        call_id = inv.tool_call_id or f"call-{pos}"
        items.append(ExecutionPlanItem(
            key=f"{message_id}:{call_id}",
            tool_name=inv.tool_name or action,
            action=action,
            description=describe(action, record),
            data=dict(record),
        ))

    if not items:
        return None

    n = len(items)
    summary = f"{n} proposed change{'s' if n != 1 else ''}: " + "; ".join(i.description for i in items)
    return ExecutionPlan(items=tuple(items), summary=summary)


# ── Guided execution plan ────────────────────────────────────────────

REVIEW = "review"
COORDINATION = "coordination"

HANDOFF_MEMORY_BOARD = "Handoff Memory Board"
INTERNAL_AGENTS_CHAT = "Internal Agents Chat"


@dataclass(frozen=True)
class AutomaticPrompt:
    kind: str
    name: str
    description: str
    content: str


DEFAULT_AUTOMATIC_PROMPTS = {
    REVIEW: AutomaticPrompt(
        kind=REVIEW,
        name=HANDOFF_MEMORY_BOARD,
        description=(
            "Document phase completion, track file changes, and capture learnings. "
            "Automatically added to stages with review enabled."
        ),
        content=(
            "Before moving on, update the handoff memory board for this stage:\n\n"
            "1. Summarize what was completed in this stage.\n"
            "2. List every file created, modified or deleted.\n"
            "3. Record decisions made and the reasons behind them.\n"
            "4. Note open issues and anything the next stage must know.\n\n"
            "Ask the user to review the summary before continuing."
        ),
    ),
    COORDINATION: AutomaticPrompt(
        kind=COORDINATION,
        name=INTERNAL_AGENTS_CHAT,
        description=(
            "Enable multi-agent coordination through internal chat for parallel work execution. "
            "Automatically added after each mini-prompt when multi-agent chat is enabled."
        ),
        content=(
            "Post a short status update to the internal agents chat:\n\n"
            "- what you just finished\n"
            "- what you are about to start\n"
            "- anything another agent is blocked on or should pick up\n\n"
            "Read new messages from other agents and resolve conflicts before continuing."
        ),
    ),
}


@dataclass(frozen=True)
class GuidedExecutionStep:
    global_index: int
    stage_index: int
    stage_name: str
    type: str                       # "content" | "automatic"
    name: str
    content: str
    description: Optional[str] = None
    automatic_kind: Optional[str] = None   # "review" | "coordination"

    def to_dict(self) -> dict:
        return {
            "global_index": self.global_index,
            "stage_index": self.stage_index,
            "stage_name": self.stage_name,
            "type": self.type,
            "automatic_kind": self.automatic_kind,
            "name": self.name,
            "description": self.description,
            "content": self.content,
        }


@dataclass(frozen=True)
class GuidedExecutionPlan:
    document_id: str
    document_name: str
    include_multi_agent_chat: bool
    steps: tuple[GuidedExecutionStep, ...]

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict:
        return {
            "document_id": self.document_id,
            "document_name": self.document_name,
            "include_multi_agent_chat": self.include_multi_agent_chat,
            "total_steps": self.total_steps,
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass(frozen=True)
class StepLookupError:
    """Bounded lookup failure. Returned, never raised."""
    message: str
    index: int
    total_steps: int = 0

    def to_dict(self) -> dict:
        return {"error": self.message, "index": self.index, "total_steps": self.total_steps}


def build_guided_plan(
    document: WorkflowDocument,
    automatic_prompts: Optional[dict] = None,
) -> GuidedExecutionPlan:
    """
    Flatten stages then items into contiguous steps.
    After each item: a coordination prompt when multi-agent chat is on
    for the workflow or the stage. End of each stage: a review prompt
    when the stage has with_review, also for stages without items.
    """
    prompts = {**DEFAULT_AUTOMATIC_PROMPTS, **(automatic_prompts or {})}
    review, coordination = prompts[REVIEW], prompts[COORDINATION]

    steps: list[GuidedExecutionStep] = []

    def automatic(stage_index: int, stage_name: str, prompt: AutomaticPrompt) -> GuidedExecutionStep:
        return GuidedExecutionStep(
            global_index=len(steps),
            stage_index=stage_index,
            stage_name=stage_name,
            type="automatic",
            automatic_kind=prompt.kind,
            name=prompt.name,
            description=prompt.description,
            content=prompt.content,
        )

    for stage_index, stage in enumerate(document.ordered_stages()):
        multi_agent = document.include_multi_agent_chat or stage.include_multi_agent_chat
        for item in ordered_items(stage):
            steps.append(GuidedExecutionStep(
                global_index=len(steps),
                stage_index=stage_index,
                stage_name=stage.name,
                type="content",
                name=item.name,
                description=item.description,
                content=item.content,
            ))
            if multi_agent:
                steps.append(automatic(stage_index, stage.name, coordination))
        if stage.with_review:
            steps.append(automatic(stage_index, stage.name, review))

    return GuidedExecutionPlan(
        document_id=document.id,
        document_name=document.name,
        include_multi_agent_chat=document.include_multi_agent_chat,
        steps=tuple(steps),
    )


def lookup_step(plan: GuidedExecutionPlan, index: int) -> Union[GuidedExecutionStep, StepLookupError]:
    total = plan.total_steps
    if not isinstance(index, int) or index < 0 or index >= total:
        if total:
            bounds = f"(0-{total - 1})"
        else:
            bounds = "(none)"
        return StepLookupError(
            message=f"Step {index} not found. This workflow has {total} steps {bounds}.",
            index=index if isinstance(index, int) else -1,
            total_steps=total,
        )
    return plan.steps[index]


async def get_execution_plan(db: AsyncSession, document_id: str) -> Optional[GuidedExecutionPlan]:
    """Guided plan of a saved workflow, recomputed from stored state. None if unknown."""
    from ..services.workflow_repository import load_automatic_prompts, load_document

    document = await load_document(db, document_id)
    if document is None:
        return None
    return build_guided_plan(document, await load_automatic_prompts(db))


async def get_step(
    db: AsyncSession, document_id: str, index: int,
) -> Union[GuidedExecutionStep, StepLookupError]:
    plan = await get_execution_plan(db, document_id)
    if plan is None:
        return StepLookupError(
            message=f'Workflow "{document_id}" not found or you don\'t have access to it.',
            index=index,
        )
    return lookup_step(plan, index)


# ── Markdown rendering ───────────────────────────────────────────────

def _badge(step: GuidedExecutionStep) -> str:
    return "[REVIEW]" if step.automatic_kind == REVIEW else "[AUTO]"


def format_execution_plan(plan: GuidedExecutionPlan) -> str:
    lines = [
        f"# Execution Plan: {plan.document_name}",
        "",
        f"**Total Steps:** {plan.total_steps}",
        f"**Multi-Agent Chat:** {'Enabled' if plan.include_multi_agent_chat else 'Disabled'}",
        "",
        "---",
        "",
    ]
    current_stage = -1
    for step in plan.steps:
        if step.stage_index != current_stage:
            current_stage = step.stage_index
            lines += [f"## Stage {current_stage + 1}: {step.stage_name}", ""]
        if step.type == "automatic":
            lines += [
                f"### {step.global_index + 1}. {step.name} {_badge(step)}",
                "",
                f"> **Auto-attached prompt** - {step.description or 'No description'}",
                "",
            ]
        else:
            lines += [f"### {step.global_index + 1}. {step.name}", ""]
            if step.description:
                lines += [step.description, ""]
    return "\n".join(lines)


def format_step(plan: GuidedExecutionPlan, step: GuidedExecutionStep) -> str:
    total = plan.total_steps
    out = [f"# Step {step.global_index + 1}/{total}", "", f"**Stage:** {step.stage_name}"]
    if step.type == "automatic":
        out += [f"**Type:** Auto-attached prompt {_badge(step)}", ""]
    else:
        out += ["**Type:** Mini-prompt", ""]

    out += [f"## {step.name}", ""]
    if step.description:
        out += [step.description, ""]

    if step.content:
        out += ["---", "", step.content, ""]
        if step.type == "content":
            out += ["---", "", "**Important:** Strictly follow all the steps outlined above.", ""]

    next_index = step.global_index + 1
    if next_index < total:
        out += [
            "---",
            "",
            f"**Next Step:** After completing this step, automatically proceed to step "
            f"{next_index + 1}/{total} by calling `get_step` with "
            f'`workflow_id="{plan.document_id}"` and `index={next_index}`.',
        ]
    else:
        out += [
            "---",
            "",
            "**Workflow Complete:** This is the final step. "
            "After completing this step, the workflow execution is finished.",
        ]
    return "\n".join(out)
