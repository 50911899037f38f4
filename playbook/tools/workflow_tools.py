"""
Workflow editing tools.

The read tools look at saved data. Every other tool only builds a proposal
record; the change is applied after the user approves the review plan.
"""

import logging
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.errors import ToolInputError
from ..pipeline.context import ChatMode
from ..services import workflow_repository as repo
from .registry import tool, ToolRisk

logger = logging.getLogger(__name__)

Complexity = Literal["XS", "S", "M", "L", "XL"]
Visibility = Literal["PUBLIC", "PRIVATE"]


# ── Argument models ──────────────────────────────────────────────────

class GetCurrentWorkflowArgs(BaseModel):
    workflow_id: str = Field(description="ID of the workflow being edited")


class GetMiniPromptsArgs(BaseModel):
    search: Optional[str] = Field(default=None, description="Optional text to filter by name or description")


class StageDraft(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Stage name")
    description: Optional[str] = Field(default=None, description="What happens in this stage")
    color: Optional[str] = Field(default=None, description="Hex color, e.g. #64748b")
    with_review: bool = Field(default=True, description="Add a review step at the end of the stage")
    include_multi_agent_chat: bool = Field(default=False, description="Coordinate after every mini-prompt")
    mini_prompt_ids: list[str] = Field(default_factory=list, description="IDs of existing mini-prompts, in order")


class CreateWorkflowArgs(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Workflow name")
    description: Optional[str] = Field(default=None, description="What the workflow is for")
    complexity: Optional[Complexity] = Field(default=None, description="Estimated size: XS, S, M, L or XL")
    include_multi_agent_chat: bool = Field(default=False)
    stages: list[StageDraft] = Field(default_factory=list, description="Stages in execution order")


class AddStageArgs(StageDraft):
    position: int = Field(default=-1, ge=-1, description="0-based insert position, -1 to append at the end")


class StageUpdates(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    color: Optional[str] = None
    with_review: Optional[bool] = None
    include_multi_agent_chat: Optional[bool] = None
    mini_prompt_ids: Optional[list[str]] = Field(default=None, description="Replaces the stage's mini-prompts")


class StageTarget(BaseModel):
    stage_id: Optional[str] = Field(default=None, description="ID of a saved stage")
    stage_position: Optional[int] = Field(default=None, ge=0, description="0-based position of the stage")

    @model_validator(mode="after")
    def _needs_target(self):
        if self.stage_id is None and self.stage_position is None:
            raise ValueError("either stage_id or stage_position is required")
        return self


class ModifyStageArgs(StageTarget):
    updates: StageUpdates


class RemoveStageArgs(StageTarget):
    pass


class WorkflowSettingsUpdates(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    complexity: Optional[Complexity] = None
    include_multi_agent_chat: Optional[bool] = None
    visibility: Optional[Visibility] = None


class UpdateWorkflowSettingsArgs(BaseModel):
    updates: WorkflowSettingsUpdates


# ── Read tools ───────────────────────────────────────────────────────

@tool(
    name="get_current_workflow",
    description=(
        "Get the saved version of the workflow the user is editing, with stages and mini-prompts. "
        "\n\nWhen to use: before modifying stages of a saved workflow, to learn ids and positions. "
        "Unsaved workflows are already described in your instructions."
    ),
    args_model=GetCurrentWorkflowArgs,
    modes=[ChatMode.WORKFLOW],
    risk=ToolRisk.READ,
)
async def get_current_workflow(args: GetCurrentWorkflowArgs, db=None, user_id: str = "", **kwargs) -> dict:
    if repo.is_unsaved_id(args.workflow_id):
        return {
            "error": "Workflow not saved yet",
            "message": "This workflow has not been saved. Use the workflow context from your instructions.",
        }
    if db is None:
        raise ToolInputError("No database session")

    document = await repo.load_document(db, args.workflow_id)
    if document is None:
        return {"error": "Workflow not found", "message": f"Workflow {args.workflow_id} was not found."}

    return {
        "success": True,
        "workflow": {
            "id": document.id,
            "name": document.name,
            "description": document.description,
            "complexity": document.complexity,
            "include_multi_agent_chat": document.include_multi_agent_chat,
            "stages": [
                {
                    "id": stage.id,
                    "position": pos,
                    "name": stage.name,
                    "description": stage.description,
                    "with_review": stage.with_review,
                    "include_multi_agent_chat": stage.include_multi_agent_chat,
                    "mini_prompts": [{"id": i.id, "name": i.name} for i in stage.items],
                }
                for pos, stage in enumerate(document.ordered_stages())
            ],
        },
    }


@tool(
    name="get_available_mini_prompts",
    description=(
        "List mini-prompts the user can place into stages (their own and system ones). "
        "\n\nWhen to use: before creating or modifying stages, to find mini-prompt ids."
    ),
    args_model=GetMiniPromptsArgs,
    modes=[ChatMode.WORKFLOW, ChatMode.MINI_PROMPT],
    risk=ToolRisk.READ,
)
async def get_available_mini_prompts(args: GetMiniPromptsArgs, db=None, user_id: str = "", **kwargs) -> dict:
    if db is None:
        raise ToolInputError("No database session")
    prompts = await repo.list_mini_prompts(db, user_id, search=args.search)
    return {
        "success": True,
        "mini_prompts": [
            {"id": mp.id, "name": mp.name, "description": mp.description, "is_system": mp.is_system}
            for mp in prompts
        ],
        "count": len(prompts),
    }


# ── Proposal tools ───────────────────────────────────────────────────

@tool(
    name="create_workflow",
    description=(
        "Propose a complete new workflow with its stages. "
        "\n\nThe user reviews the proposal before it is saved."
    ),
    args_model=CreateWorkflowArgs,
    modes=[ChatMode.WORKFLOW],
)
async def create_workflow(args: CreateWorkflowArgs, **kwargs) -> dict:
    n = len(args.stages)
    return {
        "success": True,
        "action": "create_workflow",
        "workflow": args.model_dump(),
        "message": f'Workflow "{args.name}" created with {n} stage(s). Review and save when ready.',
    }


@tool(
    name="add_stage",
    description="Propose adding a stage to the current workflow at a position (-1 = at the end).",
    args_model=AddStageArgs,
    modes=[ChatMode.WORKFLOW],
)
async def add_stage(args: AddStageArgs, **kwargs) -> dict:
    where = "end" if args.position == -1 else f"position {args.position}"
    return {
        "success": True,
        "action": "add_stage",
        "stage": args.model_dump(exclude={"position"}),
        "position": args.position,
        "message": f'Stage "{args.name}" will be added at {where}.',
    }


@tool(
    name="modify_stage",
    description="Propose changes to an existing stage, addressed by stage_id or 0-based stage_position.",
    args_model=ModifyStageArgs,
    modes=[ChatMode.WORKFLOW],
)
async def modify_stage(args: ModifyStageArgs, **kwargs) -> dict:
    updates = args.updates.model_dump(exclude_none=True)
    if not updates:
        raise ToolInputError("No stage fields to update")
    target = f"at position {args.stage_position}" if args.stage_position is not None else args.stage_id
    return {
        "success": True,
        "action": "modify_stage",
        "stage_id": args.stage_id,
        "stage_position": args.stage_position,
        "updates": updates,
        "message": f"Stage {target} will be updated.",
    }


@tool(
    name="remove_stage",
    description="Propose removing a stage, addressed by stage_id or 0-based stage_position.",
    args_model=RemoveStageArgs,
    modes=[ChatMode.WORKFLOW],
)
async def remove_stage(args: RemoveStageArgs, **kwargs) -> dict:
    target = f"at index {args.stage_position}" if args.stage_position is not None else args.stage_id
    return {
        "success": True,
        "action": "remove_stage",
        "stage_id": args.stage_id,
        "stage_position": args.stage_position,
        "message": f"Stage {target} will be removed.",
    }


@tool(
    name="update_workflow_settings",
    description="Propose changes to the workflow's name, description, complexity, visibility or multi-agent chat.",
    args_model=UpdateWorkflowSettingsArgs,
    modes=[ChatMode.WORKFLOW],
)
async def update_workflow_settings(args: UpdateWorkflowSettingsArgs, **kwargs) -> dict:
    updates = args.updates.model_dump(exclude_none=True)
    if not updates:
        raise ToolInputError("No workflow settings to update")
    return {
        "success": True,
        "action": "update_workflow_settings",
        "updates": updates,
        "message": "Workflow settings will be updated.",
    }
