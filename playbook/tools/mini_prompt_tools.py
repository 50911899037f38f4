"""
Mini-prompt tools. Offered in both modes; they only propose changes.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from ..core.errors import ToolInputError
from ..pipeline.context import ChatMode
from .registry import tool

logger = logging.getLogger(__name__)


class CreateMiniPromptArgs(BaseModel):
    name: str = Field(min_length=1, max_length=255, description="Mini-prompt name")
    description: Optional[str] = Field(default=None, description="One-line summary")
    content: str = Field(min_length=1, description="Markdown body of the mini-prompt")
    stage_position: Optional[int] = Field(
        default=None, ge=0, description="Attach to the stage at this 0-based position of the current workflow",
    )


class MiniPromptUpdates(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    content: Optional[str] = None


class ModifyMiniPromptArgs(BaseModel):
    mini_prompt_id: Optional[str] = Field(
        default=None, description="ID of the mini-prompt; defaults to the one being viewed",
    )
    updates: MiniPromptUpdates


@tool(
    name="create_mini_prompt",
    description=(
        "Propose a new reusable mini-prompt. "
        "\n\nMini-prompts are markdown instructions executed as one step of a workflow."
    ),
    args_model=CreateMiniPromptArgs,
    modes=[ChatMode.WORKFLOW, ChatMode.MINI_PROMPT],
)
async def create_mini_prompt(args: CreateMiniPromptArgs, **kwargs) -> dict:
    record = {
        "success": True,
        "action": "create_mini_prompt",
        "mini_prompt": args.model_dump(exclude={"stage_position"}),
        "message": f'Mini-prompt "{args.name}" created. Review and save when ready.',
    }
    if args.stage_position is not None:
        record["stage_position"] = args.stage_position
    return record


@tool(
    name="modify_mini_prompt",
    description="Propose changes to an existing mini-prompt's name, description or content.",
    args_model=ModifyMiniPromptArgs,
    modes=[ChatMode.WORKFLOW, ChatMode.MINI_PROMPT],
)
async def modify_mini_prompt(args: ModifyMiniPromptArgs, mini_prompt_id: Optional[str] = None, **kwargs) -> dict:
    target = args.mini_prompt_id or mini_prompt_id
    if not target:
        raise ToolInputError("mini_prompt_id is required when no mini-prompt is open")
    updates = args.updates.model_dump(exclude_none=True)
    if not updates:
        raise ToolInputError("No mini-prompt fields to update")
    return {
        "success": True,
        "action": "modify_mini_prompt",
        "mini_prompt_id": target,
        "updates": updates,
        "message": "Mini-prompt will be updated.",
    }
