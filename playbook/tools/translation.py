"""
Mini-prompt translation. Registered only when FF_ENABLE_TRANSLATION is on.

The translation itself runs on the provider; the result comes back as a
modify_mini_prompt proposal like any other edit.
"""

import logging
import time
from typing import Optional

from pydantic import BaseModel, Field

from ..core.config import get_settings
from ..core.errors import ToolInputError
from ..pipeline.context import ChatMode
from ..services import llm
from ..services import workflow_repository as repo
from .registry import tool, ToolRisk

logger = logging.getLogger(__name__)

TRANSLATION_SYSTEM = (
    "You translate prompt documents. Preserve markdown structure exactly: "
    "headings, lists, code blocks, links and placeholders such as {{variable}} stay as they are. "
    "Do not translate code. Return only the translated document."
)


class TranslateMiniPromptArgs(BaseModel):
    target_language: str = Field(min_length=2, description="Language to translate into, e.g. 'German' or 'es'")
    mini_prompt_id: Optional[str] = Field(default=None, description="Defaults to the mini-prompt being viewed")
    content: Optional[str] = Field(default=None, description="Unsaved content to translate instead of the stored one")


@tool(
    name="translate_mini_prompt",
    description=(
        "Translate a mini-prompt into another language, keeping its markdown intact. "
        "\n\nThe translation is proposed as an update; the user reviews it before saving."
    ),
    args_model=TranslateMiniPromptArgs,
    modes=[ChatMode.MINI_PROMPT],
    risk=ToolRisk.EXTERNAL,
)
async def translate_mini_prompt(
    args: TranslateMiniPromptArgs, db=None, mini_prompt_id: Optional[str] = None, **kwargs
) -> dict:
    target = args.mini_prompt_id or mini_prompt_id
    content = args.content
    if content is None:
        mp = await repo.get_mini_prompt(db, target) if db is not None and target else None
        if mp is None:
            raise ToolInputError("Nothing to translate: mini-prompt not found and no content given")
        content = mp.content
    if not target:
        raise ToolInputError("mini_prompt_id is required when no mini-prompt is open")

    start = time.monotonic()
    translated = await llm.complete_text(
        prompt=f"Translate the following document into {args.target_language}:\n\n{content}",
        system=TRANSLATION_SYSTEM,
        model=get_settings().translation_model,
        temperature=0.2,
    )
    logger.info(
        "Translated mini-prompt %s to %s (%d chars, %.0fms)",
        target, args.target_language, len(translated), (time.monotonic() - start) * 1000,
    )
    return {
        "success": True,
        "action": "modify_mini_prompt",
        "mini_prompt_id": target,
        "updates": {"content": translated},
        "message": f"Mini-prompt translated to {args.target_language}. Review and save when ready.",
    }
