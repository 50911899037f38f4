"""
ContextBuilder: assembles instructions, input messages and tool schemas
for one turn.

The mode selects both the instruction template and the tool subset. That
pairing is fixed in a ModeProfile, which refuses at construction time any
tool the mode does not permit.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import ConfigurationError
from ..core.flags import get_flags
from ..tools.registry import get_tool
from .context import ChatMode, PipelineContext
from .documents import WorkflowDocument, document_from_payload, ordered_items
from .prompts import INSTRUCTIONS

logger = logging.getLogger(__name__)

WORKFLOW_TOOLS = (
    "get_current_workflow",
    "get_available_mini_prompts",
    "create_workflow",
    "add_stage",
    "modify_stage",
    "remove_stage",
    "update_workflow_settings",
    "create_mini_prompt",
    "modify_mini_prompt",
)

MINI_PROMPT_TOOLS = (
    "get_available_mini_prompts",
    "create_mini_prompt",
    "modify_mini_prompt",
)


@dataclass(frozen=True)
class ModeProfile:
    """Instruction template + tool subset for one mode."""

    mode: ChatMode
    instructions: str
    tool_names: tuple[str, ...]

    def __post_init__(self):
        for name in self.tool_names:
            spec = get_tool(name)
            if spec is None:
                raise ConfigurationError(f"Tool '{name}' is not registered")
            if self.mode not in spec.modes:
                raise ConfigurationError(f"Tool '{name}' is not permitted in {self.mode.value} mode")

    def schemas(self) -> list[dict]:
        return [get_tool(name).schema() for name in self.tool_names]


@lru_cache
def get_mode_profile(mode: ChatMode) -> ModeProfile:
    mode = ChatMode(mode)
    if mode == ChatMode.WORKFLOW:
        tools = WORKFLOW_TOOLS
    else:
        tools = MINI_PROMPT_TOOLS
        if get_flags().enable_translation:
            tools = tools + ("translate_mini_prompt",)
    return ModeProfile(mode=mode, instructions=INSTRUCTIONS[mode], tool_names=tools)


# ── Snapshot sections ────────────────────────────────────────────────

def format_workflow_context(document: WorkflowDocument) -> str:
    lines = [
        "## Current Workflow Context",
        f"- ID: {document.id}",
        f"- Name: {document.name}",
    ]
    if document.description:
        lines.append(f"- Description: {document.description}")
    if document.complexity:
        lines.append(f"- Complexity: {document.complexity}")
    lines.append(f"- Multi-agent chat: {'enabled' if document.include_multi_agent_chat else 'disabled'}")

    stages = document.ordered_stages()
    if not stages:
        lines.append("- Stages: none yet")
        return "\n".join(lines)

    lines += ["", f"### Stages ({len(stages)})"]
    for pos, stage in enumerate(stages):
        flags = []
        if stage.with_review:
            flags.append("review")
        if stage.include_multi_agent_chat:
            flags.append("multi-agent chat")
        suffix = f" [{', '.join(flags)}]" if flags else ""
        lines.append(f"{pos}. {stage.name} (id: {stage.id or 'unsaved'}){suffix}")
        items = ordered_items(stage)
        if not items:
            lines.append("   - (no mini-prompts)")
        for item in items:
            lines.append(f"   - {item.name} (id: {item.id or 'unsaved'})")
    return "\n".join(lines)


def format_mini_prompt_context(mini_prompt_id: Optional[str], name: str, content: str) -> str:
    return "\n".join([
        "## Currently Viewing Mini-Prompt",
        f"- ID: {mini_prompt_id or 'unsaved'}",
        f"- Name: {name}",
        "",
        "### Content",
        content or "(empty)",
    ])


class ContextBuilder:
    """Fills the prompt package of a PipelineContext."""

    async def load_snapshot(
        self,
        db: AsyncSession,
        ctx: PipelineContext,
        workflow_context: Optional[dict] = None,
        mini_prompt_context: Optional[dict] = None,
    ) -> Optional[str]:
        """
        Snapshot section for the instructions. Client-supplied context wins
        (it includes unsaved edits); otherwise the saved document is loaded.
        """
        from ..services import workflow_repository as repo

        if ctx.mode == ChatMode.WORKFLOW:
            if workflow_context:
                document = document_from_payload(workflow_context)
            elif ctx.workflow_id:
                document = await repo.load_document(db, ctx.workflow_id)
            else:
                document = None
            return format_workflow_context(document) if document else None

        if mini_prompt_context:
            return format_mini_prompt_context(
                mini_prompt_context.get("id") or ctx.mini_prompt_id,
                mini_prompt_context.get("name") or "Untitled",
                mini_prompt_context.get("content") or "",
            )
        if ctx.mini_prompt_id:
            mp = await repo.get_mini_prompt(db, ctx.mini_prompt_id)
            if mp is not None:
                return format_mini_prompt_context(mp.id, mp.name, mp.content)
        return None

    def build(
        self,
        ctx: PipelineContext,
        continuation_token: Optional[str] = None,
        pending_tool_outputs: Optional[list[dict]] = None,
        summary: Optional[str] = None,
        snapshot: Optional[str] = None,
    ) -> PipelineContext:
        profile = get_mode_profile(ctx.mode)

        sections = [profile.instructions]
        if summary:
            sections.append(
                "## Previous Conversation Summary\n"
                f"{summary}\n\n"
                "The conversation was restarted to save context. Treat this summary as your memory of it."
            )
        if snapshot:
            sections.append(snapshot)

        messages: list[dict] = []
        # Tool outputs only make sense against the response that requested them
        if continuation_token and pending_tool_outputs:
            messages.extend(pending_tool_outputs)
        elif pending_tool_outputs:
            logger.warning("Dropping %d pending tool output(s) without a continuation token", len(pending_tool_outputs))
        messages.append({"role": "user", "content": ctx.message})

        ctx.instructions = "\n\n".join(sections)
        ctx.messages = messages
        ctx.tools = profile.schemas()
        ctx.tool_names = profile.tool_names
        ctx.continuation_token = continuation_token
        logger.debug(
            "Context built: mode=%s tools=%d carried=%d chained=%s",
            ctx.mode.value, len(ctx.tools), len(messages) - 1, bool(continuation_token),
        )
        return ctx
