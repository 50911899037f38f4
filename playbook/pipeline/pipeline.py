"""
AgentPipeline: one chat turn, start to finish.

Fixed order:
  1. find session + continuation state (auto-reset summary if over budget)
  2. build context (instructions, input, tools for the mode)
  3. execute completion (bounded tool rounds)
  4. normalize tool invocations
  5. build review plan from the proposals
  6. persist session, counters and messages

Anything raised before step 6 leaves the session untouched.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import new_uuid
from ..services.workflow_repository import is_unsaved_id
from .context import ChatMode, PipelineContext, TokenUsage, ToolInvocation
from .context_builder import ContextBuilder
from .executor import CompletionExecutor
from .normalizer import normalize_invocations
from .plan_builder import ExecutionPlan, build_review_plan
from .session_store import SessionPersister, SessionStore

logger = logging.getLogger(__name__)


@dataclass
class TurnResult:
    session_id: str
    message_id: str
    content: str
    tool_invocations: list[ToolInvocation] = field(default_factory=list)
    execution_plan: Optional[ExecutionPlan] = None
    usage: TokenUsage = field(default_factory=TokenUsage)
    auto_reset: bool = False

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "message": {
                "id": self.message_id,
                "role": "assistant",
                "content": self.content,
                "tool_invocations": [inv.to_dict() for inv in self.tool_invocations],
            },
            "execution_plan": self.execution_plan.to_dict() if self.execution_plan else None,
            "token_usage": {
                "input": self.usage.input,
                "output": self.usage.output,
                "total": self.usage.total,
            },
            "auto_reset": self.auto_reset,
        }


class AgentPipeline:
    """
    Wires the turn components together. Pass a provider to replace the
    OpenAI client (tests, alternative backends).
    """

    def __init__(self, provider: Any = None, max_rounds: Optional[int] = None):
        self.store = SessionStore(provider=provider)
        self.builder = ContextBuilder()
        self.executor = CompletionExecutor(provider=provider, max_rounds=max_rounds)
        self.persister = SessionPersister()

    async def run(
        self,
        db: AsyncSession,
        user_id: str,
        message: str,
        mode: ChatMode = ChatMode.WORKFLOW,
        session_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        mini_prompt_id: Optional[str] = None,
        workflow_context: Optional[dict] = None,
        mini_prompt_context: Optional[dict] = None,
    ) -> TurnResult:
        start = time.monotonic()
        mode = ChatMode(mode)
        ctx = PipelineContext(
            user_id=user_id,
            mode=mode,
            message=message,
            workflow_id=None if is_unsaved_id(workflow_id) else workflow_id,
            mini_prompt_id=mini_prompt_id or None,
        )

        # ── 1. Session ───────────────────────────────────────────
        session = await self.store.find(
            db, user_id, mode,
            session_id=session_id,
            workflow_id=ctx.workflow_id,
            mini_prompt_id=ctx.mini_prompt_id,
        )
        state = await self.store.load_state(db, session)
        if state.session is not None:
            ctx.workflow_id = ctx.workflow_id or state.session.workflow_id
            ctx.mini_prompt_id = ctx.mini_prompt_id or state.session.mini_prompt_id

        if state.needs_reset:
            ctx.reset_summary = await self.store.summarize(db, state.session)
            token, pending, summary = None, [], ctx.reset_summary
        else:
            ctx.session_id = state.session.id if state.session else None
            token, pending, summary = state.continuation_token, state.pending_tool_outputs, state.summary

        # ── 2. Context ───────────────────────────────────────────
        snapshot = await self.builder.load_snapshot(db, ctx, workflow_context, mini_prompt_context)
        self.builder.build(
            ctx,
            continuation_token=token,
            pending_tool_outputs=pending,
            summary=summary,
            snapshot=snapshot,
        )

        # ── 3. Completion ────────────────────────────────────────
        result = await self.executor.execute(ctx, db=db)
        ctx.completion = result

        # ── 4-5. Normalize + review plan ─────────────────────────
        ctx.invocations = normalize_invocations(result.tool_results)
        message_id = new_uuid()
        ctx.plan = build_review_plan(ctx.invocations, message_id)

        # ── 6. Persist ───────────────────────────────────────────
        saved = await self.persister.commit(db, ctx, state, result, ctx.invocations, message_id)

        logger.info(
            "Turn complete: session=%s mode=%s tools=%d plan=%d (%.0fms)",
            saved.id, mode.value, len(ctx.invocations),
            len(ctx.plan.items) if ctx.plan else 0, (time.monotonic() - start) * 1000,
        )
        return TurnResult(
            session_id=saved.id,
            message_id=message_id,
            content=result.text,
            tool_invocations=ctx.invocations,
            execution_plan=ctx.plan,
            usage=result.usage,
            auto_reset=state.needs_reset,
        )
