"""
Workflow persistence: snapshots for the pipeline, and the approve-then-apply
step that is the only path by which chat proposals reach stored documents.

apply_plan is all-or-nothing per submitted plan (one savepoint) and
idempotent per item (AppliedPlanItem ledger keyed by the plan item key).
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..core.errors import PlanApplyError
from ..core.flags import get_flags
from ..models.workflow import (
    AppliedPlanItem, MiniPrompt, StageMiniPrompt, Workflow, WorkflowStage,
)
from ..pipeline.documents import ContentItemSnapshot, StageSnapshot, WorkflowDocument
from ..pipeline.plan_builder import (
    COORDINATION, HANDOFF_MEMORY_BOARD, INTERNAL_AGENTS_CHAT, REVIEW, AutomaticPrompt,
)
from . import background

logger = logging.getLogger(__name__)


def is_unsaved_id(workflow_id: Optional[str]) -> bool:
    """Client-side ids for documents that were never saved."""
    return not workflow_id or workflow_id == "new" or workflow_id.startswith("temp-")


# ── Reads ────────────────────────────────────────────────────────────

async def get_workflow(db: AsyncSession, workflow_id: str) -> Optional[Workflow]:
    if is_unsaved_id(workflow_id):
        return None
    result = await db.execute(
        select(Workflow)
        .where(Workflow.id == workflow_id, Workflow.is_active.is_(True))
        .options(
            selectinload(Workflow.stages)
            .selectinload(WorkflowStage.items)
            .selectinload(StageMiniPrompt.mini_prompt)
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def to_document(workflow: Workflow) -> WorkflowDocument:
    return WorkflowDocument(
        id=workflow.id,
        name=workflow.name,
        description=workflow.description,
        complexity=workflow.complexity,
        include_multi_agent_chat=workflow.include_multi_agent_chat,
        stages=tuple(
            StageSnapshot(
                id=stage.id,
                name=stage.name,
                order=stage.order,
                description=stage.description,
                with_review=stage.with_review,
                include_multi_agent_chat=stage.include_multi_agent_chat,
                items=tuple(
                    ContentItemSnapshot(
                        id=link.mini_prompt.id,
                        name=link.mini_prompt.name,
                        description=link.mini_prompt.description,
                        content=link.mini_prompt.content,
                        order=link.order,
                    )
                    for link in stage.items
                    if link.mini_prompt is not None
                ),
            )
            for stage in workflow.stages
        ),
    )


async def load_document(db: AsyncSession, workflow_id: str) -> Optional[WorkflowDocument]:
    workflow = await get_workflow(db, workflow_id)
    return to_document(workflow) if workflow else None


async def load_automatic_prompts(db: AsyncSession) -> dict:
    """Seeded system prompts override the built-in defaults."""
    names = {HANDOFF_MEMORY_BOARD: REVIEW, INTERNAL_AGENTS_CHAT: COORDINATION}
    result = await db.execute(
        select(MiniPrompt).where(
            MiniPrompt.name.in_(list(names)),
            MiniPrompt.is_system.is_(True),
            MiniPrompt.is_active.is_(True),
        )
    )
    prompts = {}
    for mp in result.scalars():
        kind = names[mp.name]
        prompts[kind] = AutomaticPrompt(
            kind=kind, name=mp.name, description=mp.description or "", content=mp.content,
        )
    return prompts


async def get_mini_prompt(db: AsyncSession, mini_prompt_id: str) -> Optional[MiniPrompt]:
    if not mini_prompt_id:
        return None
    return await db.get(MiniPrompt, mini_prompt_id)


async def list_mini_prompts(
    db: AsyncSession, user_id: str, search: Optional[str] = None, limit: int = 50,
) -> list[MiniPrompt]:
    """The user's own mini-prompts plus system ones, newest first."""
    query = select(MiniPrompt).where(
        MiniPrompt.is_active.is_(True),
        or_(MiniPrompt.user_id == user_id, MiniPrompt.is_system.is_(True)),
    )
    if search:
        pattern = f"%{search}%"
        query = query.where(or_(MiniPrompt.name.ilike(pattern), MiniPrompt.description.ilike(pattern)))
    result = await db.execute(query.order_by(MiniPrompt.created_at.desc()).limit(limit))
    return list(result.scalars())


# ── Apply (phase 2 of propose → approve → apply) ─────────────────────

@dataclass
class ApplyResult:
    workflow_id: Optional[str]
    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"workflow_id": self.workflow_id, "applied": self.applied, "skipped": self.skipped}


async def _require_workflow(db: AsyncSession, user_id: str, workflow_id: Optional[str]) -> Workflow:
    workflow = await get_workflow(db, workflow_id) if workflow_id else None
    if workflow is None:
        raise PlanApplyError(f"Workflow {workflow_id or '(none)'} not found")
    if workflow.user_id != user_id:
        raise PlanApplyError("You can only edit your own workflows")
    return workflow


def _resolve_stage(workflow: Workflow, data: dict) -> WorkflowStage:
    stages = list(workflow.stages)
    if data.get("stage_id"):
        for stage in stages:
            if stage.id == data["stage_id"]:
                return stage
        raise PlanApplyError(f"Stage {data['stage_id']} not found")
    position = data.get("stage_position")
    if position is None or not 0 <= position < len(stages):
        raise PlanApplyError(f"Stage position {position} out of range (0-{len(stages) - 1})")
    return stages[position]


async def _mini_prompt_links(db: AsyncSession, user_id: str, ids: list) -> list[StageMiniPrompt]:
    links = []
    for order, mp_id in enumerate(ids or []):
        mp = await get_mini_prompt(db, mp_id)
        if mp is None or not (mp.is_system or mp.user_id == user_id):
            raise PlanApplyError(f"Mini-prompt {mp_id} not found")
        links.append(StageMiniPrompt(mini_prompt_id=mp.id, order=order))
    return links


def _renumber(stages: list[WorkflowStage]) -> None:
    for order, stage in enumerate(stages):
        stage.order = order


_STAGE_FIELDS = ("name", "description", "color", "with_review", "include_multi_agent_chat")
_WORKFLOW_FIELDS = ("name", "description", "complexity", "include_multi_agent_chat", "visibility")
_MINI_PROMPT_FIELDS = ("name", "description", "content")


async def _apply_item(db: AsyncSession, user_id: str, workflow_id: Optional[str], item: dict) -> Optional[str]:
    """Apply one approved item. Returns the workflow id later items should target."""
    action = item.get("action")
    data = item.get("data") or {}

    if action == "create_workflow":
        spec = data.get("workflow") or {}
        workflow = Workflow(
            user_id=user_id,
            name=spec.get("name") or "Untitled Workflow",
            description=spec.get("description"),
            complexity=spec.get("complexity"),
            include_multi_agent_chat=bool(spec.get("include_multi_agent_chat", False)),
        )
        for order, s in enumerate(spec.get("stages") or []):
            stage = WorkflowStage(
                name=s.get("name") or f"Stage {order + 1}",
                description=s.get("description"),
                color=s.get("color"),
                order=order,
                with_review=bool(s.get("with_review", True)),
                include_multi_agent_chat=bool(s.get("include_multi_agent_chat", False)),
            )
            stage.items = await _mini_prompt_links(db, user_id, s.get("mini_prompt_ids"))
            workflow.stages.append(stage)
        db.add(workflow)
        await db.flush()
        return workflow.id

    if action == "create_mini_prompt":
        spec = data.get("mini_prompt") or data.get("miniPrompt") or {}
        mp = MiniPrompt(
            user_id=user_id,
            name=spec.get("name") or "Untitled",
            description=spec.get("description"),
            content=spec.get("content") or "",
        )
        db.add(mp)
        await db.flush()
        if data.get("stage_position") is not None:
            workflow = await _require_workflow(db, user_id, workflow_id)
            stage = _resolve_stage(workflow, data)
            stage.items.append(StageMiniPrompt(mini_prompt_id=mp.id, order=len(stage.items)))
            await db.flush()
        return workflow_id

    if action == "modify_mini_prompt":
        mp = await get_mini_prompt(db, data.get("mini_prompt_id"))
        if mp is None or mp.user_id != user_id or mp.is_system:
            raise PlanApplyError(f"Mini-prompt {data.get('mini_prompt_id')} cannot be modified")
        for name, value in (data.get("updates") or {}).items():
            if name in _MINI_PROMPT_FIELDS and value is not None:
                setattr(mp, name, value)
        return workflow_id

    workflow = await _require_workflow(db, user_id, workflow_id)
    stages = list(workflow.stages)

    if action == "add_stage":
        s = data.get("stage") or {}
        stage = WorkflowStage(
            name=s.get("name") or f"Stage {len(stages) + 1}",
            description=s.get("description"),
            color=s.get("color"),
            with_review=bool(s.get("with_review", True)),
            include_multi_agent_chat=bool(s.get("include_multi_agent_chat", False)),
        )
        stage.items = await _mini_prompt_links(db, user_id, s.get("mini_prompt_ids"))
        position = data.get("position")
        if position is None or position < 0 or position > len(stages):
            stages.append(stage)
        else:
            stages.insert(position, stage)
        _renumber(stages)
        workflow.stages.append(stage)

    elif action == "modify_stage":
        stage = _resolve_stage(workflow, data)
        updates = data.get("updates") or {}
        for name in _STAGE_FIELDS:
            if updates.get(name) is not None:
                setattr(stage, name, updates[name])
        if updates.get("mini_prompt_ids") is not None:
            stage.items = await _mini_prompt_links(db, user_id, updates["mini_prompt_ids"])

    elif action == "remove_stage":
        stage = _resolve_stage(workflow, data)
        workflow.stages.remove(stage)
        _renumber(list(workflow.stages))

    elif action == "update_workflow_settings":
        for name, value in (data.get("updates") or {}).items():
            if name in _WORKFLOW_FIELDS and value is not None:
                setattr(workflow, name, value)

    else:
        raise PlanApplyError(f"Unknown plan action: {action}")

    await db.flush()
    return workflow.id


async def apply_plan(
    db: AsyncSession,
    user_id: str,
    workflow_id: Optional[str],
    items: list[dict],
) -> ApplyResult:
    """
    Apply approved review-plan items in order and commit.
    Any failure rolls back every item of this call. Items whose key was
    applied before are skipped.
    """
    keys = [i.get("key") for i in items if i.get("key")]
    already = set()
    if keys:
        result = await db.execute(select(AppliedPlanItem.item_key).where(AppliedPlanItem.item_key.in_(keys)))
        already = set(result.scalars())

    outcome = ApplyResult(workflow_id=workflow_id)
    try:
        async with db.begin_nested():
            for item in items:
                key = item.get("key")
                if key and key in already:
                    outcome.skipped.append(key)
                    continue
                outcome.workflow_id = await _apply_item(db, user_id, outcome.workflow_id, item)
                if key:
                    db.add(AppliedPlanItem(
                        item_key=key,
                        user_id=user_id,
                        workflow_id=outcome.workflow_id,
                        tool_name=item.get("tool_name") or item.get("action") or "",
                        action=item.get("action") or "",
                    ))
                    already.add(key)
                    outcome.applied.append(key)
                logger.info("Applied %s for user=%s workflow=%s", item.get("action"), user_id, outcome.workflow_id)
    except PlanApplyError:
        logger.warning("Plan apply rolled back for user=%s workflow=%s", user_id, workflow_id)
        raise

    await db.commit()

    if outcome.applied and outcome.workflow_id and get_flags().enable_embeddings:
        background.spawn(refresh_embedding(outcome.workflow_id), name=f"embedding:{outcome.workflow_id}")

    return outcome


# ── Background embedding refresh ─────────────────────────────────────

def _embedding_text(document: WorkflowDocument) -> str:
    parts = [document.name, document.description or ""]
    for stage in document.ordered_stages():
        parts.append(stage.name)
        parts.extend(item.name for item in stage.items)
    return "\n".join(p for p in parts if p)


async def refresh_embedding(workflow_id: str) -> None:
    """Recompute a workflow's embedding on a session of its own."""
    from ..core.database import get_session_factory
    from . import llm

    async with get_session_factory()() as db:
        workflow = await get_workflow(db, workflow_id)
        if workflow is None:
            return
        workflow.embedding = await llm.embed(_embedding_text(to_document(workflow)))
        await db.commit()
    logger.info("Embedding refreshed for workflow %s", workflow_id)
