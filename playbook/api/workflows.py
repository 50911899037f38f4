"""
Workflow execution + plan approval API.

GET  /v1/workflows/{id}/execution-plan — Guided execution plan (JSON + markdown)
GET  /v1/workflows/{id}/steps/{index}  — One step, or a bounded lookup error
POST /v1/workflows/plans/apply         — Apply approved review-plan items
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_user
from ..core.errors import PlanApplyError
from ..pipeline import plan_builder
from ..services import workflow_repository as repo

logger = logging.getLogger(__name__)

workflows_router = APIRouter(prefix="/workflows", tags=["workflows"])


@workflows_router.get("/{workflow_id}/execution-plan")
async def get_execution_plan(
    workflow_id: str,
    db: AsyncSession = Depends(get_db),
):
    plan = await plan_builder.get_execution_plan(db, workflow_id)
    if plan is None:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {**plan.to_dict(), "markdown": plan_builder.format_execution_plan(plan)}


@workflows_router.get("/{workflow_id}/steps/{index}")
async def get_step(
    workflow_id: str,
    index: int,
    db: AsyncSession = Depends(get_db),
):
    """Always 200. Unknown workflows and out-of-range indexes come back as {"error": ...}."""
    plan = await plan_builder.get_execution_plan(db, workflow_id)
    if plan is None:
        return (await plan_builder.get_step(db, workflow_id, index)).to_dict()

    step = plan_builder.lookup_step(plan, index)
    if isinstance(step, plan_builder.StepLookupError):
        return step.to_dict()
    return {
        "step": step.to_dict(),
        "total_steps": plan.total_steps,
        "markdown": plan_builder.format_step(plan, step),
    }


class ApprovedItem(BaseModel):
    key: Optional[str] = None
    tool_name: Optional[str] = None
    action: str
    data: dict = {}


class ApplyRequest(BaseModel):
    workflow_id: Optional[str] = None
    items: list[ApprovedItem] = Field(min_length=1)


@workflows_router.post("/plans/apply")
async def apply_plan(
    request: ApplyRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Apply approved items in one transaction. Re-submitted items are skipped."""
    try:
        result = await repo.apply_plan(
            db,
            user_id=user.user_id,
            workflow_id=None if repo.is_unsaved_id(request.workflow_id) else request.workflow_id,
            items=[i.model_dump() for i in request.items],
        )
    except PlanApplyError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return result.to_dict()
