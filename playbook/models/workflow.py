"""
Workflow documents: Workflow → ordered WorkflowStage → ordered MiniPrompt.

Mini-prompts are reusable, so stages reference them through StageMiniPrompt
which carries the position inside the stage. System mini-prompts
(is_system=True) hold the automatic prompts injected into guided execution.
"""

from typing import Optional

from sqlalchemy import String, Text, Integer, Boolean, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import RecordBase


class Workflow(RecordBase):
    __tablename__ = "workflows"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    complexity: Mapped[Optional[str]] = mapped_column(String, nullable=True)  # XS, S, M, L, XL
    visibility: Mapped[str] = mapped_column(String, nullable=False, default="PRIVATE")
    include_multi_agent_chat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Refreshed in the background after approved edits
    embedding: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    stages: Mapped[list["WorkflowStage"]] = relationship(
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="[WorkflowStage.order, WorkflowStage.id]",
    )


class WorkflowStage(RecordBase):
    __tablename__ = "workflow_stages"

    workflow_id: Mapped[str] = mapped_column(
        String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    color: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    with_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    include_multi_agent_chat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    workflow: Mapped["Workflow"] = relationship(back_populates="stages")
    items: Mapped[list["StageMiniPrompt"]] = relationship(
        back_populates="stage",
        cascade="all, delete-orphan",
        order_by="[StageMiniPrompt.order, StageMiniPrompt.id]",
    )


class MiniPrompt(RecordBase):
    __tablename__ = "mini_prompts"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_system: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class StageMiniPrompt(RecordBase):
    __tablename__ = "stage_mini_prompts"

    stage_id: Mapped[str] = mapped_column(
        String, ForeignKey("workflow_stages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    mini_prompt_id: Mapped[str] = mapped_column(
        String, ForeignKey("mini_prompts.id", ondelete="CASCADE"), nullable=False
    )
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    stage: Mapped["WorkflowStage"] = relationship(back_populates="items")
    mini_prompt: Mapped["MiniPrompt"] = relationship()


class AppliedPlanItem(RecordBase):
    """Ledger of approved plan items already applied. Makes apply idempotent per item."""

    __tablename__ = "applied_plan_items"
    __table_args__ = (UniqueConstraint("item_key", name="uq_applied_plan_items_key"),)

    item_key: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    workflow_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    tool_name: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
