"""
All database models. Imported here so Base.metadata sees them for create_all().
"""

from .base import RecordBase
from .chat import ChatSession, ChatMessage
from .workflow import Workflow, WorkflowStage, MiniPrompt, StageMiniPrompt, AppliedPlanItem

__all__ = [
    "RecordBase",
    "ChatSession", "ChatMessage",
    "Workflow", "WorkflowStage", "MiniPrompt", "StageMiniPrompt",
    "AppliedPlanItem",
]
