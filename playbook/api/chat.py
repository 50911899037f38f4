"""
AI assistant chat API.

POST /v1/ai-assistant/chat — one chat turn, returns the reply and, when the
                             model proposed edits, the review plan.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_pipeline, get_user
from ..core.errors import (
    ConcurrentTurnError, ProviderAuthError, ProviderError, SessionNotFoundError,
)
from ..pipeline.context import ChatMode
from ..pipeline.pipeline import AgentPipeline

logger = logging.getLogger(__name__)

chat_router = APIRouter(prefix="/ai-assistant", tags=["ai-assistant"])

MAX_MESSAGE_LENGTH = 10_000


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=MAX_MESSAGE_LENGTH)
    mode: ChatMode = ChatMode.WORKFLOW
    session_id: Optional[str] = None
    document_id: Optional[str] = None          # workflow being edited
    item_id: Optional[str] = None              # mini-prompt being edited
    workflow_context: Optional[dict] = None    # unsaved constructor state
    mini_prompt_context: Optional[dict] = None


class ChatMessageOut(BaseModel):
    id: str
    role: str
    content: str
    tool_invocations: list[dict] = []


class ChatResponse(BaseModel):
    session_id: str
    message: ChatMessageOut
    execution_plan: Optional[dict] = None
    token_usage: dict
    auto_reset: bool = False


@chat_router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
    pipeline: AgentPipeline = Depends(get_pipeline),
):
    """Run one turn. Proposed edits come back as a plan; nothing is saved to the workflow."""
    try:
        result = await pipeline.run(
            db,
            user_id=user.user_id,
            message=request.message,
            mode=request.mode,
            session_id=request.session_id,
            workflow_id=request.document_id,
            mini_prompt_id=request.item_id,
            workflow_context=request.workflow_context,
            mini_prompt_context=request.mini_prompt_context,
        )
    except SessionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ConcurrentTurnError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ProviderAuthError as e:
        logger.warning("Provider rejected credentials for user=%s: %s", user.user_id, e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": str(e), "message": ProviderAuthError.hint},
        )
    except ProviderError as e:
        logger.error("Provider failure for user=%s: %s", user.user_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"AI provider error: {e}")

    return result.to_dict()
