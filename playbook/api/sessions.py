"""
AI assistant sessions API.

GET    /v1/ai-assistant/sessions              — Active sessions of the user
GET    /v1/ai-assistant/sessions/{session_id} — Session with its messages
DELETE /v1/ai-assistant/sessions/{session_id} — Archive a session
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import AuthenticatedUser
from ..core.dependencies import get_db, get_user
from ..core.errors import SessionNotFoundError
from ..pipeline import session_store

logger = logging.getLogger(__name__)

sessions_router = APIRouter(prefix="/ai-assistant/sessions", tags=["ai-assistant"])


class SessionSummary(BaseModel):
    id: str
    mode: str
    workflow_id: Optional[str] = None
    mini_prompt_id: Optional[str] = None
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    last_message_at: str = ""


class MessageOut(BaseModel):
    id: str
    role: str
    content: str
    sequence_number: int
    tool_invocations: list[dict] = []
    created_at: str = ""


class SessionDetail(SessionSummary):
    summary: Optional[str] = None
    messages: list[MessageOut] = []


def _summary(s) -> dict:
    return dict(
        id=s.id,
        mode=s.mode,
        workflow_id=s.workflow_id,
        mini_prompt_id=s.mini_prompt_id,
        total_input_tokens=s.total_input_tokens,
        total_output_tokens=s.total_output_tokens,
        last_message_at=s.last_message_at.isoformat() if s.last_message_at else "",
    )


@sessions_router.get("", response_model=list[SessionSummary])
async def list_sessions(
    mode: Optional[str] = None,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    sessions = await session_store.list_sessions(db, user.user_id, mode=mode)
    return [SessionSummary(**_summary(s)) for s in sessions]


@sessions_router.get("/{session_id}", response_model=SessionDetail)
async def get_session(
    session_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Get a session with its most recent messages."""
    try:
        session = await session_store.get_session(db, user.user_id, session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")

    messages = await session_store.get_message_history(db, session.id)
    return SessionDetail(
        **_summary(session),
        summary=session.summary,
        messages=[
            MessageOut(
                id=m.id,
                role=m.role,
                content=m.content,
                sequence_number=m.sequence_number,
                tool_invocations=m.tool_invocations or [],
                created_at=m.created_at.isoformat() if m.created_at else "",
            )
            for m in messages
        ],
    )


@sessions_router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    user: AuthenticatedUser = Depends(get_user),
    db: AsyncSession = Depends(get_db),
):
    """Archive a session. Its messages stay for audit."""
    try:
        await session_store.archive_session(db, user.user_id, session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Session not found")
    logger.info("Session %s archived by user=%s", session_id, user.user_id)
    return {"status": "archived", "session_id": session_id}
