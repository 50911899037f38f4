"""
Chat session persistence.

SessionStore only reads: it finds the session of a turn and the state the
next provider call needs (continuation token, tool outputs left over from
an interrupted turn, summary of a reset conversation).

SessionPersister is the only writer. It runs after a successful completion
and commits everything of the turn at once. A turn that fails before
reaching it leaves the session exactly as it was, so it can be retried.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import get_settings
from ..core.errors import ConcurrentTurnError, SessionNotFoundError
from ..core.flags import get_flags
from ..models.base import new_uuid
from ..models.chat import ChatMessage, ChatSession
from ..services import llm
from .context import ChatMode, CompletionResult, PipelineContext, ToolInvocation
from .prompts import SUMMARY_SYSTEM

logger = logging.getLogger(__name__)

# Transcript budget handed to the summary model
SUMMARY_TRANSCRIPT_TOKENS = 12_000


@dataclass
class SessionState:
    """What a turn needs to know about its session before calling the provider."""

    session: Optional[ChatSession] = None
    continuation_token: Optional[str] = None
    version: Optional[int] = None
    pending_tool_outputs: list[dict] = field(default_factory=list)
    summary: Optional[str] = None
    needs_reset: bool = False


# ── Reads ────────────────────────────────────────────────────────────

async def get_message_history(db: AsyncSession, session_id: str, limit: int = 50) -> list[ChatMessage]:
    """Most recent messages of a session, oldest first."""
    result = await db.execute(
        select(ChatMessage)
        .where(ChatMessage.session_id == session_id)
        .order_by(ChatMessage.sequence_number.desc())
        .limit(limit)
    )
    return list(reversed(result.scalars().all()))


async def list_sessions(db: AsyncSession, user_id: str, mode: Optional[str] = None) -> list[ChatSession]:
    query = select(ChatSession).where(ChatSession.user_id == user_id, ChatSession.archived_at.is_(None))
    if mode:
        query = query.where(ChatSession.mode == mode)
    result = await db.execute(query.order_by(ChatSession.last_message_at.desc()))
    return list(result.scalars())


async def get_session(
    db: AsyncSession, user_id: str, session_id: str, with_messages: bool = False,
) -> ChatSession:
    query = select(ChatSession).where(ChatSession.id == session_id, ChatSession.user_id == user_id)
    if with_messages:
        query = query.options(selectinload(ChatSession.messages))
    session = (await db.execute(query)).scalar_one_or_none()
    if session is None:
        raise SessionNotFoundError(f"Session {session_id} not found")
    return session


async def archive_session(db: AsyncSession, user_id: str, session_id: str) -> ChatSession:
    session = await get_session(db, user_id, session_id)
    if session.archived_at is None:
        session.archived_at = datetime.now(timezone.utc)
        await db.flush()
    return session


class SessionStore:
    """Read side of chat sessions."""

    def __init__(self, provider: Any = None):
        self.provider = provider or llm

    async def find(
        self,
        db: AsyncSession,
        user_id: str,
        mode: ChatMode,
        session_id: Optional[str] = None,
        workflow_id: Optional[str] = None,
        mini_prompt_id: Optional[str] = None,
    ) -> Optional[ChatSession]:
        """
        The session for this turn. An explicit id must belong to the user and
        still be active; otherwise the newest active session for
        (user, mode, document) is reused, or None on a first turn.
        """
        if session_id:
            session = await get_session(db, user_id, session_id)
            if session.archived_at is not None:
                raise SessionNotFoundError(f"Session {session_id} was archived")
            return session

        query = select(ChatSession).where(
            ChatSession.user_id == user_id,
            ChatSession.mode == ChatMode(mode).value,
            ChatSession.archived_at.is_(None),
        )
        if mode == ChatMode.WORKFLOW:
            query = query.where(ChatSession.workflow_id.is_(None) if not workflow_id else ChatSession.workflow_id == workflow_id)
        else:
            query = query.where(ChatSession.mini_prompt_id.is_(None) if not mini_prompt_id else ChatSession.mini_prompt_id == mini_prompt_id)
        result = await db.execute(query.order_by(ChatSession.last_message_at.desc()).limit(1))
        return result.scalar_one_or_none()

    async def load_state(self, db: AsyncSession, session: Optional[ChatSession]) -> SessionState:
        if session is None:
            return SessionState()

        state = SessionState(
            session=session,
            continuation_token=session.continuation_token,
            version=session.version,
            summary=session.summary,
        )

        flags = get_flags()
        threshold = get_settings().auto_reset_token_threshold
        if flags.enable_auto_reset and session.total_tokens >= threshold:
            logger.info(
                "Session %s at %d tokens (threshold %d), resetting",
                session.id, session.total_tokens, threshold,
            )
            state.needs_reset = True
            return state

        if session.continuation_token:
            result = await db.execute(
                select(ChatMessage.pending_tool_outputs)
                .where(ChatMessage.session_id == session.id, ChatMessage.role == "assistant")
                .order_by(ChatMessage.sequence_number.desc())
                .limit(1)
            )
            state.pending_tool_outputs = list(result.scalar_one_or_none() or [])
            if state.pending_tool_outputs:
                logger.info("Carrying %d pending tool output(s) into session %s", len(state.pending_tool_outputs), session.id)
        return state

    async def summarize(self, db: AsyncSession, session: ChatSession) -> str:
        """Summary of a conversation about to be reset. Provider errors propagate."""
        history = await get_message_history(db, session.id, limit=get_settings().history_limit)
        lines = []
        budget = SUMMARY_TRANSCRIPT_TOKENS
        # Newest first so the budget keeps the most recent exchanges
        for msg in reversed(history):
            line = f"{msg.role.upper()}: {msg.content}"
            budget -= llm.estimate_tokens(line)
            if budget < 0:
                break
            lines.append(line)
        transcript = "\n\n".join(reversed(lines))
        if session.summary:
            transcript = f"EARLIER SUMMARY: {session.summary}\n\n{transcript}"

        summary = await self.provider.complete_text(
            prompt=f"Summarize this conversation:\n\n{transcript}",
            system=SUMMARY_SYSTEM,
            model=get_settings().summary_model,
        )
        return summary.strip()


# ── Writes ───────────────────────────────────────────────────────────

class SessionPersister:
    """Write side of chat sessions. Call only after a successful completion."""

    async def _next_sequence(self, db: AsyncSession, session_id: str) -> int:
        result = await db.execute(
            select(func.max(ChatMessage.sequence_number)).where(ChatMessage.session_id == session_id)
        )
        current = result.scalar_one_or_none()
        return 0 if current is None else current + 1

    async def _check_current(self, db: AsyncSession, session: ChatSession, state: SessionState) -> None:
        """Fail when another turn committed to this session after we read it."""
        row = (await db.execute(
            select(ChatSession.continuation_token, ChatSession.version, ChatSession.archived_at)
            .where(ChatSession.id == session.id)
        )).one_or_none()
        if row is None or row.archived_at is not None:
            raise ConcurrentTurnError(f"Session {session.id} is no longer active")
        if row.version != state.version or row.continuation_token != state.continuation_token:
            raise ConcurrentTurnError(f"Session {session.id} was updated by another turn")

    def _new_session(self, ctx: PipelineContext, summary: Optional[str] = None) -> ChatSession:
        return ChatSession(
            id=new_uuid(),
            user_id=ctx.user_id,
            mode=ctx.mode.value,
            workflow_id=ctx.workflow_id,
            mini_prompt_id=ctx.mini_prompt_id,
            continuation_token=None,
            total_input_tokens=0,
            total_output_tokens=0,
            summary=summary,
        )

    async def commit(
        self,
        db: AsyncSession,
        ctx: PipelineContext,
        state: SessionState,
        result: CompletionResult,
        invocations: Sequence[ToolInvocation],
        assistant_message_id: str,
    ) -> ChatSession:
        now = datetime.now(timezone.utc)
        seq = 0

        if state.session is not None:
            await self._check_current(db, state.session, state)

        if state.session is not None and not state.needs_reset:
            session = state.session
            seq = await self._next_sequence(db, session.id)
        else:
            if state.session is not None:
                old = state.session
                old.archived_at = now
                old.summary = ctx.reset_summary
                logger.info("Session %s archived after auto-reset", old.id)
            session = self._new_session(ctx, summary=ctx.reset_summary)
            db.add(session)
            if ctx.reset_summary:
                db.add(ChatMessage(
                    session_id=session.id,
                    user_id=ctx.user_id,
                    role="system",
                    content=f"Previous conversation summary:\n\n{ctx.reset_summary}",
                    sequence_number=seq,
                ))
                seq += 1

        session.total_input_tokens = (session.total_input_tokens or 0) + result.usage.input
        session.total_output_tokens = (session.total_output_tokens or 0) + result.usage.output
        session.continuation_token = result.continuation_token
        session.last_message_at = now

        db.add(ChatMessage(
            session_id=session.id,
            user_id=ctx.user_id,
            role="user",
            content=ctx.message,
            sequence_number=seq,
        ))
        db.add(ChatMessage(
            id=assistant_message_id,
            session_id=session.id,
            user_id=ctx.user_id,
            role="assistant",
            content=result.text,
            sequence_number=seq + 1,
            response_id=None if result.degraded else result.continuation_token,
            input_tokens=result.usage.input,
            output_tokens=result.usage.output,
            tool_invocations=[inv.to_dict() for inv in invocations] or None,
            pending_tool_outputs=result.pending_tool_outputs or None,
        ))

        try:
            await db.flush()
        except StaleDataError as e:
            raise ConcurrentTurnError(f"Session {session.id} was updated by another turn") from e

        logger.info(
            "Turn persisted: session=%s tokens+=%d/%d total=%d",
            session.id, result.usage.input, result.usage.output, session.total_tokens,
        )
        return session
