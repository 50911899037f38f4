"""
AI assistant chat sessions and their messages.

A session is keyed by user + mode + the workflow / mini-prompt being edited.
It carries the provider continuation token (last OpenAI response id) and
cumulative token usage. Only the session persister writes these rows.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Integer, JSON, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import RecordBase, utcnow


class ChatSession(RecordBase):
    __tablename__ = "ai_chat_sessions"

    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    mode: Mapped[str] = mapped_column(String, nullable=False)  # workflow | mini-prompt
    workflow_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)
    mini_prompt_id: Mapped[Optional[str]] = mapped_column(String, nullable=True, index=True)

    continuation_token: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    total_input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_message_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Set when an auto-reset replaced this session with a summarized one
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Optimistic concurrency: two turns racing on one session cannot both commit
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.sequence_number",
    )

    @property
    def total_tokens(self) -> int:
        return (self.total_input_tokens or 0) + (self.total_output_tokens or 0)


class ChatMessage(RecordBase):
    __tablename__ = "ai_chat_messages"

    session_id: Mapped[str] = mapped_column(
        String, ForeignKey("ai_chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String, nullable=False)
    role: Mapped[str] = mapped_column(String, nullable=False)  # user, assistant, system
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Provider response that produced this message (assistant rows only)
    response_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    input_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    output_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Normalized tool invocations for audit / replay
    tool_invocations: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    # function_call_output items the provider never received (round budget hit)
    pending_tool_outputs: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    session: Mapped["ChatSession"] = relationship(back_populates="messages")
