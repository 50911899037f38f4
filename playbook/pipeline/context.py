"""
Per-turn pipeline state.

PipelineContext is created for one chat turn, threaded through every step,
and discarded when the turn completes. Steps read and update fields in place.
Nothing here is persisted directly; the session persister decides what is.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ChatMode(str, Enum):
    """Selects the instruction template and the permitted tool subset."""
    WORKFLOW = "workflow"          # editing a workflow document
    MINI_PROMPT = "mini-prompt"    # editing a single content item


class InvocationState(str, Enum):
    PENDING = "pending"
    RESULT = "result"


@dataclass
class ToolInvocation:
    """One tool call of a turn. Identity is (turn, tool_call_id)."""

    tool_call_id: str
    tool_name: str
    args: dict = field(default_factory=dict)
    output: Optional[dict] = None
    state: InvocationState = InvocationState.PENDING

    def to_dict(self) -> dict:
        return {
            "tool_call_id": self.tool_call_id,
            "tool_name": self.tool_name,
            "args": self.args,
            "output": self.output,
            "state": self.state.value,
        }


@dataclass
class TokenUsage:
    input: int = 0
    output: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output

    def add(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(self.input + other.input, self.output + other.output)


@dataclass
class CompletionResult:
    """What the completion executor hands back for one turn."""

    text: str
    tool_calls: list[dict] = field(default_factory=list)     # [{tool_call_id, tool_name, args}]
    tool_results: list[dict] = field(default_factory=list)   # raw provider-side invocation records
    usage: TokenUsage = field(default_factory=TokenUsage)
    continuation_token: Optional[str] = None
    # function_call_output items executed but never sent back (round budget exhausted)
    pending_tool_outputs: list[dict] = field(default_factory=list)
    rounds: int = 0
    degraded: bool = False


@dataclass
class PipelineContext:
    """Everything one turn needs. Built by the context builder, enriched by later steps."""

    user_id: str
    mode: ChatMode
    message: str
    session_id: Optional[str] = None
    workflow_id: Optional[str] = None
    mini_prompt_id: Optional[str] = None

    # Prompt package
    instructions: str = ""
    messages: list[dict] = field(default_factory=list)
    tools: list[dict] = field(default_factory=list)
    tool_names: tuple[str, ...] = ()
    continuation_token: Optional[str] = None

    # Session bookkeeping carried to the persister
    reset_summary: Optional[str] = None

    # Accumulated results
    completion: Optional[CompletionResult] = None
    invocations: list[ToolInvocation] = field(default_factory=list)
    plan: Any = None
    metadata: dict = field(default_factory=dict)
