"""
Tool invocation normalizer.

The provider side has produced completed tool calls in several shapes over
time:

  current   {"type": "tool-result", "tool_call_id", "tool_name", "args", "output"}
  legacy    {"state": "result", "tool_call_id", "tool_name", "args", "result"}
  bare      {"success": true, "action": ..., "workflow" | "stage" | ...: {...}}

Everything downstream (plan builder, persistence, API) sees only
ToolInvocation with a dict output. Unrecognized shapes are logged and dropped.
"""

import logging
from typing import Any, Iterable, Optional

from .context import InvocationState, ToolInvocation

logger = logging.getLogger(__name__)

# Actions a proposal record can carry; also the names of the proposing tools
PROPOSAL_ACTIONS = frozenset({
    "create_workflow",
    "add_stage",
    "modify_stage",
    "remove_stage",
    "update_workflow_settings",
    "create_mini_prompt",
    "modify_mini_prompt",
})

# Payload field → action, for bare records that omit "action"
_PAYLOAD_ACTIONS = (
    ("workflow", "create_workflow"),
    ("stage", "add_stage"),
    ("mini_prompt", "create_mini_prompt"),
    ("miniPrompt", "create_mini_prompt"),
    ("updates", "update_workflow_settings"),
)

_PAYLOAD_FIELDS = frozenset({"action"} | {f for f, _ in _PAYLOAD_ACTIONS})


def normalize_output(value: Any) -> Optional[dict]:
    """
    Normalize a single tool output value.
    A bare string is an error; a dict passes through unchanged. Idempotent.
    """
    if isinstance(value, str):
        return {"success": False, "error": value, "message": value}
    if isinstance(value, dict):
        return value
    return None


def infer_action(tool_name: str, record: dict) -> Optional[str]:
    """Which proposal, if any, a normalized record represents."""
    action = record.get("action")
    if action:
        return action
    if tool_name:
        return tool_name if tool_name in PROPOSAL_ACTIONS else None
    for field_name, inferred in _PAYLOAD_ACTIONS:
        if record.get(field_name):
            return inferred
    return None


def _primary_output(raw: dict) -> tuple[Any, bool]:
    for key in ("output", "result"):
        if raw.get(key) is not None:
            return raw[key], True
    return None, False


def normalize_invocation(raw: Any) -> Optional[ToolInvocation]:
    if not isinstance(raw, dict):
        logger.warning("Dropping tool invocation of type %s", type(raw).__name__)
        return None

    value, present = _primary_output(raw)
    if present:
        record = normalize_output(value)
        if record is None:
            logger.warning(
                "Dropping tool invocation %s: output of type %s",
                raw.get("tool_name") or raw.get("toolName"), type(value).__name__,
            )
            return None
    elif "success" in raw and _PAYLOAD_FIELDS.intersection(raw):
        record = raw
    else:
        logger.warning("Dropping unrecognized tool invocation shape: keys=%s", sorted(raw.keys()))
        return None

    tool_name = raw.get("tool_name") or raw.get("toolName") or ""
    if not tool_name and record is raw:
        tool_name = infer_action("", record) or ""

    args = raw.get("args")
    return ToolInvocation(
        tool_call_id=str(raw.get("tool_call_id") or raw.get("toolCallId") or ""),
        tool_name=tool_name,
        args=args if isinstance(args, dict) else {},
        output=record,
        state=InvocationState.RESULT,
    )


def normalize_invocations(raw: Optional[Iterable[Any]]) -> list[ToolInvocation]:
    """Normalize a turn's tool results, preserving order and dropping what can't be read."""
    items = list(raw or [])
    normalized = []
    for item in items:
        inv = normalize_invocation(item)
        if inv is not None:
            normalized.append(inv)
    dropped = len(items) - len(normalized)
    if dropped:
        logger.info("Normalized %d tool invocation(s), dropped %d", len(normalized), dropped)
    return normalized
