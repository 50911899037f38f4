"""
Tool registry.

Collects tool handlers and formats them for OpenAI Responses function calling.
Every tool declares:
  - a pydantic model for its arguments (the JSON schema is derived from it)
  - the chat modes it may be offered in
  - a risk class (read-only lookups vs. proposed mutations)

Mutating tools never write to the database. They return a proposal record
({success, action, ..., message}) that becomes part of the review plan.
"""

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional, Type

from pydantic import BaseModel, ValidationError

from ..core.errors import ToolArgumentValidationError
from ..core.flags import get_flags
from ..pipeline.context import ChatMode

logger = logging.getLogger(__name__)


class ToolRisk(str, Enum):
    READ = "read"          # Read-only, no side effects
    PROPOSE = "propose"    # Proposes a document change for human approval
    EXTERNAL = "external"  # Calls an external API (and proposes)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable
    modes: frozenset
    risk: ToolRisk = ToolRisk.PROPOSE

    def schema(self) -> dict:
        """Responses API function tool definition."""
        params = self.args_model.model_json_schema()
        params.setdefault("type", "object")
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": params,
            "strict": False,
        }

    def parse_args(self, raw) -> BaseModel:
        """Validate raw model arguments. Raises ToolArgumentValidationError."""
        if isinstance(raw, str):
            try:
                raw = json.loads(raw or "{}")
            except json.JSONDecodeError as e:
                raise ToolArgumentValidationError(self.name, f"arguments are not valid JSON ({e})")
        if not isinstance(raw, dict):
            raise ToolArgumentValidationError(self.name, "arguments must be a JSON object")
        try:
            return self.args_model.model_validate(raw)
        except ValidationError as e:
            details = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
                for err in e.errors()
            )
            raise ToolArgumentValidationError(self.name, f"Invalid value ({details})")


_tools: dict[str, ToolSpec] = {}


def tool(
    name: str,
    description: str,
    args_model: Type[BaseModel],
    modes: Iterable[ChatMode],
    risk: ToolRisk = ToolRisk.PROPOSE,
):
    """
    Decorator to register an async function as an LLM-callable tool.

    The handler is called as handler(args, db=..., user_id=..., **context)
    with args already validated against args_model.
    """

    def decorator(func: Callable):
        if name in _tools:
            logger.warning("Tool '%s' already registered, overwriting", name)
        _tools[name] = ToolSpec(
            name=name,
            description=description,
            args_model=args_model,
            handler=func,
            modes=frozenset(ChatMode(m) for m in modes),
            risk=risk,
        )
        logger.debug("Registered tool: %s [%s]", name, risk.value)
        return func

    return decorator


def get_tool(name: str) -> Optional[ToolSpec]:
    return _tools.get(name)


def get_tool_names() -> list[str]:
    return list(_tools.keys())


def get_tools_for_mode(mode: ChatMode) -> list[ToolSpec]:
    return [t for t in _tools.values() if mode in t.modes]


def init_tools() -> None:
    """
    Import tool modules to trigger registration.
    Call this once on startup; repeated calls are no-ops.
    """
    from . import workflow_tools      # noqa: F401
    from . import mini_prompt_tools   # noqa: F401

    if get_flags().enable_translation:
        from . import translation  # noqa: F401

    logger.info("Tools ready: %d tools [%s]", len(_tools), ", ".join(get_tool_names()))
