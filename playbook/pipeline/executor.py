"""
CompletionExecutor: one provider conversation per chat turn.

Sends instructions + input to the Responses API, executes the function
calls it asks for, sends their outputs back, and repeats until the model
answers without tool calls or the round budget is used up. Rounds are
strictly sequential: round k's input is round k-1's tool outputs, chained
through previous_response_id.

Provider failures (auth, network, rate limits) propagate and fail the turn.
Invalid tool arguments do not: they become an explanatory reply with zero
usage, so the same turn can simply be retried.
"""

import json
import logging
import time
from typing import Any, Optional

from ..core.config import get_settings
from ..core.errors import ToolArgumentValidationError, ToolInputError
from ..services import llm
from ..tools.registry import get_tool
from .context import CompletionResult, PipelineContext, TokenUsage
from .normalizer import normalize_output

logger = logging.getLogger(__name__)

VALIDATION_ERROR_TEXT = (
    "I encountered a validation error with the tool parameters. "
    "Please rephrase your request with more specific details. Error: {error}"
)


def fallback_text(tool_results: list[dict]) -> str:
    """Reply for a turn where the model called tools but wrote nothing."""
    parts = []
    for result in tool_results:
        record = normalize_output(result.get("output"))
        if not record:
            continue
        if "error" in record:
            error = record["error"]
            if not isinstance(error, str):
                error = json.dumps(error, indent=2, default=str)
            parts.append(f"Error calling {result.get('tool_name')}: {error}")
        elif record.get("message"):
            parts.append(str(record["message"]))
    if parts:
        return "\n\n".join(parts)

    names = [r.get("tool_name") for r in tool_results if r.get("tool_name")]
    if len(names) == 1:
        return f"I've called the {names[0]} tool. The proposed changes are ready for your review."
    if names:
        return f"I've called the following tools: {', '.join(names)}. The proposed changes are ready for your review."
    return "Action completed successfully!"


def mention_tools(text: str, tool_results: list[dict]) -> str:
    """Append the tools used when the reply does not talk about tools itself."""
    names = list(dict.fromkeys(r.get("tool_name") for r in tool_results if r.get("tool_name")))
    if not text or not names or "tool" in text.lower():
        return text
    return f"{text} (using {', '.join(names)})"


class CompletionExecutor:
    """
    Args:
        provider:    object with an async create_response(**kwargs) -> dict,
                     defaults to services.llm
        max_rounds:  provider round budget per turn
    """

    def __init__(self, provider: Any = None, max_rounds: Optional[int] = None):
        self.provider = provider or llm
        self.max_rounds = max_rounds or get_settings().max_tool_rounds

    async def execute(self, ctx: PipelineContext, db=None) -> CompletionResult:
        try:
            return await self._run(ctx, db)
        except ToolArgumentValidationError as e:
            logger.warning("Tool argument validation failed (%s): %s", e.tool_name, e.details)
            # The previous token still awaits the outputs it carried
            carried = [m for m in ctx.messages if m.get("type") == "function_call_output"]
            return CompletionResult(
                text=VALIDATION_ERROR_TEXT.format(error=e.details),
                usage=TokenUsage(),
                continuation_token=ctx.continuation_token,
                pending_tool_outputs=carried,
                degraded=True,
            )

    async def _run(self, ctx: PipelineContext, db) -> CompletionResult:
        start = time.monotonic()
        input_items = list(ctx.messages)
        previous_id = ctx.continuation_token
        usage = TokenUsage()
        tool_calls: list[dict] = []
        tool_results: list[dict] = []
        pending: list[dict] = []
        text = ""
        rounds = 0

        while True:
            response = await self.provider.create_response(
                instructions=ctx.instructions,
                input=input_items,
                tools=ctx.tools or None,
                previous_response_id=previous_id,
                metadata={"chat_id": ctx.session_id or "", "user_id": ctx.user_id},
            )
            rounds += 1
            u = llm.extract_usage(response)
            usage = usage.add(TokenUsage(u["input"], u["output"]))
            previous_id = response.get("id") or previous_id
            text = llm.extract_text(response)

            calls = llm.extract_function_calls(response)
            if not calls:
                break

            outputs = []
            for call in calls:
                output = await self._run_tool(call, ctx, db, tool_calls, tool_results)
                outputs.append(llm.function_call_output(call["call_id"], output))

            if rounds >= self.max_rounds:
                # Executed but never sent; the next turn carries them
                pending = outputs
                logger.warning("Round budget (%d) exhausted, %d tool output(s) pending", self.max_rounds, len(outputs))
                break
            input_items = outputs

        if not text.strip() and tool_results:
            text = fallback_text(tool_results)
        text = mention_tools(text, tool_results)

        logger.info(
            "Completion done: rounds=%d tools=%d tokens=%d/%d (%.0fms)",
            rounds, len(tool_results), usage.input, usage.output, (time.monotonic() - start) * 1000,
        )
        return CompletionResult(
            text=text,
            tool_calls=tool_calls,
            tool_results=tool_results,
            usage=usage,
            continuation_token=previous_id,
            pending_tool_outputs=pending,
            rounds=rounds,
        )

    async def _run_tool(
        self,
        call: dict,
        ctx: PipelineContext,
        db,
        tool_calls: list[dict],
        tool_results: list[dict],
    ) -> Any:
        name = call["name"]
        call_id = call["call_id"]
        spec = get_tool(name) if name in ctx.tool_names else None

        if spec is None:
            logger.warning("Model called unavailable tool: %s", name)
            output: Any = f"Unknown tool '{name}'. Use only the tools in your tool list."
            args: dict = {}
        else:
            # Raises ToolArgumentValidationError, handled by execute()
            parsed = spec.parse_args(call["arguments"])
            args = parsed.model_dump(mode="json")
            call_start = time.monotonic()
            logger.info("Tool call: %s(%s)", name, json.dumps(args, default=str)[:200])
            try:
                output = await spec.handler(
                    parsed,
                    db=db,
                    user_id=ctx.user_id,
                    workflow_id=ctx.workflow_id,
                    mini_prompt_id=ctx.mini_prompt_id,
                )
                logger.info("Tool %s completed in %dms", name, int((time.monotonic() - call_start) * 1000))
            except ToolInputError as e:
                output = str(e)
            except Exception as e:
                logger.error("Tool '%s' failed after %dms: %s", name, int((time.monotonic() - call_start) * 1000), e)
                output = f"Tool error ({name}): {type(e).__name__}: {e}"

        tool_calls.append({"tool_call_id": call_id, "tool_name": name, "args": args})
        tool_results.append({
            "type": "tool-result",
            "tool_call_id": call_id,
            "tool_name": name,
            "args": args,
            "output": output,
            "state": "result",
        })
        return output
