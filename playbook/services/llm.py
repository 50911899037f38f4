"""
OpenAI Responses API client.

Features:
  - Response chaining via previous_response_id (store=true)
  - Reusable client (connection pooling)
  - Error classification into the provider error taxonomy
  - Optional bounded retry with exponential backoff + jitter (off by default)
  - Structured logging
"""

import asyncio
import json
import logging
import random
import time
from typing import Any, Optional

import httpx

from ..core.config import get_settings
from ..core.errors import (
    ProviderAuthError,
    ProviderError,
    ProviderNetworkError,
    ProviderRequestError,
)

logger = logging.getLogger(__name__)

# ── Reusable client (connection pool) ────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        timeout = get_settings().llm_timeout_seconds
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=timeout, write=30, pool=10),
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
        )
    return _client


async def close_client():
    """Close the shared HTTP client. Call on app shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Error classification ─────────────────────────────────────────────

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
BASE_DELAY = 1.0
MAX_DELAY = 16.0


def _classify_status(resp: httpx.Response) -> ProviderError:
    body = resp.text[:500]
    code = resp.status_code
    if code in (401, 403):
        return ProviderAuthError(f"Provider rejected the API key ({code}): {body}", status_code=code)
    if code in RETRYABLE_STATUS:
        return ProviderNetworkError(f"Provider unavailable ({code}): {body}", status_code=code)
    return ProviderRequestError(f"Provider rejected the request ({code}): {body}", status_code=code)


async def _post(url: str, payload: dict, headers: dict) -> dict:
    """POST with error classification. Retries transient failures only if configured."""
    max_retries = max(0, get_settings().llm_max_retries)
    client = _get_client()
    last_error: Optional[ProviderError] = None

    for attempt in range(max_retries + 1):
        try:
            resp = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            last_error = ProviderNetworkError(f"Provider timed out: {e}")
        except httpx.TransportError as e:
            last_error = ProviderNetworkError(f"Provider connection failed: {e}")
        else:
            if resp.status_code < 400:
                return resp.json()
            logger.error("LLM API error %d: %s", resp.status_code, resp.text[:500])
            last_error = _classify_status(resp)
            if not isinstance(last_error, ProviderNetworkError):
                raise last_error

        if attempt < max_retries:
            delay = min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))
            logger.warning(
                "LLM transient failure (attempt %d/%d), retrying in %.1fs",
                attempt + 1, max_retries + 1, delay,
            )
            await asyncio.sleep(delay)

    raise last_error or ProviderNetworkError("LLM request failed")


def _auth_headers() -> dict:
    settings = get_settings()
    if not settings.openai_api_key:
        raise ProviderAuthError("OpenAI API key not configured. Set OPENAI_API_KEY.")
    return {
        "Authorization": f"Bearer {settings.openai_api_key}",
        "Content-Type": "application/json",
    }


def _url(path: str) -> str:
    return f"{get_settings().openai_base_url.rstrip('/')}/{path}"


# ── Responses API ────────────────────────────────────────────────────

async def create_response(
    *,
    instructions: str,
    input: list[dict],
    tools: Optional[list[dict]] = None,
    previous_response_id: Optional[str] = None,
    model: Optional[str] = None,
    metadata: Optional[dict] = None,
    temperature: Optional[float] = None,
) -> dict:
    """
    Single Responses API call. Returns the raw response JSON.

    store=true keeps the response server-side so the next call can resume
    from it with previous_response_id instead of resending history.
    """
    payload: dict[str, Any] = {
        "model": model or get_settings().chat_model,
        "instructions": instructions,
        "input": input,
        "store": True,
    }
    if tools:
        payload["tools"] = tools
    if previous_response_id:
        payload["previous_response_id"] = previous_response_id
    if metadata:
        payload["metadata"] = {k: str(v) for k, v in metadata.items() if v is not None}
    if temperature is not None:
        payload["temperature"] = temperature

    start = time.monotonic()
    data = await _post(_url("responses"), payload, _auth_headers())
    elapsed = time.monotonic() - start

    usage = extract_usage(data)
    logger.info(
        "LLM %s: %dms | in=%d out=%d tokens | model=%s | chained=%s",
        "tool_call" if extract_function_calls(data) else "chat",
        int(elapsed * 1000),
        usage["input"],
        usage["output"],
        payload["model"],
        bool(previous_response_id),
    )
    return data


async def complete_text(
    prompt: str,
    system: str = "",
    model: Optional[str] = None,
    temperature: Optional[float] = None,
) -> str:
    """Send a prompt, get a string back. No tools, no chaining."""
    data = await create_response(
        instructions=system,
        input=[{"role": "user", "content": prompt}],
        model=model,
        temperature=temperature,
    )
    return extract_text(data)


async def embed(text: str, model: Optional[str] = None) -> list[float]:
    """Embedding vector for a text."""
    payload = {"model": model or get_settings().embedding_model, "input": text}
    data = await _post(_url("embeddings"), payload, _auth_headers())
    return data["data"][0]["embedding"]


# ── Response parsing ─────────────────────────────────────────────────

def extract_text(response: dict) -> str:
    """Concatenate all output_text parts of message items."""
    parts: list[str] = []
    for item in response.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text" and content.get("text"):
                parts.append(content["text"])
    return "".join(parts)


def extract_function_calls(response: dict) -> list[dict]:
    """Function calls as [{call_id, name, arguments(str)}] in output order."""
    return [
        {
            "call_id": item.get("call_id") or item.get("id", ""),
            "name": item.get("name", ""),
            "arguments": item.get("arguments") or "{}",
        }
        for item in response.get("output") or []
        if item.get("type") == "function_call"
    ]


def extract_usage(response: dict) -> dict:
    usage = response.get("usage") or {}
    return {
        "input": max(0, int(usage.get("input_tokens") or 0)),
        "output": max(0, int(usage.get("output_tokens") or 0)),
    }


def function_call_output(call_id: str, output: Any) -> dict:
    """Input item that hands a tool result back to the model."""
    if not isinstance(output, str):
        output = json.dumps(output, default=str)
    return {"type": "function_call_output", "call_id": call_id, "output": output}


# ── Token estimation ─────────────────────────────────────────────────

def estimate_tokens(text: str) -> int:
    """
    Estimate token count without tiktoken dependency.
    Rule of thumb: ~4 chars per token for English.
    """
    return max(1, len(text) // 4)
