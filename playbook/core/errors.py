"""
Error taxonomy for the agent chat pipeline.

Only provider-level failures surface as turn failures. Everything else
degrades to best-effort text inside the pipeline.
"""

from typing import Optional


class PlaybookError(Exception):
    """Base class for all service errors."""


class ConfigurationError(PlaybookError):
    """Invalid static wiring, e.g. a tool offered in a mode that does not permit it."""


# ── Provider ─────────────────────────────────────────────────────────

class ProviderError(PlaybookError):
    """The LLM provider could not produce a completion. The turn fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderAuthError(ProviderError):
    """Invalid or expired provider credential."""

    hint = "Your OpenAI API key is invalid or expired. Please update it in settings."


class ProviderNetworkError(ProviderError):
    """Timeouts, connection failures, rate limits and provider 5xx."""


class ProviderRequestError(ProviderError):
    """Any other request the provider rejected."""


# ── Tools ────────────────────────────────────────────────────────────

class ToolArgumentValidationError(PlaybookError):
    """The model produced arguments that do not match the tool schema."""

    def __init__(self, tool_name: str, details: str):
        super().__init__(f"Invalid arguments for {tool_name}: {details}")
        self.tool_name = tool_name
        self.details = details


class ToolInputError(PlaybookError):
    """A tool rejected semantically invalid input. Reported back to the model."""


# ── Sessions / plans ─────────────────────────────────────────────────

class ConcurrentTurnError(PlaybookError):
    """Another turn committed to the same session first."""


class SessionNotFoundError(PlaybookError):
    pass


class PlanApplyError(PlaybookError):
    """An approved plan item could not be applied. Nothing was written."""
