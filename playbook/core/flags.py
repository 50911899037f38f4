"""
Feature flags. Set via environment variables (prefix FF_) or .env file.

When a flag is OFF the related behaviour is skipped. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Identity ─────────────────────────────────────────────────────
    use_header_auth: bool = Field(default=True, alias="FF_USE_HEADER_AUTH")
    # ON  → user id taken from X-User-Id (set by the upstream gateway).
    # OFF → dev user injected. No header needed.

    # ── Tools ────────────────────────────────────────────────────────
    enable_translation: bool = Field(default=True, alias="FF_ENABLE_TRANSLATION")
    # ON  → translate_mini_prompt is offered in mini-prompt mode.

    # ── Background work ──────────────────────────────────────────────
    enable_embeddings: bool = Field(default=True, alias="FF_ENABLE_EMBEDDINGS")
    # ON  → workflow embeddings are refreshed after an approved plan is applied.

    # ── Sessions ─────────────────────────────────────────────────────
    enable_auto_reset: bool = Field(default=True, alias="FF_ENABLE_AUTO_RESET")
    # ON  → sessions over the token threshold are summarized and restarted.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
