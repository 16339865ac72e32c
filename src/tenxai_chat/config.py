"""Application configuration — global defaults and environment loading."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

from .models import DEFAULT_MODELS, ModelConfig, ModelInfo

# Valid provider names for TENXAI_LLM_PROVIDER
VALID_PROVIDERS = frozenset({"openai", "stub"})

_DEFAULT_API_BASE_URL = "http://localhost:3000"
_DEFAULT_TIMEOUT = 30.0
_DEFAULT_UNDO_WINDOW = 5.0


class AppConfig(BaseModel):
    """Global settings shared by every session.

    ``model_defaults`` seeds the model configuration of new sessions; a mask
    passed to :meth:`ChatStore.new_session` overrides it field by field.
    """

    model_defaults: ModelConfig = Field(default_factory=ModelConfig)
    models: list[ModelInfo] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    enable_auto_generate_title: bool = True

    api_base_url: str = _DEFAULT_API_BASE_URL
    user_id: str | None = None
    request_timeout: float = _DEFAULT_TIMEOUT

    state_path: Path | None = None
    undo_window: float = _DEFAULT_UNDO_WINDOW
    lang: str = "en"

    llm_provider: str = "stub"
    openai_api_key: str | None = None
    openai_base_url: str = "https://api.openai.com"

    def merged_model_config(self, override: ModelConfig | None = None) -> ModelConfig:
        """Global defaults overlaid with the fields explicitly set on *override*."""
        if override is None:
            return self.model_defaults.model_copy(deep=True)
        explicit = override.model_dump(exclude_unset=True)
        return self.model_defaults.model_copy(update=explicit, deep=True)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> AppConfig:
        """Build a config from ``TENXAI_*`` environment variables.

        Unset variables keep their defaults. Malformed numbers and unknown
        provider names raise ``ValueError``.
        """
        env = os.environ if environ is None else environ

        provider = env.get("TENXAI_LLM_PROVIDER", "stub").strip().lower() or "stub"
        if provider not in VALID_PROVIDERS:
            msg = (
                f"Unknown provider '{provider}'. "
                f"Valid values for TENXAI_LLM_PROVIDER: {', '.join(sorted(VALID_PROVIDERS))}"
            )
            raise ValueError(msg)

        model_fields: dict[str, object] = {}
        if model := env.get("TENXAI_MODEL"):
            model_fields["model"] = model
        if max_tokens := env.get("TENXAI_MAX_TOKENS"):
            model_fields["max_tokens"] = _parse_int("TENXAI_MAX_TOKENS", max_tokens)
        if history := env.get("TENXAI_HISTORY_COUNT"):
            model_fields["history_message_count"] = _parse_int("TENXAI_HISTORY_COUNT", history)
        if threshold := env.get("TENXAI_COMPRESS_THRESHOLD"):
            model_fields["compress_message_length_threshold"] = _parse_int(
                "TENXAI_COMPRESS_THRESHOLD", threshold
            )
        if compress_model := env.get("TENXAI_COMPRESS_MODEL"):
            model_fields["compress_model"] = compress_model
        if send_memory := env.get("TENXAI_SEND_MEMORY"):
            model_fields["send_memory"] = _parse_bool(send_memory)

        state_path = env.get("TENXAI_STATE_PATH")
        return cls(
            model_defaults=ModelConfig(**model_fields),
            enable_auto_generate_title=_parse_bool(env.get("TENXAI_AUTO_TITLE", "true")),
            api_base_url=env.get("TENXAI_API_BASE_URL", _DEFAULT_API_BASE_URL),
            user_id=env.get("TENXAI_USER_ID") or None,
            request_timeout=_parse_float(
                "TENXAI_REQUEST_TIMEOUT", env.get("TENXAI_REQUEST_TIMEOUT", str(_DEFAULT_TIMEOUT))
            ),
            state_path=Path(state_path) if state_path else None,
            lang=env.get("TENXAI_LANG", "en"),
            llm_provider=provider,
            openai_api_key=env.get("OPENAI_API_KEY") or None,
            openai_base_url=env.get("OPENAI_BASE_URL", "https://api.openai.com"),
        )


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        msg = f"{name} must be an integer, got {value!r}"
        raise ValueError(msg) from exc


def _parse_float(name: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        msg = f"{name} must be a number, got {value!r}"
        raise ValueError(msg) from exc


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}
