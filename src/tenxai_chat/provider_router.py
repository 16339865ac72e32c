"""Provider routing — maps service-provider names to LLM providers."""

from __future__ import annotations

from .config import VALID_PROVIDERS, AppConfig
from .models import ServiceProvider
from .openai_provider import OpenAIProvider
from .provider import LLMProvider, StubLLMProvider


class ProviderRouter:
    """Resolves the provider to call for a session's ``provider_name``."""

    def __init__(self) -> None:
        self._providers: dict[str, LLMProvider] = {}
        self._default: str | None = None

    # -- registration -------------------------------------------------------

    def register(self, provider: LLMProvider, *aliases: str) -> None:
        """Register a provider under its canonical name and optional aliases."""
        self._providers[provider.name().lower()] = provider
        for alias in aliases:
            self._providers[alias.lower()] = provider

    def set_default(self, provider_name: str) -> None:
        """Set the provider used when no registration matches."""
        key = provider_name.lower()
        if key not in self._providers:
            msg = f"Unknown provider: {provider_name}"
            raise KeyError(msg)
        self._default = key

    # -- lookup -------------------------------------------------------------

    def route(self, provider_name: str | None) -> LLMProvider:
        """Resolve a provider name, falling back to the default.

        Raises ``KeyError`` when nothing matches and no default is set.
        """
        if provider_name and provider_name.lower() in self._providers:
            return self._providers[provider_name.lower()]
        if self._default is not None:
            return self._providers[self._default]
        msg = f"No provider registered for '{provider_name}'"
        raise KeyError(msg)

    def list_providers(self) -> list[str]:
        return sorted(self._providers)

    # -- factory ------------------------------------------------------------

    @classmethod
    def from_config(cls, config: AppConfig) -> ProviderRouter:
        """Build a router from ``config.llm_provider`` (openai | stub).

        With ``openai`` every known service provider is served by one
        OpenAI-compatible endpoint; with ``stub`` a deterministic stub answers.
        """
        if config.llm_provider not in VALID_PROVIDERS:
            msg = f"Unknown provider '{config.llm_provider}'"
            raise ValueError(msg)

        router = cls()
        if config.llm_provider == "openai":
            provider: LLMProvider = OpenAIProvider(
                api_key=config.openai_api_key,
                base_url=config.openai_base_url,
            )
        else:
            provider = StubLLMProvider()
        router.register(provider, *(str(p) for p in ServiceProvider))
        router.set_default(provider.name())
        return router
