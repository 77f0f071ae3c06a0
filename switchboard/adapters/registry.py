"""
Adapter Registry — provider id → adapter instance.

Built once at startup from the `providers:` section of config.yaml. Every
provider in PROVIDERS gets an adapter, configured or not, so the registry can
tell "unknown provider" apart from "provider with no credentials". Both are
ConfigurationError and both are raised before any network call.

Adding a provider:
    1. Implement BaseAdapter in switchboard/adapters/<name>.py.
    2. Add it to PROVIDERS below (or call registry.register() at runtime).
    3. Add a providers.<name> block to config.yaml.
"""

from __future__ import annotations

import logging

from switchboard.adapters.base import BaseAdapter, DEFAULT_MAX_TOKENS
from switchboard.adapters.anthropic import AnthropicAdapter
from switchboard.adapters.openai import OpenAIAdapter
from switchboard.adapters.google import GoogleAdapter
from switchboard.adapters.ollama import OllamaAdapter
from switchboard.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Provider id → adapter class
PROVIDERS: dict[str, type[BaseAdapter]] = {
    "anthropic": AnthropicAdapter,
    "openai": OpenAIAdapter,
    "google": GoogleAdapter,
    "ollama": OllamaAdapter,
}

DEFAULT_URLS = {
    "anthropic": "https://api.anthropic.com",
    "openai": "https://api.openai.com/v1",
    "google": "https://generativelanguage.googleapis.com",
    "ollama": "",
}

# Models offered to clients, filtered by which providers are configured
CATALOGUE: list[dict] = [
    {"provider": "anthropic", "model": "claude-sonnet-4-20250514",  "label": "Claude Sonnet 4",   "vision": True},
    {"provider": "anthropic", "model": "claude-opus-4-20250514",    "label": "Claude Opus 4",     "vision": True},
    {"provider": "anthropic", "model": "claude-haiku-4-5-20251001", "label": "Claude Haiku 4.5",  "vision": True},
    {"provider": "openai",    "model": "gpt-4o",                    "label": "GPT-4o",            "vision": True},
    {"provider": "openai",    "model": "gpt-4o-mini",               "label": "GPT-4o Mini",       "vision": True},
    {"provider": "openai",    "model": "gpt-4-turbo",               "label": "GPT-4 Turbo",       "vision": True},
    {"provider": "google",    "model": "gemini-2.0-flash",          "label": "Gemini 2.0 Flash",  "vision": True},
    {"provider": "google",    "model": "gemini-1.5-pro",            "label": "Gemini 1.5 Pro",    "vision": True},
    {"provider": "google",    "model": "gemini-1.5-flash",          "label": "Gemini 1.5 Flash",  "vision": True},
    {"provider": "ollama",    "model": "llama3.2",                  "label": "Llama 3.2 (Local)", "vision": False},
    {"provider": "ollama",    "model": "mistral",                   "label": "Mistral (Local)",   "vision": False},
    {"provider": "ollama",    "model": "qwen2.5",                   "label": "Qwen 2.5 (Local)",  "vision": False},
]


class AdapterRegistry:
    """Holds one adapter per provider id."""

    def __init__(self, adapters: dict[str, BaseAdapter] | None = None):
        self._adapters: dict[str, BaseAdapter] = dict(adapters or {})

    @classmethod
    def from_config(cls, providers_config: dict | None) -> "AdapterRegistry":
        """Instantiate every known provider from its config block."""
        providers_config = providers_config or {}
        registry = cls()
        for provider, adapter_cls in PROVIDERS.items():
            registry.register(provider, cls._create_adapter(provider, adapter_cls, providers_config.get(provider) or {}))

        for provider in providers_config:
            if provider not in PROVIDERS:
                logger.warning("Unknown provider '%s' in config, skipping", provider)

        ready = [p for p in registry.providers() if registry._adapters[p].configured]
        logger.info("Adapter registry initialized: %s", ", ".join(ready) or "no providers configured")
        return registry

    @staticmethod
    def _create_adapter(provider: str, adapter_cls: type[BaseAdapter], cfg: dict) -> BaseAdapter:
        return adapter_cls(
            url=cfg.get("url") or DEFAULT_URLS.get(provider, ""),
            api_key=cfg.get("api_key", ""),
            timeout=cfg.get("timeout", 120),
            max_tokens=cfg.get("max_tokens", DEFAULT_MAX_TOKENS),
        )

    def register(self, provider: str, adapter: BaseAdapter):
        self._adapters[provider] = adapter

    def providers(self) -> list[str]:
        return list(self._adapters)

    def resolve(self, provider: str) -> BaseAdapter:
        """Return the adapter for `provider` or raise ConfigurationError."""
        adapter = self._adapters.get(provider)
        if adapter is None:
            raise ConfigurationError(f"Unknown provider: {provider}")
        if not adapter.configured:
            raise ConfigurationError(f"Provider '{provider}' is not configured")
        return adapter

    def is_configured(self, provider: str) -> bool:
        adapter = self._adapters.get(provider)
        return adapter is not None and adapter.configured

    def available_models(self) -> list[dict]:
        """Catalogue entries whose provider is usable right now."""
        return [dict(m) for m in CATALOGUE if self.is_configured(m["provider"])]
