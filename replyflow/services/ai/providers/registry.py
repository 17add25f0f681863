"""Provider registry — maps a provider slug to a configured adapter.

Adding a vendor is one entry in PROVIDERS plus its adapter module.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

import httpx

from replyflow.config import Settings
from replyflow.services.ai.providers.base import ProviderAdapter
from replyflow.services.ai.providers.claude import ClaudeAdapter
from replyflow.services.ai.providers.gemini import GeminiAdapter
from replyflow.services.ai.providers.openai import OpenAiAdapter


@dataclass(frozen=True)
class ProviderSpec:
    """One registered AI vendor."""
    id: str
    name: str
    api_key_setting: str
    factory: Callable[..., ProviderAdapter]


PROVIDERS: dict[str, ProviderSpec] = {
    "openai": ProviderSpec("openai", "OpenAI", "openai_api_key", OpenAiAdapter),
    "claude": ProviderSpec("claude", "Anthropic Claude", "anthropic_api_key", ClaudeAdapter),
    "gemini": ProviderSpec("gemini", "Google Gemini", "gemini_api_key", GeminiAdapter),
}


def get_provider_spec(provider_id: str) -> ProviderSpec:
    spec = PROVIDERS.get(provider_id)
    if spec is None:
        raise ValueError(f"Unknown AI provider: {provider_id}")
    return spec


class ProviderRegistry:
    """Builds adapters lazily and reuses them for the process lifetime."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._transport = transport
        self._adapters: dict[str, ProviderAdapter] = {}

    def register(self, provider_id: str, adapter: ProviderAdapter) -> None:
        self._adapters[provider_id] = adapter

    def get(self, provider_id: str) -> ProviderAdapter:
        """Raises ValueError for an unknown provider id."""
        if provider_id in self._adapters:
            return self._adapters[provider_id]
        spec = get_provider_spec(provider_id)
        kwargs = {
            "timeout": self._settings.provider_timeout_seconds,
            "transport": self._transport,
        }
        if spec.id == "openai":
            kwargs["vision_model"] = self._settings.openai_vision_model
        adapter = spec.factory(getattr(self._settings, spec.api_key_setting), **kwargs)
        self._adapters[provider_id] = adapter
        return adapter
