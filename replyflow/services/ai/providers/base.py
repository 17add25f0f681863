"""Uniform call surface over AI vendor APIs.

Every adapter builds OpenAI-style role messages, then converts them to
its vendor's wire shape in ``_call``. Anything that goes wrong inside a
call (HTTP errors, timeouts, malformed payloads) is caught in ``_guarded``
and returned as a failed AiResponse, so callers can fall back without
knowing which vendor failed or how.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import httpx

from replyflow.services.ai.response import AiResponse

logger = logging.getLogger("ai.providers")

DEFAULT_MAX_TOKENS = 1024
DEFAULT_TEMPERATURE = 0.7


@dataclass(frozen=True)
class ImageInput:
    """An inline image for vision calls."""
    base64: str
    mime_type: str
    detail: str = "auto"


@dataclass(frozen=True)
class HistoryTurn:
    role: str  # user | assistant
    content: str


@dataclass
class ProviderContext:
    system: str | None = None
    history: list[HistoryTurn] = field(default_factory=list)
    images: list[ImageInput] = field(default_factory=list)


class ProviderAdapter(ABC):
    name: str = ""
    capabilities: frozenset[str] = frozenset({"text"})
    default_model: str = ""
    available_models: tuple[str, ...] = ()
    base_url: str = ""

    def __init__(
        self,
        api_key: str = "",
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport

    # ── Capabilities ────────────────────────────────────────────

    def validate_credentials(self) -> bool:
        return bool(self._api_key)

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities

    @property
    def supports_vision(self) -> bool:
        return self.supports("image")

    def merge_options(self, options: dict[str, Any] | None = None) -> dict[str, Any]:
        """Explicit options win; missing values fall back to adapter defaults."""
        options = {k: v for k, v in (options or {}).items() if v is not None}
        return {
            "model": options.get("model") or self.default_model,
            "max_tokens": options.get("max_tokens", DEFAULT_MAX_TOKENS),
            "temperature": options.get("temperature", DEFAULT_TEMPERATURE),
        }

    # ── Public API ──────────────────────────────────────────────

    async def send_message(
        self, text: str, context: ProviderContext | None = None, options: dict[str, Any] | None = None
    ) -> AiResponse:
        merged = self.merge_options(options)
        messages = self.build_messages(text, context or ProviderContext())
        return await self._guarded(lambda: self._call(messages, merged), merged["model"])

    async def send_message_with_vision(
        self, text: str, context: ProviderContext | None = None, options: dict[str, Any] | None = None
    ) -> AiResponse:
        context = context or ProviderContext()
        if not self.supports_vision:
            return await self.send_message(text, context, options)
        merged = self.merge_options(options)
        messages = self.build_messages(text, context, vision=True)
        return await self._guarded(lambda: self._call(messages, merged), merged["model"])

    async def generate_response(
        self, system_prompt: str, user_text: str, options: dict[str, Any] | None = None
    ) -> AiResponse:
        merged = self.merge_options(options)
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        return await self._guarded(lambda: self._call(messages, merged), merged["model"])

    # ── Message construction ────────────────────────────────────

    def build_messages(
        self, text: str, context: ProviderContext, *, vision: bool = False
    ) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if context.system:
            messages.append({"role": "system", "content": context.system})
        for turn in context.history:
            messages.append({"role": turn.role, "content": turn.content})
        content: Any = text
        if vision and context.images:
            content = self.vision_user_content(text, context.images)
        messages.append({"role": "user", "content": content})
        return messages

    def vision_user_content(self, text: str, images: list[ImageInput]) -> Any:
        """Vendor-specific multimodal user content. Plain text by default."""
        return text

    # ── Transport ───────────────────────────────────────────────

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    @staticmethod
    def _error_message(resp: httpx.Response, fallback: str) -> str:
        try:
            data = resp.json()
        except ValueError:
            return fallback
        if isinstance(data, dict) and isinstance(data.get("error"), dict):
            return data["error"].get("message") or fallback
        return fallback

    @staticmethod
    def _json_or_empty(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {"body": data}

    async def _guarded(
        self, call: Callable[[], Awaitable[AiResponse]], model: str
    ) -> AiResponse:
        if not self.validate_credentials():
            return AiResponse.failure(f"{self.name} API key is not configured", model=model)
        try:
            return await call()
        except Exception as exc:
            logger.exception("AI provider error [%s]: %s", self.name, exc)
            return AiResponse.failure(str(exc) or exc.__class__.__name__, model=model)

    @abstractmethod
    async def _call(self, messages: list[dict[str, Any]], options: dict[str, Any]) -> AiResponse:
        """Perform one vendor request. May raise; _guarded normalizes it."""
