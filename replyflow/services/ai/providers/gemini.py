"""Google Gemini generateContent adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from replyflow.services.ai.providers.base import ImageInput, ProviderAdapter
from replyflow.services.ai.response import AiResponse

logger = logging.getLogger("ai.providers.gemini")

MAX_ATTEMPTS = 3
RETRY_DELAY_SECONDS = 2
MAX_RETRY_WAIT_SECONDS = 30


class GeminiAdapter(ProviderAdapter):
    name = "gemini"
    capabilities = frozenset({"text", "image"})
    default_model = "gemini-2.0-flash"
    available_models = ("gemini-2.0-flash", "gemini-2.0-flash-lite", "gemini-1.5-flash", "gemini-1.5-pro")
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def __init__(
        self,
        api_key: str = "",
        *,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        super().__init__(api_key, timeout=timeout, transport=transport)
        self._sleep = sleep

    def vision_user_content(self, text: str, images: list[ImageInput]) -> Any:
        parts: list[dict[str, Any]] = [{"text": text}]
        for image in images:
            parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.base64}})
        return parts

    @staticmethod
    def to_gemini_format(messages: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], str]:
        """OpenAI-style messages → (contents, systemInstruction text)."""
        contents: list[dict[str, Any]] = []
        system_parts: list[str] = []
        for message in messages:
            role, content = message["role"], message["content"]
            if role == "system":
                if isinstance(content, str):
                    system_parts.append(content)
                continue
            parts = content if isinstance(content, list) else [{"text": content}]
            contents.append({"role": "model" if role == "assistant" else "user", "parts": parts})

        # Conversations must open with a user turn
        if contents and contents[0]["role"] != "user":
            contents.insert(0, {"role": "user", "parts": [{"text": "Hello"}]})
        return contents, "\n\n".join(system_parts).strip()

    @staticmethod
    def _retry_delay(resp: httpx.Response, attempt: int) -> float:
        try:
            details = resp.json()["error"]["details"]
            delay = details[2]["retryDelay"]
        except (ValueError, KeyError, IndexError, TypeError):
            delay = None
        if isinstance(delay, (int, float)):
            return float(delay)
        if isinstance(delay, str):
            try:
                return float(delay)
            except ValueError:
                pass
        return float(RETRY_DELAY_SECONDS * attempt)

    async def _call(self, messages: list[dict[str, Any]], options: dict[str, Any]) -> AiResponse:
        model = options["model"]
        contents, system = self.to_gemini_format(messages)
        payload: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "maxOutputTokens": options["max_tokens"],
                "temperature": options["temperature"],
            },
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}

        url = f"{self.base_url}/models/{model}:generateContent"
        logger.info("LLM request → gemini (%s)", model)

        async with self._client() as client:
            for attempt in range(1, MAX_ATTEMPTS + 1):
                resp = await client.post(url, params={"key": self._api_key}, json=payload)
                if resp.status_code == 429 and attempt < MAX_ATTEMPTS:
                    wait = min(self._retry_delay(resp, attempt), MAX_RETRY_WAIT_SECONDS)
                    logger.warning("Gemini rate limited (attempt %d) — retrying in %.0fs", attempt, wait)
                    await self._sleep(wait)
                    continue
                break

        if resp.status_code != 200:
            logger.error("gemini error (%s): %s", resp.status_code, resp.text[:500])
            return AiResponse.failure(
                self._error_message(resp, "Unknown error from Gemini"),
                self._json_or_empty(resp),
                model=model,
            )

        data = resp.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return AiResponse.failure("No response from Gemini", data, model=model)
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or [{}]
        usage = data.get("usageMetadata") or {}
        return AiResponse.success(
            content=parts[0].get("text", ""),
            model=model,
            usage={
                "prompt_tokens": usage.get("promptTokenCount", 0),
                "completion_tokens": usage.get("candidatesTokenCount", 0),
                "total_tokens": usage.get("totalTokenCount", 0),
            },
            finish_reason=candidate.get("finishReason"),
            raw=data,
        )
