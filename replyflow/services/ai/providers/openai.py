"""OpenAI chat completions adapter."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from replyflow.services.ai.providers.base import ImageInput, ProviderAdapter, ProviderContext
from replyflow.services.ai.response import AiResponse

logger = logging.getLogger("ai.providers.openai")


class OpenAiAdapter(ProviderAdapter):
    name = "openai"
    capabilities = frozenset({"text", "image", "audio"})
    default_model = "gpt-5-mini"
    available_models = ("gpt-5-mini", "gpt-4o", "gpt-4-turbo", "gpt-4", "gpt-3.5-turbo")
    base_url = "https://api.openai.com/v1"

    def __init__(
        self,
        api_key: str = "",
        *,
        vision_model: str = "gpt-4o",
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, timeout=timeout, transport=transport)
        self.vision_model = vision_model

    async def send_message_with_vision(
        self, text: str, context: ProviderContext | None = None, options: dict[str, Any] | None = None
    ) -> AiResponse:
        options = dict(options or {})
        if context and context.images and not options.get("model"):
            options["model"] = self.vision_model
        return await super().send_message_with_vision(text, context, options)

    def vision_user_content(self, text: str, images: list[ImageInput]) -> Any:
        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {
                    "url": f"data:{image.mime_type};base64,{image.base64}",
                    "detail": image.detail,
                },
            })
        return content

    async def _call(self, messages: list[dict[str, Any]], options: dict[str, Any]) -> AiResponse:
        body = {
            "model": options["model"],
            "messages": messages,
            "max_tokens": options["max_tokens"],
            "temperature": options["temperature"],
        }
        logger.info("LLM request → openai (%s)", options["model"])

        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}/chat/completions",
                headers={"Authorization": f"Bearer {self._api_key}"},
                json=body,
            )

        if resp.status_code != 200:
            logger.error("openai error (%s): %s", resp.status_code, resp.text[:500])
            return AiResponse.failure(
                self._error_message(resp, "Unknown error from OpenAI"),
                self._json_or_empty(resp),
                model=options["model"],
            )

        data = resp.json()
        choices = data.get("choices") or []
        if not choices:
            return AiResponse.failure("No response from OpenAI", data, model=options["model"])
        choice = choices[0]
        usage = data.get("usage") or {}
        return AiResponse.success(
            content=(choice.get("message") or {}).get("content") or "",
            model=data.get("model") or options["model"],
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            },
            finish_reason=choice.get("finish_reason"),
            raw=data,
        )
