"""Anthropic messages API adapter."""

from __future__ import annotations

import logging
from typing import Any

from replyflow.services.ai.providers.base import ImageInput, ProviderAdapter
from replyflow.services.ai.response import AiResponse

logger = logging.getLogger("ai.providers.claude")

ANTHROPIC_VERSION = "2023-06-01"


class ClaudeAdapter(ProviderAdapter):
    name = "claude"
    capabilities = frozenset({"text", "image"})
    default_model = "claude-3-5-sonnet-20241022"
    available_models = (
        "claude-3-opus-20240229",
        "claude-3-sonnet-20240229",
        "claude-3-haiku-20240307",
        "claude-3-5-sonnet-20241022",
    )
    base_url = "https://api.anthropic.com/v1"

    def vision_user_content(self, text: str, images: list[ImageInput]) -> Any:
        # Images go before the text block
        content: list[dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.mime_type, "data": image.base64},
            }
            for image in images
        ]
        content.append({"type": "text", "text": text})
        return content

    def build_payload(self, messages: list[dict[str, Any]], options: dict[str, Any]) -> dict[str, Any]:
        system_parts: list[str] = []
        turns: list[dict[str, Any]] = []
        for message in messages:
            if message["role"] == "system":
                system_parts.append(message["content"])
            else:
                turns.append({"role": message["role"], "content": message["content"]})

        payload: dict[str, Any] = {
            "model": options["model"],
            "max_tokens": options["max_tokens"],
            "messages": turns,
        }
        system = "\n".join(system_parts).strip()
        if system:
            payload["system"] = system
        if options.get("temperature") is not None and float(options["temperature"]) != 1.0:
            payload["temperature"] = options["temperature"]
        return payload

    async def _call(self, messages: list[dict[str, Any]], options: dict[str, Any]) -> AiResponse:
        payload = self.build_payload(messages, options)
        logger.info("LLM request → claude (%s)", options["model"])

        async with self._client() as client:
            resp = await client.post(
                f"{self.base_url}/messages",
                headers={"x-api-key": self._api_key, "anthropic-version": ANTHROPIC_VERSION},
                json=payload,
            )

        if resp.status_code != 200:
            logger.error("claude error (%s): %s", resp.status_code, resp.text[:500])
            return AiResponse.failure(
                self._error_message(resp, "Unknown error from Claude"),
                self._json_or_empty(resp),
                model=options["model"],
            )

        data = resp.json()
        if data.get("type") == "error":
            return AiResponse.failure(
                (data.get("error") or {}).get("message", "Unknown error"), data, model=options["model"]
            )

        text = "".join(
            block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"
        )
        usage = data.get("usage") or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        return AiResponse.success(
            content=text,
            model=data.get("model") or options["model"],
            usage={
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
                "total_tokens": input_tokens + output_tokens,
            },
            finish_reason=data.get("stop_reason"),
            raw=data,
        )
