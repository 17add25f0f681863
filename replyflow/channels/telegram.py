"""Telegram Bot API sender."""

from __future__ import annotations

import logging
from typing import Any

from replyflow.channels.base import PlatformSender, SendResult

logger = logging.getLogger("channels.telegram")

TELEGRAM_API_URL = "https://api.telegram.org"


class TelegramSender(PlatformSender):
    platform = "telegram"
    images_first = True
    required_credentials = ("bot_token",)

    async def _call(self, method: str, payload: dict[str, Any]) -> SendResult:
        data = await self._post(f"{TELEGRAM_API_URL}/bot{self.credential('bot_token')}/{method}", payload)
        message_id = (data.get("result") or {}).get("message_id")
        logger.info("✅ Telegram %s to chat %s", method, payload["chat_id"])
        return SendResult(str(message_id) if message_id is not None else None)

    async def send_text(self, recipient: str, text: str) -> SendResult:
        return await self._call("sendMessage", {"chat_id": recipient, "text": text})

    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult:
        payload = {"chat_id": recipient, "photo": image_url}
        if caption:
            payload["caption"] = caption
        return await self._call("sendPhoto", payload)
