"""LINE Messaging API sender (push messages)."""

from __future__ import annotations

import logging
from typing import Any

from replyflow.channels.base import PlatformSender, SendResult

logger = logging.getLogger("channels.line")

LINE_PUSH_URL = "https://api.line.me/v2/bot/message/push"


class LineSender(PlatformSender):
    platform = "line"
    images_first = True
    required_credentials = ("channel_access_token",)

    async def _push(self, recipient: str, messages: list[dict[str, Any]]) -> SendResult:
        data = await self._post(
            LINE_PUSH_URL,
            {"to": recipient, "messages": messages},
            headers={"Authorization": f"Bearer {self.credential('channel_access_token')}"},
        )
        sent = data.get("sentMessages") or [{}]
        logger.info("✅ LINE push to %s (%d messages)", recipient, len(messages))
        return SendResult(sent[0].get("id"))

    async def send_text(self, recipient: str, text: str) -> SendResult:
        return await self._push(recipient, [{"type": "text", "text": text}])

    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult:
        messages = [{"type": "image", "originalContentUrl": image_url, "previewImageUrl": image_url}]
        if caption:
            messages.append({"type": "text", "text": caption})
        return await self._push(recipient, messages)
