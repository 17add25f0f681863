"""Facebook Messenger sender (Send API through the page access token)."""

from __future__ import annotations

import logging
from typing import Any

from replyflow.channels.base import PlatformSender, SendResult

logger = logging.getLogger("channels.facebook")

FB_GRAPH_URL = "https://graph.facebook.com/v25.0"


class FacebookSender(PlatformSender):
    platform = "facebook"
    images_first = True
    required_credentials = ("page_access_token",)

    async def _send(self, recipient: str, message: dict[str, Any]) -> SendResult:
        data = await self._post(
            f"{FB_GRAPH_URL}/me/messages",
            {"recipient": {"id": recipient}, "messaging_type": "RESPONSE", "message": message},
            params={"access_token": self.credential("page_access_token")},
        )
        logger.info("✅ Messenger reply sent to %s", recipient)
        return SendResult(data.get("message_id"))

    async def send_text(self, recipient: str, text: str) -> SendResult:
        return await self._send(recipient, {"text": text})

    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult:
        # Messenger attachments carry no caption; it is sent as a follow-up text
        result = await self._send(recipient, {
            "attachment": {"type": "image", "payload": {"url": image_url, "is_reusable": True}},
        })
        if caption:
            await self.send_text(recipient, caption)
        return result
