"""WhatsApp Cloud API sender.

POST /{phone_number_id}/messages with a bearer token.
Ref: https://developers.facebook.com/docs/whatsapp/cloud-api/reference/messages
"""

from __future__ import annotations

import logging
from typing import Any

from replyflow.channels.base import PlatformSender, SendResult

logger = logging.getLogger("channels.whatsapp")

GRAPH_URL = "https://graph.facebook.com/v25.0"


class WhatsAppSender(PlatformSender):
    platform = "whatsapp"
    images_first = True
    required_credentials = ("phone_number_id", "access_token")

    async def _send(self, recipient: str, body: dict[str, Any]) -> SendResult:
        payload = {"messaging_product": "whatsapp", "recipient_type": "individual", "to": recipient, **body}
        data = await self._post(
            f"{GRAPH_URL}/{self.credential('phone_number_id')}/messages",
            payload,
            headers={"Authorization": f"Bearer {self.credential('access_token')}"},
        )
        messages = data.get("messages") or [{}]
        logger.info("✅ WhatsApp %s sent to %s", body["type"], recipient)
        return SendResult(messages[0].get("id"))

    async def send_text(self, recipient: str, text: str) -> SendResult:
        return await self._send(recipient, {"type": "text", "text": {"preview_url": False, "body": text}})

    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult:
        image: dict[str, Any] = {"link": image_url}
        if caption:
            image["caption"] = caption
        return await self._send(recipient, {"type": "image", "image": image})
