"""Web-chat widget channel.

The widget polls the conversation's stored messages, so persisting the
outgoing message is the delivery; nothing goes over the wire here.
"""

from __future__ import annotations

from replyflow.channels.base import PlatformSender, SendResult


class WebChatSender(PlatformSender):
    platform = "webchat"
    images_first = False

    async def send_text(self, recipient: str, text: str) -> SendResult:
        return SendResult()

    async def send_image(self, recipient: str, image_url: str, caption: str | None = None) -> SendResult:
        return SendResult()
