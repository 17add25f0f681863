"""Outbound platform senders, looked up by platform slug."""

from __future__ import annotations

import httpx

from replyflow.channels.base import PlatformSender, SendResult, TransportError  # noqa: F401
from replyflow.channels.facebook import FacebookSender
from replyflow.channels.line import LineSender
from replyflow.channels.telegram import TelegramSender
from replyflow.channels.webchat import WebChatSender
from replyflow.channels.whatsapp import WhatsAppSender
from replyflow.models import PlatformConnection
from replyflow.services.encryption import decrypt_credentials

SENDERS: dict[str, type[PlatformSender]] = {
    cls.platform: cls
    for cls in (WhatsAppSender, FacebookSender, TelegramSender, LineSender, WebChatSender)
}

IMAGES_FIRST_PLATFORMS = frozenset(p for p, cls in SENDERS.items() if cls.images_first)


def build_sender(
    connection: PlatformConnection, transport: httpx.AsyncBaseTransport | None = None
) -> PlatformSender:
    """Sender for a connection, with its credentials decrypted. ValueError if unsupported."""
    sender_cls = SENDERS.get(connection.platform)
    if sender_cls is None:
        raise ValueError(f"Unsupported platform: {connection.platform}")
    return sender_cls(decrypt_credentials(connection.credentials), transport=transport)
