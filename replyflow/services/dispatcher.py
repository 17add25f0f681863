"""Dispatcher — persist an AI answer, then deliver it to the customer's platform.

The outgoing Message row is committed before anything is sent, together
with whatever the caller already changed in the session (the batch's
ai_processed_at marks). A send that fails or never finishes still leaves
an inspectable transcript, and a delivered reply is never rolled back.
Each image and the text are sent independently; a TransportError is
logged and the rest continue.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable, Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.channels import IMAGES_FIRST_PLATFORMS, PlatformSender, TransportError, build_sender
from replyflow.models import Appointment, Conversation, Customer, Message, PlatformConnection
from replyflow.models.base import utcnow
from replyflow.services.ai.response import AiAnswer

logger = logging.getLogger("dispatcher")


def build_metadata(
    answer: AiAnswer,
    processed_message_ids: Iterable[uuid.UUID] = (),
    appointment: Appointment | None = None,
) -> dict:
    metadata = {
        "provider": answer.provider,
        "model": answer.model,
        "personality_id": str(answer.personality_id) if answer.personality_id else None,
        "personality_name": answer.personality_name,
        "agent_type": answer.agent_type,
        "confidence": answer.confidence,
        "auto_generated": True,
        "processed_message_ids": [str(i) for i in processed_message_ids],
        "product_images_total": len(answer.images),
        "product_images_sent": 0,
        "cached": answer.cached,
        "send_errors": [],
    }
    if answer.degraded:
        metadata["degraded"] = list(answer.degraded)
    if appointment is not None:
        metadata["appointment_booked"] = {
            "id": str(appointment.id),
            "start_time": appointment.start_time.isoformat(),
        }
    return metadata


class Dispatcher:
    def __init__(
        self, sender_factory: Callable[[PlatformConnection], PlatformSender] = build_sender
    ) -> None:
        self._sender_factory = sender_factory

    async def dispatch(
        self,
        db: AsyncSession,
        conversation: Conversation,
        answer: AiAnswer,
        *,
        processed_message_ids: Iterable[uuid.UUID] = (),
        appointment: Appointment | None = None,
    ) -> Message:
        # ── Step 1: Persist ──
        message = Message(
            conversation_id=conversation.id,
            sender_type="ai",
            content=answer.text,
            message_type="text_with_images" if answer.images else "text",
            media=[{"type": "image", "url": url} for url in answer.images],
            metadata_=build_metadata(answer, processed_message_ids, appointment),
            created_at=utcnow(),
        )
        db.add(message)
        conversation.last_message_at = message.created_at
        await db.commit()

        # ── Step 2: Resolve destination ──
        connection = (
            await db.get(PlatformConnection, conversation.platform_connection_id)
            if conversation.platform_connection_id
            else None
        )
        if connection is None or not connection.is_active:
            logger.warning(
                "⏭️ No active platform connection for conversation %s — reply stored, not sent",
                conversation.id,
            )
            return message

        customer = await db.get(Customer, conversation.customer_id)
        try:
            sender = self._sender_factory(connection)
        except ValueError as exc:
            logger.error("⏭️ %s — reply stored, not sent", exc)
            return message

        # ── Step 3: Send in platform order ──
        errors: list[str] = []
        images_sent = await self._deliver(
            sender, connection.platform, customer.platform_user_id, answer, errors
        )

        message.metadata_ = {
            **message.metadata_,
            "product_images_sent": images_sent,
            "send_errors": errors,
        }
        await db.commit()

        logger.info(
            "📤 Reply dispatched on %s for conversation %s (%d/%d images, %d errors)",
            connection.platform, conversation.id, images_sent, len(answer.images), len(errors),
        )
        return message

    async def _deliver(
        self,
        sender: PlatformSender,
        platform: str,
        recipient: str,
        answer: AiAnswer,
        errors: list[str],
    ) -> int:
        images_sent = 0

        async def send_images() -> None:
            nonlocal images_sent
            for url in answer.images:
                try:
                    await sender.send_image(recipient, url)
                    images_sent += 1
                except TransportError as exc:
                    logger.error("Image send failed (%s): %s", url[:100], exc)
                    errors.append(str(exc))

        async def send_text() -> None:
            if not answer.text:
                return
            try:
                await sender.send_text(recipient, answer.text)
            except TransportError as exc:
                logger.error("Text send failed: %s", exc)
                errors.append(str(exc))

        if platform in IMAGES_FIRST_PLATFORMS:
            await send_images()
            await send_text()
        else:
            await send_text()
            await send_images()
        return images_sent
