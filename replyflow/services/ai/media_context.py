"""Media-derived context for one AI turn.

Two sources feed the orchestrator: completed media-processing results of
the triggering message (voice transcript, image caption) and the raw
images the customer sent in the last few minutes, inlined for vision
models.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import Conversation, Customer, MediaProcessingResult, Message
from replyflow.models.base import utcnow
from replyflow.services.ai.prompts import PromptPolicy
from replyflow.services.ai.providers.base import ImageInput

logger = logging.getLogger("ai.media_context")

IMAGE_PLACEHOLDER = "[Image]"
IMAGE_DOWNLOAD_TIMEOUT = 30.0


@dataclass
class MediaContext:
    audio_transcription: str | None = None
    audio_language: str | None = None
    image_description: str | None = None
    product_search: bool = False

    def __bool__(self) -> bool:
        return bool(self.audio_transcription or self.image_description)

    @property
    def product_image_query(self) -> str | None:
        """Caption to search with when the customer photographed a product."""
        if self.product_search and self.image_description:
            return self.image_description
        return None


async def load_media_context(db: AsyncSession, message: Message | None) -> MediaContext | None:
    """Completed processing results of ``message``, or None when there are none."""
    if message is None:
        return None
    result = await db.execute(
        select(MediaProcessingResult)
        .where(
            MediaProcessingResult.message_id == message.id,
            MediaProcessingResult.status == "completed",
        )
        .order_by(MediaProcessingResult.created_at)
    )
    context = MediaContext()
    for item in result.scalars().all():
        analysis = item.analysis_data or {}
        if item.media_type == "audio" and item.text_content:
            context.audio_transcription = item.text_content
            context.audio_language = analysis.get("language")
        elif item.media_type == "image" and item.text_content:
            context.image_description = item.text_content
            context.product_search = bool(analysis.get("product_search", False))
    return context if context else None


async def update_customer_language(db: AsyncSession, conversation: Conversation, language: str) -> None:
    customer = await db.get(Customer, conversation.customer_id)
    if customer is None or customer.language == language:
        return
    logger.info(
        "🌐 Customer %s language %s → %s (detected from audio)",
        customer.id, customer.language, language,
    )
    customer.language = language
    await db.flush()


def enhance_message(text: str, media: MediaContext) -> str:
    """Fold media-derived text into the customer's message, bracket-tagged."""
    enhanced = text
    if media.audio_transcription:
        enhanced = f'[Customer sent voice message]: "{media.audio_transcription}"\n\n{text}'
    if media.image_description:
        caption = f"[Customer sent an image showing: {media.image_description}]"
        if IMAGE_PLACEHOLDER in text:
            enhanced = enhanced.replace(IMAGE_PLACEHOLDER, caption)
        else:
            enhanced = f"{caption}\n\n{enhanced}"
    return enhanced


def media_instructions(media: MediaContext, policy: PromptPolicy) -> str:
    block = "\n\n# MEDIA CONTEXT\n"
    if media.audio_transcription:
        block += policy.media_voice
        if media.audio_language:
            block += policy.media_language.format(
                language=policy.language_name(media.audio_language),
                code=media.audio_language,
            )
    if media.image_description:
        block += policy.media_image
        block += policy.media_image_product if media.product_search else policy.media_image_general
    return block


# ── Recent images for vision ────────────────────────────────────────


class ImageFetcher:
    """Downloads customer images and inlines them as base64."""

    def __init__(
        self,
        timeout: float = IMAGE_DOWNLOAD_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def fetch(self, url: str) -> ImageInput | None:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(url)
        except httpx.HTTPError as exc:
            logger.error("Error downloading image %s: %s", url[:100], exc)
            return None
        if resp.status_code != 200:
            logger.warning("Failed to download image %s: HTTP %s", url[:100], resp.status_code)
            return None
        mime_type = resp.headers.get("content-type", "image/jpeg").split(";")[0].strip()
        encoded = base64.b64encode(resp.content).decode("ascii")
        logger.info("🖼️ Downloaded image for vision (%s, %d bytes)", mime_type, len(encoded))
        return ImageInput(base64=encoded, mime_type=mime_type or "image/jpeg")


async def recent_customer_images(
    db: AsyncSession,
    conversation: Conversation,
    fetcher: ImageFetcher,
    *,
    window_minutes: int = 5,
    limit: int = 3,
    now: datetime | None = None,
) -> tuple[list[ImageInput], int]:
    """Images from the customer's latest image messages, plus the failure count."""
    since = (now or utcnow()) - timedelta(minutes=window_minutes)
    result = await db.execute(
        select(Message)
        .where(
            Message.conversation_id == conversation.id,
            Message.sender_type == "customer",
            Message.message_type == "image",
            Message.created_at > since,
        )
        .order_by(Message.created_at.desc())
        .limit(limit)
    )
    images: list[ImageInput] = []
    failures = 0
    for message in result.scalars().all():
        for media in message.media or []:
            if media.get("type") != "image" or not media.get("url"):
                continue
            image = await fetcher.fetch(media["url"])
            if image is None:
                failures += 1
            else:
                images.append(image)
    return images, failures
