"""Inbound message ingestion.

Takes a message already normalized by a platform parser and records it:
connection → customer (upsert) → the single active conversation → the
message itself, stored idempotently on its platform-native id.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from replyflow.models import Conversation, Customer, Message, PlatformConnection
from replyflow.models.base import utcnow
from replyflow.models.conversation import ACTIVE_STATUSES
from replyflow.schemas import CustomerProfile, InboundMessage

logger = logging.getLogger("ingestion")


class UnknownConnectionError(LookupError):
    pass


@dataclass
class IngestResult:
    message: Message
    conversation: Conversation
    customer: Customer
    duplicate: bool


async def resolve_connection(db: AsyncSession, connection_id: uuid.UUID) -> PlatformConnection:
    connection = await db.get(PlatformConnection, connection_id)
    if connection is None:
        raise UnknownConnectionError(f"Platform connection {connection_id} not found")
    return connection


async def _find_customer(db: AsyncSession, connection: PlatformConnection, platform_user_id: str) -> Customer | None:
    result = await db.execute(
        select(Customer).where(
            Customer.company_id == connection.company_id,
            Customer.platform == connection.platform,
            Customer.platform_user_id == platform_user_id,
        )
    )
    return result.scalar_one_or_none()


async def upsert_customer(
    db: AsyncSession,
    connection: PlatformConnection,
    platform_user_id: str,
    profile: CustomerProfile | None = None,
) -> Customer:
    profile = profile or CustomerProfile()
    customer = await _find_customer(db, connection, platform_user_id)

    if customer is None:
        customer = Customer(
            company_id=connection.company_id,
            platform=connection.platform,
            platform_user_id=platform_user_id,
            name=profile.name,
            email=profile.email,
            phone=profile.phone,
            language=profile.language,
            profile_data=profile.profile_data,
        )
        try:
            async with db.begin_nested():
                db.add(customer)
                await db.flush()
        except IntegrityError:
            # Concurrent first message from the same customer
            customer = await _find_customer(db, connection, platform_user_id)
            if customer is None:
                raise
        else:
            logger.info("New customer %s on %s", platform_user_id, connection.platform)
            return customer

    for field in ("name", "email", "phone", "language"):
        value = getattr(profile, field)
        if value and getattr(customer, field) != value:
            setattr(customer, field, value)
    if profile.profile_data:
        customer.profile_data = {**(customer.profile_data or {}), **profile.profile_data}
    return customer


async def active_conversation(
    db: AsyncSession, connection: PlatformConnection, customer: Customer
) -> Conversation:
    """The open or in-progress conversation for this customer and connection, else a new one."""
    result = await db.execute(
        select(Conversation)
        .where(
            Conversation.company_id == connection.company_id,
            Conversation.customer_id == customer.id,
            Conversation.platform_connection_id == connection.id,
            Conversation.status.in_(ACTIVE_STATUSES),
        )
        .order_by(Conversation.created_at.desc())
        .limit(1)
    )
    conversation = result.scalar_one_or_none()
    if conversation is None:
        conversation = Conversation(
            company_id=connection.company_id,
            customer_id=customer.id,
            platform_connection_id=connection.id,
            status="open",
            is_ai_handling=True,
        )
        db.add(conversation)
        await db.flush()
        logger.info("New conversation %s for customer %s", conversation.id, customer.id)
    return conversation


async def _find_message(db: AsyncSession, conversation_id: uuid.UUID, platform_message_id: str) -> Message | None:
    result = await db.execute(
        select(Message).where(
            Message.conversation_id == conversation_id,
            Message.platform_message_id == platform_message_id,
        )
    )
    return result.scalar_one_or_none()


async def store_message(
    db: AsyncSession, conversation: Conversation, inbound: InboundMessage
) -> tuple[Message, bool]:
    """Insert the customer message. Returns (message, duplicate)."""
    if inbound.platform_message_id:
        existing = await _find_message(db, conversation.id, inbound.platform_message_id)
        if existing is not None:
            logger.info("⏭️ Duplicate delivery of %s — ignored", inbound.platform_message_id)
            return existing, True

    metadata: dict = {}
    if inbound.reply_to is not None:
        metadata["reply_to"] = inbound.reply_to.model_dump(exclude_none=True)
    if inbound.media_text:
        metadata["media_text"] = inbound.media_text

    message = Message(
        conversation_id=conversation.id,
        sender_type="customer",
        content=inbound.text,
        message_type=inbound.message_type,
        media=[m.model_dump() for m in inbound.media],
        metadata_=metadata,
        platform_message_id=inbound.platform_message_id,
        created_at=utcnow(),
    )
    try:
        async with db.begin_nested():
            db.add(message)
            await db.flush()
    except IntegrityError:
        existing = (
            await _find_message(db, conversation.id, inbound.platform_message_id)
            if inbound.platform_message_id
            else None
        )
        if existing is None:
            raise
        logger.info("⏭️ Duplicate delivery of %s lost the insert race — ignored", inbound.platform_message_id)
        return existing, True

    conversation.last_message_at = message.created_at
    await db.flush()
    return message, False


async def ingest(db: AsyncSession, inbound: InboundMessage) -> IngestResult:
    connection = await resolve_connection(db, inbound.connection_id)
    customer = await upsert_customer(db, connection, inbound.customer_platform_id, inbound.customer)
    conversation = await active_conversation(db, connection, customer)
    message, duplicate = await store_message(db, conversation, inbound)
    if not duplicate:
        logger.info(
            "📥 %s message from %s stored in conversation %s",
            connection.platform, inbound.customer_platform_id, conversation.id,
        )
    return IngestResult(message=message, conversation=conversation, customer=customer, duplicate=duplicate)
