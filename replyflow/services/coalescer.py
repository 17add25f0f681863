"""Response coalescer — one AI reply per burst of customer messages.

Every inbound customer message calls schedule(), which overwrites the
conversation's pending-job marker with a fresh token and starts a delayed
job carrying that token. When a job wakes up and the marker holds a
different token, a newer message arrived and the job does nothing. The
surviving job takes a short per-conversation lock, combines every
unprocessed customer message since the first one of the burst, asks the
orchestrator for one answer and hands it to the dispatcher.

Marker, first-message and lock live in the shared key-value store:

  pending_job_marker:{conversation_id}     token of the latest schedule
  pending_first_message:{conversation_id}  id of the burst's first message
  processing_lock:{conversation_id}        held during one generation
"""

from __future__ import annotations

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from replyflow.config import Settings, settings as default_settings
from replyflow.models import Conversation, Customer, Message
from replyflow.models.base import utcnow
from replyflow.services.ai.config import TurnOptions, load_company_default
from replyflow.services.ai.orchestrator import AiOrchestrator
from replyflow.services.ai.response import AiError, AiErrorKind
from replyflow.services.appointments import book_from_request
from replyflow.services.dispatcher import Dispatcher
from replyflow.services.kv_store import KeyValueStore

logger = logging.getLogger("coalescer")

MIN_MARKER_TTL = 120
REPLY_QUOTE_CHARS = 200


class Outcome(str, enum.Enum):
    SUPERSEDED = "superseded"
    SKIPPED = "skipped"
    LOCKED_OUT = "locked_out"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True)
class ScheduledJob:
    conversation_id: uuid.UUID
    token: str
    first_message_id: uuid.UUID
    delay_seconds: int
    options: TurnOptions = field(default_factory=TurnOptions)


def marker_key(conversation_id: uuid.UUID) -> str:
    return f"pending_job_marker:{conversation_id}"


def first_message_key(conversation_id: uuid.UUID) -> str:
    return f"pending_first_message:{conversation_id}"


def lock_key(conversation_id: uuid.UUID) -> str:
    return f"processing_lock:{conversation_id}"


def _quote(text: str, limit: int = REPLY_QUOTE_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def combine_messages(messages: Sequence[Message]) -> str:
    """One input text from a burst: reply quotes, texts and media-derived text, in order."""
    blocks = []
    for message in messages:
        metadata = message.metadata_ or {}
        parts = []
        reply_text = (metadata.get("reply_to") or {}).get("text")
        if reply_text:
            parts.append(f'[Replying to message: "{_quote(reply_text)}"]')
        if message.content:
            parts.append(message.content)
        if metadata.get("media_text"):
            parts.append(f"[{message.message_type or 'media'} content: {metadata['media_text']}]")
        if parts:
            blocks.append("\n".join(parts))
    return "\n".join(blocks)


class ResponseCoalescer:
    def __init__(
        self,
        *,
        store: KeyValueStore,
        orchestrator: AiOrchestrator,
        dispatcher: Dispatcher,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings = default_settings,
        scheduler: Callable[[ScheduledJob], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable = utcnow,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._session_factory = session_factory
        self._settings = settings
        self._scheduler = scheduler or self._spawn
        self._sleep = sleep
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    # ── Scheduling ──────────────────────────────────────────────

    async def response_delay(self, db: AsyncSession, company_id: uuid.UUID) -> int:
        configuration = await load_company_default(db, company_id)
        if configuration is not None and configuration.response_delay_seconds is not None:
            return configuration.response_delay_seconds
        return self._settings.default_response_delay_seconds

    async def schedule(
        self,
        db: AsyncSession,
        conversation: Conversation,
        message: Message,
        options: TurnOptions | None = None,
        delay_seconds: int | None = None,
    ) -> ScheduledJob:
        delay = delay_seconds if delay_seconds is not None else await self.response_delay(db, conversation.company_id)
        ttl = max(MIN_MARKER_TTL, delay + 60)

        first_key = first_message_key(conversation.id)
        if await self._store.set_if_absent(first_key, str(message.id), ttl):
            first_id = message.id
            logger.info("Starting new batching window for conversation %s", conversation.id)
        else:
            existing = await self._store.get(first_key)
            first_id = uuid.UUID(existing) if existing else message.id
            await self._store.set(first_key, str(first_id), ttl)
            logger.info("Extending batching window for conversation %s (first message %s)", conversation.id, first_id)

        token = self._clock().isoformat()
        await self._store.set(marker_key(conversation.id), token, ttl)

        job = ScheduledJob(
            conversation_id=conversation.id,
            token=token,
            first_message_id=first_id,
            delay_seconds=delay,
            options=options or TurnOptions(),
        )
        self._scheduler(job)
        logger.info("⏳ AI reply scheduled for conversation %s in %ss", conversation.id, delay)
        return job

    def _spawn(self, job: ScheduledJob) -> None:
        task = asyncio.create_task(self._delayed(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _delayed(self, job: ScheduledJob) -> None:
        await self._sleep(job.delay_seconds)
        try:
            await self.run(job)
        except Exception:
            logger.exception("Delayed AI reply crashed for conversation %s", job.conversation_id)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for the delayed jobs of this process, cancelling any still pending after ``timeout``.

        A cancelled job leaves its messages unprocessed; the next customer
        message of that conversation schedules them again.
        """
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        if pending:
            logger.warning("Cancelling %d pending AI replies on shutdown", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    # ── Execution ───────────────────────────────────────────────

    async def run(self, job: ScheduledJob) -> Outcome:
        conversation_id = job.conversation_id

        if await self._store.get(marker_key(conversation_id)) != job.token:
            logger.info("⏭️ Newer reply scheduled for conversation %s — skipping", conversation_id)
            return Outcome.SUPERSEDED
        await self._store.compare_and_delete(marker_key(conversation_id), job.token)
        await self._store.compare_and_delete(first_message_key(conversation_id), str(job.first_message_id))

        lock_token = uuid.uuid4().hex
        acquired = await self._store.set_if_absent(
            lock_key(conversation_id), lock_token, self._settings.processing_lock_ttl_seconds
        )
        if not acquired:
            logger.info("⏭️ Conversation %s already being processed — skipping", conversation_id)
            return Outcome.LOCKED_OUT

        try:
            return await asyncio.wait_for(self._execute(job), timeout=self._settings.ai_job_timeout_seconds)
        except asyncio.TimeoutError:
            logger.error("❌ AI reply for conversation %s timed out", conversation_id)
            return Outcome.FAILED
        except Exception:
            logger.exception("❌ AI reply for conversation %s failed", conversation_id)
            return Outcome.FAILED
        finally:
            await self._store.compare_and_delete(lock_key(conversation_id), lock_token)

    async def pending_messages(self, db: AsyncSession, job: ScheduledJob) -> list[Message]:
        stmt = (
            select(Message)
            .where(
                Message.conversation_id == job.conversation_id,
                Message.sender_type == "customer",
                Message.ai_processed_at.is_(None),
            )
            .order_by(Message.created_at.asc())
        )
        first = await db.get(Message, job.first_message_id)
        if first is not None:
            stmt = stmt.where(Message.created_at >= first.created_at)
        return list((await db.execute(stmt)).scalars().all())

    async def _execute(self, job: ScheduledJob) -> Outcome:
        async with self._session_factory() as db:
            conversation = await db.get(Conversation, job.conversation_id)
            if conversation is None:
                logger.warning("Conversation %s not found", job.conversation_id)
                return Outcome.SKIPPED
            if not conversation.is_ai_handling:
                logger.info("⏭️ AI handling disabled for conversation %s", conversation.id)
                return Outcome.SKIPPED

            pending = await self.pending_messages(db, job)
            if not pending:
                logger.info("⏭️ No pending messages for conversation %s", conversation.id)
                return Outcome.SKIPPED

            combined = combine_messages(pending)
            if not combined.strip():
                logger.info("⏭️ No text content in %d pending messages", len(pending))
                return Outcome.SKIPPED

            logger.info(
                "Processing %d combined message(s) for conversation %s", len(pending), conversation.id
            )
            result = await self._orchestrator.respond(db, conversation, combined, pending[-1], job.options)

            if isinstance(result, AiError) and result.kind in (
                AiErrorKind.NOT_CONFIGURED, AiErrorKind.AUTO_RESPOND_DISABLED,
            ):
                await db.commit()
                return Outcome.SKIPPED

            processed_at = self._clock()
            for message in pending:
                message.ai_processed_at = processed_at

            if isinstance(result, AiError):
                logger.error(
                    "❌ No AI reply for conversation %s (%s): %s",
                    conversation.id, result.kind.value, result.message,
                )
                await db.commit()
                return Outcome.FAILED

            if result.personality_id is None:
                configuration = await load_company_default(db, conversation.company_id)
                if not self._orchestrator.should_auto_respond(result, configuration):
                    logger.info(
                        "⏭️ Confidence %s below threshold for conversation %s", result.confidence, conversation.id
                    )
                    await db.commit()
                    return Outcome.SKIPPED

            if not result.text and not result.images:
                logger.warning("AI returned empty content for conversation %s", conversation.id)
                await db.commit()
                return Outcome.FAILED

            appointment = None
            if result.appointment_request is not None:
                customer = await db.get(Customer, conversation.customer_id)
                appointment = await book_from_request(
                    db, result.appointment_request, conversation, customer, self._clock
                )

            await self._dispatcher.dispatch(
                db,
                conversation,
                result,
                processed_message_ids=[m.id for m in pending],
                appointment=appointment,
            )
            await db.commit()
            logger.info("✅ AI reply sent for conversation %s (%d messages batched)", conversation.id, len(pending))
            return Outcome.SENT
