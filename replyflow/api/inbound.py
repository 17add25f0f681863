"""Inbound message route — normalized customer messages from platform parsers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, status

from replyflow.deps import DBSession, Services
from replyflow.schemas import InboundMessage, InboundResult
from replyflow.services.ai.config import TurnOptions
from replyflow.services.ingestion import UnknownConnectionError, ingest

logger = logging.getLogger("api.inbound")

router = APIRouter(prefix="/api/inbound", tags=["inbound"])


@router.post("/messages", status_code=status.HTTP_202_ACCEPTED)
async def receive_message(body: InboundMessage, db: DBSession, services: Services) -> InboundResult:
    try:
        result = await ingest(db, body)
    except UnknownConnectionError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    scheduled = False
    if not result.duplicate and result.conversation.is_ai_handling:
        # The delayed job reads the message in its own session
        await db.commit()
        options = TurnOptions.from_dict(body.ai_options.model_dump() if body.ai_options else None)
        await services.coalescer.schedule(db, result.conversation, result.message, options)
        scheduled = True

    return InboundResult(
        message_id=result.message.id,
        conversation_id=result.conversation.id,
        duplicate=result.duplicate,
        scheduled=scheduled,
    )
