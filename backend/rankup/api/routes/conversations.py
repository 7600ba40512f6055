"""
Chat endpoints. One conversation per confirmed booking.
"""

import json

from fastapi import APIRouter, Depends, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rankup.core.security import get_current_user_id
from rankup.db.session import get_db, get_session_factory
from rankup.schemas.conversation import (
    ConversationCreate,
    ConversationResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from rankup.services import messaging_service

router = APIRouter(prefix="/conversations", tags=["Conversations"])


@router.post("/", response_model=ConversationResponse)
async def open_conversation(
    body: ConversationCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get the booking's conversation, creating it on first access."""
    return await messaging_service.get_or_create_conversation(db, body.booking_id, body.participants, user_id)


@router.get("/", response_model=list[ConversationResponse])
async def list_conversations(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's conversations, most recently active first."""
    return await messaging_service.list_conversations(db, user_id)


@router.get("/{conversation_id}/messages", response_model=list[MessageResponse])
async def list_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await messaging_service.list_messages(db, conversation_id, user_id)


@router.post(
    "/{conversation_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: str,
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await messaging_service.send_message(db, conversation_id, user_id, body.content)


@router.post("/{conversation_id}/read", response_model=MarkReadResponse)
async def mark_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Mark the other participant's messages as read."""
    updated = await messaging_service.mark_messages_read(db, conversation_id, user_id)
    return MarkReadResponse(updated=updated)


@router.get("/{conversation_id}/stream")
async def stream_messages(
    conversation_id: str,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Server-sent events: the full ordered message list after every change."""
    await messaging_service.get_conversation(db, conversation_id, user_id)

    async def events():
        async for messages in messaging_service.watch_messages(session_factory, conversation_id):
            if await request.is_disconnected():
                break
            payload = [MessageResponse.model_validate(m).model_dump() for m in messages]
            yield f"event: messages\ndata: {json.dumps(jsonable_encoder(payload))}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")
