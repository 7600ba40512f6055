"""
Messaging bridge: one conversation per booking, ordered messages.

Conversation creation is idempotent under concurrency. Both participants
may open the chat at the same moment; `conversations.booking_id` is UNIQUE,
so exactly one INSERT wins and the loser re-reads the winner's row after
the IntegrityError. A plain read-then-create would create duplicates.

Messages are ordered by their autoincrement id. The message insert and the
conversation's last-message denormalization commit in one transaction.
"""

from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.errors import (
    ChatNotAvailable,
    InvalidMessage,
    NotAPartyError,
    NotFoundError,
    Unauthenticated,
    ValidationError,
)
from rankup.core.logging import get_logger
from rankup.core.metrics import conversations_created, messages_sent
from rankup.db.base import utcnow
from rankup.models.booking import Booking, BookingStatus
from rankup.models.conversation import LAST_MESSAGE_PREVIEW_LENGTH, Conversation, Message
from rankup.services import booking_store
from rankup.services.live_feed import conversation_topic, feed

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 2000

CHAT_STATUSES = frozenset({BookingStatus.CONFIRMED.value, BookingStatus.COMPLETED.value})


async def _by_booking(db: AsyncSession, booking_id: str) -> Optional[Conversation]:
    result = await db.execute(select(Conversation).where(Conversation.booking_id == booking_id))
    return result.scalar_one_or_none()


async def ensure_conversation(db: AsyncSession, booking: Booking) -> Conversation:
    """Get or create the booking's conversation. No caller checks: internal use."""
    booking_id = booking.id
    existing = await _by_booking(db, booking_id)
    if existing is not None:
        return existing

    participant_a, participant_b = sorted((booking.client_id, booking.mentor_id))
    conversation = Conversation(
        booking_id=booking_id,
        participant_a=participant_a,
        participant_b=participant_b,
        last_message="",
        last_message_at=utcnow(),
    )
    db.add(conversation)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        await db.refresh(booking)
        existing = await _by_booking(db, booking_id)
        if existing is None:
            raise
        logger.info("conversation_create_race_resolved", booking_id=booking_id, conversation_id=existing.id)
        return existing

    conversations_created.inc()
    logger.info("conversation_created", booking_id=booking_id, conversation_id=conversation.id)
    return conversation


async def get_or_create_conversation(
    db: AsyncSession,
    booking_id: str,
    participants: Iterable[str],
    caller_id: Optional[str],
) -> Conversation:
    """
    Conversation tied to `booking_id`, created on first access once the
    booking permits chat. `participants` must be the booking's two parties.
    """
    if not caller_id:
        raise Unauthenticated()

    booking = await booking_store.get(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    if caller_id not in booking.parties:
        raise NotAPartyError(booking_id=booking_id)

    requested = frozenset(participants)
    if requested != booking.parties:
        raise ValidationError(
            "Participants must be the client and mentor of the booking",
            booking_id=booking_id,
        )

    existing = await _by_booking(db, booking_id)
    if existing is not None:
        return existing

    if booking.status not in CHAT_STATUSES:
        raise ChatNotAvailable(booking_id=booking_id, status=booking.status)

    return await ensure_conversation(db, booking)


async def _load_for(db: AsyncSession, conversation_id: str, user_id: Optional[str]) -> Conversation:
    if not user_id:
        raise Unauthenticated()
    result = await db.execute(select(Conversation).where(Conversation.id == conversation_id))
    conversation = result.scalar_one_or_none()
    if conversation is None:
        raise NotFoundError("Conversation", conversation_id)
    if not conversation.has_participant(user_id):
        raise NotAPartyError(conversation_id=conversation_id)
    return conversation


async def get_conversation(db: AsyncSession, conversation_id: str, caller_id: Optional[str]) -> Conversation:
    return await _load_for(db, conversation_id, caller_id)


async def list_conversations(db: AsyncSession, user_id: str) -> List[Conversation]:
    """The user's conversations, most recently active first."""
    result = await db.execute(
        select(Conversation)
        .where(or_(Conversation.participant_a == user_id, Conversation.participant_b == user_id))
        .order_by(Conversation.last_message_at.desc())
    )
    return list(result.scalars().all())


async def send_message(
    db: AsyncSession,
    conversation_id: str,
    sender_id: Optional[str],
    content: str,
    now: Optional[datetime] = None,
) -> Message:
    text = (content or "").strip()
    if not text:
        raise InvalidMessage()
    if len(text) > MAX_MESSAGE_LENGTH:
        raise InvalidMessage(f"Message must be at most {MAX_MESSAGE_LENGTH} characters")

    conversation = await _load_for(db, conversation_id, sender_id)
    now = now or utcnow()

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        content=text,
        read=False,
        created_at=now,
    )
    db.add(message)
    conversation.last_message = text[:LAST_MESSAGE_PREVIEW_LENGTH]
    conversation.last_message_at = now
    conversation.updated_at = now
    await db.commit()

    messages_sent.inc()
    logger.info("message_sent", conversation_id=conversation_id, message_id=message.id, sender_id=sender_id)
    await feed.publish(conversation_topic(conversation_id))
    return message


async def list_messages(db: AsyncSession, conversation_id: str, caller_id: Optional[str]) -> List[Message]:
    await _load_for(db, conversation_id, caller_id)
    return await _messages(db, conversation_id)


async def _messages(db: AsyncSession, conversation_id: str) -> List[Message]:
    result = await db.execute(
        select(Message)
        .where(Message.conversation_id == conversation_id)
        .order_by(Message.id.asc())
    )
    return list(result.scalars().all())


async def mark_messages_read(db: AsyncSession, conversation_id: str, reader_id: Optional[str]) -> int:
    """Mark the other participant's unread messages as read. Returns the count."""
    await _load_for(db, conversation_id, reader_id)
    result = await db.execute(
        update(Message)
        .where(
            Message.conversation_id == conversation_id,
            Message.read.is_(False),
            Message.sender_id != reader_id,
        )
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount:
        await feed.publish(conversation_topic(conversation_id))
    return result.rowcount


async def watch_messages(
    session_factory: Callable[[], AsyncSession],
    conversation_id: str,
) -> AsyncIterator[List[Message]]:
    """Full ordered message list, re-delivered after every committed change."""

    async def snapshot() -> List[Message]:
        async with session_factory() as db:
            return await _messages(db, conversation_id)

    async for messages in feed.watch(conversation_topic(conversation_id), snapshot):
        yield messages
