"""
Conversation and message models.

A conversation belongs to exactly one booking (unique booking_id). The two
participants are stored in sorted order so the pair behaves as a set.
Messages use an autoincrement key, which is also their delivery order.
"""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text

from rankup.db.base import Base, TimestampMixin, UTCDateTime, new_id, utcnow

LAST_MESSAGE_PREVIEW_LENGTH = 100


class Conversation(Base, TimestampMixin):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=new_id)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False, unique=True)
    participant_a = Column(String(128), nullable=False, index=True)
    participant_b = Column(String(128), nullable=False, index=True)
    last_message = Column(String(LAST_MESSAGE_PREVIEW_LENGTH), nullable=False, default="")
    last_message_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    @property
    def participants(self) -> list[str]:
        return [self.participant_a, self.participant_b]

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id}, booking={self.booking_id})>"


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(String(128), nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime(), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_messages_conversation_id_id", "conversation_id", "id"),
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id}, conversation={self.conversation_id}, sender={self.sender_id})>"
