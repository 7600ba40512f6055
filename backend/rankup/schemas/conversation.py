"""
Pydantic schemas for conversations and messages.
"""

from datetime import datetime
from typing import List

from pydantic import BaseModel, Field


class ConversationCreate(BaseModel):
    booking_id: str
    participants: List[str] = Field(min_length=2, max_length=2)


class ConversationResponse(BaseModel):
    id: str
    booking_id: str
    participants: List[str]
    last_message: str
    last_message_at: datetime
    created_at: datetime

    model_config = {"from_attributes": True}


class MessageCreate(BaseModel):
    content: str


class MessageResponse(BaseModel):
    id: int
    conversation_id: str
    sender_id: str
    content: str
    read: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class MarkReadResponse(BaseModel):
    updated: int
