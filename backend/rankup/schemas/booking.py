"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class BookingRequestBase(BaseModel):
    mentor_id: str = Field(min_length=1, max_length=128)
    session_type: Literal["sparring", "tournament"]
    date: datetime
    location: str = Field(min_length=1, max_length=255)
    price: Decimal
    client_name: Optional[str] = Field(default=None, max_length=255)
    mentor_name: Optional[str] = Field(default=None, max_length=255)


class BookingResponse(BaseModel):
    id: str
    client_id: str
    mentor_id: str
    client_name: Optional[str] = None
    mentor_name: Optional[str] = None
    session_type: str
    date: datetime
    location: str
    price: Decimal
    app_fee: Decimal
    payment_reference: Optional[str] = None
    status: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking: BookingResponse
    refund_eligible: bool
