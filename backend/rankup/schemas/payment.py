"""
Pydantic schemas for checkout and payee onboarding.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from rankup.schemas.booking import BookingRequestBase, BookingResponse


class CheckoutStart(BookingRequestBase):
    """Delegated flow: create the intent, the platform payment UI confirms it."""


class ProgrammaticCheckout(BookingRequestBase):
    payment_method: str = Field(min_length=1)


class CheckoutComplete(BookingRequestBase):
    """Delegated flow: the payment UI reported an outcome for `handle`."""
    handle: str = Field(min_length=1)


class CheckoutResponse(BaseModel):
    status: str
    handle: str
    client_secret: Optional[str] = None
    app_fee: Decimal
    payout: Decimal
    platform_held: bool = False
    booking: Optional[BookingResponse] = None


class PayeeAccountCreate(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)


class PayeeAccountResponse(BaseModel):
    account_id: str
    onboarding_complete: bool


class OnboardingLinkResponse(BaseModel):
    url: str
    expires_at: Optional[int] = None
