"""
Checkout and payee onboarding endpoints.

Delegated flow (web / platform payment sheet):
    POST /payments/intents            -> client_secret for the payment UI
    POST /payments/checkout/complete  -> verify with the gateway, record booking

Programmatic flow (server-driven):
    POST /payments/checkout           -> confirm with a payment method, record booking
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.api.deps import get_delegated_checkout, get_payment_service, get_programmatic_checkout
from rankup.core.security import get_current_user_id
from rankup.db.session import get_db
from rankup.schemas.booking import BookingRequestBase
from rankup.schemas.payment import (
    CheckoutComplete,
    CheckoutResponse,
    CheckoutStart,
    OnboardingLinkResponse,
    PayeeAccountCreate,
    PayeeAccountResponse,
    ProgrammaticCheckout,
)
from rankup.services import profile_service
from rankup.services.checkout_service import CheckoutRequest, CheckoutResult, CheckoutService
from rankup.services.payment_service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


def _to_request(body: BookingRequestBase) -> CheckoutRequest:
    return CheckoutRequest(
        mentor_id=body.mentor_id,
        session_type=body.session_type,
        date=body.date,
        location=body.location,
        price=body.price,
        client_name=body.client_name,
        mentor_name=body.mentor_name,
    )


def _to_response(result: CheckoutResult) -> CheckoutResponse:
    return CheckoutResponse(
        status=result.status,
        handle=result.handle,
        client_secret=result.client_secret,
        app_fee=result.fee.app_fee,
        payout=result.fee.payout,
        platform_held=result.platform_held,
        booking=result.booking,
    )


@router.post("/intents", response_model=CheckoutResponse, status_code=status.HTTP_201_CREATED)
async def create_intent(
    body: CheckoutStart,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    checkout: CheckoutService = Depends(get_delegated_checkout),
):
    """Validate the booking request and create a payable intent for the payment UI."""
    result = await checkout.start_checkout(db, user_id, _to_request(body))
    return _to_response(result)


@router.post("/checkout/complete", response_model=CheckoutResponse)
async def complete_checkout(
    body: CheckoutComplete,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    checkout: CheckoutService = Depends(get_delegated_checkout),
):
    """
    Report that the payment UI finished. The gateway is asked for the real
    outcome; the booking is created only if the payment was captured.
    """
    result = await checkout.complete_checkout(db, user_id, body.handle, _to_request(body))
    return _to_response(result)


@router.post("/checkout", response_model=CheckoutResponse)
async def programmatic_checkout(
    body: ProgrammaticCheckout,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    checkout: CheckoutService = Depends(get_programmatic_checkout),
):
    """Pay with a payment method and book in one call."""
    result = await checkout.start_checkout(db, user_id, _to_request(body), payment_method=body.payment_method)
    return _to_response(result)


@router.post("/payee-account", response_model=PayeeAccountResponse)
async def create_payee_account(
    body: PayeeAccountCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Create (or return) the caller's payee account for receiving payouts."""
    account_id = await payments.ensure_payee_account(db, user_id, user_id, email=body.email)
    profile = await profile_service.get_profile(db, user_id)
    return PayeeAccountResponse(
        account_id=account_id,
        onboarding_complete=bool(profile and profile.payee_onboarding_complete),
    )


@router.post("/payee-account/link", response_model=OnboardingLinkResponse)
async def create_onboarding_link(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    link = await payments.create_onboarding_link(db, user_id, user_id)
    return OnboardingLinkResponse(url=link.url, expires_at=link.expires_at)


@router.post("/payee-account/refresh", response_model=PayeeAccountResponse)
async def refresh_payee_account(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Sync onboarding progress after the mentor returns from the onboarding page."""
    payee = await payments.refresh_payee_status(db, user_id, user_id)
    return PayeeAccountResponse(account_id=payee.account_id, onboarding_complete=payee.onboarding_complete)
