"""
Tests for the payment adapter, checkout flows and reconciliation.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import CLIENT_ID, MENTOR_ID, OTHER_ID, in_hours
from rankup.core.errors import (
    CardDeclined,
    GatewayUnavailable,
    NotFoundError,
    PaymentFailed,
    ReconciliationError,
    SelfBookingError,
    Unauthenticated,
    ValidationError,
)
from rankup.models.booking import BookingStatus
from rankup.services import booking_service, booking_store, profile_service
from rankup.services.checkout_service import CheckoutRequest, CheckoutService, CheckoutStatus
from rankup.services.interfaces.payment_confirmation import DelegatedConfirmation, ProgrammaticConfirmation
from rankup.services.interfaces.payment_gateway import IntentStatus
from rankup.services.interfaces.sandbox_gateway import (
    PM_DECLINED,
    PM_FAILED,
    PM_REQUIRES_ACTION,
    PM_SUCCESS,
)
from rankup.services.payment_service import PaymentService


def checkout_request(price: str = "45", hours_ahead: float = 72, **overrides) -> CheckoutRequest:
    values = dict(
        mentor_id=MENTOR_ID,
        session_type="sparring",
        date=in_hours(hours_ahead),
        location="Club Padel Nord, court 3",
        price=Decimal(price),
        client_name="Ana",
        mentor_name="Leo",
    )
    values.update(overrides)
    return CheckoutRequest(**values)


async def onboard_mentor(db, gateway) -> str:
    payments = PaymentService(gateway)
    account_id = await payments.ensure_payee_account(db, MENTOR_ID, MENTOR_ID, email="leo@example.com")
    gateway.complete_onboarding(account_id)
    await payments.refresh_payee_status(db, MENTOR_ID, MENTOR_ID)
    return account_id


# ---------------------------------------------------------------------------
# Payment intents
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_intent_without_payee_is_platform_held(db_session, gateway):
    prepared = await PaymentService(gateway).create_payment_intent(db_session, CLIENT_ID, MENTOR_ID, Decimal("45"))

    assert prepared.platform_held
    assert prepared.intent.amount_minor == 4500
    assert prepared.intent.currency == "eur"
    assert prepared.intent.client_secret
    assert gateway.splits[prepared.intent.handle] is None
    assert prepared.fee.app_fee == Decimal("6.75")


@pytest.mark.asyncio
async def test_intent_with_onboarded_payee_splits(db_session, gateway):
    account_id = await onboard_mentor(db_session, gateway)

    prepared = await PaymentService(gateway).create_payment_intent(db_session, CLIENT_ID, MENTOR_ID, Decimal("45"))

    split = gateway.splits[prepared.intent.handle]
    assert not prepared.platform_held
    assert split.destination_account_id == account_id
    assert split.application_fee_minor == 675


@pytest.mark.asyncio
async def test_intent_falls_back_when_gateway_refuses_destination(db_session, gateway):
    """Profile says onboarded but the processor disagrees: fall back, don't fail."""
    account_id = await onboard_mentor(db_session, gateway)
    gateway.onboarded.discard(account_id)

    prepared = await PaymentService(gateway).create_payment_intent(db_session, CLIENT_ID, MENTOR_ID, Decimal("55"))

    assert prepared.platform_held
    assert gateway.splits[prepared.intent.handle] is None
    assert prepared.intent.amount_minor == 5500


@pytest.mark.asyncio
async def test_gateway_unavailable_is_retryable(db_session, gateway):
    gateway.unavailable = True
    with pytest.raises(GatewayUnavailable) as exc_info:
        await PaymentService(gateway).create_payment_intent(db_session, CLIENT_ID, MENTOR_ID, Decimal("45"))
    assert exc_info.value.retryable


# ---------------------------------------------------------------------------
# Payee onboarding
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_payee_account_is_idempotent(db_session, gateway):
    payments = PaymentService(gateway)
    first = await payments.ensure_payee_account(db_session, MENTOR_ID, MENTOR_ID)
    second = await payments.ensure_payee_account(db_session, MENTOR_ID, MENTOR_ID)
    assert first == second

    profile = await profile_service.get_profile(db_session, MENTOR_ID)
    assert profile.payee_account_id == first
    assert profile.payee_onboarding_complete is False


@pytest.mark.asyncio
@pytest.mark.parametrize("caller_id", [None, "", OTHER_ID])
async def test_onboarding_requires_the_mentor(db_session, gateway, caller_id):
    payments = PaymentService(gateway)
    with pytest.raises(Unauthenticated):
        await payments.ensure_payee_account(db_session, caller_id, MENTOR_ID)
    with pytest.raises(Unauthenticated):
        await payments.create_onboarding_link(db_session, caller_id, MENTOR_ID)
    with pytest.raises(Unauthenticated):
        await payments.refresh_payee_status(db_session, caller_id, MENTOR_ID)


@pytest.mark.asyncio
async def test_onboarding_link_needs_an_account(db_session, gateway):
    payments = PaymentService(gateway)
    with pytest.raises(NotFoundError):
        await payments.create_onboarding_link(db_session, MENTOR_ID, MENTOR_ID)

    account_id = await payments.ensure_payee_account(db_session, MENTOR_ID, MENTOR_ID)
    link = await payments.create_onboarding_link(db_session, MENTOR_ID, MENTOR_ID)
    assert account_id in link.url
    assert link.expires_at is not None


@pytest.mark.asyncio
async def test_refresh_marks_onboarding_complete(db_session, gateway):
    payments = PaymentService(gateway)
    account_id = await payments.ensure_payee_account(db_session, MENTOR_ID, MENTOR_ID)

    status = await payments.refresh_payee_status(db_session, MENTOR_ID, MENTOR_ID)
    assert not status.onboarding_complete

    gateway.complete_onboarding(account_id)
    status = await payments.refresh_payee_status(db_session, MENTOR_ID, MENTOR_ID)
    assert status.onboarding_complete

    profile = await profile_service.get_profile(db_session, MENTOR_ID)
    assert profile.payee_onboarding_complete is True
    assert profile.can_receive_split


# ---------------------------------------------------------------------------
# Programmatic checkout
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_programmatic_checkout_books_after_capture(db_session, gateway):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))

    result = await checkout.start_checkout(db_session, CLIENT_ID, checkout_request(), payment_method=PM_SUCCESS)

    assert result.status == CheckoutStatus.BOOKED
    assert result.booking.status == BookingStatus.PENDING.value
    assert result.booking.payment_reference == result.handle
    assert result.booking.app_fee == Decimal("6.75")
    assert result.booking.mentor_name == "Leo"
    assert gateway.intents[result.handle].status == IntentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_declined_card_creates_no_booking(db_session, gateway):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))

    with pytest.raises(CardDeclined) as exc_info:
        await checkout.start_checkout(db_session, CLIENT_ID, checkout_request(), payment_method=PM_DECLINED)

    assert exc_info.value.category == "payment_declined"
    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payment_method", [PM_FAILED, PM_REQUIRES_ACTION])
async def test_failed_payment_creates_no_booking(db_session, gateway, payment_method):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))

    with pytest.raises(PaymentFailed):
        await checkout.start_checkout(db_session, CLIENT_ID, checkout_request(), payment_method=payment_method)

    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []


@pytest.mark.asyncio
async def test_programmatic_checkout_needs_payment_method(db_session, gateway):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))
    with pytest.raises(ValidationError):
        await checkout.start_checkout(db_session, CLIENT_ID, checkout_request())


@pytest.mark.asyncio
async def test_invalid_request_never_reaches_the_gateway(db_session, gateway):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))

    with pytest.raises(SelfBookingError):
        await checkout.start_checkout(
            db_session, CLIENT_ID, checkout_request(mentor_id=CLIENT_ID), payment_method=PM_SUCCESS
        )
    assert gateway.intents == {}


# ---------------------------------------------------------------------------
# Delegated checkout
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_delegated_checkout_verifies_before_booking(db_session, gateway):
    checkout = CheckoutService(gateway, DelegatedConfirmation(gateway))
    request = checkout_request()

    started = await checkout.start_checkout(db_session, CLIENT_ID, request)
    assert started.status == CheckoutStatus.REQUIRES_CONFIRMATION
    assert started.client_secret
    assert started.booking is None
    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []

    # Reporting before the payment UI confirmed does not book
    with pytest.raises(PaymentFailed):
        await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, request)

    gateway.complete_in_ui(started.handle)
    done = await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, request)
    assert done.status == CheckoutStatus.BOOKED
    assert done.booking.payment_reference == started.handle

    # Re-reporting the same payment returns the same booking
    again = await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, request)
    assert again.booking.id == done.booking.id
    assert len(await booking_store.list_for_client(db_session, CLIENT_ID)) == 1


@pytest.mark.asyncio
async def test_delegated_checkout_rejects_mismatched_request(db_session, gateway):
    checkout = CheckoutService(gateway, DelegatedConfirmation(gateway))
    started = await checkout.start_checkout(db_session, CLIENT_ID, checkout_request(price="45"))
    gateway.complete_in_ui(started.handle)

    with pytest.raises(ValidationError):
        await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, checkout_request(price="30"))
    with pytest.raises(ValidationError):
        await checkout.complete_checkout(db_session, OTHER_ID, started.handle, checkout_request(price="45"))
    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []


@pytest.mark.asyncio
async def test_delegated_checkout_rejects_other_slot_at_same_price(db_session, gateway):
    from dataclasses import replace

    checkout = CheckoutService(gateway, DelegatedConfirmation(gateway))
    paid_for = checkout_request(hours_ahead=72)
    started = await checkout.start_checkout(db_session, CLIENT_ID, paid_for)
    gateway.complete_in_ui(started.handle)

    other_date = replace(paid_for, date=paid_for.date + timedelta(days=7))
    other_type = replace(paid_for, session_type="tournament")
    for request in (other_date, other_type):
        with pytest.raises(ValidationError):
            await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, request)
    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []

    done = await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, paid_for)
    assert done.status == CheckoutStatus.BOOKED


@pytest.mark.asyncio
async def test_delegated_checkout_processing_is_not_booked(db_session, gateway):
    from dataclasses import replace

    checkout = CheckoutService(gateway, DelegatedConfirmation(gateway))
    request = checkout_request()
    started = await checkout.start_checkout(db_session, CLIENT_ID, request)
    gateway.intents[started.handle] = replace(gateway.intents[started.handle], status=IntentStatus.PROCESSING)

    result = await checkout.complete_checkout(db_session, CLIENT_ID, started.handle, request)
    assert result.status == CheckoutStatus.PROCESSING
    assert result.booking is None


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_capture_without_booking_is_reconciliation_error(db_session, gateway, monkeypatch):
    checkout = CheckoutService(gateway, ProgrammaticConfirmation(gateway))

    # Storage fails only after the money moved
    async def failing_create_booking(db, **kwargs):
        from sqlalchemy.exc import OperationalError
        raise OperationalError("INSERT INTO bookings", {}, Exception("disk I/O error"))

    monkeypatch.setattr(booking_service, "create_booking", failing_create_booking)

    with pytest.raises(ReconciliationError) as exc_info:
        await checkout.start_checkout(db_session, CLIENT_ID, checkout_request(), payment_method=PM_SUCCESS)

    error = exc_info.value
    assert error.category == "payment_captured_booking_failed"
    handle = error.details["handle"]
    assert gateway.intents[handle].status == IntentStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_session_date_passing_after_capture_is_reconciliation_error(db_session, gateway):
    """Validation that fails only after capture still surfaces as reconciliation."""
    checkout = CheckoutService(gateway, DelegatedConfirmation(gateway))
    request = checkout_request(hours_ahead=1)
    started = await checkout.start_checkout(db_session, CLIENT_ID, request)
    gateway.complete_in_ui(started.handle)

    with pytest.raises(ReconciliationError):
        await checkout.complete_checkout(
            db_session, CLIENT_ID, started.handle, request, now=in_hours(2)
        )
