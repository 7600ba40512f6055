"""
Tests for the booking state machine, refund policy and status guard.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import CLIENT_ID, MENTOR_ID, OTHER_ID, in_hours, make_booking
from rankup.core.errors import (
    AlreadyTerminalError,
    AuthorizationError,
    InvalidDateError,
    InvalidPriceError,
    InvalidTransition,
    NotAPartyError,
    NotFoundError,
    SelfBookingError,
    SessionNotElapsedError,
    StaleTransitionError,
    Unauthenticated,
    ValidationError,
)
from rankup.models.booking import BookingStatus
from rankup.services import booking_service, booking_store
from rankup.services.booking_service import can_transition, is_refund_eligible


# ---------------------------------------------------------------------------
# Graph and refund policy
# ---------------------------------------------------------------------------

def test_transition_graph():
    assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
    assert can_transition(BookingStatus.PENDING, BookingStatus.REJECTED)
    assert can_transition(BookingStatus.PENDING, BookingStatus.CANCELLED)
    assert can_transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
    assert can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED)
    assert not can_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)
    assert not can_transition(BookingStatus.CONFIRMED, BookingStatus.REJECTED)
    for terminal in (BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED):
        for target in BookingStatus:
            assert not can_transition(terminal, target)


def test_refund_eligibility_window():
    now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert is_refund_eligible(now + timedelta(hours=72), now)
    assert not is_refund_eligible(now + timedelta(hours=24), now)
    # Exactly 48 hours away is still refundable
    assert is_refund_eligible(now + timedelta(hours=48), now)
    assert not is_refund_eligible(now + timedelta(hours=48) - timedelta(seconds=1), now)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_booking_is_pending_with_fee(db_session):
    booking = await make_booking(db_session, price="45", client_name="Ana", mentor_name="Leo")
    assert booking.status == BookingStatus.PENDING.value
    assert booking.price == Decimal("45")
    assert booking.app_fee == Decimal("6.75")
    assert booking.client_name == "Ana"
    assert booking.payment_reference is None


@pytest.mark.asyncio
async def test_create_booking_rejects_self_booking(db_session):
    with pytest.raises(SelfBookingError):
        await make_booking(db_session, mentor_id=CLIENT_ID)
    assert await booking_store.list_for_client(db_session, CLIENT_ID) == []


@pytest.mark.asyncio
async def test_create_booking_rejects_past_date(db_session):
    with pytest.raises(InvalidDateError):
        await make_booking(db_session, hours_ahead=-1)


@pytest.mark.asyncio
@pytest.mark.parametrize("price", ["0", "-10", "1000.01"])
async def test_create_booking_rejects_bad_price(db_session, price):
    with pytest.raises(InvalidPriceError):
        await make_booking(db_session, price=price)


@pytest.mark.asyncio
async def test_create_booking_requires_client(db_session):
    with pytest.raises(Unauthenticated):
        await make_booking(db_session, client_id="")


@pytest.mark.asyncio
async def test_create_booking_rejects_unknown_session_type(db_session):
    with pytest.raises(ValidationError):
        await make_booking(db_session, session_type="lesson")


@pytest.mark.asyncio
async def test_create_booking_idempotent_per_payment_reference(db_session):
    first = await make_booking(db_session, payment_reference="pi_123")
    again = await make_booking(db_session, payment_reference="pi_123")
    assert again.id == first.id
    assert len(await booking_store.list_for_client(db_session, CLIENT_ID)) == 1


@pytest.mark.asyncio
async def test_payment_reference_cannot_be_reused_by_other_parties(db_session):
    await make_booking(db_session, payment_reference="pi_123")
    with pytest.raises(ValidationError):
        await make_booking(db_session, payment_reference="pi_123", client_id=OTHER_ID)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_accept_confirms_and_opens_conversation(db_session, pending_booking):
    from rankup.services import messaging_service

    booking = await booking_service.accept_booking(db_session, pending_booking.id, MENTOR_ID)
    assert booking.status == BookingStatus.CONFIRMED.value

    conversations = await messaging_service.list_conversations(db_session, CLIENT_ID)
    assert len(conversations) == 1
    assert conversations[0].booking_id == booking.id
    assert sorted(conversations[0].participants) == sorted([CLIENT_ID, MENTOR_ID])
    assert conversations[0].last_message == ""


@pytest.mark.asyncio
async def test_only_mentor_can_accept(db_session, pending_booking):
    with pytest.raises(AuthorizationError):
        await booking_service.accept_booking(db_session, pending_booking.id, CLIENT_ID)
    with pytest.raises(NotAPartyError):
        await booking_service.accept_booking(db_session, pending_booking.id, OTHER_ID)
    with pytest.raises(Unauthenticated):
        await booking_service.accept_booking(db_session, pending_booking.id, None)

    booking = await booking_store.get(db_session, pending_booking.id)
    assert booking.status == BookingStatus.PENDING.value


@pytest.mark.asyncio
async def test_unknown_booking(db_session):
    with pytest.raises(NotFoundError):
        await booking_service.accept_booking(db_session, "missing", MENTOR_ID)


@pytest.mark.asyncio
async def test_reject(db_session, pending_booking):
    booking = await booking_service.reject_booking(db_session, pending_booking.id, MENTOR_ID)
    assert booking.status == BookingStatus.REJECTED.value


@pytest.mark.asyncio
async def test_accept_after_reject_is_stale(db_session, pending_booking):
    await booking_service.reject_booking(db_session, pending_booking.id, MENTOR_ID)
    with pytest.raises(StaleTransitionError):
        await booking_service.accept_booking(db_session, pending_booking.id, MENTOR_ID)


@pytest.mark.asyncio
async def test_accept_after_client_cancel_is_stale(db_session, pending_booking):
    await booking_service.cancel_booking(db_session, pending_booking.id, CLIENT_ID)
    with pytest.raises(StaleTransitionError):
        await booking_service.accept_booking(db_session, pending_booking.id, MENTOR_ID)
    with pytest.raises(StaleTransitionError):
        await booking_service.reject_booking(db_session, pending_booking.id, MENTOR_ID)

    stored = await booking_store.get(db_session, pending_booking.id)
    assert stored.status == BookingStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_accept_twice_is_stale(db_session, pending_booking):
    await booking_service.accept_booking(db_session, pending_booking.id, MENTOR_ID)
    with pytest.raises(StaleTransitionError):
        await booking_service.accept_booking(db_session, pending_booking.id, MENTOR_ID)


@pytest.mark.asyncio
async def test_complete_from_pending_is_invalid(db_session, pending_booking):
    with pytest.raises(InvalidTransition) as exc_info:
        await booking_service.complete_booking(db_session, pending_booking.id, MENTOR_ID, allow_early=True)
    assert not isinstance(exc_info.value, StaleTransitionError)


@pytest.mark.asyncio
async def test_cancel_72h_ahead_is_refund_eligible(db_session):
    booking = await make_booking(db_session, hours_ahead=72)
    result = await booking_service.cancel_booking(db_session, booking.id, CLIENT_ID)
    assert result.booking.status == BookingStatus.CANCELLED.value
    assert result.refund_eligible is True


@pytest.mark.asyncio
async def test_cancel_24h_ahead_is_not_refund_eligible(db_session):
    booking = await make_booking(db_session, hours_ahead=24)
    await booking_service.accept_booking(db_session, booking.id, MENTOR_ID)
    result = await booking_service.cancel_booking(db_session, booking.id, MENTOR_ID)
    assert result.booking.status == BookingStatus.CANCELLED.value
    assert result.refund_eligible is False


@pytest.mark.asyncio
async def test_cancel_exactly_48h_ahead_is_refund_eligible(db_session):
    now = datetime.now(timezone.utc)
    booking = await make_booking(db_session, date=now + timedelta(hours=48), now=now)
    result = await booking_service.cancel_booking(db_session, booking.id, CLIENT_ID, now=now)
    assert result.refund_eligible is True


@pytest.mark.asyncio
async def test_cancel_twice_is_already_terminal(db_session, pending_booking):
    await booking_service.cancel_booking(db_session, pending_booking.id, CLIENT_ID)
    with pytest.raises(AlreadyTerminalError):
        await booking_service.cancel_booking(db_session, pending_booking.id, CLIENT_ID)


@pytest.mark.asyncio
async def test_stranger_cannot_cancel(db_session, pending_booking):
    with pytest.raises(NotAPartyError):
        await booking_service.cancel_booking(db_session, pending_booking.id, OTHER_ID)


@pytest.mark.asyncio
async def test_complete_before_session_is_refused(db_session, confirmed_booking):
    with pytest.raises(SessionNotElapsedError):
        await booking_service.complete_booking(db_session, confirmed_booking.id, MENTOR_ID, allow_early=False)

    booking = await booking_store.get(db_session, confirmed_booking.id)
    assert booking.status == BookingStatus.CONFIRMED.value


@pytest.mark.asyncio
async def test_complete_early_when_enabled(db_session, confirmed_booking):
    booking = await booking_service.complete_booking(
        db_session, confirmed_booking.id, MENTOR_ID, allow_early=True
    )
    assert booking.status == BookingStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_complete_after_session(db_session, completed_booking):
    assert completed_booking.status == BookingStatus.COMPLETED.value
    with pytest.raises(AlreadyTerminalError):
        await booking_service.cancel_booking(db_session, completed_booking.id, CLIENT_ID)


@pytest.mark.asyncio
async def test_client_cannot_complete(db_session, confirmed_booking):
    with pytest.raises(AuthorizationError):
        await booking_service.complete_booking(db_session, confirmed_booking.id, CLIENT_ID, allow_early=True)


# ---------------------------------------------------------------------------
# Status guard
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_store_transition_guard(db_session, pending_booking):
    assert await booking_store.transition(
        db_session, pending_booking.id, BookingStatus.PENDING, BookingStatus.CONFIRMED
    )
    assert not await booking_store.transition(
        db_session, pending_booking.id, BookingStatus.PENDING, BookingStatus.CANCELLED
    )
    await db_session.commit()


@pytest.mark.asyncio
async def test_lost_guard_raises_stale_and_leaves_record(db_session, session_factory, pending_booking, monkeypatch):
    """The booking moves between the read and the guarded write."""
    real_transition = booking_store.transition

    async def racing_transition(db, booking_id, expected, new, now=None):
        async with session_factory() as other:
            await real_transition(other, booking_id, BookingStatus.PENDING, BookingStatus.CANCELLED)
            await other.commit()
        return await real_transition(db, booking_id, expected, new, now)

    booking_id = pending_booking.id
    monkeypatch.setattr(booking_store, "transition", racing_transition)
    with pytest.raises(StaleTransitionError):
        await booking_service.accept_booking(db_session, booking_id, MENTOR_ID)

    async with session_factory() as fresh:
        booking = await booking_store.get(fresh, booking_id)
    assert booking.status == BookingStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_concurrent_accept_and_reject_one_wins(session_factory):
    async with session_factory() as db:
        booking = await make_booking(db)

    async def respond(action):
        async with session_factory() as db:
            return await action(db, booking.id, MENTOR_ID)

    results = await asyncio.gather(
        respond(booking_service.accept_booking),
        respond(booking_service.reject_booking),
        return_exceptions=True,
    )
    succeeded = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], StaleTransitionError)

    async with session_factory() as db:
        stored = await booking_store.get(db, booking.id)
    assert stored.status == succeeded[0].status


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_listings_are_latest_session_first(db_session):
    soon = await make_booking(db_session, hours_ahead=24)
    later = await make_booking(db_session, hours_ahead=96)

    client_view = await booking_service.list_client_bookings(db_session, CLIENT_ID)
    mentor_view = await booking_service.list_mentor_bookings(db_session, MENTOR_ID)
    assert [b.id for b in client_view] == [later.id, soon.id]
    assert [b.id for b in mentor_view] == [later.id, soon.id]
    assert await booking_service.list_client_bookings(db_session, MENTOR_ID) == []


@pytest.mark.asyncio
async def test_get_booking_is_party_only(db_session, pending_booking):
    assert (await booking_service.get_booking(db_session, pending_booking.id, CLIENT_ID)).id == pending_booking.id
    with pytest.raises(NotAPartyError):
        await booking_service.get_booking(db_session, pending_booking.id, OTHER_ID)


@pytest.mark.asyncio
async def test_dates_round_trip_as_utc(db_session):
    date = in_hours(30).replace(microsecond=0)
    booking = await make_booking(db_session, date=date)
    stored = await booking_store.get(db_session, booking.id)
    assert stored.date == date
    assert stored.date.tzinfo is not None
