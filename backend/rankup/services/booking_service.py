"""
Booking lifecycle engine.

STATE MACHINE
=============

    pending ──accept──▶ confirmed ──complete──▶ completed
       │                    │
       ├──reject──▶ rejected│
       │                    │
       └──cancel──▶ cancelled ◀──cancel──┘

rejected, completed and cancelled are terminal. Accept or reject on anything
but a pending booking is a StaleTransitionError (the other side answered
first); cancel or complete on a terminal booking is AlreadyTerminalError; any
other missing edge is InvalidTransition. The record is left untouched.

Every transition:
  1. loads the booking and checks the caller is allowed to drive the edge
  2. validates the edge against the graph from the status it just read
  3. writes through the store's status guard (UPDATE ... WHERE status = read)
  4. on a lost guard raises StaleTransitionError (the caller must re-read)

Callers are identified explicitly by `caller_id`; nothing here reads the
current user from ambient state.

Refunds:
  `cancel_booking` reports whether the cancellation is refund-eligible
  (session at least REFUND_WINDOW_HOURS away). Reversing the funds is the
  billing caller's job; this module never calls the payment gateway.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncIterator, Callable, Dict, FrozenSet, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.config import get_settings
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
from rankup.core.logging import get_logger
from rankup.core.metrics import bookings_created, record_transition, refund_eligible_cancellations
from rankup.db.base import utcnow
from rankup.models.booking import TERMINAL_STATUSES, Booking, BookingStatus, SessionType
from rankup.services import booking_store, messaging_service
from rankup.services.fee_policy import compute_fee
from rankup.services.live_feed import feed, pending_bookings_topic

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {BookingStatus.CONFIRMED, BookingStatus.REJECTED, BookingStatus.CANCELLED}
    ),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

MENTOR = "mentor"
EITHER_PARTY = "party"


@dataclass(frozen=True)
class Action:
    name: str
    target: BookingStatus
    actor: str


ACCEPT = Action("accept", BookingStatus.CONFIRMED, MENTOR)
REJECT = Action("reject", BookingStatus.REJECTED, MENTOR)
CANCEL = Action("cancel", BookingStatus.CANCELLED, EITHER_PARTY)
COMPLETE = Action("complete", BookingStatus.COMPLETED, MENTOR)

# Actions that answer a pending request: if the booking already left
# `pending`, someone else answered first.
_MENTOR_RESPONSES = (ACCEPT, REJECT)


@dataclass(frozen=True)
class CancellationResult:
    booking: Booking
    refund_eligible: bool


def can_transition(source: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[source]


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_refund_eligible(booking_date: datetime, now: datetime, window_hours: Optional[int] = None) -> bool:
    """A cancellation is refundable iff the session is at least `window_hours` away."""
    if window_hours is None:
        window_hours = get_settings().REFUND_WINDOW_HOURS
    return as_utc(booking_date) - as_utc(now) >= timedelta(hours=window_hours)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BookingRequest:
    """A validated, normalized request to book a session."""
    client_id: str
    mentor_id: str
    session_type: SessionType
    date: datetime
    location: str
    price: Decimal


def validate_booking_request(
    *,
    client_id: Optional[str],
    mentor_id: str,
    session_type: str,
    date: datetime,
    location: str,
    price: Decimal,
    now: Optional[datetime] = None,
) -> BookingRequest:
    """
    Check booking preconditions without touching storage.
    Checkout runs this before any money is requested.
    """
    now = as_utc(now or utcnow())
    if not client_id:
        raise Unauthenticated()
    if client_id == mentor_id:
        raise SelfBookingError(client_id=client_id)

    date = as_utc(date)
    if date <= now:
        raise InvalidDateError(date=date.isoformat())

    price = Decimal(str(price))
    if price <= 0 or price > get_settings().MAX_SESSION_PRICE:
        raise InvalidPriceError(price=str(price))

    try:
        session = SessionType(session_type)
    except ValueError:
        raise ValidationError(f"Unknown session type '{session_type}'", session_type=session_type)

    location = (location or "").strip()
    if not location:
        raise ValidationError("Location is required")

    return BookingRequest(
        client_id=client_id,
        mentor_id=mentor_id,
        session_type=session,
        date=date,
        location=location,
        price=price,
    )


async def create_booking(
    db: AsyncSession,
    *,
    client_id: str,
    mentor_id: str,
    session_type: str,
    date: datetime,
    location: str,
    price: Decimal,
    payment_reference: Optional[str] = None,
    client_name: Optional[str] = None,
    mentor_name: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Create a booking in `pending`. Called only once payment is captured.

    Idempotent per payment_reference: re-delivering the same captured
    payment returns the booking it already produced.
    """
    now = as_utc(now or utcnow())
    request = validate_booking_request(
        client_id=client_id,
        mentor_id=mentor_id,
        session_type=session_type,
        date=date,
        location=location,
        price=price,
        now=now,
    )

    if payment_reference:
        existing = await booking_store.get_by_payment_reference(db, payment_reference)
        if existing is not None:
            return _replayed(existing, client_id, mentor_id, payment_reference)

    fee = compute_fee(request.price)
    try:
        booking = await booking_store.insert(db, {
            "client_id": client_id,
            "mentor_id": mentor_id,
            "client_name": client_name,
            "mentor_name": mentor_name,
            "session_type": request.session_type.value,
            "date": request.date,
            "location": request.location,
            "price": request.price,
            "app_fee": fee.app_fee,
            "payment_reference": payment_reference,
            "status": BookingStatus.PENDING.value,
            "created_at": now,
            "updated_at": now,
        })
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if payment_reference:
            # Concurrent delivery of the same payment won the insert
            existing = await booking_store.get_by_payment_reference(db, payment_reference)
            if existing is not None:
                return _replayed(existing, client_id, mentor_id, payment_reference)
        raise

    bookings_created.labels(session_type=request.session_type.value).inc()
    logger.info(
        "booking_created",
        booking_id=booking.id,
        client_id=client_id,
        mentor_id=mentor_id,
        price=str(request.price),
        app_fee=str(fee.app_fee),
        payment_reference=payment_reference,
    )
    await feed.publish(pending_bookings_topic(mentor_id))
    return booking


def _replayed(existing: Booking, client_id: str, mentor_id: str, payment_reference: str) -> Booking:
    if existing.client_id != client_id or existing.mentor_id != mentor_id:
        raise ValidationError(
            "Payment reference already belongs to another booking",
            payment_reference=payment_reference,
        )
    logger.info("booking_create_replayed", booking_id=existing.id, payment_reference=payment_reference)
    return existing


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

async def _load(db: AsyncSession, booking_id: str) -> Booking:
    booking = await booking_store.get(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    return booking


def _authorize(booking: Booking, caller_id: Optional[str], actor: str) -> None:
    if not caller_id:
        raise Unauthenticated()
    if caller_id not in booking.parties:
        raise NotAPartyError(booking_id=booking.id)
    if actor == MENTOR and caller_id != booking.mentor_id:
        raise AuthorizationError("Only the mentor can do that", booking_id=booking.id)


def _check_edge(booking: Booking, action: Action) -> BookingStatus:
    current = BookingStatus(booking.status)
    if can_transition(current, action.target):
        return current

    record_transition(action.name, "invalid")
    details = {"booking_id": booking.id, "status": current.value, "action": action.name}
    if action in _MENTOR_RESPONSES:
        raise StaleTransitionError(f"Booking is no longer pending (now {current.value})", **details)
    if current in TERMINAL_STATUSES:
        raise AlreadyTerminalError(f"Booking is already {current.value}", **details)
    raise InvalidTransition(f"Cannot {action.name} a {current.value} booking", **details)


async def _apply(
    db: AsyncSession,
    booking: Booking,
    current: BookingStatus,
    action: Action,
    now: datetime,
) -> Booking:
    booking_id = booking.id
    applied = await booking_store.transition(db, booking_id, current, action.target, now)
    if not applied:
        await db.rollback()
        record_transition(action.name, "stale")
        logger.warning(
            "booking_transition_stale",
            booking_id=booking_id,
            action=action.name,
            read_status=current.value,
        )
        raise StaleTransitionError(booking_id=booking_id, action=action.name)

    await db.commit()
    await db.refresh(booking)

    record_transition(action.name, "success")
    logger.info(
        "booking_transitioned",
        booking_id=booking.id,
        action=action.name,
        from_status=current.value,
        to_status=action.target.value,
    )
    await feed.publish(pending_bookings_topic(booking.mentor_id))
    return booking


async def accept_booking(
    db: AsyncSession,
    booking_id: str,
    caller_id: Optional[str],
    now: Optional[datetime] = None,
) -> Booking:
    """Mentor accepts: pending -> confirmed, then opens the booking's chat."""
    booking = await _load(db, booking_id)
    _authorize(booking, caller_id, ACCEPT.actor)
    current = _check_edge(booking, ACCEPT)
    booking = await _apply(db, booking, current, ACCEPT, as_utc(now or utcnow()))

    try:
        await messaging_service.ensure_conversation(db, booking)
    except SQLAlchemyError as e:
        # Chat is created lazily on first access anyway
        await db.rollback()
        await db.refresh(booking)
        logger.warning("conversation_create_deferred", booking_id=booking_id, error=str(e))
    return booking


async def reject_booking(
    db: AsyncSession,
    booking_id: str,
    caller_id: Optional[str],
    now: Optional[datetime] = None,
) -> Booking:
    """Mentor declines: pending -> rejected."""
    booking = await _load(db, booking_id)
    _authorize(booking, caller_id, REJECT.actor)
    current = _check_edge(booking, REJECT)
    return await _apply(db, booking, current, REJECT, as_utc(now or utcnow()))


async def cancel_booking(
    db: AsyncSession,
    booking_id: str,
    caller_id: Optional[str],
    now: Optional[datetime] = None,
) -> CancellationResult:
    """
    Either party cancels a pending or confirmed booking.
    Refund eligibility is evaluated at the moment of the call, before the write.
    """
    now = as_utc(now or utcnow())
    booking = await _load(db, booking_id)
    _authorize(booking, caller_id, CANCEL.actor)
    current = _check_edge(booking, CANCEL)

    refund_eligible = is_refund_eligible(booking.date, now)
    booking = await _apply(db, booking, current, CANCEL, now)

    refund_eligible_cancellations.labels(refund_eligible=str(refund_eligible).lower()).inc()
    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        cancelled_by=caller_id,
        refund_eligible=refund_eligible,
        payment_reference=booking.payment_reference,
    )
    return CancellationResult(booking=booking, refund_eligible=refund_eligible)


async def complete_booking(
    db: AsyncSession,
    booking_id: str,
    caller_id: Optional[str],
    now: Optional[datetime] = None,
    allow_early: Optional[bool] = None,
) -> Booking:
    """
    Mentor marks a confirmed session as done: confirmed -> completed.
    Refused before the session date unless early completion is enabled.
    """
    now = as_utc(now or utcnow())
    if allow_early is None:
        allow_early = get_settings().ALLOW_EARLY_COMPLETION

    booking = await _load(db, booking_id)
    _authorize(booking, caller_id, COMPLETE.actor)
    current = _check_edge(booking, COMPLETE)

    if not allow_early and booking.date > now:
        record_transition(COMPLETE.name, "invalid")
        raise SessionNotElapsedError(booking_id=booking.id, date=booking.date.isoformat())

    return await _apply(db, booking, current, COMPLETE, now)


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

async def get_booking(db: AsyncSession, booking_id: str, caller_id: Optional[str]) -> Booking:
    booking = await _load(db, booking_id)
    _authorize(booking, caller_id, EITHER_PARTY)
    return booking


async def list_client_bookings(db: AsyncSession, caller_id: str) -> List[Booking]:
    return await booking_store.list_for_client(db, caller_id)


async def list_mentor_bookings(db: AsyncSession, caller_id: str) -> List[Booking]:
    return await booking_store.list_for_mentor(db, caller_id)


async def watch_pending_bookings(
    session_factory: Callable[[], AsyncSession],
    mentor_id: str,
) -> AsyncIterator[List[Booking]]:
    """Full list of the mentor's pending requests, re-delivered on every change."""
    async for bookings in booking_store.watch_pending_for_mentor(session_factory, mentor_id):
        yield bookings
