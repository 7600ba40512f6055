"""
Durable persistence for bookings.

CONCURRENCY STRATEGY: Status-guarded writes
===========================================

Problem:
  The mentor accepts while the client cancels. Both read status=pending,
  both write, the last write wins and one party's action is silently lost.

Solution:
  Every status change is a single conditional UPDATE:

    UPDATE bookings SET status = :new, updated_at = now()
    WHERE id = :id AND status = :expected

  If rows_affected == 0 the booking moved since it was read. The caller
  gets `False` back and surfaces a StaleTransitionError; there is no retry,
  because the loser has to re-read and decide again (its action may no
  longer make sense).

Store boundary rules:
  - Optional fields that are absent are omitted from the INSERT rather than
    written as explicit NULLs (see `canonicalize`).
  - There is no delete. Cancellation is a status.
"""

from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.logging import get_logger
from rankup.db.base import utcnow
from rankup.models.booking import Booking, BookingStatus
from rankup.services.live_feed import feed, pending_bookings_topic

logger = get_logger(__name__)


def canonicalize(values: Dict[str, Any]) -> Dict[str, Any]:
    """Drop absent optional fields so they are never persisted as null sentinels."""
    return {key: value for key, value in values.items() if value is not None}


async def insert(db: AsyncSession, values: Dict[str, Any]) -> Booking:
    booking = Booking(**canonicalize(values))
    db.add(booking)
    await db.flush()
    return booking


async def get(db: AsyncSession, booking_id: str) -> Optional[Booking]:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    return result.scalar_one_or_none()


async def get_by_payment_reference(db: AsyncSession, payment_reference: str) -> Optional[Booking]:
    result = await db.execute(
        select(Booking).where(Booking.payment_reference == payment_reference)
    )
    return result.scalar_one_or_none()


async def list_for_client(db: AsyncSession, client_id: str) -> List[Booking]:
    """Bookings where the user is the client, latest session first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.client_id == client_id)
        .order_by(Booking.date.desc(), Booking.created_at.desc())
    )
    return list(result.scalars().all())


async def list_for_mentor(db: AsyncSession, mentor_id: str) -> List[Booking]:
    """Bookings where the user is the mentor, latest session first."""
    result = await db.execute(
        select(Booking)
        .where(Booking.mentor_id == mentor_id)
        .order_by(Booking.date.desc(), Booking.created_at.desc())
    )
    return list(result.scalars().all())


async def list_pending_for_mentor(db: AsyncSession, mentor_id: str) -> List[Booking]:
    """Requests awaiting the mentor's answer. Uses ix_bookings_mentor_status."""
    result = await db.execute(
        select(Booking)
        .where(
            Booking.mentor_id == mentor_id,
            Booking.status == BookingStatus.PENDING.value,
        )
        .order_by(Booking.date.desc(), Booking.created_at.desc())
    )
    return list(result.scalars().all())


async def watch_pending_for_mentor(
    session_factory: Callable[[], AsyncSession],
    mentor_id: str,
) -> AsyncIterator[List[Booking]]:
    """
    Live view of `list_pending_for_mentor`: the full result set on
    subscription and again after every committed change, in commit order.
    Each snapshot reads through its own short-lived session.
    """

    async def snapshot() -> List[Booking]:
        async with session_factory() as db:
            return await list_pending_for_mentor(db, mentor_id)

    async for bookings in feed.watch(pending_bookings_topic(mentor_id), snapshot):
        yield bookings


async def transition(
    db: AsyncSession,
    booking_id: str,
    expected: BookingStatus,
    new: BookingStatus,
    now: Optional[datetime] = None,
) -> bool:
    """
    Apply `expected -> new` only if the row is still in `expected`.
    Returns False when another writer got there first.
    """
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == expected.value,
        )
        .values(status=new.value, updated_at=now or utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.info(
            "booking_transition_guard_failed",
            booking_id=booking_id,
            expected=expected.value,
            new=new.value,
        )
        return False
    return True
