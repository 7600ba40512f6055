"""
Review gate.

A review can only be left after a booking is completed, and each booking
can only have one review per reviewer. Writing a review recomputes the
reviewee's aggregate from the full set of reviews addressed to them; no
running average is kept, so the stored value cannot drift.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.errors import (
    BookingNotCompleted,
    DuplicateReview,
    InvalidRating,
    NotAPartyError,
    NotFoundError,
    Unauthenticated,
    ValidationError,
)
from rankup.core.logging import get_logger
from rankup.core.metrics import reviews_created
from rankup.models.booking import BookingStatus
from rankup.models.review import Review
from rankup.services import booking_store, profile_service

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def aggregate_rating(ratings: Sequence[int]) -> Tuple[Decimal, int]:
    """Mean rounded half-up to one decimal, and the count. [4, 5, 4] -> (4.3, 3)."""
    if not ratings:
        return Decimal("0.0"), 0
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP), len(ratings)


def _validate_rating(rating) -> int:
    # bool is an int subclass; True must not pass as a 1-star review
    if isinstance(rating, bool) or not isinstance(rating, int):
        raise InvalidRating(rating=rating)
    if not MIN_RATING <= rating <= MAX_RATING:
        raise InvalidRating(rating=rating)
    return rating


async def get_review_for_booking(db: AsyncSession, booking_id: str, reviewer_id: str) -> Optional[Review]:
    result = await db.execute(
        select(Review).where(Review.booking_id == booking_id, Review.reviewer_id == reviewer_id)
    )
    return result.scalar_one_or_none()


async def create_review(
    db: AsyncSession,
    booking_id: str,
    reviewer_id: Optional[str],
    reviewee_id: str,
    rating: int,
    comment: Optional[str] = None,
) -> Review:
    """Submit a review for a completed booking and refresh the reviewee's rating."""
    if not reviewer_id:
        raise Unauthenticated()
    rating = _validate_rating(rating)

    booking = await booking_store.get(db, booking_id)
    if booking is None:
        raise NotFoundError("Booking", booking_id)
    if reviewer_id not in booking.parties:
        raise NotAPartyError(booking_id=booking_id)
    if reviewee_id == reviewer_id or reviewee_id not in booking.parties:
        raise ValidationError("You can only review the other party of the booking", booking_id=booking_id)
    if booking.status != BookingStatus.COMPLETED.value:
        raise BookingNotCompleted(booking_id=booking_id, status=booking.status)

    if await get_review_for_booking(db, booking_id, reviewer_id) is not None:
        raise DuplicateReview(booking_id=booking_id)

    # Rating updates for one reviewee run one at a time from here to commit
    await profile_service.get_or_create_profile(db, reviewee_id, for_update=True)

    comment = (comment or "").strip() or None
    review = Review(
        booking_id=booking_id,
        reviewer_id=reviewer_id,
        reviewee_id=reviewee_id,
        rating=rating,
        comment=comment,
    )
    db.add(review)
    try:
        await db.flush()
    except IntegrityError:
        # A concurrent submit from the same reviewer got in first
        await db.rollback()
        raise DuplicateReview(booking_id=booking_id)

    await update_user_rating(db, reviewee_id)
    await db.commit()

    reviews_created.labels(rating=str(rating)).inc()
    logger.info("review_created", review_id=review.id, booking_id=booking_id, reviewee_id=reviewee_id)
    return review


async def update_user_rating(db: AsyncSession, user_id: str) -> None:
    """
    Recalculate average_rating and total_reviews from every review the user received.

    The profile row is locked before the scan, so a concurrent review for the
    same user waits and then scans a set that includes this one.
    """
    profile = await profile_service.get_or_create_profile(db, user_id, for_update=True)
    result = await db.execute(select(Review.rating).where(Review.reviewee_id == user_id))
    average, total = aggregate_rating(list(result.scalars().all()))

    profile.average_rating = average
    profile.total_reviews = total
    await db.flush()

    logger.info("user_rating_updated", user_id=user_id, average_rating=str(average), total_reviews=total)


async def list_reviews_for_user(db: AsyncSession, user_id: str) -> List[Review]:
    """Reviews received by the user, newest first."""
    result = await db.execute(
        select(Review)
        .where(Review.reviewee_id == user_id)
        .order_by(Review.created_at.desc())
    )
    return list(result.scalars().all())


async def list_reviews_for_booking(db: AsyncSession, booking_id: str) -> List[Review]:
    result = await db.execute(
        select(Review).where(Review.booking_id == booking_id).order_by(Review.created_at.asc())
    )
    return list(result.scalars().all())
