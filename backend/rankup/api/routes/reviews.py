"""
Review endpoints. Reviews unlock once a booking is completed.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.security import get_current_user_id
from rankup.db.session import get_db
from rankup.schemas.review import ReviewCreate, ReviewResponse
from rankup.services import review_service

router = APIRouter(tags=["Reviews"])


@router.post("/reviews", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
async def create_review(
    body: ReviewCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Review the other party of a completed booking. One review per booking and reviewer."""
    return await review_service.create_review(
        db,
        booking_id=body.booking_id,
        reviewer_id=user_id,
        reviewee_id=body.reviewee_id,
        rating=body.rating,
        comment=body.comment,
    )


@router.get("/users/{user_id}/reviews", response_model=list[ReviewResponse])
async def list_user_reviews(
    user_id: str,
    db: AsyncSession = Depends(get_db),
):
    """Public list of reviews a user received, newest first."""
    return await review_service.list_reviews_for_user(db, user_id)
