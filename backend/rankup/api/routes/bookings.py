"""
Booking lifecycle endpoints.
Bookings are created by checkout, never directly.
"""

import json
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rankup.core.security import get_current_user_id
from rankup.db.session import get_db, get_session_factory
from rankup.schemas.booking import BookingCancelResponse, BookingResponse
from rankup.schemas.review import ReviewResponse
from rankup.services import booking_service, review_service

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.get("/", response_model=list[BookingResponse])
async def list_bookings(
    role: Literal["client", "mentor"] = Query("client"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's bookings as client or as mentor, latest session first."""
    if role == "mentor":
        return await booking_service.list_mentor_bookings(db, user_id)
    return await booking_service.list_client_bookings(db, user_id)


@router.get("/pending/stream")
async def stream_pending_bookings(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """
    Server-sent events: the mentor's full pending list now and after every
    change, in commit order.
    """

    async def events():
        async for bookings in booking_service.watch_pending_bookings(session_factory, user_id):
            if await request.is_disconnected():
                break
            payload = [BookingResponse.model_validate(b).model_dump() for b in bookings]
            yield f"event: pending_bookings\ndata: {json.dumps(jsonable_encoder(payload))}\n\n"

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_booking(db, booking_id, user_id)


@router.post("/{booking_id}/accept", response_model=BookingResponse)
async def accept_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Mentor confirms a pending request. Opens the booking's conversation."""
    return await booking_service.accept_booking(db, booking_id, user_id)


@router.post("/{booking_id}/reject", response_model=BookingResponse)
async def reject_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.reject_booking(db, booking_id, user_id)


@router.post("/{booking_id}/cancel", response_model=BookingCancelResponse)
async def cancel_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Either party cancels. `refund_eligible` tells billing whether the
    session was at least 48 hours away; no funds are moved here.
    """
    result = await booking_service.cancel_booking(db, booking_id, user_id)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking=result.booking,
        refund_eligible=result.refund_eligible,
    )


@router.post("/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.complete_booking(db, booking_id, user_id)


@router.get("/{booking_id}/reviews", response_model=list[ReviewResponse])
async def list_booking_reviews(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await booking_service.get_booking(db, booking_id, user_id)
    return await review_service.list_reviews_for_booking(db, booking_id)
