"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from rankup.api.routes import bookings, conversations, payments, reviews

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(payments.router)
api_router.include_router(bookings.router)
api_router.include_router(conversations.router)
api_router.include_router(reviews.router)
