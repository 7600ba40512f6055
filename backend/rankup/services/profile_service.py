"""
User profile rows owned by this service (payee account, rating aggregate).
Rows are created lazily the first time a user is touched.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.models.user import UserProfile


async def get_profile(db: AsyncSession, user_id: str, for_update: bool = False) -> Optional[UserProfile]:
    stmt = select(UserProfile).where(UserProfile.id == user_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_or_create_profile(
    db: AsyncSession,
    user_id: str,
    email: Optional[str] = None,
    for_update: bool = False,
) -> UserProfile:
    """
    Fetch the profile, creating it if missing.

    A new row is committed on its own so concurrent first touches converge on
    one row; call this before any other pending writes in the session. With
    `for_update` the row stays locked until the caller's transaction ends.
    """
    profile = await get_profile(db, user_id, for_update=for_update)
    if profile is None:
        db.add(
            UserProfile(
                id=user_id,
                email=email,
                payee_onboarding_complete=False,
                average_rating=0,
                total_reviews=0,
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            # Another request created it first
            await db.rollback()
        profile = await get_profile(db, user_id, for_update=for_update)

    if email and not profile.email:
        profile.email = email
    return profile
