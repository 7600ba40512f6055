"""
User profile slice owned by the booking core.

Identity and profile editing live with the identity provider; this table
only keeps what payments and reviews need: the mentor's payee account and
the aggregate rating derived from received reviews.
"""

from sqlalchemy import Boolean, Column, Integer, Numeric, String

from rankup.db.base import Base, TimestampMixin


class UserProfile(Base, TimestampMixin):
    __tablename__ = "user_profiles"

    id = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)

    payee_account_id = Column(String(255), nullable=True, unique=True)
    payee_onboarding_complete = Column(Boolean, nullable=False, default=False)

    average_rating = Column(Numeric(2, 1), nullable=False, default=0)
    total_reviews = Column(Integer, nullable=False, default=0)

    @property
    def can_receive_split(self) -> bool:
        return bool(self.payee_account_id) and bool(self.payee_onboarding_complete)

    def __repr__(self) -> str:
        return f"<UserProfile(id={self.id}, rating={self.average_rating}/{self.total_reviews})>"
