"""
Booking model: one paid coaching request between a client and a mentor.

Key design decisions:
- Status field drives the lifecycle; bookings are never deleted
- payment_reference is unique so a captured payment maps to at most one booking
- app_fee is derived from price at creation and stored for audit
- Composite index (mentor_id, status) serves the pending-requests feed
"""

import enum

from sqlalchemy import CheckConstraint, Column, Index, Numeric, String

from rankup.db.base import Base, TimestampMixin, UTCDateTime, new_id


class BookingStatus(str, enum.Enum):
    PENDING = "pending"          # Waiting for mentor approval
    CONFIRMED = "confirmed"      # Mentor accepted, payment held
    REJECTED = "rejected"        # Mentor declined
    COMPLETED = "completed"      # Session done
    CANCELLED = "cancelled"      # Cancelled by either party


class SessionType(str, enum.Enum):
    SPARRING = "sparring"
    TOURNAMENT = "tournament"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=new_id)
    client_id = Column(String(128), nullable=False, index=True)
    mentor_id = Column(String(128), nullable=False, index=True)
    client_name = Column(String(255), nullable=True)
    mentor_name = Column(String(255), nullable=True)

    session_type = Column(String(20), nullable=False)
    date = Column(UTCDateTime(), nullable=False)
    location = Column(String(255), nullable=False)

    price = Column(Numeric(10, 2), nullable=False)
    app_fee = Column(Numeric(10, 2), nullable=False)
    payment_reference = Column(String(255), nullable=True, unique=True)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)

    __table_args__ = (
        CheckConstraint("client_id <> mentor_id", name="check_booking_not_self"),
        CheckConstraint("price > 0", name="check_booking_price_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'rejected', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
        CheckConstraint(
            "session_type IN ('sparring', 'tournament')",
            name="check_booking_session_type",
        ),
        Index("ix_bookings_mentor_status", "mentor_id", "status"),
        Index("ix_bookings_client_date", "client_id", "date"),
    )

    @property
    def is_terminal(self) -> bool:
        return BookingStatus(self.status) in TERMINAL_STATUSES

    @property
    def parties(self) -> frozenset:
        return frozenset({self.client_id, self.mentor_id})

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, client={self.client_id}, mentor={self.mentor_id}, status={self.status})>"
