from rankup.models.booking import Booking, BookingStatus, SessionType
from rankup.models.conversation import Conversation, Message
from rankup.models.review import Review
from rankup.models.user import UserProfile

__all__ = [
    "Booking", "BookingStatus", "SessionType",
    "Conversation", "Message",
    "Review",
    "UserProfile",
]
