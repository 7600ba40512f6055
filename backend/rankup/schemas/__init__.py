from rankup.schemas.booking import BookingCancelResponse, BookingRequestBase, BookingResponse
from rankup.schemas.conversation import (
    ConversationCreate,
    ConversationResponse,
    MarkReadResponse,
    MessageCreate,
    MessageResponse,
)
from rankup.schemas.payment import (
    CheckoutComplete,
    CheckoutResponse,
    CheckoutStart,
    OnboardingLinkResponse,
    PayeeAccountCreate,
    PayeeAccountResponse,
    ProgrammaticCheckout,
)
from rankup.schemas.review import ReviewCreate, ReviewResponse

__all__ = [
    "BookingRequestBase", "BookingResponse", "BookingCancelResponse",
    "CheckoutStart", "ProgrammaticCheckout", "CheckoutComplete", "CheckoutResponse",
    "PayeeAccountCreate", "PayeeAccountResponse", "OnboardingLinkResponse",
    "ConversationCreate", "ConversationResponse", "MessageCreate", "MessageResponse", "MarkReadResponse",
    "ReviewCreate", "ReviewResponse",
]
