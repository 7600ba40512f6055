"""
Domain exception taxonomy.

Every error carries a stable `code`, an HTTP status and a user-facing
`category` so callers can tell, at minimum, whether money moved:

    ValidationError      bad input, nothing written
    StateError           invalid/stale transition, duplicate review, ...
    NotFoundError        unknown booking/conversation
    AuthorizationError   caller is not a party / not authenticated
    GatewayError         payment processor failure (retryable or terminal)
    ReconciliationError  payment captured but the booking could not be recorded
"""

from typing import Any, Dict, Optional

from fastapi import status


class RankUpError(Exception):
    """Base application exception."""

    code = "error"
    category = "unexpected_error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    retryable = False
    default_message = "Unexpected error"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class ValidationError(RankUpError):
    code = "validation_error"
    category = "invalid_request"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid request"


class SelfBookingError(ValidationError):
    code = "self_booking"
    default_message = "You cannot book a session with yourself"


class InvalidDateError(ValidationError):
    code = "invalid_date"
    default_message = "Session date must be in the future"


class InvalidPriceError(ValidationError):
    code = "invalid_price"
    default_message = "Session price must be positive and within the allowed maximum"


class InvalidRating(ValidationError):
    code = "invalid_rating"
    default_message = "Rating must be an integer between 1 and 5"


class InvalidMessage(ValidationError):
    code = "invalid_message"
    default_message = "Message content must not be empty"


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class StateError(RankUpError):
    code = "state_error"
    category = "booking_state_conflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The booking is not in a state that allows this action"


class InvalidTransition(StateError):
    code = "invalid_transition"


class StaleTransitionError(InvalidTransition):
    code = "stale_transition"
    default_message = "The booking was modified by someone else. Refresh and try again."


class AlreadyTerminalError(InvalidTransition):
    code = "already_terminal"
    default_message = "The booking is already closed"


class SessionNotElapsedError(StateError):
    code = "session_not_elapsed"
    default_message = "A session can only be completed once it has taken place"


class BookingNotCompleted(StateError):
    code = "booking_not_completed"
    category = "review_not_allowed"
    default_message = "Reviews can only be left for completed sessions"


class DuplicateReview(StateError):
    code = "duplicate_review"
    category = "review_not_allowed"
    default_message = "You have already reviewed this booking"


class ChatNotAvailable(StateError):
    code = "chat_not_available"
    category = "chat_not_available"
    default_message = "Chat opens once the mentor has confirmed the booking"


# ---------------------------------------------------------------------------
# Lookup / authorization
# ---------------------------------------------------------------------------

class NotFoundError(RankUpError):
    code = "not_found"
    category = "not_found"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Resource not found"

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        super().__init__(message, resource=resource, resource_id=resource_id)


class AuthorizationError(RankUpError):
    code = "forbidden"
    category = "not_allowed"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "You are not allowed to perform this action"


class NotAPartyError(AuthorizationError):
    code = "not_a_party"
    default_message = "Only the client or mentor of this booking can do that"


class Unauthenticated(AuthorizationError):
    code = "unauthenticated"
    category = "authentication_required"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------

class GatewayError(RankUpError):
    code = "gateway_error"
    category = "payment_not_taken"
    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "The payment provider returned an error. You have not been charged."


class GatewayUnavailable(GatewayError):
    code = "gateway_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True
    default_message = "The payment provider is unreachable. You have not been charged, please retry."


class PaymentFailed(GatewayError):
    code = "payment_failed"
    category = "payment_declined"
    status_code = status.HTTP_402_PAYMENT_REQUIRED
    default_message = "The payment did not go through. Please use another payment method."


class CardDeclined(PaymentFailed):
    code = "card_declined"
    default_message = "Your card was declined. Please use another payment method."


class PayeeNotOnboarded(GatewayError):
    code = "payee_not_onboarded"
    category = "payee_setup_incomplete"
    status_code = status.HTTP_409_CONFLICT
    default_message = "The mentor has not finished setting up payouts"


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

class ReconciliationError(RankUpError):
    code = "reconciliation_required"
    category = "payment_captured_booking_failed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = (
        "Your payment was taken but the booking could not be saved. "
        "Our team has been notified and will resolve it."
    )
