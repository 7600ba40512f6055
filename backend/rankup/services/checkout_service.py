"""
Checkout: pay first, then record the booking.

FLOW
====

    validate request ──▶ create intent ──▶ confirm ──▶ verify captured ──▶ create booking
         (no money)        (split/held)     (flow)      (gateway says)      (pending)

A booking row only ever exists for a captured payment; the intent handle is
stored as its payment_reference, which makes recording idempotent when the
client retries the completion call.

Both confirmation flows share this service:
  - delegated: `start_checkout` returns the client secret, the platform UI
    confirms, then `complete_checkout` verifies the intent with the gateway
  - programmatic: `start_checkout` confirms with a payment method and
    records the booking in the same call

If the payment was captured but the booking cannot be recorded, the failure
is logged with everything needed to repair it by hand and surfaced as
ReconciliationError, never as a generic error.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.errors import (
    CardDeclined,
    GatewayError,
    GatewayUnavailable,
    PaymentFailed,
    RankUpError,
    ReconciliationError,
    Unauthenticated,
    ValidationError,
)
from rankup.core.logging import get_logger
from rankup.core.metrics import reconciliation_failures, record_payment_outcome
from rankup.models.booking import Booking, SessionType
from rankup.services import booking_service
from rankup.services.fee_policy import FeeBreakdown, compute_fee, to_minor_units
from rankup.services.interfaces.payment_confirmation import PaymentConfirmation
from rankup.services.interfaces.payment_gateway import IntentHandle, IntentStatus, PaymentGateway
from rankup.services.payment_service import PaymentService

logger = get_logger(__name__)


def _session_value(session_type) -> str:
    return session_type.value if isinstance(session_type, SessionType) else str(session_type)


class CheckoutStatus:
    REQUIRES_CONFIRMATION = "requires_confirmation"  # delegated: waiting on the payment UI
    PROCESSING = "processing"  # captured asynchronously, report again later
    BOOKED = "booked"


@dataclass(frozen=True)
class CheckoutRequest:
    mentor_id: str
    session_type: str
    date: datetime
    location: str
    price: Decimal
    client_name: Optional[str] = None
    mentor_name: Optional[str] = None


@dataclass(frozen=True)
class CheckoutResult:
    status: str
    handle: str
    fee: FeeBreakdown
    platform_held: bool = False
    client_secret: Optional[str] = None
    booking: Optional[Booking] = None


class CheckoutService:
    def __init__(self, gateway: PaymentGateway, confirmation: PaymentConfirmation):
        self.payments = PaymentService(gateway)
        self.confirmation = confirmation

    @property
    def flow(self) -> str:
        return self.confirmation.flow

    def _validate(self, caller_id: Optional[str], request: CheckoutRequest, now: Optional[datetime]):
        return booking_service.validate_booking_request(
            client_id=caller_id,
            mentor_id=request.mentor_id,
            session_type=request.session_type,
            date=request.date,
            location=request.location,
            price=request.price,
            now=now,
        )

    async def start_checkout(
        self,
        db: AsyncSession,
        caller_id: Optional[str],
        request: CheckoutRequest,
        payment_method: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CheckoutResult:
        """Validate, create the intent and begin confirmation with the configured flow."""
        validated = self._validate(caller_id, request, now)

        try:
            prepared = await self.payments.create_payment_intent(
                db,
                client_id=caller_id,
                mentor_id=request.mentor_id,
                price=validated.price,
                metadata={
                    "session_type": validated.session_type.value,
                    "date": validated.date.isoformat(),
                },
            )
            result = await self.confirmation.begin(prepared.intent, payment_method)
        except GatewayError as e:
            self._record_failure(e)
            raise

        if result.succeeded:
            booking = await self._record_booking(db, caller_id, request, prepared.intent, now)
            record_payment_outcome(self.flow, "succeeded")
            return CheckoutResult(
                status=CheckoutStatus.BOOKED,
                handle=result.handle,
                fee=prepared.fee,
                platform_held=prepared.platform_held,
                booking=booking,
            )

        status = CheckoutStatus.PROCESSING
        if result.client_secret:
            status = CheckoutStatus.REQUIRES_CONFIRMATION
        return CheckoutResult(
            status=status,
            handle=result.handle,
            fee=prepared.fee,
            platform_held=prepared.platform_held,
            client_secret=result.client_secret,
        )

    async def complete_checkout(
        self,
        db: AsyncSession,
        caller_id: Optional[str],
        handle: str,
        request: CheckoutRequest,
        now: Optional[datetime] = None,
    ) -> CheckoutResult:
        """
        The payment UI reported an outcome: ask the gateway what actually
        happened and, if captured, record the booking.
        """
        if not caller_id:
            raise Unauthenticated()

        try:
            intent = await self.confirmation.verify(handle)
        except GatewayError as e:
            self._record_failure(e)
            raise

        self._check_matches(caller_id, request, intent)
        fee = compute_fee(Decimal(str(request.price)))

        if intent.status == IntentStatus.PROCESSING:
            return CheckoutResult(status=CheckoutStatus.PROCESSING, handle=handle, fee=fee)
        if not intent.succeeded:
            record_payment_outcome(self.flow, "failed")
            raise PaymentFailed(handle=handle, status=intent.status)

        booking = await self._record_booking(db, caller_id, request, intent, now)
        record_payment_outcome(self.flow, "succeeded")
        return CheckoutResult(status=CheckoutStatus.BOOKED, handle=handle, fee=fee, booking=booking)

    @staticmethod
    def _check_matches(caller_id: str, request: CheckoutRequest, intent: IntentHandle) -> None:
        metadata = intent.metadata
        if (
            metadata.get("client_id") != caller_id
            or metadata.get("mentor_id") != request.mentor_id
            or metadata.get("session_type") != _session_value(request.session_type)
            or metadata.get("date") != booking_service.as_utc(request.date).isoformat()
            or intent.amount_minor != to_minor_units(Decimal(str(request.price)))
        ):
            logger.warning(
                "checkout_intent_mismatch",
                handle=intent.handle,
                caller_id=caller_id,
                mentor_id=request.mentor_id,
                amount_minor=intent.amount_minor,
                session_type=metadata.get("session_type"),
                date=metadata.get("date"),
            )
            raise ValidationError("Payment does not match this booking request", handle=intent.handle)

    def _record_failure(self, error: GatewayError) -> None:
        if isinstance(error, GatewayUnavailable):
            outcome = "unavailable"
        elif isinstance(error, CardDeclined):
            outcome = "declined"
        else:
            outcome = "failed"
        record_payment_outcome(self.flow, outcome)
        logger.info("checkout_payment_not_taken", flow=self.flow, code=error.code)

    async def _record_booking(
        self,
        db: AsyncSession,
        caller_id: str,
        request: CheckoutRequest,
        intent: IntentHandle,
        now: Optional[datetime],
    ) -> Booking:
        try:
            return await booking_service.create_booking(
                db,
                client_id=caller_id,
                mentor_id=request.mentor_id,
                session_type=request.session_type,
                date=request.date,
                location=request.location,
                price=request.price,
                payment_reference=intent.handle,
                client_name=request.client_name,
                mentor_name=request.mentor_name,
                now=now,
            )
        except (RankUpError, SQLAlchemyError) as e:
            if isinstance(e, SQLAlchemyError):
                await db.rollback()
            reconciliation_failures.inc()
            logger.error(
                "reconciliation_required",
                handle=intent.handle,
                amount_minor=intent.amount_minor,
                currency=intent.currency,
                client_id=caller_id,
                mentor_id=request.mentor_id,
                session_type=request.session_type,
                date=request.date.isoformat(),
                location=request.location,
                price=str(request.price),
                error=str(e),
            )
            raise ReconciliationError(handle=intent.handle) from e
