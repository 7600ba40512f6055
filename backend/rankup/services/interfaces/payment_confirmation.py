"""
Payment confirmation strategies.

The same checkout runs with either flow; the caller picks one at
composition time (web UI -> delegated, server-driven/native -> programmatic).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from rankup.core.errors import PaymentFailed, ValidationError
from rankup.services.interfaces.payment_gateway import IntentHandle, IntentStatus, PaymentGateway


@dataclass(frozen=True)
class ConfirmationResult:
    handle: str
    status: str
    client_secret: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == IntentStatus.SUCCEEDED


class PaymentConfirmation(ABC):
    """
    Interface for driving an intent to capture.

    Implementations:
    - DelegatedConfirmation: a platform payment UI confirms; we verify later
    - ProgrammaticConfirmation: we confirm synchronously with a payment method
    """

    flow: str = ""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    @abstractmethod
    async def begin(self, intent: IntentHandle, payment_method: Optional[str] = None) -> ConfirmationResult:
        """Start confirmation for a freshly created intent."""
        pass

    async def verify(self, handle: str) -> IntentHandle:
        """Read back the authoritative intent state from the gateway."""
        return await self.gateway.retrieve_intent(handle)


class DelegatedConfirmation(PaymentConfirmation):
    """
    Hand the client secret to the platform payment component.
    Completion is asynchronous: nothing is assumed until `verify` sees it.
    """

    flow = "delegated"

    async def begin(self, intent: IntentHandle, payment_method: Optional[str] = None) -> ConfirmationResult:
        return ConfirmationResult(
            handle=intent.handle,
            status=intent.status,
            client_secret=intent.client_secret,
        )


class ProgrammaticConfirmation(PaymentConfirmation):
    """Confirm server-side and return the outcome directly."""

    flow = "programmatic"

    async def begin(self, intent: IntentHandle, payment_method: Optional[str] = None) -> ConfirmationResult:
        if not payment_method:
            raise ValidationError("A payment method is required to confirm the payment")

        confirmed = await self.gateway.confirm_intent(intent.handle, payment_method)
        if confirmed.status == IntentStatus.REQUIRES_ACTION:
            # Needs customer authentication, which only the delegated flow can do
            raise PaymentFailed(
                "This card requires additional authentication. Please use another payment method.",
                handle=intent.handle,
            )
        return ConfirmationResult(handle=confirmed.handle, status=confirmed.status)
