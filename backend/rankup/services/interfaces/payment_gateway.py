"""
Payment gateway collaborator interface.
Allows swapping the real processor for the sandbox without touching checkout logic.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional


class IntentStatus:
    REQUIRES_PAYMENT_METHOD = "requires_payment_method"
    REQUIRES_CONFIRMATION = "requires_confirmation"
    REQUIRES_ACTION = "requires_action"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    CANCELED = "canceled"


@dataclass(frozen=True)
class SplitTarget:
    """Marketplace split: the platform keeps `application_fee_minor`, the rest goes to the payee."""
    destination_account_id: str
    application_fee_minor: int


@dataclass(frozen=True)
class IntentHandle:
    handle: str
    client_secret: str
    status: str
    amount_minor: int
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == IntentStatus.SUCCEEDED


@dataclass(frozen=True)
class PayeeStatus:
    account_id: str
    details_submitted: bool
    charges_enabled: bool

    @property
    def onboarding_complete(self) -> bool:
        return self.details_submitted and self.charges_enabled


@dataclass(frozen=True)
class OnboardingLink:
    url: str
    expires_at: Optional[int] = None  # unix seconds


class PaymentGateway(ABC):
    """
    Interface for payment processors.

    Implementations:
    - StripeGateway: Stripe Connect (Express accounts, destination charges)
    - SandboxGateway: in-process, deterministic, for development and tests

    Every method raises GatewayUnavailable for transport failures and
    CardDeclined / PaymentFailed for terminal payment failures.
    """

    @abstractmethod
    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
        split: Optional[SplitTarget] = None,
    ) -> IntentHandle:
        """
        Create a payment intent.

        Raises:
            PayeeNotOnboarded: the split destination cannot receive funds
        """
        pass

    @abstractmethod
    async def retrieve_intent(self, handle: str) -> IntentHandle:
        """Fetch the current state of an intent (delegated confirmation)."""
        pass

    @abstractmethod
    async def confirm_intent(self, handle: str, payment_method: str) -> IntentHandle:
        """Confirm an intent server-side with a payment method (programmatic confirmation)."""
        pass

    @abstractmethod
    async def create_payee_account(self, owner_id: str, email: Optional[str] = None) -> str:
        """Create a payee account for `owner_id`. Idempotent per owner."""
        pass

    @abstractmethod
    async def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        """Time-limited link the payee follows to finish onboarding."""
        pass

    @abstractmethod
    async def retrieve_payee_status(self, account_id: str) -> PayeeStatus:
        pass
