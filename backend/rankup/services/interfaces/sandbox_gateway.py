"""
Sandbox payment gateway - no network calls.
Mirrors the processor's behaviour closely enough to drive both checkout flows.
"""

import itertools
import time
from dataclasses import replace
from typing import Dict, Optional, Set

from rankup.core.errors import CardDeclined, GatewayUnavailable, PayeeNotOnboarded, PaymentFailed
from rankup.services.interfaces.payment_gateway import (
    IntentHandle,
    IntentStatus,
    OnboardingLink,
    PayeeStatus,
    PaymentGateway,
    SplitTarget,
)

# Test payment methods, named after the processor's test tokens
PM_SUCCESS = "pm_card_visa"
PM_DECLINED = "pm_card_chargeDeclined"
PM_FAILED = "pm_card_processing_error"
PM_REQUIRES_ACTION = "pm_card_authenticationRequired"

ONBOARDING_LINK_TTL_SECONDS = 300


class SandboxGateway(PaymentGateway):
    """
    In-memory gateway.

    Use when:
    - Running locally without processor credentials
    - Tests (set `unavailable = True` to simulate an outage)
    """

    def __init__(self):
        self._counter = itertools.count(1)
        self.intents: Dict[str, IntentHandle] = {}
        self.splits: Dict[str, Optional[SplitTarget]] = {}
        self.accounts: Dict[str, str] = {}  # owner_id -> account_id
        self.onboarded: Set[str] = set()
        self.unavailable = False

    def _check_available(self) -> None:
        if self.unavailable:
            raise GatewayUnavailable()

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
        split: Optional[SplitTarget] = None,
    ) -> IntentHandle:
        self._check_available()
        if split is not None and split.destination_account_id not in self.onboarded:
            raise PayeeNotOnboarded(account_id=split.destination_account_id)

        n = next(self._counter)
        handle = f"pi_sandbox_{n}"
        intent = IntentHandle(
            handle=handle,
            client_secret=f"{handle}_secret_{n}",
            status=IntentStatus.REQUIRES_PAYMENT_METHOD,
            amount_minor=amount_minor,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[handle] = intent
        self.splits[handle] = split
        return intent

    def _get(self, handle: str) -> IntentHandle:
        try:
            return self.intents[handle]
        except KeyError:
            raise PaymentFailed(f"Unknown payment intent {handle}", handle=handle)

    async def retrieve_intent(self, handle: str) -> IntentHandle:
        self._check_available()
        return self._get(handle)

    async def confirm_intent(self, handle: str, payment_method: str) -> IntentHandle:
        self._check_available()
        intent = self._get(handle)
        if intent.succeeded:
            return intent

        if payment_method == PM_DECLINED:
            raise CardDeclined(handle=handle)
        if payment_method == PM_FAILED:
            raise PaymentFailed(handle=handle)
        status = IntentStatus.REQUIRES_ACTION if payment_method == PM_REQUIRES_ACTION else IntentStatus.SUCCEEDED

        intent = replace(intent, status=status)
        self.intents[handle] = intent
        return intent

    def complete_in_ui(self, handle: str, payment_method: str = PM_SUCCESS) -> None:
        """Stand-in for the platform payment sheet confirming on the customer's device."""
        intent = self._get(handle)
        status = IntentStatus.SUCCEEDED if payment_method == PM_SUCCESS else IntentStatus.REQUIRES_PAYMENT_METHOD
        self.intents[handle] = replace(intent, status=status)

    async def create_payee_account(self, owner_id: str, email: Optional[str] = None) -> str:
        self._check_available()
        if owner_id not in self.accounts:
            self.accounts[owner_id] = f"acct_sandbox_{next(self._counter)}"
        return self.accounts[owner_id]

    async def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        self._check_available()
        return OnboardingLink(
            url=f"https://connect.sandbox.local/onboarding/{account_id}",
            expires_at=int(time.time()) + ONBOARDING_LINK_TTL_SECONDS,
        )

    def complete_onboarding(self, account_id: str) -> None:
        self.onboarded.add(account_id)

    async def retrieve_payee_status(self, account_id: str) -> PayeeStatus:
        self._check_available()
        done = account_id in self.onboarded
        return PayeeStatus(account_id=account_id, details_submitted=done, charges_enabled=done)
