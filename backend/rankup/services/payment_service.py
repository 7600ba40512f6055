"""
Payment gateway adapter: intents and mentor payee onboarding.

Amounts arrive in major units and leave in minor units:

    amount_minor          = round(price * 100)
    application_fee_minor = round(amount_minor * 0.15)

The marketplace split (fee to the platform, remainder to the mentor's payee
account) is attached only when the mentor finished payee onboarding.
Otherwise, or when the gateway refuses the destination, the platform keeps
100% of the captured funds pending manual payout.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from rankup.core.config import get_settings
from rankup.core.errors import NotFoundError, PayeeNotOnboarded, Unauthenticated
from rankup.core.logging import get_logger
from rankup.core.metrics import payment_intents
from rankup.services import profile_service
from rankup.services.fee_policy import FeeBreakdown, application_fee_minor, compute_fee, to_minor_units
from rankup.services.interfaces.payment_gateway import (
    IntentHandle,
    OnboardingLink,
    PayeeStatus,
    PaymentGateway,
    SplitTarget,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class PreparedIntent:
    intent: IntentHandle
    fee: FeeBreakdown
    split: Optional[SplitTarget]

    @property
    def platform_held(self) -> bool:
        return self.split is None


class PaymentService:
    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway
        self.settings = get_settings()

    async def create_payment_intent(
        self,
        db: AsyncSession,
        client_id: str,
        mentor_id: str,
        price: Decimal,
        metadata: Optional[Dict[str, str]] = None,
    ) -> PreparedIntent:
        """Create a payable intent for a session, with a split when the mentor can receive one."""
        fee = compute_fee(price)
        amount_minor = to_minor_units(price)
        intent_metadata = {
            "client_id": client_id,
            "mentor_id": mentor_id,
            "price": str(price),
            "app_fee": str(fee.app_fee),
            **(metadata or {}),
        }

        split = None
        mentor = await profile_service.get_profile(db, mentor_id)
        if mentor is not None and mentor.can_receive_split:
            split = SplitTarget(
                destination_account_id=mentor.payee_account_id,
                application_fee_minor=application_fee_minor(amount_minor),
            )

        currency = self.settings.PAYMENT_CURRENCY
        try:
            intent = await self.gateway.create_intent(amount_minor, currency, intent_metadata, split)
        except PayeeNotOnboarded:
            logger.warning(
                "payee_split_unavailable",
                mentor_id=mentor_id,
                account_id=split.destination_account_id if split else None,
            )
            split = None
            intent = await self.gateway.create_intent(amount_minor, currency, intent_metadata, None)

        payment_intents.labels(split="platform_held" if split is None else "marketplace").inc()
        logger.info(
            "payment_intent_created",
            handle=intent.handle,
            client_id=client_id,
            mentor_id=mentor_id,
            amount_minor=amount_minor,
            application_fee_minor=split.application_fee_minor if split else None,
            platform_held=split is None,
        )
        return PreparedIntent(intent=intent, fee=fee, split=split)

    # -----------------------------------------------------------------------
    # Mentor payee onboarding
    # -----------------------------------------------------------------------

    @staticmethod
    def _require_mentor(caller_id: Optional[str], mentor_id: str) -> None:
        if not caller_id or caller_id != mentor_id:
            raise Unauthenticated("Payee onboarding must be done by the mentor themselves")

    async def ensure_payee_account(
        self,
        db: AsyncSession,
        caller_id: Optional[str],
        mentor_id: str,
        email: Optional[str] = None,
    ) -> str:
        """Create the mentor's payee account, or return the existing one."""
        self._require_mentor(caller_id, mentor_id)

        profile = await profile_service.get_or_create_profile(db, mentor_id, email=email)
        if profile.payee_account_id:
            await db.commit()
            return profile.payee_account_id

        account_id = await self.gateway.create_payee_account(mentor_id, email or profile.email)
        profile.payee_account_id = account_id
        profile.payee_onboarding_complete = False
        await db.commit()

        logger.info("payee_account_created", mentor_id=mentor_id, account_id=account_id)
        return account_id

    async def create_onboarding_link(
        self,
        db: AsyncSession,
        caller_id: Optional[str],
        mentor_id: str,
    ) -> OnboardingLink:
        """Time-limited onboarding URL the mentor completes out-of-band."""
        self._require_mentor(caller_id, mentor_id)

        profile = await profile_service.get_profile(db, mentor_id)
        if profile is None or not profile.payee_account_id:
            raise NotFoundError("Payee account", mentor_id)

        link = await self.gateway.create_onboarding_link(profile.payee_account_id)
        logger.info("payee_onboarding_link_created", mentor_id=mentor_id, expires_at=link.expires_at)
        return link

    async def refresh_payee_status(
        self,
        db: AsyncSession,
        caller_id: Optional[str],
        mentor_id: str,
    ) -> PayeeStatus:
        """Pull onboarding progress from the gateway and persist it."""
        self._require_mentor(caller_id, mentor_id)

        profile = await profile_service.get_profile(db, mentor_id)
        if profile is None or not profile.payee_account_id:
            raise NotFoundError("Payee account", mentor_id)

        status = await self.gateway.retrieve_payee_status(profile.payee_account_id)
        if profile.payee_onboarding_complete != status.onboarding_complete:
            profile.payee_onboarding_complete = status.onboarding_complete
            await db.commit()
            logger.info(
                "payee_onboarding_updated",
                mentor_id=mentor_id,
                onboarding_complete=status.onboarding_complete,
            )
        return status
