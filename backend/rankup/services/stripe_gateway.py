"""
Stripe Connect gateway.
Implements PaymentGateway with Express accounts and destination charges.

Error mapping:
  CardError                                -> CardDeclined (terminal)
  APIConnectionError / RateLimitError / APIError -> GatewayUnavailable (retryable)
  InvalidRequestError on transfer_data     -> PayeeNotOnboarded (caller falls back)
  AuthenticationError / other StripeError  -> PaymentFailed / GatewayError

The stripe SDK is synchronous; calls run in the threadpool so they never
block the event loop.
"""

import time
from typing import Any, Callable, Dict, Optional

import stripe
from starlette.concurrency import run_in_threadpool

from rankup.core.config import get_settings
from rankup.core.errors import CardDeclined, GatewayError, GatewayUnavailable, PayeeNotOnboarded, PaymentFailed
from rankup.core.logging import get_logger
from rankup.core.metrics import gateway_latency
from rankup.services.interfaces.payment_gateway import (
    IntentHandle,
    OnboardingLink,
    PayeeStatus,
    PaymentGateway,
    SplitTarget,
)

logger = get_logger(__name__)

# Stripe error codes meaning the destination account cannot take a transfer yet
_PAYEE_ERROR_CODES = {"account_invalid", "insufficient_capabilities_for_transfer"}


def _to_handle(intent: Any) -> IntentHandle:
    metadata = intent.metadata.to_dict() if intent.metadata else {}
    return IntentHandle(
        handle=intent.id,
        client_secret=intent.client_secret or "",
        status=intent.status,
        amount_minor=intent.amount,
        currency=intent.currency,
        metadata={key: str(value) for key, value in metadata.items()},
    )


class StripeGateway(PaymentGateway):
    def __init__(self, secret_key: Optional[str] = None):
        settings = get_settings()
        self.settings = settings
        stripe.api_key = secret_key or settings.STRIPE_SECRET_KEY
        if not stripe.api_key:
            logger.warning("stripe_not_configured", message="STRIPE_SECRET_KEY is not set, payment calls will fail")

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        start = time.perf_counter()
        try:
            return await run_in_threadpool(fn, *args, **kwargs)
        except stripe.CardError as e:
            logger.info("stripe_card_declined", operation=operation, code=e.code, decline_code=getattr(e, "decline_code", None))
            raise CardDeclined(e.user_message or None, code=e.code) from e
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            logger.warning("stripe_unavailable", operation=operation, error=str(e))
            raise GatewayUnavailable() from e
        except stripe.InvalidRequestError as e:
            param = e.param or ""
            if e.code in _PAYEE_ERROR_CODES or param.startswith("transfer_data"):
                raise PayeeNotOnboarded(code=e.code, param=param) from e
            logger.error("stripe_invalid_request", operation=operation, code=e.code, param=param, error=str(e))
            raise PaymentFailed(code=e.code) from e
        except stripe.AuthenticationError as e:
            logger.error("stripe_authentication_failed", operation=operation)
            raise GatewayError("Payment provider is misconfigured") from e
        except stripe.StripeError as e:
            logger.error("stripe_error", operation=operation, error=str(e))
            raise PaymentFailed() from e
        finally:
            gateway_latency.labels(operation=operation).observe(time.perf_counter() - start)

    async def create_intent(
        self,
        amount_minor: int,
        currency: str,
        metadata: Dict[str, str],
        split: Optional[SplitTarget] = None,
    ) -> IntentHandle:
        params: Dict[str, Any] = {
            "amount": amount_minor,
            "currency": currency,
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata,
        }
        if split is not None:
            params["application_fee_amount"] = split.application_fee_minor
            params["transfer_data"] = {"destination": split.destination_account_id}

        intent = await self._call("create_intent", stripe.PaymentIntent.create, **params)
        return _to_handle(intent)

    async def retrieve_intent(self, handle: str) -> IntentHandle:
        intent = await self._call("retrieve_intent", stripe.PaymentIntent.retrieve, handle)
        return _to_handle(intent)

    async def confirm_intent(self, handle: str, payment_method: str) -> IntentHandle:
        intent = await self._call(
            "confirm_intent",
            stripe.PaymentIntent.confirm,
            handle,
            payment_method=payment_method,
            return_url=self.settings.PAYMENT_RETURN_URL,
        )
        return _to_handle(intent)

    async def create_payee_account(self, owner_id: str, email: Optional[str] = None) -> str:
        params: Dict[str, Any] = {
            "type": "express",
            "country": self.settings.PAYEE_COUNTRY,
            "capabilities": {
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
            "metadata": {"owner_id": owner_id},
            # Repeated calls for the same owner return the same account
            "idempotency_key": f"payee-account-{owner_id}",
        }
        if email:
            params["email"] = email
        account = await self._call("create_payee_account", stripe.Account.create, **params)
        logger.info("stripe_account_created", owner_id=owner_id, account_id=account.id)
        return account.id

    async def create_onboarding_link(self, account_id: str) -> OnboardingLink:
        link = await self._call(
            "create_onboarding_link",
            stripe.AccountLink.create,
            account=account_id,
            refresh_url=self.settings.ONBOARDING_REFRESH_URL,
            return_url=self.settings.ONBOARDING_RETURN_URL,
            type="account_onboarding",
        )
        return OnboardingLink(url=link.url, expires_at=getattr(link, "expires_at", None))

    async def retrieve_payee_status(self, account_id: str) -> PayeeStatus:
        account = await self._call("retrieve_payee_status", stripe.Account.retrieve, account_id)
        return PayeeStatus(
            account_id=account.id,
            details_submitted=bool(account.details_submitted),
            charges_enabled=bool(account.charges_enabled),
        )
