"""
Payment gateway factory.
Configures which gateway implementation the service talks to.
"""

from typing import Optional

from rankup.core.config import get_settings
from rankup.services.interfaces.payment_gateway import PaymentGateway
from rankup.services.interfaces.sandbox_gateway import SandboxGateway


def build_payment_gateway() -> PaymentGateway:
    """
    Build the configured gateway.

    - sandbox (default): in-process, no credentials needed
    - stripe: Stripe Connect, requires STRIPE_SECRET_KEY

    Selected via the PAYMENT_GATEWAY env var.
    """
    settings = get_settings()
    if settings.PAYMENT_GATEWAY == "stripe":
        from rankup.services.stripe_gateway import StripeGateway
        return StripeGateway()
    return SandboxGateway()


# Singleton instance
_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton."""
    global _gateway
    if _gateway is None:
        _gateway = build_payment_gateway()
    return _gateway
