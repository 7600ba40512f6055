"""
Composition of services for the request layer.
The confirmation flow is chosen here, per endpoint, never inside checkout.
"""

from fastapi import Depends

from rankup.services.checkout_service import CheckoutService
from rankup.services.interfaces.payment_confirmation import DelegatedConfirmation, ProgrammaticConfirmation
from rankup.services.interfaces.payment_gateway import PaymentGateway
from rankup.services.payment_service import PaymentService
from rankup.services.strategy_factory import get_payment_gateway


def get_payment_service(gateway: PaymentGateway = Depends(get_payment_gateway)) -> PaymentService:
    return PaymentService(gateway)


def get_delegated_checkout(gateway: PaymentGateway = Depends(get_payment_gateway)) -> CheckoutService:
    return CheckoutService(gateway, DelegatedConfirmation(gateway))


def get_programmatic_checkout(gateway: PaymentGateway = Depends(get_payment_gateway)) -> CheckoutService:
    return CheckoutService(gateway, ProgrammaticConfirmation(gateway))
