"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment_confirmation import (
    ConfirmationResult,
    DelegatedConfirmation,
    PaymentConfirmation,
    ProgrammaticConfirmation,
)
from .payment_gateway import IntentHandle, IntentStatus, PaymentGateway, SplitTarget
from .sandbox_gateway import SandboxGateway

__all__ = [
    'PaymentGateway', 'IntentHandle', 'IntentStatus', 'SplitTarget',
    'SandboxGateway',
    'PaymentConfirmation', 'ConfirmationResult', 'DelegatedConfirmation', 'ProgrammaticConfirmation',
]
