"""Policy lifecycle: issuance, renewal, cancellation, expiry and payments."""

from .lifecycle import PolicyLifecycleManager, add_years
from .payment import PaymentSimulator, is_valid_payment_method

__all__ = [
    "PaymentSimulator",
    "PolicyLifecycleManager",
    "add_years",
    "is_valid_payment_method",
]
