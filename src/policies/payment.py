"""
Payment simulator.

Stands in for a payment provider: succeeds with a configurable probability
and returns a ``PaymentResult`` the policy lifecycle consumes as-is.
"""

import logging
import random
import string
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional, Union

from ..lifecycle.errors import InvalidInput
from ..lifecycle.schema import PaymentMethod, PaymentResult, PaymentStatus, utc_now

logger = logging.getLogger(__name__)

_TXN_ALPHABET = string.ascii_uppercase + string.digits


def is_valid_payment_method(method: str) -> bool:
    return method in {m.value for m in PaymentMethod}


class PaymentSimulator:
    """
    Simulated payment processing.

    Usage:
        payments = PaymentSimulator(success_rate=0.95, rng=random.Random(7))
        result = payments.simulate(Decimal("5250.00"), PaymentMethod.MOBILE_MONEY)
    """

    def __init__(
        self,
        success_rate: float = 0.95,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError("success_rate must be between 0 and 1")
        self.success_rate = success_rate
        self.rng = rng or random.Random()
        self.clock = clock or utc_now

    def simulate(
        self,
        amount: Decimal,
        method: Union[PaymentMethod, str] = PaymentMethod.CARD,
    ) -> PaymentResult:
        if isinstance(method, str) and not isinstance(method, PaymentMethod):
            if not is_valid_payment_method(method):
                raise InvalidInput(f"Unknown payment method: {method}")
            method = PaymentMethod(method)
        if amount < 0:
            raise InvalidInput("Payment amount cannot be negative")

        if self.rng.random() < self.success_rate:
            now = self.clock()
            result = PaymentResult(
                success=True,
                payment_status=PaymentStatus.PAID,
                method=method,
                payment_date=now,
                transaction_id=self._transaction_id(now),
                message="Payment completed",
            )
            logger.info(f"Payment of {amount} via {method.value} accepted: {result.transaction_id}")
            return result

        logger.warning(f"Payment of {amount} via {method.value} declined")
        return PaymentResult(
            success=False,
            payment_status=PaymentStatus.FAILED,
            method=method,
            message="Payment failed: insufficient funds or technical problem",
        )

    def _transaction_id(self, now: datetime) -> str:
        millis = int(now.timestamp() * 1000)
        suffix = "".join(self.rng.choices(_TXN_ALPHABET, k=9))
        return f"TXN-{millis}-{suffix}"
