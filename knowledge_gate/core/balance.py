"""
User balance and request settlement.

Concurrent authorizations read the balance without locking, so the ceilings
granted across one fan-out can add up to more than the balance. Settlement is
the only write: it deducts the actual charges once per request, clamps at
zero and reports any shortfall instead of rolling results back.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from .pricing import STARTING_SPARKS, Number, to_decimal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Settlement:
    """What one request actually cost and what could be collected."""
    charged: float
    deducted: float
    shortfall: float
    balance_after: float

    @property
    def over_budget(self) -> bool:
        return self.shortfall > 0


class BalanceService:
    """Holds one user's Sparks balance."""

    def __init__(self, balance: Number = STARTING_SPARKS):
        amount = to_decimal(balance)
        if amount < 0:
            raise ValueError("balance cannot be negative")
        self._balance: Decimal = amount
        self._lock = asyncio.Lock()

    @property
    def available(self) -> float:
        return float(self._balance)

    async def settle(self, total_charged: Number) -> Settlement:
        """Deduct a request's total charge.

        Args:
            total_charged: Sum of Sparks spent by the request's successful calls

        Returns:
            Settlement describing the deduction and any shortfall

        Raises:
            ValueError: If total_charged is negative
        """
        total = to_decimal(total_charged)
        if total < 0:
            raise ValueError("total_charged cannot be negative")

        async with self._lock:
            before = self._balance
            deducted = min(total, before)
            balance_after = before - deducted
            self._balance = balance_after

        shortfall = total - deducted
        if shortfall > 0:
            logger.warning(
                "Request cost %.4f Sparks but only %.4f were available; %.4f not collected",
                total, before, shortfall,
            )
        else:
            logger.info("Settled %.4f Sparks, balance now %.4f", total, balance_after)
        return Settlement(
            charged=float(total),
            deducted=float(deducted),
            shortfall=float(shortfall),
            balance_after=float(balance_after),
        )
