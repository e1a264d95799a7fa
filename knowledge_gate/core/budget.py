"""
Budget authorization for upstream calls.

Turns a spend ceiling in Sparks into a hard completion-token cap for exactly
one upstream call.

Authorization Order:
1. Minimum balance - the flat transaction fee must be affordable
2. Ceiling - whole balance for free/Basic models, otherwise an explicit or
   human-confirmed ceiling
3. Token cap - zero-token calls are never attempted
"""

import logging
import math
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol

from .errors import AuthorizationCancelled, BudgetTooLow, InsufficientBalance
from .pricing import (
    FLAT_TRANSACTION_FEE_SPARKS,
    USD_TO_SPARKS_RATE,
    Model,
    Number,
    Tier,
    to_decimal,
)

logger = logging.getLogger(__name__)


class ConfirmationPort(Protocol):
    """Asks a human how much they are willing to spend on one call."""

    async def request_ceiling(self, model: Model, available_balance: float) -> Optional[float]:
        """Return a spend ceiling in Sparks, or None if the user cancelled."""
        ...


@dataclass(frozen=True)
class AuthorizedCall:
    """A (model, token cap, ceiling) grant for one executor invocation."""
    model: Model
    token_cap: Optional[int]  # None means uncapped
    ceiling: float
    call_id: str = field(default_factory=lambda: uuid.uuid4().hex)


def requires_confirmation(model: Model) -> bool:
    """Free and Basic-tier models are spent from the balance without asking."""
    return not (model.is_free or model.tier == Tier.BASIC)


def derive_token_cap(
    model: Model,
    ceiling: Number,
    flat_fee: Number = FLAT_TRANSACTION_FEE_SPARKS,
    usd_to_sparks_rate: Number = USD_TO_SPARKS_RATE,
) -> Optional[int]:
    """Derive the completion-token cap a ceiling pays for.

    Args:
        model: Model the call will be made against
        ceiling: Maximum Sparks authorized for the call
        flat_fee: Flat transaction fee in Sparks
        usd_to_sparks_rate: Sparks per USD

    Returns:
        0 if the ceiling does not cover the flat fee, None if the model's
        completions are free, otherwise the whole number of completion
        tokens the remaining Sparks buy
    """
    usable = to_decimal(ceiling) - to_decimal(flat_fee)
    if usable <= 0:
        return 0
    completion_price = model.pricing.completion
    if completion_price <= 0:
        return None
    usable_usd = usable / to_decimal(usd_to_sparks_rate)
    return max(int(math.floor(usable_usd / completion_price)), 0)


class BudgetAuthorizer:
    """Produces an AuthorizedCall per candidate model.

    Holds only configuration, so one instance can authorize any number of
    calls concurrently.
    """

    def __init__(
        self,
        confirmation: Optional[ConfirmationPort] = None,
        flat_fee: Number = FLAT_TRANSACTION_FEE_SPARKS,
        usd_to_sparks_rate: Number = USD_TO_SPARKS_RATE,
    ):
        self.confirmation = confirmation
        self.flat_fee: Decimal = to_decimal(flat_fee)
        self.usd_to_sparks_rate: Decimal = to_decimal(usd_to_sparks_rate)

    async def authorize(
        self,
        model: Model,
        requested_ceiling: Optional[float],
        available_balance: float,
    ) -> AuthorizedCall:
        """Authorize one call against ``model``.

        Args:
            model: Model to call
            requested_ceiling: Ceiling supplied by the caller, if any
            available_balance: Balance read at authorization time (not locked)

        Returns:
            AuthorizedCall carrying the token cap and ceiling

        Raises:
            InsufficientBalance: If the balance does not cover the flat fee
            AuthorizationCancelled: If the human confirmation was dismissed
            BudgetTooLow: If the ceiling cannot buy a single token
        """
        if to_decimal(available_balance) < self.flat_fee:
            raise InsufficientBalance(float(available_balance), float(self.flat_fee))

        ceiling = await self._resolve_ceiling(model, requested_ceiling, available_balance)

        token_cap = derive_token_cap(model, ceiling, self.flat_fee, self.usd_to_sparks_rate)
        if token_cap == 0:
            raise BudgetTooLow(model.id, float(ceiling))

        logger.debug(
            "Authorized %s: ceiling=%.4f token_cap=%s", model.id, ceiling, token_cap
        )
        return AuthorizedCall(model=model, token_cap=token_cap, ceiling=float(ceiling))

    async def _resolve_ceiling(
        self,
        model: Model,
        requested_ceiling: Optional[float],
        available_balance: float,
    ) -> float:
        if requested_ceiling is not None:
            return requested_ceiling
        if not requires_confirmation(model):
            return available_balance
        if self.confirmation is None:
            raise AuthorizationCancelled(model.id)

        ceiling = await self.confirmation.request_ceiling(model, available_balance)
        if ceiling is None:
            logger.info("Spend confirmation for %s cancelled", model.id)
            raise AuthorizationCancelled(model.id)
        return ceiling
