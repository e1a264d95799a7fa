"""
Single-call execution against the upstream provider.

Performs one authorized call, bounds it by a wall-clock timeout and converts
the response plus usage metering into a priced CallResult.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from .budget import AuthorizedCall
from .errors import UpstreamEmptyResponse, UpstreamTimeout
from .pricing import (
    FLAT_TRANSACTION_FEE_SPARKS,
    USD_TO_SPARKS_RATE,
    Number,
    calculate_charge,
    to_decimal,
)
from .results import CallResult
from .token_counter import TokenUsage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0

Message = Dict[str, str]


@dataclass(frozen=True)
class UpstreamResponse:
    """Whole (non-streamed) completion returned by the upstream provider."""
    text: str
    usage: Optional[TokenUsage]
    response_id: Optional[str] = None


class UpstreamPort(Protocol):
    """Opaque remote inference call."""

    async def complete(
        self,
        model_id: str,
        messages: List[Message],
        max_tokens: Optional[int] = None,
    ) -> UpstreamResponse:
        """Send the messages with streaming disabled and return the whole response.

        Raises:
            UpstreamError: On a non-success HTTP status
            UpstreamTimeout: If the transport gave up waiting
        """
        ...


class SingleCallExecutor:
    """Runs authorized calls; stateless apart from configuration."""

    def __init__(
        self,
        upstream: UpstreamPort,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        flat_fee: Number = FLAT_TRANSACTION_FEE_SPARKS,
        usd_to_sparks_rate: Number = USD_TO_SPARKS_RATE,
    ):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.upstream = upstream
        self.timeout = timeout
        self.flat_fee = to_decimal(flat_fee)
        self.usd_to_sparks_rate = to_decimal(usd_to_sparks_rate)

    async def execute(
        self,
        call: AuthorizedCall,
        messages: List[Message],
        result_id: Optional[str] = None,
    ) -> CallResult:
        """Perform one authorized call.

        Args:
            call: Authorization produced for this invocation only
            messages: Ordered (role, content) messages to send
            result_id: Identifier for the result, defaults to the model id

        Returns:
            A successful CallResult with usage, USD cost and Sparks charge

        Raises:
            ValueError: If messages is empty
            UpstreamTimeout: If the call exceeds the timeout
            UpstreamError: On a non-success HTTP status
            UpstreamEmptyResponse: If both text and usage are empty
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        model = call.model
        pending = CallResult.pending(model, result_id=result_id)

        try:
            response = await asyncio.wait_for(
                self.upstream.complete(model.id, messages, max_tokens=call.token_cap),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Call to %s aborted after %.1fs", model.id, self.timeout)
            raise UpstreamTimeout(model.id, self.timeout) from None

        if not response.text and response.usage is None:
            raise UpstreamEmptyResponse(model.id)

        charge = calculate_charge(
            response.usage,
            model.pricing,
            usd_to_sparks_rate=self.usd_to_sparks_rate,
            flat_fee=self.flat_fee,
        )
        logger.info(
            "%s answered: %d tokens, %.4f Sparks",
            model.id,
            response.usage.total_tokens if response.usage else 0,
            charge.sparks_spent,
        )
        return pending.succeed(
            text=response.text,
            usage=response.usage,
            cost_usd=charge.cost_usd,
            sparks_spent=charge.sparks_spent,
        )
