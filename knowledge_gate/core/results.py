"""
Call results and request-scoped cancellation.

A CallResult is a tagged result: ``status`` is the discriminant and must be
checked before reading success-only fields.
"""

import asyncio
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .pricing import Model
from .token_counter import TokenUsage
from knowledge_gate.storage.models import ChargeRecord


class SearchMode(Enum):
    """Dispatch modes a query can run in."""
    STANDARD = "standard"
    MULTI = "multi"
    SUMMARY = "summary"
    CONFLICT = "conflict"
    CUSTOM = "custom"

    @property
    def is_fan_out(self) -> bool:
        return self is not SearchMode.STANDARD


class CallStatus(Enum):
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class CallResult:
    """Outcome of one authorized upstream call.

    Created pending and finalized exactly once through ``succeed``, ``fail``
    or ``cancel``; each returns a new instance.
    """
    result_id: str
    model_id: str
    model_name: str
    status: CallStatus = CallStatus.PENDING
    text: Optional[str] = None
    usage: Optional[TokenUsage] = None
    cost_usd: float = 0.0
    sparks_spent: float = 0.0
    error: Optional[str] = None
    error_kind: Optional[str] = None
    in_conflict: bool = False

    @classmethod
    def pending(cls, model: Model, result_id: Optional[str] = None) -> "CallResult":
        return cls(result_id=result_id or model.id, model_id=model.id, model_name=model.name)

    @property
    def is_terminal(self) -> bool:
        return self.status is not CallStatus.PENDING

    @property
    def is_success(self) -> bool:
        return self.status is CallStatus.SUCCESS

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens if self.usage else 0

    def _finalize(self, **changes) -> "CallResult":
        if self.is_terminal:
            raise ValueError(
                f"Result {self.result_id} is already {self.status.value}"
            )
        return replace(self, **changes)

    def succeed(
        self,
        text: str,
        usage: Optional[TokenUsage],
        cost_usd: float,
        sparks_spent: float,
    ) -> "CallResult":
        return self._finalize(
            status=CallStatus.SUCCESS,
            text=text,
            usage=usage,
            cost_usd=cost_usd,
            sparks_spent=sparks_spent,
        )

    def fail(self, error: Exception) -> "CallResult":
        return self._finalize(
            status=CallStatus.ERROR,
            error=str(error) or type(error).__name__,
            error_kind=type(error).__name__,
        )

    def cancel(self) -> "CallResult":
        return self._finalize(status=CallStatus.CANCELLED)

    def charge_record(self, mode: str, timestamp: Optional[datetime] = None) -> ChargeRecord:
        """Derive the ledger entry for a successful result.

        Raises:
            ValueError: If the result did not succeed
        """
        if not self.is_success:
            raise ValueError(
                f"Only successful results are charged; {self.result_id} is {self.status.value}"
            )
        return ChargeRecord(
            timestamp=timestamp or datetime.now(),
            model_id=self.model_id,
            sparks_charged=self.sparks_spent,
            cost_usd=self.cost_usd,
            tokens_used=self.tokens_used,
            mode=mode,
        )


class CancellationToken:
    """Request-scoped stop flag shared by every task of one request."""

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        # Setting an already-set event is a no-op.
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()
