"""
Data models for storage layer.

Defines the ledger entities handed over by the orchestrator.
"""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class ChargeRecord:
    """Immutable record of Sparks charged for one successful upstream call.

    Append-only entries that create an auditable ledger of spend.
    Once written, these records must never be modified.
    """
    timestamp: datetime
    model_id: str
    sparks_charged: float
    cost_usd: float
    tokens_used: int
    mode: str

    def __post_init__(self):
        """Validate charge values are non-negative."""
        if self.sparks_charged < 0:
            raise ValueError("sparks_charged cannot be negative")
        if self.cost_usd < 0:
            raise ValueError("cost_usd cannot be negative")
        if self.tokens_used < 0:
            raise ValueError("tokens_used cannot be negative")
