"""
Pricing calculations and rate management.

Converts upstream usage metering into a USD cost and a Sparks charge, and
holds the read-only model catalog the orchestrator selects from.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from .token_counter import TokenUsage

Number = Union[int, float, str, Decimal]

USD_TO_SPARKS_RATE = Decimal("1000")
FLAT_TRANSACTION_FEE_SPARKS = Decimal("0.001")
STARTING_SPARKS = Decimal("100.00")

_CHARGE_QUANTUM = Decimal("0.0001")


def to_decimal(value: Number) -> Decimal:
    """Convert a catalog number to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class Tier(Enum):
    """Coarse price/quality bucket assigned to each model."""
    BASIC = "Basic"
    MEDIUM = "Medium"
    PROFESSIONAL = "Professional"
    PREMIUM = "Premium"


@dataclass(frozen=True)
class ModelPricing:
    """USD pricing for a model: per prompt token, per completion token, per request."""
    prompt: Decimal
    completion: Decimal
    request: Decimal = Decimal("0")

    def __post_init__(self):
        """Coerce prices to Decimal and reject negative values."""
        for name in ("prompt", "completion", "request"):
            value = to_decimal(getattr(self, name))
            if value < 0:
                raise ValueError(f"{name} price cannot be negative")
            object.__setattr__(self, name, value)


@dataclass(frozen=True)
class Model:
    """An upstream inference target as fetched from the catalog."""
    id: str
    name: str
    family: str
    tier: Tier
    pricing: ModelPricing
    is_free: bool = False
    rank: int = 0

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise ValueError("model id is required and cannot be empty")


@dataclass(frozen=True)
class ModelCatalog:
    """Already-fetched, read-only list of models for a session."""
    models: Tuple[Model, ...]

    def __post_init__(self):
        object.__setattr__(self, "models", tuple(self.models))

    @property
    def by_id(self) -> Dict[str, Model]:
        return {model.id: model for model in self.models}

    def get_model(self, model_id: str) -> Model:
        """Get a model by identifier.

        Args:
            model_id: Model identifier

        Returns:
            The catalog Model

        Raises:
            ValueError: If model is not in the catalog
        """
        model = self.by_id.get(model_id)
        if model is None:
            raise ValueError(f"Unsupported model: {model_id}")
        return model

    def find(self, model_ids: Iterable[str]) -> List[Model]:
        """Models named in ``model_ids`` in catalog order; unknown ids are skipped."""
        wanted = set(model_ids)
        return [model for model in self.models if model.id in wanted]

    def ranked(self) -> List[Model]:
        return sorted(self.models, key=lambda m: (m.rank, m.id))


@dataclass(frozen=True)
class ChargeBreakdown:
    """Result of pricing one upstream call."""
    cost_usd: float
    sparks_spent: float


def calculate_charge(
    usage: Optional[TokenUsage],
    pricing: ModelPricing,
    usd_to_sparks_rate: Number = USD_TO_SPARKS_RATE,
    flat_fee: Number = FLAT_TRANSACTION_FEE_SPARKS,
) -> ChargeBreakdown:
    """Calculate the USD cost and Sparks charge of one call.

    promptCost + completionCost + flat request price gives the USD cost; the
    charge is that cost converted to Sparks plus the flat transaction fee,
    rounded half-up to 4 decimal places.

    Args:
        usage: Upstream usage metering, or None if the upstream sent none
        pricing: Pricing of the model that served the call
        usd_to_sparks_rate: Sparks per USD
        flat_fee: Flat transaction fee in Sparks

    Returns:
        ChargeBreakdown with cost in USD and charge in Sparks
    """
    fee = to_decimal(flat_fee)
    if usage is None:
        return ChargeBreakdown(cost_usd=0.0, sparks_spent=float(fee))

    prompt_cost = Decimal(usage.prompt_tokens) * pricing.prompt
    completion_cost = Decimal(usage.completion_tokens) * pricing.completion
    total_usd = prompt_cost + completion_cost + pricing.request

    sparks = total_usd * to_decimal(usd_to_sparks_rate) + fee
    rounded = sparks.quantize(_CHARGE_QUANTUM, rounding=ROUND_HALF_UP)

    return ChargeBreakdown(cost_usd=float(total_usd), sparks_spent=float(rounded))


def format_sparks(sparks: Optional[float]) -> str:
    """Format a spark value for primary display (2 decimal places)."""
    if not isinstance(sparks, (int, float)) or sparks != sparks:
        return "0.00"
    return f"{sparks:.2f}"


def format_sparks_detailed(sparks: Optional[float]) -> str:
    """Format a spark value with enough precision for ledgers and tooltips."""
    if not isinstance(sparks, (int, float)) or sparks != sparks:
        return "0.0000"
    if sparks == 0:
        return "0"
    if 0 < sparks < 0.0001:
        return f"{sparks:.2e}"
    if sparks < 0.01:
        return f"{sparks:.2g}"
    return f"{sparks:.4f}"
