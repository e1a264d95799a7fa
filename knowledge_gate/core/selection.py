"""
Candidate model resolution per search mode.

Manual preferences and custom sets are explicit user choices; everything
else is picked automatically from the catalog.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .pricing import Model, ModelCatalog, Tier
from .results import SearchMode

FAN_OUT_SIZE = 3


@dataclass(frozen=True)
class ModelPreference:
    """A user's manual model list for one mode."""
    mode: SearchMode
    model_ids: Tuple[str, ...]


@dataclass(frozen=True)
class CandidateSet:
    models: Tuple[Model, ...]
    is_user_selection: bool


def _cheap_first(models: Iterable[Model]) -> List[Model]:
    return sorted(
        models,
        key=lambda m: (not m.is_free, m.tier != Tier.BASIC, m.rank, m.id),
    )


def standard_models(catalog: ModelCatalog) -> List[Model]:
    """Free models, then Basic-tier models, each by rank."""
    return [
        m for m in _cheap_first(catalog.models)
        if m.is_free or m.tier == Tier.BASIC
    ]


def one_per_family(catalog: ModelCatalog, limit: int = FAN_OUT_SIZE) -> List[Model]:
    """Best model of each provider family, cheapest tiers first."""
    picked: List[Model] = []
    families = set()
    for model in _cheap_first(catalog.models):
        if model.family in families:
            continue
        families.add(model.family)
        picked.append(model)
        if len(picked) == limit:
            break
    return picked


def resolve_candidates(
    mode: SearchMode,
    catalog: ModelCatalog,
    preferences: Optional[Sequence[ModelPreference]] = None,
    custom_ids: Sequence[str] = (),
) -> CandidateSet:
    """Resolve which models a query in ``mode`` should use.

    Args:
        mode: Search mode of the query
        catalog: Already-fetched model catalog
        preferences: The user's manual per-mode preferences
        custom_ids: Model ids curated for custom mode

    Returns:
        CandidateSet; ``is_user_selection`` disables automatic fallback
    """
    if mode is SearchMode.CUSTOM:
        models = [catalog.by_id[i] for i in custom_ids if i in catalog.by_id]
        return CandidateSet(tuple(models), is_user_selection=True)

    for preference in preferences or ():
        if preference.mode is mode and preference.model_ids:
            models = [catalog.by_id[i] for i in preference.model_ids if i in catalog.by_id]
            if models:
                return CandidateSet(tuple(models), is_user_selection=True)

    if mode is SearchMode.STANDARD:
        return CandidateSet(tuple(standard_models(catalog)), is_user_selection=False)
    return CandidateSet(tuple(one_per_family(catalog)), is_user_selection=False)
