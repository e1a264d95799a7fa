"""
Configuration management and loading.

Handles orchestrator settings and the read-only model catalog file.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Type, TypeVar

import yaml

from knowledge_gate.core.compressor import (
    COMPRESSION_THRESHOLD_CHARS,
    IMMEDIATE_CONTEXT_COUNT,
    MICRO_SUMMARY_CHUNK_SIZE,
)
from knowledge_gate.core.conflict import DEFAULT_MIN_SIMILARITY
from knowledge_gate.core.executor import DEFAULT_TIMEOUT_SECONDS
from knowledge_gate.core.pricing import Model, ModelCatalog, ModelPricing, Tier
from knowledge_gate.sdk.openai_client import OPENROUTER_BASE_URL
from knowledge_gate.storage.db import DEFAULT_DB_PATH

DEFAULT_AUXILIARY_MODEL = "google/gemini-flash-1.5"

T = TypeVar("T")


@dataclass(frozen=True)
class PricingConfig:
    """Sparks conversion and fees."""
    usd_to_sparks_rate: float = 1000.0
    flat_fee_sparks: float = 0.001
    starting_sparks: float = 100.0

    def __post_init__(self):
        if self.usd_to_sparks_rate <= 0:
            raise ValueError("usd_to_sparks_rate must be > 0")
        if self.flat_fee_sparks < 0:
            raise ValueError("flat_fee_sparks cannot be negative")
        if self.starting_sparks < 0:
            raise ValueError("starting_sparks cannot be negative")


@dataclass(frozen=True)
class ExecutionConfig:
    """Upstream call settings."""
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    base_url: str = OPENROUTER_BASE_URL

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if not self.base_url:
            raise ValueError("base_url cannot be empty")


@dataclass(frozen=True)
class CompressionConfig:
    """History compression thresholds."""
    threshold_chars: int = COMPRESSION_THRESHOLD_CHARS
    immediate_context: int = IMMEDIATE_CONTEXT_COUNT
    chunk_size: int = MICRO_SUMMARY_CHUNK_SIZE

    def __post_init__(self):
        if self.threshold_chars <= 0:
            raise ValueError("threshold_chars must be > 0")
        if self.immediate_context < 0:
            raise ValueError("immediate_context cannot be negative")
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")


@dataclass(frozen=True)
class ModelsConfig:
    """Fixed low-cost models used for utility calls."""
    auxiliary_model: str = DEFAULT_AUXILIARY_MODEL
    chat_fallback_model: str = DEFAULT_AUXILIARY_MODEL

    def __post_init__(self):
        if not self.auxiliary_model:
            raise ValueError("auxiliary_model cannot be empty")
        if not self.chat_fallback_model:
            raise ValueError("chat_fallback_model cannot be empty")


@dataclass(frozen=True)
class ConflictConfig:
    min_similarity: float = DEFAULT_MIN_SIMILARITY

    def __post_init__(self):
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError("min_similarity must be between 0 and 1")


@dataclass(frozen=True)
class LedgerConfig:
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class OrchestratorConfig:
    """Complete orchestrator configuration."""
    pricing: PricingConfig = field(default_factory=PricingConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    compression: CompressionConfig = field(default_factory=CompressionConfig)
    models: ModelsConfig = field(default_factory=ModelsConfig)
    conflict: ConflictConfig = field(default_factory=ConflictConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)


_SECTIONS: Dict[str, Type] = {
    "pricing": PricingConfig,
    "execution": ExecutionConfig,
    "compression": CompressionConfig,
    "models": ModelsConfig,
    "conflict": ConflictConfig,
    "ledger": LedgerConfig,
}


def default_config() -> OrchestratorConfig:
    """Configuration with every built-in default."""
    return OrchestratorConfig()


def _read_yaml(path: str, kind: str) -> Any:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{kind} file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            return yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {kind.lower()} file {path}: {e}")


def _coerce(value: Any, target: type, path: str) -> Any:
    if target is str:
        if not isinstance(value, str):
            raise ValueError(f"'{path}' must be a string")
        return value
    if target is bool:
        if not isinstance(value, bool):
            raise ValueError(f"'{path}' must be true or false")
        return value
    # bool is an int subclass; reject it for numeric settings
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{path}' must be a number")
    if target is int:
        if isinstance(value, float) and not value.is_integer():
            raise ValueError(f"'{path}' must be a whole number")
        return int(value)
    return float(value)


def _parse_section(data: Any, cls: Type[T], path: str) -> T:
    """Parse and validate one configuration section.

    Args:
        data: Raw section mapping
        cls: Dataclass describing the section
        path: Path for error messages

    Returns:
        Validated section instance

    Raises:
        ValueError: If the section is not a mapping, has unknown keys or bad values
    """
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    known = {f.name: f for f in fields(cls)}
    unknown_keys = set(data.keys()) - set(known)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    kwargs = {}
    for name, value in data.items():
        target = known[name].type
        kwargs[name] = _coerce(value, target, f"{path}.{name}")
    return cls(**kwargs)


def load_config(path: Optional[str] = None) -> OrchestratorConfig:
    """Load and validate orchestrator configuration from a YAML file.

    Strict validation ensures no silent misconfigurations that could lead
    to unexpected spend. Every section is optional and falls back to its
    defaults.

    Args:
        path: Path to YAML configuration file; None returns the defaults

    Returns:
        Validated OrchestratorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return default_config()

    raw_config = _read_yaml(path, "Config")
    if raw_config is None:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTIONS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(raw_config[name], cls, name)
        for name, cls in _SECTIONS.items()
        if name in raw_config
    }
    return OrchestratorConfig(**sections)


_MODEL_KEYS = {"id", "name", "family", "tier", "pricing", "is_free", "rank"}
_PRICING_KEYS = {"prompt", "completion", "request"}


def _parse_model(data: Any, path: str) -> Model:
    if not isinstance(data, dict):
        raise ValueError(f"'{path}' must be a dictionary")

    unknown_keys = set(data.keys()) - _MODEL_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    for required in ("id", "tier", "pricing"):
        if required not in data:
            raise ValueError(f"Missing required '{required}' in {path}")

    tier_value = data["tier"]
    try:
        tier = Tier(str(tier_value).capitalize())
    except ValueError:
        valid_tiers = [t.value for t in Tier]
        raise ValueError(f"'tier' in {path} must be one of: {valid_tiers}")

    pricing_data = data["pricing"]
    if not isinstance(pricing_data, dict):
        raise ValueError(f"'{path}.pricing' must be a dictionary")
    unknown_pricing = set(pricing_data.keys()) - _PRICING_KEYS
    if unknown_pricing:
        raise ValueError(f"Unknown keys in {path}.pricing: {unknown_pricing}")
    prices = {
        key: _coerce(pricing_data.get(key, 0), float, f"{path}.pricing.{key}")
        for key in _PRICING_KEYS
    }

    model_id = _coerce(data["id"], str, f"{path}.id")
    is_free = data.get("is_free", False)
    return Model(
        id=model_id,
        name=_coerce(data.get("name", model_id), str, f"{path}.name"),
        family=_coerce(data.get("family", model_id.split("/")[0]), str, f"{path}.family"),
        tier=tier,
        pricing=ModelPricing(**prices),
        is_free=_coerce(is_free, bool, f"{path}.is_free"),
        rank=_coerce(data.get("rank", 0), int, f"{path}.rank"),
    )


def load_model_catalog(path: str) -> ModelCatalog:
    """Load an already-fetched model catalog from a YAML file.

    The file holds a top-level ``models`` list; each entry needs ``id``,
    ``tier`` and ``pricing`` (USD per prompt token, per completion token and
    per request).

    Raises:
        FileNotFoundError: If the catalog file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If an entry is invalid or an id is duplicated
    """
    raw = _read_yaml(path, "Catalog")
    if not isinstance(raw, dict) or "models" not in raw:
        raise ValueError("Catalog must be a dictionary with a 'models' list")
    if not isinstance(raw["models"], list):
        raise ValueError("'models' must be a list")

    models = [_parse_model(entry, f"models[{i}]") for i, entry in enumerate(raw["models"])]
    seen = set()
    for model in models:
        if model.id in seen:
            raise ValueError(f"Duplicate model id in catalog: {model.id}")
        seen.add(model.id)
    return ModelCatalog(tuple(models))
