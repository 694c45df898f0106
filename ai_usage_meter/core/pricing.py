"""
Pricing calculations and rate management.

Tiered per-token rates for known models and the pricing lookup used by
cost attribution. Rates follow the LiteLLM catalog layout: a base rate and
an optional higher rate for tokens above a 200k threshold.
"""

import json
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from .token_counter import TokenUsage


MILLION = 1_000_000

# Anthropic-style tier boundary, applied per request and per token bucket
TIERED_THRESHOLD = 200_000


@dataclass(frozen=True)
class ModelPricing:
    """Per-token rates for a model (USD per token, None = not priced)."""
    input_cost_per_token: Optional[float] = None
    output_cost_per_token: Optional[float] = None
    cache_creation_input_token_cost: Optional[float] = None
    cache_read_input_token_cost: Optional[float] = None
    input_cost_per_token_above_200k_tokens: Optional[float] = None
    output_cost_per_token_above_200k_tokens: Optional[float] = None
    cache_creation_input_token_cost_above_200k_tokens: Optional[float] = None
    cache_read_input_token_cost_above_200k_tokens: Optional[float] = None

    @classmethod
    def from_catalog_entry(cls, entry: Dict) -> "ModelPricing":
        """Build pricing from a LiteLLM catalog entry, ignoring other keys."""
        values = {}
        for field in fields(cls):
            raw = entry.get(field.name)
            if isinstance(raw, (int, float)) and not isinstance(raw, bool):
                values[field.name] = float(raw)
        return cls(**values)

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, field.name) is None for field in fields(self))


def per_million(
    input_rate: str,
    output_rate: str,
    cache_write: Optional[str] = None,
    cache_read: Optional[str] = None,
    input_above: Optional[str] = None,
    output_above: Optional[str] = None,
    cache_write_above: Optional[str] = None,
    cache_read_above: Optional[str] = None,
) -> ModelPricing:
    """Build ModelPricing from list prices quoted in USD per million tokens."""
    def rate(value: Optional[str]) -> Optional[float]:
        if value is None:
            return None
        return float(Decimal(value) / Decimal(MILLION))

    return ModelPricing(
        input_cost_per_token=rate(input_rate),
        output_cost_per_token=rate(output_rate),
        cache_creation_input_token_cost=rate(cache_write),
        cache_read_input_token_cost=rate(cache_read),
        input_cost_per_token_above_200k_tokens=rate(input_above),
        output_cost_per_token_above_200k_tokens=rate(output_above),
        cache_creation_input_token_cost_above_200k_tokens=rate(cache_write_above),
        cache_read_input_token_cost_above_200k_tokens=rate(cache_read_above),
    )


@dataclass(frozen=True)
class TierSplit:
    """Token count split across the base and above-threshold tiers."""
    base_tokens: int = 0
    base_cost: float = 0.0
    above_tokens: int = 0
    above_cost: float = 0.0

    @property
    def cost(self) -> float:
        return self.base_cost + self.above_cost


def split_tier(
    tokens: int,
    base_rate: Optional[float],
    above_rate: Optional[float],
    threshold: int = TIERED_THRESHOLD,
) -> TierSplit:
    """Split one token bucket at the tier threshold and price both parts.

    Without an above-threshold rate, or at or below the threshold, every
    token is billed at the base rate. A missing base rate bills as zero.
    """
    if tokens <= 0:
        return TierSplit()

    base = base_rate or 0.0
    if above_rate is None or tokens <= threshold:
        return TierSplit(base_tokens=tokens, base_cost=tokens * base)

    above = tokens - threshold
    return TierSplit(
        base_tokens=threshold,
        base_cost=threshold * base,
        above_tokens=above,
        above_cost=above * above_rate,
    )


def calculate_cost(usage: TokenUsage, pricing: ModelPricing) -> float:
    """Calculate the cost of one request under tiered pricing.

    Each token bucket is tiered independently.

    Args:
        usage: Token counts for the request
        pricing: Rates for the model

    Returns:
        Total cost in USD (unrounded)
    """
    return (
        split_tier(
            usage.input_tokens,
            pricing.input_cost_per_token,
            pricing.input_cost_per_token_above_200k_tokens,
        ).cost
        + split_tier(
            usage.output_tokens,
            pricing.output_cost_per_token,
            pricing.output_cost_per_token_above_200k_tokens,
        ).cost
        + split_tier(
            usage.cache_creation_input_tokens,
            pricing.cache_creation_input_token_cost,
            pricing.cache_creation_input_token_cost_above_200k_tokens,
        ).cost
        + split_tier(
            usage.cache_read_input_tokens,
            pricing.cache_read_input_token_cost,
            pricing.cache_read_input_token_cost_above_200k_tokens,
        ).cost
    )


@dataclass(frozen=True)
class PricingTable:
    """Pricing keyed by exact, case-sensitive model name."""
    prices: Dict[str, ModelPricing]

    def get_pricing(self, model: str) -> Optional[ModelPricing]:
        """Get pricing for a specific model.

        Args:
            model: Model identifier

        Returns:
            ModelPricing for the model, or None when the model is unknown
        """
        return self.prices.get(model)

    def merged_with(self, other: "PricingTable") -> "PricingTable":
        """Return a table where entries from `other` take precedence."""
        return PricingTable({**self.prices, **other.prices})


_SONNET_4 = per_million(
    "3", "15", "3.75", "0.30",
    input_above="6", output_above="22.50", cache_write_above="7.50", cache_read_above="0.60",
)
_OPUS_4 = per_million("15", "75", "18.75", "1.50")
_OPUS_4_5 = per_million("5", "25", "6.25", "0.50")
_GPT_5 = per_million("1.25", "10", cache_read="0.125")
_GEMINI_2_5_PRO = per_million(
    "1.25", "10", cache_read="0.31",
    input_above="2.50", output_above="15", cache_read_above="0.625",
)

# Built-in list prices. A LiteLLM-format catalog file overrides or extends them.
BUILTIN_PRICING = PricingTable({
    "claude-sonnet-4-20250514": _SONNET_4,
    "claude-sonnet-4-5": _SONNET_4,
    "claude-sonnet-4-5-20250929": _SONNET_4,
    "claude-opus-4-20250514": _OPUS_4,
    "claude-opus-4-1": _OPUS_4,
    "claude-opus-4-1-20250805": _OPUS_4,
    "claude-opus-4-5": _OPUS_4_5,
    "claude-opus-4-5-20251101": _OPUS_4_5,
    "claude-haiku-4-5": per_million("1", "5", "1.25", "0.10"),
    "claude-haiku-4-5-20251001": per_million("1", "5", "1.25", "0.10"),
    "claude-3-5-haiku-20241022": per_million("0.80", "4", "1", "0.08"),
    "gpt-5": _GPT_5,
    "gpt-5-codex": _GPT_5,
    "gpt-5.1": _GPT_5,
    "gpt-5.1-codex": _GPT_5,
    "gpt-5-mini": per_million("0.25", "2", cache_read="0.025"),
    "gpt-4.1": per_million("2", "8", cache_read="0.50"),
    "gpt-4o": per_million("2.50", "10", cache_read="1.25"),
    "o3": per_million("2", "8", cache_read="0.50"),
    "gemini-2.5-pro": _GEMINI_2_5_PRO,
    "gemini-2.5-flash": per_million("0.30", "2.50", cache_read="0.03"),
    "gemini-3-pro-preview": per_million(
        "2", "12", cache_read="0.20",
        input_above="4", output_above="18", cache_read_above="0.40",
    ),
})


def load_pricing_file(path: Path) -> PricingTable:
    """Load a LiteLLM-format pricing catalog (model name -> rate object).

    Entries that are not objects, or that carry no recognised rate, are
    skipped.

    Raises:
        OSError: If the file cannot be read
        ValueError: If the file is not a JSON object
    """
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Pricing catalog must be a JSON object: {path}")

    prices = {}
    for model, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        pricing = ModelPricing.from_catalog_entry(entry)
        if not pricing.is_empty:
            prices[model] = pricing
    return PricingTable(prices)


class PricingCatalog:
    """Pricing lookup capability used by cost attribution.

    A miss never raises; callers get None from `get_schedule` and zero cost
    everywhere else. Lookups are memoized for the lifetime of the catalog.
    """

    def __init__(self, table: PricingTable = BUILTIN_PRICING):
        self.table = table
        self._cache: Dict[str, Optional[ModelPricing]] = {}

    @classmethod
    def from_file(cls, path: Optional[Path]) -> "PricingCatalog":
        """Built-in prices overlaid with a catalog file, when one is usable."""
        if path is None:
            return cls()
        try:
            return cls(BUILTIN_PRICING.merged_with(load_pricing_file(path)))
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unusable pricing file", path=str(path), error=str(e))
            return cls()

    def get_schedule(self, model: str) -> Optional[ModelPricing]:
        if model not in self._cache:
            pricing = self.table.get_pricing(model)
            if pricing is None:
                logger.debug("No pricing for model", model=model)
            self._cache[model] = pricing
        return self._cache[model]

    def price_from_schedule(self, usage: TokenUsage, schedule: ModelPricing) -> float:
        return calculate_cost(usage, schedule)

    def price_from_tokens(self, usage: TokenUsage, model: str) -> Optional[float]:
        """Price token counts for a model, or None on a pricing miss."""
        schedule = self.get_schedule(model)
        if schedule is None:
            return None
        return self.price_from_schedule(usage, schedule)
