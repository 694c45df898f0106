"""
Cost attribution for usage records.

Per-entry totals prefer the cost reported by the source. Component
breakdowns re-price each request tier by tier and then scale the parts so
they add up to that reported cost.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Tuple

from .pricing import MILLION, ModelPricing, PricingCatalog, TierSplit, split_tier
from .token_counter import TokenUsage
from ai_usage_meter.storage.models import UsageRecord


# Vendor spellings that the pricing catalog lists under another name
MODEL_ALIASES: Dict[str, str] = {
    "gemini-3-pro-high": "gemini-3-pro-preview",
}


def resolve_model_name(model: str) -> str:
    return MODEL_ALIASES.get(model, model)


def authoritative_cost(record: UsageRecord) -> Optional[float]:
    """The source-reported cost when it is present and positive."""
    if record.cost_usd is not None and record.cost_usd > 0:
        return record.cost_usd
    return None


def calculate_cost_for_entry(record: UsageRecord, catalog: PricingCatalog) -> float:
    """Calculate the total cost of a single record.

    Uses the source-reported cost when available; otherwise prices the
    token counts for the alias-resolved model. A pricing miss costs 0.

    Args:
        record: Usage record to price
        catalog: Pricing lookup

    Returns:
        Cost in USD
    """
    reported = authoritative_cost(record)
    if reported is not None:
        return reported

    cost = catalog.price_from_tokens(TokenUsage.from_record(record), resolve_model_name(record.model))
    return cost if cost is not None else 0.0


@dataclass
class TierBreakdown:
    """Accumulated per-tier tokens and cost for one token bucket.

    Rates are list prices in USD per million tokens; None means unknown
    (base) or not tiered (above).
    """
    base_tier_tokens: int = 0
    base_tier_cost: float = 0.0
    base_tier_rate: Optional[float] = None
    above_tier_tokens: int = 0
    above_tier_cost: float = 0.0
    above_tier_rate: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        return self.base_tier_tokens + self.above_tier_tokens

    @property
    def total_cost(self) -> float:
        return self.base_tier_cost + self.above_tier_cost

    @property
    def rate_range(self) -> str:
        return format_rate_range(self.base_tier_rate, self.above_tier_rate)

    def set_rates(self, base_rate: Optional[float], above_rate: Optional[float]) -> None:
        self.base_tier_rate = round(base_rate * MILLION, 10) if base_rate is not None else None
        self.above_tier_rate = round(above_rate * MILLION, 10) if above_rate is not None else None

    def accumulate(self, split: TierSplit, scale: float = 1.0) -> None:
        self.base_tier_tokens += split.base_tokens
        self.base_tier_cost += split.base_cost * scale
        self.above_tier_tokens += split.above_tokens
        self.above_tier_cost += split.above_cost * scale

    def to_dict(self) -> Dict:
        return {
            "baseTierTokens": self.base_tier_tokens,
            "baseTierCost": self.base_tier_cost,
            "baseTierRate": self.base_tier_rate,
            "aboveTierTokens": self.above_tier_tokens,
            "aboveTierCost": self.above_tier_cost,
            "aboveTierRate": self.above_tier_rate,
        }


@dataclass
class ComponentCosts:
    """Component-level cost breakdown for records sharing one model."""
    base_input: TierBreakdown = field(default_factory=TierBreakdown)
    cache_create: TierBreakdown = field(default_factory=TierBreakdown)
    output: TierBreakdown = field(default_factory=TierBreakdown)
    cache_read: TierBreakdown = field(default_factory=TierBreakdown)

    @property
    def base_input_cost(self) -> float:
        return self.base_input.total_cost

    @property
    def cache_create_cost(self) -> float:
        return self.cache_create.total_cost

    @property
    def uncached_input_cost(self) -> float:
        """Input billed without a cache hit: base input plus cache writes."""
        return self.base_input.total_cost + self.cache_create.total_cost

    @property
    def cache_read_cost(self) -> float:
        return self.cache_read.total_cost

    @property
    def output_cost(self) -> float:
        return self.output.total_cost

    @property
    def input_cost(self) -> float:
        return self.uncached_input_cost + self.cache_read_cost

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost

    def to_dict(self) -> Dict:
        return {
            "baseInput": self.base_input.to_dict(),
            "cacheCreate": self.cache_create.to_dict(),
            "output": self.output.to_dict(),
            "cacheRead": self.cache_read.to_dict(),
        }


@dataclass(frozen=True)
class AggregateComponentCosts:
    """Per-column costs for a row that may mix several models."""
    base_input_cost: float = 0.0
    cache_create_cost: float = 0.0
    cache_read_cost: float = 0.0
    output_cost: float = 0.0

    @property
    def input_cost(self) -> float:
        return self.base_input_cost + self.cache_create_cost + self.cache_read_cost

    def to_dict(self) -> Dict:
        return {
            "inputCost": self.input_cost,
            "outputCost": self.output_cost,
            "baseInputCost": self.base_input_cost,
            "cacheCreateCost": self.cache_create_cost,
            "cacheReadCost": self.cache_read_cost,
        }


def _split_record(record: UsageRecord, pricing: ModelPricing):
    return (
        split_tier(
            record.input_tokens,
            pricing.input_cost_per_token,
            pricing.input_cost_per_token_above_200k_tokens,
        ),
        split_tier(
            record.cache_creation_tokens,
            pricing.cache_creation_input_token_cost,
            pricing.cache_creation_input_token_cost_above_200k_tokens,
        ),
        split_tier(
            record.output_tokens + record.reasoning_tokens,
            pricing.output_cost_per_token,
            pricing.output_cost_per_token_above_200k_tokens,
        ),
        split_tier(
            record.cache_read_tokens,
            pricing.cache_read_input_token_cost,
            pricing.cache_read_input_token_cost_above_200k_tokens,
        ),
    )


def calculate_component_costs(
    records: List[UsageRecord],
    model: str,
    catalog: PricingCatalog,
) -> ComponentCosts:
    """Calculate per-component costs for records that share a model.

    Each record is tiered on its own token counts, so tier boundaries
    apply per request. When a record carries a reported cost, its parts
    are scaled so they sum to that cost; the summed components of a batch
    therefore reconcile with the summed reported costs.

    Args:
        records: Records to attribute
        model: Model name used for the pricing lookup
        catalog: Pricing lookup

    Returns:
        ComponentCosts with list rates set; all zero on a pricing miss
    """
    pricing = catalog.get_schedule(resolve_model_name(model))
    result = ComponentCosts()
    if pricing is None:
        return result

    result.base_input.set_rates(
        pricing.input_cost_per_token,
        pricing.input_cost_per_token_above_200k_tokens,
    )
    result.cache_create.set_rates(
        pricing.cache_creation_input_token_cost,
        pricing.cache_creation_input_token_cost_above_200k_tokens,
    )
    result.output.set_rates(
        pricing.output_cost_per_token,
        pricing.output_cost_per_token_above_200k_tokens,
    )
    result.cache_read.set_rates(
        pricing.cache_read_input_token_cost,
        pricing.cache_read_input_token_cost_above_200k_tokens,
    )

    for record in records:
        base_input, cache_create, output, cache_read = _split_record(record, pricing)
        calculated_total = base_input.cost + cache_create.cost + output.cost + cache_read.cost

        reported = authoritative_cost(record)
        scale = 1.0
        if reported is not None and calculated_total > 0:
            scale = reported / calculated_total

        result.base_input.accumulate(base_input, scale)
        result.cache_create.accumulate(cache_create, scale)
        result.output.accumulate(output, scale)
        result.cache_read.accumulate(cache_read, scale)

    return result


def calculate_aggregate_component_costs(
    records: List[UsageRecord],
    catalog: PricingCatalog,
    remap: bool = False,
) -> AggregateComponentCosts:
    """Sum per-model component breakdowns into per-column costs.

    With `remap`, records that report no cache-write tokens are priced as
    their own batch per model and their base input cost lands in the
    cache-create column, matching the aggregate token remap.
    """
    by_model: Dict[Tuple[str, bool], List[UsageRecord]] = {}
    for record in records:
        remapped = remap and record.cache_creation_tokens == 0
        by_model.setdefault((record.model, remapped), []).append(record)

    base_input = cache_create = cache_read = output = 0.0
    for (model, remapped), model_records in by_model.items():
        costs = calculate_component_costs(model_records, model, catalog)
        if remapped:
            cache_create += costs.base_input_cost
        else:
            base_input += costs.base_input_cost
        cache_create += costs.cache_create_cost
        cache_read += costs.cache_read_cost
        output += costs.output_cost

    return AggregateComponentCosts(
        base_input_cost=base_input,
        cache_create_cost=cache_create,
        cache_read_cost=cache_read,
        output_cost=output,
    )


def format_rate(value: float) -> str:
    """Format a $/M rate with at most three decimals and no trailing zeros."""
    rate = Decimal(repr(float(value))).quantize(Decimal("0.001"), rounding=ROUND_HALF_UP)
    return f"{rate.normalize():f}"


def format_rate_range(base_rate: Optional[float], above_rate: Optional[float]) -> str:
    """Collapse a tier pair to one rate when equal, else show "min-max"."""
    if base_rate is None and above_rate is None:
        return ""
    if base_rate is None or above_rate is None or base_rate == above_rate:
        return format_rate(base_rate if base_rate is not None else above_rate)
    low, high = sorted((base_rate, above_rate))
    return f"{format_rate(low)}-{format_rate(high)}"
