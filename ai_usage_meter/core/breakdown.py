"""
Breakdown dimensions and group keys.

A breakdown selects which record attributes split a report row into
sub-rows. `cost` and `percent` do not group; they only add detail to the
rows that the other dimensions produce.
"""

from typing import Callable, Dict, List, Optional, Sequence

from .filters import create_full_model_label
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, extract_project_name


SOURCE = "source"
PROVIDER = "provider"
MODEL = "model"
FULL_MODEL = "full-model"
COST = "cost"
PERCENT = "percent"
PROJECT = "project"
SESSION = "session"

# Catalog order is also the order of parts in a group key
ALL_DIMENSIONS = (SOURCE, PROVIDER, MODEL, FULL_MODEL, COST, PERCENT, PROJECT, SESSION)
MODIFIER_DIMENSIONS = frozenset({COST, PERCENT})

PERIOD_DIMENSIONS = ALL_DIMENSIONS
SESSION_DIMENSIONS = (SOURCE, PROVIDER, MODEL, FULL_MODEL, COST, PERCENT)
MODEL_DIMENSIONS = (COST, PERCENT, PROJECT, SESSION)

NONE_TOKEN = "none"
GROUP_SEPARATOR = "\x1f"

# Cost below half a cent renders as $0.00
DISPLAYED_ZERO_THRESHOLD = 0.005


def is_displayed_zero_cost(total_cost: float) -> bool:
    return abs(total_cost) < DISPLAYED_ZERO_THRESHOLD


def resolve_breakdown_dimensions(
    full: bool,
    breakdown_input: Optional[str],
    available: Sequence[str],
) -> List[str]:
    """Parse a `--breakdown` value into dimensions in catalog order.

    `--full` selects every available dimension. `none` anywhere in the
    list disables the breakdown.

    Raises:
        ValueError: If a token is not an available dimension
    """
    if full:
        return list(available)

    tokens = [
        token.strip().lower()
        for token in (breakdown_input or "").split(",")
        if token.strip()
    ]
    if not tokens or NONE_TOKEN in tokens:
        return []

    for token in tokens:
        if token not in available:
            raise ValueError(
                f"Invalid --breakdown value '{token}'. Available: {', '.join(available) or '(none)'}"
            )

    return [dimension for dimension in available if dimension in tokens]


def grouping_dimensions(dimensions: Sequence[str]) -> List[str]:
    return [dimension for dimension in dimensions if dimension not in MODIFIER_DIMENSIONS]


def create_group_key_function(
    dimensions: Sequence[str],
    model_label: Callable[[UsageRecord], str],
    plain_model_label: Callable[[UsageRecord], str],
    sessions: Dict[str, SessionMetadata],
) -> Callable[[UsageRecord], str]:
    """Build the function mapping a record to its breakdown group key.

    `full-model` replaces source, provider and model. When provider and
    model are both selected they form one `provider/model` part, and the
    model part never repeats the provider.
    """
    selected = set(dimensions)
    include_full_model = FULL_MODEL in selected
    include_source = SOURCE in selected and not include_full_model
    include_provider = PROVIDER in selected and not include_full_model
    include_model = MODEL in selected and not include_full_model

    def project_name(record: UsageRecord) -> str:
        metadata = sessions.get(record.session_id)
        if metadata is None:
            return extract_project_name(None, "")
        return metadata.project_name

    def key(record: UsageRecord) -> str:
        parts = []
        if include_full_model:
            parts.append(create_full_model_label(record))
        if include_source:
            parts.append(record.source.value)
        if include_provider and include_model:
            parts.append(f"{record.provider}/{plain_model_label(record)}")
        elif include_provider:
            parts.append(record.provider)
        elif include_model:
            parts.append(model_label(record))
        if PROJECT in selected:
            parts.append(project_name(record))
        if SESSION in selected:
            parts.append(record.session_id)
        return GROUP_SEPARATOR.join(parts)

    return key


def format_group_label(group_key: str) -> str:
    return "/".join(group_key.split(GROUP_SEPARATOR))
