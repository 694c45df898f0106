"""
Model labels for reports.
"""

from enum import Enum
from typing import Callable, Dict, Iterable, Set

from ai_usage_meter.storage.models import UsageRecord


class ProviderDisplayMode(Enum):
    """When a model label carries its provider."""
    ALWAYS = "always"
    NEVER = "never"
    AUTO = "auto"  # only for models reported by more than one provider


def normalize_model_name(model: str, provider: str) -> str:
    """Strip a leading `provider/` from a model id that already embeds it."""
    prefix = f"{provider}/"
    if model.startswith(prefix):
        return model[len(prefix):]
    return model


def parse_provider_mode(value: str) -> ProviderDisplayMode:
    """Parse a `--provider-display` value.

    Raises:
        ValueError: If the value is not always, never or auto
    """
    try:
        return ProviderDisplayMode((value or "auto").strip().lower())
    except ValueError:
        choices = ", ".join(mode.value for mode in ProviderDisplayMode)
        raise ValueError(f"Invalid provider display mode '{value}'. Expected one of: {choices}")


def create_model_label_resolver(
    records: Iterable[UsageRecord],
    mode: ProviderDisplayMode = ProviderDisplayMode.AUTO,
) -> Callable[[UsageRecord], str]:
    """Build the function that labels a record's model.

    In AUTO mode the set of ambiguous models is computed once from
    `records`, so every label in one report is consistent.
    """
    if mode == ProviderDisplayMode.ALWAYS:
        return lambda record: f"{record.provider}/{normalize_model_name(record.model, record.provider)}"

    if mode == ProviderDisplayMode.NEVER:
        return lambda record: normalize_model_name(record.model, record.provider)

    providers_by_model: Dict[str, Set[str]] = {}
    for record in records:
        model = normalize_model_name(record.model, record.provider)
        providers_by_model.setdefault(model, set()).add(record.provider)

    ambiguous = {model for model, providers in providers_by_model.items() if len(providers) > 1}

    def resolve(record: UsageRecord) -> str:
        model = normalize_model_name(record.model, record.provider)
        return f"{record.provider}/{model}" if model in ambiguous else model

    return resolve
