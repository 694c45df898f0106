"""
Record filters for session, project, model and provider options.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .model_display import normalize_model_name
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, extract_project_name


@dataclass(frozen=True)
class FilterCriteria:
    """Filter options; empty fields match everything.

    Fields are AND-combined. Values within one list field are OR-combined.
    """
    session_id: str = ""
    project: str = ""
    models: Sequence[str] = field(default_factory=tuple)
    providers: Sequence[str] = field(default_factory=tuple)
    full_models: Sequence[str] = field(default_factory=tuple)


def matches_project_filter(metadata: Optional[SessionMetadata], project_filter: str) -> bool:
    """Case-insensitive substring match on project name, directory or id."""
    if not project_filter:
        return True

    needle = project_filter.lower()
    directory = metadata.directory if metadata else ""
    project_id = metadata.project_id if metadata else ""
    project_name = extract_project_name(directory or None, project_id)

    return (
        needle in project_name.lower()
        or needle in directory.lower()
        or needle in project_id.lower()
    )


def matches_model_filter(record: UsageRecord, model_filter: str) -> bool:
    """Match against the model name only, never its provider prefix."""
    if not model_filter:
        return True
    model = normalize_model_name(record.model, record.provider).lower()
    return model_filter.lower() in model


def matches_provider_filter(record: UsageRecord, provider_filter: str) -> bool:
    if not provider_filter:
        return True
    return provider_filter.lower() in record.provider.lower()


def create_full_model_label(record: UsageRecord) -> str:
    """`source/provider/model`, e.g. `opencode/openai/gpt-5`."""
    model = normalize_model_name(record.model, record.provider)
    return f"{record.source.value}/{record.provider}/{model}"


def matches_full_model_filter(record: UsageRecord, full_model_filter: str) -> bool:
    if not full_model_filter:
        return True
    return full_model_filter.lower() in create_full_model_label(record).lower()


def filter_entries(
    records: Iterable[UsageRecord],
    sessions: Dict[str, SessionMetadata],
    criteria: FilterCriteria,
) -> List[UsageRecord]:
    """Apply session, project, model, provider and full-model filters."""
    filtered = list(records)

    if criteria.session_id:
        filtered = [r for r in filtered if r.session_id == criteria.session_id]

    if criteria.project:
        filtered = [
            r for r in filtered
            if matches_project_filter(sessions.get(r.session_id), criteria.project)
        ]

    if criteria.models:
        filtered = [
            r for r in filtered
            if any(matches_model_filter(r, value) for value in criteria.models)
        ]

    if criteria.providers:
        filtered = [
            r for r in filtered
            if any(matches_provider_filter(r, value) for value in criteria.providers)
        ]

    if criteria.full_models:
        filtered = [
            r for r in filtered
            if any(matches_full_model_filter(r, value) for value in criteria.full_models)
        ]

    return filtered


def parse_filter_inputs(value: Union[None, str, Sequence[str]]) -> List[str]:
    """Split comma-separated and repeated option values, dropping duplicates.

    >>> parse_filter_inputs(["claude/,anthropic", "claude/"])
    ['claude/', 'anthropic']
    """
    if value is None:
        return []

    if isinstance(value, str):
        return [token.strip() for token in value.split(",") if token.strip()]

    tokens: List[str] = []
    for item in value:
        for token in parse_filter_inputs(item):
            if token not in tokens:
                tokens.append(token)
    return tokens
