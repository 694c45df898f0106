"""
Shared reader interface and normalization helpers.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger

from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, UsageSource, UNKNOWN


# Known model name prefixes for sources that do not report a provider
PROVIDER_PREFIXES: Tuple[Tuple[str, str], ...] = (
    ("claude", "anthropic"),
    ("gpt", "openai"),
    ("o1", "openai"),
    ("o3", "openai"),
    ("o4", "openai"),
    ("codex", "openai"),
    ("gemini", "google"),
    ("grok", "xai"),
)


@dataclass
class LoadedUsage:
    """Normalized output of one reader."""
    records: List[UsageRecord] = field(default_factory=list)
    sessions: Dict[str, SessionMetadata] = field(default_factory=dict)


class UsageSourceReader(ABC):
    """A family of local usage data that can be read into records."""

    source: UsageSource

    @abstractmethod
    def read(self) -> LoadedUsage:
        """Read the source; may raise on source-level I/O failures."""

    def load(self) -> LoadedUsage:
        """Read the source, degrading any source-level failure to no data."""
        try:
            return self.read()
        except Exception as e:
            logger.warning(
                "Failed to read usage source",
                source=self.source.value,
                error=f"{type(e).__name__}: {e}",
            )
            return LoadedUsage()


def infer_provider(model: str) -> str:
    """Guess the provider of a model identifier.

    A `provider/model` prefix wins; otherwise known name prefixes are used.
    """
    normalized = model.strip().lower()
    if "/" in normalized:
        prefix = normalized.split("/", 1)[0]
        if prefix:
            return prefix

    for name_prefix, provider in PROVIDER_PREFIXES:
        if normalized.startswith(name_prefix):
            return provider

    return UNKNOWN


def token_count(value: Any) -> int:
    """Coerce a raw token field to a non-negative int (bad values count as 0)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(int(value), 0)


def optional_cost(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if value >= 0 else None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken as UTC.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def iter_jsonl(path: Path) -> Iterator[Tuple[int, Dict[str, Any]]]:
    """Yield (line number, object) for each parseable JSON object line.

    Blank lines are ignored. Malformed lines, including a truncated
    trailing line, are logged and skipped.
    """
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, start=1):
            text = line.strip()
            if not text:
                continue
            try:
                data = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Skipping malformed line", path=str(path), line=line_number)
                continue
            if isinstance(data, dict):
                yield line_number, data
