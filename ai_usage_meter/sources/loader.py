"""
Source selection and merging.
"""

from typing import List, Sequence

from .base import LoadedUsage, UsageSourceReader
from .claude import ClaudeReader
from .codex import CodexReader
from .opencode import OpenCodeReader
from ai_usage_meter.config.loader import DataPaths
from ai_usage_meter.storage.models import UsageSource


SOURCE_ALL = "all"

# Merge priority: session metadata from an earlier source wins
SOURCE_PRIORITY = (UsageSource.OPENCODE, UsageSource.CLAUDE, UsageSource.CODEX)


class CombinedReader(UsageSourceReader):
    """Reads several sources in order and merges their output."""

    def __init__(self, readers: Sequence[UsageSourceReader]):
        self.readers = list(readers)

    @property
    def source(self) -> str:
        return SOURCE_ALL

    def read(self) -> LoadedUsage:
        return merge_loaded([reader.load() for reader in self.readers])

    def load(self) -> LoadedUsage:
        # Each reader already degrades its own failures.
        return self.read()


def merge_loaded(results: Sequence[LoadedUsage]) -> LoadedUsage:
    """Concatenate records; the first entry seen for a session id is kept."""
    merged = LoadedUsage()
    for result in results:
        merged.records.extend(result.records)
        for session_id, metadata in result.sessions.items():
            merged.sessions.setdefault(session_id, metadata)
    return merged


def parse_usage_source(value: str) -> List[UsageSource]:
    """Parse a `--source` value into the sources to read, in priority order.

    Raises:
        ValueError: If the value names no known source
    """
    normalized = (value or SOURCE_ALL).strip().lower()
    if normalized == SOURCE_ALL:
        return list(SOURCE_PRIORITY)

    for source in UsageSource:
        if source.value == normalized:
            return [source]

    choices = ", ".join([s.value for s in SOURCE_PRIORITY] + [SOURCE_ALL])
    raise ValueError(f"Unknown source '{value}'. Expected one of: {choices}")


def create_reader(source: UsageSource, paths: DataPaths) -> UsageSourceReader:
    if source == UsageSource.OPENCODE:
        return OpenCodeReader(paths.opencode_dir)
    if source == UsageSource.CLAUDE:
        return ClaudeReader(paths.claude_dirs)
    return CodexReader(paths.codex_dir)


def load_usage_data(sources: Sequence[UsageSource], paths: DataPaths) -> LoadedUsage:
    """Load and merge the requested sources.

    Sources are always read in priority order, whatever order they are
    given in.
    """
    ordered = [source for source in SOURCE_PRIORITY if source in sources]
    if len(ordered) == 1:
        return create_reader(ordered[0], paths).load()
    return CombinedReader([create_reader(source, paths) for source in ordered]).load()
