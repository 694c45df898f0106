"""
Data models for the usage ledger.

Defines the normalized usage record shared by every source reader and the
session metadata used for project and title lookups.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import PurePath
from typing import Optional


UNKNOWN = "unknown"


class UsageSource(Enum):
    """Families of local usage data."""
    OPENCODE = "opencode"  # SQLite store written by the origin tool
    CLAUDE = "claude"      # Per-session chat JSONL logs
    CODEX = "codex"        # Agent rollout logs with cumulative counters


@dataclass(frozen=True)
class UsageRecord:
    """Immutable usage fact for a single assistant turn.

    Token fields are non-negative. A record whose five token fields are all
    zero is never created by a reader.
    """
    timestamp: datetime
    session_id: str
    source: UsageSource
    provider: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: Optional[float] = None

    @property
    def total_tokens(self) -> int:
        """Sum of all five token fields."""
        return (
            self.input_tokens
            + self.output_tokens
            + self.reasoning_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )

    @property
    def has_usage(self) -> bool:
        return self.total_tokens > 0


@dataclass(frozen=True)
class SessionMetadata:
    """Descriptive data for a session, keyed by session id."""
    session_id: str
    title: str
    project_id: str = UNKNOWN
    directory: str = UNKNOWN
    parent_id: Optional[str] = None

    @property
    def project_name(self) -> str:
        return extract_project_name(self.directory, self.project_id)


def extract_project_name(directory: Optional[str], project_id: Optional[str]) -> str:
    """Derive the displayed project name.

    Uses the last path segment of the directory, then the project id, then
    the literal "unknown".
    """
    if directory and directory != UNKNOWN and directory.strip():
        base = PurePath(directory.rstrip("/\\")).name
        if base:
            return base

    if project_id and project_id.strip():
        return project_id

    return UNKNOWN


def placeholder_metadata(session_id: str) -> SessionMetadata:
    """Metadata used when a session has no stored entry."""
    return SessionMetadata(session_id=session_id, title=session_id)
