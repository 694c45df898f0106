"""
Readers for local usage data.

Each reader turns one family of local files into normalized usage records
and a session metadata lookup.
"""

from .base import LoadedUsage, UsageSourceReader
from .claude import ClaudeReader
from .codex import CodexReader, reconstruct_deltas
from .loader import CombinedReader, load_usage_data, merge_loaded, parse_usage_source
from .opencode import OpenCodeReader

__all__ = [
    "ClaudeReader",
    "CodexReader",
    "CombinedReader",
    "LoadedUsage",
    "OpenCodeReader",
    "UsageSourceReader",
    "load_usage_data",
    "merge_loaded",
    "parse_usage_source",
    "reconstruct_deltas",
]
