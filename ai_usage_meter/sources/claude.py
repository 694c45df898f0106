"""
Reader for per-session chat logs (`projects/<project>/<session>.jsonl`).
"""

from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger

from .base import (
    LoadedUsage,
    UsageSourceReader,
    infer_provider,
    iter_jsonl,
    optional_cost,
    parse_timestamp,
    token_count,
)
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, UsageSource, UNKNOWN


PROJECTS_DIR = "projects"


class ClaudeReader(UsageSourceReader):
    """Scans every configured root for session JSONL files."""

    source = UsageSource.CLAUDE

    def __init__(self, config_dirs: Iterable[Path]):
        self.config_dirs = list(config_dirs)

    def read(self) -> LoadedUsage:
        usage = LoadedUsage()
        seen_messages: Set[str] = set()

        for projects_dir in self._projects_dirs():
            for path in sorted(projects_dir.rglob("*.jsonl")):
                try:
                    self._read_file(path, projects_dir, usage, seen_messages)
                except OSError as e:
                    logger.warning("Skipping unreadable log file", path=str(path), error=str(e))

        return usage

    def _projects_dirs(self) -> List[Path]:
        dirs = []
        for config_dir in self.config_dirs:
            projects_dir = config_dir / PROJECTS_DIR
            if projects_dir.is_dir():
                dirs.append(projects_dir)
            else:
                logger.debug("Claude projects directory not found", path=str(projects_dir))
        return dirs

    def _read_file(
        self,
        path: Path,
        projects_dir: Path,
        usage: LoadedUsage,
        seen_messages: Set[str],
    ) -> None:
        relative = path.relative_to(projects_dir)
        project_id = relative.parts[0] if len(relative.parts) > 1 else UNKNOWN
        session_ids: List[str] = []
        directory: Optional[str] = None
        title: Optional[str] = None

        for line_number, data in iter_jsonl(path):
            if data.get("type") == "summary" and title is None:
                summary = data.get("summary")
                if isinstance(summary, str) and summary.strip():
                    title = summary.strip()
                continue

            if directory is None and isinstance(data.get("cwd"), str) and data["cwd"]:
                directory = data["cwd"]

            record = parse_log_line(data, default_session_id=path.stem)
            if record is None:
                continue

            if record.timestamp is None:
                logger.warning("Skipping entry without timestamp", path=str(path), line=line_number)
                continue

            message_key = _message_key(data)
            if message_key is not None:
                if message_key in seen_messages:
                    continue
                seen_messages.add(message_key)

            if not record.has_usage:
                continue

            usage.records.append(record)
            if record.session_id not in session_ids:
                session_ids.append(record.session_id)

        for session_id in session_ids:
            usage.sessions.setdefault(session_id, SessionMetadata(
                session_id=session_id,
                title=title or session_id,
                project_id=project_id,
                directory=directory or UNKNOWN,
            ))


def parse_log_line(data: Dict[str, Any], default_session_id: str) -> Optional[UsageRecord]:
    """Normalize one chat-log object, or None when it carries no usage.

    The returned record may have a None timestamp when the line has none;
    callers decide how to report that.
    """
    message = data.get("message")
    if not isinstance(message, dict):
        return None

    usage = message.get("usage")
    model = message.get("model")
    if not isinstance(usage, dict) or not isinstance(model, str) or not model:
        return None

    session_id = data.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        session_id = default_session_id

    return UsageRecord(
        timestamp=parse_timestamp(data.get("timestamp")),
        session_id=session_id,
        source=UsageSource.CLAUDE,
        provider=infer_provider(model),
        model=model,
        input_tokens=token_count(usage.get("input_tokens")),
        output_tokens=token_count(usage.get("output_tokens")),
        cache_creation_tokens=token_count(usage.get("cache_creation_input_tokens")),
        cache_read_tokens=token_count(usage.get("cache_read_input_tokens")),
        cost_usd=optional_cost(data.get("costUSD")),
    )


def _message_key(data: Dict[str, Any]) -> Optional[str]:
    """Identity of a streamed message; the same message may be logged twice."""
    message = data.get("message") or {}
    message_id = message.get("id") if isinstance(message, dict) else None
    request_id = data.get("requestId")
    if not message_id or not request_id:
        return None
    return f"{message_id}:{request_id}"
