"""
Reader for the origin tool's SQLite store.

Each assistant message already reports its own token counts and, usually,
its own cost.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger

from .base import LoadedUsage, UsageSourceReader, optional_cost, token_count
from ai_usage_meter.storage.models import UsageRecord, UsageSource
from ai_usage_meter.storage.repository import MessageRow, UsageRepository


OPENCODE_DB_FILENAME = "opencode.db"


class OpenCodeReader(UsageSourceReader):
    """Reads sessions and assistant messages from `opencode.db`."""

    source = UsageSource.OPENCODE

    def __init__(self, data_dir: Optional[Path]):
        self.data_dir = data_dir

    @property
    def db_path(self) -> Optional[Path]:
        if self.data_dir is None:
            return None
        path = self.data_dir / OPENCODE_DB_FILENAME
        return path if path.is_file() else None

    def read(self) -> LoadedUsage:
        db_path = self.db_path
        if db_path is None:
            logger.debug("OpenCode database not found", data_dir=str(self.data_dir))
            return LoadedUsage()

        repository = UsageRepository(str(db_path))
        sessions = repository.get_sessions()

        records = []
        for row in repository.get_messages():
            record = parse_message_row(row)
            if record is not None:
                records.append(record)

        return LoadedUsage(records=records, sessions=sessions)


def parse_message_row(row: MessageRow, now: Optional[datetime] = None) -> Optional[UsageRecord]:
    """Normalize one message row.

    Returns None for rows that are not priced assistant turns: non-assistant
    roles, rows missing a provider or model, and rows with no token usage.
    A payload that is not valid JSON is logged and skipped.
    """
    try:
        data = json.loads(row.data)
    except (TypeError, json.JSONDecodeError):
        logger.warning("Skipping malformed message row", message_id=row.message_id)
        return None

    if not isinstance(data, dict) or data.get("role") != "assistant":
        return None

    provider = data.get("providerID")
    model = data.get("modelID")
    if not provider or not model:
        return None

    tokens = _as_dict(data.get("tokens"))
    cache = _as_dict(tokens.get("cache"))
    record = UsageRecord(
        timestamp=_created_at(data, now),
        session_id=row.session_id,
        source=UsageSource.OPENCODE,
        provider=str(provider).lower(),
        model=str(model),
        input_tokens=token_count(tokens.get("input")),
        output_tokens=token_count(tokens.get("output")),
        reasoning_tokens=token_count(tokens.get("reasoning")),
        cache_creation_tokens=token_count(cache.get("write")),
        cache_read_tokens=token_count(cache.get("read")),
        cost_usd=optional_cost(data.get("cost")),
    )
    return record if record.has_usage else None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _created_at(data: Dict[str, Any], now: Optional[datetime]) -> datetime:
    created = _as_dict(data.get("time")).get("created")
    if isinstance(created, (int, float)) and not isinstance(created, bool):
        return datetime.fromtimestamp(created / 1000, tz=timezone.utc)
    return now or datetime.now(timezone.utc)
