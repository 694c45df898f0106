"""
Reader for agent rollout logs (`sessions/**/*.jsonl`).

Rollout files report running totals per session. Each `token_count` event
is turned back into the usage of that single turn by subtracting the
previous running total.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger

from .base import LoadedUsage, UsageSourceReader, iter_jsonl, parse_timestamp, token_count
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, UsageSource, UNKNOWN


SESSIONS_DIR = "sessions"

# Model assumed for rollouts written before turn_context lines existed
LEGACY_FALLBACK_MODEL = "gpt-5"

CODEX_PROVIDER = "openai"


@dataclass(frozen=True)
class CodexTokenUsage:
    """Raw counters as the agent reports them.

    `input_tokens` includes `cached_input_tokens`, and `output_tokens`
    includes `reasoning_output_tokens`.
    """
    input_tokens: int = 0
    cached_input_tokens: int = 0
    output_tokens: int = 0
    reasoning_output_tokens: int = 0

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["CodexTokenUsage"]:
        if not isinstance(payload, dict):
            return None
        return cls(
            input_tokens=token_count(payload.get("input_tokens")),
            cached_input_tokens=token_count(
                payload.get("cached_input_tokens", payload.get("cache_read_input_tokens"))
            ),
            output_tokens=token_count(payload.get("output_tokens")),
            reasoning_output_tokens=token_count(payload.get("reasoning_output_tokens")),
        )

    @property
    def is_zero(self) -> bool:
        return not (
            self.input_tokens
            or self.cached_input_tokens
            or self.output_tokens
            or self.reasoning_output_tokens
        )

    def minus(self, previous: "CodexTokenUsage") -> "CodexTokenUsage":
        """Field-wise difference, clamped at zero for counter resets."""
        return CodexTokenUsage(
            input_tokens=max(self.input_tokens - previous.input_tokens, 0),
            cached_input_tokens=max(self.cached_input_tokens - previous.cached_input_tokens, 0),
            output_tokens=max(self.output_tokens - previous.output_tokens, 0),
            reasoning_output_tokens=max(
                self.reasoning_output_tokens - previous.reasoning_output_tokens, 0
            ),
        )


class DeltaTracker:
    """Running cumulative baseline for one rollout file."""

    def __init__(self):
        self.previous = CodexTokenUsage()

    def from_cumulative(self, current: CodexTokenUsage) -> CodexTokenUsage:
        delta = current.minus(self.previous)
        self.previous = current
        return delta

    def from_last(self, last: CodexTokenUsage) -> CodexTokenUsage:
        # Last-turn counters are already a delta; the baseline stays put.
        return last


def reconstruct_deltas(snapshots: Iterable[CodexTokenUsage]) -> List[CodexTokenUsage]:
    """Turn a sequence of cumulative snapshots into per-event deltas.

    Snapshots of 5, 8, 8, 20 on one counter give 5, 3, 0, 12. A counter
    that goes down yields 0 for that event and becomes the new baseline.
    """
    tracker = DeltaTracker()
    return [tracker.from_cumulative(snapshot) for snapshot in snapshots]


def normalize_usage(delta: CodexTokenUsage) -> Dict[str, int]:
    """Split cached input out of input and reasoning out of output."""
    cached = min(delta.cached_input_tokens, delta.input_tokens)
    reasoning = min(delta.reasoning_output_tokens, delta.output_tokens)
    return {
        "input_tokens": max(delta.input_tokens - cached, 0),
        "cache_read_tokens": cached,
        "output_tokens": max(delta.output_tokens - reasoning, 0),
        "reasoning_tokens": reasoning,
    }


class CodexReader(UsageSourceReader):
    """Reads every rollout file under `<codex home>/sessions`."""

    source = UsageSource.CODEX

    def __init__(self, codex_dir: Optional[Path]):
        self.codex_dir = codex_dir

    def read(self) -> LoadedUsage:
        usage = LoadedUsage()
        if self.codex_dir is None:
            return usage

        sessions_dir = self.codex_dir / SESSIONS_DIR
        if not sessions_dir.is_dir():
            logger.debug("Codex sessions directory not found", path=str(sessions_dir))
            return usage

        for path in sorted(sessions_dir.rglob("*.jsonl")):
            try:
                records, metadata = read_rollout_file(path)
            except OSError as e:
                logger.warning("Skipping unreadable rollout file", path=str(path), error=str(e))
                continue
            usage.records.extend(records)
            if records:
                usage.sessions.setdefault(metadata.session_id, metadata)

        return usage


def read_rollout_file(path: Path):
    """Read one rollout file into records plus its session metadata.

    Returns:
        Tuple of (records, SessionMetadata)
    """
    session_id = path.stem
    directory = UNKNOWN
    model = None
    tracker = DeltaTracker()
    pending = []

    for line_number, data in iter_jsonl(path):
        entry_type = data.get("type")
        payload = data.get("payload")
        if not isinstance(payload, dict):
            continue

        if entry_type == "session_meta":
            if isinstance(payload.get("id"), str) and payload["id"]:
                session_id = payload["id"]
            if isinstance(payload.get("cwd"), str) and payload["cwd"]:
                directory = payload["cwd"]
            continue

        if entry_type == "turn_context":
            if isinstance(payload.get("model"), str) and payload["model"]:
                model = payload["model"]
            continue

        if entry_type != "event_msg" or payload.get("type") != "token_count":
            continue

        info = payload.get("info")
        if not isinstance(info, dict):
            continue

        total = CodexTokenUsage.from_payload(info.get("total_token_usage"))
        if total is not None:
            delta = tracker.from_cumulative(total)
        else:
            last = CodexTokenUsage.from_payload(info.get("last_token_usage"))
            if last is None:
                continue
            delta = tracker.from_last(last)

        if delta.is_zero:
            continue

        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            logger.warning("Skipping token event without timestamp", path=str(path), line=line_number)
            continue

        pending.append((timestamp, model or LEGACY_FALLBACK_MODEL, normalize_usage(delta)))

    records = [
        UsageRecord(
            timestamp=timestamp,
            session_id=session_id,
            source=UsageSource.CODEX,
            provider=CODEX_PROVIDER,
            model=event_model,
            **tokens,
        )
        for timestamp, event_model, tokens in pending
    ]
    metadata = SessionMetadata(session_id=session_id, title=session_id, directory=directory)
    return [record for record in records if record.has_usage], metadata
