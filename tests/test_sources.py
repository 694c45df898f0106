"""
Tests for the source readers and source merging.
"""

import json
import os
import tempfile
from io import StringIO
from pathlib import Path

import pytest
from loguru import logger

from ai_usage_meter.config.loader import DataPaths
from ai_usage_meter.sources import (
    ClaudeReader,
    CodexReader,
    LoadedUsage,
    OpenCodeReader,
    load_usage_data,
    merge_loaded,
    parse_usage_source,
    reconstruct_deltas,
)
from ai_usage_meter.sources.base import infer_provider, parse_timestamp
from ai_usage_meter.sources.codex import CodexTokenUsage, read_rollout_file
from ai_usage_meter.storage.models import SessionMetadata, UsageSource


@pytest.fixture
def log_output():
    """Capture warnings logged by the readers."""
    output = StringIO()
    handler_id = logger.add(output, format="{message}", level="WARNING")
    yield output
    logger.remove(handler_id)


def write_jsonl(path: Path, lines):
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        for line in lines:
            f.write(line if isinstance(line, str) else json.dumps(line))
            f.write("\n")


def assistant_message(provider="anthropic", model="claude-sonnet-4-5", created=1735732800000, **tokens):
    return {
        "role": "assistant",
        "providerID": provider,
        "modelID": model,
        "cost": tokens.pop("cost", 0),
        "time": {"created": created},
        "tokens": {
            "input": tokens.get("input", 0),
            "output": tokens.get("output", 0),
            "reasoning": tokens.get("reasoning", 0),
            "cache": {"read": tokens.get("read", 0), "write": tokens.get("write", 0)},
        },
    }


class TestOpenCodeReader:
    """Test reading the origin tool's SQLite store."""

    def test_reads_assistant_rows_only(self, log_output, make_store):
        """User rows, rows without a model and all-zero rows are dropped."""
        with tempfile.TemporaryDirectory() as temp_dir:
            make_store(
                os.path.join(temp_dir, "opencode.db"),
                sessions=[("s1", None, "Session one", "p1", "/work/app")],
                messages=[
                    ("m1", "s1", assistant_message(input=100, output=50, read=10, write=5, cost=0.25)),
                    ("m2", "s1", {"role": "user"}),
                    ("m3", "s1", assistant_message(provider="", input=10)),
                    ("m4", "s1", assistant_message()),
                    ("m5", "s1", "{truncated"),
                ],
            )

            loaded = OpenCodeReader(Path(temp_dir)).load()

            assert len(loaded.records) == 1
            record = loaded.records[0]
            assert record.source == UsageSource.OPENCODE
            assert record.provider == "anthropic"
            assert record.input_tokens == 100
            assert record.cache_read_tokens == 10
            assert record.cache_creation_tokens == 5
            assert record.cost_usd == 0.25
            assert record.timestamp.year == 2025
            assert loaded.sessions["s1"].project_name == "app"
            assert "Skipping malformed message row" in log_output.getvalue()

    def test_missing_database_yields_nothing(self):
        """A missing store is not an error."""
        with tempfile.TemporaryDirectory() as temp_dir:
            loaded = OpenCodeReader(Path(temp_dir)).load()
            assert loaded.records == []
            assert loaded.sessions == {}

    def test_corrupt_database_is_a_warning(self, log_output):
        """A store that cannot be queried degrades to empty results."""
        with tempfile.TemporaryDirectory() as temp_dir:
            with open(os.path.join(temp_dir, "opencode.db"), "wb") as f:
                f.write(b"this is not a sqlite database" * 100)

            loaded = OpenCodeReader(Path(temp_dir)).load()

            assert loaded.records == []
            assert "Failed to read usage source" in log_output.getvalue()


class TestClaudeReader:
    """Test reading per-session chat logs."""

    def _line(self, message_id, request_id="req-1", session_id="chat-1", **usage):
        return {
            "type": "assistant",
            "sessionId": session_id,
            "requestId": request_id,
            "timestamp": "2025-03-01T10:00:00Z",
            "cwd": "/home/me/projects/webapp",
            "costUSD": usage.pop("cost", None),
            "message": {
                "id": message_id,
                "model": usage.pop("model", "claude-sonnet-4-5"),
                "usage": {
                    "input_tokens": usage.get("input", 0),
                    "output_tokens": usage.get("output", 0),
                    "cache_creation_input_tokens": usage.get("write", 0),
                    "cache_read_input_tokens": usage.get("read", 0),
                },
            },
        }

    def test_parses_lines_and_metadata(self, log_output):
        """Malformed lines are skipped and the rest of the file is read."""
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_jsonl(root / "projects" / "-home-me-projects-webapp" / "chat-1.jsonl", [
                {"type": "summary", "summary": "Refactor login"},
                self._line("msg-1", input=10, output=20, cost=0.5),
                "{not json",
                self._line("msg-2", input=5, output=5, model="gpt-5"),
                {"type": "user", "message": {"role": "user", "content": "hi"}},
            ])

            loaded = ClaudeReader([root]).load()

            assert [r.model for r in loaded.records] == ["claude-sonnet-4-5", "gpt-5"]
            assert [r.provider for r in loaded.records] == ["anthropic", "openai"]
            assert loaded.records[0].cost_usd == 0.5
            metadata = loaded.sessions["chat-1"]
            assert metadata.title == "Refactor login"
            assert metadata.project_id == "-home-me-projects-webapp"
            assert metadata.project_name == "webapp"
            assert "Skipping malformed line" in log_output.getvalue()

    def test_duplicate_messages_counted_once(self):
        """The same message and request id logged twice is one record."""
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_jsonl(root / "projects" / "p" / "chat-1.jsonl", [
                self._line("msg-1", input=10),
                self._line("msg-1", input=10),
                self._line("msg-1", request_id="req-2", input=10),
            ])

            loaded = ClaudeReader([root]).load()

            assert len(loaded.records) == 2

    def test_zero_usage_lines_dropped(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_jsonl(root / "projects" / "p" / "chat-1.jsonl", [self._line("msg-1")])

            assert ClaudeReader([root]).load().records == []

    def test_session_id_falls_back_to_file_stem(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            line = self._line("msg-1", input=1)
            del line["sessionId"]
            write_jsonl(root / "projects" / "p" / "abc123.jsonl", [line])

            loaded = ClaudeReader([root]).load()

            assert loaded.records[0].session_id == "abc123"
            assert loaded.sessions["abc123"].title == "abc123"

    def test_missing_directory_yields_nothing(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            assert ClaudeReader([Path(temp_dir) / "nope"]).load().records == []


def token_event(timestamp, total=None, last=None):
    info = {}
    if total is not None:
        info["total_token_usage"] = total
    if last is not None:
        info["last_token_usage"] = last
    return {
        "timestamp": timestamp,
        "type": "event_msg",
        "payload": {"type": "token_count", "info": info},
    }


def counters(input_tokens=0, cached=0, output=0, reasoning=0):
    return {
        "input_tokens": input_tokens,
        "cached_input_tokens": cached,
        "output_tokens": output,
        "reasoning_output_tokens": reasoning,
    }


class TestCodexDeltas:
    """Test reconstruction of per-turn usage from running totals."""

    def test_cumulative_snapshots_become_deltas(self):
        """Snapshots 5, 8, 8, 20 give deltas 5, 3, 0, 12."""
        snapshots = [
            CodexTokenUsage(input_tokens=5, output_tokens=5),
            CodexTokenUsage(input_tokens=8, output_tokens=8),
            CodexTokenUsage(input_tokens=8, output_tokens=8),
            CodexTokenUsage(input_tokens=20, output_tokens=12),
        ]

        deltas = reconstruct_deltas(snapshots)

        assert [d.input_tokens for d in deltas] == [5, 3, 0, 12]
        assert [d.output_tokens for d in deltas] == [5, 3, 0, 4]

    def test_counter_reset_clamps_to_zero(self):
        """A decreasing counter never produces a negative delta."""
        snapshots = [
            CodexTokenUsage(input_tokens=100),
            CodexTokenUsage(input_tokens=40),
            CodexTokenUsage(input_tokens=50),
        ]

        deltas = reconstruct_deltas(snapshots)

        assert [d.input_tokens for d in deltas] == [100, 0, 10]


class TestCodexReader:
    """Test reading agent rollout logs."""

    def test_reads_rollout_file(self):
        """Deltas, model markers and token normalization."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "sessions" / "2025" / "01" / "rollout-1.jsonl"
            write_jsonl(path, [
                {"timestamp": "2025-01-01T00:00:00Z", "type": "session_meta",
                 "payload": {"id": "codex-session", "cwd": "/work/api"}},
                token_event("2025-01-01T00:00:01Z", total=counters(100, 20, 50, 10)),
                {"timestamp": "2025-01-01T00:00:02Z", "type": "turn_context",
                 "payload": {"model": "gpt-5-codex"}},
                token_event("2025-01-01T00:00:03Z", total=counters(100, 20, 50, 10)),
                token_event("2025-01-01T00:00:04Z", total=counters(300, 120, 80, 10)),
            ])

            records, metadata = read_rollout_file(path)

            assert len(records) == 2
            first, second = records
            assert first.model == "gpt-5"
            assert first.provider == "openai"
            assert first.input_tokens == 80
            assert first.cache_read_tokens == 20
            assert first.output_tokens == 40
            assert first.reasoning_tokens == 10
            assert second.model == "gpt-5-codex"
            assert second.input_tokens == 100
            assert second.cache_read_tokens == 100
            assert second.output_tokens == 30
            assert second.reasoning_tokens == 0
            assert metadata.session_id == "codex-session"
            assert metadata.project_name == "api"

    def test_last_usage_does_not_move_baseline(self):
        """A last-turn-only event is used as is."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "sessions" / "rollout-2.jsonl"
            write_jsonl(path, [
                token_event("2025-01-01T00:00:01Z", total=counters(10)),
                token_event("2025-01-01T00:00:02Z", last=counters(7)),
                token_event("2025-01-01T00:00:03Z", total=counters(15)),
            ])

            records, metadata = read_rollout_file(path)

            assert [r.input_tokens for r in records] == [10, 7, 5]
            assert metadata.session_id == "rollout-2"

    def test_reader_scans_sessions_tree(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_jsonl(root / "sessions" / "a" / "one.jsonl", [
                token_event("2025-01-01T00:00:01Z", total=counters(10)),
                "{truncated",
            ])
            write_jsonl(root / "sessions" / "b" / "two.jsonl", [
                token_event("2025-01-02T00:00:01Z", total=counters(0)),
            ])

            loaded = CodexReader(root).load()

            assert [r.session_id for r in loaded.records] == ["one"]
            assert set(loaded.sessions) == {"one"}

    def test_missing_home_yields_nothing(self):
        assert CodexReader(None).load().records == []


class TestMerging:
    """Test combining sources."""

    def test_first_session_entry_wins(self):
        """Metadata from the earlier source is kept for a shared session id."""
        first = LoadedUsage(sessions={"s1": SessionMetadata(session_id="s1", title="from opencode")})
        second = LoadedUsage(sessions={
            "s1": SessionMetadata(session_id="s1", title="from claude"),
            "s2": SessionMetadata(session_id="s2", title="only claude"),
        })

        merged = merge_loaded([first, second])

        assert merged.sessions["s1"].title == "from opencode"
        assert merged.sessions["s2"].title == "only claude"

    def test_load_usage_data_reads_in_priority_order(self, make_store):
        """Records are concatenated opencode, claude, codex."""
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            opencode_dir = root / "opencode"
            opencode_dir.mkdir()
            make_store(
                str(opencode_dir / "opencode.db"),
                sessions=[("shared", None, "OpenCode title", "p", "/x/one")],
                messages=[("m1", "shared", assistant_message(input=1))],
            )
            write_jsonl(root / "claude" / "projects" / "p" / "shared.jsonl", [
                {"type": "summary", "summary": "Claude title"},
                {"sessionId": "shared", "timestamp": "2025-01-01T00:00:00Z",
                 "message": {"id": "x", "model": "claude-opus-4-1", "usage": {"input_tokens": 2}}},
            ])
            write_jsonl(root / "codex" / "sessions" / "c.jsonl", [
                token_event("2025-01-01T00:00:01Z", total=counters(3)),
            ])
            paths = DataPaths(
                opencode_dir=opencode_dir,
                claude_dirs=(root / "claude",),
                codex_dir=root / "codex",
            )

            loaded = load_usage_data(
                [UsageSource.CODEX, UsageSource.CLAUDE, UsageSource.OPENCODE], paths
            )

            assert [r.source for r in loaded.records] == [
                UsageSource.OPENCODE, UsageSource.CLAUDE, UsageSource.CODEX,
            ]
            assert loaded.sessions["shared"].title == "OpenCode title"

    def test_parse_usage_source(self):
        assert parse_usage_source("all") == [
            UsageSource.OPENCODE, UsageSource.CLAUDE, UsageSource.CODEX,
        ]
        assert parse_usage_source("Claude") == [UsageSource.CLAUDE]
        with pytest.raises(ValueError, match="Unknown source"):
            parse_usage_source("cursor")


class TestNormalizationHelpers:
    """Test provider inference and timestamp parsing."""

    @pytest.mark.parametrize("model,provider", [
        ("openrouter/anthropic/claude-3", "openrouter"),
        ("claude-opus-4-1", "anthropic"),
        ("gpt-5-mini", "openai"),
        ("o3", "openai"),
        ("gemini-2.5-pro", "google"),
        ("grok-4", "xai"),
        ("llama-3", "unknown"),
    ])
    def test_infer_provider(self, model, provider):
        assert infer_provider(model) == provider

    def test_parse_timestamp(self):
        parsed = parse_timestamp("2025-01-01T12:00:00Z")
        assert parsed.utcoffset().total_seconds() == 0
        assert parse_timestamp("2025-01-01T12:00:00").hour == 12
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp(None) is None
