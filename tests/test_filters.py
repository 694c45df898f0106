"""
Tests for record filters, date options and calendar buckets.
"""

from datetime import datetime, timedelta, timezone

import pytest

from ai_usage_meter.core.date_filter import (
    SINCE,
    UNTIL,
    filter_entries_by_date_range,
    parse_date_filter_value,
    parse_last_duration,
    resolve_date_range,
)
from ai_usage_meter.core.filters import (
    FilterCriteria,
    create_full_model_label,
    filter_entries,
    matches_model_filter,
    matches_project_filter,
    matches_provider_filter,
    parse_filter_inputs,
)
from ai_usage_meter.core.model_display import (
    ProviderDisplayMode,
    create_model_label_resolver,
    normalize_model_name,
    parse_provider_mode,
)
from ai_usage_meter.core.periods import (
    day_key,
    iso_week_key,
    month_key,
    parse_start_of_week,
    week_start_key,
)
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, UsageSource

UTC = timezone.utc


def make_record(model="gpt-5.3-codex", provider="openai", session_id="session-1",
                source=UsageSource.OPENCODE, timestamp=None) -> UsageRecord:
    return UsageRecord(
        timestamp=timestamp or datetime(2026, 1, 1, tzinfo=UTC),
        session_id=session_id,
        source=source,
        provider=provider,
        model=model,
        input_tokens=1,
        output_tokens=1,
        cost_usd=1.0,
    )


class TestMatchers:
    """Test individual filter predicates."""

    def test_model_filter_matches_substring(self):
        assert matches_model_filter(make_record(), "5.3")

    def test_model_filter_ignores_provider(self):
        assert not matches_model_filter(make_record(), "openai")

    def test_model_with_embedded_provider_prefix(self):
        record = make_record(model="openai/gpt-5.2-codex")
        assert matches_model_filter(record, "GPT-5.2")
        assert not matches_model_filter(record, "openai")

    def test_provider_filter(self):
        assert matches_provider_filter(make_record(), "OPEN")
        assert not matches_provider_filter(make_record(), "anthropic")

    def test_full_model_label(self):
        assert create_full_model_label(make_record()) == "opencode/openai/gpt-5.3-codex"

    def test_project_filter_checks_name_directory_and_id(self):
        metadata = SessionMetadata(
            session_id="s1", title="t", project_id="proj-42", directory="/home/me/Widgets"
        )
        assert matches_project_filter(metadata, "widgets")
        assert matches_project_filter(metadata, "/home/me")
        assert matches_project_filter(metadata, "42")
        assert not matches_project_filter(metadata, "gadgets")

    def test_project_filter_without_metadata(self):
        assert matches_project_filter(None, "unknown")
        assert not matches_project_filter(None, "widgets")


class TestFilterEntries:
    """Test combining filters."""

    def test_fields_and_combined_values_or_combined(self):
        records = [
            make_record(model="gpt-5", session_id="a"),
            make_record(model="claude-sonnet-4-5", provider="anthropic", session_id="a",
                        source=UsageSource.CLAUDE),
            make_record(model="gemini-2.5-pro", provider="google", session_id="b"),
        ]

        result = filter_entries(records, {}, FilterCriteria(models=["gpt", "claude"]))
        assert [r.model for r in result] == ["gpt-5", "claude-sonnet-4-5"]

        result = filter_entries(records, {}, FilterCriteria(models=["gpt", "claude"], providers=["anthropic"]))
        assert [r.model for r in result] == ["claude-sonnet-4-5"]

        result = filter_entries(records, {}, FilterCriteria(session_id="b"))
        assert [r.model for r in result] == ["gemini-2.5-pro"]

        result = filter_entries(records, {}, FilterCriteria(full_models=["claude/anthropic"]))
        assert [r.model for r in result] == ["claude-sonnet-4-5"]

    def test_project_filter_uses_session_metadata(self):
        records = [make_record(session_id="a"), make_record(session_id="b")]
        sessions = {"a": SessionMetadata(session_id="a", title="a", directory="/src/billing")}

        result = filter_entries(records, sessions, FilterCriteria(project="billing"))

        assert [r.session_id for r in result] == ["a"]

    def test_parse_filter_inputs(self):
        assert parse_filter_inputs("claude/,anthropic2") == ["claude/", "anthropic2"]
        assert parse_filter_inputs(["claude/", "anthropic2,claude/"]) == ["claude/", "anthropic2"]
        assert parse_filter_inputs(None) == []


class TestModelLabels:
    """Test provider display modes."""

    def test_normalize_model_name(self):
        assert normalize_model_name("openai/gpt-5", "openai") == "gpt-5"
        assert normalize_model_name("gpt-5", "openai") == "gpt-5"

    def test_auto_mode_prefixes_only_ambiguous_models(self):
        records = [
            make_record(model="gpt-5", provider="openai"),
            make_record(model="gpt-5", provider="openrouter"),
            make_record(model="claude-opus-4-1", provider="anthropic"),
        ]

        label = create_model_label_resolver(records, ProviderDisplayMode.AUTO)

        assert label(records[0]) == "openai/gpt-5"
        assert label(records[1]) == "openrouter/gpt-5"
        assert label(records[2]) == "claude-opus-4-1"

    def test_always_and_never_modes(self):
        record = make_record(model="openai/gpt-5")
        assert create_model_label_resolver([record], ProviderDisplayMode.ALWAYS)(record) == "openai/gpt-5"
        assert create_model_label_resolver([record], ProviderDisplayMode.NEVER)(record) == "gpt-5"

    def test_parse_provider_mode(self):
        assert parse_provider_mode("Always") == ProviderDisplayMode.ALWAYS
        with pytest.raises(ValueError, match="Invalid provider display mode"):
            parse_provider_mode("sometimes")


class TestDateFilterParsing:
    """Test --since / --until value formats."""

    reference = datetime(2025, 7, 15, 9, 30)

    @pytest.mark.parametrize("value,expected", [
        ("20250301", datetime(2025, 3, 1, 0, 0)),
        ("202503011430", datetime(2025, 3, 1, 14, 30)),
        ("2025-03-01", datetime(2025, 3, 1, 0, 0)),
        ("2025-03-01T14:30", datetime(2025, 3, 1, 14, 30)),
        ("2025-03-01 14:30", datetime(2025, 3, 1, 14, 30)),
        ("0301", datetime(2025, 3, 1, 0, 0)),
        ("03-01", datetime(2025, 3, 1, 0, 0)),
        ("3-1 08:05", datetime(2025, 3, 1, 8, 5)),
        ("08:05", datetime(2025, 7, 15, 8, 5)),
    ])
    def test_since_formats(self, value, expected):
        parsed = parse_date_filter_value(value, SINCE, self.reference, tz=UTC)
        assert parsed == expected.replace(tzinfo=UTC)

    def test_until_covers_end_of_period(self):
        day_end = parse_date_filter_value("20250301", UNTIL, self.reference, tz=UTC)
        minute_end = parse_date_filter_value("2025-03-01T14:30", UNTIL, self.reference, tz=UTC)

        assert day_end == datetime(2025, 3, 1, 23, 59, 59, 999000, tzinfo=UTC)
        assert minute_end == datetime(2025, 3, 1, 14, 30, 59, 999000, tzinfo=UTC)

    def test_iso_datetime(self):
        parsed = parse_date_filter_value("2025-03-01T10:00:00+02:00", SINCE, self.reference, tz=UTC)
        assert parsed == datetime(2025, 3, 1, 8, 0, tzinfo=UTC)

    @pytest.mark.parametrize("value", ["20250230", "25:00", "13-40", "not a date", ""])
    def test_invalid_values(self, value):
        assert parse_date_filter_value(value, SINCE, self.reference, tz=UTC) is None

    def test_last_duration(self):
        assert parse_last_duration("15m") == timedelta(minutes=15)
        assert parse_last_duration("2H") == timedelta(hours=2)
        assert parse_last_duration("1w") == timedelta(weeks=1)
        assert parse_last_duration("0d") is None
        assert parse_last_duration("3y") is None


class TestResolveDateRange:
    """Test combining the date options."""

    now = datetime(2025, 7, 15, 12, 0, tzinfo=UTC)

    def test_last_is_relative_to_now(self):
        since, until = resolve_date_range(last="3d", now=self.now, tz=UTC)
        assert since == self.now - timedelta(days=3)
        assert until == self.now

    def test_last_conflicts_with_bounds(self):
        with pytest.raises(ValueError, match="--last cannot be used"):
            resolve_date_range(since="20250101", last="1d", now=self.now, tz=UTC)

    def test_since_after_until_is_an_error(self):
        with pytest.raises(ValueError, match="earlier than or equal"):
            resolve_date_range(since="20250302", until="20250301", now=self.now, tz=UTC)

    def test_unparsable_bound_is_an_error(self):
        with pytest.raises(ValueError, match="Invalid --until value"):
            resolve_date_range(until="tomorrow", now=self.now, tz=UTC)

    def test_window_is_inclusive(self):
        since, until = resolve_date_range(since="20250301", until="20250301", now=self.now, tz=UTC)
        records = [
            make_record(timestamp=datetime(2025, 3, 1, 0, 0, tzinfo=UTC)),
            make_record(timestamp=datetime(2025, 3, 1, 23, 59, 59, tzinfo=UTC)),
            make_record(timestamp=datetime(2025, 3, 2, 0, 0, tzinfo=UTC)),
        ]

        assert len(filter_entries_by_date_range(records, since, until)) == 2
        assert len(filter_entries_by_date_range(records)) == 3


class TestPeriods:
    """Test calendar bucket keys."""

    def test_iso_week_boundaries(self):
        """2025-12-29 is a Monday in ISO week 1 of 2026."""
        assert iso_week_key(datetime(2025, 12, 29, 12, tzinfo=UTC), utc=True) == "2026-W01"
        assert iso_week_key(datetime(2025, 1, 1, 12, tzinfo=UTC), utc=True) == "2025-W01"
        assert iso_week_key(datetime(2024, 12, 29, 12, tzinfo=UTC), utc=True) == "2024-W52"

    def test_day_and_month_keys(self):
        timestamp = datetime(2025, 3, 9, 23, 30, tzinfo=UTC)
        assert day_key(timestamp, utc=True) == "2025-03-09"
        assert month_key(timestamp, utc=True) == "2025-03"

    def test_utc_calendar_converts_offsets(self):
        timestamp = datetime(2025, 3, 10, 1, 0, tzinfo=timezone(timedelta(hours=5)))
        assert day_key(timestamp, utc=True) == "2025-03-09"

    def test_week_start_key(self):
        wednesday = datetime(2025, 1, 1, 12, tzinfo=UTC)
        assert week_start_key(wednesday, start_of_week=0, utc=True) == "2024-12-30"
        assert week_start_key(wednesday, start_of_week=6, utc=True) == "2024-12-29"

    def test_parse_start_of_week(self):
        assert parse_start_of_week("Sunday") == 6
        with pytest.raises(ValueError, match="Invalid start of week"):
            parse_start_of_week("someday")
