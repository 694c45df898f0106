"""
CLI interface for AI Usage Meter.

Provides daily, weekly, monthly, session and model usage reports.
"""

import json
import sys
from datetime import timezone
from typing import Callable, List, Optional, Sequence

import typer
from rich.console import Console

from ai_usage_meter.cli.render import ReportRenderer, is_compact
from ai_usage_meter.config.loader import resolve_data_paths, set_model_alias_enabled
from ai_usage_meter.core.aggregation import ReportKind, UsageAggregator, UsageReport
from ai_usage_meter.core.breakdown import (
    MODEL_DIMENSIONS,
    PERIOD_DIMENSIONS,
    SESSION_DIMENSIONS,
    resolve_breakdown_dimensions,
)
from ai_usage_meter.core.date_filter import filter_entries_by_date_range, resolve_date_range
from ai_usage_meter.core.filters import FilterCriteria, filter_entries, parse_filter_inputs
from ai_usage_meter.core.model_display import parse_provider_mode
from ai_usage_meter.core.periods import (
    day_key,
    month_key,
    parse_start_of_week,
    weekly_key_function,
)
from ai_usage_meter.core.pricing import PricingCatalog
from ai_usage_meter.logging import configure_logging
from ai_usage_meter.sources.loader import SOURCE_ALL, load_usage_data, parse_usage_source

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

NO_DATA_MESSAGE = "No usage data found."
NO_VISIBLE_ROWS_MESSAGE = "No usage rows found after applying --skip-zero."

# Shared options
SourceOption = typer.Option(SOURCE_ALL, "--source", "-s", help="Data source: opencode, claude, codex or all")
SinceOption = typer.Option(None, "--since", help="Start of the period (YYYYMMDD, YYYY-MM-DD, HH:MM, ISO ...)")
UntilOption = typer.Option(None, "--until", help="End of the period, same formats as --since")
LastOption = typer.Option(None, "--last", help="Relative period: 15m, 2h, 3d or 1w")
JsonOption = typer.Option(False, "--json", "-j", help="Output in JSON format")
CompactOption = typer.Option(False, "--compact", help="Force compact table mode")
BreakdownOption = typer.Option(
    None,
    "--breakdown",
    "-b",
    help="Comma-separated breakdown dimensions, or 'none'",
)
FullOption = typer.Option(False, "--full", help="Enable every breakdown dimension for this report")
SkipZeroOption = typer.Option(False, "--skip-zero", help="Hide rows whose cost rounds to $0.00")
IdOption = typer.Option(None, "--id", help="Only this session id")
ProjectOption = typer.Option(None, "--project", "-p", help="Project name, directory or id substring")
ModelOption = typer.Option(None, "--model", "-m", help="Model name substring (repeatable, comma-separated)")
ProviderOption = typer.Option(None, "--provider", help="Provider substring (repeatable, comma-separated)")
FullModelOption = typer.Option(
    None,
    "--full-model",
    help="source/provider/model substring (repeatable, comma-separated)",
)
ProviderDisplayOption = typer.Option("auto", "--provider-display", help="Show providers in model labels: always, never or auto")
AliasOption = typer.Option(False, "--alias", help="Apply display aliases from ~/.config/causage/aliases.yaml")
UtcOption = typer.Option(False, "--utc", help="Use the UTC calendar instead of local time")
PricingFileOption = typer.Option(None, "--pricing-file", help="LiteLLM-format pricing catalog to overlay")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable debug logging")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """AI Usage Meter CLI."""
    if ctx.invoked_subcommand is None:
        console.print("AI Usage Meter - Use --help to see available commands")


def _run_report(
    kind: ReportKind,
    available: Sequence[str],
    build: Callable[[UsageAggregator, list], UsageReport],
    source: str,
    since: Optional[str],
    until: Optional[str],
    last: Optional[str],
    json_output: bool,
    compact: bool,
    breakdown: Optional[str],
    full: bool,
    skip_zero: bool,
    session_id: Optional[str],
    project: Optional[str],
    model: Optional[List[str]],
    provider: Optional[List[str]],
    full_model: Optional[List[str]],
    provider_display: str,
    alias: bool,
    utc: bool,
    pricing_file: Optional[str],
    verbose: bool,
) -> None:
    """Validate options, load and filter records, then print one report."""
    try:
        configure_logging("DEBUG" if verbose else "WARNING")

        # Input validation happens before any data is read
        sources = parse_usage_source(source)
        source_label = sources[0].value if len(sources) == 1 else SOURCE_ALL
        since_date, until_date = resolve_date_range(
            since, until, last, tz=timezone.utc if utc else None
        )
        dimensions = resolve_breakdown_dimensions(full, breakdown, available)
        provider_mode = parse_provider_mode(provider_display)
        criteria = FilterCriteria(
            session_id=(session_id or "").strip(),
            project=(project or "").strip(),
            models=parse_filter_inputs(model),
            providers=parse_filter_inputs(provider),
            full_models=parse_filter_inputs(full_model),
        )
        set_model_alias_enabled(alias)

        paths = resolve_data_paths(pricing_file)
        loaded = load_usage_data(sources, paths)
        records = filter_entries_by_date_range(loaded.records, since_date, until_date)
        records = filter_entries(records, loaded.sessions, criteria)

        if not records:
            _print_empty(kind, source_label, json_output, NO_DATA_MESSAGE)
            sys.exit(EXIT_CODE_PASS)

        aggregator = UsageAggregator(
            catalog=PricingCatalog.from_file(paths.pricing_file),
            sessions=loaded.sessions,
            dimensions=dimensions,
            skip_zero=skip_zero,
            provider_mode=provider_mode,
            source=source_label,
        )
        report = build(aggregator, records)

        if report.is_empty:
            _print_empty(kind, source_label, json_output, NO_VISIBLE_ROWS_MESSAGE)
            sys.exit(EXIT_CODE_PASS)

        if json_output:
            typer.echo(json.dumps(report.to_dict(), indent=2))
        else:
            ReportRenderer(console, compact=is_compact(console, compact)).render(report)
        sys.exit(EXIT_CODE_PASS)

    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


def _print_empty(kind: ReportKind, source: str, json_output: bool, message: str) -> None:
    if json_output:
        typer.echo(json.dumps(UsageReport(kind=kind, source=source).to_dict(), indent=2))
    else:
        console.print(f"[yellow]{message}[/]")


@app.command()
def daily(
    source: str = SourceOption,
    since: Optional[str] = SinceOption,
    until: Optional[str] = UntilOption,
    last: Optional[str] = LastOption,
    json_output: bool = JsonOption,
    compact: bool = CompactOption,
    breakdown: Optional[str] = BreakdownOption,
    full: bool = FullOption,
    skip_zero: bool = SkipZeroOption,
    session_id: Optional[str] = IdOption,
    project: Optional[str] = ProjectOption,
    model: Optional[List[str]] = ModelOption,
    provider: Optional[List[str]] = ProviderOption,
    full_model: Optional[List[str]] = FullModelOption,
    provider_display: str = ProviderDisplayOption,
    alias: bool = AliasOption,
    utc: bool = UtcOption,
    pricing_file: Optional[str] = PricingFileOption,
    verbose: bool = VerboseOption,
):
    """Show token usage and cost grouped by day."""
    _run_report(
        ReportKind.DAILY,
        PERIOD_DIMENSIONS,
        lambda aggregator, records: aggregator.period_report(
            ReportKind.DAILY, records, lambda ts: day_key(ts, utc)
        ),
        source, since, until, last, json_output, compact, breakdown, full, skip_zero,
        session_id, project, model, provider, full_model, provider_display, alias, utc,
        pricing_file, verbose,
    )


@app.command()
def weekly(
    source: str = SourceOption,
    since: Optional[str] = SinceOption,
    until: Optional[str] = UntilOption,
    last: Optional[str] = LastOption,
    json_output: bool = JsonOption,
    compact: bool = CompactOption,
    breakdown: Optional[str] = BreakdownOption,
    full: bool = FullOption,
    skip_zero: bool = SkipZeroOption,
    session_id: Optional[str] = IdOption,
    project: Optional[str] = ProjectOption,
    model: Optional[List[str]] = ModelOption,
    provider: Optional[List[str]] = ProviderOption,
    full_model: Optional[List[str]] = FullModelOption,
    provider_display: str = ProviderDisplayOption,
    alias: bool = AliasOption,
    utc: bool = UtcOption,
    pricing_file: Optional[str] = PricingFileOption,
    verbose: bool = VerboseOption,
    start_of_week: Optional[str] = typer.Option(
        None,
        "--start-of-week",
        "-w",
        help="Group by weeks starting on this day (e.g. sunday) instead of ISO weeks",
    ),
):
    """Show token usage and cost grouped by ISO week."""
    try:
        first_day = parse_start_of_week(start_of_week) if start_of_week else None
    except ValueError as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    week_key = weekly_key_function(first_day, utc)
    _run_report(
        ReportKind.WEEKLY,
        PERIOD_DIMENSIONS,
        lambda aggregator, records: aggregator.period_report(ReportKind.WEEKLY, records, week_key),
        source, since, until, last, json_output, compact, breakdown, full, skip_zero,
        session_id, project, model, provider, full_model, provider_display, alias, utc,
        pricing_file, verbose,
    )


@app.command()
def monthly(
    source: str = SourceOption,
    since: Optional[str] = SinceOption,
    until: Optional[str] = UntilOption,
    last: Optional[str] = LastOption,
    json_output: bool = JsonOption,
    compact: bool = CompactOption,
    breakdown: Optional[str] = BreakdownOption,
    full: bool = FullOption,
    skip_zero: bool = SkipZeroOption,
    session_id: Optional[str] = IdOption,
    project: Optional[str] = ProjectOption,
    model: Optional[List[str]] = ModelOption,
    provider: Optional[List[str]] = ProviderOption,
    full_model: Optional[List[str]] = FullModelOption,
    provider_display: str = ProviderDisplayOption,
    alias: bool = AliasOption,
    utc: bool = UtcOption,
    pricing_file: Optional[str] = PricingFileOption,
    verbose: bool = VerboseOption,
):
    """Show token usage and cost grouped by month."""
    _run_report(
        ReportKind.MONTHLY,
        PERIOD_DIMENSIONS,
        lambda aggregator, records: aggregator.period_report(
            ReportKind.MONTHLY, records, lambda ts: month_key(ts, utc)
        ),
        source, since, until, last, json_output, compact, breakdown, full, skip_zero,
        session_id, project, model, provider, full_model, provider_display, alias, utc,
        pricing_file, verbose,
    )


@app.command()
def session(
    source: str = SourceOption,
    since: Optional[str] = SinceOption,
    until: Optional[str] = UntilOption,
    last: Optional[str] = LastOption,
    json_output: bool = JsonOption,
    compact: bool = CompactOption,
    breakdown: Optional[str] = BreakdownOption,
    full: bool = FullOption,
    skip_zero: bool = SkipZeroOption,
    session_id: Optional[str] = IdOption,
    project: Optional[str] = ProjectOption,
    model: Optional[List[str]] = ModelOption,
    provider: Optional[List[str]] = ProviderOption,
    full_model: Optional[List[str]] = FullModelOption,
    provider_display: str = ProviderDisplayOption,
    alias: bool = AliasOption,
    utc: bool = UtcOption,
    pricing_file: Optional[str] = PricingFileOption,
    verbose: bool = VerboseOption,
    subagents: bool = typer.Option(False, "--subagents", help="Show subagent sessions under their parent"),
):
    """Show token usage and cost per session."""
    _run_report(
        ReportKind.SESSION,
        SESSION_DIMENSIONS,
        lambda aggregator, records: aggregator.session_report(records, include_subagents=subagents),
        source, since, until, last, json_output, compact, breakdown, full, skip_zero,
        session_id, project, model, provider, full_model, provider_display, alias, utc,
        pricing_file, verbose,
    )


@app.command(name="model")
def model_command(
    source: str = SourceOption,
    since: Optional[str] = SinceOption,
    until: Optional[str] = UntilOption,
    last: Optional[str] = LastOption,
    json_output: bool = JsonOption,
    compact: bool = CompactOption,
    breakdown: Optional[str] = BreakdownOption,
    full: bool = FullOption,
    skip_zero: bool = SkipZeroOption,
    session_id: Optional[str] = IdOption,
    project: Optional[str] = ProjectOption,
    model: Optional[List[str]] = ModelOption,
    provider: Optional[List[str]] = ProviderOption,
    full_model: Optional[List[str]] = FullModelOption,
    provider_display: str = ProviderDisplayOption,
    alias: bool = AliasOption,
    utc: bool = UtcOption,
    pricing_file: Optional[str] = PricingFileOption,
    verbose: bool = VerboseOption,
):
    """Show token usage and cost per model, with project and session detail."""
    _run_report(
        ReportKind.MODEL,
        MODEL_DIMENSIONS,
        lambda aggregator, records: aggregator.model_report(records),
        source, since, until, last, json_output, compact, breakdown, full, skip_zero,
        session_id, project, model, provider, full_model, provider_display, alias, utc,
        pricing_file, verbose,
    )


if __name__ == "__main__":
    app()
