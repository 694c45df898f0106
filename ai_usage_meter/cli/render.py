"""
Rich table rendering for usage reports.
"""

from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from ai_usage_meter.config.loader import resolve_model_alias
from ai_usage_meter.core.aggregation import AggregateRow, ReportKind, TokenTotals, UsageReport
from ai_usage_meter.core.cost import AggregateComponentCosts, ComponentCosts


COMPACT_WIDTH_THRESHOLD = 90

FIRST_COLUMN = {
    ReportKind.DAILY: "Date",
    ReportKind.WEEKLY: "Week",
    ReportKind.MONTHLY: "Month",
    ReportKind.SESSION: "Session",
    ReportKind.MODEL: "Model",
}

SOURCE_LABELS = {
    "opencode": "OpenCode",
    "claude": "Claude",
    "codex": "Codex",
    "all": "All Sources",
}


def _format_currency(amount: float) -> str:
    """Format currency with proper symbols and formatting."""
    return f"${amount:,.2f}"


def _format_number(value: int) -> str:
    return f"{value:,}"


def _format_percent(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.1f}%"


def is_compact(console: Console, force: bool = False) -> bool:
    return force or console.width < COMPACT_WIDTH_THRESHOLD


def model_label_text(label: str) -> Text:
    """Label with any display alias applied and colored."""
    display, style = resolve_model_alias(label)
    return Text(display, style=style or "")


def _models_text(models: List[str]) -> Text:
    text = Text()
    for index, model in enumerate(models):
        if index:
            text.append("\n")
        text.append_text(Text("- ") + model_label_text(model))
    return text


def _component_cell(tokens: int, cost: float, rate: str) -> str:
    if not rate:
        return f"{_format_number(tokens)}\n{_format_currency(cost)}"
    return f"{_format_number(tokens)}\n{_format_currency(cost)} @ ${rate}/M"


def _token_cells(
    row_totals: TokenTotals,
    components: Optional[ComponentCosts],
    compact: bool,
    columns: Optional[AggregateComponentCosts] = None,
):
    if components is not None and not compact:
        return [
            _component_cell(row_totals.input_tokens, components.base_input_cost, components.base_input.rate_range),
            _component_cell(row_totals.output_tokens + row_totals.reasoning_tokens, components.output_cost, components.output.rate_range),
            _component_cell(row_totals.cache_creation_tokens, components.cache_create_cost, components.cache_create.rate_range),
            _component_cell(row_totals.cache_read_tokens, components.cache_read_cost, components.cache_read.rate_range),
            _format_number(row_totals.total_tokens),
        ]

    if columns is not None and not compact:
        return [
            _component_cell(row_totals.input_tokens, columns.base_input_cost, ""),
            _component_cell(row_totals.output_tokens + row_totals.reasoning_tokens, columns.output_cost, ""),
            _component_cell(row_totals.cache_creation_tokens, columns.cache_create_cost, ""),
            _component_cell(row_totals.cache_read_tokens, columns.cache_read_cost, ""),
            _format_number(row_totals.total_tokens),
        ]

    cells = [
        _format_number(row_totals.input_tokens),
        _format_number(row_totals.output_tokens + row_totals.reasoning_tokens),
    ]
    if not compact:
        cells += [
            _format_number(row_totals.cache_creation_tokens),
            _format_number(row_totals.cache_read_tokens),
            _format_number(row_totals.total_tokens),
        ]
    return cells


def _build_table(report: UsageReport, compact: bool, show_percent: bool) -> Table:
    table = Table(show_lines=False, header_style="cyan")
    table.add_column(FIRST_COLUMN[report.kind], justify="left")
    if report.kind != ReportKind.MODEL:
        table.add_column("Models", justify="left")
    table.add_column("Input", justify="right")
    table.add_column("Output", justify="right")
    if not compact:
        table.add_column("Cache Create", justify="right")
        table.add_column("Cache Read", justify="right")
        table.add_column("Total Tokens", justify="right")
    if show_percent:
        table.add_column("%", justify="right")
    table.add_column("Cost (USD)", justify="right")
    return table


class ReportRenderer:
    """Writes one report as a Rich table."""

    def __init__(self, console: Console, compact: bool = False):
        self.console = console
        self.compact = compact
        self._show_percent = False
        self._has_models = True

    def render(self, report: UsageReport) -> None:
        show_percent = "percent" in report.dimensions and not self.compact
        table = _build_table(report, self.compact, show_percent)
        self._show_percent = show_percent
        self._has_models = report.kind != ReportKind.MODEL

        for row in report.table_rows:
            self._add_row(table, self._row_label(report.kind, row), row, bold=bool(row.subsessions))
            self._add_children(table, row.children, indent="  ")

            for subsession in row.subsessions:
                label = Text(f"  ↳ {subsession.label}\n    {subsession.project_name}/{subsession.session_id}")
                self._add_row(table, label, subsession)
                self._add_children(table, subsession.children, indent="    ")

            if row.subtotal is not None:
                self._add_totals_row(table, Text("  Total (with subagents)", style="dim"), row.subtotal)

        table.add_section()
        self._add_totals_row(table, Text("Total", style="yellow"), report.totals)

        source = SOURCE_LABELS.get(report.source, report.source)
        self.console.print(f"\n[bold]{source} Token Usage Report - {report.kind.value.title()}[/bold]\n")
        self.console.print(table)

    def _row_label(self, kind: ReportKind, row: AggregateRow) -> Text:
        if kind == ReportKind.MODEL:
            return model_label_text(row.label)
        if kind == ReportKind.SESSION:
            title = Text(row.label, style="bold" if row.subsessions else "")
            title.append(f"\n{row.project_name}/{row.session_id}", style="dim")
            return title
        return Text(row.label)

    def _add_children(self, table: Table, children: List[AggregateRow], indent: str) -> None:
        if self.compact:
            return
        for child in children:
            label = Text(indent) + model_label_text(child.label)
            label.stylize("dim", 0, len(indent))
            self._add_row(table, label, child, models=False)
            self._add_children(table, child.children, indent + "  ")

    def _add_row(
        self,
        table: Table,
        label: Text,
        row: AggregateRow,
        bold: bool = False,
        models: bool = True,
    ) -> None:
        cells = [label]
        if self._has_models:
            cells.append(_models_text(row.models_used) if models else Text(""))
        # Component costs price the reported buckets, not the remapped totals
        totals = row.raw_totals if row.component_costs is not None else row.totals
        cells += _token_cells(totals, row.component_costs, self.compact, row.column_costs)
        if self._show_percent:
            cells.append(_format_percent(row.percent))
        cells.append(_format_currency(row.total_cost))
        table.add_row(*cells, style="bold" if bold else None)

    def _add_totals_row(self, table: Table, label: Text, totals: TokenTotals) -> None:
        cells = [label]
        if self._has_models:
            cells.append("")
        cells += _token_cells(totals, None, self.compact)
        if self._show_percent:
            cells.append("")
        cells.append(_format_currency(totals.total_cost))
        table.add_row(*cells, style="yellow")
