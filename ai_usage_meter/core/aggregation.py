"""
Usage aggregation engine.

Groups filtered usage records into report rows (time buckets, sessions or
models), nests breakdown rows below them, and attaches cost detail.
Rows are sorted only once a level is complete and model lists are sorted
by label, so row order and labels do not depend on record order.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from .breakdown import (
    COST,
    PERCENT,
    create_group_key_function,
    format_group_label,
    grouping_dimensions,
    is_displayed_zero_cost,
)
from .cost import (
    AggregateComponentCosts,
    ComponentCosts,
    calculate_aggregate_component_costs,
    calculate_component_costs,
    calculate_cost_for_entry,
)
from .model_display import ProviderDisplayMode, create_model_label_resolver
from .pricing import PricingCatalog
from ai_usage_meter.storage.models import SessionMetadata, UsageRecord, placeholder_metadata


class ReportKind(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    SESSION = "session"
    MODEL = "model"


# JSON key holding the top-level rows of each report
ROWS_KEY = {
    ReportKind.DAILY: "daily",
    ReportKind.WEEKLY: "weekly",
    ReportKind.MONTHLY: "monthly",
    ReportKind.SESSION: "sessions",
    ReportKind.MODEL: "models",
}

# JSON key holding each top-level row's label
LABEL_KEY = {
    ReportKind.DAILY: "date",
    ReportKind.WEEKLY: "week",
    ReportKind.MONTHLY: "month",
    ReportKind.SESSION: "sessionTitle",
    ReportKind.MODEL: "model",
}


@dataclass
class TokenTotals:
    """Token and cost totals for one group of records."""
    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    total_cost: float = 0.0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.reasoning_tokens
            + self.cache_creation_tokens
            + self.cache_read_tokens
        )

    def add_record(self, record: UsageRecord, cost: float, remap: bool = False) -> None:
        """Add one record.

        With `remap`, a record that reports no cache-write tokens has its
        uncached input counted as cache create.
        """
        if remap and record.cache_creation_tokens == 0:
            self.cache_creation_tokens += record.input_tokens
        else:
            self.input_tokens += record.input_tokens
            self.cache_creation_tokens += record.cache_creation_tokens
        self.output_tokens += record.output_tokens
        self.reasoning_tokens += record.reasoning_tokens
        self.cache_read_tokens += record.cache_read_tokens
        self.total_cost += cost

    def add_totals(self, other: "TokenTotals") -> None:
        self.input_tokens += other.input_tokens
        self.output_tokens += other.output_tokens
        self.reasoning_tokens += other.reasoning_tokens
        self.cache_creation_tokens += other.cache_creation_tokens
        self.cache_read_tokens += other.cache_read_tokens
        self.total_cost += other.total_cost

    def to_dict(self) -> Dict:
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "reasoningTokens": self.reasoning_tokens,
            "cacheCreationTokens": self.cache_creation_tokens,
            "cacheReadTokens": self.cache_read_tokens,
            "totalTokens": self.total_tokens,
            "totalCost": self.total_cost,
        }


@dataclass
class AggregateRow:
    """One report row, optionally with nested rows below it."""
    label: str
    totals: TokenTotals = field(default_factory=TokenTotals)
    models_used: List[str] = field(default_factory=list)
    model_breakdown: Dict[str, TokenTotals] = field(default_factory=dict)
    component_costs: Optional[ComponentCosts] = None
    column_costs: Optional[AggregateComponentCosts] = None
    percent: Optional[float] = None
    last_activity: Optional[datetime] = None
    children: List["AggregateRow"] = field(default_factory=list)

    # Session rows only
    session_id: Optional[str] = None
    title: Optional[str] = None
    project_name: Optional[str] = None
    parent_id: Optional[str] = None
    subsessions: List["AggregateRow"] = field(default_factory=list)
    subtotal: Optional[TokenTotals] = None

    @property
    def total_cost(self) -> float:
        return self.totals.total_cost

    @property
    def raw_totals(self) -> TokenTotals:
        """Token totals as reported, summed over the per-model breakdown."""
        totals = TokenTotals()
        for model_totals in self.model_breakdown.values():
            totals.add_totals(model_totals)
        return totals

    def to_dict(self, label_key: str = "label") -> Dict:
        data = {label_key: self.label}
        data.update(self.totals.to_dict())
        if self.models_used:
            data["modelsUsed"] = list(self.models_used)
        if self.model_breakdown:
            data["modelBreakdown"] = {
                model: totals.to_dict() for model, totals in self.model_breakdown.items()
            }
        if self.component_costs is not None:
            data["componentCosts"] = self.component_costs.to_dict()
        if self.column_costs is not None:
            data["columnCosts"] = self.column_costs.to_dict()
        if self.percent is not None:
            data["percent"] = self.percent
        if self.last_activity is not None:
            data["lastActivity"] = self.last_activity.isoformat()
        if self.session_id is not None:
            data["sessionID"] = self.session_id
            data["projectName"] = self.project_name
            data["parentID"] = self.parent_id
        if self.children:
            data["breakdown"] = [child.to_dict() for child in self.children]
        return data


@dataclass
class UsageReport:
    """Rows and grand totals of one report."""
    kind: ReportKind
    source: str
    rows: List[AggregateRow] = field(default_factory=list)
    totals: TokenTotals = field(default_factory=TokenTotals)
    dimensions: List[str] = field(default_factory=list)
    # Session reports: top-level rows of the table, sub-sessions nested
    tree: Optional[List[AggregateRow]] = None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    @property
    def table_rows(self) -> List[AggregateRow]:
        return self.rows if self.tree is None else self.tree

    def to_dict(self) -> Dict:
        label_key = LABEL_KEY[self.kind]
        return {
            "source": self.source,
            ROWS_KEY[self.kind]: [row.to_dict(label_key) for row in self.rows],
            "totals": self.totals.to_dict() if self.rows else None,
        }


class UsageAggregator:
    """Builds reports from filtered records.

    Per-record costs are computed once and reused at every nesting level.

    Args:
        catalog: Pricing lookup
        sessions: Session metadata by session id
        dimensions: Resolved breakdown dimensions
        skip_zero: Drop rows whose cost displays as $0.00, at every level
        provider_mode: How model labels show their provider
    """

    def __init__(
        self,
        catalog: PricingCatalog,
        sessions: Optional[Dict[str, SessionMetadata]] = None,
        dimensions: Sequence[str] = (),
        skip_zero: bool = False,
        provider_mode: ProviderDisplayMode = ProviderDisplayMode.AUTO,
        source: str = "all",
    ):
        self.catalog = catalog
        self.sessions = sessions or {}
        self.dimensions = list(dimensions)
        self.grouping = grouping_dimensions(self.dimensions)
        self.skip_zero = skip_zero
        self.provider_mode = provider_mode
        self.source = source
        self._costs: Dict[int, float] = {}

    @property
    def include_cost(self) -> bool:
        return COST in self.dimensions

    @property
    def include_percent(self) -> bool:
        return PERCENT in self.dimensions

    def entry_cost(self, record: UsageRecord) -> float:
        key = id(record)
        if key not in self._costs:
            self._costs[key] = calculate_cost_for_entry(record, self.catalog)
        return self._costs[key]

    def metadata_for(self, session_id: str) -> SessionMetadata:
        return self.sessions.get(session_id) or placeholder_metadata(session_id)

    def _visible(self, rows: List[AggregateRow]) -> List[AggregateRow]:
        if not self.skip_zero:
            return rows
        return [row for row in rows if not is_displayed_zero_cost(row.total_cost)]

    def _accumulate(
        self,
        label: str,
        records: List[UsageRecord],
        model_label: Callable[[UsageRecord], str],
        remap: bool = False,
    ) -> AggregateRow:
        row = AggregateRow(label=label)
        for record in records:
            cost = self.entry_cost(record)
            row.totals.add_record(record, cost, remap=remap)

            name = model_label(record)
            if name not in row.model_breakdown:
                row.model_breakdown[name] = TokenTotals()
                row.models_used.append(name)
            row.model_breakdown[name].add_record(record, cost)

            if row.last_activity is None or record.timestamp > row.last_activity:
                row.last_activity = record.timestamp

        row.models_used.sort()
        row.model_breakdown = {name: row.model_breakdown[name] for name in row.models_used}
        return row

    def _attach_cost_detail(
        self,
        row: AggregateRow,
        records: List[UsageRecord],
        remap: bool = False,
        force: bool = False,
    ) -> None:
        """Attach component costs for a single raw model, else column costs."""
        if not (self.include_cost or force) or not records:
            return
        models = {record.model for record in records}
        if len(models) == 1:
            row.component_costs = calculate_component_costs(records, records[0].model, self.catalog)
        else:
            row.column_costs = calculate_aggregate_component_costs(records, self.catalog, remap=remap)

    def _group(
        self,
        records: List[UsageRecord],
        key: Callable[[UsageRecord], str],
    ) -> Dict[str, List[UsageRecord]]:
        groups: Dict[str, List[UsageRecord]] = {}
        for record in records:
            groups.setdefault(key(record), []).append(record)
        return groups

    def breakdown_rows(
        self,
        records: List[UsageRecord],
        parent_cost: float,
        model_label: Callable[[UsageRecord], str],
        plain_model_label: Callable[[UsageRecord], str],
        dimensions: Optional[Sequence[str]] = None,
        remap: bool = False,
    ) -> List[AggregateRow]:
        """Split one row's records by the grouping dimensions.

        Rows are sorted by descending cost, ties by label. `remap` applies
        the aggregate token remap to the rows' totals and column costs.
        """
        dimensions = self.grouping if dimensions is None else dimensions
        if not dimensions:
            return []

        key = create_group_key_function(dimensions, model_label, plain_model_label, self.sessions)
        rows = []
        for group_key, group_records in self._group(records, key).items():
            row = self._accumulate(format_group_label(group_key), group_records, model_label, remap=remap)
            self._attach_cost_detail(row, group_records, remap=remap)
            if self.include_percent:
                row.percent = row.total_cost / parent_cost * 100 if parent_cost > 0 else 0.0
            rows.append(row)

        rows.sort(key=lambda row: (-row.total_cost, row.label))
        return self._visible(rows)

    def _finish(self, kind: ReportKind, rows: List[AggregateRow]) -> UsageReport:
        return UsageReport(
            kind=kind,
            source=self.source,
            rows=rows,
            totals=sum_totals(rows),
            dimensions=list(self.dimensions),
        )

    def period_report(
        self,
        kind: ReportKind,
        records: List[UsageRecord],
        period_key: Callable[[datetime], str],
    ) -> UsageReport:
        """Daily, weekly or monthly report in chronological order.

        Row totals use the aggregate token remap; each row's modelBreakdown
        keeps the reported buckets.

        Args:
            kind: Report kind, used for JSON keys
            records: Filtered records
            period_key: Maps a timestamp to its bucket key
        """
        model_label = create_model_label_resolver(records, self.provider_mode)
        plain_model_label = create_model_label_resolver(records, ProviderDisplayMode.NEVER)

        rows = []
        for period, period_records in self._group(records, lambda r: period_key(r.timestamp)).items():
            row = self._accumulate(period, period_records, model_label, remap=True)
            self._attach_cost_detail(row, period_records, remap=True)
            row.children = self.breakdown_rows(
                period_records, row.total_cost, model_label, plain_model_label, remap=True
            )
            rows.append(row)

        rows.sort(key=lambda row: row.label)
        return self._finish(kind, self._visible(rows))

    def session_report(
        self,
        records: List[UsageRecord],
        include_subagents: bool = False,
    ) -> UsageReport:
        """One row per session, by cost then most recent activity.

        `rows` lists every shown session. A session whose parent is also
        shown is a sub-session: in `tree` it is listed under its parent with
        a combined subtotal when `include_subagents` is set, and left out
        otherwise. Grand totals always cover every shown session.
        """
        model_label = create_model_label_resolver(records, self.provider_mode)
        plain_model_label = create_model_label_resolver(records, ProviderDisplayMode.NEVER)

        session_rows = []
        for session_id, session_records in self._group(records, lambda r: r.session_id).items():
            metadata = self.metadata_for(session_id)
            row = self._accumulate(metadata.title, session_records, model_label, remap=True)
            row.session_id = session_id
            row.title = metadata.title
            row.project_name = metadata.project_name
            row.parent_id = metadata.parent_id
            self._attach_cost_detail(row, session_records, remap=True)
            row.children = self.breakdown_rows(
                session_records, row.total_cost, model_label, plain_model_label, remap=True
            )
            session_rows.append(row)

        session_rows = self._visible(sorted(session_rows, key=_session_sort_key))
        totals = sum_totals(session_rows)

        visible_ids = {row.session_id for row in session_rows}
        children_by_parent: Dict[str, List[AggregateRow]] = {}
        roots = []
        for row in session_rows:
            if row.parent_id is not None and row.parent_id in visible_ids:
                children_by_parent.setdefault(row.parent_id, []).append(row)
            else:
                roots.append(row)

        if include_subagents:
            for root in roots:
                subsessions = children_by_parent.get(root.session_id, [])
                if not subsessions:
                    continue
                root.subsessions = subsessions
                root.subtotal = TokenTotals()
                root.subtotal.add_totals(root.totals)
                for subsession in subsessions:
                    root.subtotal.add_totals(subsession.totals)

        return UsageReport(
            kind=ReportKind.SESSION,
            source=self.source,
            rows=session_rows,
            totals=totals,
            dimensions=list(self.dimensions),
            tree=roots,
        )

    def model_report(self, records: List[UsageRecord]) -> UsageReport:
        """One row per model label with a project -> session tree below.

        Model rows always carry cost detail: component costs when the label
        covers one raw model, column costs otherwise. The tree below follows
        the selected `project` and `session` dimensions.
        """
        model_label = create_model_label_resolver(records, self.provider_mode)
        plain_model_label = create_model_label_resolver(records, ProviderDisplayMode.NEVER)

        rows = []
        for label, model_records in self._group(records, model_label).items():
            row = self._accumulate(label, model_records, model_label)
            self._attach_cost_detail(row, model_records, force=True)
            row.children = self._project_rows(model_records, row.total_cost, model_label, plain_model_label)
            rows.append(row)

        rows.sort(key=lambda row: (-row.total_cost, row.label))
        return self._finish(ReportKind.MODEL, self._visible(rows))

    def _project_rows(
        self,
        records: List[UsageRecord],
        parent_cost: float,
        model_label: Callable[[UsageRecord], str],
        plain_model_label: Callable[[UsageRecord], str],
    ) -> List[AggregateRow]:
        if not self.grouping:
            return []

        projects = self.breakdown_rows(
            records, parent_cost, model_label, plain_model_label, dimensions=["project"]
        ) if "project" in self.grouping else []

        if "session" not in self.grouping:
            return projects

        if not projects:
            return self._session_children(records, parent_cost, model_label)

        for project in projects:
            project_records = [
                record for record in records
                if self.metadata_for(record.session_id).project_name == project.label
            ]
            project.children = self._session_children(project_records, project.total_cost, model_label)
        return projects

    def _session_children(
        self,
        records: List[UsageRecord],
        parent_cost: float,
        model_label: Callable[[UsageRecord], str],
    ) -> List[AggregateRow]:
        rows = []
        for session_id, session_records in self._group(records, lambda r: r.session_id).items():
            metadata = self.metadata_for(session_id)
            row = self._accumulate(metadata.title, session_records, model_label)
            row.session_id = session_id
            row.title = metadata.title
            row.project_name = metadata.project_name
            row.parent_id = metadata.parent_id
            self._attach_cost_detail(row, session_records)
            if self.include_percent:
                row.percent = row.total_cost / parent_cost * 100 if parent_cost > 0 else 0.0
            rows.append(row)

        rows.sort(key=_session_sort_key)
        return self._visible(rows)


def _session_sort_key(row: AggregateRow):
    last = row.last_activity.timestamp() if row.last_activity is not None else 0.0
    return (-row.total_cost, -last, row.session_id or row.label)


def sum_totals(rows: Sequence[AggregateRow]) -> TokenTotals:
    totals = TokenTotals()
    for row in rows:
        totals.add_totals(row.totals)
    return totals
