"""Trend series, breakdowns and cross tables for the extra report view."""

from __future__ import annotations

import math
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from operator import attrgetter
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select

from funnelboard.core.config import get_config
from funnelboard.core.enums import UNASSIGNED_LABEL, UNKNOWN_LABEL
from funnelboard.core.exceptions import ValidationError
from funnelboard.models import AdDailyInsight, CrmUser
from funnelboard.services.field_mapping import CUSTOM_COLUMN_PREFIX, FieldMapping
from funnelboard.services.indicator_service import (
    EventFact,
    IndicatorService,
    OpportunityFact,
    Period,
    ReportFilters,
    dimension_label,
    safe_ratio,
)
from funnelboard.services.payload_normalizer import to_ms

DAY_MS = 24 * 60 * 60 * 1000
SERIES_DAILY_MAX_DAYS = 30

BASE_DIMENSIONS = (
    ("source", "Origem"),
    ("responsible", "Responsável"),
    ("utm_campaign", "UTM Campaign"),
    ("utm_medium", "UTM Medium"),
    ("utm_content", "UTM Content"),
)
EVENT_UTM_DIMENSIONS = ("utm_campaign", "utm_medium", "utm_content")

REVENUE_RANGES = (
    ("0 - 1.000", 0.0, 1000.0),
    ("1.000 - 5.000", 1000.0, 5000.0),
    ("5.000 - 10.000", 5000.0, 10000.0),
    ("10.000 - 50.000", 10000.0, 50000.0),
    ("50.000+", 50000.0, math.inf),
)


@dataclass
class GroupStats:
    name: str
    leads: int = 0
    sales: int = 0
    revenue: float = 0.0
    appointments: int = 0
    calls_realized: int = 0
    investment: float | None = None
    share_count: float = 0.0
    share_revenue: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "name": self.name,
            "leads": self.leads,
            "sales": self.sales,
            "revenue": self.revenue,
            "appointments": self.appointments,
            "calls_realized": self.calls_realized,
            "conversion": safe_ratio(self.sales, self.leads, 100) or 0.0,
            "share_count": self.share_count,
            "share_revenue": self.share_revenue,
        }
        if self.investment is not None:
            payload["investment"] = self.investment
        return payload


@dataclass
class BucketStats:
    leads: int = 0
    appointments: int = 0
    calls_realized: int = 0
    sales: int = 0
    revenue: float = 0.0
    investment: float = 0.0


@dataclass
class ReportContext:
    """Everything a breakdown needs, resolved once per request."""

    period: Period
    opportunities: list[OpportunityFact]
    events: list[EventFact]
    responsible_names: dict[str, str]
    spend_rows: list[AdDailyInsight]
    link_opportunity_column: str | None = None
    link_ads_column: str | None = None
    contact_utm: dict[str, dict[str, str]] = field(default_factory=dict)

    def responsible(self, assigned_to: str | None) -> str:
        if not assigned_to:
            return UNASSIGNED_LABEL
        return self.responsible_names.get(assigned_to, assigned_to)

    def dimension_value(self, opp: OpportunityFact, dim: str) -> str:
        if dim == "source":
            return dimension_label(opp.source)
        if dim == "responsible":
            return dimension_label(self.responsible(opp.assigned_to))
        if dim.startswith("utm_"):
            return dimension_label(opp.utm.get(dim))
        if dim.startswith(CUSTOM_COLUMN_PREFIX):
            return dimension_label(opp.custom_fields.get(dim))
        return UNKNOWN_LABEL


def contact_to_utm(opportunities: Iterable[OpportunityFact]) -> dict[str, dict[str, str]]:
    """UTM values of each contact's earliest opportunity, used to attribute its events."""
    mapping: dict[str, dict[str, str]] = {}
    for opp in sorted(opportunities, key=lambda item: item.date_ms or 0):
        if not opp.contact_id or opp.contact_id in mapping:
            continue
        mapping[opp.contact_id] = {dim: dimension_label(opp.utm.get(dim)) for dim in EVENT_UTM_DIMENSIONS}
    return mapping


def apply_shares(groups: list[GroupStats]) -> list[GroupStats]:
    total_count = sum(group.leads for group in groups)
    total_revenue = sum(group.revenue for group in groups)
    for group in groups:
        group.share_count = safe_ratio(group.leads, total_count, 100) or 0.0
        group.share_revenue = safe_ratio(group.revenue, total_revenue, 100) or 0.0
    return groups


def revenue_by_range(opportunities: Iterable[OpportunityFact]) -> list[dict[str, Any]]:
    buckets = {label: {"range": label, "count": 0, "revenue": 0.0} for label, _, _ in REVENUE_RANGES}
    for opp in opportunities:
        if not opp.counts_as_sale:
            continue
        label = next((name for name, low, high in REVENUE_RANGES if low <= opp.value < high), REVENUE_RANGES[-1][0])
        buckets[label]["count"] += 1
        buckets[label]["revenue"] += opp.value
    return [bucket for bucket in buckets.values() if bucket["count"] > 0 or bucket["revenue"] > 0]


def cross_matrix(ctx: ReportContext, opportunities: list[OpportunityFact], row_dim: str, col_dim: str) -> dict[str, Any]:
    cells: dict[str, dict[str, list[int]]] = defaultdict(lambda: defaultdict(lambda: [0, 0]))
    for opp in opportunities:
        cell = cells[ctx.dimension_value(opp, row_dim)][ctx.dimension_value(opp, col_dim)]
        cell[0] += 1
        if opp.counts_as_sale:
            cell[1] += 1
    row_labels = sorted(cells)
    col_labels = sorted({col for row in cells.values() for col in row})

    def _grid(index: int) -> list[list[int]]:
        return [[cells[row][col][index] if col in cells[row] else 0 for col in col_labels] for row in row_labels]

    return {
        "row_dim": row_dim,
        "col_dim": col_dim,
        "row_labels": row_labels,
        "col_labels": col_labels,
        "leads": _grid(0),
        "sales": _grid(1),
    }


class ReportService(IndicatorService):
    """Extra report payload; shares the dataset loading of the indicator view."""

    def __init__(self, db=None, tz_name: str | None = None) -> None:
        super().__init__(db)
        self.tz = ZoneInfo(tz_name or get_config().REPORT_TIMEZONE)

    def _local(self, ms: int) -> datetime:
        return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone(self.tz)

    def _year_period(self, year: int) -> Period:
        start = datetime(year, 1, 1, tzinfo=self.tz)
        end = datetime(year + 1, 1, 1, tzinfo=self.tz)
        return Period(start_ms=to_ms(start), end_ms=to_ms(end) - 1)

    def _spend_rows(self, client_id: int, period: Period) -> list[AdDailyInsight]:
        start = datetime.fromtimestamp(period.start_ms / 1000, tz=timezone.utc).date()
        end = datetime.fromtimestamp(period.end_ms / 1000, tz=timezone.utc).date()
        return list(
            self.db.scalars(
                select(AdDailyInsight).where(
                    AdDailyInsight.client_id == client_id,
                    AdDailyInsight.date >= start,
                    AdDailyInsight.date <= end,
                )
            ).all()
        )

    def _responsible_names(self, client_id: int) -> dict[str, str]:
        users = self.db.scalars(select(CrmUser).where(CrmUser.client_id == client_id, CrmUser.active.is_(True))).all()
        return {user.external_id: user.name or user.external_id for user in users}

    @staticmethod
    def available_dimensions(mapping: FieldMapping) -> list[dict[str, str]]:
        dims = [{"id": dim_id, "label": label} for dim_id, label in BASE_DIMENSIONS]
        dims.extend({"id": column.column_name, "label": column.label} for column in mapping.import_columns)
        return dims

    def series(self, ctx: ReportContext) -> list[dict[str, Any]]:
        """Daily buckets, or monthly ones when the period spans more than 30 days."""
        days = math.ceil((ctx.period.end_ms - ctx.period.start_ms) / DAY_MS)
        by_month = days > SERIES_DAILY_MAX_DAYS
        fmt = "%Y-%m" if by_month else "%Y-%m-%d"
        buckets: dict[str, BucketStats] = defaultdict(BucketStats)

        for opp in ctx.opportunities:
            if not ctx.period.contains(opp.date_ms):
                continue
            bucket = buckets[self._local(opp.date_ms).strftime(fmt)]
            bucket.leads += 1
            if opp.counts_as_sale:
                bucket.sales += 1
        for event in ctx.events:
            if ctx.period.contains(event.start_ms):
                buckets[self._local(event.start_ms).strftime(fmt)].appointments += 1
        for row in ctx.spend_rows:
            buckets[row.date.strftime(fmt)].investment += float(row.spend or 0)

        return [
            {"date": key, "leads": b.leads, "appointments": b.appointments, "sales": b.sales, "investment": b.investment}
            for key, b in sorted(buckets.items())
        ]

    def monthly(self, ctx: ReportContext, window: Period, spend_rows: list[AdDailyInsight]) -> list[dict[str, Any]]:
        buckets: dict[str, BucketStats] = defaultdict(BucketStats)
        for opp in ctx.opportunities:
            if not window.contains(opp.date_ms):
                continue
            bucket = buckets[self._local(opp.date_ms).strftime("%Y-%m")]
            bucket.leads += 1
            if opp.counts_as_sale:
                bucket.sales += 1
                bucket.revenue += opp.value
        for event in ctx.events:
            if not window.contains(event.start_ms):
                continue
            bucket = buckets[self._local(event.start_ms).strftime("%Y-%m")]
            bucket.appointments += 1
            if event.showed:
                bucket.calls_realized += 1
        for row in spend_rows:
            buckets[row.date.strftime("%Y-%m")].investment += float(row.spend or 0)

        return [
            {
                "month": month,
                "leads": b.leads,
                "sales": b.sales,
                "revenue": b.revenue,
                "investment": b.investment,
                "appointments": b.appointments,
                "calls_realized": b.calls_realized,
                "cpl": safe_ratio(b.investment, b.leads) or 0.0,
                "cpa": safe_ratio(b.investment, b.sales) or 0.0,
            }
            for month, b in sorted(buckets.items())
        ]

    def _link_spend(self, ctx: ReportContext, dim: str) -> dict[str, float] | None:
        if not ctx.link_opportunity_column or not ctx.link_ads_column or dim != ctx.link_opportunity_column:
            return None
        spend: dict[str, float] = defaultdict(float)
        for row in ctx.spend_rows:
            spend[dimension_label(getattr(row, ctx.link_ads_column, None))] += float(row.spend or 0)
        return spend

    def breakdown(
        self,
        ctx: ReportContext,
        dim: str,
        in_period: list[OpportunityFact],
        attribute_events: bool = False,
        sort_key: Callable[[GroupStats], Any] = attrgetter("leads"),
    ) -> list[dict[str, Any]]:
        groups: dict[str, GroupStats] = {}
        for opp in in_period:
            name = ctx.dimension_value(opp, dim)
            group = groups.setdefault(name, GroupStats(name=name))
            group.leads += 1
            if opp.counts_as_sale:
                group.sales += 1
                group.revenue += opp.value

        if attribute_events:
            for event in ctx.events:
                if not ctx.period.contains(event.start_ms):
                    continue
                utm = ctx.contact_utm.get(event.contact_id or "")
                if utm is None:
                    continue
                group = groups.setdefault(utm[dim], GroupStats(name=utm[dim]))
                group.appointments += 1
                if event.showed:
                    group.calls_realized += 1

        spend = self._link_spend(ctx, dim)
        if spend is not None:
            for name, group in groups.items():
                group.investment = spend.get(name, 0.0)

        ordered = sorted(apply_shares(list(groups.values())), key=sort_key, reverse=True)
        return [group.to_dict() for group in ordered]

    def compute_report(
        self,
        client_id: int,
        period: Period,
        filters: ReportFilters | None = None,
        row_dim: str = "source",
        col_dim: str = "responsible",
        year: int | None = None,
    ) -> dict[str, Any]:
        dataset = self.load_dataset(client_id, filters)
        dims = self.available_dimensions(dataset.mapping)
        known = {dim["id"] for dim in dims}
        for dim in (row_dim, col_dim):
            if dim not in known:
                raise ValidationError(f"Unknown dimension: {dim}")

        ctx = ReportContext(
            period=period,
            opportunities=dataset.opportunities,
            events=dataset.events,
            responsible_names=self._responsible_names(client_id),
            spend_rows=self._spend_rows(client_id, period),
            link_opportunity_column=dataset.mapping.link_columns.opportunity_column,
            link_ads_column=dataset.mapping.link_columns.ads_column,
        )
        in_period = [opp for opp in ctx.opportunities if period.contains(opp.date_ms)]
        ctx.contact_utm = contact_to_utm(in_period)

        monthly_window = self._year_period(year) if year is not None else period
        monthly_spend = self._spend_rows(client_id, monthly_window) if year is not None else ctx.spend_rows

        return {
            "series": self.series(ctx),
            "monthly": self.monthly(ctx, monthly_window, monthly_spend),
            "by_responsible": self.breakdown(ctx, "responsible", in_period, sort_key=attrgetter("sales")),
            "utm_campaign": self.breakdown(ctx, "utm_campaign", in_period, attribute_events=True),
            "utm_medium": self.breakdown(ctx, "utm_medium", in_period, attribute_events=True),
            "utm_content": self.breakdown(ctx, "utm_content", in_period, attribute_events=True),
            "by_source": self.breakdown(ctx, "source", in_period),
            "by_custom": {
                column.column_name: self.breakdown(ctx, column.column_name, in_period)
                for column in dataset.mapping.import_columns
            },
            "revenue_by_range": revenue_by_range(in_period),
            "cross_source_responsible": cross_matrix(ctx, in_period, "source", "responsible"),
            "cross_matrix": cross_matrix(ctx, in_period, row_dim, col_dim),
            "available_dimensions": dims,
            "errors": dataset.errors,
        }
