"""Period indicators computed from the persisted opportunity and event rows."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Select, func, select
from sqlalchemy.exc import SQLAlchemyError

from funnelboard.core.enums import EVENT_STATUS_SHOWED, UNKNOWN_LABEL, OpportunityStatus
from funnelboard.core.exceptions import ValidationError
from funnelboard.models import AdDailyInsight, CalendarEvent, Opportunity
from funnelboard.services.base_service import BaseService
from funnelboard.services.field_mapping import FieldMapping, FieldMappingService
from funnelboard.services.payload_normalizer import to_ms

logger = logging.getLogger(__name__)

SCAN_PAGE_SIZE = 1000
# Subjects the caller matches on to null dependent metrics.
SUBJECT_OPPORTUNITIES = "oportunidades"
SUBJECT_EVENTS = "calendário"
SUBJECT_INVESTMENT = "investimento"

OPPORTUNITY_METRICS = ("leads_qualified", "leads_qualified_ads", "sales", "sales_ads", "revenue", "revenue_ads")
EVENT_METRICS = (
    "calls_scheduled",
    "calls_scheduled_ads",
    "calls_realized",
    "calls_realized_ads",
    "appointments_created",
    "appointments_created_ads",
    "show_rate",
)


@dataclass(frozen=True)
class Period:
    start_ms: int
    end_ms: int

    def contains(self, ms: int | None) -> bool:
        return ms is not None and self.start_ms <= ms <= self.end_ms

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start_ms, "end": self.end_ms}


def previous_period(period: Period) -> Period | None:
    """Immediately preceding window of identical length, or None for empty periods."""
    length = period.end_ms - period.start_ms
    if length <= 0:
        return None
    previous_end = period.start_ms - 1
    return Period(start_ms=previous_end - length, end_ms=previous_end)


def parse_period(start: Any, end: Any) -> Period:
    try:
        start_ms = int(float(start))
        end_ms = int(float(end))
    except (TypeError, ValueError) as exc:
        raise ValidationError("Query start and end (ms) are required.") from exc
    return Period(start_ms=start_ms, end_ms=end_ms)


def safe_ratio(numerator: float | None, denominator: float | None, scale: float = 1.0) -> float | None:
    """``numerator / denominator * scale``; None when either side is missing or zero."""
    if numerator is None or not denominator:
        return None
    return numerator / denominator * scale


def dimension_label(value: Any) -> str:
    text = str(value).strip() if value is not None else ""
    return text or UNKNOWN_LABEL


@dataclass(frozen=True)
class ReportFilters:
    pipeline_ids: tuple[str, ...] = ()
    sources: tuple[str, ...] = ()

    @classmethod
    def from_csv(cls, pipeline_ids: str | None = None, sources: str | None = None) -> "ReportFilters":
        def _split(raw: str | None) -> tuple[str, ...]:
            return tuple(part.strip() for part in (raw or "").split(",") if part.strip())

        return cls(pipeline_ids=_split(pipeline_ids), sources=_split(sources))

    def accepts(self, opportunity: "OpportunityFact") -> bool:
        if self.pipeline_ids and opportunity.pipeline_id not in self.pipeline_ids:
            return False
        if self.sources and dimension_label(opportunity.source) not in self.sources:
            return False
        return True


@dataclass
class OpportunityFact:
    """Read-side view of one opportunity with its effective date resolved."""

    external_id: str
    pipeline_id: str | None
    status: str | None
    value: float
    contact_id: str | None
    assigned_to: str | None
    source: str | None
    utm: dict[str, str | None]
    custom_fields: dict[str, Any]
    date_ms: int | None
    has_sale_date: bool
    is_ads: bool

    @property
    def is_won(self) -> bool:
        return self.status == OpportunityStatus.WON.value

    @property
    def counts_as_sale(self) -> bool:
        return self.is_won and self.has_sale_date


@dataclass
class EventFact:
    start_ms: int | None
    created_ms: int | None
    status: str | None
    contact_id: str | None

    @property
    def showed(self) -> bool:
        return (self.status or "").strip().lower() == EVENT_STATUS_SHOWED


@dataclass
class ReportDataset:
    mapping: FieldMapping
    opportunities: list[OpportunityFact] = field(default_factory=list)
    events: list[EventFact] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def opportunities_failed(self) -> bool:
        return any(SUBJECT_OPPORTUNITIES in error for error in self.errors)

    @property
    def events_failed(self) -> bool:
        return any(SUBJECT_EVENTS in error or "agendamentos" in error for error in self.errors)


def to_fact(row: Opportunity, mapping: FieldMapping) -> OpportunityFact:
    sale_date_ms = to_ms(row.sale_date_value)
    created_ms = to_ms(row.date_added) or to_ms(row.created_at)
    mapped = mapping.sale_date_field_id is not None
    utm = {
        "utm_source": row.utm_source,
        "utm_campaign": row.utm_campaign,
        "utm_medium": row.utm_medium,
        "utm_term": row.utm_term,
        "utm_content": row.utm_content,
    }
    return OpportunityFact(
        external_id=row.external_id,
        pipeline_id=row.pipeline_external_id,
        status=row.status,
        value=float(row.monetary_value or 0),
        contact_id=row.contact_id,
        assigned_to=row.assigned_to,
        source=row.source,
        utm=utm,
        custom_fields=dict(row.custom_fields or {}),
        date_ms=sale_date_ms if mapped and sale_date_ms is not None else created_ms,
        has_sale_date=not mapped or sale_date_ms is not None,
        is_ads=mapping.is_ads_source(row.utm_source),
    )


def period_metrics(
    opportunities: Iterable[OpportunityFact],
    events: Iterable[EventFact],
    period: Period,
) -> dict[str, Any]:
    """Funnel counts for one window; event ads-attribution goes through contact ids."""
    in_period = [opp for opp in opportunities if period.contains(opp.date_ms)]
    ads = [opp for opp in in_period if opp.is_ads]
    sales = [opp for opp in in_period if opp.counts_as_sale]
    sales_ads = [opp for opp in ads if opp.counts_as_sale]
    ads_contacts = {opp.contact_id for opp in ads if opp.contact_id}
    sale_contacts = {opp.contact_id for opp in sales if opp.contact_id}

    events = list(events)
    scheduled = [event for event in events if period.contains(event.start_ms)]
    realized = [event for event in scheduled if event.showed]
    created = [event for event in events if period.contains(event.created_ms)]
    realized_with_sale = [event for event in realized if event.contact_id in sale_contacts]

    def _ads_events(items: list[EventFact]) -> int:
        return sum(1 for event in items if event.contact_id and event.contact_id in ads_contacts)

    return {
        "leads_qualified": len(in_period),
        "leads_qualified_ads": len(ads),
        "sales": len(sales),
        "sales_ads": len(sales_ads),
        "revenue": sum(opp.value for opp in sales),
        "revenue_ads": sum(opp.value for opp in sales_ads),
        "calls_scheduled": len(scheduled),
        "calls_scheduled_ads": _ads_events(scheduled),
        "calls_realized": len(realized),
        "calls_realized_ads": _ads_events(realized),
        "appointments_created": len(created),
        "appointments_created_ads": _ads_events(created),
        "conversion_rate": safe_ratio(len(realized_with_sale), len(realized), 100),
        "show_rate": safe_ratio(len(realized), len(scheduled), 100),
    }


def add_cost_metrics(metrics: dict[str, Any], investment: float | None) -> dict[str, Any]:
    metrics["investment"] = investment
    metrics["cost_per_lead"] = safe_ratio(investment, metrics.get("leads_qualified"))
    metrics["cost_per_appointment"] = safe_ratio(investment, metrics.get("appointments_created"))
    metrics["cost_per_call"] = safe_ratio(investment, metrics.get("calls_realized"))
    metrics["cost_per_sale"] = safe_ratio(investment, metrics.get("sales"))
    metrics["roas"] = safe_ratio(metrics.get("revenue"), investment)
    return metrics


def null_failed(metrics: dict[str, Any], dataset: ReportDataset, investment_failed: bool = False) -> dict[str, Any]:
    """Blank out metrics whose source could not be read."""
    if dataset.opportunities_failed:
        for key in OPPORTUNITY_METRICS:
            metrics[key] = None
    if dataset.events_failed:
        for key in EVENT_METRICS:
            metrics[key] = None
    if dataset.opportunities_failed or dataset.events_failed:
        metrics["conversion_rate"] = None
    if investment_failed:
        metrics["investment"] = None
    if "investment" in metrics:
        for key, numerator, denominator in (
            ("cost_per_lead", "investment", "leads_qualified"),
            ("cost_per_appointment", "investment", "appointments_created"),
            ("cost_per_call", "investment", "calls_realized"),
            ("cost_per_sale", "investment", "sales"),
            ("roas", "revenue", "investment"),
        ):
            if metrics.get(numerator) is None or metrics.get(denominator) is None:
                metrics[key] = None
    return metrics


def _utc_date(ms: int):
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).date()


class IndicatorService(BaseService):
    """Reads a client's full record set page by page and aggregates in process."""

    def _scan(self, stmt: Select, order_column) -> Iterator[Any]:
        offset = 0
        while True:
            page = self.db.scalars(stmt.order_by(order_column).offset(offset).limit(SCAN_PAGE_SIZE)).all()
            yield from page
            if len(page) < SCAN_PAGE_SIZE:
                return
            offset += SCAN_PAGE_SIZE

    def load_dataset(self, client_id: int, filters: ReportFilters | None = None) -> ReportDataset:
        filters = filters or ReportFilters()
        dataset = ReportDataset(mapping=FieldMappingService(db=self.db).resolve(client_id))

        try:
            rows = self._scan(select(Opportunity).where(Opportunity.client_id == client_id), Opportunity.id)
            facts = (to_fact(row, dataset.mapping) for row in rows)
            dataset.opportunities = [fact for fact in facts if filters.accepts(fact)]
        except SQLAlchemyError as exc:
            self.rollback()
            dataset.errors.append(f"Erro ao buscar {SUBJECT_OPPORTUNITIES}: {exc}")
            logger.error("report.load.failed", extra={"event": "report.load.failed", "client_id": client_id, "error": str(exc)})

        try:
            rows = self._scan(select(CalendarEvent).where(CalendarEvent.client_id == client_id), CalendarEvent.id)
            dataset.events = [
                EventFact(
                    start_ms=to_ms(row.start_time),
                    created_ms=to_ms(row.date_added) or to_ms(row.created_at),
                    status=row.status,
                    contact_id=row.contact_id,
                )
                for row in rows
            ]
        except SQLAlchemyError as exc:
            self.rollback()
            dataset.errors.append(f"Erro ao buscar eventos de {SUBJECT_EVENTS}: {exc}")
            logger.error("report.load.failed", extra={"event": "report.load.failed", "client_id": client_id, "error": str(exc)})
        return dataset

    def ad_spend(self, client_id: int, period: Period) -> float:
        """Spend of every stored ad-day whose UTC date falls inside the period."""
        total = self.db.scalar(
            select(func.coalesce(func.sum(AdDailyInsight.spend), 0.0)).where(
                AdDailyInsight.client_id == client_id,
                AdDailyInsight.date >= _utc_date(period.start_ms),
                AdDailyInsight.date <= _utc_date(period.end_ms),
            )
        )
        return float(total or 0)

    def compute_investment(self, client_id: int, period: Period) -> dict[str, Any]:
        previous = previous_period(period)
        return {
            "total": self.ad_spend(client_id, period),
            "previous_total": self.ad_spend(client_id, previous) if previous else None,
        }

    def _investment(self, client_id: int, period: Period, errors: list[str]) -> float | None:
        try:
            return self.ad_spend(client_id, period)
        except SQLAlchemyError as exc:
            self.rollback()
            errors.append(f"Erro ao buscar {SUBJECT_INVESTMENT}: {exc}")
            return None

    def compute_indicators(self, client_id: int, period: Period, filters: ReportFilters | None = None) -> dict[str, Any]:
        dataset = self.load_dataset(client_id, filters)
        previous = previous_period(period)
        errors = list(dataset.errors)

        investment = self._investment(client_id, period, errors)
        indicators = add_cost_metrics(period_metrics(dataset.opportunities, dataset.events, period), investment)
        null_failed(indicators, dataset, investment_failed=investment is None)

        previous_indicators = None
        if previous is not None:
            previous_investment = self._investment(client_id, previous, errors)
            previous_indicators = add_cost_metrics(
                period_metrics(dataset.opportunities, dataset.events, previous), previous_investment
            )
            null_failed(previous_indicators, dataset, investment_failed=previous_investment is None)

        return {
            "sale_date_field_id": dataset.mapping.sale_date_field_id,
            "period": period.to_dict(),
            "previous_period": previous.to_dict() if previous else None,
            "indicators": indicators,
            "previous_indicators": previous_indicators,
            "errors": errors,
        }
