from __future__ import annotations

import json
from datetime import date, datetime, timezone

import pytest

from funnelboard.core.exceptions import ValidationError
from funnelboard.models import AdDailyInsight, CalendarEvent, Opportunity
from funnelboard.services.field_mapping import KEY_ADS_SOURCE_TERMS, KEY_SALE_DATE_FIELD_ID, FieldMapping, FieldMappingService
from funnelboard.services.indicator_service import (
    IndicatorService,
    Period,
    ReportDataset,
    ReportFilters,
    add_cost_metrics,
    null_failed,
    parse_period,
    previous_period,
    safe_ratio,
)


def _ms(*args) -> int:
    return int(datetime(*args, tzinfo=timezone.utc).timestamp() * 1000)


MARCH = Period(start_ms=_ms(2024, 3, 1), end_ms=_ms(2024, 4, 1) - 1)


def _opportunity(session, client_id: int, external_id: str, **values) -> Opportunity:
    defaults = {
        "status": "open",
        "monetary_value": 0,
        "date_added": datetime(2024, 3, 10, 12, tzinfo=timezone.utc),
    }
    defaults.update(values)
    row = Opportunity(client_id=client_id, external_id=external_id, **defaults)
    session.add(row)
    session.commit()
    return row


def _event(session, client_id: int, external_id: str, **values) -> CalendarEvent:
    defaults = {"start_time": datetime(2024, 3, 12, 15, tzinfo=timezone.utc)}
    defaults.update(values)
    row = CalendarEvent(client_id=client_id, external_id=external_id, **defaults)
    session.add(row)
    session.commit()
    return row


def test_won_opportunity_counts_on_creation_date_without_sale_date_mapping(session, client_row):
    _opportunity(session, client_row.id, "o1", status="won", monetary_value=5000)

    result = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)

    assert result["sale_date_field_id"] is None
    assert result["indicators"]["sales"] == 1
    assert result["indicators"]["revenue"] == 5000
    assert result["errors"] == []


def test_mapped_sale_date_missing_means_no_sale(session, client_row):
    FieldMappingService(db=session).set_value(client_row.id, KEY_SALE_DATE_FIELD_ID, "F1")
    _opportunity(session, client_row.id, "o1", status="won", monetary_value=5000)

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]

    assert indicators["sales"] == 0
    assert indicators["revenue"] == 0
    assert indicators["leads_qualified"] == 1


def test_mapped_sale_date_moves_sale_into_its_own_period(session, client_row):
    FieldMappingService(db=session).set_value(client_row.id, KEY_SALE_DATE_FIELD_ID, "F1")
    _opportunity(
        session,
        client_row.id,
        "o1",
        status="won",
        monetary_value=800,
        date_added=datetime(2024, 2, 20, tzinfo=timezone.utc),
        sale_date_value=datetime(2024, 3, 5, tzinfo=timezone.utc),
    )

    result = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)

    assert result["indicators"]["sales"] == 1
    assert result["indicators"]["revenue"] == 800
    assert result["previous_indicators"]["sales"] == 0


def test_ads_attribution_uses_configured_source_terms(session, client_row):
    FieldMappingService(db=session).set_value(client_row.id, KEY_ADS_SOURCE_TERMS, json.dumps(["facebook"]))
    _opportunity(session, client_row.id, "o1", utm_source="Facebook", contact_id="c1")
    _opportunity(session, client_row.id, "o2", utm_source="organic", contact_id="c2")
    _event(session, client_row.id, "e1", contact_id="c1", status="showed")
    _event(session, client_row.id, "e2", contact_id="c2", status="showed")

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]

    assert indicators["leads_qualified"] == 2
    assert indicators["leads_qualified_ads"] == 1
    assert indicators["calls_realized"] == 2
    assert indicators["calls_realized_ads"] == 1


def test_showed_status_is_case_insensitive(session, client_row):
    _event(session, client_row.id, "e1", status="Showed")
    _event(session, client_row.id, "e2", status="noshow")
    _event(session, client_row.id, "e3", status="showed", start_time=datetime(2024, 4, 2, tzinfo=timezone.utc))

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]

    assert indicators["calls_scheduled"] == 2
    assert indicators["calls_realized"] == 1
    assert indicators["show_rate"] == 50.0


def test_conversion_rate_counts_realized_calls_that_led_to_a_sale(session, client_row):
    _opportunity(session, client_row.id, "o1", status="won", monetary_value=100, contact_id="c1")
    _opportunity(session, client_row.id, "o2", status="open", contact_id="c2")
    _event(session, client_row.id, "e1", contact_id="c1", status="showed")
    _event(session, client_row.id, "e2", contact_id="c2", status="showed")

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]

    assert indicators["conversion_rate"] == 50.0


def test_appointments_created_falls_back_to_row_creation(session, client_row):
    _event(session, client_row.id, "e1", date_added=datetime(2024, 3, 3, tzinfo=timezone.utc))
    _event(session, client_row.id, "e2", date_added=datetime(2024, 2, 3, tzinfo=timezone.utc))

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]
    assert indicators["appointments_created"] == 1


def test_cost_metrics_use_ad_spend_in_period(session, client_row):
    _opportunity(session, client_row.id, "o1", status="won", monetary_value=1000)
    _opportunity(session, client_row.id, "o2")
    session.add_all(
        [
            AdDailyInsight(client_id=client_row.id, date=date(2024, 3, 2), ad_id="a1", spend=150.0),
            AdDailyInsight(client_id=client_row.id, date=date(2024, 3, 20), ad_id="a1", spend=50.0),
            AdDailyInsight(client_id=client_row.id, date=date(2024, 2, 20), ad_id="a1", spend=999.0),
        ]
    )
    session.commit()

    indicators = IndicatorService(db=session).compute_indicators(client_row.id, MARCH)["indicators"]

    assert indicators["investment"] == 200.0
    assert indicators["cost_per_lead"] == 100.0
    assert indicators["cost_per_sale"] == 200.0
    assert indicators["roas"] == 5.0
    assert indicators["cost_per_call"] is None


def test_filters_restrict_by_pipeline_and_source(session, client_row):
    _opportunity(session, client_row.id, "o1", pipeline_external_id="p1", source="Website")
    _opportunity(session, client_row.id, "o2", pipeline_external_id="p2", source="Website")
    _opportunity(session, client_row.id, "o3", pipeline_external_id="p1", source=None)

    service = IndicatorService(db=session)
    by_pipeline = service.compute_indicators(client_row.id, MARCH, ReportFilters.from_csv(pipeline_ids="p1"))
    by_source = service.compute_indicators(client_row.id, MARCH, ReportFilters.from_csv(sources="Website, —"))

    assert by_pipeline["indicators"]["leads_qualified"] == 2
    assert by_source["indicators"]["leads_qualified"] == 3


def test_other_clients_rows_are_invisible(session, make_client):
    make_client(1)
    make_client(2)
    _opportunity(session, 2, "o1", status="won", monetary_value=10)

    assert IndicatorService(db=session).compute_indicators(1, MARCH)["indicators"]["leads_qualified"] == 0


def test_compute_investment_includes_previous_period(session, client_row):
    session.add_all(
        [
            AdDailyInsight(client_id=client_row.id, date=date(2024, 3, 2), ad_id="a1", spend=10.0),
            AdDailyInsight(client_id=client_row.id, date=date(2024, 2, 10), ad_id="a1", spend=4.0),
        ]
    )
    session.commit()

    assert IndicatorService(db=session).compute_investment(client_row.id, MARCH) == {
        "total": 10.0,
        "previous_total": 4.0,
    }


def test_previous_period_is_adjacent_and_same_length():
    previous = previous_period(MARCH)
    assert previous.end_ms == MARCH.start_ms - 1
    assert previous.end_ms - previous.start_ms == MARCH.end_ms - MARCH.start_ms
    assert previous_period(Period(start_ms=5, end_ms=5)) is None


def test_parse_period_requires_numbers():
    assert parse_period("1000", "2000.0") == Period(start_ms=1000, end_ms=2000)
    with pytest.raises(ValidationError):
        parse_period(None, "2000")
    with pytest.raises(ValidationError):
        parse_period("abc", "2000")


def test_ratios_are_null_safe():
    assert safe_ratio(1, 0) is None
    assert safe_ratio(None, 4) is None
    assert safe_ratio(1, 4, 100) == 25.0

    metrics = add_cost_metrics({"leads_qualified": 0, "sales": 0, "revenue": 0, "calls_realized": 0}, None)
    assert metrics["cost_per_lead"] is None
    assert metrics["roas"] is None


def test_failed_sources_null_dependent_metrics():
    dataset = ReportDataset(mapping=FieldMapping(), errors=["Erro ao buscar oportunidades: timeout"])
    metrics = {
        "leads_qualified": 3,
        "sales": 1,
        "revenue": 10.0,
        "calls_realized": 2,
        "appointments_created": 2,
        "conversion_rate": 50.0,
    }
    add_cost_metrics(metrics, 20.0)
    null_failed(metrics, dataset)

    assert metrics["sales"] is None
    assert metrics["revenue"] is None
    assert metrics["conversion_rate"] is None
    assert metrics["cost_per_lead"] is None
    assert metrics["roas"] is None
    assert metrics["calls_realized"] == 2
    assert metrics["cost_per_call"] == 10.0
