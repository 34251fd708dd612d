from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from funnelboard.core.exceptions import ValidationError
from funnelboard.models import CrmCalendar, CrmUser, Opportunity, Pipeline, PipelineStage
from funnelboard.services.field_mapping import KEY_ADS_SOURCE_TERMS, FieldMappingService
from funnelboard.services.predefinitions_service import PredefinitionsService


def _pipelines(*ids_with_stages):
    return [
        {"id": pipeline_id, "name": pipeline_id.upper(), "stages": [{"id": sid, "name": sid} for sid in stage_ids]}
        for pipeline_id, stage_ids in ids_with_stages
    ]


def test_save_predefinitions_deactivates_everything_not_submitted(session, client_row):
    service = PredefinitionsService(db=session)
    service.save_predefinitions(
        client_row.id,
        pipelines=_pipelines(("p1", ["s1", "s2"]), ("p2", ["s3"])),
        calendars=[{"id": "cal1", "name": "Demo"}, {"id": "cal2", "name": "Intro"}],
        users=[{"id": "u1", "name": "Ana", "email": "ana@example.com"}],
    )

    saved = service.save_predefinitions(
        client_row.id,
        pipelines=_pipelines(("p1", ["s1"])),
        calendars=[{"id": "cal2", "name": "Intro"}],
        users=[],
    )

    assert (saved.pipelines, saved.stages, saved.calendars, saved.users) == (1, 1, 1, 0)
    pipelines = {row.external_id: row.active for row in session.scalars(select(Pipeline))}
    stages = {row.external_id: row.active for row in session.scalars(select(PipelineStage))}
    calendars = {row.external_id: row.active for row in session.scalars(select(CrmCalendar))}
    users = {row.external_id: row.active for row in session.scalars(select(CrmUser))}
    assert pipelines == {"p1": True, "p2": False}
    assert stages == {"s1": True, "s2": False, "s3": False}
    assert calendars == {"cal1": False, "cal2": True}
    assert users == {"u1": False}
    assert service.last_saved_at(client_row.id) == saved.saved_at


def test_resubmitting_reactivates_rows(session, client_row):
    service = PredefinitionsService(db=session)
    service.save_predefinitions(client_row.id, _pipelines(("p1", ["s1"])), [], [])
    service.save_predefinitions(client_row.id, [], [], [])
    service.save_predefinitions(client_row.id, _pipelines(("p1", ["s1"])), [], [])

    assert session.scalars(select(Pipeline)).one().active
    assert session.scalars(select(PipelineStage)).one().active


def test_save_utm_mapping_replaces_whole_set(session, client_row):
    service = PredefinitionsService(db=session)
    service.save_utm_mapping(
        client_row.id,
        {
            "utm_source_field_id": "U1",
            "utm_campaign_field_id": "U2",
            KEY_ADS_SOURCE_TERMS: ["Facebook", " facebook ", "IG"],
            "opportunity_ads_link_opportunity_column": "utm_campaign",
            "opportunity_ads_link_ads_column": "campaign_name",
        },
    )
    values = service.save_utm_mapping(client_row.id, {"utm_source_field_id": "U9"})

    mapping = FieldMappingService(db=session).resolve(client_row.id)
    assert mapping.utm_field_ids["source"] == "U9"
    assert mapping.utm_field_ids["campaign"] is None
    assert mapping.ads_attribution_terms == frozenset()
    assert not mapping.link_columns.is_configured
    assert values[KEY_ADS_SOURCE_TERMS] is None


def test_source_terms_are_stored_as_unique_lowercase_json(session, client_row):
    values = PredefinitionsService(db=session).save_utm_mapping(
        client_row.id, {KEY_ADS_SOURCE_TERMS: ["Facebook", " facebook ", "IG", ""]}
    )
    assert json.loads(values[KEY_ADS_SOURCE_TERMS]) == ["facebook", "ig"]


@pytest.mark.parametrize(
    "payload",
    [
        {"opportunity_ads_link_opportunity_column": "name"},
        {"opportunity_ads_link_ads_column": "spend"},
        {"facebook_campaign_utm": "campaign"},
    ],
)
def test_invalid_column_choices_are_rejected(session, client_row, payload):
    with pytest.raises(ValidationError):
        PredefinitionsService(db=session).save_utm_mapping(client_row.id, payload)


def test_import_custom_fields_returns_sanitized_columns(session, client_row):
    service = PredefinitionsService(db=session)
    columns = service.save_import_custom_fields(
        client_row.id,
        [{"id": "abc-1", "name": "Plano"}, {"id": "abc-1", "name": "dup"}, {"id": " ", "name": "blank"}, {"id": "x.y"}],
    )

    assert columns == [
        {"id": "abc-1", "name": "Plano", "column": "cf_abc_1"},
        {"id": "x.y", "name": "x.y", "column": "cf_x_y"},
    ]
    assert [column.column_name for column in FieldMappingService(db=session).resolve(client_row.id).import_columns] == [
        "cf_abc_1",
        "cf_x_y",
    ]


def test_sale_date_field_can_be_cleared(session, client_row):
    service = PredefinitionsService(db=session)
    assert service.save_sale_date_field(client_row.id, " F1 ") == "F1"
    assert service.save_sale_date_field(client_row.id, "") is None
    assert FieldMappingService(db=session).resolve(client_row.id).sale_date_field_id is None


def test_utm_source_suggestions_are_distinct_and_sorted(session, client_row):
    session.add_all(
        [
            Opportunity(client_id=client_row.id, external_id="o1", utm_source="instagram"),
            Opportunity(client_id=client_row.id, external_id="o2", utm_source="facebook"),
            Opportunity(client_id=client_row.id, external_id="o3", utm_source="facebook"),
            Opportunity(client_id=client_row.id, external_id="o4", utm_source=None),
        ]
    )
    session.commit()

    assert PredefinitionsService(db=session).utm_source_suggestions(client_row.id) == ["facebook", "instagram"]
