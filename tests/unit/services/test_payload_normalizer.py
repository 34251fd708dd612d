from __future__ import annotations

from datetime import datetime, timezone

from funnelboard.services.payload_normalizer import (
    extract_sale_date,
    has_custom_fields_payload,
    normalize_custom_fields,
    resolve_contact_id,
    resolve_created_at,
    resolve_stage_id,
    to_datetime,
    to_ms,
    to_number,
)


def test_alternate_key_names_resolve_in_order():
    assert resolve_stage_id({"pipelineStageId": "s-2"}) == "s-2"
    assert resolve_stage_id({"stageId": "s-1", "pipelineStageId": "s-2"}) == "s-1"
    assert resolve_stage_id({"stageId": "  ", "pipeline_stage_id": "s-3"}) == "s-3"
    assert resolve_created_at({"createdAt": "2024-03-10T10:00:00Z"}) == "2024-03-10T10:00:00Z"
    assert resolve_stage_id(None) is None


def test_contact_id_falls_back_to_nested_contact():
    assert resolve_contact_id({"contactId": "c-1"}) == "c-1"
    assert resolve_contact_id({"contact": {"id": "c-2"}}) == "c-2"
    assert resolve_contact_id({"contact": "c-3"}) is None


def test_custom_fields_list_shape_collapses_to_scalars():
    raw = [
        {"id": "F1", "fieldValueString": " Facebook "},
        {"fieldId": "F2", "fieldValueNumber": 12},
        {"key": "F3", "fieldValueBoolean": True},
        {"id": "F4", "values": ["first", "second"]},
        {"id": "F5"},
        {"fieldValue": "orphan"},
        "not-a-dict",
    ]
    assert normalize_custom_fields(raw) == {
        "F1": "Facebook",
        "F2": 12,
        "F3": "true",
        "F4": "first",
        "F5": None,
    }


def test_custom_fields_mapping_shape_and_garbage():
    assert normalize_custom_fields({"F1": " x ", "F2": float("nan")}) == {"F1": "x", "F2": None}
    assert normalize_custom_fields(None) == {}
    assert normalize_custom_fields("oops") == {}


def test_to_datetime_accepts_epoch_iso_and_day_first():
    expected = datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert to_datetime(1710028800000) == expected
    assert to_datetime("1710028800000") == expected
    assert to_datetime("2024-03-10T00:00:00Z") == expected
    assert to_datetime("2024-03-10") == expected
    assert to_datetime("10/03/2024") == expected
    assert to_datetime("not a date") is None
    assert to_datetime(True) is None
    assert to_ms(expected) == 1710028800000


def test_to_number_rejects_non_finite_and_bools():
    assert to_number("12.5") == 12.5
    assert to_number(True) is None
    assert to_number("inf") is None
    assert to_number("abc") is None


def test_extract_sale_date_prefers_date_typed_value():
    raw = [{"id": "F1", "fieldValueDate": 1710028800000, "fieldValueString": "ignored"}]
    assert extract_sale_date(raw, "F1") == datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert extract_sale_date(raw, "F9") is None
    assert extract_sale_date(raw, None) is None
    assert extract_sale_date([{"id": "F1", "fieldValueString": ""}], "F1") is None
    assert extract_sale_date({"F1": "2024-03-10"}, "F1") == datetime(2024, 3, 10, tzinfo=timezone.utc)


def test_has_custom_fields_payload_treats_empty_as_absent():
    assert has_custom_fields_payload({"customFields": [{"id": "F1"}]})
    assert not has_custom_fields_payload({"customFields": []})
    assert not has_custom_fields_payload({"customFields": {}})
    assert not has_custom_fields_payload({})
