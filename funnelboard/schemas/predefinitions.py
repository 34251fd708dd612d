"""Predefinitions and field-mapping request schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class NamedItem(BaseModel):
    id: str = Field(min_length=1, max_length=120)
    name: str | None = Field(default=None, max_length=255)


class UserItem(NamedItem):
    email: str | None = Field(default=None, max_length=255)


class PipelineSelection(NamedItem):
    stages: list[NamedItem] = Field(default_factory=list)


class PredefinitionsRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    pipelines: list[PipelineSelection] = Field(default_factory=list)
    calendars: list[NamedItem] = Field(default_factory=list)
    users: list[UserItem] = Field(default_factory=list)


class UtmMappingRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    utm_source_field_id: str | None = None
    utm_campaign_field_id: str | None = None
    utm_medium_field_id: str | None = None
    utm_term_field_id: str | None = None
    utm_content_field_id: str | None = None
    facebook_campaign_utm: str | None = None
    facebook_adset_utm: str | None = None
    facebook_creative_utm: str | None = None
    facebook_utm_source_terms: list[str] | None = None
    opportunity_ads_link_opportunity_column: str | None = None
    opportunity_ads_link_ads_column: str | None = None


class SaleDateFieldRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    field_id: str | None = Field(default=None, max_length=120)


class ImportCustomFieldsRequest(BaseModel):
    client_id: int | None = Field(default=None, ge=1)
    fields: list[NamedItem] = Field(default_factory=list)
