"""Pydantic schema package for API contracts."""

from funnelboard.schemas.predefinitions import (
    ImportCustomFieldsRequest,
    NamedItem,
    PipelineSelection,
    PredefinitionsRequest,
    SaleDateFieldRequest,
    UserItem,
    UtmMappingRequest,
)
from funnelboard.schemas.sync import AdsSyncRequest, SyncRequest

__all__ = [
    "AdsSyncRequest",
    "ImportCustomFieldsRequest",
    "NamedItem",
    "PipelineSelection",
    "PredefinitionsRequest",
    "SaleDateFieldRequest",
    "SyncRequest",
    "UserItem",
    "UtmMappingRequest",
]
