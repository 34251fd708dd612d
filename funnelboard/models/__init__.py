"""SQLAlchemy model package for the client-scoped reporting schema."""

from funnelboard.models.ad_insight import AdDailyInsight
from funnelboard.models.base import Base
from funnelboard.models.calendar import CalendarEvent, CrmCalendar
from funnelboard.models.client import Client
from funnelboard.models.crm_user import CrmUser
from funnelboard.models.location_predefinition import LocationPredefinition
from funnelboard.models.opportunity import Opportunity
from funnelboard.models.pipeline import Pipeline, PipelineStage

__all__ = [
    "AdDailyInsight",
    "Base",
    "CalendarEvent",
    "Client",
    "CrmCalendar",
    "CrmUser",
    "LocationPredefinition",
    "Opportunity",
    "Pipeline",
    "PipelineStage",
]
