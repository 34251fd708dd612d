"""HTTP client for the CRM platform (LeadConnector-compatible API)."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import requests

from funnelboard.core.config import Config, get_config
from funnelboard.core.enums import FilterAxis
from funnelboard.core.exceptions import ConfigurationError, CrmApiError
from funnelboard.services.payload_normalizer import CREATED_AT_KEYS, UPDATED_AT_KEYS, first_present, to_ms

logger = logging.getLogger(__name__)

OPPORTUNITIES_PAGE_SIZE = 100
OPPORTUNITIES_MAX_PAGES = 500
CREDENTIALS_EXPIRED_MESSAGE = "CRM API key invalid or expired. Update the client credentials."
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}

_RATE_LOCK = threading.Lock()
_LAST_REQUEST_TS = 0.0


def _apply_rate_limit(min_interval_seconds: float) -> None:
    global _LAST_REQUEST_TS
    if min_interval_seconds <= 0:
        return

    with _RATE_LOCK:
        now = time.monotonic()
        elapsed = now - _LAST_REQUEST_TS
        if elapsed < min_interval_seconds:
            time.sleep(min_interval_seconds - elapsed)
        _LAST_REQUEST_TS = time.monotonic()


def format_crm_date(ms: int) -> str:
    """Search endpoint dates are ``MM-DD-YYYY`` in UTC."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%m-%d-%Y")


def parse_crm_error(response: requests.Response) -> CrmApiError:
    status_code = response.status_code
    message = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        status_code = int(body.get("statusCode") or status_code)
        raw_message = body.get("message")
        if isinstance(raw_message, list):
            raw_message = "; ".join(str(item) for item in raw_message)
        message = raw_message
    if status_code == 401 or response.status_code == 401:
        return CrmApiError(CREDENTIALS_EXPIRED_MESSAGE, 401)
    return CrmApiError(str(message or response.text or f"CRM API: {status_code}"), status_code)


def _as_list(body: Any, *keys: str) -> list[dict[str, Any]]:
    value: Any = body
    if isinstance(body, dict):
        value = None
        for key in keys:
            if body.get(key) is not None:
                value = body[key]
                break
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _within(ms: int | None, since_ms: int | None, until_ms: int | None) -> bool:
    # Records without a usable date are kept; the caller decides later.
    if ms is None:
        return True
    if since_ms is not None and ms < since_ms:
        return False
    if until_ms is not None and ms > until_ms:
        return False
    return True


class CrmClient:
    """Thin wrapper over the CRM REST endpoints used by the sync."""

    def __init__(self, api_key: str | None, location_id: str | None, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.api_key = (api_key or "").strip()
        self.location_id = (location_id or "").strip()
        if not self.api_key:
            raise ConfigurationError("CRM API key is not configured for this client.")
        if not self.location_id or self.location_id == "undefined":
            raise ConfigurationError("CRM location id is not configured for this client.")

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": self.config.CRM_API_VERSION,
            "Location-Id": self.location_id,
        }

    def _request(self, path: str, params: dict[str, Any] | None = None) -> Any:
        url = f"{self.config.CRM_BASE_URL}{path}"
        total_attempts = self.config.CRM_MAX_RETRIES + 1
        last_error: Exception | None = None

        for attempt in range(1, total_attempts + 1):
            _apply_rate_limit(self.config.CRM_MIN_INTERVAL_SECONDS)
            try:
                response = requests.request(
                    "GET",
                    url,
                    headers=self.headers,
                    params=params,
                    timeout=(5, self.config.CRM_TIMEOUT_SECONDS),
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_error = exc
                logger.warning(
                    "crm.request.failed",
                    extra={"event": "crm.request.failed", "attempt": attempt, "error": str(exc)},
                )
                if attempt < total_attempts:
                    time.sleep(min(2 * attempt, 5))
                    continue
                raise CrmApiError(f"CRM platform unreachable: {exc}", 503) from exc

            if response.ok:
                try:
                    return response.json()
                except ValueError as exc:
                    raise CrmApiError("CRM platform returned a non-JSON body.", 502) from exc

            error = parse_crm_error(response)
            last_error = error
            logger.warning(
                "crm.request.failed",
                extra={
                    "event": "crm.request.failed",
                    "attempt": attempt,
                    "status_code": response.status_code,
                    "error": error.message,
                },
            )
            if response.status_code in _RETRYABLE_STATUS and attempt < total_attempts:
                time.sleep(min(2 * attempt, 5))
                continue
            raise error

        raise CrmApiError(str(last_error or "CRM request failed."), 502)

    def list_pipelines(self) -> list[dict[str, Any]]:
        body = self._request("/opportunities/pipelines/", {"locationId": self.location_id})
        return _as_list(body, "pipelines")

    def list_pipeline_stages(self, pipeline_id: str) -> list[dict[str, Any]]:
        body = self._request(f"/opportunities/pipelines/{pipeline_id}/stages/", {"locationId": self.location_id})
        return [dict(stage, pipelineId=pipeline_id) for stage in _as_list(body, "stages")]

    def list_calendars(self) -> list[dict[str, Any]]:
        return _as_list(self._request("/calendars/", {"locationId": self.location_id}), "calendars")

    def list_users(self) -> list[dict[str, Any]]:
        return _as_list(self._request("/users/", {"locationId": self.location_id}), "users")

    def list_opportunity_custom_fields(self) -> list[dict[str, Any]]:
        body = self._request(f"/locations/{self.location_id}/customFields", {"model": "opportunity"})
        return [
            {"id": item.get("id") or "", "name": item.get("name") or "", "dataType": item.get("dataType")}
            for item in _as_list(body, "customFields", "data")
        ]

    def get_opportunity(self, opportunity_id: str) -> dict[str, Any]:
        oid = (opportunity_id or "").strip()
        if not oid:
            raise CrmApiError("opportunity id is required", 400)
        body = self._request(f"/opportunities/{oid}", {"locationId": self.location_id})
        if isinstance(body, dict) and isinstance(body.get("opportunity"), dict):
            return body["opportunity"]
        return body if isinstance(body, dict) else {}

    def search_opportunities(
        self,
        pipeline_id: str | None = None,
        stage_id: str | None = None,
        since_ms: int | None = None,
        until_ms: int | None = None,
        filter_by: FilterAxis = FilterAxis.CREATED,
        max_pages: int = OPPORTUNITIES_MAX_PAGES,
    ) -> list[dict[str, Any]]:
        """Page through opportunity search, dedupe by id, then window-filter."""
        params: dict[str, Any] = {"location_id": self.location_id, "limit": OPPORTUNITIES_PAGE_SIZE}
        if pipeline_id:
            params["pipeline_id"] = pipeline_id
        if stage_id:
            params["pipeline_stage_id"] = stage_id
        if since_ms is not None:
            params["date"] = format_crm_date(since_ms)
        if until_ms is not None:
            params["endDate"] = format_crm_date(until_ms)

        collected: dict[str, dict[str, Any]] = {}
        page = 1
        while page <= max_pages:
            body = self._request("/opportunities/search", dict(params, page=page))
            items = [item for item in _as_list(body, "opportunities", "data") if item.get("id")]
            added = 0
            for item in items:
                if item["id"] not in collected:
                    collected[item["id"]] = item
                    added += 1

            meta = body.get("meta") if isinstance(body, dict) else None
            if not items or len(items) < OPPORTUNITIES_PAGE_SIZE:
                break
            if isinstance(meta, dict) and "nextPage" in meta and meta["nextPage"] is None:
                break
            if added == 0:
                break
            page += 1

        opportunities = list(collected.values())
        if since_ms is None and until_ms is None:
            return opportunities
        keys = UPDATED_AT_KEYS if filter_by is FilterAxis.UPDATED else CREATED_AT_KEYS
        return [opp for opp in opportunities if _within(to_ms(first_present(opp, keys)), since_ms, until_ms)]

    def list_calendar_events(self, calendar_id: str, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        body = self._request(
            "/calendars/events",
            {
                "locationId": self.location_id,
                "calendarId": calendar_id,
                "startTime": str(start_ms),
                "endTime": str(end_ms),
            },
        )
        events = _as_list(body, "events", "appointments", "data")
        for event in events:
            if event.get("status") is None and event.get("appointmentStatus") is not None:
                event["status"] = event["appointmentStatus"]
        return events

    def list_events_for_calendars(self, calendar_ids: Iterable[str], start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        merged: dict[str, dict[str, Any]] = {}
        for calendar_id in calendar_ids:
            for event in self.list_calendar_events(calendar_id, start_ms, end_ms):
                event_id = event.get("id")
                if event_id and event_id not in merged:
                    merged[event_id] = event
        return list(merged.values())
