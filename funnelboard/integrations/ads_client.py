"""HTTP client for the ads platform (Graph-style Marketing API)."""

from __future__ import annotations

import json
import logging
from typing import Any

import requests

from funnelboard.core.config import Config, get_config
from funnelboard.core.exceptions import AdsApiError, ConfigurationError

logger = logging.getLogger(__name__)

AD_NAMES_CHUNK = 50
MAX_INSIGHT_PAGES = 200
TOKEN_EXPIRED_MESSAGE = "Ads access token invalid or expired. Generate a new token and update the client credentials."
DEFAULT_INSIGHT_FIELDS = "impressions,clicks,spend,ctr,cpc,cpm,reach,frequency"
DAILY_INSIGHT_FIELDS = "ad_id,campaign_id,adset_id,impressions,clicks,spend"


def normalize_ad_account_id(ad_account_id: str | None) -> str:
    raw = (ad_account_id or "").strip()
    if not raw:
        raise ConfigurationError("Ad account id is required.")
    return raw if raw.startswith("act_") else f"act_{raw}"


def _ads_error(response: requests.Response, fallback: str) -> AdsApiError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    error = error if isinstance(error, dict) else {}
    code = error.get("code")
    if response.status_code == 401 or code == 190:
        return AdsApiError(TOKEN_EXPIRED_MESSAGE, 401, code)
    status_code = response.status_code if response.status_code >= 400 else 502
    return AdsApiError(str(error.get("message") or fallback), status_code, code)


class AdsClient:
    def __init__(self, access_token: str | None, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.access_token = (access_token or "").strip()
        if not self.access_token:
            raise ConfigurationError("Ads access token is not configured for this client.")

    def _url(self, path: str) -> str:
        return f"{self.config.ADS_GRAPH_URL}/{self.config.ADS_API_VERSION}{path}"

    def _get(self, url: str, params: dict[str, Any] | None, fallback: str) -> dict[str, Any]:
        query = None
        if params is not None:
            query = dict(params, access_token=self.access_token)
        try:
            response = requests.request("GET", url, params=query, timeout=(5, self.config.ADS_TIMEOUT_SECONDS))
        except requests.exceptions.RequestException as exc:
            logger.warning("ads.request.failed", extra={"event": "ads.request.failed", "error": str(exc)})
            raise AdsApiError(f"Ads platform unreachable: {exc}", 503) from exc
        if not response.ok:
            error = _ads_error(response, fallback)
            logger.warning(
                "ads.request.failed",
                extra={"event": "ads.request.failed", "status_code": error.status_code, "error": error.message},
            )
            raise error
        try:
            body = response.json()
        except ValueError as exc:
            raise AdsApiError("Ads platform returned a non-JSON body.", 502) from exc
        return body if isinstance(body, dict) else {}

    def _collect(self, path: str, params: dict[str, Any], fallback: str) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        url: str | None = self._url(path)
        query: dict[str, Any] | None = params
        pages = 0
        while url and pages < MAX_INSIGHT_PAGES:
            body = self._get(url, query, fallback)
            data = body.get("data")
            if isinstance(data, list):
                rows.extend(item for item in data if isinstance(item, dict))
            paging = body.get("paging") if isinstance(body.get("paging"), dict) else {}
            url = paging.get("next")
            # ``next`` already carries the full query string.
            query = None
            pages += 1
        return rows

    def list_ad_accounts(self) -> list[dict[str, Any]]:
        return self._collect("/me/adaccounts", {"fields": "id,name,account_id,account_status"}, "Failed to list ad accounts")

    def list_campaigns(self, ad_account_id: str, status: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"fields": "id,name,status,objective,created_time,updated_time"}
        if status:
            params["filtering"] = json.dumps([{"field": "campaign.effective_status", "operator": "IN", "value": [status]}])
        return self._collect(f"/{normalize_ad_account_id(ad_account_id)}/campaigns", params, "Failed to list campaigns")

    def get_insights(
        self,
        ad_account_id: str,
        level: str | None = None,
        date_preset: str | None = None,
        since: str | None = None,
        until: str | None = None,
        fields: str = DEFAULT_INSIGHT_FIELDS,
        time_increment: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"fields": fields}
        if level:
            params["level"] = level
        if date_preset:
            params["date_preset"] = date_preset
        if since:
            params["time_range"] = json.dumps({"since": since, "until": until or since})
        if time_increment:
            params["time_increment"] = str(time_increment)
        return self._collect(f"/{normalize_ad_account_id(ad_account_id)}/insights", params, "Failed to fetch insights")

    def get_daily_insights(self, ad_account_id: str, since: str, until: str) -> list[dict[str, Any]]:
        """One row per ad per day in ``[since, until]`` (``YYYY-MM-DD``)."""
        return self.get_insights(
            ad_account_id, level="ad", since=since, until=until, fields=DAILY_INSIGHT_FIELDS, time_increment=1
        )

    def get_ad_names(self, ad_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Batch-resolve ad, campaign and adset names keyed by ad id."""
        result: dict[str, dict[str, Any]] = {}
        for start in range(0, len(ad_ids), AD_NAMES_CHUNK):
            chunk = ad_ids[start : start + AD_NAMES_CHUNK]
            body = self._get(
                self._url("/"),
                {"ids": ",".join(chunk), "fields": "name,campaign{id,name},adset{id,name}"},
                "Failed to fetch ad names",
            )
            for ad_id in chunk:
                info = body.get(ad_id)
                if not isinstance(info, dict):
                    continue
                campaign = info.get("campaign") if isinstance(info.get("campaign"), dict) else {}
                adset = info.get("adset") if isinstance(info.get("adset"), dict) else {}
                result[ad_id] = {
                    "ad_name": str(info.get("name") or ""),
                    "campaign_id": str(campaign.get("id") or "") or None,
                    "campaign_name": str(campaign.get("name") or "") or None,
                    "adset_id": str(adset.get("id") or "") or None,
                    "adset_name": str(adset.get("name") or "") or None,
                }
        return result
