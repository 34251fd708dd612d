"""Daily ad insight import from the ads platform."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select

from funnelboard.core.config import Config, get_config
from funnelboard.core.exceptions import ConfigurationError, NotFoundError, ValidationError
from funnelboard.integrations.ads_client import AdsClient
from funnelboard.models import AdDailyInsight, Client
from funnelboard.services.base_service import BaseService
from funnelboard.services.payload_normalizer import to_number
from funnelboard.services.rate_guard import GuardDecision, RateGuard, get_rate_guard

logger = logging.getLogger(__name__)

ADS_GUARD_MODE = "ads_insights"
DEFAULT_LOOKBACK_DAYS = 30
_DAY_FIRST = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


def parse_ads_date(value: Any) -> date | None:
    """Accept ``YYYY-MM-DD`` or ``DD/MM/YYYY``; anything else is None."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    try:
        return date.fromisoformat(text)
    except ValueError:
        pass
    match = _DAY_FIRST.match(text)
    if not match:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def days_between(since: date, until: date) -> list[date]:
    return [since + timedelta(days=offset) for offset in range((until - since).days + 1)]


@dataclass
class AdsSyncResult:
    synced: int
    since: date
    until: date
    days: int
    rejection: GuardDecision | None = None

    def to_response(self) -> dict[str, Any]:
        if self.rejection is not None:
            return {
                "error": "Wait before syncing ads again.",
                "code": self.rejection.reason,
                "retry_after_seconds": self.rejection.retry_after_seconds,
            }
        return {"ok": True, "synced": self.synced, "since": self.since.isoformat(), "until": self.until.isoformat()}


class AdsSyncService(BaseService):
    """Upserts one row per (client, day, ad) with names resolved from the ads platform."""

    def __init__(
        self,
        db=None,
        ads_client_factory: Callable[[str | None], AdsClient] = AdsClient,
        rate_guard: RateGuard | None = None,
        config: Config | None = None,
        today_fn: Callable[[], date] | None = None,
    ) -> None:
        super().__init__(db)
        self.config = config or get_config()
        self.ads_client_factory = ads_client_factory
        self.rate_guard = rate_guard or get_rate_guard()
        self.today_fn = today_fn or (lambda: datetime.now(timezone.utc).date())

    def _resolve_range(self, client_id: int, since: Any, until: Any) -> tuple[date, date]:
        start, end = parse_ads_date(since), parse_ads_date(until)
        if start is not None and end is not None:
            if start > end:
                raise ValidationError("Start date must be on or before end date.")
            return start, end

        today = self.today_fn()
        last = self.db.scalar(select(func.max(AdDailyInsight.date)).where(AdDailyInsight.client_id == client_id))
        return (last or today - timedelta(days=DEFAULT_LOOKBACK_DAYS)), today

    def _ads_client(self, client_id: int) -> tuple[Client, AdsClient]:
        client = self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        if not (client.ads_access_token or "").strip():
            raise ConfigurationError("Client has no ads access token configured.")
        return client, self.ads_client_factory(client.ads_access_token)

    def ad_accounts(self, client_id: int) -> list[dict[str, Any]]:
        _, ads = self._ads_client(client_id)
        return ads.list_ad_accounts()

    def campaigns(self, client_id: int, ad_account_id: str | None = None, status: str | None = None) -> list[dict[str, Any]]:
        """Campaigns of the given account, defaulting to the client's configured one."""
        client, ads = self._ads_client(client_id)
        account = (ad_account_id or client.ads_account_id or "").strip()
        if not account:
            raise ConfigurationError("No ad account id given or configured for this client.")
        return ads.list_campaigns(account, status=status)

    def sync_ads(self, client_id: int, since: Any = None, until: Any = None, privileged: bool = False) -> AdsSyncResult:
        client = self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        if not client.has_ads_credentials:
            raise ConfigurationError("Client has no ads access token or ad account configured.")

        start, end = self._resolve_range(client_id, since, until)
        decision = self.rate_guard.try_acquire(
            client_id, ADS_GUARD_MODE, privileged, cooldown_seconds=self.config.ADS_SYNC_COOLDOWN_SECONDS
        )
        if not decision.granted:
            return AdsSyncResult(synced=0, since=start, until=end, days=0, rejection=decision)

        ads = self.ads_client_factory(client.ads_access_token)
        days = days_between(start, end)
        rows: list[dict[str, Any]] = []
        # One request per day keeps the platform from aggregating the range.
        for day in days:
            iso = day.isoformat()
            rows.extend(ads.get_daily_insights(client.ads_account_id, iso, iso))

        rows = [row for row in rows if row.get("ad_id") and row.get("date_start")]
        ad_ids = sorted({str(row["ad_id"]) for row in rows})
        names = ads.get_ad_names(ad_ids) if ad_ids else {}

        synced = self._upsert(client_id, rows, names)
        logger.info(
            "ads.sync.finish",
            extra={"event": "ads.sync.finish", "client_id": client_id, "count": synced},
        )
        return AdsSyncResult(synced=synced, since=start, until=end, days=len(days))

    def _upsert(self, client_id: int, rows: list[dict[str, Any]], names: dict[str, dict[str, Any]]) -> int:
        synced = 0
        pending: dict[tuple[date, str], AdDailyInsight] = {}
        for row in rows:
            ad_id = str(row["ad_id"])
            day = parse_ads_date(str(row["date_start"])[:10])
            if day is None:
                continue
            info = names.get(ad_id, {})
            record = pending.get((day, ad_id)) or self.db.scalars(
                select(AdDailyInsight).where(
                    AdDailyInsight.client_id == client_id,
                    AdDailyInsight.date == day,
                    AdDailyInsight.ad_id == ad_id,
                )
            ).first()
            if record is None:
                record = AdDailyInsight(client_id=client_id, date=day, ad_id=ad_id)
                self.db.add(record)
            pending[(day, ad_id)] = record
            record.campaign_id = info.get("campaign_id") or row.get("campaign_id")
            record.campaign_name = info.get("campaign_name")
            record.adset_id = info.get("adset_id") or row.get("adset_id")
            record.adset_name = info.get("adset_name")
            record.ad_name = info.get("ad_name")
            record.impressions = int(to_number(row.get("impressions")) or 0)
            record.clicks = int(to_number(row.get("clicks")) or 0)
            record.spend = to_number(row.get("spend")) or 0.0
            synced += 1
        self.commit()
        return synced
