"""Reconciler: pulls CRM collections and upserts them into the local store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from funnelboard.core.config import Config, get_config
from funnelboard.core.enums import DEFAULT_SYNC_MODULES, SyncMode, SyncModule
from funnelboard.core.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ExternalPlatformError,
    NotFoundError,
    ValidationError,
)
from funnelboard.core.logging import SyncLogContext, build_log_event
from funnelboard.integrations.crm_client import CrmClient
from funnelboard.models import CalendarEvent, Client, CrmCalendar, CrmUser, Opportunity, Pipeline, PipelineStage
from funnelboard.services import window_planner
from funnelboard.services.base_service import BaseService
from funnelboard.services.field_mapping import FieldMapping, FieldMappingService
from funnelboard.services.payload_normalizer import (
    EVENT_ASSIGNED_USER_KEYS,
    custom_field_text,
    extract_sale_date,
    first_present,
    has_custom_fields_payload,
    normalize_custom_fields,
    resolve_contact_id,
    resolve_created_at,
    resolve_event_status,
    resolve_owner,
    resolve_pipeline_id,
    resolve_stage_id,
    resolve_updated_at,
    to_datetime,
    to_ms,
    to_number,
)
from funnelboard.services.rate_guard import REASON_VOLUME_EXCEEDED, GuardDecision, RateGuard, get_rate_guard

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncCaller:
    """Who triggered the run; cron callers skip the cooldown entirely."""

    privileged: bool = False
    bypass_cooldown: bool = False


@dataclass
class CrmSnapshot:
    pipelines: list[dict[str, Any]] | None = None
    calendars: list[dict[str, Any]] | None = None
    users: list[dict[str, Any]] | None = None
    opportunities: list[dict[str, Any]] | None = None
    events: list[dict[str, Any]] | None = None
    errors: list[ExternalPlatformError] = field(default_factory=list)


@dataclass
class SyncResult:
    client_id: int
    mode: SyncMode
    counts: dict[str, int] = field(default_factory=lambda: {module: 0 for module in DEFAULT_SYNC_MODULES})
    errors: list[str] = field(default_factory=list)
    rejection: GuardDecision | None = None
    credentials_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.rejection is None and self.credentials_error is None and not self.errors

    @property
    def status_code(self) -> int:
        if self.rejection is not None:
            return 429
        if self.credentials_error is not None:
            return 401
        if self.errors:
            return 502
        return 200

    def to_response(self) -> dict[str, Any]:
        if self.rejection is not None:
            if self.rejection.reason == REASON_VOLUME_EXCEEDED:
                return {
                    "error": "Data volume for the last hour exceeds the limit. Ask an administrator to run the sync.",
                    "code": self.rejection.reason,
                }
            return {
                "error": "Wait before syncing again.",
                "code": self.rejection.reason,
                "retry_after_seconds": self.rejection.retry_after_seconds,
            }
        if self.credentials_error is not None:
            return {"error": self.credentials_error, "details": self.errors}
        if self.errors:
            return {"error": "Sync finished with errors: " + "; ".join(self.errors), "details": self.errors, **self.counts}
        return {"ok": True, "mode": self.mode.value, **self.counts}


def build_opportunity_row(opp: dict[str, Any], client_id: int, mapping: FieldMapping) -> dict[str, Any]:
    """Map one raw CRM opportunity to the persisted column set.

    A missing mapping or a missing payload value writes ``None``; the row
    itself is always produced.
    """
    raw_custom_fields = opp.get("customFields")
    if raw_custom_fields is None:
        raw_custom_fields = opp.get("custom_fields")
    custom = normalize_custom_fields(raw_custom_fields)

    imported: dict[str, str] = {}
    for column in mapping.import_columns:
        text = custom_field_text(custom, column.external_field_id)
        if text is not None and text.strip():
            imported[column.column_name] = text.strip()

    row: dict[str, Any] = {
        "client_id": client_id,
        "external_id": str(opp["id"]),
        "pipeline_external_id": resolve_pipeline_id(opp),
        "stage_external_id": resolve_stage_id(opp),
        "name": opp.get("name"),
        "status": opp.get("status"),
        "monetary_value": to_number(opp.get("monetaryValue")),
        "contact_id": resolve_contact_id(opp),
        "assigned_to": resolve_owner(opp),
        "source": opp.get("source"),
        "date_added": to_datetime(resolve_created_at(opp)),
        "date_updated": to_datetime(resolve_updated_at(opp)),
        "sale_date_value": extract_sale_date(raw_custom_fields, mapping.sale_date_field_id),
        "custom_fields": imported,
    }
    for role, field_id in mapping.utm_field_ids.items():
        row[f"utm_{role}"] = custom_field_text(custom, field_id)
    return row


def build_event_row(event: dict[str, Any], client_id: int) -> dict[str, Any]:
    return {
        "client_id": client_id,
        "external_id": str(event["id"]),
        "calendar_external_id": event.get("calendarId"),
        "title": event.get("title"),
        "start_time": to_datetime(event.get("startTime")),
        "end_time": to_datetime(event.get("endTime")),
        "status": resolve_event_status(event),
        "contact_id": resolve_contact_id(event),
        "assigned_user_id": first_present(event, EVENT_ASSIGNED_USER_KEYS),
        "notes": event.get("notes"),
        "source": event.get("source"),
        "date_added": to_datetime(first_present(event, ("dateAdded", "createdAt"))),
        "date_updated": to_datetime(resolve_updated_at(event)),
    }


def filter_touched_events(events: list[dict[str, Any]], window: window_planner.EventFilter) -> list[dict[str, Any]]:
    """Apply the in-process touch filter; events with no usable stamp are dropped."""
    if not window.touched_keys:
        return events
    kept = []
    for event in events:
        stamp = to_ms(first_present(event, window.touched_keys))
        if stamp is None:
            continue
        if window.touched_since_ms <= stamp <= window.touched_until_ms:
            kept.append(event)
    return kept


def _chunks(items: list[Any], size: int) -> Iterable[list[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class SyncService(BaseService):
    """Runs one reconciliation of CRM data for one client."""

    def __init__(
        self,
        db: Session | None = None,
        crm_client_factory: Callable[[str | None, str | None], CrmClient] = CrmClient,
        rate_guard: RateGuard | None = None,
        config: Config | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(db)
        self.config = config or get_config()
        self.crm_client_factory = crm_client_factory
        self.rate_guard = rate_guard or get_rate_guard()
        self.now_fn = now_fn or (lambda: datetime.now(timezone.utc))

    def run(
        self,
        client_id: int,
        mode: SyncMode = SyncMode.INCREMENTAL,
        modules: Iterable[str] | None = None,
        caller: SyncCaller | None = None,
    ) -> SyncResult:
        caller = caller or SyncCaller()
        selected = self._resolve_modules(modules)
        if mode is not SyncMode.INCREMENTAL and not caller.privileged:
            raise AuthorizationError(f"Only administrators can run the '{mode.value}' sync.")

        client = self.db.get(Client, client_id)
        if client is None:
            raise NotFoundError(f"Client not found: {client_id}")
        if not client.has_crm_credentials:
            raise ConfigurationError("Client has no CRM API key or location id configured.")

        crm = self.crm_client_factory(client.crm_api_key, client.crm_location_id)
        context = SyncLogContext(client_id=str(client_id), mode=mode.value, run_id=f"sync-{uuid.uuid4().hex}")
        result = SyncResult(client_id=client_id, mode=mode)

        if not caller.bypass_cooldown:
            decision = self.rate_guard.try_acquire(client_id, mode, caller.privileged)
            if not decision.granted:
                result.rejection = decision
                return result

        logger.info("sync.run.start", extra=build_log_event("sync.run.start", context, sync_module=",".join(sorted(selected))))
        mapping = FieldMappingService(db=self.db).resolve(client_id)
        now = self.now_fn()
        state = self._sync_state(client_id) if mode is SyncMode.NORMAL else None
        sync_plan = window_planner.plan(mode, state, now=now, tz_name=self.config.REPORT_TIMEZONE)

        snapshot = self._fetch(crm, sync_plan, selected)
        for error in snapshot.errors:
            result.errors.append(f"{error.platform.upper()} fetch: {error.message}")
            if error.is_credentials_error:
                result.credentials_error = error.message

        volume = len(snapshot.opportunities or []) + len(snapshot.events or [])
        decision = self.rate_guard.check_volume(volume, mode, caller.privileged)
        if not decision.granted:
            result.rejection = decision
            return result

        # Reference data first so fact rows always find their parents.
        if SyncModule.PIPELINES.value in selected and snapshot.pipelines is not None:
            result.counts["pipelines"] = self._step(result, context, "Pipelines", self._upsert_pipelines, client_id, snapshot.pipelines)
        if SyncModule.CALENDARS.value in selected and snapshot.calendars is not None:
            result.counts["calendars"] = self._step(result, context, "Calendars", self._upsert_calendars, client_id, snapshot.calendars)
        if SyncModule.USERS.value in selected and snapshot.users is not None:
            result.counts["users"] = self._step(result, context, "Users", self._upsert_users, client_id, snapshot.users)
        if snapshot.opportunities is not None:
            result.counts["opportunities"] = self._step(
                result, context, "Opportunities", self._upsert_opportunities, client_id, snapshot.opportunities, mapping, crm
            )
        if snapshot.events is not None:
            result.counts["calendar_events"] = self._step(result, context, "Calendar events", self._upsert_events, client_id, snapshot.events)

        event = "sync.run.finish" if result.ok else "sync.run.failed"
        log = logger.info if result.ok else logger.error
        log(event, extra=build_log_event(event, context, count=sum(result.counts.values()), error="; ".join(result.errors) or None))
        return result

    def _resolve_modules(self, modules: Iterable[str] | None) -> set[str]:
        if modules is None:
            return set(DEFAULT_SYNC_MODULES)
        selected = {str(module).strip() for module in modules if str(module).strip()}
        unknown = selected - set(DEFAULT_SYNC_MODULES)
        if unknown:
            raise ValidationError(f"Unknown sync modules: {', '.join(sorted(unknown))}")
        return selected

    def _sync_state(self, client_id: int) -> window_planner.ClientSyncState:
        last_added = self.db.scalar(select(func.max(Opportunity.date_added)).where(Opportunity.client_id == client_id))
        last_start = self.db.scalar(select(func.max(CalendarEvent.start_time)).where(CalendarEvent.client_id == client_id))
        if last_start is None:
            last_start = self.db.scalar(select(func.max(CalendarEvent.created_at)).where(CalendarEvent.client_id == client_id))
        return window_planner.ClientSyncState(
            last_opportunity_added_ms=to_ms(last_added),
            last_event_start_ms=to_ms(last_start),
        )

    def _step(self, result: SyncResult, context: SyncLogContext, label: str, fn: Callable[..., int], *args: Any) -> int:
        try:
            return fn(*args, errors=result.errors)
        except SQLAlchemyError as exc:
            self.rollback()
            result.errors.append(f"{label}: {exc}")
            logger.error(
                "sync.step.failed",
                extra=build_log_event("sync.step.failed", context, sync_module=label, error=str(exc)),
            )
            return 0

    def _fetch(self, crm: CrmClient, sync_plan: window_planner.SyncPlan, selected: set[str]) -> CrmSnapshot:
        """Fetch top-level collections in parallel, then events per calendar."""
        snapshot = CrmSnapshot()
        opp_filter = sync_plan.opportunities
        need_calendars = bool(selected & {SyncModule.CALENDARS.value, SyncModule.CALENDAR_EVENTS.value})

        jobs: dict[str, Callable[[], list[dict[str, Any]]]] = {}
        if SyncModule.PIPELINES.value in selected:
            jobs["pipelines"] = lambda: self._fetch_pipelines_with_stages(crm)
        if need_calendars:
            jobs["calendars"] = crm.list_calendars
        if SyncModule.USERS.value in selected:
            jobs["users"] = crm.list_users
        if SyncModule.OPPORTUNITIES.value in selected:
            if opp_filter.unbounded:
                jobs["opportunities"] = crm.search_opportunities
            else:
                jobs["opportunities"] = lambda: crm.search_opportunities(
                    since_ms=opp_filter.since_ms,
                    until_ms=opp_filter.until_ms,
                    filter_by=opp_filter.axis,
                )

        with ThreadPoolExecutor(max_workers=self.config.SYNC_MAX_WORKERS) as pool:
            futures = {name: pool.submit(job) for name, job in jobs.items()}
            for name, future in futures.items():
                try:
                    setattr(snapshot, name, future.result())
                except ExternalPlatformError as exc:
                    snapshot.errors.append(exc)

        if SyncModule.CALENDAR_EVENTS.value in selected and snapshot.calendars is not None:
            calendar_ids = [str(cal["id"]) for cal in snapshot.calendars if cal.get("id")]
            try:
                events = crm.list_events_for_calendars(calendar_ids, sync_plan.events.since_ms, sync_plan.events.until_ms)
                snapshot.events = filter_touched_events(events, sync_plan.events)
            except ExternalPlatformError as exc:
                snapshot.errors.append(exc)
        return snapshot

    def _fetch_pipelines_with_stages(self, crm: CrmClient) -> list[dict[str, Any]]:
        pipelines = [pipeline for pipeline in crm.list_pipelines() if pipeline.get("id")]
        for pipeline in pipelines:
            try:
                pipeline["stages"] = crm.list_pipeline_stages(str(pipeline["id"]))
            except ExternalPlatformError as exc:
                # An empty list leaves known stages untouched.
                logger.warning(
                    "sync.stages.fetch_failed",
                    extra={"event": "sync.stages.fetch_failed", "error": exc.message, "status_code": exc.status_code},
                )
                pipeline["stages"] = []
        return pipelines

    def _upsert_pipelines(self, client_id: int, pipelines: list[dict[str, Any]], errors: list[str]) -> int:
        existing = {
            row.external_id: row
            for row in self.db.scalars(select(Pipeline).where(Pipeline.client_id == client_id)).all()
        }
        for payload in pipelines:
            external_id = str(payload["id"])
            pipeline = existing.get(external_id)
            if pipeline is None:
                pipeline = Pipeline(client_id=client_id, external_id=external_id, active=True)
                self.db.add(pipeline)
                existing[external_id] = pipeline
            pipeline.name = payload.get("name") or ""
        self.db.flush()

        for payload in pipelines:
            pipeline = existing[str(payload["id"])]
            incoming = [stage for stage in payload.get("stages") or [] if stage.get("id")]
            known = {
                stage.external_id: stage
                for stage in self.db.scalars(select(PipelineStage).where(PipelineStage.pipeline_id == pipeline.id)).all()
            }
            for position, stage_payload in enumerate(incoming):
                stage_id = str(stage_payload["id"])
                stage = known.get(stage_id)
                if stage is None:
                    stage = PipelineStage(client_id=client_id, pipeline_id=pipeline.id, external_id=stage_id, active=True)
                    self.db.add(stage)
                stage.name = stage_payload.get("name") or ""
                stage.position = position
            if incoming:
                incoming_ids = {str(stage["id"]) for stage in incoming}
                for stage_id, stage in known.items():
                    if stage_id not in incoming_ids:
                        stage.active = False

        if pipelines:
            fetched_ids = {str(payload["id"]) for payload in pipelines}
            for external_id, pipeline in existing.items():
                if external_id not in fetched_ids:
                    pipeline.active = False
        self.commit()
        return len(pipelines)

    def _upsert_reference(self, model, client_id: int, payloads: list[dict[str, Any]], build: Callable[[dict[str, Any]], dict[str, Any]]) -> int:
        """Upsert by external id, then delete rows the CRM no longer returns."""
        existing = {row.external_id: row for row in self.db.scalars(select(model).where(model.client_id == client_id)).all()}
        seen: set[str] = set()
        for payload in payloads:
            if not payload.get("id"):
                continue
            external_id = str(payload["id"])
            seen.add(external_id)
            row = existing.get(external_id)
            if row is None:
                row = model(client_id=client_id, external_id=external_id, active=True)
                self.db.add(row)
                existing[external_id] = row
            for key, value in build(payload).items():
                setattr(row, key, value)
        stale = [row.id for external_id, row in existing.items() if external_id not in seen and row.id is not None]
        if stale:
            self.db.execute(delete(model).where(model.id.in_(stale)))
        self.commit()
        return len(seen)

    def _upsert_calendars(self, client_id: int, calendars: list[dict[str, Any]], errors: list[str]) -> int:
        return self._upsert_reference(CrmCalendar, client_id, calendars, lambda cal: {"name": cal.get("name") or ""})

    def _upsert_users(self, client_id: int, users: list[dict[str, Any]], errors: list[str]) -> int:
        def _build(user: dict[str, Any]) -> dict[str, Any]:
            name = user.get("name") or " ".join(
                part for part in (user.get("firstName"), user.get("lastName")) if part
            )
            return {"name": name or "", "email": user.get("email")}

        return self._upsert_reference(CrmUser, client_id, users, _build)

    def _enrich_sale_dates(self, crm: CrmClient, rows: list[dict[str, Any]], mapping: FieldMapping) -> None:
        """Recover sale dates via get-by-id for rows whose search payload had no custom fields."""
        if not rows or not mapping.sale_date_field_id:
            return

        def _fetch_one(row: dict[str, Any]) -> dict[str, Any] | None:
            try:
                return crm.get_opportunity(row["external_id"])
            except ExternalPlatformError as exc:
                logger.warning(
                    "sync.enrich.failed",
                    extra={"event": "sync.enrich.failed", "error": exc.message, "status_code": exc.status_code},
                )
                return None

        batch = self.config.SYNC_ENRICH_BATCH
        with ThreadPoolExecutor(max_workers=batch) as pool:
            for chunk in _chunks(rows, batch):
                for row, full in zip(chunk, pool.map(_fetch_one, chunk)):
                    if not full:
                        continue
                    raw = full.get("customFields")
                    if raw is None:
                        raw = full.get("custom_fields")
                    sale_date = extract_sale_date(raw, mapping.sale_date_field_id)
                    if sale_date is not None:
                        row["sale_date_value"] = sale_date

    def _upsert_opportunities(
        self,
        client_id: int,
        opportunities: list[dict[str, Any]],
        mapping: FieldMapping,
        crm: CrmClient,
        errors: list[str],
    ) -> int:
        rows: list[dict[str, Any]] = []
        needs_enrichment: list[dict[str, Any]] = []
        for opp in opportunities:
            if not opp.get("id"):
                continue
            row = build_opportunity_row(opp, client_id, mapping)
            rows.append(row)
            if mapping.sale_date_field_id and not has_custom_fields_payload(opp):
                needs_enrichment.append(row)
        self._enrich_sale_dates(crm, needs_enrichment, mapping)
        return self._upsert_facts(Opportunity, client_id, rows, "Opportunities", errors)

    def _upsert_events(self, client_id: int, events: list[dict[str, Any]], errors: list[str]) -> int:
        rows = [build_event_row(event, client_id) for event in events if event.get("id")]
        return self._upsert_facts(CalendarEvent, client_id, rows, "Calendar events", errors)

    def _upsert_facts(self, model, client_id: int, rows: list[dict[str, Any]], label: str, errors: list[str]) -> int:
        """Idempotent upsert keyed on (client, external id), committed per batch."""
        synced = 0
        for number, chunk in enumerate(_chunks(rows, self.config.SYNC_BATCH_SIZE), start=1):
            try:
                keys = [row["external_id"] for row in chunk]
                existing = {
                    row.external_id: row
                    for row in self.db.scalars(
                        select(model).where(model.client_id == client_id, model.external_id.in_(keys))
                    ).all()
                }
                for payload in chunk:
                    record = existing.get(payload["external_id"])
                    if record is None:
                        record = model(**payload)
                        self.db.add(record)
                        existing[payload["external_id"]] = record
                        continue
                    for key, value in payload.items():
                        setattr(record, key, value)
                self.commit()
                synced += len(chunk)
            except SQLAlchemyError as exc:
                self.rollback()
                errors.append(f"{label} batch {number}: {exc}")
                logger.error(
                    "sync.batch.failed",
                    extra={"event": "sync.batch.failed", "client_id": client_id, "sync_module": label, "error": str(exc)},
                )
        return synced

