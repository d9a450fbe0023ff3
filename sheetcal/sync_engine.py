from __future__ import annotations

import logging
import traceback
from datetime import date, datetime, timezone
from typing import Any

from sheetcal.caldav_client import CalDAVService
from sheetcal.config_manager import ConfigManager
from sheetcal.date_parser import parse_raw_date
from sheetcal.guard import ReconcileGuard
from sheetcal.models import ConfigurationError, ReconcileSummary, SyncResult, event_title
from sheetcal.reconciler import Reconciler
from sheetcal.source_table import CsvTableSource
from sheetcal.state_store import StateStore


logger = logging.getLogger(__name__)


def _elapsed_ms(started_at: datetime) -> int:
    return int((datetime.now(timezone.utc) - started_at).total_seconds() * 1000)


def _summary_message(summary: ReconcileSummary) -> str:
    return (
        f"Deleted {summary.deletes.series_deleted} series and {summary.deletes.events_deleted} events, "
        f"created {summary.created}, skipped {summary.skipped}, failed {summary.failed}."
    )


class SyncEngine:
    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        guard: ReconcileGuard | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.guard = guard or ReconcileGuard()

    def run_once(self, trigger: str = "manual") -> SyncResult:
        try:
            config = self.config_manager.load()
        except ConfigurationError as exc:
            return self._skipped(trigger, datetime.now(timezone.utc), exc)
        with self.guard.hold(config.sync.lock_wait_seconds) as acquired:
            if not acquired:
                logger.info("Another sync holds the lock, %s run skipped", trigger)
                return SyncResult(
                    status="busy",
                    message="Another sync is running. Run skipped.",
                    duration_ms=0,
                    trigger=trigger,
                )
            return self._run_locked(trigger)

    def _run_locked(self, trigger: str) -> SyncResult:
        started_at = datetime.now(timezone.utc)

        try:
            config = self.config_manager.load()
            if not config.caldav.base_url or not config.caldav.username:
                raise ConfigurationError("CalDAV config missing base_url/username.")
            if not config.destination.calendar_id:
                raise ConfigurationError("Destination calendar id is not configured.")

            caldav_service = CalDAVService(config.caldav)
            reconciler = Reconciler(
                caldav_service,
                timezone_name=config.sync.timezone,
                horizon_years=config.sync.horizon_years,
            )
            calendar_info = caldav_service.resolve_calendar(config.destination.calendar_id)
            # Rows are read before the wipe so a missing table aborts without mutation.
            rows = CsvTableSource(config.source).read_rows()

            summary = reconciler.reconcile(rows, calendar_info.calendar_id)

            duration_ms = _elapsed_ms(started_at)
            message = _summary_message(summary)
            run_id = self.state_store.record_sync_run(
                trigger=trigger,
                status="success",
                message=message,
                duration_ms=duration_ms,
                created=summary.created,
                skipped=summary.skipped,
                failed=summary.failed + summary.deletes.failures,
                deleted=summary.deletes.deleted,
            )
            self._record_outcomes(run_id, calendar_info.calendar_id, summary)
            logger.info("Sync %s finished in %d ms: %s", trigger, duration_ms, message)
            return SyncResult(
                status="success",
                message=f"{message} run_id={run_id}",
                duration_ms=duration_ms,
                trigger=trigger,
                created=summary.created,
                skipped=summary.skipped,
                failed=summary.failed + summary.deletes.failures,
                deleted=summary.deletes.deleted,
            )
        except ConfigurationError as exc:
            return self._skipped(trigger, started_at, exc)
        except Exception as exc:
            duration_ms = _elapsed_ms(started_at)
            error_message = f"{type(exc).__name__}: {exc}"
            logger.exception("Sync %s failed", trigger)
            run_id = self.state_store.record_sync_run(
                trigger=trigger,
                status="error",
                message=error_message,
                duration_ms=duration_ms,
            )
            self.state_store.record_audit_event(
                subject="system",
                action="run_error",
                details={
                    "trigger": trigger,
                    "error": error_message,
                    "traceback": traceback.format_exc(limit=5),
                },
                run_id=run_id,
            )
            return SyncResult(status="error", message=error_message, duration_ms=duration_ms, trigger=trigger)

    def _skipped(self, trigger: str, started_at: datetime, exc: ConfigurationError) -> SyncResult:
        duration_ms = _elapsed_ms(started_at)
        message = f"{exc} Sync skipped."
        logger.error("Sync %s aborted: %s", trigger, exc)
        run_id = self.state_store.record_sync_run(
            trigger=trigger,
            status="skipped",
            message=message,
            duration_ms=duration_ms,
        )
        self.state_store.record_audit_event(
            subject="system",
            action="config_error",
            details={"trigger": trigger, "error": str(exc)},
            run_id=run_id,
        )
        return SyncResult(status="skipped", message=message, duration_ms=duration_ms, trigger=trigger)

    def _record_outcomes(self, run_id: int, calendar_id: str, summary: ReconcileSummary) -> None:
        for outcome in summary.deletes.outcomes:
            if outcome.status != "failed":
                continue
            self.state_store.record_audit_event(
                subject=outcome.uid,
                action=f"delete_{outcome.kind}_failed",
                details={"calendar_id": calendar_id, "error": outcome.reason},
                run_id=run_id,
            )
        for row in summary.rows:
            if row.status == "created" or row.reason == "blank":
                continue
            self.state_store.record_audit_event(
                subject=f"row:{row.row_number}",
                action=f"row_{row.status}",
                details={"name": row.name, "reason": row.reason},
                run_id=run_id,
            )

    def preview_source(self, today: date | None = None) -> list[dict[str, Any]]:
        """Parse the source rows without touching the calendar."""
        config = self.config_manager.load()
        preview: list[dict[str, Any]] = []
        for row in CsvTableSource(config.source).read_rows():
            name = row.name.strip()
            parsed = parse_raw_date(row.raw_date, today=today)
            preview.append(
                {
                    "row": row.row_number,
                    "name": name,
                    "raw_date": row.raw_date,
                    "valid": bool(name) and parsed is not None,
                    "date": parsed.to_date().isoformat() if parsed else None,
                    "title": event_title(name) if name else "",
                }
            )
        return preview
