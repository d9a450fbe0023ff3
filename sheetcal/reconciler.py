from __future__ import annotations

import logging
from datetime import date, datetime, time, timezone
from typing import Iterable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sheetcal.date_parser import parse_raw_date
from sheetcal.models import (
    ConfigurationError,
    DestinationEvent,
    ReconcileSummary,
    RowOutcome,
    SourceRow,
    event_title,
)
from sheetcal.series_deleter import DeletingDestination, SeriesDedupDeleter


logger = logging.getLogger(__name__)

# Midday keeps the all-day date stable under any UTC offset.
START_TIME = time(12, 0)


class Destination(DeletingDestination, Protocol):
    def fetch_events(self, calendar_id: str, start: datetime, end: datetime) -> list[DestinationEvent]: ...

    def create_annual_event(self, calendar_id: str, title: str, start: datetime) -> str: ...


def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # Feb 29 on a non-leap target year.
        return value.replace(year=value.year + years, day=28)


def _resolve_timezone(name: str) -> timezone | ZoneInfo:
    if not name or name == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone: {name}") from exc


def reconcile_horizon(now: datetime, horizon_years: int = 100) -> tuple[datetime, datetime]:
    """Scan range: Jan 1 of last year through ``horizon_years`` from now."""
    start = datetime(now.year - 1, 1, 1, tzinfo=now.tzinfo)
    return start, _add_years(now, horizon_years)


class Reconciler:
    """Wipe every event in the horizon, then create one yearly event per row.

    Nothing links rows to calendar objects, so the result only depends on the
    rows passed in: running twice with the same rows gives the same calendar.
    """

    def __init__(
        self,
        destination: Destination,
        *,
        timezone_name: str = "UTC",
        horizon_years: int = 100,
        deleter: SeriesDedupDeleter | None = None,
    ) -> None:
        self.destination = destination
        self.tz = _resolve_timezone(timezone_name)
        self.horizon_years = horizon_years
        self.deleter = deleter or SeriesDedupDeleter(destination)

    def reconcile(
        self,
        rows: Iterable[SourceRow],
        calendar_id: str,
        now: datetime | None = None,
    ) -> ReconcileSummary:
        if not str(calendar_id or "").strip():
            raise ConfigurationError("Destination calendar id is not configured.")
        now = (now or datetime.now(self.tz)).astimezone(self.tz)
        summary = ReconcileSummary()

        start, end = reconcile_horizon(now, self.horizon_years)
        existing = self.destination.fetch_events(calendar_id, start, end)
        logger.info("Found %d event occurrences between %s and %s", len(existing), start.date(), end.date())
        summary.deletes = self.deleter.delete_all(calendar_id, existing)

        for row in rows:
            summary.rows.append(self._create_row(calendar_id, row, today=now.date(), horizon_end=end))

        logger.info(
            "Rebuild finished: %d created, %d skipped, %d failed",
            summary.created,
            summary.skipped,
            summary.failed,
        )
        return summary

    def _create_row(self, calendar_id: str, row: SourceRow, today: date, horizon_end: datetime) -> RowOutcome:
        name = str(row.name or "").strip()
        raw_date = str(row.raw_date or "").strip()
        if not name or not raw_date:
            return RowOutcome(status="skipped", row_number=row.row_number, name=name, reason="blank")

        parsed = parse_raw_date(raw_date, today=today)
        if parsed is None:
            logger.warning("Row %d (%s): invalid date %r, skipped", row.row_number, name, raw_date)
            return RowOutcome(
                status="skipped",
                row_number=row.row_number,
                name=name,
                reason=f"invalid_date: {raw_date}",
            )

        start = datetime.combine(parsed.to_date(), START_TIME, tzinfo=self.tz)
        if start >= horizon_end:
            # The next wipe would never see this series.
            logger.warning(
                "Row %d (%s): %s is past the horizon end %s, skipped",
                row.row_number,
                name,
                raw_date,
                horizon_end.date(),
            )
            return RowOutcome(status="skipped", row_number=row.row_number, name=name, reason="out_of_horizon")

        try:
            series_id = self.destination.create_annual_event(calendar_id, event_title(name), start)
        except Exception as exc:
            logger.error("Row %d (%s): failed to create event: %s", row.row_number, name, exc)
            return RowOutcome(
                status="failed",
                row_number=row.row_number,
                name=name,
                reason=f"{type(exc).__name__}: {exc}",
            )
        logger.debug("Row %d (%s): created series %s", row.row_number, name, series_id)
        return RowOutcome(status="created", row_number=row.row_number, name=name)
