from __future__ import annotations

import logging
from typing import Iterable, Protocol

from sheetcal.models import DeleteOutcome, DeleteSummary, DestinationEvent


logger = logging.getLogger(__name__)


class DeletingDestination(Protocol):
    def delete_series(self, calendar_id: str, series_id: str) -> None: ...

    def delete_event(self, calendar_id: str, uid: str = "", href: str = "") -> None: ...


class SeriesDedupDeleter:
    """Delete every event of a wide scan with one call per series.

    A yearly series shows up once per occurrence in the scan. The first
    occurrence deletes the whole series; later ones are skipped because the
    object is already gone and deleting it again would fail.
    """

    def __init__(self, destination: DeletingDestination) -> None:
        self.destination = destination

    def delete_all(self, calendar_id: str, events: Iterable[DestinationEvent]) -> DeleteSummary:
        summary = DeleteSummary()
        seen_series: set[str] = set()
        for event in events:
            if event.is_recurring:
                if event.series_id in seen_series:
                    continue
                # Recorded before the call so a failing series is attempted once.
                seen_series.add(event.series_id)
                outcome = self._delete_series(calendar_id, event)
                if outcome.status == "deleted":
                    summary.series_deleted += 1
            else:
                outcome = self._delete_single(calendar_id, event)
                if outcome.status == "deleted":
                    summary.events_deleted += 1
            if outcome.status == "failed":
                summary.failures += 1
            summary.outcomes.append(outcome)

        logger.info(
            "Wipe finished: %d series, %d single events deleted, %d failures",
            summary.series_deleted,
            summary.events_deleted,
            summary.failures,
        )
        return summary

    def _delete_series(self, calendar_id: str, event: DestinationEvent) -> DeleteOutcome:
        try:
            self.destination.delete_series(calendar_id, event.series_id)
        except Exception as exc:
            logger.error("Failed to delete series %s (%s): %s", event.series_id, event.summary, exc)
            return DeleteOutcome(
                status="failed",
                uid=event.series_id,
                kind="series",
                reason=f"{type(exc).__name__}: {exc}",
            )
        return DeleteOutcome(status="deleted", uid=event.series_id, kind="series")

    def _delete_single(self, calendar_id: str, event: DestinationEvent) -> DeleteOutcome:
        try:
            self.destination.delete_event(calendar_id, uid=event.uid, href=event.href)
        except Exception as exc:
            logger.error("Failed to delete event %s (%s): %s", event.uid, event.summary, exc)
            return DeleteOutcome(
                status="failed",
                uid=event.uid,
                kind="single",
                reason=f"{type(exc).__name__}: {exc}",
            )
        return DeleteOutcome(status="deleted", uid=event.uid, kind="single")
