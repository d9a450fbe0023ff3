from __future__ import annotations

from datetime import date, datetime, timezone

from sheetcal.models import CalendarInfo, DestinationEvent


class FakeCalendar:
    """In-memory calendar that expands yearly series like a CalDAV server."""

    def __init__(self, calendar_id: str = "cal-1") -> None:
        self.calendar_id = calendar_id
        self.series: dict[str, tuple[str, date]] = {}
        self.singles: dict[str, tuple[str, datetime]] = {}
        self.fail_create_for: set[str] = set()
        self.fail_delete_for: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._next_uid = 0

    def _uid(self) -> str:
        self._next_uid += 1
        return f"uid-{self._next_uid}"

    def add_series(self, title: str, start_day: date) -> str:
        uid = self._uid()
        self.series[uid] = (title, start_day)
        return uid

    def add_single(self, title: str, start: datetime) -> str:
        uid = self._uid()
        self.singles[uid] = (title, start)
        return uid

    def resolve_calendar(self, calendar_id: str) -> CalendarInfo:
        return CalendarInfo(calendar_id=self.calendar_id, name="Birthdays", url=self.calendar_id)

    def fetch_events(self, calendar_id: str, start: datetime, end: datetime) -> list[DestinationEvent]:
        self.calls.append(("fetch", calendar_id))
        events: list[DestinationEvent] = []
        for uid, (title, first_day) in self.series.items():
            for year in range(max(first_day.year, start.year), end.year + 1):
                try:
                    day = first_day.replace(year=year)
                except ValueError:
                    continue
                occurrence = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
                if start <= occurrence <= end:
                    events.append(
                        DestinationEvent(
                            calendar_id=calendar_id,
                            uid=uid,
                            summary=title,
                            start=occurrence,
                            all_day=True,
                            href=f"/{uid}.ics",
                            series_id=uid,
                        )
                    )
        for uid, (title, when) in self.singles.items():
            if start <= when <= end:
                events.append(
                    DestinationEvent(calendar_id=calendar_id, uid=uid, summary=title, start=when, href=f"/{uid}.ics")
                )
        return events

    def delete_series(self, calendar_id: str, series_id: str) -> None:
        self.calls.append(("delete_series", series_id))
        if series_id in self.fail_delete_for:
            raise RuntimeError("server error")
        if series_id not in self.series:
            raise LookupError(f"Series not found: {series_id}")
        del self.series[series_id]

    def delete_event(self, calendar_id: str, uid: str = "", href: str = "") -> None:
        self.calls.append(("delete_event", uid))
        if uid in self.fail_delete_for:
            raise RuntimeError("server error")
        if uid not in self.singles:
            raise LookupError(f"Event not found: {uid}")
        del self.singles[uid]

    def create_annual_event(self, calendar_id: str, title: str, start: datetime) -> str:
        self.calls.append(("create", title))
        if title in self.fail_create_for:
            raise RuntimeError("quota exceeded")
        return self.add_series(title, start.date())

    def snapshot(self) -> list[tuple[str, date]]:
        items = [(title, day) for title, day in self.series.values()]
        items += [(title, when.date()) for title, when in self.singles.values()]
        return sorted(items)

    def count(self, kind: str) -> int:
        return sum(1 for call_kind, _ in self.calls if call_kind == kind)
