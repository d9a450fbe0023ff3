from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any

from icalendar import Calendar as ICalendar
from icalendar import Event as ICEvent

from sheetcal.models import (
    CalDAVConfig,
    CalendarInfo,
    ConfigurationError,
    DestinationEvent,
    date_to_datetime,
)

try:
    import caldav
except ImportError:  # pragma: no cover - dependency managed by pyproject
    caldav = None


logger = logging.getLogger(__name__)


def _normalize_calendar_id(value: str) -> str:
    return str(value or "").strip().rstrip("/")


def _normalize_calendar_name(value: str) -> str:
    collapsed = re.sub(r"\s+", " ", str(value or "").strip())
    return collapsed.casefold()


def _coerce_datetime(value: Any, is_end: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, date):
        return date_to_datetime(value, is_end=is_end)
    return None


def _first_vevent(calendar_obj: ICalendar) -> ICEvent | None:
    for component in calendar_obj.walk():
        if component.name == "VEVENT":
            return component
    return None


def _decode_raw_ical(raw_data: Any) -> str:
    if isinstance(raw_data, bytes):
        return raw_data.decode("utf-8", errors="replace")
    return str(raw_data)


def _extract_uid_from_raw_ical(raw_data: Any) -> str:
    try:
        raw_ical = _decode_raw_ical(raw_data)
        calendar_obj = ICalendar.from_ical(raw_ical)
        vevent = _first_vevent(calendar_obj)
        if vevent is None:
            return ""
        return str(vevent.get("UID", "")).strip()
    except Exception:
        return ""


def build_annual_event_ical(uid: str, title: str, start_day: date) -> str:
    calendar_obj = ICalendar()
    calendar_obj.add("PRODID", "-//sheetcal//Table Calendar Mirror//EN")
    calendar_obj.add("VERSION", "2.0")
    vevent = ICEvent()
    vevent.add("UID", uid)
    vevent.add("DTSTAMP", datetime.now(timezone.utc))
    vevent.add("SUMMARY", title)
    vevent.add("DTSTART", start_day)
    vevent.add("DTEND", start_day + timedelta(days=1))
    vevent.add("RRULE", {"FREQ": "YEARLY"})
    vevent.add("TRANSP", "TRANSPARENT")
    calendar_obj.add_component(vevent)
    return calendar_obj.to_ical().decode("utf-8")


class CalDAVService:
    def __init__(self, config: CalDAVConfig) -> None:
        self.config = config
        self._client: Any = None
        self._principal: Any = None
        self._calendar_cache: dict[str, Any] = {}

    def _require_dependency(self) -> None:
        if caldav is None:
            raise RuntimeError("caldav dependency is not installed.")

    def _connect(self) -> None:
        self._require_dependency()
        if self._principal is not None:
            return
        if not self.config.base_url or not self.config.username:
            raise ConfigurationError("CalDAV config is incomplete.")
        self._client = caldav.DAVClient(
            url=self.config.base_url,
            username=self.config.username,
            password=self.config.password,
        )
        self._principal = self._client.principal()

    def list_calendars(self) -> list[CalendarInfo]:
        self._connect()
        self._calendar_cache = {}
        calendars: list[CalendarInfo] = []
        for calendar in self._principal.calendars():
            calendar_id = str(calendar.url)
            name = getattr(calendar, "name", "") or calendar_id
            self._calendar_cache[calendar_id] = calendar
            calendars.append(CalendarInfo(calendar_id=calendar_id, name=name, url=calendar_id))
        return calendars

    def resolve_calendar(self, calendar_id: str) -> CalendarInfo:
        """Find the destination calendar by URL or by display name.

        Raises ``ConfigurationError`` when nothing matches, so callers can abort
        before touching any calendar.
        """
        wanted_id = _normalize_calendar_id(calendar_id)
        if not wanted_id:
            raise ConfigurationError("Destination calendar id is not configured.")
        calendars = self.list_calendars()
        for info in calendars:
            if _normalize_calendar_id(info.calendar_id) == wanted_id:
                return info
        wanted_name = _normalize_calendar_name(calendar_id)
        same_name = [info for info in calendars if _normalize_calendar_name(info.name) == wanted_name]
        if len(same_name) > 1:
            raise ConfigurationError(f"Destination calendar name is ambiguous: {calendar_id}")
        if same_name:
            return same_name[0]
        raise ConfigurationError(f"Calendar not found: {calendar_id}")

    def _get_calendar(self, calendar_id: str) -> Any:
        if calendar_id in self._calendar_cache:
            return self._calendar_cache[calendar_id]
        for calendar in self._principal.calendars():
            cid = str(calendar.url)
            self._calendar_cache[cid] = calendar
        if calendar_id not in self._calendar_cache:
            raise ConfigurationError(f"Calendar not found: {calendar_id}")
        return self._calendar_cache[calendar_id]

    def fetch_events(
        self,
        calendar_id: str,
        start: datetime,
        end: datetime,
    ) -> list[DestinationEvent]:
        self._connect()
        calendar = self._get_calendar(calendar_id)
        resources = calendar.date_search(start=start, end=end, expand=True)
        events: list[DestinationEvent] = []
        for item in resources:
            events.extend(self._parse_resource(calendar_id, item))
        return events

    def _parse_resource(self, calendar_id: str, resource: Any) -> list[DestinationEvent]:
        raw_ical = _decode_raw_ical(resource.data)
        calendar_obj = ICalendar.from_ical(raw_ical)
        href = str(getattr(resource, "url", "") or "")
        events: list[DestinationEvent] = []
        # Expanded resources may carry one VEVENT per occurrence.
        for vevent in calendar_obj.walk("VEVENT"):
            uid = str(vevent.get("UID", "")).strip()
            if not uid:
                continue
            recurring = vevent.get("RRULE") is not None or vevent.get("RECURRENCE-ID") is not None
            dtstart_raw = vevent.decoded("DTSTART") if vevent.get("DTSTART") is not None else None
            events.append(
                DestinationEvent(
                    calendar_id=calendar_id,
                    uid=uid,
                    summary=str(vevent.get("SUMMARY", "")).strip(),
                    start=_coerce_datetime(dtstart_raw),
                    all_day=isinstance(dtstart_raw, date) and not isinstance(dtstart_raw, datetime),
                    href=href,
                    series_id=uid if recurring else "",
                )
            )
        return events

    def _find_resource_by_uid(self, calendar: Any, uid: str) -> Any:
        if not uid:
            return None
        try:
            resource = calendar.event_by_uid(uid)
            if isinstance(resource, list):
                resource = resource[0] if resource else None
            if resource is not None:
                return resource
        except Exception:
            logger.debug("event_by_uid lookup failed for %s, scanning calendar", uid)

        for resource in calendar.events():
            candidate_uid = _extract_uid_from_raw_ical(getattr(resource, "data", ""))
            if candidate_uid == uid:
                return resource
        return None

    def delete_series(self, calendar_id: str, series_id: str) -> None:
        """Delete the whole recurring object, every occurrence at once."""
        self._connect()
        calendar = self._get_calendar(calendar_id)
        resource = self._find_resource_by_uid(calendar, series_id)
        if resource is None:
            raise LookupError(f"Series not found: {series_id}")
        resource.delete()

    def delete_event(self, calendar_id: str, uid: str = "", href: str = "") -> None:
        self._connect()
        calendar = self._get_calendar(calendar_id)
        resource = None
        if href:
            try:
                resource = calendar.event_by_url(href)
            except Exception:
                resource = None
        if resource is None and uid:
            resource = self._find_resource_by_uid(calendar, uid)
        if resource is None:
            raise LookupError(f"Event not found: uid={uid} href={href}")
        resource.delete()

    def create_annual_event(self, calendar_id: str, title: str, start: datetime) -> str:
        """Create a yearly all-day event on ``start``'s date and return its series id."""
        self._connect()
        calendar = self._get_calendar(calendar_id)
        uid = str(uuid.uuid4())
        calendar.save_event(build_annual_event_ical(uid, title, start.date()))
        return uid
