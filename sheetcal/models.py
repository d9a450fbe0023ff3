from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any


TITLE_MARKER = "🎂"
DEFAULT_TAB = "Birthdays"


class ConfigurationError(RuntimeError):
    """Raised when the run cannot safely start (nothing has been mutated yet)."""


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def date_to_datetime(value: datetime | date | None, is_end: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    if is_end:
        return datetime.combine(value, time.max, tzinfo=timezone.utc)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def event_title(name: str) -> str:
    return f"{TITLE_MARKER} {name.strip()}"


@dataclass
class CalDAVConfig:
    base_url: str = ""
    username: str = ""
    password: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalDAVConfig":
        data = data or {}
        return cls(
            base_url=str(data.get("base_url", "")).strip(),
            username=str(data.get("username", "")).strip(),
            password=str(data.get("password", "")).strip(),
        )


@dataclass
class DestinationConfig:
    calendar_id: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DestinationConfig":
        data = data or {}
        return cls(calendar_id=str(data.get("calendar_id", "") or "").strip())


@dataclass
class SourceConfig:
    path: str = "data/birthdays.csv"
    table: str = ""
    tab: str = DEFAULT_TAB
    first_data_row: int = 2

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SourceConfig":
        data = data or {}
        return cls(
            path=str(data.get("path", "data/birthdays.csv") or "").strip(),
            table=str(data.get("table", "") or "").strip(),
            tab=str(data.get("tab", DEFAULT_TAB) or "").strip() or DEFAULT_TAB,
            # Row 1 is always the header.
            first_data_row=max(2, int(data.get("first_data_row", 2))),
        )


@dataclass
class SyncConfig:
    timezone: str = "UTC"
    debounce_seconds: float = 2.0
    lock_wait_seconds: float = 2.0
    horizon_years: int = 100

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(
            timezone=str(data.get("timezone", "UTC")).strip() or "UTC",
            debounce_seconds=max(0.0, float(data.get("debounce_seconds", 2.0))),
            lock_wait_seconds=max(0.0, float(data.get("lock_wait_seconds", 2.0))),
            horizon_years=max(1, int(data.get("horizon_years", 100))),
        )


@dataclass
class AppConfig:
    caldav: CalDAVConfig = field(default_factory=CalDAVConfig)
    destination: DestinationConfig = field(default_factory=DestinationConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            caldav=CalDAVConfig.from_dict(data.get("caldav")),
            destination=DestinationConfig.from_dict(data.get("destination")),
            source=SourceConfig.from_dict(data.get("source")),
            sync=SyncConfig.from_dict(data.get("sync")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CalendarInfo:
    calendar_id: str
    name: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class SourceRow:
    name: str
    raw_date: str
    row_number: int = 0


@dataclass(frozen=True)
class ParsedDate:
    day: int
    month: int
    year: int

    def to_date(self) -> date:
        return date(self.year, self.month, self.day)


@dataclass
class DestinationEvent:
    calendar_id: str
    uid: str
    summary: str = ""
    start: datetime | None = None
    all_day: bool = False
    href: str = ""
    series_id: str = ""

    @property
    def is_recurring(self) -> bool:
        return bool(self.series_id)


@dataclass
class RowOutcome:
    status: str
    row_number: int
    name: str
    reason: str = ""


@dataclass
class DeleteOutcome:
    status: str
    uid: str
    kind: str
    reason: str = ""


@dataclass
class DeleteSummary:
    series_deleted: int = 0
    events_deleted: int = 0
    failures: int = 0
    outcomes: list[DeleteOutcome] = field(default_factory=list)

    @property
    def deleted(self) -> int:
        return self.series_deleted + self.events_deleted


@dataclass
class ReconcileSummary:
    deletes: DeleteSummary = field(default_factory=DeleteSummary)
    rows: list[RowOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for outcome in self.rows if outcome.status == status)

    @property
    def created(self) -> int:
        return self._count("created")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")


@dataclass
class SyncResult:
    status: str
    message: str
    duration_ms: int
    trigger: str
    created: int = 0
    skipped: int = 0
    failed: int = 0
    deleted: int = 0
    run_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "message": self.message,
            "duration_ms": self.duration_ms,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "deleted": self.deleted,
            "trigger": self.trigger,
            "run_at": serialize_datetime(self.run_at),
        }


def default_app_config() -> AppConfig:
    return AppConfig()
