from __future__ import annotations

import calendar
from datetime import date

from sheetcal.models import ParsedDate


def _to_int(value: str) -> int | None:
    # int() tolerates digit separators; a date cell should not.
    if "_" in value:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def parse_raw_date(raw: str | None, today: date | None = None) -> ParsedDate | None:
    """Parse ``DD/MM[/YYYY]`` or ``DD-MM[-YYYY]`` into a ``ParsedDate``.

    Returns ``None`` for anything that is not a real calendar date. A missing
    year falls back to the year of ``today`` (the current date by default).
    """
    text = str(raw or "").strip()
    if not text:
        return None
    separator = "/" if "/" in text else "-"
    parts = text.split(separator)
    if len(parts) < 2:
        return None

    day = _to_int(parts[0])
    month = _to_int(parts[1])
    if len(parts) > 2:
        year = _to_int(parts[2])
    else:
        year = (today or date.today()).year
    if day is None or month is None or year is None:
        return None

    if month < 1 or month > 12:
        return None
    if year < 1 or year > 9999:
        return None
    days_in_month = calendar.monthrange(year, month)[1]
    if day < 1 or day > days_in_month:
        return None
    return ParsedDate(day=day, month=month, year=year)
