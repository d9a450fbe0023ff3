from __future__ import annotations

import csv
from pathlib import Path

from sheetcal.models import ConfigurationError, SourceConfig, SourceRow


class SourceTableError(ConfigurationError):
    pass


def _normalize(value: str | None) -> str:
    return " ".join(str(value or "").split()).casefold()


class CsvTableSource:
    """Read ``(name, date)`` rows from a CSV export of the source table.

    Column A holds the name and column B the date text; row 1 is the header.
    Cells are returned as raw strings, parsing happens in the reconciler.
    """

    def __init__(self, config: SourceConfig) -> None:
        self.config = config

    @property
    def path(self) -> Path:
        return Path(self.config.path)

    @property
    def table_name(self) -> str:
        """``source.table`` when set, otherwise the file name without suffix."""
        return self.config.table or self.path.stem

    def matches(self, tab: str | None = "", table: str | None = "") -> bool:
        # Notifications may leave either field empty; an empty field matches.
        if _normalize(table) and _normalize(table) != _normalize(self.table_name):
            return False
        return not _normalize(tab) or _normalize(tab) == _normalize(self.config.tab)

    def read_rows(self) -> list[SourceRow]:
        if not self.config.path:
            raise SourceTableError("Source table path is not configured.")
        if not self.path.is_file():
            raise SourceTableError(f"Source table not found: {self.path}")

        rows: list[SourceRow] = []
        with self.path.open("r", encoding="utf-8-sig", newline="") as handle:
            for row_number, cells in enumerate(csv.reader(handle), start=1):
                if row_number < self.config.first_data_row:
                    continue
                name = cells[0] if len(cells) > 0 else ""
                raw_date = cells[1] if len(cells) > 1 else ""
                rows.append(SourceRow(name=name, raw_date=raw_date, row_number=row_number))
        return rows
