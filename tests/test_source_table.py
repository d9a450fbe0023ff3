import tempfile
import unittest
from pathlib import Path

from sheetcal.models import ConfigurationError, SourceConfig
from sheetcal.source_table import CsvTableSource, SourceTableError


class CsvTableSourceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.path = Path(self.temp_dir.name) / "birthdays.csv"

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _source(self, **overrides: object) -> CsvTableSource:
        data = {"path": str(self.path), "tab": "Birthdays"}
        data.update(overrides)
        return CsvTableSource(SourceConfig.from_dict(data))

    def test_header_row_is_excluded(self) -> None:
        self.path.write_text("Name,Date\nAlice,15/01\nCarol,03/07/1990\n", encoding="utf-8")

        rows = self._source().read_rows()

        self.assertEqual([(row.name, row.raw_date, row.row_number) for row in rows], [
            ("Alice", "15/01", 2),
            ("Carol", "03/07/1990", 3),
        ])

    def test_first_data_row_is_configurable(self) -> None:
        self.path.write_text("Name,Date\nnotes,\nAlice,15/01\n", encoding="utf-8")

        rows = self._source(first_data_row=3).read_rows()

        self.assertEqual([row.name for row in rows], ["Alice"])

    def test_first_data_row_never_includes_header(self) -> None:
        self.assertEqual(SourceConfig.from_dict({"first_data_row": 1}).first_data_row, 2)

    def test_short_rows_and_bom(self) -> None:
        self.path.write_bytes("\ufeffName,Date\nOnlyName\n\n,01/01\n".encode("utf-8"))

        rows = self._source().read_rows()

        self.assertEqual([(row.name, row.raw_date) for row in rows], [("OnlyName", ""), ("", ""), ("", "01/01")])

    def test_missing_file_is_configuration_error(self) -> None:
        with self.assertRaises(SourceTableError) as ctx:
            self._source().read_rows()
        self.assertIsInstance(ctx.exception, ConfigurationError)

    def test_matches_tab(self) -> None:
        source = self._source()
        self.assertTrue(source.matches(tab="birthdays"))
        self.assertTrue(source.matches(tab="  Birthdays "))
        self.assertTrue(source.matches(tab=""))
        self.assertFalse(source.matches(tab="Budget"))

    def test_matches_table_by_name_or_file_stem(self) -> None:
        named = self._source(table="People")
        self.assertTrue(named.matches(tab="Birthdays", table="people"))
        self.assertTrue(named.matches(tab="Birthdays", table=""))
        self.assertFalse(named.matches(tab="Birthdays", table="some-other-sheet"))

        unnamed = self._source()
        self.assertEqual(unnamed.table_name, "birthdays")
        self.assertTrue(unnamed.matches(tab="Birthdays", table="Birthdays"))
        self.assertFalse(unnamed.matches(tab="Birthdays", table="some-other-sheet"))


if __name__ == "__main__":
    unittest.main()
