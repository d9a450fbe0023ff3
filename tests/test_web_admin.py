import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from sheetcal.models import SyncResult
from sheetcal.web_admin import create_app


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = str(Path(self.temp_dir.name) / "config.yaml")
        self.state_path = str(Path(self.temp_dir.name) / "state.db")
        self.source_path = Path(self.temp_dir.name) / "birthdays.csv"
        self.source_path.write_text("Name,Date\nAlice,15/01/1985\nBob,31/02/2024\n", encoding="utf-8")
        env = {"SHEETCAL_CONFIG_PATH": self.config_path, "SHEETCAL_STATE_PATH": self.state_path}
        self.env_patch = mock.patch.dict(os.environ, env)
        self.env_patch.start()
        self.app = create_app()
        self.client = TestClient(self.app)

        seed_payload = {
            "caldav": {"base_url": "https://dav.example.com", "username": "u", "password": "secret-pass"},
            "destination": {"calendar_id": "https://dav.example.com/cal/birthdays/"},
            "source": {"path": str(self.source_path), "table": "people", "tab": "Birthdays"},
        }
        resp = self.client.put("/api/config", json={"payload": seed_payload})
        self.assertEqual(resp.status_code, 200)

    def tearDown(self) -> None:
        self.env_patch.stop()
        self.temp_dir.cleanup()

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_config_password_is_masked(self) -> None:
        resp = self.client.get("/api/config")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["caldav"]["password"], "***")

    def test_put_config_masked_or_empty_password_does_not_override(self) -> None:
        for password in ["", "***"]:
            resp = self.client.put(
                "/api/config",
                json={"payload": {"caldav": {"base_url": "https://dav-2.example.com", "password": password}}},
            )
            self.assertEqual(resp.status_code, 200)
        config = self.app.state.context.config_manager.load()
        self.assertEqual(config.caldav.password, "secret-pass")
        self.assertEqual(config.caldav.base_url, "https://dav-2.example.com")

    def test_source_edit_on_synced_tab_is_dispatched(self) -> None:
        with mock.patch.object(self.app.state.context.dispatcher, "dispatch") as dispatch:
            resp = self.client.post("/api/hooks/source-edit", json={"tab": "birthdays", "table": "people"})
        self.assertEqual(resp.status_code, 202)
        self.assertTrue(resp.json()["accepted"])
        dispatch.assert_called_once_with(trigger="edit")

    def test_source_edit_on_other_tab_is_ignored(self) -> None:
        with mock.patch.object(self.app.state.context.dispatcher, "dispatch") as dispatch:
            resp = self.client.post("/api/hooks/source-edit", json={"tab": "Budget"})
        self.assertEqual(resp.status_code, 202)
        self.assertFalse(resp.json()["accepted"])
        dispatch.assert_not_called()

    def test_source_edit_on_other_table_is_ignored(self) -> None:
        with mock.patch.object(self.app.state.context.dispatcher, "dispatch") as dispatch:
            resp = self.client.post("/api/hooks/source-edit", json={"tab": "Birthdays", "table": "some-other-sheet"})
        self.assertEqual(resp.status_code, 202)
        self.assertFalse(resp.json()["accepted"])
        dispatch.assert_not_called()

    def test_manual_sync_returns_result(self) -> None:
        fake_result = SyncResult(status="success", message="ok", duration_ms=5, trigger="manual", created=1)
        with mock.patch.object(self.app.state.context.sync_engine, "run_once", return_value=fake_result) as run_once:
            resp = self.client.post("/api/sync/run")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["result"]["created"], 1)
        run_once.assert_called_once_with(trigger="manual")

    def test_manual_sync_surfaces_configuration_error(self) -> None:
        self.client.put("/api/config", json={"payload": {"destination": {"calendar_id": ""}}})
        resp = self.client.post("/api/sync/run")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("calendar id", resp.json()["detail"])
        runs = self.client.get("/api/sync/status").json()["runs"]
        self.assertEqual(runs[0]["status"], "skipped")
        events = self.client.get("/api/audit/events").json()["events"]
        self.assertEqual(events[0]["action"], "config_error")

    def test_manual_sync_with_broken_config_file_is_a_conflict(self) -> None:
        Path(self.config_path).write_text("sync:\n  lock_wait_seconds: soon\n", encoding="utf-8")
        resp = self.client.post("/api/sync/run")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("is invalid", resp.json()["detail"])
        runs = self.client.get("/api/sync/status").json()["runs"]
        self.assertEqual(runs[0]["status"], "skipped")

    def test_source_preview(self) -> None:
        resp = self.client.get("/api/source/preview")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["valid"], 1)
        self.assertEqual([row["name"] for row in data["rows"]], ["Alice", "Bob"])

    def test_source_preview_missing_table(self) -> None:
        self.source_path.unlink()
        resp = self.client.get("/api/source/preview")
        self.assertEqual(resp.status_code, 409)


if __name__ == "__main__":
    unittest.main()
