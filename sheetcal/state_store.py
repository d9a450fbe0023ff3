from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence


SCHEMA = """
CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_at TEXT NOT NULL,
    trigger TEXT NOT NULL,
    status TEXT NOT NULL,
    message TEXT,
    duration_ms INTEGER NOT NULL,
    created INTEGER NOT NULL,
    skipped INTEGER NOT NULL,
    failed INTEGER NOT NULL,
    deleted INTEGER NOT NULL
);
CREATE TABLE IF NOT EXISTS audit_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id INTEGER,
    created_at TEXT NOT NULL,
    subject TEXT NOT NULL,
    action TEXT NOT NULL,
    details_json TEXT NOT NULL
);
-- Single-row slots shared between worker threads, e.g. the debounce token.
CREATE TABLE IF NOT EXISTS app_meta (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

RUN_COLUMNS = ("trigger", "status", "message", "duration_ms", "created", "skipped", "failed", "deleted")


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StateStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        with self._lock, closing(self._connect()) as conn:
            conn.executescript(SCHEMA)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    def _write(self, sql: str, params: Sequence[Any]) -> int:
        with self._lock, closing(self._connect()) as conn:
            cursor = conn.execute(sql, params)
            conn.commit()
            return int(cursor.lastrowid or 0)

    def _read(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        with self._lock, closing(self._connect()) as conn:
            return conn.execute(sql, params).fetchall()

    def record_sync_run(
        self,
        *,
        trigger: str,
        status: str,
        message: str,
        duration_ms: int,
        created: int = 0,
        skipped: int = 0,
        failed: int = 0,
        deleted: int = 0,
    ) -> int:
        placeholders = ", ".join("?" for _ in range(len(RUN_COLUMNS) + 1))
        return self._write(
            f"INSERT INTO sync_runs(run_at, {', '.join(RUN_COLUMNS)}) VALUES ({placeholders})",
            (_utc_now(), trigger, status, message, duration_ms, created, skipped, failed, deleted),
        )

    def recent_sync_runs(self, limit: int = 20) -> list[dict[str, Any]]:
        rows = self._read(
            f"SELECT id, run_at, {', '.join(RUN_COLUMNS)} FROM sync_runs ORDER BY id DESC LIMIT ?",
            (max(1, limit),),
        )
        return [dict(row) for row in rows]

    def record_audit_event(
        self,
        *,
        subject: str,
        action: str,
        details: dict[str, Any],
        run_id: int | None = None,
    ) -> None:
        self._write(
            "INSERT INTO audit_events(run_id, created_at, subject, action, details_json) VALUES (?, ?, ?, ?, ?)",
            (run_id, _utc_now(), subject, action, json.dumps(details, ensure_ascii=False)),
        )

    def recent_audit_events(self, limit: int = 100, run_id: int | None = None) -> list[dict[str, Any]]:
        """Newest first, optionally only the events of one run."""
        where, params = ("", []) if run_id is None else ("WHERE run_id = ?", [int(run_id)])
        rows = self._read(
            f"SELECT id, run_id, created_at, subject, action, details_json FROM audit_events {where} "
            "ORDER BY id DESC LIMIT ?",
            (*params, max(1, limit)),
        )
        events = []
        for row in rows:
            event = dict(row)
            event["details"] = json.loads(event.pop("details_json") or "{}")
            events.append(event)
        return events

    def set_meta(self, key: str, value: str) -> None:
        self._write(
            "INSERT INTO app_meta(key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (str(key), str(value), _utc_now()),
        )

    def get_meta(self, key: str) -> str | None:
        rows = self._read("SELECT value FROM app_meta WHERE key = ?", (str(key),))
        return str(rows[0]["value"]) if rows else None
