from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from sheetcal.caldav_client import CalDAVService
from sheetcal.config_manager import ConfigManager
from sheetcal.debounce import DebounceCoalescer
from sheetcal.guard import ReconcileGuard
from sheetcal.models import ConfigurationError
from sheetcal.scheduler import ChangeDispatcher
from sheetcal.source_table import CsvTableSource
from sheetcal.state_store import StateStore
from sheetcal.sync_engine import SyncEngine


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class SourceEditNotification(BaseModel):
    tab: str = ""
    table: str = ""


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        config = self.config_manager.load()
        self.guard = ReconcileGuard(wait_seconds=config.sync.lock_wait_seconds)
        self.sync_engine = SyncEngine(self.config_manager, self.state_store, self.guard)
        self.coalescer = DebounceCoalescer(
            self.state_store,
            self.sync_engine.run_once,
            window_seconds=config.sync.debounce_seconds,
        )
        self.dispatcher = ChangeDispatcher(self.coalescer)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_caldav_password = str(current.get("caldav", {}).get("password", ""))

    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        password = caldav.get("password")
        if password is not None:
            password_text = str(password).strip()
            if password_text in {"", "***"}:
                if current_caldav_password:
                    caldav.pop("password", None)
                else:
                    caldav["password"] = ""
        if not caldav:
            sanitized.pop("caldav", None)

    return sanitized


def create_app() -> FastAPI:
    config_path = os.getenv("SHEETCAL_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("SHEETCAL_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="sheetcal", version="0.1.0")
    app.state.context = context

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.dispatcher.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        if not isinstance(request.payload, dict):
            raise HTTPException(status_code=400, detail="payload must be an object")
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        app.state.context.config_manager.update(sanitized_payload)
        return {
            "message": "config updated",
            "config": app.state.context.config_manager.masked(),
        }

    @app.get("/api/calendars")
    def list_calendars() -> dict[str, Any]:
        config = app.state.context.config_manager.load()
        service = CalDAVService(config.caldav)
        try:
            calendars = service.list_calendars()
        except Exception as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        output = []
        for cal in calendars:
            item = cal.to_dict()
            item["is_destination"] = cal.calendar_id.rstrip("/") == config.destination.calendar_id.rstrip("/")
            output.append(item)
        return {"calendars": output}

    @app.get("/api/source/preview")
    def source_preview() -> dict[str, Any]:
        try:
            rows = app.state.context.sync_engine.preview_source()
        except ConfigurationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return {"rows": rows, "valid": sum(1 for row in rows if row["valid"])}

    @app.post("/api/sync/run")
    def trigger_sync() -> dict[str, Any]:
        result = app.state.context.sync_engine.run_once(trigger="manual")
        if result.status == "skipped":
            raise HTTPException(status_code=409, detail=result.message)
        return {"message": "sync completed", "result": result.to_dict()}

    @app.post("/api/hooks/source-edit", status_code=202)
    def source_edit(notification: SourceEditNotification) -> dict[str, Any]:
        try:
            config = app.state.context.config_manager.load()
        except ConfigurationError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        if not CsvTableSource(config.source).matches(tab=notification.tab, table=notification.table):
            reason = f"table {notification.table!r} tab {notification.tab!r} is not synced"
            return {"accepted": False, "reason": reason}
        app.state.context.dispatcher.dispatch(trigger="edit")
        return {"accepted": True}

    @app.get("/api/sync/status")
    def sync_status(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_sync_runs(limit=limit)}

    @app.get("/api/audit/events")
    def audit_events(limit: int = 100, run_id: int | None = None) -> dict[str, Any]:
        return {"events": app.state.context.state_store.recent_audit_events(limit=limit, run_id=run_id)}

    return app


app = create_app()
