from __future__ import annotations

import copy
import errno
import os
import threading
from pathlib import Path
from typing import IO, Any, Mapping

import yaml

from sheetcal.models import AppConfig, ConfigurationError, default_app_config


# Environment values win over the file, so secrets can stay out of config.yaml.
ENV_OVERRIDES = {
    "SHEETCAL_CALDAV_URL": ("caldav", "base_url"),
    "SHEETCAL_CALDAV_USERNAME": ("caldav", "username"),
    "SHEETCAL_CALDAV_PASSWORD": ("caldav", "password"),
    "SHEETCAL_CALENDAR_ID": ("destination", "calendar_id"),
    "SHEETCAL_SOURCE_PATH": ("source", "path"),
}


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            overrides.setdefault(section, {})[key] = value
    return overrides


def _dump(config_dict: dict[str, Any], handle: IO[str]) -> None:
    yaml.safe_dump(
        config_dict,
        handle,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )


class ConfigManager:
    def __init__(self, config_path: str | os.PathLike[str]) -> None:
        self.config_path = Path(config_path)
        self._lock = threading.RLock()
        self._ensure_exists()

    def _ensure_exists(self) -> None:
        if self.config_path.exists():
            return
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        self.save(default_app_config())

    def _load_file(self) -> dict[str, Any]:
        with self.config_path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle) or {}

    def load(self) -> AppConfig:
        with self._lock:
            try:
                data = _deep_merge(self._load_file(), _env_overrides(os.environ))
                return AppConfig.from_dict(data)
            except (yaml.YAMLError, AttributeError, TypeError, ValueError) as exc:
                raise ConfigurationError(f"Config file {self.config_path} is invalid: {exc}") from exc

    def save(self, config: AppConfig) -> None:
        with self._lock:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            config_dict = config.to_dict()
            tmp_path = self.config_path.with_suffix(self.config_path.suffix + ".tmp")
            with tmp_path.open("w", encoding="utf-8") as handle:
                _dump(config_dict, handle)
            try:
                tmp_path.replace(self.config_path)
            except OSError as exc:
                # Some bind-mounted single files in containers cannot be atomically replaced.
                if exc.errno != errno.EBUSY:
                    raise
                with self.config_path.open("w", encoding="utf-8") as handle:
                    _dump(config_dict, handle)
                if tmp_path.exists():
                    tmp_path.unlink()

    def update(self, payload: dict[str, Any]) -> AppConfig:
        # Merge into the file contents only, env overrides are never persisted.
        with self._lock:
            current = AppConfig.from_dict(self._load_file()).to_dict()
            merged = _deep_merge(current, payload)
            config = AppConfig.from_dict(merged)
            self.save(config)
            return self.load()

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        if config.get("caldav", {}).get("password"):
            config["caldav"]["password"] = "***"
        return config
