"""YAML-backed settings with built-in defaults.

The file path defaults to ``config/logship.yaml`` and can be overridden with
the LOGSHIP_CONFIG_PATH env var. Values found in the file are merged over
DEFAULTS section by section, so a file only needs the keys it changes.
"""

import copy
import logging
import os

import yaml

logger = logging.getLogger(__name__)

DEFAULTS = {
    "naming": {
        "produce_job_prefix": "LSBackup_",
        "transport_job_prefix": "LSCopy_",
        "apply_job_prefix": "LSRestore_",
        "produce_schedule_prefix": "LSBackupSchedule_",
        "transport_schedule_prefix": "LSCopySchedule_",
        "apply_schedule_prefix": "LSRestoreSchedule_",
        "secondary_prefix": "",
        "secondary_suffix": "",
    },
    "retention": {
        "produce_minutes": 4320,
        "transport_minutes": 4320,
        "history_minutes": 14420,
    },
    "thresholds": {
        "backup_minutes": 60,
        "restore_minutes": 45,
        "restore_delay_minutes": 0,
    },
    "restore": {
        "mode": "NORECOVERY",
        "standby_directory": "",
        "disconnect_users": False,
        "compress_backup": False,
    },
    "jobs": {
        "produce_enabled": True,
        "transport_enabled": True,
        "apply_enabled": True,
    },
    "recovery": {
        "poll_interval_seconds": 5,
        "max_wait_seconds": 3600,
    },
    "engine": {
        "backend": "local",  # local | sqlagent
        "odbc_driver": "ODBC Driver 17 for SQL Server",
    },
    "database": {
        "path": "logship.db",
    },
    "logging": {
        "level": "INFO",
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class SettingsStore:
    def __init__(self, path: str | None = None):
        self.path = path or os.environ.get("LOGSHIP_CONFIG_PATH", "config/logship.yaml")
        self._cache = None

    def load(self) -> dict:
        if self._cache is None:
            data = {}
            if os.path.exists(self.path):
                with open(self.path, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            else:
                logger.info("Settings file %s not found, using built-in defaults", self.path)
            self._cache = _merge(DEFAULTS, data)
        return self._cache

    def reload(self) -> dict:
        self._cache = None
        return self.load()

    def section(self, name: str) -> dict:
        return self.load().get(name, {})


settings_store = SettingsStore()
