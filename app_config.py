"""Configuration loading for the prayer scheduling service."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import pytz
from tzlocal import get_localzone_name

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Europe/London"
DEFAULT_API_ENDPOINT = "https://www.londonprayertimes.com/api/times"

# Minute offsets for the derived prayers. Negative values move the prayer earlier.
DEFAULT_TIME_ADJUSTMENTS = {
    "last_third": 0,
    "suhoor": -20,
    "duha": 20,
    "istijaba": -60,
}


@dataclass
class AppConfig:
    timezone: str = DEFAULT_TIMEZONE
    api_endpoint: str = DEFAULT_API_ENDPOINT
    api_key: str = ""
    api_timeout: int = 10
    early_morning_cutoff_hour: int = 6
    time_adjustments: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_TIME_ADJUSTMENTS))
    notification_rolling_days: int = 7
    notification_refresh_hours: int = 24
    background_task_interval_hours: int = 3
    countdown_guard_seconds: int = 2
    storage_path: Optional[str] = None
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not 0 <= int(self.early_morning_cutoff_hour) <= 23:
            raise ValueError(f"early_morning_cutoff_hour out of range: {self.early_morning_cutoff_hour}")
        if int(self.notification_rolling_days) < 1:
            raise ValueError("notification_rolling_days must be at least 1")
        if int(self.notification_refresh_hours) < 1:
            raise ValueError("notification_refresh_hours must be at least 1")

        adjustments = dict(DEFAULT_TIME_ADJUSTMENTS)
        for key, value in (self.time_adjustments or {}).items():
            if key not in adjustments:
                LOGGER.debug("Ignoring unknown time adjustment %s", key)
                continue
            adjustments[key] = int(value)
        self.time_adjustments = adjustments

    @property
    def tzinfo(self) -> pytz.BaseTzInfo:
        return resolve_timezone(self.timezone)

    def adjustment(self, name: str) -> int:
        return int(self.time_adjustments.get(name, 0))


def resolve_timezone(name: Optional[str]) -> pytz.BaseTzInfo:
    """Return a pytz zone for *name*, where ``"local"`` means the device zone."""
    timezone_name = name or DEFAULT_TIMEZONE
    if timezone_name == "local":
        try:
            timezone_name = get_localzone_name()
        except Exception:  # pragma: no cover - platform dependent
            LOGGER.warning("Unable to detect local timezone; using %s", DEFAULT_TIMEZONE)
            timezone_name = DEFAULT_TIMEZONE
    try:
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError as exc:
        raise ValueError(f"Unknown timezone '{timezone_name}'") from exc


def load_config(path: Path) -> AppConfig:
    """Load an ``AppConfig`` from a JSON file, falling back to defaults when absent."""
    if not path.exists():
        LOGGER.debug("Config file %s not found; using defaults", path)
        return AppConfig()

    with path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return config_from_dict(payload)


def config_from_dict(payload: Dict[str, Any]) -> AppConfig:
    known = {item.name for item in fields(AppConfig)}
    values = {}
    for key, value in payload.items():
        if key not in known:
            LOGGER.debug("Ignoring unknown config key %s", key)
            continue
        values[key] = value
    config = AppConfig(**values)
    resolve_timezone(config.timezone)
    LOGGER.debug("Loaded config keys: %s", sorted(values))
    return config
