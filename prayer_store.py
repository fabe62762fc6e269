"""Key-value persistence and typed accessors for prayer data and preferences."""
from __future__ import annotations

import json
import logging
import threading
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from prayer_times import RawDayTimes, ScheduleKind

LOGGER = logging.getLogger(__name__)

PRAYER_PREFIX = "prayer_"
FETCHED_YEARS_KEY = "fetched_years"
DISPLAY_DATE_PREFIX = "display_date_"
PREFERENCE_ALERT_PREFIX = "preference_alert_"
PREFERENCE_SOUND_KEY = "preference_sound"
PREFERENCE_HIJRI_DATE_KEY = "preference_hijri_date"
SCHEDULED_NOTIFICATIONS_PREFIX = "scheduled_notifications_"
LAST_NOTIFICATION_SCHEDULE_KEY = "last_notification_schedule_check"
APP_VERSION_KEY = "app_installed_version"


class KeyValueStore:
    """Synchronous JSON key-value store, optionally backed by a file."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
        if not isinstance(payload, dict):
            raise ValueError(f"Storage file {self._path} must contain a JSON object")
        LOGGER.debug("Loaded %d keys from %s", len(payload), self._path)
        return payload

    def _flush(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(self._data, handle, indent=2, ensure_ascii=False)
        tmp_path.replace(self._path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()
        LOGGER.debug("STORE WRITE: %s", key)

    def set_many(self, items: Dict[str, Any]) -> None:
        with self._lock:
            self._data.update(items)
            self._flush()
        LOGGER.debug("STORE WRITE: %d keys", len(items))

    def remove(self, key: str) -> None:
        with self._lock:
            if self._data.pop(key, None) is not None:
                self._flush()
        LOGGER.debug("STORE DELETE: %s", key)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def scan_prefix(self, prefix: str) -> Dict[str, Any]:
        with self._lock:
            return {key: value for key, value in self._data.items() if key.startswith(prefix)}

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            matching = [key for key in self._data if key.startswith(prefix)]
            for key in matching:
                del self._data[key]
            if matching:
                self._flush()
        LOGGER.debug("STORE INFO: cleared %d entries with prefix %r", len(matching), prefix)
        return len(matching)


class PrayerDatabase:
    """Typed access to the keys the scheduling engine persists."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    # -- Raw prayer days ---------------------------------------------------
    def save_days(self, days: Iterable[RawDayTimes]) -> int:
        items = {f"{PRAYER_PREFIX}{day.date}": day.to_dict() for day in days}
        self.store.set_many(items)
        LOGGER.info("Saved %d prayer days", len(items))
        return len(items)

    def get_day(self, day: date) -> Optional[RawDayTimes]:
        payload = self.store.get(f"{PRAYER_PREFIX}{day.isoformat()}")
        if payload is None:
            return None
        return RawDayTimes.from_payload(day.isoformat(), payload)

    def has_day(self, day: date) -> bool:
        return self.store.get(f"{PRAYER_PREFIX}{day.isoformat()}") is not None

    def clear_days(self) -> None:
        self.store.clear_prefix(PRAYER_PREFIX)
        self.store.remove(FETCHED_YEARS_KEY)

    # -- Fetched years -----------------------------------------------------
    def fetched_years(self) -> Dict[str, bool]:
        return dict(self.store.get(FETCHED_YEARS_KEY) or {})

    def is_year_fetched(self, year: int) -> bool:
        return bool(self.fetched_years().get(str(year)))

    def mark_year_fetched(self, year: int) -> None:
        years = self.fetched_years()
        years[str(year)] = True
        self.store.set(FETCHED_YEARS_KEY, years)

    # -- Display dates -----------------------------------------------------
    def get_display_date(self, kind: ScheduleKind) -> Optional[str]:
        return self.store.get(f"{DISPLAY_DATE_PREFIX}{kind.value}")

    def set_display_date(self, kind: ScheduleKind, value: Optional[str]) -> None:
        key = f"{DISPLAY_DATE_PREFIX}{kind.value}"
        if value is None:
            self.store.remove(key)
        elif self.store.get(key) != value:
            self.store.set(key, value)

    def clear_display_dates(self) -> None:
        self.store.clear_prefix(DISPLAY_DATE_PREFIX)

    # -- Preferences -------------------------------------------------------
    def get_alert_preference(self, kind: ScheduleKind, index: int) -> Optional[Dict[str, Any]]:
        return self.store.get(f"{PREFERENCE_ALERT_PREFIX}{kind.value}_{index}")

    def set_alert_preference(self, kind: ScheduleKind, index: int, payload: Dict[str, Any]) -> None:
        self.store.set(f"{PREFERENCE_ALERT_PREFIX}{kind.value}_{index}", payload)

    def get_sound_preference(self) -> int:
        return int(self.store.get(PREFERENCE_SOUND_KEY, 0))

    def set_sound_preference(self, index: int) -> None:
        self.store.set(PREFERENCE_SOUND_KEY, int(index))

    def get_hijri_date_preference(self) -> bool:
        return bool(self.store.get(PREFERENCE_HIJRI_DATE_KEY, False))

    def set_hijri_date_preference(self, enabled: bool) -> None:
        self.store.set(PREFERENCE_HIJRI_DATE_KEY, bool(enabled))

    # -- Notification bookkeeping -----------------------------------------
    def notification_prefix(self, kind: Optional[ScheduleKind] = None, index: Optional[int] = None, channel: str = "") -> str:
        prefix = SCHEDULED_NOTIFICATIONS_PREFIX
        if kind is None:
            return prefix
        prefix += f"{kind.value}_"
        if index is None:
            return prefix
        prefix += f"{index}_"
        if channel:
            prefix += f"{channel}_"
        return prefix

    def add_notification_record(self, key_prefix: str, record_id: str, payload: Dict[str, Any]) -> None:
        self.store.set(f"{key_prefix}{record_id}", payload)

    def remove_notification_record(self, key_prefix: str, record_id: str) -> None:
        self.store.remove(f"{key_prefix}{record_id}")

    def notification_records(self, key_prefix: str) -> List[Dict[str, Any]]:
        return list(self.store.scan_prefix(key_prefix).values())

    def clear_notification_records(self, key_prefix: str = SCHEDULED_NOTIFICATIONS_PREFIX) -> int:
        return self.store.clear_prefix(key_prefix)

    def get_last_notification_schedule(self) -> Optional[float]:
        value = self.store.get(LAST_NOTIFICATION_SCHEDULE_KEY)
        return float(value) if value else None

    def set_last_notification_schedule(self, timestamp: float) -> None:
        self.store.set(LAST_NOTIFICATION_SCHEDULE_KEY, timestamp)

    # -- App version -------------------------------------------------------
    def get_stored_version(self) -> Optional[str]:
        return self.store.get(APP_VERSION_KEY)

    def set_stored_version(self, version: str) -> None:
        self.store.set(APP_VERSION_KEY, version)
