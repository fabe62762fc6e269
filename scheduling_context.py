"""Process-wide state shared by the scheduling components."""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import date, datetime
from typing import Any, Callable, DefaultDict, Dict, List, Optional

import pytz

import time_utils
from app_config import AppConfig
from prayer_store import KeyValueStore, PrayerDatabase

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Listener = Callable[[Any], None]


class SchedulingContext:
    """Owns the in-memory state and is handed to every component.

    Sequences are written only by the sequence builder, countdown values only
    by the countdown engine. Presentation code reads values and may
    ``subscribe`` to a topic to be called with each new value.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[KeyValueStore] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.config = config
        self.tzinfo: pytz.BaseTzInfo = config.tzinfo
        self.store = store or KeyValueStore()
        self.db = PrayerDatabase(self.store)
        self._clock = clock or (lambda: time_utils.now(self.tzinfo))
        self._lock = threading.RLock()
        self._values: Dict[str, Any] = {}
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def now(self) -> datetime:
        moment = self._clock()
        if moment.tzinfo is None:
            raise ValueError("Clock must return timezone-aware datetimes")
        return self.tzinfo.normalize(moment.astimezone(self.tzinfo))

    def today(self) -> date:
        return self.now().date()

    # -- Observable values ------------------------------------------------
    def get(self, topic: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(topic, default)

    def set(self, topic: str, value: Any) -> None:
        with self._lock:
            changed = self._values.get(topic) != value
            self._values[topic] = value
            listeners = list(self._listeners.get(topic, ()))
        if not changed:
            return
        for listener in listeners:
            try:
                listener(value)
            except Exception:
                LOGGER.exception("Listener for %s failed", topic)

    def subscribe(self, topic: str, listener: Listener) -> Callable[[], None]:
        """Register *listener* for *topic*; returns a function that unsubscribes it."""
        with self._lock:
            self._listeners[topic].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners.get(topic, []):
                    self._listeners[topic].remove(listener)

        return unsubscribe
