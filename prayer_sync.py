"""Cold-start and resume bootstrap: fetch when stale, then rebuild and restart timers."""
from __future__ import annotations

import logging
import threading
from datetime import date
from typing import List, Optional

import time_utils
from countdown import CountdownEngine
from notifications import NotificationScheduler
from prayer_api import PrayerTimesService
from prayer_errors import PrayerTimesError
from prayer_sequence import SequenceBuilder
from prayer_times import RawDayTimes
from scheduler import IO_EXECUTOR, MIDNIGHT_WATCH_TIMER, PrayerScheduler
from scheduling_context import SchedulingContext

LOGGER = logging.getLogger(__name__)

SYNC_ERROR_TOPIC = "sync_error"
MIDNIGHT_WATCH_SECONDS = 60
# Raw days kept before today: yesterday's group needs the day before's Magrib.
KEEP_DAYS_BEFORE_TODAY = 2


class SyncController:
    def __init__(
        self,
        context: SchedulingContext,
        service: PrayerTimesService,
        builder: SequenceBuilder,
        countdown: CountdownEngine,
        scheduler: PrayerScheduler,
        notifications: Optional[NotificationScheduler] = None,
    ) -> None:
        self.context = context
        self.service = service
        self.builder = builder
        self.countdown = countdown
        self.scheduler = scheduler
        self.notifications = notifications
        self._lock = threading.Lock()
        self._synced_date: Optional[date] = None

    @property
    def db(self):
        return self.context.db

    def sync(self) -> None:
        """Bring stored data, sequences and countdowns up to date for today.

        Fetch or parse failures are recorded under ``sync_error`` and re-raised;
        the previous sequences stay in place.
        """
        with self._lock:
            today = self.context.today()
            self._synced_date = today
            LOGGER.info("Sync started for %s", today)
            try:
                self.check_upgrade()
                if self.is_stale(today):
                    self.fetch_and_store(today)
                self.ensure_previous_year(today)
                self.builder.refresh_all()
                self.countdown.start_all()
                self.start_midnight_watch()
            except PrayerTimesError as exc:
                LOGGER.error("Sync failed: %s", exc)
                self.context.set(SYNC_ERROR_TOPIC, exc)
                raise
            self.context.set(SYNC_ERROR_TOPIC, None)

        if self.notifications is not None:
            try:
                self.notifications.refresh()
            except PrayerTimesError:
                LOGGER.exception("Notification refresh after sync failed")
        LOGGER.info("Sync complete for %s", today)

    # -- Steps -------------------------------------------------------------
    def check_upgrade(self) -> bool:
        """Drop cached prayer data when the installed version changed; preferences stay."""
        stored = self.db.get_stored_version()
        current = self.context.config.app_version
        if stored == current:
            return False
        LOGGER.info("App version changed (%s -> %s); clearing cached prayer data", stored, current)
        self.db.clear_days()
        self.db.clear_display_dates()
        self.db.set_stored_version(current)
        return True

    def is_stale(self, today: date) -> bool:
        if not self.db.has_day(today):
            LOGGER.info("No prayer data for %s", today)
            return True
        if time_utils.is_december(today) and not self.db.is_year_fetched(today.year + 1):
            LOGGER.info("December and %s not fetched yet", today.year + 1)
            return True
        return False

    def years_to_fetch(self, today: date) -> List[int]:
        years = [today.year]
        if time_utils.is_december(today):
            years.append(today.year + 1)
        return years

    def fetch_and_store(self, today: date) -> None:
        """Fetch every needed year first; cached data is replaced only once all fetches succeeded."""
        keep_from = time_utils.add_days(today, -KEEP_DAYS_BEFORE_TODAY)
        years = self.years_to_fetch(today)
        fetched: List[RawDayTimes] = []
        for year in years:
            fetched.extend(self.service.fetch_year(year, keep_from=keep_from))

        self.db.clear_days()
        self.db.save_days(fetched)
        for year in years:
            self.db.mark_year_fetched(year)
        LOGGER.info("Stored %d prayer days for %s", len(fetched), ", ".join(str(year) for year in years))

    def ensure_previous_year(self, today: date) -> None:
        """On January 1st, load the end of last year so yesterday's prayers exist."""
        if not time_utils.is_january_first(today):
            return
        yesterday = time_utils.add_days(today, -1)
        if self.db.has_day(yesterday):
            return
        LOGGER.info("January 1st: fetching the end of %s", yesterday.year)
        keep_from = time_utils.add_days(today, -KEEP_DAYS_BEFORE_TODAY)
        days = self.service.fetch_year(yesterday.year, keep_from=keep_from)
        self.db.save_days(days)
        self.db.mark_year_fetched(yesterday.year)

    # -- Date watch --------------------------------------------------------
    def start_midnight_watch(self) -> None:
        self.scheduler.start_interval(
            MIDNIGHT_WATCH_TIMER, MIDNIGHT_WATCH_SECONDS, self.check_date_change, executor=IO_EXECUTOR
        )

    def check_date_change(self) -> bool:
        today = self.context.today()
        if today == self._synced_date:
            return False
        LOGGER.info("Date changed (%s -> %s); syncing", self._synced_date, today)
        try:
            self.sync()
        except PrayerTimesError:
            LOGGER.debug("Date-change sync failed; error published on the context")
        return True
