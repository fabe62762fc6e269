"""Entry point for the headless prayer scheduling service."""
from __future__ import annotations

import logging
import sys
import threading
from pathlib import Path
from typing import Optional

from app_config import AppConfig, load_config
from countdown import CountdownEngine, CountdownState
from notifications import NotificationScheduler, SchedulerNotificationCenter
from prayer_api import PrayerTimesService
from prayer_errors import PrayerTimesError
from prayer_sequence import SequenceBuilder
from prayer_store import KeyValueStore
from prayer_sync import SyncController
from scheduler import PrayerScheduler
from scheduling_context import SchedulingContext

APP_ROOT = Path(__file__).parent
CONFIG_PATH = APP_ROOT / "config.json"
DEFAULT_STORAGE_PATH = APP_ROOT / "storage.json"

LOGGER = logging.getLogger(__name__)


class PrayerService:
    """Wires the scheduling components together and owns their lifecycle."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        storage_path = Path(config.storage_path) if config.storage_path else DEFAULT_STORAGE_PATH
        self.context = SchedulingContext(config, store=KeyValueStore(storage_path))
        self.scheduler = PrayerScheduler(self.context.tzinfo)
        self.builder = SequenceBuilder(self.context)
        self.countdown = CountdownEngine(self.context, self.builder, self.scheduler)
        self.notifications = NotificationScheduler(
            self.context,
            self.builder,
            SchedulerNotificationCenter(self.scheduler),
            scheduler=self.scheduler,
        )
        self.sync_controller = SyncController(
            self.context,
            PrayerTimesService(config),
            self.builder,
            self.countdown,
            self.scheduler,
            notifications=self.notifications,
        )
        self.context.subscribe("countdown:standard", self._log_countdown)

    def _log_countdown(self, state: Optional[CountdownState]) -> None:
        if state is not None:
            LOGGER.debug("Next prayer: %s in %s", state.prayer_name.value, state.text)

    def start(self) -> None:
        self.scheduler.start()
        self.sync_controller.sync()
        self.notifications.initialize()

    def stop(self) -> None:
        self.countdown.stop_all()
        self.scheduler.shutdown()


def main() -> int:
    config = load_config(CONFIG_PATH)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    service = PrayerService(config)
    try:
        service.start()
    except PrayerTimesError:
        LOGGER.exception("Startup sync failed")
        service.stop()
        return 1

    stop_event = threading.Event()
    try:
        while not stop_event.wait(1):
            pass
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down")
    finally:
        service.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
