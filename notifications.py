"""Alert preferences translated into a rolling set of scheduled notifications."""
from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional, Set

import time_utils
from prayer_errors import PermissionDenied, PrayerTimesError
from prayer_sequence import SequenceBuilder
from prayer_times import Prayer, PrayerName, ScheduleKind, names_for
from scheduler import PrayerScheduler
from scheduling_context import SchedulingContext

LOGGER = logging.getLogger(__name__)

REMINDER_OFFSET_MIN = 5
REMINDER_OFFSET_MAX = 30
DEFAULT_REMINDER_OFFSET = 15
REMINDER_SOUND = "reminder.wav"


class AlertType(IntEnum):
    OFF = 0
    SILENT = 1
    SOUND = 2


class NotificationChannel(str, Enum):
    AT_TIME = "at_time"
    REMINDER = "reminder"


class BackgroundTaskResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class AlertPreference:
    at_time_alert: AlertType = AlertType.OFF
    reminder: AlertType = AlertType.OFF
    reminder_offset_minutes: int = DEFAULT_REMINDER_OFFSET

    def __post_init__(self) -> None:
        object.__setattr__(self, "at_time_alert", AlertType(self.at_time_alert))
        object.__setattr__(self, "reminder", AlertType(self.reminder))
        offset = int(self.reminder_offset_minutes)
        if not REMINDER_OFFSET_MIN <= offset <= REMINDER_OFFSET_MAX:
            raise ValueError(
                f"reminder_offset_minutes must be between {REMINDER_OFFSET_MIN} and {REMINDER_OFFSET_MAX}, got {offset}"
            )
        object.__setattr__(self, "reminder_offset_minutes", offset)

    def to_dict(self) -> Dict[str, int]:
        return {
            "at_time_alert": int(self.at_time_alert),
            "reminder": int(self.reminder),
            "reminder_offset_minutes": self.reminder_offset_minutes,
        }

    @classmethod
    def from_dict(cls, payload: Optional[Dict[str, Any]]) -> "AlertPreference":
        if not payload:
            return cls()
        return cls(
            at_time_alert=payload.get("at_time_alert", AlertType.OFF),
            reminder=payload.get("reminder", AlertType.OFF),
            reminder_offset_minutes=payload.get("reminder_offset_minutes", DEFAULT_REMINDER_OFFSET),
        )


@dataclass(frozen=True)
class ScheduledNotificationRecord:
    id: str
    schedule_kind: ScheduleKind
    prayer_index: int
    belongs_to_date: str
    prayer_name: PrayerName
    fire_datetime: datetime
    alert_kind: AlertType
    channel: NotificationChannel
    sound: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_kind": self.schedule_kind.value,
            "prayer_index": self.prayer_index,
            "belongs_to_date": self.belongs_to_date,
            "prayer_name": self.prayer_name.value,
            "fire_datetime": self.fire_datetime.isoformat(),
            "alert_kind": int(self.alert_kind),
            "channel": self.channel.value,
            "sound": self.sound,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ScheduledNotificationRecord":
        return cls(
            id=str(payload["id"]),
            schedule_kind=ScheduleKind(payload["schedule_kind"]),
            prayer_index=int(payload["prayer_index"]),
            belongs_to_date=str(payload["belongs_to_date"]),
            prayer_name=PrayerName(payload["prayer_name"]),
            fire_datetime=datetime.fromisoformat(payload["fire_datetime"]),
            alert_kind=AlertType(payload["alert_kind"]),
            channel=NotificationChannel(payload["channel"]),
            sound=payload.get("sound"),
        )


@dataclass(frozen=True)
class _PlannedNotification:
    belongs_to_date: str
    fire_at: datetime
    alert_kind: AlertType
    title: str
    sound: Optional[str]

    def matches(self, record: ScheduledNotificationRecord) -> bool:
        return (
            record.fire_datetime == self.fire_at
            and record.alert_kind is self.alert_kind
            and record.sound == self.sound
        )


def athan_sound(sound_index: int) -> str:
    return f"athan{sound_index + 1}.wav"


def reminder_title(name: PrayerName, offset_minutes: int) -> str:
    return f"{name.value} in {offset_minutes}m"


# -- Notification primitive ------------------------------------------------------
class NotificationCenter(ABC):
    """The platform's local notification scheduler."""

    @abstractmethod
    def has_permission(self) -> bool:
        ...

    @abstractmethod
    def schedule(self, fire_at: datetime, title: str, sound: Optional[str]) -> str:
        ...

    @abstractmethod
    def cancel(self, notification_id: str) -> None:
        ...

    @abstractmethod
    def list_scheduled(self) -> List[str]:
        ...

    @abstractmethod
    def cancel_all(self) -> None:
        ...


def _log_delivery(title: str, sound: Optional[str]) -> None:
    LOGGER.info("NOTIFICATION: %s (sound=%s)", title, sound or "silent")


class SchedulerNotificationCenter(NotificationCenter):
    """Delivers notifications from one-off jobs on the shared scheduler."""

    def __init__(
        self,
        scheduler: PrayerScheduler,
        deliver: Optional[Callable[[str, Optional[str]], None]] = None,
        permission_granted: bool = True,
    ) -> None:
        self._scheduler = scheduler
        self._deliver = deliver or _log_delivery
        self.permission_granted = permission_granted
        self._ids: Set[str] = set()

    def has_permission(self) -> bool:
        return self.permission_granted

    def schedule(self, fire_at: datetime, title: str, sound: Optional[str]) -> str:
        if not self.permission_granted:
            raise PermissionDenied("Notification permission has not been granted")
        job_id = self._scheduler.schedule_once(fire_at, self._deliver, args=(title, sound))
        self._ids.add(job_id)
        return job_id

    def cancel(self, notification_id: str) -> None:
        self._scheduler.cancel_job(notification_id)
        self._ids.discard(notification_id)

    def list_scheduled(self) -> List[str]:
        pending = set(self._scheduler.job_ids())
        # Fired jobs are dropped by the scheduler.
        self._ids &= pending
        return sorted(self._ids)

    def cancel_all(self) -> None:
        for notification_id in self.list_scheduled():
            self.cancel(notification_id)
        LOGGER.info("NOTIFICATION: Cancelled all scheduled notifications")


# -- Scheduler -------------------------------------------------------------------
class NotificationScheduler:
    """Keeps scheduled notifications in line with alert preferences and prayer data."""

    def __init__(
        self,
        context: SchedulingContext,
        builder: SequenceBuilder,
        center: NotificationCenter,
        scheduler: Optional[PrayerScheduler] = None,
    ) -> None:
        self.context = context
        self.builder = builder
        self.center = center
        self.scheduler = scheduler
        self._lock = threading.Lock()

    @property
    def db(self):
        return self.context.db

    # -- Preferences -------------------------------------------------------
    def get_preference(self, kind: ScheduleKind, index: int) -> AlertPreference:
        return AlertPreference.from_dict(self.db.get_alert_preference(kind, index))

    def get_sound_preference(self) -> int:
        return self.db.get_sound_preference()

    def set_sound_preference(self, index: int) -> bool:
        if index < 0:
            raise ValueError(f"Sound index must be positive, got {index}")
        self.db.set_sound_preference(index)
        LOGGER.info("Sound preference set to %s", index)
        return self.reschedule_all()

    # -- Reconcile ---------------------------------------------------------
    def reconcile(self, kind: ScheduleKind, index: int, preference: AlertPreference) -> bool:
        """Persist *preference* and bring the prayer's notifications in line with it.

        Returns ``False`` when another scheduling operation holds the lock or
        permission is missing; the preference is stored either way.
        """
        name = self._prayer_name(kind, index)
        self.db.set_alert_preference(kind, index, preference.to_dict())
        if not self._lock.acquire(blocking=False):
            LOGGER.info("NOTIFICATION: Already scheduling, skipping reconcile of %s", name.value)
            return False
        try:
            self._reconcile(kind, index, preference)
        except PermissionDenied as exc:
            LOGGER.warning("NOTIFICATION: %s; %s alert left inactive", exc, name.value)
            return False
        except PrayerTimesError:
            LOGGER.exception("NOTIFICATION: Failed to reconcile %s", name.value)
            raise
        finally:
            self._lock.release()
        return True

    def _prayer_name(self, kind: ScheduleKind, index: int) -> PrayerName:
        names = names_for(kind)
        if not 0 <= index < len(names):
            raise ValueError(f"Prayer index {index} out of range for {kind.value}")
        return names[index]

    def _reconcile(self, kind: ScheduleKind, index: int, preference: AlertPreference) -> None:
        name = self._prayer_name(kind, index)
        if preference.at_time_alert is AlertType.OFF:
            cancelled = 0
            for channel in NotificationChannel:
                cancelled += self._apply(kind, index, name, channel, {})
            LOGGER.info("NOTIFICATION: %s off, cancelled %d notifications", name.value, cancelled)
            return

        if not self.center.has_permission():
            raise PermissionDenied("Notification permission has not been granted")

        occurrences = self._upcoming(kind, name)
        sound_index = self.get_sound_preference()
        at_time = {
            prayer.belongs_to_date: _PlannedNotification(
                belongs_to_date=prayer.belongs_to_date,
                fire_at=prayer.datetime,
                alert_kind=preference.at_time_alert,
                title=name.value,
                sound=athan_sound(sound_index) if preference.at_time_alert is AlertType.SOUND else None,
            )
            for prayer in occurrences
        }
        self._apply(kind, index, name, NotificationChannel.AT_TIME, at_time)

        reminders: Dict[str, _PlannedNotification] = {}
        if preference.reminder is not AlertType.OFF:
            now = self.context.now()
            offset = preference.reminder_offset_minutes
            for prayer in occurrences:
                fire_at = time_utils.add_minutes(prayer.datetime, -offset, self.context.tzinfo)
                if fire_at <= now:
                    continue
                reminders[prayer.belongs_to_date] = _PlannedNotification(
                    belongs_to_date=prayer.belongs_to_date,
                    fire_at=fire_at,
                    alert_kind=preference.reminder,
                    title=reminder_title(name, offset),
                    sound=REMINDER_SOUND if preference.reminder is AlertType.SOUND else None,
                )
        self._apply(kind, index, name, NotificationChannel.REMINDER, reminders)
        LOGGER.info(
            "NOTIFICATION: %s scheduled for %d days (%d reminders)", name.value, len(at_time), len(reminders)
        )

    def _upcoming(self, kind: ScheduleKind, name: PrayerName) -> List[Prayer]:
        """Future occurrences of *name* within the rolling horizon."""
        now = self.context.now()
        horizon_days = self.context.config.notification_rolling_days
        horizon_end = now + timedelta(days=horizon_days)
        # Start a day early: a night prayer after midnight belongs to yesterday.
        start = time_utils.add_days(now.date(), -1)
        candidates = self.builder.occurrences(kind, name, start, horizon_days + 2)
        return [prayer for prayer in candidates if now < prayer.datetime <= horizon_end]

    def _apply(
        self,
        kind: ScheduleKind,
        index: int,
        name: PrayerName,
        channel: NotificationChannel,
        planned: Dict[str, _PlannedNotification],
    ) -> int:
        """Make the records of one channel match *planned*; returns how many were cancelled."""
        prefix = self.db.notification_prefix(kind, index, channel.value)
        live_ids = set(self.center.list_scheduled())
        kept: Set[str] = set()
        cancelled = 0

        for payload in self.db.notification_records(prefix):
            record = ScheduledNotificationRecord.from_dict(payload)
            wanted = planned.get(record.belongs_to_date)
            if (
                wanted is not None
                and record.belongs_to_date not in kept
                and record.id in live_ids
                and wanted.matches(record)
            ):
                kept.add(record.belongs_to_date)
                continue
            self.center.cancel(record.id)
            self.db.remove_notification_record(prefix, record.id)
            cancelled += 1

        for belongs_to_date, wanted in sorted(planned.items()):
            if belongs_to_date in kept:
                continue
            notification_id = self.center.schedule(wanted.fire_at, wanted.title, wanted.sound)
            record = ScheduledNotificationRecord(
                id=notification_id,
                schedule_kind=kind,
                prayer_index=index,
                belongs_to_date=belongs_to_date,
                prayer_name=name,
                fire_datetime=wanted.fire_at,
                alert_kind=wanted.alert_kind,
                channel=channel,
                sound=wanted.sound,
            )
            self.db.add_notification_record(prefix, notification_id, record.to_dict())
            LOGGER.debug("NOTIFICATION: Scheduled %s %s at %s", channel.value, name.value, wanted.fire_at)
        return cancelled

    def records(self, kind: Optional[ScheduleKind] = None, index: Optional[int] = None) -> List[ScheduledNotificationRecord]:
        prefix = self.db.notification_prefix(kind, index)
        records = [ScheduledNotificationRecord.from_dict(payload) for payload in self.db.notification_records(prefix)]
        return sorted(records, key=lambda record: record.fire_datetime)

    # -- Full reschedule ---------------------------------------------------
    def should_reschedule(self) -> bool:
        last = self.db.get_last_notification_schedule()
        if not last:
            LOGGER.info("NOTIFICATION: Never scheduled before, needs refresh")
            return True
        elapsed_hours = (self.context.now().timestamp() - last) / 3600
        threshold = self.context.config.notification_refresh_hours
        LOGGER.info("NOTIFICATION: %.1fh since last schedule (refresh after %sh)", elapsed_hours, threshold)
        return elapsed_hours >= threshold

    def _reschedule_all(self) -> None:
        self.center.cancel_all()
        self.db.clear_notification_records()
        if not self.center.has_permission():
            LOGGER.warning("NOTIFICATION: Permission not granted; preferences kept but nothing scheduled")
            return
        for kind in ScheduleKind:
            for index in range(len(names_for(kind))):
                preference = self.get_preference(kind, index)
                if preference.at_time_alert is AlertType.OFF:
                    continue
                self._reconcile(kind, index, preference)
        self.db.set_last_notification_schedule(self.context.now().timestamp())
        LOGGER.info("NOTIFICATION: Rescheduled all notifications")

    def reschedule_all(self) -> bool:
        if not self._lock.acquire(blocking=False):
            LOGGER.info("NOTIFICATION: Already scheduling, skipping reschedule_all")
            return False
        try:
            self._reschedule_all()
        except PermissionDenied as exc:
            LOGGER.warning("NOTIFICATION: %s", exc)
            return False
        except PrayerTimesError:
            LOGGER.exception("NOTIFICATION: Failed to reschedule notifications")
            raise
        finally:
            self._lock.release()
        return True

    def refresh(self) -> bool:
        """Reschedule everything when the last full schedule is older than the refresh threshold."""
        if not self.should_reschedule():
            LOGGER.info("NOTIFICATION: Skipping reschedule, last schedule is recent")
            return False
        LOGGER.info("NOTIFICATION: Starting notification refresh")
        return self.reschedule_all()

    # -- Background wake ---------------------------------------------------
    def run_background_task(self) -> BackgroundTaskResult:
        started = time.monotonic()
        LOGGER.info("BACKGROUND_TASK: Task started")
        try:
            self.reschedule_all()
        except Exception:
            LOGGER.exception("BACKGROUND_TASK: Task failed after %.2fs", time.monotonic() - started)
            return BackgroundTaskResult.FAILED
        LOGGER.info("BACKGROUND_TASK: Task completed in %.2fs", time.monotonic() - started)
        return BackgroundTaskResult.SUCCESS

    def initialize(self, register_background: bool = True) -> None:
        """Refresh stale notifications and register the background wake; never raises."""
        if not self.center.has_permission():
            LOGGER.warning("NOTIFICATION: Permission not granted; notifications are inactive")
        else:
            try:
                self.refresh()
            except PrayerTimesError:
                LOGGER.exception("NOTIFICATION: Initial refresh failed")

        if register_background and self.scheduler is not None:
            try:
                self.scheduler.register_background_task(
                    self.run_background_task, self.context.config.background_task_interval_hours
                )
            except Exception:
                LOGGER.exception("BACKGROUND_TASK: Failed to register background task")
