"""Per-second countdowns to the next prayer and to a selected overlay prayer."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

import time_utils
from prayer_errors import PrayerTimesError
from prayer_sequence import PrayerSequence, SequenceBuilder, display_date_topic
from prayer_times import Prayer, PrayerName, ScheduleKind, names_for
from scheduler import OVERLAY_TIMER, PrayerScheduler
from scheduling_context import SchedulingContext

LOGGER = logging.getLogger(__name__)

TICK_SECONDS = 1
OVERLAY_TOPIC = "overlay"
OVERLAY_DATE_TOPIC = "overlay_date"


def countdown_topic(key: str) -> str:
    return f"countdown:{key}"


@dataclass(frozen=True)
class CountdownState:
    seconds_remaining: int
    prayer_name: PrayerName
    belongs_to_date: str

    @property
    def text(self) -> str:
        return time_utils.format_time(self.seconds_remaining)


@dataclass(frozen=True)
class TickResult:
    state: Optional[CountdownState]
    needs_refresh: bool


@dataclass(frozen=True)
class OverlayState:
    is_on: bool = False
    selected_prayer_index: Optional[int] = None
    schedule_kind: ScheduleKind = ScheduleKind.STANDARD

    @property
    def selected_name(self) -> Optional[PrayerName]:
        if self.selected_prayer_index is None:
            return None
        return names_for(self.schedule_kind)[self.selected_prayer_index]


def compute_tick(
    now: datetime,
    sequence: Optional[PrayerSequence],
    target: Optional[Prayer] = None,
) -> TickResult:
    """Countdown to *target*, or to the sequence's next prayer when no target is given.

    The value is always derived from absolute timestamps. A target that is not
    in the future asks the caller to refresh instead of yielding zero or less.
    """
    if target is None and sequence is not None:
        target = sequence.next_prayer(now)
    if target is None:
        return TickResult(state=None, needs_refresh=True)
    seconds = time_utils.seconds_until(now, target.datetime)
    if seconds <= 0:
        return TickResult(state=None, needs_refresh=True)
    return TickResult(
        state=CountdownState(seconds, target.name, target.belongs_to_date),
        needs_refresh=False,
    )


class CountdownEngine:
    """Publishes countdown values into the context on keyed one-second timers."""

    def __init__(self, context: SchedulingContext, builder: SequenceBuilder, scheduler: PrayerScheduler) -> None:
        self.context = context
        self.builder = builder
        self.scheduler = scheduler
        self._overlay_lock = threading.RLock()
        self.context.set(OVERLAY_TOPIC, OverlayState())

    @property
    def guard_seconds(self) -> int:
        return self.context.config.countdown_guard_seconds

    @property
    def overlay(self) -> OverlayState:
        return self.context.get(OVERLAY_TOPIC)

    # -- Schedule countdowns ----------------------------------------------
    def tick(self, kind: ScheduleKind) -> CountdownState:
        """Recompute and publish the countdown for *kind*.

        When the next prayer has been reached the sequence is refreshed first,
        and the value published is for the new next prayer.
        """
        result = compute_tick(self.context.now(), self.builder.get_sequence(kind))
        if result.needs_refresh:
            LOGGER.info("%s countdown reached zero; advancing", kind.value)
            self.builder.refresh(kind)
            result = compute_tick(self.context.now(), self.builder.get_sequence(kind))
        elif self._prayer_reached(kind, result.state):
            LOGGER.info("%s prayer reached; advancing to %s", kind.value, result.state.prayer_name.value)
            try:
                self.builder.refresh(kind)
            except PrayerTimesError:
                LOGGER.warning("Could not refresh %s sequence; keeping the current window", kind.value, exc_info=True)
            else:
                result = compute_tick(self.context.now(), self.builder.get_sequence(kind))
        state = result.state
        if state is None:
            raise PrayerTimesError(f"No upcoming {kind.value} prayer after refresh")

        self.context.set(countdown_topic(kind.value), state)
        self._publish_display_date(kind, state.belongs_to_date)
        if state.seconds_remaining <= self.guard_seconds:
            self._close_guarded_overlay(kind)
        return state

    def _prayer_reached(self, kind: ScheduleKind, state: Optional[CountdownState]) -> bool:
        previous = self.context.get(countdown_topic(kind.value))
        if previous is None or state is None:
            return False
        return (previous.prayer_name, previous.belongs_to_date) != (state.prayer_name, state.belongs_to_date)

    def _publish_display_date(self, kind: ScheduleKind, belongs_to_date: str) -> None:
        topic = display_date_topic(kind)
        if self.context.get(topic) == belongs_to_date:
            return
        self.context.db.set_display_date(kind, belongs_to_date)
        self.context.set(topic, belongs_to_date)
        LOGGER.info("%s display date is now %s", kind.value, belongs_to_date)

    def _run_tick(self, kind: ScheduleKind) -> None:
        try:
            self.tick(kind)
        except PrayerTimesError:
            LOGGER.exception("Countdown tick for %s failed", kind.value)
            self.context.set(countdown_topic(kind.value), None)

    def start(self, kind: ScheduleKind) -> None:
        self.tick(kind)
        self.scheduler.start_interval(kind.value, TICK_SECONDS, self._run_tick, args=(kind,))

    # -- Overlay -----------------------------------------------------------
    def can_show_overlay(self, kind: ScheduleKind) -> bool:
        state = self.context.get(countdown_topic(kind.value))
        return state is None or state.seconds_remaining > self.guard_seconds

    def set_selected_prayer_index(self, kind: ScheduleKind, index: int) -> bool:
        """Select a prayer for the overlay and open it; refused inside the guard window."""
        names = names_for(kind)
        if not 0 <= index < len(names):
            raise ValueError(f"Prayer index {index} out of range for {kind.value}")
        if not self.can_show_overlay(kind):
            LOGGER.info("Overlay selection refused: %s countdown inside guard window", kind.value)
            return False
        with self._overlay_lock:
            self.context.set(OVERLAY_TOPIC, OverlayState(is_on=True, selected_prayer_index=index, schedule_kind=kind))
        LOGGER.debug("Overlay selected %s", names[index].value)
        self.start_overlay()
        return True

    def toggle_overlay(self, force: Optional[bool] = None) -> bool:
        """Flip (or force) the overlay; returns the resulting ``is_on``."""
        with self._overlay_lock:
            overlay = self.overlay
            wanted = (not overlay.is_on) if force is None else force
            if wanted and (overlay.selected_prayer_index is None or not self.can_show_overlay(overlay.schedule_kind)):
                LOGGER.info("Overlay cannot be opened now")
                return overlay.is_on
            self.context.set(OVERLAY_TOPIC, replace(overlay, is_on=wanted))

        if wanted:
            self.start_overlay()
        else:
            self.scheduler.cancel(OVERLAY_TIMER)
            self.context.set(countdown_topic(OVERLAY_TIMER), None)
            self.context.set(OVERLAY_DATE_TOPIC, None)
        return wanted

    def _close_guarded_overlay(self, kind: ScheduleKind) -> None:
        overlay = self.overlay
        if overlay.is_on and overlay.schedule_kind is kind:
            LOGGER.info("Closing overlay: %s prayer is about to start", kind.value)
            self.toggle_overlay(force=False)

    def overlay_target(self, now: datetime) -> Optional[Prayer]:
        """The selected prayer, or its next occurrence once it has passed."""
        overlay = self.overlay
        name = overlay.selected_name
        if name is None:
            return None
        return self.builder.find_next_occurrence(overlay.schedule_kind, name, now)

    def tick_overlay(self) -> Optional[CountdownState]:
        if not self.overlay.is_on:
            return None
        now = self.context.now()
        result = compute_tick(now, None, self.overlay_target(now))
        if result.needs_refresh:
            LOGGER.warning("No upcoming occurrence for overlay selection; closing overlay")
            self.toggle_overlay(force=False)
            return None
        self.context.set(countdown_topic(OVERLAY_TIMER), result.state)
        self.context.set(OVERLAY_DATE_TOPIC, self.overlay_date_label(result.state.belongs_to_date))
        return result.state

    def overlay_date_label(self, belongs_to_date: str) -> str:
        """Long Gregorian or Hijri label for the overlay's selected date."""
        day = time_utils.parse_date(belongs_to_date)
        if self.context.db.get_hijri_date_preference():
            return time_utils.hijri_date_long(day)
        return time_utils.format_date_long(day)

    def _run_overlay_tick(self) -> None:
        try:
            self.tick_overlay()
        except PrayerTimesError:
            LOGGER.exception("Overlay countdown tick failed")

    def start_overlay(self) -> None:
        self.tick_overlay()
        self.scheduler.start_interval(OVERLAY_TIMER, TICK_SECONDS, self._run_overlay_tick)

    # -- Lifecycle ---------------------------------------------------------
    def start_all(self) -> None:
        for kind in ScheduleKind:
            self.start(kind)
        self.start_overlay()

    def stop_all(self) -> None:
        for kind in ScheduleKind:
            self.scheduler.cancel(kind.value)
        self.scheduler.cancel(OVERLAY_TIMER)
        LOGGER.info("Stopped countdown timers")
