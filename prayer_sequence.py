"""Rolling multi-day prayer sequences and next/previous prayer queries."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import time_utils
from prayer_errors import MissingDataError
from prayer_times import Prayer, PrayerName, ScheduleKind, derive_kind, sort_prayers
from scheduling_context import SchedulingContext

LOGGER = logging.getLogger(__name__)

# How far past the rolling window a named prayer is searched (weekly prayers).
OCCURRENCE_LOOKAHEAD_DAYS = 7


def sequence_topic(kind: ScheduleKind) -> str:
    return f"sequence:{kind.value}"


def display_date_topic(kind: ScheduleKind) -> str:
    return f"display_date:{kind.value}"


@dataclass(frozen=True)
class PrayerSequence:
    """Prayers of one schedule kind across consecutive days, sorted by datetime."""

    kind: ScheduleKind
    center_date: str
    prayers: Tuple[Prayer, ...]

    def next_prayer(self, now: datetime) -> Optional[Prayer]:
        for prayer in self.prayers:
            if not prayer.is_passed(now):
                return prayer
        return None

    def prev_prayer(self, now: datetime) -> Optional[Prayer]:
        previous = None
        for prayer in self.prayers:
            if not prayer.is_passed(now):
                break
            previous = prayer
        return previous

    def display_date(self, now: datetime) -> Optional[str]:
        """The ``belongs_to_date`` of the next prayer, or the day after the last group."""
        if not self.prayers:
            return None
        upcoming = self.next_prayer(now)
        if upcoming is not None:
            return upcoming.belongs_to_date
        last = time_utils.parse_date(self.prayers[-1].belongs_to_date)
        return time_utils.format_date_short(time_utils.add_days(last, 1))

    def prayers_for_date(self, belongs_to_date: str) -> List[Prayer]:
        return [prayer for prayer in self.prayers if prayer.belongs_to_date == belongs_to_date]

    def find(self, name: PrayerName, belongs_to_date: str) -> Optional[Prayer]:
        for prayer in self.prayers:
            if prayer.name is name and prayer.belongs_to_date == belongs_to_date:
                return prayer
        return None


class SequenceBuilder:
    """Builds and swaps the per-kind prayer sequence held in the context."""

    def __init__(self, context: SchedulingContext) -> None:
        self.context = context

    # -- Derivation ------------------------------------------------------
    def derive_day(self, kind: ScheduleKind, day: date, required: bool = True) -> List[Prayer]:
        db = self.context.db
        raw_day = db.get_day(day)
        if raw_day is None:
            if required:
                raise MissingDataError([time_utils.format_date_short(day)])
            LOGGER.debug("No raw data for %s; skipping", day)
            return []
        previous_day = db.get_day(time_utils.add_days(day, -1))
        return derive_kind(kind, raw_day, previous_day, self.context.config)

    def build_sequence(self, kind: ScheduleKind, center_date: date) -> PrayerSequence:
        """Derive the prayers grouped under ``center_date - 1 .. center_date + 1``.

        The day after the window is read when present so the last group's
        night prayers are complete.
        """
        required = [time_utils.add_days(center_date, offset) for offset in (-1, 0, 1)]
        missing = [time_utils.format_date_short(day) for day in required if not self.context.db.has_day(day)]
        if missing:
            raise MissingDataError(missing)

        derived: List[Prayer] = []
        for day in required:
            derived.extend(self.derive_day(kind, day))
        derived.extend(self.derive_day(kind, time_utils.add_days(center_date, 2), required=False))

        first = time_utils.format_date_short(required[0])
        last = time_utils.format_date_short(required[-1])
        seen: Dict[Tuple[PrayerName, str], Prayer] = {}
        for prayer in sort_prayers(derived):
            if not first <= prayer.belongs_to_date <= last:
                continue
            if prayer.key in seen:
                LOGGER.debug("Dropping duplicate %s for %s", prayer.name.value, prayer.belongs_to_date)
                continue
            seen[prayer.key] = prayer

        sequence = PrayerSequence(
            kind=kind,
            center_date=time_utils.format_date_short(center_date),
            prayers=tuple(sort_prayers(seen.values())),
        )
        LOGGER.debug("Built %s sequence around %s with %d prayers", kind.value, center_date, len(sequence.prayers))
        return sequence

    # -- State -----------------------------------------------------------
    def refresh(self, kind: ScheduleKind) -> PrayerSequence:
        """Rebuild the sequence around today's date and swap it in.

        The rebuild always starts from the wall-clock date, so a process that
        slept through several days recovers in one call.
        """
        now = self.context.now()
        sequence = self.build_sequence(kind, now.date())
        if sequence.next_prayer(now) is None:
            raise MissingDataError(
                [time_utils.format_date_short(time_utils.add_days(now.date(), 1))],
                f"Stored prayer data has no upcoming {kind.value} prayer after {now.isoformat()}",
            )

        self.context.set(sequence_topic(kind), sequence)
        display_date = sequence.display_date(now)
        self.context.db.set_display_date(kind, display_date)
        self.context.set(display_date_topic(kind), display_date)
        LOGGER.info(
            "Refreshed %s sequence (center=%s prayers=%d display=%s)",
            kind.value,
            sequence.center_date,
            len(sequence.prayers),
            display_date,
        )
        return sequence

    def refresh_all(self) -> None:
        for kind in ScheduleKind:
            self.refresh(kind)

    def get_sequence(self, kind: ScheduleKind) -> Optional[PrayerSequence]:
        return self.context.get(sequence_topic(kind))

    def get_next_prayer(self, kind: ScheduleKind) -> Optional[Prayer]:
        """First prayer after now, or ``None`` when the window is exhausted."""
        sequence = self.get_sequence(kind)
        if sequence is None:
            return None
        return sequence.next_prayer(self.context.now())

    def get_prev_prayer(self, kind: ScheduleKind) -> Optional[Prayer]:
        sequence = self.get_sequence(kind)
        if sequence is None:
            return None
        return sequence.prev_prayer(self.context.now())

    def get_display_date(self, kind: ScheduleKind) -> Optional[str]:
        sequence = self.get_sequence(kind)
        if sequence is None:
            return None
        return sequence.display_date(self.context.now())

    def prayers_for_date(self, kind: ScheduleKind, belongs_to_date: str) -> List[Prayer]:
        sequence = self.get_sequence(kind)
        if sequence is None:
            return []
        return sequence.prayers_for_date(belongs_to_date)

    # -- Lookups beyond the window ---------------------------------------
    def find_next_occurrence(self, kind: ScheduleKind, name: PrayerName, after: datetime) -> Optional[Prayer]:
        sequence = self.get_sequence(kind)
        if sequence is not None:
            for prayer in sequence.prayers:
                if prayer.name is name and prayer.datetime > after:
                    return prayer

        start = after.astimezone(self.context.tzinfo).date()
        for day in time_utils.date_range(start, OCCURRENCE_LOOKAHEAD_DAYS + 2):
            for prayer in self.derive_day(kind, day, required=False):
                if prayer.name is name and prayer.datetime > after:
                    return prayer
        return None

    def occurrences(self, kind: ScheduleKind, name: PrayerName, start_date: date, days: int) -> List[Prayer]:
        """Occurrences of *name* grouped under ``start_date`` and the following ``days - 1`` dates."""
        first = time_utils.format_date_short(start_date)
        last = time_utils.format_date_short(time_utils.add_days(start_date, days - 1))
        found = []
        # Night prayers of a date come from the next day's raw record.
        for day in time_utils.date_range(start_date, days + 1):
            for prayer in self.derive_day(kind, day, required=False):
                if prayer.name is name and first <= prayer.belongs_to_date <= last:
                    found.append(prayer)
        return sort_prayers(found)
