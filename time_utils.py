"""Time-zone aware helpers for prayer times, calendar checks and countdown text."""
from __future__ import annotations

import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import List, Tuple

import pytz
from hijri_converter import Gregorian

from prayer_errors import DataFormatError

LOGGER = logging.getLogger(__name__)

_CLOCK_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


# -- Current time -------------------------------------------------------------
def now(tzinfo: pytz.BaseTzInfo) -> datetime:
    return datetime.now(tzinfo)


# -- Parsing and construction -------------------------------------------------
def parse_clock(value: object, day: str = "") -> Tuple[int, int]:
    """Parse an ``HH:mm`` string into ``(hour, minute)``.

    Anything else raises ``DataFormatError``; there is no default value.
    """
    if not isinstance(value, str):
        raise DataFormatError(f"Expected HH:mm string, got {value!r}", date=day)
    match = _CLOCK_PATTERN.match(value.strip())
    if not match:
        raise DataFormatError(f"Malformed clock time {value!r}", date=day)
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise DataFormatError(f"Clock time out of range {value!r}", date=day)
    return hour, minute


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise DataFormatError(f"Malformed ISO date {value!r}", date=str(value)) from exc


def create_prayer_datetime(day: date, clock: str, tzinfo: pytz.BaseTzInfo) -> datetime:
    """Combine a calendar date and an ``HH:mm`` clock time into an aware datetime."""
    hour, minute = parse_clock(clock, format_date_short(day))
    naive = datetime(day.year, day.month, day.day, hour=hour, minute=minute)
    return tzinfo.localize(naive)


def add_minutes(moment: datetime, minutes: float, tzinfo: pytz.BaseTzInfo) -> datetime:
    return tzinfo.normalize(moment + timedelta(minutes=minutes))


def floor_to_minute(moment: datetime, tzinfo: pytz.BaseTzInfo) -> datetime:
    local = tzinfo.normalize(moment.astimezone(tzinfo))
    return local.replace(second=0, microsecond=0)


def night_point(magrib: datetime, fajr: datetime, fraction: float, tzinfo: pytz.BaseTzInfo) -> datetime:
    """Return the instant *fraction* of the way through the night, floored to the minute."""
    night = fajr - magrib
    if night <= timedelta(0):
        raise DataFormatError(f"Fajr {fajr.isoformat()} is not after Magrib {magrib.isoformat()}")
    point = tzinfo.normalize(magrib + night * fraction)
    return floor_to_minute(point, tzinfo)


def clock_string(moment: datetime) -> str:
    return moment.strftime("%H:%M")


# -- Dates --------------------------------------------------------------------
def format_date_short(day: date) -> str:
    return day.isoformat()


def format_date_long(day: date) -> str:
    return f"{day:%a}, {day.day} {day:%b %Y}"


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)


def date_range(start: date, days: int) -> List[date]:
    return [start + timedelta(days=offset) for offset in range(days)]


def is_friday(day: date) -> bool:
    return day.weekday() == 4


def is_december(day: date) -> bool:
    return day.month == 12


def is_january_first(day: date) -> bool:
    return day.month == 1 and day.day == 1


def hijri_date_long(day: date) -> str:
    """Format *day* as a Hijri date, e.g. ``Rajab 1, 1447``."""
    try:
        hijri = Gregorian(day.year, day.month, day.day).to_hijri()
    except OverflowError:
        return format_date_long(day)
    return f"{hijri.month_name()} {hijri.day}, {hijri.year}"


# -- Countdown and display text -----------------------------------------------
def seconds_until(start: datetime, end: datetime) -> int:
    """Whole seconds from *start* to *end*, rounded up so any future instant is >= 1."""
    return math.ceil((end - start).total_seconds())


def format_time(seconds: int, hide_seconds: bool = False) -> str:
    """Format a countdown such as ``1h 1m 5s``.

    Days are folded into hours. With *hide_seconds* the seconds are only shown
    in the last ten minutes.
    """
    if seconds < 0:
        return "0s"

    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")

    show_seconds = not hide_seconds or seconds <= 599
    if show_seconds or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)
