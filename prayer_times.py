"""Prayer data model and derivation of a day's prayers from raw clock times."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pytz

import time_utils
from app_config import AppConfig
from prayer_errors import DataFormatError

LOGGER = logging.getLogger(__name__)

RAW_FIELDS = ("fajr", "sunrise", "dhuhr", "asr", "magrib", "isha")


class ScheduleKind(str, Enum):
    STANDARD = "standard"
    EXTRA = "extra"


class PrayerName(str, Enum):
    FAJR = "Fajr"
    SUNRISE = "Sunrise"
    DHUHR = "Dhuhr"
    ASR = "Asr"
    MAGRIB = "Magrib"
    ISHA = "Isha"
    MIDNIGHT = "Midnight"
    LAST_THIRD = "Last Third"
    SUHOOR = "Suhoor"
    DUHA = "Duha"
    ISTIJABA = "Istijaba"


STANDARD_PRAYERS: Tuple[PrayerName, ...] = (
    PrayerName.FAJR,
    PrayerName.SUNRISE,
    PrayerName.DHUHR,
    PrayerName.ASR,
    PrayerName.MAGRIB,
    PrayerName.ISHA,
)

EXTRA_PRAYERS: Tuple[PrayerName, ...] = (
    PrayerName.MIDNIGHT,
    PrayerName.LAST_THIRD,
    PrayerName.SUHOOR,
    PrayerName.DUHA,
    PrayerName.ISTIJABA,
)

ARABIC_NAMES = {
    PrayerName.FAJR: "الفجر",
    PrayerName.SUNRISE: "الشروق",
    PrayerName.DHUHR: "الظهر",
    PrayerName.ASR: "العصر",
    PrayerName.MAGRIB: "المغرب",
    PrayerName.ISHA: "العشاء",
    PrayerName.MIDNIGHT: "نصف الليل",
    PrayerName.LAST_THIRD: "آخر ثلث",
    PrayerName.SUHOOR: "السحور",
    PrayerName.DUHA: "الضحى",
    PrayerName.ISTIJABA: "استجابة",
}

# Prayers that belong to the night: when they fall in the early hours they are
# grouped with the day that is ending.
NIGHT_PRAYERS = frozenset({PrayerName.ISHA, PrayerName.MIDNIGHT, PrayerName.LAST_THIRD, PrayerName.SUHOOR})

# Extra prayers derived from raw day D that fall in the night opened by the
# Magrib of D - 1. They are grouped with D - 1 whatever their clock hour.
NIGHT_ANCHORED_PRAYERS = frozenset({PrayerName.MIDNIGHT, PrayerName.LAST_THIRD, PrayerName.SUHOOR})


def names_for(kind: ScheduleKind) -> Tuple[PrayerName, ...]:
    """Return the canonical prayer names of a schedule, in preference-index order."""
    if kind is ScheduleKind.STANDARD:
        return STANDARD_PRAYERS
    if kind is ScheduleKind.EXTRA:
        return EXTRA_PRAYERS
    raise ValueError(f"Unknown schedule kind {kind!r}")


def kind_of(name: PrayerName) -> ScheduleKind:
    return ScheduleKind.STANDARD if name in STANDARD_PRAYERS else ScheduleKind.EXTRA


@dataclass(frozen=True)
class RawDayTimes:
    """One calendar date's clock times as delivered by the provider."""

    date: str
    fajr: str
    sunrise: str
    dhuhr: str
    asr: str
    magrib: str
    isha: str

    @classmethod
    def from_payload(cls, day: str, payload: Mapping[str, Any]) -> "RawDayTimes":
        time_utils.parse_date(day)
        if not isinstance(payload, Mapping):
            raise DataFormatError(f"Expected a mapping of clock times for {day}", date=day)

        values = {}
        for name in RAW_FIELDS:
            if name not in payload:
                raise DataFormatError(f"Missing '{name}' for {day}", date=day)
            hour, minute = time_utils.parse_clock(payload[name], day)
            values[name] = f"{hour:02d}:{minute:02d}"
        return cls(date=day, **values)

    @property
    def day(self) -> date:
        return time_utils.parse_date(self.date)

    def clock_for(self, name: PrayerName) -> str:
        return getattr(self, name.value.lower())

    def to_dict(self) -> Dict[str, str]:
        return {"date": self.date, **{name: getattr(self, name) for name in RAW_FIELDS}}


@dataclass(frozen=True)
class Prayer:
    schedule_kind: ScheduleKind
    name: PrayerName
    display_name_localized: str
    datetime: datetime
    belongs_to_date: str

    @property
    def time(self) -> str:
        return time_utils.clock_string(self.datetime)

    @property
    def key(self) -> Tuple[PrayerName, str]:
        return self.name, self.belongs_to_date

    def is_passed(self, now: datetime) -> bool:
        return self.datetime <= now


def calculate_belongs_to_date(name: PrayerName, moment: datetime, cutoff_hour: int) -> str:
    """Return the ISO date of the Islamic day a prayer at *moment* belongs to.

    Night prayers before ``cutoff_hour`` belong to the previous calendar date;
    the cutoff hour itself belongs to the current date.
    """
    local_date = moment.date()
    if name in NIGHT_PRAYERS and moment.hour < cutoff_hour:
        local_date = time_utils.add_days(local_date, -1)
    return time_utils.format_date_short(local_date)


def _make_prayer(
    kind: ScheduleKind,
    name: PrayerName,
    moment: datetime,
    cutoff_hour: int,
    belongs_to_date: Optional[str] = None,
) -> Prayer:
    return Prayer(
        schedule_kind=kind,
        name=name,
        display_name_localized=ARABIC_NAMES[name],
        datetime=moment,
        belongs_to_date=belongs_to_date or calculate_belongs_to_date(name, moment, cutoff_hour),
    )


def _derive_standard(raw_day: RawDayTimes, config: AppConfig, tzinfo: pytz.BaseTzInfo) -> List[Prayer]:
    day = raw_day.day
    cutoff = config.early_morning_cutoff_hour
    prayers = []
    for name in STANDARD_PRAYERS:
        clock = raw_day.clock_for(name)
        prayer_day = day
        hour, _ = time_utils.parse_clock(clock, raw_day.date)
        # A summer Isha listed as 00:xx happens after midnight of this date.
        if name is PrayerName.ISHA and hour < cutoff:
            prayer_day = time_utils.add_days(day, 1)
        moment = time_utils.create_prayer_datetime(prayer_day, clock, tzinfo)
        prayers.append(_make_prayer(ScheduleKind.STANDARD, name, moment, cutoff))
    return prayers


def _derive_extra(
    raw_day: RawDayTimes,
    previous_day: Optional[RawDayTimes],
    config: AppConfig,
    tzinfo: pytz.BaseTzInfo,
) -> List[Prayer]:
    day = raw_day.day
    yesterday = time_utils.add_days(day, -1)
    cutoff = config.early_morning_cutoff_hour

    if previous_day is not None:
        if previous_day.day != yesterday:
            raise ValueError(f"Previous day {previous_day.date} does not precede {raw_day.date}")
        night_start_clock = previous_day.magrib
    else:
        LOGGER.debug("No raw data before %s; approximating the night with the same day's Magrib", raw_day.date)
        night_start_clock = raw_day.magrib

    magrib_before = time_utils.create_prayer_datetime(yesterday, night_start_clock, tzinfo)
    fajr = time_utils.create_prayer_datetime(day, raw_day.fajr, tzinfo)
    sunrise = time_utils.create_prayer_datetime(day, raw_day.sunrise, tzinfo)
    magrib = time_utils.create_prayer_datetime(day, raw_day.magrib, tzinfo)

    midnight = time_utils.night_point(magrib_before, fajr, 1 / 2, tzinfo)
    last_third = time_utils.add_minutes(
        time_utils.night_point(magrib_before, fajr, 2 / 3, tzinfo), config.adjustment("last_third"), tzinfo
    )
    moments = {
        PrayerName.MIDNIGHT: midnight,
        PrayerName.LAST_THIRD: last_third,
        PrayerName.SUHOOR: time_utils.add_minutes(fajr, config.adjustment("suhoor"), tzinfo),
        PrayerName.DUHA: time_utils.add_minutes(sunrise, config.adjustment("duha"), tzinfo),
        PrayerName.ISTIJABA: time_utils.add_minutes(magrib, config.adjustment("istijaba"), tzinfo),
    }

    night_of = time_utils.format_date_short(yesterday)
    prayers = []
    for name in EXTRA_PRAYERS:
        anchor = night_of if name in NIGHT_ANCHORED_PRAYERS else None
        prayer = _make_prayer(ScheduleKind.EXTRA, name, moments[name], cutoff, anchor)
        if name is PrayerName.ISTIJABA and not time_utils.is_friday(time_utils.parse_date(prayer.belongs_to_date)):
            continue
        prayers.append(prayer)
    return prayers


def derive_kind(
    kind: ScheduleKind,
    raw_day: RawDayTimes,
    previous_day: Optional[RawDayTimes],
    config: AppConfig,
) -> List[Prayer]:
    tzinfo = config.tzinfo
    if kind is ScheduleKind.STANDARD:
        prayers = _derive_standard(raw_day, config, tzinfo)
    elif kind is ScheduleKind.EXTRA:
        prayers = _derive_extra(raw_day, previous_day, config, tzinfo)
    else:
        raise ValueError(f"Unknown schedule kind {kind!r}")
    return sort_prayers(prayers)


def derive(raw_day: RawDayTimes, previous_day: Optional[RawDayTimes], config: AppConfig) -> List[Prayer]:
    """Derive every prayer (standard and extra) anchored on *raw_day*.

    Night prayers use *previous_day*'s Magrib paired with this day's Fajr.
    """
    prayers = derive_kind(ScheduleKind.STANDARD, raw_day, previous_day, config)
    prayers += derive_kind(ScheduleKind.EXTRA, raw_day, previous_day, config)
    LOGGER.debug("Derived %d prayers for %s", len(prayers), raw_day.date)
    return sort_prayers(prayers)


def sort_prayers(prayers: Iterable[Prayer]) -> List[Prayer]:
    return sorted(prayers, key=lambda prayer: prayer.datetime)


def transform_year_payload(payload: Mapping[str, Any], keep_from: Optional[date] = None) -> List[RawDayTimes]:
    """Validate a provider payload into raw days, dropping dates before *keep_from*."""
    times = payload.get("times") if isinstance(payload, Mapping) else None
    if not isinstance(times, Mapping):
        raise DataFormatError("Provider payload has no 'times' mapping")

    days = []
    for iso_date, entry in sorted(times.items()):
        if keep_from is not None and time_utils.parse_date(iso_date) < keep_from:
            continue
        days.append(RawDayTimes.from_payload(iso_date, entry))
    LOGGER.debug("Validated %d raw days (kept from %s)", len(days), keep_from)
    return days


# -- Serialization --------------------------------------------------------------
def prayer_to_dict(prayer: Prayer) -> Dict[str, str]:
    return {
        "schedule_kind": prayer.schedule_kind.value,
        "name": prayer.name.value,
        "display_name_localized": prayer.display_name_localized,
        "datetime": prayer.datetime.isoformat(),
        "time": prayer.time,
        "belongs_to_date": prayer.belongs_to_date,
    }


def prayer_from_dict(data: Mapping[str, Any], tzinfo: Optional[pytz.BaseTzInfo] = None) -> Prayer:
    try:
        moment = datetime.fromisoformat(data["datetime"])
        kind = ScheduleKind(data["schedule_kind"])
        name = PrayerName(data["name"])
        belongs_to_date = str(data["belongs_to_date"])
    except (KeyError, TypeError, ValueError) as exc:
        raise DataFormatError(f"Invalid stored prayer {data!r}") from exc
    if tzinfo is not None:
        moment = tzinfo.normalize(moment.astimezone(tzinfo))
    return Prayer(
        schedule_kind=kind,
        name=name,
        display_name_localized=str(data.get("display_name_localized") or ARABIC_NAMES[name]),
        datetime=moment,
        belongs_to_date=belongs_to_date,
    )
