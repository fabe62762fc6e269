from datetime import date

import pytest

from app_config import AppConfig
from conftest import LONDON, london, make_raw_day
from prayer_errors import DataFormatError
from prayer_times import (
    EXTRA_PRAYERS,
    STANDARD_PRAYERS,
    PrayerName,
    RawDayTimes,
    ScheduleKind,
    calculate_belongs_to_date,
    derive,
    derive_kind,
    names_for,
    prayer_from_dict,
    prayer_to_dict,
    transform_year_payload,
)


def by_name(prayers):
    return {prayer.name: prayer for prayer in prayers}


def test_midnight_scenario_uses_previous_magrib():
    config = AppConfig()
    previous = make_raw_day(date(2026, 1, 17), magrib="15:58")
    raw_day = make_raw_day(date(2026, 1, 18), fajr="06:12", sunrise="07:45")

    extra = by_name(derive_kind(ScheduleKind.EXTRA, raw_day, previous, config))

    midnight = extra[PrayerName.MIDNIGHT]
    assert midnight.time == "23:05"
    assert midnight.datetime == london(2026, 1, 17, 23, 5)
    assert midnight.belongs_to_date == "2026-01-17"

    assert extra[PrayerName.LAST_THIRD].datetime == london(2026, 1, 18, 1, 27)
    assert extra[PrayerName.LAST_THIRD].belongs_to_date == "2026-01-17"
    assert extra[PrayerName.SUHOOR].time == "05:52"
    assert extra[PrayerName.SUHOOR].belongs_to_date == "2026-01-17"
    assert extra[PrayerName.DUHA].time == "08:05"
    assert extra[PrayerName.DUHA].belongs_to_date == "2026-01-18"
    # 2026-01-18 is a Sunday.
    assert PrayerName.ISTIJABA not in extra


def test_last_third_offset_is_configurable():
    config = AppConfig(time_adjustments={"last_third": 5})
    previous = make_raw_day(date(2026, 1, 17))
    raw_day = make_raw_day(date(2026, 1, 18))

    extra = by_name(derive_kind(ScheduleKind.EXTRA, raw_day, previous, config))

    assert extra[PrayerName.LAST_THIRD].time == "01:32"


def test_istijaba_only_on_friday():
    config = AppConfig()
    friday = make_raw_day(date(2026, 1, 16), magrib="16:00")
    extra = by_name(derive_kind(ScheduleKind.EXTRA, friday, make_raw_day(date(2026, 1, 15)), config))

    istijaba = extra[PrayerName.ISTIJABA]
    assert istijaba.time == "15:00"
    assert istijaba.belongs_to_date == "2026-01-16"
    assert istijaba.display_name_localized == "استجابة"


def test_missing_previous_day_approximates_night():
    config = AppConfig()
    raw_day = make_raw_day(date(2026, 1, 18), magrib="15:58")

    extra = by_name(derive_kind(ScheduleKind.EXTRA, raw_day, None, config))

    assert extra[PrayerName.MIDNIGHT].time == "23:05"


def test_previous_day_must_precede():
    config = AppConfig()
    with pytest.raises(ValueError):
        derive_kind(
            ScheduleKind.EXTRA,
            make_raw_day(date(2026, 1, 18)),
            make_raw_day(date(2026, 1, 10)),
            config,
        )


def test_standard_prayers_are_strictly_ordered():
    config = AppConfig()
    prayers = derive_kind(ScheduleKind.STANDARD, make_raw_day(date(2026, 1, 18)), None, config)

    assert [prayer.name for prayer in prayers] == list(STANDARD_PRAYERS)
    assert all(a.datetime < b.datetime for a, b in zip(prayers, prayers[1:]))
    assert {prayer.belongs_to_date for prayer in prayers} == {"2026-01-18"}


def test_summer_isha_after_midnight_stays_with_its_day():
    config = AppConfig()
    raw_day = make_raw_day(
        date(2026, 6, 20),
        fajr="02:45",
        sunrise="04:43",
        dhuhr="13:03",
        asr="17:25",
        magrib="21:22",
        isha="00:15",
    )

    prayers = derive_kind(ScheduleKind.STANDARD, raw_day, None, config)
    isha = by_name(prayers)[PrayerName.ISHA]

    assert isha.datetime.date() == date(2026, 6, 21)
    assert isha.belongs_to_date == "2026-06-20"
    assert prayers[-1].name is PrayerName.ISHA


@pytest.mark.parametrize(
    "name, hour, minute, expected",
    [
        (PrayerName.LAST_THIRD, 5, 59, "2026-01-17"),
        (PrayerName.LAST_THIRD, 6, 0, "2026-01-18"),
        (PrayerName.SUHOOR, 5, 59, "2026-01-17"),
        (PrayerName.ISHA, 0, 30, "2026-01-17"),
        (PrayerName.FAJR, 5, 59, "2026-01-18"),
        (PrayerName.DUHA, 7, 0, "2026-01-18"),
    ],
)
def test_belongs_to_date_cutoff(name, hour, minute, expected):
    moment = london(2026, 1, 18, hour, minute)
    assert calculate_belongs_to_date(name, moment, cutoff_hour=6) == expected


def test_derive_returns_both_kinds_sorted():
    config = AppConfig()
    prayers = derive(make_raw_day(date(2026, 1, 16)), make_raw_day(date(2026, 1, 15)), config)

    assert len(prayers) == len(STANDARD_PRAYERS) + len(EXTRA_PRAYERS)
    assert prayers == sorted(prayers, key=lambda prayer: prayer.datetime)


@pytest.mark.parametrize(
    "payload",
    [
        {"fajr": "6:1", "sunrise": "07:45", "dhuhr": "12:15", "asr": "13:30", "magrib": "15:58", "isha": "17:30"},
        {"fajr": "06:12", "sunrise": "07:45", "dhuhr": "12:15", "asr": "13:30", "magrib": "15:58"},
        {"fajr": "06:12", "sunrise": "", "dhuhr": "12:15", "asr": "13:30", "magrib": "15:58", "isha": "17:30"},
    ],
)
def test_malformed_raw_day_fails_loudly(payload):
    with pytest.raises(DataFormatError) as excinfo:
        RawDayTimes.from_payload("2026-01-18", payload)
    assert excinfo.value.date == "2026-01-18"


def test_transform_year_payload_filters_and_ignores_extra_fields():
    entry = {
        "fajr": "06:12",
        "fajr_jamat": "06:45",
        "sunrise": "07:45",
        "dhuhr": "12:15",
        "asr": "13:30",
        "magrib": "15:58",
        "isha": "17:30",
    }
    payload = {"city": "london", "times": {"2026-01-17": entry, "2026-01-15": entry, "2026-01-16": entry}}

    days = transform_year_payload(payload, keep_from=date(2026, 1, 16))

    assert [day.date for day in days] == ["2026-01-16", "2026-01-17"]
    assert "fajr_jamat" not in days[0].to_dict()


def test_transform_year_payload_requires_times():
    with pytest.raises(DataFormatError):
        transform_year_payload({"city": "london"})


def test_prayer_round_trip_to_the_second():
    config = AppConfig()
    for prayer in derive(make_raw_day(date(2026, 1, 16)), make_raw_day(date(2026, 1, 15)), config):
        restored = prayer_from_dict(prayer_to_dict(prayer), LONDON)
        assert restored == prayer


def test_prayer_from_dict_rejects_bad_data():
    with pytest.raises(DataFormatError):
        prayer_from_dict({"name": "Fajr", "schedule_kind": "standard"})


def test_names_for_is_exhaustive():
    assert names_for(ScheduleKind.STANDARD)[3] is PrayerName.ASR
    assert names_for(ScheduleKind.EXTRA)[4] is PrayerName.ISTIJABA
    with pytest.raises(ValueError):
        names_for("weekly")
