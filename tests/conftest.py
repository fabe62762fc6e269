from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest
import pytz

import time_utils
from app_config import AppConfig
from prayer_errors import PrayerTimesError
from prayer_sequence import SequenceBuilder
from prayer_store import KeyValueStore
from prayer_times import RawDayTimes
from scheduler import PrayerScheduler
from scheduling_context import SchedulingContext

LONDON = pytz.timezone("Europe/London")

WINTER_TIMES = {
    "fajr": "06:12",
    "sunrise": "07:45",
    "dhuhr": "12:15",
    "asr": "13:30",
    "magrib": "15:58",
    "isha": "17:30",
}


def london(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
    return LONDON.localize(datetime(year, month, day, hour, minute, second))


def make_raw_day(day: date, **overrides: str) -> RawDayTimes:
    payload = dict(WINTER_TIMES)
    payload.update(overrides)
    return RawDayTimes.from_payload(day.isoformat(), payload)


def make_days(start: date, count: int) -> List[RawDayTimes]:
    return [make_raw_day(day) for day in time_utils.date_range(start, count)]


class FakeClock:
    def __init__(self, moment: datetime) -> None:
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def set(self, moment: datetime) -> None:
        self.moment = moment

    def advance(self, **kwargs: float) -> None:
        self.moment = LONDON.normalize(self.moment + timedelta(**kwargs))


class FakeService:
    """Stands in for the provider client; serves every date of a year."""

    def __init__(self, error: Optional[PrayerTimesError] = None) -> None:
        self.error = error
        self.calls: List[int] = []

    def fetch_year(self, year: int, keep_from: Optional[date] = None) -> List[RawDayTimes]:
        self.calls.append(year)
        if self.error is not None:
            raise self.error
        first = date(year, 1, 1)
        days = make_days(first, (date(year + 1, 1, 1) - first).days)
        return [day for day in days if keep_from is None or day.day >= keep_from]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(london(2026, 1, 18, 10, 0))


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def context(config: AppConfig, clock: FakeClock) -> SchedulingContext:
    return SchedulingContext(config, store=KeyValueStore(), clock=clock)


@pytest.fixture
def seed_days(context: SchedulingContext):
    def seed(start: date, count: int, **overrides: str) -> Dict[str, RawDayTimes]:
        days = [make_raw_day(day, **overrides) for day in time_utils.date_range(start, count)]
        context.db.save_days(days)
        return {day.date: day for day in days}

    return seed


@pytest.fixture
def seeded_context(context: SchedulingContext, seed_days) -> SchedulingContext:
    seed_days(date(2026, 1, 1), 45)
    return context


@pytest.fixture
def builder(seeded_context: SchedulingContext) -> SequenceBuilder:
    return SequenceBuilder(seeded_context)


@pytest.fixture
def scheduler() -> PrayerScheduler:
    return PrayerScheduler(LONDON)
