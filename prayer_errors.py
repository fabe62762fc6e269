"""Exception taxonomy shared by the scheduling engine."""
from __future__ import annotations

from typing import Iterable


class PrayerTimesError(Exception):
    """Base class for errors raised by the prayer scheduling engine."""


class DataFormatError(PrayerTimesError):
    """Raw clock-time data could not be parsed."""

    def __init__(self, message: str, date: str = "") -> None:
        super().__init__(message)
        self.date = date


class MissingDataError(PrayerTimesError):
    """Persisted raw data does not cover the requested dates."""

    def __init__(self, missing_dates: Iterable[str], message: str = "") -> None:
        self.missing_dates = list(missing_dates)
        super().__init__(message or f"No prayer data stored for {', '.join(self.missing_dates)}")


class NetworkError(PrayerTimesError):
    """The remote prayer-time provider could not be reached or answered badly."""


class PermissionDenied(PrayerTimesError):
    """The notification primitive refused to schedule because permission is missing."""
