"""Client for the remote yearly prayer-time provider."""
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from app_config import AppConfig
from prayer_errors import DataFormatError, NetworkError
from prayer_times import RawDayTimes, transform_year_payload

LOGGER = logging.getLogger(__name__)


class PrayerTimesService:
    """Fetches a whole year of daily clock times from the provider."""

    def __init__(self, config: AppConfig, session: Optional[requests.Session] = None) -> None:
        self.endpoint = config.api_endpoint
        self.api_key = config.api_key
        self.timeout = config.api_timeout
        self._session = session or requests.Session()

    def build_params(self, year: int) -> Dict[str, Any]:
        return {
            "format": "json",
            "key": self.api_key,
            "year": year,
            "24hours": "true",
        }

    def fetch_raw_year(self, year: int) -> Dict[str, Any]:
        params = self.build_params(year)
        LOGGER.debug("Requesting prayer times for year %s from %s", year, self.endpoint)
        try:
            response = self._session.get(
                self.endpoint,
                params=params,
                headers={"Cache-Control": "no-cache"},
                timeout=self.timeout,
            )
            LOGGER.debug("Prayer times response status: %s", response.status_code)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise NetworkError(f"Failed to fetch prayer times for {year}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise DataFormatError(f"Provider returned invalid JSON for {year}") from exc

        if not isinstance(payload, dict) or not payload.get("city"):
            raise DataFormatError(f"Incomplete data received for {year}")
        LOGGER.debug("Prayer times payload for %s covers %d dates", payload.get("city"), len(payload.get("times") or {}))
        return payload

    def fetch_year(self, year: int, keep_from: Optional[date] = None) -> List[RawDayTimes]:
        """Fetch and validate *year*, keeping only dates on or after *keep_from*."""
        LOGGER.info("Fetching prayer times for year %s", year)
        payload = self.fetch_raw_year(year)
        days = transform_year_payload(payload, keep_from=keep_from)
        LOGGER.info("Prayer times fetched for %s (%d days)", year, len(days))
        return days
