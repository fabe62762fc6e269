from datetime import date

import pytest
import requests
import responses

from app_config import AppConfig
from conftest import WINTER_TIMES
from prayer_api import PrayerTimesService
from prayer_errors import DataFormatError, NetworkError

ENDPOINT = "https://prayers.example.test/api/times"


def build_payload(*days: str) -> dict:
    return {
        "city": "london",
        "times": {day: dict(WINTER_TIMES, fajr_jamat="06:45", dhuhr_jamat="13:00") for day in days},
    }


@pytest.fixture
def service() -> PrayerTimesService:
    return PrayerTimesService(AppConfig(api_endpoint=ENDPOINT, api_key="secret"))


def test_fetch_year_sends_expected_query(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, json=build_payload("2026-01-01", "2026-01-02"), status=200)
        days = service.fetch_year(2026)
        request = mock.calls[0].request

    assert "format=json" in request.url
    assert "key=secret" in request.url
    assert "year=2026" in request.url
    assert "24hours=true" in request.url
    assert request.headers["Cache-Control"] == "no-cache"
    assert [day.date for day in days] == ["2026-01-01", "2026-01-02"]
    assert days[0].asr == "13:30"


def test_fetch_year_keeps_recent_days(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, json=build_payload("2026-01-15", "2026-01-16", "2026-01-17"))
        days = service.fetch_year(2026, keep_from=date(2026, 1, 16))

    assert [day.date for day in days] == ["2026-01-16", "2026-01-17"]


def test_http_error_becomes_network_error(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, status=503)
        with pytest.raises(NetworkError) as excinfo:
            service.fetch_year(2026)

    assert isinstance(excinfo.value.__cause__, requests.HTTPError)


def test_connection_error_becomes_network_error(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, body=requests.ConnectionError("offline"))
        with pytest.raises(NetworkError):
            service.fetch_year(2026)


def test_missing_city_is_a_format_error(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, json={"times": {}})
        with pytest.raises(DataFormatError):
            service.fetch_year(2026)


def test_invalid_json_is_a_format_error(service):
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, body="<html>maintenance</html>", content_type="text/html")
        with pytest.raises(DataFormatError):
            service.fetch_year(2026)


def test_malformed_day_fails_the_whole_fetch(service):
    payload = build_payload("2026-01-01")
    payload["times"]["2026-01-02"] = dict(WINTER_TIMES, magrib="sunset")
    with responses.RequestsMock() as mock:
        mock.add(responses.GET, ENDPOINT, json=payload)
        with pytest.raises(DataFormatError) as excinfo:
            service.fetch_year(2026)

    assert excinfo.value.date == "2026-01-02"
