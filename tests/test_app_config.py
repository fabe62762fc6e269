import json

import pytest

from app_config import DEFAULT_TIME_ADJUSTMENTS, AppConfig, config_from_dict, load_config


def test_defaults_when_file_missing(tmp_path):
    config = load_config(tmp_path / "missing.json")

    assert config == AppConfig()
    assert config.tzinfo.zone == "Europe/London"
    assert config.time_adjustments == DEFAULT_TIME_ADJUSTMENTS


def test_load_config_merges_adjustments_and_ignores_unknown_keys(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "timezone": "Asia/Riyadh",
                "api_key": "abc",
                "time_adjustments": {"suhoor": -30, "unknown": 4},
                "theme": "dark",
            }
        ),
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.tzinfo.zone == "Asia/Riyadh"
    assert config.api_key == "abc"
    assert config.adjustment("suhoor") == -30
    assert config.adjustment("duha") == 20
    assert "unknown" not in config.time_adjustments


def test_unknown_timezone_is_rejected():
    with pytest.raises(ValueError):
        config_from_dict({"timezone": "Mars/Olympus"})


@pytest.mark.parametrize(
    "payload",
    [
        {"early_morning_cutoff_hour": 24},
        {"notification_rolling_days": 0},
        {"notification_refresh_hours": 0},
    ],
)
def test_invalid_values_are_rejected(payload):
    with pytest.raises(ValueError):
        config_from_dict(payload)


def test_non_object_config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(path)
