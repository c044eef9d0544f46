import json
from pathlib import Path

import pytest

from gpumonitor.config import (
    DEFAULT_UPDATE_INTERVAL_MS,
    MonitorConfig,
    home_config_path,
    load_config,
    parse_duration_ms,
)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("0.2s", 200),
        ("1.5s", 1500),
        ("250ms", 250),
        ("2", 2000),
        ("2s", 2000),
        ("1m", 60_000),
    ],
)
def test_parse_duration_ms_ok(value: str, expected: int) -> None:
    assert parse_duration_ms(value) == expected


@pytest.mark.parametrize("value", ["abc", "1xs", "", "-1s", "0.0001s", "ms"])
def test_parse_duration_ms_invalid(value: str) -> None:
    with pytest.raises(ValueError):
        parse_duration_ms(value)


def test_defaults_without_file_or_env(tmp_path: Path) -> None:
    config = load_config({}, home=tmp_path)
    assert config == MonitorConfig()
    assert config.update_interval_ms == DEFAULT_UPDATE_INTERVAL_MS == 5000
    assert config.update_interval_s == 5.0
    assert config.max_data_points == 100
    assert config.backfill_bytes == 1024 * 1024


def test_home_config_file_sets_update_interval(tmp_path: Path) -> None:
    path = home_config_path(tmp_path)
    path.parent.mkdir(parents=True)
    path.write_text(json.dumps({"gpuMonitor": {"updateInterval": 1500}}), encoding="utf-8")
    config = load_config({}, home=tmp_path)
    assert config.update_interval_ms == 1500


def test_env_overrides_file(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"updateInterval": 1500, "maxDataPoints": 20}), encoding="utf-8")
    env = {
        "GPUMONITOR_CONFIG": str(path),
        "GPUMONITOR_UPDATE_INTERVAL": "250ms",
        "GPUMONITOR_BACKFILL_BYTES": "4096",
    }
    config = load_config(env, home=tmp_path)
    assert config.update_interval_ms == 250
    assert config.max_data_points == 20
    assert config.backfill_bytes == 4096


def test_invalid_values_fall_back(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"updateInterval": -5, "maxDataPoints": "many"}), encoding="utf-8")
    env = {"GPUMONITOR_UPDATE_INTERVAL": "soon", "GPUMONITOR_MAX_DATA_POINTS": "0"}
    assert load_config(env, config_path=path) == MonitorConfig()


def test_unreadable_config_file_is_ignored(tmp_path: Path) -> None:
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    assert load_config({}, config_path=path) == MonitorConfig()
    assert load_config({}, config_path=tmp_path / "absent.json") == MonitorConfig()
