from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping

from gpumonitor.core.window import DEFAULT_MAX_DATA_POINTS
from gpumonitor.telemetry.tail import DEFAULT_BACKFILL_BYTES

DEFAULT_UPDATE_INTERVAL_MS = 5000

CONFIG_ENV_VAR = "GPUMONITOR_CONFIG"
UPDATE_INTERVAL_ENV_VAR = "GPUMONITOR_UPDATE_INTERVAL"
MAX_DATA_POINTS_ENV_VAR = "GPUMONITOR_MAX_DATA_POINTS"
BACKFILL_BYTES_ENV_VAR = "GPUMONITOR_BACKFILL_BYTES"
_HOME_CONFIG_DIR = Path(".config") / "gpumonitor"
_CONFIG_FILENAME = "config.json"
_SETTINGS_SECTION = "gpuMonitor"

_DURATION_MULTIPLIERS = {
    "ms": Decimal(1),
    "s": Decimal(1000),
    "m": Decimal(60_000),
    "h": Decimal(3_600_000),
}


@dataclass(frozen=True)
class MonitorConfig:
    update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    max_data_points: int = DEFAULT_MAX_DATA_POINTS
    backfill_bytes: int = DEFAULT_BACKFILL_BYTES

    @property
    def update_interval_s(self) -> float:
        return self.update_interval_ms / 1000.0

    def to_dict(self) -> dict:
        return {
            "updateInterval": self.update_interval_ms,
            "maxDataPoints": self.max_data_points,
            "backfillBytes": self.backfill_bytes,
        }


def parse_duration_ms(value: str, *, default_unit: str = "s") -> int:
    """Parse ``250ms``, ``1.5s``, ``2m``, ``1h`` or a bare number into milliseconds.

    Raises ValueError on anything else, including negative and sub-millisecond values.
    """
    raw = value
    text = str(value).strip().lower()
    if not text:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 1.5s or 250ms)")

    unit = default_unit
    number = text
    for suffix in ("ms", "s", "m", "h"):
        if text.endswith(suffix):
            unit = suffix
            number = text[: -len(suffix)]
            break

    if not number:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 1.5s or 250ms)")
    try:
        parsed = Decimal(number)
    except InvalidOperation as exc:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 1.5s or 250ms)") from exc
    if not parsed.is_finite() or parsed < 0:
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 1.5s or 250ms)")

    duration_ms = parsed * _DURATION_MULTIPLIERS[unit]
    if duration_ms != duration_ms.to_integral_value():
        raise ValueError(f"invalid duration: '{raw}' (use e.g. 1.5s or 250ms)")
    return int(duration_ms)


def _positive_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float) and value.is_integer():
        return int(value) if value > 0 else None
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def _interval_ms(value: object) -> int | None:
    # Bare numbers are milliseconds, matching the updateInterval setting.
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return _positive_int(value)
    if isinstance(value, str):
        try:
            parsed = parse_duration_ms(value, default_unit="ms")
        except ValueError:
            return None
        return parsed if parsed > 0 else None
    return None


def home_config_path(home: Path | None = None) -> Path:
    base = home if home is not None else Path.home()
    return base / _HOME_CONFIG_DIR / _CONFIG_FILENAME


def resolve_config_path(env: Mapping[str, str], home: Path | None = None) -> Path:
    raw = env.get(CONFIG_ENV_VAR)
    if raw and raw.strip():
        return Path(raw.strip()).expanduser()
    return home_config_path(home)


def _read_config_file(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if not isinstance(data, dict):
        return {}
    section = data.get(_SETTINGS_SECTION)
    if isinstance(section, dict):
        merged = dict(data)
        merged.update(section)
        return merged
    return data


def _apply_settings(config: MonitorConfig, settings: Mapping[str, object]) -> MonitorConfig:
    interval = _interval_ms(settings.get("updateInterval"))
    if interval is not None:
        config = replace(config, update_interval_ms=interval)
    max_points = _positive_int(settings.get("maxDataPoints"))
    if max_points is not None:
        config = replace(config, max_data_points=max_points)
    backfill = _positive_int(settings.get("backfillBytes"))
    if backfill is not None:
        config = replace(config, backfill_bytes=backfill)
    return config


def load_config(
    env: Mapping[str, str] | None = None,
    *,
    config_path: Path | None = None,
    home: Path | None = None,
) -> MonitorConfig:
    """Defaults, then the JSON config file, then environment variables.

    Unreadable files and invalid values fall back to what came before.
    """
    environ = os.environ if env is None else env
    path = config_path if config_path is not None else resolve_config_path(environ, home)
    config = _apply_settings(MonitorConfig(), _read_config_file(path))
    return _apply_settings(
        config,
        {
            "updateInterval": environ.get(UPDATE_INTERVAL_ENV_VAR),
            "maxDataPoints": environ.get(MAX_DATA_POINTS_ENV_VAR),
            "backfillBytes": environ.get(BACKFILL_BYTES_ENV_VAR),
        },
    )
