from __future__ import annotations

import csv
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from gpumonitor.errors import RowValidationError
from gpumonitor.telemetry.models import GpuSample, MemorySample, Sample, Series

_NUMERIC_TS_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)$")
_UNIT_SUFFIXES = ("%", "mib", "kib", "mb", "kb")
_SLASH_TS_FORMATS = ("%Y/%m/%d %H:%M:%S.%f", "%Y/%m/%d %H:%M:%S")

REASON_MISSING_FIELDS = "missing_fields"
REASON_INVALID_NUMBER = "invalid_number"
REASON_INVALID_TIMESTAMP = "invalid_timestamp"
REASON_ZERO_TOTAL = "zero_total"
REASON_MALFORMED_CSV = "malformed_csv"

_RAW_PREVIEW_CHARS = 200


@dataclass
class IngestStats:
    rows_read: int = 0
    samples_parsed: int = 0
    dropped_missing_fields: int = 0
    dropped_invalid_number: int = 0
    dropped_invalid_timestamp: int = 0
    dropped_zero_total: int = 0
    dropped_malformed_csv: int = 0

    @property
    def dropped_total(self) -> int:
        return (
            self.dropped_missing_fields
            + self.dropped_invalid_number
            + self.dropped_invalid_timestamp
            + self.dropped_zero_total
            + self.dropped_malformed_csv
        )

    def count_drop(self, reason: str) -> None:
        attr = f"dropped_{reason}"
        if hasattr(self, attr):
            setattr(self, attr, getattr(self, attr) + 1)

    def merge(self, other: IngestStats) -> None:
        self.rows_read += other.rows_read
        self.samples_parsed += other.samples_parsed
        self.dropped_missing_fields += other.dropped_missing_fields
        self.dropped_invalid_number += other.dropped_invalid_number
        self.dropped_invalid_timestamp += other.dropped_invalid_timestamp
        self.dropped_zero_total += other.dropped_zero_total
        self.dropped_malformed_csv += other.dropped_malformed_csv

    def to_dict(self) -> dict[str, int]:
        return {
            "rows_read": self.rows_read,
            "samples_parsed": self.samples_parsed,
            "dropped_total": self.dropped_total,
            "dropped_missing_fields": self.dropped_missing_fields,
            "dropped_invalid_number": self.dropped_invalid_number,
            "dropped_invalid_timestamp": self.dropped_invalid_timestamp,
            "dropped_zero_total": self.dropped_zero_total,
            "dropped_malformed_csv": self.dropped_malformed_csv,
        }


@dataclass(frozen=True)
class RowRejection:
    row_number: int
    reason: str
    message: str
    row: dict[str, str | None]

    def to_dict(self) -> dict:
        return {
            "row_number": self.row_number,
            "reason": self.reason,
            "message": self.message,
            "row": dict(self.row),
        }


@dataclass
class ParseResult:
    header: list[str] | None
    samples: list[Sample] = field(default_factory=list)
    rejected: list[RowRejection] = field(default_factory=list)
    stats: IngestStats = field(default_factory=IngestStats)

    @property
    def rows_read(self) -> int:
        return self.stats.rows_read


@dataclass(frozen=True)
class Schema:
    series: Series
    required: tuple[str, ...]
    build: Callable[[dict[str, str]], Sample]


def _reject(reason: str, message: str) -> RowValidationError:
    return RowValidationError(message, reason=reason)


def _require(row: dict[str, str | None], names: tuple[str, ...], label: str) -> dict[str, str]:
    values: dict[str, str] = {}
    missing: list[str] = []
    for name in names:
        value = row.get(name)
        text = value.strip() if isinstance(value, str) else ""
        if not text:
            missing.append(name)
            continue
        values[name] = text
    if missing:
        raise _reject(
            REASON_MISSING_FIELDS,
            f"Missing required fields in {label} data: {', '.join(missing)}",
        )
    return values


def parse_number(value: str) -> float:
    """Parse a numeric CSV cell, tolerating nvidia-smi style unit suffixes.

    Raises ValueError for anything that is not a finite number.
    """
    text = value.strip()
    lowered = text.lower()
    for suffix in _UNIT_SUFFIXES:
        if lowered.endswith(suffix):
            text = text[: -len(suffix)].strip()
            break
    number = float(text)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number: {value!r}")
    return number


def parse_timestamp(value: str) -> datetime:
    """Parse ISO 8601, nvidia-smi ``YYYY/MM/DD HH:MM:SS.fff`` or epoch s/ms.

    Naive values are taken as local time.
    """
    s = value.strip()
    if not s:
        raise ValueError("Empty timestamp")

    if _NUMERIC_TS_RE.match(s):
        v = float(s)
        seconds = v / 1000.0 if v > 1e11 else v
        return datetime.fromtimestamp(seconds)

    for fmt in _SLASH_TS_FORMATS:
        try:
            return datetime.strptime(s, fmt)
        except ValueError:
            continue

    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    return datetime.fromisoformat(s)


def format_timestamp(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return dt.strftime("%H:%M:%S")


def _timestamp(values: dict[str, str], label: str) -> str:
    try:
        return format_timestamp(parse_timestamp(values["Timestamp"]))
    except (ValueError, OverflowError, OSError) as exc:
        raise _reject(REASON_INVALID_TIMESTAMP, f"Invalid timestamp in {label} data") from exc


def _numbers(values: dict[str, str], names: tuple[str, ...], label: str) -> list[float]:
    try:
        return [parse_number(values[name]) for name in names]
    except ValueError as exc:
        raise _reject(REASON_INVALID_NUMBER, f"Invalid numeric values in {label} data") from exc


_GPU_FIELDS = ("Timestamp", "GPU_Utilization", "Memory_Used", "Memory_Total")
_MEMORY_FIELDS = ("Timestamp", "RSS_KB", "VSZ_KB")


def build_gpu_sample(row: dict[str, str | None]) -> GpuSample:
    values = _require(row, _GPU_FIELDS, "GPU")
    timestamp = _timestamp(values, "GPU")
    utilization, memory_used, memory_total = _numbers(values, _GPU_FIELDS[1:], "GPU")
    if memory_total == 0:
        raise _reject(REASON_ZERO_TOTAL, "Memory_Total is zero in GPU data")
    return GpuSample(
        timestamp=timestamp,
        utilization=utilization,
        memory=(memory_used / memory_total) * 100,
    )


def build_memory_sample(row: dict[str, str | None]) -> MemorySample:
    values = _require(row, _MEMORY_FIELDS, "memory")
    timestamp = _timestamp(values, "memory")
    rss_kb, vsz_kb = _numbers(values, _MEMORY_FIELDS[1:], "memory")
    return MemorySample(timestamp=timestamp, usage=rss_kb / 1024, virtual_usage=vsz_kb / 1024)


GPU_SCHEMA = Schema(series=Series.GPU, required=_GPU_FIELDS, build=build_gpu_sample)
MEMORY_SCHEMA = Schema(series=Series.MEMORY, required=_MEMORY_FIELDS, build=build_memory_sample)


def schema_for(series: Series | str) -> Schema:
    key = Series(series)
    if key == Series.GPU:
        return GPU_SCHEMA
    return MEMORY_SCHEMA


def schema_for_header(header: list[str]) -> Schema | None:
    names = set(header)
    for schema in (GPU_SCHEMA, MEMORY_SCHEMA):
        if names.issuperset(schema.required):
            return schema
    return None


def parse_header(line: str) -> list[str]:
    for row in csv.reader([line.strip("\r\n")]):
        return [name.strip().lstrip("\ufeff") for name in row]
    return []


def _split_line(line: str) -> list[str]:
    # One reader per physical line: a stray quote or an oversized field
    # cannot run into the rows that follow.
    for cells in csv.reader([line], strict=True):
        return cells
    return []


class RecordTransformer:
    def parse(self, raw_text: str, schema: Schema, header: list[str] | None = None) -> ParseResult:
        result = ParseResult(header=list(header) if header is not None else None)
        data_row = 0
        for line in raw_text.split("\n"):
            line = line.rstrip("\r")
            if not line.strip():
                continue
            try:
                cells = _split_line(line)
            except csv.Error as exc:
                data_row += 1
                result.stats.rows_read += 1
                result.stats.count_drop(REASON_MALFORMED_CSV)
                result.rejected.append(
                    RowRejection(
                        row_number=data_row,
                        reason=REASON_MALFORMED_CSV,
                        message=f"Malformed {schema.series.value} CSV row: {exc}",
                        row={"raw": line[:_RAW_PREVIEW_CHARS]},
                    )
                )
                continue
            if not any(cell.strip() for cell in cells):
                continue
            if result.header is None:
                result.header = [cell.strip().lstrip("\ufeff") for cell in cells]
                continue

            data_row += 1
            result.stats.rows_read += 1
            row: dict[str, str | None] = {}
            for idx, name in enumerate(result.header):
                row[name] = cells[idx].strip() if idx < len(cells) else None
            try:
                sample = schema.build(row)
            except RowValidationError as exc:
                reason = exc.reason
                result.stats.count_drop(reason)
                result.rejected.append(
                    RowRejection(row_number=data_row, reason=reason, message=str(exc), row=row)
                )
                continue
            result.stats.samples_parsed += 1
            result.samples.append(sample)
        return result
