from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO


class EventLog:
    def emit(self, event: str, payload: dict) -> None:
        raise NotImplementedError


class NullLog(EventLog):
    def emit(self, event: str, payload: dict) -> None:
        return None


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass
class ExplainLog(EventLog):
    """Appends one ``{"ts", "event", "payload"}`` JSON object per line to ``path``."""

    path: Path
    events_written: int = 0

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def emit(self, event: str, payload: dict) -> None:
        line = json.dumps({"ts": _utc_ts(), "event": event, "payload": payload}, ensure_ascii=False)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")
        self.events_written += 1


@dataclass
class StderrLog(EventLog):
    stream: TextIO | None = None

    def emit(self, event: str, payload: dict) -> None:
        out = self.stream if self.stream is not None else sys.stderr
        out.write(f"[{_utc_ts()}] [{event}] {json.dumps(payload, ensure_ascii=False, sort_keys=True)}\n")
        out.flush()


@dataclass
class TeeLog(EventLog):
    sinks: list[EventLog] = field(default_factory=list)

    def emit(self, event: str, payload: dict) -> None:
        for sink in self.sinks:
            sink.emit(event, payload)
