from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from typing import Iterable, TextIO

from gpumonitor.telemetry.models import Sample, Series


class Panel:
    def post(self, message: dict) -> None:
        raise NotImplementedError

    def close(self) -> None:
        return None


@dataclass
class JsonlPanel(Panel):
    stream: TextIO | None = None
    messages_posted: int = 0
    closed: bool = False

    def post(self, message: dict) -> None:
        if self.closed:
            return
        out = self.stream if self.stream is not None else sys.stdout
        out.write(json.dumps(message, ensure_ascii=False, sort_keys=True) + "\n")
        out.flush()
        self.messages_posted += 1

    def close(self) -> None:
        self.closed = True


@dataclass
class MemoryPanel(Panel):
    messages: list[dict] = field(default_factory=list)
    closed: bool = False

    def post(self, message: dict) -> None:
        if not self.closed:
            self.messages.append(message)

    def close(self) -> None:
        self.closed = True

    def commands(self) -> list[str]:
        return [str(m.get("command")) for m in self.messages]


def _series_value(series: Series | str) -> str:
    return Series(series).value


def initial_data_message(
    series: Series | str,
    samples: Iterable[Sample],
    last_position: int,
    path: str | None = None,
) -> dict:
    message = {
        "command": "initialData",
        "type": _series_value(series),
        "data": [sample.to_dict() for sample in samples],
        "lastPosition": int(last_position),
    }
    if path is not None:
        message["path"] = path
    return message


def update_message(
    series: Series | str,
    samples: Iterable[Sample],
    last_position: int,
    path: str | None = None,
) -> dict:
    message = {
        "command": "update",
        "type": _series_value(series),
        "data": [sample.to_dict() for sample in samples],
        "lastPosition": int(last_position),
    }
    if path is not None:
        message["path"] = path
    return message


def error_message(text: str) -> dict:
    return {"command": "error", "text": text}


def clear_message() -> dict:
    return {"command": "clear"}
