from __future__ import annotations

from dataclasses import dataclass, field

from gpumonitor.audit.explain import EventLog, NullLog
from gpumonitor.core.orchestrator import PollingOrchestrator
from gpumonitor.core.window import SampleWindow
from gpumonitor.errors import MonitorError, PanelMessageError
from gpumonitor.panel.sink import Panel, error_message, initial_data_message, update_message
from gpumonitor.telemetry.models import Series
from gpumonitor.telemetry.pipeline import TailParser
from gpumonitor.telemetry.transform import Schema, parse_header, schema_for, schema_for_header

COMMANDS = (
    "getInitialData",
    "getNewData",
    "startMonitoring",
    "stopMonitoring",
    "log",
    "error",
)


def _require_text(message: dict, key: str) -> str:
    value = message.get(key)
    if not isinstance(value, str) or not value.strip():
        raise PanelMessageError(f"'{key}' must be a non-empty string")
    return value.strip()


def _optional_position(message: dict, key: str) -> int | None:
    value = message.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise PanelMessageError(f"'{key}' must be a non-negative integer")
    return value


def _series(message: dict) -> Series:
    value = message.get("type")
    try:
        return Series(value)
    except ValueError as exc:
        raise PanelMessageError("'type' must be 'gpu' or 'memory'") from exc


@dataclass
class PanelMessageHandler:
    """Answers requests arriving from the panel; replies go to ``panel``.

    Bad requests are answered with an ``error`` message and never raise.
    """

    panel: Panel
    orchestrator: PollingOrchestrator
    tail: TailParser
    log: EventLog = field(default_factory=NullLog)
    max_data_points: int = 100
    _headers: dict[str, list[str]] = field(default_factory=dict, repr=False)

    def handle(self, message: object) -> None:
        command = message.get("command") if isinstance(message, dict) else None
        try:
            if not isinstance(message, dict):
                raise PanelMessageError("message must be a JSON object")
            if command not in COMMANDS:
                raise PanelMessageError(f"unknown command: {command!r}")
            getattr(self, f"_on_{command}")(message)
        except PanelMessageError as exc:
            self.log.emit("panel_message_invalid", {"command": command, "error": str(exc)})
            self.panel.post(error_message(f"Invalid message: {exc}"))
        except (MonitorError, OSError) as exc:
            self.log.emit("panel_request_failed", {"command": command, "error": str(exc)})
            # The orchestrator reports its own start failures to the panel.
            if command == "startMonitoring" and isinstance(exc, OSError):
                return
            self.panel.post(error_message(str(exc)))

    def _on_getInitialData(self, message: dict) -> None:
        requests = [
            (Series.GPU, _require_text(message, "gpuPath")),
            (Series.MEMORY, _require_text(message, "memoryPath")),
        ]
        replies = []
        for series, path in requests:
            batch = self.tail.fetch(path, schema_for(series))
            if batch.result.header is not None:
                self._headers[path] = batch.result.header
            window = SampleWindow(self.max_data_points)
            window.extend(batch.result.samples)
            self._log_rejections(series, path, batch.result.rejected)
            replies.append(initial_data_message(series, window, batch.position, path=path))
        for reply in replies:
            self.panel.post(reply)

    def _on_getNewData(self, message: dict) -> None:
        path = _require_text(message, "path")
        schema = self._schema_for_request(message, path)
        series = schema.series
        position = _optional_position(message, "lastPosition")
        batch = self.tail.fetch(path, schema, position, self._headers.get(path))
        if batch.result.header is not None:
            self._headers[path] = batch.result.header
        self._log_rejections(series, path, batch.result.rejected)
        self.panel.post(update_message(series, batch.result.samples, batch.position, path=path))

    def _on_startMonitoring(self, message: dict) -> None:
        self.orchestrator.start(
            _require_text(message, "gpuPath"),
            _require_text(message, "memoryPath"),
        )

    def _on_stopMonitoring(self, message: dict) -> None:
        self.orchestrator.stop()
        self._headers.clear()

    def _on_log(self, message: dict) -> None:
        level = message.get("level") if message.get("level") in ("info", "error") else "info"
        self.log.emit("panel_log", {"level": level, "text": str(message.get("text", ""))})

    def _on_error(self, message: dict) -> None:
        self.log.emit("panel_error", {"text": str(message.get("text", ""))})

    def _schema_for_request(self, message: dict, path: str) -> Schema:
        if message.get("type") is not None:
            return schema_for(_series(message))
        header = self._headers.get(path)
        if header is None:
            header = parse_header(self.tail.files.read_first_line(path))
        schema = schema_for_header(header)
        if schema is None:
            raise PanelMessageError(f"'type' is missing and the header of {path} matches no known log")
        return schema

    def _log_rejections(self, series: Series, path: str, rejected: list) -> None:
        for rejection in rejected:
            self.log.emit("row_rejected", {"type": series.value, "path": path, **rejection.to_dict()})
