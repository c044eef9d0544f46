from __future__ import annotations

from dataclasses import dataclass, field

from gpumonitor.audit.explain import EventLog, NullLog
from gpumonitor.config import MonitorConfig
from gpumonitor.core.modes import MonitorState
from gpumonitor.core.state_machine import MonitorStateMachine
from gpumonitor.core.timer import IntervalTimer
from gpumonitor.core.window import SampleWindow
from gpumonitor.errors import MonitorError, TailFileNotFoundError
from gpumonitor.panel.sink import (
    Panel,
    clear_message,
    error_message,
    initial_data_message,
    update_message,
)
from gpumonitor.telemetry.models import Sample, Series
from gpumonitor.telemetry.pipeline import TailParser
from gpumonitor.telemetry.tail import FileAccess, TailReader
from gpumonitor.telemetry.transform import IngestStats, RecordTransformer, Schema, schema_for


@dataclass
class SeriesState:
    series: Series
    path: str
    schema: Schema
    window: SampleWindow
    position: int | None = None
    header: list[str] | None = None
    stats: IngestStats = field(default_factory=IngestStats)

    def to_dict(self) -> dict:
        latest = self.window.latest()
        return {
            "path": self.path,
            "position": self.position,
            "header": list(self.header) if self.header is not None else None,
            "window": [sample.to_dict() for sample in self.window],
            "latest": latest.to_dict() if latest is not None else None,
            "ingest": self.stats.to_dict(),
        }


class PollingOrchestrator:
    """Idle/Monitoring session that tails the GPU and memory CSV logs.

    Each cycle runs tail read -> CSV parse -> sample window for one file and
    posts the new samples to the panel. Only one logical flow drives the
    orchestrator; a read that returns after ``stop()`` is dropped.
    """

    def __init__(
        self,
        *,
        files: FileAccess,
        panel: Panel,
        timer: IntervalTimer,
        log: EventLog | None = None,
        config: MonitorConfig | None = None,
        transformer: RecordTransformer | None = None,
    ) -> None:
        self.files = files
        self.panel = panel
        self.timer = timer
        self.log = log if log is not None else NullLog()
        self.config = config if config is not None else MonitorConfig()
        self.tail = TailParser(
            files=files,
            reader=TailReader(files, backfill_bytes=self.config.backfill_bytes),
            transformer=transformer if transformer is not None else RecordTransformer(),
        )
        self.tick_count = 0
        self.last_snapshot: dict | None = None
        self._sm = MonitorStateMachine()
        self._session = 0
        self._series: dict[Series, SeriesState] = {}
        self._in_flight: set[str] = set()

    @property
    def state(self) -> MonitorState:
        return self._sm.state

    @property
    def monitoring(self) -> bool:
        return self._sm.monitoring

    @property
    def session(self) -> int:
        return self._session

    def positions(self) -> dict[str, int]:
        return {
            st.path: st.position
            for st in self._series.values()
            if st.position is not None
        }

    def window(self, series: Series | str) -> list[Sample]:
        st = self._series.get(Series(series))
        return st.window.to_list() if st is not None else []

    def start(self, gpu_path: str, memory_path: str) -> bool:
        """Begin a session. Returns False when the same session is already running."""
        paths = {Series.GPU: str(gpu_path), Series.MEMORY: str(memory_path)}
        if self.monitoring:
            current = {series: st.path for series, st in self._series.items()}
            if current == paths:
                self.log.emit("monitor_start_reused", {"session": self._session})
                return False
            raise MonitorError("Already monitoring other files; stop the current session first")

        for series, path in paths.items():
            if not self.files.exists(path):
                self._fail_start(series, TailFileNotFoundError(path))

        self._session += 1
        self.tick_count = 0
        self._series = {
            series: SeriesState(
                series=series,
                path=path,
                schema=schema_for(series),
                window=SampleWindow(self.config.max_data_points),
            )
            for series, path in paths.items()
        }
        self._sm.transition(MonitorState.MONITORING)
        self.log.emit(
            "monitor_start",
            {
                "session": self._session,
                "gpu_path": paths[Series.GPU],
                "memory_path": paths[Series.MEMORY],
                "update_interval_ms": self.config.update_interval_ms,
            },
        )

        session = self._session
        for st in list(self._series.values()):
            try:
                self._cycle(st, session)
            except OSError as exc:
                self._reset()
                self._fail_start(st.series, exc)
            if session != self._session:
                return False
            self.panel.post(
                initial_data_message(st.series, st.window, st.position or 0, path=st.path)
            )

        self.timer.start(self.config.update_interval_s, self.tick)
        return True

    def tick(self) -> None:
        if not self.monitoring:
            return
        session = self._session
        self.tick_count += 1
        for st in list(self._series.values()):
            if session != self._session:
                break
            try:
                samples = self._cycle(st, session)
            except OSError as exc:
                self.log.emit(
                    "tick_read_error",
                    {
                        "session": session,
                        "tick": self.tick_count,
                        "type": st.series.value,
                        "path": st.path,
                        "error": str(exc),
                    },
                )
                self.panel.post(error_message(f"Error reading {st.series.value} stats file: {exc}"))
                continue
            if samples:
                self.panel.post(
                    update_message(st.series, samples, st.position or 0, path=st.path)
                )
        if session == self._session:
            self.log.emit(
                "tick",
                {"session": session, "tick": self.tick_count, "positions": self.positions()},
            )

    def stop(self) -> bool:
        if not self.monitoring:
            return False
        session = self._session
        self.timer.cancel()
        self.last_snapshot = self.snapshot()
        self._reset()
        self.log.emit("monitor_stop", {"session": session, "ticks": self.tick_count})
        self.panel.post(clear_message())
        return True

    def dispose(self) -> None:
        self.stop()
        self.panel.close()

    def snapshot(self) -> dict:
        totals = IngestStats()
        for st in self._series.values():
            totals.merge(st.stats)
        return {
            "state": self.state.value,
            "session": self._session,
            "tick_count": self.tick_count,
            "config": self.config.to_dict(),
            "series": {series.value: st.to_dict() for series, st in self._series.items()},
            "ingest_totals": totals.to_dict(),
        }

    def _reset(self) -> None:
        self._session += 1
        self._series = {}
        self._in_flight.clear()
        self._sm.transition(MonitorState.IDLE)

    def _fail_start(self, series: Series, exc: Exception) -> None:
        self.log.emit(
            "monitor_start_failed",
            {"type": series.value, "error": str(exc)},
        )
        self.panel.post(error_message(f"Failed to start monitoring: {exc}"))
        raise exc

    def _cycle(self, st: SeriesState, session: int) -> list[Sample] | None:
        if st.path in self._in_flight:
            self.log.emit(
                "tick_skipped_in_flight",
                {"session": session, "type": st.series.value, "path": st.path},
            )
            return None

        self._in_flight.add(st.path)
        try:
            batch = self.tail.fetch(st.path, st.schema, st.position, st.header)
        finally:
            self._in_flight.discard(st.path)

        if session != self._session or not self.monitoring:
            self.log.emit(
                "tick_discarded",
                {"session": session, "type": st.series.value, "path": st.path},
            )
            return None

        result = batch.result
        st.position = max(batch.position, st.position or 0)
        if result.header is not None:
            st.header = result.header
        st.stats.merge(result.stats)
        for rejection in result.rejected:
            self.log.emit(
                "row_rejected",
                {"session": session, "type": st.series.value, "path": st.path, **rejection.to_dict()},
            )
        st.window.extend(result.samples)
        return result.samples
