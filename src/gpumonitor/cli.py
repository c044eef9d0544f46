"""Command-line interface for gpumonitor."""

from __future__ import annotations

import argparse
import json
import os
import selectors
import signal
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from gpumonitor import __version__ as GPUMON_VERSION
from gpumonitor.audit.explain import EventLog, ExplainLog, NullLog, StderrLog, TeeLog
from gpumonitor.config import MonitorConfig, load_config, parse_duration_ms
from gpumonitor.core.orchestrator import PollingOrchestrator
from gpumonitor.core.timer import DeadlineTimer, SleepTimer
from gpumonitor.panel.handler import PanelMessageHandler
from gpumonitor.panel.sink import JsonlPanel, error_message
from gpumonitor.telemetry.pipeline import TailParser
from gpumonitor.telemetry.tail import LocalFileAccess, TailReader

_READ_CHUNK = 65536
# Upper bound on one wait so signal-driven stops are noticed.
_IDLE_WAIT_S = 0.5


def _parse_interval_ms(value: str) -> int:
    try:
        interval_ms = parse_duration_ms(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if interval_ms <= 0:
        raise argparse.ArgumentTypeError(f"invalid interval: '{value}' (must be > 0)")
    return interval_ms


def _parse_nonnegative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid count: '{value}'") from exc
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"invalid count: '{value}' (must be >= 0)")
    return parsed


def _ensure_out_dir(out_dir: str) -> Path:
    path = Path(out_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _format_utc(dt: datetime) -> str:
    return dt.isoformat(timespec="seconds")


def _write_json_report(path: Path, payload: dict) -> None:
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True) + "\n",
        encoding="utf-8",
    )


def _write_latest_with_timestamp(
    out_dir: Path,
    *,
    latest_name: str,
    prefix: str,
    payload: dict,
) -> tuple[Path, Path]:
    ts_path = out_dir / f"{prefix}_{_utc_now().strftime('%Y%m%d_%H%M%S')}.json"
    latest_path = out_dir / latest_name
    _write_json_report(ts_path, payload)
    _write_json_report(latest_path, payload)
    return latest_path, ts_path


def _resolve_config(args: argparse.Namespace) -> MonitorConfig:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    config = load_config(config_path=config_path)
    interval_ms = getattr(args, "interval", None)
    if interval_ms is not None:
        config = replace(config, update_interval_ms=int(interval_ms))
    return config


def _build_event_log(args: argparse.Namespace, out_dir: Path | None) -> EventLog:
    sinks: list[EventLog] = []
    if out_dir is not None:
        sinks.append(ExplainLog(out_dir / "explain.jsonl"))
    if bool(getattr(args, "verbose", False)):
        sinks.append(StderrLog())
    if not sinks:
        return NullLog()
    if len(sinks) == 1:
        return sinks[0]
    return TeeLog(sinks)


def _build_watch_report(
    *,
    started_at: datetime,
    finished_at: datetime,
    gpu_path: str,
    memory_path: str,
    max_ticks: int | None,
    snapshot: dict,
    start_error: str | None,
) -> dict:
    return {
        "schema_version": "v0",
        "started_at": _format_utc(started_at),
        "finished_at": _format_utc(finished_at),
        "duration_s": max(0, int((finished_at - started_at).total_seconds())),
        "gpu_path": gpu_path,
        "memory_path": memory_path,
        "max_ticks": max_ticks,
        "start_ok": start_error is None,
        "start_error": start_error,
        "tick_count": int(snapshot.get("tick_count", 0)),
        "config": snapshot.get("config"),
        "series": snapshot.get("series", {}),
        "ingest_totals": snapshot.get("ingest_totals", {}),
    }


def cmd_watch(args: argparse.Namespace) -> int:
    started_at = _utc_now()
    config = _resolve_config(args)
    out_dir = _ensure_out_dir(args.out) if args.out else None
    log = _build_event_log(args, out_dir)
    timer = SleepTimer()
    orchestrator = PollingOrchestrator(
        files=LocalFileAccess(),
        panel=JsonlPanel(sys.stdout),
        timer=timer,
        log=log,
        config=config,
    )

    def _signal_handler(signum: int, _frame: object | None) -> None:
        orchestrator.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    start_error: str | None = None
    snapshot: dict = orchestrator.snapshot()
    try:
        try:
            orchestrator.start(args.gpu_path, args.memory_path)
        except OSError as exc:
            start_error = str(exc)
            print(f"ERROR: {exc}", file=sys.stderr)
            return 2
        if args.max_ticks != 0:
            timer.run(max_ticks=args.max_ticks)
    finally:
        if orchestrator.monitoring:
            snapshot = orchestrator.snapshot()
        elif orchestrator.last_snapshot is not None:
            snapshot = orchestrator.last_snapshot
        orchestrator.dispose()
        if out_dir is not None:
            report = _build_watch_report(
                started_at=started_at,
                finished_at=_utc_now(),
                gpu_path=str(args.gpu_path),
                memory_path=str(args.memory_path),
                max_ticks=args.max_ticks,
                snapshot=snapshot,
                start_error=start_error,
            )
            _write_latest_with_timestamp(
                out_dir,
                latest_name="watch_latest.json",
                prefix="watch",
                payload=report,
            )
    return 0


def _split_lines(buffer: bytes) -> tuple[list[bytes], bytes]:
    parts = buffer.split(b"\n")
    return parts[:-1], parts[-1]


def _wait_timeout(timer: DeadlineTimer) -> float:
    due = timer.seconds_until_due()
    if due is None:
        return _IDLE_WAIT_S
    return min(due, _IDLE_WAIT_S)


def run_panel_loop(
    fd: int,
    handler: PanelMessageHandler,
    timer: DeadlineTimer,
    *,
    should_stop: Callable[[], bool] = lambda: False,
) -> int:
    """Serve JSON-lines requests from ``fd`` while driving the polling timer.

    Returns the number of requests handled once ``fd`` reaches EOF.
    """
    handled = 0
    buffer = b""
    eof = False
    with selectors.DefaultSelector() as sel:
        sel.register(fd, selectors.EVENT_READ)
        while not eof and not should_stop():
            events = sel.select(_wait_timeout(timer))
            if events:
                chunk = os.read(fd, _READ_CHUNK)
                if chunk:
                    buffer += chunk
                else:
                    eof = True
                lines, buffer = _split_lines(buffer)
                if eof and buffer:
                    lines.append(buffer)
                    buffer = b""
                for raw in lines:
                    text = raw.decode("utf-8", errors="replace").strip()
                    if not text:
                        continue
                    try:
                        message = json.loads(text)
                    except ValueError:
                        handler.panel.post(error_message("Invalid message: not valid JSON"))
                        continue
                    handler.handle(message)
                    handled += 1
            timer.fire_if_due()
    return handled


def cmd_panel(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    out_dir = _ensure_out_dir(args.out) if args.out else None
    log = _build_event_log(args, out_dir)
    files = LocalFileAccess()
    panel = JsonlPanel(sys.stdout)
    timer = DeadlineTimer()
    orchestrator = PollingOrchestrator(
        files=files,
        panel=panel,
        timer=timer,
        log=log,
        config=config,
    )
    handler = PanelMessageHandler(
        panel=panel,
        orchestrator=orchestrator,
        tail=TailParser(files=files, reader=TailReader(files, backfill_bytes=config.backfill_bytes)),
        log=log,
        max_data_points=config.max_data_points,
    )
    stop_requested = False

    def _signal_handler(signum: int, _frame: object | None) -> None:
        nonlocal stop_requested
        stop_requested = True
        orchestrator.stop()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    try:
        run_panel_loop(sys.stdin.fileno(), handler, timer, should_stop=lambda: stop_requested)
    finally:
        orchestrator.dispose()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gpumon")
    parser.add_argument(
        "--version",
        action="version",
        version=f"gpumonitor {GPUMON_VERSION}",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Tail GPU and memory CSV logs, print panel messages as JSON lines")
    watch.add_argument("--gpu-path", required=True, help="GPU stats CSV (Timestamp,GPU_Utilization,Memory_Used,Memory_Total)")
    watch.add_argument("--memory-path", required=True, help="Memory stats CSV (Timestamp,RSS_KB,VSZ_KB)")
    watch.add_argument(
        "--interval",
        type=_parse_interval_ms,
        default=None,
        help="Polling interval, e.g. 250ms or 5s (default: updateInterval setting, 5000ms)",
    )
    watch.add_argument(
        "--max-ticks",
        type=_parse_nonnegative_int,
        default=None,
        help="Stop after this many polling ticks (default: run until SIGINT/SIGTERM)",
    )
    watch.add_argument("--out", default=None, help="Directory for explain.jsonl and watch_latest.json")
    watch.add_argument("--config", default=None, help="JSON settings file (default: ~/.config/gpumonitor/config.json)")
    watch.add_argument("--verbose", action="store_true", help="Also print events to stderr")
    watch.set_defaults(func=cmd_watch)

    panel = sub.add_parser("panel", help="Serve panel requests as JSON lines on stdin/stdout")
    panel.add_argument("--out", default=None, help="Directory for explain.jsonl")
    panel.add_argument("--config", default=None, help="JSON settings file (default: ~/.config/gpumonitor/config.json)")
    panel.add_argument("--verbose", action="store_true", help="Print events to stderr")
    panel.set_defaults(func=cmd_panel)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
