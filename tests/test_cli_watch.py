import json
import shutil
import subprocess
from pathlib import Path


def _copy_logs(data_dir: Path, tmp_path: Path) -> tuple[Path, Path]:
    gpu = tmp_path / "gpu_stats.csv"
    memory = tmp_path / "train_memory.csv"
    shutil.copyfile(data_dir / "gpu_stats.csv", gpu)
    shutil.copyfile(data_dir / "memory_stats.csv", memory)
    return gpu, memory


def _messages(stdout: str) -> list[dict]:
    return [json.loads(line) for line in stdout.splitlines() if line.strip()]


def test_watch_emits_initial_data_and_report(tmp_path: Path, gpumon_path: Path, data_dir: Path) -> None:
    gpu, memory = _copy_logs(data_dir, tmp_path)
    out_dir = tmp_path / "watch_out"

    cp = subprocess.run(
        [
            str(gpumon_path),
            "watch",
            "--gpu-path",
            str(gpu),
            "--memory-path",
            str(memory),
            "--interval",
            "20ms",
            "--max-ticks",
            "2",
            "--out",
            str(out_dir),
        ],
        text=True,
        capture_output=True,
        timeout=60,
    )
    assert cp.returncode == 0, cp.stderr

    messages = _messages(cp.stdout)
    initial = [m for m in messages if m["command"] == "initialData"]
    assert [m["type"] for m in initial] == ["gpu", "memory"]
    assert [d["memory"] for d in initial[0]["data"]] == [25.0, 50.0, 75.0]
    assert [d["usage"] for d in initial[1]["data"]] == [1024.0, 2048.0]
    assert messages[-1] == {"command": "clear"}

    report = json.loads((out_dir / "watch_latest.json").read_text(encoding="utf-8"))
    assert report["start_ok"] is True
    assert report["tick_count"] == 2
    assert report["config"]["updateInterval"] == 20
    assert report["series"]["gpu"]["position"] == gpu.stat().st_size
    assert report["ingest_totals"]["samples_parsed"] == 5

    explain = (out_dir / "explain.jsonl").read_text(encoding="utf-8").splitlines()
    assert any('"event": "monitor_start"' in line for line in explain)
    assert any('"event": "monitor_stop"' in line for line in explain)


def test_watch_missing_file_exits_2(tmp_path: Path, gpumon_path: Path, data_dir: Path) -> None:
    gpu, _ = _copy_logs(data_dir, tmp_path)
    out_dir = tmp_path / "watch_out"
    cp = subprocess.run(
        [
            str(gpumon_path),
            "watch",
            "--gpu-path",
            str(gpu),
            "--memory-path",
            str(tmp_path / "missing.csv"),
            "--max-ticks",
            "1",
            "--out",
            str(out_dir),
        ],
        text=True,
        capture_output=True,
        timeout=60,
    )
    assert cp.returncode == 2
    assert "ERROR:" in cp.stderr
    assert "missing.csv" in cp.stderr
    assert _messages(cp.stdout)[-1]["command"] == "error"

    report = json.loads((out_dir / "watch_latest.json").read_text(encoding="utf-8"))
    assert report["start_ok"] is False
    assert "missing.csv" in report["start_error"]


def test_watch_rejects_bad_interval(tmp_path: Path, gpumon_path: Path) -> None:
    cp = subprocess.run(
        [str(gpumon_path), "watch", "--gpu-path", "a", "--memory-path", "b", "--interval", "soon"],
        text=True,
        capture_output=True,
    )
    assert cp.returncode == 2
    assert "invalid duration" in cp.stderr
