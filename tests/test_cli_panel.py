import json
import shutil
import subprocess
from pathlib import Path


def test_panel_serves_requests_until_eof(tmp_path: Path, gpumon_path: Path, data_dir: Path) -> None:
    gpu = tmp_path / "gpu.csv"
    memory = tmp_path / "mem.csv"
    shutil.copyfile(data_dir / "gpu_stats.csv", gpu)
    shutil.copyfile(data_dir / "memory_stats.csv", memory)

    requests = [
        {"command": "getInitialData", "gpuPath": str(gpu), "memoryPath": str(memory)},
        {"command": "getNewData", "path": str(gpu), "type": "gpu", "lastPosition": gpu.stat().st_size},
        {"command": "bogus"},
    ]
    stdin = "\n".join(json.dumps(r) for r in requests) + "\nnot json\n"
    cp = subprocess.run(
        [str(gpumon_path), "panel"],
        input=stdin,
        text=True,
        capture_output=True,
        timeout=60,
    )
    assert cp.returncode == 0, cp.stderr

    replies = [json.loads(line) for line in cp.stdout.splitlines() if line.strip()]
    assert [r["command"] for r in replies] == ["initialData", "initialData", "update", "error", "error"]
    assert len(replies[0]["data"]) == 3
    assert replies[2]["data"] == []
    assert replies[2]["lastPosition"] == gpu.stat().st_size
