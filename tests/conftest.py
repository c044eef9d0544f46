# --- test import path bootstrap (src/ layout) ---
import sys as _sys
from pathlib import Path as _Path

_SRC = _Path(__file__).resolve().parents[1] / "src"
if _SRC.is_dir():
    _p = str(_SRC)
    if _p not in _sys.path:
        _sys.path.insert(0, _p)
# --- end bootstrap ---

import sys
import tempfile
from pathlib import Path

import pytest

from gpumonitor.core.timer import ManualTimer
from gpumonitor.panel.sink import MemoryPanel

from fakes import FakeFiles, RecordingLog


@pytest.fixture
def gpumon_path() -> Path:
    repo_root = Path(__file__).resolve().parents[1]
    local = repo_root / ".venv" / "bin" / "gpumon"
    if local.exists():
        return local

    # Use a repo-local shim when local venv entrypoint is unavailable.
    shim_dir = Path(tempfile.mkdtemp(prefix="gpumon-shim-"))
    shim = shim_dir / "gpumon"
    shim.write_text(
        f"""#!/usr/bin/env bash
set -Eeuo pipefail
export PYTHONPATH=\"{repo_root}/src${{PYTHONPATH:+:${{PYTHONPATH}}}}\"
exec \"{sys.executable}\" -c 'import sys; from gpumonitor.cli import main; raise SystemExit(main())' \"$@\"
""",
        encoding="utf-8",
    )
    shim.chmod(0o755)
    return shim


@pytest.fixture
def files() -> FakeFiles:
    return FakeFiles()


@pytest.fixture
def panel() -> MemoryPanel:
    return MemoryPanel()


@pytest.fixture
def timer() -> ManualTimer:
    return ManualTimer()


@pytest.fixture
def events() -> RecordingLog:
    return RecordingLog()


@pytest.fixture
def data_dir() -> Path:
    return Path(__file__).resolve().parent / "data"
