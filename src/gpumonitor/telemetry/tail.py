from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from gpumonitor.errors import TailFileNotFoundError

DEFAULT_BACKFILL_BYTES = 1024 * 1024


class FileAccess:
    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def size(self, path: str) -> int:
        raise NotImplementedError

    def read_range(self, path: str, start: int, end: int) -> bytes:
        raise NotImplementedError

    def read_first_line(self, path: str) -> str:
        raise NotImplementedError


class LocalFileAccess(FileAccess):
    def exists(self, path: str) -> bool:
        return Path(path).is_file()

    def size(self, path: str) -> int:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError as exc:
            raise TailFileNotFoundError(path) from exc

    def read_range(self, path: str, start: int, end: int) -> bytes:
        try:
            with Path(path).open("rb") as f:
                f.seek(start)
                return f.read(max(0, end - start))
        except FileNotFoundError as exc:
            raise TailFileNotFoundError(path) from exc

    def read_first_line(self, path: str) -> str:
        try:
            with Path(path).open("r", encoding="utf-8", errors="replace", newline="") as f:
                return f.readline()
        except FileNotFoundError as exc:
            raise TailFileNotFoundError(path) from exc


@dataclass(frozen=True)
class TailRead:
    text: str
    position: int

    @property
    def empty(self) -> bool:
        return not self.text


@dataclass
class TailReader:
    files: FileAccess
    backfill_bytes: int = DEFAULT_BACKFILL_BYTES

    def _new_bytes(self, path: str, last_position: int) -> bytes:
        if last_position < 0:
            raise ValueError(f"last_position must be >= 0, got {last_position}")
        current_size = self.files.size(path)
        if current_size <= last_position:
            return b""
        return self.files.read_range(path, last_position, current_size)

    def read(self, path: str, last_position: int) -> TailRead:
        raw = self._new_bytes(path, last_position)
        # Size may have moved between stat and read; only what was read counts.
        return TailRead(
            text=raw.decode("utf-8", errors="replace"),
            position=last_position + len(raw),
        )

    def read_lines(self, path: str, last_position: int) -> TailRead:
        """Like ``read`` but stops after the last complete line.

        An unterminated trailing line is left in the file and read again once
        its newline arrives.
        """
        raw = self._new_bytes(path, last_position)
        complete = raw[: raw.rfind(b"\n") + 1]
        return TailRead(
            text=complete.decode("utf-8", errors="replace"),
            position=last_position + len(complete),
        )

    def seed_position(self, path: str) -> int:
        current_size = self.files.size(path)
        return max(0, current_size - max(0, int(self.backfill_bytes)))
