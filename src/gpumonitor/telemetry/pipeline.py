from __future__ import annotations

from dataclasses import dataclass, field

from gpumonitor.telemetry.tail import FileAccess, TailRead, TailReader
from gpumonitor.telemetry.transform import ParseResult, RecordTransformer, Schema, parse_header


@dataclass(frozen=True)
class TailBatch:
    start: int
    read: TailRead
    result: ParseResult

    @property
    def position(self) -> int:
        return self.read.position


@dataclass
class TailParser:
    """Tail one CSV file from a byte offset and parse what was appended.

    With no known position the offset is seeded to the backfill window; the
    header then comes from the file's first line and the partial first row
    of the window is dropped. Only complete lines are parsed; the position
    stops before an unterminated trailing line.
    """

    files: FileAccess
    reader: TailReader
    transformer: RecordTransformer = field(default_factory=RecordTransformer)

    def fetch(
        self,
        path: str,
        schema: Schema,
        position: int | None = None,
        header: list[str] | None = None,
    ) -> TailBatch:
        seeded = position is None
        start = self.reader.seed_position(path) if position is None else position
        read = self.reader.read_lines(path, start)
        text = read.text

        if header is None and start > 0:
            header = parse_header(self.files.read_first_line(path)) or None
        if seeded and start > 0 and text and not self._starts_on_line(path, start):
            cut = text.find("\n")
            text = text[cut + 1:] if cut >= 0 else ""

        result = self.transformer.parse(text, schema, header)
        return TailBatch(start=start, read=read, result=result)

    def _starts_on_line(self, path: str, start: int) -> bool:
        return self.files.read_range(path, start - 1, start) == b"\n"
