"""Line-delimited JSON exporter."""

from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import IO, Any, Iterator

from ...errors import ParseError, SinkError
from .base import BaseExporter


def _serialise(record: Any) -> Any:
    to_dict = getattr(record, "to_dict", None)
    return to_dict() if callable(to_dict) else record


class NdjsonExporter(BaseExporter):
    """Append one JSON document per line; writes are serialised by a lock."""

    def __init__(self, path: Path, truncate: bool = True) -> None:
        self.path = Path(path)
        self.truncate = truncate
        self.count = 0
        self._file: IO[str] | None = None
        self._lock = Lock()

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        with self._lock:
            if self._file is not None:
                return
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if self.truncate:
                    self.path.unlink(missing_ok=True)
                self._file = self.path.open("a", encoding="utf-8", newline="\n")
            except OSError as exc:
                raise SinkError(f"Cannot open {self.path}: {exc}") from exc
            self.count = 0

    def export(self, record: Any) -> None:
        line = json.dumps(_serialise(record), ensure_ascii=False, default=str)
        with self._lock:
            if self._file is None:
                raise SinkError(f"Sink {self.path} is not open")
            try:
                self._file.write(line)
                self._file.write("\n")
            except OSError as exc:
                raise SinkError(f"Cannot write to {self.path}: {exc}") from exc
            self.count += 1

    def flush(self) -> None:
        with self._lock:
            if self._file is None:
                return
            try:
                self._file.flush()
            except OSError as exc:
                raise SinkError(f"Cannot flush {self.path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            handle, self._file = self._file, None
            if handle is None:
                return
            try:
                handle.flush()
                handle.close()
            except OSError as exc:
                raise SinkError(f"Cannot close {self.path}: {exc}") from exc


def iter_lines(path: Path) -> Iterator[bytes]:
    """Yield the non-blank raw lines of a persisted snapshot.

    Lines stay undecoded so that one corrupt line surfaces from
    :func:`parse_line` instead of ending the whole replay.
    """

    try:
        with Path(path).open("rb") as handle:
            for line in handle:
                line = line.strip()
                if line:
                    yield line
    except OSError as exc:
        raise SinkError(f"Cannot read {path}: {exc}") from exc


def parse_line(line: str | bytes, line_number: int | None = None) -> dict[str, Any]:
    try:
        if isinstance(line, bytes):
            line = line.decode("utf-8")
        payload = json.loads(line)
    except ValueError as exc:
        raise ParseError(f"Invalid JSON on line {line_number}: {exc}", line_number=line_number) from exc
    if not isinstance(payload, dict):
        raise ParseError(f"Line {line_number} is not a JSON object", line_number=line_number)
    return payload


__all__ = ["NdjsonExporter", "iter_lines", "parse_line"]
