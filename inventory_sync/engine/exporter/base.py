"""Exporter Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseExporter(ABC):
    """Uniform line-sink contract shared by the raw and enriched streams."""

    @abstractmethod
    def open(self) -> None:
        """Acquire the underlying resource."""

    @abstractmethod
    def export(self, record: Any) -> None:
        """Persist a single record."""

    @abstractmethod
    def flush(self) -> None:
        """Flush buffered data to destination."""

    @abstractmethod
    def close(self) -> None:
        """Release underlying resources; buffered data is flushed first."""


class NullExporter(BaseExporter):
    """Discards everything; used when persistence is disabled."""

    def __init__(self) -> None:
        self.count = 0

    def open(self) -> None:
        self.count = 0

    def export(self, record: Any) -> None:
        self.count += 1

    def flush(self) -> None:
        return None

    def close(self) -> None:
        return None


__all__ = ["BaseExporter", "NullExporter"]
