"""Raw and enriched snapshot streams opened and closed together."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from ...config import OutputConfig
from ...errors import SinkError
from ...models import EnrichedRecord, Record
from .base import BaseExporter, NullExporter
from .file_exporter import NdjsonExporter


class DualSink:
    """Own the raw and enriched exporters of a single run."""

    def __init__(
        self,
        raw: BaseExporter,
        enriched: BaseExporter,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.raw = raw
        self.enriched = enriched
        self.logger = logger or structlog.get_logger("inventory_sync.sink")

    @classmethod
    def from_config(cls, config: OutputConfig, base_dir: Path | None = None, **kwargs: Any) -> "DualSink":
        if not config.enabled:
            return cls(NullExporter(), NullExporter(), **kwargs)
        if base_dir is not None:
            config = config.resolved(base_dir)
        return cls(
            NdjsonExporter(config.raw_path, truncate=config.truncate),
            NdjsonExporter(config.enriched_path, truncate=config.truncate),
            **kwargs,
        )

    def open(self) -> None:
        self.raw.open()
        try:
            self.enriched.open()
        except SinkError:
            self.raw.close()
            raise
        self.logger.info("sink_opened", raw=self._describe(self.raw), enriched=self._describe(self.enriched))

    def write_raw(self, record: Record) -> None:
        self.raw.export(record)

    def write_enriched(self, enriched: EnrichedRecord) -> None:
        self.enriched.export(enriched)

    def close(self) -> None:
        """Close both streams; the first failure is raised after both were tried."""

        errors: list[SinkError] = []
        for exporter in (self.raw, self.enriched):
            try:
                exporter.close()
            except SinkError as exc:
                errors.append(exc)
        if errors:
            raise errors[0]
        self.logger.info(
            "sink_closed",
            raw_lines=getattr(self.raw, "count", None),
            enriched_lines=getattr(self.enriched, "count", None),
        )

    def __enter__(self) -> "DualSink":
        self.open()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    @staticmethod
    def _describe(exporter: BaseExporter) -> str:
        path = getattr(exporter, "path", None)
        return str(path) if path is not None else type(exporter).__name__


__all__ = ["DualSink"]
