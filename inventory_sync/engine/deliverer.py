"""Batched forwarding of enriched records to the destination API."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Mapping, Union

import structlog

from ..config import DestinationConfig
from ..errors import DeliveryError, ParseError, status_of
from ..models import DeliveryTally, EnrichedRecord
from .exporter import iter_lines, parse_line
from .fetcher import FetchRequest, Fetcher
from .mapper import map_batch
from .retry import RetryPolicy

DeliverableItem = Union[EnrichedRecord, Mapping[str, Any], str, bytes]
BatchCallback = Callable[[DeliveryTally], None]


class BatchDeliverer:
    """Map, batch and POST records; a failed batch never stops the rest."""

    def __init__(
        self,
        fetcher: Fetcher,
        config: DestinationConfig,
        policy: RetryPolicy | None = None,
        id_field: str = "idPiezaDesp",
        id_aliases: tuple[str, ...] | list[str] = ("idPiezadesp",),
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.config = config
        self.policy = policy or RetryPolicy.from_config(config.retry, sleep=sleep)
        self.id_field = id_field
        self.id_aliases = tuple(id_aliases)
        self.sleep = sleep
        self.logger = logger or structlog.get_logger("inventory_sync.deliverer")

    def deliver(
        self,
        items: Iterable[DeliverableItem],
        batch_size: int | None = None,
        item_limit: int | None = None,
        on_batch: BatchCallback | None = None,
    ) -> DeliveryTally:
        """Deliver ``items`` and return the tally; ``read == sent + failed`` always holds."""

        size = batch_size or self.config.batch_size
        if size < 1:
            raise ValueError("batch_size must be >= 1")
        limit = item_limit if item_limit is not None else self.config.item_limit

        tally = DeliveryTally()
        batch: list[EnrichedRecord] = []
        for line_number, item in enumerate(self._limited(items, limit), start=1):
            tally.read += 1
            try:
                batch.append(self._coerce(item, line_number))
            except ParseError as exc:
                tally.failed += 1
                self.logger.warning("delivery_item_unparseable", line=exc.line_number, error=str(exc))
                continue
            if len(batch) >= size:
                self._flush(batch, tally, on_batch)
                batch = []
        if batch:
            self._flush(batch, tally, on_batch)

        self.logger.info(
            "delivery_finished",
            read=tally.read,
            sent=tally.sent,
            failed=tally.failed,
            batches=tally.batches,
            failed_batches=tally.failed_batches,
        )
        return tally

    def deliver_file(
        self,
        path: Path,
        batch_size: int | None = None,
        item_limit: int | None = None,
        on_batch: BatchCallback | None = None,
    ) -> DeliveryTally:
        """Replay an enriched snapshot file line by line."""

        self.logger.info("delivery_replay_started", path=str(path))
        return self.deliver(iter_lines(path), batch_size, item_limit, on_batch)

    def send_batch(self, payload: list[dict[str, Any]]) -> None:
        """POST one mapped batch; raises :class:`DeliveryError` once retries run out."""

        request = FetchRequest(url=self.config.url, method="POST", json=payload)
        try:
            self.fetcher.fetch(request, self.policy, timeout=self.config.timeout)
        except Exception as exc:  # noqa: BLE001
            raise DeliveryError(
                f"Batch of {len(payload)} rejected after {self.policy.max_attempts} attempts: {exc}",
                status=status_of(exc),
                batch_size=len(payload),
            ) from exc

    # ------------------------------------------------------------------
    def _flush(
        self,
        batch: list[EnrichedRecord],
        tally: DeliveryTally,
        on_batch: BatchCallback | None,
    ) -> None:
        if tally.batches and self.config.batch_pause > 0:
            self.sleep(self.config.batch_pause)
        tally.batches += 1
        try:
            payload = map_batch(batch, self.config)
        except (TypeError, ValueError, AttributeError) as exc:
            tally.failed += len(batch)
            tally.failed_batches += 1
            self.logger.error(
                "batch_unmappable", batch=tally.batches, size=len(batch), error=str(exc)
            )
            if on_batch is not None:
                on_batch(tally)
            return
        try:
            self.send_batch(payload)
        except DeliveryError as exc:
            tally.failed += len(batch)
            tally.failed_batches += 1
            self.logger.error(
                "batch_failed",
                batch=tally.batches,
                size=len(batch),
                status=exc.status,
                error=str(exc),
            )
        else:
            tally.sent += len(batch)
            self.logger.info("batch_delivered", batch=tally.batches, size=len(batch))
        if on_batch is not None:
            on_batch(tally)

    def _coerce(self, item: DeliverableItem, line_number: int) -> EnrichedRecord:
        if isinstance(item, EnrichedRecord):
            return item
        if isinstance(item, (str, bytes)):
            item = parse_line(item, line_number)
        if not isinstance(item, Mapping):
            raise ParseError(
                f"Item {line_number} has unsupported type {type(item).__name__}",
                line_number=line_number,
            )
        try:
            return EnrichedRecord.from_dict(item, self.id_field, self.id_aliases)
        except (TypeError, ValueError, AttributeError) as exc:
            raise ParseError(
                f"Item {line_number} is not a valid record: {exc}", line_number=line_number
            ) from exc

    @staticmethod
    def _limited(items: Iterable[DeliverableItem], limit: int | None) -> Iterator[DeliverableItem]:
        for index, item in enumerate(items):
            if limit is not None and index >= limit:
                return
            yield item


__all__ = ["BatchDeliverer"]
