"""Sync run wiring together page walking, enrichment, persistence and delivery."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import structlog

from .config import SyncConfig
from .engine import (
    AdaptiveConcurrencyController,
    BatchDeliverer,
    EnrichmentStats,
    Fetcher,
    ImageEnricher,
    PageFetcher,
    RetryPolicy,
)
from .engine.exporter import DualSink
from .errors import FetchError, SinkError
from .models import (
    DeliveryTally,
    EnrichedRecord,
    Page,
    ProgressEvent,
    ProgressStatus,
    SyncRunResult,
    SyncStatus,
)

ProgressCallback = Callable[[ProgressEvent], None]


def new_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")


@dataclass(slots=True)
class _RunState:
    stats: EnrichmentStats = field(default_factory=EnrichmentStats)
    tally: DeliveryTally = field(default_factory=DeliveryTally)
    total_processed: int = 0
    pages_visited: int = 0
    pages_skipped: int = 0
    current_page: int | None = None
    last_page: int | None = None
    total: int | None = None


class SyncRun:
    """One end-to-end pass over the source listing.

    Pages are handled strictly in sequence: raw lines are written in source
    order, records are enriched concurrently, enriched lines are written in
    completion order and the same sequence is delivered in batches. A page
    that cannot be fetched is skipped. Only sink failures (or anything
    unexpected) abort the run.
    """

    def __init__(
        self,
        config: SyncConfig,
        *,
        on_progress: ProgressCallback | None = None,
        source_client: httpx.Client | None = None,
        destination_client: httpx.Client | None = None,
        sink: DualSink | None = None,
        run_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.on_progress = on_progress
        self.run_id = run_id or new_run_id()
        self.clock = clock
        self.rng = rng or random.Random()
        self.sleep = sleep
        self.logger = logger or structlog.get_logger("inventory_sync.sync").bind(run_id=self.run_id)
        self._source_client = source_client
        self._destination_client = destination_client
        self._sink = sink

    # ------------------------------------------------------------------
    def execute(self) -> SyncRunResult:
        """Run to completion and return the terminal result; never raises."""

        state = _RunState()
        self.logger.info("sync_started", per_page=self.config.source.per_page)
        self._emit(state, ProgressStatus.STARTED, message="Sync started")

        controller = AdaptiveConcurrencyController.from_config(
            self.config.concurrency, self.config.breaker, clock=self.clock, rng=self.rng
        )
        source_fetcher = Fetcher(
            self._source_client, headers=self.config.source.headers(), logger=self.logger
        )
        destination_fetcher = Fetcher(
            self._destination_client, auth=self.config.destination.auth(), logger=self.logger
        )
        sink = self._sink or DualSink.from_config(self.config.output, logger=self.logger)

        error: str | None = None
        try:
            sink.open()
            try:
                self._walk(state, controller, source_fetcher, destination_fetcher, sink)
            finally:
                sink.close()
        except SinkError as exc:
            error = f"Persistence failed: {exc}"
            self.logger.error("sync_sink_failed", error=str(exc))
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or type(exc).__name__
            self.logger.exception("sync_failed", error=error)
        finally:
            source_fetcher.close()
            destination_fetcher.close()

        result = self._result(state, error)
        if error is None:
            self._emit(
                state,
                ProgressStatus.COMPLETED,
                concurrency=controller.limit,
                message=f"Sync finished with status {result.status.value}",
            )
        else:
            self._emit(state, ProgressStatus.ERROR, concurrency=controller.limit, message=error)
        self.logger.info("sync_finished", **result.to_dict())
        return result

    # ------------------------------------------------------------------
    def _walk(
        self,
        state: _RunState,
        controller: AdaptiveConcurrencyController,
        source_fetcher: Fetcher,
        destination_fetcher: Fetcher,
        sink: DualSink,
    ) -> None:
        source = self.config.source
        pages = PageFetcher(
            source_fetcher, source, self._policy(source.retry), logger=self.logger
        )
        enricher = ImageEnricher(
            source_fetcher,
            source,
            self.config.images,
            policy=self._policy(self.config.images.retry),
            clock=self.clock,
            logger=self.logger,
        )
        deliverer = BatchDeliverer(
            destination_fetcher,
            self.config.destination,
            policy=self._policy(self.config.destination.retry),
            id_field=source.record_id_field,
            id_aliases=source.record_id_aliases,
            sleep=self.sleep,
            logger=self.logger,
        )

        descriptor: str | int | None = 1
        page_index = 1
        consecutive_failures = 0
        while descriptor is not None:
            try:
                page = pages.fetch_page(descriptor)
            except FetchError as exc:
                failed_index = PageFetcher.page_index_of(descriptor) or page_index
                state.pages_skipped += 1
                consecutive_failures += 1
                self._emit(
                    state,
                    ProgressStatus.PAGE_FAILED,
                    current_page=failed_index,
                    concurrency=controller.limit,
                    message=str(exc),
                )
                if consecutive_failures >= source.max_consecutive_page_failures or (
                    state.last_page is not None and failed_index >= state.last_page
                ):
                    self.logger.warning(
                        "page_walk_stopped",
                        failed_page=failed_index,
                        consecutive_failures=consecutive_failures,
                        last_page=state.last_page,
                    )
                    return
                page_index = failed_index + 1
                descriptor = page_index
                self.logger.warning("page_skipped", failed_page=failed_index, next_page=page_index)
                continue

            consecutive_failures = 0
            self._process_page(state, page, page_index, controller, enricher, deliverer, sink)
            descriptor = page.next_descriptor
            page_index = (page.current_page or page_index) + 1

    def _process_page(
        self,
        state: _RunState,
        page: Page,
        page_index: int,
        controller: AdaptiveConcurrencyController,
        enricher: ImageEnricher,
        deliverer: BatchDeliverer,
        sink: DualSink,
    ) -> None:
        state.pages_visited += 1
        state.current_page = page.current_page or page_index
        state.last_page = page.last_page or state.last_page
        state.total = page.total if page.total is not None else state.total
        items = len(page.records)

        for record in page.records:
            sink.write_raw(record)
        self._emit(
            state,
            ProgressStatus.PAGE_COLLECTED,
            items_in_page=items,
            concurrency=controller.limit,
            collected=items,
        )
        self._emit(state, ProgressStatus.IMAGES_ENRICHING, items_in_page=items, concurrency=controller.limit)

        page_stats = EnrichmentStats()

        def _on_enrich_progress(stats: EnrichmentStats, limit: int) -> None:
            self._emit(
                state,
                ProgressStatus.IMAGES_ENRICHING,
                items_in_page=items,
                concurrency=limit,
                extra=stats,
            )

        enriched = enricher.enrich(
            page.records,
            controller,
            on_enriched=sink.write_enriched,
            on_progress=_on_enrich_progress,
            stats=page_stats,
        )
        state.stats.merge(page_stats)
        state.total_processed += len(enriched)
        self._emit(
            state,
            ProgressStatus.IMAGES_ENRICHED,
            items_in_page=items,
            concurrency=controller.limit,
            enriched_count=len(enriched),
        )

        self._deliver(state, enriched, deliverer)
        self._emit(state, ProgressStatus.PAGE_DELIVERED, items_in_page=items, concurrency=controller.limit)

    def _deliver(
        self, state: _RunState, enriched: list[EnrichedRecord], deliverer: BatchDeliverer
    ) -> None:
        destination = self.config.destination
        if not destination.enabled or not enriched:
            return
        remaining = None
        if destination.item_limit is not None:
            remaining = destination.item_limit - state.tally.read
            if remaining <= 0:
                return
        tally = deliverer.deliver(enriched, item_limit=remaining)
        state.tally.merge(tally)

    # ------------------------------------------------------------------
    def _policy(self, retry_config) -> RetryPolicy:
        return RetryPolicy.from_config(
            retry_config, sleep=self.sleep, clock=self.clock, rng=self.rng
        )

    def _result(self, state: _RunState, error: str | None) -> SyncRunResult:
        if error is not None:
            status = SyncStatus.FAILED
        elif state.pages_skipped or state.tally.failed:
            status = SyncStatus.PARTIAL_FAILURE
        else:
            status = SyncStatus.COMPLETED
        return SyncRunResult(
            success=error is None,
            total_processed=state.total_processed,
            read=state.tally.read,
            sent=state.tally.sent,
            failed=state.tally.failed,
            error=error,
            status=status,
            pages_visited=state.pages_visited,
            pages_skipped=state.pages_skipped,
            with_images=state.stats.with_images,
            without_images=state.stats.without_images,
            image_errors=state.stats.errors,
        )

    def _emit(
        self,
        state: _RunState,
        status: ProgressStatus,
        *,
        current_page: int | None = None,
        items_in_page: int = 0,
        concurrency: int = 0,
        enriched_count: int = 0,
        message: str | None = None,
        extra: EnrichmentStats | None = None,
        collected: int = 0,
    ) -> None:
        processed = state.total_processed + collected + (extra.processed if extra else 0)
        with_images = state.stats.with_images + (extra.with_images if extra else 0)
        without_images = state.stats.without_images + (extra.without_images if extra else 0)
        errors = state.stats.errors + (extra.errors if extra else 0)
        percentage = 0.0
        if state.total:
            percentage = round(min(100.0, processed * 100.0 / state.total), 2)
        elif status is ProgressStatus.COMPLETED:
            percentage = 100.0

        event = ProgressEvent(
            status=status,
            current_page=current_page if current_page is not None else state.current_page,
            last_page=state.last_page,
            total=state.total,
            items_in_page=items_in_page,
            total_processed=processed,
            percentage=percentage,
            concurrency=concurrency,
            with_images=with_images,
            without_images=without_images,
            errors=errors,
            enriched_count=enriched_count,
            sent=state.tally.sent,
            failed=state.tally.failed,
            message=message,
        )
        self.logger.debug("progress", status=status.value, processed=processed)
        if self.on_progress is None:
            return
        try:
            self.on_progress(event)
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("progress_callback_failed", status=status.value, error=str(exc))


def run_sync(config: SyncConfig, **kwargs: Any) -> SyncRunResult:
    """Convenience wrapper building and executing a :class:`SyncRun`."""

    return SyncRun(config, **kwargs).execute()


__all__ = ["SyncRun", "new_run_id", "run_sync"]
