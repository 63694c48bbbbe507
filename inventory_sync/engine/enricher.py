"""Attach up to N images to each record under adaptive concurrency."""

from __future__ import annotations

import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FutureTimeout
from dataclasses import dataclass, field, replace
from threading import Lock
from typing import Callable, Iterable, Mapping

import structlog

from ..config import ImageConfig, SourceConfig
from ..errors import DeadlineExceeded, HTTPStatusFailure, ImageFetchError, status_of
from ..models import EnrichedRecord, Image, Record, select_images
from .concurrency import AdaptiveConcurrencyController
from .fetcher import FetchRequest, Fetcher
from .retry import RetryPolicy


@dataclass(slots=True)
class EnrichmentStats:
    processed: int = 0
    with_images: int = 0
    without_images: int = 0
    errors: int = 0

    def merge(self, other: "EnrichmentStats") -> None:
        self.processed += other.processed
        self.with_images += other.with_images
        self.without_images += other.without_images
        self.errors += other.errors


EnrichedCallback = Callable[[EnrichedRecord], None]
ProgressCallback = Callable[[EnrichmentStats, int], None]


@dataclass
class _PageState:
    total: int
    stats: EnrichmentStats
    on_enriched: EnrichedCallback | None
    on_progress: ProgressCallback | None
    attempts: ThreadPoolExecutor | None = None
    results: list[EnrichedRecord] = field(default_factory=list)
    lock: Lock = field(default_factory=Lock)


class ImageEnricher:
    """Fetch images per record; every input record yields exactly one output."""

    def __init__(
        self,
        fetcher: Fetcher,
        source: SourceConfig,
        config: ImageConfig,
        policy: RetryPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.source = source
        self.config = config
        self.clock = clock
        self.policy = policy or RetryPolicy.from_config(config.retry, clock=clock)
        self.logger = logger or structlog.get_logger("inventory_sync.enricher")

    @property
    def images_url(self) -> str:
        return self.source.endpoint(self.source.images_endpoint)

    def enrich(
        self,
        records: Iterable[Record],
        controller: AdaptiveConcurrencyController,
        *,
        on_enriched: EnrichedCallback | None = None,
        on_progress: ProgressCallback | None = None,
        stats: EnrichmentStats | None = None,
    ) -> list[EnrichedRecord]:
        """Enrich ``records`` and return them in completion order.

        ``on_enriched`` receives each record as it completes, serialised under
        one lock so its call order matches the returned order. ``stats`` is
        updated in place when supplied.
        """

        items = list(records)
        state = _PageState(
            total=len(items),
            stats=stats if stats is not None else EnrichmentStats(),
            on_enriched=on_enriched,
            on_progress=on_progress,
        )
        if not items:
            return state.results
        if not self.config.enabled:
            for record in items:
                self._complete(state, EnrichedRecord(record), "without", controller)
            return state.results

        self.logger.info("page_enrichment_started", items=len(items), concurrency=controller.limit)
        futures: list[Future[None]] = []
        executor = ThreadPoolExecutor(max_workers=controller.ceiling, thread_name_prefix="enricher")
        # attempts abandoned at their deadline keep a thread until httpx gives up
        state.attempts = ThreadPoolExecutor(
            max_workers=controller.ceiling * 2, thread_name_prefix="image-fetch"
        )
        try:
            for record in items:
                controller.acquire()
                try:
                    futures.append(executor.submit(self._run_task, state, record, controller))
                except Exception:
                    controller.release()
                    raise
            wait(futures)
        finally:
            executor.shutdown(wait=True)
            state.attempts.shutdown(wait=False, cancel_futures=True)

        for future in futures:
            error = future.exception()
            if error is not None:
                raise error

        self.logger.info(
            "page_enrichment_finished",
            items=state.total,
            with_images=state.stats.with_images,
            without_images=state.stats.without_images,
            errors=state.stats.errors,
            concurrency=controller.limit,
        )
        return state.results

    def fetch_images(
        self,
        record_id: str,
        controller: AdaptiveConcurrencyController,
        deadline: float | None = None,
    ) -> tuple[Image, ...]:
        """Fetch, order and cap the images of one record.

        Raises :class:`ImageFetchError` when retries run out or the deadline fires.
        """

        def _on_failure(exc: Exception, _attempt: int) -> None:
            if self._is_overload(exc):
                controller.record_overload()

        request = FetchRequest(url=self.images_url, params={self.source.image_id_param: record_id})
        try:
            response = self.fetcher.fetch(
                request,
                self.policy,
                timeout=self.config.request_timeout,
                deadline=deadline,
                on_failure=_on_failure,
            )
        except DeadlineExceeded as exc:
            raise ImageFetchError(
                f"Image fetch for {record_id} hit its deadline",
                record_id=record_id,
                status=status_of(exc),
            ) from exc
        except Exception as exc:  # noqa: BLE001
            raise ImageFetchError(
                f"Image fetch for {record_id} failed after {self.policy.max_attempts} attempts",
                record_id=record_id,
                status=status_of(exc),
                overloaded=self._is_overload(exc),
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ImageFetchError(
                f"Image payload for {record_id} is not JSON",
                record_id=record_id,
                status=response.status_code,
            ) from exc
        data = payload.get("data") if isinstance(payload, Mapping) else None
        return select_images(data if isinstance(data, list) else [], self.config.max_images)

    # ------------------------------------------------------------------
    def _run_task(
        self,
        state: _PageState,
        record: Record,
        controller: AdaptiveConcurrencyController,
    ) -> None:
        try:
            enriched, outcome = self._enrich_one(record, controller, state.attempts)
        finally:
            controller.release()
        self._complete(state, enriched, outcome, controller)

    def _enrich_one(
        self,
        record: Record,
        controller: AdaptiveConcurrencyController,
        attempts: ThreadPoolExecutor | None = None,
    ) -> tuple[EnrichedRecord, str]:
        record_id = record.identifier
        if not record_id:
            self.logger.info("image_fetch_skipped", reason="missing_identifier")
            return EnrichedRecord(record), "without"
        if not controller.allows_request():
            self.logger.warning("image_fetch_skipped", record_id=record_id, reason="breaker_open")
            return EnrichedRecord(record), "without"

        deadline = self.clock() + self.config.task_deadline
        try:
            images = self._bounded_fetch(record_id, controller, deadline, attempts)
        except FutureTimeout:
            self.logger.warning(
                "image_fetch_failed",
                record_id=record_id,
                status=None,
                error=f"Task exceeded its {self.config.task_deadline}s deadline",
            )
            return EnrichedRecord(record), "error"
        except ImageFetchError as exc:
            self.logger.warning(
                "image_fetch_failed", record_id=record_id, status=exc.status, error=str(exc)
            )
            return EnrichedRecord(record), "error"
        except Exception as exc:  # noqa: BLE001
            self.logger.error("image_task_error", record_id=record_id, error=str(exc))
            return EnrichedRecord(record), "error"

        controller.record_success()
        self.logger.debug("image_fetch_succeeded", record_id=record_id, images=len(images))
        return EnrichedRecord(record, images), "with" if images else "without"

    def _bounded_fetch(
        self,
        record_id: str,
        controller: AdaptiveConcurrencyController,
        deadline: float,
        attempts: ThreadPoolExecutor | None,
    ) -> tuple[Image, ...]:
        """Run :meth:`fetch_images` with a wall-clock bound of ``task_deadline``.

        httpx timeouts apply per phase and per chunk, so a slow body can outlive
        the deadline; the helper future cuts it off and raises ``FutureTimeout``.
        """

        if attempts is None:
            return self.fetch_images(record_id, controller, deadline)
        future = attempts.submit(self.fetch_images, record_id, controller, deadline)
        try:
            return future.result(timeout=self.config.task_deadline)
        except FutureTimeout:
            future.cancel()
            raise

    def _complete(
        self,
        state: _PageState,
        enriched: EnrichedRecord,
        outcome: str,
        controller: AdaptiveConcurrencyController,
    ) -> None:
        with state.lock:
            state.results.append(enriched)
            stats = state.stats
            stats.processed += 1
            if outcome == "with":
                stats.with_images += 1
            elif outcome == "without":
                stats.without_images += 1
            else:
                stats.errors += 1
            if state.on_enriched is not None:
                state.on_enriched(enriched)
            if state.on_progress is not None and stats.processed % self.config.progress_every == 0:
                state.on_progress(replace(stats), controller.limit)

    def _is_overload(self, error: Exception) -> bool:
        if Fetcher.is_timeout(error):
            return True
        return isinstance(error, HTTPStatusFailure) and error.status in self.config.overload_statuses


__all__ = ["EnrichmentStats", "ImageEnricher"]
