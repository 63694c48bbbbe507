from __future__ import annotations

import threading
import time

import httpx
import pytest

from inventory_sync.config import ImageConfig
from inventory_sync.engine.concurrency import AdaptiveConcurrencyController, CircuitBreaker
from inventory_sync.engine.enricher import EnrichmentStats, ImageEnricher
from inventory_sync.engine.fetcher import Fetcher
from inventory_sync.engine.retry import RetryPolicy
from inventory_sync.errors import ImageFetchError
from inventory_sync.models import Record


def _records(count: int, start: int = 1) -> list[Record]:
    return [Record.from_payload({"idPiezaDesp": str(n), "descripcion": f"Part {n}"}) for n in range(start, start + count)]


def _enricher(http_client, handler, source_config, fast_policy, **image_overrides) -> ImageEnricher:
    config = ImageConfig(**image_overrides)
    return ImageEnricher(Fetcher(http_client(handler)), source_config, config, policy=fast_policy)


def _controller(**kwargs) -> AdaptiveConcurrencyController:
    kwargs.setdefault("breaker", CircuitBreaker(threshold=1000))
    kwargs.setdefault("increase_probability", 0.0)
    return AdaptiveConcurrencyController(**kwargs)


def test_every_record_emits_once(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api(images_per_record=2)
    enricher = _enricher(http_client, api, source_config, fast_policy)

    results = enricher.enrich(_records(25), _controller())

    assert sorted(int(item.identifier) for item in results) == list(range(1, 26))
    assert all(len(item.images) == 2 for item in results)
    assert len(api.image_calls()) == 25


def test_images_are_capped_and_primary_first(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api(images_per_record=8)
    enricher = _enricher(http_client, api, source_config, fast_policy, max_images=5)

    [item] = enricher.enrich(_records(1), _controller())

    assert len(item.images) == 5
    assert item.images[0].is_primary
    assert item.images[0].filename == "1_7"
    assert [image.filename for image in item.images[1:]] == ["1_0", "1_1", "1_2", "1_3"]


def test_record_without_identifier_skips_network(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api()
    enricher = _enricher(http_client, api, source_config, fast_policy)
    stats = EnrichmentStats()

    [item] = enricher.enrich([Record.from_payload({"descripcion": "orphan"})], _controller(), stats=stats)

    assert item.images == ()
    assert api.image_calls() == []
    assert stats.without_images == 1


def test_failures_do_not_abort_siblings(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api(image_status=lambda rid: 500 if rid == "3" else 200)
    enricher = _enricher(http_client, api, source_config, fast_policy)
    stats = EnrichmentStats()

    results = enricher.enrich(_records(5), _controller(), stats=stats)

    by_id = {item.identifier: item for item in results}
    assert by_id["3"].images == ()
    assert all(by_id[rid].images for rid in ("1", "2", "4", "5"))
    assert stats.processed == 5 and stats.errors == 1 and stats.with_images == 4


def test_overload_statuses_lower_the_limit(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api(image_status=lambda rid: 408 if rid == "1" else 200)
    enricher = _enricher(http_client, api, source_config, fast_policy)
    controller = _controller(initial=5, ceiling=6)

    enricher.enrich(_records(1), controller)

    # one overload signal per failed attempt
    assert controller.limit == 5 - fast_policy.max_attempts


def test_timeouts_count_as_overload(http_client, source_config, fast_policy) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    enricher = _enricher(http_client, handler, source_config, fast_policy)
    controller = _controller(initial=6, ceiling=6)
    stats = EnrichmentStats()

    [item] = enricher.enrich(_records(1), controller, stats=stats)

    assert item.images == ()
    assert stats.errors == 1
    assert controller.limit == 6 - fast_policy.max_attempts


def test_open_breaker_skips_network(http_client, source_api, source_config, fast_policy, fake_clock) -> None:
    api = source_api()
    enricher = _enricher(http_client, api, source_config, fast_policy)
    breaker = CircuitBreaker(threshold=1, clock=fake_clock)
    breaker.record()
    controller = _controller(breaker=breaker)

    results = enricher.enrich(_records(4), controller)

    assert len(results) == 4
    assert all(item.images == () for item in results)
    assert api.image_calls() == []


def test_breaker_opens_mid_page(http_client, source_api, source_config, fast_policy, fake_clock) -> None:
    api = source_api(image_status=lambda rid: 408)
    enricher = _enricher(http_client, api, source_config, fast_policy)
    controller = AdaptiveConcurrencyController(
        initial=1, floor=1, ceiling=1, breaker=CircuitBreaker(threshold=3, clock=fake_clock)
    )

    results = enricher.enrich(_records(5), controller)

    assert len(results) == 5
    # the first record exhausts its three attempts and opens the breaker
    assert len(api.image_calls()) == 3
    assert not controller.allows_request()


def test_on_enriched_order_matches_result_order(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api()
    enricher = _enricher(http_client, api, source_config, fast_policy)
    written: list[str] = []

    results = enricher.enrich(_records(30), _controller(), on_enriched=lambda item: written.append(item.identifier))

    assert written == [item.identifier for item in results]


def test_progress_every_k_items(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api()
    enricher = _enricher(http_client, api, source_config, fast_policy, progress_every=10)
    snapshots: list[tuple[int, int]] = []

    enricher.enrich(
        _records(25),
        _controller(),
        on_progress=lambda stats, limit: snapshots.append((stats.processed, limit)),
    )

    assert [processed for processed, _ in snapshots] == [10, 20]


def test_concurrency_limit_is_respected(source_api, source_config, fast_policy) -> None:
    api = source_api()
    active = 0
    peak = 0
    lock = threading.Lock()
    release = threading.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        release.wait(0.01)
        with lock:
            active -= 1
        return api(request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        enricher = ImageEnricher(Fetcher(client), source_config, ImageConfig(), policy=fast_policy)
        enricher.enrich(_records(20), _controller(initial=2, ceiling=6))
    assert peak <= 2


def test_disabled_images_emit_empty_lists(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api()
    enricher = _enricher(http_client, api, source_config, fast_policy, enabled=False)

    results = enricher.enrich(_records(3), _controller())

    assert [item.images for item in results] == [(), (), ()]
    assert api.image_calls() == []


def test_fetch_images_raises_after_deadline(http_client, source_config, fake_clock) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        fake_clock.advance(15)
        return httpx.Response(500)

    policy = RetryPolicy(max_attempts=6, base_delay=1.0, jitter=0.0, clock=fake_clock, sleep=fake_clock.sleep)
    enricher = ImageEnricher(
        Fetcher(http_client(handler)), source_config, ImageConfig(), policy=policy, clock=fake_clock
    )

    with pytest.raises(ImageFetchError) as info:
        enricher.fetch_images("9", _controller(), deadline=fake_clock() + 20)
    assert info.value.record_id == "9"
    assert info.value.status == 500


def test_task_deadline_cuts_off_a_stalled_attempt(http_client, source_api, source_config, fast_policy) -> None:
    api = source_api()
    release = threading.Event()

    def stalled(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/gesdoc") and request.url.params.get("f_idPiezaDesp") == "2":
            release.wait(10)
        return api(request)

    enricher = _enricher(http_client, stalled, source_config, fast_policy, task_deadline=0.2)
    stats = EnrichmentStats()
    started = time.monotonic()
    try:
        results = enricher.enrich(_records(3), _controller(), stats=stats)
    finally:
        release.set()

    assert time.monotonic() - started < 5
    by_id = {item.identifier: item for item in results}
    assert by_id["2"].images == ()
    assert by_id["1"].images and by_id["3"].images
    assert stats.errors == 1 and stats.processed == 3
