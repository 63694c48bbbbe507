"""Pytest configuration providing fake HTTP services and shared fixtures."""

from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Iterable

import httpx
import pytest

from inventory_sync.config import (
    BreakerConfig,
    ConcurrencyConfig,
    ConfigLocator,
    ConfigRepository,
    DestinationConfig,
    ImageConfig,
    OutputConfig,
    RetryConfig,
    SourceConfig,
    SyncConfig,
)
from inventory_sync.engine import RetryPolicy

SOURCE_BASE = "https://source.test/api"
DESTINATION_URL = "https://destination.test/spareParts/Update"

FAST_RETRY = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


class FakeClock:
    """Monotonic clock advanced explicitly (or by the fake sleep)."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self._lock = Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.advance(seconds)


@dataclass
class FakeSourceApi:
    """In-memory source API: paginated listing plus per-record images."""

    pages: int = 1
    per_page: int = 10
    images_per_record: int = 2
    failing_pages: set[int] = field(default_factory=set)
    image_status: Callable[[str], int] = lambda _rid: 200
    next_url_scheme: str = "http"
    calls: list[str] = field(default_factory=list)
    _lock: Lock = field(default_factory=Lock)

    def record_id(self, page: int, index: int) -> str:
        return str((page - 1) * self.per_page + index + 1)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.calls.append(str(request.url))
        if request.url.path.endswith("/gesdoc"):
            return self._images(request)
        return self._listing(request)

    def _listing(self, request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        if page in self.failing_pages:
            return httpx.Response(503, json={"error": "unavailable"})
        data = [
            {
                "idPiezaDesp": self.record_id(page, index),
                "descripcion": f"Part {self.record_id(page, index)}",
                "precioV": "10.50",
                "cantidad": "1",
                "marca": "SEAT",
                "modelo": "IBIZA (6J) 1.4 TDI",
            }
            for index in range(self.per_page)
        ]
        next_url = None
        if page < self.pages:
            next_url = f"{self.next_url_scheme}://source.test/api/vehidespiececoncreto?page={page + 1}"
        links = {
            "current_page": page,
            "last_page": self.pages,
            "total": self.pages * self.per_page,
            "next_page_url": next_url,
        }
        return httpx.Response(200, json={"data": data, "links": links})

    def _images(self, request: httpx.Request) -> httpx.Response:
        record_id = request.url.params.get("f_idPiezaDesp", "")
        status = self.image_status(record_id)
        if status != 200:
            return httpx.Response(status, json={"error": "busy"})
        images = [
            {
                "rutaimgsrvsto": f"https://img.test/{record_id}/{n}.jpg",
                "fotprin": n == self.images_per_record - 1,
                "nomFitxer": f"{record_id}_{n}",
                "extensio": "jpg",
                "ultimaMod": "2024-01-01",
            }
            for n in range(self.images_per_record)
        ]
        return httpx.Response(200, json={"data": images})

    def image_calls(self) -> list[str]:
        return [url for url in self.calls if "/gesdoc" in url]


@dataclass
class FakeDestinationApi:
    """Collects posted batches; ``reject`` decides which batch ids fail."""

    reject: Callable[[list[dict[str, Any]]], bool] = lambda _batch: False
    batches: list[list[dict[str, Any]]] = field(default_factory=list)
    attempts: int = 0
    auth_headers: list[str | None] = field(default_factory=list)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.attempts += 1
        self.auth_headers.append(request.headers.get("Authorization"))
        payload = json.loads(request.content)
        if self.reject(payload):
            return httpx.Response(400, json={"error": "rejected"})
        self.batches.append(payload)
        return httpx.Response(200, json={"ok": True})

    @property
    def delivered_ids(self) -> list[str]:
        return [item["warehouseID"] for batch in self.batches for item in batch]


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> Callable[[float], None]:
    return lambda _seconds: None


@pytest.fixture
def fast_policy(no_sleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0, sleep=no_sleep)


@pytest.fixture
def source_config() -> SourceConfig:
    return SourceConfig(base_url=SOURCE_BASE, api_token="secret", per_page=10, retry=FAST_RETRY)


@pytest.fixture
def sample_sync_config(tmp_path: Path) -> Callable[..., SyncConfig]:
    def _builder(**overrides: Any) -> SyncConfig:
        base: dict[str, Any] = {
            "source": SourceConfig(
                base_url=SOURCE_BASE, api_token="secret", per_page=10, retry=FAST_RETRY
            ),
            "images": ImageConfig(retry=FAST_RETRY, task_deadline=60.0),
            "concurrency": ConcurrencyConfig(initial=3, floor=1, ceiling=6, increase_probability=0.0),
            "breaker": BreakerConfig(),
            "destination": DestinationConfig(
                url=DESTINATION_URL, username="user", password="pass", retry=FAST_RETRY
            ),
            "output": OutputConfig(
                raw_path=tmp_path / "out" / "raw.ndjson",
                enriched_path=tmp_path / "out" / "enriched.ndjson",
            ),
        }
        base.update(overrides)
        return SyncConfig(**base)

    return _builder


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(7)


@pytest.fixture
def temp_config_repository(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterable[ConfigRepository]:
    monkeypatch.setenv("INVENTORY_SYNC_HOME", str(tmp_path))
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    yield repository


def read_ndjson(path: Path) -> list[dict[str, Any]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


@pytest.fixture
def source_api() -> Callable[..., FakeSourceApi]:
    return FakeSourceApi


@pytest.fixture
def destination_api() -> Callable[..., FakeDestinationApi]:
    return FakeDestinationApi


@pytest.fixture
def http_client() -> Iterable[Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]]:
    clients: list[httpx.Client] = []

    def _factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        client = mock_client(handler)
        clients.append(client)
        return client

    yield _factory
    for client in clients:
        client.close()


@pytest.fixture
def ndjson_reader() -> Callable[[Path], list[dict[str, Any]]]:
    return read_ndjson
