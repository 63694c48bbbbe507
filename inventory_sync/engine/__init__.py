"""Engine components: fetch pages → enrich images → persist → deliver."""

from .concurrency import AdaptiveConcurrencyController, CircuitBreaker
from .deliverer import BatchDeliverer
from .enricher import EnrichmentStats, ImageEnricher
from .fetcher import FetchRequest, FetchResponse, Fetcher
from .pages import PageFetcher
from .retry import RetryPolicy

__all__ = [
    "AdaptiveConcurrencyController",
    "BatchDeliverer",
    "CircuitBreaker",
    "EnrichmentStats",
    "FetchRequest",
    "FetchResponse",
    "Fetcher",
    "ImageEnricher",
    "PageFetcher",
    "RetryPolicy",
]
