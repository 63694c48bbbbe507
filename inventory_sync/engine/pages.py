"""Sequential walk over the source's paginated listing."""

from __future__ import annotations

from typing import Any, Mapping
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog

from ..config import SourceConfig
from ..errors import FetchError, status_of
from ..models import Page, Record
from .fetcher import FetchRequest, Fetcher
from .retry import RetryPolicy


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class PageFetcher:
    """Fetch one page of raw records per call, retrying failed pages."""

    def __init__(
        self,
        fetcher: Fetcher,
        config: SourceConfig,
        policy: RetryPolicy | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.config = config
        self.policy = policy or RetryPolicy.from_config(config.retry)
        self.logger = logger or structlog.get_logger("inventory_sync.pages")

    @property
    def listing_url(self) -> str:
        return self.config.endpoint(self.config.pages_endpoint)

    def descriptor_for(self, page_index: int) -> str:
        query = urlencode({"page": page_index, "per_page": self.config.per_page})
        return f"{self.listing_url}?{query}"

    @staticmethod
    def page_index_of(descriptor: str | int) -> int | None:
        if isinstance(descriptor, int):
            return descriptor
        values = parse_qs(urlparse(descriptor).query).get("page")
        return _as_int(values[0]) if values else None

    def fetch_page(self, descriptor: str | int) -> Page:
        """Fetch the page at ``descriptor`` (page index or continuation URL).

        Raises :class:`FetchError` when the page stays unreachable after
        retries or when the body does not have the expected shape.
        """

        url = self.descriptor_for(descriptor) if isinstance(descriptor, int) else descriptor
        self.logger.debug("page_fetch_started", url=url)
        try:
            response = self.fetcher.fetch(
                FetchRequest(url=url),
                self.policy,
                timeout=self.config.page_timeout,
            )
        except Exception as exc:  # noqa: BLE001
            status = status_of(exc)
            self.logger.error(
                "page_fetch_failed",
                url=url,
                status=status,
                attempts=self.policy.max_attempts,
                error=str(exc),
            )
            raise FetchError(
                f"Page unreachable after {self.policy.max_attempts} attempts: {url}",
                status=status,
                url=url,
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise FetchError(
                f"Page body is not JSON: {url}", status=response.status_code, url=url
            ) from exc
        page = self._parse_page(payload, url, response.status_code)
        self.logger.info(
            "page_fetched",
            url=url,
            current_page=page.current_page,
            last_page=page.last_page,
            items=len(page.records),
        )
        return page

    def normalise_next(self, next_url: str | None) -> str | None:
        """Force https (when configured) and make sure ``per_page`` survives."""

        if not next_url:
            return None
        parsed = urlparse(next_url)
        if not parsed.scheme or not parsed.netloc:
            return next_url
        query = parse_qs(parsed.query, keep_blank_values=True)
        if "per_page" not in query:
            query["per_page"] = [str(self.config.per_page)]
        scheme = "https" if self.config.force_https else parsed.scheme
        return urlunparse(parsed._replace(scheme=scheme, query=urlencode(query, doseq=True)))

    def _parse_page(self, payload: Any, url: str, status: int) -> Page:
        if not isinstance(payload, Mapping):
            raise FetchError(f"Unexpected page payload: {url}", status=status, url=url)
        data = payload.get("data")
        links = payload.get("links")
        if not isinstance(data, list) or not isinstance(links, Mapping):
            raise FetchError(f"Unexpected page payload: {url}", status=status, url=url)

        records: list[Record] = []
        for item in data:
            if not isinstance(item, Mapping):
                self.logger.warning("page_item_not_object", url=url, item_type=type(item).__name__)
            records.append(
                Record.from_payload(
                    item, self.config.record_id_field, self.config.record_id_aliases
                )
            )
        return Page(
            records=records,
            next_descriptor=self.normalise_next(links.get("next_page_url")),
            total=_as_int(links.get("total")),
            current_page=_as_int(links.get("current_page")),
            last_page=_as_int(links.get("last_page")),
        )


__all__ = ["PageFetcher"]
