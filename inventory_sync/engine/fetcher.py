"""HTTP execution with failure classification and retry."""

from __future__ import annotations

import json as jsonlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict

import httpx
import structlog

from ..errors import HTTPStatusFailure
from .retry import RetryPolicy


@dataclass(slots=True)
class FetchRequest:
    """Input for the fetcher."""

    url: str
    method: str = "GET"
    params: dict[str, Any] | None = None
    json: Any = None
    headers: dict[str, str] | None = None


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    raw: httpx.Response | None = field(repr=False, default=None)

    def json(self) -> Any:
        return jsonlib.loads(self.text)


class Fetcher:
    """Issue HTTP requests through a shared client, retrying under a policy."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        headers: dict[str, str] | None = None,
        auth: tuple[str, str] | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.logger = logger or structlog.get_logger("inventory_sync.fetcher")
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._headers = dict(headers or {})
        self._auth = httpx.BasicAuth(*auth) if auth else None

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "Fetcher":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def send(self, request: FetchRequest, timeout: float | None = None) -> FetchResponse:
        """Single attempt; non-success statuses raise :class:`HTTPStatusFailure`."""

        req_headers = dict(self._headers)
        if request.headers:
            req_headers.update(request.headers)
        request_kwargs: dict[str, Any] = {
            "method": request.method,
            "url": request.url,
            "params": request.params,
            "headers": req_headers,
            "timeout": timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        }
        if request.json is not None:
            request_kwargs["json"] = request.json
        if self._auth is not None:
            request_kwargs["auth"] = self._auth
        response = self._client.request(**request_kwargs)
        if self._is_failure(response):
            raise HTTPStatusFailure(response.status_code, str(response.url))
        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            raw=response,
        )

    def fetch(
        self,
        request: FetchRequest,
        policy: RetryPolicy,
        *,
        timeout: float | None = None,
        deadline: float | None = None,
        on_failure: Callable[[Exception, int], None] | None = None,
    ) -> FetchResponse:
        """Retry :meth:`send` under ``policy``; the last error propagates."""

        def _attempt(attempt_timeout: float | None) -> FetchResponse:
            return self.send(request, attempt_timeout)

        def _log_failure(exc: Exception, attempt: int) -> None:
            self.logger.warning(
                "fetch_error",
                url=request.url,
                method=request.method,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error=str(exc),
            )
            if on_failure is not None:
                on_failure(exc, attempt)

        return policy.call(
            _attempt,
            timeout=timeout,
            deadline=deadline,
            retry_on=self.is_retryable,
            on_failure=_log_failure,
        )

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        return isinstance(error, (HTTPStatusFailure, httpx.TransportError))

    @staticmethod
    def is_timeout(error: Exception) -> bool:
        return isinstance(error, httpx.TimeoutException)

    @staticmethod
    def _is_failure(response: Any) -> bool:
        status_code = getattr(response, "status_code", 0)
        return not 200 <= status_code < 300


__all__ = ["FetchRequest", "FetchResponse", "Fetcher"]
