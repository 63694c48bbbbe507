"""Error taxonomy shared by the sync pipeline."""

from __future__ import annotations


class SyncError(Exception):
    """Base class for every pipeline error."""


class FetchError(SyncError):
    """Source page unreachable (or unusable) after retries."""

    def __init__(self, message: str, *, status: int | None = None, url: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class ImageFetchError(SyncError):
    """Image retrieval for one record exhausted its retries or hit its deadline."""

    def __init__(
        self,
        message: str,
        *,
        record_id: str | None = None,
        status: int | None = None,
        overloaded: bool = False,
    ) -> None:
        super().__init__(message)
        self.record_id = record_id
        self.status = status
        self.overloaded = overloaded


class DeliveryError(SyncError):
    """Destination rejected a batch after retries."""

    def __init__(self, message: str, *, status: int | None = None, batch_size: int = 0) -> None:
        super().__init__(message)
        self.status = status
        self.batch_size = batch_size


class ParseError(SyncError):
    """A persisted line could not be decoded into a record."""

    def __init__(self, message: str, *, line_number: int | None = None) -> None:
        super().__init__(message)
        self.line_number = line_number


class SinkError(SyncError):
    """Persistence sink could not be opened, written or closed."""


class DeadlineExceeded(SyncError):
    """A hard deadline fired before the operation could complete."""


class HTTPStatusFailure(SyncError):
    """Non-success HTTP status observed on a single attempt."""

    def __init__(self, status: int, url: str) -> None:
        super().__init__(f"Unexpected status {status} on {url}")
        self.status = status
        self.url = url


def status_of(error: BaseException | None) -> int | None:
    """Return the HTTP status attached to ``error`` (or its cause), if any."""

    seen: set[int] = set()
    while error is not None and id(error) not in seen:
        seen.add(id(error))
        status = getattr(error, "status", None)
        if isinstance(status, int):
            return status
        error = error.__cause__
    return None


__all__ = [
    "DeadlineExceeded",
    "DeliveryError",
    "FetchError",
    "HTTPStatusFailure",
    "ImageFetchError",
    "ParseError",
    "SinkError",
    "SyncError",
    "status_of",
]
