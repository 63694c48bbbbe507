"""Domain records flowing through the sync pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

DEFAULT_ID_FIELD = "idPiezaDesp"
DEFAULT_ID_ALIASES = ("idPiezadesp",)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _optional_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def extract_identifier(
    payload: Mapping[str, Any],
    id_field: str = DEFAULT_ID_FIELD,
    aliases: Sequence[str] = DEFAULT_ID_ALIASES,
) -> str | None:
    for key in (id_field, *aliases):
        value = payload.get(key)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass(frozen=True, slots=True)
class Record:
    """One source inventory item: typed identifier plus pass-through fields."""

    identifier: str | None
    fields: Mapping[str, Any]

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        id_field: str = DEFAULT_ID_FIELD,
        aliases: Sequence[str] = DEFAULT_ID_ALIASES,
    ) -> "Record":
        if not isinstance(payload, Mapping):
            # keep non-object items so they still reach the snapshots and counts
            return cls(identifier=None, fields=MappingProxyType({"value": payload}))
        return cls(
            identifier=extract_identifier(payload, id_field, aliases),
            fields=MappingProxyType(dict(payload)),
        )

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        return dict(self.fields)


@dataclass(frozen=True, slots=True)
class Image:
    """Image metadata attached to a record by the enricher."""

    location_ref: str | None
    is_primary: bool = False
    filename: str | None = None
    extension: str | None = None
    last_modified: str | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Image":
        return cls(
            location_ref=_optional_text(payload.get("rutaimgsrvsto")),
            is_primary=bool(payload.get("fotprin")),
            filename=_optional_text(payload.get("nomFitxer")),
            extension=_optional_text(payload.get("extensio")),
            last_modified=_optional_text(payload.get("ultimaMod")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rutaimgsrvsto": self.location_ref,
            "fotprin": self.is_primary,
            "nomFitxer": self.filename,
            "extensio": self.extension,
            "ultimaMod": self.last_modified,
        }


def select_images(payloads: Iterable[Any], limit: int) -> tuple[Image, ...]:
    """Primary images first (stable), capped at ``limit``."""

    images = [Image.from_payload(item) for item in payloads if isinstance(item, Mapping)]
    images.sort(key=lambda image: not image.is_primary)
    return tuple(images[: max(0, limit)])


@dataclass(frozen=True, slots=True)
class EnrichedRecord:
    record: Record
    images: tuple[Image, ...] = ()

    @property
    def identifier(self) -> str | None:
        return self.record.identifier

    def to_dict(self) -> dict[str, Any]:
        payload = self.record.to_dict()
        payload["images"] = [image.to_dict() for image in self.images]
        return payload

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        id_field: str = DEFAULT_ID_FIELD,
        aliases: Sequence[str] = DEFAULT_ID_ALIASES,
    ) -> "EnrichedRecord":
        fields = dict(payload)
        raw_images = fields.pop("images", None) or []
        if not isinstance(raw_images, list):
            raise ValueError(f"images must be a list, got {type(raw_images).__name__}")
        images = tuple(Image.from_payload(item) for item in raw_images if isinstance(item, Mapping))
        return cls(record=Record.from_payload(fields, id_field, aliases), images=images)


@dataclass(slots=True)
class Page:
    """One page of raw records plus the pagination cursor."""

    records: list[Record]
    next_descriptor: str | None
    total: int | None = None
    current_page: int | None = None
    last_page: int | None = None


class ProgressStatus(str, Enum):
    STARTED = "started"
    PAGE_COLLECTED = "page_collected"
    IMAGES_ENRICHING = "images_enriching"
    IMAGES_ENRICHED = "images_enriched"
    PAGE_DELIVERED = "page_delivered"
    PAGE_FAILED = "page_failed"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """Read-only snapshot pushed to the progress callback."""

    status: ProgressStatus
    current_page: int | None = None
    last_page: int | None = None
    total: int | None = None
    items_in_page: int = 0
    total_processed: int = 0
    percentage: float = 0.0
    concurrency: int = 0
    with_images: int = 0
    without_images: int = 0
    errors: int = 0
    enriched_count: int = 0
    sent: int = 0
    failed: int = 0
    message: str | None = None
    timestamp: str = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass(slots=True)
class DeliveryTally:
    read: int = 0
    sent: int = 0
    failed: int = 0
    batches: int = 0
    failed_batches: int = 0

    @property
    def balanced(self) -> bool:
        return self.read == self.sent + self.failed

    def merge(self, other: "DeliveryTally") -> None:
        self.read += other.read
        self.sent += other.sent
        self.failed += other.failed
        self.batches += other.batches
        self.failed_batches += other.failed_batches


class SyncStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


@dataclass(slots=True)
class SyncRunResult:
    """Terminal artifact returned to the caller of a sync run."""

    success: bool
    total_processed: int = 0
    read: int = 0
    sent: int = 0
    failed: int = 0
    error: str | None = None
    status: SyncStatus = SyncStatus.COMPLETED
    pages_visited: int = 0
    pages_skipped: int = 0
    with_images: int = 0
    without_images: int = 0
    image_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


__all__ = [
    "DEFAULT_ID_ALIASES",
    "DEFAULT_ID_FIELD",
    "DeliveryTally",
    "EnrichedRecord",
    "Image",
    "Page",
    "ProgressEvent",
    "ProgressStatus",
    "Record",
    "SyncRunResult",
    "SyncStatus",
    "extract_identifier",
    "select_images",
]
