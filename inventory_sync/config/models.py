"""Pydantic models describing a sync deployment."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class RetryConfig(BaseModel):
    """Backoff parameters for one I/O boundary."""

    max_attempts: int = 6
    base_delay: float = 1.0
    max_delay: float = 12.0
    jitter: float = 0.5

    @model_validator(mode="after")
    def _validate_bounds(self) -> "RetryConfig":
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.jitter < 0:
            raise ValueError("Retry delays must be non-negative")
        return self


class SourceConfig(BaseModel):
    """Paginated source API and its per-record image endpoint."""

    base_url: str = "https://localhost/api/innova"
    pages_endpoint: str = "/vehidespiececoncreto"
    images_endpoint: str = "/gesdoc"
    image_id_param: str = "f_idPiezaDesp"
    record_id_field: str = "idPiezaDesp"
    record_id_aliases: list[str] = Field(default_factory=lambda: ["idPiezadesp"])
    api_token: str | None = None
    token_header: str = "x-api-token"
    user_agent: str = "InventorySync/1.0"
    per_page: int = 100
    page_timeout: float = 45.0
    force_https: bool = True
    max_consecutive_page_failures: int = 3
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def _validate_paging(self) -> "SourceConfig":
        if self.per_page < 1:
            raise ValueError("per_page must be >= 1")
        if self.max_consecutive_page_failures < 1:
            raise ValueError("max_consecutive_page_failures must be >= 1")
        return self

    def headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        if self.api_token:
            headers[self.token_header] = self.api_token
        return headers

    def endpoint(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"


class ImageConfig(BaseModel):
    enabled: bool = True
    max_images: int = 5
    request_timeout: float = 60.0
    task_deadline: float = 20.0
    overload_statuses: list[int] = Field(default_factory=lambda: [408])
    progress_every: int = 10
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @model_validator(mode="after")
    def _validate_limits(self) -> "ImageConfig":
        if self.max_images < 0:
            raise ValueError("max_images must be >= 0")
        if self.task_deadline <= 0 or self.request_timeout <= 0:
            raise ValueError("Image timeouts must be positive")
        if self.progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        return self


class ConcurrencyConfig(BaseModel):
    """Self-tuning limit for the enrichment worker pool."""

    initial: int = 3
    floor: int = 1
    ceiling: int = 6
    increase_probability: float = 0.1

    @model_validator(mode="after")
    def _validate_range(self) -> "ConcurrencyConfig":
        if self.floor < 1:
            raise ValueError("Concurrency floor must be >= 1")
        if not self.floor <= self.initial <= self.ceiling:
            raise ValueError("Concurrency must satisfy floor <= initial <= ceiling")
        if not 0.0 <= self.increase_probability <= 1.0:
            raise ValueError("increase_probability must be within [0, 1]")
        return self


class BreakerConfig(BaseModel):
    window_seconds: float = 120.0
    sample_size: int = 30
    threshold: int = 8
    cooldown_seconds: float = 15.0
    max_tracked: int = 200

    @model_validator(mode="after")
    def _validate_breaker(self) -> "BreakerConfig":
        if self.sample_size < 1 or self.threshold < 1:
            raise ValueError("sample_size and threshold must be >= 1")
        if self.max_tracked < self.sample_size:
            raise ValueError("max_tracked must be >= sample_size")
        if self.window_seconds <= 0 or self.cooldown_seconds < 0:
            raise ValueError("Breaker durations must be positive")
        return self


class DestinationConfig(BaseModel):
    """Destination API receiving mapped batches."""

    enabled: bool = True
    url: str = "https://localhost/api/v1/spareParts/Update"
    username: str = ""
    password: str = ""
    batch_size: int = 10
    item_limit: int | None = None
    timeout: float = 30.0
    batch_pause: float = 0.0
    image_base_url: str | None = None
    external_platform_name: str | None = None
    vehicle_type: int = 4
    descriptor_field: str = "modelo"
    brand_field: str = "marca"
    retry: RetryConfig = Field(default_factory=lambda: RetryConfig(max_attempts=4))

    @model_validator(mode="after")
    def _validate_batching(self) -> "DestinationConfig":
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.item_limit is not None and self.item_limit < 0:
            raise ValueError("item_limit must be >= 0")
        return self

    def auth(self) -> tuple[str, str] | None:
        if not self.username:
            return None
        return (self.username, self.password)


class OutputConfig(BaseModel):
    enabled: bool = True
    raw_path: Path = Field(default=Path("data/outputs/inventory.raw.ndjson"))
    enriched_path: Path = Field(default=Path("data/outputs/inventory.enriched.ndjson"))
    truncate: bool = True

    @field_validator("raw_path", "enriched_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved(self, base_dir: Path) -> "OutputConfig":
        """Return a copy whose relative paths are anchored at ``base_dir``."""

        def _anchor(path: Path) -> Path:
            return path if path.is_absolute() else (base_dir / path).resolve()

        return self.model_copy(
            update={"raw_path": _anchor(self.raw_path), "enriched_path": _anchor(self.enriched_path)}
        )


class ScheduleType(str, Enum):
    CRON = "cron"
    INTERVAL = "interval"
    ONCE = "once"


class ScheduleConfig(BaseModel):
    """When the scheduler should trigger a sync run."""

    type: ScheduleType = Field(default=ScheduleType.INTERVAL)
    value: Any = Field(
        default=30,
        description="Cron expression, interval seconds/kwargs or ISO datetime, depending on type.",
    )

    @model_validator(mode="after")
    def _validate_value(self) -> "ScheduleConfig":
        if self.type is ScheduleType.CRON and not isinstance(self.value, str):
            raise ValueError("Cron schedule requires string expression")
        if self.type is ScheduleType.INTERVAL and not isinstance(self.value, (int, float, dict)):
            raise ValueError("Interval schedule requires seconds (int/float) or kwargs dict")
        if self.type is ScheduleType.ONCE and self.value is not None:
            if not isinstance(self.value, str):
                raise ValueError("Once schedule expects ISO datetime string or null")
            datetime.fromisoformat(self.value)
        return self


class SyncConfig(BaseModel):
    """Complete configuration for one sync deployment."""

    source: SourceConfig = Field(default_factory=SourceConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    concurrency: ConcurrencyConfig = Field(default_factory=ConcurrencyConfig)
    breaker: BreakerConfig = Field(default_factory=BreakerConfig)
    destination: DestinationConfig = Field(default_factory=DestinationConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)


__all__ = [
    "BreakerConfig",
    "ConcurrencyConfig",
    "DestinationConfig",
    "ImageConfig",
    "OutputConfig",
    "RetryConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SyncConfig",
]
