from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from inventory_sync.config import (
    BreakerConfig,
    ConcurrencyConfig,
    DestinationConfig,
    ImageConfig,
    OutputConfig,
    RetryConfig,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    SyncConfig,
)


def test_defaults_follow_production_tuning() -> None:
    config = SyncConfig()
    assert config.source.per_page == 100
    assert config.source.page_timeout == 45.0
    assert config.source.retry.max_attempts == 6
    assert config.images.max_images == 5
    assert config.images.request_timeout == 60.0
    assert config.images.task_deadline == 20.0
    assert config.images.overload_statuses == [408]
    assert (config.concurrency.initial, config.concurrency.floor, config.concurrency.ceiling) == (3, 1, 6)
    assert config.breaker.threshold == 8 and config.breaker.sample_size == 30
    assert config.breaker.cooldown_seconds == 15.0
    assert config.destination.batch_size == 10
    assert config.destination.retry.max_attempts == 4


def test_concurrency_bounds_validation() -> None:
    with pytest.raises(ValidationError):
        ConcurrencyConfig(initial=0, floor=0)
    with pytest.raises(ValidationError):
        ConcurrencyConfig(initial=8, ceiling=6)
    with pytest.raises(ValidationError):
        ConcurrencyConfig(increase_probability=1.5)


def test_retry_and_batch_validation() -> None:
    with pytest.raises(ValidationError):
        RetryConfig(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryConfig(base_delay=-1)
    with pytest.raises(ValidationError):
        DestinationConfig(batch_size=0)
    with pytest.raises(ValidationError):
        ImageConfig(progress_every=0)
    with pytest.raises(ValidationError):
        BreakerConfig(sample_size=30, max_tracked=10)


def test_source_headers_and_endpoints() -> None:
    source = SourceConfig(base_url="https://api.test/innova/", api_token="tok", user_agent="Sync/2")
    assert source.base_url == "https://api.test/innova"
    assert source.endpoint("/gesdoc") == "https://api.test/innova/gesdoc"
    assert source.headers() == {"Accept": "application/json", "User-Agent": "Sync/2", "x-api-token": "tok"}
    assert "x-api-token" not in SourceConfig().headers()


def test_destination_auth_only_with_username() -> None:
    assert DestinationConfig().auth() is None
    assert DestinationConfig(username="u", password="p").auth() == ("u", "p")


def test_output_paths_are_anchored(tmp_path: Path) -> None:
    resolved = OutputConfig(raw_path="out/raw.ndjson").resolved(tmp_path)
    assert resolved.raw_path == (tmp_path / "out" / "raw.ndjson").resolve()
    absolute = tmp_path / "abs.ndjson"
    assert OutputConfig(enriched_path=absolute).resolved(Path("/elsewhere")).enriched_path == absolute


def test_schedule_config_interval_requires_numeric() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.INTERVAL, value="every minute")
    cfg = ScheduleConfig(type=ScheduleType.INTERVAL, value={"minutes": 2})
    assert cfg.value == {"minutes": 2}


def test_schedule_config_cron_requires_string() -> None:
    with pytest.raises(ValueError):
        ScheduleConfig(type=ScheduleType.CRON, value=5)
