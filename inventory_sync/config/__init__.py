"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
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

__all__ = [
    "BreakerConfig",
    "ConcurrencyConfig",
    "ConfigLocator",
    "ConfigRepository",
    "DestinationConfig",
    "ImageConfig",
    "OutputConfig",
    "RetryConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SyncConfig",
]
