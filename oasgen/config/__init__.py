"""Configuration for oasgen error handling."""

from .loader import ConfigurationLoader, load_config
from .schemas import (
    BackoffConfig,
    ErrorHandlingConfig,
    LoggingConfig,
    MonitoringConfig,
    RateLimitConfig,
)

__all__ = [
    "BackoffConfig",
    "ConfigurationLoader",
    "ErrorHandlingConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "RateLimitConfig",
    "load_config",
]
