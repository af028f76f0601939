"""Configuration schemas for oasgen error handling.

These schemas use Pydantic for validation and pydantic-settings for
environment variable loading (``OASGEN_ERRORS_*``).
"""

from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

OUTPUT_FORMATS = ["cli", "json", "html", "markdown", "log"]


class BackoffConfig(BaseModel):
    """Retry backoff settings, in milliseconds."""

    base_delay_ms: int = Field(1000, description="Delay before the first retry", ge=0)
    factor: float = Field(2.0, description="Multiplier applied per attempt", ge=1.0)
    max_delay_ms: int = Field(30000, description="Upper bound for any delay", ge=0)
    jitter: bool = Field(True, description="Randomize delays by +/-50%")
    max_retries: int = Field(3, description="Retries allowed for retryable network errors", ge=0)

    @model_validator(mode="after")
    def check_bounds(self) -> "BackoffConfig":
        """Validate that the base delay does not exceed the cap."""
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError("base_delay_ms must not exceed max_delay_ms")
        return self


class RateLimitConfig(BaseModel):
    """Per-fingerprint output rate limiting."""

    window_ms: int = Field(60000, description="Length of a rate limiting window", gt=0)
    max_per_window: int = Field(100, description="Occurrences admitted per window", gt=0)


class MonitoringConfig(BaseModel):
    """HTTP monitoring sink settings."""

    endpoint: Optional[str] = Field(None, description="Collector URL receiving error records")
    timeout: float = Field(5.0, description="Request timeout in seconds", gt=0)
    headers: Dict[str, str] = Field(default_factory=dict, description="Extra request headers")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Logging level")
    file: Optional[Path] = Field(None, description="Rotating application log file")
    rotation: str = Field("10 MB", description="Log file rotation")
    retention: str = Field("1 week", description="Log file retention")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate logging level."""
        valid_levels = ["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid logging level. Must be one of: {valid_levels}")
        return v_upper


class ErrorHandlingConfig(BaseSettings):
    """Error handling configuration.

    Values come from keyword arguments, then ``OASGEN_ERRORS_*`` environment
    variables (nested fields use ``__``, e.g. ``OASGEN_ERRORS_BACKOFF__MAX_RETRIES``).
    """

    model_config = SettingsConfigDict(
        env_prefix="OASGEN_ERRORS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    output_format: str = Field("cli", description="Output format for handled errors")
    output_enabled: bool = Field(True, description="Render handled errors to the console")
    debug: bool = Field(False, description="Include stack excerpts in CLI output")
    include_stack: bool = Field(False, description="Include stacks in JSON/HTML/Markdown output")
    include_schema: bool = Field(False, description="Include validation schema snippets in JSON output")
    exit_on_fatal: bool = Field(True, description="Exit the process after a fatal error")
    recovery_enabled: bool = Field(True, description="Attempt recovery for recoverable errors")
    recovery_wait: bool = Field(False, description="Sleep for the backoff delay before returning a retry")
    history_limit: int = Field(1000, description="Handled errors kept in history", gt=0)
    group_sample_limit: int = Field(10, description="Recent ids kept per error group", gt=0)
    log_file: Optional[Path] = Field(None, description="Append one log line per handled error to this file")
    docs_base_url: Optional[str] = Field(None, description="Base URL for error documentation links")

    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate and normalize output format."""
        v_lower = v.strip().lower()
        if v_lower == "md":
            v_lower = "markdown"
        if v_lower not in OUTPUT_FORMATS:
            raise ValueError(f"Invalid output format. Must be one of: {OUTPUT_FORMATS}")
        return v_lower

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorHandlingConfig":
        """Create configuration from dictionary."""
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(exclude_none=True)

    def merge(self, other: Union["ErrorHandlingConfig", Dict[str, Any]]) -> "ErrorHandlingConfig":
        """Merge with another configuration."""
        if isinstance(other, dict):
            other_dict = other
        else:
            other_dict = other.to_dict()

        merged = self._deep_merge(self.to_dict(), other_dict)
        return self.__class__.from_dict(merged)

    @staticmethod
    def _deep_merge(base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ErrorHandlingConfig._deep_merge(result[key], value)
            else:
                result[key] = value

        return result
