"""Error taxonomy, aggregation and recovery for oasgen."""

from .backoff import BackoffPolicy
from .base import (
    ErrorCategory,
    ErrorKind,
    ErrorLocation,
    ErrorSeverity,
    GeneratorError,
    compute_fingerprint,
    infer_category,
)
from .types import (
    ConfigurationError,
    FileSystemError,
    NetworkError,
    SpecParseError,
    TemplateError,
    ValidationError,
    ValidationFailure,
    analyze_path,
    detect_proxy,
    parse_retry_after,
)
from .diagnostics import Diagnostics, synthesize
from .rate_limit import RateLimitBucket, RateLimiter
from .aggregator import ErrorAggregator, ErrorGroup
from .recovery import CircuitState, RecoveryAction, RecoveryDispatcher, RecoveryOutcome
from .events import ErrorEvent, ErrorEventBus, ErrorEventType
from .formatters import OutputFormat, format_error, format_summary, to_json_dict
from .monitoring import HttpMonitoringSink
from .reports import ErrorReport, ErrorStats
from .handlers import (
    BulkResult,
    ErrorHandler,
    HandleResult,
    get_error_handler,
    set_error_handler,
    with_error_handling,
)

__all__ = [
    "BackoffPolicy",
    "BulkResult",
    "CircuitState",
    "ConfigurationError",
    "Diagnostics",
    "ErrorAggregator",
    "ErrorCategory",
    "ErrorEvent",
    "ErrorEventBus",
    "ErrorEventType",
    "ErrorGroup",
    "ErrorHandler",
    "ErrorKind",
    "ErrorLocation",
    "ErrorReport",
    "ErrorSeverity",
    "ErrorStats",
    "FileSystemError",
    "GeneratorError",
    "HandleResult",
    "HttpMonitoringSink",
    "NetworkError",
    "OutputFormat",
    "RateLimitBucket",
    "RateLimiter",
    "RecoveryAction",
    "RecoveryDispatcher",
    "RecoveryOutcome",
    "SpecParseError",
    "TemplateError",
    "ValidationError",
    "ValidationFailure",
    "analyze_path",
    "compute_fingerprint",
    "detect_proxy",
    "format_error",
    "format_summary",
    "get_error_handler",
    "infer_category",
    "parse_retry_after",
    "set_error_handler",
    "synthesize",
    "to_json_dict",
    "with_error_handling",
]
