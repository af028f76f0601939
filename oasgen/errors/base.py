"""Base error type and taxonomy for oasgen."""

from __future__ import annotations

import hashlib
import os
import platform
import secrets
import socket
import sys
import time
import traceback
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Optional, Type, TypeVar, Union

from loguru import logger
from pydantic import BaseModel

if TYPE_CHECKING:
    from .diagnostics import Diagnostics

DEFAULT_CODE = "UNKNOWN_ERROR"
MAX_CAUSE_DEPTH = 32


class ErrorCategory(str, Enum):
    """Broad failure classes used for routing and statistics."""

    VALIDATION = "validation"
    NETWORK = "network"
    FILESYSTEM = "filesystem"
    TEMPLATE = "template"
    CONFIGURATION = "configuration"
    PARSING = "parsing"
    GENERATION = "generation"
    FATAL = "fatal"
    GENERAL = "general"


class ErrorSeverity(str, Enum):
    """Error severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    FATAL = "fatal"


class ErrorKind(str, Enum):
    """Discriminator for the payload carried in ``GeneratorError.details``."""

    GENERAL = "general"
    VALIDATION = "validation"
    FILESYSTEM = "filesystem"
    NETWORK = "network"
    TEMPLATE = "template"
    CONFIGURATION = "configuration"
    PARSING = "parsing"


# Checked in order, first match wins.
CODE_PREFIX_CATEGORIES: List[tuple[str, ErrorCategory]] = [
    ("VALIDATION", ErrorCategory.VALIDATION),
    ("SCHEMA", ErrorCategory.VALIDATION),
    ("NETWORK", ErrorCategory.NETWORK),
    ("HTTP", ErrorCategory.NETWORK),
    ("FILE", ErrorCategory.FILESYSTEM),
    ("FS", ErrorCategory.FILESYSTEM),
    ("TEMPLATE", ErrorCategory.TEMPLATE),
    ("CONFIG", ErrorCategory.CONFIGURATION),
    ("PARSE", ErrorCategory.PARSING),
    ("YAML", ErrorCategory.PARSING),
    ("JSON", ErrorCategory.PARSING),
    ("GENERATOR", ErrorCategory.GENERATION),
    ("GENERATION", ErrorCategory.GENERATION),
    ("FATAL", ErrorCategory.FATAL),
]


def infer_category(code: str) -> ErrorCategory:
    """Infer the category of an error code from its prefix."""
    upper = (code or "").upper()
    for prefix, category in CODE_PREFIX_CATEGORIES:
        if upper.startswith(prefix):
            return category
    return ErrorCategory.GENERAL


def compute_fingerprint(
    code: str,
    category: Union[ErrorCategory, str],
    operation: Optional[str] = None,
    file: Optional[str] = None,
    line: Optional[int] = None,
) -> str:
    """Compute the deduplication key for a failure.

    Empty parts are left out, so an error without a location hashes the
    same wherever it is raised.
    """
    if isinstance(category, ErrorCategory):
        category = category.value
    parts = [str(part) for part in (code, category, operation, file, line) if part not in (None, "")]
    return hashlib.sha256(":".join(parts).encode("utf-8")).hexdigest()[:16]


class ErrorLocation(BaseModel):
    """Source position an error refers to."""

    file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None

    def __str__(self) -> str:
        parts = [self.file or "<unknown>"]
        if self.line is not None:
            parts.append(str(self.line))
            if self.column is not None:
                parts.append(str(self.column))
        return ":".join(parts)

    @property
    def is_empty(self) -> bool:
        return self.file is None and self.line is None and self.column is None


def _next_cause(value: Any) -> Any:
    if isinstance(value, GeneratorError):
        return value.cause
    if isinstance(value, BaseException):
        if value.__cause__ is not None:
            return value.__cause__
        if not value.__suppress_context__:
            return value.__context__
    return None


def build_cause_chain(cause: Any, max_depth: int = MAX_CAUSE_DEPTH) -> List[Any]:
    """Collect ``cause`` and everything it was caused by.

    The walk stops after ``max_depth`` entries or at the first object seen
    twice, so malformed cause graphs cannot loop forever.
    """
    chain: List[Any] = []
    seen: set[int] = set()
    current = cause
    while current is not None and len(chain) < max_depth:
        if id(current) in seen:
            break
        seen.add(id(current))
        chain.append(current)
        current = _next_cause(current)
    return chain


def capture_metadata() -> Dict[str, Any]:
    """Process and platform facts recorded with every error."""
    try:
        cwd = os.getcwd()
    except OSError:
        cwd = None
    return {
        "pid": os.getpid(),
        "platform": sys.platform,
        "python": platform.python_version(),
        "hostname": socket.gethostname(),
        "cwd": cwd,
    }


T = TypeVar("T", bound="GeneratorError")


class GeneratorError(Exception):
    """Base exception for every failure raised inside the generator pipeline."""

    kind: ClassVar[ErrorKind] = ErrorKind.GENERAL
    default_code: ClassVar[str] = DEFAULT_CODE
    details: Optional[BaseModel] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        *,
        category: Optional[Union[ErrorCategory, str]] = None,
        severity: Union[ErrorSeverity, str] = ErrorSeverity.ERROR,
        recoverable: bool = False,
        context: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        cause: Any = None,
        location: Optional[Union[ErrorLocation, Mapping[str, Any]]] = None,
        operation: Optional[str] = None,
        user_message: Optional[str] = None,
        documentation: Optional[str] = None,
    ):
        """Initialize a generator error.

        Args:
            message: Human-readable error message
            code: Error code; the category is inferred from its prefix
            category: Explicit category, overrides inference
            severity: Error severity
            recoverable: Whether recovery should be attempted
            context: Free-form details about the failing operation
            metadata: Extra process facts merged over the captured ones
            cause: Original exception or value that caused this error
            location: File/line/column the error points at
            operation: Name of the failing operation, part of the fingerprint
            user_message: Message shown to end users, defaults to ``message``
            documentation: Link to documentation for this error
        """
        super().__init__(message)
        self.message = message
        self.code = str(code or self.default_code)
        self.category = ErrorCategory(category) if category else infer_category(self.code)
        self.severity = ErrorSeverity(severity)
        self.recoverable = recoverable
        self.context: Dict[str, Any] = dict(context or {})
        self.metadata: Dict[str, Any] = {**capture_metadata(), **dict(metadata or {})}
        self.cause = cause
        self.cause_chain: List[Any] = build_cause_chain(cause)
        self.location = self._coerce_location(location)
        self.operation = operation or self.context.get("operation")
        self.user_message = user_message or message
        self.documentation = documentation
        self.timestamp = datetime.now(timezone.utc)
        self.id = f"{self.code}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
        self.fingerprint = compute_fingerprint(
            self.code,
            self.category,
            self.operation,
            self.location.file if self.location else None,
            self.location.line if self.location else None,
        )
        self.stack = self._capture_stack()
        self._diagnostics: Optional[Diagnostics] = None

        logger.debug(f"Created {self.name} [{self.code}] fingerprint={self.fingerprint}")

    @staticmethod
    def _coerce_location(
        location: Optional[Union[ErrorLocation, Mapping[str, Any]]],
    ) -> Optional[ErrorLocation]:
        if location is None:
            return None
        if isinstance(location, ErrorLocation):
            coerced = location
        else:
            coerced = ErrorLocation(**dict(location))
        return None if coerced.is_empty else coerced

    def _capture_stack(self) -> str:
        frames = traceback.format_stack()[:-2]
        stack = f"{self.name}: {self.message}\n" + "".join(frames)
        if isinstance(self.cause, BaseException):
            cause_text = "".join(
                traceback.format_exception(type(self.cause), self.cause, self.cause.__traceback__)
            )
            stack += "\nCaused by: " + cause_text
        return stack.rstrip("\n")

    @property
    def name(self) -> str:
        return type(self).__name__

    def __repr__(self) -> str:
        return f"{self.name}(code={self.code!r}, message={self.message!r})"

    def add_context(self: T, key: Union[str, Mapping[str, Any]], value: Any = None) -> T:
        """Add context entries; accepts a key/value pair or a mapping."""
        if isinstance(key, Mapping):
            self.context.update(key)
        else:
            self.context[key] = value
        return self

    def add_cause(self: T, cause: Any) -> T:
        """Append a further cause to the chain, respecting the depth cap."""
        if len(self.cause_chain) < MAX_CAUSE_DEPTH and all(c is not cause for c in self.cause_chain):
            self.cause_chain.append(cause)
        return self

    def set_location(
        self: T,
        file: Optional[str] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ) -> T:
        """Point the error at a source position.

        The fingerprint keeps the location known at construction time.
        """
        self.location = self._coerce_location(ErrorLocation(file=file, line=line, column=column))
        return self

    def is_type(self, error_type: Union[str, Type[BaseException]]) -> bool:
        """Check the error against a class or a class name."""
        if isinstance(error_type, str):
            return any(cls.__name__ == error_type for cls in type(self).__mro__)
        return isinstance(self, error_type)

    def has_code(self, code: str) -> bool:
        return self.code == code

    def get_error_chain(self) -> List[Any]:
        """Return this error followed by all of its causes."""
        return [self, *self.cause_chain]

    @property
    def diagnostics(self) -> "Diagnostics":
        """Synthesized solutions, commands and suggestions for this error."""
        if self._diagnostics is None:
            from .diagnostics import synthesize

            self._diagnostics = synthesize(self)
        return self._diagnostics

    def _invalidate_diagnostics(self) -> None:
        self._diagnostics = None

    @property
    def suggestions(self) -> List[str]:
        return self.diagnostics.suggestions

    def serialize(self, fmt: str = "json", **options: Any) -> str:
        """Render the error with one of the formatters (cli, json, html, markdown, log)."""
        from .formatters import format_error

        return format_error(self, fmt, **options)

    def to_dict(self, include_stack: bool = False) -> Dict[str, Any]:
        """Convert error to a JSON-safe dictionary."""
        from .formatters import to_json_dict

        return to_json_dict(self, include_stack=include_stack)

    @staticmethod
    def wrap(
        value: Any,
        code: str = DEFAULT_CODE,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> "GeneratorError":
        """Turn any raised or returned value into a taxonomy error.

        Errors already in the taxonomy are returned unchanged. Operating
        system errors with a known errno become ``FileSystemError`` or
        ``NetworkError``; everything else becomes a ``GeneratorError`` whose
        cause is the original value.
        """
        if isinstance(value, GeneratorError):
            return value

        if isinstance(value, OSError):
            from .types import classify_os_error

            classified = classify_os_error(value, message=message)
            if classified is not None:
                return classified

        context = {"original_type": type(value).__name__, **kwargs.pop("context", {})}

        if isinstance(value, BaseException):
            text = message or str(value) or type(value).__name__
            return GeneratorError(text, code, cause=value, context=context, **kwargs)

        if isinstance(value, Mapping):
            text = message or str(value.get("message") or "An error occurred")
            return GeneratorError(
                text,
                str(value.get("code") or code),
                cause=value,
                context=context,
                **kwargs,
            )

        text = message or (value if isinstance(value, str) else repr(value))
        return GeneratorError(text, code, cause=value, context=context, **kwargs)
