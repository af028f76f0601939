"""Specific error types for the generator pipeline.

Each type is a ``GeneratorError`` carrying a ``kind`` discriminator and a
typed ``details`` payload. Solutions and suggestions are synthesized from
that payload in ``diagnostics.py``.
"""

from __future__ import annotations

import errno as errno_module
import json
import math
import ntpath
import os
import posixpath
import re
import socket
import sys
from collections.abc import Mapping
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union
from urllib.parse import urlsplit

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from .backoff import RATE_LIMITED_MAX_RETRIES, BackoffPolicy
from .base import ErrorCategory, ErrorKind, ErrorLocation, GeneratorError


def platform_family(name: Optional[str] = None) -> str:
    """Collapse a ``sys.platform`` value into windows, darwin or linux."""
    name = (name or sys.platform).lower()
    if name.startswith("win") or name == "windows":
        return "windows"
    if name == "darwin":
        return "darwin"
    return "linux"


# --------------------------------------------------------------------------
# Validation
# --------------------------------------------------------------------------


class ValidationFailure(BaseModel):
    """A single field-level validation failure."""

    keyword: str
    path: str = ""
    message: str = ""
    params: Dict[str, Any] = Field(default_factory=dict)
    schema_path: Optional[str] = None
    severity: str = "error"
    line: Optional[int] = None
    column: Optional[int] = None

    @field_validator("path", mode="before")
    @classmethod
    def normalize_path(cls, v: Any) -> str:
        """Store data paths as JSON Pointers; ``""`` is the document root."""
        return json_pointer(v) or ""

    @classmethod
    def coerce(cls, value: Union["ValidationFailure", Mapping[str, Any]]) -> "ValidationFailure":
        """Accept our own model or an ajv-style dict (``dataPath``/``instancePath``)."""
        if isinstance(value, ValidationFailure):
            return value
        data = dict(value)
        path = data.pop("path", None) or data.pop("dataPath", None) or data.pop("instancePath", None) or ""
        data.pop("dataPath", None)
        data.pop("instancePath", None)
        schema_path = data.pop("schemaPath", None)
        if schema_path is not None and "schema_path" not in data:
            data["schema_path"] = schema_path
        data.setdefault("keyword", "unknown")
        data["params"] = data.get("params") or {}
        return cls(path=path, **data)


class FailureGroup(BaseModel):
    """Failures sharing one data path."""

    path: str
    failures: List[ValidationFailure] = Field(default_factory=list)
    severity: str = "error"


class ValidationDetails(BaseModel):
    failures: List[ValidationFailure] = Field(default_factory=list)
    path: Optional[Union[str, List[Union[str, int]]]] = None
    pointer: Optional[str] = None
    schema_snippet: Optional[Dict[str, Any]] = None
    value: Any = None
    file: Optional[str] = None
    ide_format: str = "vscode"


def json_pointer(path: Optional[Union[str, Sequence[Union[str, int]]]]) -> Optional[str]:
    """Build a JSON Pointer from a path string or a list of segments."""
    if path is None or path == "":
        return None
    if isinstance(path, str):
        return path if path.startswith("/") else "/" + path
    return "/" + "/".join(str(segment).replace("~", "~0").replace("/", "~1") for segment in path)


class ValidationError(GeneratorError):
    """Spec or configuration data failed schema validation."""

    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"
    details: ValidationDetails

    def __init__(
        self,
        message: str,
        failures: Optional[Sequence[Union[ValidationFailure, Mapping[str, Any]]]] = None,
        *,
        path: Optional[Union[str, Sequence[Union[str, int]]]] = None,
        schema: Optional[Dict[str, Any]] = None,
        value: Any = None,
        file: Optional[str] = None,
        ide_format: str = "vscode",
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize validation error.

        Args:
            message: Summary of the validation failure
            failures: Field-level failures, as models or ajv-style dicts
            path: Path of the offending value, string or segment list
            schema: Schema fragment the data was validated against
            value: The offending value
            file: Document the failures were found in
            ide_format: Default editor format for ``to_ide_format``
        """
        self.details = ValidationDetails(
            failures=[ValidationFailure.coerce(f) for f in failures or []],
            path=list(path) if path is not None and not isinstance(path, str) else path,
            pointer=json_pointer(path),
            schema_snippet=schema,
            value=value,
            file=file,
            ide_format=ide_format,
        )
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        if file and "location" not in kwargs:
            kwargs["location"] = ErrorLocation(file=file)
        super().__init__(message, code, **kwargs)

    @property
    def failures(self) -> List[ValidationFailure]:
        return self.details.failures

    @property
    def pointer(self) -> Optional[str]:
        return self.details.pointer

    @property
    def groups(self) -> Dict[str, FailureGroup]:
        """Failures grouped by data path; ``root`` holds path-less failures."""
        groups: Dict[str, FailureGroup] = {}
        for failure in self.details.failures:
            key = failure.path or "root"
            group = groups.setdefault(key, FailureGroup(path=key))
            group.failures.append(failure)
            if failure.severity == "warning" and group.severity == "error":
                group.severity = "warning"
        return groups

    def add_failure(self, failure: Union[ValidationFailure, Mapping[str, Any]]) -> "ValidationError":
        self.details.failures.append(ValidationFailure.coerce(failure))
        self._invalidate_diagnostics()
        return self

    def get_errors_for_path(self, path: str) -> List[ValidationFailure]:
        pointer = "" if path == "root" else json_pointer(path) or ""
        return [f for f in self.details.failures if f.path == pointer]

    def has_errors_at_path(self, path: str) -> bool:
        return bool(self.get_errors_for_path(path))

    def get_schema_context(self, path: str) -> Optional[Dict[str, Any]]:
        """Walk the schema along ``path`` and return the sub-schema there."""
        current = self.details.schema_snippet
        if current is None:
            return None
        for part in (p for p in path.split("/") if p):
            properties = current.get("properties") or {}
            if part in properties:
                current = properties[part]
            elif "items" in current:
                current = current["items"]
            else:
                return None
        return current

    def to_ide_format(self, fmt: Optional[str] = None) -> Union[str, List[Dict[str, Any]]]:
        """Render failures for editor problem matchers."""
        fmt = fmt or self.details.ide_format
        resource = self.details.file or "openapi.yaml"
        if fmt == "intellij":
            return "\n".join(
                f"{resource}:{f.line or 1}:{f.column or 1}: {f.severity}: {f.message} [{f.keyword}]"
                for f in self.details.failures
            )
        if fmt == "vscode":
            return [
                {
                    "resource": resource,
                    "line": f.line or 1,
                    "column": f.column or 1,
                    "severity": f.severity,
                    "message": f.message,
                    "code": f.keyword,
                    "source": "oasgen",
                }
                for f in self.details.failures
            ]
        if fmt == "sublime":
            return [
                {
                    "filename": resource,
                    "line": f.line or 1,
                    "column": f.column or 1,
                    "message": f"{f.keyword}: {f.message}",
                }
                for f in self.details.failures
            ]
        return [
            {
                "file": resource,
                "line": f.line or 1,
                "column": f.column or 1,
                "severity": f.severity,
                "message": f.message,
                "rule": f.keyword,
            }
            for f in self.details.failures
        ]

    @classmethod
    def merge(
        cls,
        errors: Sequence[GeneratorError],
        message: str = "Multiple validation errors",
        **kwargs: Any,
    ) -> "ValidationError":
        """Combine the failures of several validation errors into one."""
        failures: List[ValidationFailure] = []
        for error in errors:
            if isinstance(error, ValidationError):
                failures.extend(f.model_copy() for f in error.failures)
        kwargs.setdefault("code", "VALIDATION_MULTIPLE_ERRORS")
        return cls(message, failures, **kwargs)

    @classmethod
    def from_schema_validation(cls, result: Mapping[str, Any], **kwargs: Any) -> "ValidationError":
        """Create from a validator result ``{errors, schema, data}``."""
        failures = list(result.get("errors") or [])
        if len(failures) == 1:
            first = failures[0]
            message = first.message if isinstance(first, ValidationFailure) else str(first.get("message", ""))
        else:
            message = f"{len(failures)} validation errors found"
        kwargs.setdefault("code", "VALIDATION_SCHEMA_ERROR")
        return cls(
            message,
            failures,
            schema=result.get("schema"),
            value=result.get("data"),
            **kwargs,
        )

    @classmethod
    def missing_required(cls, field: str, path: str = "", **kwargs: Any) -> "ValidationError":
        kwargs.setdefault("code", "VALIDATION_MISSING_FIELD")
        return cls(
            f"Missing required field: {field}",
            [
                ValidationFailure(
                    keyword="required",
                    path=path,
                    message=f"Missing required field: {field}",
                    params={"missingProperty": field},
                )
            ],
            path=path or None,
            **kwargs,
        )

    @classmethod
    def invalid_type(
        cls,
        field: str,
        expected_type: str,
        actual_type: str,
        path: str = "",
        **kwargs: Any,
    ) -> "ValidationError":
        kwargs.setdefault("code", "VALIDATION_INVALID_TYPE")
        return cls(
            f"Invalid type for field '{field}'",
            [
                ValidationFailure(
                    keyword="type",
                    path=f"{path}/{field}",
                    message=f"Expected {expected_type} but got {actual_type}",
                    params={"type": expected_type, "actualType": actual_type},
                )
            ],
            **kwargs,
        )

    @classmethod
    def pattern_mismatch(
        cls,
        field: str,
        pattern: str,
        value: Any,
        path: str = "",
        **kwargs: Any,
    ) -> "ValidationError":
        kwargs.setdefault("code", "VALIDATION_PATTERN_MISMATCH")
        return cls(
            f"Pattern mismatch for field '{field}'",
            [
                ValidationFailure(
                    keyword="pattern",
                    path=f"{path}/{field}",
                    message=f"Value does not match pattern: {pattern}",
                    params={"pattern": pattern, "value": value},
                )
            ],
            value=value,
            **kwargs,
        )


# --------------------------------------------------------------------------
# File system
# --------------------------------------------------------------------------

SYSTEM_CODE_MAP: Dict[str, str] = {
    "EACCES": "FILE_PERMISSION_DENIED",
    "EEXIST": "FILE_EXISTS",
    "ENOENT": "FILE_NOT_FOUND",
    "ENOTDIR": "FILE_NOT_A_DIRECTORY",
    "EISDIR": "FILE_IS_A_DIRECTORY",
    "EMFILE": "FILE_TOO_MANY_OPEN",
    "ENOSPC": "FILE_NO_DISK_SPACE",
    "EROFS": "FILE_READ_ONLY_FILESYSTEM",
    "EBUSY": "FILE_BUSY",
    "ENOTEMPTY": "FILE_DIRECTORY_NOT_EMPTY",
    "EPERM": "FILE_OPERATION_NOT_PERMITTED",
    "EINVAL": "FILE_INVALID_ARGUMENT",
    "ENAMETOOLONG": "FILE_PATH_TOO_LONG",
    "ELOOP": "FILE_SYMLINK_LOOP",
    "EXDEV": "FILE_CROSS_DEVICE_LINK",
    "EAGAIN": "FILE_RESOURCE_UNAVAILABLE",
}

RECOVERABLE_SYSTEM_CODES = frozenset({"EACCES", "EPERM", "EBUSY", "EAGAIN", "ENOSPC", "EMFILE"})

POSIX_SYSTEM_DIRS = ("/etc", "/usr", "/bin", "/sbin", "/lib", "/var", "/sys", "/proc")
WINDOWS_SYSTEM_DIRS = ("C:\\Windows", "C:\\Program Files")
WINDOWS_FORBIDDEN_CHARS = ("<", ">", '"', "|", "?", "*")
MAX_PATH_LENGTH = {"windows": 260, "darwin": 1024, "linux": 4096}


def normalize_system_code(system_code: Optional[Union[str, int]]) -> Optional[str]:
    """Turn an errno number or name into its symbolic name."""
    if system_code is None:
        return None
    if isinstance(system_code, int):
        return errno_module.errorcode.get(system_code)
    return str(system_code).upper()


def map_system_code(system_code: Optional[Union[str, int]]) -> str:
    return SYSTEM_CODE_MAP.get(normalize_system_code(system_code) or "", "FILE_SYSTEM_ERROR")


def is_recoverable_system_code(system_code: Optional[Union[str, int]]) -> bool:
    return normalize_system_code(system_code) in RECOVERABLE_SYSTEM_CODES


class PathAnalysis(BaseModel):
    absolute: bool
    normalized: str
    length: int
    depth: int
    max_path_length: int
    exceeds_limit: bool
    problematic_chars: List[str] = Field(default_factory=list)
    is_system_path: bool = False


def analyze_path(path: str, family: Optional[str] = None) -> PathAnalysis:
    """Check a path for length limits, forbidden characters and system locations."""
    family = platform_family(family)
    flavour = ntpath if family == "windows" else posixpath
    separators = r"[\\/]" if family == "windows" else "/"

    problematic: List[str] = []
    if family == "windows":
        drive, rest = ntpath.splitdrive(path)
        problematic.extend(char for char in WINDOWS_FORBIDDEN_CHARS if char in rest)
        if ":" in rest:
            problematic.append(":")
        if path.endswith((".", " ")):
            problematic.append("trailing dot or space")
    if "\0" in path:
        problematic.append("null byte")

    system_dirs: Sequence[str] = WINDOWS_SYSTEM_DIRS if family == "windows" else POSIX_SYSTEM_DIRS
    if family == "windows" and os.environ.get("WINDIR"):
        system_dirs = (*system_dirs, os.environ["WINDIR"])

    def _under(directory: str) -> bool:
        if family == "windows":
            return path.lower().startswith(directory.lower())
        return path == directory or path.startswith(directory.rstrip("/") + "/")

    limit = MAX_PATH_LENGTH[family]
    return PathAnalysis(
        absolute=flavour.isabs(path),
        normalized=flavour.normpath(path) if path else path,
        length=len(path),
        depth=len([part for part in re.split(separators, path) if part]),
        max_path_length=limit,
        exceeds_limit=len(path) > limit,
        problematic_chars=problematic,
        is_system_path=any(_under(d) for d in system_dirs),
    )


class FileSystemDetails(BaseModel):
    system_code: Optional[str] = None
    path: Optional[str] = None
    operation: Optional[str] = None
    errno: Optional[int] = None
    syscall: Optional[str] = None
    permissions: Optional[str] = None
    disk_space: Optional[Dict[str, int]] = None
    platform: str = "linux"
    path_info: Optional[PathAnalysis] = None


class FileSystemError(GeneratorError):
    """Reading or writing generated output failed at the OS level."""

    kind = ErrorKind.FILESYSTEM
    default_code = "FILE_SYSTEM_ERROR"
    details: FileSystemDetails

    def __init__(
        self,
        message: str,
        system_code: Optional[Union[str, int]] = None,
        *,
        path: Optional[Union[str, Path]] = None,
        operation: Optional[str] = None,
        errno: Optional[int] = None,
        syscall: Optional[str] = None,
        permissions: Optional[str] = None,
        disk_space: Optional[Dict[str, int]] = None,
        platform: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize file system error.

        Args:
            message: Human-readable error message
            system_code: errno name (``EACCES``) or number
            path: Path the operation failed on
            operation: Operation that failed (read, write, mkdir, ...)
            platform: Platform family override; defaults to the running one
        """
        name = normalize_system_code(system_code)
        if name is None and errno is not None:
            name = normalize_system_code(errno)
        path_text = str(path) if path is not None else None
        family = platform_family(platform)

        self.details = FileSystemDetails(
            system_code=name,
            path=path_text,
            operation=operation,
            errno=errno if errno is not None else getattr(errno_module, name, None) if name else None,
            syscall=syscall,
            permissions=permissions,
            disk_space=disk_space,
            platform=family,
            path_info=analyze_path(path_text, family) if path_text else None,
        )
        kwargs.setdefault("category", ErrorCategory.FILESYSTEM)
        kwargs.setdefault("recoverable", is_recoverable_system_code(name))
        kwargs.setdefault("operation", operation)
        if path_text and "location" not in kwargs:
            kwargs["location"] = ErrorLocation(file=path_text)
        super().__init__(message, code or map_system_code(name), **kwargs)

    @property
    def system_code(self) -> Optional[str]:
        return self.details.system_code

    @property
    def path(self) -> Optional[str]:
        return self.details.path

    @property
    def path_info(self) -> Optional[PathAnalysis]:
        return self.details.path_info

    @classmethod
    def permission_denied(cls, path: Union[str, Path], operation: str = "write", **kwargs: Any) -> "FileSystemError":
        return cls(f"Permission denied: cannot {operation} '{path}'", "EACCES", path=path, operation=operation, **kwargs)

    @classmethod
    def file_not_found(cls, path: Union[str, Path], operation: str = "read", **kwargs: Any) -> "FileSystemError":
        return cls(f"File not found: '{path}'", "ENOENT", path=path, operation=operation, **kwargs)

    @classmethod
    def disk_full(
        cls,
        path: Union[str, Path],
        required: int,
        available: int,
        **kwargs: Any,
    ) -> "FileSystemError":
        return cls(
            f"Insufficient disk space: required {required} bytes, available {available} bytes",
            "ENOSPC",
            path=path,
            operation=kwargs.pop("operation", "write"),
            disk_space={"required": required, "available": available},
            **kwargs,
        )

    @classmethod
    def path_too_long(cls, path: Union[str, Path], max_length: int, **kwargs: Any) -> "FileSystemError":
        return cls(
            f"Path too long: {len(str(path))} characters exceeds limit of {max_length}",
            "ENAMETOOLONG",
            path=path,
            **kwargs,
        )

    @classmethod
    def file_busy(cls, path: Union[str, Path], operation: str = "write", **kwargs: Any) -> "FileSystemError":
        return cls(f"File is busy: '{path}'", "EBUSY", path=path, operation=operation, **kwargs)

    @classmethod
    def from_os_error(
        cls,
        exc: OSError,
        operation: Optional[str] = None,
        path: Optional[Union[str, Path]] = None,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> "FileSystemError":
        """Wrap an ``OSError`` raised by a file operation."""
        target = path if path is not None else exc.filename
        text = message or (f"{exc.strerror}: '{target}'" if exc.strerror and target else str(exc))
        return cls(
            text,
            exc.errno,
            path=target,
            operation=operation,
            errno=exc.errno,
            cause=exc,
            **kwargs,
        )


# --------------------------------------------------------------------------
# Network
# --------------------------------------------------------------------------

STATUS_CODES: Dict[int, str] = {
    401: "NETWORK_UNAUTHORIZED",
    403: "NETWORK_FORBIDDEN",
    404: "NETWORK_NOT_FOUND",
    408: "NETWORK_REQUEST_TIMEOUT",
    429: "NETWORK_RATE_LIMITED",
}

CONNECTION_CODES: Dict[str, str] = {
    "ECONNREFUSED": "NETWORK_CONNECTION_REFUSED",
    "ECONNRESET": "NETWORK_CONNECTION_RESET",
    "EPIPE": "NETWORK_CONNECTION_RESET",
    "ETIMEDOUT": "NETWORK_TIMEOUT",
    "ENOTFOUND": "NETWORK_DNS_NOT_FOUND",
    "EAI_AGAIN": "NETWORK_DNS_NOT_FOUND",
    "EHOSTUNREACH": "NETWORK_UNREACHABLE",
    "ENETUNREACH": "NETWORK_UNREACHABLE",
}

RETRYABLE_STATUS = frozenset({408, 429})
RETRYABLE_CONNECTION_CODES = frozenset(
    {"ECONNRESET", "ETIMEDOUT", "ECONNREFUSED", "EAI_AGAIN", "EHOSTUNREACH", "ENETUNREACH", "EPIPE"}
)
PROXY_VARIABLES = ("HTTPS_PROXY", "HTTP_PROXY", "ALL_PROXY", "NO_PROXY")


def infer_network_code(status_code: Optional[int] = None, connection_code: Optional[str] = None) -> str:
    if status_code is not None:
        if status_code >= 500:
            return "NETWORK_SERVER_ERROR"
        if status_code in STATUS_CODES:
            return STATUS_CODES[status_code]
        if status_code >= 400:
            return "NETWORK_CLIENT_ERROR"
    if connection_code:
        return CONNECTION_CODES.get(connection_code.upper(), "NETWORK_ERROR")
    return "NETWORK_ERROR"


def is_retryable(status_code: Optional[int] = None, connection_code: Optional[str] = None) -> bool:
    if status_code is not None and (status_code >= 500 or status_code in RETRYABLE_STATUS):
        return True
    return bool(connection_code) and connection_code.upper() in RETRYABLE_CONNECTION_CODES


def classify_issue(status_code: Optional[int] = None, connection_code: Optional[str] = None) -> str:
    """Name the kind of network problem, used to pick diagnostics."""
    if status_code is not None:
        if status_code == 429:
            return "rate_limit"
        if status_code >= 500:
            return "server"
        if status_code == 408:
            return "timeout"
        if status_code >= 400:
            return "client"
    code = (connection_code or "").upper()
    if code in ("ENOTFOUND", "EAI_AGAIN"):
        return "dns"
    if code in ("ECONNREFUSED", "ECONNRESET", "EPIPE"):
        return "connection"
    if code == "ETIMEDOUT":
        return "timeout"
    if code in ("EHOSTUNREACH", "ENETUNREACH"):
        return "unreachable"
    return "unknown"


def parse_retry_after(value: Any, now: Optional[datetime] = None) -> Optional[int]:
    """Parse a ``Retry-After`` value (delta seconds or HTTP date) into milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return max(0, int(value * 1000)) if math.isfinite(value) else None

    text = str(value).strip()
    if not text:
        return None
    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        # "inf", "nan" and "1e400" parse as floats but are not delays
        return max(0, int(seconds * 1000)) if math.isfinite(seconds) else None

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0, int((when - now).total_seconds() * 1000))


def detect_proxy(environ: Optional[Mapping[str, str]] = None) -> Optional[Dict[str, str]]:
    """Return the proxy variables set in the environment, or ``None``."""
    environ = os.environ if environ is None else environ
    found: Dict[str, str] = {}
    for name in PROXY_VARIABLES:
        value = environ.get(name) or environ.get(name.lower())
        if value:
            found[name.lower()] = value
    if not any(key != "no_proxy" for key in found):
        return None
    return found


class NetworkDetails(BaseModel):
    status_code: Optional[int] = None
    connection_code: Optional[str] = None
    url: Optional[str] = None
    method: Optional[str] = None
    timeout_ms: Optional[int] = None
    retry_after_ms: Optional[int] = None
    attempt: int = 1
    max_retries: int = 3
    retryable: bool = False
    issue: str = "unknown"
    proxy: Optional[Dict[str, str]] = None
    platform: str = "linux"


class NetworkError(GeneratorError):
    """Fetching a remote spec or resource failed."""

    kind = ErrorKind.NETWORK
    default_code = "NETWORK_ERROR"
    details: NetworkDetails

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        connection_code: Optional[str] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
        timeout_ms: Optional[int] = None,
        retry_after: Any = None,
        headers: Optional[Mapping[str, str]] = None,
        attempt: int = 1,
        max_retries: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        environ: Optional[Mapping[str, str]] = None,
        platform: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize network error.

        Args:
            message: Human-readable error message
            status_code: HTTP status of the failed response
            connection_code: Low-level identifier such as ``ECONNRESET``
            url: Requested URL
            retry_after: ``Retry-After`` value; read from ``headers`` when omitted
            attempt: Attempt number that produced this failure
            max_retries: Retry budget; 5 for HTTP 429, else the backoff default
            backoff: Backoff policy used by ``compute_delay``
            environ: Environment to inspect for proxy settings
        """
        self.backoff = backoff or BackoffPolicy()
        self._explicit_max_retries = max_retries
        if retry_after is None and headers:
            lowered = {k.lower(): v for k, v in headers.items()}
            retry_after = lowered.get("retry-after")
        if max_retries is None:
            max_retries = RATE_LIMITED_MAX_RETRIES if status_code == 429 else self.backoff.max_retries

        connection = connection_code.upper() if connection_code else None
        retryable = is_retryable(status_code, connection)
        self.details = NetworkDetails(
            status_code=status_code,
            connection_code=connection,
            url=url,
            method=method.upper() if method else None,
            timeout_ms=timeout_ms,
            retry_after_ms=parse_retry_after(retry_after),
            attempt=attempt,
            max_retries=max_retries,
            retryable=retryable,
            issue=classify_issue(status_code, connection),
            proxy=detect_proxy(environ),
            platform=platform_family(platform),
        )
        kwargs.setdefault("category", ErrorCategory.NETWORK)
        kwargs.setdefault("recoverable", retryable)
        if url and "operation" not in kwargs:
            parts = urlsplit(url)
            target = f"{parts.netloc}{parts.path}" or url
            kwargs["operation"] = f"{self.details.method or 'GET'} {target}"
        super().__init__(message, code or infer_network_code(status_code, connection), **kwargs)

    @property
    def status_code(self) -> Optional[int]:
        return self.details.status_code

    @property
    def retryable(self) -> bool:
        return self.details.retryable

    @property
    def retry_after_ms(self) -> Optional[int]:
        return self.details.retry_after_ms

    @property
    def max_retries(self) -> int:
        return self.details.max_retries

    @property
    def is_rate_limited(self) -> bool:
        return self.details.status_code == 429

    @property
    def host(self) -> Optional[str]:
        return urlsplit(self.details.url).hostname if self.details.url else None

    @property
    def port(self) -> Optional[int]:
        if not self.details.url:
            return None
        parts = urlsplit(self.details.url)
        return parts.port or (443 if parts.scheme == "https" else 80)

    def retry_limit(self, default: int) -> int:
        """Retry budget: an explicit ``max_retries``, else 5 for HTTP 429, else ``default``."""
        if self._explicit_max_retries is not None:
            return self._explicit_max_retries
        return RATE_LIMITED_MAX_RETRIES if self.is_rate_limited else default

    def should_retry(self, attempt: Optional[int] = None) -> bool:
        attempt = self.details.attempt if attempt is None else attempt
        return self.retryable and attempt <= self.details.max_retries

    def compute_delay(self, attempt: Optional[int] = None, jitter: Optional[bool] = False) -> int:
        """Backoff delay for ``attempt``; a rate-limit response's ``Retry-After`` wins."""
        if self.is_rate_limited and self.details.retry_after_ms is not None:
            return self.details.retry_after_ms
        attempt = self.details.attempt if attempt is None else attempt
        return self.backoff.compute_delay(attempt, jitter=jitter)

    @classmethod
    def from_status(
        cls,
        status_code: int,
        url: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs: Any,
    ) -> "NetworkError":
        target = f" for {url}" if url else ""
        text = f"HTTP {status_code}{' ' + reason if reason else ''}{target}"
        return cls(text, status_code=status_code, url=url, **kwargs)

    @classmethod
    def timeout(cls, url: str, timeout_ms: int, **kwargs: Any) -> "NetworkError":
        return cls(
            f"Request to {url} timed out after {timeout_ms} ms",
            connection_code="ETIMEDOUT",
            url=url,
            timeout_ms=timeout_ms,
            **kwargs,
        )

    @classmethod
    def from_os_error(
        cls,
        exc: OSError,
        url: Optional[str] = None,
        message: Optional[str] = None,
        **kwargs: Any,
    ) -> "NetworkError":
        """Wrap a socket-level ``OSError``."""
        return cls(
            message or str(exc) or type(exc).__name__,
            connection_code=connection_code_for(exc),
            url=url,
            cause=exc,
            **kwargs,
        )


def connection_code_for(exc: OSError) -> Optional[str]:
    """Symbolic connection identifier for a socket-level error."""
    if isinstance(exc, socket.gaierror):
        return "EAI_AGAIN" if exc.errno == socket.EAI_AGAIN else "ENOTFOUND"
    if isinstance(exc, TimeoutError) and exc.errno is None:
        return "ETIMEDOUT"
    if exc.errno is not None:
        return errno_module.errorcode.get(exc.errno)
    return None


def classify_os_error(exc: OSError, message: Optional[str] = None) -> Optional[GeneratorError]:
    """Pick the taxonomy type for an ``OSError``, or ``None`` if unknown."""
    name = connection_code_for(exc)
    if name in CONNECTION_CODES:
        return NetworkError.from_os_error(exc, message=message)
    if name in SYSTEM_CODE_MAP:
        return FileSystemError.from_os_error(exc, message=message)
    return None


# --------------------------------------------------------------------------
# Templates
# --------------------------------------------------------------------------

TEMPLATE_EXTENSIONS = {"jinja2": "j2", "handlebars": "hbs", "mustache": "mustache", "mako": "mako"}

# Per engine: (field, pattern). First match per field wins.
ENGINE_PATTERNS: Dict[str, List[tuple[str, re.Pattern[str]]]] = {
    "jinja2": [
        ("line", re.compile(r"line (\d+)", re.IGNORECASE)),
        ("undefined_variable", re.compile(r"'([^']+)' is undefined")),
        ("missing_helper", re.compile(r"no (?:filter|test) named '([^']+)'")),
        ("missing_partial", re.compile(r"(?:template|TemplateNotFound:?) ['\"]?([\w./-]+)['\"]? (?:not found|could not be found)")),
        ("syntax_error", re.compile(r"((?:unexpected|expected|Encountered unknown tag) .+?)(?:\s*\(line \d+\))?$", re.IGNORECASE)),
    ],
    "handlebars": [
        ("line", re.compile(r"line (\d+)", re.IGNORECASE)),
        ("column", re.compile(r"column (\d+)", re.IGNORECASE)),
        ("undefined_variable", re.compile(r'"([^"]+)" not defined')),
        ("missing_helper", re.compile(r'Missing helper: "([^"]+)"')),
        ("missing_partial", re.compile(r"partial ['\"](.*?)['\"]")),
        ("syntax_error", re.compile(r"(Parse error.*|Expecting .+)")),
    ],
    "mustache": [
        ("line", re.compile(r"line (\d+)", re.IGNORECASE)),
        ("syntax_error", re.compile(r"(Unclosed \w+.*)")),
    ],
    "mako": [
        ("line", re.compile(r"line (\d+)", re.IGNORECASE)),
        ("column", re.compile(r"column (\d+)", re.IGNORECASE)),
        ("undefined_variable", re.compile(r"(?:name )?'(\w+)' is not defined")),
        ("missing_partial", re.compile(r"Can't locate template for uri '([^']+)'")),
        ("syntax_error", re.compile(r"(Syntax\w* .+|Expected: .+)")),
    ],
}

CONTEXT_RADIUS = 3


def parse_engine_error(engine: str, error: Any) -> Dict[str, Any]:
    """Extract location and cause fields from a template engine failure."""
    found: Dict[str, Any] = {}

    for attr, field in (("lineno", "line"), ("line", "line"), ("colno", "column"), ("column", "column")):
        value = getattr(error, attr, None)
        if isinstance(value, int) and field not in found:
            found[field] = value
    filename = getattr(error, "filename", None)
    if isinstance(filename, str):
        found["template_path"] = filename

    if type(error).__name__ == "TemplateNotFound":
        found["missing_partial"] = getattr(error, "name", None) or str(error)

    text = getattr(error, "message", None) if isinstance(error, BaseException) else None
    text = text or str(error)
    for field, pattern in ENGINE_PATTERNS.get(engine, []):
        if field in found:
            continue
        match = pattern.search(text)
        if match:
            value = match.group(1)
            found[field] = int(value) if field in ("line", "column") else value.strip()

    return found


class TemplateLine(BaseModel):
    number: int
    content: str
    is_error: bool = False


class TemplateContextWindow(BaseModel):
    """Source lines around a template failure."""

    lines: List[TemplateLine] = Field(default_factory=list)
    error_line: int
    error_column: Optional[int] = None

    def render(self) -> str:
        rendered: List[str] = []
        for line in self.lines:
            marker = ">" if line.is_error else " "
            rendered.append(f"{marker} {line.number:>4} | {line.content}")
            if line.is_error and self.error_column:
                rendered.append(" " * (8 + self.error_column) + "^")
        return "\n".join(rendered)


class TemplateDetails(BaseModel):
    template_name: Optional[str] = None
    template_path: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    engine: str = "jinja2"
    undefined_variable: Optional[str] = None
    missing_helper: Optional[str] = None
    missing_partial: Optional[str] = None
    syntax_error: Optional[str] = None
    available_variables: List[str] = Field(default_factory=list)
    available_helpers: List[str] = Field(default_factory=list)
    inheritance_chain: List[str] = Field(default_factory=list)
    context_window: Optional[TemplateContextWindow] = None


class TemplateError(GeneratorError):
    """Rendering a source template failed."""

    kind = ErrorKind.TEMPLATE
    default_code = "TEMPLATE_ERROR"
    details: TemplateDetails

    def __init__(
        self,
        message: str,
        *,
        template_name: Optional[str] = None,
        template_path: Optional[Union[str, Path]] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        engine: str = "jinja2",
        undefined_variable: Optional[str] = None,
        missing_helper: Optional[str] = None,
        missing_partial: Optional[str] = None,
        syntax_error: Optional[str] = None,
        available_variables: Optional[List[str]] = None,
        available_helpers: Optional[List[str]] = None,
        inheritance_chain: Optional[List[str]] = None,
        engine_error: Any = None,
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        """Initialize template error.

        Explicit arguments win over fields parsed from ``engine_error``.
        """
        fields: Dict[str, Any] = {
            "template_path": str(template_path) if template_path is not None else None,
            "line": line,
            "column": column,
            "undefined_variable": undefined_variable,
            "missing_helper": missing_helper,
            "missing_partial": missing_partial,
            "syntax_error": syntax_error,
        }
        if engine_error is not None:
            for key, value in parse_engine_error(engine, engine_error).items():
                if fields.get(key) is None:
                    fields[key] = value
            if isinstance(engine_error, BaseException):
                kwargs.setdefault("cause", engine_error)

        self.details = TemplateDetails(
            template_name=template_name,
            engine=engine,
            available_variables=available_variables or [],
            available_helpers=available_helpers or [],
            inheritance_chain=inheritance_chain or [],
            **fields,
        )
        kwargs.setdefault("category", ErrorCategory.TEMPLATE)
        if "location" not in kwargs:
            kwargs["location"] = ErrorLocation(
                file=self.details.template_path or template_name,
                line=self.details.line,
                column=self.details.column,
            )
        super().__init__(message, code, **kwargs)

    @property
    def template_name(self) -> Optional[str]:
        return self.details.template_name

    @property
    def engine(self) -> str:
        return self.details.engine

    @property
    def extension(self) -> str:
        return TEMPLATE_EXTENSIONS.get(self.details.engine, "html")

    def load_error_context(self, radius: int = CONTEXT_RADIUS) -> Optional[TemplateContextWindow]:
        """Read the template and keep ``radius`` lines either side of the failing line."""
        path, line = self.details.template_path, self.details.line
        if not path or not line:
            return None
        try:
            source = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"Could not load template context from {path}: {e}")
            return None

        lines = source.splitlines()
        start = max(1, line - radius)
        end = min(len(lines), line + radius)
        window = TemplateContextWindow(
            lines=[
                TemplateLine(number=n, content=lines[n - 1], is_error=n == line)
                for n in range(start, end + 1)
            ],
            error_line=line,
            error_column=self.details.column,
        )
        self.details.context_window = window
        return window

    @classmethod
    def syntax_error(
        cls,
        message: str,
        template_name: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
        **kwargs: Any,
    ) -> "TemplateError":
        return cls(
            f"Syntax error in template: {message}",
            template_name=template_name,
            line=line,
            column=column,
            syntax_error=message,
            code="TEMPLATE_SYNTAX_ERROR",
            **kwargs,
        )

    @classmethod
    def undefined_variable(cls, name: str, template_name: str, **kwargs: Any) -> "TemplateError":
        return cls(
            f"Undefined variable '{name}' in template",
            template_name=template_name,
            undefined_variable=name,
            code="TEMPLATE_UNDEFINED_VARIABLE",
            **kwargs,
        )

    @classmethod
    def missing_helper(cls, name: str, template_name: str, **kwargs: Any) -> "TemplateError":
        return cls(
            f"Missing helper function '{name}'",
            template_name=template_name,
            missing_helper=name,
            code="TEMPLATE_MISSING_HELPER",
            **kwargs,
        )

    @classmethod
    def missing_partial(cls, name: str, template_name: str, **kwargs: Any) -> "TemplateError":
        return cls(
            f"Missing partial template '{name}'",
            template_name=template_name,
            missing_partial=name,
            code="TEMPLATE_MISSING_PARTIAL",
            **kwargs,
        )

    @classmethod
    def compilation_error(cls, error: BaseException, template_name: str, **kwargs: Any) -> "TemplateError":
        return cls(
            f"Failed to compile template: {error}",
            template_name=template_name,
            engine_error=error,
            code="TEMPLATE_COMPILATION_ERROR",
            **kwargs,
        )


# --------------------------------------------------------------------------
# Configuration and parsing
# --------------------------------------------------------------------------


class ConfigurationDetails(BaseModel):
    field: Optional[str] = None
    value: Any = None
    expected: Optional[str] = None
    config_file: Optional[str] = None


class ConfigurationError(GeneratorError):
    """Generator configuration is missing or invalid."""

    kind = ErrorKind.CONFIGURATION
    default_code = "CONFIG_ERROR"
    details: ConfigurationDetails

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        expected: Optional[str] = None,
        config_file: Optional[Union[str, Path]] = None,
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        self.details = ConfigurationDetails(
            field=field,
            value=value,
            expected=expected,
            config_file=str(config_file) if config_file is not None else None,
        )
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        kwargs["recoverable"] = False
        if config_file is not None and "location" not in kwargs:
            kwargs["location"] = ErrorLocation(file=str(config_file))
        super().__init__(message, code, **kwargs)

    @classmethod
    def missing_field(
        cls,
        field: str,
        config_file: Optional[Union[str, Path]] = None,
        **kwargs: Any,
    ) -> "ConfigurationError":
        where = f" in {config_file}" if config_file else ""
        return cls(
            f"Missing required configuration field '{field}'{where}",
            field=field,
            config_file=config_file,
            code="CONFIG_MISSING_FIELD",
            **kwargs,
        )

    @classmethod
    def invalid_value(
        cls,
        field: str,
        value: Any,
        expected: str,
        config_file: Optional[Union[str, Path]] = None,
        **kwargs: Any,
    ) -> "ConfigurationError":
        return cls(
            f"Invalid value {value!r} for '{field}': expected {expected}",
            field=field,
            value=value,
            expected=expected,
            config_file=config_file,
            code="CONFIG_INVALID_VALUE",
            **kwargs,
        )


class ParseDetails(BaseModel):
    spec_file: Optional[str] = None
    line: Optional[int] = None
    column: Optional[int] = None
    problem: Optional[str] = None
    document_format: Optional[str] = None


class SpecParseError(GeneratorError):
    """The OpenAPI document could not be parsed."""

    kind = ErrorKind.PARSING
    default_code = "PARSE_ERROR"
    details: ParseDetails

    def __init__(
        self,
        message: str,
        *,
        spec_file: Optional[Union[str, Path]] = None,
        line: Optional[int] = None,
        column: Optional[int] = None,
        problem: Optional[str] = None,
        document_format: Optional[str] = None,
        code: Optional[str] = None,
        **kwargs: Any,
    ):
        spec_text = str(spec_file) if spec_file is not None else None
        if document_format is None and spec_text:
            suffix = Path(spec_text).suffix.lower()
            document_format = "json" if suffix == ".json" else "yaml" if suffix in (".yaml", ".yml") else None
        self.details = ParseDetails(
            spec_file=spec_text,
            line=line,
            column=column,
            problem=problem,
            document_format=document_format,
        )
        kwargs.setdefault("category", ErrorCategory.PARSING)
        kwargs["recoverable"] = False
        if "location" not in kwargs:
            kwargs["location"] = ErrorLocation(file=spec_text, line=line, column=column)
        super().__init__(message, code, **kwargs)

    @classmethod
    def from_yaml_error(cls, exc: Exception, spec_file: Optional[Union[str, Path]] = None) -> "SpecParseError":
        """Wrap a PyYAML ``MarkedYAMLError``; marks are 0-based."""
        mark = getattr(exc, "problem_mark", None)
        problem = getattr(exc, "problem", None) or str(exc)
        return cls(
            f"Invalid YAML: {problem}",
            spec_file=spec_file,
            line=mark.line + 1 if mark is not None else None,
            column=mark.column + 1 if mark is not None else None,
            problem=problem,
            document_format="yaml",
            code="PARSE_YAML_ERROR",
            cause=exc,
        )

    @classmethod
    def from_json_error(
        cls,
        exc: json.JSONDecodeError,
        spec_file: Optional[Union[str, Path]] = None,
    ) -> "SpecParseError":
        return cls(
            f"Invalid JSON: {exc.msg}",
            spec_file=spec_file,
            line=exc.lineno,
            column=exc.colno,
            problem=exc.msg,
            document_format="json",
            code="PARSE_JSON_ERROR",
            cause=exc,
        )
