"""Tests for the base error type."""

import errno
import re

import pytest

from oasgen.errors import (
    ErrorCategory,
    ErrorKind,
    ErrorSeverity,
    FileSystemError,
    GeneratorError,
    NetworkError,
    compute_fingerprint,
    infer_category,
)
from oasgen.errors.base import MAX_CAUSE_DEPTH, build_cause_chain


class TestFingerprint:
    """Test fingerprint computation."""

    def test_deterministic(self):
        """Test identical inputs give identical fingerprints."""
        first = compute_fingerprint("FILE_NOT_FOUND", ErrorCategory.FILESYSTEM, "read", "a.yaml", 3)
        second = compute_fingerprint("FILE_NOT_FOUND", "filesystem", "read", "a.yaml", 3)

        assert first == second
        assert re.fullmatch(r"[0-9a-f]{16}", first)

    def test_sensitive_to_each_part(self):
        """Test changing any part changes the fingerprint."""
        base = compute_fingerprint("CODE", "general", "op", "f", 1)

        assert compute_fingerprint("OTHER", "general", "op", "f", 1) != base
        assert compute_fingerprint("CODE", "network", "op", "f", 1) != base
        assert compute_fingerprint("CODE", "general", "op2", "f", 1) != base
        assert compute_fingerprint("CODE", "general", "op", "g", 1) != base
        assert compute_fingerprint("CODE", "general", "op", "f", 2) != base

    def test_empty_parts_omitted(self):
        """Test missing parts do not contribute separators."""
        assert compute_fingerprint("CODE", "general") == compute_fingerprint("CODE", "general", None, "", None)

    def test_same_error_same_fingerprint(self):
        """Test two records of the same failure share a fingerprint."""
        a = GeneratorError("boom", "GENERATOR_FAILED", operation="render")
        b = GeneratorError("boom again", "GENERATOR_FAILED", operation="render")

        assert a.fingerprint == b.fingerprint
        assert a.id != b.id


class TestGeneratorError:
    """Test GeneratorError construction and helpers."""

    def test_defaults(self):
        """Test default values."""
        error = GeneratorError("Something failed")

        assert error.code == "UNKNOWN_ERROR"
        assert error.category == ErrorCategory.GENERAL
        assert error.severity == ErrorSeverity.ERROR
        assert error.kind == ErrorKind.GENERAL
        assert not error.recoverable
        assert error.user_message == "Something failed"
        assert error.id.startswith("UNKNOWN_ERROR-")
        assert re.fullmatch(r"UNKNOWN_ERROR-\d+-[0-9a-f]{8}", error.id)

    @pytest.mark.parametrize(
        "code,category",
        [
            ("VALIDATION_FAILED", ErrorCategory.VALIDATION),
            ("SCHEMA_INVALID", ErrorCategory.VALIDATION),
            ("HTTP_500", ErrorCategory.NETWORK),
            ("FS_BUSY", ErrorCategory.FILESYSTEM),
            ("TEMPLATE_BROKEN", ErrorCategory.TEMPLATE),
            ("CONFIG_MISSING", ErrorCategory.CONFIGURATION),
            ("YAML_BAD", ErrorCategory.PARSING),
            ("GENERATION_ABORTED", ErrorCategory.GENERATION),
            ("FATAL_CRASH", ErrorCategory.FATAL),
            ("WHATEVER", ErrorCategory.GENERAL),
        ],
    )
    def test_category_inferred_from_code(self, code, category):
        """Test category inference from code prefixes."""
        assert infer_category(code) == category
        assert GeneratorError("x", code).category == category

    def test_explicit_category_wins(self):
        """Test explicit category overrides inference."""
        error = GeneratorError("x", "FILE_THING", category=ErrorCategory.TEMPLATE)

        assert error.category == ErrorCategory.TEMPLATE

    def test_operation_from_context(self):
        """Test operation taken from context feeds the fingerprint."""
        with_op = GeneratorError("x", "CODE", context={"operation": "write"})
        without_op = GeneratorError("x", "CODE")

        assert with_op.operation == "write"
        assert with_op.fingerprint != without_op.fingerprint

    def test_metadata_captured(self):
        """Test process metadata is captured and caller metadata merged."""
        error = GeneratorError("x", metadata={"run": 7})

        assert "pid" in error.metadata
        assert "platform" in error.metadata
        assert error.metadata["run"] == 7

    def test_add_context(self):
        """Test adding context by key and by mapping."""
        error = GeneratorError("x").add_context("file", "a.yaml").add_context({"phase": "load"})

        assert error.context == {"file": "a.yaml", "phase": "load"}

    def test_set_location_keeps_fingerprint(self):
        """Test set_location updates location but not the fingerprint."""
        error = GeneratorError("x", "CODE")
        fingerprint = error.fingerprint

        error.set_location("spec.yaml", 10, 4)

        assert str(error.location) == "spec.yaml:10:4"
        assert error.fingerprint == fingerprint

    def test_is_type_and_has_code(self):
        """Test type and code checks."""
        error = NetworkError.from_status(503, "https://example.com/spec.json")

        assert error.is_type(NetworkError)
        assert error.is_type("GeneratorError")
        assert not error.is_type(FileSystemError)
        assert error.has_code("NETWORK_SERVER_ERROR")

    def test_stack_captured(self):
        """Test the creation stack is recorded."""
        error = GeneratorError("x")

        assert error.stack.startswith("GeneratorError: x")
        assert "test_base.py" in error.stack


class TestCauseChain:
    """Test cause chain construction."""

    def test_chain_follows_exception_causes(self):
        """Test explicit causes are followed."""
        try:
            try:
                raise KeyError("inner")
            except KeyError as inner:
                raise ValueError("outer") from inner
        except ValueError as outer:
            error = GeneratorError("wrapped", cause=outer)

        chain = error.get_error_chain()
        assert chain[0] is error
        assert isinstance(chain[1], ValueError)
        assert isinstance(chain[2], KeyError)

    def test_chain_stops_at_cycles(self):
        """Test cyclic causes terminate."""
        a = ValueError("a")
        b = ValueError("b")
        a.__cause__ = b
        b.__cause__ = a

        chain = build_cause_chain(a)

        assert chain == [a, b]

    def test_chain_depth_capped(self):
        """Test long chains are cut at the maximum depth."""
        head = current = ValueError("0")
        for i in range(1, 100):
            nxt = ValueError(str(i))
            current.__cause__ = nxt
            current = nxt

        error = GeneratorError("deep", cause=head)

        assert len(error.cause_chain) == MAX_CAUSE_DEPTH

    def test_add_cause(self):
        """Test appending a cause."""
        extra = RuntimeError("extra")
        error = GeneratorError("x").add_cause(extra).add_cause(extra)

        assert error.cause_chain == [extra]


class TestWrap:
    """Test wrapping arbitrary values."""

    def test_taxonomy_error_unchanged(self):
        """Test wrapping a taxonomy error returns it as is."""
        error = GeneratorError("x")

        assert GeneratorError.wrap(error) is error

    def test_plain_exception(self):
        """Test wrapping a plain exception keeps its message and cause."""
        original = ValueError("bad value")
        error = GeneratorError.wrap(original)

        assert error.message == "bad value"
        assert error.cause is original
        assert error.code == "UNKNOWN_ERROR"
        assert error.context["original_type"] == "ValueError"

    def test_mapping(self):
        """Test wrapping a mapping keeps message and code."""
        error = GeneratorError.wrap({"message": "remote failure", "code": "NETWORK_ERROR"})

        assert error.message == "remote failure"
        assert error.code == "NETWORK_ERROR"
        assert error.category == ErrorCategory.NETWORK

    def test_string(self):
        """Test wrapping a bare string."""
        error = GeneratorError.wrap("just text", code="GENERATOR_FAILED")

        assert error.message == "just text"
        assert error.category == ErrorCategory.GENERATION

    def test_os_errors_classified(self):
        """Test OS errors become file system or network errors."""
        fs_error = GeneratorError.wrap(PermissionError(errno.EACCES, "Permission denied", "/etc/app"))
        net_error = GeneratorError.wrap(ConnectionResetError(errno.ECONNRESET, "Connection reset by peer"))

        assert isinstance(fs_error, FileSystemError)
        assert fs_error.code == "FILE_PERMISSION_DENIED"
        assert fs_error.recoverable
        assert isinstance(net_error, NetworkError)
        assert net_error.code == "NETWORK_CONNECTION_RESET"
        assert net_error.recoverable

    def test_unknown_os_error(self):
        """Test OS errors without a known errno stay generic."""
        error = GeneratorError.wrap(OSError("mystery"))

        assert type(error) is GeneratorError
        assert error.message == "mystery"
