"""Tests for the central error handler."""

import asyncio
import json
import sys

import pytest

from oasgen.errors import (
    ErrorCategory,
    ErrorEventType,
    ErrorSeverity,
    FileSystemError,
    GeneratorError,
    NetworkError,
    RecoveryAction,
    ValidationError,
    get_error_handler,
    set_error_handler,
    with_error_handling,
)


def boom(code="GENERATOR_FAILED", **kwargs):
    return GeneratorError("boom", code, operation="render", **kwargs)


class TestHandle:
    """Test handling single errors."""

    @pytest.mark.asyncio
    async def test_cli_output_to_stderr(self, make_handler, stdout_text, stderr_text):
        """Test CLI output goes to the error console."""
        handler = make_handler()

        result = await handler.handle(boom())

        assert result.error.code == "GENERATOR_FAILED"
        assert "✖ Error: boom" in stderr_text()
        assert "Code: GENERATOR_FAILED" in stderr_text()
        assert stdout_text() == ""

    @pytest.mark.asyncio
    async def test_json_output_to_stdout(self, make_handler, stdout_text, stderr_text):
        """Test JSON output is written to stdout as a parseable document."""
        handler = make_handler(output_format="json")

        result = await handler.handle(boom())

        data = json.loads(stdout_text())
        assert data["id"] == result.error.id
        assert data["category"] == "generation"
        assert stderr_text() == ""

    @pytest.mark.asyncio
    async def test_output_disabled(self, make_handler, stderr_text):
        handler = make_handler(output_enabled=False)

        result = await handler.handle(boom())

        assert result.output is None
        assert stderr_text() == ""

    @pytest.mark.asyncio
    async def test_wraps_plain_exceptions(self, make_handler):
        """Test non-taxonomy values are wrapped and context merged."""
        handler = make_handler()

        result = await handler.handle(ValueError("bad input"), {"phase": "parse"})

        assert isinstance(result.error, GeneratorError)
        assert result.error.message == "bad input"
        assert result.error.context["phase"] == "parse"
        assert result.error.context["original_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_documentation_url(self, make_handler, stderr_text):
        """Test documentation links are built from the code."""
        handler = make_handler(docs_base_url="https://docs.example.com/errors/")

        await handler.handle(boom())

        assert "https://docs.example.com/errors/generator-failed" in stderr_text()

    def test_handle_sync(self, make_handler):
        """Test handling without a running event loop."""
        handler = make_handler()

        result = handler.handle_sync(boom())

        assert result is not None
        assert handler.get_stats().total == 1


class TestRateLimiting:
    """Test per-fingerprint rate limiting."""

    @pytest.mark.asyncio
    async def test_excess_occurrences_dropped(self, make_handler, stderr_text):
        """Test occurrences beyond the window limit return None and are counted."""
        handler = make_handler(rate_limit={"max_per_window": 2})
        limited = []
        handler.subscribe(ErrorEventType.RATE_LIMITED, limited.append)

        results = [await handler.handle(boom()) for _ in range(3)]

        assert results[2] is None
        assert all(r is not None for r in results[:2])
        stats = handler.get_stats()
        assert stats.total == 2
        assert stats.rate_limited == 1
        assert len(limited) == 1
        assert limited[0].payload["fingerprint"] == results[0].error.fingerprint
        assert stderr_text().count("✖ Error: boom") == 2

    @pytest.mark.asyncio
    async def test_window_expiry(self, make_handler, clock):
        """Test a new window admits the fingerprint again."""
        handler = make_handler(rate_limit={"max_per_window": 1, "window_ms": 1000})

        assert await handler.handle(boom()) is not None
        assert await handler.handle(boom()) is None
        clock.advance(1001)

        assert await handler.handle(boom()) is not None


class TestStatsAndGroups:
    """Test statistics and grouping."""

    @pytest.mark.asyncio
    async def test_stats(self, make_handler):
        """Test counters by category, severity and code."""
        handler = make_handler()

        await handler.handle(boom())
        await handler.handle(boom())
        await handler.handle(ValidationError.missing_required("name"))

        stats = handler.get_stats()
        assert stats.total == 3
        assert stats.by_category == {"generation": 2, "validation": 1}
        assert stats.by_severity == {"error": 3}
        assert stats.by_code["GENERATOR_FAILED"] == 2
        assert stats.groups == 2

    @pytest.mark.asyncio
    async def test_groups(self, make_handler):
        """Test identical errors share one group."""
        handler = make_handler()

        for _ in range(5):
            await handler.handle(boom())

        groups = handler.get_groups()
        assert len(groups) == 1
        assert groups[0].count == 5

    @pytest.mark.asyncio
    async def test_recent_and_clear(self, make_handler):
        """Test recent errors are listed newest last and clear resets everything."""
        handler = make_handler()
        first = (await handler.handle(boom("CODE_A"))).error
        second = (await handler.handle(boom("CODE_B"))).error

        assert handler.get_recent_errors(2) == [first, second]

        handler.clear()

        assert handler.get_stats().total == 0
        assert handler.get_groups() == []
        assert handler.get_recent_errors() == []


class TestCustomHandlers:
    """Test registered callbacks."""

    @pytest.mark.asyncio
    async def test_order(self, make_handler):
        """Test category handlers run before code handlers, then wildcard handlers."""
        handler = make_handler()
        calls = []
        handler.register_handler("*", lambda e: calls.append("all"))
        handler.register_handler("GENERATOR_FAILED", lambda e: calls.append("code"))
        handler.register_handler(ErrorCategory.GENERATION, lambda e: calls.append("category"))

        await handler.handle(boom())

        assert calls == ["category", "code", "all"]

    @pytest.mark.asyncio
    async def test_failures_isolated(self, make_handler):
        """Test a failing handler does not stop the others or the caller."""
        handler = make_handler()
        calls = []

        def broken(error):
            raise RuntimeError("handler exploded")

        async def async_handler(error):
            calls.append(error.code)

        handler.register_handler("*", broken)
        handler.register_handler("*", async_handler)

        result = await handler.handle(boom())

        assert result is not None
        assert calls == ["GENERATOR_FAILED"]


class TestEvents:
    """Test lifecycle events."""

    @pytest.mark.asyncio
    async def test_handled_event(self, make_handler):
        """Test handled events reach sync, async and wildcard subscribers."""
        handler = make_handler()
        received = []

        async def on_handled(event):
            received.append(("async", event.payload["count"]))

        handler.subscribe(ErrorEventType.HANDLED, lambda event: received.append(("sync", event.type)))
        handler.subscribe(ErrorEventType.HANDLED, on_handled)
        handler.subscribe("*", lambda event: received.append(("all", event.type)))

        await handler.handle(boom())

        assert ("sync", ErrorEventType.HANDLED) in received
        assert ("async", 1) in received
        assert ("all", ErrorEventType.HANDLED) in received

    @pytest.mark.asyncio
    async def test_unsubscribe(self, make_handler):
        handler = make_handler()
        received = []
        sub_id = handler.subscribe(ErrorEventType.HANDLED, received.append)

        assert handler.unsubscribe(sub_id)
        await handler.handle(boom())

        assert received == []
        assert not handler.unsubscribe(sub_id)

    @pytest.mark.asyncio
    async def test_handlers_have_separate_buses(self, make_handler):
        """Test subscriptions are scoped to one handler."""
        first = make_handler()
        second = make_handler()
        received = []
        first.subscribe(ErrorEventType.HANDLED, received.append)

        await second.handle(boom())

        assert received == []


class TestRecovery:
    """Test recovery through the handler."""

    @pytest.mark.asyncio
    async def test_recoverable_network_error(self, make_handler):
        """Test a retryable network error gets a retry outcome and a recovered event."""
        handler = make_handler(backoff={"jitter": False})
        recovered = []
        handler.subscribe(ErrorEventType.RECOVERED, recovered.append)

        result = await handler.handle(NetworkError.from_status(503, "https://api.example.com/spec"))

        assert result.recovery.action == RecoveryAction.RETRY
        assert result.recovery.delay_ms == 1000
        assert result.recovered
        assert handler.get_stats().recovered == 1
        assert recovered[0].payload["outcome"]["action"] == "retry"

    @pytest.mark.asyncio
    async def test_configured_max_retries(self, make_handler):
        """Test the configured retry budget applies to handled network errors."""
        handler = make_handler(backoff={"max_retries": 5, "jitter": False})

        results = [
            await handler.handle(NetworkError.from_status(503, "https://api.example.com/spec")) for _ in range(6)
        ]

        assert [r.recovery.action.value for r in results] == ["retry"] * 5 + ["fail"]
        assert [r.recovery.delay_ms for r in results[:3]] == [1000, 2000, 4000]

    @pytest.mark.asyncio
    async def test_operation_not_permitted_escalates(self, make_handler):
        """Test EPERM is recoverable and reaches the escalate strategy."""
        handler = make_handler()

        result = await handler.handle(FileSystemError("Operation not permitted", "EPERM", path="/srv/out"))

        assert result.error.recoverable
        assert result.recovery.action == RecoveryAction.ESCALATE
        assert result.recovery.payload["commands"]

    @pytest.mark.asyncio
    async def test_non_recoverable_skipped(self, make_handler):
        handler = make_handler()

        result = await handler.handle(ValidationError.missing_required("name"))

        assert result.recovery is None
        assert not result.recovered

    @pytest.mark.asyncio
    async def test_recovery_disabled(self, make_handler):
        handler = make_handler(recovery_enabled=False)

        result = await handler.handle(NetworkError.from_status(503))

        assert result.recovery is None

    @pytest.mark.asyncio
    async def test_custom_strategy(self, make_handler):
        """Test registered strategies replace the defaults."""
        handler = make_handler()
        seen = []

        def strategy(error):
            seen.append(error.code)
            return None

        handler.register_recovery_strategy(ErrorCategory.NETWORK, strategy)

        result = await handler.handle(NetworkError.from_status(503))

        assert seen == ["NETWORK_SERVER_ERROR"]
        assert not result.recovered


class TestBulk:
    """Test bulk handling."""

    @pytest.mark.asyncio
    async def test_summary(self, make_handler):
        """Test bulk results count recovered and failed errors."""
        handler = make_handler()

        result = await handler.handle_bulk(
            [NetworkError.from_status(503), ValidationError.missing_required("name"), ValueError("x")]
        )

        assert result.total == 3
        assert result.handled == 3
        assert result.recovered == 1
        assert result.failed == 2
        assert result.summary.startswith("3 errors (1 recoverable)")

    @pytest.mark.asyncio
    async def test_rate_limited_items_not_handled(self, make_handler):
        handler = make_handler(rate_limit={"max_per_window": 1})

        result = await handler.handle_bulk([boom(), boom()])

        assert result.total == 2
        assert result.handled == 1


class TestFatal:
    """Test fatal error handling."""

    def test_fatal_banner_and_exit(self, make_handler, exits, stdout_text, stderr_text):
        """Test fatal errors render a CLI banner regardless of format and exit with 1."""
        handler = make_handler(output_format="json")

        result = handler.handle_fatal(RuntimeError("disk exploded"))

        assert exits == [1]
        assert "FATAL ERROR" in stderr_text()
        assert "disk exploded" in stderr_text()
        assert stdout_text() == ""
        assert result.error.code == "FATAL_ERROR"
        assert result.error.severity == ErrorSeverity.FATAL
        assert not result.error.recoverable
        assert result.error.context["fatal_type"] == "uncaught_exception"
        assert handler.get_stats().fatal == 1

    def test_fatal_bypasses_rate_limit(self, make_handler, exits):
        handler = make_handler(rate_limit={"max_per_window": 1}, exit_on_fatal=False)

        for _ in range(3):
            handler.handle_fatal(RuntimeError("again"))

        assert handler.get_stats().fatal == 3
        assert exits == []

    def test_fatal_event(self, make_handler):
        handler = make_handler(exit_on_fatal=False)
        events = []
        handler.subscribe(ErrorEventType.FATAL, events.append)

        handler.handle_fatal(boom(), "startup")

        assert events[0].payload == {"fatal_type": "startup"}
        assert events[0].error.code == "GENERATOR_FAILED"

    def test_excepthook(self, make_handler, exits, stderr_text):
        """Test uncaught exceptions become fatal errors."""
        handler = make_handler()

        handler.excepthook(ValueError, ValueError("uncaught"), None)

        assert exits == [1]
        assert "uncaught" in stderr_text()

    def test_excepthook_keyboard_interrupt(self, make_handler, exits, monkeypatch):
        """Test interrupts go to the default hook."""
        handler = make_handler()
        calls = []
        monkeypatch.setattr(sys, "__excepthook__", lambda *args: calls.append(args))

        handler.excepthook(KeyboardInterrupt, KeyboardInterrupt(), None)

        assert len(calls) == 1
        assert exits == []
        assert handler.get_stats().fatal == 0

    def test_loop_exception_handler(self, make_handler, exits):
        """Test event loop failures are handled as unhandled rejections."""
        handler = make_handler()
        loop = asyncio.new_event_loop()
        try:
            handler.loop_exception_handler(
                loop, {"message": "Task exception was never retrieved", "exception": RuntimeError("lost")}
            )
        finally:
            loop.close()

        record = handler.get_recent_errors(1)[0]
        assert record.context["fatal_type"] == "unhandled_rejection"
        assert record.context["loop_message"] == "Task exception was never retrieved"
        assert exits == [1]

    def test_loop_exception_without_exception(self, make_handler):
        handler = make_handler(exit_on_fatal=False)

        handler.loop_exception_handler(None, {"message": "Something odd"})

        assert handler.get_recent_errors(1)[0].code == "FATAL_ASYNC_ERROR"


class TestReports:
    """Test report export."""

    @pytest.mark.asyncio
    async def test_json_report(self, make_handler, tmp_path):
        """Test the JSON report uses camelCase keys."""
        handler = make_handler()
        await handler.handle(boom())
        await handler.handle(NetworkError.from_status(404))

        path = handler.export_report(tmp_path / "reports" / "errors.json")

        data = json.loads(path.read_text())
        assert data["stats"]["total"] == 2
        assert data["stats"]["byCategory"] == {"generation": 1, "network": 1}
        assert data["stats"]["rateLimited"] == 0
        assert "firstSeen" in data["groups"][0]
        assert len(data["recent"]) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fmt,marker", [("markdown", "# Error Report"), ("html", "<h1>Error Report</h1>")])
    async def test_other_formats(self, make_handler, tmp_path, fmt, marker):
        handler = make_handler()
        await handler.handle(boom())

        path = handler.export_report(tmp_path / f"report.{fmt}", fmt)

        assert marker in path.read_text()

    def test_unknown_format(self, make_handler, tmp_path):
        handler = make_handler()

        with pytest.raises(ValueError, match="Unsupported report format"):
            handler.export_report(tmp_path / "report.xml", "xml")

    def test_unwritable_target(self, make_handler, tmp_path):
        """Test write failures surface as file system errors."""
        handler = make_handler()
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")

        with pytest.raises(FileSystemError):
            handler.export_report(blocker / "report.json")


class TestLogFile:
    """Test the per-error log file."""

    @pytest.mark.asyncio
    async def test_one_line_per_error(self, make_handler, tmp_path):
        """Test each handled error appends one formatted line and nothing else."""
        log_file = tmp_path / "logs" / "errors.log"
        handler = make_handler(log_file=log_file)

        await handler.handle(boom(), {"phase": "render"})
        await handler.handle(boom("CODE_B"))
        handler.close()

        lines = log_file.read_text().splitlines()
        assert len(lines) == 2
        assert lines[0].endswith("[ERROR] [GENERATOR_FAILED] boom (render)")
        assert "[CODE_B]" in lines[1]


class TestMonitoring:
    """Test monitoring dispatch through the handler."""

    @pytest.mark.asyncio
    async def test_sync_sink(self, make_handler):
        records = []
        handler = make_handler(monitoring_sink=records.append)

        result = await handler.handle(boom())

        assert records[0]["id"] == result.error.id
        assert "stack" not in records[0]

    @pytest.mark.asyncio
    async def test_async_sink_flushed(self, make_handler):
        """Test async sinks run in the background until flushed."""
        records = []

        async def sink(record):
            await asyncio.sleep(0)
            records.append(record["code"])

        handler = make_handler(monitoring_sink=sink, include_stack=True)

        await handler.handle(boom())
        await handler.flush()

        assert records == ["GENERATOR_FAILED"]

    @pytest.mark.asyncio
    async def test_failing_sink(self, make_handler):
        def sink(record):
            raise RuntimeError("collector down")

        handler = make_handler(monitoring_sink=sink)

        assert await handler.handle(boom()) is not None


class TestDecorator:
    """Test with_error_handling."""

    def test_sync_wraps(self):
        """Test unexpected exceptions are wrapped with the given code."""

        @with_error_handling("GENERATOR_FAILED")
        def generate():
            raise KeyError("schema")

        with pytest.raises(GeneratorError) as exc_info:
            generate()

        assert exc_info.value.code == "GENERATOR_FAILED"
        assert exc_info.value.operation == "generate"
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert "Error in generate" in exc_info.value.message

    def test_taxonomy_errors_pass_through(self):
        original = ValidationError.missing_required("name")

        @with_error_handling()
        def validate():
            raise original

        with pytest.raises(ValidationError) as exc_info:
            validate()

        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_async_wraps(self):
        @with_error_handling("TEMPLATE_RENDER_FAILED", "Rendering failed")
        async def render():
            raise RuntimeError("bad template")

        with pytest.raises(GeneratorError) as exc_info:
            await render()

        assert exc_info.value.message == "Rendering failed"
        assert exc_info.value.category == ErrorCategory.TEMPLATE

    def test_return_value(self):
        @with_error_handling()
        def ok():
            return 42

        assert ok() == 42


class TestGlobalHandler:
    """Test the shared handler accessors."""

    def test_get_and_set(self, make_handler):
        handler = make_handler()

        set_error_handler(handler)

        assert get_error_handler() is handler

    def test_created_lazily(self, make_handler):
        set_error_handler(None)

        first = get_error_handler()

        assert get_error_handler() is first
