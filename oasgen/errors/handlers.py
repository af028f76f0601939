"""Central error handler for the generator pipeline.

``ErrorHandler`` is the single entry point collaborators hand failures to.
It normalizes, rate limits, aggregates, recovers, notifies, logs, exports
and renders each error, in that order.
"""

from __future__ import annotations

import asyncio
import inspect
import sys
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from functools import wraps
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set, TypeVar, Union

from loguru import logger
from rich.console import Console
from rich.panel import Panel

from oasgen.config.schemas import ErrorHandlingConfig

from .aggregator import ErrorAggregator, ErrorGroup
from .backoff import BackoffPolicy
from .base import DEFAULT_CODE, ErrorCategory, ErrorSeverity, GeneratorError
from .events import ErrorEvent, ErrorEventBus, ErrorEventType, EventCallback
from .formatters import OutputFormat, format_cli, format_error, format_log_line, format_summary, to_json_dict
from .monitoring import HttpMonitoringSink, MonitoringSink
from .rate_limit import RateLimiter
from .recovery import RecoveryDispatcher, RecoveryOutcome, RecoveryStrategy
from .reports import REPORT_RECENT_LIMIT, ErrorReport, ErrorStats, GroupSummary, RecentEntry
from .types import FileSystemError

T = TypeVar("T")

ErrorCallback = Callable[[GeneratorError], Union[None, Awaitable[None]]]

ALL_ERRORS = "*"
ERROR_SINK_KEY = "error_sink"

SEVERITY_LOG_LEVELS = {
    ErrorSeverity.INFO: "INFO",
    ErrorSeverity.WARNING: "WARNING",
    ErrorSeverity.ERROR: "ERROR",
    ErrorSeverity.FATAL: "CRITICAL",
}


@dataclass
class HandleResult:
    """Outcome of handling one error."""

    error: GeneratorError
    recovery: Optional[RecoveryOutcome] = None
    output: Optional[str] = None

    @property
    def recovered(self) -> bool:
        return self.recovery is not None and self.recovery.succeeded


@dataclass
class BulkResult:
    total: int
    handled: int
    recovered: int
    failed: int
    results: List[HandleResult] = field(default_factory=list)
    summary: str = ""


class ErrorHandler:
    """Classifies, aggregates and recovers errors raised during generation."""

    def __init__(
        self,
        config: Optional[ErrorHandlingConfig] = None,
        *,
        console: Optional[Console] = None,
        error_console: Optional[Console] = None,
        monitoring_sink: Optional[MonitoringSink] = None,
        clock: Optional[Callable[[], float]] = None,
        exit_func: Callable[[int], Any] = sys.exit,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize error handler.

        Args:
            config: Error handling configuration
            console: Console for non-CLI output formats (stdout)
            error_console: Console for CLI output and fatal banners (stderr)
            monitoring_sink: Callable receiving the JSON form of each error
            clock: Millisecond clock shared by rate limiter and circuits
            exit_func: Called with status 1 after a fatal error
            sleep: Coroutine used for backoff waits
        """
        self.config = config or ErrorHandlingConfig()
        self.console = console or Console()
        self.error_console = error_console or Console(stderr=True)
        self._exit = exit_func

        self.backoff = BackoffPolicy(**self.config.backoff.model_dump())
        self.rate_limiter = RateLimiter(
            window_ms=self.config.rate_limit.window_ms,
            max_per_window=self.config.rate_limit.max_per_window,
            clock=clock,
        )
        self.aggregator = ErrorAggregator(
            history_limit=self.config.history_limit,
            sample_limit=self.config.group_sample_limit,
        )
        self.recovery = RecoveryDispatcher(
            self.backoff,
            wait=self.config.recovery_wait,
            clock=clock,
            sleep=sleep,
        )
        self.events = ErrorEventBus()

        if monitoring_sink is None and self.config.monitoring.endpoint:
            monitoring_sink = HttpMonitoringSink(
                self.config.monitoring.endpoint,
                timeout=self.config.monitoring.timeout,
                headers=self.config.monitoring.headers,
            )
        self.monitoring_sink = monitoring_sink

        self._handlers: Dict[str, List[ErrorCallback]] = defaultdict(list)
        self._lock = threading.RLock()
        self._pending: Set[asyncio.Future] = set()
        self._reset_stats()

        self._sink_token = f"errors-{id(self)}"
        self._sink_logger = logger.bind(**{ERROR_SINK_KEY: self._sink_token})
        self._log_sink_id: Optional[int] = None
        if self.config.log_file:
            self._setup_log_sink(Path(self.config.log_file))

        logger.debug(
            f"Error handler initialized: format={self.config.output_format}, "
            f"recovery={'on' if self.config.recovery_enabled else 'off'}, "
            f"rate limit={self.config.rate_limit.max_per_window}/{self.config.rate_limit.window_ms}ms"
        )

    def _reset_stats(self) -> None:
        with self._lock:
            self._total = 0
            self._recovered = 0
            self._fatal = 0
            self._rate_limited = 0
            self._by_category: Counter = Counter()
            self._by_severity: Counter = Counter()
            self._by_code: Counter = Counter()

    def _setup_log_sink(self, path: Path) -> None:
        """Append one line per handled error to ``path``."""
        path.parent.mkdir(parents=True, exist_ok=True)
        token = self._sink_token
        self._log_sink_id = logger.add(
            path,
            format="{message}",
            level="DEBUG",
            filter=lambda record: record["extra"].get(ERROR_SINK_KEY) == token,
        )

    # ------------------------------------------------------------------
    # Handling
    # ------------------------------------------------------------------

    async def handle(
        self,
        error: Any,
        context: Optional[Mapping[str, Any]] = None,
    ) -> Optional[HandleResult]:
        """Handle one error.

        Returns ``None`` when the error's fingerprint is rate limited.
        """
        record = GeneratorError.wrap(error)
        if context:
            record.add_context(context)

        if not self.rate_limiter.check(record.fingerprint):
            with self._lock:
                self._rate_limited += 1
            await self._publish(ErrorEventType.RATE_LIMITED, record, {"fingerprint": record.fingerprint})
            return None

        group = self._store(record)
        if record.recoverable:
            logger.warning(f"[{record.code}] {record.message}")
        else:
            logger.error(f"[{record.code}] {record.message}")
        await self._publish(
            ErrorEventType.HANDLED,
            record,
            {"fingerprint": record.fingerprint, "count": group.count},
        )

        outcome: Optional[RecoveryOutcome] = None
        if record.recoverable and self.config.recovery_enabled:
            outcome = await self.recovery.dispatch(record)
            if outcome.succeeded:
                with self._lock:
                    self._recovered += 1
                await self._publish(ErrorEventType.RECOVERED, record, {"outcome": outcome.to_dict()})

        await self._run_custom_handlers(record)
        self._write_log_line(record)
        self._dispatch_monitoring(record)
        output = self._emit(record)

        return HandleResult(error=record, recovery=outcome, output=output)

    def handle_sync(self, error: Any, context: Optional[Mapping[str, Any]] = None) -> Optional[HandleResult]:
        """Run ``handle`` on a fresh event loop; for callers without one."""
        return asyncio.run(self.handle(error, context))

    async def handle_bulk(
        self,
        errors: Iterable[Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> BulkResult:
        """Handle several errors in order and summarize them by category."""
        items = list(errors)
        results: List[HandleResult] = []
        for item in items:
            result = await self.handle(item, context)
            if result is not None:
                results.append(result)

        recovered = sum(1 for result in results if result.recovered)
        return BulkResult(
            total=len(items),
            handled=len(results),
            recovered=recovered,
            failed=len(results) - recovered,
            results=results,
            summary=format_summary([result.error for result in results], markup=False),
        )

    def handle_fatal(
        self,
        error: Any,
        fatal_type: str = "uncaught_exception",
        context: Optional[Mapping[str, Any]] = None,
    ) -> HandleResult:
        """Report an unrecoverable failure and exit when ``exit_on_fatal`` is set.

        Rate limiting is bypassed and the CLI format is always used.
        """
        record = GeneratorError.wrap(error, code="FATAL_ERROR")
        record.severity = ErrorSeverity.FATAL
        record.recoverable = False
        record.add_context("fatal_type", fatal_type)
        if context:
            record.add_context(context)

        self._store(record)
        with self._lock:
            self._fatal += 1
        for pending in self.events.publish(ErrorEvent(ErrorEventType.FATAL, record, {"fatal_type": fatal_type})):
            self._schedule(pending)

        self._write_log_line(record)
        self._dispatch_monitoring(record)

        text = format_cli(record, debug=self.config.debug, documentation_url=self._documentation_url(record))
        try:
            self.error_console.print(
                Panel(text, title="[bold red]FATAL ERROR[/bold red]", border_style="red"),
                highlight=False,
            )
        except Exception as e:
            logger.warning(f"Failed to render fatal error: {e}")
        logger.critical(f"FATAL ({fatal_type}): [{record.code}] {record.message}")

        if self.config.exit_on_fatal:
            self._exit(1)
        return HandleResult(error=record, output=text)

    def _store(self, record: GeneratorError) -> ErrorGroup:
        group = self.aggregator.add(record)
        with self._lock:
            self._total += 1
            self._by_category[record.category.value] += 1
            self._by_severity[record.severity.value] += 1
            self._by_code[record.code] += 1
        return group

    async def _publish(self, event_type: ErrorEventType, record: GeneratorError, payload: Dict[str, Any]) -> None:
        pending = self.events.publish(ErrorEvent(event_type, record, payload))
        for awaitable in pending:
            try:
                await awaitable
            except Exception as e:
                logger.error(f"Async subscriber failed for {event_type.value}: {e}")

    async def _run_custom_handlers(self, record: GeneratorError) -> None:
        with self._lock:
            handlers = [
                *self._handlers.get(record.category.value, []),
                *self._handlers.get(record.code, []),
                *self._handlers.get(ALL_ERRORS, []),
            ]
        for handler in handlers:
            try:
                result = handler(record)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Custom error handler {getattr(handler, '__name__', handler)!r} failed: {e}")

    def _write_log_line(self, record: GeneratorError) -> None:
        if self._log_sink_id is None:
            return
        try:
            self._sink_logger.log(SEVERITY_LOG_LEVELS[record.severity], format_log_line(record))
        except Exception as e:
            logger.warning(f"Failed to write error log line: {e}")

    def _dispatch_monitoring(self, record: GeneratorError) -> None:
        if self.monitoring_sink is None:
            return
        try:
            result = self.monitoring_sink(to_json_dict(record, include_stack=self.config.include_stack))
        except Exception as e:
            logger.warning(f"Monitoring sink failed for {record.id}: {e}")
            return
        if inspect.isawaitable(result):
            self._schedule(result)

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        """Run ``awaitable`` in the background on the running loop, or to completion without one."""

        async def _guarded() -> None:
            try:
                await awaitable
            except Exception as e:
                logger.warning(f"Background error task failed: {e}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(_guarded())
            return
        task = loop.create_task(_guarded())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for scheduled monitoring and subscriber tasks."""
        while True:
            pending = [task for task in self._pending if not task.done()]
            if not pending:
                break
            await asyncio.gather(*pending)

    def _documentation_url(self, record: GeneratorError) -> Optional[str]:
        if record.documentation or not self.config.docs_base_url:
            return record.documentation
        return f"{self.config.docs_base_url.rstrip('/')}/{record.code.lower().replace('_', '-')}"

    def _emit(self, record: GeneratorError) -> Optional[str]:
        if not self.config.output_enabled:
            return None
        fmt = OutputFormat.parse(self.config.output_format)
        try:
            text = format_error(
                record,
                fmt,
                debug=self.config.debug,
                include_stack=self.config.include_stack,
                include_schema=self.config.include_schema,
                documentation_url=self._documentation_url(record),
            )
            if fmt is OutputFormat.CLI:
                self.error_console.print(text, highlight=False, emoji=False)
            else:
                self.console.print(text, markup=False, highlight=False, emoji=False, soft_wrap=True)
        except Exception as e:
            logger.warning(f"Failed to render error {record.id}: {e}")
            return None
        return text

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, key: Union[ErrorCategory, str], handler: ErrorCallback) -> None:
        """Run ``handler`` for errors matching a category, a code, or ``"*"``."""
        name = key.value if isinstance(key, ErrorCategory) else str(key)
        with self._lock:
            self._handlers[name].append(handler)
        logger.debug(f"Registered error handler for {name}")

    def register_recovery_strategy(self, category: Union[ErrorCategory, str], strategy: RecoveryStrategy) -> None:
        self.recovery.register(category, strategy)

    def subscribe(self, event_type: Union[ErrorEventType, str], callback: EventCallback) -> str:
        return self.events.subscribe(event_type, callback)

    def unsubscribe(self, subscription_id: str) -> bool:
        return self.events.unsubscribe(subscription_id)

    # ------------------------------------------------------------------
    # Queries and reports
    # ------------------------------------------------------------------

    def get_stats(self) -> ErrorStats:
        with self._lock:
            return ErrorStats(
                total=self._total,
                by_category=dict(self._by_category),
                by_severity=dict(self._by_severity),
                by_code=dict(self._by_code),
                recovered=self._recovered,
                fatal=self._fatal,
                rate_limited=self._rate_limited,
                groups=len(self.aggregator.list_groups()),
                stored=len(self.aggregator),
            )

    def get_groups(self) -> List[ErrorGroup]:
        return self.aggregator.list_groups()

    def get_recent_errors(self, limit: int = 10) -> List[GeneratorError]:
        return self.aggregator.recent(limit)

    def clear(self) -> None:
        """Forget all handled errors, groups, rate limit windows and circuits."""
        self.aggregator.clear()
        self.rate_limiter.reset()
        self.recovery.reset()
        self._reset_stats()
        logger.debug("Error handler state cleared")

    def build_report(self) -> ErrorReport:
        return ErrorReport(
            stats=self.get_stats(),
            groups=[
                GroupSummary(
                    fingerprint=group.fingerprint,
                    category=group.category.value,
                    code=group.code,
                    message=group.message,
                    count=group.count,
                    first_seen=group.first_seen,
                    last_seen=group.last_seen,
                )
                for group in self.aggregator.list_groups()
            ],
            recent=[
                RecentEntry(
                    id=record.id,
                    timestamp=record.timestamp,
                    message=record.message,
                    category=record.category.value,
                    code=record.code,
                )
                for record in self.aggregator.recent(REPORT_RECENT_LIMIT)
            ],
        )

    def export_report(self, path: Union[str, Path], format: str = "json") -> Path:
        """Write the error report to ``path`` as json, markdown or html.

        Raises:
            FileSystemError: If the report cannot be written
        """
        target = Path(path)
        content = self.build_report().render(format)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FileSystemError.from_os_error(e, operation="write", path=target) from e
        logger.info(f"Exported error report to {target}")
        return target

    # ------------------------------------------------------------------
    # Process hooks
    # ------------------------------------------------------------------

    def excepthook(self, exc_type, exc, tb) -> None:
        """Suitable for ``sys.excepthook``."""
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        if exc is not None and exc.__traceback__ is None:
            exc = exc.with_traceback(tb)
        self.handle_fatal(exc, "uncaught_exception")

    def loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        """Suitable for ``loop.set_exception_handler``."""
        exc = context.get("exception")
        message = context.get("message") or "Unhandled exception in event loop"
        if exc is None:
            exc = GeneratorError(message, "FATAL_ASYNC_ERROR")
        self.handle_fatal(exc, "unhandled_rejection", {"loop_message": message})

    def close(self) -> None:
        """Remove the log sink."""
        if self._log_sink_id is not None:
            try:
                logger.remove(self._log_sink_id)
            except ValueError:
                logger.debug(f"Error log sink {self._log_sink_id} was already removed")
            self._log_sink_id = None


# Global handler
_default_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get or create the shared handler instance."""
    global _default_handler
    if _default_handler is None:
        _default_handler = ErrorHandler()
    return _default_handler


def set_error_handler(handler: Optional[ErrorHandler]) -> None:
    global _default_handler
    _default_handler = handler


def with_error_handling(
    code: str = DEFAULT_CODE,
    error_message: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator wrapping unexpected exceptions into taxonomy errors.

    Taxonomy errors are re-raised unchanged; anything else is wrapped with
    ``GeneratorError.wrap`` and raised from the original.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        def _wrap(e: Exception) -> GeneratorError:
            message = error_message or f"Error in {func.__name__}: {e}"
            return GeneratorError.wrap(e, code=code, message=message, operation=func.__name__)

        if inspect.iscoroutinefunction(func):

            @wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                try:
                    return await func(*args, **kwargs)
                except GeneratorError:
                    raise
                except Exception as e:
                    raise _wrap(e) from e

            return async_wrapper

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return func(*args, **kwargs)
            except GeneratorError:
                raise
            except Exception as e:
                raise _wrap(e) from e

        return wrapper

    return decorator
