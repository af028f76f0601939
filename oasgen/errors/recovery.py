"""Recovery decisions for recoverable errors.

The dispatcher never re-runs the failed operation. It returns a
``RecoveryOutcome`` telling the caller whether to retry (and after how
long), prompt the user, escalate, or act on suggestions.
"""

from __future__ import annotations

import asyncio
import inspect
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

from .backoff import BackoffPolicy
from .base import ErrorCategory, GeneratorError
from .rate_limit import monotonic_ms
from .types import FileSystemError, NetworkError


class RecoveryAction(str, Enum):
    RETRY = "retry"
    PROMPT = "prompt"
    ESCALATE = "escalate"
    SUGGEST = "suggest"
    FAIL = "fail"
    NONE = "none"


@dataclass
class RecoveryOutcome:
    """Result of a recovery attempt."""

    action: RecoveryAction
    delay_ms: Optional[int] = None
    message: Optional[str] = None
    suggestions: List[str] = field(default_factory=list)
    attempt: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """Whether a recovery path other than giving up was chosen."""
        return self.action not in (RecoveryAction.FAIL, RecoveryAction.NONE)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"action": self.action.value}
        if self.delay_ms is not None:
            data["delayMs"] = self.delay_ms
        if self.message:
            data["message"] = self.message
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        if self.attempt is not None:
            data["attempt"] = self.attempt
        if self.payload:
            data["payload"] = dict(self.payload)
        return data


@dataclass
class CircuitState:
    """Failure bookkeeping for one fingerprint.

    The state never opens; it records when the next retry is due. The count
    starts over once a full ``max_delay_ms`` has passed after
    ``next_retry_time`` without another failure.
    """

    state: str = "closed"
    failure_count: int = 0
    last_failure_time: Optional[float] = None
    next_retry_time: Optional[float] = None


RecoveryStrategy = Callable[[GeneratorError], Union[RecoveryOutcome, Awaitable[RecoveryOutcome]]]


class RecoveryDispatcher:
    """Routes recoverable errors to a strategy registered for their category."""

    def __init__(
        self,
        backoff: Optional[BackoffPolicy] = None,
        *,
        wait: bool = False,
        clock: Optional[Callable[[], float]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        """Initialize dispatcher.

        Args:
            backoff: Backoff policy for network retries
            wait: Sleep for the computed delay before returning a retry outcome
            clock: Millisecond clock for circuit bookkeeping
            sleep: Coroutine used when ``wait`` is set
            rng: Random source for jitter
        """
        self.backoff = backoff or BackoffPolicy()
        self.wait = wait
        self._clock = clock or monotonic_ms
        self._sleep = sleep
        self._rng = rng
        self._strategies: Dict[str, RecoveryStrategy] = {}
        self._circuits: Dict[str, CircuitState] = {}
        self._lock = threading.RLock()

        self.register(ErrorCategory.NETWORK, self._recover_network)
        self.register(ErrorCategory.FILESYSTEM, self._recover_filesystem)
        self.register(ErrorCategory.VALIDATION, self._recover_validation)

    def register(self, category: Union[ErrorCategory, str], strategy: RecoveryStrategy) -> None:
        """Register (or replace) the strategy for a category."""
        key = ErrorCategory(category).value if isinstance(category, ErrorCategory) else str(category)
        with self._lock:
            self._strategies[key] = strategy
        logger.debug(f"Registered recovery strategy for {key}")

    def has_strategy(self, category: Union[ErrorCategory, str]) -> bool:
        key = category.value if isinstance(category, ErrorCategory) else str(category)
        return key in self._strategies

    async def dispatch(self, error: GeneratorError) -> RecoveryOutcome:
        """Run the strategy for ``error``'s category.

        Returns a ``none`` outcome when no strategy is registered. A strategy
        that raises yields a ``fail`` outcome.
        """
        strategy = self._strategies.get(error.category.value)
        if strategy is None:
            return RecoveryOutcome(action=RecoveryAction.NONE, message=f"No recovery strategy for {error.category.value}")

        try:
            outcome = strategy(error)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        except Exception as e:
            logger.warning(f"Recovery strategy for {error.category.value} failed: {e}")
            return RecoveryOutcome(action=RecoveryAction.FAIL, message=f"Recovery strategy failed: {e}")

        if not isinstance(outcome, RecoveryOutcome):
            logger.warning(f"Recovery strategy for {error.category.value} returned {type(outcome).__name__}")
            return RecoveryOutcome(action=RecoveryAction.FAIL, message="Recovery strategy returned no outcome")

        logger.info(f"Recovery for {error.code}: {outcome.action.value}")
        return outcome

    def record_failure(self, fingerprint: str) -> CircuitState:
        """Count a failure for ``fingerprint`` and schedule the next retry.

        A fingerprint quiet for ``max_delay_ms`` past its scheduled retry
        starts counting from one again.
        """
        now = self._clock()
        with self._lock:
            circuit = self._circuits.setdefault(fingerprint, CircuitState())
            if circuit.next_retry_time is not None and now > circuit.next_retry_time + self.backoff.max_delay_ms:
                logger.debug(f"Circuit for {fingerprint} quiet since {circuit.last_failure_time}; resetting count")
                circuit.failure_count = 0
            circuit.failure_count += 1
            circuit.last_failure_time = now
            circuit.next_retry_time = now + self.backoff.compute_delay(circuit.failure_count, jitter=False)
            return circuit

    def get_circuit_state(self, fingerprint: str) -> Optional[CircuitState]:
        with self._lock:
            return self._circuits.get(fingerprint)

    def reset(self, fingerprint: Optional[str] = None) -> None:
        with self._lock:
            if fingerprint is None:
                self._circuits.clear()
            else:
                self._circuits.pop(fingerprint, None)

    async def _recover_network(self, error: GeneratorError) -> RecoveryOutcome:
        if not isinstance(error, NetworkError) or not error.retryable:
            return RecoveryOutcome(action=RecoveryAction.FAIL, message="Network error is not retryable")

        attempt = self.record_failure(error.fingerprint).failure_count
        limit = error.retry_limit(self.backoff.max_retries)
        if not self.backoff.should_retry(attempt, limit):
            return RecoveryOutcome(
                action=RecoveryAction.FAIL,
                attempt=attempt,
                message=f"Max retry attempts ({limit}) exceeded",
            )

        if error.is_rate_limited and error.retry_after_ms is not None:
            delay = error.retry_after_ms
        else:
            delay = self.backoff.compute_delay(attempt, rng=self._rng)

        if self.wait and delay > 0:
            await self._sleep(delay / 1000)

        return RecoveryOutcome(
            action=RecoveryAction.RETRY,
            delay_ms=delay,
            attempt=attempt,
            message=f"Retrying after {delay} ms (attempt {attempt}/{limit})",
        )

    async def _recover_filesystem(self, error: GeneratorError) -> RecoveryOutcome:
        code = error.system_code if isinstance(error, FileSystemError) else None
        if code == "ENOSPC":
            alternatives = [a.path for a in error.diagnostics.alternatives]
            return RecoveryOutcome(
                action=RecoveryAction.PROMPT,
                message="Insufficient disk space. Free up space or choose another output directory.",
                suggestions=alternatives,
                payload={"alternatives": alternatives},
            )
        if code in ("EACCES", "EPERM"):
            commands = [s.command for s in error.diagnostics.solutions if s.command]
            return RecoveryOutcome(
                action=RecoveryAction.ESCALATE,
                message="Permission denied. Fix permissions or run with elevated privileges.",
                suggestions=commands,
                payload={"commands": commands},
            )
        return RecoveryOutcome(action=RecoveryAction.FAIL, message=f"No recovery for {code or error.code}")

    async def _recover_validation(self, error: GeneratorError) -> RecoveryOutcome:
        suggestions = error.suggestions
        if suggestions:
            return RecoveryOutcome(action=RecoveryAction.SUGGEST, suggestions=list(suggestions))
        return RecoveryOutcome(action=RecoveryAction.FAIL, message="No suggestions available")
