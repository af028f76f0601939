"""Tests for the recovery dispatcher."""

import random

import pytest

from oasgen.errors import (
    BackoffPolicy,
    ErrorCategory,
    FileSystemError,
    GeneratorError,
    NetworkError,
    RecoveryAction,
    RecoveryDispatcher,
    RecoveryOutcome,
    ValidationError,
)


@pytest.fixture
def dispatcher(clock):
    return RecoveryDispatcher(BackoffPolicy(jitter=False), clock=clock)


class TestNetworkRecovery:
    """Test the default network strategy."""

    @pytest.mark.asyncio
    async def test_retry_with_backoff(self, dispatcher):
        """Test successive failures back off exponentially until the budget is spent."""
        error = NetworkError.from_status(503, "https://api.example.com/spec")

        outcomes = [await dispatcher.dispatch(error) for _ in range(4)]

        assert [o.action for o in outcomes] == [
            RecoveryAction.RETRY,
            RecoveryAction.RETRY,
            RecoveryAction.RETRY,
            RecoveryAction.FAIL,
        ]
        assert [o.delay_ms for o in outcomes[:3]] == [1000, 2000, 4000]
        assert [o.attempt for o in outcomes] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_retry_after_for_rate_limit(self, dispatcher):
        """Test HTTP 429 uses the Retry-After delay."""
        error = NetworkError.from_status(429, retry_after="12")

        outcome = await dispatcher.dispatch(error)

        assert outcome.action == RecoveryAction.RETRY
        assert outcome.delay_ms == 12000

    @pytest.mark.asyncio
    async def test_non_retryable(self, dispatcher):
        """Test client errors fail without touching the circuit."""
        error = NetworkError.from_status(404)

        outcome = await dispatcher.dispatch(error)

        assert outcome.action == RecoveryAction.FAIL
        assert dispatcher.get_circuit_state(error.fingerprint) is None

    @pytest.mark.asyncio
    async def test_circuit_bookkeeping(self, dispatcher, clock):
        """Test failures are recorded per fingerprint and the circuit stays closed."""
        error = NetworkError.from_status(500, "https://api.example.com/spec")

        await dispatcher.dispatch(error)
        await dispatcher.dispatch(error)
        circuit = dispatcher.get_circuit_state(error.fingerprint)

        assert circuit.state == "closed"
        assert circuit.failure_count == 2
        assert circuit.last_failure_time == clock.now
        assert circuit.next_retry_time == clock.now + 2000

    @pytest.mark.asyncio
    async def test_circuit_count_decays(self, dispatcher, clock):
        """Test a fingerprint quiet long enough after its retry gets a fresh budget."""
        error = NetworkError.from_status(503, "https://api.example.com/spec")
        for _ in range(4):
            await dispatcher.dispatch(error)
        assert dispatcher.get_circuit_state(error.fingerprint).failure_count == 4

        clock.advance(8000 + dispatcher.backoff.max_delay_ms + 1)
        outcome = await dispatcher.dispatch(error)

        assert outcome.action == RecoveryAction.RETRY
        assert outcome.attempt == 1

    @pytest.mark.asyncio
    async def test_configured_retry_budget(self, clock):
        """Test the dispatcher's backoff budget decides when retries stop."""
        dispatcher = RecoveryDispatcher(BackoffPolicy(jitter=False, max_retries=5), clock=clock)
        error = NetworkError.from_status(503, "https://api.example.com/spec")

        outcomes = [await dispatcher.dispatch(error) for _ in range(6)]

        assert [o.action for o in outcomes] == [RecoveryAction.RETRY] * 5 + [RecoveryAction.FAIL]

    @pytest.mark.asyncio
    async def test_waits_when_enabled(self, clock):
        """Test the dispatcher sleeps for the delay when waiting is enabled."""
        slept = []

        async def fake_sleep(seconds):
            slept.append(seconds)

        dispatcher = RecoveryDispatcher(
            BackoffPolicy(jitter=True), wait=True, clock=clock, sleep=fake_sleep, rng=random.Random(1)
        )
        outcome = await dispatcher.dispatch(NetworkError.from_status(502))

        assert slept == [outcome.delay_ms / 1000]
        assert 500 <= outcome.delay_ms <= 1500


class TestFileSystemRecovery:
    """Test the default file system strategy."""

    @pytest.mark.asyncio
    async def test_disk_full_prompts(self, dispatcher):
        """Test ENOSPC asks the user, offering alternative locations."""
        outcome = await dispatcher.dispatch(FileSystemError.disk_full("/tmp/out/a.ts", 100, 1))

        assert outcome.action == RecoveryAction.PROMPT
        assert outcome.payload["alternatives"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code", ["EACCES", "EPERM"])
    async def test_permission_escalates(self, dispatcher, code):
        """Test permission failures escalate."""
        outcome = await dispatcher.dispatch(FileSystemError("denied", code, path="/srv/out"))

        assert outcome.action == RecoveryAction.ESCALATE

    @pytest.mark.asyncio
    async def test_other_codes_fail(self, dispatcher):
        outcome = await dispatcher.dispatch(FileSystemError.file_busy("/srv/out/a.ts"))

        assert outcome.action == RecoveryAction.FAIL


class TestValidationRecovery:
    """Test the default validation strategy."""

    @pytest.mark.asyncio
    async def test_suggest(self, dispatcher):
        """Test suggestions are returned."""
        error = ValidationError.missing_required("name", "/pet")

        outcome = await dispatcher.dispatch(error)

        assert outcome.action == RecoveryAction.SUGGEST
        assert outcome.suggestions == ["Add the required field 'name'"]

    @pytest.mark.asyncio
    async def test_no_suggestions_fails(self, dispatcher):
        outcome = await dispatcher.dispatch(ValidationError("Invalid"))

        assert outcome.action == RecoveryAction.FAIL


class TestCustomStrategies:
    """Test strategy registration."""

    @pytest.mark.asyncio
    async def test_missing_strategy(self, dispatcher):
        """Test categories without a strategy return none."""
        outcome = await dispatcher.dispatch(GeneratorError("x", "TEMPLATE_BROKEN"))

        assert outcome.action == RecoveryAction.NONE
        assert not outcome.succeeded

    @pytest.mark.asyncio
    async def test_sync_strategy(self, dispatcher):
        """Test plain functions can be strategies."""
        dispatcher.register(ErrorCategory.TEMPLATE, lambda error: RecoveryOutcome(RecoveryAction.SUGGEST, suggestions=["fix it"]))

        outcome = await dispatcher.dispatch(GeneratorError("x", "TEMPLATE_BROKEN"))

        assert outcome.suggestions == ["fix it"]

    @pytest.mark.asyncio
    async def test_failing_strategy(self, dispatcher):
        """Test a raising strategy yields a fail outcome."""

        async def broken(error):
            raise RuntimeError("strategy exploded")

        dispatcher.register("network", broken)

        outcome = await dispatcher.dispatch(NetworkError.from_status(503))

        assert outcome.action == RecoveryAction.FAIL
        assert "strategy exploded" in outcome.message
