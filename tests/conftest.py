"""Pytest configuration and shared fixtures for all tests."""

# Add project root to path
import io
import sys
from pathlib import Path

import pytest
from rich.console import Console

sys.path.insert(0, str(Path(__file__).parent.parent))

from oasgen.config import ErrorHandlingConfig
from oasgen.errors import ErrorHandler, set_error_handler


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def make_console() -> Console:
    return Console(file=io.StringIO(), width=200, force_terminal=False, color_system=None)


@pytest.fixture
def clock():
    """Controllable millisecond clock."""
    return FakeClock()


@pytest.fixture
def consoles():
    """Stdout and stderr consoles writing to memory."""
    return make_console(), make_console()


@pytest.fixture
def exits():
    """Exit statuses passed to the handler's exit function."""
    return []


@pytest.fixture
def make_handler(clock, consoles, exits):
    """Factory building handlers wired to in-memory consoles and a fake clock."""
    created = []

    def _make(**overrides):
        monitoring_sink = overrides.pop("monitoring_sink", None)
        config = ErrorHandlingConfig(**overrides)
        console, error_console = consoles
        handler = ErrorHandler(
            config,
            console=console,
            error_console=error_console,
            monitoring_sink=monitoring_sink,
            clock=clock,
            exit_func=exits.append,
        )
        created.append(handler)
        return handler

    yield _make

    for handler in created:
        handler.close()
    set_error_handler(None)


@pytest.fixture
def stdout_text(consoles):
    return lambda: consoles[0].file.getvalue()


@pytest.fixture
def stderr_text(consoles):
    return lambda: consoles[1].file.getvalue()
