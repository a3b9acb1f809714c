"""Smoke tests — verify the test harness itself is wired up correctly.

These tests assert nothing about exporter behaviour.  Their sole purpose is
to confirm:

1. pytest discovers and runs tests in this suite.
2. pytest-asyncio's ``asyncio_mode = "auto"`` setting works (async tests
   run without any decorator).
3. Every apatit package imports without errors.
4. ``configure_logging()`` executes without raising.
5. The exception taxonomy is importable and the hierarchy is intact.
"""

from __future__ import annotations

import asyncio
import logging

import pytest

import apatit
from apatit.core import (
    ApatitError,
    ConfigError,
    DecodeError,
    JsonFormatter,
    NoDataError,
    OrchestratorError,
    TaskNotFoundError,
    TransportError,
    UpstreamError,
    UpstreamStatusError,
    UpstreamUnavailableError,
    configure_logging,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Import & startup smoke
# ---------------------------------------------------------------------------


def test_core_imports_succeed() -> None:
    """All public names exported from ``apatit.core`` are importable."""
    assert configure_logging is not None
    assert JsonFormatter is not None
    assert ApatitError is not None


def test_every_package_imports() -> None:
    """Importing the top-level packages must not raise (no import cycles)."""
    import apatit.orchestrator  # noqa: F401, PLC0415
    import apatit.server  # noqa: F401, PLC0415
    import apatit.storage  # noqa: F401, PLC0415
    import apatit.upstream  # noqa: F401, PLC0415

    assert apatit.__version__ == "1.0.0"


def test_configure_logging_text() -> None:
    """``configure_logging`` runs without raising in text mode."""
    configure_logging(level="INFO", fmt="text", force=True)


def test_configure_logging_json() -> None:
    """``configure_logging`` runs without raising in JSON mode."""
    configure_logging(level="DEBUG", fmt="json", force=True)
    # Restore text mode so subsequent test output remains readable.
    configure_logging(level="DEBUG", fmt="text", force=True)


def test_configure_logging_invalid_level() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_LEVEL"):
        configure_logging(level="VERBOSE", force=True)


def test_configure_logging_invalid_format() -> None:
    with pytest.raises(ValueError, match="Unknown LOG_FORMAT"):
        configure_logging(fmt="xml", force=True)


# ---------------------------------------------------------------------------
# Exception taxonomy
# ---------------------------------------------------------------------------


def test_exception_hierarchy_base() -> None:
    """All custom exceptions are subclasses of ``ApatitError``."""
    for exc_class in (
        ConfigError,
        UpstreamError,
        TransportError,
        UpstreamStatusError,
        DecodeError,
        UpstreamUnavailableError,
        NoDataError,
        TaskNotFoundError,
        OrchestratorError,
    ):
        assert issubclass(exc_class, ApatitError), (
            f"{exc_class.__name__} is not a subclass of ApatitError"
        )


def test_exception_hierarchy_layers() -> None:
    """Upstream failures share one base so exporters can count them uniformly."""
    for exc_class in (
        TransportError,
        UpstreamStatusError,
        DecodeError,
        UpstreamUnavailableError,
        NoDataError,
    ):
        assert issubclass(exc_class, UpstreamError)
    assert not issubclass(TaskNotFoundError, UpstreamError)


def test_upstream_error_formats_operation() -> None:
    exc = DecodeError("get_mps", "expected a JSON array")
    assert exc.operation == "get_mps"
    assert str(exc) == "[get_mps] expected a JSON array"


def test_status_error_carries_status_code() -> None:
    exc = UpstreamStatusError("get_task_stat", 503)
    assert exc.status_code == 503
    assert "503" in str(exc)


def test_unavailable_error_wraps_last_failure() -> None:
    last = TransportError("get_mps", "connection refused")
    exc = UpstreamUnavailableError("get_mps", 3, last)
    assert exc.attempts == 3
    assert exc.last_error is last
    assert "3 attempt(s)" in str(exc)


def test_task_not_found_carries_id() -> None:
    exc = TaskNotFoundError(999)
    assert exc.task_id == 999
    assert "999" in str(exc)


# ---------------------------------------------------------------------------
# Async harness
# ---------------------------------------------------------------------------


async def test_async_test_runs() -> None:
    """Simplest possible async test — confirms pytest-asyncio is operational."""
    await asyncio.sleep(0)
    assert True


async def test_async_exception_is_catchable() -> None:
    async def _failing_coro() -> None:
        raise NoDataError("get_task_stat", "simulated failure")

    with pytest.raises(NoDataError, match="simulated failure"):
        await _failing_coro()
