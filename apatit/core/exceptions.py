"""APATIT exception taxonomy.

Every custom exception inherits from :class:`ApatitError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    ApatitError
    ├── ConfigError
    ├── UpstreamError
    │   ├── TransportError
    │   ├── UpstreamStatusError
    │   ├── DecodeError
    │   ├── UpstreamUnavailableError
    │   └── NoDataError
    ├── TaskNotFoundError
    └── OrchestratorError

Retry policy lives in :mod:`apatit.upstream.http_client`: only
:class:`TransportError` and :class:`UpstreamStatusError` are retried.  Once the
retry budget is spent the last one is wrapped in
:class:`UpstreamUnavailableError`.

Usage:

    from apatit.core.exceptions import DecodeError

    raise DecodeError("get_mps", "expected a JSON array") from exc
"""

from __future__ import annotations

__all__ = [
    "ApatitError",
    # Config
    "ConfigError",
    # Upstream
    "UpstreamError",
    "TransportError",
    "UpstreamStatusError",
    "DecodeError",
    "UpstreamUnavailableError",
    "NoDataError",
    # Exporter construction
    "TaskNotFoundError",
    # Orchestrator
    "OrchestratorError",
]

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class ApatitError(Exception):
    """Root exception for all APATIT errors."""


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(ApatitError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - ``API_KEY`` is not set.
        - ``TASK_IDS`` is empty.
    """


# ---------------------------------------------------------------------------
# Upstream layer
# ---------------------------------------------------------------------------


class UpstreamError(ApatitError):
    """Base class for all errors talking to the Ping-Admin API.

    Messages must never contain the raw API key; callers pass text through
    :func:`~apatit.core.logging_config.mask_api_key` first.

    Args:
        operation: Upstream capability that failed (e.g. ``"get_mps"``).
        message: Human-readable error description.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"[{operation}] {message}")


class TransportError(UpstreamError):
    """Network-level failure (connect/read timeout, refused connection).

    Retryable.
    """


class UpstreamStatusError(UpstreamError):
    """The API answered with a non-success HTTP status.  Retryable.

    Args:
        operation: Upstream capability that failed.
        status_code: HTTP status code returned by the API.
    """

    def __init__(self, operation: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(operation, f"unexpected status code: {status_code}")


class DecodeError(UpstreamError):
    """The response body is not valid JSON or does not have the expected shape.

    Not retried: a structurally broken payload fails the whole call.
    """


class UpstreamUnavailableError(UpstreamError):
    """Raised when every attempt of a call failed.

    Args:
        operation: Upstream capability that failed.
        attempts: Number of attempts that were made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, operation: str, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(operation, f"gave up after {attempts} attempt(s): {last_error}")


class NoDataError(UpstreamError):
    """The API returned zero rows where at least one was expected.

    Logged and degraded to empty output by callers; never fatal.
    """


# ---------------------------------------------------------------------------
# Exporter construction
# ---------------------------------------------------------------------------


class TaskNotFoundError(ApatitError):
    """A configured task ID is absent from the upstream task listing.

    Fatal to building that one task's exporter, not to the process.

    Args:
        task_id: The configured task identifier that was not found.
    """

    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"Task with ID {task_id} not found in provided metadata")


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(ApatitError):
    """Raised for errors originating in the scheduling or wiring layer.

    Examples:
        - No exporter could be built at startup.
    """
