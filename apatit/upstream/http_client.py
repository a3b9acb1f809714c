"""Async HTTP transport for the Ping-Admin API.

Wraps :class:`httpx.AsyncClient` with:

* **Authentication** — the ``api_key`` query parameter is appended to every
  request; every URL or error text that leaves this module goes through
  :func:`~apatit.core.logging_config.mask_api_key`.
* **Rate limiting** — every attempt (retries included) acquires the shared
  :class:`~apatit.upstream.rate_limiter.RateLimiter`.
* **Jitter** — callers may request a randomised pause in ``[d, 2d]`` before the
  first attempt to desynchronise polling across tasks.
* **Automatic retries** — transport failures and non-success statuses are
  retried via :mod:`tenacity` with a randomised ``[d, 2d]`` pause between
  attempts.  When the attempt budget is spent the last failure is wrapped in
  :class:`~apatit.core.exceptions.UpstreamUnavailableError`.
* **JSON decoding** — a body that is not JSON raises
  :class:`~apatit.core.exceptions.DecodeError` immediately (not retried).

One instance is shared by every exporter for the lifetime of the process so
that the connection pool and the rate-limit window are shared too.

Typical usage::

    from apatit.upstream.http_client import UpstreamHttpClient

    async with UpstreamHttpClient(api_key="...", request_delay=2.0) as http:
        payload = await http.get_json("tm", delayed=True)
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from types import TracebackType
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from apatit.core.exceptions import (
    DecodeError,
    TransportError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from apatit.core.logging_config import mask_api_key
from apatit.core.version import user_agent
from apatit.upstream.rate_limiter import RateLimiter

__all__ = ["DEFAULT_ENDPOINT", "UpstreamHttpClient", "randomized_pause"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

#: Ping-Admin API host.
DEFAULT_ENDPOINT: Final[str] = "https://ping-admin.com"

#: Default connection timeout in seconds.
_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0

#: Default timeout waiting for the first byte of the response body.
_DEFAULT_READ_TIMEOUT: Final[float] = 30.0

#: Default timeout for uploading the request.
_DEFAULT_WRITE_TIMEOUT: Final[float] = 10.0

#: Default total attempts (1 initial + 2 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 3

#: Retried failure types; everything else propagates on the first attempt.
_RETRYABLE: Final[tuple[type[Exception], ...]] = (TransportError, UpstreamStatusError)


def randomized_pause(base: float) -> float:
    """Return a pause duration drawn uniformly from ``[base, 2 * base]``.

    A non-positive *base* disables the pause (returns ``0.0``).
    """
    if base <= 0:
        return 0.0
    return base + random.uniform(0.0, base)


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class UpstreamHttpClient:
    """Async HTTP client shared by every Ping-Admin API call.

    Use as an ``async with`` context manager (preferred) to guarantee the
    underlying connection pool is closed on exit::

        async with UpstreamHttpClient(api_key=key) as http:
            rows = await http.get_json("tasks", delayed=True)

    Args:
        api_key: Ping-Admin API key, sent as the ``api_key`` query parameter.
        base_url: API host.  Defaults to :data:`DEFAULT_ENDPOINT`.
        rate_limiter: Shared limiter; a private 2 req/s limiter is created
            when omitted.
        request_delay: Jitter floor ``d`` in seconds.  Pauses (pre-request and
            between retries) are drawn from ``[d, 2d]``; ``0`` disables them.
        max_attempts: Total attempts including the initial try (≥ 1).
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        write_timeout: Timeout for uploading the request.
        sleep: Coroutine function used for every pause.  Injectable for tests.

    Raises:
        ValueError: If ``max_attempts`` is less than 1.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_ENDPOINT,
        rate_limiter: RateLimiter | None = None,
        request_delay: float = 0.0,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._api_key = api_key
        self._base_url = base_url
        self._rate_limiter = rate_limiter or RateLimiter()
        self._request_delay = request_delay
        self._max_attempts = max_attempts
        self._sleep = sleep
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "UpstreamHttpClient":
        """Open the connection pool and return ``self``."""
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the connection pool on exit."""
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def pause(self) -> None:
        """Sleep for a randomised ``[d, 2d]`` jitter interval."""
        delay = randomized_pause(self._request_delay)
        if delay > 0:
            logger.debug("Pausing %.2f s before next request", delay)
            await self._sleep(delay)

    async def get_json(
        self,
        action: str,
        params: dict[str, Any] | None = None,
        *,
        operation: str | None = None,
        delayed: bool = False,
    ) -> Any:
        """Call ``?a=api&sa=<action>`` and return the decoded JSON body.

        Args:
            action: Ping-Admin ``sa`` sub-action (``"tm"``, ``"tasks"``,
                ``"task_graph_stat"``, ``"task_stat"``).
            params: Extra query parameters (``id``, ``limit``, …).
            operation: Label used in errors and logs; defaults to *action*.
            delayed: Apply a pre-request jitter pause.

        Returns:
            The decoded JSON document.

        Raises:
            UpstreamUnavailableError: Every attempt failed at transport or
                HTTP-status level.
            DecodeError: The body of a successful response is not JSON.
        """
        op = operation or action
        query: dict[str, Any] = {"a": "api", "sa": action, "enc": "utf8", "api_key": self._api_key}
        if params:
            query.update(params)

        if delayed:
            await self.pause()

        response = await self._request_with_retry(op, query)

        try:
            return response.json()
        except ValueError as exc:
            raise DecodeError(op, f"failed to decode JSON response: {exc}") from exc

    async def close(self) -> None:
        """Close the underlying HTTP client and release pooled connections.

        Safe to call multiple times or when no requests have been made yet.
        """
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("UpstreamHttpClient HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Return the open HTTP client, creating it lazily if needed."""
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                follow_redirects=True,
                headers={
                    "Accept": "application/json",
                    "User-Agent": user_agent(),
                },
            )
            logger.debug("UpstreamHttpClient session opened (base_url=%r).", self._base_url)
        return self._http

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        return randomized_pause(self._request_delay)

    async def _request_with_retry(self, operation: str, query: dict[str, Any]) -> httpx.Response:
        """Execute one logical request with tenacity-managed retries.

        Raises:
            UpstreamUnavailableError: All attempts failed with a retryable error.
        """

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Upstream %s: attempt %d/%d failed (%s). Trying to send this request again…",
                operation,
                rs.attempt_number,
                self._max_attempts,
                exc if exc else "?",
            )

        response: httpx.Response | None = None
        try:
            async for attempt in AsyncRetrying(
                wait=self._retry_wait,
                stop=stop_after_attempt(self._max_attempts),
                retry=retry_if_exception_type(_RETRYABLE),
                reraise=True,
                before_sleep=_before_sleep,
                sleep=self._sleep,
            ):
                with attempt:
                    response = await self._single_request(operation, query)
        except _RETRYABLE as exc:
            logger.error(
                "Upstream %s failed after %d attempt(s): %s",
                operation,
                self._max_attempts,
                exc,
            )
            raise UpstreamUnavailableError(operation, self._max_attempts, exc) from exc

        assert response is not None, "tenacity exited without a response or exception"
        return response

    async def _single_request(self, operation: str, query: dict[str, Any]) -> httpx.Response:
        """Perform exactly one rate-limited HTTP GET.

        Raises:
            TransportError: Network-level failure.
            UpstreamStatusError: Non-2xx response.
        """
        client = await self._ensure_client()
        await self._rate_limiter.acquire()

        logger.debug("Sending API request %s", operation)

        try:
            response = await client.request("GET", "/", params=query)
        except httpx.TransportError as exc:
            detail = mask_api_key(str(exc)) or type(exc).__name__
            raise TransportError(operation, f"request failed: {detail}") from exc

        logger.debug(
            "API %s → %d (%.0f ms, %d bytes)",
            operation,
            response.status_code,
            response.elapsed.total_seconds() * 1000 if response.elapsed else 0,
            len(response.content),
        )

        if not response.is_success:
            raise UpstreamStatusError(operation, response.status_code)
        return response
