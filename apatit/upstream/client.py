"""Typed Ping-Admin API client.

One coroutine per upstream capability:

+---------------------------+-------------------------+-------------------------+
| Method                    | ``sa`` action           | Returns                 |
+===========================+=========================+=========================+
| :meth:`get_all_tasks`     | ``tasks``               | ``list[TaskInfo]``      |
+---------------------------+-------------------------+-------------------------+
| :meth:`get_monitoring_points` | ``tm``              | ``list[MonitoringPointInfo]`` |
+---------------------------+-------------------------+-------------------------+
| :meth:`get_task_graph_stat` | ``task_graph_stat``   | ``list[MonitoringPointEntry]`` |
+---------------------------+-------------------------+-------------------------+
| :meth:`get_task_stat`     | ``task_stat``           | ``TaskStatEntry``       |
+---------------------------+-------------------------+-------------------------+

The two listing calls are shared by every task and are jittered before the
first attempt; the per-task calls are jittered by the scheduler instead.

Payloads are validated against the ``*Raw`` models with a
:class:`pydantic.TypeAdapter`; a structural mismatch raises
:class:`~apatit.core.exceptions.DecodeError`.  Numeric sub-fields are then
normalised best-effort by :mod:`apatit.upstream.normalizers`.

Typical usage::

    from apatit.core.settings import Settings
    from apatit.upstream.client import PingAdminClient

    async with PingAdminClient.from_settings(Settings()) as client:
        points = await client.get_monitoring_points()
        entries = await client.get_task_graph_stat(123)
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, Final, TypeVar

from pydantic import TypeAdapter, ValidationError

from apatit.core.exceptions import DecodeError, NoDataError
from apatit.core.models import (
    GraphStatEntryRaw,
    MonitoringPointEntry,
    MonitoringPointInfo,
    MonitoringPointRaw,
    TaskInfo,
    TaskRaw,
    TaskStatEntry,
    TaskStatRaw,
)
from apatit.core.settings import Settings
from apatit.upstream.http_client import UpstreamHttpClient
from apatit.upstream.normalizers import (
    to_monitoring_point_entry,
    to_monitoring_point_info,
    to_task_info,
    to_task_stat_entry,
)
from apatit.upstream.rate_limiter import RateLimiter

__all__ = [
    "PingAdminClient",
    "OP_GET_ALL_TASKS",
    "OP_GET_MPS",
    "OP_GET_TASK_GRAPH_STAT",
    "OP_GET_TASK_STAT",
]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# ---------------------------------------------------------------------------
# Operation names (used as ``error_type`` metric label and in error messages)
# ---------------------------------------------------------------------------

OP_GET_ALL_TASKS: Final[str] = "get_all_tasks"
OP_GET_MPS: Final[str] = "get_mps"
OP_GET_TASK_GRAPH_STAT: Final[str] = "get_task_graph_stat"
OP_GET_TASK_STAT: Final[str] = "get_task_stat"

#: ``task_stat`` rows requested per call.
_TASK_STAT_LIMIT: Final[int] = 100

_TASKS_ADAPTER: Final = TypeAdapter(list[TaskRaw])
_MPS_ADAPTER: Final = TypeAdapter(list[MonitoringPointRaw])
_GRAPH_STAT_ADAPTER: Final = TypeAdapter(list[GraphStatEntryRaw])
_TASK_STAT_ADAPTER: Final = TypeAdapter(list[TaskStatRaw])


def _validate(adapter: TypeAdapter[_T], payload: Any, operation: str) -> _T:
    """Validate *payload* or raise :class:`DecodeError` naming the first problem."""
    try:
        return adapter.validate_python(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        raise DecodeError(
            operation,
            f"unexpected payload shape at {location}: {first.get('msg')} "
            f"({exc.error_count()} error(s))",
        ) from exc


class PingAdminClient:
    """High-level client over a shared :class:`UpstreamHttpClient`.

    Args:
        http: Transport used for every call.  The client closes it on
            :meth:`close` / ``__aexit__``.
    """

    def __init__(self, http: UpstreamHttpClient) -> None:
        self._http = http

    @classmethod
    def from_settings(cls, settings: Settings) -> PingAdminClient:
        """Build a client (and its transport and rate limiter) from *settings*."""
        limiter = RateLimiter(settings.max_requests_per_second)
        http = UpstreamHttpClient(
            api_key=settings.api_key,
            rate_limiter=limiter,
            request_delay=settings.request_delay,
            max_attempts=settings.request_retries,
        )
        return cls(http)

    @property
    def http(self) -> UpstreamHttpClient:
        return self._http

    async def __aenter__(self) -> "PingAdminClient":
        await self._http.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._http.close()

    async def pause(self) -> None:
        """Sleep for one randomised jitter interval (see :meth:`UpstreamHttpClient.pause`)."""
        await self._http.pause()

    # ------------------------------------------------------------------
    # Listings (shared across tasks)
    # ------------------------------------------------------------------

    async def get_all_tasks(self) -> list[TaskInfo]:
        """Return every task of the account."""
        payload = await self._http.get_json("tasks", operation=OP_GET_ALL_TASKS, delayed=True)
        rows = _validate(_TASKS_ADAPTER, payload, OP_GET_ALL_TASKS)
        return [to_task_info(row) for row in rows]

    async def get_monitoring_points(self, *, delayed: bool = True) -> list[MonitoringPointInfo]:
        """Return the monitoring point directory.

        Args:
            delayed: Apply the jitter pause before the request.
        """
        payload = await self._http.get_json("tm", operation=OP_GET_MPS, delayed=delayed)
        rows = _validate(_MPS_ADAPTER, payload, OP_GET_MPS)
        return [to_monitoring_point_info(row) for row in rows]

    # ------------------------------------------------------------------
    # Per-task calls
    # ------------------------------------------------------------------

    async def get_task_graph_stat(self, task_id: int) -> list[MonitoringPointEntry]:
        """Return the latest non-empty sample of every monitoring point of *task_id*.

        An empty list is a valid answer; callers decide how to report it.
        """
        payload = await self._http.get_json(
            "task_graph_stat",
            {"id": task_id, "notnull": 1, "limit": 1},
            operation=OP_GET_TASK_GRAPH_STAT,
        )
        rows = _validate(_GRAPH_STAT_ADAPTER, payload, OP_GET_TASK_GRAPH_STAT)
        return [to_monitoring_point_entry(row) for row in rows]

    async def get_task_stat(self, task_id: int) -> TaskStatEntry:
        """Return the recent event log of *task_id*.

        Raises:
            NoDataError: The API returned no ``task_stat`` rows.
        """
        payload = await self._http.get_json(
            "task_stat",
            {"id": task_id, "limit": _TASK_STAT_LIMIT},
            operation=OP_GET_TASK_STAT,
        )
        rows = _validate(_TASK_STAT_ADAPTER, payload, OP_GET_TASK_STAT)
        if not rows:
            raise NoDataError(OP_GET_TASK_STAT, f"no task stat entries returned for task {task_id}")
        return to_task_stat_entry(rows[0])
