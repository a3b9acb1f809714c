"""Periodic schedulers for the metrics and stats cycles.

Each scheduler is a two-state loop::

    IDLE ──tick──▶ RUNNING ──cycle joined──▶ IDLE
      │
      └──stop event set (checked between cycles only)──▶ STOPPED

The first cycle runs immediately; subsequent cycles start ``interval``
seconds after the previous one *started* (a cycle that overruns the
interval is followed immediately by the next one, never by a burst).

The stop signal is observed only at tick boundaries: an in-flight cycle
always runs to completion, so a shutdown never publishes half a cycle.

Every cycle runs under a fresh :data:`~apatit.core.logging_config.CYCLE_ID_CTX`
value, inherited by all per-task coroutines it spawns.

Typical usage::

    stop = asyncio.Event()
    await run_continuous([metrics_scheduler, stats_scheduler], server=server, stop=stop)
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
import uuid
from collections.abc import Callable, Sequence
from enum import StrEnum

import uvicorn

from apatit.core import events
from apatit.core.logging_config import CYCLE_ID_CTX
from apatit.core.models import MonitoringPointInfo
from apatit.orchestrator.exporter import TaskExporter
from apatit.orchestrator.metrics import ExporterMetrics
from apatit.orchestrator.pipeline import (
    CycleStats,
    Pause,
    PublishedSeries,
    fetch_directory,
    no_pause,
    run_metrics_cycle,
    run_stats_cycle,
)
from apatit.storage.cache import SeriesCache
from apatit.upstream.client import PingAdminClient

__all__ = [
    "SchedulerState",
    "CycleScheduler",
    "MetricsScheduler",
    "StatsScheduler",
    "run_continuous",
]

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class CycleScheduler:
    """Base loop: run :meth:`run_once` every ``interval`` seconds until stopped.

    Args:
        interval: Seconds between cycle starts.
        clock: Monotonic clock.  Injectable for tests.
    """

    kind: str = "cycle"

    def __init__(self, interval: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval!r}.")
        self.interval = interval
        self.state = SchedulerState.IDLE
        self.cycles_run = 0
        self._clock = clock

    async def run_once(self) -> CycleStats:
        raise NotImplementedError

    async def run(self, stop: asyncio.Event) -> None:
        """Loop until *stop* is set, checking it only between cycles."""
        logger.info("%s scheduler started (interval %.0f s).", self.kind.capitalize(), self.interval)
        while not stop.is_set():
            tick = self._clock()
            token = CYCLE_ID_CTX.set(uuid.uuid4().hex[:8])
            self.state = SchedulerState.RUNNING
            try:
                logger.info(
                    "Starting new %s refresh cycle...", self.kind, extra={"event": events.CYCLE_START}
                )
                await self.run_once()
            except Exception:
                logger.exception("Unhandled exception in %s cycle — will retry after interval.", self.kind)
            finally:
                self.cycles_run += 1
                self.state = SchedulerState.IDLE
                CYCLE_ID_CTX.reset(token)

            remaining = max(0.0, self.interval - (self._clock() - tick))
            logger.debug("Next %s cycle in %.1f s.", self.kind, remaining)
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=remaining)

        self.state = SchedulerState.STOPPED
        logger.info("Stopping %s scheduler...", self.kind, extra={"event": events.SCHEDULER_STOPPED})


class MetricsScheduler(CycleScheduler):
    """Refresh metrics for every exporter and retire stale series.

    Keeps two pieces of state across cycles: the series published by the
    previous cycle and the last successfully fetched point directory.
    *directory* seeds the latter, so the first cycle has a fallback too.
    """

    kind = "metrics"

    def __init__(
        self,
        exporters: Sequence[TaskExporter],
        metrics: ExporterMetrics,
        client: PingAdminClient,
        *,
        interval: float,
        max_allowed_staleness_steps: int = 3,
        directory: list[MonitoringPointInfo] | None = None,
        pause: Pause | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(interval, clock=clock)
        self._exporters = list(exporters)
        self._metrics = metrics
        self._client = client
        self._max_allowed_staleness_steps = max_allowed_staleness_steps
        self._pause = pause or client.pause
        self._previous: PublishedSeries = {}
        self._directory: list[MonitoringPointInfo] | None = directory

    @property
    def published(self) -> PublishedSeries:
        """Series published by the most recent cycle."""
        return dict(self._previous)

    async def run_once(self) -> CycleStats:
        self._metrics.set_config(self.interval, self._max_allowed_staleness_steps)
        cycle_start = time.time()
        self._directory = await fetch_directory(self._client, self._directory)
        current, stats = await run_metrics_cycle(
            self._exporters,
            self._metrics,
            self._previous,
            cycle_start=cycle_start,
            directory=self._directory,
            pause=self._pause,
        )
        self._previous = current
        return stats


class StatsScheduler(CycleScheduler):
    """Refresh every task's event log and the task listing into the caches."""

    kind = "stats"

    def __init__(
        self,
        exporters: Sequence[TaskExporter],
        task_stats_cache: SeriesCache,
        all_tasks_cache: SeriesCache,
        *,
        interval: float,
        pause: Pause | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(interval, clock=clock)
        self._exporters = list(exporters)
        self._task_stats_cache = task_stats_cache
        self._all_tasks_cache = all_tasks_cache
        self._pause = pause or no_pause

    async def run_once(self) -> CycleStats:
        return await run_stats_cycle(
            self._exporters, self._task_stats_cache, self._all_tasks_cache, pause=self._pause
        )


# ---------------------------------------------------------------------------
# Public entry-point
# ---------------------------------------------------------------------------


async def run_continuous(
    schedulers: Sequence[CycleScheduler],
    *,
    server: uvicorn.Server | None = None,
    stop: asyncio.Event | None = None,
) -> None:
    """Run the schedulers (and the HTTP server) until a stop is requested.

    ``SIGINT`` / ``SIGTERM`` set *stop*.  Schedulers finish their in-flight
    cycle and exit at the next tick boundary; the HTTP server is then asked
    to exit.  If the server stops on its own (bind failure, its own signal
    handling) the schedulers are stopped too.

    Args:
        schedulers: Loops to run concurrently.
        server: Optional uvicorn server run as a sibling task.
        stop: Stop event; a fresh one is created when omitted.
    """
    if stop is None:
        stop = asyncio.Event()

    loop = asyncio.get_running_loop()
    _shutdown_signal: list[str] = []

    def _request_graceful_shutdown(signame: str) -> None:
        if not _shutdown_signal:
            _shutdown_signal.append(signame)
            logger.info("Received %s — stopping schedulers after the current cycle.", signame)
        stop.set()

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _request_graceful_shutdown, sig.name)
            installed.append(sig)

    scheduler_tasks = [
        asyncio.create_task(s.run(stop), name=f"apatit-{s.kind}-scheduler") for s in schedulers
    ]
    server_task: asyncio.Task[None] | None = None
    if server is not None:
        server_task = asyncio.create_task(server.serve(), name="apatit-http-server")

    logger.info("Exporters are running. Press Ctrl+C to exit.")

    try:
        waiters: set[asyncio.Future[object]] = {asyncio.ensure_future(stop.wait())}
        if server_task is not None:
            waiters.add(server_task)
        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        if server_task is not None and server_task in done and not stop.is_set():
            logger.warning("HTTP server exited — stopping schedulers.")
            stop.set()
        for waiter in waiters - {server_task}:
            waiter.cancel()

        await asyncio.gather(*scheduler_tasks, return_exceptions=True)
    finally:
        if server is not None and server_task is not None:
            server.should_exit = True
            with contextlib.suppress(asyncio.CancelledError, SystemExit):
                await server_task
        for sig in installed:
            with contextlib.suppress(Exception):
                loop.remove_signal_handler(sig)

    logger.info("Shutdown complete. Bye!")
