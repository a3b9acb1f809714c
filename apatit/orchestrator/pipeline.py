"""Single-cycle pipelines: metrics refresh and stats snapshot.

Both cycles share the same shape:

1. **Fan out** — one coroutine per :class:`~apatit.orchestrator.exporter.TaskExporter`,
   each starting with its own randomised jitter pause so tasks do not hit the
   API in lockstep.
2. **Barrier** — ``asyncio.gather(..., return_exceptions=True)``; the cycle is
   complete only when every task has returned, successfully or not.
3. **Merge** — each task's private result is merged into the cycle
   accumulator under one exclusive section per completion.
4. **Publish** — metrics: retire series absent from this cycle.  Stats:
   serialise and swap the JSON documents into the caches.

A failing task contributes nothing to the cycle and never aborts it.

Typical usage::

    current, stats = await run_metrics_cycle(exporters, metrics, previous)
    stats = await run_stats_cycle(exporters, task_stats_cache, all_tasks_cache)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from pydantic import TypeAdapter

from apatit.core import events
from apatit.core.exceptions import UpstreamError
from apatit.core.models import MonitoringPointInfo, SeriesKey, TaskInfo, TaskStatEntry
from apatit.orchestrator.exporter import TaskExporter
from apatit.orchestrator.metrics import LABEL_MP_ID, LABEL_TASK_ID, ExporterMetrics, SeriesLabels
from apatit.storage.cache import SeriesCache
from apatit.upstream.client import PingAdminClient

__all__ = [
    "Pause",
    "PublishedSeries",
    "TaskCycleResult",
    "CycleStats",
    "fetch_directory",
    "no_pause",
    "reconcile_series",
    "run_metrics_cycle",
    "run_stats_cycle",
]

logger = logging.getLogger(__name__)

#: Label sets published by one metrics cycle, keyed by ``(task_id, mp_id)``.
PublishedSeries = dict[SeriesKey, SeriesLabels]

Pause = Callable[[], Awaitable[None]]

_TASK_STATS_ADAPTER: TypeAdapter[list[TaskStatEntry]] = TypeAdapter(list[TaskStatEntry])
_ALL_TASKS_ADAPTER: TypeAdapter[list[TaskInfo]] = TypeAdapter(list[TaskInfo])


async def no_pause() -> None:
    return None


# ---------------------------------------------------------------------------
# Stats data classes
# ---------------------------------------------------------------------------


@dataclass
class TaskCycleResult:
    """Outcome of one task's unit of work within a cycle.

    Attributes:
        task_id: Task identifier.
        items: Series published (metrics) or log rows fetched (stats).
        failed: ``True`` if the unit raised; ``items`` is then 0.
        error: Short error description when ``failed``.
    """

    task_id: str
    items: int = 0
    failed: bool = False
    error: str | None = None


@dataclass
class CycleStats:
    """Aggregated statistics for one cycle.

    Attributes:
        kind: ``"metrics"`` or ``"stats"``.
        task_results: One entry per exporter, in exporter order.
        deleted_series: Series retired by reconciliation (metrics only).
        duration_s: Wall time of the cycle.
    """

    kind: str
    task_results: list[TaskCycleResult] = field(default_factory=list)
    deleted_series: int = 0
    duration_s: float = 0.0

    @property
    def total_items(self) -> int:
        return sum(r.items for r in self.task_results)

    @property
    def failed_tasks(self) -> list[str]:
        """IDs of tasks whose unit raised."""
        return [r.task_id for r in self.task_results if r.failed]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


async def fetch_directory(
    client: PingAdminClient,
    fallback: list[MonitoringPointInfo] | None,
) -> list[MonitoringPointInfo] | None:
    """Fetch the monitoring point directory for one cycle.

    Returns *fallback* (the last good directory) when the fetch fails.
    The fetch runs ahead of the fan-out, so it is not jittered.
    """
    try:
        return await client.get_monitoring_points(delayed=False)
    except UpstreamError as exc:
        logger.warning(
            "Monitoring point directory refresh failed, reusing the previous one: %s",
            exc,
            extra={"event": events.DIRECTORY_FALLBACK},
        )
        return fallback


def reconcile_series(
    metrics: ExporterMetrics,
    previous: PublishedSeries,
    current: PublishedSeries,
) -> int:
    """Delete every series of *previous* that *current* no longer publishes.

    A key whose label set changed (e.g. the point's IP moved) retires the old
    label set too.

    Returns:
        Number of label sets deleted.
    """
    deleted = 0
    for key, labels in previous.items():
        if current.get(key) == labels:
            continue
        logger.info(
            "Deleting stale series %s:%s",
            key.task_id,
            key.mp_id,
            extra={"event": events.SERIES_DELETED},
        )
        metrics.delete_series(labels)
        deleted += 1
    return deleted


def _result_from(task_id: str, outcome: int | BaseException) -> TaskCycleResult:
    if isinstance(outcome, BaseException):
        return TaskCycleResult(task_id=task_id, failed=True, error=str(outcome))
    return TaskCycleResult(task_id=task_id, items=outcome)


# ---------------------------------------------------------------------------
# Metrics cycle
# ---------------------------------------------------------------------------


async def run_metrics_cycle(
    exporters: Sequence[TaskExporter],
    metrics: ExporterMetrics,
    previous: PublishedSeries,
    *,
    cycle_start: float | None = None,
    directory: list[MonitoringPointInfo] | None = None,
    pause: Pause = no_pause,
) -> tuple[PublishedSeries, CycleStats]:
    """Refresh every exporter concurrently and reconcile stale series.

    Args:
        exporters: One exporter per task.
        metrics: Registry the exporters publish into.
        previous: Series published by the previous cycle.
        cycle_start: Epoch seconds used as "now" for every sample in the
            cycle.  Defaults to the current time.
        directory: Monitoring point directory shared by every exporter.
        pause: Coroutine awaited by each unit before its first request.

    Returns:
        ``(current, stats)``.  *current* replaces *previous* for the next cycle.
    """
    started = time.monotonic()
    if cycle_start is None:
        cycle_start = time.time()

    current: PublishedSeries = {}
    merge_lock = asyncio.Lock()

    async def _unit(exporter: TaskExporter) -> int:
        await pause()
        try:
            published = await exporter.refresh_metrics(cycle_start=cycle_start, directory=directory)
        except UpstreamError as exc:
            logger.error(
                "Exporter refresh failed for task %s: %s",
                exporter.task_id,
                exc,
                extra={"event": events.TASK_REFRESH_ERROR, "task_id": exporter.task_id},
            )
            raise
        async with merge_lock:
            for labels in published:
                current[SeriesKey(labels[LABEL_TASK_ID], labels[LABEL_MP_ID])] = labels
        logger.debug(
            "Task %s published %d series",
            exporter.task_id,
            len(published),
            extra={"event": events.TASK_REFRESH_OK, "task_id": exporter.task_id},
        )
        return len(published)

    outcomes = await asyncio.gather(*(_unit(e) for e in exporters), return_exceptions=True)

    stats = CycleStats(kind="metrics")
    for exporter, outcome in zip(exporters, outcomes, strict=True):
        if isinstance(outcome, BaseException) and not isinstance(outcome, UpstreamError):
            logger.error(
                "Unexpected error refreshing task %s: %s",
                exporter.task_id,
                outcome,
                exc_info=outcome,
                extra={"event": events.TASK_REFRESH_ERROR, "task_id": exporter.task_id},
            )
        stats.task_results.append(_result_from(exporter.task_id, outcome))

    stats.deleted_series = reconcile_series(metrics, previous, current)
    stats.duration_s = time.monotonic() - started

    logger.info(
        "Metrics cycle summary: tasks=%d series=%d deleted=%d failed_tasks=%s (%.2f s)",
        len(exporters),
        len(current),
        stats.deleted_series,
        stats.failed_tasks or "none",
        stats.duration_s,
        extra={"event": events.CYCLE_COMPLETE},
    )
    return current, stats


# ---------------------------------------------------------------------------
# Stats cycle
# ---------------------------------------------------------------------------


async def run_stats_cycle(
    exporters: Sequence[TaskExporter],
    task_stats_cache: SeriesCache,
    all_tasks_cache: SeriesCache,
    *,
    pause: Pause = no_pause,
) -> CycleStats:
    """Fetch every task's event log concurrently and publish the JSON snapshot.

    The first exporter additionally refreshes the full task listing into
    *all_tasks_cache*; a failure there does not affect its own event log.

    Both documents are serialised after the barrier and published in one
    swap each, so readers never observe a partial cycle.
    """
    started = time.monotonic()
    collected: dict[int, TaskStatEntry] = {}
    listing: list[TaskInfo] | None = None
    merge_lock = asyncio.Lock()

    async def _refresh_listing(exporter: TaskExporter) -> None:
        nonlocal listing
        try:
            tasks = await exporter.update_all_tasks_info()
        except UpstreamError as exc:
            logger.error("All tasks info refresh failed: %s", exc)
            return
        async with merge_lock:
            listing = tasks

    async def _unit(index: int, exporter: TaskExporter) -> int:
        await pause()
        if index == 0:
            await _refresh_listing(exporter)
        try:
            entry = await exporter.update_task_stats()
        except UpstreamError as exc:
            logger.error(
                "Stats refresh failed for task %s: %s",
                exporter.task_id,
                exc,
                extra={"event": events.TASK_REFRESH_ERROR, "task_id": exporter.task_id},
            )
            raise
        async with merge_lock:
            collected[index] = entry
        return len(entry.task_logs)

    outcomes = await asyncio.gather(
        *(_unit(i, e) for i, e in enumerate(exporters)), return_exceptions=True
    )

    stats = CycleStats(kind="stats")
    for exporter, outcome in zip(exporters, outcomes, strict=True):
        if isinstance(outcome, BaseException) and not isinstance(outcome, UpstreamError):
            logger.error(
                "Unexpected error refreshing stats of task %s: %s",
                exporter.task_id,
                outcome,
                exc_info=outcome,
            )
        stats.task_results.append(_result_from(exporter.task_id, outcome))

    ordered = [collected[i] for i in sorted(collected)]
    task_stats_cache.publish(_TASK_STATS_ADAPTER.dump_json(ordered, by_alias=True))
    # A failed listing refresh keeps the previous snapshot.
    if listing is not None:
        all_tasks_cache.publish(_ALL_TASKS_ADAPTER.dump_json(listing, by_alias=True))
    stats.duration_s = time.monotonic() - started

    logger.info(
        "Stats cycle summary: tasks=%d published=%d failed_tasks=%s (%.2f s)",
        len(exporters),
        len(ordered),
        stats.failed_tasks or "none",
        stats.duration_s,
        extra={"event": events.STATS_PUBLISHED},
    )
    return stats
