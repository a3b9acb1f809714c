"""Per-task exporter: turns Ping-Admin data into metric observations.

One :class:`TaskExporter` exists per configured task.  It owns the task's
identity (resolved once at startup from the task listing) and exposes three
refresh operations:

* :meth:`TaskExporter.refresh_metrics` — graph stats → Prometheus series.
  Returns the label sets it published so the metrics scheduler can retire
  series that disappeared between cycles.
* :meth:`TaskExporter.update_task_stats` — task event log → JSON snapshot
  entry.  No metric side effects besides the loop counter.
* :meth:`TaskExporter.update_all_tasks_info` — full task listing, fetched by
  one designated exporter per stats cycle.

Monitoring point classification (``refresh_metrics``)
------------------------------------------------------

For every graph-stat entry the point's status is resolved from the directory.
A status outside ``{0, 1}`` is logged and forced to ``0``.  Then, per sample::

    delta = cycle_start - sample.timestamp

    status == 0            → series removed, status gauge = 0
    delta >= 24 h          → series removed, status gauge = 0
    otherwise              → full metric set published, status gauge = 1
                             staleness = floor(|delta - update_delay| / time_step)

An entry without samples only sets ``ping_admin_mp_data_status = 0``.

Every upstream failure increments ``ping_admin_exporter_errors_total`` and is
re-raised to the scheduler, which drops this task's contribution for the
cycle without affecting other tasks.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Final, TypeVar

from apatit.core import events
from apatit.core.exceptions import TaskNotFoundError, UpstreamError
from apatit.core.models import MonitoringPointEntry, MonitoringPointInfo, TaskInfo, TaskStatEntry
from apatit.core.settings import Settings
from apatit.core.translator import NameTranslator
from apatit.orchestrator.metrics import (
    LABEL_MP_NAME,
    ExporterMetrics,
    SeriesLabels,
)
from apatit.upstream.client import (
    OP_GET_ALL_TASKS,
    OP_GET_MPS,
    OP_GET_TASK_GRAPH_STAT,
    OP_GET_TASK_STAT,
    PingAdminClient,
)

__all__ = ["ExporterConfig", "TaskExporter", "staleness_steps"]

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

#: Samples at least this old (seconds) are treated as expired.
DATA_EXPIRY_SECONDS: Final[float] = 24 * 60 * 60

#: ``error_module`` label for failures of upstream calls.
_ERROR_MODULE_API: Final[str] = "api_client"

#: Placeholder for point attributes missing from the directory.
_UNKNOWN: Final[str] = "unknown"


def staleness_steps(delta: float, update_delay: float, time_step: float) -> int:
    """Number of upstream sampling intervals missed by a sample.

    ``0`` means the sample is exactly as fresh as the upstream reporting delay
    allows.

    Examples::

        staleness_steps(240, 240, 180)   # → 0
        staleness_steps(600, 240, 180)   # → 2
    """
    return int(math.floor(abs(delta - update_delay) / time_step))


@dataclass(frozen=True)
class ExporterConfig:
    """Per-exporter settings."""

    task_id: int
    eng_mp_names: bool = True
    api_update_delay: float = 240.0
    api_data_time_step: float = 180.0

    @classmethod
    def from_settings(cls, settings: Settings, task_id: int) -> ExporterConfig:
        return cls(
            task_id=task_id,
            eng_mp_names=settings.eng_mp_names,
            api_update_delay=settings.api_update_delay,
            api_data_time_step=settings.api_data_time_step,
        )


class TaskExporter:
    """Refresh operations for one Ping-Admin task.

    Use :meth:`from_metadata` to build one from the startup task listing.

    Args:
        config: Per-exporter settings.
        client: Shared Ping-Admin client.
        metrics: Shared metric families.
        task_info: This task's listing entry.
        translator: Point name translator.
        clock: Wall clock returning epoch seconds.  Injectable for tests.
    """

    def __init__(
        self,
        config: ExporterConfig,
        client: PingAdminClient,
        metrics: ExporterMetrics,
        task_info: TaskInfo,
        translator: NameTranslator | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self._client = client
        self._metrics = metrics
        self._task_info = task_info
        self._translator = translator or NameTranslator()
        self._clock = clock
        logger.debug("Exporter instance created for task %s (%s)", self.task_id, self.task_name)

    @classmethod
    def from_metadata(
        cls,
        config: ExporterConfig,
        client: PingAdminClient,
        metrics: ExporterMetrics,
        all_tasks: Iterable[TaskInfo],
        translator: NameTranslator | None = None,
    ) -> TaskExporter:
        """Build an exporter for ``config.task_id`` from prefetched metadata.

        Raises:
            TaskNotFoundError: The task is absent from *all_tasks*.
        """
        task_info = next((t for t in all_tasks if t.id == config.task_id), None)
        if task_info is None:
            raise TaskNotFoundError(config.task_id)
        return cls(config, client, metrics, task_info, translator)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def task_id(self) -> str:
        return str(self._task_info.id)

    @property
    def task_name(self) -> str:
        return self._task_info.service_name

    @property
    def task_info(self) -> TaskInfo:
        return self._task_info

    # ------------------------------------------------------------------
    # Metrics path
    # ------------------------------------------------------------------

    async def refresh_metrics(
        self,
        *,
        cycle_start: float | None = None,
        directory: list[MonitoringPointInfo] | None = None,
    ) -> list[SeriesLabels]:
        """Fetch graph stats, publish metrics, return the published label sets.

        Args:
            cycle_start: Epoch seconds the cycle started at; ``delta`` of every
                sample is measured against it.  Defaults to now.
            directory: Monitoring point directory shared by the whole cycle.
                Fetched by this exporter when omitted.

        Raises:
            UpstreamError: A required upstream call failed.
        """
        started = time.monotonic()
        if cycle_start is None:
            cycle_start = self._clock()
        logger.info("Refreshing metrics for task %s (%s)...", self.task_id, self.task_name)

        try:
            entries = await self._call(
                OP_GET_TASK_GRAPH_STAT, self._client.get_task_graph_stat(self.config.task_id)
            )
            if not entries:
                self._count_error(OP_GET_TASK_GRAPH_STAT)
                logger.error("No MP data from API for task %s.", self.task_id)
            else:
                logger.debug("Received %d data items from API", len(entries))

            if directory is None:
                directory = await self._call(OP_GET_MPS, self._client.get_monitoring_points())
            points = {mp.id: mp for mp in directory}

            published: list[SeriesLabels] = []
            for entry in entries:
                resolved = self._resolve_status(entry, points)
                published.extend(self._process_entry(resolved, points, cycle_start))
            return published
        finally:
            duration = time.monotonic() - started
            self._metrics.record_loop("metrics")
            self._metrics.set_refresh_duration(self.task_id, self.task_name, duration)
            logger.info("Refresh of task %s finished in %.3f s", self.task_id, duration)

    def _resolve_status(
        self, entry: MonitoringPointEntry, points: dict[str, MonitoringPointInfo]
    ) -> MonitoringPointEntry:
        point = points.get(entry.id)
        status = point.status if point is not None else entry.status
        if status not in (0, 1):
            logger.error(
                "Incorrect monitoring point status %d for MP %s (%s), forcing 0",
                status,
                entry.id,
                entry.name,
                extra={"event": events.MP_INVALID_STATUS, "mp_id": entry.id},
            )
            status = 0
        return entry.model_copy(update={"status": status})

    def _process_entry(
        self,
        entry: MonitoringPointEntry,
        points: dict[str, MonitoringPointInfo],
        cycle_start: float,
    ) -> list[SeriesLabels]:
        if not entry.results:
            self._metrics.set_data_status(
                self.task_id, self.task_name, entry.id, self._metric_mp_name(entry.name), False
            )
            logger.warning(
                "No results found for MP %s (%s)",
                entry.id,
                entry.name,
                extra={"event": events.MP_NO_DATA, "mp_id": entry.id},
            )
            return []

        published: list[SeriesLabels] = []
        for sample in entry.results:
            labels = self._build_labels(entry, points)
            delta = cycle_start - sample.timestamp

            if entry.status == 0:
                logger.warning(
                    "Monitoring point %s (%s) is unavailable",
                    entry.id,
                    labels[LABEL_MP_NAME],
                    extra={"event": events.MP_UNAVAILABLE, "mp_id": entry.id},
                )
                self._metrics.mark_down(labels)
            elif delta >= DATA_EXPIRY_SECONDS:
                logger.warning(
                    "Data for MP %s (%s) is older than 24 hours",
                    entry.id,
                    labels[LABEL_MP_NAME],
                    extra={"event": events.MP_DATA_EXPIRED, "mp_id": entry.id},
                )
                self._metrics.mark_down(labels)
            else:
                steps = staleness_steps(
                    delta, self.config.api_update_delay, self.config.api_data_time_step
                )
                self._metrics.publish_sample(labels, sample, delta=delta, staleness_steps=steps)
                logger.debug(
                    "Metrics updated for MP %s (%s): delta=%.0fs steps=%d",
                    entry.id,
                    labels[LABEL_MP_NAME],
                    delta,
                    steps,
                )
            published.append(labels)

        self._metrics.set_data_status(
            self.task_id, self.task_name, entry.id, published[0][LABEL_MP_NAME], True
        )
        return published

    def _build_labels(
        self, entry: MonitoringPointEntry, points: dict[str, MonitoringPointInfo]
    ) -> SeriesLabels:
        point = points.get(entry.id)
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "mp_id": entry.id,
            "mp_name": self._metric_mp_name(entry.name),
            "mp_ip": point.ip if point is not None else _UNKNOWN,
            "mp_gps": point.gps if point is not None else _UNKNOWN,
        }

    def _metric_mp_name(self, name: str) -> str:
        return self._translator.translate(name) if self.config.eng_mp_names else name

    # ------------------------------------------------------------------
    # Stats path
    # ------------------------------------------------------------------

    async def update_task_stats(self) -> TaskStatEntry:
        """Fetch the task's event log and stamp it with identity and time.

        Raises:
            UpstreamError: The call failed (``NoDataError`` included).
        """
        logger.info("Updating task stats for task %s...", self.task_id)
        entry = await self._call(OP_GET_TASK_STAT, self._client.get_task_stat(self.config.task_id))

        logs = [
            log.model_copy(
                update={
                    "traceroute": log.traceroute.replace("\\n", "\n"),
                    "mp_name": self._translator.translate(log.mp_name),
                }
            )
            for log in entry.task_logs
        ]
        stamped = entry.model_copy(
            update={
                "task_id": self.task_id,
                "task_name": self.task_name,
                "timestamp": datetime.fromtimestamp(self._clock(), tz=UTC),
                "task_logs": logs,
            }
        )
        self._metrics.record_loop("stats")
        return stamped

    async def update_all_tasks_info(self) -> list[TaskInfo]:
        """Fetch the full task listing of the account."""
        logger.info("Updating all tasks info...")
        return await self._call(OP_GET_ALL_TASKS, self._client.get_all_tasks())

    # ------------------------------------------------------------------
    # Error accounting
    # ------------------------------------------------------------------

    async def _call(self, operation: str, awaitable: Awaitable[_T]) -> _T:
        try:
            return await awaitable
        except UpstreamError:
            self._count_error(operation)
            raise

    def _count_error(self, operation: str) -> None:
        self._metrics.record_error(_ERROR_MODULE_API, operation, self.task_id, self.task_name)
