"""Orchestrator entry-point: wire every component and run the service.

Component wiring
----------------
:func:`run_service`:

1. Loads the point name translation table
   (:class:`~apatit.core.translator.NameTranslator`).
2. Builds the owned state objects: :class:`~apatit.orchestrator.metrics.ExporterMetrics`
   and the two :class:`~apatit.storage.cache.SeriesCache` instances.
3. Opens one shared :class:`~apatit.upstream.client.PingAdminClient` (one
   connection pool, one rate-limit window for the whole process).
4. Calls :func:`create_exporters` — fetches the task listing and the point
   directory once and builds one :class:`~apatit.orchestrator.exporter.TaskExporter`
   per configured task ID.  Building zero exporters is a startup failure.
   The startup directory seeds the metrics scheduler's directory fallback.
5. Either runs one metrics cycle and one stats cycle (``once=True``) or hands
   the schedulers and the HTTP server to
   :func:`~apatit.orchestrator.scheduler.run_continuous`.
6. Closes the HTTP client on exit, including on exceptions.

Typical usage::

    import asyncio
    from apatit.core.settings import Settings
    from apatit.orchestrator.runner import run_service

    asyncio.run(run_service(Settings()))
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from apatit.core import events
from apatit.core.exceptions import OrchestratorError, TaskNotFoundError, UpstreamError
from apatit.core.models import MonitoringPointInfo
from apatit.core.settings import Settings
from apatit.core.translator import NameTranslator
from apatit.orchestrator.exporter import ExporterConfig, TaskExporter
from apatit.orchestrator.metrics import ExporterMetrics
from apatit.orchestrator.scheduler import MetricsScheduler, StatsScheduler, run_continuous
from apatit.server.http import build_server, create_app
from apatit.storage.cache import SeriesCache
from apatit.upstream.client import PingAdminClient

__all__ = ["create_exporters", "run_service"]

logger = logging.getLogger(__name__)


async def create_exporters(
    settings: Settings,
    client: PingAdminClient,
    metrics: ExporterMetrics,
    translator: NameTranslator | None = None,
    *,
    task_ids: Sequence[int] | None = None,
) -> tuple[list[TaskExporter], list[MonitoringPointInfo]]:
    """Build one exporter per configured task ID.

    A task ID missing from the upstream listing is logged and skipped.  The
    point directory fetched here seeds the metrics scheduler's fallback.

    Args:
        settings: Active settings (exporter timing model, task IDs).
        client: Shared Ping-Admin client.
        metrics: Shared metric families.
        translator: Point name translator.
        task_ids: Overrides ``settings.task_ids``.

    Returns:
        ``(exporters, directory)``: the exporters in configuration order and
        the startup point directory.

    Raises:
        OrchestratorError: The metadata could not be fetched, or no exporter
            could be built.
    """
    ids = list(task_ids if task_ids is not None else settings.task_ids)
    logger.info("Creating exporters for %d tasks...", len(ids))

    try:
        all_tasks = await client.get_all_tasks()
    except UpstreamError as exc:
        raise OrchestratorError(f"failed to get tasks metadata: {exc}") from exc
    try:
        points = await client.get_monitoring_points()
    except UpstreamError as exc:
        raise OrchestratorError(f"failed to get MPs metadata: {exc}") from exc

    exporters: list[TaskExporter] = []
    for task_id in ids:
        try:
            exporter = TaskExporter.from_metadata(
                ExporterConfig.from_settings(settings, task_id),
                client,
                metrics,
                all_tasks,
                translator,
            )
        except TaskNotFoundError as exc:
            logger.error(
                "Unable to create exporter for TaskID %d: %s",
                task_id,
                exc,
                extra={"event": events.EXPORTER_INIT_ERROR, "task_id": str(task_id)},
            )
            continue
        exporters.append(exporter)

    if not exporters:
        raise OrchestratorError("no exporters were created, check task IDs and API key")

    logger.info("Successfully created %d exporters.", len(exporters))
    return exporters, points


async def run_service(settings: Settings, *, once: bool = False) -> None:
    """Run APATIT until a stop signal (or for one cycle of each kind).

    Raises:
        ConfigError: API key or task IDs are missing.
        OrchestratorError: No exporter could be built.
    """
    settings.require_upstream()

    translator = NameTranslator.from_file(settings.locations_file)
    metrics = ExporterMetrics()
    metrics.set_config(settings.refresh_interval, settings.max_allowed_staleness_steps)
    task_stats_cache = SeriesCache("task_stats")
    all_tasks_cache = SeriesCache("all_tasks")

    async with PingAdminClient.from_settings(settings) as client:
        exporters, directory = await create_exporters(settings, client, metrics, translator)

        metrics_scheduler = MetricsScheduler(
            exporters,
            metrics,
            client,
            interval=settings.refresh_interval,
            max_allowed_staleness_steps=settings.max_allowed_staleness_steps,
            directory=directory,
        )
        stats_scheduler = StatsScheduler(
            exporters,
            task_stats_cache,
            all_tasks_cache,
            interval=settings.refresh_interval,
            pause=client.pause,
        )

        if once:
            logger.info("Running a single metrics and stats cycle (--once mode).")
            await metrics_scheduler.run_once()
            await stats_scheduler.run_once()
            return

        app = create_app(metrics, task_stats_cache, all_tasks_cache)
        server = build_server(app, settings.listen_address, log_level=settings.log_level)
        await run_continuous([metrics_scheduler, stats_scheduler], server=server)
