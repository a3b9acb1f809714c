"""Per-task exporters, cycle pipelines, schedulers, and startup wiring.

Public API
----------
* :func:`~apatit.orchestrator.runner.run_service` — default runtime
  entry-point; builds every component and runs until stopped.
* :func:`~apatit.orchestrator.runner.create_exporters` — startup
  construction of one exporter per configured task.
* :class:`~apatit.orchestrator.scheduler.MetricsScheduler` /
  :class:`~apatit.orchestrator.scheduler.StatsScheduler` — periodic loops.
* :func:`~apatit.orchestrator.pipeline.run_metrics_cycle` /
  :func:`~apatit.orchestrator.pipeline.run_stats_cycle` — single cycles;
  useful for testing or custom orchestration.
* :class:`~apatit.orchestrator.exporter.TaskExporter` — per-task refresh.
* :class:`~apatit.orchestrator.metrics.ExporterMetrics` — owned registry.
"""

from apatit.orchestrator.metrics import ExporterMetrics
from apatit.orchestrator.exporter import ExporterConfig, TaskExporter, staleness_steps
from apatit.orchestrator.pipeline import (
    CycleStats,
    TaskCycleResult,
    reconcile_series,
    run_metrics_cycle,
    run_stats_cycle,
)
from apatit.orchestrator.scheduler import (
    MetricsScheduler,
    SchedulerState,
    StatsScheduler,
    run_continuous,
)
from apatit.orchestrator.runner import create_exporters, run_service

__all__ = [
    # Metrics
    "ExporterMetrics",
    # Exporter
    "ExporterConfig",
    "TaskExporter",
    "staleness_steps",
    # Pipeline primitives
    "CycleStats",
    "TaskCycleResult",
    "reconcile_series",
    "run_metrics_cycle",
    "run_stats_cycle",
    # Schedulers
    "MetricsScheduler",
    "SchedulerState",
    "StatsScheduler",
    "run_continuous",
    # Entry-points
    "create_exporters",
    "run_service",
]
