"""Prometheus metric families exported by APATIT.

:class:`ExporterMetrics` owns a private :class:`prometheus_client.CollectorRegistry`
instead of registering into the process-wide default one.  It is built once at
startup and handed to the exporters (writers), the schedulers (writers) and the
HTTP app (reader).  Tests build their own instance per test.

Families (namespace ``ping_admin``)::

    apatit_service_info{language,name,owner,version}                 1
    ping_admin_exporter_refresh_interval_seconds                     gauge
    ping_admin_exporter_max_allowed_staleness_steps                  gauge
    ping_admin_exporter_refresh_duration_seconds{task_id,task_name}  gauge
    ping_admin_exporter_loops_total{exporter_type}                   counter
    ping_admin_exporter_errors_total{error_module,error_type,task_id,task_name}
    ping_admin_mp_data_status{task_id,task_name,mp_id,mp_name}       gauge
    ping_admin_mp_<name>{task_id,task_name,mp_id,mp_name,mp_ip,mp_gps}

The per-point gauges form one *series* per label set; :meth:`delete_series`
removes all of them at once.

Typical usage::

    metrics = ExporterMetrics()
    metrics.publish_sample(labels, sample, delta=240.0, staleness_steps=0)
    body = metrics.render()
"""

from __future__ import annotations

import contextlib
import logging
from typing import Final

from prometheus_client import CollectorRegistry, Counter, Gauge, Info, generate_latest

from apatit.core import version
from apatit.core.models import ConnectionResult

__all__ = ["MP_LABELS", "SeriesLabels", "ExporterMetrics"]

logger = logging.getLogger(__name__)

#: Label set of one monitoring point series, keyed by :data:`MP_LABELS`.
SeriesLabels = dict[str, str]

_NAMESPACE: Final[str] = "ping_admin"
_SUBSYSTEM_EXPORTER: Final[str] = "exporter"
_SUBSYSTEM_MP: Final[str] = "mp"

LABEL_TASK_ID: Final[str] = "task_id"
LABEL_TASK_NAME: Final[str] = "task_name"
LABEL_MP_ID: Final[str] = "mp_id"
LABEL_MP_NAME: Final[str] = "mp_name"
LABEL_MP_IP: Final[str] = "mp_ip"
LABEL_MP_GPS: Final[str] = "mp_gps"

MP_LABELS: Final[tuple[str, ...]] = (
    LABEL_TASK_ID,
    LABEL_TASK_NAME,
    LABEL_MP_ID,
    LABEL_MP_NAME,
    LABEL_MP_IP,
    LABEL_MP_GPS,
)

_DATA_STATUS_LABELS: Final[tuple[str, ...]] = (
    LABEL_TASK_ID,
    LABEL_TASK_NAME,
    LABEL_MP_ID,
    LABEL_MP_NAME,
)


class ExporterMetrics:
    """All metric families, bound to one registry.

    Args:
        registry: Registry to register into.  A fresh one is created when
            omitted.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()
        r = self.registry

        # --- service ---------------------------------------------------
        self.service_info = Info("apatit_service", "Information about the APATIT service.", registry=r)
        self.service_info.info(
            {
                "language": version.LANGUAGE,
                "name": version.NAME,
                "owner": version.OWNER,
                "version": version.VERSION,
            }
        )

        # --- exporter --------------------------------------------------
        self.refresh_interval_seconds = Gauge(
            "refresh_interval_seconds",
            "The configured interval for refreshing metrics.",
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_EXPORTER,
            registry=r,
        )
        self.max_allowed_staleness_steps = Gauge(
            "max_allowed_staleness_steps",
            "Configured staleness threshold in steps. If ping_admin_mp_data_staleness_steps "
            "exceeds this value the MP is considered potentially unavailable.",
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_EXPORTER,
            registry=r,
        )
        self.refresh_duration_seconds = Gauge(
            "refresh_duration_seconds",
            "The duration of the last metrics refresh cycle for a specific task.",
            [LABEL_TASK_ID, LABEL_TASK_NAME],
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_EXPORTER,
            registry=r,
        )
        self.loops = Counter(
            "loops",
            "Total number of refresh loops completed, by exporter type.",
            ["exporter_type"],
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_EXPORTER,
            registry=r,
        )
        self.errors = Counter(
            "errors",
            "Total number of errors during refresh for a specific task.",
            ["error_module", "error_type", LABEL_TASK_ID, LABEL_TASK_NAME],
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_EXPORTER,
            registry=r,
        )

        # --- monitoring points ----------------------------------------
        self.mp_data_status = Gauge(
            "data_status",
            "Whether the monitoring point returned samples in the last refresh (1) or not (0).",
            list(_DATA_STATUS_LABELS),
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_MP,
            registry=r,
        )
        self.mp_status = self._mp_gauge(
            "status", "Status of the monitoring point (1 = up/processed, 0 = stale/down)."
        )
        self.mp_connect_seconds = self._mp_gauge("connect_seconds", "Time spent establishing a connection.")
        self.mp_dns_lookup_seconds = self._mp_gauge("dns_lookup_seconds", "Time spent on DNS lookup.")
        self.mp_server_processing_seconds = self._mp_gauge(
            "server_processing_seconds", "Time the server spent processing the request."
        )
        self.mp_total_duration_seconds = self._mp_gauge("total_duration_seconds", "Total request time.")
        self.mp_speed_bytes_per_second = self._mp_gauge(
            "speed_bytes_per_second", "Download speed in bytes per second."
        )
        self.mp_last_success_timestamp_seconds = self._mp_gauge(
            "last_success_timestamp_seconds", "Timestamp of the last successful data point from the API."
        )
        self.mp_last_success_delta_seconds = self._mp_gauge(
            "last_success_delta_seconds", "Time since the last successful data point was received."
        )
        self.mp_data_staleness_steps = self._mp_gauge(
            "data_staleness_steps",
            "How many API data steps have been missed for this MP. 0 means the data is fresh.",
        )

        self._series_gauges: tuple[Gauge, ...] = (
            self.mp_status,
            self.mp_connect_seconds,
            self.mp_dns_lookup_seconds,
            self.mp_server_processing_seconds,
            self.mp_total_duration_seconds,
            self.mp_speed_bytes_per_second,
            self.mp_last_success_timestamp_seconds,
            self.mp_last_success_delta_seconds,
            self.mp_data_staleness_steps,
        )

    def _mp_gauge(self, name: str, documentation: str) -> Gauge:
        return Gauge(
            name,
            documentation,
            list(MP_LABELS),
            namespace=_NAMESPACE,
            subsystem=_SUBSYSTEM_MP,
            registry=self.registry,
        )

    # ------------------------------------------------------------------
    # Exporter-level
    # ------------------------------------------------------------------

    def set_config(self, refresh_interval: float, max_allowed_staleness_steps: int) -> None:
        self.refresh_interval_seconds.set(refresh_interval)
        self.max_allowed_staleness_steps.set(max_allowed_staleness_steps)

    def set_refresh_duration(self, task_id: str, task_name: str, seconds: float) -> None:
        self.refresh_duration_seconds.labels(task_id, task_name).set(seconds)

    def record_loop(self, exporter_type: str) -> None:
        self.loops.labels(exporter_type).inc()

    def record_error(self, error_module: str, error_type: str, task_id: str, task_name: str) -> None:
        self.errors.labels(error_module, error_type, task_id, task_name).inc()

    # ------------------------------------------------------------------
    # Monitoring-point series
    # ------------------------------------------------------------------

    def set_data_status(
        self, task_id: str, task_name: str, mp_id: str, mp_name: str, present: bool
    ) -> None:
        self.mp_data_status.labels(task_id, task_name, mp_id, mp_name).set(1 if present else 0)

    def publish_sample(
        self,
        labels: SeriesLabels,
        sample: ConnectionResult,
        *,
        delta: float,
        staleness_steps: int,
    ) -> None:
        """Publish the full metric set of one fresh sample and mark the point up."""
        values = self._label_values(labels)
        self.mp_connect_seconds.labels(*values).set(sample.connect)
        self.mp_dns_lookup_seconds.labels(*values).set(sample.dns)
        self.mp_server_processing_seconds.labels(*values).set(sample.server)
        self.mp_total_duration_seconds.labels(*values).set(sample.total)
        self.mp_speed_bytes_per_second.labels(*values).set(sample.speed)
        self.mp_last_success_timestamp_seconds.labels(*values).set(sample.timestamp)
        self.mp_last_success_delta_seconds.labels(*values).set(delta)
        self.mp_data_staleness_steps.labels(*values).set(staleness_steps)
        self.mp_status.labels(*values).set(1)

    def mark_down(self, labels: SeriesLabels) -> None:
        """Drop every series of *labels* and leave only ``status = 0``."""
        self.delete_series(labels)
        self.mp_status.labels(*self._label_values(labels)).set(0)

    def delete_series(self, labels: SeriesLabels) -> None:
        """Remove every per-point gauge child for *labels*.

        Removing a child that does not exist is a no-op.
        """
        values = self._label_values(labels)
        for gauge in self._series_gauges:
            with contextlib.suppress(KeyError):
                gauge.remove(*values)

    # ------------------------------------------------------------------
    # Exposition
    # ------------------------------------------------------------------

    def render(self) -> bytes:
        """Return the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)

    @staticmethod
    def _label_values(labels: SeriesLabels) -> tuple[str, ...]:
        return tuple(labels[name] for name in MP_LABELS)
