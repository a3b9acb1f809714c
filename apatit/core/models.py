"""APATIT domain models.

Two families of :mod:`pydantic` models live here:

* **Raw models** (``*Raw``) mirror the Ping-Admin JSON payloads field for
  field.  They define the *structural* contract: a payload that does not
  validate against them fails the whole upstream call with
  :class:`~apatit.core.exceptions.DecodeError`.  Numeric sub-fields that the
  API sends as strings are kept as loosely-typed scalars here and parsed
  best-effort by :mod:`apatit.upstream.normalizers`.

* **Processed models** are what the rest of the application works with.
  Their serialisation aliases reproduce the JSON shape served on
  ``/stats`` so downstream dashboards keep working::

      {"TaskID": "123", "TaskName": "shop", "Timestamp": "...",
       "TaskLogs": [{"Data": "...", "Description": "...", "Status": 1,
                     "MPName": "Moscow", "MPID": "7", "Traceroute": "..."}]}

Typical usage::

    from apatit.core.models import TaskStatEntry

    payload = entry.model_dump(mode="json", by_alias=True)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field

__all__ = [
    # Raw payloads
    "ConnectionResultRaw",
    "GraphStatEntryRaw",
    "MonitoringPointRaw",
    "TaskRaw",
    "TaskLogRaw",
    "TaskStatRaw",
    # Processed
    "SeriesKey",
    "TaskInfo",
    "MonitoringPointInfo",
    "ConnectionResult",
    "MonitoringPointEntry",
    "TaskLog",
    "TaskStatEntry",
]

#: Scalar the API may use for a numeric field (usually a string).
NumericField = str | int | float | None

_RAW_CONFIG = ConfigDict(extra="ignore")
_PROCESSED_CONFIG = ConfigDict(populate_by_name=True)


# ---------------------------------------------------------------------------
# Raw payloads
# ---------------------------------------------------------------------------


class ConnectionResultRaw(BaseModel):
    """One ``tm_res`` element of a ``task_graph_stat`` response."""

    model_config = _RAW_CONFIG

    connect: NumericField = None
    dns: NumericField = None
    server: NumericField = None
    total: NumericField = None
    speed: NumericField = None
    tmstamp: NumericField = None


class GraphStatEntryRaw(BaseModel):
    """One monitoring point in a ``task_graph_stat`` response."""

    model_config = _RAW_CONFIG

    tm_id: str
    tm_name: str = ""
    tm_res: list[ConnectionResultRaw] = Field(default_factory=list)


class MonitoringPointRaw(BaseModel):
    """One element of the ``tm`` (monitoring points) listing."""

    model_config = _RAW_CONFIG

    id: str
    name: str = ""
    ip: str = ""
    gps: str = ""
    status: NumericField = None


class TaskRaw(BaseModel):
    """One element of the ``tasks`` listing.

    Only the fields APATIT uses are declared; the API sends many more
    (contact lists, check periods, uptime counters) which are ignored.
    """

    model_config = _RAW_CONFIG

    tid: int
    status: int = 0
    nazv: str = ""
    name: str = ""
    log_status: int = 0
    rk_log_status: int = 0
    sb_log_status: int = 0
    last_data: str = ""


class TaskLogRaw(BaseModel):
    """One ``tasks_logs`` element of a ``task_stat`` response."""

    model_config = _RAW_CONFIG

    data: str | None = None
    descr: str | None = None
    status: int | None = None
    tm: str | None = None
    tm_id: str | None = None
    traceroute: str | None = None
    comment: Any = None


class TaskStatRaw(BaseModel):
    """One element of a ``task_stat`` response."""

    model_config = _RAW_CONFIG

    tasks_logs: list[TaskLogRaw] = Field(default_factory=list)
    uptime: str = ""


# ---------------------------------------------------------------------------
# Processed models
# ---------------------------------------------------------------------------


class SeriesKey(NamedTuple):
    """Identity of one exported series: ``(task_id, monitoring_point_id)``."""

    task_id: str
    mp_id: str


class TaskInfo(BaseModel):
    """A task from the upstream listing, snapshotted when it was fetched."""

    model_config = _PROCESSED_CONFIG

    enabled_status: int = Field(default=0, serialization_alias="EnabledStatus")
    id: int = Field(serialization_alias="ID")
    service_name: str = Field(default="", serialization_alias="ServiceName")
    url: str = Field(default="", serialization_alias="URL")
    task_status: int = Field(default=0, serialization_alias="TaskStatus")
    blacklist_status: int = Field(default=0, serialization_alias="BlackListStatus")
    virus_status: int = Field(default=0, serialization_alias="VirusStatus")
    timestamp: datetime = Field(serialization_alias="Timestamp")


class MonitoringPointInfo(BaseModel):
    """A monitoring point from the directory listing."""

    model_config = _PROCESSED_CONFIG

    id: str
    name: str = ""
    ip: str = ""
    gps: str = ""
    status: int = 0


class ConnectionResult(BaseModel):
    """One timestamped probe sample."""

    connect: float = 0.0
    dns: float = 0.0
    server: float = 0.0
    total: float = 0.0
    speed: int = 0
    timestamp: int = 0


class MonitoringPointEntry(BaseModel):
    """One task × one monitoring point with its samples.

    ``status`` is resolved from the directory by the exporter; it stays ``0``
    until then.
    """

    id: str
    name: str = ""
    status: int = 0
    results: list[ConnectionResult] = Field(default_factory=list)


class TaskLog(BaseModel):
    """One entry of a task's recent event log."""

    model_config = _PROCESSED_CONFIG

    data: str = Field(default="", serialization_alias="Data")
    description: str = Field(default="", serialization_alias="Description")
    status: int = Field(default=0, serialization_alias="Status")
    mp_name: str = Field(default="", serialization_alias="MPName")
    mp_id: str = Field(default="", serialization_alias="MPID")
    traceroute: str = Field(default="", serialization_alias="Traceroute")


class TaskStatEntry(BaseModel):
    """A task's event log, stamped with the task's identity by the exporter."""

    model_config = _PROCESSED_CONFIG

    task_id: str = Field(default="", serialization_alias="TaskID")
    task_name: str = Field(default="", serialization_alias="TaskName")
    timestamp: datetime | None = Field(default=None, serialization_alias="Timestamp")
    task_logs: list[TaskLog] = Field(default_factory=list, serialization_alias="TaskLogs")
