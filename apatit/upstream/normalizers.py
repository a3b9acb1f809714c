"""Field normalisation for Ping-Admin payloads.

The Ping-Admin API sends most numbers as strings (``"0.112"``, ``"1718000000"``)
and occasionally as empty strings or garbage.  The decode policy is split in
two:

* **Structure** is all-or-nothing and enforced by the ``*Raw`` models in
  :mod:`apatit.core.models`.  A payload that does not validate fails the
  whole call with :class:`~apatit.core.exceptions.DecodeError`.
* **Numeric sub-fields** are best-effort and go through :func:`parse_or_zero`:
  an unparsable value becomes ``0`` and a warning is logged; the record
  itself survives.

The ``to_*`` mappers convert validated raw models into the processed models
the rest of the application uses.

Typical usage::

    from apatit.upstream.normalizers import parse_or_zero, to_monitoring_point_entry

    value, warning = parse_or_zero("0.1", "connect")          # → (0.1, None)
    value, warning = parse_or_zero("n/a", "speed", int)       # → (0, "...")
    entry = to_monitoring_point_entry(raw_entry)
"""

from __future__ import annotations

import logging
import math
import re
from datetime import UTC, datetime

from apatit.core.models import (
    ConnectionResult,
    ConnectionResultRaw,
    GraphStatEntryRaw,
    MonitoringPointEntry,
    MonitoringPointInfo,
    MonitoringPointRaw,
    NumericField,
    TaskInfo,
    TaskLog,
    TaskLogRaw,
    TaskRaw,
    TaskStatEntry,
    TaskStatRaw,
)

__all__ = [
    "parse_or_zero",
    "to_connection_result",
    "to_monitoring_point_entry",
    "to_monitoring_point_info",
    "to_task_info",
    "to_task_log",
    "to_task_stat_entry",
]

logger = logging.getLogger(__name__)

# Go-style integer literal: optional sign, digits only (no "1_000", no spaces).
_INT_RE: re.Pattern[str] = re.compile(r"[+-]?\d+")


# ---------------------------------------------------------------------------
# Numeric decode policy
# ---------------------------------------------------------------------------


def parse_or_zero(
    value: NumericField,
    field: str,
    kind: type[int] | type[float] = float,
) -> tuple[int | float, str | None]:
    """Parse *value* as *kind*, falling back to zero.

    ``None`` and ``""`` mean "not reported" and silently yield zero.  Any other
    value that cannot be interpreted yields zero plus a warning string
    describing the failure; callers decide whether to log it.

    Args:
        value: Raw scalar from the payload.
        field: Field name, used in the warning text.
        kind: ``float`` or ``int``.

    Returns:
        ``(parsed_value, warning)`` where *warning* is ``None`` on success.

    Examples::

        parse_or_zero("0.25", "dns")             # → (0.25, None)
        parse_or_zero("", "dns")                 # → (0.0, None)
        parse_or_zero("12.5", "speed", int)      # → (0, "failed to parse int ...")
    """
    zero = kind(0)
    if value is None or value == "":
        return zero, None

    if kind is int:
        if isinstance(value, int):
            return int(value), None
        if isinstance(value, float) and value.is_integer():
            return int(value), None
        if isinstance(value, str) and _INT_RE.fullmatch(value):
            return int(value), None
    else:
        if isinstance(value, (int, float)):
            return float(value), None
        try:
            parsed = float(value)
        except ValueError:
            pass
        else:
            if math.isfinite(parsed):
                return parsed, None

    return zero, f"failed to parse {kind.__name__} value for field {field!r}: {value!r}"


def _field(value: NumericField, field: str, kind: type[int] | type[float] = float) -> int | float:
    parsed, warning = parse_or_zero(value, field, kind)
    if warning is not None:
        logger.warning("%s — using 0", warning)
    return parsed


# ---------------------------------------------------------------------------
# Raw → processed mappers
# ---------------------------------------------------------------------------


def to_connection_result(raw: ConnectionResultRaw) -> ConnectionResult:
    return ConnectionResult(
        connect=_field(raw.connect, "connect"),
        dns=_field(raw.dns, "dns"),
        server=_field(raw.server, "server"),
        total=_field(raw.total, "total"),
        speed=_field(raw.speed, "speed", int),
        timestamp=_field(raw.tmstamp, "timestamp", int),
    )


def to_monitoring_point_entry(raw: GraphStatEntryRaw) -> MonitoringPointEntry:
    """Convert one ``task_graph_stat`` element; status is resolved later."""
    return MonitoringPointEntry(
        id=raw.tm_id,
        name=raw.tm_name,
        results=[to_connection_result(r) for r in raw.tm_res],
    )


def to_monitoring_point_info(raw: MonitoringPointRaw) -> MonitoringPointInfo:
    return MonitoringPointInfo(
        id=raw.id,
        name=raw.name,
        ip=raw.ip,
        gps=raw.gps,
        status=_field(raw.status, "status", int),
    )


def to_task_info(raw: TaskRaw, fetched_at: datetime | None = None) -> TaskInfo:
    """Convert one ``tasks`` element, stamping it with *fetched_at* (default: now)."""
    return TaskInfo(
        enabled_status=raw.status,
        id=raw.tid,
        service_name=raw.nazv,
        url=raw.name,
        task_status=raw.log_status,
        blacklist_status=raw.rk_log_status,
        virus_status=raw.sb_log_status,
        timestamp=fetched_at or datetime.now(UTC),
    )


def to_task_log(raw: TaskLogRaw) -> TaskLog:
    return TaskLog(
        data=raw.data or "",
        description=raw.descr or "",
        status=raw.status or 0,
        mp_name=raw.tm or "",
        mp_id=raw.tm_id or "",
        traceroute=raw.traceroute or "",
    )


def to_task_stat_entry(raw: TaskStatRaw) -> TaskStatEntry:
    """Convert one ``task_stat`` element.

    Task identity and timestamp are left empty; the exporter stamps them.
    """
    return TaskStatEntry(task_logs=[to_task_log(r) for r in raw.tasks_logs])
