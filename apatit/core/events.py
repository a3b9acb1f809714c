"""Structured log event name constants for the APATIT schedulers.

Every key transition emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode it surfaces as
``extra.event``; in text mode the message is self-describing.

Usage example::

    import logging
    from apatit.core import events

    logger = logging.getLogger(__name__)

    logger.info("Cycle started", extra={"event": events.CYCLE_START})
"""

from __future__ import annotations

__all__ = [
    # Cycle lifecycle
    "CYCLE_START",
    "CYCLE_COMPLETE",
    "SCHEDULER_STOPPED",
    # Exporter lifecycle
    "EXPORTER_INIT_ERROR",
    "TASK_REFRESH_OK",
    "TASK_REFRESH_ERROR",
    "SERIES_DELETED",
    # Monitoring point classification
    "MP_INVALID_STATUS",
    "MP_UNAVAILABLE",
    "MP_DATA_EXPIRED",
    "MP_NO_DATA",
    # Stats snapshot
    "STATS_PUBLISHED",
    "DIRECTORY_FALLBACK",
]

# ---------------------------------------------------------------------------
# Cycle lifecycle
# ---------------------------------------------------------------------------

#: Emitted once at the start of every scheduler cycle.
CYCLE_START: str = "CYCLE_START"

#: Emitted once every per-task unit of a cycle has joined.
CYCLE_COMPLETE: str = "CYCLE_COMPLETE"

#: Emitted when a scheduler observes the stop signal at a tick boundary.
SCHEDULER_STOPPED: str = "SCHEDULER_STOPPED"

# ---------------------------------------------------------------------------
# Exporter lifecycle
# ---------------------------------------------------------------------------

#: A configured task could not be turned into an exporter at startup.
EXPORTER_INIT_ERROR: str = "EXPORTER_INIT_ERROR"

#: One task's refresh returned successfully.
TASK_REFRESH_OK: str = "TASK_REFRESH_OK"

#: One task's refresh raised; its contribution to the cycle is dropped.
TASK_REFRESH_ERROR: str = "TASK_REFRESH_ERROR"

#: A series absent from the current cycle was removed from the registry.
SERIES_DELETED: str = "SERIES_DELETED"

# ---------------------------------------------------------------------------
# Monitoring point classification
# ---------------------------------------------------------------------------

#: Directory reported a status outside {0, 1}; forced to 0.
MP_INVALID_STATUS: str = "MP_INVALID_STATUS"

#: Directory reports the point as unavailable; series removed.
MP_UNAVAILABLE: str = "MP_UNAVAILABLE"

#: Latest sample is at least 24 hours old; series removed.
MP_DATA_EXPIRED: str = "MP_DATA_EXPIRED"

#: The point returned no samples this cycle.
MP_NO_DATA: str = "MP_NO_DATA"

# ---------------------------------------------------------------------------
# Stats snapshot
# ---------------------------------------------------------------------------

#: A stats cycle published its JSON document into the cache.
STATS_PUBLISHED: str = "STATS_PUBLISHED"

#: The per-cycle point directory fetch failed; the previous one is reused.
DIRECTORY_FALLBACK: str = "DIRECTORY_FALLBACK"
