"""Core domain models, settings, logging configuration, and shared utilities."""

from apatit.core.exceptions import (
    ApatitError,
    ConfigError,
    DecodeError,
    NoDataError,
    OrchestratorError,
    TaskNotFoundError,
    TransportError,
    UpstreamError,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from apatit.core.logging_config import JsonFormatter, configure_logging, mask_api_key
from apatit.core.models import (
    ConnectionResult,
    MonitoringPointEntry,
    MonitoringPointInfo,
    SeriesKey,
    TaskInfo,
    TaskLog,
    TaskStatEntry,
)
from apatit.core.settings import Settings
from apatit.core.translator import NameTranslator

__all__ = [
    # Logging
    "configure_logging",
    "mask_api_key",
    "JsonFormatter",
    # Domain models
    "ConnectionResult",
    "MonitoringPointEntry",
    "MonitoringPointInfo",
    "SeriesKey",
    "TaskInfo",
    "TaskLog",
    "TaskStatEntry",
    # Settings / collaborators
    "Settings",
    "NameTranslator",
    # Exceptions — base
    "ApatitError",
    # Exceptions — config
    "ConfigError",
    # Exceptions — upstream
    "UpstreamError",
    "TransportError",
    "UpstreamStatusError",
    "DecodeError",
    "UpstreamUnavailableError",
    "NoDataError",
    # Exceptions — construction / orchestration
    "TaskNotFoundError",
    "OrchestratorError",
]
