"""APATIT application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.  The CLI in
:mod:`apatit.__main__` passes its flags as init kwargs, which take priority
over both.

The field name is the **lowercase** version of the env-var name (e.g.
``MAX_REQUESTS_PER_SECOND`` → ``max_requests_per_second``).

Duration fields accept either a number of seconds or a compact duration
string::

    REFRESH_INTERVAL=180      # seconds
    REFRESH_INTERVAL=3m
    API_UPDATE_DELAY=4m
    REQUEST_DELAY=1m30s
    REQUEST_DELAY=500ms

Typical usage::

    from apatit.core.settings import Settings

    settings = Settings()                 # loads from env + .env
    settings.require_upstream()           # raises ConfigError if unusable
    host, port = settings.listen_host_port
"""

from __future__ import annotations

import logging
import re
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from apatit.core.exceptions import ConfigError

__all__ = ["Settings", "parse_duration", "split_listen_address"]

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_DURATION_PART_RE: re.Pattern[str] = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_UNIT_SECONDS: dict[str, float] = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: str | float | int) -> float:
    """Convert a duration value into seconds.

    Accepts ints/floats (already seconds), numeric strings, or compact
    strings made of ``<number><unit>`` parts where unit is one of
    ``h``, ``m``, ``s``, ``ms``.

    Raises:
        ValueError: If *value* cannot be interpreted.
    """
    if isinstance(value, (int, float)):
        return float(value)

    text = value.strip().lower()
    if not text:
        raise ValueError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    total = 0.0
    pos = 0
    for match in _DURATION_PART_RE.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def split_listen_address(value: str) -> tuple[str, int]:
    """Split ``"host:port"`` into ``(host, port)``; an empty host binds every interface.

    Raises:
        ValueError: If *value* has no valid port.
    """
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit() or not 0 < int(port) < 65536:
        raise ValueError(f"listen address must look like 'host:port', got {value!r}")
    return (host or "0.0.0.0", int(port))


def _csv_to_task_ids(value: str) -> list[int]:
    """Split a comma-separated string into integer task IDs.

    Blank items are skipped; a non-integer item raises :class:`ValueError`.
    """
    ids: list[int] = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            ids.append(int(item))
        except ValueError:
            raise ValueError(f"{item!r} is not a valid integer") from None
    return ids


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Init kwargs (CLI flags).
    2. Actual environment variables.
    3. ``.env`` file in the working directory.
    4. Field defaults.

    ``api_key`` and ``task_ids`` default to empty so that the object can be
    built in tests and tooling; :meth:`require_upstream` enforces them at
    process startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Upstream
    # ------------------------------------------------------------------
    api_key: str = Field(default="", description="Ping-Admin API key.")
    task_ids: Annotated[list[int], NoDecode] = Field(
        default_factory=list,
        description="Task IDs to export (comma-separated in env).",
    )
    eng_mp_names: bool = Field(
        default=True,
        description="Translate monitoring point names to English.",
    )
    locations_file: str = Field(
        default="locations.json",
        description="Path to the monitoring point name translation table.",
    )

    # ------------------------------------------------------------------
    # Upstream timing model
    # ------------------------------------------------------------------
    api_update_delay: float = Field(
        default=240.0,
        ge=0.0,
        description="Fixed delay (s) before new upstream data becomes visible.",
    )
    api_data_time_step: float = Field(
        default=180.0,
        gt=0.0,
        description="Fixed upstream sampling interval (s).",
    )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------
    refresh_interval: float = Field(
        default=180.0,
        gt=0.0,
        description="Seconds between scheduler cycles.",
    )
    max_allowed_staleness_steps: int = Field(
        default=3,
        ge=0,
        description="Staleness alert threshold, exported as a gauge.",
    )

    # ------------------------------------------------------------------
    # Request policy
    # ------------------------------------------------------------------
    request_delay: float = Field(
        default=2.0,
        ge=0.0,
        description="Jitter floor (s); pauses are drawn from [d, 2d].",
    )
    request_retries: int = Field(
        default=3,
        ge=1,
        description="Total attempts per upstream call.",
    )
    max_requests_per_second: int = Field(
        default=2,
        description="Upstream request budget per rolling second (<= 0 means 2).",
    )

    # ------------------------------------------------------------------
    # Serving / runtime
    # ------------------------------------------------------------------
    listen_address: str = Field(
        default=":8080",
        description="host:port for the HTTP server.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("task_ids", mode="before")
    @classmethod
    def _parse_csv_task_ids(cls, v: str | list[int]) -> list[int]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_task_ids(v)
        return v

    @field_validator(
        "api_update_delay",
        "api_data_time_step",
        "refresh_interval",
        "request_delay",
        mode="before",
    )
    @classmethod
    def _parse_durations(cls, v: str | float | int) -> float:
        return parse_duration(v)

    @field_validator("max_requests_per_second")
    @classmethod
    def _default_rate(cls, v: int) -> int:
        return v if v > 0 else 2

    @field_validator("listen_address")
    @classmethod
    def _validate_listen_address(cls, v: str) -> str:
        split_listen_address(v)
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def listen_host_port(self) -> tuple[str, int]:
        """Split :attr:`listen_address` into ``(host, port)``.

        An empty host (``":8080"``) binds every interface.
        """
        return split_listen_address(self.listen_address)

    @property
    def upstream_configured(self) -> bool:
        """``True`` if an API key and at least one task ID are set."""
        return bool(self.api_key and self.task_ids)

    def require_upstream(self) -> None:
        """Raise :class:`ConfigError` unless the upstream can be polled."""
        if not self.api_key:
            raise ConfigError(
                "API key is required, please set --api-key or API_KEY environment variable"
            )
        if not self.task_ids:
            raise ConfigError(
                "task IDs are required, please set --task-ids or TASK_IDS environment variable"
            )
