"""APATIT process entry-point.

Usage:
    python -m apatit [--api-key KEY] [--task-ids 1,2,3] [--once] [...]

Every flag overrides the environment variable of the same name (and the
``.env`` file); unset flags fall through to them.  The orchestration logic
lives in ``apatit.orchestrator``.  This module is intentionally thin: it
calls ``configure_logging()`` first so that every subsequent import already
has a working logger, then hands off to the orchestrator.

Exit codes:
    0  normal shutdown (SIGINT / SIGTERM)
    1  configuration or startup error
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any

from pydantic import ValidationError

from apatit.core import configure_logging
from apatit.core.exceptions import ConfigError, OrchestratorError
from apatit.core.settings import Settings
from apatit.core.version import NAME, VERSION

#: argparse ``dest`` → :class:`Settings` field for every settings flag.
_SETTINGS_FLAGS: tuple[str, ...] = (
    "api_key",
    "task_ids",
    "eng_mp_names",
    "locations_file",
    "api_update_delay",
    "api_data_time_step",
    "refresh_interval",
    "max_allowed_staleness_steps",
    "request_delay",
    "request_retries",
    "max_requests_per_second",
    "listen_address",
    "log_level",
    "log_format",
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=NAME,
        description="Advanced Ping-Admin Task Indicators Transducer: "
        "exports Ping-Admin task data as Prometheus metrics.",
    )
    parser.add_argument("--version", action="version", version=f"{NAME} {VERSION}")
    parser.add_argument("--api-key", default=None, help="Ping-Admin API key (env: API_KEY).")
    parser.add_argument(
        "--task-ids",
        default=None,
        metavar="IDS",
        help="Comma-separated task IDs to export (env: TASK_IDS).",
    )
    parser.add_argument(
        "--eng-mp-names",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Translate monitoring point names to English (env: ENG_MP_NAMES).",
    )
    parser.add_argument(
        "--locations-file",
        default=None,
        metavar="PATH",
        help="Point name translation table (env: LOCATIONS_FILE).",
    )
    parser.add_argument(
        "--api-update-delay",
        default=None,
        metavar="DURATION",
        help="Upstream reporting delay, e.g. 4m (env: API_UPDATE_DELAY).",
    )
    parser.add_argument(
        "--api-data-time-step",
        default=None,
        metavar="DURATION",
        help="Upstream sampling interval, e.g. 3m (env: API_DATA_TIME_STEP).",
    )
    parser.add_argument(
        "--refresh-interval",
        default=None,
        metavar="DURATION",
        help="Interval between refresh cycles, e.g. 3m (env: REFRESH_INTERVAL).",
    )
    parser.add_argument(
        "--max-allowed-staleness-steps",
        type=int,
        default=None,
        metavar="N",
        help="Staleness alert threshold exported as a gauge (env: MAX_ALLOWED_STALENESS_STEPS).",
    )
    parser.add_argument(
        "--request-delay",
        default=None,
        metavar="DURATION",
        help="Jitter floor between requests, e.g. 2s (env: REQUEST_DELAY).",
    )
    parser.add_argument(
        "--request-retries",
        type=int,
        default=None,
        metavar="N",
        help="Total attempts per API request (env: REQUEST_RETRIES).",
    )
    parser.add_argument(
        "--max-requests-per-second",
        type=int,
        default=None,
        metavar="N",
        help="API request budget per second (env: MAX_REQUESTS_PER_SECOND).",
    )
    parser.add_argument(
        "--listen-address",
        default=None,
        metavar="HOST:PORT",
        help="HTTP listen address, e.g. :8080 (env: LISTEN_ADDRESS).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single metrics and stats cycle and exit instead of serving.",
    )
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Build :class:`Settings` with every explicitly passed flag as an override."""
    overrides: dict[str, Any] = {
        name: getattr(args, name) for name in _SETTINGS_FLAGS if getattr(args, name) is not None
    }
    return Settings(**overrides)


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ValidationError as exc:
        print(f"{NAME}: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    # Configure logging BEFORE any orchestrator import so that every module
    # obtains a correctly-configured logger on first import.
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    logger = logging.getLogger(__name__)
    logger.info("%s %s starting up", NAME, VERSION)

    from apatit.orchestrator.runner import run_service  # noqa: PLC0415

    try:
        asyncio.run(run_service(settings, once=args.once))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except OrchestratorError as exc:
        logger.critical("Application initialization failed: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted — exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
