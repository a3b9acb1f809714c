"""Live integration tests against the real Ping-Admin API.

These tests exercise :class:`~apatit.upstream.client.PingAdminClient` and a
full metrics cycle against the **real** endpoint.  They validate that:

* Our query parameters (``a``, ``sa``, ``enc``, ``api_key``, ``id``,
  ``limit``, ``notnull``) are still accepted.
* The response bodies still validate against the raw payload models, so a
  silent API shape change shows up here before it empties production
  dashboards.

Default behaviour
-----------------
All tests in this module are marked ``@pytest.mark.integration`` and are
**excluded from the default test run** (``addopts = "-m 'not integration'"``
in ``pyproject.toml``).

Run on demand::

    pytest -m integration tests/integration/test_ping_admin_live.py

Credential guards
-----------------
Every test is **skipped** unless ``API_KEY`` and ``TASK_IDS`` are set.  They
are read from the real ``.env`` file loaded at module import time.  Each test
makes only a handful of requests and respects the default rate limit.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from apatit.core.exceptions import NoDataError
from apatit.core.settings import Settings
from apatit.orchestrator.exporter import ExporterConfig, TaskExporter
from apatit.orchestrator.metrics import ExporterMetrics
from apatit.orchestrator.pipeline import run_metrics_cycle
from apatit.upstream.client import PingAdminClient

__all__: list[str] = []

logger = logging.getLogger(__name__)

load_dotenv()

_CONFIGURED: bool = bool(os.environ.get("API_KEY") and os.environ.get("TASK_IDS"))

_skip_if_unconfigured = pytest.mark.skipif(
    not _CONFIGURED,
    reason=(
        "API_KEY / TASK_IDS are not set — skipping live Ping-Admin integration tests. "
        "Add them to .env or export them in your shell."
    ),
)


@pytest.fixture()
def live_settings() -> Settings:
    """Settings from the real environment with jitter shortened for speed."""
    return Settings().model_copy(update={"request_delay": 0.5})


@pytest.mark.integration
class TestPingAdminLive:
    @_skip_if_unconfigured
    async def test_listings_validate(self, live_settings: Settings) -> None:
        async with PingAdminClient.from_settings(live_settings) as client:
            tasks = await client.get_all_tasks()
            points = await client.get_monitoring_points()

        logger.info("Live API returned %d tasks and %d monitoring points", len(tasks), len(points))
        assert isinstance(tasks, list)
        assert points, "the monitoring point directory should never be empty"
        assert all(p.id for p in points)

    @_skip_if_unconfigured
    async def test_configured_task_is_listed(self, live_settings: Settings) -> None:
        async with PingAdminClient.from_settings(live_settings) as client:
            tasks = await client.get_all_tasks()

        listed = {t.id for t in tasks}
        assert live_settings.task_ids[0] in listed

    @_skip_if_unconfigured
    async def test_task_stat_validates(self, live_settings: Settings) -> None:
        async with PingAdminClient.from_settings(live_settings) as client:
            try:
                entry = await client.get_task_stat(live_settings.task_ids[0])
            except NoDataError:
                pytest.skip("task has no event log yet")

        assert isinstance(entry.task_logs, list)

    @_skip_if_unconfigured
    async def test_metrics_cycle_publishes(self, live_settings: Settings) -> None:
        metrics = ExporterMetrics()
        async with PingAdminClient.from_settings(live_settings) as client:
            exporter = TaskExporter.from_metadata(
                ExporterConfig.from_settings(live_settings, live_settings.task_ids[0]),
                client,
                metrics,
                await client.get_all_tasks(),
            )
            current, stats = await run_metrics_cycle([exporter], metrics, {})

        assert stats.failed_tasks == []
        logger.info("Live metrics cycle published %d series", len(current))
        assert b"ping_admin_exporter_loops_total" in metrics.render()
