"""Shared pytest fixtures and configuration for the APATIT test suite.

This file is loaded automatically by pytest before any test module.
It provides project-wide fixtures used across unit and integration tests.
"""

from __future__ import annotations

import logging
import os

import pytest
from pydantic_settings import SettingsConfigDict

from apatit.core import configure_logging
from apatit.core.settings import Settings
from apatit.orchestrator.metrics import ExporterMetrics


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _configure_test_logging() -> None:
    """Force DEBUG logging in text format for every test.

    Using ``force=True`` ensures the configuration is applied even when
    pytest's own ``log_cli`` handler is already present.
    """
    configure_logging(level="DEBUG", fmt="text", force=True)


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every APATIT env var for the duration of a test.

    Also disables pydantic-settings ``.env`` file loading so that a local
    ``.env`` with a real API key does not leak into Settings isolation tests.
    """
    settings_vars = {name.upper() for name in Settings.model_fields}
    for key in list(os.environ):
        if key in settings_vars:
            monkeypatch.delenv(key, raising=False)

    monkeypatch.setattr(
        Settings,
        "model_config",
        SettingsConfigDict(
            env_file=None,
            env_file_encoding="utf-8",
            extra="ignore",
        ),
    )


# ---------------------------------------------------------------------------
# Shared state objects
# ---------------------------------------------------------------------------


@pytest.fixture()
def metrics() -> ExporterMetrics:
    """A fresh :class:`ExporterMetrics` bound to its own registry."""
    return ExporterMetrics()


@pytest.fixture()
def logger() -> logging.Logger:
    """Return a ``logging.Logger`` scoped to the running test."""
    return logging.getLogger("tests")
