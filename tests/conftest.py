"""
Shared fixtures for the upskill test suite.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from upskill.config.schema import AppConfig, LoggingConfig
from upskill.logging import configure_logging
from upskill.registry.models import PackageSummary

FIXED_NOW = datetime(2026, 10, 18, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route structlog through stdlib with no stderr handlers for every test."""
    configure_logging(LoggingConfig(), quiet=True)
    yield


@pytest.fixture
def root(tmp_path: Path) -> Path:
    return tmp_path / "upskill-root"


@pytest.fixture
def app_config(root: Path) -> AppConfig:
    return AppConfig(install={"root": root, "lock_timeout": 5})


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


def make_summary(**overrides) -> PackageSummary:
    data = {
        "name": "widgetkit",
        "version": "2.1.0",
        "description": "Widgets for everyone",
        "registry": "npm",
    }
    data.update(overrides)
    return PackageSummary(**data)


@pytest.fixture
def summary_factory():
    return make_summary
