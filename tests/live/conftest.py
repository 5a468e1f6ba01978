"""Fixtures for scenarios run against the live testbed repository.

Every test here talks to GitHub. Credentials come from .mqprobe/config or the
environment; without them the tests are skipped.
"""

from pathlib import Path

import pytest

from mqprobe import __version__
from mqprobe.config import Config, MissingConfigError, load_config
from mqprobe.logger import setup_logging
from mqprobe.scenarios.base import ScenarioContext
from mqprobe.snapshots import SnapshotStore
from mqprobe.telemetry import init_telemetry

SNAPSHOT_DIR = Path(__file__).parent / "__snapshots__"


@pytest.fixture(scope="session")
def live_config() -> Config:
    """Fixture loading the testbed configuration.

    Skips when credentials are absent; malformed settings fail the session.
    """
    try:
        config = load_config()
    except MissingConfigError as e:
        pytest.skip(f"Testbed credentials not configured: {e}")

    setup_logging(config.log_file, config.log_size, config.log_backups)
    init_telemetry(config.otel_endpoint, config.otel_service_name, __version__)
    return config


@pytest.fixture(scope="session")
def live_ctx(live_config) -> ScenarioContext:
    """Fixture providing both GitHub identities, checked against the testbed."""
    ctx = ScenarioContext.from_config(live_config)
    ctx.app.validate_connection()
    ctx.user.validate_connection()
    return ctx


@pytest.fixture(scope="module")
def existing_branches(live_ctx) -> list[str]:
    """Fixture listing the testbed's branches once per test module."""
    return live_ctx.user.list_branches()


@pytest.fixture(scope="module")
def snapshots(request) -> SnapshotStore:
    """Fixture providing the snapshot file of the requesting test module."""
    module = Path(request.module.__file__).stem
    return SnapshotStore(SNAPSHOT_DIR / f"{module}.yaml")
