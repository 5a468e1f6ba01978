"""Pytest configuration and shared fixtures."""

import os
from unittest.mock import MagicMock

import pytest
from hypothesis import settings

from mqprobe.interfaces import FileCommit, MergeQueueGateway, PullRequest
from mqprobe.scenarios.base import ScenarioContext

# Configure Hypothesis profiles for different environments
settings.register_profile("ci", max_examples=100, deadline=None)
settings.register_profile("dev", max_examples=50, deadline=None)
settings.load_profile(os.environ.get("HYPOTHESIS_PROFILE", "dev"))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests without network access")
    config.addinivalue_line(
        "markers",
        "hypothesis: marks property-based tests using Hypothesis",
    )
    config.addinivalue_line(
        "markers",
        "live: runs against the testbed repository; needs GitHub credentials",
    )


@pytest.fixture
def make_pull():
    """Fixture providing a factory for PullRequest snapshots."""

    def _make(number: int, **kwargs) -> PullRequest:
        kwargs.setdefault("node_id", f"PR_node{number}")
        kwargs.setdefault("title", f"Feature {number}")
        return PullRequest(number=number, **kwargs)

    return _make


@pytest.fixture
def mock_gateway():
    """Fixture providing a MagicMock constrained to the gateway protocol."""
    gateway = MagicMock(spec=MergeQueueGateway)
    gateway.put_file.return_value = FileCommit(commit_sha="c0ffee1234567", content_sha="blob1")
    gateway.list_branches.return_value = []
    gateway.list_rulesets.return_value = []
    return gateway


@pytest.fixture
def no_sleep():
    """Fixture providing a recording replacement for time.sleep."""
    return MagicMock()


@pytest.fixture
def scenario_ctx(mock_gateway, no_sleep):
    """Fixture providing a ScenarioContext whose identities share one mock gateway."""
    return ScenarioContext(
        app=mock_gateway,
        user=mock_gateway,
        bypass_actor_id=1178750,
        check_integration_id=15368,
        sleep=no_sleep,
    )
