"""Shared building blocks of the scenario runners.

A scenario is a fixed lifecycle run against one branch prefix: cleanup,
provision, observe, assert. This module provides the pieces every scenario
shares: the context carrying both identities, branch cleanup, the
concurrent feature fan-out and phase instrumentation.
"""

import contextvars
import math
import time
from collections.abc import Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from mqprobe.config import Config
from mqprobe.driver import (
    EnqueueOutcome,
    EnqueueResult,
    create_feature_branch,
    create_pull_request,
    merge_when_ready,
)
from mqprobe.github_clients import build_clients
from mqprobe.interfaces import MergeQueueGateway, PullRequest
from mqprobe.logger import get_logger, get_scenario_context, set_scenario_context
from mqprobe.poller import Clock, utc_now
from mqprobe.polling import Sleep
from mqprobe.provisioner import MergeQueuePolicy, upsert_ruleset
from mqprobe.telemetry import get_tracer, record_phase_duration

logger = get_logger(__name__)

SCENARIO_BRANCHES = ("main", "feature-1", "feature-2")
# Settle time for branch deletions and PR check skipping to propagate
SETTLE_SECONDS = 5
MERGE_TIME_BUCKET_SECONDS = 20


class ScenarioSetupError(Exception):
    """Raised when a scenario cannot reach the state it needs to observe."""

    pass


@dataclass
class ScenarioContext:
    """Everything a scenario needs to talk to the testbed.

    Attributes:
        app: Client acting as the automation app (ruleset bypass actor)
        user: Client acting as the user who opens and enqueues PRs
        bypass_actor_id: App id allowed to bypass the rulesets
        check_integration_id: App that must report the required check
        sleep: Sleep function for settle delays (injected by tests)
        clock: Wall clock used for merge timing (injected by tests)
    """

    app: MergeQueueGateway
    user: MergeQueueGateway
    bypass_actor_id: int
    check_integration_id: int
    sleep: Sleep = time.sleep
    clock: Clock = utc_now

    @classmethod
    def from_config(cls, config: Config) -> "ScenarioContext":
        """Build a context with both GitHub identities from configuration."""
        app, user = build_clients(config)
        return cls(
            app=app,
            user=user,
            bypass_actor_id=config.bypass_actor_id or config.app_id,
            check_integration_id=config.required_check_integration_id,
        )

    def upsert_ruleset(self, branch_prefix: str, policy: MergeQueuePolicy) -> int:
        return upsert_ruleset(
            self.app,
            branch_prefix,
            policy,
            bypass_actor_id=self.bypass_actor_id,
            check_integration_id=self.check_integration_id,
        )


@contextmanager
def scenario_phase(scenario: str, phase: str) -> Iterator[None]:
    """Run one scenario phase inside a span, timed and log-tagged.

    Args:
        scenario: Branch prefix of the scenario
        phase: Phase name ("cleanup", "provision", "observe", "assert")
    """
    previous = get_scenario_context()
    set_scenario_context(scenario)
    tracer = get_tracer()
    start = time.monotonic()
    try:
        with tracer.start_as_current_span(
            f"scenario.{phase}", attributes={"scenario": scenario, "phase": phase}
        ):
            logger.debug(f"Starting {phase}")
            yield
    finally:
        elapsed = time.monotonic() - start
        record_phase_duration(elapsed, scenario, phase)
        logger.info(f"Finished {phase} in {elapsed:.1f}s")
        set_scenario_context(previous)


def cleanup_branches(
    ctx: ScenarioContext,
    branch_prefix: str,
    existing_branches: Iterable[str] | None = None,
    branches: Iterable[str] = SCENARIO_BRANCHES,
) -> list[str]:
    """Delete leftover branches of a previous run of the scenario.

    Deleting a branch closes the pull requests from and into it.

    Args:
        ctx: Scenario context
        branch_prefix: Scenario branch prefix
        existing_branches: Branch listing fetched up front; fetched now if None
        branches: Branch names under the prefix to delete

    Returns:
        Full names of the deleted branches
    """
    if existing_branches is None:
        existing_branches = ctx.user.list_branches()
    existing = set(existing_branches)

    deleted = []
    for branch in branches:
        name = f"{branch_prefix}/{branch}"
        if name in existing:
            ctx.app.delete_ref(name)
            deleted.append(name)

    if deleted:
        logger.info(f"Cleanup deleted {len(deleted)} branch(es)")
    ctx.sleep(SETTLE_SECONDS)
    return deleted


def _create_feature(
    ctx: ScenarioContext, branch_prefix: str, feature: int, suffix: str | None
) -> PullRequest:
    create_feature_branch(ctx.app, branch_prefix, feature, suffix)
    return create_pull_request(ctx.user, branch_prefix, feature)


def create_features(
    ctx: ScenarioContext,
    branch_prefix: str,
    suffixes: dict[int, str | None],
) -> list[PullRequest]:
    """Create feature branches and their pull requests concurrently.

    Args:
        ctx: Scenario context
        branch_prefix: Scenario branch prefix
        suffixes: Commit message suffix per feature number

    Returns:
        Pull requests in the order of the given features

    Raises:
        The first failure of any feature, after all have finished
    """
    features = list(suffixes)
    with ThreadPoolExecutor(
        max_workers=len(features), thread_name_prefix="feature-"
    ) as executor:
        # Each task gets its own copy so log lines keep the scenario tag
        futures = [
            executor.submit(
                contextvars.copy_context().run,
                _create_feature,
                ctx,
                branch_prefix,
                feature,
                suffixes[feature],
            )
            for feature in features
        ]
    return [future.result() for future in futures]


def enqueue(ctx: ScenarioContext, pull: PullRequest) -> EnqueueResult:
    """Enqueue a pull request as the user, failing on transport errors."""
    logger.info(f"Enqueue PR #{pull.number}")
    result = merge_when_ready(ctx.user, pull.node_id)
    if result.outcome is EnqueueOutcome.ERROR:
        raise ScenarioSetupError(f"Could not enqueue PR #{pull.number}: {result.error}") from (
            result.error
        )
    return result


def merge_time_bucket(merged_at: datetime | None, origin: datetime) -> int | None:
    """Coarse merge time: seconds since origin, floored to 20s buckets.

    Returns:
        The bucket start in seconds, or None when not merged
    """
    if merged_at is None:
        return None
    elapsed = (merged_at - origin).total_seconds()
    return math.floor(elapsed / MERGE_TIME_BUCKET_SECONDS) * MERGE_TIME_BUCKET_SECONDS
