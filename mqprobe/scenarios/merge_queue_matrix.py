"""The merge-queue matrix scenario.

For one ScenarioParams: two feature PRs (optionally one carrying the
conflict marker) are enqueued against a queue branch configured with the
scenario's merge-queue policy, the queue is watched until it drains, and the
outcome is reduced to values stable enough to compare across runs.
"""

import contextvars
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from mqprobe.interfaces import PullRequest
from mqprobe.logger import get_logger
from mqprobe.matrix import ScenarioParams
from mqprobe.poller import wait_for_queue_drain
from mqprobe.polling import QUEUE_DRAIN_POLICY, RetryPolicy
from mqprobe.provisioner import create_main_branch
from mqprobe.scenarios.base import (
    SETTLE_SECONDS,
    ScenarioContext,
    cleanup_branches,
    create_features,
    enqueue,
    merge_time_bucket,
    scenario_phase,
)
from mqprobe.telemetry import record_merge_latency

logger = get_logger(__name__)

# Pause after the queue drains so the final PR state is readable
DRAIN_SETTLE_SECONDS = 2


@dataclass
class MatrixScenarioState:
    """What provisioning produced and observation needs."""

    params: ScenarioParams
    main_sha: str
    pulls: list[PullRequest]
    time_origin: datetime


@dataclass
class PullRequestOutcome:
    number: int
    merged: bool
    merged_at: int | None = None  # Seconds since origin, 20s buckets

    def to_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {"is_merged": self.merged}
        if self.merged:
            snapshot["merged_at"] = self.merged_at
        return snapshot


@dataclass
class MatrixScenarioResult:
    """Final state of a matrix scenario."""

    params: ScenarioParams
    drained: bool
    pulls: list[PullRequestOutcome]
    main_commits: list[str] = field(default_factory=list)

    def to_snapshot(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = {
            f"pr{index}": pull.to_snapshot() for index, pull in enumerate(self.pulls, 1)
        }
        snapshot["main_commits"] = list(self.main_commits)
        return snapshot


@dataclass
class MatrixRunOutcome:
    """Result of running one scenario as part of the whole matrix."""

    params: ScenarioParams
    result: MatrixScenarioResult | None = None
    error: Exception | None = None


def setup_scenario(
    ctx: ScenarioContext,
    params: ScenarioParams,
    existing_branches: Iterable[str] | None = None,
) -> MatrixScenarioState:
    """Cleanup and provision: ruleset, queue branch, both PRs enqueued.

    Raises:
        GitHubAPIError: If any provisioning call fails
        ScenarioSetupError: If a PR could not be enqueued
    """
    prefix = params.branch_prefix

    with scenario_phase(prefix, "cleanup"):
        cleanup_branches(ctx, prefix, existing_branches)

    with scenario_phase(prefix, "provision"):
        ctx.upsert_ruleset(prefix, params.policy)
        main_sha = create_main_branch(ctx.app, prefix)
        pulls = create_features(
            ctx, prefix, {feature: params.commit_suffix(feature) for feature in (1, 2)}
        )

        # Let the pull_request checks get skipped before enqueueing
        ctx.sleep(SETTLE_SECONDS)

        time_origin = ctx.clock()
        enqueue(ctx, pulls[0])
        ctx.sleep(params.delay)
        enqueue(ctx, pulls[1])

    return MatrixScenarioState(
        params=params, main_sha=main_sha, pulls=pulls, time_origin=time_origin
    )


def observe_scenario(
    ctx: ScenarioContext,
    state: MatrixScenarioState,
    policy: RetryPolicy = QUEUE_DRAIN_POLICY,
) -> bool:
    """Wait for the scenario's queue to drain.

    Returns:
        Whether the queue was observed empty
    """
    prefix = state.params.branch_prefix
    with scenario_phase(prefix, "observe"):
        drained = wait_for_queue_drain(ctx.user, prefix, policy, sleep=ctx.sleep)
        if drained:
            ctx.sleep(DRAIN_SETTLE_SECONDS)
    return drained


def collect_results(
    ctx: ScenarioContext, state: MatrixScenarioState, drained: bool
) -> MatrixScenarioResult:
    """Read the final PR states and the commits that landed on the queue branch."""
    prefix = state.params.branch_prefix
    with scenario_phase(prefix, "assert"):
        outcomes = []
        for pull in state.pulls:
            current = ctx.user.get_pull_request(pull.number)
            bucket = merge_time_bucket(current.merged_at, state.time_origin)
            if current.merged and current.merged_at is not None:
                record_merge_latency(
                    (current.merged_at - state.time_origin).total_seconds(),
                    prefix,
                    pull.number,
                )
            outcomes.append(
                PullRequestOutcome(number=pull.number, merged=current.merged, merged_at=bucket)
            )

        main_commits = ctx.user.compare_commit_messages(state.main_sha, f"{prefix}/main")

    merged = sum(1 for o in outcomes if o.merged)
    logger.info(f"{merged}/{len(outcomes)} PRs merged, {len(main_commits)} commit(s) on main")
    return MatrixScenarioResult(
        params=state.params, drained=drained, pulls=outcomes, main_commits=main_commits
    )


def run_scenario(
    ctx: ScenarioContext,
    params: ScenarioParams,
    existing_branches: Iterable[str] | None = None,
    drain_policy: RetryPolicy = QUEUE_DRAIN_POLICY,
) -> MatrixScenarioResult:
    """Run the whole lifecycle of one matrix scenario."""
    state = setup_scenario(ctx, params, existing_branches)
    drained = observe_scenario(ctx, state, drain_policy)
    return collect_results(ctx, state, drained)


def run_matrix(
    ctx: ScenarioContext,
    matrix: list[ScenarioParams],
    existing_branches: Iterable[str] | None = None,
    max_concurrent: int = 6,
    drain_policy: RetryPolicy = QUEUE_DRAIN_POLICY,
) -> dict[str, MatrixRunOutcome]:
    """Run many scenarios concurrently.

    Scenarios share the testbed repository and are kept apart only by their
    branch prefixes. A failing scenario does not stop the others; its
    exception is returned in its outcome for the caller to raise.

    Args:
        ctx: Scenario context shared by all scenarios
        matrix: Scenarios to run
        existing_branches: Branch listing fetched once for every cleanup
        max_concurrent: Maximum number of scenarios running at once
        drain_policy: Attempt limit for the queue to drain

    Returns:
        Outcomes keyed by branch prefix
    """
    if existing_branches is None:
        existing_branches = ctx.user.list_branches()
    branches = list(existing_branches)

    outcomes: dict[str, MatrixRunOutcome] = {}
    with ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="scenario-") as executor:
        futures = {
            executor.submit(
                contextvars.copy_context().run,
                run_scenario,
                ctx,
                params,
                branches,
                drain_policy,
            ): params
            for params in matrix
        }
        for future in as_completed(futures):
            params = futures[future]
            try:
                outcomes[params.branch_prefix] = MatrixRunOutcome(params, result=future.result())
            except Exception as e:
                logger.error(f"Scenario {params.branch_prefix} failed: {e}")
                outcomes[params.branch_prefix] = MatrixRunOutcome(params, error=e)

    failed = sum(1 for o in outcomes.values() if o.error is not None)
    logger.info(f"Matrix finished: {len(outcomes) - failed} completed, {failed} failed")
    return outcomes
