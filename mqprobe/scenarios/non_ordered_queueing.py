"""Probe: does the queue merge in enqueue order or in readiness order?

PR 1 is tested by a slow 30s workflow and enqueued first. PR 2 carries a
5s variant of the workflow on its own branch and is enqueued shortly after.
If PR 2 merges first, the queue merges entries as they become ready rather
than first in, first out. The probe only reports what it saw.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from mqprobe.driver import create_feature_branch, create_pull_request
from mqprobe.logger import get_logger
from mqprobe.poller import wait_for_all_merged
from mqprobe.polling import BOTH_MERGED_POLICY, RetryPolicy
from mqprobe.provisioner import MergeQueuePolicy, create_main_branch, upsert_workflow
from mqprobe.scenarios.base import (
    SETTLE_SECONDS,
    ScenarioContext,
    cleanup_branches,
    enqueue,
    scenario_phase,
)
from mqprobe.telemetry import record_merge_latency

logger = get_logger(__name__)

BRANCH_PREFIX = "non-ordered-queueing"
SLOW_CI_SECONDS = 30
FAST_CI_SECONDS = 5

POLICY = MergeQueuePolicy(
    merge_method="MERGE",
    min_entries_to_merge=1,
    max_entries_to_merge=1,
    max_entries_to_build=3,
    min_entries_to_merge_wait_minutes=1,
    grouping_strategy="ALLGREEN",
)


class MergeOrdering(Enum):
    FIFO = "fifo"
    READINESS = "readiness"
    UNDETERMINED = "undetermined"


@dataclass
class OrderingReport:
    """What the probe observed about both PRs.

    Attributes:
        merge_times: Clock reading when each PR was first seen merged while polling
        pr1_merged: PR 1's merged flag, re-read once polling ended
        pr2_merged: PR 2's merged flag, re-read once polling ended
    """

    pr1_number: int
    pr2_number: int
    merge_times: dict[int, datetime] = field(default_factory=dict)
    pr1_merged: bool = False
    pr2_merged: bool = False

    @property
    def both_observed(self) -> bool:
        return self.pr1_number in self.merge_times and self.pr2_number in self.merge_times

    @property
    def both_merged(self) -> bool:
        return self.pr1_merged and self.pr2_merged

    @property
    def ordering(self) -> MergeOrdering:
        """Ordering inferred from observation times.

        Equal observation times (both seen merged by the same poll) do not
        tell the order apart.
        """
        if not self.both_observed:
            return MergeOrdering.UNDETERMINED
        first = self.merge_times[self.pr1_number]
        second = self.merge_times[self.pr2_number]
        if first < second:
            return MergeOrdering.FIFO
        if second < first:
            return MergeOrdering.READINESS
        return MergeOrdering.UNDETERMINED


def run_non_ordered_queueing(
    ctx: ScenarioContext,
    existing_branches: Iterable[str] | None = None,
    policy: RetryPolicy = BOTH_MERGED_POLICY,
) -> OrderingReport:
    """Run the ordering probe.

    Raises:
        GitHubAPIError: If provisioning fails
        ScenarioSetupError: If a PR could not be enqueued
    """
    with scenario_phase(BRANCH_PREFIX, "cleanup"):
        cleanup_branches(ctx, BRANCH_PREFIX, existing_branches)

    with scenario_phase(BRANCH_PREFIX, "provision"):
        ctx.upsert_ruleset(BRANCH_PREFIX, POLICY)
        create_main_branch(ctx.app, BRANCH_PREFIX, SLOW_CI_SECONDS)

        create_feature_branch(ctx.app, BRANCH_PREFIX, 1)
        pull1 = create_pull_request(ctx.user, BRANCH_PREFIX, 1)
        time_origin = ctx.clock()
        enqueue(ctx, pull1)

        # Let PR 1 start building before PR 2 joins the queue
        ctx.sleep(SETTLE_SECONDS)

        create_feature_branch(ctx.app, BRANCH_PREFIX, 2)
        upsert_workflow(ctx.app, BRANCH_PREFIX, "feature-2", FAST_CI_SECONDS)
        pull2 = create_pull_request(ctx.user, BRANCH_PREFIX, 2)
        enqueue(ctx, pull2)

    report = OrderingReport(pr1_number=pull1.number, pr2_number=pull2.number)
    with scenario_phase(BRANCH_PREFIX, "observe"):
        report.merge_times = wait_for_all_merged(
            ctx.user,
            [pull1.number, pull2.number],
            policy,
            sleep=ctx.sleep,
            clock=ctx.clock,
        )

    with scenario_phase(BRANCH_PREFIX, "assert"):
        report.pr1_merged = ctx.user.get_pull_request(pull1.number).merged
        report.pr2_merged = ctx.user.get_pull_request(pull2.number).merged

    if not report.both_observed:
        logger.warning("Both PRs were not seen merged within the timeout period")
    if report.both_merged and not report.both_observed:
        logger.info("Both PRs merged after polling ended")
    ordering = report.ordering
    for number, merged_at in report.merge_times.items():
        record_merge_latency(
            (merged_at - time_origin).total_seconds(),
            BRANCH_PREFIX,
            number,
            ordering=ordering.value,
        )
    logger.info(f"Observed merge ordering: {ordering.value}")
    return report
