"""Probe: how the queue treats an entry that conflicts with one ahead of it.

PR 1 and PR 2 both add `conflict-file.txt` with different content. PR 1 is
enqueued first; the probe records whether PR 2 is kicked back as soon as it
is enqueued, only once PR 1 has merged, or whether it stays queued and can
still merge after the conflict is resolved on its branch.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from mqprobe.driver import create_feature_branch, create_pull_request
from mqprobe.github_clients.base import GitHubAPIError
from mqprobe.interfaces import PullRequest
from mqprobe.logger import get_logger
from mqprobe.poller import is_enqueued, wait_for_merge
from mqprobe.polling import MERGE_POLICY, RetryPolicy
from mqprobe.provisioner import MergeQueuePolicy, create_main_branch
from mqprobe.scenarios.base import (
    SETTLE_SECONDS,
    ScenarioContext,
    cleanup_branches,
    enqueue,
    scenario_phase,
)

logger = get_logger(__name__)

BRANCH_PREFIX = "mid-queue-conflicts"
CI_SECONDS = 15
CONFLICT_FILE = "conflict-file.txt"
RESOLVED_CONTENT = "Resolved content from both feature-1 and feature-2"

POLICY = MergeQueuePolicy(
    merge_method="MERGE",
    min_entries_to_merge=1,
    max_entries_to_merge=1,
    max_entries_to_build=3,
    min_entries_to_merge_wait_minutes=1,
    grouping_strategy="ALLGREEN",
)


@dataclass
class MidQueueConflictReport:
    """What the probe observed about PR 2.

    Attributes:
        pr1_merged: Whether PR 1 merged within the merge attempts
        pr2_kicked_back_immediately: PR 2 was refused or left the queue right away
        pr2_kicked_back_after_pr1_merged: PR 2 left the queue unmerged once
            PR 1 had merged
        pr2_merged_after_resolution: PR 2 merged after the conflict was
            resolved on its branch
        pr2_merged: Final merged flag of PR 2
        pr2_mergeable: Final mergeability verdict of PR 2
        pr2_mergeable_state: Final mergeable_state of PR 2
        resolution_error: Why resolving the conflict failed, if it did
    """

    pr1_number: int
    pr2_number: int
    pr1_merged: bool = False
    pr2_kicked_back_immediately: bool = False
    pr2_kicked_back_after_pr1_merged: bool = False
    pr2_merged_after_resolution: bool = False
    pr2_merged: bool = False
    pr2_mergeable: bool | None = None
    pr2_mergeable_state: str | None = None
    resolution_error: str | None = None


def _create_conflicting_feature(ctx: ScenarioContext, feature: int) -> PullRequest:
    """Create a feature branch adding the conflict file and open its PR."""
    create_feature_branch(ctx.app, BRANCH_PREFIX, feature)
    commit = ctx.app.put_file(
        CONFLICT_FILE,
        f"Add conflict file in feature-{feature}",
        f"Content from feature-{feature}",
        f"{BRANCH_PREFIX}/feature-{feature}",
    )
    logger.info(f"Conflict file added to feature-{feature}: {commit.commit_sha[:7]}")
    return create_pull_request(ctx.user, BRANCH_PREFIX, feature)


def _resolve_conflict(
    ctx: ScenarioContext, report: MidQueueConflictReport, policy: RetryPolicy
) -> None:
    """Merge main into feature-2, rewrite the conflict file and wait for PR 2."""
    feature_branch = f"{BRANCH_PREFIX}/feature-2"
    try:
        ctx.app.merge_branch(
            base=feature_branch,
            head=f"{BRANCH_PREFIX}/main",
            commit_message="Merge main into feature-2 to resolve conflicts",
        )
        current = ctx.app.get_file(CONFLICT_FILE, feature_branch)
        ctx.app.put_file(
            CONFLICT_FILE,
            "Resolve conflicts in feature-2",
            RESOLVED_CONTENT,
            feature_branch,
            sha=current.sha,
        )
    except GitHubAPIError as e:
        logger.error(f"Error while resolving conflicts: {e}")
        report.resolution_error = str(e)
        return

    logger.info("Conflict file updated with resolved content")
    if wait_for_merge(ctx.user, report.pr2_number, policy, sleep=ctx.sleep) is not None:
        report.pr2_merged_after_resolution = True


def run_mid_queue_conflicts(
    ctx: ScenarioContext,
    existing_branches: Iterable[str] | None = None,
    merge_policy: RetryPolicy = MERGE_POLICY,
) -> MidQueueConflictReport:
    """Run the mid-queue conflict probe.

    Raises:
        GitHubAPIError: If provisioning fails
        ScenarioSetupError: If enqueueing fails for a transport reason
    """
    with scenario_phase(BRANCH_PREFIX, "cleanup"):
        cleanup_branches(ctx, BRANCH_PREFIX, existing_branches)

    with scenario_phase(BRANCH_PREFIX, "provision"):
        ctx.upsert_ruleset(BRANCH_PREFIX, POLICY)
        create_main_branch(ctx.app, BRANCH_PREFIX, CI_SECONDS)

        pull1 = _create_conflicting_feature(ctx, 1)
        enqueue(ctx, pull1)
        ctx.sleep(SETTLE_SECONDS)

        pull2 = _create_conflicting_feature(ctx, 2)
        report = MidQueueConflictReport(pr1_number=pull1.number, pr2_number=pull2.number)

        if enqueue(ctx, pull2).rejected:
            logger.info("PR 2 was rejected from the merge queue immediately")
            report.pr2_kicked_back_immediately = True
        else:
            ctx.sleep(SETTLE_SECONDS)
            if not is_enqueued(ctx.user, BRANCH_PREFIX, pull2.number):
                logger.info("PR 2 was kicked back from the queue immediately after adding")
                report.pr2_kicked_back_immediately = True

    with scenario_phase(BRANCH_PREFIX, "observe"):
        report.pr1_merged = (
            wait_for_merge(ctx.user, pull1.number, merge_policy, sleep=ctx.sleep) is not None
        )
        if not report.pr1_merged:
            logger.warning("PR 1 did not merge within the timeout period")
            return report

        if not report.pr2_kicked_back_immediately:
            ctx.sleep(SETTLE_SECONDS)
            pr2 = ctx.user.get_pull_request(pull2.number)
            still_queued = is_enqueued(ctx.user, BRANCH_PREFIX, pull2.number)

            if not still_queued and not pr2.merged:
                logger.info("PR 2 was kicked back after PR 1 merged")
                report.pr2_kicked_back_after_pr1_merged = True
            elif still_queued:
                logger.info("PR 2 is still queued after PR 1 merged, resolving conflicts")
                _resolve_conflict(ctx, report, merge_policy)

    with scenario_phase(BRANCH_PREFIX, "assert"):
        final = ctx.user.get_pull_request(pull2.number)
        report.pr2_merged = final.merged
        report.pr2_mergeable = final.mergeable
        report.pr2_mergeable_state = final.mergeable_state
        logger.info(
            f"PR 2 final state: merged={final.merged}, mergeable={final.mergeable}, "
            f"mergeable_state={final.mergeable_state}"
        )

    return report
