"""Probe: what happens when the queue branch moves under a running queue entry.

A single PR is enqueued. Once its merge-group checks have started, a commit
is pushed straight to the queue branch (the app bypasses the ruleset). A
mutation that does not conflict should make the queue rebuild the merge
group, so the PR merges after a second merge_group run. A mutation touching
the PR's own file leaves the PR unmergeable after a single run.
"""

from collections.abc import Iterable
from dataclasses import dataclass

from mqprobe.driver import create_feature_branch, create_pull_request
from mqprobe.interfaces import MergeQueueGateway, PullRequest
from mqprobe.logger import get_logger
from mqprobe.poller import wait_for_merge_queue_checks
from mqprobe.polling import ASSERTION_POLICY, CHECKS_POLICY, RetryPolicy, retry_assertion
from mqprobe.provisioner import MergeQueuePolicy, create_main_branch
from mqprobe.scenarios.base import ScenarioContext, cleanup_branches, enqueue, scenario_phase

logger = get_logger(__name__)

BRANCH_PREFIX = "mutated-main"
# Time for the merge-group job to check out the unmutated queue branch
CHECKOUT_SECONDS = 3
MUTATION_MESSAGE = "Release 0 - Mutating main while PR is in queue"
MUTATION_CONTENT = "Release 0"

POLICY = MergeQueuePolicy(
    merge_method="MERGE",
    min_entries_to_merge=1,
    max_entries_to_merge=1,
    max_entries_to_build=3,
    min_entries_to_merge_wait_minutes=1,
    grouping_strategy="ALLGREEN",
)


@dataclass
class MutatedMainSetup:
    pull: PullRequest
    conflicting: bool
    mutation_sha: str


def mutation_path(conflicting: bool) -> str:
    """File the direct commit writes: the PR's own file when conflicting."""
    return "feature-1.txt" if conflicting else "release-0.txt"


def queue_run_prefix(branch_prefix: str, pr_number: int) -> str:
    """Head-branch prefix of the merge-group runs built for a PR."""
    return f"gh-readonly-queue/{branch_prefix}/main/pr-{pr_number}-"


def count_queue_runs(client: MergeQueueGateway, branch_prefix: str, pr_number: int) -> int:
    """Count the merge_group workflow runs that tested a pull request."""
    prefix = queue_run_prefix(branch_prefix, pr_number)
    runs = client.list_workflow_runs(event="merge_group")
    return sum(1 for run in runs if run.head_branch and run.head_branch.startswith(prefix))


def setup_mutated_main(
    ctx: ScenarioContext,
    conflicting: bool,
    existing_branches: Iterable[str] | None = None,
    checks_policy: RetryPolicy = CHECKS_POLICY,
) -> MutatedMainSetup:
    """Enqueue one PR and mutate the queue branch once its checks started.

    Raises:
        GitHubAPIError: If provisioning or the mutation commit fails
        ScenarioSetupError: If the PR could not be enqueued
    """
    with scenario_phase(BRANCH_PREFIX, "cleanup"):
        cleanup_branches(ctx, BRANCH_PREFIX, existing_branches, branches=("main", "feature-1"))

    with scenario_phase(BRANCH_PREFIX, "provision"):
        ctx.upsert_ruleset(BRANCH_PREFIX, POLICY)
        create_main_branch(ctx.app, BRANCH_PREFIX)
        create_feature_branch(ctx.app, BRANCH_PREFIX, 1)
        pull = create_pull_request(ctx.user, BRANCH_PREFIX, 1)
        enqueue(ctx, pull)

        wait_for_merge_queue_checks(
            ctx.user, BRANCH_PREFIX, pull.number, checks_policy, sleep=ctx.sleep
        )
        logger.info("Waiting for merge queue job to checkout unmutated main")
        ctx.sleep(CHECKOUT_SECONDS)

        commit = ctx.app.put_file(
            mutation_path(conflicting),
            MUTATION_MESSAGE,
            MUTATION_CONTENT,
            f"{BRANCH_PREFIX}/main",
        )
        logger.info(f"Main branch mutated with release commit {commit.commit_sha[:7]}")

    return MutatedMainSetup(pull=pull, conflicting=conflicting, mutation_sha=commit.commit_sha)


def expected_queue_runs(conflicting: bool) -> int:
    return 1 if conflicting else 2


def assert_outcome(
    ctx: ScenarioContext,
    setup: MutatedMainSetup,
    policy: RetryPolicy = ASSERTION_POLICY,
) -> None:
    """Assert the PR's final state and its number of merge-group runs.

    Both checks are retried to absorb the platform's eventual consistency.

    Raises:
        AssertionError: If an expectation still fails after every attempt
    """
    number = setup.pull.number

    def check_pull() -> None:
        pull = ctx.user.get_pull_request(number)
        if setup.conflicting:
            assert not pull.merged, f"PR #{number} merged despite the conflicting mutation"
            assert pull.mergeable_state == "dirty", (
                f"PR #{number} mergeable_state is {pull.mergeable_state!r}, expected 'dirty'"
            )
        else:
            assert pull.merged, f"PR #{number} is not merged"

    def check_runs() -> None:
        expected = expected_queue_runs(setup.conflicting)
        actual = count_queue_runs(ctx.user, BRANCH_PREFIX, number)
        assert actual == expected, (
            f"Expected {expected} merge_group run(s) for PR #{number}, found {actual}"
        )

    with scenario_phase(BRANCH_PREFIX, "assert"):
        retry_assertion(check_pull, policy, sleep=ctx.sleep)
        retry_assertion(check_runs, policy, sleep=ctx.sleep)
