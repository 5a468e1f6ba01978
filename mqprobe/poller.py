"""Observation of asynchronous merge-queue state.

The queue's progress is only visible by polling. Every wait here is bounded
by a RetryPolicy; running out of attempts logs a warning and returns an
empty result, leaving the verdict to the caller's assertions.
"""

import time
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from mqprobe.interfaces import CheckRun, MergeQueueEntry, MergeQueueGateway, PullRequest
from mqprobe.logger import get_logger
from mqprobe.polling import (
    BOTH_MERGED_POLICY,
    CHECKS_POLICY,
    MERGE_POLICY,
    QUEUE_DRAIN_POLICY,
    RetryPolicy,
    Sleep,
    poll_until,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


def queue_entries(client: MergeQueueGateway, queue_branch: str) -> list[MergeQueueEntry]:
    """All current merge-queue entries for a branch, in the order the platform returns."""
    return client.merge_queue_entries(queue_branch)


def find_entry(entries: Iterable[MergeQueueEntry], pr_number: int) -> MergeQueueEntry | None:
    return next((e for e in entries if e.pull_request_number == pr_number), None)


def is_enqueued(client: MergeQueueGateway, branch_prefix: str, pr_number: int) -> bool:
    """Check whether a pull request currently sits in the scenario's queue."""
    entries = queue_entries(client, f"{branch_prefix}/main")
    return find_entry(entries, pr_number) is not None


def wait_for_merge_queue_checks(
    client: MergeQueueGateway,
    branch_prefix: str,
    pr_number: int,
    policy: RetryPolicy = CHECKS_POLICY,
    *,
    sleep: Sleep = time.sleep,
) -> list[CheckRun] | None:
    """Wait until the queue has started checks for a pull request.

    Each attempt finds the PR's queue entry and, once the platform reports
    the entry's head commit, lists the check runs on that commit.

    Args:
        client: Gateway to observe through
        branch_prefix: Scenario branch prefix
        pr_number: Pull request to look for
        policy: Attempt limit (6 attempts, 5s apart by default)
        sleep: Sleep function (injected by tests)

    Returns:
        The first non-empty list of check runs, or None if none appeared
    """
    queue_branch = f"{branch_prefix}/main"

    def fetch() -> list[CheckRun]:
        entry = find_entry(queue_entries(client, queue_branch), pr_number)
        if entry is None:
            logger.debug(f"PR #{pr_number} not found in merge queue of '{queue_branch}'")
            return []
        if not entry.head_commit_oid:
            logger.debug(f"No head commit yet for PR #{pr_number}")
            return []
        return client.list_check_runs(entry.head_commit_oid)

    checks = poll_until(
        fetch,
        bool,
        policy,
        description=f"merge queue checks of PR #{pr_number}",
        sleep=sleep,
    )
    if checks:
        logger.info(f"Merge queue checks started for PR #{pr_number}: {len(checks)} run(s)")
    return checks


def wait_for_queue_drain(
    client: MergeQueueGateway,
    branch_prefix: str,
    policy: RetryPolicy = QUEUE_DRAIN_POLICY,
    *,
    sleep: Sleep = time.sleep,
) -> bool:
    """Wait until the scenario's merge queue is empty.

    Returns:
        True once the queue was observed empty, False if attempts ran out
    """
    queue_branch = f"{branch_prefix}/main"
    entries = poll_until(
        lambda: queue_entries(client, queue_branch),
        lambda current: len(current) == 0,
        policy,
        description=f"merge queue of '{queue_branch}' to drain",
        sleep=sleep,
    )
    drained = entries is not None
    if drained:
        logger.info(f"Merge queue of '{queue_branch}' is empty")
    return drained


def wait_for_merge(
    client: MergeQueueGateway,
    pr_number: int,
    policy: RetryPolicy = MERGE_POLICY,
    *,
    sleep: Sleep = time.sleep,
) -> PullRequest | None:
    """Wait until a pull request reports merged.

    Returns:
        The merged pull request, or None if it never merged within the attempts
    """
    pull = poll_until(
        lambda: client.get_pull_request(pr_number),
        lambda current: current.merged,
        policy,
        description=f"PR #{pr_number} to merge",
        sleep=sleep,
    )
    if pull is not None:
        logger.info(f"PR #{pr_number} merged")
    return pull


def wait_for_all_merged(
    client: MergeQueueGateway,
    pr_numbers: list[int],
    policy: RetryPolicy = BOTH_MERGED_POLICY,
    *,
    sleep: Sleep = time.sleep,
    clock: Clock = utc_now,
) -> dict[int, datetime]:
    """Wait until every listed pull request reports merged.

    Records, for each PR, the local time at which it was first observed
    merged. The observation time is only as precise as the poll interval.

    Returns:
        Observation times keyed by PR number; PRs that never merged are absent
    """
    observed: dict[int, datetime] = {}

    def fetch() -> dict[int, datetime]:
        for number in pr_numbers:
            if number in observed:
                continue
            if client.get_pull_request(number).merged:
                observed[number] = clock()
                logger.info(f"PR #{number} merged at {observed[number].isoformat()}")
        return observed

    poll_until(
        fetch,
        lambda current: len(current) == len(pr_numbers),
        policy,
        description=f"PRs {', '.join(f'#{n}' for n in pr_numbers)} to merge",
        sleep=sleep,
    )
    return observed
