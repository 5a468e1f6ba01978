"""Driving the system under test: feature branches, pull requests, enqueueing."""

from dataclasses import dataclass
from enum import Enum

from mqprobe.github_clients.base import GitHubAPIError, GitHubGraphQLError, NetworkError
from mqprobe.interfaces import MergeQueueGateway, PullRequest
from mqprobe.logger import get_logger

logger = get_logger(__name__)

FEATURE_FILE_CONTENT = "Dummy file"


class EnqueueOutcome(Enum):
    """How the platform answered an auto-merge request."""

    ACCEPTED = "accepted"
    # The platform refused the request (e.g. the PR conflicts with the queue)
    REJECTED = "rejected"
    ERROR = "error"


@dataclass
class EnqueueResult:
    """Result of merge_when_ready().

    Attributes:
        outcome: Whether the request was accepted, rejected or failed
        pr_node_id: Node id of the pull request
        error: The exception behind a REJECTED or ERROR outcome
    """

    outcome: EnqueueOutcome
    pr_node_id: str
    error: Exception | None = None

    @property
    def rejected(self) -> bool:
        return self.outcome is EnqueueOutcome.REJECTED


def feature_branch(branch_prefix: str, feature: int | str) -> str:
    return f"{branch_prefix}/feature-{feature}"


def feature_commit_message(feature: int | str, suffix: str | None = None) -> str:
    """Commit message of a feature branch's only commit."""
    message = f"Make feature {feature}"
    if suffix:
        message += f" {suffix}"
    return message


def create_feature_branch(
    client: MergeQueueGateway,
    branch_prefix: str,
    feature: int | str,
    commit_message: str | None = None,
) -> str:
    """Branch `<prefix>/feature-<N>` off the queue branch and add one commit.

    The commit adds `feature-<N>.txt`. Distinct features touch distinct files,
    so feature branches never conflict with each other textually.

    Args:
        client: Gateway to write through
        branch_prefix: Scenario branch prefix
        feature: Feature number
        commit_message: Optional suffix appended to "Make feature <N>"

    Returns:
        SHA of the feature commit
    """
    main_sha = client.get_ref_sha(f"{branch_prefix}/main")
    branch = feature_branch(branch_prefix, feature)
    client.create_ref(branch, main_sha)

    commit = client.put_file(
        f"feature-{feature}.txt",
        feature_commit_message(feature, commit_message),
        FEATURE_FILE_CONTENT,
        branch,
    )
    return commit.commit_sha


def create_pull_request(
    client: MergeQueueGateway, branch_prefix: str, feature: int | str
) -> PullRequest:
    """Open `Feature <N>` from the feature branch into the queue branch."""
    return client.create_pull_request(
        title=f"Feature {feature}",
        head=feature_branch(branch_prefix, feature),
        base=f"{branch_prefix}/main",
    )


def merge_when_ready(client: MergeQueueGateway, pr_node_id: str) -> EnqueueResult:
    """Enable auto-merge on a pull request, which places it in the merge queue.

    Never raises for platform refusals or transport failures; the caller
    decides what each outcome means.

    Args:
        client: Gateway acting as the enqueueing user
        pr_node_id: Node id of the pull request

    Returns:
        EnqueueResult describing the platform's answer
    """
    try:
        client.enable_auto_merge(pr_node_id)
    except GitHubGraphQLError as e:
        logger.info(f"Enqueue rejected for {pr_node_id}: {e}")
        return EnqueueResult(EnqueueOutcome.REJECTED, pr_node_id, error=e)
    except (GitHubAPIError, NetworkError) as e:
        logger.error(f"Enqueue request failed for {pr_node_id}: {e}")
        return EnqueueResult(EnqueueOutcome.ERROR, pr_node_id, error=e)

    logger.info(f"Enqueue accepted for {pr_node_id}")
    return EnqueueResult(EnqueueOutcome.ACCEPTED, pr_node_id)
