"""Provisioning of rulesets, branches and CI workflow files.

Every scenario owns a branch prefix. Under it the provisioner creates the
queue branch `<prefix>/main`, protects it with a merge-queue ruleset and
commits the workflow that reports the required `merge_queue_check`.
"""

import json
from dataclasses import asdict, dataclass
from typing import Any

from mqprobe.github_clients.base import GitHubNotFoundError
from mqprobe.interfaces import FileCommit, MergeQueueGateway
from mqprobe.logger import get_logger

logger = get_logger(__name__)

WORKFLOW_PATH = ".github/workflows/workflow.yml"
WORKFLOW_COMMIT_MESSAGE = "Add workflow to main branch"
CHECK_NAME = "merge_queue_check"
# Commit subject marker the workflow fails on
CONFLICT_MARKER = "(conflicting)"

DEFAULT_WORKFLOW_WAIT_SECONDS = 10
CHECK_RESPONSE_TIMEOUT_MINUTES = 5

MERGE_METHODS = ("MERGE", "SQUASH", "REBASE")
GROUPING_STRATEGIES = ("ALLGREEN", "HEADGREEN")


@dataclass(frozen=True)
class MergeQueuePolicy:
    """Parameters of the merge_queue ruleset rule.

    Attributes:
        merge_method: MERGE, SQUASH or REBASE
        min_entries_to_merge: Minimum group size the queue waits for
        max_entries_to_merge: Maximum group size merged at once
        max_entries_to_build: Maximum number of groups built concurrently
        min_entries_to_merge_wait_minutes: How long to wait for the minimum
        grouping_strategy: ALLGREEN (every entry must pass) or HEADGREEN
            (only the head of the group must pass)
        check_response_timeout_minutes: How long the queue waits for checks
    """

    merge_method: str
    min_entries_to_merge: int
    max_entries_to_merge: int
    max_entries_to_build: int
    min_entries_to_merge_wait_minutes: int
    grouping_strategy: str
    check_response_timeout_minutes: int = CHECK_RESPONSE_TIMEOUT_MINUTES

    def __post_init__(self) -> None:
        if self.merge_method not in MERGE_METHODS:
            raise ValueError(f"Unknown merge method: {self.merge_method}")
        if self.grouping_strategy not in GROUPING_STRATEGIES:
            raise ValueError(f"Unknown grouping strategy: {self.grouping_strategy}")

    def to_parameters(self) -> dict[str, Any]:
        """Render as the `parameters` object of a merge_queue rule."""
        return asdict(self)


def ruleset_name(branch_prefix: str) -> str:
    """Name of the ruleset protecting a scenario's queue branch."""
    return f"Merge queue ({branch_prefix}/main)"


def build_ruleset(
    branch_prefix: str,
    policy: MergeQueuePolicy,
    bypass_actor_id: int,
    check_integration_id: int,
) -> dict[str, Any]:
    """Build the ruleset request body for a scenario's queue branch.

    Args:
        branch_prefix: Scenario branch prefix
        policy: Merge-queue parameters
        bypass_actor_id: GitHub App allowed to push to the branch directly
        check_integration_id: App that must report the required check

    Returns:
        Request body for the create and update ruleset endpoints
    """
    return {
        "name": ruleset_name(branch_prefix),
        "target": "branch",
        "enforcement": "active",
        "conditions": {
            "ref_name": {
                "include": [f"refs/heads/{branch_prefix}/main"],
                "exclude": [],
            }
        },
        "rules": [
            {"type": "merge_queue", "parameters": policy.to_parameters()},
            {
                "type": "required_status_checks",
                "parameters": {
                    "strict_required_status_checks_policy": False,
                    "do_not_enforce_on_create": True,
                    "required_status_checks": [
                        {"context": CHECK_NAME, "integration_id": check_integration_id}
                    ],
                },
            },
        ],
        "bypass_actors": [
            {
                "actor_type": "Integration",
                "actor_id": bypass_actor_id,
                "bypass_mode": "always",
            }
        ],
    }


def upsert_ruleset(
    client: MergeQueueGateway,
    branch_prefix: str,
    policy: MergeQueuePolicy,
    *,
    bypass_actor_id: int,
    check_integration_id: int,
) -> int:
    """Create or update the merge-queue ruleset for a branch prefix.

    Rulesets are matched by name, so calling this twice leaves exactly one.

    Returns:
        Id of the created or updated ruleset
    """
    body = build_ruleset(branch_prefix, policy, bypass_actor_id, check_integration_id)
    name = body["name"]

    existing = next((r for r in client.list_rulesets() if r.name == name), None)
    if existing is not None:
        ruleset = client.update_ruleset(existing.id, body)
        logger.info(f"Updated ruleset '{name}' (id {ruleset.id})")
    else:
        ruleset = client.create_ruleset(body)
        logger.info(f"Created ruleset '{name}' (id {ruleset.id})")
    return ruleset.id


def build_workflow(branch_prefix: str, wait_seconds: int = DEFAULT_WORKFLOW_WAIT_SECONDS) -> dict:
    """Build the CI workflow reporting the required check.

    The job only runs for merge_group events. It sleeps to simulate CI time
    and fails when any commit between the queue branch and the tested head
    carries the conflict marker in its subject.
    """
    return {
        "on": ["pull_request", "merge_group"],
        "jobs": {
            CHECK_NAME: {
                "if": "github.event_name != 'pull_request'",
                "runs-on": "ubuntu-latest",
                "steps": [
                    {"uses": "actions/checkout@v4", "with": {"fetch-depth": 0}},
                    {"run": f"sleep {wait_seconds}"},
                    {
                        "run": f"! git log --format=%s origin/{branch_prefix}/main..HEAD "
                        f"| grep '{CONFLICT_MARKER}'"
                    },
                ],
            }
        },
    }


def render_workflow(branch_prefix: str, wait_seconds: int = DEFAULT_WORKFLOW_WAIT_SECONDS) -> str:
    """Serialize the workflow as compact JSON, which is also valid YAML."""
    return json.dumps(build_workflow(branch_prefix, wait_seconds), separators=(",", ":"))


def upsert_workflow(
    client: MergeQueueGateway,
    branch_prefix: str,
    branch: str,
    wait_seconds: int = DEFAULT_WORKFLOW_WAIT_SECONDS,
) -> FileCommit:
    """Create or update the workflow file on `<prefix>/<branch>`.

    Args:
        client: Gateway to write through
        branch_prefix: Scenario branch prefix
        branch: Branch name under the prefix ("main", "feature-2", ...)
        wait_seconds: Simulated CI duration

    Returns:
        The resulting commit

    Raises:
        GitHubAPIError: If reading fails with anything but 404, if the path
            is a directory, or if the write is rejected (e.g. stale sha)
    """
    ref = f"{branch_prefix}/{branch}"
    sha: str | None
    try:
        sha = client.get_file(WORKFLOW_PATH, ref).sha
    except GitHubNotFoundError:
        sha = None

    commit = client.put_file(
        WORKFLOW_PATH,
        WORKFLOW_COMMIT_MESSAGE,
        render_workflow(branch_prefix, wait_seconds),
        ref,
        sha=sha,
    )
    action = "Updated" if sha else "Created"
    logger.info(f"{action} workflow on '{ref}' ({wait_seconds}s CI) at {commit.commit_sha[:7]}")
    return commit


def create_main_branch(
    client: MergeQueueGateway,
    branch_prefix: str,
    wait_seconds: int = DEFAULT_WORKFLOW_WAIT_SECONDS,
) -> str:
    """Create `<prefix>/main` from the default branch and add the workflow.

    Returns:
        SHA of the workflow commit, the baseline later merges are compared to

    Raises:
        GitHubAPIError: If the branch already exists or any call fails
    """
    head = client.get_default_branch_head()
    client.create_ref(f"{branch_prefix}/main", head)
    workflow_commit = upsert_workflow(client, branch_prefix, "main", wait_seconds)
    return workflow_commit.commit_sha

