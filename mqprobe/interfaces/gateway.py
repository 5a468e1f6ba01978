"""Remote resource types and the gateway protocol.

This module defines the snapshots of platform-owned resources the harness
observes, and the interface every GitHub client used by the provisioner,
driver and poller must implement. All state is remote; these objects only
capture the latest observed value.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class PullRequest:
    """Snapshot of a pull request.

    Attributes:
        number: PR number
        node_id: Opaque GraphQL node id, used for mutations
        title: PR title
        head_ref: Head branch name
        base_ref: Base branch name
        state: "open" or "closed"
        merged: Whether the PR has been merged
        merged_at: When the PR was merged, if it was
        mergeable: Platform mergeability verdict, None while still computing
        mergeable_state: e.g. "clean", "blocked", "dirty"
        html_url: Browser URL of the PR
    """

    number: int
    node_id: str
    title: str = ""
    head_ref: str = ""
    base_ref: str = ""
    state: str = "open"
    merged: bool = False
    merged_at: datetime | None = None
    mergeable: bool | None = None
    mergeable_state: str | None = None
    html_url: str = ""


@dataclass
class MergeQueueEntry:
    """One entry of a branch's merge queue, as reported by GraphQL."""

    id: str
    position: int
    pull_request_number: int
    base_commit_oid: str | None = None
    head_commit_oid: str | None = None
    solo: bool = False
    state: str = "QUEUED"  # AWAITING_CHECKS, MERGEABLE, UNMERGEABLE, LOCKED, QUEUED


@dataclass
class CheckRun:
    """A check run attached to a commit."""

    id: int
    name: str
    status: str  # queued, in_progress, completed
    conclusion: str | None = None
    head_sha: str = ""

    @property
    def is_completed(self) -> bool:
        """Check if this run has completed."""
        return self.status == "completed"


@dataclass
class WorkflowRun:
    """A GitHub Actions workflow run."""

    id: int
    name: str
    event: str
    head_branch: str | None = None
    head_sha: str = ""
    status: str = ""
    conclusion: str | None = None


@dataclass
class FileContent:
    """A file read from a branch. `sha` is the blob revision marker."""

    path: str
    sha: str
    content: str = ""


@dataclass
class FileCommit:
    """Result of a file write: the new commit and the new blob revision."""

    commit_sha: str
    content_sha: str | None = None


@dataclass
class Ruleset:
    """A repository ruleset, identified by platform id and by name."""

    id: int
    name: str
    enforcement: str = "active"


@runtime_checkable
class MergeQueueGateway(Protocol):
    """Protocol for the remote platform operations the harness consumes.

    Implementations are passed explicitly to every provisioning, driving and
    polling operation so tests can substitute doubles.
    """

    # Refs and branches
    def get_default_branch_head(self) -> str: ...

    def get_ref_sha(self, branch: str) -> str: ...

    def create_ref(self, branch: str, sha: str) -> None: ...

    def delete_ref(self, branch: str) -> None: ...

    def list_branches(self) -> list[str]: ...

    # Files
    def get_file(self, path: str, ref: str) -> FileContent: ...

    def put_file(
        self,
        path: str,
        message: str,
        content: str,
        branch: str,
        sha: str | None = None,
    ) -> FileCommit: ...

    # Pull requests
    def create_pull_request(self, title: str, head: str, base: str) -> PullRequest: ...

    def get_pull_request(self, number: int) -> PullRequest: ...

    def enable_auto_merge(self, pull_request_node_id: str) -> None: ...

    # Rulesets
    def list_rulesets(self) -> list[Ruleset]: ...

    def create_ruleset(self, ruleset: dict[str, Any]) -> Ruleset: ...

    def update_ruleset(self, ruleset_id: int, ruleset: dict[str, Any]) -> Ruleset: ...

    # Checks, runs and comparisons
    def list_check_runs(self, ref: str) -> list[CheckRun]: ...

    def list_workflow_runs(self, event: str | None = None) -> list[WorkflowRun]: ...

    def compare_commit_messages(self, base: str, head: str) -> list[str]: ...

    def merge_branch(self, base: str, head: str, commit_message: str) -> str | None: ...

    # Merge queue
    def merge_queue_entries(self, branch: str) -> list[MergeQueueEntry]: ...
