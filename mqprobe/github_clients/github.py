"""GitHub implementation of the MergeQueueGateway protocol.

This module provides the client used by the provisioner, driver and poller.
It translates REST and GraphQL payloads into the snapshot types from
mqprobe.interfaces.
"""

import base64
from datetime import datetime
from typing import Any
from urllib.parse import quote

from mqprobe.github_clients.base import GitHubAPIError, GitHubClientBase
from mqprobe.interfaces import (
    CheckRun,
    FileCommit,
    FileContent,
    MergeQueueEntry,
    PullRequest,
    Ruleset,
    WorkflowRun,
)
from mqprobe.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BRANCH_HEAD_QUERY = """
query($owner: String!, $name: String!) {
  repository(owner: $owner, name: $name) {
    defaultBranchRef {
      target {
        oid
      }
    }
  }
}
"""

ENABLE_AUTO_MERGE_MUTATION = """
mutation($pullRequestId: ID!) {
  enablePullRequestAutoMerge(input: { pullRequestId: $pullRequestId }) {
    clientMutationId
  }
}
"""

MERGE_QUEUE_ENTRIES_QUERY = """
query($owner: String!, $name: String!, $queue_branch: String!, $cursor: String) {
  repository(owner: $owner, name: $name) {
    mergeQueue(branch: $queue_branch) {
      entries(first: 100, after: $cursor) {
        nodes {
          id
          position
          pullRequest { number }
          baseCommit { oid }
          headCommit { oid }
          solo
          state
        }
        pageInfo {
          endCursor
          hasNextPage
        }
      }
    }
  }
}
"""


def _parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp as returned by the API."""
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _parse_pull_request(payload: dict[str, Any]) -> PullRequest:
    head = payload.get("head") or {}
    base = payload.get("base") or {}
    return PullRequest(
        number=payload["number"],
        node_id=payload.get("node_id", ""),
        title=payload.get("title", ""),
        head_ref=head.get("ref", ""),
        base_ref=base.get("ref", ""),
        state=payload.get("state", "open"),
        merged=bool(payload.get("merged")),
        merged_at=_parse_datetime(payload.get("merged_at")),
        mergeable=payload.get("mergeable"),
        mergeable_state=payload.get("mergeable_state"),
        html_url=payload.get("html_url", ""),
    )


def _parse_queue_entry(node: dict[str, Any]) -> MergeQueueEntry:
    pull_request = node.get("pullRequest") or {}
    base_commit = node.get("baseCommit") or {}
    head_commit = node.get("headCommit") or {}
    return MergeQueueEntry(
        id=node["id"],
        position=node.get("position", 0),
        pull_request_number=pull_request.get("number", 0),
        base_commit_oid=base_commit.get("oid"),
        head_commit_oid=head_commit.get("oid"),
        solo=bool(node.get("solo")),
        state=node.get("state", ""),
    )


def _quote_ref(branch: str) -> str:
    return quote(branch, safe="/")


class GitHubClient(GitHubClientBase):
    """GitHub implementation of the MergeQueueGateway protocol."""

    # Refs and branches

    def get_default_branch_head(self) -> str:
        """Return the commit oid at the head of the repository's default branch."""
        response = self._execute_graphql_query(
            DEFAULT_BRANCH_HEAD_QUERY, {"owner": self.owner, "name": self.repo}
        )
        repository = response["data"]["repository"]
        oid = repository["defaultBranchRef"]["target"]["oid"]
        logger.debug(f"Default branch head of {self.owner}/{self.repo} is {oid}")
        return oid

    def get_ref_sha(self, branch: str) -> str:
        """Return the commit SHA a branch points at."""
        payload = self._rest_json("GET", f"{self.repo_path}/git/ref/heads/{_quote_ref(branch)}")
        return payload["object"]["sha"]

    def create_ref(self, branch: str, sha: str) -> None:
        """Create refs/heads/<branch> at the given commit."""
        self._rest_json(
            "POST",
            f"{self.repo_path}/git/refs",
            json_body={"ref": f"refs/heads/{branch}", "sha": sha},
        )
        logger.info(f"Created branch '{branch}' at {sha[:7]}")

    def delete_ref(self, branch: str) -> None:
        """Delete refs/heads/<branch>. Open PRs from or into it are closed."""
        self._request("DELETE", f"{self.repo_path}/git/refs/heads/{_quote_ref(branch)}")
        logger.info(f"Deleted branch '{branch}'")

    def list_branches(self) -> list[str]:
        """Return the names of all branches in the repository."""
        return [branch["name"] for branch in self._paginate(f"{self.repo_path}/branches")]

    # Files

    def get_file(self, path: str, ref: str) -> FileContent:
        """Read a file from a branch.

        Raises:
            GitHubNotFoundError: If the file does not exist on the branch
            GitHubAPIError: If the path is a directory
        """
        payload = self._rest_json(
            "GET", f"{self.repo_path}/contents/{quote(path, safe='/')}", params={"ref": ref}
        )
        if isinstance(payload, list):
            raise GitHubAPIError(f"Path is a directory, not a file: {path}")

        encoded = payload.get("content") or ""
        content = base64.b64decode(encoded).decode("utf-8") if encoded else ""
        return FileContent(path=payload.get("path", path), sha=payload["sha"], content=content)

    def put_file(
        self,
        path: str,
        message: str,
        content: str,
        branch: str,
        sha: str | None = None,
    ) -> FileCommit:
        """Create or update a file with a single commit.

        Args:
            path: File path in the repository
            message: Commit message
            content: New file content (text)
            branch: Branch to commit to
            sha: Blob revision being replaced; required to update an
                existing file, must be omitted to create one

        Raises:
            GitHubAPIError: On a stale or missing revision marker (409/422)
        """
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha

        payload = self._rest_json(
            "PUT", f"{self.repo_path}/contents/{quote(path, safe='/')}", json_body=body
        )
        commit_sha = payload["commit"]["sha"]
        content_obj = payload.get("content") or {}
        logger.debug(f"Committed {path} to '{branch}' as {commit_sha[:7]}: {message}")
        return FileCommit(commit_sha=commit_sha, content_sha=content_obj.get("sha"))

    # Pull requests

    def create_pull_request(self, title: str, head: str, base: str) -> PullRequest:
        """Open a pull request from head into base."""
        payload = self._rest_json(
            "POST",
            f"{self.repo_path}/pulls",
            json_body={"title": title, "head": head, "base": base},
        )
        pull = _parse_pull_request(payload)
        logger.info(f"Created PR #{pull.number} '{title}' ({head} -> {base})")
        return pull

    def get_pull_request(self, number: int) -> PullRequest:
        """Read the current state of a pull request."""
        return _parse_pull_request(self._rest_json("GET", f"{self.repo_path}/pulls/{number}"))

    def enable_auto_merge(self, pull_request_node_id: str) -> None:
        """Enable auto-merge on a pull request, which enqueues it.

        Raises:
            GitHubGraphQLError: If the platform refuses the request
        """
        self._execute_graphql_query(
            ENABLE_AUTO_MERGE_MUTATION, {"pullRequestId": pull_request_node_id}
        )

    # Rulesets

    def list_rulesets(self) -> list[Ruleset]:
        """List the repository's own rulesets (inherited ones excluded)."""
        items = self._paginate(f"{self.repo_path}/rulesets", params={"includes_parents": "false"})
        return [
            Ruleset(id=item["id"], name=item["name"], enforcement=item.get("enforcement", ""))
            for item in items
        ]

    def create_ruleset(self, ruleset: dict[str, Any]) -> Ruleset:
        payload = self._rest_json("POST", f"{self.repo_path}/rulesets", json_body=ruleset)
        return Ruleset(id=payload["id"], name=payload["name"])

    def update_ruleset(self, ruleset_id: int, ruleset: dict[str, Any]) -> Ruleset:
        payload = self._rest_json(
            "PUT", f"{self.repo_path}/rulesets/{ruleset_id}", json_body=ruleset
        )
        return Ruleset(id=payload["id"], name=payload["name"])

    # Checks, runs and comparisons

    def list_check_runs(self, ref: str) -> list[CheckRun]:
        """List the check runs attached to a commit."""
        items = self._paginate(
            f"{self.repo_path}/commits/{_quote_ref(ref)}/check-runs", item_key="check_runs"
        )
        return [
            CheckRun(
                id=item["id"],
                name=item.get("name", ""),
                status=item.get("status", ""),
                conclusion=item.get("conclusion"),
                head_sha=item.get("head_sha", ""),
            )
            for item in items
        ]

    def list_workflow_runs(self, event: str | None = None) -> list[WorkflowRun]:
        """List the repository's workflow runs, optionally filtered by event."""
        params = {"event": event} if event else None
        items = self._paginate(
            f"{self.repo_path}/actions/runs", params=params, item_key="workflow_runs"
        )
        return [
            WorkflowRun(
                id=item["id"],
                name=item.get("name", ""),
                event=item.get("event", ""),
                head_branch=item.get("head_branch"),
                head_sha=item.get("head_sha", ""),
                status=item.get("status", ""),
                conclusion=item.get("conclusion"),
            )
            for item in items
        ]

    def compare_commit_messages(self, base: str, head: str) -> list[str]:
        """Return the messages of the commits reachable from head but not base."""
        basehead = quote(f"{base}...{head}", safe="")
        payload = self._rest_json("GET", f"{self.repo_path}/compare/{basehead}")
        return [commit["commit"]["message"] for commit in payload.get("commits", [])]

    def merge_branch(self, base: str, head: str, commit_message: str) -> str | None:
        """Merge head into base on the server.

        Returns:
            The merge commit SHA, or None when base already contains head
        """
        payload = self._rest_json(
            "POST",
            f"{self.repo_path}/merges",
            json_body={"base": base, "head": head, "commit_message": commit_message},
        )
        if payload is None:
            logger.info(f"'{base}' already contains '{head}', nothing to merge")
            return None
        logger.info(f"Merged '{head}' into '{base}' as {payload['sha'][:7]}")
        return payload["sha"]

    # Merge queue

    def merge_queue_entries(self, branch: str) -> list[MergeQueueEntry]:
        """Return every entry of the merge queue for a branch, in platform order."""
        nodes = self._paginate_graphql(
            MERGE_QUEUE_ENTRIES_QUERY,
            {"owner": self.owner, "name": self.repo, "queue_branch": branch},
            ("repository", "mergeQueue", "entries"),
        )
        return [_parse_queue_entry(node) for node in nodes]
