"""Abstract interfaces for the remote merge-queue platform."""

from mqprobe.interfaces.gateway import (
    CheckRun,
    FileCommit,
    FileContent,
    MergeQueueEntry,
    MergeQueueGateway,
    PullRequest,
    Ruleset,
    WorkflowRun,
)

__all__ = [
    "CheckRun",
    "FileCommit",
    "FileContent",
    "MergeQueueEntry",
    "MergeQueueGateway",
    "PullRequest",
    "Ruleset",
    "WorkflowRun",
]
