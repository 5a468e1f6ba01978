"""Scenario matrix for the merge-queue probe.

Each combination of merge-queue settings drives one isolated scenario. The
branch prefix encodes every axis value, which is what keeps concurrently
running scenarios apart on the shared testbed repository.
"""

import itertools
from dataclasses import dataclass

from mqprobe.provisioner import CONFLICT_MARKER, MergeQueuePolicy, ruleset_name


def _flag(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class ScenarioParams:
    """One point of the scenario matrix."""

    merge_method: str
    conflicting1: bool
    conflicting2: bool
    min_entries: int
    max_entries: int
    max_builds: int
    grouping_strategy: str
    delay: int
    wait_minutes: int

    @property
    def branch_prefix(self) -> str:
        """Unique, deterministic branch namespace of this scenario."""
        return (
            f"merge-queue/mergeMethod/{self.merge_method}"
            f"/conflicting1@{_flag(self.conflicting1)}"
            f"/conflicting2@{_flag(self.conflicting2)}"
            f"/min-entries@{self.min_entries}"
            f"/max-entries@{self.max_entries}"
            f"/max-builds@{self.max_builds}"
            f"/grouping-strategy@{self.grouping_strategy}"
            f"/delay@{self.delay}"
            f"/wait-minutes@{self.wait_minutes}"
        )

    @property
    def ruleset_name(self) -> str:
        return ruleset_name(self.branch_prefix)

    @property
    def policy(self) -> MergeQueuePolicy:
        return MergeQueuePolicy(
            merge_method=self.merge_method,
            min_entries_to_merge=self.min_entries,
            max_entries_to_merge=self.max_entries,
            max_entries_to_build=self.max_builds,
            min_entries_to_merge_wait_minutes=self.wait_minutes,
            grouping_strategy=self.grouping_strategy,
        )

    @property
    def title(self) -> str:
        """Human-readable label, used as the test id."""
        return (
            f"mergeMethod: {self.merge_method}, conflicting 1: {self.conflicting1}, "
            f"conflicting 2: {self.conflicting2}, minEntries: {self.min_entries}, "
            f"maxEntries: {self.max_entries}, maxBuilds: {self.max_builds}, "
            f"groupingStrategy: {self.grouping_strategy}, delay: {self.delay}, "
            f"waitMinutes: {self.wait_minutes}"
        )

    def conflicting(self, feature: int) -> bool:
        """Whether the given feature's commit carries the conflict marker."""
        if feature == 1:
            return self.conflicting1
        if feature == 2:
            return self.conflicting2
        raise ValueError(f"Scenarios have features 1 and 2, got {feature}")

    def commit_suffix(self, feature: int) -> str | None:
        return CONFLICT_MARKER if self.conflicting(feature) else None


@dataclass(frozen=True)
class MatrixAxes:
    """Values of every axis. Override a field to narrow or widen the matrix."""

    merge_methods: tuple[str, ...] = ("MERGE",)
    conflicting: tuple[bool, ...] = (True, False)
    min_entries: tuple[int, ...] = (1, 2)
    max_entries: tuple[int, ...] = (1, 2)
    max_builds: tuple[int, ...] = (1, 2)
    grouping_strategies: tuple[str, ...] = ("ALLGREEN", "HEADGREEN")
    delays: tuple[int, ...] = (0, 15)
    wait_minutes: tuple[int, ...] = (1,)


def is_valid(params: ScenarioParams) -> bool:
    """Apply the validity filters, in order."""
    if params.max_builds > params.max_entries:
        return False
    # At most one conflicting participant per scenario
    if params.conflicting1 and params.conflicting2:
        return False
    if params.min_entries > params.max_entries:
        return False
    return True


def build_matrix(axes: MatrixAxes | None = None) -> list[ScenarioParams]:
    """Build every valid scenario, in product order.

    Args:
        axes: Axis values (defaults to the full matrix)

    Returns:
        Valid scenario parameters, ordered as the cartesian product
    """
    axes = axes or MatrixAxes()
    product = itertools.product(
        axes.merge_methods,
        axes.conflicting,
        axes.conflicting,
        axes.min_entries,
        axes.max_entries,
        axes.max_builds,
        axes.grouping_strategies,
        axes.delays,
        axes.wait_minutes,
    )
    return [p for p in (ScenarioParams(*values) for values in product) if is_valid(p)]
