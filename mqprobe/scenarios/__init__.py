"""Scenario runners probing the merge queue.

- merge_queue_matrix: the parameterised matrix of queue policies
- mid_queue_conflicts: a queued entry conflicting with the one ahead of it
- mutated_main: the queue branch moving under a running entry
- non_ordered_queueing: enqueue order versus readiness order
"""

from mqprobe.scenarios.base import (
    ScenarioContext,
    ScenarioSetupError,
    cleanup_branches,
    merge_time_bucket,
    scenario_phase,
)

__all__ = [
    "ScenarioContext",
    "ScenarioSetupError",
    "cleanup_branches",
    "merge_time_bucket",
    "scenario_phase",
]
