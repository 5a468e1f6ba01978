"""Tests for merge-queue observation."""

from datetime import UTC, datetime

import pytest

from mqprobe.interfaces import CheckRun, MergeQueueEntry
from mqprobe.poller import (
    find_entry,
    is_enqueued,
    wait_for_all_merged,
    wait_for_merge,
    wait_for_merge_queue_checks,
    wait_for_queue_drain,
)
from mqprobe.polling import RetryPolicy

PREFIX = "mutated-main"
FAST = RetryPolicy(max_attempts=4, interval=5)


def entry(pr_number: int, head: str | None = "h3ad", position: int = 1) -> MergeQueueEntry:
    return MergeQueueEntry(
        id=f"MQE_{pr_number}",
        position=position,
        pull_request_number=pr_number,
        head_commit_oid=head,
    )


@pytest.mark.unit
class TestQueueEntries:
    """Tests for entry lookup helpers."""

    def test_find_entry(self):
        """Test entries are matched by PR number."""
        entries = [entry(1), entry(2, position=2)]

        assert find_entry(entries, 2).position == 2
        assert find_entry(entries, 3) is None

    def test_is_enqueued(self, mock_gateway):
        """Test is_enqueued queries the scenario's queue branch."""
        mock_gateway.merge_queue_entries.return_value = [entry(5)]

        assert is_enqueued(mock_gateway, PREFIX, 5) is True
        assert is_enqueued(mock_gateway, PREFIX, 6) is False
        mock_gateway.merge_queue_entries.assert_called_with(f"{PREFIX}/main")


@pytest.mark.unit
class TestWaitForMergeQueueChecks:
    """Tests for wait_for_merge_queue_checks."""

    def test_returns_checks_once_head_commit_known(self, mock_gateway, no_sleep):
        """Test the entry's head commit is used to look up check runs."""
        run = CheckRun(id=1, name="merge_queue_check", status="queued", head_sha="h3ad")
        mock_gateway.merge_queue_entries.side_effect = [
            [],
            [entry(1, head=None)],
            [entry(1)],
        ]
        mock_gateway.list_check_runs.return_value = [run]

        checks = wait_for_merge_queue_checks(mock_gateway, PREFIX, 1, FAST, sleep=no_sleep)

        assert checks == [run]
        mock_gateway.list_check_runs.assert_called_once_with("h3ad")
        assert no_sleep.call_count == 2

    def test_waits_while_no_checks_reported(self, mock_gateway, no_sleep):
        """Test an empty check-run list counts as not started."""
        run = CheckRun(id=1, name="merge_queue_check", status="in_progress")
        mock_gateway.merge_queue_entries.return_value = [entry(1)]
        mock_gateway.list_check_runs.side_effect = [[], [run]]

        assert wait_for_merge_queue_checks(mock_gateway, PREFIX, 1, FAST, sleep=no_sleep) == [run]

    def test_returns_none_when_never_enqueued(self, mock_gateway, no_sleep):
        """Test exhaustion yields None so the caller can decide."""
        mock_gateway.merge_queue_entries.return_value = [entry(2)]

        assert wait_for_merge_queue_checks(mock_gateway, PREFIX, 1, FAST, sleep=no_sleep) is None
        assert mock_gateway.merge_queue_entries.call_count == 4
        mock_gateway.list_check_runs.assert_not_called()


@pytest.mark.unit
class TestWaitForQueueDrain:
    """Tests for wait_for_queue_drain."""

    def test_drained(self, mock_gateway, no_sleep):
        """Test True once the queue is observed empty."""
        mock_gateway.merge_queue_entries.side_effect = [[entry(1), entry(2)], [entry(2)], []]

        assert wait_for_queue_drain(mock_gateway, PREFIX, FAST, sleep=no_sleep) is True
        assert mock_gateway.merge_queue_entries.call_count == 3

    def test_not_drained(self, mock_gateway, no_sleep):
        """Test False when entries remain after every attempt."""
        mock_gateway.merge_queue_entries.return_value = [entry(1)]

        assert wait_for_queue_drain(mock_gateway, PREFIX, FAST, sleep=no_sleep) is False


@pytest.mark.unit
class TestWaitForMerge:
    """Tests for wait_for_merge."""

    def test_returns_merged_pull(self, mock_gateway, make_pull, no_sleep):
        """Test the merged snapshot is returned."""
        mock_gateway.get_pull_request.side_effect = [make_pull(1), make_pull(1, merged=True)]

        pull = wait_for_merge(mock_gateway, 1, FAST, sleep=no_sleep)

        assert pull.merged is True
        no_sleep.assert_called_once_with(5)

    def test_returns_none_when_not_merged(self, mock_gateway, make_pull, no_sleep):
        """Test None when the PR never merges within the attempts."""
        mock_gateway.get_pull_request.return_value = make_pull(1)

        assert wait_for_merge(mock_gateway, 1, FAST, sleep=no_sleep) is None
        assert mock_gateway.get_pull_request.call_count == 4


@pytest.mark.unit
class TestWaitForAllMerged:
    """Tests for wait_for_all_merged."""

    def test_records_first_observation_times(self, mock_gateway, make_pull, no_sleep):
        """Test each PR's merge time is the clock reading when first seen merged."""
        merged_states = {
            1: iter([False, True, True]),
            2: iter([False, False, True]),
        }
        mock_gateway.get_pull_request.side_effect = lambda number: make_pull(
            number, merged=next(merged_states[number])
        )
        times = iter(datetime(2024, 5, 1, 12, 0, s, tzinfo=UTC) for s in (10, 20, 30))

        observed = wait_for_all_merged(
            mock_gateway, [1, 2], FAST, sleep=no_sleep, clock=lambda: next(times)
        )

        assert observed == {
            1: datetime(2024, 5, 1, 12, 0, 10, tzinfo=UTC),
            2: datetime(2024, 5, 1, 12, 0, 20, tzinfo=UTC),
        }

    def test_merged_prs_not_polled_again(self, mock_gateway, make_pull, no_sleep):
        """Test a PR already observed merged is skipped on later attempts."""
        mock_gateway.get_pull_request.side_effect = lambda number: make_pull(
            number, merged=number == 1
        )

        wait_for_all_merged(mock_gateway, [1, 2], FAST, sleep=no_sleep)

        polled = [call.args[0] for call in mock_gateway.get_pull_request.call_args_list]
        assert polled.count(1) == 1
        assert polled.count(2) == 4

    def test_partial_result_when_one_never_merges(self, mock_gateway, make_pull, no_sleep):
        """Test PRs that never merged are absent from the result."""
        mock_gateway.get_pull_request.side_effect = lambda number: make_pull(
            number, merged=number == 2
        )

        observed = wait_for_all_merged(mock_gateway, [1, 2], FAST, sleep=no_sleep)

        assert list(observed) == [2]
