"""Fixed-interval retry primitives.

Every wait in the harness is a bounded number of attempts with a fixed
delay between them. poll_until() covers "fetch until a condition holds" and
retry_assertion() covers "re-run an assertion until it passes", both built
on tenacity with an injectable sleep so tests run instantly.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from mqprobe.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """A bounded number of attempts with a fixed delay between them.

    Attributes:
        max_attempts: Total number of attempts (at least 1)
        interval: Seconds to wait between attempts
    """

    max_attempts: int
    interval: float

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @property
    def total_wait(self) -> float:
        """Total time spent waiting between attempts when all are used."""
        return (self.max_attempts - 1) * self.interval


CHECKS_POLICY = RetryPolicy(max_attempts=6, interval=5)
MERGE_POLICY = RetryPolicy(max_attempts=6, interval=5)
BOTH_MERGED_POLICY = RetryPolicy(max_attempts=12, interval=5)
QUEUE_DRAIN_POLICY = RetryPolicy(max_attempts=40, interval=5)
ASSERTION_POLICY = RetryPolicy(max_attempts=10, interval=5)


def poll_until(
    fetch: Callable[[], T],
    predicate: Callable[[T], bool],
    policy: RetryPolicy,
    *,
    description: str = "condition",
    sleep: Sleep = time.sleep,
) -> T | None:
    """Call fetch until its result satisfies predicate.

    Args:
        fetch: Zero-argument callable observing remote state
        predicate: Returns True for an acceptable observation
        policy: Attempt limit and delay
        description: What is being waited for, used in log lines
        sleep: Sleep function (injected by tests)

    Returns:
        The first accepted observation, or None when attempts run out

    Raises:
        Any exception raised by fetch, unchanged
    """

    def log_attempt(retry_state: RetryCallState) -> None:
        logger.debug(
            f"Waiting for {description} "
            f"(attempt {retry_state.attempt_number}/{policy.max_attempts})"
        )

    def give_up(retry_state: RetryCallState) -> None:
        logger.warning(
            f"Gave up waiting for {description} after {policy.max_attempts} attempts "
            f"({policy.total_wait:.0f}s)"
        )
        return None

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_fixed(policy.interval),
        retry=retry_if_result(lambda value: not predicate(value)),
        before_sleep=log_attempt,
        retry_error_callback=give_up,
        sleep=sleep,
    )
    return retrying(fetch)


def retry_assertion(
    assertion: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: Sleep = time.sleep,
) -> T:
    """Re-run an assertion until it passes.

    Used where observations are eventually consistent: the check is simply
    repeated until it holds or attempts run out.

    Args:
        assertion: Callable raising AssertionError while the expectation fails
        policy: Attempt limit and delay
        sleep: Sleep function (injected by tests)

    Returns:
        Whatever the assertion returns on its first passing attempt

    Raises:
        AssertionError: The last failure, when every attempt failed
    """

    def log_failure(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        logger.debug(
            f"Assertion failed (attempt {retry_state.attempt_number}/{policy.max_attempts}): "
            f"{error}"
        )

    retrying = Retrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_fixed(policy.interval),
        retry=retry_if_exception_type(AssertionError),
        before_sleep=log_failure,
        reraise=True,
        sleep=sleep,
    )
    return retrying(assertion)
