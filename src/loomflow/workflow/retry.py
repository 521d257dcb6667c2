"""Retry mechanisms for workflow actions."""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from ..errors.models import AttemptRecord
from .models import ActionOutcome, RetryPolicy

logger = logging.getLogger(__name__)

# Failures that would fail the same way on every attempt
NON_RETRYABLE_CODES = {"ExpressionEvaluationError", "NestingDepthError"}

JITTER_RATIO = 0.25

SleepFunc = Callable[[float], Awaitable[None]]


class ExponentialBackoffCalculator:
    """Calculates retry delays for a retry policy."""

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None):
        self.policy = policy
        self.rng = rng or random.Random()

    def delay_for(self, retry_index: int) -> float:
        """Delay in seconds before retry number ``retry_index`` (0-based).

        Fixed policies wait ``interval``. Exponential policies clamp
        ``interval * 2**retry_index`` into ``[minimum, maximum]``, apply
        +/-25% jitter and never go below the minimum.
        """
        policy = self.policy
        if policy.type == "none":
            return 0.0
        if policy.type == "fixed":
            return policy.interval

        minimum = policy.effective_minimum_interval
        maximum = policy.effective_max_interval
        delay = min(max(policy.interval * (2**retry_index), minimum), maximum)
        jitter = delay * JITTER_RATIO * self.rng.uniform(-1.0, 1.0)
        return max(minimum, delay + jitter)


@dataclass
class RetryRun:
    """Everything that happened while retrying one operation."""

    outcome: ActionOutcome
    attempts: int
    history: list[AttemptRecord] = field(default_factory=list)
    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.outcome.ok


def is_retryable(outcome: ActionOutcome) -> bool:
    return outcome.error is None or outcome.error.code not in NON_RETRYABLE_CODES


async def run_with_retry(
    operation: Callable[[], Awaitable[ActionOutcome]],
    policy: RetryPolicy,
    name: str,
    sleep: SleepFunc = asyncio.sleep,
    rng: random.Random | None = None,
) -> RetryRun:
    """Run ``operation`` up to ``policy.total_attempts`` times.

    The operation returns an ``ActionOutcome``; a failed outcome triggers a
    retry after the computed delay unless it is not retryable.

    Args:
        operation: Zero-argument coroutine factory producing one attempt
        policy: Retry policy to apply
        name: Action name used in log messages
        sleep: Awaitable sleep, injectable for tests
        rng: Random source for jitter, injectable for tests

    Returns:
        RetryRun with the final outcome and the failed-attempt history
    """
    calculator = ExponentialBackoffCalculator(policy, rng)
    total_attempts = policy.total_attempts
    history: list[AttemptRecord] = []
    outcomes: list[ActionOutcome] = []

    for attempt in range(1, total_attempts + 1):
        outcome = await operation()
        outcomes.append(outcome)
        if outcome.ok:
            if attempt > 1:
                logger.info(f"Action '{name}' succeeded on attempt {attempt}/{total_attempts}")
            return RetryRun(outcome=outcome, attempts=attempt, history=history, outcomes=outcomes)

        last_attempt = attempt == total_attempts or not is_retryable(outcome)
        delay = None if last_attempt else calculator.delay_for(attempt - 1)
        history.append(AttemptRecord(attempt=attempt, error=outcome.error, delay_seconds=delay))

        if last_attempt:
            if not is_retryable(outcome):
                logger.info(f"Not retrying action '{name}': {outcome.error.code} is not retryable")
            else:
                logger.error(f"Max retries exceeded for action '{name}' after {attempt} attempts")
            return RetryRun(outcome=outcome, attempts=attempt, history=history, outcomes=outcomes)

        logger.info(
            f"Retrying action '{name}' in {delay * 1000:.0f}ms "
            f"(attempt {attempt}/{total_attempts}): {outcome.error.message}"
        )
        await sleep(delay)

    raise AssertionError("unreachable: retry loop always returns")
