"""Retry action processor for the workflow engine."""

from typing import TYPE_CHECKING

from ...errors.models import ActionError, RetryExhaustedError
from ..context import ExecutionContext
from ..durations import parse_duration
from ..models import ActionOutcome, ActionResult, RetryAction, RetryPolicy
from ..retry import run_with_retry

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

DEFAULT_MAX_INTERVAL = 60.0


class RetryProcessor:
    """Processes Retry actions: re-dispatch the nested action per its policy."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    def default_policy(self) -> RetryPolicy:
        interval = parse_duration(self.dispatcher.config.default_retry_interval)
        return RetryPolicy(
            type="exponential",
            count=3,
            interval=interval,
            max_interval=max(DEFAULT_MAX_INTERVAL, interval),
            minimum_interval=interval,
        )

    async def process(self, name: str, action: RetryAction, context: ExecutionContext) -> ActionOutcome:
        """
        Run the nested action until it succeeds or the policy is exhausted.

        Returns:
            ActionOutcome with ``{status, attempts, result | error, attemptResults}``;
            exhausting the policy fails the action but keeps that output
        """
        policy = action.policy or self.default_policy()
        inner_name = f"{name}/action"
        attempt_results: list[ActionResult] = []

        async def attempt() -> ActionOutcome:
            child = context.derive(retryAttempt=len(attempt_results) + 1)
            result = await self.dispatcher.dispatch(inner_name, action.action, child)
            attempt_results.append(result)
            return ActionOutcome(ok=result.succeeded, output=result.output, error=result.error)

        run = await run_with_retry(attempt, policy, name, sleep=self.dispatcher.sleep, rng=self.dispatcher.rng)

        output = {
            "status": "success" if run.succeeded else "failed",
            "attempts": run.attempts,
            "attemptResults": [result.to_dict() for result in attempt_results],
        }
        if run.succeeded:
            output["result"] = run.outcome.output
            return ActionOutcome.success(output)

        exhausted = RetryExhaustedError(name, run.history, run.outcome.error)
        error = ActionError.from_exception(exhausted, action=name)
        output["error"] = error.to_dict()
        return ActionOutcome.failure(error, output=output)
