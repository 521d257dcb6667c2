"""Loop action processor for the workflow engine.

Handles Until, DoUntil and While loops with count and time limits. Each
iteration runs the body as a fresh nested graph with the loop variables
``loopIndex``, ``loopCount``, ``loopResult``, ``loopStartTime`` and
``loopElapsedMs`` bound.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..context import ExecutionContext
from ..durations import parse_duration
from ..models import ActionOutcome, DoUntilAction, UntilAction, WhileAction, utc_now

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

logger = logging.getLogger(__name__)

LOOP_COMPLETED = "completed"
LOOP_MAX_ITERATIONS = "max-iterations"
LOOP_TIMEOUT = "timeout"
LOOP_FAILED = "failed"


@dataclass
class LoopState:
    """Progress of one loop run."""

    started_at: float
    start_time: str
    index: int = 0
    last_result: Any = None
    results: list[Any] = field(default_factory=list)

    def variables(self, now: float) -> dict[str, Any]:
        return {
            "loopIndex": self.index,
            "loopCount": self.index + 1,
            "loopResult": self.last_result,
            "loopStartTime": self.start_time,
            "loopElapsedMs": (now - self.started_at) * 1000,
        }


class LoopProcessor:
    """Processes Until, DoUntil and While actions."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: UntilAction, context: ExecutionContext) -> ActionOutcome:
        """
        Run the loop to one of its terminal statuses.

        ``completed``, ``max-iterations`` and ``timeout`` succeed; ``failed``
        (a failing body) fails the action. Every status carries the
        iteration history.
        """
        check_first = not isinstance(action, DoUntilAction)
        if isinstance(action, WhileAction):
            action = action.as_until()

        config = self.dispatcher.config
        max_count = action.limit.count or config.default_loop_count
        time_limit = action.limit.timeout or parse_duration(config.default_loop_timeout)
        clock = self.dispatcher.clock
        evaluator = self.dispatcher.evaluator

        state = LoopState(started_at=clock(), start_time=utc_now().isoformat())

        if check_first:
            loop_context = context.derive(**state.variables(clock()))
            if await evaluator.evaluate_condition(action.condition, loop_context):
                return self._finish(name, state, LOOP_COMPLETED, condition_met=True)

        while True:
            if state.index >= max_count:
                return self._finish(name, state, LOOP_MAX_ITERATIONS)
            if clock() - state.started_at > time_limit:
                return self._finish(name, state, LOOP_TIMEOUT)

            graph = await self.dispatcher.run_graph(action.actions, context.derive(**state.variables(clock())))
            if not graph.succeeded:
                output = self._output(state, LOOP_FAILED, condition_met=False)
                error = graph.to_action_error(name)
                output["error"] = error.to_dict()
                logger.debug(f"Loop '{name}' failed at iteration {state.index}: {error.message}")
                return ActionOutcome.failure(error, output=output)

            state.last_result = graph.outputs()
            state.results.append(state.last_result)
            state.index += 1

            loop_context = context.derive(**state.variables(clock()))
            if await evaluator.evaluate_condition(action.condition, loop_context):
                return self._finish(name, state, LOOP_COMPLETED, condition_met=True)

            if action.delay is not None and state.index < max_count:
                await self.dispatcher.sleep(action.delay.seconds)

    def _finish(self, name: str, state: LoopState, status: str, condition_met: bool = False) -> ActionOutcome:
        logger.debug(f"Loop '{name}' ended with status {status} after {state.index} iteration(s)")
        return ActionOutcome.success(self._output(state, status, condition_met))

    @staticmethod
    def _output(state: LoopState, status: str, condition_met: bool) -> dict[str, Any]:
        return {
            "status": status,
            "iterations": state.index,
            "conditionMet": condition_met,
            "lastResult": state.last_result,
            "results": state.results,
        }
