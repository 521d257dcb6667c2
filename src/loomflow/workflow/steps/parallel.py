"""Parallel action processor for the workflow engine."""

import asyncio
from typing import TYPE_CHECKING

from ..context import ExecutionContext
from ..models import ActionOutcome, GraphOutcome, ParallelAction

if TYPE_CHECKING:
    from ..executor import ActionDispatcher


class ParallelProcessor:
    """Processes Parallel actions: every sub-action starts at once and is joined."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ParallelAction, context: ExecutionContext) -> ActionOutcome:
        child = context.derive()
        names = list(action.actions)
        results = await asyncio.gather(
            *(self.dispatcher.dispatch(branch, action.actions[branch], child) for branch in names)
        )

        graph = GraphOutcome()
        for branch, result in zip(names, results, strict=True):
            child.record(branch, result)
            graph.results[branch] = result
            if result.failed and graph.error is None:
                graph.failed_action = branch
                graph.error = result.error

        output = {branch: result.output for branch, result in graph.results.items()}
        if not graph.succeeded:
            return ActionOutcome.failure(graph.to_action_error(name), output=output)
        return ActionOutcome.success(output)
