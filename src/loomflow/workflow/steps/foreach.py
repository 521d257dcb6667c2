"""ForEach action processor for the workflow engine.

Runs the body graph once per item, strictly in order, binding the item and
its index as variables.
"""

import logging
from typing import TYPE_CHECKING, Any

from ...errors.models import ActionExecutionError
from ..context import ExecutionContext
from ..models import ActionOutcome, ForeachAction

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

logger = logging.getLogger(__name__)


class ForEachProcessor:
    """Processes Foreach actions."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ForeachAction, context: ExecutionContext) -> ActionOutcome:
        items = await self.dispatcher.evaluator.evaluate(action.items, context)
        if not isinstance(items, list | tuple):
            raise ActionExecutionError(name, f"Foreach items must evaluate to an array, got {type(items).__name__}")

        results: list[dict[str, Any]] = []
        for index, item in enumerate(items):
            child = context.derive(item=item, iterationIndex=index)
            graph = await self.dispatcher.run_graph(action.actions, child)
            results.append(graph.outputs())
            if not graph.succeeded:
                logger.debug(f"Foreach '{name}' stopped at iteration {index}")
                return ActionOutcome.failure(graph.to_action_error(name), output=results)

        return ActionOutcome.success(results)
