"""Conditional action processor for the workflow engine.

Handles if/else execution based on expression evaluation.
"""

import logging
from typing import TYPE_CHECKING

from ..context import ExecutionContext
from ..models import ActionOutcome, IfAction

if TYPE_CHECKING:
    from ..executor import ActionDispatcher

logger = logging.getLogger(__name__)


class ConditionalProcessor:
    """Processes If actions."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: IfAction, context: ExecutionContext) -> ActionOutcome:
        """
        Evaluate the condition and run the selected branch as a nested graph.

        Returns:
            ActionOutcome with ``{conditionResult, results}``; a failing branch
            fails the If action
        """
        condition_result = await self.dispatcher.evaluator.evaluate_condition(action.condition, context)
        branch = action.actions if condition_result else action.else_actions
        logger.debug(f"If action '{name}' took the {'then' if condition_result else 'else'} branch")

        graph = await self.dispatcher.run_graph(branch, context.derive())
        output = {"conditionResult": condition_result, "results": graph.outputs()}
        if not graph.succeeded:
            return ActionOutcome.failure(graph.to_action_error(name), output=output)
        return ActionOutcome.success(output)
