"""Scope action processor for the workflow engine."""

from typing import TYPE_CHECKING

from ..context import ExecutionContext
from ..models import ActionOutcome, ScopeAction

if TYPE_CHECKING:
    from ..executor import ActionDispatcher


class ScopeProcessor:
    """Processes Scope actions: run the nested graph, fail if any inner action fails unhandled."""

    def __init__(self, dispatcher: "ActionDispatcher"):
        self.dispatcher = dispatcher

    async def process(self, name: str, action: ScopeAction, context: ExecutionContext) -> ActionOutcome:
        graph = await self.dispatcher.run_graph(action.actions, context.derive())
        if not graph.succeeded:
            return ActionOutcome.failure(graph.to_action_error(name), output=graph.outputs())
        return ActionOutcome.success(graph.outputs())
