"""Execution context for workflow runs.

Holds the per-graph view of an instance: parameters, trigger payload, loop
variables and the results recorded so far. Nested constructs work on a
derived context so their records never leak into the enclosing graph.
"""

import uuid
from typing import Any

from ..errors.models import NestingDepthError, WorkflowStateError
from .models import ActionResult


class ExecutionContext:
    """Manages the recorded results and variables of one graph run."""

    def __init__(
        self,
        instance_id: str | None = None,
        workflow_id: str = "workflow",
        parameters: dict[str, Any] | None = None,
        trigger: dict[str, Any] | None = None,
        variables: dict[str, Any] | None = None,
        actions: dict[str, ActionResult] | None = None,
        depth: int = 0,
        max_depth: int = 32,
    ):
        self.instance_id = instance_id or str(uuid.uuid4())
        self.workflow_id = workflow_id
        self.parameters = dict(parameters or {})
        self.trigger = dict(trigger or {})
        self.variables = dict(variables or {})
        self.actions: dict[str, ActionResult] = dict(actions or {})
        self.depth = depth
        self.max_depth = max_depth
        self._recorded: set[str] = set()

    def record(self, name: str, result: ActionResult) -> None:
        """Record the result of an action run in this graph.

        Raises:
            WorkflowStateError: If the action already has a result here
        """
        if name in self._recorded:
            raise WorkflowStateError(f"Action '{name}' already has a recorded result")
        self._recorded.add(name)
        self.actions[name] = result

    def is_recorded(self, name: str) -> bool:
        return name in self._recorded

    def get_result(self, name: str) -> ActionResult | None:
        """Result visible to expressions, including enclosing graphs."""
        return self.actions.get(name)

    def recorded_results(self) -> dict[str, ActionResult]:
        """Results recorded in this graph only, in recording order."""
        return {name: result for name, result in self.actions.items() if name in self._recorded}

    def derive(self, **variables: Any) -> "ExecutionContext":
        """Create the context for a nested graph.

        The child sees every result recorded so far plus the merged
        variables; its own records stay local.

        Raises:
            NestingDepthError: If the child would exceed ``max_depth``
        """
        if self.depth + 1 > self.max_depth:
            raise NestingDepthError(f"Maximum nesting depth {self.max_depth} exceeded")
        return ExecutionContext(
            instance_id=self.instance_id,
            workflow_id=self.workflow_id,
            parameters=self.parameters,
            trigger=self.trigger,
            variables={**self.variables, **variables},
            actions=self.actions,
            depth=self.depth + 1,
            max_depth=self.max_depth,
        )
