"""Structural validation of workflow definitions.

The compiler never raises: every problem is returned as a
``CompilationError`` so callers can fix the definition before running it.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from ..errors.models import (
    ActionDefinitionError,
    CycleError,
    ParameterError,
    UnknownDependencyError,
    WorkflowValidationError,
)
from .models import WorkflowAction, WorkflowDefinition
from .step_registry import is_control_flow

logger = logging.getLogger(__name__)

ERROR_CLASSES: dict[str, type[WorkflowValidationError]] = {
    "CYCLE": CycleError,
    "UNKNOWN_DEPENDENCY": UnknownDependencyError,
    "INVALID_ACTION": ActionDefinitionError,
    "INVALID_PARAMETER": ParameterError,
}


@dataclass
class CompilationError:
    """A single structural problem found in a definition."""

    message: str
    action: str | None = None
    code: str = "INVALID_DEFINITION"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "action": self.action}


@dataclass
class CompilationResult:
    """Outcome of compiling a workflow definition."""

    valid: bool
    errors: list[CompilationError] = field(default_factory=list)
    definition: WorkflowDefinition | None = None

    def raise_for_errors(self, source: str | None = None) -> None:
        """Raise a ``WorkflowValidationError`` summarising every error.

        The subclass follows the first error's code (``CycleError`` for
        ``CYCLE`` and so on).

        Args:
            source: Where the definition came from, named in the message
        """
        if self.valid:
            return
        summary = "; ".join(error.message for error in self.errors)
        first_action = next((error.action for error in self.errors if error.action), None)
        error_cls = ERROR_CLASSES.get(self.errors[0].code, WorkflowValidationError)
        origin = f"workflow in {source}" if source else "workflow definition"
        raise error_cls(f"Invalid {origin}: {summary}", action=first_action)


class WorkflowCompiler:
    """Validates triggers, actions, dependency names, nesting depth and cycles."""

    def __init__(self, max_nesting_depth: int = 32):
        self.max_nesting_depth = max_nesting_depth

    def compile(self, definition: WorkflowDefinition | Mapping[str, Any]) -> CompilationResult:
        """Compile a definition object or document.

        Args:
            definition: Parsed definition or its raw document form

        Returns:
            CompilationResult with ``valid`` and the structured errors
        """
        errors: list[CompilationError] = []

        if not isinstance(definition, WorkflowDefinition):
            try:
                definition = WorkflowDefinition.from_dict(definition, max_depth=self.max_nesting_depth)
            except WorkflowValidationError as e:
                errors.append(CompilationError(str(e), action=e.action, code=self._code_for(e)))
                return CompilationResult(valid=False, errors=errors)

        if not definition.triggers:
            errors.append(CompilationError("Workflow must declare at least one trigger", code="NO_TRIGGERS"))
        if not definition.actions:
            errors.append(CompilationError("Workflow must declare at least one action", code="NO_ACTIONS"))

        cycle_reported = False
        for graph, depth in self._walk_graphs(definition.actions, depth=0, errors=errors):
            self._check_dependencies(graph, errors)
            if not cycle_reported:
                cycle = self._find_cycle(graph)
                if cycle:
                    cycle_reported = True
                    errors.append(
                        CompilationError(
                            f"Cycle detected in runAfter dependencies: {' -> '.join(cycle)}",
                            action=cycle[0],
                            code="CYCLE",
                        )
                    )

        if errors:
            logger.debug(f"Compilation of '{definition.name}' found {len(errors)} error(s)")
        return CompilationResult(valid=not errors, errors=errors, definition=definition)

    def _walk_graphs(self, graph: dict[str, WorkflowAction], depth: int, errors: list[CompilationError]):
        """Yield every action graph (top level and nested) with its depth."""
        yield graph, depth
        for name, action in graph.items():
            if not is_control_flow(action.type):
                continue
            for nested in action.nested_graphs().values():
                if not nested:
                    continue
                if depth + 1 > self.max_nesting_depth:
                    errors.append(
                        CompilationError(
                            f"Action '{name}' exceeds maximum nesting depth {self.max_nesting_depth}",
                            action=name,
                            code="NESTING_DEPTH",
                        )
                    )
                    continue
                yield from self._walk_graphs(nested, depth + 1, errors)

    @staticmethod
    def _check_dependencies(graph: dict[str, WorkflowAction], errors: list[CompilationError]) -> None:
        for name, action in graph.items():
            for dep in action.run_after:
                if dep == name:
                    continue  # self-dependency is reported as a cycle
                if dep not in graph:
                    errors.append(
                        CompilationError(
                            f"Action '{name}' depends on unknown action '{dep}'",
                            action=name,
                            code="UNKNOWN_DEPENDENCY",
                        )
                    )

    @staticmethod
    def _find_cycle(graph: dict[str, WorkflowAction]) -> list[str] | None:
        """Depth-first search with a recursion stack; returns the first cycle found."""
        visited: set[str] = set()
        stack: list[str] = []
        on_stack: set[str] = set()

        def visit(name: str) -> list[str] | None:
            visited.add(name)
            stack.append(name)
            on_stack.add(name)
            for dep in graph[name].run_after:
                if dep not in graph:
                    continue
                if dep in on_stack:
                    return stack[stack.index(dep) :] + [dep]
                if dep not in visited:
                    cycle = visit(dep)
                    if cycle:
                        return cycle
            stack.pop()
            on_stack.discard(name)
            return None

        for name in graph:
            if name not in visited:
                cycle = visit(name)
                if cycle:
                    return cycle
        return None

    @staticmethod
    def _code_for(error: WorkflowValidationError) -> str:
        name = type(error).__name__
        return {
            "ParameterError": "INVALID_PARAMETER",
            "ActionDefinitionError": "INVALID_ACTION",
        }.get(name, "INVALID_DEFINITION")
