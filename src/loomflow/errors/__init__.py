"""Error taxonomy for the workflow engine."""

from .models import (
    ActionDefinitionError,
    ActionError,
    ActionExecutionError,
    ActionTimeoutError,
    AttemptRecord,
    CircuitOpenError,
    CollaboratorUnavailableError,
    CycleError,
    DeadlockError,
    ExpressionEvaluationError,
    InstanceNotFoundError,
    NestingDepthError,
    ParameterError,
    RateLimitExceededError,
    RetryExhaustedError,
    UnknownDependencyError,
    WorkflowCancelledError,
    WorkflowEngineError,
    WorkflowExecutionError,
    WorkflowNotFoundError,
    WorkflowStateError,
    WorkflowValidationError,
)

__all__ = [
    "ActionDefinitionError",
    "ActionError",
    "ActionExecutionError",
    "ActionTimeoutError",
    "AttemptRecord",
    "CircuitOpenError",
    "CollaboratorUnavailableError",
    "CycleError",
    "DeadlockError",
    "ExpressionEvaluationError",
    "InstanceNotFoundError",
    "NestingDepthError",
    "ParameterError",
    "RateLimitExceededError",
    "RetryExhaustedError",
    "UnknownDependencyError",
    "WorkflowCancelledError",
    "WorkflowEngineError",
    "WorkflowExecutionError",
    "WorkflowNotFoundError",
    "WorkflowStateError",
    "WorkflowValidationError",
]
