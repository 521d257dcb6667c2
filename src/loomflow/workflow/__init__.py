"""Workflow definition, compilation and execution."""

from .collaborators import ActivityStore, ActorRouter, Collaborators, MessageTransport, Secret, SecretStore
from .compiler import CompilationError, CompilationResult, WorkflowCompiler
from .context import ExecutionContext
from .executor import ActionDispatcher, WorkflowExecutor, resolve_parameters
from .expressions import ExpressionEvaluator
from .loader import WorkflowLoader
from .models import (
    ActionOutcome,
    ActionResult,
    ActionStatus,
    GraphOutcome,
    InstanceStatus,
    RetryPolicy,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowExecutionResult,
)
from .resilience import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    RateLimiter,
    RateLimiterRegistry,
    ResilienceWrapper,
)
from .store import ExecutionStore, StoredWorkflow, WorkflowStore

__all__ = [
    "ActionDispatcher",
    "ActionOutcome",
    "ActionResult",
    "ActionStatus",
    "ActivityStore",
    "ActorRouter",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "Collaborators",
    "CompilationError",
    "CompilationResult",
    "ExecutionContext",
    "ExecutionStore",
    "ExpressionEvaluator",
    "GraphOutcome",
    "InstanceStatus",
    "MessageTransport",
    "RateLimiter",
    "RateLimiterRegistry",
    "ResilienceWrapper",
    "RetryPolicy",
    "Secret",
    "SecretStore",
    "StoredWorkflow",
    "WorkflowAction",
    "WorkflowCompiler",
    "WorkflowDefinition",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "WorkflowLoader",
    "WorkflowStore",
    "resolve_parameters",
]
