"""Error models for the workflow engine."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


class WorkflowEngineError(Exception):
    """Base class for every error raised by the engine."""

    pass


# Definition-time errors. These only surface from the compiler, the loader
# and parameter resolution; never from a running instance.


class WorkflowValidationError(WorkflowEngineError):
    """Raised when a workflow definition fails validation."""

    def __init__(self, message: str, action: str | None = None):
        super().__init__(message)
        self.action = action


class CycleError(WorkflowValidationError):
    """The runAfter edges of a definition contain a cycle."""

    pass


class UnknownDependencyError(WorkflowValidationError):
    """A runAfter key names an action that does not exist in the same graph."""

    pass


class ActionDefinitionError(WorkflowValidationError):
    """An action variant is malformed or misses a required input."""

    pass


class ParameterError(WorkflowValidationError):
    """A supplied parameter is missing, mistyped or not allowed."""

    pass


# Runtime errors


class WorkflowExecutionError(WorkflowEngineError):
    """Raised when workflow execution fails."""

    pass


class DeadlockError(WorkflowExecutionError):
    """No pending action can ever become ready."""

    def __init__(self, pending: list[str]):
        super().__init__(f"No action became ready; pending actions can never run: {', '.join(pending)}")
        self.pending = pending


class ExpressionEvaluationError(WorkflowExecutionError):
    """Raised when an expression is malformed or uses an unsupported form."""

    pass


class ActionTimeoutError(WorkflowExecutionError, TimeoutError):
    """An action did not finish before its deadline."""

    def __init__(self, action: str, timeout_seconds: float):
        super().__init__(f"Action '{action}' timed out after {timeout_seconds * 1000:.0f}ms")
        self.action = action
        self.timeout_seconds = timeout_seconds


class CircuitOpenError(WorkflowExecutionError):
    """The circuit breaker for an action is open and rejects calls."""

    def __init__(self, name: str, retry_after: float | None = None):
        super().__init__(f"Circuit breaker [{name}] is OPEN")
        self.name = name
        self.retry_after = retry_after


class RateLimitExceededError(WorkflowExecutionError):
    """A rate limit token could not be acquired within the allowed wait."""

    def __init__(self, name: str, wait_seconds: float, max_wait_seconds: float):
        super().__init__(
            f"Rate limit [{name}] requires waiting {wait_seconds:.3f}s, more than the allowed {max_wait_seconds:.3f}s"
        )
        self.name = name
        self.wait_seconds = wait_seconds


class RetryExhaustedError(WorkflowExecutionError):
    """Every attempt allowed by a retry policy failed."""

    def __init__(self, action: str, attempts: list["AttemptRecord"], last_error: "ActionError | None"):
        last_message = last_error.message if last_error else "unknown error"
        super().__init__(f"Action '{action}' failed after {len(attempts)} attempts: {last_message}")
        self.action = action
        self.attempts = attempts
        self.last_error = last_error


class ActionExecutionError(WorkflowExecutionError):
    """Wraps whatever an external collaborator raised."""

    def __init__(self, action: str | None, message: str):
        super().__init__(message)
        self.action = action


class CollaboratorUnavailableError(WorkflowExecutionError):
    """A collaborator needed by an action is missing or unavailable."""

    pass


class NestingDepthError(WorkflowExecutionError):
    """Nested actions exceeded the configured depth."""

    pass


class WorkflowCancelledError(WorkflowExecutionError):
    """The instance was cancelled before it finished."""

    pass


class WorkflowNotFoundError(WorkflowEngineError):
    """Raised when a workflow definition cannot be found."""

    pass


class InstanceNotFoundError(WorkflowEngineError):
    """Raised when an execution instance id is unknown."""

    pass


class WorkflowStateError(WorkflowEngineError):
    """Raised on an illegal state transition or a second write of a result."""

    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActionError:
    """Structured description of why an action failed."""

    code: str
    message: str
    action: str | None = None
    details: dict[str, Any] | None = None
    timestamp: datetime = field(default_factory=_now)

    @classmethod
    def from_exception(cls, exception: BaseException, action: str | None = None) -> "ActionError":
        """Create an ActionError from an exception."""
        details = None
        if isinstance(exception, RetryExhaustedError):
            details = {"attempts": [attempt.to_dict() for attempt in exception.attempts]}
        elif isinstance(exception, DeadlockError):
            details = {"pending": list(exception.pending)}
        elif isinstance(exception, ActionExecutionError) and exception.__cause__ is not None:
            details = {"cause": type(exception.__cause__).__name__}

        return cls(
            code=type(exception).__name__,
            message=str(exception),
            action=action or getattr(exception, "action", None),
            details=details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "code": self.code,
            "message": self.message,
            "action": self.action,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AttemptRecord:
    """One failed attempt of a retried action."""

    attempt: int
    error: ActionError
    delay_seconds: float | None = None  # wait before the next attempt, None for the last one

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "attempt": self.attempt,
            "error": self.error.message,
            "code": self.error.code,
            "timestamp": self.error.timestamp.isoformat(),
            "delayMs": None if self.delay_seconds is None else round(self.delay_seconds * 1000),
        }
