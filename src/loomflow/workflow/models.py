"""Workflow definition and execution models for the workflow engine.

Definitions follow the Logic-Apps style document: a ``parameters`` map, a
``triggers`` map, an ``actions`` map keyed by unique action name and an
optional ``outputs`` map. Every action is one variant of a closed family
(one dataclass per ``type``) sharing the dependency and resilience fields.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

from ..errors.models import ActionDefinitionError, ActionError, ParameterError
from .durations import DELAY_UNITS, coerce_timeout, parse_duration
from .step_registry import get_step_config


class ActionStatus(Enum):
    """Terminal status of a recorded action."""

    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    SKIPPED = "Skipped"


class InstanceStatus(Enum):
    """Lifecycle status of a workflow instance."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _duration_field(value: Any, field_name: str, action: str | None) -> float | None:
    """Parse an ISO duration field, reporting errors against the action."""
    if value is None:
        return None
    try:
        return parse_duration(value)
    except ValueError as e:
        raise ActionDefinitionError(f"Invalid {field_name}: {e}", action=action) from e


# ---------------------------------------------------------------------------
# Resilience and loop configuration
# ---------------------------------------------------------------------------


@dataclass
class RetryPolicy:
    """Retry policy for an action or a Retry action.

    Intervals are in seconds.
    """

    VALID_TYPES: ClassVar[set[str]] = {"fixed", "exponential", "none"}

    type: str = "exponential"
    count: int = 3
    interval: float = 1.0
    max_interval: float | None = None
    minimum_interval: float | None = None

    def __post_init__(self):
        if not isinstance(self.type, str) or self.type not in self.VALID_TYPES:
            raise ActionDefinitionError(f"Invalid retry policy type '{self.type}', expected one of {sorted(self.VALID_TYPES)}")
        if not isinstance(self.count, int) or isinstance(self.count, bool) or self.count < 0:
            raise ActionDefinitionError(f"Retry count must be a non-negative integer, got {self.count!r}")
        if self.interval < 0:
            raise ActionDefinitionError("Retry interval cannot be negative")

    @property
    def total_attempts(self) -> int:
        """Initial attempt plus ``count`` retries."""
        if self.type == "none":
            return 1
        return self.count + 1

    @property
    def effective_max_interval(self) -> float:
        return self.max_interval if self.max_interval is not None else self.interval * 10

    @property
    def effective_minimum_interval(self) -> float:
        return self.minimum_interval if self.minimum_interval is not None else self.interval

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], action: str | None = None) -> "RetryPolicy":
        """Build a policy from its document form (ISO-8601 intervals)."""
        if not isinstance(data, Mapping):
            raise ActionDefinitionError("retryPolicy must be an object", action=action)
        try:
            return cls(
                type=data.get("type", "exponential"),
                count=data.get("count", 3),
                interval=_duration_field(data.get("interval", "PT1S"), "retry interval", action),
                max_interval=_duration_field(data.get("maxInterval"), "retry maxInterval", action),
                minimum_interval=_duration_field(data.get("minimumInterval"), "retry minimumInterval", action),
            )
        except ActionDefinitionError as e:
            e.action = e.action or action
            raise

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type, "count": self.count, "interval": f"PT{self.interval:g}S"}
        if self.max_interval is not None:
            data["maxInterval"] = f"PT{self.max_interval:g}S"
        if self.minimum_interval is not None:
            data["minimumInterval"] = f"PT{self.minimum_interval:g}S"
        return data


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker settings. ``timeout`` is the failure window in seconds."""

    enabled: bool = True
    failure_threshold: int = 5
    timeout: float = 60.0
    cooldown: float | None = None

    def __post_init__(self):
        if self.failure_threshold < 1:
            raise ActionDefinitionError("circuitBreaker.failureThreshold must be at least 1")
        if self.timeout <= 0:
            raise ActionDefinitionError("circuitBreaker.timeout must be positive")

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown if self.cooldown is not None else self.timeout

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], action: str | None = None) -> "CircuitBreakerConfig":
        if not isinstance(data, Mapping):
            raise ActionDefinitionError("circuitBreaker must be an object", action=action)
        try:
            timeout = coerce_timeout(data.get("timeout", 60_000))
            cooldown = coerce_timeout(data.get("cooldown"))
        except ValueError as e:
            raise ActionDefinitionError(f"Invalid circuitBreaker duration: {e}", action=action) from e
        failure_threshold = data.get("failureThreshold", 5)
        if not isinstance(failure_threshold, int) or isinstance(failure_threshold, bool) or failure_threshold < 1:
            raise ActionDefinitionError(
                f"circuitBreaker.failureThreshold must be a positive integer, got {failure_threshold!r}", action=action
            )
        return cls(
            enabled=bool(data.get("enabled", True)),
            failure_threshold=failure_threshold,
            timeout=timeout,
            cooldown=cooldown,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "enabled": self.enabled,
            "failureThreshold": self.failure_threshold,
            "timeout": round(self.timeout * 1000),
        }
        if self.cooldown is not None:
            data["cooldown"] = round(self.cooldown * 1000)
        return data


@dataclass
class RateLimitConfig:
    """Token bucket of ``requests`` tokens refilled every ``per`` period."""

    requests: int
    per: str = "second"

    def __post_init__(self):
        if self.requests < 1:
            raise ActionDefinitionError("rateLimit.requests must be at least 1")
        if not isinstance(self.per, str) or self.per not in DELAY_UNITS:
            raise ActionDefinitionError(f"rateLimit.per must be one of {sorted(DELAY_UNITS)}")

    @property
    def period_seconds(self) -> float:
        return DELAY_UNITS[self.per]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], action: str | None = None) -> "RateLimitConfig":
        if not isinstance(data, Mapping) or "requests" not in data:
            raise ActionDefinitionError("rateLimit requires 'requests'", action=action)
        requests = data["requests"]
        if not isinstance(requests, int) or isinstance(requests, bool):
            raise ActionDefinitionError(f"rateLimit.requests must be an integer, got {requests!r}", action=action)
        try:
            return cls(requests=requests, per=data.get("per", "second"))
        except ActionDefinitionError as e:
            e.action = e.action or action
            raise

    def to_dict(self) -> dict[str, Any]:
        return {"requests": self.requests, "per": self.per}


@dataclass
class LoopLimit:
    """Loop bounds; unset values fall back to the engine configuration."""

    count: int | None = None
    timeout: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, action: str | None = None) -> "LoopLimit":
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise ActionDefinitionError("limit must be an object", action=action)
        count = data.get("count")
        if count is not None and (not isinstance(count, int) or count < 1):
            raise ActionDefinitionError("limit.count must be a positive integer", action=action)
        return cls(count=count, timeout=_duration_field(data.get("timeout"), "limit.timeout", action))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.count is not None:
            data["count"] = self.count
        if self.timeout is not None:
            data["timeout"] = f"PT{self.timeout:g}S"
        return data


@dataclass
class LoopDelay:
    """Pause between loop iterations."""

    count: float
    unit: str = "second"

    @property
    def seconds(self) -> float:
        return self.count * DELAY_UNITS[self.unit]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None, action: str | None = None) -> "LoopDelay | None":
        if not data:
            return None
        if not isinstance(data, Mapping):
            raise ActionDefinitionError("delay must be an object", action=action)
        interval = data.get("interval", data)
        if not isinstance(interval, Mapping) or "count" not in interval:
            raise ActionDefinitionError("delay.interval requires 'count' and 'unit'", action=action)
        unit = interval.get("unit", "second")
        if not isinstance(unit, str) or unit not in DELAY_UNITS:
            raise ActionDefinitionError(f"Invalid delay unit: {unit}", action=action)
        count = interval["count"]
        if not isinstance(count, int | float) or isinstance(count, bool) or count < 0:
            raise ActionDefinitionError(f"delay.interval.count must be a non-negative number, got {count!r}", action=action)
        return cls(count=count, unit=unit)

    def to_dict(self) -> dict[str, Any]:
        return {"interval": {"count": self.count, "unit": self.unit}}


# ---------------------------------------------------------------------------
# Action variants
# ---------------------------------------------------------------------------


@dataclass(kw_only=True)
class WorkflowAction:
    """Fields shared by every action variant."""

    type: ClassVar[str] = ""

    run_after: dict[str, frozenset[ActionStatus]] = field(default_factory=dict)
    timeout: float | None = None  # seconds
    retry_policy: RetryPolicy | None = None
    circuit_breaker: CircuitBreakerConfig | None = None
    rate_limit: RateLimitConfig | None = None

    def nested_graphs(self) -> dict[str, dict[str, "WorkflowAction"]]:
        """Nested action maps keyed by a label ("actions", "else", ...)."""
        return {}

    def inputs_to_dict(self) -> Any:
        return {}

    def to_dict(self) -> dict[str, Any]:
        """Render the action back to its document form."""
        data: dict[str, Any] = {"type": self.type, "inputs": self.inputs_to_dict()}
        if self.run_after:
            data["runAfter"] = {
                dep: sorted(status.value for status in statuses) for dep, statuses in self.run_after.items()
            }
        if self.timeout is not None:
            data["timeout"] = round(self.timeout * 1000)
        if self.retry_policy is not None:
            data["retryPolicy"] = self.retry_policy.to_dict()
        if self.circuit_breaker is not None:
            data["circuitBreaker"] = self.circuit_breaker.to_dict()
        if self.rate_limit is not None:
            data["rateLimit"] = self.rate_limit.to_dict()
        return data

    @classmethod
    def from_inputs(cls, name: str, inputs: Any, common: dict[str, Any], depth: int, max_depth: int) -> "WorkflowAction":
        raise NotImplementedError


def _require(inputs: Any, action_type: str, name: str) -> Mapping[str, Any]:
    """Check the inputs object carries every required field of its action type."""
    if not isinstance(inputs, Mapping):
        raise ActionDefinitionError(f"{action_type} action '{name}' requires an inputs object", action=name)
    missing = [key for key in get_step_config(action_type)["required_fields"] if inputs.get(key) in (None, "")]
    if missing:
        raise ActionDefinitionError(
            f"{action_type} action '{name}' missing required input(s): {', '.join(missing)}", action=name
        )
    return inputs


def _graph(value: Any, label: str, name: str, depth: int, max_depth: int, required: bool = True) -> dict[str, WorkflowAction]:
    if value is None and not required:
        return {}
    if not isinstance(value, Mapping) or (required and not value):
        raise ActionDefinitionError(f"Action '{name}' requires a non-empty '{label}' map of actions", action=name)
    return parse_actions(value, depth=depth + 1, max_depth=max_depth)


@dataclass(kw_only=True)
class ActorAction(WorkflowAction):
    """Call a method on an actor, routed by actor type unless an id is given."""

    type: ClassVar[str] = "Actor"

    method: str
    actor_type: str | None = None
    actor_id: str | None = None
    args: Any = None

    def inputs_to_dict(self) -> Any:
        data = {"method": self.method, "args": self.args}
        if self.actor_type:
            data["actorType"] = self.actor_type
        if self.actor_id:
            data["actorId"] = self.actor_id
        return data

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        if not inputs.get("actorType") and not inputs.get("actorId"):
            raise ActionDefinitionError(f"Actor action '{name}' requires 'actorType' or 'actorId'", action=name)
        return cls(
            method=inputs["method"],
            actor_type=inputs.get("actorType"),
            actor_id=inputs.get("actorId"),
            args=inputs.get("args"),
            **common,
        )


@dataclass(kw_only=True)
class ActivityAction(WorkflowAction):
    """Run a registered activity module through the activity store."""

    type: ClassVar[str] = "Activity"

    activity_name: str
    input: Any = None

    def inputs_to_dict(self) -> Any:
        return {"activityName": self.activity_name, "input": self.input}

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(activity_name=inputs["activityName"], input=inputs.get("input"), **common)


@dataclass(kw_only=True)
class AIAction(WorkflowAction):
    """Send a chat prompt to an AI agent actor."""

    type: ClassVar[str] = "AI"

    prompt: Any
    model: str | None = None
    system_prompt: str | None = None
    temperature: float | None = None

    def inputs_to_dict(self) -> Any:
        return {
            "prompt": self.prompt,
            "model": self.model,
            "systemPrompt": self.system_prompt,
            "temperature": self.temperature,
        }

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(
            prompt=inputs["prompt"],
            model=inputs.get("model"),
            system_prompt=inputs.get("systemPrompt"),
            temperature=inputs.get("temperature"),
            **common,
        )


@dataclass(kw_only=True)
class HttpAction(WorkflowAction):
    """Outbound HTTP request."""

    type: ClassVar[str] = "Http"

    VALID_METHODS: ClassVar[set[str]] = {"GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"}

    url: Any
    method: str = "GET"
    headers: Any = None
    body: Any = None

    def inputs_to_dict(self) -> Any:
        return {"method": self.method, "url": self.url, "headers": self.headers, "body": self.body}

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        if isinstance(inputs, Mapping) and "uri" in inputs and "url" not in inputs:
            inputs = {**inputs, "url": inputs["uri"]}
        inputs = _require(inputs, cls.type, name)
        method = str(inputs.get("method") or "GET").upper()
        if method not in cls.VALID_METHODS:
            raise ActionDefinitionError(f"Http action '{name}' has invalid method '{method}'", action=name)
        return cls(url=inputs["url"], method=method, headers=inputs.get("headers"), body=inputs.get("body"), **common)


@dataclass(kw_only=True)
class ComposeAction(WorkflowAction):
    """Evaluate ``inputs`` and return the result."""

    type: ClassVar[str] = "Compose"

    inputs: Any = None

    def inputs_to_dict(self) -> Any:
        return self.inputs

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        return cls(inputs=inputs, **common)


@dataclass(kw_only=True)
class IfAction(WorkflowAction):
    """Run the ``actions`` branch when the condition holds, ``else_actions`` otherwise."""

    type: ClassVar[str] = "If"

    condition: Any
    actions: dict[str, WorkflowAction] = field(default_factory=dict)
    else_actions: dict[str, WorkflowAction] = field(default_factory=dict)

    def nested_graphs(self):
        return {"actions": self.actions, "else": self.else_actions}

    def inputs_to_dict(self) -> Any:
        data = {"condition": self.condition, "actions": actions_to_dict(self.actions)}
        if self.else_actions:
            data["else"] = {"actions": actions_to_dict(self.else_actions)}
        return data

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        else_branch = inputs.get("else")
        if isinstance(else_branch, Mapping) and isinstance(else_branch.get("actions"), Mapping):
            else_branch = else_branch["actions"]
        return cls(
            condition=inputs["condition"],
            actions=_graph(inputs.get("actions"), "actions", name, depth, max_depth, required=False),
            else_actions=_graph(else_branch, "else", name, depth, max_depth, required=False),
            **common,
        )


@dataclass(kw_only=True)
class ForeachAction(WorkflowAction):
    """Run the body once per element of ``items``, strictly in order."""

    type: ClassVar[str] = "Foreach"

    items: Any
    actions: dict[str, WorkflowAction]

    def nested_graphs(self):
        return {"actions": self.actions}

    def inputs_to_dict(self) -> Any:
        return {"items": self.items, "actions": actions_to_dict(self.actions)}

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(
            items=inputs["items"],
            actions=_graph(inputs.get("actions"), "actions", name, depth, max_depth),
            **common,
        )


@dataclass(kw_only=True)
class ParallelAction(WorkflowAction):
    """Run every named sub-action concurrently and join."""

    type: ClassVar[str] = "Parallel"

    actions: dict[str, WorkflowAction]

    def nested_graphs(self):
        return {"actions": self.actions}

    def inputs_to_dict(self) -> Any:
        return {"actions": actions_to_dict(self.actions)}

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(actions=_graph(inputs.get("actions"), "actions", name, depth, max_depth), **common)


@dataclass(kw_only=True)
class UntilAction(WorkflowAction):
    """Repeat the body until the condition evaluates true."""

    type: ClassVar[str] = "Until"

    condition: Any
    actions: dict[str, WorkflowAction]
    limit: LoopLimit = field(default_factory=LoopLimit)
    delay: LoopDelay | None = None

    def nested_graphs(self):
        return {"actions": self.actions}

    def inputs_to_dict(self) -> Any:
        data = {"condition": self.condition, "actions": actions_to_dict(self.actions)}
        limit = self.limit.to_dict()
        if limit:
            data["limit"] = limit
        if self.delay:
            data["delay"] = self.delay.to_dict()
        return data

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(
            condition=inputs["condition"],
            actions=_graph(inputs.get("actions"), "actions", name, depth, max_depth),
            limit=LoopLimit.from_dict(inputs.get("limit"), action=name),
            delay=LoopDelay.from_dict(inputs.get("delay"), action=name),
            **common,
        )


@dataclass(kw_only=True)
class DoUntilAction(UntilAction):
    """Until loop whose body always runs once before the first check."""

    type: ClassVar[str] = "DoUntil"


@dataclass(kw_only=True)
class WhileAction(UntilAction):
    """Repeat the body while the condition evaluates true."""

    type: ClassVar[str] = "While"

    def as_until(self) -> UntilAction:
        """Equivalent Until loop with the condition inverted."""
        condition = self.condition
        if isinstance(condition, str) and condition.startswith("@"):
            inverted = f"@not({condition[1:]})"
        else:
            inverted = not condition
        return UntilAction(condition=inverted, actions=self.actions, limit=self.limit, delay=self.delay)


@dataclass(kw_only=True)
class RetryAction(WorkflowAction):
    """Re-run a single nested action according to ``policy``."""

    type: ClassVar[str] = "Retry"

    action: WorkflowAction
    policy: RetryPolicy | None = None

    def nested_graphs(self):
        return {"action": {"action": self.action}}

    def inputs_to_dict(self) -> Any:
        data = {"action": self.action.to_dict()}
        if self.policy:
            data["retryPolicy"] = self.policy.to_dict()
        return data

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        policy = inputs.get("retryPolicy")
        return cls(
            action=parse_action(f"{name}/action", inputs["action"], depth=depth + 1, max_depth=max_depth),
            policy=RetryPolicy.from_dict(policy, action=name) if policy is not None else None,
            **common,
        )


@dataclass(kw_only=True)
class ScopeAction(WorkflowAction):
    """Group a nested graph; an inner failure fails the scope."""

    type: ClassVar[str] = "Scope"

    actions: dict[str, WorkflowAction]

    def nested_graphs(self):
        return {"actions": self.actions}

    def inputs_to_dict(self) -> Any:
        return {"actions": actions_to_dict(self.actions)}

    @classmethod
    def from_inputs(cls, name, inputs, common, depth, max_depth):
        inputs = _require(inputs, cls.type, name)
        return cls(actions=_graph(inputs.get("actions"), "actions", name, depth, max_depth), **common)


ACTION_TYPES: dict[str, type[WorkflowAction]] = {
    cls.type: cls
    for cls in (
        ActorAction,
        ActivityAction,
        AIAction,
        HttpAction,
        ComposeAction,
        IfAction,
        ForeachAction,
        ParallelAction,
        UntilAction,
        WhileAction,
        DoUntilAction,
        RetryAction,
        ScopeAction,
    )
}


def _parse_run_after(name: str, value: Any) -> dict[str, frozenset[ActionStatus]]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ActionDefinitionError(f"runAfter of action '{name}' must map action names to status lists", action=name)

    run_after = {}
    for dep, statuses in value.items():
        if statuses is None or statuses == []:
            run_after[dep] = frozenset({ActionStatus.SUCCEEDED})
            continue
        if isinstance(statuses, str):
            statuses = [statuses]
        try:
            run_after[dep] = frozenset(ActionStatus(status) for status in statuses)
        except (TypeError, ValueError) as e:
            valid = [status.value for status in ActionStatus]
            raise ActionDefinitionError(
                f"runAfter of action '{name}' uses unknown status in {list(statuses)}; expected {valid}", action=name
            ) from e
    return run_after


def parse_action(name: str, data: Any, depth: int = 0, max_depth: int = 32) -> WorkflowAction:
    """Build the action variant described by ``data``.

    Raises:
        ActionDefinitionError: If the type is unknown or required inputs are missing
    """
    if depth > max_depth:
        raise ActionDefinitionError(f"Action '{name}' exceeds maximum nesting depth {max_depth}", action=name)
    if isinstance(data, WorkflowAction):
        return data
    if not isinstance(data, Mapping):
        raise ActionDefinitionError(f"Action '{name}' must be an object", action=name)

    action_type = data.get("type")
    action_cls = ACTION_TYPES.get(action_type) if isinstance(action_type, str) else None
    if action_cls is None:
        raise ActionDefinitionError(
            f"Action '{name}' has unknown type '{action_type}'; expected one of {sorted(ACTION_TYPES)}", action=name
        )

    try:
        timeout = coerce_timeout(data.get("timeout"))
    except ValueError as e:
        raise ActionDefinitionError(f"Action '{name}' has invalid timeout: {e}", action=name) from e

    breaker = data.get("circuitBreaker")
    rate_limit = data.get("rateLimit")
    retry_policy = data.get("retryPolicy")
    try:
        common = {
            "run_after": _parse_run_after(name, data.get("runAfter")),
            "timeout": timeout,
            "retry_policy": RetryPolicy.from_dict(retry_policy, action=name) if retry_policy is not None else None,
            "circuit_breaker": CircuitBreakerConfig.from_dict(breaker, action=name) if breaker is not None else None,
            "rate_limit": RateLimitConfig.from_dict(rate_limit, action=name) if rate_limit is not None else None,
        }
        return action_cls.from_inputs(name, data.get("inputs"), common, depth, max_depth)
    except ActionDefinitionError as e:
        e.action = e.action or name
        raise


def parse_actions(data: Mapping[str, Any], depth: int = 0, max_depth: int = 32) -> dict[str, WorkflowAction]:
    """Parse an ``actions`` map, preserving declaration order."""
    return {name: parse_action(name, action, depth=depth, max_depth=max_depth) for name, action in data.items()}


def actions_to_dict(actions: Mapping[str, WorkflowAction]) -> dict[str, Any]:
    return {name: action.to_dict() for name, action in actions.items()}


# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------


@dataclass
class ParameterDefinition:
    """Definition of a workflow parameter."""

    VALID_TYPES: ClassVar[set[str]] = {"string", "int", "float", "bool", "object", "array"}

    type: str = "string"
    default_value: Any = None
    has_default: bool = False
    allowed_values: list[Any] | None = None
    description: str = ""

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "ParameterDefinition":
        if not isinstance(data, Mapping):
            raise ParameterError(f"Parameter '{name}' must be an object")
        param_type = data.get("type", "string")
        if not isinstance(param_type, str) or param_type not in cls.VALID_TYPES:
            raise ParameterError(f"Parameter '{name}' has invalid type '{param_type}'")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise ParameterError(f"Parameter '{name}' metadata must be an object")
        return cls(
            type=param_type,
            default_value=data.get("defaultValue"),
            has_default="defaultValue" in data,
            allowed_values=data.get("allowedValues"),
            description=metadata.get("description", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.has_default:
            data["defaultValue"] = self.default_value
        if self.allowed_values is not None:
            data["allowedValues"] = self.allowed_values
        if self.description:
            data["metadata"] = {"description": self.description}
        return data


@dataclass
class TriggerDefinition:
    """How a workflow is started. The engine only records it."""

    type: str = "manual"
    inputs: Any = None
    recurrence: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type}
        if self.inputs is not None:
            data["inputs"] = self.inputs
        if self.recurrence is not None:
            data["recurrence"] = self.recurrence
        return data


@dataclass
class OutputDefinition:
    """A named workflow output, usually an expression."""

    value: Any
    type: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"value": self.value}
        if self.type:
            data["type"] = self.type
        return data


@dataclass
class WorkflowDefinition:
    """Complete definition of a workflow."""

    actions: dict[str, WorkflowAction] = field(default_factory=dict)
    triggers: dict[str, TriggerDefinition] = field(default_factory=dict)
    parameters: dict[str, ParameterDefinition] = field(default_factory=dict)
    outputs: dict[str, OutputDefinition] = field(default_factory=dict)
    name: str = "workflow"
    content_version: str = "1.0.0"
    schema: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], name: str | None = None, max_depth: int = 32) -> "WorkflowDefinition":
        """Parse a definition document.

        Structural completeness (at least one trigger and action, resolvable
        dependencies, no cycles) is left to the compiler.

        Raises:
            ActionDefinitionError: If an action is malformed
            ParameterError: If a parameter declaration is malformed
        """
        if not isinstance(data, Mapping):
            raise ActionDefinitionError("Workflow definition must be an object")

        actions = data.get("actions") or {}
        if not isinstance(actions, Mapping):
            raise ActionDefinitionError("'actions' must map action names to actions")

        for section in ("triggers", "parameters", "outputs"):
            if not isinstance(data.get(section) or {}, Mapping):
                raise ActionDefinitionError(f"'{section}' must be an object keyed by name")

        triggers = {}
        for trigger_name, trigger in (data.get("triggers") or {}).items():
            trigger = trigger or {}
            if not isinstance(trigger, Mapping):
                raise ActionDefinitionError(f"Trigger '{trigger_name}' must be an object")
            triggers[trigger_name] = TriggerDefinition(
                type=trigger.get("type", "manual"),
                inputs=trigger.get("inputs"),
                recurrence=trigger.get("recurrence"),
            )

        outputs = {}
        for output_name, output in (data.get("outputs") or {}).items():
            if isinstance(output, Mapping) and "value" in output:
                outputs[output_name] = OutputDefinition(value=output["value"], type=output.get("type"))
            else:
                outputs[output_name] = OutputDefinition(value=output)

        return cls(
            actions=parse_actions(actions, max_depth=max_depth),
            triggers=triggers,
            parameters={
                param_name: ParameterDefinition.from_dict(param_name, param)
                for param_name, param in (data.get("parameters") or {}).items()
            },
            outputs=outputs,
            name=name or data.get("name", "workflow"),
            content_version=data.get("contentVersion", "1.0.0"),
            schema=data.get("$schema"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "contentVersion": self.content_version,
            "parameters": {name: param.to_dict() for name, param in self.parameters.items()},
            "triggers": {name: trigger.to_dict() for name, trigger in self.triggers.items()},
            "actions": actions_to_dict(self.actions),
        }
        if self.schema:
            data["$schema"] = self.schema
        if self.outputs:
            data["outputs"] = {name: output.to_dict() for name, output in self.outputs.items()}
        return data


# ---------------------------------------------------------------------------
# Execution records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ActionResult:
    """Recorded outcome of one action. Never mutated once recorded."""

    status: ActionStatus
    start_time: datetime
    end_time: datetime
    output: Any = None
    error: ActionError | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is ActionStatus.SUCCEEDED

    @property
    def failed(self) -> bool:
        return self.status is ActionStatus.FAILED

    @property
    def duration_ms(self) -> float:
        return (self.end_time - self.start_time).total_seconds() * 1000

    @classmethod
    def skipped(cls) -> "ActionResult":
        now = utc_now()
        return cls(status=ActionStatus.SKIPPED, start_time=now, end_time=now)

    def to_dict(self) -> dict[str, Any]:
        """Expression-facing view used by ``actions('name')``."""
        return {
            "status": self.status.value,
            "outputs": self.output,
            "error": self.error.to_dict() if self.error else None,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat(),
            "duration": self.duration_ms,
        }


@dataclass
class ActionOutcome:
    """Value returned by an action processor: a success or a failure."""

    ok: bool
    output: Any = None
    error: ActionError | None = None

    @classmethod
    def success(cls, output: Any = None) -> "ActionOutcome":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, error: ActionError, output: Any = None) -> "ActionOutcome":
        return cls(ok=False, output=output, error=error)


@dataclass
class GraphOutcome:
    """Result of running one action graph (top-level or nested)."""

    results: dict[str, ActionResult] = field(default_factory=dict)
    failed_action: str | None = None
    error: ActionError | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def outputs(self) -> dict[str, Any]:
        """Outputs of the actions that succeeded, keyed by action name."""
        return {name: result.output for name, result in self.results.items() if result.succeeded}

    def to_action_error(self, action: str) -> ActionError | None:
        """Error for the enclosing action, naming the inner action that failed."""
        if self.error is None:
            return None
        if self.failed_action is None:
            message = f"Nested actions of '{action}' failed: {self.error.message}"
        else:
            message = f"Action '{self.failed_action}' failed: {self.error.message}"
        return ActionError(
            code=self.error.code,
            message=message,
            action=action,
            details={"failedAction": self.failed_action, "error": self.error.to_dict()},
        )


@dataclass
class WorkflowExecutionResult:
    """Terminal (or in-progress) record of a workflow instance."""

    instance_id: str
    workflow_id: str
    status: InstanceStatus = InstanceStatus.RUNNING
    actions: dict[str, ActionResult] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    error: ActionError | None = None
    failed_action: str | None = None
    start_time: datetime = field(default_factory=utc_now)
    end_time: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status is not InstanceStatus.RUNNING

    @property
    def duration_ms(self) -> float | None:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds() * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "actions": {name: result.to_dict() for name, result in self.actions.items()},
            "outputs": self.outputs,
            "error": self.error.to_dict() if self.error else None,
            "failedAction": self.failed_action,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration_ms,
        }
