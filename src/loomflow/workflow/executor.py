"""Workflow execution engine.

``ActionDispatcher`` runs action graphs in rounds: each round dispatches
every action whose ``runAfter`` conditions are met, joins them, and records
their results before computing the next round. ``WorkflowExecutor`` owns
instance lifecycle on top of it.
"""

import asyncio
import logging
import random
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from ..config import WorkflowEngineConfig, get_config
from ..errors.models import (
    ActionError,
    ActionExecutionError,
    ActionTimeoutError,
    DeadlockError,
    ParameterError,
    WorkflowCancelledError,
    WorkflowEngineError,
)
from .collaborators import Collaborators
from .compiler import WorkflowCompiler
from .context import ExecutionContext
from .expressions import ExpressionEvaluator
from .models import (
    ActionOutcome,
    ActionResult,
    ActionStatus,
    GraphOutcome,
    InstanceStatus,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowExecutionResult,
    utc_now,
)
from .resilience import CircuitBreakerRegistry, RateLimiterRegistry, ResilienceWrapper
from .retry import SleepFunc
from .step_registry import processor_for
from .steps import PROCESSORS
from .store import ExecutionStore

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Dispatches actions to their processors and schedules action graphs."""

    def __init__(
        self,
        config: WorkflowEngineConfig,
        collaborators: Collaborators,
        evaluator: ExpressionEvaluator,
        resilience: ResilienceWrapper,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.config = config
        self.collaborators = collaborators
        self.evaluator = evaluator
        self.resilience = resilience
        self.sleep = sleep
        self.clock = clock
        self.rng = rng
        self.processors = {name: processor_cls(self) for name, processor_cls in PROCESSORS.items()}

    async def dispatch(self, name: str, action: WorkflowAction, context: ExecutionContext) -> ActionResult:
        """Run one action through the resilience wrapper.

        Never raises for action failures; the returned result carries them.
        """
        start_time = utc_now()
        outcome = await self.resilience.execute(name, action, lambda: self._execute_once(name, action, context))
        status = ActionStatus.SUCCEEDED if outcome.ok else ActionStatus.FAILED
        if not outcome.ok:
            logger.debug(f"Action '{name}' failed: {outcome.error.code}: {outcome.error.message}")
        return ActionResult(
            status=status,
            start_time=start_time,
            end_time=utc_now(),
            output=outcome.output,
            error=outcome.error,
        )

    async def _execute_once(self, name: str, action: WorkflowAction, context: ExecutionContext) -> ActionOutcome:
        """Single attempt: run the processor, converting exceptions to a failed outcome."""
        processor = self.processors[processor_for(action.type)]
        try:
            return await processor.process(name, action, context)
        except WorkflowEngineError as e:
            return ActionOutcome.failure(ActionError.from_exception(e, action=name))
        except Exception as e:
            wrapped = ActionExecutionError(name, f"{type(e).__name__}: {e}")
            wrapped.__cause__ = e
            return ActionOutcome.failure(ActionError.from_exception(wrapped, action=name))

    async def run_graph(self, actions: Mapping[str, WorkflowAction], context: ExecutionContext) -> GraphOutcome:
        """Run an action graph to completion.

        Args:
            actions: Action map of this graph
            context: Context owned by this graph; only this coordinator records into it

        Returns:
            GraphOutcome with every action's result. ``error`` is set when an
            unhandled failure or a deadlock stopped the graph; actions that
            never ran are recorded as Skipped.
        """
        outcome = GraphOutcome()
        pending = list(actions)
        round_number = 0

        while pending:
            ready, unreachable = self._partition(actions, pending, context)

            for name in unreachable:
                self._record(context, outcome, name, ActionResult.skipped())
                pending.remove(name)

            if not ready:
                if unreachable:
                    continue
                deadlock = DeadlockError(list(pending))
                logger.error(str(deadlock))
                outcome.error = ActionError.from_exception(deadlock)
                self._skip_remaining(context, outcome, pending)
                return outcome

            round_number += 1
            logger.debug(f"Round {round_number}: dispatching {', '.join(ready)}")
            semaphore = asyncio.Semaphore(self.config.max_parallel_actions)

            async def bounded(name: str) -> ActionResult:
                async with semaphore:
                    return await self.dispatch(name, actions[name], context)

            results = await asyncio.gather(*(bounded(name) for name in ready))

            for name, result in zip(ready, results, strict=True):
                self._record(context, outcome, name, result)
                pending.remove(name)

            unhandled = [
                name for name in ready if outcome.results[name].failed and not self._is_handled(name, actions, pending)
            ]
            if unhandled:
                outcome.failed_action = unhandled[0]
                outcome.error = outcome.results[unhandled[0]].error
                self._skip_remaining(context, outcome, pending)
                return outcome

        return outcome

    @staticmethod
    def _partition(
        actions: Mapping[str, WorkflowAction], pending: list[str], context: ExecutionContext
    ) -> tuple[list[str], list[str]]:
        """Split pending actions into ready ones and ones that can never run."""
        ready = []
        unreachable = []
        for name in pending:
            run_after = actions[name].run_after
            if not all(context.is_recorded(dep) for dep in run_after):
                continue
            if all(context.get_result(dep).status in accepted for dep, accepted in run_after.items()):
                ready.append(name)
            else:
                unreachable.append(name)
        return ready, unreachable

    @staticmethod
    def _is_handled(failed: str, actions: Mapping[str, WorkflowAction], pending: list[str]) -> bool:
        """Whether a pending action in this graph runs after ``failed`` failing."""
        return any(ActionStatus.FAILED in actions[name].run_after.get(failed, ()) for name in pending)

    @staticmethod
    def _record(context: ExecutionContext, outcome: GraphOutcome, name: str, result: ActionResult) -> None:
        context.record(name, result)
        outcome.results[name] = result

    def _skip_remaining(self, context: ExecutionContext, outcome: GraphOutcome, pending: list[str]) -> None:
        for name in pending:
            self._record(context, outcome, name, ActionResult.skipped())
        pending.clear()


_PARAMETER_TYPES: dict[str, Callable[[Any], bool]] = {
    "string": lambda value: isinstance(value, str),
    "int": lambda value: isinstance(value, int) and not isinstance(value, bool),
    "float": lambda value: isinstance(value, int | float) and not isinstance(value, bool),
    "bool": lambda value: isinstance(value, bool),
    "object": lambda value: isinstance(value, dict),
    "array": lambda value: isinstance(value, list),
}


def resolve_parameters(definition: WorkflowDefinition, supplied: Mapping[str, Any] | None) -> dict[str, Any]:
    """Bind supplied parameter values, falling back to declared defaults.

    Undeclared supplied parameters pass through unchanged.

    Raises:
        ParameterError: If a required parameter is missing, mistyped or not allowed
    """
    resolved = dict(supplied or {})
    for name, param in definition.parameters.items():
        if name in resolved:
            value = resolved[name]
        elif param.has_default:
            value = param.default_value
        else:
            raise ParameterError(f"Missing required parameter '{name}'")

        if value is not None or name in resolved:
            if not _PARAMETER_TYPES[param.type](value):
                raise ParameterError(f"Parameter '{name}' expects {param.type}, got {type(value).__name__}")
        if param.allowed_values is not None and value not in param.allowed_values:
            raise ParameterError(f"Parameter '{name}' value {value!r} is not one of {param.allowed_values}")
        resolved[name] = value
    return resolved


class WorkflowExecutor:
    """Runs workflow instances and tracks them in an execution store."""

    def __init__(
        self,
        config: WorkflowEngineConfig | None = None,
        collaborators: Collaborators | None = None,
        store: ExecutionStore | None = None,
        breakers: CircuitBreakerRegistry | None = None,
        limiters: RateLimiterRegistry | None = None,
        sleep: SleepFunc = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        """Initialize the workflow executor.

        Args:
            config: Engine configuration (process-wide config if None)
            collaborators: Injected actor router, transport, activity store, secret store and HTTP client
            store: Execution store (creates new if None)
            breakers: Circuit breaker registry, shared across executors if injected
            limiters: Rate limiter registry, shared across executors if injected
            sleep: Awaitable sleep used for retry and loop delays
            clock: Monotonic clock used for loop time limits
            rng: Random source for retry jitter
        """
        self.config = config or get_config()
        self.collaborators = collaborators or Collaborators()
        self.store = store or ExecutionStore()
        self.compiler = WorkflowCompiler(max_nesting_depth=self.config.max_nesting_depth)
        self.evaluator = ExpressionEvaluator(secret_store=self.collaborators.secrets)
        resilience = ResilienceWrapper(
            breakers=breakers or CircuitBreakerRegistry(),
            limiters=limiters or RateLimiterRegistry(sleep=sleep, max_wait=self.config.rate_limit_max_wait_seconds),
            sleep=sleep,
            rng=rng,
        )
        self.dispatcher = ActionDispatcher(
            self.config,
            self.collaborators,
            self.evaluator,
            resilience,
            sleep=sleep,
            clock=clock,
            rng=rng,
        )
        self._tasks: dict[str, asyncio.Task] = {}

    async def execute(
        self,
        definition: WorkflowDefinition | Mapping[str, Any],
        parameters: Mapping[str, Any] | None = None,
        trigger: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> str:
        """Validate a definition and start a new instance.

        Args:
            definition: Definition object or document
            parameters: Parameter values for this run
            trigger: Trigger payload exposed through ``trigger()``
            timeout: Workflow-level deadline in seconds

        Returns:
            The new instance id

        Raises:
            WorkflowValidationError: If the definition does not compile
            ParameterError: If the parameters do not match the declarations
        """
        compiled = self.compiler.compile(definition)
        compiled.raise_for_errors()
        definition = compiled.definition
        resolved = resolve_parameters(definition, parameters)

        instance_id = str(uuid.uuid4())
        self.store.create(instance_id, definition.name)
        context = ExecutionContext(
            instance_id=instance_id,
            workflow_id=definition.name,
            parameters=resolved,
            trigger=dict(trigger or {}),
            max_depth=self.config.max_nesting_depth,
        )

        task = asyncio.create_task(self._run_instance(definition, context, timeout), name=f"workflow-{instance_id}")
        self._tasks[instance_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(instance_id, None))
        return instance_id

    async def run(
        self,
        definition: WorkflowDefinition | Mapping[str, Any],
        parameters: Mapping[str, Any] | None = None,
        trigger: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> WorkflowExecutionResult:
        """Execute a workflow and wait for its terminal result."""
        instance_id = await self.execute(definition, parameters=parameters, trigger=trigger, timeout=timeout)
        task = self._tasks.get(instance_id)
        if task is not None:
            await asyncio.wait({task})
        return self.store.get(instance_id)

    async def _run_instance(self, definition: WorkflowDefinition, context: ExecutionContext, timeout: float | None):
        instance_id = context.instance_id
        logger.info(f"Starting workflow '{definition.name}' instance {instance_id}")

        try:
            if timeout is not None:
                graph = await asyncio.wait_for(self.dispatcher.run_graph(definition.actions, context), timeout)
            else:
                graph = await self.dispatcher.run_graph(definition.actions, context)
        except asyncio.TimeoutError:
            error = ActionError.from_exception(ActionTimeoutError(definition.name, timeout))
            self._fail(context, error)
            return
        except asyncio.CancelledError:
            error = ActionError.from_exception(WorkflowCancelledError(f"Instance {instance_id} was cancelled"))
            self._fail(context, error)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error running instance {instance_id}")
            self._fail(context, ActionError.from_exception(e))
            return

        if not graph.succeeded:
            self._fail(context, graph.error, graph.failed_action)
            return

        try:
            outputs = await self._resolve_outputs(definition, context, graph)
        except WorkflowEngineError as e:
            self._fail(context, ActionError.from_exception(e))
            return
        except Exception as e:
            logger.exception(f"Unexpected error resolving outputs of instance {instance_id}")
            wrapped = ActionExecutionError(None, f"Output resolution failed: {type(e).__name__}: {e}")
            wrapped.__cause__ = e
            self._fail(context, ActionError.from_exception(wrapped))
            return

        self.store.complete(instance_id, context.recorded_results(), outputs)
        logger.info(f"Workflow '{definition.name}' instance {instance_id} completed")

    async def _resolve_outputs(
        self, definition: WorkflowDefinition, context: ExecutionContext, graph: GraphOutcome
    ) -> dict[str, Any]:
        if not definition.outputs:
            return graph.outputs()
        return {
            name: await self.evaluator.evaluate_inputs(output.value, context)
            for name, output in definition.outputs.items()
        }

    def _fail(self, context: ExecutionContext, error: ActionError, failed_action: str | None = None) -> None:
        logger.error(
            f"Workflow '{context.workflow_id}' instance {context.instance_id} failed"
            f"{f' at action {failed_action!r}' if failed_action else ''}: {error.message}"
        )
        self.store.fail(context.instance_id, context.recorded_results(), error, failed_action)

    def get_status(self, instance_id: str) -> InstanceStatus:
        """Current lifecycle status of an instance."""
        return self.store.get(instance_id).status

    def get_result(self, instance_id: str) -> WorkflowExecutionResult:
        """Instance record: outputs when completed, error when failed."""
        return self.store.get(instance_id)

    async def wait_for_completion(self, instance_id: str, timeout_ms: int | None = None) -> WorkflowExecutionResult:
        """Poll until the instance is terminal.

        Raises:
            InstanceNotFoundError: If the id is unknown
            TimeoutError: If the instance is still running after ``timeout_ms``
        """
        timeout_ms = timeout_ms if timeout_ms is not None else self.config.wait_timeout_ms
        deadline = time.monotonic() + timeout_ms / 1000
        while True:
            record = self.store.get(instance_id)
            if record.is_terminal:
                return record
            if time.monotonic() >= deadline:
                raise TimeoutError(f"Timed out after {timeout_ms}ms waiting for instance {instance_id}")
            await asyncio.sleep(self.config.wait_poll_interval_ms / 1000)

    async def cancel(self, instance_id: str) -> bool:
        """Cancel a running instance.

        Returns:
            True if a running instance was cancelled
        """
        self.store.get(instance_id)
        task = self._tasks.get(instance_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        record = self.store.get(instance_id)
        if not record.is_terminal:
            # Cancelled before the instance started running
            error = ActionError.from_exception(WorkflowCancelledError(f"Instance {instance_id} was cancelled"))
            self.store.fail(instance_id, {}, error)
        logger.info(f"Cancelled instance {instance_id}")
        return True
