"""Resilience primitives wrapped around every action execution.

An action with resilience settings runs as
``retry(circuit_breaker(rate_limit(timeout(execute))))``: the retry loop is
outermost and every attempt consults the breaker, takes a rate-limit token
and runs under the action timeout.
"""

import asyncio
import logging
import random
import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum

from ..errors.models import (
    ActionError,
    ActionTimeoutError,
    CircuitOpenError,
    RateLimitExceededError,
    RetryExhaustedError,
)
from .models import ActionOutcome, CircuitBreakerConfig, RateLimitConfig, WorkflowAction
from .retry import SleepFunc, run_with_retry

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Operation = Callable[[], Awaitable[ActionOutcome]]


class CircuitState(Enum):
    """States of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Sliding-window circuit breaker for one action name.

    Opens once ``failure_threshold`` failures fall inside the ``timeout``
    window. After ``cooldown`` seconds it lets a single probe call through:
    a successful probe closes the circuit, a failed one reopens it.
    """

    def __init__(self, name: str, config: CircuitBreakerConfig, clock: Clock = time.monotonic):
        self.name = name
        self.config = config
        self.clock = clock
        self._failures: deque[float] = deque()
        self._state = CircuitState.CLOSED
        self._opened_at: float | None = None
        self._probe_in_flight = False
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._current_state(self.clock())

    @property
    def failure_count(self) -> int:
        with self._lock:
            self._prune(self.clock())
            return len(self._failures)

    def _current_state(self, now: float) -> CircuitState:
        if self._state is CircuitState.OPEN and now - self._opened_at >= self.config.cooldown_seconds:
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = False
            logger.info(f"Circuit breaker [{self.name}] is HALF_OPEN")
        return self._state

    def _prune(self, now: float) -> None:
        window_start = now - self.config.timeout
        while self._failures and self._failures[0] <= window_start:
            self._failures.popleft()

    def before_call(self) -> None:
        """Admit a call or raise if the circuit rejects it.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with a probe in flight
        """
        with self._lock:
            now = self.clock()
            state = self._current_state(now)
            if state is CircuitState.OPEN:
                retry_after = self.config.cooldown_seconds - (now - self._opened_at)
                raise CircuitOpenError(self.name, retry_after=max(0.0, retry_after))
            if state is CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    raise CircuitOpenError(self.name)
                self._probe_in_flight = True

    def release(self) -> None:
        """Give back an admitted call that neither succeeded nor failed."""
        with self._lock:
            self._probe_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                self._failures.clear()
                self._probe_in_flight = False
                logger.info(f"Circuit breaker [{self.name}] is CLOSED")

    def record_failure(self) -> None:
        with self._lock:
            now = self.clock()
            if self._state is CircuitState.HALF_OPEN:
                self._open(now)
                return
            self._failures.append(now)
            self._prune(now)
            if self._state is CircuitState.CLOSED and len(self._failures) >= self.config.failure_threshold:
                self._open(now)

    def _open(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._probe_in_flight = False
        logger.warning(
            f"Circuit breaker [{self.name}] is OPEN after {len(self._failures)} failure(s); "
            f"cooldown {self.config.cooldown_seconds:.3f}s"
        )


class RateLimiter:
    """Token bucket holding ``requests`` tokens refilled evenly over ``per``.

    Tokens are reserved under a lock and may go negative; the caller then
    sleeps off the deficit outside the lock, which keeps waiters in order.
    """

    def __init__(
        self,
        name: str,
        config: RateLimitConfig,
        clock: Clock = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
        max_wait: float | None = None,
    ):
        self.name = name
        self.config = config
        self.clock = clock
        self.sleep = sleep
        self.max_wait = max_wait
        self.capacity = float(config.requests)
        self.rate = config.requests / config.period_seconds
        self._tokens = self.capacity
        self._updated = clock()
        self._lock = threading.Lock()

    @property
    def available_tokens(self) -> float:
        with self._lock:
            self._refill(self.clock())
            return self._tokens

    def _refill(self, now: float) -> None:
        elapsed = now - self._updated
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._updated = now

    def reserve(self) -> float:
        """Take one token and return how long the caller must wait for it.

        Raises:
            RateLimitExceededError: If the wait would exceed ``max_wait``
        """
        with self._lock:
            self._refill(self.clock())
            wait = max(0.0, (1.0 - self._tokens) / self.rate)
            if self.max_wait is not None and wait > self.max_wait:
                raise RateLimitExceededError(self.name, wait, self.max_wait)
            self._tokens -= 1.0
            return wait

    async def acquire(self) -> None:
        wait = self.reserve()
        if wait > 0:
            logger.debug(f"Rate limit [{self.name}] waiting {wait * 1000:.0f}ms for a token")
            await self.sleep(wait)


class CircuitBreakerRegistry:
    """Get-or-create store of circuit breakers keyed by action name."""

    def __init__(self, clock: Clock = time.monotonic):
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, config, clock=self.clock)
                self._breakers[name] = breaker
            return breaker

    def reset(self) -> None:
        with self._lock:
            self._breakers.clear()


class RateLimiterRegistry:
    """Get-or-create store of rate limiters keyed by action name."""

    def __init__(self, clock: Clock = time.monotonic, sleep: SleepFunc = asyncio.sleep, max_wait: float | None = None):
        self.clock = clock
        self.sleep = sleep
        self.max_wait = max_wait
        self._limiters: dict[str, RateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, name: str, config: RateLimitConfig) -> RateLimiter:
        with self._lock:
            limiter = self._limiters.get(name)
            if limiter is None:
                limiter = RateLimiter(name, config, clock=self.clock, sleep=self.sleep, max_wait=self.max_wait)
                self._limiters[name] = limiter
            return limiter

    def reset(self) -> None:
        with self._lock:
            self._limiters.clear()


async def with_timeout(operation: Operation, timeout: float | None, name: str) -> ActionOutcome:
    """Run ``operation`` under a deadline.

    Raises:
        ActionTimeoutError: If the deadline passes first
    """
    if timeout is None:
        return await operation()
    try:
        return await asyncio.wait_for(operation(), timeout=timeout)
    except ActionTimeoutError:
        raise
    except asyncio.TimeoutError as e:
        raise ActionTimeoutError(name, timeout) from e


class ResilienceWrapper:
    """Applies an action's timeout, rate limit, circuit breaker and retry policy."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry | None = None,
        limiters: RateLimiterRegistry | None = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.breakers = breakers or CircuitBreakerRegistry()
        self.limiters = limiters or RateLimiterRegistry()
        self.sleep = sleep
        self.rng = rng

    async def execute(self, name: str, action: WorkflowAction, operation: Operation) -> ActionOutcome:
        """Run ``operation`` for ``action`` with every configured policy applied.

        Resilience failures (timeout, open circuit, rate limit) become failed
        outcomes; exhausting a retry policy yields ``RetryExhaustedError``.
        """

        async def attempt() -> ActionOutcome:
            return await self._attempt(name, action, operation)

        policy = action.retry_policy
        if policy is None or policy.total_attempts <= 1:
            return await attempt()

        run = await run_with_retry(attempt, policy, name, sleep=self.sleep, rng=self.rng)
        if run.succeeded or run.attempts < policy.total_attempts:
            return run.outcome

        exhausted = RetryExhaustedError(name, run.history, run.outcome.error)
        return ActionOutcome.failure(ActionError.from_exception(exhausted, action=name), output=run.outcome.output)

    async def _attempt(self, name: str, action: WorkflowAction, operation: Operation) -> ActionOutcome:
        breaker = None
        if action.circuit_breaker is not None and action.circuit_breaker.enabled:
            breaker = self.breakers.get(name, action.circuit_breaker)
            try:
                breaker.before_call()
            except CircuitOpenError as e:
                return ActionOutcome.failure(ActionError.from_exception(e, action=name))

        try:
            if action.rate_limit is not None:
                await self.limiters.get(name, action.rate_limit).acquire()
            outcome = await with_timeout(operation, action.timeout, name)
        except (RateLimitExceededError, ActionTimeoutError) as e:
            if breaker is not None:
                if isinstance(e, ActionTimeoutError):
                    breaker.record_failure()
                else:
                    breaker.release()
            return ActionOutcome.failure(ActionError.from_exception(e, action=name))
        except BaseException:
            if breaker is not None:
                breaker.release()
            raise

        if breaker is not None:
            if outcome.ok:
                breaker.record_success()
            else:
                breaker.record_failure()
        return outcome
