"""Per-step retry and timeout control.

Every non-condition step runs through ``run_with_policy``: each attempt
gets a hard deadline, failed attempts are retried with a fixed or
exponential delay, and the waits go through a ``Sleeper`` so tests can
substitute a virtual clock.

Usage:
    strategy = RetryStrategy.from_step(step)
    result = await run_with_policy(
        lambda: executor.execute(step, config),
        step_id=step.id,
        timeout_seconds=step.timeout_seconds,
        strategy=strategy,
        sleeper=AsyncioSleeper(),
    )
"""

import asyncio
import random
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

from core.constants import RetryBackoff, StepStatus
from core.exceptions import CancellationError, TransientError, is_retryable
from workflow.definitions import StepDefinition
from workflow.results import StepResult

logger = structlog.get_logger(__name__)


# ─── Sleepers ─────────────────────────────────────────────────

class Sleeper(ABC):
    """Suspension primitive used for retry waits and delay steps."""

    @abstractmethod
    async def sleep(self, seconds: float, cancel_event: Optional[asyncio.Event] = None) -> None:
        """Suspend for ``seconds``.

        Raises:
            CancellationError: if ``cancel_event`` is set before the delay ends.
        """
        ...


class AsyncioSleeper(Sleeper):
    """Real-time, cancellable sleeper backed by the event loop."""

    async def sleep(self, seconds: float, cancel_event: Optional[asyncio.Event] = None) -> None:
        if cancel_event is None:
            await asyncio.sleep(max(seconds, 0))
            return
        if cancel_event.is_set():
            raise CancellationError()
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=max(seconds, 0))
        except asyncio.TimeoutError:
            return
        raise CancellationError()


# ─── Strategy ─────────────────────────────────────────────────

@dataclass
class RetryStrategy:
    """How many times a step is retried and how long to wait in between."""

    backoff: RetryBackoff = RetryBackoff.FIXED
    max_retries: int = 0
    base_delay: float = 0.0
    max_delay: float = 300.0
    jitter: bool = False
    jitter_range: float = 0.5

    @classmethod
    def none(cls) -> "RetryStrategy":
        """Single attempt, no retries."""
        return cls(max_retries=0)

    @classmethod
    def fixed(cls, max_retries: int, delay: float) -> "RetryStrategy":
        return cls(backoff=RetryBackoff.FIXED, max_retries=max_retries, base_delay=delay)

    @classmethod
    def exponential(
        cls,
        max_retries: int,
        base_delay: float,
        max_delay: float = 300.0,
        jitter: bool = False,
    ) -> "RetryStrategy":
        return cls(
            backoff=RetryBackoff.EXPONENTIAL,
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter=jitter,
        )

    @classmethod
    def from_step(cls, step: StepDefinition, max_delay: float = 300.0) -> "RetryStrategy":
        """Build the strategy declared on a step definition."""
        return cls(
            backoff=step.retry_backoff,
            max_retries=step.retry_count,
            base_delay=step.retry_delay_seconds,
            max_delay=max(max_delay, step.retry_delay_seconds)
            if step.retry_backoff == RetryBackoff.FIXED else max_delay,
        )

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, attempt: int) -> float:
        """Delay before the retry that follows failed attempt ``attempt`` (1-based)."""
        if self.backoff == RetryBackoff.EXPONENTIAL:
            delay = self.base_delay * (2 ** (attempt - 1))
        else:
            delay = self.base_delay

        delay = min(delay, self.max_delay)

        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

        return round(delay, 3)

    def should_retry(self, attempts_made: int, error: Optional[BaseException] = None) -> bool:
        """Whether another attempt is allowed after ``attempts_made`` failures."""
        if attempts_made > self.max_retries:
            return False
        if error is None:
            return True
        return is_retryable(error)


# ─── Controller ───────────────────────────────────────────────

async def _run_attempt(
    step_fn: Callable[[], Awaitable[Any]],
    timeout_seconds: float,
    cancel_event: Optional[asyncio.Event],
) -> Any:
    """Run one attempt under a hard deadline, abandoning it on cancel."""
    task = asyncio.ensure_future(step_fn())
    waiters = {task}
    cancel_wait = None
    if cancel_event is not None:
        cancel_wait = asyncio.ensure_future(cancel_event.wait())
        waiters.add(cancel_wait)

    try:
        done, _ = await asyncio.wait(
            waiters, timeout=timeout_seconds, return_when=asyncio.FIRST_COMPLETED,
        )
    finally:
        if cancel_wait is not None and not cancel_wait.done():
            cancel_wait.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task in done:
        return task.result()
    if cancel_event is not None and cancel_event.is_set():
        raise CancellationError()
    raise TransientError(f"Step timed out after {timeout_seconds:g}s")


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


async def run_with_policy(
    step_fn: Callable[[], Awaitable[Any]],
    *,
    step_id: str,
    timeout_seconds: float,
    strategy: RetryStrategy,
    sleeper: Sleeper,
    cancel_event: Optional[asyncio.Event] = None,
    on_retry: Optional[Callable[[int, BaseException, float], Any]] = None,
) -> StepResult:
    """Execute ``step_fn`` with a per-attempt deadline and bounded retries.

    Args:
        step_fn: Zero-argument coroutine factory; called once per attempt.
        step_id: Step the result is reported for.
        timeout_seconds: Hard deadline for every single attempt.
        strategy: Retry budget and delay policy.
        sleeper: Used for the wait between attempts.
        cancel_event: Set by the caller to abandon the step.
        on_retry: Optional callback(attempt, error, delay) before each wait.

    Returns:
        StepResult: ``succeeded`` on the first attempt that completes in
        time, ``failed`` once the budget is spent or a non-retryable error
        is raised.

    Raises:
        CancellationError: if ``cancel_event`` fires mid-attempt or mid-wait.
    """
    started = time.monotonic()
    attempts = 0
    last_error: Optional[BaseException] = None

    while True:
        attempts += 1
        try:
            output = await _run_attempt(step_fn, timeout_seconds, cancel_event)
            return StepResult(
                step_id=step_id,
                status=StepStatus.SUCCEEDED,
                output=output,
                attempts=attempts,
                duration_ms=int((time.monotonic() - started) * 1000),
            )
        except CancellationError:
            raise
        except Exception as e:
            last_error = e

        if not strategy.should_retry(attempts, last_error):
            break

        delay = strategy.compute_delay(attempts)
        logger.info(
            "Retrying step",
            step_id=step_id,
            attempt=attempts,
            max_attempts=strategy.total_attempts,
            delay=delay,
            error=_describe(last_error),
        )
        if on_retry:
            callback_result = on_retry(attempts, last_error, delay)
            if asyncio.iscoroutine(callback_result):
                await callback_result
        await sleeper.sleep(delay, cancel_event)

    logger.warning(
        "Step failed",
        step_id=step_id,
        attempts=attempts,
        error=_describe(last_error),
    )
    return StepResult(
        step_id=step_id,
        status=StepStatus.FAILED,
        attempts=attempts,
        duration_ms=int((time.monotonic() - started) * 1000),
        error=_describe(last_error),
    )
