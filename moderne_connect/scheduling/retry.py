"""Retry policy and explicit retry state for scheduled work.

Retry bookkeeping is a value, not call-stack recursion: every stage attempt
carries a :class:`RetryState` that records the attempt number, when the next
attempt is due, and why the previous one failed. The state is frozen and
advanced by :meth:`RetryState.advance`, which makes it easy to inspect and to
test in isolation.

Usage
-----
>>> policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0)
>>> policy.delay_for(1)
1.0
>>> policy.delay_for(3)
4.0

"""

from __future__ import annotations

import asyncio
import dataclasses as dc
import random
import typing as typ

from moderne_connect.common.time import monotonic
from moderne_connect.errors import ErrorClass, classify_error, describe_error

if typ.TYPE_CHECKING:
    import collections.abc as cabc

T = typ.TypeVar("T")

_SYSTEM_RANDOM = random.Random()  # noqa: S311 - jitter, not cryptography


@dc.dataclass(frozen=True, slots=True)
class RetryState:
    """Attempt bookkeeping for one unit of retryable work.

    Attributes
    ----------
    attempt
        One-based number of the attempt that is about to run (or ran last).
    next_retry_at
        Monotonic clock reading at which the current attempt became due, or
        ``None`` for a first attempt.
    last_error
        Human-readable description of the failure that caused the retry.

    """

    attempt: int = 1
    next_retry_at: float | None = None
    last_error: str | None = None

    def advance(self, error: BaseException, delay: float, *, now: float) -> RetryState:
        """Return the state for the next attempt after ``error``."""
        return RetryState(
            attempt=self.attempt + 1,
            next_retry_at=now + delay,
            last_error=describe_error(error),
        )


@dc.dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Bounded exponential backoff with jitter.

    Attributes
    ----------
    max_attempts
        Total attempts allowed, including the first. ``1`` disables retries.
    base_delay
        Delay in seconds before the second attempt.
    max_delay
        Ceiling for any single delay, including server-advertised waits.
    multiplier
        Growth factor applied per attempt.
    jitter
        Fraction of each delay that is randomised (``0`` disables jitter).
    attempt_limits
        Per-exception ceilings that override ``max_attempts`` downwards, for
        example ``((SubmissionTimeout, 2),)`` to retry timeouts only once.

    """

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.5
    attempt_limits: tuple[tuple[type[BaseException], int], ...] = ()

    def __post_init__(self) -> None:
        """Reject policies that could never make an attempt."""
        if self.max_attempts < 1:
            msg = f"max_attempts must be positive, got: {self.max_attempts}"
            raise ValueError(msg)
        if not 0.0 <= self.jitter <= 1.0:
            msg = f"jitter must be between 0 and 1, got: {self.jitter}"
            raise ValueError(msg)

    def limit_for(self, error: BaseException) -> int:
        """Return the attempt ceiling that applies to ``error``."""
        limit = self.max_attempts
        for exc_type, ceiling in self.attempt_limits:
            if isinstance(error, exc_type):
                limit = min(limit, ceiling)
        return limit

    def should_retry(self, state: RetryState, error: BaseException) -> bool:
        """Return True when ``error`` is retryable and attempts remain."""
        if classify_error(error) is not ErrorClass.RETRYABLE:
            return False
        return state.attempt < self.limit_for(error)

    def delay_for(
        self,
        attempt: int,
        error: BaseException | None = None,
        *,
        rng: random.Random | None = None,
    ) -> float:
        """Return the delay in seconds to wait after failed ``attempt``.

        A ``retry_after`` hint on the error (rate limiting) raises the delay to
        at least the advertised wait, still capped by ``max_delay``.
        """
        exponent = max(0, attempt - 1)
        delay = min(self.max_delay, self.base_delay * (self.multiplier**exponent))
        if self.jitter and delay > 0:
            source = rng or _SYSTEM_RANDOM
            fixed = delay * (1.0 - self.jitter)
            delay = fixed + source.uniform(0.0, delay * self.jitter)
        retry_after = getattr(error, "retry_after", None)
        if isinstance(retry_after, int | float) and retry_after > delay:
            delay = min(float(retry_after), self.max_delay)
        return delay


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)


async def retry_call(
    call: cabc.Callable[[RetryState], cabc.Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: cabc.Callable[[float], cabc.Awaitable[object]] = asyncio.sleep,
    on_retry: cabc.Callable[[RetryState, BaseException, float], None] | None = None,
    rng: random.Random | None = None,
) -> T:
    """Invoke ``call`` until it succeeds or the policy stops retrying.

    Non-retryable errors and the final retryable error propagate unchanged.
    A ``sleep`` that returns True, such as
    :meth:`~moderne_connect.scheduling.cancellation.CancellationToken.sleep`
    after a cancel, ends the loop by re-raising the error it was waiting out.
    """
    state = RetryState()
    while True:
        try:
            return await call(state)
        except Exception as exc:
            if not policy.should_retry(state, exc):
                raise
            error = exc
            delay = policy.delay_for(state.attempt, exc, rng=rng)
            state = state.advance(exc, delay, now=monotonic())
            if on_retry is not None:
                on_retry(state, exc, delay)
        if await sleep(delay) is True:
            raise error
