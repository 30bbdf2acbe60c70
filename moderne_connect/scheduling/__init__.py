"""Bounded-concurrency work scheduling with retries and cancellation."""

from __future__ import annotations

from .cancellation import CancellationToken, acquire_unless_cancelled
from .config import SchedulerConfig
from .models import OutcomeStatus, Stage, Task, TaskResult
from .retry import NO_RETRY, RetryPolicy, RetryState, retry_call
from .scheduler import WorkScheduler

__all__ = [
    "NO_RETRY",
    "CancellationToken",
    "OutcomeStatus",
    "RetryPolicy",
    "RetryState",
    "SchedulerConfig",
    "Stage",
    "Task",
    "TaskResult",
    "WorkScheduler",
    "acquire_unless_cancelled",
    "retry_call",
]
