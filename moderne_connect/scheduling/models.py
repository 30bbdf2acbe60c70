"""Task and result types for the work scheduler."""

from __future__ import annotations

import dataclasses as dc
import enum
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from moderne_connect.scheduling.retry import RetryPolicy, RetryState


class OutcomeStatus(enum.StrEnum):
    """Terminal status of one task (and of one repository in a run)."""

    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"
    ABORTED = "aborted"
    INCOMPLETE = "incomplete"


StageCallable = typ.Callable[[typ.Any, "RetryState"], typ.Awaitable[typ.Any]]


@dc.dataclass(frozen=True, slots=True)
class Stage:
    """One retryable step of a task.

    ``run`` receives the value returned by the previous stage (``None`` for
    the first stage) and the current :class:`RetryState`. ``host`` names the
    upstream the stage talks to; attempts against the same host share one
    per-host concurrency bound. ``policy`` overrides the scheduler default.
    """

    name: str
    run: StageCallable
    host: str | None = None
    policy: RetryPolicy | None = None


@dc.dataclass(frozen=True, slots=True)
class Task:
    """A unit of work made of ordered stages."""

    key: str
    stages: tuple[Stage, ...]
    context: object = None


@dc.dataclass(frozen=True, slots=True)
class TaskResult:
    """Outcome of one scheduled task.

    Attributes
    ----------
    index
        Zero-based dispatch order of the task.
    key
        The task key.
    status
        Terminal status.
    value
        Value returned by the last completed stage.
    error
        The error that ended the task, if any.
    reason
        Human-readable reason for any non-success status.
    attempts
        Attempts used per stage name, for stages that started.
    duration
        Wall-clock time between the first attempt and the result.

    """

    index: int
    key: str
    status: OutcomeStatus
    context: object = None
    value: object = None
    error: BaseException | None = None
    reason: str | None = None
    attempts: cabc.Mapping[str, int] = dc.field(default_factory=dict)
    duration: dt.timedelta | None = None

    @property
    def succeeded(self) -> bool:
        """Return True when every stage completed."""
        return self.status is OutcomeStatus.SUCCESS
