"""Bounded-concurrency task scheduler with retries and graceful cancellation.

The scheduler runs :class:`~moderne_connect.scheduling.models.Task` objects,
each a short chain of stages, under two bounds: a global limit on tasks in
flight and a per-host limit on concurrent stage attempts against the same
upstream. Failures are classified with
:func:`moderne_connect.errors.classify_error`; retryable failures wait out a
backoff delay while holding their task slot, terminal failures end the task,
and fatal failures cancel the whole run.

Cancellation stops dispatch at once. Tasks that never started are reported
``aborted``. Tasks in flight keep running their remaining stages for the
configured grace period; whatever is still running then is cancelled and
reported ``incomplete``. Retry backoff waits end at the cancel.
"""

from __future__ import annotations

import asyncio
import collections.abc as cabc
import datetime as dt
import typing as typ

from moderne_connect.common.time import elapsed_since, monotonic
from moderne_connect.errors import ErrorClass, classify_error, describe_error
from moderne_connect.logging import (
    get_logger,
    log_exception,
    log_info,
    log_warning,
)
from moderne_connect.scheduling.cancellation import (
    CancellationToken,
    acquire_unless_cancelled,
)
from moderne_connect.scheduling.config import SchedulerConfig
from moderne_connect.scheduling.models import OutcomeStatus, Task, TaskResult
from moderne_connect.scheduling.retry import RetryState

if typ.TYPE_CHECKING:
    import random

    from moderne_connect.scheduling.models import Stage
    from moderne_connect.scheduling.retry import RetryPolicy

logger = get_logger(__name__)

type TaskSource = cabc.Iterable[Task] | cabc.AsyncIterable[Task]
type ResultCallback = cabc.Callable[[TaskResult], None]
type FatalCallback = cabc.Callable[[BaseException], None]


class _StageStopped(Exception):
    """Internal signal that a task ended without completing every stage."""

    def __init__(
        self,
        status: OutcomeStatus,
        *,
        reason: str,
        error: BaseException | None = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self.error = error
        super().__init__(reason)


class WorkScheduler:
    """Run tasks under global and per-host concurrency bounds.

    A scheduler instance holds configuration only; every :meth:`run` call
    builds fresh semaphores and bookkeeping, so nothing leaks between runs.
    """

    def __init__(
        self,
        config: SchedulerConfig | None = None,
        *,
        rng: random.Random | None = None,
    ) -> None:
        """Initialise with scheduler configuration and an optional jitter RNG."""
        self._config = config or SchedulerConfig()
        self._rng = rng

    @property
    def config(self) -> SchedulerConfig:
        """Return the scheduler configuration."""
        return self._config

    async def run(
        self,
        tasks: TaskSource,
        *,
        cancellation: CancellationToken | None = None,
        on_result: ResultCallback | None = None,
        on_fatal: FatalCallback | None = None,
    ) -> list[TaskResult]:
        """Run ``tasks`` to completion or cancellation.

        Parameters
        ----------
        tasks
            A synchronous or asynchronous iterable of tasks. Asynchronous
            sources are consumed lazily, so discovery can overlap execution.
        cancellation
            Token that stops the run when cancelled. A fatal task error
            cancels it as well.
        on_result
            Called with each result as soon as it is known.
        on_fatal
            Called with the first fatal error before the run is cancelled.

        Returns
        -------
        list[TaskResult]
            One result per task pulled from ``tasks``, in dispatch order.

        """
        run = _SchedulerRun(
            self._config,
            cancellation or CancellationToken(),
            on_result=on_result,
            on_fatal=on_fatal,
            rng=self._rng,
        )
        try:
            await run.dispatch(tasks)
            await run.drain()
        except BaseException:
            await run.abandon()
            raise
        return run.results()


class _SchedulerRun:
    """Mutable state of a single :meth:`WorkScheduler.run` call."""

    def __init__(
        self,
        config: SchedulerConfig,
        token: CancellationToken,
        *,
        on_result: ResultCallback | None,
        on_fatal: FatalCallback | None,
        rng: random.Random | None,
    ) -> None:
        self._config = config
        self._token = token
        self._on_result = on_result
        self._on_fatal = on_fatal
        self._rng = rng
        self._slots = asyncio.Semaphore(config.max_concurrency)
        self._hosts: dict[str, asyncio.Semaphore] = {}
        self._tasks: list[Task] = []
        self._workers: dict[int, asyncio.Task[None]] = {}
        self._results: dict[int, TaskResult] = {}
        self._attempts: dict[int, dict[str, int]] = {}
        self._started_at: dict[int, float] = {}
        self._current_stage: dict[int, str] = {}

    # Dispatch -----------------------------------------------------------

    async def dispatch(self, tasks: TaskSource) -> None:
        """Start workers until the source is exhausted or the run is cancelled."""
        try:
            if isinstance(tasks, cabc.AsyncIterable):
                await self._dispatch_async(tasks)
            else:
                await self._dispatch_sync(tasks)
        except Exception as exc:  # noqa: BLE001 - a failing source is fatal for the run
            log_exception(logger, "Task source failed; cancelling run", exc)
            self._fatal(exc)

    async def _dispatch_sync(self, tasks: cabc.Iterable[Task]) -> None:
        iterator = iter(tasks)
        for task in iterator:
            if not await self._dispatch_one(task):
                break
        # Materialised work still owes an outcome after cancellation.
        for task in iterator:
            index = self._register(task)
            self._record(index, OutcomeStatus.ABORTED, reason=self._abort_reason())

    async def _dispatch_async(self, tasks: cabc.AsyncIterable[Task]) -> None:
        iterator = aiter(tasks)
        try:
            while not self._token.cancelled:
                try:
                    task = await anext(iterator)
                except StopAsyncIteration:
                    break
                if not await self._dispatch_one(task):
                    break
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    def _register(self, task: Task) -> int:
        self._tasks.append(task)
        return len(self._tasks) - 1

    async def _dispatch_one(self, task: Task) -> bool:
        index = self._register(task)
        if not await acquire_unless_cancelled(self._slots, self._token):
            self._record(index, OutcomeStatus.ABORTED, reason=self._abort_reason())
            return False
        self._workers[index] = asyncio.create_task(
            self._work(index, task), name=f"moderne-connect:{task.key}"
        )
        return True

    # Workers ------------------------------------------------------------

    async def _work(self, index: int, task: Task) -> None:
        attempts = self._attempts.setdefault(index, {})
        value: object = None
        try:
            for stage in task.stages:
                self._current_stage[index] = stage.name
                value = await self._run_stage(index, stage, value, attempts)
        except _StageStopped as stop:
            self._record(index, stop.status, reason=stop.reason, error=stop.error)
        else:
            self._record(index, OutcomeStatus.SUCCESS, value=value)
        finally:
            self._slots.release()

    async def _run_stage(
        self,
        index: int,
        stage: Stage,
        value: object,
        attempts: dict[str, int],
    ) -> object:
        policy = stage.policy or self._config.retry
        state = RetryState()
        while True:
            host_slot = self._host_slot(stage.host)
            if not await self._enter(index, host_slot):
                raise _StageStopped(OutcomeStatus.ABORTED, reason=self._abort_reason())
            self._started_at.setdefault(index, monotonic())
            attempts[stage.name] = state.attempt
            try:
                return await stage.run(value, state)
            except Exception as exc:  # noqa: BLE001 - classified below
                error = exc
            finally:
                if host_slot is not None:
                    host_slot.release()
            state = await self._after_failure(stage, policy, state, error)

    async def _after_failure(
        self,
        stage: Stage,
        policy: RetryPolicy,
        state: RetryState,
        error: Exception,
    ) -> RetryState:
        error_class = classify_error(error)
        if error_class is ErrorClass.SKIP:
            reason = getattr(error, "reason", None) or describe_error(error)
            raise _StageStopped(OutcomeStatus.SKIPPED, reason=reason)
        if error_class is ErrorClass.FATAL:
            self._fatal(error)
            raise _StageStopped(
                OutcomeStatus.FAILED,
                reason=f"{stage.name} failed: {describe_error(error)}",
                error=error,
            )
        if error_class is ErrorClass.RETRYABLE and policy.should_retry(state, error):
            delay = policy.delay_for(state.attempt, error, rng=self._rng)
            next_state = state.advance(error, delay, now=monotonic())
            log_warning(
                logger,
                "Retrying %s attempt %d in %.2fs after %s",
                stage.name,
                next_state.attempt,
                delay,
                next_state.last_error,
            )
            if await self._token.sleep(delay):
                raise _StageStopped(
                    OutcomeStatus.INCOMPLETE,
                    reason=(
                        f"run cancelled while waiting to retry {stage.name}: "
                        f"{describe_error(error)}"
                    ),
                    error=error,
                )
            return next_state
        if error_class is ErrorClass.RETRYABLE:
            reason = (
                f"{stage.name} failed after {state.attempt} attempt(s): "
                f"{describe_error(error)}"
            )
        else:
            reason = f"{stage.name} failed: {describe_error(error)}"
        raise _StageStopped(OutcomeStatus.FAILED, reason=reason, error=error)

    def _host_slot(self, host: str | None) -> asyncio.Semaphore | None:
        if not host:
            return None
        slot = self._hosts.get(host)
        if slot is None:
            slot = asyncio.Semaphore(self._config.limit_for_host(host))
            self._hosts[host] = slot
        return slot

    async def _enter(self, index: int, host_slot: asyncio.Semaphore | None) -> bool:
        # Started tasks run on until drain's grace period expires.
        if index in self._started_at:
            if host_slot is not None:
                await host_slot.acquire()
            return True
        if host_slot is None:
            return not self._token.cancelled
        return await acquire_unless_cancelled(host_slot, self._token)

    # Draining -----------------------------------------------------------

    async def drain(self) -> None:
        """Wait for workers, applying the grace period after cancellation."""
        pending = {worker for worker in self._workers.values() if not worker.done()}
        if pending and not self._token.cancelled:
            pending = await self._wait_until_done_or_cancelled(pending)
        if pending:
            log_info(
                logger,
                "Run cancelled (%s); allowing %d in-flight task(s) %.1fs to finish",
                self._token.reason,
                len(pending),
                self._config.grace_period,
            )
            _, pending = await asyncio.wait(pending, timeout=self._config.grace_period)
        for worker in pending:
            worker.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._settle_workers()

    async def _wait_until_done_or_cancelled(
        self, pending: set[asyncio.Task[None]]
    ) -> set[asyncio.Task[None]]:
        waiter = asyncio.ensure_future(self._token.wait())
        try:
            while pending and not self._token.cancelled:
                done, _ = await asyncio.wait(
                    pending | {waiter}, return_when=asyncio.FIRST_COMPLETED
                )
                pending -= done
        finally:
            waiter.cancel()
        return pending

    def _settle_workers(self) -> None:
        for index, worker in self._workers.items():
            if not worker.cancelled() and worker.exception() is not None:
                log_exception(
                    logger,
                    f"Worker for {self._tasks[index].key} crashed",
                    typ.cast("BaseException", worker.exception()),
                )
            if index not in self._results:
                stage = self._current_stage.get(index, "task")
                self._record(
                    index,
                    OutcomeStatus.INCOMPLETE,
                    reason=f"{stage} interrupted after the cancellation grace period",
                )

    async def abandon(self) -> None:
        """Cancel every worker when the run itself is torn down."""
        workers = [worker for worker in self._workers.values() if not worker.done()]
        for worker in workers:
            worker.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)

    # Results ------------------------------------------------------------

    def _abort_reason(self) -> str:
        return f"not started: {self._token.reason or 'run cancelled'}"

    def _fatal(self, error: BaseException) -> None:
        if self._on_fatal is not None and not self._token.cancelled:
            self._on_fatal(error)
        self._token.cancel(describe_error(error))

    def _record(
        self,
        index: int,
        status: OutcomeStatus,
        *,
        value: object = None,
        reason: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        if index in self._results:
            return
        started = self._started_at.get(index)
        task = self._tasks[index]
        result = TaskResult(
            index=index,
            key=task.key,
            status=status,
            context=task.context,
            value=value,
            error=error,
            reason=reason,
            attempts=dict(self._attempts.get(index, {})),
            duration=elapsed_since(started) if started is not None else dt.timedelta(0),
        )
        self._results[index] = result
        if self._on_result is not None:
            self._on_result(result)

    def results(self) -> list[TaskResult]:
        """Return every recorded result in dispatch order."""
        return [self._results[index] for index in sorted(self._results)]
