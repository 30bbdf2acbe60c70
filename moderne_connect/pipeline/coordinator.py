"""Pipeline coordinator: discovery, sync and submission for one run.

The coordinator turns every discovered repository into a two-stage task
(``sync`` then ``submit``) and hands the tasks to the
:class:`~moderne_connect.scheduling.WorkScheduler`. It is the only writer of
outcomes: each repository reached by discovery ends with exactly one
:class:`~moderne_connect.pipeline.models.RunOutcome`, whatever happens to the
run.

Two sequencing modes are supported. In *streaming* mode (the default) tasks
are dispatched while discovery is still paging, so sync and submission of
early repositories overlap the listing of later ones. In *gated* mode every
phase finishes before the next starts.
"""

from __future__ import annotations

import dataclasses
import typing as typ
import uuid

from sqlalchemy.exc import SQLAlchemyError

from moderne_connect.common.time import utcnow
from moderne_connect.errors import ConnectError, TaskSkipped, describe_error
from moderne_connect.providers.discovery import discover
from moderne_connect.scheduling.cancellation import CancellationToken
from moderne_connect.scheduling.models import OutcomeStatus, Stage, Task
from moderne_connect.scheduling.scheduler import WorkScheduler
from moderne_connect.submission.models import Ack, SubmissionUnit
from moderne_connect.submission.payload import build_unit

from .config import PipelineConfig, RunMode
from .models import RunOutcome, RunState, can_transition
from .observability import PipelineEventLogger
from .report import RunReportAccumulator

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from moderne_connect.cache.service import RepositoryCache
    from moderne_connect.providers.discovery import (
        DiscoveryCursor,
        OrganizationFilter,
        RepositoryListing,
    )
    from moderne_connect.providers.models import RepositoryDescriptor
    from moderne_connect.providers.protocol import RepositoryProvider
    from moderne_connect.scheduling.models import TaskResult
    from moderne_connect.scheduling.retry import RetryState

    from .models import RunReport

SYNC_STAGE = "sync"
SUBMIT_STAGE = "submit"
_SHORT_REVISION = 12

type DiscoverySleep = cabc.Callable[[float], cabc.Awaitable[object]]


class Submitter(typ.Protocol):
    """Anything that can submit one unit: the client or a batcher."""

    async def submit(self, unit: SubmissionUnit, *, attempt: int = 1) -> Ack:
        """Submit ``unit`` and return its acknowledgement."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class _Discovered:
    index: int
    descriptor: RepositoryDescriptor


class PipelineCoordinator:
    """Drive one pipeline run from discovery to report.

    A coordinator owns the cancellation token of its run and can run once.
    """

    def __init__(  # noqa: PLR0913
        self,
        provider: RepositoryProvider,
        cache: RepositoryCache,
        submitter: Submitter,
        *,
        scheduler: WorkScheduler | None = None,
        config: PipelineConfig | None = None,
        events: PipelineEventLogger | None = None,
        submit_host: str | None = None,
        discovery_sleep: DiscoverySleep | None = None,
    ) -> None:
        """Wire the components of a run together."""
        self._provider = provider
        self._cache = cache
        self._submitter = submitter
        self._scheduler = scheduler or WorkScheduler()
        self._config = config or PipelineConfig()
        self._events = events or PipelineEventLogger()
        self._submit_host = submit_host or getattr(submitter, "host", None)
        self._token = CancellationToken()
        self._discovery_sleep = discovery_sleep or self._token.sleep
        self._listing: RepositoryListing | None = None
        self._accumulator = RunReportAccumulator()
        self._state = RunState.PENDING
        self._run_id = uuid.uuid4().hex[:12]
        self._seen: set[object] = set()
        self._skipped: list[RepositoryDescriptor] = []
        self._discovered = 0
        self._fatal_error: BaseException | None = None
        self._user_cancelled = False
        self._started: dt.datetime | None = None

    @property
    def state(self) -> RunState:
        """Return the current coordinator state."""
        return self._state

    @property
    def run_id(self) -> str:
        """Return the short identifier used in structured log events."""
        return self._run_id

    @property
    def cancellation(self) -> CancellationToken:
        """Return the run's cancellation token."""
        return self._token

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Request a graceful stop, as on SIGINT or SIGTERM."""
        if not self._token.cancelled:
            self._user_cancelled = True
        self._token.cancel(reason)

    # Lifecycle ----------------------------------------------------------

    def _transition(self, target: RunState) -> None:
        if self._state is target or not can_transition(self._state, target):
            return
        previous = self._state
        self._state = target
        self._events.log_state_changed(self._run_id, previous, target)

    def _on_fatal(self, error: BaseException) -> None:
        if self._fatal_error is not None:
            return
        self._fatal_error = error
        self._events.log_run_aborted(self._run_id, self._state, error)
        self._transition(RunState.ABORTED)
        self._token.cancel(describe_error(error))

    async def run(
        self,
        organization_filter: OrganizationFilter,
        *,
        cursor: DiscoveryCursor | None = None,
    ) -> RunReport:
        """Run discovery, sync and submission and return the report.

        Fatal errors do not propagate; they abort the run and are reported
        in :attr:`RunReport.fatal_error`.
        With ``prune_skipped`` set, a run that was neither cancelled nor
        aborted deletes the cached working copies of skipped repositories.
        """
        if self._started is not None:
            msg = "a PipelineCoordinator runs once; create a new one per run"
            raise RuntimeError(msg)
        self._started = utcnow()
        self._events.log_run_started(
            self._run_id,
            self._config.mode,
            len(organization_filter.organizations),
        )
        self._transition(RunState.DISCOVERING)
        listing = discover(
            self._provider,
            organization_filter,
            retry_policy=self._config.discovery_retry,
            cursor=cursor,
            sleep=self._discovery_sleep,
            cancellation=self._token,
        )
        self._listing = listing
        if self._config.mode is RunMode.GATED:
            await self._run_gated(listing)
        else:
            await self._run_streaming(listing)
        if self._config.prune_skipped and not self._token.cancelled:
            await self._prune_skipped()
        return self._finish()

    def _finish(self) -> RunReport:
        aborted = self._fatal_error is not None or self._user_cancelled
        if aborted:
            self._transition(RunState.ABORTED)
        else:
            self._transition(RunState.REPORTING)
        report = self._accumulator.build(
            started=self._started or utcnow(),
            finished=utcnow(),
            state=RunState.ABORTED if aborted else RunState.DONE,
            fatal_error=describe_error(self._fatal_error)
            if self._fatal_error is not None
            else None,
            cancelled=self._user_cancelled,
            resume_cursor=self._resume_cursor(),
        )
        self._transition(RunState.DONE)
        self._events.log_run_completed(self._run_id, report)
        return report

    def _resume_cursor(self) -> DiscoveryCursor | None:
        if self._listing is None or self._listing.exhausted:
            return None
        return self._listing.cursor

    async def _prune_skipped(self) -> None:
        for descriptor in self._skipped:
            try:
                removed = await self._cache.remove(descriptor)
            except (ConnectError, OSError) as exc:
                self._events.log_prune_failed(self._run_id, descriptor, exc)
                continue
            if removed:
                self._events.log_pruned(self._run_id, descriptor)

    # Discovery ----------------------------------------------------------

    def _admit(self, descriptor: RepositoryDescriptor) -> _Discovered | None:
        """Deduplicate, assign a discovery index and settle skip markers."""
        identity = descriptor.identity
        if identity in self._seen:
            self._events.log_duplicate(self._run_id, descriptor)
            return None
        self._seen.add(identity)
        discovered = _Discovered(self._discovered, descriptor)
        self._discovered += 1
        self._events.log_discovered(self._run_id, discovered.index, descriptor)
        if descriptor.skip_reason is not None:
            self._skipped.append(descriptor)
            self._record(
                discovered.index,
                RunOutcome(
                    descriptor=descriptor,
                    status=OutcomeStatus.SKIPPED,
                    reason=descriptor.skip_reason,
                ),
            )
            return None
        return discovered

    async def _streaming_tasks(
        self, listing: cabc.AsyncIterable[RepositoryDescriptor]
    ) -> cabc.AsyncIterator[Task]:
        async for descriptor in listing:
            discovered = self._admit(descriptor)
            if discovered is None:
                continue
            self._transition(RunState.SYNCING)
            yield _seeded(
                self._task(
                    discovered,
                    (self._sync_stage(descriptor), self._submit_stage()),
                )
            )

    # Stages -------------------------------------------------------------

    def _task(self, discovered: _Discovered, stages: tuple[Stage, ...]) -> Task:
        return Task(key=discovered.descriptor.slug, stages=stages, context=discovered)

    def _sync_stage(self, descriptor: RepositoryDescriptor) -> Stage:
        return Stage(name=SYNC_STAGE, run=self._sync, host=descriptor.provider)

    def _submit_stage(self) -> Stage:
        return Stage(
            name=SUBMIT_STAGE,
            run=self._submit,
            host=self._submit_host,
            policy=self._config.submit_retry,
        )

    async def _sync(self, value: object, _state: RetryState) -> SubmissionUnit:
        descriptor = typ.cast("RepositoryDescriptor", value)
        working_copy = await self._cache.sync(descriptor)
        index = self._cache.index
        if index is not None and not self._config.resubmit_unchanged:
            last = await index.last_submitted_revision(descriptor.identity)
            if last is not None and last == working_copy.current_revision:
                short = working_copy.current_revision[:_SHORT_REVISION]
                msg = f"revision {short} already submitted"
                raise TaskSkipped(msg)
        return await build_unit(working_copy)

    async def _submit(self, value: object, state: RetryState) -> Ack:
        unit = typ.cast("SubmissionUnit", value)
        self._transition(RunState.SUBMITTING)
        ack = await self._submitter.submit(unit, attempt=state.attempt)
        await self._record_watermark(unit)
        return ack

    async def _record_watermark(self, unit: SubmissionUnit) -> None:
        index = self._cache.index
        if index is None:
            return
        try:
            await index.record_submission(unit.descriptor.identity, unit.revision)
        except (SQLAlchemyError, OSError) as exc:
            # The service holds the unit; the next run only loses its skip.
            self._events.log_watermark_failed(
                self._run_id, unit.descriptor, unit.revision, exc
            )

    # Streaming mode -----------------------------------------------------

    async def _run_streaming(
        self, listing: cabc.AsyncIterable[RepositoryDescriptor]
    ) -> None:
        await self._scheduler.run(
            self._streaming_tasks(listing),
            cancellation=self._token,
            on_result=self._on_result,
            on_fatal=self._on_fatal,
        )

    def _on_result(self, result: TaskResult) -> None:
        discovered = typ.cast("_Discovered", result.context)
        self._record(discovered.index, self._outcome(discovered, result))

    def _outcome(
        self,
        discovered: _Discovered,
        result: TaskResult,
        *,
        prior: TaskResult | None = None,
    ) -> RunOutcome:
        attempts = dict(prior.attempts) if prior is not None else {}
        attempts.update(result.attempts)
        duration = result.duration
        if prior is not None and prior.duration is not None and duration is not None:
            duration += prior.duration
        ack = result.value if isinstance(result.value, Ack) else None
        return RunOutcome(
            descriptor=discovered.descriptor,
            status=result.status,
            reason=result.reason,
            duration=duration,
            revision=ack.revision if ack is not None else None,
            attempts=attempts,
            duplicate=ack.duplicate if ack is not None else False,
        )

    def _record(self, index: int, outcome: RunOutcome) -> None:
        self._accumulator.record(index, outcome)
        self._events.log_outcome(self._run_id, outcome)

    # Gated mode ---------------------------------------------------------

    async def _run_gated(
        self, listing: cabc.AsyncIterable[RepositoryDescriptor]
    ) -> None:
        discovered = await self._discover_all(listing)
        self._transition(RunState.SYNCING)
        sync_tasks = [
            _seeded(self._task(item, (self._sync_stage(item.descriptor),)))
            for item in discovered
        ]
        synced: list[TaskResult] = []
        for result in await self._scheduler.run(
            sync_tasks, cancellation=self._token, on_fatal=self._on_fatal
        ):
            if result.status is OutcomeStatus.SUCCESS:
                synced.append(result)
            else:
                self._on_result(result)
        self._transition(RunState.SUBMITTING)
        prior_by_index = {
            typ.cast("_Discovered", result.context).index: result for result in synced
        }
        submit_tasks = [
            Task(
                key=result.key,
                stages=(_with_value(self._submit_stage(), result.value),),
                context=result.context,
            )
            for result in synced
        ]
        for result in await self._scheduler.run(
            submit_tasks, cancellation=self._token, on_fatal=self._on_fatal
        ):
            item = typ.cast("_Discovered", result.context)
            if result.status is OutcomeStatus.ABORTED:
                result = dataclasses.replace(  # noqa: PLW2901
                    result,
                    status=OutcomeStatus.INCOMPLETE,
                    reason=f"synced but not submitted: {result.reason}",
                )
            self._record(
                item.index,
                self._outcome(item, result, prior=prior_by_index.get(item.index)),
            )

    async def _discover_all(
        self, listing: cabc.AsyncIterable[RepositoryDescriptor]
    ) -> list[_Discovered]:
        discovered: list[_Discovered] = []
        try:
            async for descriptor in listing:
                if self._token.cancelled:
                    break
                item = self._admit(descriptor)
                if item is not None:
                    discovered.append(item)
        except Exception as exc:  # noqa: BLE001 - discovery failure aborts the run
            self._on_fatal(exc)
        return discovered


def _with_value(stage: Stage, value: object) -> Stage:
    """Return ``stage`` with its input fixed to ``value``."""
    run = stage.run

    async def bound(_previous: object, state: RetryState) -> object:
        return await run(value, state)

    return dataclasses.replace(stage, run=bound)


def _seeded(task: Task) -> Task:
    """Feed the task's descriptor into its first stage."""
    discovered = typ.cast("_Discovered", task.context)
    first, *rest = task.stages
    return dataclasses.replace(
        task, stages=(_with_value(first, discovered.descriptor), *rest)
    )
