"""Run states, per-repository outcomes and the run report."""

from __future__ import annotations

import collections
import dataclasses
import enum
import typing as typ

from moderne_connect.scheduling.models import OutcomeStatus

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import datetime as dt

    from moderne_connect.providers.discovery import DiscoveryCursor
    from moderne_connect.providers.models import RepositoryDescriptor


class RunState(enum.StrEnum):
    """Coordinator lifecycle; transitions only move forward."""

    PENDING = "pending"
    DISCOVERING = "discovering"
    SYNCING = "syncing"
    SUBMITTING = "submitting"
    REPORTING = "reporting"
    DONE = "done"
    ABORTED = "aborted"


_STATE_ORDER = (
    RunState.PENDING,
    RunState.DISCOVERING,
    RunState.SYNCING,
    RunState.SUBMITTING,
    RunState.REPORTING,
    RunState.DONE,
)


def can_transition(current: RunState, target: RunState) -> bool:
    """Return True when ``target`` is a forward move from ``current``.

    ``aborted`` is reachable from every state except the terminal ones.
    """
    if current in {RunState.DONE, RunState.ABORTED}:
        return False
    if target is RunState.ABORTED:
        return True
    return _STATE_ORDER.index(target) > _STATE_ORDER.index(current)


@dataclasses.dataclass(frozen=True, slots=True)
class RunOutcome:
    """Final result for one discovered repository.

    Attributes
    ----------
    descriptor
        The repository.
    status
        ``success``, ``skipped``, ``failed``, ``aborted`` or ``incomplete``.
    reason
        Human-readable reason for every non-success status.
    duration
        Time spent on the repository.
    revision
        Revision submitted, when known.
    attempts
        Attempts used per stage (``sync``, ``submit``).
    duplicate
        True when the ingestion service had already seen the revision.

    """

    descriptor: RepositoryDescriptor
    status: OutcomeStatus
    reason: str | None = None
    duration: dt.timedelta | None = None
    revision: str | None = None
    attempts: cabc.Mapping[str, int] = dataclasses.field(default_factory=dict)
    duplicate: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class RunReport:
    """Summary of one pipeline run, outcomes in discovery order.

    ``resume_cursor`` is set when discovery stopped before listing every
    organization; passing it back to a new run continues from that page.
    """

    started: dt.datetime
    finished: dt.datetime
    state: RunState
    outcomes: tuple[RunOutcome, ...]
    fatal_error: str | None = None
    cancelled: bool = False
    resume_cursor: DiscoveryCursor | None = None

    @property
    def duration(self) -> dt.timedelta:
        """Return the wall-clock duration of the run."""
        return self.finished - self.started

    def counts(self) -> dict[OutcomeStatus, int]:
        """Return the number of outcomes per status, zero-filled."""
        counter = collections.Counter(outcome.status for outcome in self.outcomes)
        return {status: counter.get(status, 0) for status in OutcomeStatus}

    def with_status(self, status: OutcomeStatus) -> list[RunOutcome]:
        """Return the outcomes that ended with ``status``."""
        return [outcome for outcome in self.outcomes if outcome.status is status]
