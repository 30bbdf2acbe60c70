"""Single-writer accumulator for run outcomes."""

from __future__ import annotations

import threading
import typing as typ

from .models import RunReport

if typ.TYPE_CHECKING:
    import datetime as dt

    from moderne_connect.providers.discovery import DiscoveryCursor

    from .models import RunOutcome, RunState


class DuplicateOutcomeError(RuntimeError):
    """Raised when a repository would receive a second outcome."""

    @classmethod
    def for_index(cls, index: int, slug: str) -> DuplicateOutcomeError:
        """Return an error for a repeated discovery index."""
        return cls(f"outcome for discovery index {index} ({slug}) already recorded")


class RunReportAccumulator:
    """Collect outcomes as they arrive and order them by discovery index.

    Appends take a lock so callbacks from any context can record safely.
    """

    def __init__(self) -> None:
        """Create an empty accumulator."""
        self._lock = threading.Lock()
        self._outcomes: dict[int, RunOutcome] = {}

    def record(self, index: int, outcome: RunOutcome) -> None:
        """Record the outcome for the repository discovered at ``index``."""
        with self._lock:
            if index in self._outcomes:
                raise DuplicateOutcomeError.for_index(index, outcome.descriptor.slug)
            self._outcomes[index] = outcome

    def __contains__(self, index: object) -> bool:
        """Return True when ``index`` already has an outcome."""
        with self._lock:
            return index in self._outcomes

    def __len__(self) -> int:
        """Return the number of recorded outcomes."""
        with self._lock:
            return len(self._outcomes)

    def build(
        self,
        *,
        started: dt.datetime,
        finished: dt.datetime,
        state: RunState,
        fatal_error: str | None = None,
        cancelled: bool = False,
        resume_cursor: DiscoveryCursor | None = None,
    ) -> RunReport:
        """Freeze the recorded outcomes into a :class:`RunReport`."""
        with self._lock:
            outcomes = tuple(self._outcomes[index] for index in sorted(self._outcomes))
        return RunReport(
            started=started,
            finished=finished,
            state=state,
            outcomes=outcomes,
            fatal_error=fatal_error,
            cancelled=cancelled,
            resume_cursor=resume_cursor,
        )
