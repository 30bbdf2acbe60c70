"""Structured pipeline events.

Every event is a single percent-formatted line that starts with the event
type in brackets followed by ``key=value`` pairs, so log aggregators can parse
run progress without a dedicated metrics backend.
"""

from __future__ import annotations

import enum
import typing as typ

from moderne_connect.errors import classify_error
from moderne_connect.logging import (
    get_logger,
    log_debug,
    log_error,
    log_info,
    log_warning,
)
from moderne_connect.scheduling.models import OutcomeStatus

if typ.TYPE_CHECKING:
    from moderne_connect.logging import SupportsLog
    from moderne_connect.providers.models import RepositoryDescriptor

    from .models import RunOutcome, RunReport, RunState


class PipelineEventType(enum.StrEnum):
    """Structured log event types for pipeline observability."""

    RUN_STARTED = "pipeline.run.started"
    RUN_COMPLETED = "pipeline.run.completed"
    RUN_ABORTED = "pipeline.run.aborted"
    STATE_CHANGED = "pipeline.state.changed"
    REPOSITORY_DISCOVERED = "pipeline.repository.discovered"
    REPOSITORY_DUPLICATE = "pipeline.repository.duplicate"
    REPOSITORY_COMPLETED = "pipeline.repository.completed"
    REPOSITORY_FAILED = "pipeline.repository.failed"
    WATERMARK_FAILED = "pipeline.watermark.failed"
    WORKING_COPY_PRUNED = "pipeline.working_copy.pruned"
    PRUNE_FAILED = "pipeline.working_copy.prune_failed"


class PipelineEventLogger:
    """Emit structured pipeline events through femtologging.

    Success is logged at INFO, skips and interruptions at WARNING, and
    failures at ERROR.
    """

    def __init__(self, logger: SupportsLog | None = None) -> None:
        """Initialise with an optional logger, mainly for tests."""
        self._logger: SupportsLog = logger or get_logger("moderne_connect.pipeline")

    def log_run_started(self, run_id: str, mode: str, organizations: int) -> None:
        """Log the start of a run."""
        log_info(
            self._logger,
            "[%s] run_id=%s mode=%s organizations=%d",
            PipelineEventType.RUN_STARTED,
            run_id,
            mode,
            organizations,
        )

    def log_state_changed(
        self, run_id: str, previous: RunState, current: RunState
    ) -> None:
        """Log a coordinator state transition."""
        log_info(
            self._logger,
            "[%s] run_id=%s from=%s to=%s",
            PipelineEventType.STATE_CHANGED,
            run_id,
            previous,
            current,
        )

    def log_discovered(
        self, run_id: str, index: int, descriptor: RepositoryDescriptor
    ) -> None:
        """Log a newly discovered repository."""
        log_debug(
            self._logger,
            "[%s] run_id=%s index=%d repo_slug=%s skip_reason=%s",
            PipelineEventType.REPOSITORY_DISCOVERED,
            run_id,
            index,
            descriptor.slug,
            descriptor.skip_reason,
        )

    def log_duplicate(self, run_id: str, descriptor: RepositoryDescriptor) -> None:
        """Log a repository dropped because its identity was already seen."""
        log_debug(
            self._logger,
            "[%s] run_id=%s repo_slug=%s",
            PipelineEventType.REPOSITORY_DUPLICATE,
            run_id,
            descriptor.slug,
        )

    def log_outcome(self, run_id: str, outcome: RunOutcome) -> None:
        """Log a repository outcome at a level matching its status."""
        duration = outcome.duration.total_seconds() if outcome.duration else 0.0
        attempts = ",".join(
            f"{stage}:{count}" for stage, count in sorted(outcome.attempts.items())
        )
        if outcome.status is OutcomeStatus.FAILED:
            log_error(
                self._logger,
                "[%s] run_id=%s repo_slug=%s status=%s duration_seconds=%.3f "
                "attempts=%s reason=%s",
                PipelineEventType.REPOSITORY_FAILED,
                run_id,
                outcome.descriptor.slug,
                outcome.status,
                duration,
                attempts or "-",
                outcome.reason,
            )
            return
        log = log_info if outcome.status is OutcomeStatus.SUCCESS else log_warning
        log(
            self._logger,
            "[%s] run_id=%s repo_slug=%s status=%s duration_seconds=%.3f "
            "attempts=%s revision=%s duplicate=%s reason=%s",
            PipelineEventType.REPOSITORY_COMPLETED,
            run_id,
            outcome.descriptor.slug,
            outcome.status,
            duration,
            attempts or "-",
            outcome.revision,
            outcome.duplicate,
            outcome.reason,
        )

    def log_watermark_failed(
        self,
        run_id: str,
        descriptor: RepositoryDescriptor,
        revision: str,
        error: BaseException,
    ) -> None:
        """Log an acknowledged revision the index could not record."""
        log_warning(
            self._logger,
            "[%s] run_id=%s repo_slug=%s revision=%s error_type=%s error_message=%s",
            PipelineEventType.WATERMARK_FAILED,
            run_id,
            descriptor.slug,
            revision,
            type(error).__name__,
            str(error),
            exc_info=error,
        )

    def log_pruned(self, run_id: str, descriptor: RepositoryDescriptor) -> None:
        """Log a skipped repository whose working copy was deleted."""
        log_info(
            self._logger,
            "[%s] run_id=%s repo_slug=%s",
            PipelineEventType.WORKING_COPY_PRUNED,
            run_id,
            descriptor.slug,
        )

    def log_prune_failed(
        self, run_id: str, descriptor: RepositoryDescriptor, error: BaseException
    ) -> None:
        """Log a skipped working copy that could not be deleted."""
        log_warning(
            self._logger,
            "[%s] run_id=%s repo_slug=%s error_type=%s error_message=%s",
            PipelineEventType.PRUNE_FAILED,
            run_id,
            descriptor.slug,
            type(error).__name__,
            str(error),
            exc_info=error,
        )

    def log_run_aborted(
        self, run_id: str, state: RunState, error: BaseException
    ) -> None:
        """Log a fatal error that aborts the run."""
        log_error(
            self._logger,
            "[%s] run_id=%s state=%s error_type=%s error_class=%s error_message=%s",
            PipelineEventType.RUN_ABORTED,
            run_id,
            state,
            type(error).__name__,
            classify_error(error),
            str(error),
            exc_info=error,
        )

    def log_run_completed(self, run_id: str, report: RunReport) -> None:
        """Log the end of a run with per-status counts."""
        counts = report.counts()
        log_info(
            self._logger,
            "[%s] run_id=%s state=%s duration_seconds=%.3f repositories=%d "
            "success=%d skipped=%d failed=%d aborted=%d incomplete=%d",
            PipelineEventType.RUN_COMPLETED,
            run_id,
            report.state,
            report.duration.total_seconds(),
            len(report.outcomes),
            counts[OutcomeStatus.SUCCESS],
            counts[OutcomeStatus.SKIPPED],
            counts[OutcomeStatus.FAILED],
            counts[OutcomeStatus.ABORTED],
            counts[OutcomeStatus.INCOMPLETE],
        )
