"""Render run reports for humans and machines, and map them to exit codes."""

from __future__ import annotations

import enum
import typing as typ

import msgspec

from moderne_connect.scheduling.models import OutcomeStatus

if typ.TYPE_CHECKING:
    from .models import RunOutcome, RunReport


class ReportFormat(enum.StrEnum):
    """Output formats understood by :func:`render_report`."""

    TEXT = "text"
    JSON = "json"


class ExitCode(enum.IntEnum):
    """Process exit codes derived from a run report."""

    OK = 0
    PARTIAL = 1
    ALL_FAILED = 2
    FATAL = 3
    CANCELLED = 130


def exit_code_for(report: RunReport) -> ExitCode:
    """Return the exit code for ``report``.

    A user cancellation wins over everything else, a fatal error comes next,
    then the outcome mix decides. Skipped repositories were never processed
    and count neither way: ``0`` when no processed repository failed, ``2``
    when every processed repository failed (even if others were skipped),
    ``1`` otherwise. A run that discovered nothing exits ``0``.
    """
    if report.cancelled:
        return ExitCode.CANCELLED
    if report.fatal_error is not None:
        return ExitCode.FATAL
    processed = [o for o in report.outcomes if o.status is not OutcomeStatus.SKIPPED]
    failures = [o for o in processed if o.status is not OutcomeStatus.SUCCESS]
    if not failures:
        return ExitCode.OK
    if len(failures) == len(processed):
        return ExitCode.ALL_FAILED
    return ExitCode.PARTIAL


class OutcomeDocument(msgspec.Struct, kw_only=True):
    """JSON shape of one repository outcome."""

    repository: str
    status: str
    reason: str | None = None
    revision: str | None = None
    duplicate: bool = False
    duration_seconds: float = 0.0
    attempts: dict[str, int] = msgspec.field(default_factory=dict)


class ReportDocument(msgspec.Struct, kw_only=True):
    """JSON shape of a run report."""

    state: str
    started: str
    finished: str
    duration_seconds: float
    cancelled: bool
    fatal_error: str | None
    resume_from: str | None = None
    counts: dict[str, int]
    outcomes: list[OutcomeDocument]


def _outcome_document(outcome: RunOutcome) -> OutcomeDocument:
    return OutcomeDocument(
        repository=outcome.descriptor.slug,
        status=outcome.status.value,
        reason=outcome.reason,
        revision=outcome.revision,
        duplicate=outcome.duplicate,
        duration_seconds=round(outcome.duration.total_seconds(), 3)
        if outcome.duration is not None
        else 0.0,
        attempts=dict(outcome.attempts),
    )


def report_document(report: RunReport) -> ReportDocument:
    """Convert ``report`` into its serialisable document."""
    return ReportDocument(
        state=report.state.value,
        started=report.started.isoformat(),
        finished=report.finished.isoformat(),
        duration_seconds=round(report.duration.total_seconds(), 3),
        cancelled=report.cancelled,
        fatal_error=report.fatal_error,
        resume_from=str(report.resume_cursor)
        if report.resume_cursor is not None
        else None,
        counts={status.value: count for status, count in report.counts().items()},
        outcomes=[_outcome_document(outcome) for outcome in report.outcomes],
    )


def render_json(report: RunReport) -> str:
    """Render ``report`` as a JSON document."""
    return msgspec.json.format(
        msgspec.json.encode(report_document(report)), indent=2
    ).decode("utf-8")


def render_text(report: RunReport) -> str:
    """Render ``report`` as a Markdown summary followed by non-success rows."""
    counts = report.counts()
    lines = [
        "# moderne-connect run",
        "",
        f"- State: {report.state}",
        f"- Duration: {report.duration.total_seconds():.1f}s",
        f"- Repositories: {len(report.outcomes)}",
    ]
    lines.extend(
        f"- {status.value.capitalize()}: {counts[status]}" for status in OutcomeStatus
    )
    if report.fatal_error is not None:
        lines.extend(["", f"Fatal error: {report.fatal_error}"])
    if report.cancelled:
        lines.extend(["", "Run cancelled before completion."])
    if report.resume_cursor is not None:
        resume = f"Resume discovery with --resume-from '{report.resume_cursor}'"
        lines.extend(["", resume])
    problems = [o for o in report.outcomes if o.status is not OutcomeStatus.SUCCESS]
    if problems:
        lines.extend(["", "| Repository | Status | Reason |", "| --- | --- | --- |"])
        lines.extend(
            f"| {o.descriptor.slug} | {o.status} | {_cell(o.reason)} |"
            for o in problems
        )
    return "\n".join(lines) + "\n"


def _cell(value: str | None) -> str:
    if not value:
        return "-"
    return value.replace("|", "\\|").replace("\n", " ")


def render_report(report: RunReport, fmt: ReportFormat | str = ReportFormat.TEXT) -> str:
    """Render ``report`` in the requested format."""
    if ReportFormat(fmt) is ReportFormat.JSON:
        return render_json(report)
    return render_text(report)
