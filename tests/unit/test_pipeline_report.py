"""Unit tests for run states, the report accumulator and report rendering."""

from __future__ import annotations

import datetime as dt
import json
import typing as typ

import pytest

from moderne_connect.pipeline import (
    DuplicateOutcomeError,
    ExitCode,
    ReportFormat,
    RunOutcome,
    RunReport,
    RunReportAccumulator,
    RunState,
    can_transition,
    exit_code_for,
    render_report,
    render_text,
)
from moderne_connect.providers import DiscoveryCursor
from moderne_connect.scheduling import OutcomeStatus

if typ.TYPE_CHECKING:
    from moderne_connect.providers import RepositoryDescriptor

type DescriptorFactory = typ.Callable[..., RepositoryDescriptor]

_STARTED = dt.datetime(2026, 5, 4, 10, 0, tzinfo=dt.UTC)


def _report(
    make_descriptor: DescriptorFactory,
    *statuses: OutcomeStatus,
    **kwargs: typ.Any,  # noqa: ANN401
) -> RunReport:
    outcomes = tuple(
        RunOutcome(
            descriptor=make_descriptor(f"repo{index}"),
            status=status,
            reason=None if status is OutcomeStatus.SUCCESS else f"{status} reason",
        )
        for index, status in enumerate(statuses)
    )
    return RunReport(
        started=_STARTED,
        finished=_STARTED + dt.timedelta(seconds=12.5),
        state=kwargs.pop("state", RunState.DONE),
        outcomes=outcomes,
        **kwargs,
    )


class TestRunState:
    """Tests for can_transition."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RunState.PENDING, RunState.DISCOVERING),
            (RunState.DISCOVERING, RunState.SYNCING),
            (RunState.PENDING, RunState.REPORTING),
            (RunState.SUBMITTING, RunState.ABORTED),
        ],
    )
    def test_forward_moves(self, current: RunState, target: RunState) -> None:
        """Forward moves and aborts are allowed."""
        assert can_transition(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (RunState.SYNCING, RunState.DISCOVERING),
            (RunState.SYNCING, RunState.SYNCING),
            (RunState.DONE, RunState.ABORTED),
            (RunState.ABORTED, RunState.REPORTING),
        ],
    )
    def test_backward_and_terminal_moves(
        self, current: RunState, target: RunState
    ) -> None:
        """States never move backwards or leave a terminal state."""
        assert not can_transition(current, target)


class TestRunReportAccumulator:
    """Tests for RunReportAccumulator."""

    def test_orders_by_discovery_index(
        self, make_descriptor: DescriptorFactory
    ) -> None:
        """Outcomes come back in discovery order, not arrival order."""
        accumulator = RunReportAccumulator()
        for index in (2, 0, 1):
            accumulator.record(
                index,
                RunOutcome(
                    descriptor=make_descriptor(f"repo{index}"),
                    status=OutcomeStatus.SUCCESS,
                ),
            )

        report = accumulator.build(
            started=_STARTED, finished=_STARTED, state=RunState.DONE
        )

        assert [o.descriptor.name for o in report.outcomes] == [
            "repo0",
            "repo1",
            "repo2",
        ]
        assert 1 in accumulator
        assert len(accumulator) == 3

    def test_second_outcome_is_an_error(
        self, make_descriptor: DescriptorFactory
    ) -> None:
        """A repository gets exactly one outcome."""
        accumulator = RunReportAccumulator()
        outcome = RunOutcome(descriptor=make_descriptor(), status=OutcomeStatus.SUCCESS)
        accumulator.record(0, outcome)
        with pytest.raises(DuplicateOutcomeError, match="github.com:acme/widget"):
            accumulator.record(0, outcome)

    def test_counts_are_zero_filled(self, make_descriptor: DescriptorFactory) -> None:
        """Every status appears in the counts."""
        report = _report(make_descriptor, OutcomeStatus.SUCCESS, OutcomeStatus.FAILED)
        counts = report.counts()
        assert counts[OutcomeStatus.SUCCESS] == 1
        assert counts[OutcomeStatus.FAILED] == 1
        assert counts[OutcomeStatus.INCOMPLETE] == 0
        assert report.duration == dt.timedelta(seconds=12.5)


class TestExitCode:
    """Tests for exit_code_for."""

    @pytest.mark.parametrize(
        ("statuses", "expected"),
        [
            ((), ExitCode.OK),
            ((OutcomeStatus.SUCCESS, OutcomeStatus.SKIPPED), ExitCode.OK),
            ((OutcomeStatus.SUCCESS, OutcomeStatus.FAILED), ExitCode.PARTIAL),
            ((OutcomeStatus.SUCCESS, OutcomeStatus.INCOMPLETE), ExitCode.PARTIAL),
            ((OutcomeStatus.SKIPPED, OutcomeStatus.SKIPPED), ExitCode.OK),
            ((OutcomeStatus.FAILED, OutcomeStatus.SKIPPED), ExitCode.ALL_FAILED),
            (
                (OutcomeStatus.SUCCESS, OutcomeStatus.SKIPPED, OutcomeStatus.FAILED),
                ExitCode.PARTIAL,
            ),
            ((OutcomeStatus.ABORTED,), ExitCode.ALL_FAILED),
        ],
    )
    def test_outcome_mix(
        self,
        make_descriptor: DescriptorFactory,
        statuses: tuple[OutcomeStatus, ...],
        expected: ExitCode,
    ) -> None:
        """Skipped rows are ignored when comparing failures to processed work."""
        assert exit_code_for(_report(make_descriptor, *statuses)) is expected

    def test_fatal_error(self, make_descriptor: DescriptorFactory) -> None:
        """A fatal error outranks the outcome mix."""
        report = _report(
            make_descriptor,
            OutcomeStatus.SUCCESS,
            state=RunState.ABORTED,
            fatal_error="AuthError: GitHub HTTP 401",
        )
        assert exit_code_for(report) is ExitCode.FATAL

    def test_cancelled(self, make_descriptor: DescriptorFactory) -> None:
        """User cancellation outranks everything."""
        report = _report(
            make_descriptor,
            OutcomeStatus.ABORTED,
            state=RunState.ABORTED,
            cancelled=True,
        )
        assert exit_code_for(report) == 130


class TestRendering:
    """Tests for the text and JSON renderers."""

    def test_text_summary(self, make_descriptor: DescriptorFactory) -> None:
        """The text report lists counts and every non-success outcome."""
        text = render_text(
            _report(
                make_descriptor,
                OutcomeStatus.SUCCESS,
                OutcomeStatus.FAILED,
                OutcomeStatus.SKIPPED,
            )
        )

        assert text.startswith("# moderne-connect run\n")
        assert "- Repositories: 3" in text
        assert "- Success: 1" in text
        assert "- Failed: 1" in text
        assert "| github.com:acme/repo1 | failed | failed reason |" in text
        assert "| github.com:acme/repo2 | skipped | skipped reason |" in text
        assert "repo0 |" not in text

    def test_text_escapes_pipes(self, make_descriptor: DescriptorFactory) -> None:
        """Reasons cannot break the table."""
        report = RunReport(
            started=_STARTED,
            finished=_STARTED,
            state=RunState.DONE,
            outcomes=(
                RunOutcome(
                    descriptor=make_descriptor(),
                    status=OutcomeStatus.FAILED,
                    reason="a|b\nc",
                ),
            ),
        )
        assert "| a\\|b c |" in render_text(report)

    def test_text_mentions_fatal_and_cancelled(
        self, make_descriptor: DescriptorFactory
    ) -> None:
        """Run-level problems are called out."""
        text = render_text(
            _report(
                make_descriptor,
                state=RunState.ABORTED,
                fatal_error="AuthError: denied",
                cancelled=True,
            )
        )
        assert "Fatal error: AuthError: denied" in text
        assert "Run cancelled before completion." in text

    def test_json_document(self, make_descriptor: DescriptorFactory) -> None:
        """The JSON report carries counts and outcomes."""
        report = _report(make_descriptor, OutcomeStatus.SUCCESS, OutcomeStatus.FAILED)

        document = json.loads(render_report(report, ReportFormat.JSON))

        assert document["state"] == "done"
        assert document["duration_seconds"] == 12.5
        assert document["counts"]["failed"] == 1
        assert document["resume_from"] is None
        assert document["outcomes"][1] == {
            "repository": "github.com:acme/repo1",
            "status": "failed",
            "reason": "failed reason",
            "revision": None,
            "duplicate": False,
            "duration_seconds": 0.0,
            "attempts": {},
        }

    def test_render_report_accepts_strings(
        self, make_descriptor: DescriptorFactory
    ) -> None:
        """Format names can be passed as plain strings."""
        report = _report(make_descriptor)
        assert render_report(report, "text") == render_text(report)

    def test_resume_cursor_is_rendered(
        self, make_descriptor: DescriptorFactory
    ) -> None:
        """An unfinished discovery tells the operator where to resume."""
        report = _report(
            make_descriptor,
            state=RunState.ABORTED,
            cancelled=True,
            resume_cursor=DiscoveryCursor(1, "abc"),
        )

        assert "Resume discovery with --resume-from '1:abc'" in render_text(report)
        document = json.loads(render_report(report, ReportFormat.JSON))
        assert document["resume_from"] == "1:abc"
