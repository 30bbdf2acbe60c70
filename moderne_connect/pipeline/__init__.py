"""Pipeline coordination: discovery, sync, submission and reporting."""

from __future__ import annotations

from .config import PipelineConfig, RunFile, RunMode, load_run_file
from .coordinator import PipelineCoordinator, Submitter
from .models import RunOutcome, RunReport, RunState, can_transition
from .observability import PipelineEventLogger, PipelineEventType
from .rendering import (
    ExitCode,
    ReportFormat,
    exit_code_for,
    render_json,
    render_report,
    render_text,
)
from .report import DuplicateOutcomeError, RunReportAccumulator

__all__ = [
    "DuplicateOutcomeError",
    "ExitCode",
    "PipelineConfig",
    "PipelineCoordinator",
    "PipelineEventLogger",
    "PipelineEventType",
    "ReportFormat",
    "RunFile",
    "RunMode",
    "RunOutcome",
    "RunReport",
    "RunReportAccumulator",
    "RunState",
    "Submitter",
    "can_transition",
    "exit_code_for",
    "load_run_file",
    "render_json",
    "render_report",
    "render_text",
]
