"""Submission of per-repository units to the ingestion service."""

from __future__ import annotations

from .batching import SubmissionBatcher
from .client import IngestionClient
from .config import IngestionConfig
from .errors import (
    IngestionResponseShapeError,
    Rejected,
    SubmissionTimeout,
    TransientServerError,
)
from .models import (
    Ack,
    BuildTool,
    RepositoryPayload,
    SubmissionRequest,
    SubmissionUnit,
    WireAck,
    WireRepository,
    WireUnit,
)
from .payload import build_unit, detect_build_tool

__all__ = [
    "Ack",
    "BuildTool",
    "IngestionClient",
    "IngestionConfig",
    "IngestionResponseShapeError",
    "Rejected",
    "RepositoryPayload",
    "SubmissionBatcher",
    "SubmissionRequest",
    "SubmissionTimeout",
    "SubmissionUnit",
    "TransientServerError",
    "WireAck",
    "WireRepository",
    "WireUnit",
    "build_unit",
    "detect_build_tool",
]
