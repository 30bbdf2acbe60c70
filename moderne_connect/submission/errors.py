"""Ingestion client errors."""

from __future__ import annotations

from moderne_connect.errors import Retryable, Terminal

_BODY_PREVIEW_LIMIT = 200


def _preview(body: str) -> str:
    text = " ".join(body.split())
    if len(text) > _BODY_PREVIEW_LIMIT:
        return text[:_BODY_PREVIEW_LIMIT] + "..."
    return text


class Rejected(Terminal):
    """Raised when the ingestion service refuses a unit permanently."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def for_unit(cls, slug: str, reason: str | None) -> Rejected:
        """Return an error for a unit the service marked as rejected."""
        return cls(f"ingestion service rejected {slug}: {reason or 'no reason given'}")

    @classmethod
    def http_error(cls, status_code: int, body: str) -> Rejected:
        """Return an error for a 4xx response that will not succeed on retry."""
        detail = _preview(body)
        suffix = f": {detail}" if detail else ""
        return cls(
            f"ingestion service HTTP {status_code}{suffix}", status_code=status_code
        )


class TransientServerError(Retryable):
    """Raised for server-side failures expected to clear on retry."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, status_code: int) -> TransientServerError:
        """Return an error for a 5xx response."""
        return cls(f"ingestion service HTTP {status_code}", status_code=status_code)

    @classmethod
    def missing_ack(cls, slug: str) -> TransientServerError:
        """Return an error for a unit absent from the response array."""
        return cls(f"ingestion service returned no acknowledgement for {slug}")


class SubmissionTimeout(Retryable):
    """Raised when a submission does not complete in time."""

    @classmethod
    def after(cls, timeout_s: float) -> SubmissionTimeout:
        """Return an error for a client-side timeout."""
        return cls(f"ingestion request timed out after {timeout_s:g}s")

    @classmethod
    def server_timeout(cls) -> SubmissionTimeout:
        """Return an error for an HTTP 408 response."""
        return cls("ingestion service HTTP 408 request timeout")


class IngestionResponseShapeError(Terminal):
    """Raised when the ingestion response cannot be decoded."""

    @classmethod
    def invalid(cls, body: str, detail: str) -> IngestionResponseShapeError:
        """Return an error for a response body that fails validation."""
        return cls(f"ingestion response is invalid ({detail}): {_preview(body)}")
