"""Shared error hierarchy and error classification for pipeline runs.

Component packages raise subclasses of these errors. The scheduler and the
coordinator never inspect component internals; they ask
:func:`classify_error` whether a failure is fatal for the run, worth another
attempt, or terminal for a single repository.
"""

from __future__ import annotations

import enum


class ConnectError(Exception):
    """Base class for all moderne-connect errors."""


class AuthError(ConnectError):
    """Raised when an upstream service rejects the configured credentials."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def for_service(cls, service: str, status_code: int) -> AuthError:
        """Return an error for a rejected credential on ``service``."""
        return cls(
            f"{service} rejected the configured credentials (HTTP {status_code})",
            status_code=status_code,
        )


class ConfigError(ConnectError):
    """Raised when run configuration is missing or invalid."""

    @classmethod
    def missing(cls, setting: str) -> ConfigError:
        """Return an error for a required setting that has no value."""
        return cls(f"{setting} is required")

    @classmethod
    def invalid(cls, setting: str, reason: str) -> ConfigError:
        """Return an error for a setting with an unusable value."""
        return cls(f"{setting} is invalid: {reason}")


class RateLimited(ConnectError):
    """Raised when an upstream service asks the caller to slow down."""

    def __init__(self, message: str, *, retry_after: float | None = None) -> None:
        """Initialise with a message and the advertised wait in seconds."""
        self.retry_after = retry_after
        super().__init__(message)

    @classmethod
    def from_service(
        cls, service: str, retry_after: float | None = None
    ) -> RateLimited:
        """Return an error for a rate-limited response from ``service``."""
        suffix = f"; retry after {retry_after:g}s" if retry_after is not None else ""
        return cls(f"{service} rate limit exceeded{suffix}", retry_after=retry_after)


class TransientNetworkError(ConnectError):
    """Raised for network failures that are expected to clear on retry."""

    @classmethod
    def from_exception(cls, service: str, exc: BaseException) -> TransientNetworkError:
        """Wrap a transport-level exception raised while calling ``service``."""
        return cls(f"{service} request failed: {type(exc).__name__}: {exc}")


class TaskSkipped(ConnectError):
    """Raised by a task stage to report its repository as skipped."""

    def __init__(self, reason: str) -> None:
        """Initialise with the human-readable skip reason."""
        self.reason = reason
        super().__init__(reason)


class ErrorClass(enum.StrEnum):
    """How a failure affects the run and the repository that raised it."""

    FATAL = "fatal"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"
    SKIP = "skip"


class Retryable(ConnectError):
    """Mixin base for component errors that deserve another attempt."""


class Terminal(ConnectError):
    """Mixin base for component errors that end one repository's processing."""


_CLASSIFICATION: tuple[tuple[type[BaseException], ErrorClass], ...] = (
    (AuthError, ErrorClass.FATAL),
    (ConfigError, ErrorClass.FATAL),
    (RateLimited, ErrorClass.RETRYABLE),
    (TransientNetworkError, ErrorClass.RETRYABLE),
    (Retryable, ErrorClass.RETRYABLE),
    (Terminal, ErrorClass.TERMINAL),
)


def classify_error(exc: BaseException) -> ErrorClass:
    """Classify an exception for scheduling and reporting.

    Unknown exceptions are terminal for the repository that raised them so a
    bug in one task never takes down the whole run.
    """
    if isinstance(exc, TaskSkipped):
        return ErrorClass.SKIP
    for exc_type, error_class in _CLASSIFICATION:
        if isinstance(exc, exc_type):
            return error_class
    return ErrorClass.TERMINAL


def describe_error(exc: BaseException) -> str:
    """Return a one-line human-readable reason for an outcome."""
    message = str(exc).strip()
    if not message:
        return type(exc).__name__
    return f"{type(exc).__name__}: {message}"


__all__ = [
    "AuthError",
    "ConfigError",
    "ConnectError",
    "ErrorClass",
    "RateLimited",
    "Retryable",
    "TaskSkipped",
    "Terminal",
    "TransientNetworkError",
    "classify_error",
    "describe_error",
]
