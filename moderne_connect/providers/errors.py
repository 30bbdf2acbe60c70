"""Provider client errors."""

from __future__ import annotations

from moderne_connect.errors import ConnectError, Terminal


class NotFound(ConnectError):
    """Raised when an organization or group does not exist or is hidden."""

    @classmethod
    def organization(cls, service: str, organization: str) -> NotFound:
        """Return an error for an unknown organization."""
        return cls(f"{service} organization not found: {organization}")


class ProviderResponseShapeError(Terminal):
    """Raised when a provider response is missing expected fields."""

    @classmethod
    def missing(cls, service: str, field: str) -> ProviderResponseShapeError:
        """Return an error for a missing response field."""
        return cls(f"{service} response missing expected field: {field}")

    @classmethod
    def unexpected(cls, service: str, detail: str) -> ProviderResponseShapeError:
        """Return an error for a response that cannot be interpreted."""
        return cls(f"{service} response has unexpected shape: {detail}")


class ProviderAPIError(Terminal):
    """Raised when a provider returns an error status with no better mapping."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        """Initialise with a message and optional HTTP status code."""
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def http_error(cls, service: str, status_code: int) -> ProviderAPIError:
        """Return an error for non-2xx HTTP responses."""
        return cls(f"{service} HTTP {status_code}", status_code=status_code)


class CsvSourceError(Terminal):
    """Raised when a repository CSV file cannot be read."""

    @classmethod
    def missing_column(cls, path: str, column: str) -> CsvSourceError:
        """Return an error for a CSV file without a required header column."""
        return cls(f"{path} is missing required column {column!r}")
