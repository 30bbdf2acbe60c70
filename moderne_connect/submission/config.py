"""Configuration for the ingestion client.

Usage
-----
>>> config = IngestionConfig(endpoint="https://ingest.example.test/v1/units")
>>> config.host
'ingest.example.test'

"""

from __future__ import annotations

import dataclasses
from urllib.parse import urlsplit

from moderne_connect.common.env import (
    env_str,
    parse_bool,
    parse_non_negative_float,
    parse_positive_int,
)
from moderne_connect.errors import ConfigError


@dataclasses.dataclass(frozen=True, slots=True)
class IngestionConfig:
    """Settings for submitting units to the ingestion service.

    Attributes
    ----------
    endpoint
        URL that accepts ``POST {"units": [...]}``.
    token
        Optional bearer token.
    timeout_s
        Per-request timeout; expiry raises ``SubmissionTimeout``.
    batch_size
        Units grouped into one request. ``1`` disables batching.
    linger_s
        How long a partial batch waits for more units.
    verify_tls
        Whether the service certificate is verified.

    """

    endpoint: str
    token: str | None = None
    timeout_s: float = 30.0
    batch_size: int = 1
    linger_s: float = 0.05
    user_agent: str = "moderne-connect/0.1"
    verify_tls: bool = True

    def __post_init__(self) -> None:
        """Validate the endpoint and batch size."""
        if not self.endpoint.strip():
            raise ConfigError.missing("MODERNE_CONNECT_INGEST_URL")
        if urlsplit(self.endpoint).scheme not in {"http", "https"}:
            raise ConfigError.invalid(
                "MODERNE_CONNECT_INGEST_URL", "must be an http(s) URL"
            )
        if self.batch_size < 1:
            raise ConfigError.invalid("batch_size", "must be positive")

    @property
    def host(self) -> str:
        """Return the ingestion host, used for per-host concurrency limits."""
        return urlsplit(self.endpoint).hostname or self.endpoint

    @classmethod
    def from_env(cls, *, endpoint: str | None = None) -> IngestionConfig:
        """Create configuration from environment variables.

        An explicit ``endpoint`` takes precedence over the environment.

        Reads ``MODERNE_CONNECT_INGEST_URL`` (required),
        ``MODERNE_CONNECT_INGEST_TOKEN``, ``MODERNE_CONNECT_INGEST_TIMEOUT``,
        ``MODERNE_CONNECT_INGEST_BATCH_SIZE``,
        ``MODERNE_CONNECT_INGEST_LINGER`` and ``MODERNE_CONNECT_VERIFY_TLS``.

        Raises
        ------
        ConfigError
            If the endpoint is missing or a value is invalid.

        """
        endpoint = endpoint or env_str("MODERNE_CONNECT_INGEST_URL")
        if endpoint is None:
            raise ConfigError.missing("MODERNE_CONNECT_INGEST_URL")
        return cls(
            endpoint=endpoint,
            token=env_str("MODERNE_CONNECT_INGEST_TOKEN"),
            timeout_s=parse_non_negative_float("MODERNE_CONNECT_INGEST_TIMEOUT", 30.0),
            batch_size=parse_positive_int("MODERNE_CONNECT_INGEST_BATCH_SIZE", 1),
            linger_s=parse_non_negative_float("MODERNE_CONNECT_INGEST_LINGER", 0.05),
            verify_tls=parse_bool("MODERNE_CONNECT_VERIFY_TLS", default=True),
        )
