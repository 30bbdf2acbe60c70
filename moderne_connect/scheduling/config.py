"""Configuration for the work scheduler.

Usage
-----
>>> config = SchedulerConfig()
>>> config.max_concurrency
8

"""

from __future__ import annotations

import dataclasses as dc

from moderne_connect.common.env import (
    parse_host_limits,
    parse_non_negative_float,
    parse_positive_int,
)
from moderne_connect.errors import ConfigError
from moderne_connect.scheduling.retry import RetryPolicy


@dc.dataclass(frozen=True, slots=True)
class SchedulerConfig:
    """Concurrency bounds, retry defaults and cancellation grace.

    Attributes
    ----------
    max_concurrency
        Tasks in flight at once across the whole run. Default 8.
    per_host_limit
        Concurrent stage attempts against any single upstream host.
        Default 4.
    host_limits
        Per-host overrides of ``per_host_limit`` as ``(host, limit)`` pairs.
    grace_period
        Seconds in-flight tasks may keep running after cancellation before
        they are cancelled and reported incomplete. Default 10.
    retry
        Default retry policy for stages that do not carry their own.

    """

    max_concurrency: int = 8
    per_host_limit: int = 4
    host_limits: tuple[tuple[str, int], ...] = ()
    grace_period: float = 10.0
    retry: RetryPolicy = dc.field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Validate the bounds."""
        if self.max_concurrency < 1:
            raise ConfigError.invalid("max_concurrency", "must be positive")
        if self.per_host_limit < 1:
            raise ConfigError.invalid("per_host_limit", "must be positive")
        if self.grace_period < 0:
            raise ConfigError.invalid("grace_period", "must not be negative")

    def limit_for_host(self, host: str) -> int:
        """Return the concurrency bound for ``host``."""
        for name, limit in self.host_limits:
            if name == host:
                return limit
        return self.per_host_limit

    @classmethod
    def from_env(cls) -> SchedulerConfig:
        """Create configuration from environment variables.

        Reads ``MODERNE_CONNECT_MAX_CONCURRENCY``,
        ``MODERNE_CONNECT_PER_HOST_LIMIT``, ``MODERNE_CONNECT_HOST_LIMITS``
        (``host=limit`` pairs), ``MODERNE_CONNECT_GRACE_PERIOD``,
        ``MODERNE_CONNECT_RETRY_MAX_ATTEMPTS``,
        ``MODERNE_CONNECT_RETRY_BASE_DELAY`` and
        ``MODERNE_CONNECT_RETRY_MAX_DELAY``.

        Raises
        ------
        ConfigError
            If any value cannot be parsed or is out of range.

        """
        retry = RetryPolicy(
            max_attempts=parse_positive_int("MODERNE_CONNECT_RETRY_MAX_ATTEMPTS", 3),
            base_delay=parse_non_negative_float(
                "MODERNE_CONNECT_RETRY_BASE_DELAY", 0.5
            ),
            max_delay=parse_non_negative_float("MODERNE_CONNECT_RETRY_MAX_DELAY", 30.0),
        )
        return cls(
            max_concurrency=parse_positive_int("MODERNE_CONNECT_MAX_CONCURRENCY", 8),
            per_host_limit=parse_positive_int("MODERNE_CONNECT_PER_HOST_LIMIT", 4),
            host_limits=parse_host_limits("MODERNE_CONNECT_HOST_LIMITS"),
            grace_period=parse_non_negative_float("MODERNE_CONNECT_GRACE_PERIOD", 10.0),
            retry=retry,
        )
