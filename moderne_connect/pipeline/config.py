"""Pipeline settings and the optional YAML run file.

Settings come from three layers. Environment variables (``MODERNE_CONNECT_*``)
give the baseline, a YAML run file overrides them, and command-line flags
override both.

Example run file::

    provider: github
    organizations: [openrewrite, moderneinc]
    include: ["openrewrite/rewrite-*"]
    mode: streaming
    max_concurrency: 16
    host_limits:
      github.com: 8
    ingest_url: https://ingest.example.test/v1/units
"""

from __future__ import annotations

import dataclasses
import enum
from pathlib import Path

import msgspec
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from moderne_connect.common.env import env_str, parse_bool, parse_positive_int
from moderne_connect.errors import ConfigError
from moderne_connect.scheduling.retry import RetryPolicy
from moderne_connect.submission.errors import SubmissionTimeout

YAML_VERSION = (1, 2)


class RunMode(enum.StrEnum):
    """How discovery, sync and submission are sequenced."""

    STREAMING = "streaming"
    GATED = "gated"

    @classmethod
    def parse(cls, raw: str) -> RunMode:
        """Parse a mode name, raising :class:`ConfigError` when unknown."""
        normalized = raw.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ConfigError.invalid("mode", f"expected streaming or gated, got {raw!r}")


def default_submit_policy() -> RetryPolicy:
    """Return the submission retry policy: three attempts, timeouts twice."""
    return RetryPolicy(attempt_limits=((SubmissionTimeout, 2),))


@dataclasses.dataclass(frozen=True, slots=True)
class PipelineConfig:
    """Coordinator settings.

    Attributes
    ----------
    mode
        ``streaming`` overlaps discovery, sync and submission per repository;
        ``gated`` finishes each phase before starting the next.
    resubmit_unchanged
        Submit a repository even when the index shows its revision was
        already acknowledged.
    prune_skipped
        Delete the working copies of repositories marked skipped once a run
        finishes without being aborted.
    discovery_retry
        Retry policy for provider pages.
    submit_retry
        Retry policy for the submit stage.

    """

    mode: RunMode = RunMode.STREAMING
    resubmit_unchanged: bool = False
    prune_skipped: bool = False
    discovery_retry: RetryPolicy = dataclasses.field(
        default_factory=lambda: RetryPolicy(max_attempts=5)
    )
    submit_retry: RetryPolicy = dataclasses.field(default_factory=default_submit_policy)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Create configuration from environment variables.

        Reads ``MODERNE_CONNECT_MODE``, ``MODERNE_CONNECT_RESUBMIT_UNCHANGED``,
        ``MODERNE_CONNECT_PRUNE_SKIPPED`` and
        ``MODERNE_CONNECT_DISCOVERY_MAX_ATTEMPTS``.
        """
        raw_mode = env_str("MODERNE_CONNECT_MODE", RunMode.STREAMING.value)
        return cls(
            mode=RunMode.parse(raw_mode or RunMode.STREAMING.value),
            resubmit_unchanged=parse_bool(
                "MODERNE_CONNECT_RESUBMIT_UNCHANGED", default=False
            ),
            prune_skipped=parse_bool("MODERNE_CONNECT_PRUNE_SKIPPED", default=False),
            discovery_retry=RetryPolicy(
                max_attempts=parse_positive_int(
                    "MODERNE_CONNECT_DISCOVERY_MAX_ATTEMPTS", 5
                )
            ),
        )


class RunFile(msgspec.Struct, kw_only=True, forbid_unknown_fields=True):
    """Schema of the optional YAML run file; every key is optional."""

    provider: str | None = None
    organizations: list[str] = msgspec.field(default_factory=list)
    include: list[str] = msgspec.field(default_factory=list)
    prefix: str | None = None
    csv_path: str | None = None
    api_url: str | None = None
    default_branch: str | None = None
    include_archived: bool | None = None
    cache_root: str | None = None
    ingest_url: str | None = None
    mode: str | None = None
    max_concurrency: int | None = None
    per_host_limit: int | None = None
    host_limits: dict[str, int] = msgspec.field(default_factory=dict)
    grace_period: float | None = None
    batch_size: int | None = None
    resubmit_unchanged: bool | None = None
    prune_skipped: bool | None = None
    verify_tls: bool | None = None


def load_run_file(path: Path | str) -> RunFile:
    """Parse a YAML run file using a YAML 1.2 compliant loader.

    Raises
    ------
    ConfigError
        If the file cannot be read, is not valid YAML, or does not match
        :class:`RunFile`.

    """
    path_obj = Path(path)
    try:
        loaded = _yaml().load(path_obj.read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        msg = f"failed to parse YAML: {exc}"
        raise ConfigError.invalid(str(path_obj), msg) from exc
    if loaded is None:
        return RunFile()
    try:
        return msgspec.convert(loaded, type=RunFile)
    except msgspec.ValidationError as exc:
        msg = f"schema validation failed: {exc}"
        raise ConfigError.invalid(str(path_obj), msg) from exc


def _yaml() -> YAML:
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    return yaml
