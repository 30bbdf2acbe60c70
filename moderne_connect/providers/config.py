"""Configuration for provider clients.

Usage
-----
>>> config = ProviderConfig(kind=ProviderKind.GITHUB, token="t")
>>> config.resolved_api_url
'https://api.github.com'
>>> config.resolved_host
'github.com'

"""

from __future__ import annotations

import base64
import dataclasses
import enum
from pathlib import Path
from urllib.parse import urlsplit

from moderne_connect.common.env import env_str, parse_bool, parse_non_negative_float
from moderne_connect.errors import ConfigError


class ProviderKind(enum.StrEnum):
    """Supported repository sources."""

    GITHUB = "github"
    GITLAB = "gitlab"
    CSV = "csv"

    @classmethod
    def parse(cls, raw: str) -> ProviderKind:
        """Parse a provider name, raising :class:`ConfigError` when unknown."""
        normalized = raw.strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        choices = ", ".join(member.value for member in cls)
        raise ConfigError.invalid("provider", f"expected one of {choices}, got {raw!r}")


_DEFAULT_API_URLS = {
    ProviderKind.GITHUB: "https://api.github.com",
    ProviderKind.GITLAB: "https://gitlab.com",
}
_DEFAULT_HOSTS = {
    ProviderKind.GITHUB: "github.com",
    ProviderKind.GITLAB: "gitlab.com",
}
_GIT_USERNAMES = {
    ProviderKind.GITHUB: "x-access-token",
    ProviderKind.GITLAB: "oauth2",
}


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderConfig:
    """Settings for the provider client selected for a run.

    Attributes
    ----------
    kind
        Which adapter lists repositories.
    token
        Bearer token for API providers. Never persisted.
    api_url
        API base URL; defaults to the public service for ``kind``.
    host
        Provider host used in repository identities; derived from
        ``api_url`` when unset.
    csv_path
        Repository list for the CSV provider.
    default_branch
        Branch used when the source does not name one.
    include_archived
        Whether archived repositories are synced instead of skipped.
    page_size
        Repositories requested per page.
    verify_tls
        Whether HTTPS certificates are verified, for the API and for git.

    """

    kind: ProviderKind = ProviderKind.GITHUB
    token: str | None = None
    api_url: str | None = None
    host: str | None = None
    csv_path: Path | None = None
    default_branch: str = "main"
    include_archived: bool = False
    page_size: int = 100
    timeout_s: float = 20.0
    user_agent: str = "moderne-connect/0.1"
    verify_tls: bool = True

    @property
    def resolved_api_url(self) -> str:
        """Return the API base URL without a trailing slash."""
        url = self.api_url or _DEFAULT_API_URLS.get(self.kind, "")
        return url.rstrip("/")

    @property
    def resolved_host(self) -> str:
        """Return the host recorded in repository identities."""
        if self.host:
            return self.host
        if self.api_url:
            hostname = urlsplit(self.api_url).hostname or ""
            return hostname.removeprefix("api.")
        return _DEFAULT_HOSTS.get(self.kind, "local")

    @property
    def git_auth_header(self) -> str | None:
        """Return the HTTP header git sends when cloning with the API token."""
        username = _GIT_USERNAMES.get(self.kind)
        if username is None or not self.token:
            return None
        credentials = base64.b64encode(f"{username}:{self.token}".encode()).decode()
        return f"Authorization: Basic {credentials}"

    def validate(self) -> None:
        """Raise :class:`ConfigError` when the adapter cannot be built."""
        if self.kind is ProviderKind.CSV:
            if self.csv_path is None:
                raise ConfigError.missing("MODERNE_CONNECT_CSV_PATH")
            return
        if not (self.token or "").strip():
            raise ConfigError.missing("MODERNE_CONNECT_PROVIDER_TOKEN")

    @classmethod
    def from_env(cls) -> ProviderConfig:
        """Create configuration from environment variables.

        Reads ``MODERNE_CONNECT_PROVIDER`` (``github``, ``gitlab`` or
        ``csv``), ``MODERNE_CONNECT_PROVIDER_TOKEN``,
        ``MODERNE_CONNECT_PROVIDER_API_URL``, ``MODERNE_CONNECT_PROVIDER_HOST``,
        ``MODERNE_CONNECT_CSV_PATH``, ``MODERNE_CONNECT_DEFAULT_BRANCH``,
        ``MODERNE_CONNECT_INCLUDE_ARCHIVED``,
        ``MODERNE_CONNECT_PROVIDER_TIMEOUT`` and ``MODERNE_CONNECT_VERIFY_TLS``.
        Validation is deferred to :meth:`validate` so CLI flags can fill the
        gaps first.
        """
        raw_kind = env_str("MODERNE_CONNECT_PROVIDER", ProviderKind.GITHUB.value)
        csv_path = env_str("MODERNE_CONNECT_CSV_PATH")
        return cls(
            kind=ProviderKind.parse(raw_kind or ProviderKind.GITHUB.value),
            token=env_str("MODERNE_CONNECT_PROVIDER_TOKEN"),
            api_url=env_str("MODERNE_CONNECT_PROVIDER_API_URL"),
            host=env_str("MODERNE_CONNECT_PROVIDER_HOST"),
            csv_path=Path(csv_path) if csv_path else None,
            default_branch=env_str("MODERNE_CONNECT_DEFAULT_BRANCH", "main") or "main",
            include_archived=parse_bool(
                "MODERNE_CONNECT_INCLUDE_ARCHIVED", default=False
            ),
            timeout_s=parse_non_negative_float(
                "MODERNE_CONNECT_PROVIDER_TIMEOUT", 20.0
            ),
            verify_tls=parse_bool("MODERNE_CONNECT_VERIFY_TLS", default=True),
        )
