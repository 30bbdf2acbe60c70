"""Factory for creating provider clients from configuration."""

from __future__ import annotations

import typing as typ

from .config import ProviderConfig, ProviderKind
from .csv_file import CsvProvider
from .github import GitHubProvider
from .gitlab import GitLabProvider

if typ.TYPE_CHECKING:
    import httpx

    from .protocol import RepositoryProvider


def create_provider(
    config: ProviderConfig | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> RepositoryProvider:
    """Create the provider client selected by ``config``.

    Parameters
    ----------
    config
        Provider settings; read from the environment when omitted.
    http_client
        Optional shared client for the API providers, mainly for tests.

    Raises
    ------
    ConfigError
        If the selected provider is missing a token or CSV path.

    """
    config = config or ProviderConfig.from_env()
    config.validate()
    if config.kind is ProviderKind.CSV:
        return CsvProvider(config)
    if config.kind is ProviderKind.GITLAB:
        return GitLabProvider(config, http_client=http_client)
    return GitHubProvider(config, http_client=http_client)
