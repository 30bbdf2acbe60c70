"""Provider clients and lazy repository discovery."""

from __future__ import annotations

from .config import ProviderConfig, ProviderKind
from .csv_file import CsvProvider, read_repository_csv
from .discovery import DiscoveryCursor, OrganizationFilter, RepositoryListing, discover
from .errors import (
    CsvSourceError,
    NotFound,
    ProviderAPIError,
    ProviderResponseShapeError,
)
from .factory import create_provider
from .github import GitHubProvider
from .gitlab import GitLabProvider
from .models import RepositoryDescriptor, RepositoryIdentity, RepositoryPage, Visibility
from .protocol import RepositoryProvider

__all__ = [
    "CsvProvider",
    "CsvSourceError",
    "DiscoveryCursor",
    "GitHubProvider",
    "GitLabProvider",
    "NotFound",
    "OrganizationFilter",
    "ProviderAPIError",
    "ProviderConfig",
    "ProviderKind",
    "ProviderResponseShapeError",
    "RepositoryDescriptor",
    "RepositoryIdentity",
    "RepositoryListing",
    "RepositoryPage",
    "RepositoryProvider",
    "Visibility",
    "create_provider",
    "discover",
    "read_repository_csv",
]
